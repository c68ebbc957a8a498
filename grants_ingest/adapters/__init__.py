"""
Source adapters: fetch + normalize per source.

Adapters:
- ConfiguredAdapter: fetch strategy + extraction strategy from config
- GrantsGovAdapter, SbirAdapter, SamGovAdapter: federal APIs
- StatePortalAdapter: state portals, geography pinned to the state
- FoundationAdapter / create_feed_adapter: foundations and feeds
"""

from .base import SourceAdapter
from .configured import ConfiguredAdapter
from .federal import GrantsGovAdapter, RecordMappingAdapter, SamGovAdapter, SbirAdapter
from .foundations import FoundationAdapter, create_feed_adapter
from .registry import ADAPTER_TYPES, AdapterRegistry, build_adapter_registry, create_adapter
from .state_portals import StatePortalAdapter

__all__ = [
    "ADAPTER_TYPES",
    "AdapterRegistry",
    "ConfiguredAdapter",
    "FoundationAdapter",
    "GrantsGovAdapter",
    "RecordMappingAdapter",
    "SamGovAdapter",
    "SbirAdapter",
    "SourceAdapter",
    "StatePortalAdapter",
    "build_adapter_registry",
    "create_adapter",
    "create_feed_adapter",
]
