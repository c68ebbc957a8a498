"""
Adapter registry: one adapter per source id.

Named adapters are selected by the ``adapter`` key of a source entry;
every other source gets a ConfiguredAdapter.
"""

from typing import Iterable, Iterator, Optional

import structlog

from grants_ingest.config.loader import Settings
from grants_ingest.core.errors import ConfigError, UnknownSourceError
from grants_ingest.core.http_client import HttpClient
from grants_ingest.core.models import CrawlType
from grants_ingest.extractors import ExtractionStrategy, create_page_extractor
from grants_ingest.sources.base import SourceConfig

from .base import SourceAdapter
from .configured import ConfiguredAdapter
from .federal import GrantsGovAdapter, SamGovAdapter, SbirAdapter
from .foundations import FoundationAdapter
from .state_portals import StatePortalAdapter

logger = structlog.get_logger(__name__)

ADAPTER_TYPES: dict[str, type[ConfiguredAdapter]] = {
    "grants_gov": GrantsGovAdapter,
    "sam_gov": SamGovAdapter,
    "sbir": SbirAdapter,
    "state_portal": StatePortalAdapter,
    "foundation": FoundationAdapter,
}


class AdapterRegistry:
    """Mutable lookup of adapters keyed by source id."""

    def __init__(self, adapters: Iterable[SourceAdapter] = ()):
        self._adapters: dict[str, SourceAdapter] = {}
        for adapter in adapters:
            self.register(adapter)

    def register(self, adapter: SourceAdapter) -> None:
        """Add an adapter, replacing any adapter with the same source id."""
        if adapter.source_id in self._adapters:
            logger.info("adapter_replaced", source=adapter.source_id)
        self._adapters[adapter.source_id] = adapter

    def get(self, source_id: str) -> SourceAdapter:
        try:
            return self._adapters[source_id]
        except KeyError:
            raise UnknownSourceError(source_id) from None

    def all(self) -> list[SourceAdapter]:
        return list(self._adapters.values())

    def enabled(self) -> list[SourceAdapter]:
        """Enabled adapters, highest source priority first."""
        return sorted(
            (a for a in self._adapters.values() if a.enabled),
            key=lambda a: a.source.priority,
            reverse=True,
        )

    def by_type(self, crawl_type: CrawlType) -> list[SourceAdapter]:
        return [a for a in self._adapters.values() if a.source.type == crawl_type]

    def set_enabled(self, source_id: str, enabled: bool) -> bool:
        """Toggle an adapter; returns False for unknown ids."""
        adapter = self._adapters.get(source_id)
        if adapter is None:
            return False
        adapter.enabled = enabled
        return True

    def __contains__(self, source_id: object) -> bool:
        return source_id in self._adapters

    def __iter__(self) -> Iterator[SourceAdapter]:
        return iter(self._adapters.values())

    def __len__(self) -> int:
        return len(self._adapters)


def create_adapter(
    source: SourceConfig,
    http_client: HttpClient,
    page_extractor: Optional[ExtractionStrategy] = None,
) -> SourceAdapter:
    """
    Instantiate the adapter for one source.

    Raises:
        ConfigError: Unknown adapter name or invalid adapter settings
    """
    if source.adapter is None:
        adapter_class = ConfiguredAdapter
    else:
        try:
            adapter_class = ADAPTER_TYPES[source.adapter]
        except KeyError:
            raise ConfigError(f"{source.source_id}: unknown adapter '{source.adapter}'") from None
    return adapter_class(source, http_client, page_extractor=page_extractor)


def build_adapter_registry(
    sources: Iterable[SourceConfig],
    http_client: HttpClient,
    settings: Optional[Settings] = None,
    page_extractor: Optional[ExtractionStrategy] = None,
) -> AdapterRegistry:
    """
    Build adapters for every source.

    Args:
        sources: Source catalog
        http_client: Shared HTTP client
        settings: Pipeline settings (extraction strategy for HTML pages)
        page_extractor: Explicit page strategy, overrides settings

    Returns:
        AdapterRegistry with one adapter per source
    """
    settings = settings or Settings()
    if page_extractor is None:
        page_extractor = create_page_extractor(settings.extraction)

    registry = AdapterRegistry()
    for source in sources:
        registry.register(create_adapter(source, http_client, page_extractor))

    logger.info(
        "adapters_built",
        count=len(registry),
        extraction=page_extractor.get_strategy_name(),
    )
    return registry
