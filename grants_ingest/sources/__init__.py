"""
Source layer - descriptors for every external grant source.

Components:
- base: SourceConfig and its nested Selectors/ApiConfig/FeedConfig/ExtractionHints
- registry: SourceRegistry lookup used by the orchestrator
"""

from .base import SourceConfig, Selectors, ApiConfig, FeedConfig, ExtractionHints
from .registry import SourceRegistry

__all__ = [
    "SourceConfig",
    "Selectors",
    "ApiConfig",
    "FeedConfig",
    "ExtractionHints",
    "SourceRegistry",
]
