"""
Source registry: the catalog of configured sources for one run.
"""

from typing import Iterable, Iterator

import structlog

from grants_ingest.core.errors import ConfigError, UnknownSourceError
from grants_ingest.core.models import CrawlType
from grants_ingest.sources.base import SourceConfig

logger = structlog.get_logger(__name__)


class SourceRegistry:
    """
    Read-only lookup over loaded SourceConfigs.

    Built once at startup; the orchestrator never mutates it.
    """

    def __init__(self, sources: Iterable[SourceConfig]):
        self._sources: dict[str, SourceConfig] = {}
        for source in sources:
            if source.source_id in self._sources:
                raise ConfigError(f"Duplicate source id: {source.source_id}")
            self._sources[source.source_id] = source

    def get(self, source_id: str) -> SourceConfig:
        try:
            return self._sources[source_id]
        except KeyError:
            raise UnknownSourceError(source_id) from None

    def all(self) -> list[SourceConfig]:
        return list(self._sources.values())

    def enabled(self) -> list[SourceConfig]:
        """Enabled sources, highest priority first."""
        return sorted(
            (s for s in self._sources.values() if s.enabled),
            key=lambda s: s.priority,
            reverse=True,
        )

    def by_type(self, crawl_type: CrawlType) -> list[SourceConfig]:
        return [s for s in self._sources.values() if s.type == crawl_type]

    def ids(self) -> list[str]:
        return list(self._sources)

    def __contains__(self, source_id: object) -> bool:
        return source_id in self._sources

    def __iter__(self) -> Iterator[SourceConfig]:
        return iter(self._sources.values())

    def __len__(self) -> int:
        return len(self._sources)
