"""
State grant portal adapters (California, New York, Texas, ...).

Portals are scraped like any configured source; every grant they list
is restricted to the portal's state, so geography is pinned after
extraction whatever the page text suggested.
"""

from typing import Optional

from grants_ingest.core.errors import ConfigError
from grants_ingest.core.http_client import HttpClient
from grants_ingest.core.models import ExtractedGrant, RawUnit
from grants_ingest.extractors import ExtractionStrategy
from grants_ingest.sources.base import SourceConfig

from .configured import ConfiguredAdapter


class StatePortalAdapter(ConfiguredAdapter):
    """Scrape adapter for a single state's grant portal."""

    def __init__(
        self,
        source: SourceConfig,
        http_client: HttpClient,
        page_extractor: Optional[ExtractionStrategy] = None,
        record_extractor: Optional[ExtractionStrategy] = None,
    ):
        state = source.extraction_hints.state
        if not state:
            raise ConfigError(f"{source.source_id}: state portals need extraction_hints.state")
        super().__init__(source, http_client, page_extractor, record_extractor)
        self.state = state.upper()

    async def normalize(self, unit: RawUnit) -> ExtractedGrant:
        grant = await super().normalize(unit)
        grant.geography.states = [self.state]
        grant.geography.is_national = False
        return grant
