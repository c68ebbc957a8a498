"""
Private foundation adapters (Ford, MacArthur, Gates, ...).

Foundation sites fund one sponsor's programs and, unless a page says
otherwise, open them to nonprofits only.
"""

from typing import Optional

from grants_ingest.core.http_client import HttpClient
from grants_ingest.core.models import ExtractedGrant, RawUnit
from grants_ingest.sources.base import SourceConfig

from .configured import ConfiguredAdapter

DEFAULT_ENTITY_TYPES = ["nonprofit"]


class FoundationAdapter(ConfiguredAdapter):
    """Configured adapter with a fixed sponsor and nonprofit default eligibility."""

    @property
    def sponsor(self) -> str:
        return self.source.extraction_hints.sponsor or self.source.name

    async def normalize(self, unit: RawUnit) -> ExtractedGrant:
        grant = await super().normalize(unit)
        grant.sponsor = self.sponsor
        if not grant.eligibility.entity_types:
            grant.eligibility.entity_types = list(DEFAULT_ENTITY_TYPES)
        return grant


def create_feed_adapter(
    source_id: str,
    name: str,
    feed_url: str,
    http_client: HttpClient,
    feed_format: str = "rss",
    sponsor: Optional[str] = None,
    items_path: Optional[str] = None,
    field_mapping: Optional[dict] = None,
    **options,
) -> ConfiguredAdapter:
    """
    Build an adapter for an RSS/Atom/JSON grant feed without a catalog entry.

    Args:
        source_id: Catalog id for the new source
        name: Display name (also the default sponsor)
        feed_url: Feed location
        http_client: Shared HTTP client
        feed_format: rss | atom | json
        sponsor: Sponsor for every item
        items_path: Dotted path to the item list (JSON feeds)
        field_mapping: Feed field -> canonical field overrides
        **options: Extra SourceConfig fields (request_delay_ms, priority, ...)

    Returns:
        ConfiguredAdapter for the feed
    """
    data = {
        "source_id": source_id,
        "name": name,
        "type": "feed",
        "base_url": feed_url,
        "feed": {
            "url": feed_url,
            "format": feed_format,
            "items_path": items_path,
            "field_mapping": field_mapping or {},
        },
        "extraction_hints": {"sponsor": sponsor or name, "national": True},
        **options,
    }
    return ConfiguredAdapter(SourceConfig.from_dict(data), http_client)
