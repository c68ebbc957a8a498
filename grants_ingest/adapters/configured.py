"""
Configuration-driven adapter.

Wires a SourceConfig to the fetch strategy for its crawl type and to
an extraction strategy for each kind of raw unit.
"""

from typing import AsyncIterator, Optional

from grants_ingest.core.http_client import HttpClient, RateLimiter
from grants_ingest.core.models import ExtractedGrant, IngestionError, RawRecord, RawUnit
from grants_ingest.extractors import ApiRecordExtractor, ExtractionStrategy, SelectorExtractor
from grants_ingest.fetchers import FetchStrategy, get_fetcher_class
from grants_ingest.sources.base import SourceConfig

from .base import SourceAdapter


class ConfiguredAdapter(SourceAdapter):
    """
    Adapter built entirely from configuration.

    HTML pages go to ``page_extractor`` (selector strategy by default),
    API and feed records to ``record_extractor``.
    """

    def __init__(
        self,
        source: SourceConfig,
        http_client: HttpClient,
        page_extractor: Optional[ExtractionStrategy] = None,
        record_extractor: Optional[ExtractionStrategy] = None,
    ):
        super().__init__(source, http_client)
        self.page_extractor = page_extractor or SelectorExtractor()
        self.record_extractor = record_extractor or ApiRecordExtractor()
        self.fetcher: Optional[FetchStrategy] = None

    @property
    def errors(self) -> list[IngestionError]:
        return self.fetcher.errors if self.fetcher else []

    def _make_fetcher(self, limiter: Optional[RateLimiter]) -> FetchStrategy:
        return get_fetcher_class(self.source.type)(self.http_client, limiter)

    async def fetch(self, limiter: Optional[RateLimiter] = None) -> AsyncIterator[RawUnit]:
        self.fetcher = self._make_fetcher(limiter)
        async for unit in self.fetcher.fetch(self.source):
            yield unit

    async def normalize(self, unit: RawUnit) -> ExtractedGrant:
        if isinstance(unit, RawRecord):
            return await self.normalize_record(unit)
        return await self.page_extractor.extract(unit, self.source)

    async def normalize_record(self, unit: RawRecord) -> ExtractedGrant:
        return await self.record_extractor.extract(unit, self.source)

    async def test_connection(self) -> bool:
        fetcher = self.fetcher or self._make_fetcher(None)
        return await fetcher.test_connection(self.source)
