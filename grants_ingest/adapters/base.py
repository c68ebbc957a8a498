"""
Source adapter interface.

An adapter is the fetch + normalize implementation for one source:
``fetch()`` streams raw units, ``normalize(unit)`` turns one unit into
a schema-validated ExtractedGrant.
"""

from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional

import structlog

from grants_ingest.core.http_client import HttpClient, RateLimiter
from grants_ingest.core.models import ExtractedGrant, IngestionError, RawUnit
from grants_ingest.sources.base import SourceConfig

logger = structlog.get_logger(__name__)


class SourceAdapter(ABC):
    """
    Abstract base class for source adapters.

    Each adapter must implement:
    - fetch(): Stream raw pages/records for the source
    - normalize(): Map one raw unit to an ExtractedGrant
    """

    def __init__(self, source: SourceConfig, http_client: HttpClient):
        """
        Initialize adapter.

        Args:
            source: Source configuration
            http_client: Shared HTTP client (entered before fetch)
        """
        self.source = source
        self.http_client = http_client
        self.enabled = source.enabled
        self.logger = logger.bind(adapter=source.source_id)

    @property
    def source_id(self) -> str:
        return self.source.source_id

    @property
    def errors(self) -> list[IngestionError]:
        """Recoverable errors of the last fetch."""
        return []

    @abstractmethod
    def fetch(self, limiter: Optional[RateLimiter] = None) -> AsyncIterator[RawUnit]:
        """
        Stream raw units.

        Args:
            limiter: Per-source rate limiter owned by the caller

        Raises:
            SourceFatalError: Source cannot be reached at all
        """

    @abstractmethod
    async def normalize(self, unit: RawUnit) -> ExtractedGrant:
        """
        Map one raw unit to an ExtractedGrant.

        Raises:
            ExtractionError: Unit produced no valid record
        """

    async def test_connection(self) -> bool:
        """Check the source answers; adapters without a connection check report True."""
        return True

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.source_id!r})"
