"""
Base class for fetch strategies.

Fetchers implement the first pipeline stage: turning a SourceConfig
into a stream of raw units (HTML pages or API/feed records). They own
no rate-limit state; the orchestrator passes a RateLimiter per source.
"""

from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional

import httpx
import structlog

from grants_ingest.core.errors import SourceAuthError, SourceFatalError, SourceUnreachableError
from grants_ingest.core.http_client import HttpClient, RateLimiter
from grants_ingest.core.models import IngestionError, RawUnit
from grants_ingest.sources.base import SourceConfig

logger = structlog.get_logger(__name__)


AUTH_STATUSES = (401, 403)

# Per-source safety caps
MAX_PAGES = 100
MAX_RECORDS = 10000


def describe_http_error(exc: Exception) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        return f"HTTP {exc.response.status_code}"
    return str(exc) or exc.__class__.__name__


def fatal_error_for(source: SourceConfig, exc: Exception, url: Optional[str] = None) -> SourceFatalError:
    """Map a failed first request to the fatal error that aborts the source."""
    if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code in AUTH_STATUSES:
        return SourceAuthError(source.source_id, describe_http_error(exc), url=url)
    return SourceUnreachableError(source.source_id, describe_http_error(exc), url=url)


class FetchStrategy(ABC):
    """
    Abstract base class for fetch strategies.

    Each strategy handles one crawl type:
    - scrape: listing pages -> detail pages
    - api: paginated JSON endpoint
    - feed: RSS/Atom/JSON feed

    Failures of the very first request raise SourceFatalError; later
    failures are collected in ``errors`` and stop pagination.
    """

    def __init__(self, http_client: HttpClient, limiter: Optional[RateLimiter] = None):
        """
        Initialize fetcher.

        Args:
            http_client: Shared HTTP client (already entered)
            limiter: Per-source rate limiter (built from the source if omitted)
        """
        self.http_client = http_client
        self.limiter = limiter
        self.errors: list[IngestionError] = []
        self.logger = logger.bind(fetcher=self.__class__.__name__)

    def limiter_for(self, source: SourceConfig) -> RateLimiter:
        if self.limiter is None:
            self.limiter = RateLimiter.for_source(source.request_delay_ms, source.max_concurrent)
        return self.limiter

    def record_error(self, message: str, url: Optional[str] = None, stage: str = "fetch") -> None:
        self.errors.append(IngestionError(stage=stage, message=message, url=url, recoverable=True))
        self.logger.warning("fetch_error", url=url, error=message)

    @abstractmethod
    def fetch(self, source: SourceConfig) -> AsyncIterator[RawUnit]:
        """
        Stream raw units for a source.

        Args:
            source: Source configuration

        Yields:
            RawPage or RawRecord in fetch order

        Raises:
            SourceFatalError: When the source cannot be reached at all
        """

    @abstractmethod
    def connection_url(self, source: SourceConfig) -> str:
        """URL requested by test_connection()."""

    async def test_connection(self, source: SourceConfig) -> bool:
        """Check that the source answers with a 2xx."""
        url = self.connection_url(source)
        try:
            await self.http_client.get(url, limiter=self.limiter_for(source))
        except httpx.HTTPError as e:
            self.logger.warning("connection_test_failed", source=source.source_id, error=str(e))
            return False
        return True

    def get_strategy_name(self) -> str:
        """Return human-readable strategy name."""
        return self.__class__.__name__
