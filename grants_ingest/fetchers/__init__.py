"""
Fetch strategies: turn a source configuration into raw units.

Strategies:
- ScrapeFetcher: listing pages -> detail pages (RawPage)
- ApiFetcher: paginated JSON endpoints (RawRecord)
- FeedFetcher: RSS/Atom/JSON feeds (RawRecord)
"""

from grants_ingest.core.models import CrawlType

from .api import ApiFetcher
from .base import FetchStrategy
from .feed import FeedFetcher
from .scrape import ScrapeFetcher

FETCHERS: dict[CrawlType, type[FetchStrategy]] = {
    CrawlType.API: ApiFetcher,
    CrawlType.SCRAPE: ScrapeFetcher,
    CrawlType.FEED: FeedFetcher,
}


def get_fetcher_class(crawl_type: CrawlType) -> type[FetchStrategy]:
    """Return the fetch strategy for a crawl type."""
    return FETCHERS[crawl_type]


__all__ = [
    "ApiFetcher",
    "FeedFetcher",
    "FetchStrategy",
    "FETCHERS",
    "ScrapeFetcher",
    "get_fetcher_class",
]
