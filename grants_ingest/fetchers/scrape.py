"""
Scrape fetcher: listing pages -> detail pages.

Walks every listing URL of a source, follows pagination (next-page
selector or URL pattern) up to ``max_pages`` listing pages in
total, then fetches the discovered detail pages (at most MAX_RECORDS)
with bounded concurrency.
"""

import asyncio
from typing import AsyncIterator, Optional

import httpx

from grants_ingest.core.deduplicator import generate_content_hash
from grants_ingest.core.errors import SourceUnreachableError
from grants_ingest.core.models import RawPage
from grants_ingest.core.selectors import (
    extract_grant_links,
    extract_text_content,
    get_next_page_url,
    pre_extract,
)
from grants_ingest.sources.base import SourceConfig

from .base import AUTH_STATUSES, MAX_PAGES, MAX_RECORDS, FetchStrategy, describe_http_error, fatal_error_for


class ScrapeFetcher(FetchStrategy):
    """
    Fetcher for HTML sources.

    Supports:
    - Several listing URLs per source
    - Pagination via "next" selector or "?page={page}" pattern
    - Stop on a listing page that yields no new links
    """

    def connection_url(self, source: SourceConfig) -> str:
        return source.listing_urls[0] if source.listing_urls else source.base_url

    async def fetch(self, source: SourceConfig) -> AsyncIterator[RawPage]:
        self.errors = []
        links = await self.discover(source)

        self.logger.info("discovery_complete", source=source.source_id, count=len(links))

        step = max(1, source.max_concurrent)
        for start in range(0, len(links), step):
            batch = links[start:start + step]
            pages = await asyncio.gather(*(self._fetch_detail(source, url) for url in batch))
            for page in pages:
                if page is not None:
                    yield page

    async def discover(self, source: SourceConfig) -> list[str]:
        """
        Collect detail-page links from all listing pages.

        Listing pages are counted across every listing URL of the source
        and capped at ``max_pages``; discovery stops at MAX_RECORDS links.

        Args:
            source: Source configuration

        Returns:
            Unique absolute URLs in discovery order

        Raises:
            SourceAuthError: First listing request rejected with 401/403
            SourceUnreachableError: No listing page could be fetched
        """
        limiter = self.limiter_for(source)
        listing_urls = list(source.listing_urls) or [source.base_url]
        page_limit = min(source.max_pages, MAX_PAGES)

        links: list[str] = []
        seen: set[str] = set()
        pages = 0
        capped = False
        reached = False
        last_error: Optional[Exception] = None
        last_url: Optional[str] = None

        for listing_url in listing_urls:
            page_url: Optional[str] = listing_url
            page_num = 1

            while page_url:
                if pages >= page_limit:
                    capped = True
                    break

                self.logger.debug("fetching_listing", source=source.source_id, page=page_num, url=page_url)

                try:
                    response = await self.http_client.get(page_url, limiter=limiter)
                except httpx.HTTPError as e:
                    if not reached and _is_auth_failure(e):
                        raise fatal_error_for(source, e, page_url) from e
                    last_error, last_url = e, page_url
                    self.record_error(describe_http_error(e), page_url)
                    break

                reached = True
                pages += 1
                html = response.text

                new_links = [u for u in extract_grant_links(html, page_url, source.selectors) if u not in seen]
                if not new_links:
                    break

                new_links = new_links[:MAX_RECORDS - len(links)]
                seen.update(new_links)
                links.extend(new_links)
                if len(links) >= MAX_RECORDS:
                    capped = True
                    break

                next_url = get_next_page_url(
                    html,
                    page_url,
                    listing_url,
                    source.selectors,
                    source.pagination_pattern,
                    page_num,
                    page_limit,
                )
                if next_url == page_url:
                    break

                page_url = next_url
                page_num += 1

            if capped:
                self.logger.info("scrape_safety_cap_reached", source=source.source_id, pages=pages, records=len(links))
                break

        if not reached:
            if last_error is not None:
                raise fatal_error_for(source, last_error, last_url) from last_error
            raise SourceUnreachableError(source.source_id, "No listing pages configured")

        return links


    async def _fetch_detail(self, source: SourceConfig, url: str) -> Optional[RawPage]:
        """Fetch one detail page; failures are recorded, not raised."""
        try:
            response = await self.http_client.get(url, limiter=self.limiter_for(source))
        except httpx.HTTPError as e:
            self.record_error(describe_http_error(e), url)
            return None

        html = response.text
        text = extract_text_content(html)

        return RawPage(
            source_id=source.source_id,
            url=url,
            html=html,
            text=text,
            content_hash=generate_content_hash(text),
            status_code=response.status_code,
            hints=pre_extract(html, source.selectors),
        )


def _is_auth_failure(exc: Exception) -> bool:
    return isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code in AUTH_STATUSES
