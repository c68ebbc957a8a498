"""
Feed fetcher: RSS, Atom and JSON feeds.

Every item becomes a RawRecord whose data uses the canonical keys
``id, title, link, description, postedDate``; ``field_mapping`` adds
or overrides keys (canonical key -> feed element/key name).
"""

import json
from typing import AsyncIterator, Optional

import httpx
from bs4 import BeautifulSoup

from grants_ingest.core.deduplicator import generate_content_hash
from grants_ingest.core.errors import SourceUnreachableError
from grants_ingest.core.models import RawRecord
from grants_ingest.sources.base import FeedConfig, SourceConfig

from .api import lookup_path
from .base import FetchStrategy, fatal_error_for


def _element_text(item, name: str) -> Optional[str]:
    element = item.find(name)
    if element is None:
        return None
    text = element.get_text(" ", strip=True)
    return text or None


def _atom_link(entry) -> Optional[str]:
    for link in entry.find_all("link"):
        if link.get("rel") in (None, "alternate") and link.get("href"):
            return link["href"]
    link = entry.find("link")
    return link.get("href") if link is not None else None


def parse_xml_items(content: str, feed: FeedConfig) -> list[dict]:
    """
    Parse RSS <item> or Atom <entry> elements.

    Args:
        content: Feed XML
        feed: Feed configuration

    Returns:
        List of canonical item dicts
    """
    soup = BeautifulSoup(content, "xml")
    items = []

    if feed.format == "atom":
        for entry in soup.find_all("entry"):
            items.append({
                "id": _element_text(entry, "id"),
                "title": _element_text(entry, "title"),
                "link": _atom_link(entry),
                "description": _element_text(entry, "summary") or _element_text(entry, "content"),
                "postedDate": _element_text(entry, "updated") or _element_text(entry, "published"),
                "_element": entry,
            })
    else:
        for entry in soup.find_all("item"):
            items.append({
                "id": _element_text(entry, "guid"),
                "title": _element_text(entry, "title"),
                "link": _element_text(entry, "link"),
                "description": _element_text(entry, "description"),
                "postedDate": _element_text(entry, "pubDate"),
                "_element": entry,
            })

    for item in items:
        element = item.pop("_element")
        for canonical, name in feed.field_mapping.items():
            value = _element_text(element, name)
            if value is not None:
                item[canonical] = value
        if not item.get("id"):
            item["id"] = item.get("link")

    return items


def parse_json_items(data, feed: FeedConfig) -> list[dict]:
    """Select the item list and apply the field mapping."""
    items = []
    for raw in lookup_path(data, feed.items_path):
        if not isinstance(raw, dict):
            continue
        item = dict(raw)
        for canonical, key in feed.field_mapping.items():
            if key in raw:
                item[canonical] = raw[key]
        items.append(item)
    return items


class FeedFetcher(FetchStrategy):
    """Fetcher for syndication feeds (one request per run)."""

    def connection_url(self, source: SourceConfig) -> str:
        return source.feed.url if source.feed else source.base_url

    async def fetch(self, source: SourceConfig) -> AsyncIterator[RawRecord]:
        self.errors = []
        feed = source.feed
        if feed is None:
            raise SourceUnreachableError(source.source_id, "No feed configuration for source")

        try:
            response = await self.http_client.get(feed.url, limiter=self.limiter_for(source))
            if feed.format == "json":
                items = parse_json_items(response.json(), feed)
            else:
                items = parse_xml_items(response.text, feed)
        except (httpx.HTTPError, json.JSONDecodeError) as e:
            raise fatal_error_for(source, e, feed.url) from e

        self.logger.info("feed_parsed", source=source.source_id, items=len(items))

        for item in items:
            link = item.get("link") if isinstance(item.get("link"), str) else None
            yield RawRecord(
                source_id=source.source_id,
                url=link or feed.url,
                data=item,
                content_hash=generate_content_hash(json.dumps(item, sort_keys=True, default=str)),
                status_code=response.status_code,
            )
