"""
API fetcher: paginated JSON endpoints.

Pagination protocols:
- offset: ``pagination_param = page * page_size``
- page:   ``pagination_param = page + 1``

Without a pagination parameter the endpoint is requested once.
"""

import json
import os
from typing import Any, AsyncIterator, Optional

import httpx

from grants_ingest.core.deduplicator import generate_content_hash
from grants_ingest.core.errors import SourceAuthError
from grants_ingest.core.models import RawRecord
from grants_ingest.sources.base import ApiConfig, SourceConfig

from .base import MAX_PAGES, MAX_RECORDS, FetchStrategy, describe_http_error, fatal_error_for

# Record keys that may hold a detail URL, in priority order
RECORD_URL_KEYS = ("url", "link", "uiLink", "webLink", "applyUrl", "applicationUrl")


def lookup_path(data: Any, path: Optional[str]) -> list:
    """
    Resolve a dotted path to the result list.

    Args:
        data: Decoded JSON response
        path: "oppHits" or "data.results"; None means the response itself

    Returns:
        The list at path, or [] if the path is missing or not a list
    """
    current = data
    if path:
        for part in path.split("."):
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return []
    return current if isinstance(current, list) else []


def pagination_value(api: ApiConfig, page: int) -> int:
    if api.pagination_mode == "page":
        return page + 1
    return page * api.page_size


def record_url(record: dict, fallback: str) -> str:
    for key in RECORD_URL_KEYS:
        value = record.get(key)
        if isinstance(value, str) and value.startswith(("http://", "https://")):
            return value
    return fallback


class ApiFetcher(FetchStrategy):
    """Fetcher for JSON API sources (GET query or POST body pagination)."""

    def connection_url(self, source: SourceConfig) -> str:
        return source.api.endpoint if source.api else source.base_url

    def build_request(self, source: SourceConfig, page: int) -> tuple[dict, Optional[dict]]:
        """
        Build query params and JSON body for one page.

        Returns:
            Tuple (params, body); body is None for GET
        """
        api = source.api
        paging: dict[str, Any] = {}
        if api.pagination_param:
            paging[api.pagination_param] = pagination_value(api, page)
        if api.page_size_param:
            paging[api.page_size_param] = api.page_size

        params: dict[str, Any] = {}
        if api.auth_type == "api_key":
            api_key = os.getenv(source.api_key_env)
            if not api_key:
                raise SourceAuthError(source.source_id, f"Missing API key: set {source.api_key_env}")
            params[api.api_key_param] = api_key

        if api.method == "POST":
            return params, {**api.params, **paging}

        return {**api.params, **paging, **params}, None

    async def _request_page(self, source: SourceConfig, page: int) -> httpx.Response:
        api = source.api
        params, body = self.build_request(source, page)
        limiter = self.limiter_for(source)

        if body is not None:
            return await self.http_client.post_json(
                api.endpoint, body, limiter=limiter, params=params, headers=api.headers,
            )
        return await self.http_client.get(api.endpoint, limiter=limiter, params=params, headers=api.headers)

    async def fetch(self, source: SourceConfig) -> AsyncIterator[RawRecord]:
        self.errors = []
        api = source.api
        if api is None:
            raise SourceAuthError(source.source_id, "No API configuration for source")

        page = 0
        total = 0

        while True:
            self.logger.debug("fetching_api_page", source=source.source_id, page=page + 1)

            try:
                response = await self._request_page(source, page)
                records = lookup_path(response.json(), api.grants_path)
            except (httpx.HTTPError, json.JSONDecodeError) as e:
                if page == 0:
                    raise fatal_error_for(source, e, api.endpoint) from e
                self.record_error(f"API page {page + 1} failed: {describe_http_error(e)}", api.endpoint)
                break

            if not records:
                break

            for record in records:
                if not isinstance(record, dict):
                    continue
                total += 1
                yield RawRecord(
                    source_id=source.source_id,
                    url=record_url(record, api.endpoint),
                    data=record,
                    content_hash=generate_content_hash(json.dumps(record, sort_keys=True, default=str)),
                    status_code=response.status_code,
                    page=page,
                )

            page += 1

            if not api.pagination_param:
                break
            if page >= MAX_PAGES or total >= MAX_RECORDS:
                self.logger.info("api_safety_cap_reached", source=source.source_id, pages=page, records=total)
                break

        self.logger.info("api_fetch_complete", source=source.source_id, pages=page, records=total)

    async def test_connection(self, source: SourceConfig) -> bool:
        try:
            await self._request_page(source, 0)
        except (httpx.HTTPError, SourceAuthError) as e:
            self.logger.warning("connection_test_failed", source=source.source_id, error=str(e))
            return False
        return True
