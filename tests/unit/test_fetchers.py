"""Tests for fetch strategies."""

import json

import httpx
import pytest

from grants_ingest.adapters import ConfiguredAdapter
from grants_ingest.core.errors import SourceAuthError, SourceUnreachableError
from grants_ingest.core.models import CrawlType, RawPage, RawRecord
from grants_ingest.core.selectors import extract_grant_links
from grants_ingest.fetchers import ApiFetcher, FeedFetcher, ScrapeFetcher, get_fetcher_class
from grants_ingest.fetchers.api import lookup_path, pagination_value, record_url
from grants_ingest.fetchers.feed import parse_json_items, parse_xml_items
from grants_ingest.sources.base import ApiConfig, FeedConfig, Selectors


async def collect(fetcher, source):
    return [unit async for unit in fetcher.fetch(source)]


class TestApiHelpers:
    """Tests for API fetcher helpers."""

    def test_lookup_path(self):
        """Test dotted path resolution to the result list."""
        data = {"data": {"results": [{"id": 1}]}}

        assert lookup_path(data, "data.results") == [{"id": 1}]
        assert lookup_path(data, "data.missing") == []
        assert lookup_path([{"id": 2}], None) == [{"id": 2}]
        assert lookup_path({"data": "x"}, "data") == []

    def test_pagination_value(self):
        """Test offset and 1-based page protocols."""
        offset = ApiConfig.from_dict({"endpoint": "https://x", "page_size": 25})
        paged = ApiConfig.from_dict({"endpoint": "https://x", "pagination_mode": "page"})

        assert pagination_value(offset, 2) == 50
        assert pagination_value(paged, 0) == 1

    def test_record_url(self):
        """Test detail URL selection from a record."""
        assert record_url({"link": "https://a.org/1"}, "https://fallback") == "https://a.org/1"
        assert record_url({"url": "/relative"}, "https://fallback") == "https://fallback"


class TestApiFetcher:
    """Tests for ApiFetcher class."""

    @pytest.mark.asyncio
    async def test_paginates_until_empty(self, mock_client, make_source):
        """Test that pages are requested until an empty page."""
        pages = {
            "1": [{"id": "a", "url": "https://api.example.org/g/a"}, {"id": "b"}],
            "2": [{"id": "c"}],
            "3": [],
        }
        seen = []

        def handler(request):
            page = request.url.params["page"]
            seen.append(page)
            return httpx.Response(200, json={"data": pages[page]})

        async with mock_client(handler) as client:
            records = await collect(ApiFetcher(client), make_source())

        assert seen == ["1", "2", "3"]
        assert [r.data["id"] for r in records] == ["a", "b", "c"]
        assert all(isinstance(r, RawRecord) for r in records)
        assert records[0].url == "https://api.example.org/g/a"
        assert records[1].url == "https://api.example.org/grants"
        assert [r.page for r in records] == [0, 0, 1]

    @pytest.mark.asyncio
    async def test_single_request_without_pagination(self, mock_client, make_source):
        """Test that endpoints without a pagination param are requested once."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"data": [{"id": "a"}]})

        source = make_source(api={"endpoint": "https://api.example.org/grants", "grants_path": "data"})
        async with mock_client(handler) as client:
            records = await collect(ApiFetcher(client), source)

        assert len(calls) == 1
        assert len(records) == 1

    @pytest.mark.asyncio
    async def test_post_body_pagination(self, mock_client, make_source):
        """Test offset pagination carried in a POST body."""
        bodies = []

        def handler(request):
            body = json.loads(request.content)
            bodies.append(body)
            hits = [{"id": "1"}, {"id": "2"}] if body["startRecordNum"] == 0 else []
            return httpx.Response(200, json={"oppHits": hits})

        source = make_source(api={
            "endpoint": "https://api.example.org/search",
            "method": "POST",
            "grants_path": "oppHits",
            "pagination_param": "startRecordNum",
            "page_size_param": "rows",
            "page_size": 2,
            "params": {"oppStatuses": "posted"},
        })
        async with mock_client(handler) as client:
            records = await collect(ApiFetcher(client), source)

        assert len(records) == 2
        assert bodies[0] == {"oppStatuses": "posted", "startRecordNum": 0, "rows": 2}
        assert bodies[1]["startRecordNum"] == 2

    @pytest.mark.asyncio
    async def test_api_key_from_env(self, mock_client, make_source, monkeypatch):
        """Test that api_key auth reads {SOURCE_ID}_API_KEY."""
        monkeypatch.setenv("TEST_API_API_KEY", "secret")
        seen = []

        def handler(request):
            seen.append(request.url.params.get("api_key"))
            return httpx.Response(200, json={"data": []})

        source = make_source(api={
            "endpoint": "https://api.example.org/grants",
            "grants_path": "data",
            "auth_type": "api_key",
        })
        async with mock_client(handler) as client:
            await collect(ApiFetcher(client), source)

        assert seen == ["secret"]

    @pytest.mark.asyncio
    async def test_missing_api_key(self, mock_client, make_source, monkeypatch):
        """Test that a missing key is an auth failure."""
        monkeypatch.delenv("TEST_API_API_KEY", raising=False)
        source = make_source(api={"endpoint": "https://api.example.org/grants", "auth_type": "api_key"})

        async with mock_client(lambda request: httpx.Response(200, json=[])) as client:
            with pytest.raises(SourceAuthError):
                await collect(ApiFetcher(client), source)

    @pytest.mark.asyncio
    async def test_first_page_failure_is_fatal(self, mock_client, make_source):
        """Test that a failing first page makes the source unreachable."""
        async with mock_client(lambda request: httpx.Response(503), max_retries=1) as client:
            with pytest.raises(SourceUnreachableError):
                await collect(ApiFetcher(client), make_source())

    @pytest.mark.asyncio
    async def test_first_page_unauthorized(self, mock_client, make_source):
        """Test that 401 on the first page is an auth failure."""
        async with mock_client(lambda request: httpx.Response(401)) as client:
            with pytest.raises(SourceAuthError):
                await collect(ApiFetcher(client), make_source())

    @pytest.mark.asyncio
    async def test_later_page_failure_recorded(self, mock_client, make_source):
        """Test that a failing later page stops pagination with a recoverable error."""

        def handler(request):
            if request.url.params["page"] == "1":
                return httpx.Response(200, json={"data": [{"id": "a"}]})
            return httpx.Response(500)

        async with mock_client(handler, max_retries=1) as client:
            fetcher = ApiFetcher(client)
            records = await collect(fetcher, make_source())

        assert len(records) == 1
        assert len(fetcher.errors) == 1
        assert fetcher.errors[0].recoverable
        assert "HTTP 500" in fetcher.errors[0].message


RSS = """<?xml version="1.0"?>
<rss version="2.0"><channel>
  <item>
    <title>Community Arts Grant</title>
    <link>https://foundation.example.org/grants/arts</link>
    <guid>arts-2025</guid>
    <description>Support for community arts nonprofits.</description>
    <pubDate>Mon, 02 Jun 2025 00:00:00 GMT</pubDate>
    <deadline>2025-09-30</deadline>
  </item>
  <item>
    <title>Youth Program Grant</title>
    <link>https://foundation.example.org/grants/youth</link>
  </item>
</channel></rss>
"""

ATOM = """<?xml version="1.0"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <entry>
    <id>urn:grant:1</id>
    <title>Rural Broadband Grant</title>
    <link rel="alternate" href="https://agency.example.gov/broadband"/>
    <summary>Broadband for rural communities.</summary>
    <updated>2025-05-01T00:00:00Z</updated>
  </entry>
</feed>
"""


class TestFeedParsing:
    """Tests for feed item parsing."""

    def test_rss(self):
        """Test RSS items with a field mapping."""
        feed = FeedConfig.from_dict({"url": "https://x", "field_mapping": {"deadline": "deadline"}})

        items = parse_xml_items(RSS, feed)

        assert len(items) == 2
        assert items[0]["id"] == "arts-2025"
        assert items[0]["title"] == "Community Arts Grant"
        assert items[0]["deadline"] == "2025-09-30"
        # No guid: id falls back to the link
        assert items[1]["id"] == "https://foundation.example.org/grants/youth"

    def test_atom(self):
        """Test Atom entries."""
        feed = FeedConfig.from_dict({"url": "https://x", "format": "atom"})

        items = parse_xml_items(ATOM, feed)

        assert items == [{
            "id": "urn:grant:1",
            "title": "Rural Broadband Grant",
            "link": "https://agency.example.gov/broadband",
            "description": "Broadband for rural communities.",
            "postedDate": "2025-05-01T00:00:00Z",
        }]

    def test_json(self):
        """Test JSON feeds with items path and mapping."""
        feed = FeedConfig.from_dict({
            "url": "https://x",
            "format": "json",
            "items_path": "programs",
            "field_mapping": {"title": "programName"},
        })

        items = parse_json_items({"programs": [{"programName": "Solar Rebate"}, "junk"]}, feed)

        assert items == [{"programName": "Solar Rebate", "title": "Solar Rebate"}]


class TestFeedFetcher:
    """Tests for FeedFetcher class."""

    @pytest.mark.asyncio
    async def test_fetch(self, mock_client, make_source):
        """Test that each feed item becomes a RawRecord."""
        source = make_source(type="feed", api=None, feed={"url": "https://foundation.example.org/feed.xml"})

        async with mock_client(lambda request: httpx.Response(200, text=RSS)) as client:
            records = await collect(FeedFetcher(client), source)

        assert len(records) == 2
        assert records[0].url == "https://foundation.example.org/grants/arts"
        assert records[0].source_id == "test_api"

    @pytest.mark.asyncio
    async def test_unreachable(self, mock_client, make_source):
        """Test that a failing feed is fatal."""
        source = make_source(type="feed", api=None, feed={"url": "https://foundation.example.org/feed.xml"})

        async with mock_client(lambda request: httpx.Response(404)) as client:
            with pytest.raises(SourceUnreachableError):
                await collect(FeedFetcher(client), source)


LISTING = """
<html><body>
  <div class="grant"><a href="/grants/1">Grant one</a></div>
  <div class="grant"><a href="/grants/2">Grant two</a></div>
  <div class="grant"><a href="mailto:info@example.org">Contact</a></div>
</body></html>
"""

DETAIL = """
<html><body>
  <nav>Menu</nav>
  <main>
    <h1>Grant {n}</h1>
    <p class="deadline">Deadline: 09/30/2025</p>
  </main>
</body></html>
"""


class TestExtractGrantLinks:
    """Tests for extract_grant_links function."""

    def test_duplicates_keep_first_seen_order(self):
        """Test that repeated links are collapsed in page order."""
        html = """
        <div class="grant"><a href="/g/2">Two</a></div>
        <div class="grant"><a href="/g/1">One</a></div>
        <div class="grant"><a href="https://portal.example.org/g/2">Two again</a></div>
        <div class="grant"><a href="mailto:grants@example.org">Mail</a></div>
        <div class="grant"><a href="/g/3">Three</a></div>
        <div class="grant"><a href="/g/1">One again</a></div>
        """

        links = extract_grant_links(html, "https://portal.example.org/list", Selectors.from_dict({}))

        assert links == [
            "https://portal.example.org/g/2",
            "https://portal.example.org/g/1",
            "https://portal.example.org/g/3",
        ]


class TestScrapeFetcher:
    """Tests for ScrapeFetcher class."""

    def scrape_source(self, make_source, **overrides):
        data = dict(
            type="scrape",
            api=None,
            base_url="https://state.example.gov",
            listing_urls=["https://state.example.gov/grants"],
            selectors={"grant_list": ".grant", "grant_link": "a", "title": "h1", "deadline": ".deadline"},
            pagination_pattern="?page={page}",
            max_pages=5,
        )
        data.update(overrides)
        return make_source(**data)

    @pytest.mark.asyncio
    async def test_listing_to_details(self, mock_client, make_source):
        """Test discovery, pagination stop and detail page extraction."""
        requested = []

        def handler(request):
            url = str(request.url)
            requested.append(url)
            if "/grants/" in url:
                return httpx.Response(200, text=DETAIL.format(n=url.rsplit("/", 1)[1]))
            return httpx.Response(200, text=LISTING)

        async with mock_client(handler) as client:
            pages = await collect(ScrapeFetcher(client), self.scrape_source(make_source))

        assert [p.url for p in pages] == [
            "https://state.example.gov/grants/1",
            "https://state.example.gov/grants/2",
        ]
        assert all(isinstance(p, RawPage) for p in pages)
        assert pages[0].hints["title"] == "Grant 1"
        assert pages[0].hints["deadline_text"] == "Deadline: 09/30/2025"
        assert "Menu" not in pages[0].text
        # Page 2 repeats page 1's links, so discovery stops there
        assert "https://state.example.gov/grants?page=2" in requested
        assert "https://state.example.gov/grants?page=3" not in requested

    @pytest.mark.asyncio
    async def test_detail_failure_recorded(self, mock_client, make_source):
        """Test that a failing detail page is skipped and recorded."""

        def handler(request):
            url = str(request.url)
            if url.endswith("/grants/2"):
                return httpx.Response(404)
            if "/grants/" in url:
                return httpx.Response(200, text=DETAIL.format(n=1))
            return httpx.Response(200, text=LISTING)

        async with mock_client(handler) as client:
            fetcher = ScrapeFetcher(client)
            pages = await collect(fetcher, self.scrape_source(make_source, pagination_pattern=None))

        assert len(pages) == 1
        assert fetcher.errors[0].url == "https://state.example.gov/grants/2"

    @pytest.mark.asyncio
    async def test_unreachable_listing(self, mock_client, make_source):
        """Test that no reachable listing page is fatal."""
        async with mock_client(lambda request: httpx.Response(500), max_retries=1) as client:
            with pytest.raises(SourceUnreachableError):
                await collect(ScrapeFetcher(client), self.scrape_source(make_source))

    @pytest.mark.asyncio
    async def test_forbidden_listing(self, mock_client, make_source):
        """Test that 403 on the first listing page is an auth failure."""
        async with mock_client(lambda request: httpx.Response(403)) as client:
            with pytest.raises(SourceAuthError):
                await collect(ScrapeFetcher(client), self.scrape_source(make_source))

    @pytest.mark.asyncio
    async def test_record_cap(self, mock_client, make_source, monkeypatch):
        """Test that discovery stops at the record cap and stops paginating."""
        monkeypatch.setattr("grants_ingest.fetchers.scrape.MAX_RECORDS", 3)
        listing = "".join(f'<a class="g" href="/grants/{n}">Grant {n}</a>' for n in range(12))
        requested = []

        def handler(request):
            url = str(request.url)
            requested.append(url)
            if "/grants/" in url:
                return httpx.Response(200, text=DETAIL.format(n=url.rsplit("/", 1)[1]))
            return httpx.Response(200, text=f"<html><body>{listing}</body></html>")

        source = self.scrape_source(make_source, selectors={"grant_list": "a.g"})
        async with mock_client(handler) as client:
            pages = await collect(ScrapeFetcher(client), source)

        assert [p.url for p in pages] == [f"https://state.example.gov/grants/{n}" for n in range(3)]
        assert len([url for url in requested if "/grants/" in url]) == 3
        assert "https://state.example.gov/grants?page=2" not in requested

    @pytest.mark.asyncio
    async def test_page_cap_spans_listing_urls(self, mock_client, make_source):
        """Test that max_pages counts listing pages across all listing URLs."""
        listings = []

        def handler(request):
            if "/grants/" in request.url.path:
                return httpx.Response(200, text=DETAIL.format(n=1))
            listings.append(str(request.url))
            key = request.url.path.strip("/") + request.url.params.get("page", "1")
            return httpx.Response(200, text=f'<a class="g" href="/grants/{key}">Grant</a>')

        source = self.scrape_source(
            make_source,
            listing_urls=["https://state.example.gov/a", "https://state.example.gov/b"],
            selectors={"grant_list": "a.g"},
            max_pages=3,
        )
        async with mock_client(handler) as client:
            pages = await collect(ScrapeFetcher(client), source)

        assert listings == [
            "https://state.example.gov/a",
            "https://state.example.gov/a?page=2",
            "https://state.example.gov/a?page=3",
        ]
        assert len(pages) == 3


class TestConnection:
    """Tests for test_connection on fetchers and adapters."""

    @pytest.mark.asyncio
    async def test_reachable(self, mock_client, make_source):
        """Test that a 2xx answer means the source is reachable."""
        requested = []

        def handler(request):
            requested.append(str(request.url))
            return httpx.Response(200, text="<rss></rss>")

        feed_source = make_source(type="feed", api=None, feed={"url": "https://feeds.example.org/grants.xml"})
        async with mock_client(handler) as client:
            assert await ApiFetcher(client).test_connection(make_source()) is True
            assert await FeedFetcher(client).test_connection(feed_source) is True

        assert requested == ["https://api.example.org/grants?page=1", "https://feeds.example.org/grants.xml"]

    @pytest.mark.asyncio
    async def test_server_error(self, mock_client, make_source):
        """Test that a 5xx after retries means the source is down."""
        scrape_source = make_source(type="scrape", api=None, listing_urls=["https://state.example.gov/grants"])

        async with mock_client(lambda request: httpx.Response(503), max_retries=1) as client:
            assert await ApiFetcher(client).test_connection(make_source()) is False
            assert await ScrapeFetcher(client).test_connection(scrape_source) is False

    @pytest.mark.asyncio
    async def test_transport_error(self, mock_client, make_source):
        """Test that a refused connection means the source is down."""

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with mock_client(handler, max_retries=1) as client:
            assert await ApiFetcher(client).test_connection(make_source()) is False

    @pytest.mark.asyncio
    async def test_missing_api_key(self, mock_client, make_source, monkeypatch):
        """Test that a missing API key fails the check without a request."""
        monkeypatch.delenv("TEST_API_API_KEY", raising=False)
        requested = []

        def handler(request):
            requested.append(request)
            return httpx.Response(200, json={"data": []})

        source = make_source(api={"endpoint": "https://api.example.org/grants", "auth_type": "api_key"})
        async with mock_client(handler) as client:
            assert await ApiFetcher(client).test_connection(source) is False

        assert requested == []

    @pytest.mark.asyncio
    async def test_configured_adapter(self, mock_client, make_source):
        """Test that a configured adapter checks through its fetch strategy."""

        def handler(request):
            status = 200 if request.url.host == "api.example.org" else 500
            return httpx.Response(status, json={"data": []})

        down = make_source(
            source_id="down_api",
            api={"endpoint": "https://down.example.org/grants", "grants_path": "data"},
        )
        async with mock_client(handler, max_retries=1) as client:
            assert await ConfiguredAdapter(make_source(), client).test_connection() is True
            assert await ConfiguredAdapter(down, client).test_connection() is False


class TestFetcherLookup:
    """Tests for fetcher selection."""

    def test_get_fetcher_class(self):
        """Test crawl type to strategy mapping."""
        assert get_fetcher_class(CrawlType.API) is ApiFetcher
        assert get_fetcher_class(CrawlType.SCRAPE) is ScrapeFetcher
        assert get_fetcher_class(CrawlType.FEED) is FeedFetcher
