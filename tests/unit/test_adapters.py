"""Tests for source adapters and the adapter registry."""

from datetime import date

import httpx
import pytest

from grants_ingest.adapters import (
    AdapterRegistry,
    ConfiguredAdapter,
    FoundationAdapter,
    GrantsGovAdapter,
    SamGovAdapter,
    SbirAdapter,
    StatePortalAdapter,
    build_adapter_registry,
    create_adapter,
    create_feed_adapter,
)
from grants_ingest.config.loader import Settings, load_sources
from grants_ingest.core.errors import ConfigError, UnknownSourceError
from grants_ingest.core.http_client import HttpClient
from grants_ingest.core.models import CrawlType, DeadlineType, FundingType, RawPage, RawRecord
from grants_ingest.extractors import SelectorExtractor


def raw_record(data, source_id="grants_gov"):
    return RawRecord(source_id=source_id, url="https://api.example.org/search", data=data, content_hash="abc123" * 4)


def raw_page(url="https://grants.example.org/programs/main-street", hints=None):
    return RawPage(
        source_id="portal",
        url=url,
        html="<html><body><h1>Main Street Grant</h1><p>A nationwide program.</p></body></html>",
        text="Main Street Grant A nationwide program.",
        content_hash="h",
        hints=hints or {},
    )


def scrape_source(make_source, **overrides):
    data = dict(type="scrape", api=None, listing_urls=["https://grants.example.org/programs"])
    data.update(overrides)
    return make_source(**data)


class TestGrantsGovAdapter:
    """Tests for GrantsGovAdapter class."""

    @pytest.mark.asyncio
    async def test_normalize(self, make_source):
        """Test mapping of a Grants.gov search hit."""
        source = make_source(
            source_id="grants_gov", adapter="grants_gov", extraction_hints={"date_format": "%m/%d/%Y"},
        )
        adapter = GrantsGovAdapter(source, HttpClient())
        record = {
            "id": "350123",
            "title": "Clean Energy Innovation",
            "agency": "Department of Energy",
            "synopsis": "Support for clean energy demonstration projects.",
            "awardFloor": "50000",
            "awardCeiling": "250000",
            "closeDate": "07/15/2025",
            "openDate": "05/01/2025",
            "eligibleApplicants": ["25 - Nonprofits having a 501(c)(3) status", "12 - Small businesses"],
            "category": ["EN", "Custom"],
            "oppStatus": "posted",
        }

        grant = await adapter.normalize(raw_record(record))

        assert grant.source_name == "grants_gov"
        assert grant.source_id == "350123"
        assert grant.apply_url == "https://www.grants.gov/search-results-detail/350123"
        assert grant.funding.min == 50_000
        assert grant.funding.max == 250_000
        assert grant.funding.text == "$50,000 - $250,000"
        assert grant.funding.type == FundingType.GRANT
        assert grant.deadline.date == date(2025, 7, 15)
        assert grant.posted_date == date(2025, 5, 1)
        assert grant.geography.is_national
        assert grant.eligibility.entity_types == ["nonprofit", "small_business"]
        assert grant.eligibility.sam_required
        assert grant.categories == ["energy", "custom"]
        assert grant.extraction_confidence == 85
        assert grant.source_status == "posted"

    @pytest.mark.asyncio
    async def test_record_without_id(self, make_source):
        """Test that records without an id fall back to the content hash."""
        adapter = GrantsGovAdapter(make_source(source_id="grants_gov"), HttpClient())

        grant = await adapter.normalize(raw_record({"title": "T", "agency": "A"}))

        assert grant.source_id == "abc123abc123abc1"
        assert grant.apply_url == "https://api.example.org/search"


class TestSbirAdapter:
    """Tests for SbirAdapter class."""

    @pytest.mark.asyncio
    async def test_normalize(self, make_source):
        """Test mapping of an SBIR solicitation."""
        adapter = SbirAdapter(make_source(source_id="sbir_gov", adapter="sbir"), HttpClient())
        record = {
            "solicitationId": "DOE-2025-1",
            "solicitationTitle": "Advanced Materials Topics",
            "agency": "DOE",
            "phase1Amount": "200000",
            "phase2Amount": "1100000",
            "closeDate": "2025-08-01",
            "description": "Phase I awards for advanced materials research.",
        }

        grant = await adapter.normalize(raw_record(record, "sbir_gov"))

        assert grant.source_id == "DOE-2025-1"
        assert grant.apply_url == "https://www.sbir.gov/node/DOE-2025-1"
        assert grant.funding.text == "Phase I: $200,000"
        assert grant.funding.max == 1_100_000
        assert grant.eligibility.entity_types == ["small_business"]
        assert grant.eligibility.citizenship_required
        assert grant.categories == ["research", "technology"]
        assert grant.purpose_tags == ["R&D", "innovation"]
        assert grant.extraction_confidence == 90

    @pytest.mark.asyncio
    async def test_default_sponsor(self, make_source):
        """Test the sponsor fallback for multi-agency solicitations."""
        adapter = SbirAdapter(make_source(source_id="sbir_gov"), HttpClient())

        grant = await adapter.normalize(raw_record({"solicitationId": "1", "title": "Topic"}, "sbir_gov"))

        assert grant.sponsor == "Multiple Agencies"


class TestSamGovAdapter:
    """Tests for SamGovAdapter class."""

    @pytest.mark.asyncio
    async def test_normalize(self, make_source):
        """Test mapping of a SAM.gov assistance listing."""
        adapter = SamGovAdapter(make_source(source_id="sam_gov", adapter="sam_gov"), HttpClient())
        record = {
            "cfda": "10.868",
            "title": "Rural Energy for America Program",
            "agency": "Department of Agriculture",
            "subAgency": "Rural Business-Cooperative Service",
            "objectives": "Renewable energy systems and energy efficiency improvements.",
            "applicantEligibility": "Open to small business concerns and nonprofit organizations.",
            "awardRange": "$2,500 to $1,000,000",
            "active": "no",
        }

        grant = await adapter.normalize(raw_record(record, "sam_gov"))

        assert grant.source_id == "10.868"
        assert grant.sponsor == "Department of Agriculture - Rural Business-Cooperative Service"
        assert grant.apply_url == "https://sam.gov/fal/10.868"
        assert grant.funding.min == 2_500
        assert grant.funding.max == 1_000_000
        assert grant.eligibility.entity_types == ["nonprofit", "small_business"]
        assert grant.source_status == "closed"
        assert grant.extraction_confidence == 80

    @pytest.mark.asyncio
    async def test_notice_shape(self, make_source):
        """Test v2 notices: parent path sponsor, link-only description."""
        adapter = SamGovAdapter(make_source(source_id="sam_gov"), HttpClient())
        record = {
            "noticeId": "abc",
            "title": "Logistics Support",
            "fullParentPathName": "DEPT OF DEFENSE.DEFENSE LOGISTICS AGENCY",
            "description": "https://api.sam.gov/prod/opportunities/v1/noticedesc?noticeid=abc",
            "uiLink": "https://sam.gov/opp/abc/view",
            "responseDeadLine": "2025-09-30T17:00:00-04:00",
        }

        grant = await adapter.normalize(raw_record(record, "sam_gov"))

        assert grant.sponsor == "DEPT OF DEFENSE - DEFENSE LOGISTICS AGENCY"
        assert grant.description is None
        assert grant.apply_url == "https://sam.gov/opp/abc/view"
        assert grant.deadline.date == date(2025, 9, 30)


class TestStatePortalAdapter:
    """Tests for StatePortalAdapter class."""

    def test_requires_state(self, make_source):
        """Test that a portal without a state hint is a configuration error."""
        with pytest.raises(ConfigError):
            StatePortalAdapter(scrape_source(make_source, adapter="state_portal"), HttpClient())

    @pytest.mark.asyncio
    async def test_geography_pinned(self, make_source):
        """Test that extracted grants are pinned to the portal state."""
        source = scrape_source(make_source, adapter="state_portal", extraction_hints={"state": "ca"})
        adapter = StatePortalAdapter(source, HttpClient())

        grant = await adapter.normalize(raw_page())

        assert adapter.state == "CA"
        assert grant.geography.states == ["CA"]
        assert grant.geography.is_national is False


class TestFoundationAdapter:
    """Tests for FoundationAdapter class."""

    @pytest.mark.asyncio
    async def test_defaults(self, make_source):
        """Test fixed sponsor and nonprofit default eligibility."""
        source = scrape_source(make_source, name="Ford Foundation", adapter="foundation")
        adapter = FoundationAdapter(source, HttpClient())

        grant = await adapter.normalize(raw_page(hints={"sponsor": "Someone Else"}))

        assert grant.sponsor == "Ford Foundation"
        assert grant.eligibility.entity_types == ["nonprofit"]

    @pytest.mark.asyncio
    async def test_sponsor_hint(self, make_source):
        """Test that the sponsor hint wins over the display name."""
        source = scrape_source(
            make_source, name="Gates", adapter="foundation",
            extraction_hints={"sponsor": "Bill & Melinda Gates Foundation"},
        )

        grant = await FoundationAdapter(source, HttpClient()).normalize(raw_page())

        assert grant.sponsor == "Bill & Melinda Gates Foundation"


RSS = """<?xml version="1.0"?>
<rss version="2.0"><channel>
  <item>
    <guid>nsf-25-501</guid>
    <title>Cyberinfrastructure for Sustained Scientific Innovation</title>
    <link>https://www.nsf.gov/funding/opportunities/nsf-25-501</link>
    <description>Research funding for software and data infrastructure. Deadline: 2025-12-01</description>
  </item>
</channel></rss>"""


class TestFeedAdapter:
    """Tests for create_feed_adapter function."""

    def test_builds_configured_adapter(self):
        """Test the generated source configuration."""
        adapter = create_feed_adapter("nsf", "NSF", "https://www.nsf.gov/rss.xml", HttpClient())

        assert isinstance(adapter, ConfiguredAdapter)
        assert adapter.source.type == CrawlType.FEED
        assert adapter.source.feed.format == "rss"
        assert adapter.source.extraction_hints.sponsor == "NSF"
        assert adapter.source.extraction_hints.national is True

    @pytest.mark.asyncio
    async def test_fetch_and_normalize(self, mock_client):
        """Test a feed adapter end to end over a mock transport."""

        def handler(request):
            return httpx.Response(200, text=RSS)

        async with mock_client(handler) as client:
            adapter = create_feed_adapter(
                "nsf", "National Science Foundation", "https://www.nsf.gov/rss.xml", client,
                field_mapping={}, request_delay_ms=0,
            )
            units = [unit async for unit in adapter.fetch()]
            grant = await adapter.normalize(units[0])

        assert len(units) == 1
        assert adapter.errors == []
        assert grant.source_id == "nsf-25-501"
        assert grant.sponsor == "National Science Foundation"
        assert grant.apply_url == "https://www.nsf.gov/funding/opportunities/nsf-25-501"
        assert grant.geography.is_national


class TestAdapterRegistry:
    """Tests for adapter creation and lookup."""

    def test_create_adapter(self, make_source):
        """Test adapter class selection by name."""
        client = HttpClient()

        assert type(create_adapter(make_source(), client)) is ConfiguredAdapter
        assert isinstance(create_adapter(make_source(adapter="sbir"), client), SbirAdapter)

    def test_unknown_adapter(self, make_source):
        """Test that an unknown adapter name is a configuration error."""
        with pytest.raises(ConfigError, match="unknown adapter"):
            create_adapter(make_source(adapter="nope"), HttpClient())

    def test_catalog_registry(self):
        """Test the registry built from the shipped catalog."""
        registry = build_adapter_registry(load_sources(), HttpClient(), Settings())

        assert isinstance(registry.get("grants_gov"), GrantsGovAdapter)
        assert isinstance(registry.get("california_grants"), StatePortalAdapter)
        assert isinstance(registry.get("ford_foundation"), FoundationAdapter)
        assert type(registry.get("dsire_rebates")) is ConfiguredAdapter
        assert isinstance(registry.get("grants_gov").page_extractor, SelectorExtractor)
        assert registry.enabled()[0].source_id == "grants_gov"
        assert "foundation_directory" not in [a.source_id for a in registry.enabled()]

    def test_lookup_and_toggle(self, make_source):
        """Test get, set_enabled and replacement."""
        client = HttpClient()
        registry = AdapterRegistry([create_adapter(make_source(), client)])

        with pytest.raises(UnknownSourceError):
            registry.get("missing")

        assert registry.set_enabled("test_api", False)
        assert not registry.set_enabled("missing", True)
        assert registry.enabled() == []

        registry.register(create_adapter(make_source(), client))
        assert len(registry) == 1
        assert registry.get("test_api").enabled
