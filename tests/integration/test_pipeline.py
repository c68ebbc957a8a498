"""Tests for the ingestion orchestrator end to end."""

from datetime import date, datetime, timedelta, timezone

import httpx
import pytest

from grants_ingest.config.loader import Settings
from grants_ingest.core.models import (
    DeadlineType,
    GrantStatus,
    LinkStatus,
    NormalizedGrant,
    RunStatus,
    SourceHealthStatus,
)
from grants_ingest.orchestrator import IngestionOrchestrator
from grants_ingest.sources.registry import SourceRegistry

TODAY = date(2025, 6, 1)
NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

RECORDS = [
    {
        "id": "A1",
        "title": "Rural Broadband Deployment Grant",
        "agency": "Department of Agriculture",
        "description": "Funding for broadband deployment in underserved rural communities across the country.",
        "url": "https://api.example.org/grants/A1",
        "awardFloor": "100000",
        "awardCeiling": "500000",
        "closeDate": "2025-09-01",
        "eligibility": ["Nonprofit", "Tribal"],
        "categories": ["technology"],
    },
    {
        "id": "A2",
        "title": "Clean Water Infrastructure Grant",
        "agency": "Environmental Protection Agency",
        "description": "Supports municipal water system upgrades and lead service line replacement projects.",
        "url": "https://api.example.org/grants/A2",
        "awardCeiling": "2000000",
        "closeDate": "2025-08-15",
        "eligibility": ["Government"],
        "categories": ["environment"],
    },
]


def api_handler(records_by_host, dead_hosts=()):
    """Serve one page of records per host, then an empty page; HEAD is always 200."""

    def handler(request: httpx.Request) -> httpx.Response:
        host = request.url.host
        if host in dead_hosts:
            return httpx.Response(503)
        if request.method == "HEAD":
            return httpx.Response(200)
        page = int(request.url.params.get("page", "1"))
        records = records_by_host.get(host, []) if page == 1 else []
        return httpx.Response(200, json={"data": records})

    return handler


def mirror_source(make_source):
    return make_source(
        source_id="mirror_api",
        name="Mirror API",
        base_url="https://mirror.example.org",
        api={
            "endpoint": "https://mirror.example.org/grants",
            "grants_path": "data",
            "pagination_param": "page",
            "pagination_mode": "page",
        },
    )


def stored_grant(source_id, url, **overrides):
    data = dict(
        source_name="test_api",
        source_id=source_id,
        title=f"Grant {source_id}",
        sponsor="Agency",
        url=url,
        hash_fingerprint=f"fp-{source_id}",
    )
    data.update(overrides)
    return NormalizedGrant(**data)


class TestIngestion:
    """Tests for source runs through the orchestrator."""

    @pytest.mark.asyncio
    async def test_ingests_paged_api(self, store, make_source, mock_client):
        """Test that API pages are fetched until an empty page and persisted."""
        handler = api_handler({"api.example.org": RECORDS})

        async with mock_client(handler) as client:
            orchestrator = IngestionOrchestrator(
                SourceRegistry([make_source()]), store, Settings(), http_client=client,
            )
            result = await orchestrator.run_all(today=TODAY)

        run = result.runs[0]
        assert result.exit_code == 0
        assert run.status == RunStatus.COMPLETED
        assert run.grants_found == 2
        assert run.grants_new == 2
        assert run.pages_scraped == 1
        assert run.errors == []

        stored = store.get_by_key("test_api", "A1")
        assert stored.title == "Rural Broadband Deployment Grant"
        assert stored.sponsor == "Department of Agriculture"
        assert stored.status == GrantStatus.OPEN
        assert stored.deadline_type == DeadlineType.FIXED
        assert stored.deadline_date == date(2025, 9, 1)
        assert stored.amount_max == 500000
        assert "nonprofit" in stored.eligible_entity_types
        assert stored.is_national is True
        assert store.count_active() == 2

    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(self, store, make_source, mock_client):
        """Test that a second run updates the same records instead of adding new ones."""
        handler = api_handler({"api.example.org": RECORDS})

        async with mock_client(handler) as client:
            orchestrator = IngestionOrchestrator(
                SourceRegistry([make_source()]), store, Settings(), http_client=client,
            )
            first = await orchestrator.run_source("test_api", today=TODAY)
            second = await orchestrator.run_source("test_api", today=TODAY)

        assert first.grants_new == 2
        assert second.grants_new == 0
        assert second.grants_updated == 2
        assert second.grants_duplicates == 0
        assert store.count_active() == 2

    @pytest.mark.asyncio
    async def test_cross_source_duplicate(self, store, make_source, mock_client):
        """Test that the same grant from a second source is counted as a duplicate."""
        mirrored = [dict(record, id=f"M-{record['id']}") for record in RECORDS]
        handler = api_handler({"api.example.org": RECORDS, "mirror.example.org": mirrored})
        registry = SourceRegistry([make_source(), mirror_source(make_source)])

        async with mock_client(handler) as client:
            orchestrator = IngestionOrchestrator(registry, store, Settings(), http_client=client)
            await orchestrator.run_source("test_api", today=TODAY)
            mirror = await orchestrator.run_source("mirror_api", today=TODAY)

        assert mirror.status == RunStatus.COMPLETED
        assert mirror.grants_new == 0
        assert mirror.grants_duplicates == 2
        assert store.get_by_key("mirror_api", "M-A1") is None

    @pytest.mark.asyncio
    async def test_failed_source_isolated(self, store, make_source, mock_client):
        """Test that an unreachable source fails alone and the batch exits 1."""
        handler = api_handler({"api.example.org": RECORDS}, dead_hosts={"mirror.example.org"})
        registry = SourceRegistry([make_source(), mirror_source(make_source)])

        async with mock_client(handler) as client:
            orchestrator = IngestionOrchestrator(registry, store, Settings(), http_client=client)
            result = await orchestrator.run_all(["test_api", "mirror_api"], today=TODAY)

        assert [r.source_id for r in result.completed] == ["test_api"]
        assert [r.source_id for r in result.failed] == ["mirror_api"]
        assert result.exit_code == 1
        assert result.to_dict()["grants_new"] == 2

        failed = result.failed[0]
        assert failed.errors[0].recoverable is False
        assert store.list_source_statuses()["mirror_api"].last_status == RunStatus.FAILED

    @pytest.mark.asyncio
    async def test_all_failed_exit_code(self, store, make_source, mock_client):
        """Test that a batch where no source completes exits 2."""
        handler = api_handler({}, dead_hosts={"api.example.org"})

        async with mock_client(handler) as client:
            orchestrator = IngestionOrchestrator(
                SourceRegistry([make_source()]), store, Settings(), http_client=client,
            )
            result = await orchestrator.run_all(today=TODAY)

        assert result.exit_code == 2
        assert store.count_active() == 0

    @pytest.mark.asyncio
    async def test_bad_record_is_recoverable(self, store, make_source, mock_client):
        """Test that a malformed record fails alone and the run still completes."""
        bad = {"id": "BAD", "title": "Broken", "agency": "Agency", "url": "not a url"}
        handler = api_handler({"api.example.org": [*RECORDS, bad]})

        async with mock_client(handler) as client:
            orchestrator = IngestionOrchestrator(
                SourceRegistry([make_source()]), store, Settings(), http_client=client,
            )
            result = await orchestrator.run_all(today=TODAY)

        run = result.runs[0]
        assert run.status == RunStatus.COMPLETED
        assert run.grants_new == 2
        assert run.grants_failed == 1
        assert run.errors[0].recoverable is True
        assert result.exit_code == 1

    @pytest.mark.asyncio
    async def test_past_deadline_stored_closed(self, store, make_source, mock_client):
        """Test that a candidate past its deadline is stored closed."""
        expired = dict(RECORDS[0], id="OLD", closeDate="2025-05-01")
        handler = api_handler({"api.example.org": [expired]})

        async with mock_client(handler) as client:
            orchestrator = IngestionOrchestrator(
                SourceRegistry([make_source()]), store, Settings(), http_client=client,
            )
            run = await orchestrator.run_source("test_api", today=TODAY)

        assert run.grants_expired == 1
        assert store.get_by_key("test_api", "OLD").status == GrantStatus.CLOSED

    @pytest.mark.asyncio
    async def test_progress_events(self, store, make_source, mock_client):
        """Test that progress moves through the stages and ends at 100."""
        events = []
        handler = api_handler({"api.example.org": RECORDS})

        async with mock_client(handler) as client:
            orchestrator = IngestionOrchestrator(
                SourceRegistry([make_source()]), store, Settings(),
                progress=events.append, http_client=client,
            )
            await orchestrator.run_source("test_api", today=TODAY)

        stages = list(dict.fromkeys(e.stage for e in events))
        assert stages == ["fetching", "extracting", "validating", "normalizing", "persisting", "done"]
        assert events[0].percent == 0
        assert events[-1].percent == 100
        assert all(e.source_id == "test_api" for e in events)
        percents = [e.percent for e in events]
        assert percents == sorted(percents)


class TestMaintenance:
    """Tests for the expiry and link verification jobs."""

    def test_expire_grants(self, store, make_source):
        """Test that only open fixed-deadline grants past their date are closed."""
        store.upsert_by_key("test_api", "past", stored_grant(
            "past", "https://example.org/past",
            deadline_type=DeadlineType.FIXED, deadline_date=TODAY - timedelta(days=2),
        ))
        store.upsert_by_key("test_api", "future", stored_grant(
            "future", "https://example.org/future",
            deadline_type=DeadlineType.FIXED, deadline_date=TODAY + timedelta(days=2),
        ))
        store.upsert_by_key("test_api", "rolling", stored_grant(
            "rolling", "https://example.org/rolling", deadline_type=DeadlineType.ROLLING,
        ))
        orchestrator = IngestionOrchestrator(SourceRegistry([make_source()]), store, Settings())

        result = orchestrator.expire_grants(TODAY)

        assert result.processed == 3
        assert result.expired == 1
        assert result.exit_code == 0
        assert store.get_by_key("test_api", "past").status == GrantStatus.CLOSED
        assert store.get_by_key("test_api", "future").status == GrantStatus.OPEN
        assert store.get_by_key("test_api", "rolling").status == GrantStatus.OPEN

        assert orchestrator.expire_grants(TODAY).expired == 0

    @pytest.mark.asyncio
    async def test_verify_links(self, store, make_source, mock_client):
        """Test that live links become active and dead ones broken."""
        store.upsert_by_key("test_api", "live", stored_grant("live", "https://example.org/live"))
        store.upsert_by_key("test_api", "dead", stored_grant("dead", "https://example.org/dead"))

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404 if request.url.path == "/dead" else 200)

        async with mock_client(handler) as client:
            orchestrator = IngestionOrchestrator(
                SourceRegistry([make_source()]), store, Settings(), http_client=client,
            )
            result = await orchestrator.verify_links(now=NOW)

        assert result.processed == 2
        assert result.verified == 1
        assert result.broken == 1
        assert result.exit_code == 0
        assert store.get_by_key("test_api", "live").link_status == LinkStatus.ACTIVE
        assert store.get_by_key("test_api", "dead").link_status == LinkStatus.BROKEN
        assert store.get_by_key("test_api", "dead").last_verified_at is not None

    @pytest.mark.asyncio
    async def test_verify_links_nothing_stale(self, store, make_source, mock_client):
        """Test that recently verified links are not checked again."""
        store.upsert_by_key("test_api", "fresh", stored_grant(
            "fresh", "https://example.org/fresh", last_verified_at=NOW,
        ))

        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        async with mock_client(handler) as client:
            orchestrator = IngestionOrchestrator(
                SourceRegistry([make_source()]), store, Settings(), http_client=client,
            )
            result = await orchestrator.verify_links(now=NOW)

        assert result.processed == 0
        assert result.to_dict()["job"] == "verify_links"

    @pytest.mark.asyncio
    async def test_health_after_run(self, store, make_source, mock_client):
        """Test the health report reflects a completed run."""
        handler = api_handler({"api.example.org": RECORDS})

        async with mock_client(handler) as client:
            orchestrator = IngestionOrchestrator(
                SourceRegistry([make_source()]), store, Settings(), http_client=client,
            )
            await orchestrator.run_source("test_api", today=TODAY)

        report = orchestrator.health_report()

        assert report.active_grants_count == 2
        assert report.last_successful_run is not None
        assert report.sources[0].status == SourceHealthStatus.HEALTHY
        assert report.sources[0].grants_count == 2
