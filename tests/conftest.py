"""Shared fixtures for grants-ingest tests."""

from datetime import date, timedelta

import httpx
import pytest

from grants_ingest.core.http_client import HttpClient
from grants_ingest.core.models import (
    Deadline,
    DeadlineType,
    EligibilityCriteria,
    ExtractedGrant,
    Funding,
    FundingType,
    Geography,
)
from grants_ingest.sources.base import SourceConfig
from grants_ingest.store.sqlite import SQLiteGrantStore

TODAY = date(2025, 6, 1)


def build_grant(**overrides) -> ExtractedGrant:
    """A complete, valid candidate; keyword arguments replace fields."""
    data = dict(
        source_name="grants_gov",
        source_id="100",
        title="Small Business Innovation Grant",
        sponsor="Department of Energy",
        description="Funding for small businesses developing clean energy technology. " * 2,
        summary="Funding for small businesses developing clean energy technology.",
        apply_url="https://www.grants.gov/search-results-detail/100",
        funding=Funding(min=50000, max=250000, text="$50,000 - $250,000", type=FundingType.GRANT),
        deadline=Deadline(type=DeadlineType.FIXED, date=TODAY + timedelta(days=30)),
        geography=Geography(is_national=True),
        eligibility=EligibilityCriteria(entity_types=["small_business"]),
        categories=["energy", "technology"],
        extraction_confidence=85,
    )
    data.update(overrides)
    return ExtractedGrant(**data)


def build_source(**overrides) -> SourceConfig:
    """SourceConfig from a minimal api entry; keyword arguments replace keys."""
    data = {
        "source_id": "test_api",
        "name": "Test API",
        "type": "api",
        "base_url": "https://api.example.org",
        "request_delay_ms": 0,
        "api": {
            "endpoint": "https://api.example.org/grants",
            "grants_path": "data",
            "pagination_param": "page",
            "pagination_mode": "page",
        },
    }
    data.update(overrides)
    return SourceConfig.from_dict(data)


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def make_grant():
    return build_grant


@pytest.fixture
def make_source():
    return build_source


@pytest.fixture
def store(tmp_path):
    """SQLite store in a temporary directory."""
    grant_store = SQLiteGrantStore(str(tmp_path / "grants.db"))
    yield grant_store
    grant_store.close()


@pytest.fixture
def mock_client():
    """Factory for an HttpClient served by an httpx.MockTransport handler."""

    def factory(handler, max_retries: int = 3) -> HttpClient:
        return HttpClient(
            max_retries=max_retries,
            retry_backoff=0,
            retry_max_wait=0,
            transport=httpx.MockTransport(handler),
        )

    return factory
