"""Tests for canonical record mapping and expiry rules."""

import json
from datetime import date, timedelta

from grants_ingest.core.canonical import normalize_grant
from grants_ingest.core.expiry import find_expired_grants, is_grant_expired, status_for_deadline
from grants_ingest.core.models import (
    Contact,
    Deadline,
    DeadlineType,
    Geography,
    GrantStatus,
    LinkStatus,
    NormalizedGrant,
    ValidationChecks,
    ValidationResult,
)


def validation_for(fingerprint="fp", score=90, url_valid=True):
    return ValidationResult(
        is_valid=True,
        quality_score=score,
        checks=ValidationChecks(apply_url_valid=url_valid),
        fingerprint=fingerprint,
    )


def stored_grant(**overrides):
    data = dict(
        source_name="grants_gov",
        source_id="1",
        title="Grant",
        sponsor="Agency",
        url="https://example.gov/1",
        hash_fingerprint="fp",
        deadline_type=DeadlineType.FIXED,
        deadline_date=date(2025, 5, 30),
        status=GrantStatus.OPEN,
        id=1,
    )
    data.update(overrides)
    return NormalizedGrant(**data)


class TestNormalizeGrant:
    """Tests for normalize_grant function."""

    def test_maps_core_fields(self, make_grant, today):
        """Test the canonical field mapping."""
        record = normalize_grant(make_grant(), validation_for(), today=today)

        assert record.source_name == "grants_gov"
        assert record.source_id == "100"
        assert record.url == "https://www.grants.gov/search-results-detail/100"
        assert record.hash_fingerprint == "fp"
        assert record.amount_min == 50000
        assert record.amount_max == 250000
        assert record.funding_type == "grant"
        assert record.status == GrantStatus.OPEN
        assert record.quality_score == 90
        assert record.link_status == LinkStatus.ACTIVE
        assert record.last_verified_at is not None
        assert record.content_hash

    def test_json_columns(self, make_grant, today):
        """Test that nested fields are JSON-encoded."""
        grant = make_grant(
            geography=Geography(is_national=False, states=["CA", "NV"]),
            contact=Contact(email="grants@example.gov"),
        )

        record = normalize_grant(grant, validation_for(), today=today)

        assert json.loads(record.categories) == ["energy", "technology"]
        assert json.loads(record.locations) == [
            {"state": "CA", "country": "US"},
            {"state": "NV", "country": "US"},
        ]
        assert json.loads(record.eligibility)["tags"] == ["small_business"]
        assert json.loads(record.contact)["email"] == "grants@example.gov"
        assert record.eligible_states == ["CA", "NV"]
        assert record.is_state_specific
        assert not record.is_national

    def test_national_grant(self, make_grant, today):
        """Test that national grants list 'national' as eligible state."""
        record = normalize_grant(make_grant(), validation_for(), today=today)

        assert record.eligible_states == ["national"]
        assert record.contact is None

    def test_expired_on_ingest(self, make_grant, today):
        """Test that a past fixed deadline is stored closed."""
        grant = make_grant(deadline=Deadline(type=DeadlineType.FIXED, date=today - timedelta(days=1)))

        record = normalize_grant(grant, validation_for(), today=today)

        assert record.status == GrantStatus.CLOSED

    def test_source_closed_signal(self, make_grant, today):
        """Test that an upstream closed status wins over a future deadline."""
        record = normalize_grant(make_grant(source_status="closed"), validation_for(), today=today)

        assert record.status == GrantStatus.CLOSED

    def test_unverified_link(self, make_grant, today):
        """Test that an unchecked link keeps unknown status."""
        record = normalize_grant(make_grant(), validation_for(url_valid=False), today=today)

        assert record.link_status == LinkStatus.UNKNOWN


class TestExpiry:
    """Tests for expiry rules."""

    def test_rolling_never_expires(self, today):
        """Test that rolling deadlines never expire, whatever the date."""
        assert not is_grant_expired("open", "rolling", today - timedelta(days=400), today)
        assert status_for_deadline(DeadlineType.ROLLING, today - timedelta(days=5), today=today) == GrantStatus.OPEN

    def test_fixed_past_deadline(self, today):
        """Test that a fixed past deadline is expired."""
        assert is_grant_expired(GrantStatus.OPEN, DeadlineType.FIXED, today - timedelta(days=1), today)
        assert not is_grant_expired(GrantStatus.OPEN, DeadlineType.FIXED, today, today)

    def test_closed_is_expired(self, today):
        """Test that closed grants always count as expired."""
        assert is_grant_expired("closed", "rolling", None, today)

    def test_find_expired_grants(self, today):
        """Test the expiry job selection: open, fixed and past deadline only."""
        expired = stored_grant(id=1, deadline_date=today - timedelta(days=2))
        future = stored_grant(id=2, deadline_date=today + timedelta(days=2))
        rolling = stored_grant(id=3, deadline_type=DeadlineType.ROLLING, deadline_date=today - timedelta(days=2))
        unknown = stored_grant(id=4, deadline_type=DeadlineType.UNKNOWN, deadline_date=today - timedelta(days=2))

        result = find_expired_grants([expired, future, rolling, unknown], today)

        assert [g.id for g in result] == [1]
