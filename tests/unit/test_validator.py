"""Tests for candidate validation and quality scoring."""

import pytest
from datetime import timedelta
from unittest.mock import AsyncMock

from grants_ingest.core.http_client import UrlCheck
from grants_ingest.core.models import (
    Deadline,
    DeadlineType,
    EligibilityCriteria,
    Funding,
    Geography,
    ValidationChecks,
)
from grants_ingest.core.validator import Validator, compute_quality_score, is_http_url


class TestComputeQualityScore:
    """Tests for compute_quality_score function."""

    def test_complete_record(self):
        """Test that every check passing scores 100."""
        checks = ValidationChecks(
            has_title=True,
            has_sponsor=True,
            has_description=True,
            has_apply_url=True,
            apply_url_valid=True,
            has_deadline_or_rolling=True,
            has_funding_info=True,
            has_eligibility_info=True,
            has_geography_info=True,
        )
        assert compute_quality_score(checks) == 100

    def test_penalties(self):
        """Test expired deadline and dead link penalties."""
        checks = ValidationChecks(
            has_title=True,
            has_sponsor=True,
            has_apply_url=True,
            apply_url_valid=False,
            deadline_not_expired=False,
        )
        # 15 + 10 - 20 - 10
        assert compute_quality_score(checks) == 0

    def test_unchecked_link_not_penalized(self):
        """Test that a link that could not be checked loses only its bonus."""
        checks = ValidationChecks(
            has_title=True,
            has_sponsor=True,
            has_apply_url=True,
            apply_url_valid=False,
            apply_url_checked=False,
        )
        assert compute_quality_score(checks) == 25

    def test_clamped(self):
        """Test that the score never goes below zero."""
        checks = ValidationChecks(deadline_not_expired=False)
        assert compute_quality_score(checks) == 0


class TestIsHttpUrl:
    """Tests for is_http_url function."""

    def test_urls(self):
        """Test accepted and rejected URLs."""
        assert is_http_url("https://www.grants.gov/x")
        assert not is_http_url("ftp://example.org/file")
        assert not is_http_url("/relative/path")
        assert not is_http_url(None)


class TestValidator:
    """Tests for Validator class."""

    @pytest.mark.asyncio
    async def test_complete_grant_is_valid(self, make_grant, today):
        """Test that a complete grant passes with a perfect score."""
        result = await Validator().validate(make_grant(), today=today)

        assert result.is_valid
        assert result.quality_score == 100
        assert result.errors == []
        assert result.is_duplicate is False

    @pytest.mark.asyncio
    async def test_missing_required_fields(self, make_grant, today):
        """Test that missing title, sponsor and URL are errors."""
        grant = make_grant(title=None, sponsor="Unknown Sponsor", apply_url=None)

        result = await Validator().validate(grant, today=today)

        assert not result.is_valid
        assert "Missing title" in result.errors
        assert "Missing sponsor" in result.errors
        assert "Missing apply URL" in result.errors

    @pytest.mark.asyncio
    async def test_low_score_rejected(self, make_grant, today):
        """Test that a sparse grant falls below the minimum score."""
        grant = make_grant(
            description="Short.",
            funding=Funding(),
            deadline=Deadline(),
            geography=Geography(),
            eligibility=EligibilityCriteria(),
        )

        result = await Validator(min_quality_score=50).validate(grant, today=today)

        # title 15 + sponsor 10 + url 10
        assert result.quality_score == 35
        assert not result.is_valid
        assert result.errors == []

    @pytest.mark.asyncio
    async def test_expired_deadline_warns(self, make_grant, today):
        """Test that a past deadline is a warning and a penalty."""
        grant = make_grant(deadline=Deadline(type=DeadlineType.FIXED, date=today - timedelta(days=2)))

        result = await Validator().validate(grant, today=today)

        assert result.checks.deadline_not_expired is False
        assert "Grant deadline has passed" in result.warnings
        assert result.quality_score == 80

    @pytest.mark.asyncio
    async def test_rolling_counts_as_deadline(self, make_grant, today):
        """Test that a rolling deadline satisfies the deadline check."""
        grant = make_grant(deadline=Deadline(type=DeadlineType.ROLLING))

        result = await Validator().validate(grant, today=today)

        assert result.checks.has_deadline_or_rolling

    @pytest.mark.asyncio
    async def test_url_checker_broken_link(self, make_grant, today):
        """Test that a dead apply link is reported with its status."""
        checker = AsyncMock(return_value=UrlCheck(url="x", is_valid=False, status=404))

        result = await Validator(url_checker=checker).validate(make_grant(), today=today)

        checker.assert_awaited_once()
        assert result.checks.apply_url_status == 404
        assert "Apply URL returned status 404" in result.warnings
        assert result.quality_score == 80

    @pytest.mark.asyncio
    async def test_url_checker_error(self, make_grant, today):
        """Test that a failing URL check warns without the dead link penalty."""
        checker = AsyncMock(side_effect=RuntimeError("boom"))

        result = await Validator(url_checker=checker).validate(make_grant(), today=today)

        assert "Could not verify apply URL" in result.warnings
        assert result.checks.apply_url_valid is False
        assert result.checks.apply_url_checked is False
        # no live-link bonus, no dead-link penalty
        assert result.quality_score == 90

    @pytest.mark.asyncio
    async def test_duplicate_fingerprint(self, make_grant, today):
        """Test that a known fingerprint marks the candidate duplicate."""
        grant = make_grant()
        first = await Validator().validate(grant, today=today)

        second = await Validator().validate(grant, {first.fingerprint}, today=today)

        assert second.is_duplicate
        assert second.duplicate_of == first.fingerprint
