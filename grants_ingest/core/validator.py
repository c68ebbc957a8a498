"""
Candidate validation and quality scoring.

Checks are independent booleans; the quality score (0-100) rewards
completeness and penalizes expired deadlines and dead links. Duplicate
status against the pre-loaded fingerprint set is resolved here too.
"""

from datetime import date
from typing import Awaitable, Callable, Collection, Optional
from urllib.parse import urlparse

import structlog

from .deduplicator import fingerprint_grant
from .http_client import UrlCheck
from .models import DeadlineType, ExtractedGrant, ValidationChecks, ValidationResult
from .taxonomy import PLACEHOLDER_SPONSORS, PLACEHOLDER_TITLES

logger = structlog.get_logger(__name__)


MIN_DESCRIPTION_LENGTH = 50
DEFAULT_MIN_QUALITY_SCORE = 30

UrlChecker = Callable[[str], Awaitable[UrlCheck]]


def is_http_url(url: Optional[str]) -> bool:
    if not url:
        return False
    parsed = urlparse(url.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _present(value: Optional[str], placeholders: set[str]) -> bool:
    if not value or not value.strip():
        return False
    return value.strip().lower() not in placeholders


def compute_quality_score(checks: ValidationChecks) -> int:
    """Quality score from check results, clamped to 0..100."""
    score = 0

    # Core fields
    if checks.has_title:
        score += 15
    if checks.has_sponsor:
        score += 10
    if checks.has_description:
        score += 15
    if checks.has_apply_url and checks.apply_url_valid:
        score += 10

    # Supplementary fields
    if checks.has_deadline_or_rolling:
        score += 10
    if checks.has_funding_info:
        score += 15
    if checks.has_eligibility_info:
        score += 15
    if checks.has_geography_info:
        score += 10

    if not checks.deadline_not_expired:
        score -= 20
    if checks.has_apply_url and checks.apply_url_checked and not checks.apply_url_valid:
        score -= 10

    return max(0, min(100, score))


class Validator:
    """
    Validates extracted candidates before normalization.

    Usage:
        validator = Validator(url_checker=http_client.verify_url)
        result = await validator.validate(candidate, existing_fingerprints)
    """

    def __init__(
        self,
        url_checker: Optional[UrlChecker] = None,
        min_quality_score: int = DEFAULT_MIN_QUALITY_SCORE,
    ):
        """
        Initialize validator.

        Args:
            url_checker: Async liveness check; None skips network checks
                and treats a well-formed http(s) URL as live
            min_quality_score: Minimum score for a valid candidate
        """
        self.url_checker = url_checker
        self.min_quality_score = min_quality_score

    async def validate(
        self,
        grant: ExtractedGrant,
        existing_fingerprints: Collection[str] = frozenset(),
        today: Optional[date] = None,
    ) -> ValidationResult:
        """
        Validate one candidate.

        Args:
            grant: Extracted candidate
            existing_fingerprints: Fingerprints already known to the run
            today: Reference date for expiry (defaults to today)

        Returns:
            ValidationResult with checks, score, warnings and errors
        """
        today = today or date.today()
        warnings: list[str] = []
        errors: list[str] = []

        checks = ValidationChecks(
            has_title=_present(grant.title, PLACEHOLDER_TITLES),
            has_sponsor=_present(grant.sponsor, PLACEHOLDER_SPONSORS),
            has_description=len(grant.description or "") >= MIN_DESCRIPTION_LENGTH,
            has_apply_url=bool(grant.apply_url and grant.apply_url.strip()),
            has_deadline_or_rolling=(
                grant.deadline.type != DeadlineType.UNKNOWN
                or grant.deadline.date is not None
                or bool(grant.deadline.text)
            ),
            has_funding_info=bool(grant.funding.min or grant.funding.max or grant.funding.text),
            has_eligibility_info=bool(grant.eligibility.entity_types),
            has_geography_info=bool(grant.geography.is_national or grant.geography.states),
        )

        if checks.has_apply_url:
            await self._check_url(grant.apply_url.strip(), checks, warnings)

        if grant.deadline.date and grant.deadline.date < today:
            checks.deadline_not_expired = False
            warnings.append("Grant deadline has passed")

        if not checks.has_title:
            errors.append("Missing title")
        if not checks.has_sponsor:
            errors.append("Missing sponsor")
        if not checks.has_apply_url:
            errors.append("Missing apply URL")

        quality_score = compute_quality_score(checks)

        fingerprint = fingerprint_grant(grant)
        is_duplicate = fingerprint in existing_fingerprints

        return ValidationResult(
            is_valid=not errors and quality_score >= self.min_quality_score,
            quality_score=quality_score,
            checks=checks,
            fingerprint=fingerprint,
            warnings=warnings,
            errors=errors,
            is_duplicate=is_duplicate,
            duplicate_of=fingerprint if is_duplicate else None,
        )

    async def _check_url(self, url: str, checks: ValidationChecks, warnings: list[str]) -> None:
        if self.url_checker is None:
            checks.apply_url_valid = is_http_url(url)
            return

        try:
            result = await self.url_checker(url)
        except Exception as e:
            logger.warning("url_check_error", url=url, error=str(e))
            checks.apply_url_checked = False
            warnings.append("Could not verify apply URL")
            return

        checks.apply_url_valid = result.is_valid
        checks.apply_url_status = result.status
        if not result.is_valid:
            if result.status is None:
                warnings.append("Could not verify apply URL")
            else:
                warnings.append(f"Apply URL returned status {result.status}")
