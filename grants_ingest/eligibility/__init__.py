"""
Deterministic eligibility engine.

Filters run in a fixed order over every grant:
GRANT_STATUS -> URL_EXISTS -> DATA_QUALITY -> ENTITY_TYPE -> GEOGRAPHY
-> EXPLICIT_EXCLUSIONS -> INDUSTRY_RELEVANCE

The engine is pure: no I/O, no shared state, identical output for
identical input.
"""

from .engine import (
    FILTER_ORDER,
    check_data_quality,
    check_entity_eligibility,
    check_explicit_exclusions,
    check_geography_eligibility,
    check_grant_status,
    check_industry_relevance,
    check_url_exists,
    evaluate,
    evaluate_many,
    filter_eligible,
    quick_check,
)
from .models import (
    Confidence,
    EligibilityConfig,
    EligibilityResult,
    FullEligibilityResult,
    GrantForEligibility,
    UserProfile,
)

__all__ = [
    "FILTER_ORDER",
    "Confidence",
    "EligibilityConfig",
    "EligibilityResult",
    "FullEligibilityResult",
    "GrantForEligibility",
    "UserProfile",
    "check_data_quality",
    "check_entity_eligibility",
    "check_explicit_exclusions",
    "check_geography_eligibility",
    "check_grant_status",
    "check_industry_relevance",
    "check_url_exists",
    "evaluate",
    "evaluate_many",
    "filter_eligible",
    "quick_check",
]
