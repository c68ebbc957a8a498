"""
Deterministic eligibility engine.

Every filter is a pure function of (profile, grant) returning an
explainable verdict. All filters always run, in a fixed order, so the
caller gets the complete set of reasons. Model-assisted matching never
decides eligibility.
"""

import re
from typing import Callable, Iterable, Optional
from urllib.parse import urlparse

from .models import (
    Confidence,
    EligibilityConfig,
    EligibilityResult,
    FullEligibilityResult,
    GrantForEligibility,
    UserProfile,
)
from .taxonomy import (
    CATEGORY_TO_INDUSTRY,
    ENTITY_TO_ELIGIBILITY_TAGS,
    INDUSTRY_EXCLUSION_KEYWORDS,
    INDUSTRY_POSITIVE_KEYWORDS,
    US_STATES,
    contains_keywords,
    count_keyword_matches,
    normalize_state,
)

DEFAULT_CONFIG = EligibilityConfig()

NATIONAL_MARKERS = {"national", "nationwide", "all states", "usa", "united states"}

ENTITY_EXCLUSION_PATTERNS: dict[str, list[str]] = {
    "individual": ["not for individuals", "organizations only", "entities only", "businesses only"],
    "for_profit": ["nonprofits only", "non-profit only", "501(c)(3) only", "not-for-profit only"],
    "small_business": ["large businesses", "corporations only", "enterprises only"],
    "nonprofit": ["for-profit only", "businesses only", "commercial entities"],
}

STATE_EXCLUSION_TEMPLATES = [
    "excluding {state}",
    "except {state}",
    "not available in {state}",
    "does not include {state}",
]

FILTER_ORDER = [
    "GRANT_STATUS",
    "URL_EXISTS",
    "DATA_QUALITY",
    "ENTITY_TYPE",
    "GEOGRAPHY",
    "EXPLICIT_EXCLUSIONS",
    "INDUSTRY_RELEVANCE",
]


def _passed(filter_name: str, confidence: Confidence, details: Optional[dict] = None,
            reason: Optional[str] = None) -> EligibilityResult:
    return EligibilityResult(
        passes=True, reason=reason, filter_name=filter_name, confidence=confidence, details=details,
    )


def _failed(filter_name: str, reason: str, confidence: Confidence = Confidence.HIGH,
            details: Optional[dict] = None) -> EligibilityResult:
    return EligibilityResult(
        passes=False, reason=reason, filter_name=filter_name, confidence=confidence, details=details,
    )


def _normalize_tag(tag: str) -> str:
    return re.sub(r"\s+", " ", re.sub(r"[-_]", " ", tag.lower())).strip()


def _is_valid_url(url: str) -> bool:
    parsed = urlparse(url.strip())
    if not parsed.scheme or not re.match(r"^[a-z][a-z0-9+.\-]*$", parsed.scheme):
        return False
    return bool(parsed.netloc or parsed.path)


# ============= HARD FILTERS =============


def check_grant_status(
    grant: GrantForEligibility,
    config: EligibilityConfig = DEFAULT_CONFIG,
) -> EligibilityResult:
    name = "GRANT_STATUS"
    status = (grant.status or "unknown").lower()

    if status in ("open", "active"):
        return _passed(name, Confidence.HIGH)

    if status in ("closed", "expired"):
        return _failed(name, "Grant is no longer accepting applications")

    if config.allow_unknown_status:
        return _passed(name, Confidence.LOW, reason="Grant status is unknown - verify on original site")

    return _failed(name, "Grant status could not be verified", Confidence.MEDIUM)


def check_url_exists(
    grant: GrantForEligibility,
    config: EligibilityConfig = DEFAULT_CONFIG,
) -> EligibilityResult:
    name = "URL_EXISTS"

    if not grant.url or not grant.url.strip():
        return EligibilityResult(
            passes=not config.require_url,
            reason="Grant has no application URL available",
            filter_name=name,
            confidence=Confidence.HIGH,
        )

    if not _is_valid_url(grant.url):
        return _failed(name, "Grant URL is invalid")

    return _passed(name, Confidence.HIGH)


def check_data_quality(
    grant: GrantForEligibility,
    config: EligibilityConfig = DEFAULT_CONFIG,
) -> EligibilityResult:
    name = "DATA_QUALITY"
    quality_score = grant.quality_score if grant.quality_score is not None else 0.5

    if quality_score < config.min_quality_score:
        return _failed(
            name,
            "Grant data quality is too low for reliable matching",
            details={"qualityScore": quality_score},
        )

    return _passed(name, Confidence.HIGH, {"qualityScore": quality_score})


def check_entity_eligibility(profile: UserProfile, grant: GrantForEligibility) -> EligibilityResult:
    name = "ENTITY_TYPE"

    if not profile.entity_type:
        return _passed(name, Confidence.LOW, {"skipped": "No entity type in profile"})

    grant_tags = grant.eligibility_tags or []
    if not grant_tags:
        return _passed(name, Confidence.MEDIUM, {"note": "Grant has no eligibility restrictions"})

    user_tags = ENTITY_TO_ELIGIBILITY_TAGS.get(profile.entity_type, [])
    grant_normalized = [_normalize_tag(t) for t in grant_tags]

    for user_tag in user_tags:
        user_normalized = _normalize_tag(user_tag)

        if user_normalized in grant_normalized:
            return _passed(name, Confidence.HIGH, {"matchedTag": user_tag})

        for grant_tag in grant_normalized:
            if user_normalized in grant_tag or grant_tag in user_normalized:
                return _passed(name, Confidence.HIGH, {"matchedTag": user_tag, "grantTag": grant_tag})

    display = ", ".join(grant_tags[:3])
    return _failed(
        name,
        f"This grant is for {display}, but your organization type is {profile.entity_type}",
        details={"grantTags": list(grant_tags), "userEntityType": profile.entity_type},
    )


def check_geography_eligibility(profile: UserProfile, grant: GrantForEligibility) -> EligibilityResult:
    name = "GEOGRAPHY"
    locations = grant.locations or []

    if not locations:
        return _passed(name, Confidence.MEDIUM, {"note": "Grant has no location restrictions (assumed national)"})

    def is_national(location: dict) -> bool:
        loc_type = (location.get("type") or "").lower()
        value = (location.get("value") or "").lower()
        return loc_type in ("national", "nationwide") or value in NATIONAL_MARKERS

    if any(is_national(loc) for loc in locations):
        return _passed(name, Confidence.HIGH, {"grantScope": "national"})

    if not profile.state:
        return _passed(name, Confidence.LOW, {"skipped": "No state in profile"})

    user_state = normalize_state(profile.state)
    state_locations = [loc for loc in locations if loc.get("type") == "state"]

    for loc in state_locations:
        grant_state = normalize_state(loc.get("value"))
        if grant_state and user_state and grant_state == user_state:
            return _passed(name, Confidence.HIGH, {"matchedState": user_state})

    if state_locations:
        shown = ", ".join((loc.get("value") or "Unknown") for loc in state_locations[:3])
        return _failed(
            name,
            f"This grant is only available in {shown}, but you're in {profile.state}",
            details={
                "grantStates": [loc.get("value") for loc in state_locations],
                "userState": profile.state,
            },
        )

    return _passed(name, Confidence.LOW, {"note": "Grant has location restrictions but unable to verify match"})


def check_explicit_exclusions(profile: UserProfile, grant: GrantForEligibility) -> EligibilityResult:
    name = "EXPLICIT_EXCLUSIONS"
    text = f"{(grant.eligibility_raw_text or '').lower()} {(grant.description or '').lower()}"

    if profile.entity_type:
        for pattern in ENTITY_EXCLUSION_PATTERNS.get(profile.entity_type, []):
            if pattern in text:
                return _failed(
                    name,
                    f"Grant explicitly excludes {profile.entity_type} organizations",
                    details={"excludedPattern": pattern, "entityType": profile.entity_type},
                )

    if profile.state:
        code = normalize_state(profile.state)
        state_name = US_STATES[code].lower() if code else profile.state.lower()

        for template in STATE_EXCLUSION_TEMPLATES:
            pattern = template.format(state=state_name)
            if pattern in text:
                return _failed(
                    name,
                    f"Grant explicitly excludes {profile.state}",
                    details={"excludedPattern": pattern, "state": profile.state},
                )

    return _passed(name, Confidence.MEDIUM)


def check_industry_relevance(profile: UserProfile, grant: GrantForEligibility) -> EligibilityResult:
    """
    Match the profile's focus areas against the grant.

    Per industry tag: exclusion keywords without any positive keyword
    rule that tag out; otherwise category mapping, fuzzy category name
    and keyword density are tried in turn. The first tag that matches
    passes the filter. A tag ruled out by exclusion keywords does not
    stop the remaining tags from being checked.
    """
    name = "INDUSTRY_RELEVANCE"

    if not profile.industry_tags:
        return _passed(name, Confidence.LOW, {"skipped": "No industry tags in profile"})

    combined = " ".join([
        (grant.title or "").lower(),
        (grant.sponsor or "").lower(),
        (grant.summary or grant.ai_summary or "").lower(),
        (grant.description or "").lower(),
    ])
    categories = grant.categories or []
    excluded: Optional[EligibilityResult] = None

    for industry in profile.industry_tags:
        exclusion_keywords = INDUSTRY_EXCLUSION_KEYWORDS.get(industry, [])
        if exclusion_keywords and contains_keywords(combined, exclusion_keywords):
            positive = INDUSTRY_POSITIVE_KEYWORDS.get(industry, [])
            if not contains_keywords(combined, positive):
                if excluded is None:
                    excluded = _failed(
                        name,
                        f"This grant appears to be for a different industry than {industry}",
                        Confidence.MEDIUM,
                        {"detectedExclusion": True, "userIndustry": industry},
                    )
                continue

        for category in categories:
            if industry in CATEGORY_TO_INDUSTRY.get(category, []):
                return _passed(name, Confidence.HIGH, {"matchedCategory": category, "userIndustry": industry})

            category_lower = category.lower()
            industry_lower = industry.lower().replace("_", " ", 1)
            if industry_lower in category_lower or category_lower in industry_lower:
                return _passed(
                    name, Confidence.HIGH, {"fuzzyMatchedCategory": category, "userIndustry": industry},
                )

        keywords = INDUSTRY_POSITIVE_KEYWORDS.get(industry) or [industry]
        match_count = count_keyword_matches(combined, keywords)

        if match_count >= 2:
            return _passed(name, Confidence.HIGH, {"keywordMatchCount": match_count, "userIndustry": industry})
        if match_count == 1:
            return _passed(name, Confidence.MEDIUM, {"keywordMatchCount": match_count, "userIndustry": industry})

    if excluded is not None:
        return excluded

    focus = ", ".join(profile.industry_tags[:2])
    return _failed(
        name,
        f"This grant doesn't appear to be related to {focus}",
        Confidence.MEDIUM,
        {"userIndustries": list(profile.industry_tags), "grantCategories": list(categories)},
    )


# ============= ENGINE =============


def _filters(
    profile: UserProfile,
    grant: GrantForEligibility,
    config: EligibilityConfig,
) -> list[Callable[[], EligibilityResult]]:
    return [
        lambda: check_grant_status(grant, config),
        lambda: check_url_exists(grant, config),
        lambda: check_data_quality(grant, config),
        lambda: check_entity_eligibility(profile, grant),
        lambda: check_geography_eligibility(profile, grant),
        lambda: check_explicit_exclusions(profile, grant),
        lambda: check_industry_relevance(profile, grant),
    ]


def _suggestions(profile: UserProfile) -> list[str]:
    suggestions = []
    if not profile.entity_type:
        suggestions.append("Add your organization type for more accurate matching")
    if not profile.state:
        suggestions.append("Add your state/location for regional grant matching")
    if not profile.industry_tags:
        suggestions.append("Add your focus areas/industries for better relevance")
    if profile.industry_tags and len(profile.industry_tags) == 1:
        suggestions.append("Add more focus areas to discover additional grants")
    return suggestions[:2]


def evaluate(
    profile: UserProfile,
    grant: GrantForEligibility,
    config: Optional[EligibilityConfig] = None,
) -> FullEligibilityResult:
    """
    Run every filter and aggregate the verdict.

    Args:
        profile: Applicant profile
        grant: Grant view
        config: Filter switches (defaults to HARD_FILTER_CONFIG)

    Returns:
        FullEligibilityResult; eligible only if every filter passes
    """
    config = config or DEFAULT_CONFIG

    results: list[EligibilityResult] = []
    passed: list[str] = []
    failed: list[str] = []
    warnings: list[str] = []
    primary_reason: Optional[str] = None
    lowest = Confidence.HIGH

    for run_filter in _filters(profile, grant, config):
        result = run_filter()
        results.append(result)

        if result.passes:
            passed.append(result.filter_name)
            if result.reason:
                warnings.append(result.reason)
            if result.confidence == Confidence.LOW or (
                result.confidence == Confidence.MEDIUM and lowest == Confidence.HIGH
            ):
                lowest = result.confidence
        else:
            failed.append(result.filter_name)
            if primary_reason is None and result.reason:
                primary_reason = result.reason

    is_eligible = not failed

    return FullEligibilityResult(
        is_eligible=is_eligible,
        confidence_level=lowest if is_eligible else Confidence.HIGH,
        primary_reason=primary_reason,
        all_results=results,
        passed_filters=passed,
        failed_filters=failed,
        warnings=warnings,
        suggestions=_suggestions(profile),
    )


def quick_check(
    profile: UserProfile,
    grant: GrantForEligibility,
    config: Optional[EligibilityConfig] = None,
) -> bool:
    return evaluate(profile, grant, config).is_eligible


def evaluate_many(
    profile: UserProfile,
    grants: Iterable[GrantForEligibility],
    config: Optional[EligibilityConfig] = None,
) -> dict[str, FullEligibilityResult]:
    """Evaluate a batch; results keyed by grant id."""
    return {grant.id: evaluate(profile, grant, config) for grant in grants}


def filter_eligible(
    profile: UserProfile,
    grants: Iterable[GrantForEligibility],
    config: Optional[EligibilityConfig] = None,
) -> dict:
    """
    Split grants into eligible and ineligible.

    Returns:
        Dict with ``eligible`` (grants), ``ineligible`` (dicts with
        ``grant`` and ``reason``) and ``stats`` (total, passed, failed,
        by_filter failure counts)
    """
    eligible: list[GrantForEligibility] = []
    ineligible: list[dict] = []
    by_filter: dict[str, int] = {}
    total = 0

    for grant in grants:
        total += 1
        result = evaluate(profile, grant, config)

        if result.is_eligible:
            eligible.append(grant)
            continue

        ineligible.append({
            "grant": grant,
            "reason": result.primary_reason or "Unknown eligibility issue",
        })
        for filter_name in result.failed_filters:
            by_filter[filter_name] = by_filter.get(filter_name, 0) + 1

    return {
        "eligible": eligible,
        "ineligible": ineligible,
        "stats": {
            "total": total,
            "passed": len(eligible),
            "failed": len(ineligible),
            "by_filter": by_filter,
        },
    }
