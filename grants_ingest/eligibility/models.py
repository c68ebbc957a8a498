"""
Input and output types of the eligibility engine.

Inputs are read-only snapshots: a ``UserProfile`` supplied by the
profile subsystem and a ``GrantForEligibility`` view of a persisted
grant. Outputs are recomputed on every evaluation and never cached.
"""

import json
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional

from grants_ingest.core.models import NormalizedGrant

from .taxonomy import HARD_FILTER_CONFIG


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class UserProfile:
    """Applicant attributes relevant to filtering."""

    entity_type: Optional[str] = None
    state: Optional[str] = None
    industry_tags: list[str] = field(default_factory=list)
    certifications: list[str] = field(default_factory=list)
    size_band: Optional[str] = None
    annual_budget: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "UserProfile":
        return cls(
            entity_type=data.get("entity_type"),
            state=data.get("state"),
            industry_tags=list(data.get("industry_tags") or []),
            certifications=list(data.get("certifications") or []),
            size_band=data.get("size_band"),
            annual_budget=data.get("annual_budget"),
        )


@dataclass
class GrantForEligibility:
    """
    Grant fields the filters read.

    ``locations`` entries are ``{"type": ..., "value": ...}`` dicts,
    where type is "national", "state", "county", ...; ``quality_score``
    is on a 0..1 scale.
    """

    id: str
    title: str
    sponsor: str
    summary: Optional[str] = None
    description: Optional[str] = None
    ai_summary: Optional[str] = None
    categories: list[str] = field(default_factory=list)
    eligibility_tags: list[str] = field(default_factory=list)
    eligibility_raw_text: Optional[str] = None
    locations: list[dict] = field(default_factory=list)
    url: Optional[str] = None
    status: Optional[str] = None
    quality_score: Optional[float] = None
    amount_min: Optional[float] = None
    amount_max: Optional[float] = None

    @classmethod
    def from_normalized(cls, grant: NormalizedGrant) -> "GrantForEligibility":
        """
        Build the engine view of a persisted record.

        JSON-encoded columns are decoded; the 0..100 quality score is
        rescaled to 0..1.
        """
        eligibility = _loads(grant.eligibility, {})

        locations: list[dict] = []
        if grant.is_national:
            locations.append({"type": "national"})
        for entry in _loads(grant.locations, []):
            if isinstance(entry, dict) and entry.get("state"):
                locations.append({"type": "state", "value": entry["state"]})

        status = grant.status.value if hasattr(grant.status, "value") else grant.status

        return cls(
            id=str(grant.id) if grant.id is not None else f"{grant.source_name}:{grant.source_id}",
            title=grant.title,
            sponsor=grant.sponsor,
            summary=grant.summary,
            description=grant.description,
            categories=list(_loads(grant.categories, [])),
            eligibility_tags=list(eligibility.get("tags") or []),
            eligibility_raw_text=eligibility.get("raw"),
            locations=locations,
            url=grant.url,
            status=status,
            quality_score=grant.quality_score / 100.0,
            amount_min=grant.amount_min,
            amount_max=grant.amount_max,
        )


def _loads(value: Optional[str], default: Any) -> Any:
    if not value:
        return default
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return default


@dataclass
class EligibilityConfig:
    """Switches for the hard filters."""

    require_url: bool = HARD_FILTER_CONFIG["REQUIRE_URL"]
    allow_unknown_status: bool = HARD_FILTER_CONFIG["ALLOW_UNKNOWN_STATUS"]
    min_quality_score: float = HARD_FILTER_CONFIG["MIN_QUALITY_SCORE"]


@dataclass
class EligibilityResult:
    """Verdict of one filter."""

    passes: bool
    reason: Optional[str]
    filter_name: str
    confidence: Confidence
    details: Optional[dict] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["confidence"] = self.confidence.value
        return data


@dataclass
class FullEligibilityResult:
    """Aggregate verdict over every filter."""

    is_eligible: bool
    confidence_level: Confidence
    primary_reason: Optional[str]
    all_results: list[EligibilityResult]
    passed_filters: list[str]
    failed_filters: list[str]
    warnings: list[str]
    suggestions: list[str]

    def to_dict(self) -> dict:
        return {
            "is_eligible": self.is_eligible,
            "confidence_level": self.confidence_level.value,
            "primary_reason": self.primary_reason,
            "all_results": [r.to_dict() for r in self.all_results],
            "passed_filters": list(self.passed_filters),
            "failed_filters": list(self.failed_filters),
            "warnings": list(self.warnings),
            "suggestions": list(self.suggestions),
        }
