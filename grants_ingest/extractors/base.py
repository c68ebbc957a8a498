"""
Extraction strategies and the strict output schema.

Every strategy builds a camelCase payload and passes it through
``validate_extraction``; nothing reaches the validator without
matching ExtractionSchema exactly.
"""

import datetime as dt
import hashlib
from abc import ABC, abstractmethod
from typing import Annotated, Literal, Optional
from urllib.parse import urlparse

import structlog
from pydantic import BaseModel, ConfigDict, Field, StringConstraints, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from grants_ingest.core.errors import ExtractionSchemaError
from grants_ingest.core.models import (
    Contact,
    Deadline,
    DeadlineType,
    EligibilityCriteria,
    ExtractedGrant,
    Funding,
    FundingType,
    Geography,
    RawUnit,
    Requirements,
)
from grants_ingest.sources.base import SourceConfig

logger = structlog.get_logger(__name__)


RAW_TEXT_SNAPSHOT_CHARS = 5000

StateCode = Annotated[str, StringConstraints(pattern=r"^[A-Z]{2}$")]
EntityType = Literal[
    "nonprofit", "small_business", "individual", "for_profit", "educational", "government", "tribal",
]


class _Schema(BaseModel):
    # No type coercion: "yes" is not a bool and "85" is not an int
    model_config = ConfigDict(extra="forbid", strict=True, alias_generator=to_camel, populate_by_name=True)


class FundingSchema(_Schema):
    min: Optional[float] = Field(default=None, ge=0)
    max: Optional[float] = Field(default=None, ge=0)
    text: Optional[str] = None
    type: Literal["grant", "loan", "rebate", "tax_credit", "forgivable_loan", "unknown"]

    @model_validator(mode="after")
    def check_bounds(self) -> "FundingSchema":
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("funding.min exceeds funding.max")
        return self


class DeadlineSchema(_Schema):
    type: Literal["fixed", "rolling", "unknown"]
    date: Optional[dt.date] = Field(default=None, strict=False)
    text: Optional[str] = None


class GeographySchema(_Schema):
    is_national: bool
    states: list[StateCode] = Field(default_factory=list)
    is_local_only: bool = False
    service_area_text: Optional[str] = None


class EligibilitySchema(_Schema):
    entity_types: list[EntityType]
    industries: list[str] = Field(default_factory=list)
    restrictions: list[str] = Field(default_factory=list)
    requirements: list[str] = Field(default_factory=list)
    budget_min: Optional[float] = Field(default=None, ge=0)
    budget_max: Optional[float] = Field(default=None, ge=0)
    citizenship_required: bool = False
    sam_required: bool = False
    rural_only: bool = False
    urban_only: bool = False
    raw_text: Optional[str] = None


class RequirementsSchema(_Schema):
    documents: list[str] = Field(default_factory=list)
    certifications: list[str] = Field(default_factory=list)
    registrations: list[str] = Field(default_factory=list)
    other: list[str] = Field(default_factory=list)


class ContactSchema(_Schema):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    agency: Optional[str] = None


class ExtractionSchema(_Schema):
    """Strict extraction output (camelCase on the wire)."""

    title: str
    sponsor: str
    description: str
    apply_url: str
    funding: FundingSchema
    deadline: DeadlineSchema
    geography: GeographySchema
    eligibility: EligibilitySchema
    categories: list[str]
    extraction_confidence: int = Field(ge=0, le=100)

    summary: Optional[str] = None
    posted_date: Optional[dt.date] = Field(default=None, strict=False)
    purpose_tags: list[str] = Field(default_factory=list)
    requirements: RequirementsSchema = Field(default_factory=RequirementsSchema)
    contact: ContactSchema = Field(default_factory=ContactSchema)
    status: Optional[str] = None

    @field_validator("apply_url")
    @classmethod
    def check_apply_url(cls, value: str) -> str:
        parsed = urlparse(value.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("applyUrl must be an absolute http(s) URL")
        return value.strip()


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def validate_extraction(
    data: dict,
    source_name: str,
    source_id: str,
    source_url: Optional[str] = None,
    raw_text: Optional[str] = None,
) -> ExtractedGrant:
    """
    Validate a camelCase payload and build the ExtractedGrant.

    Args:
        data: Strategy output
        source_name: Source catalog id
        source_id: Record id inside the source
        source_url: Page/record URL the payload came from
        raw_text: Source text, snapshotted on the record

    Returns:
        ExtractedGrant

    Raises:
        ExtractionSchemaError: Payload does not match the schema
    """
    try:
        parsed = ExtractionSchema.model_validate(data)
    except ValidationError as e:
        problems = [
            f"{'.'.join(str(part) for part in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        ]
        raise ExtractionSchemaError(
            f"Schema validation failed for {source_name}:{source_id}", problems=problems,
        ) from e

    funding = parsed.funding
    geography = parsed.geography
    eligibility = parsed.eligibility

    return ExtractedGrant(
        source_name=source_name,
        source_id=source_id,
        title=_blank_to_none(parsed.title),
        sponsor=_blank_to_none(parsed.sponsor),
        description=_blank_to_none(parsed.description),
        summary=_blank_to_none(parsed.summary),
        apply_url=parsed.apply_url,
        source_url=source_url,
        funding=Funding(
            min=funding.min,
            max=funding.max,
            text=_blank_to_none(funding.text),
            type=FundingType(funding.type),
        ),
        deadline=Deadline(
            type=DeadlineType(parsed.deadline.type),
            date=parsed.deadline.date,
            text=_blank_to_none(parsed.deadline.text),
        ),
        posted_date=parsed.posted_date,
        geography=Geography(
            is_national=geography.is_national,
            states=list(dict.fromkeys(geography.states)),
            is_local_only=geography.is_local_only,
            service_area_text=_blank_to_none(geography.service_area_text),
        ),
        eligibility=EligibilityCriteria(
            entity_types=list(dict.fromkeys(eligibility.entity_types)),
            industries=eligibility.industries,
            restrictions=eligibility.restrictions,
            requirements=eligibility.requirements,
            budget_min=eligibility.budget_min,
            budget_max=eligibility.budget_max,
            citizenship_required=eligibility.citizenship_required,
            sam_required=eligibility.sam_required,
            rural_only=eligibility.rural_only,
            urban_only=eligibility.urban_only,
            raw_text=_blank_to_none(eligibility.raw_text),
        ),
        categories=list(dict.fromkeys(parsed.categories)),
        purpose_tags=parsed.purpose_tags,
        requirements=Requirements(**parsed.requirements.model_dump()),
        contact=Contact(**parsed.contact.model_dump()),
        extraction_confidence=parsed.extraction_confidence,
        source_status=_blank_to_none(parsed.status),
        raw_text_snapshot=raw_text[:RAW_TEXT_SNAPSHOT_CHARS] if raw_text else None,
    )


def source_id_from_url(url: str) -> str:
    """Stable record id for page-based sources: sha256(path + query)[:16]."""
    parsed = urlparse(url)
    base = parsed.path + (f"?{parsed.query}" if parsed.query else "")
    return hashlib.sha256((base or url).encode("utf-8")).hexdigest()[:16]


class ExtractionStrategy(ABC):
    """
    Abstract base class for extraction strategies.

    Strategies:
    - ApiRecordExtractor: field mapping for structured API/feed records
    - SelectorExtractor: deterministic, from selector hints and page text
    - LLMExtractor: model-assisted, for unstructured pages
    """

    def __init__(self):
        self.logger = logger.bind(strategy=self.__class__.__name__)

    @abstractmethod
    async def extract(self, unit: RawUnit, source: SourceConfig) -> ExtractedGrant:
        """
        Extract one candidate.

        Args:
            unit: RawPage or RawRecord
            source: Source configuration (for hints)

        Returns:
            Schema-validated ExtractedGrant

        Raises:
            ExtractionError: Strategy produced no record
        """

    def get_strategy_name(self) -> str:
        """Return human-readable strategy name."""
        return self.__class__.__name__
