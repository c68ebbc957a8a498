"""
Data models for the grants ingestion pipeline.

Covers every record that flows between pipeline stages:
RawPage/RawRecord (fetch) -> ExtractedGrant (extract) ->
ValidationResult (validate) -> NormalizedGrant (persist), plus the
run audit records (IngestionRunStats, IngestionError, PipelineProgress).

Identity convention: ``source_name`` is the catalog id of the source
(e.g. ``grants_gov``) and ``source_id`` is the record's id inside that
source. Together they form the upsert key.
"""

from dataclasses import dataclass, field, asdict, fields
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional, Union


class CrawlType(str, Enum):
    """How a source is crawled."""
    API = "api"
    SCRAPE = "scrape"
    FEED = "feed"


class FundingType(str, Enum):
    GRANT = "grant"
    LOAN = "loan"
    REBATE = "rebate"
    TAX_CREDIT = "tax_credit"
    FORGIVABLE_LOAN = "forgivable_loan"
    UNKNOWN = "unknown"


class DeadlineType(str, Enum):
    FIXED = "fixed"  # Specific closing date
    ROLLING = "rolling"  # No fixed date, never expires
    UNKNOWN = "unknown"


class GrantStatus(str, Enum):
    """Lifecycle status of a persisted grant (open -> closed is one-way)."""
    FORECASTED = "forecasted"
    OPEN = "open"
    CLOSED = "closed"


class LinkStatus(str, Enum):
    ACTIVE = "active"
    BROKEN = "broken"
    UNKNOWN = "unknown"


class RunStatus(str, Enum):
    """Outcome of one source run."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class RunState(str, Enum):
    """Per-source state machine used by the orchestrator."""
    PENDING = "pending"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    VALIDATING = "validating"
    NORMALIZING = "normalizing"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


class SourceHealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    FAILED = "failed"
    NEVER_RUN = "never_run"


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def _serialize(value: Any) -> Any:
    """Convert enums/dates recursively into JSON-friendly values."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_serialize(v) for v in value]
    return value


def _shallow_dict(obj: Any) -> dict:
    """asdict() without recursing into nested dataclasses twice."""
    return {f.name: getattr(obj, f.name) for f in fields(obj)}


# ============= FETCH STAGE =============


@dataclass
class RawPage:
    """
    One fetched HTML detail page.

    ``hints`` carries selector pre-extraction results (title, sponsor,
    deadline, amount, description, eligibility) that extraction
    strategies may verify against ``text``.
    """

    source_id: str
    url: str
    html: str
    text: str
    content_hash: str
    status_code: int = 200
    fetched_at: datetime = field(default_factory=utcnow)
    hints: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = _serialize(_shallow_dict(self))
        data.pop("html", None)
        return data


@dataclass
class RawRecord:
    """One element of an API or feed result set."""

    source_id: str
    url: str
    data: dict
    content_hash: str
    status_code: int = 200
    fetched_at: datetime = field(default_factory=utcnow)
    page: int = 0

    def to_dict(self) -> dict:
        return _serialize(_shallow_dict(self))


RawUnit = Union[RawPage, RawRecord]


# ============= EXTRACT STAGE =============


@dataclass
class Funding:
    min: Optional[float] = None
    max: Optional[float] = None
    text: Optional[str] = None
    type: FundingType = FundingType.UNKNOWN

    def has_info(self) -> bool:
        return self.min is not None or self.max is not None or bool(self.text)


@dataclass
class Deadline:
    type: DeadlineType = DeadlineType.UNKNOWN
    date: Optional[date] = None
    text: Optional[str] = None


@dataclass
class Geography:
    is_national: bool = False
    states: list[str] = field(default_factory=list)
    is_local_only: bool = False
    service_area_text: Optional[str] = None


@dataclass
class EligibilityCriteria:
    entity_types: list[str] = field(default_factory=list)
    industries: list[str] = field(default_factory=list)
    restrictions: list[str] = field(default_factory=list)
    requirements: list[str] = field(default_factory=list)
    budget_min: Optional[float] = None
    budget_max: Optional[float] = None
    citizenship_required: bool = False
    sam_required: bool = False
    rural_only: bool = False
    urban_only: bool = False
    raw_text: Optional[str] = None


@dataclass
class Requirements:
    documents: list[str] = field(default_factory=list)
    certifications: list[str] = field(default_factory=list)
    registrations: list[str] = field(default_factory=list)
    other: list[str] = field(default_factory=list)

    def flatten(self) -> list[str]:
        return [*self.documents, *self.certifications, *self.registrations, *self.other]


@dataclass
class Contact:
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    agency: Optional[str] = None

    def is_empty(self) -> bool:
        return not any((self.name, self.email, self.phone, self.agency))


@dataclass
class ExtractedGrant:
    """
    Structured candidate produced by an extraction strategy.

    Absent facts stay ``None``/empty; nothing here is inferred.
    """

    source_name: str
    source_id: str
    title: Optional[str] = None
    sponsor: Optional[str] = None
    description: Optional[str] = None
    summary: Optional[str] = None
    apply_url: Optional[str] = None
    source_url: Optional[str] = None

    funding: Funding = field(default_factory=Funding)
    deadline: Deadline = field(default_factory=Deadline)
    posted_date: Optional[date] = None
    geography: Geography = field(default_factory=Geography)
    eligibility: EligibilityCriteria = field(default_factory=EligibilityCriteria)

    categories: list[str] = field(default_factory=list)
    purpose_tags: list[str] = field(default_factory=list)
    requirements: Requirements = field(default_factory=Requirements)
    contact: Contact = field(default_factory=Contact)

    extraction_confidence: int = 50
    # Explicit status signal reported by the source (e.g. "closed", "forecasted")
    source_status: Optional[str] = None
    raw_text_snapshot: Optional[str] = None
    extracted_at: datetime = field(default_factory=utcnow)

    @property
    def key(self) -> tuple[str, str]:
        return (self.source_name, self.source_id)

    def to_dict(self) -> dict:
        return _serialize(asdict(self))


# ============= VALIDATE STAGE =============


@dataclass
class ValidationChecks:
    has_title: bool = False
    has_sponsor: bool = False
    has_description: bool = False
    has_apply_url: bool = False
    apply_url_valid: bool = False
    apply_url_status: Optional[int] = None
    apply_url_checked: bool = True
    has_deadline_or_rolling: bool = False
    deadline_not_expired: bool = True
    has_funding_info: bool = False
    has_eligibility_info: bool = False
    has_geography_info: bool = False


@dataclass
class ValidationResult:
    is_valid: bool
    quality_score: int
    checks: ValidationChecks
    fingerprint: str
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    is_duplicate: bool = False
    duplicate_of: Optional[str] = None

    def to_dict(self) -> dict:
        return _serialize(asdict(self))


# ============= PERSIST STAGE =============


@dataclass
class NormalizedGrant:
    """
    Canonical persisted grant record.

    Nested/list fields named in the storage contract (categories,
    eligibility, locations, requirements, contact, purpose tags) are
    JSON-encoded strings. ``eligible_*`` lists stay native and are
    serialized by the store.
    """

    source_name: str
    source_id: str
    title: str
    sponsor: str
    url: str
    hash_fingerprint: str

    summary: Optional[str] = None
    description: Optional[str] = None
    categories: str = "[]"
    eligibility: str = "{}"
    locations: str = "[]"
    amount_min: Optional[float] = None
    amount_max: Optional[float] = None
    amount_text: Optional[str] = None
    funding_type: Optional[str] = None
    deadline_type: DeadlineType = DeadlineType.UNKNOWN
    deadline_date: Optional[date] = None
    posted_date: Optional[date] = None
    contact: Optional[str] = None
    requirements: str = "[]"
    requirements_structured: Optional[str] = None
    purpose_tags: str = "[]"

    eligible_entity_types: list[str] = field(default_factory=list)
    eligible_states: list[str] = field(default_factory=list)
    eligible_industries: list[str] = field(default_factory=list)
    min_budget_requirement: Optional[float] = None
    max_budget_requirement: Optional[float] = None
    restricted_to_rural: bool = False
    restricted_to_urban: bool = False
    citizenship_required: bool = False
    sam_registration_required: bool = False
    is_national: bool = False
    is_state_specific: bool = False
    is_local_only: bool = False
    service_area_text: Optional[str] = None

    status: GrantStatus = GrantStatus.OPEN
    duplicate_of: Optional[str] = None
    quality_score: int = 0
    link_status: LinkStatus = LinkStatus.UNKNOWN
    last_verified_at: Optional[datetime] = None
    content_hash: Optional[str] = None

    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.source_name, self.source_id)

    def to_dict(self) -> dict:
        return _serialize(asdict(self))


# ============= RUN AUDIT =============


@dataclass
class IngestionError:
    stage: str
    message: str
    url: Optional[str] = None
    recoverable: bool = True
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return _serialize(asdict(self))


@dataclass
class IngestionRunStats:
    """Audit record for one source run."""

    run_id: str
    source_id: str
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    status: RunStatus = RunStatus.RUNNING
    state: RunState = RunState.PENDING

    pages_scraped: int = 0
    grants_found: int = 0
    grants_new: int = 0
    grants_updated: int = 0
    grants_duplicates: int = 0
    grants_rejected: int = 0
    grants_expired: int = 0
    grants_failed: int = 0
    errors: list[IngestionError] = field(default_factory=list)

    @classmethod
    def start(cls, source_id: str) -> "IngestionRunStats":
        now = utcnow()
        return cls(
            run_id=f"run_{int(now.timestamp() * 1000)}_{source_id}",
            source_id=source_id,
            started_at=now,
        )

    def add_error(
        self,
        stage: str,
        message: str,
        url: Optional[str] = None,
        recoverable: bool = True,
    ) -> IngestionError:
        error = IngestionError(stage=stage, message=message, url=url, recoverable=recoverable)
        self.errors.append(error)
        return error

    @property
    def has_fatal_error(self) -> bool:
        return any(not e.recoverable for e in self.errors)

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict:
        data = _serialize(asdict(self))
        data["duration_seconds"] = self.duration_seconds
        return data


@dataclass
class PipelineProgress:
    """Progress event emitted to the external progress sink."""

    source_id: str
    stage: str
    percent: int
    processed: int = 0
    total: int = 0
    message: str = ""

    def to_dict(self) -> dict:
        return asdict(self)
