"""
Normalization utilities for US grant data.

Handles:
- Date formats (ISO, 07/15/2025, "July 15, 2025")
- Dollar amounts and ranges ($50,000, $10K - $2.5M, "up to $100,000")
- Entity type, category, state and funding/deadline type vocabularies
- Text cleanup and requirement list extraction
"""

import re
from datetime import date, datetime
from typing import Optional, Union

import structlog
from dateutil import parser as date_parser

from grants_ingest.core.models import DeadlineType, FundingType, GrantStatus
from grants_ingest.core.taxonomy import CATEGORY_MAP, ENTITY_TYPE_MAP, FUNDING_TYPES
from grants_ingest.eligibility.taxonomy import normalize_state

logger = structlog.get_logger(__name__)


HTML_ENTITIES = {
    "&nbsp;": " ",
    "&amp;": "&",
    "&lt;": "<",
    "&gt;": ">",
    "&quot;": '"',
    "&#39;": "'",
}

AMOUNT_TOKEN = r"\$?([\d,]+(?:\.\d+)?[KkMm]?)\b"

BULLET_PATTERN = re.compile(r"(?:•|·|‣|\*|-|\d+\.)\s*([^\n•·‣*\-]+)")


def clean_text(text: Optional[str]) -> str:
    """
    Strip HTML tags/entities and collapse whitespace.

    Args:
        text: Raw text or HTML fragment

    Returns:
        Cleaned single-line text ("" for None)
    """
    if not text:
        return ""

    text = re.sub(r"<[^>]*>", "", text)
    for entity, replacement in HTML_ENTITIES.items():
        text = text.replace(entity, replacement)

    return re.sub(r"\s+", " ", text).strip()


def parse_date(
    text: Union[str, date, None],
    date_format: Optional[str] = None,
) -> Optional[date]:
    """
    Parse a date from the formats US grant sources use.

    Supported formats:
    - "2025-07-15" / "2025-07-15T17:00:00Z" (ISO)
    - "07/15/2025" (MM/DD/YYYY)
    - "July 15, 2025" / "Jul 15 2025"
    - anything python-dateutil understands as a fallback

    Args:
        text: Date string (dates/datetimes pass through)
        date_format: Optional strptime format tried first (source hint)

    Returns:
        date or None if parsing fails
    """
    if text is None:
        return None
    if isinstance(text, datetime):
        return text.date()
    if isinstance(text, date):
        return text

    cleaned = text.strip()
    if not cleaned:
        return None

    if date_format:
        try:
            return datetime.strptime(cleaned, date_format).date()
        except ValueError:
            logger.debug("date_format_mismatch", text=cleaned, format=date_format)

    iso_match = re.match(r"^(\d{4})-(\d{1,2})-(\d{1,2})", cleaned)
    if iso_match:
        year, month, day = iso_match.groups()
        try:
            return date(int(year), int(month), int(day))
        except ValueError as e:
            logger.warning("invalid_date", text=cleaned, error=str(e))
            return None

    mdy_match = re.match(r"^(\d{1,2})/(\d{1,2})/(\d{4})$", cleaned)
    if mdy_match:
        month, day, year = mdy_match.groups()
        try:
            return date(int(year), int(month), int(day))
        except ValueError as e:
            logger.warning("invalid_date", text=cleaned, error=str(e))
            return None

    text_match = re.match(r"^([A-Za-z]+)\.?\s+(\d{1,2}),?\s+(\d{4})$", cleaned)
    if text_match:
        month_name, day, year = text_match.groups()
        for fmt in ("%B %d %Y", "%b %d %Y"):
            try:
                return datetime.strptime(f"{month_name} {day} {year}", fmt).date()
            except ValueError:
                continue

    try:
        return date_parser.parse(cleaned).date()
    except (ValueError, OverflowError):
        return None


def parse_amount(value: Union[str, int, float, None]) -> Optional[float]:
    """
    Parse a dollar amount.

    Args:
        value: "$1,500,000", "250K", "2.5M", 5000

    Returns:
        Amount as float or None
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        return float(value)

    cleaned = re.sub(r"[$,\s]", "", value)

    k_match = re.match(r"^(\d+(?:\.\d+)?)[Kk]$", cleaned)
    if k_match:
        return float(k_match.group(1)) * 1_000

    m_match = re.match(r"^(\d+(?:\.\d+)?)[Mm]$", cleaned)
    if m_match:
        return float(m_match.group(1)) * 1_000_000

    try:
        return float(cleaned)
    except ValueError:
        return None


def parse_number(value: Union[str, int, float, None]) -> Optional[float]:
    """Parse a plain number, tolerating $ and thousands separators."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(re.sub(r"[$,]", "", value).strip())
    except ValueError:
        return None


def parse_amount_range(text: Optional[str]) -> tuple[Optional[float], Optional[float]]:
    """
    Extract (min, max) from a funding text.

    - "$10,000 - $50,000", "$10K to $50K" -> both bounds
    - "up to $100,000" -> max only
    - "minimum $5,000", "at least $5,000" -> min only
    - a single amount -> min == max

    Args:
        text: Funding description

    Returns:
        Tuple (min, max), either may be None
    """
    if not text:
        return None, None

    range_match = re.search(
        AMOUNT_TOKEN + r"\s*(?:-|to|–)\s*" + AMOUNT_TOKEN, text, re.IGNORECASE
    )
    if range_match:
        return parse_amount(range_match.group(1)), parse_amount(range_match.group(2))

    up_to = re.search(r"up\s+to\s+" + AMOUNT_TOKEN, text, re.IGNORECASE)
    if up_to:
        return None, parse_amount(up_to.group(1))

    minimum = re.search(r"(?:minimum|at\s+least)\s+" + AMOUNT_TOKEN, text, re.IGNORECASE)
    if minimum:
        return parse_amount(minimum.group(1)), None

    single = re.search(AMOUNT_TOKEN, text)
    if single:
        amount = parse_amount(single.group(1))
        return amount, amount

    return None, None


def normalize_funding_type(value: Optional[str]) -> FundingType:
    if not value:
        return FundingType.UNKNOWN
    lowered = value.strip().lower().replace("-", "_").replace(" ", "_")
    if lowered in FUNDING_TYPES:
        return FundingType(lowered)
    return FundingType.UNKNOWN


def normalize_deadline_type(value: Optional[str]) -> DeadlineType:
    if not value:
        return DeadlineType.UNKNOWN
    lowered = value.strip().lower()
    if lowered == "fixed":
        return DeadlineType.FIXED
    if lowered in ("rolling", "ongoing", "open"):
        return DeadlineType.ROLLING
    return DeadlineType.UNKNOWN


def normalize_states(values: Optional[list[str]]) -> list[str]:
    """Map state codes/names to unique 2-letter codes, dropping unknowns."""
    states: list[str] = []
    for value in values or []:
        code = normalize_state(value)
        if code and code not in states:
            states.append(code)
    return states


def normalize_entity_types(
    values: Optional[list[str]],
    mapping: Optional[dict[str, str]] = None,
) -> list[str]:
    """
    Fold free-text applicant types into canonical entity types.

    Args:
        values: Raw applicant type strings
        mapping: Source-specific overrides (raw lower-case -> canonical)

    Returns:
        Unique canonical entity types, unknown values dropped
    """
    overrides = {k.lower(): v for k, v in (mapping or {}).items()}
    result: list[str] = []

    for value in values or []:
        lowered = value.strip().lower()
        canonical = overrides.get(lowered)
        if canonical is None:
            for entity_type, synonyms in ENTITY_TYPE_MAP.items():
                if lowered == entity_type or lowered in synonyms:
                    canonical = entity_type
                    break
        if canonical and canonical not in result:
            result.append(canonical)

    return result


def normalize_categories(
    values: Optional[list[str]],
    mapping: Optional[dict[str, str]] = None,
) -> list[str]:
    """Fold category labels into canonical categories; unknown labels pass through lower-cased."""
    overrides = {k.lower(): v for k, v in (mapping or {}).items()}
    result: list[str] = []

    for value in values or []:
        lowered = value.strip().lower()
        if not lowered:
            continue
        canonical = overrides.get(lowered)
        if canonical is None:
            canonical = lowered
            for category, synonyms in CATEGORY_MAP.items():
                if lowered == category or lowered in synonyms:
                    canonical = category
                    break
        if canonical not in result:
            result.append(canonical)

    return result


def determine_status(
    raw_status: Optional[str],
    open_date: Optional[date],
    close_date: Optional[date],
    today: Optional[date] = None,
) -> GrantStatus:
    """
    Derive grant status from an upstream status string and dates.

    An explicit upstream status wins over the dates.
    """
    today = today or date.today()

    if raw_status:
        lowered = raw_status.lower()
        if any(word in lowered for word in ("closed", "expired", "archived")):
            return GrantStatus.CLOSED
        if any(word in lowered for word in ("forecast", "upcoming", "anticipated")):
            return GrantStatus.FORECASTED

    if close_date and close_date < today:
        return GrantStatus.CLOSED
    if open_date and open_date > today:
        return GrantStatus.FORECASTED

    return GrantStatus.OPEN


def extract_requirements(text: Optional[str], limit: int = 10) -> list[str]:
    """Pull bullet/numbered list items (10-200 chars) out of a description."""
    if not text:
        return []

    requirements = []
    for match in BULLET_PATTERN.finditer(text):
        item = clean_text(match.group(1))
        if 10 < len(item) < 200:
            requirements.append(item)

    return requirements[:limit]
