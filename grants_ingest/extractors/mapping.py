"""
Helpers shared by strategies and adapters for building schema payloads.
"""

import re
from typing import Any, Iterable, Optional

from grants_ingest.core.normalizer import (
    clean_text,
    normalize_deadline_type,
    parse_amount,
    parse_amount_range,
    parse_date,
)
from grants_ingest.core.taxonomy import CATEGORY_MAP, ENTITY_TYPE_MAP

ROLLING_PATTERN = re.compile(
    r"\b(rolling|ongoing|continuous(?:ly)?|open until filled|until funds are (?:exhausted|expended))\b",
    re.IGNORECASE,
)

DATE_IN_TEXT = re.compile(
    r"\b(\d{4}-\d{2}-\d{2}"
    r"|\d{1,2}/\d{1,2}/\d{4}"
    r"|(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Sept|Oct|Nov|Dec)[a-z]*\.?\s+\d{1,2},?\s+\d{4})\b",
)

LIST_SPLIT = re.compile(r"\s*[;,|]\s*")


def lookup(record: dict, key: Optional[str]) -> Any:
    """Value at a dotted key ("agency.name"), or None."""
    if not key:
        return None
    current: Any = record
    for part in key.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def first_value(record: dict, *keys: str) -> Any:
    """First present, non-empty value among keys."""
    for key in keys:
        value = lookup(record, key)
        if value not in (None, "", [], {}):
            return value
    return None


def as_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, dict):
        return None
    if isinstance(value, (list, tuple)):
        value = ", ".join(str(v) for v in value if v not in (None, ""))
    text = clean_text(str(value))
    return text or None


def as_list(value: Any) -> list[str]:
    """Lists pass through; delimited strings are split."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        items = []
        for item in value:
            if isinstance(item, dict):
                item = item.get("description") or item.get("name") or item.get("value")
            if item not in (None, ""):
                items.append(str(item).strip())
        return items
    return [part for part in LIST_SPLIT.split(str(value).strip()) if part]


def find_date(text: Optional[str], date_format: Optional[str] = None):
    """Parse text as a date, or find the first date written inside it."""
    if not text:
        return None
    parsed = parse_date(text, date_format)
    if parsed is not None:
        return parsed
    match = DATE_IN_TEXT.search(text)
    return parse_date(match.group(1)) if match else None


def deadline_payload(
    value: Any,
    date_format: Optional[str] = None,
    deadline_type: Optional[str] = None,
) -> dict:
    """
    Build the deadline object from a date or deadline text.

    A parsed date makes the deadline fixed; rolling wording makes it
    rolling; anything else stays unknown.

    Args:
        value: Date, ISO/US date string or free deadline text
        date_format: Source-specific strptime format
        deadline_type: Explicit upstream type, wins when recognized
    """
    text = as_text(value)
    parsed = find_date(text, date_format) if text else None

    kind = normalize_deadline_type(deadline_type).value
    if kind == "unknown":
        if parsed is not None:
            kind = "fixed"
        elif text and ROLLING_PATTERN.search(text):
            kind = "rolling"

    return {
        "type": kind,
        "date": parsed.isoformat() if parsed else None,
        "text": text,
    }


def funding_payload(
    minimum: Any = None,
    maximum: Any = None,
    text: Optional[str] = None,
    funding_type: str = "unknown",
) -> dict:
    """Funding object; bounds fall back to parsing the text."""
    low = to_amount(minimum)
    high = to_amount(maximum)
    text = as_text(text)

    if low is None and high is None and text:
        low, high = parse_amount_range(text)

    if low is not None and high is not None and low > high:
        low, high = high, low

    return {"min": low, "max": high, "text": text, "type": funding_type}


def _mentions(text: str, phrase: str) -> bool:
    return re.search(r"(?<!\w)" + re.escape(phrase) + r"(?!\w)", text) is not None


def detect_entity_types(text: Optional[str], mapping: Optional[dict] = None) -> list[str]:
    """Entity types named in free eligibility text."""
    if not text:
        return []
    lowered = text.lower()
    found: list[str] = []

    for phrase, canonical in (mapping or {}).items():
        if _mentions(lowered, phrase.lower()) and canonical not in found:
            found.append(canonical)

    for canonical, synonyms in ENTITY_TYPE_MAP.items():
        if canonical in found:
            continue
        if any(_mentions(lowered, s) for s in synonyms if s not in ("state", "business", "city", "person")):
            found.append(canonical)

    return found


def detect_categories(texts: Iterable[Optional[str]]) -> list[str]:
    """Categories whose vocabulary appears in the given texts."""
    lowered = " ".join(t for t in texts if t).lower()
    if not lowered:
        return []
    return [
        category for category, synonyms in CATEGORY_MAP.items()
        if any(_mentions(lowered, s) for s in synonyms)
    ]


def to_amount(value: Any) -> Optional[float]:
    if isinstance(value, (str, int, float)):
        return parse_amount(value)
    return None


def iso_date(value: Any, date_format: Optional[str] = None) -> Optional[str]:
    parsed = find_date(as_text(value), date_format)
    return parsed.isoformat() if parsed else None
