"""
Grant deduplication using source keys, fingerprints and fuzzy matching.

Three tiers, strictly ordered, first match wins:
1. Exact key (source_name:source_id) -> update of the existing record
2. Fingerprint of normalized title/sponsor/amounts/deadline -> duplicate
3. Optional fuzzy similarity against known records -> duplicate

Canonical fuzzy weighting: Levenshtein title 0.4, sponsor 0.25,
summary 0.25, same-day deadline 0.1; threshold 0.85.
"""

import hashlib
import re
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Iterable, Optional
from urllib.parse import urlparse

import structlog

from .models import ExtractedGrant, NormalizedGrant

logger = structlog.get_logger(__name__)


TITLE_WEIGHT = 0.4
SPONSOR_WEIGHT = 0.25
SUMMARY_WEIGHT = 0.25
DEADLINE_WEIGHT = 0.1
DEFAULT_FUZZY_THRESHOLD = 0.85


def _fingerprint_text(text: Optional[str]) -> str:
    return re.sub(r"[^a-z0-9]", "", (text or "").lower())


def _format_amount(value: Optional[float]) -> str:
    if not value:
        return ""
    value = float(value)
    return str(int(value)) if value.is_integer() else repr(value)


def generate_fingerprint(
    title: Optional[str],
    sponsor: Optional[str],
    amount_min: Optional[float] = None,
    amount_max: Optional[float] = None,
    deadline: Optional[date] = None,
) -> str:
    """
    Generate the cross-source fingerprint for a grant.

    Fingerprint is based on:
    - title: lower-cased, non-alphanumerics stripped, first 50 chars
    - sponsor: same normalization, first 30 chars
    - amount bounds and the ISO deadline date

    Args:
        title: Grant title
        sponsor: Sponsoring agency/foundation
        amount_min: Minimum award
        amount_max: Maximum award
        deadline: Deadline date

    Returns:
        First 32 hex chars of the SHA-256 digest
    """
    content = "|".join([
        _fingerprint_text(title)[:50],
        _fingerprint_text(sponsor)[:30],
        _format_amount(amount_min),
        _format_amount(amount_max),
        deadline.isoformat() if deadline else "",
    ])

    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:32]


def fingerprint_grant(grant: ExtractedGrant) -> str:
    """Fingerprint of an extracted candidate."""
    return generate_fingerprint(
        grant.title,
        grant.sponsor,
        grant.funding.min,
        grant.funding.max,
        grant.deadline.date,
    )


def generate_content_hash(*parts: Optional[str]) -> str:
    """
    Generate SHA-256 content hash (first 32 hex chars).

    Args:
        *parts: Text fragments concatenated in order (None = "")

    Returns:
        Hex digest prefix
    """
    content = "".join(p or "" for p in parts)
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:32]


def source_key(source_name: str, source_id: str) -> str:
    return f"{source_name}:{source_id}"


# ============= SIMILARITY =============


def levenshtein_similarity(a: str, b: str) -> float:
    """1 - edit_distance / max_len (1.0 for equal strings)."""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0

    previous = list(range(len(a) + 1))
    for i, char_b in enumerate(b, start=1):
        current = [i]
        for j, char_a in enumerate(a, start=1):
            if char_a == char_b:
                current.append(previous[j - 1])
            else:
                current.append(min(previous[j - 1], current[j - 1], previous[j]) + 1)
        previous = current

    return 1.0 - previous[-1] / max(len(a), len(b))


def jaccard_similarity(text1: Optional[str], text2: Optional[str]) -> float:
    """Jaccard index over lower-cased words longer than 2 chars."""
    words1 = {w for w in (text1 or "").lower().split() if len(w) > 2}
    words2 = {w for w in (text2 or "").lower().split() if len(w) > 2}

    if not words1 and not words2:
        return 1.0
    if not words1 or not words2:
        return 0.0

    return len(words1 & words2) / len(words1 | words2)


@dataclass
class DedupCandidate:
    """Fields the fuzzy tier compares."""
    key: str
    title: str
    sponsor: str
    summary: str = ""
    deadline_date: Optional[date] = None

    @classmethod
    def from_extracted(cls, grant: ExtractedGrant) -> "DedupCandidate":
        return cls(
            key=source_key(grant.source_name, grant.source_id),
            title=grant.title or "",
            sponsor=grant.sponsor or "",
            summary=grant.summary or (grant.description or "")[:500],
            deadline_date=grant.deadline.date,
        )

    @classmethod
    def from_normalized(cls, grant: NormalizedGrant) -> "DedupCandidate":
        return cls(
            key=source_key(grant.source_name, grant.source_id),
            title=grant.title,
            sponsor=grant.sponsor,
            summary=grant.summary or "",
            deadline_date=grant.deadline_date,
        )


def calculate_similarity(a: DedupCandidate, b: DedupCandidate) -> float:
    """
    Canonical fuzzy similarity (0..1).

    Weighted Levenshtein similarity of title, sponsor and the first 500
    chars of the summary, plus a same-day deadline bonus.
    """
    title = levenshtein_similarity(a.title.lower(), b.title.lower())
    sponsor = levenshtein_similarity(a.sponsor.lower(), b.sponsor.lower())
    summary = levenshtein_similarity(a.summary.lower()[:500], b.summary.lower()[:500])
    deadline = 1.0 if a.deadline_date and a.deadline_date == b.deadline_date else 0.0

    return (
        title * TITLE_WEIGHT
        + sponsor * SPONSOR_WEIGHT
        + summary * SUMMARY_WEIGHT
        + deadline * DEADLINE_WEIGHT
    )


def calculate_record_similarity(a: NormalizedGrant, b: NormalizedGrant) -> int:
    """
    Five-factor similarity (0..100) between two canonical records.

    Used for reviewing persisted records, not for ingestion-time
    classification: title 40, sponsor 20, funding 20, deadline 10,
    apply URL 10.
    """
    score = jaccard_similarity(a.title, b.title) * 40
    score += jaccard_similarity(a.sponsor, b.sponsor) * 20

    if a.amount_min == b.amount_min and a.amount_max == b.amount_max:
        score += 20
    elif a.amount_min and b.amount_min:
        score += min(a.amount_min, b.amount_min) / max(a.amount_min, b.amount_min) * 10

    if a.deadline_date and b.deadline_date:
        days = abs((a.deadline_date - b.deadline_date).days)
        if days == 0:
            score += 10
        elif days <= 7:
            score += 5

    if a.url == b.url:
        score += 10
    elif urlparse(a.url).hostname and urlparse(a.url).hostname == urlparse(b.url).hostname:
        score += 5

    return round(score)


# ============= CLASSIFICATION =============


class MatchType(str, Enum):
    EXACT = "exact"
    FINGERPRINT = "fingerprint"
    FUZZY = "fuzzy"


class DedupClass(str, Enum):
    NEW = "new"
    UPDATE = "update"
    DUPLICATE = "duplicate"


@dataclass
class DedupeResult:
    """Result of deduplication check."""
    classification: DedupClass
    fingerprint: str
    match_type: Optional[MatchType] = None
    confidence: float = 0.0
    existing_key: Optional[str] = None

    @property
    def is_duplicate(self) -> bool:
        return self.classification == DedupClass.DUPLICATE


class Deduplicator:
    """
    Tiered grant deduplicator.

    Seeded once per run with the store's keys and fingerprints; every
    record accepted during the run is added so that duplicates inside
    the same batch are caught too.
    """

    def __init__(
        self,
        existing_keys: Iterable[str] = (),
        fingerprints: Optional[dict[str, str]] = None,
        candidates: Iterable[DedupCandidate] = (),
        fuzzy_enabled: bool = False,
        fuzzy_threshold: float = DEFAULT_FUZZY_THRESHOLD,
    ):
        """
        Initialize deduplicator.

        Args:
            existing_keys: Known "source_name:source_id" keys
            fingerprints: Known fingerprint -> owning key
            candidates: Known records for the fuzzy tier
            fuzzy_enabled: Enable tier 3
            fuzzy_threshold: Minimum similarity for a fuzzy match
        """
        self._keys: set[str] = set(existing_keys)
        self._fingerprints: dict[str, str] = dict(fingerprints or {})
        self._candidates: dict[str, DedupCandidate] = {c.key: c for c in candidates}
        self.fuzzy_enabled = fuzzy_enabled
        self.fuzzy_threshold = fuzzy_threshold

    @property
    def fingerprints(self) -> set[str]:
        return set(self._fingerprints)

    def owner_of(self, fingerprint: str) -> Optional[str]:
        return self._fingerprints.get(fingerprint)

    def check(self, grant: ExtractedGrant, fingerprint: Optional[str] = None) -> DedupeResult:
        """
        Classify a candidate as new, update or duplicate.

        Args:
            grant: Candidate to check
            fingerprint: Precomputed fingerprint (computed if omitted)

        Returns:
            DedupeResult
        """
        fingerprint = fingerprint or fingerprint_grant(grant)
        key = source_key(grant.source_name, grant.source_id)

        if key in self._keys:
            return DedupeResult(
                classification=DedupClass.UPDATE,
                fingerprint=fingerprint,
                match_type=MatchType.EXACT,
                confidence=1.0,
                existing_key=key,
            )

        owner = self._fingerprints.get(fingerprint)
        if owner is not None and owner != key:
            return DedupeResult(
                classification=DedupClass.DUPLICATE,
                fingerprint=fingerprint,
                match_type=MatchType.FINGERPRINT,
                confidence=0.95,
                existing_key=owner,
            )

        if self.fuzzy_enabled and self._candidates:
            incoming = DedupCandidate.from_extracted(grant)
            best_key, best_score = None, 0.0
            for candidate in self._candidates.values():
                if candidate.key == key:
                    continue
                score = calculate_similarity(incoming, candidate)
                if score > best_score:
                    best_key, best_score = candidate.key, score

            if best_key is not None and best_score >= self.fuzzy_threshold:
                return DedupeResult(
                    classification=DedupClass.DUPLICATE,
                    fingerprint=fingerprint,
                    match_type=MatchType.FUZZY,
                    confidence=round(best_score, 4),
                    existing_key=best_key,
                )

        return DedupeResult(classification=DedupClass.NEW, fingerprint=fingerprint)

    def add(self, grant: ExtractedGrant, fingerprint: Optional[str] = None) -> None:
        """
        Add an accepted record to the index.

        Args:
            grant: Record that was persisted (new or updated)
            fingerprint: Its fingerprint (computed if omitted)
        """
        fingerprint = fingerprint or fingerprint_grant(grant)
        key = source_key(grant.source_name, grant.source_id)

        self._keys.add(key)
        self._fingerprints.setdefault(fingerprint, key)
        if self.fuzzy_enabled:
            self._candidates[key] = DedupCandidate.from_extracted(grant)

        logger.debug("grant_indexed", key=key, fingerprint=fingerprint[:8])

    def classify(self, grant: ExtractedGrant, fingerprint: Optional[str] = None) -> DedupeResult:
        """Check a candidate and index it unless it is a duplicate."""
        result = self.check(grant, fingerprint)
        if not result.is_duplicate:
            self.add(grant, result.fingerprint)
        return result

    def clear(self) -> None:
        self._keys.clear()
        self._fingerprints.clear()
        self._candidates.clear()

    def __len__(self) -> int:
        """Return number of known records."""
        return len(self._keys)
