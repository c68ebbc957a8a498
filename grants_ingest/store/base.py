"""
Persistence interface for canonical grant records and run audit data.

The store is the only shared mutable resource of the pipeline. Every
write is scoped to one ``(source_name, source_id)`` key; the
check-then-insert for cross-source duplicates must be atomic inside
the implementation, not left to the caller's fingerprint snapshot.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from datetime import date, datetime
from enum import Enum
from typing import Iterable, Optional

from grants_ingest.core.deduplicator import DedupCandidate
from grants_ingest.core.models import IngestionRunStats, LinkStatus, NormalizedGrant, RunStatus


class UpsertOutcome(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    DUPLICATE = "duplicate"  # Fingerprint owned by another source's record


@dataclass
class SourceStatusRecord:
    """Last-run bookkeeping for one source (health reporting)."""

    source_id: str
    last_run_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    last_status: Optional[RunStatus] = None
    last_error: Optional[str] = None
    last_grants_found: int = 0

    def to_dict(self) -> dict:
        data = asdict(self)
        for name in ("last_run_at", "last_success_at"):
            if data[name] is not None:
                data[name] = data[name].isoformat()
        if self.last_status is not None:
            data["last_status"] = self.last_status.value
        return data


class GrantStore(ABC):
    """
    Abstract grant store.

    Implementations raise StoreUnavailableError when the backing
    storage cannot be reached or written.
    """

    # ============= GRANTS =============

    @abstractmethod
    def upsert_by_key(self, source_name: str, source_id: str, grant: NormalizedGrant) -> UpsertOutcome:
        """
        Insert or update the record for ``(source_name, source_id)``.

        An existing key is updated in place (a closed record stays
        closed). A new key whose fingerprint already belongs to another
        record is not inserted and reported as DUPLICATE.
        """

    @abstractmethod
    def find_existing_fingerprints(self) -> set[str]:
        """Fingerprints of every persisted record."""

    @abstractmethod
    def find_fingerprint_owners(self) -> dict[str, str]:
        """Fingerprint -> "source_name:source_id" of its first owner."""

    @abstractmethod
    def find_existing_keys(self, source_name: Optional[str] = None) -> set[str]:
        """Persisted "source_name:source_id" keys, optionally for one source."""

    @abstractmethod
    def find_dedup_candidates(self, limit: Optional[int] = None) -> list[DedupCandidate]:
        """Non-closed records as fuzzy-dedup candidates."""

    @abstractmethod
    def get_by_key(self, source_name: str, source_id: str) -> Optional[NormalizedGrant]:
        """Record for a key, or None."""

    @abstractmethod
    def find_open_grants(self) -> list[NormalizedGrant]:
        """Records with status open."""

    @abstractmethod
    def mark_closed(self, ids: Iterable[int]) -> int:
        """Close records by id; returns how many changed."""

    @abstractmethod
    def update_link_status(self, grant_id: int, status: LinkStatus, verified_at: datetime) -> None:
        """Store the result of a link re-verification."""

    @abstractmethod
    def find_unverified(self, before: datetime, limit: int = 100) -> list[NormalizedGrant]:
        """Non-closed records never verified or last verified before ``before``, oldest first."""

    @abstractmethod
    def count_active(self) -> int:
        """Number of open records."""

    @abstractmethod
    def count_closed_with_deadline_on(self, day: date) -> int:
        """Closed records whose fixed deadline falls on ``day``."""

    # ============= RUN AUDIT =============

    @abstractmethod
    def record_source_status(
        self,
        source_id: str,
        status: RunStatus,
        at: datetime,
        grants_found: int = 0,
        error: Optional[str] = None,
    ) -> None:
        """Update a source's last-run timestamp and status."""

    @abstractmethod
    def list_source_statuses(self) -> dict[str, SourceStatusRecord]:
        """Last-run bookkeeping keyed by source id."""

    @abstractmethod
    def record_run(self, stats: IngestionRunStats) -> None:
        """Append a finished run to the audit trail."""

    @abstractmethod
    def last_successful_run(self, source_id: Optional[str] = None) -> Optional[datetime]:
        """Completion time of the latest successful run (any source if None)."""

    def close(self) -> None:
        """Release backing resources."""
