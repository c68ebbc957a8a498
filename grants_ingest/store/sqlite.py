"""
SQLite implementation of the grant store.

Handles:
- Schema creation (grants, ingestion_sources, ingestion_runs)
- Atomic upsert by source key with cross-source fingerprint check
- Expiry, link verification and health queries
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

import structlog

from grants_ingest.core.deduplicator import DedupCandidate, source_key
from grants_ingest.core.errors import StoreUnavailableError
from grants_ingest.core.models import (
    DeadlineType,
    GrantStatus,
    IngestionRunStats,
    LinkStatus,
    NormalizedGrant,
    RunStatus,
    utcnow,
)

from .base import GrantStore, SourceStatusRecord, UpsertOutcome

logger = structlog.get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS grants (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source_name TEXT NOT NULL,
    source_id TEXT NOT NULL,
    title TEXT NOT NULL,
    sponsor TEXT NOT NULL,
    url TEXT NOT NULL,
    hash_fingerprint TEXT NOT NULL,
    summary TEXT,
    description TEXT,
    categories TEXT NOT NULL DEFAULT '[]',
    eligibility TEXT NOT NULL DEFAULT '{}',
    locations TEXT NOT NULL DEFAULT '[]',
    amount_min REAL,
    amount_max REAL,
    amount_text TEXT,
    funding_type TEXT,
    deadline_type TEXT NOT NULL DEFAULT 'unknown',
    deadline_date TEXT,
    posted_date TEXT,
    contact TEXT,
    requirements TEXT NOT NULL DEFAULT '[]',
    requirements_structured TEXT,
    purpose_tags TEXT NOT NULL DEFAULT '[]',
    eligible_entity_types TEXT NOT NULL DEFAULT '[]',
    eligible_states TEXT NOT NULL DEFAULT '[]',
    eligible_industries TEXT NOT NULL DEFAULT '[]',
    min_budget_requirement REAL,
    max_budget_requirement REAL,
    restricted_to_rural INTEGER NOT NULL DEFAULT 0,
    restricted_to_urban INTEGER NOT NULL DEFAULT 0,
    citizenship_required INTEGER NOT NULL DEFAULT 0,
    sam_registration_required INTEGER NOT NULL DEFAULT 0,
    is_national INTEGER NOT NULL DEFAULT 0,
    is_state_specific INTEGER NOT NULL DEFAULT 0,
    is_local_only INTEGER NOT NULL DEFAULT 0,
    service_area_text TEXT,
    status TEXT NOT NULL DEFAULT 'open',
    duplicate_of TEXT,
    quality_score INTEGER NOT NULL DEFAULT 0,
    link_status TEXT NOT NULL DEFAULT 'unknown',
    last_verified_at TEXT,
    content_hash TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (source_name, source_id)
);

CREATE INDEX IF NOT EXISTS idx_grants_fingerprint ON grants(hash_fingerprint);
CREATE INDEX IF NOT EXISTS idx_grants_status ON grants(status);
CREATE INDEX IF NOT EXISTS idx_grants_last_verified ON grants(last_verified_at);

CREATE TABLE IF NOT EXISTS ingestion_sources (
    source_id TEXT PRIMARY KEY,
    last_run_at TEXT,
    last_success_at TEXT,
    last_status TEXT,
    last_error TEXT,
    last_grants_found INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS ingestion_runs (
    run_id TEXT PRIMARY KEY,
    source_id TEXT NOT NULL,
    started_at TEXT NOT NULL,
    completed_at TEXT,
    status TEXT NOT NULL,
    state TEXT NOT NULL,
    pages_scraped INTEGER NOT NULL DEFAULT 0,
    grants_found INTEGER NOT NULL DEFAULT 0,
    grants_new INTEGER NOT NULL DEFAULT 0,
    grants_updated INTEGER NOT NULL DEFAULT 0,
    grants_duplicates INTEGER NOT NULL DEFAULT 0,
    grants_rejected INTEGER NOT NULL DEFAULT 0,
    grants_expired INTEGER NOT NULL DEFAULT 0,
    grants_failed INTEGER NOT NULL DEFAULT 0,
    errors TEXT NOT NULL DEFAULT '[]',
    duration_seconds REAL
);

CREATE INDEX IF NOT EXISTS idx_runs_source ON ingestion_runs(source_id, completed_at);
"""

# Every persisted NormalizedGrant field except the autoincrement id
GRANT_COLUMNS = (
    "source_name", "source_id", "title", "sponsor", "url", "hash_fingerprint",
    "summary", "description", "categories", "eligibility", "locations",
    "amount_min", "amount_max", "amount_text", "funding_type",
    "deadline_type", "deadline_date", "posted_date", "contact",
    "requirements", "requirements_structured", "purpose_tags",
    "eligible_entity_types", "eligible_states", "eligible_industries",
    "min_budget_requirement", "max_budget_requirement",
    "restricted_to_rural", "restricted_to_urban", "citizenship_required",
    "sam_registration_required", "is_national", "is_state_specific",
    "is_local_only", "service_area_text", "status", "duplicate_of",
    "quality_score", "link_status", "last_verified_at", "content_hash",
    "created_at", "updated_at",
)

JSON_LIST_COLUMNS = {"eligible_entity_types", "eligible_states", "eligible_industries"}
BOOL_COLUMNS = {
    "restricted_to_rural", "restricted_to_urban", "citizenship_required",
    "sam_registration_required", "is_national", "is_state_specific", "is_local_only",
}
DATE_COLUMNS = {"deadline_date", "posted_date"}
DATETIME_COLUMNS = {"last_verified_at", "created_at", "updated_at"}
ENUM_COLUMNS = {"deadline_type": DeadlineType, "status": GrantStatus, "link_status": LinkStatus}

_UPDATE_ASSIGNMENTS = ", ".join(
    f"{column} = :{column}" for column in GRANT_COLUMNS if column not in ("source_name", "source_id")
)
_INSERT_SQL = (
    f"INSERT INTO grants ({', '.join(GRANT_COLUMNS)}) "
    f"VALUES ({', '.join(':' + column for column in GRANT_COLUMNS)})"
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    """UTC ISO string; naive datetimes are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def grant_to_row(grant: NormalizedGrant) -> dict[str, Any]:
    """NormalizedGrant -> column dict."""
    row: dict[str, Any] = {}
    for column in GRANT_COLUMNS:
        value = getattr(grant, column)
        if column in JSON_LIST_COLUMNS:
            value = json.dumps(value or [], ensure_ascii=False)
        elif column in BOOL_COLUMNS:
            value = int(bool(value))
        elif column in DATE_COLUMNS:
            value = value.isoformat() if value else None
        elif column in DATETIME_COLUMNS:
            value = _iso(value)
        elif column in ENUM_COLUMNS and value is not None:
            value = ENUM_COLUMNS[column](value).value
        row[column] = value
    return row


def row_to_grant(row: sqlite3.Row) -> NormalizedGrant:
    """Column row -> NormalizedGrant."""
    values: dict[str, Any] = {"id": row["id"]}
    for column in GRANT_COLUMNS:
        value = row[column]
        if column in JSON_LIST_COLUMNS:
            value = json.loads(value or "[]")
        elif column in BOOL_COLUMNS:
            value = bool(value)
        elif column in DATE_COLUMNS:
            value = _parse_date(value)
        elif column in DATETIME_COLUMNS:
            value = _parse_datetime(value)
        elif column in ENUM_COLUMNS and value is not None:
            value = ENUM_COLUMNS[column](value)
        values[column] = value
    return NormalizedGrant(**values)


class SQLiteGrantStore(GrantStore):
    """
    Grant store backed by one SQLite database file.

    Usage:
        store = SQLiteGrantStore("grants.db")
        outcome = store.upsert_by_key(grant.source_name, grant.source_id, grant)
        store.close()

    Writes run inside ``BEGIN IMMEDIATE`` so the existence check and the
    insert are atomic across processes sharing the file.
    """

    def __init__(self, path: str = "grants.db", timeout: float = 30.0):
        """
        Open (and create if needed) the database.

        Args:
            path: Database file, or ":memory:"
            timeout: Seconds to wait for a locked database

        Raises:
            StoreUnavailableError: Database cannot be opened or initialized
        """
        self.path = path
        self.timeout = timeout
        self._conn: Optional[sqlite3.Connection] = None

        try:
            if path != ":memory:":
                Path(path).parent.mkdir(parents=True, exist_ok=True)
            self._connect().executescript(SCHEMA)
        except (sqlite3.Error, OSError) as e:
            raise StoreUnavailableError(f"Cannot open grant store {path}: {e}") from e

        logger.info("store_initialized", path=path)

    def _connect(self) -> sqlite3.Connection:
        if self._conn is None:
            try:
                conn = sqlite3.connect(
                    self.path,
                    timeout=self.timeout,
                    isolation_level=None,
                    check_same_thread=False,
                )
            except sqlite3.Error as e:
                raise StoreUnavailableError(f"Cannot connect to {self.path}: {e}") from e
            conn.row_factory = sqlite3.Row
            self._conn = conn
        return self._conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Immediate write transaction; sqlite errors become StoreUnavailableError."""
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Cannot start transaction: {e}") from e

        try:
            yield conn
        except sqlite3.Error as e:
            conn.execute("ROLLBACK")
            logger.error("store_transaction_failed", error=str(e))
            raise StoreUnavailableError(str(e)) from e
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")

    def _query(self, sql: str, params: Iterable[Any] = ()) -> list[sqlite3.Row]:
        try:
            return self._connect().execute(sql, tuple(params)).fetchall()
        except sqlite3.Error as e:
            logger.error("store_query_failed", error=str(e))
            raise StoreUnavailableError(str(e)) from e

    # ============= GRANTS =============

    def upsert_by_key(self, source_name: str, source_id: str, grant: NormalizedGrant) -> UpsertOutcome:
        now = utcnow()
        row = grant_to_row(grant)
        row.update(source_name=source_name, source_id=source_id)
        row["created_at"] = row["created_at"] or _iso(now)
        row["updated_at"] = _iso(now)

        with self._transaction() as conn:
            existing = conn.execute(
                "SELECT id, status, created_at FROM grants WHERE source_name = ? AND source_id = ?",
                (source_name, source_id),
            ).fetchone()

            if existing is not None:
                if existing["status"] == GrantStatus.CLOSED.value:
                    row["status"] = GrantStatus.CLOSED.value
                row["created_at"] = existing["created_at"]
                conn.execute(
                    f"UPDATE grants SET {_UPDATE_ASSIGNMENTS} WHERE id = :id",
                    {**row, "id": existing["id"]},
                )
                return UpsertOutcome.UPDATED

            owner = conn.execute(
                "SELECT source_name, source_id FROM grants WHERE hash_fingerprint = ? LIMIT 1",
                (row["hash_fingerprint"],),
            ).fetchone()
            if owner is not None:
                logger.debug(
                    "upsert_duplicate_fingerprint",
                    key=source_key(source_name, source_id),
                    owner=source_key(owner["source_name"], owner["source_id"]),
                )
                return UpsertOutcome.DUPLICATE

            conn.execute(_INSERT_SQL, row)
            return UpsertOutcome.INSERTED

    def find_existing_fingerprints(self) -> set[str]:
        return {row[0] for row in self._query("SELECT DISTINCT hash_fingerprint FROM grants")}

    def find_fingerprint_owners(self) -> dict[str, str]:
        owners: dict[str, str] = {}
        rows = self._query("SELECT hash_fingerprint, source_name, source_id FROM grants ORDER BY id")
        for row in rows:
            owners.setdefault(row["hash_fingerprint"], source_key(row["source_name"], row["source_id"]))
        return owners

    def find_existing_keys(self, source_name: Optional[str] = None) -> set[str]:
        if source_name is None:
            rows = self._query("SELECT source_name, source_id FROM grants")
        else:
            rows = self._query(
                "SELECT source_name, source_id FROM grants WHERE source_name = ?", (source_name,)
            )
        return {source_key(row["source_name"], row["source_id"]) for row in rows}

    def find_dedup_candidates(self, limit: Optional[int] = None) -> list[DedupCandidate]:
        sql = (
            "SELECT source_name, source_id, title, sponsor, summary, deadline_date "
            "FROM grants WHERE status != ? ORDER BY id"
        )
        params: list[Any] = [GrantStatus.CLOSED.value]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        return [
            DedupCandidate(
                key=source_key(row["source_name"], row["source_id"]),
                title=row["title"],
                sponsor=row["sponsor"],
                summary=row["summary"] or "",
                deadline_date=_parse_date(row["deadline_date"]),
            )
            for row in self._query(sql, params)
        ]

    def get_by_key(self, source_name: str, source_id: str) -> Optional[NormalizedGrant]:
        rows = self._query(
            "SELECT * FROM grants WHERE source_name = ? AND source_id = ? LIMIT 1",
            (source_name, source_id),
        )
        return row_to_grant(rows[0]) if rows else None

    def find_open_grants(self) -> list[NormalizedGrant]:
        rows = self._query("SELECT * FROM grants WHERE status = ? ORDER BY id", (GrantStatus.OPEN.value,))
        return [row_to_grant(row) for row in rows]

    def mark_closed(self, ids: Iterable[int]) -> int:
        changed = 0
        now = _iso(utcnow())
        with self._transaction() as conn:
            for grant_id in ids:
                cursor = conn.execute(
                    "UPDATE grants SET status = ?, updated_at = ? WHERE id = ? AND status != ?",
                    (GrantStatus.CLOSED.value, now, grant_id, GrantStatus.CLOSED.value),
                )
                changed += cursor.rowcount
        return changed

    def update_link_status(self, grant_id: int, status: LinkStatus, verified_at: datetime) -> None:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE grants SET link_status = ?, last_verified_at = ? WHERE id = ?",
                (LinkStatus(status).value, _iso(verified_at), grant_id),
            )

    def find_unverified(self, before: datetime, limit: int = 100) -> list[NormalizedGrant]:
        rows = self._query(
            "SELECT * FROM grants "
            "WHERE status != ? AND (last_verified_at IS NULL OR last_verified_at < ?) "
            "ORDER BY last_verified_at IS NOT NULL, last_verified_at, id LIMIT ?",
            (GrantStatus.CLOSED.value, _iso(before), limit),
        )
        return [row_to_grant(row) for row in rows]

    def count_active(self) -> int:
        rows = self._query("SELECT COUNT(*) FROM grants WHERE status = ?", (GrantStatus.OPEN.value,))
        return rows[0][0]

    def count_closed_with_deadline_on(self, day: date) -> int:
        rows = self._query(
            "SELECT COUNT(*) FROM grants WHERE status = ? AND deadline_type = ? AND deadline_date = ?",
            (GrantStatus.CLOSED.value, DeadlineType.FIXED.value, day.isoformat()),
        )
        return rows[0][0]

    # ============= RUN AUDIT =============

    def record_source_status(
        self,
        source_id: str,
        status: RunStatus,
        at: datetime,
        grants_found: int = 0,
        error: Optional[str] = None,
    ) -> None:
        status = RunStatus(status)
        success_at = _iso(at) if status == RunStatus.COMPLETED else None
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO ingestion_sources (
                    source_id, last_run_at, last_success_at, last_status, last_error, last_grants_found
                )
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(source_id) DO UPDATE SET
                    last_run_at = excluded.last_run_at,
                    last_success_at = COALESCE(excluded.last_success_at, ingestion_sources.last_success_at),
                    last_status = excluded.last_status,
                    last_error = excluded.last_error,
                    last_grants_found = excluded.last_grants_found
                """,
                (source_id, _iso(at), success_at, status.value, error, grants_found),
            )

    def list_source_statuses(self) -> dict[str, SourceStatusRecord]:
        statuses = {}
        for row in self._query("SELECT * FROM ingestion_sources ORDER BY source_id"):
            statuses[row["source_id"]] = SourceStatusRecord(
                source_id=row["source_id"],
                last_run_at=_parse_datetime(row["last_run_at"]),
                last_success_at=_parse_datetime(row["last_success_at"]),
                last_status=RunStatus(row["last_status"]) if row["last_status"] else None,
                last_error=row["last_error"],
                last_grants_found=row["last_grants_found"],
            )
        return statuses

    def record_run(self, stats: IngestionRunStats) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO ingestion_runs (
                    run_id, source_id, started_at, completed_at, status, state,
                    pages_scraped, grants_found, grants_new, grants_updated,
                    grants_duplicates, grants_rejected, grants_expired, grants_failed,
                    errors, duration_seconds
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    stats.run_id,
                    stats.source_id,
                    _iso(stats.started_at),
                    _iso(stats.completed_at),
                    stats.status.value,
                    stats.state.value,
                    stats.pages_scraped,
                    stats.grants_found,
                    stats.grants_new,
                    stats.grants_updated,
                    stats.grants_duplicates,
                    stats.grants_rejected,
                    stats.grants_expired,
                    stats.grants_failed,
                    json.dumps([e.to_dict() for e in stats.errors], ensure_ascii=False),
                    stats.duration_seconds,
                ),
            )

    def last_successful_run(self, source_id: Optional[str] = None) -> Optional[datetime]:
        sql = "SELECT MAX(completed_at) FROM ingestion_runs WHERE status = ?"
        params: list[Any] = [RunStatus.COMPLETED.value]
        if source_id is not None:
            sql += " AND source_id = ?"
            params.append(source_id)
        rows = self._query(sql, params)
        return _parse_datetime(rows[0][0])

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
