"""
Ingestion health report.

Derives a per-source status from the last run bookkeeping and raises
alerts for an empty or thin catalog, failed sources and stale runs.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Optional

from grants_ingest.config.loader import HealthSettings
from grants_ingest.core.models import RunStatus, SourceHealthStatus, utcnow
from grants_ingest.sources.base import SourceConfig
from grants_ingest.store.base import GrantStore, SourceStatusRecord


@dataclass
class HealthAlert:
    level: str  # error | warning
    message: str
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {"level": self.level, "message": self.message, "timestamp": self.timestamp.isoformat()}


@dataclass
class SourceHealth:
    source_id: str
    name: str
    status: SourceHealthStatus
    last_run: Optional[datetime] = None
    grants_count: int = 0
    last_error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "name": self.name,
            "status": self.status.value,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "grants_count": self.grants_count,
            "last_error": self.last_error,
        }


@dataclass
class HealthReport:
    healthy: bool
    active_grants_count: int
    expired_grants_today: int
    failed_sources_count: int
    last_successful_run: Optional[datetime] = None
    sources: list[SourceHealth] = field(default_factory=list)
    alerts: list[HealthAlert] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "healthy": self.healthy,
            "last_successful_run": self.last_successful_run.isoformat() if self.last_successful_run else None,
            "active_grants_count": self.active_grants_count,
            "expired_grants_today": self.expired_grants_today,
            "failed_sources_count": self.failed_sources_count,
            "sources": [s.to_dict() for s in self.sources],
            "alerts": [a.to_dict() for a in self.alerts],
        }


def source_health_status(
    record: Optional[SourceStatusRecord],
    now: datetime,
    stale_after: timedelta,
) -> SourceHealthStatus:
    """
    Status of one source from its last run.

    healthy: last run succeeded within ``stale_after``;
    degraded: last success is older, or the last status is unknown;
    failed: last run failed; never_run: no run recorded.
    """
    if record is None or record.last_run_at is None:
        return SourceHealthStatus.NEVER_RUN
    if record.last_status == RunStatus.COMPLETED:
        if now - record.last_run_at > stale_after:
            return SourceHealthStatus.DEGRADED
        return SourceHealthStatus.HEALTHY
    if record.last_status == RunStatus.FAILED:
        return SourceHealthStatus.FAILED
    return SourceHealthStatus.DEGRADED


def build_health_report(
    store: GrantStore,
    sources: Iterable[SourceConfig],
    settings: Optional[HealthSettings] = None,
    now: Optional[datetime] = None,
) -> HealthReport:
    """
    Build the health report for the configured sources.

    Args:
        store: Grant store with run bookkeeping
        sources: Source catalog (report order follows display name)
        settings: Staleness and low-count thresholds
        now: Reference time (defaults to current UTC time)

    Returns:
        HealthReport; ``healthy`` is False when any error alert is raised
    """
    settings = settings or HealthSettings()
    now = now or utcnow()
    stale_after = timedelta(hours=settings.stale_after_hours)

    active = store.count_active()
    expired_today = store.count_closed_with_deadline_on(now.date())
    records = store.list_source_statuses()

    source_health = []
    for source in sorted(sources, key=lambda s: s.name):
        record = records.get(source.source_id)
        source_health.append(SourceHealth(
            source_id=source.source_id,
            name=source.name,
            status=source_health_status(record, now, stale_after),
            last_run=record.last_run_at if record else None,
            grants_count=record.last_grants_found if record else 0,
            last_error=record.last_error if record else None,
        ))

    failed = sum(1 for s in source_health if s.status == SourceHealthStatus.FAILED)
    last_success = store.last_successful_run()

    alerts: list[HealthAlert] = []
    if active == 0:
        alerts.append(HealthAlert("error", "No active grants in the store. Ingestion may have failed."))
    elif active < settings.low_grant_threshold:
        alerts.append(HealthAlert("warning", f"Only {active} active grants. Consider running ingestion."))

    if failed:
        alerts.append(HealthAlert("error", f"{failed} source(s) failed their last ingestion."))

    if last_success is None:
        alerts.append(HealthAlert("warning", "No successful ingestion runs recorded."))
    else:
        hours = (now - last_success).total_seconds() / 3600
        if hours > settings.stale_after_hours:
            alerts.append(HealthAlert("warning", f"Last successful ingestion was {round(hours)} hours ago."))

    return HealthReport(
        healthy=not any(a.level == "error" for a in alerts),
        active_grants_count=active,
        expired_grants_today=expired_today,
        failed_sources_count=failed,
        last_successful_run=last_success,
        sources=source_health,
        alerts=alerts,
    )
