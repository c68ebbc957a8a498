"""
Ingestion orchestrator.

Coordinates, per source:
- Fetching raw units through the source's adapter
- Extraction into schema-validated candidates
- Validation and tiered deduplication
- Normalization and persistence
- Run bookkeeping for health reporting

plus the expiry and link-verification maintenance jobs.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import AsyncIterator, Callable, Optional

import structlog

from .adapters import AdapterRegistry, SourceAdapter, build_adapter_registry
from .config.loader import Settings
from .core.canonical import normalize_grant
from .core.deduplicator import Deduplicator
from .core.errors import ExtractionError, ExtractionSchemaError, GrantsIngestError, StoreUnavailableError
from .core.expiry import find_expired_grants
from .core.http_client import HttpClient, RateLimiter
from .core.models import (
    ExtractedGrant,
    GrantStatus,
    IngestionError,
    IngestionRunStats,
    LinkStatus,
    NormalizedGrant,
    PipelineProgress,
    RawPage,
    RawRecord,
    RawUnit,
    RunState,
    RunStatus,
    ValidationResult,
    utcnow,
)
from .core.validator import Validator
from .health import HealthReport, build_health_report
from .sources.registry import SourceRegistry
from .store.base import GrantStore, UpsertOutcome

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[PipelineProgress], None]

EXIT_OK = 0
EXIT_RECOVERABLE = 1
EXIT_FATAL = 2


# ============= RESULTS =============


@dataclass
class BatchRunResult:
    """Outcome of a multi-source run."""

    runs: list[IngestionRunStats] = field(default_factory=list)

    @property
    def completed(self) -> list[IngestionRunStats]:
        return [r for r in self.runs if r.status == RunStatus.COMPLETED]

    @property
    def failed(self) -> list[IngestionRunStats]:
        return [r for r in self.runs if r.status == RunStatus.FAILED]

    @property
    def exit_code(self) -> int:
        """0 = full success, 1 = completed with recoverable errors, 2 = no source completed."""
        if not self.completed:
            return EXIT_FATAL
        if self.failed or any(r.errors for r in self.runs):
            return EXIT_RECOVERABLE
        return EXIT_OK

    def to_dict(self) -> dict:
        return {
            "sources": len(self.runs),
            "completed": len(self.completed),
            "failed": len(self.failed),
            "grants_new": sum(r.grants_new for r in self.runs),
            "grants_updated": sum(r.grants_updated for r in self.runs),
            "grants_duplicates": sum(r.grants_duplicates for r in self.runs),
            "grants_rejected": sum(r.grants_rejected for r in self.runs),
            "grants_failed": sum(r.grants_failed for r in self.runs),
            "exit_code": self.exit_code,
            "runs": [r.to_dict() for r in self.runs],
        }


@dataclass
class MaintenanceResult:
    """Outcome of a maintenance job (expiry or link verification)."""

    job: str
    processed: int = 0
    expired: int = 0
    verified: int = 0
    broken: int = 0
    errors: list[IngestionError] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        if any(not e.recoverable for e in self.errors):
            return EXIT_FATAL
        return EXIT_RECOVERABLE if self.errors else EXIT_OK

    def to_dict(self) -> dict:
        return {
            "job": self.job,
            "processed": self.processed,
            "expired": self.expired,
            "verified": self.verified,
            "broken": self.broken,
            "errors": [e.to_dict() for e in self.errors],
            "exit_code": self.exit_code,
        }


@dataclass
class _Accepted:
    grant: ExtractedGrant
    validation: ValidationResult


# ============= ORCHESTRATOR =============


class IngestionOrchestrator:
    """
    Runs the ingestion pipeline per source and the maintenance jobs.

    Usage:
        orchestrator = IngestionOrchestrator(registry, store, settings)
        result = await orchestrator.run_all()
        sys.exit(result.exit_code)

    Each source gets its own RateLimiter owned by this instance. A fatal
    error (source unreachable, store unavailable) fails only that
    source's run; the other sources of a batch continue.
    """

    # Progress percent at the start of each stage
    STAGE_PERCENT = {
        RunState.FETCHING: 0,
        RunState.EXTRACTING: 30,
        RunState.VALIDATING: 60,
        RunState.NORMALIZING: 80,
        RunState.PERSISTING: 85,
        RunState.DONE: 100,
    }

    def __init__(
        self,
        registry: SourceRegistry,
        store: GrantStore,
        settings: Optional[Settings] = None,
        progress: Optional[ProgressCallback] = None,
        adapters: Optional[AdapterRegistry] = None,
        http_client: Optional[HttpClient] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            registry: Source catalog
            store: Grant store
            settings: Pipeline settings (defaults apply when omitted)
            progress: Optional sink for PipelineProgress events
            adapters: Prebuilt adapters (built from the registry if omitted)
            http_client: Shared HTTP client (built from settings if omitted)
        """
        self.registry = registry
        self.store = store
        self.settings = settings or Settings()
        self.progress = progress
        self.http_client = http_client or HttpClient.from_settings(self.settings.http)
        self.adapters = adapters or build_adapter_registry(
            registry.all(), self.http_client, self.settings,
        )

        url_checker = self.http_client.verify_url if self.settings.validation.verify_urls else None
        self.validator = Validator(
            url_checker=url_checker,
            min_quality_score=self.settings.validation.min_quality_score,
        )
        self._limiters: dict[str, RateLimiter] = {}

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[HttpClient]:
        """Enter the HTTP client unless the caller already did."""
        if self.http_client.is_open:
            yield self.http_client
        else:
            async with self.http_client:
                yield self.http_client

    def limiter_for(self, adapter: SourceAdapter) -> RateLimiter:
        source = adapter.source
        if source.source_id not in self._limiters:
            self._limiters[source.source_id] = RateLimiter.for_source(
                source.request_delay_ms, source.max_concurrent,
            )
        return self._limiters[source.source_id]

    def _emit(
        self,
        source_id: str,
        stage: RunState,
        processed: int = 0,
        total: int = 0,
        message: str = "",
    ) -> None:
        base = self.STAGE_PERCENT.get(stage, 0)
        following = [p for p in self.STAGE_PERCENT.values() if p > base]
        span = (min(following) - base) if following else 0
        percent = base + (span * processed // total if total else 0)

        event = PipelineProgress(
            source_id=source_id,
            stage=stage.value,
            percent=percent,
            processed=processed,
            total=total,
            message=message,
        )
        logger.debug("progress", **event.to_dict())
        if self.progress is not None:
            self.progress(event)

    def _transition(self, stats: IngestionRunStats, state: RunState, message: str = "") -> None:
        logger.info("source_state", source=stats.source_id, state=state.value, run_id=stats.run_id)
        stats.state = state
        self._emit(stats.source_id, state, message=message)

    # ============= INGESTION =============

    async def run_source(self, source_id: str, today: Optional[date] = None) -> IngestionRunStats:
        """
        Run the pipeline for one source.

        Raises:
            UnknownSourceError: Source id not in the catalog
        """
        adapter = self.adapters.get(source_id)
        async with self._session():
            return await self._run_adapter(adapter, today)

    async def run_all(
        self,
        source_ids: Optional[list[str]] = None,
        today: Optional[date] = None,
    ) -> BatchRunResult:
        """
        Run several sources in a bounded pool.

        Args:
            source_ids: Sources to run (default: every enabled source)
            today: Reference date for status and expiry

        Returns:
            BatchRunResult with one IngestionRunStats per source

        Raises:
            UnknownSourceError: An explicitly requested id is unknown
        """
        if source_ids:
            adapters = [self.adapters.get(source_id) for source_id in source_ids]
        else:
            adapters = self.adapters.enabled()

        if not adapters:
            logger.warning("no_sources_to_process")
            return BatchRunResult()

        semaphore = asyncio.Semaphore(max(1, self.settings.orchestrator.source_concurrency))

        async def run_one(adapter: SourceAdapter) -> IngestionRunStats:
            async with semaphore:
                return await self._run_adapter(adapter, today)

        logger.info("batch_started", sources=[a.source_id for a in adapters])
        async with self._session():
            runs = await asyncio.gather(*(run_one(adapter) for adapter in adapters))

        result = BatchRunResult(runs=list(runs))
        logger.info(
            "batch_complete",
            completed=len(result.completed),
            failed=len(result.failed),
            exit_code=result.exit_code,
        )
        return result

    async def _run_adapter(self, adapter: SourceAdapter, today: Optional[date]) -> IngestionRunStats:
        stats = IngestionRunStats.start(adapter.source_id)
        log = logger.bind(source=adapter.source_id, run_id=stats.run_id)
        log.info("source_run_started", adapter=repr(adapter))

        try:
            self._transition(stats, RunState.FETCHING, f"Fetching {adapter.source.name}")
            units = await self._fetch(adapter, stats)

            self._transition(stats, RunState.EXTRACTING, f"Extracting {len(units)} units")
            candidates = await self._extract(adapter, units, stats)

            self._transition(stats, RunState.VALIDATING, f"Validating {len(candidates)} candidates")
            accepted = await self._validate(candidates, stats, today)

            self._transition(stats, RunState.NORMALIZING, f"Normalizing {len(accepted)} grants")
            records = self._normalize(accepted, stats, today)

            self._transition(stats, RunState.PERSISTING, f"Saving {len(records)} grants")
            self._persist(records, stats)

            stats.status = RunStatus.COMPLETED
            self._transition(
                stats, RunState.DONE,
                f"Completed: {stats.grants_new} new, {stats.grants_updated} updated",
            )
        except GrantsIngestError as e:
            self._fail(stats, str(e), url=getattr(e, "url", None))
            log.error("source_run_failed", stage=stats.state.value, error=str(e))
        except Exception as e:
            self._fail(stats, f"{type(e).__name__}: {e}")
            log.exception("source_run_crashed", stage=stats.state.value)

        stats.completed_at = utcnow()
        self._record(stats)

        log.info(
            "source_run_complete",
            status=stats.status.value,
            found=stats.grants_found,
            new=stats.grants_new,
            updated=stats.grants_updated,
            duplicates=stats.grants_duplicates,
            rejected=stats.grants_rejected,
            failed=stats.grants_failed,
            errors=len(stats.errors),
            duration=stats.duration_seconds,
        )
        return stats

    def _fail(self, stats: IngestionRunStats, message: str, url: Optional[str] = None) -> None:
        stats.add_error(stats.state.value, message, url=url, recoverable=False)
        stats.status = RunStatus.FAILED
        stats.state = RunState.FAILED
        self._emit(stats.source_id, RunState.FAILED, message=message)

    def _record(self, stats: IngestionRunStats) -> None:
        """Persist the run audit record and the source's last-run status."""
        fatal = next((e.message for e in stats.errors if not e.recoverable), None)
        try:
            self.store.record_run(stats)
            self.store.record_source_status(
                stats.source_id,
                stats.status,
                stats.completed_at or utcnow(),
                grants_found=stats.grants_new + stats.grants_updated,
                error=fatal,
            )
        except StoreUnavailableError as e:
            logger.error("run_audit_failed", source=stats.source_id, error=str(e))
            if stats.status == RunStatus.COMPLETED:
                stats.add_error("audit", str(e), recoverable=False)
                stats.status = RunStatus.FAILED
                stats.state = RunState.FAILED

    async def _fetch(self, adapter: SourceAdapter, stats: IngestionRunStats) -> list[RawUnit]:
        units: list[RawUnit] = []
        api_pages: set[int] = set()

        async for unit in adapter.fetch(self.limiter_for(adapter)):
            units.append(unit)
            if isinstance(unit, RawPage):
                stats.pages_scraped += 1
            elif isinstance(unit, RawRecord):
                api_pages.add(unit.page)
            self._emit(stats.source_id, RunState.FETCHING, len(units), 0, f"Fetched {unit.url}")

        stats.pages_scraped += len(api_pages)
        stats.errors.extend(adapter.errors)
        return units

    async def _extract(
        self,
        adapter: SourceAdapter,
        units: list[RawUnit],
        stats: IngestionRunStats,
    ) -> list[ExtractedGrant]:
        semaphore = asyncio.Semaphore(max(1, self.settings.orchestrator.candidate_concurrency))
        done = 0

        async def extract_one(unit: RawUnit) -> Optional[ExtractedGrant]:
            nonlocal done
            async with semaphore:
                try:
                    return await adapter.normalize(unit)
                except ExtractionSchemaError as e:
                    details = "; ".join(e.problems[:5])
                    self._item_failed(stats, "extract", f"{e}: {details}" if details else str(e), unit.url)
                except ExtractionError as e:
                    self._item_failed(stats, "extract", str(e), unit.url)
                except GrantsIngestError as e:
                    if not e.recoverable:
                        raise
                    self._item_failed(stats, "extract", str(e), unit.url)
                except (KeyError, ValueError, TypeError, AttributeError) as e:
                    # Malformed upstream record
                    self._item_failed(stats, "extract", f"{type(e).__name__}: {e}", unit.url)
                finally:
                    done += 1
                    self._emit(stats.source_id, RunState.EXTRACTING, done, len(units))
            return None

        results = await asyncio.gather(*(extract_one(unit) for unit in units))
        candidates = [grant for grant in results if grant is not None]
        stats.grants_found = len(candidates)
        return candidates

    def _item_failed(self, stats: IngestionRunStats, stage: str, message: str, url: Optional[str]) -> None:
        stats.grants_failed += 1
        stats.add_error(stage, message, url=url)
        logger.warning("item_failed", source=stats.source_id, stage=stage, url=url, error=message)

    def _deduplicator(self) -> Deduplicator:
        dedup = self.settings.dedup
        return Deduplicator(
            existing_keys=self.store.find_existing_keys(),
            fingerprints=self.store.find_fingerprint_owners(),
            candidates=self.store.find_dedup_candidates() if dedup.fuzzy_enabled else (),
            fuzzy_enabled=dedup.fuzzy_enabled,
            fuzzy_threshold=dedup.fuzzy_threshold,
        )

    async def _validate(
        self,
        candidates: list[ExtractedGrant],
        stats: IngestionRunStats,
        today: Optional[date],
    ) -> list[_Accepted]:
        """Validate concurrently, then classify duplicates in candidate order."""
        deduplicator = self._deduplicator()
        known = deduplicator.fingerprints
        semaphore = asyncio.Semaphore(max(1, self.settings.orchestrator.candidate_concurrency))
        done = 0

        async def validate_one(grant: ExtractedGrant) -> ValidationResult:
            nonlocal done
            async with semaphore:
                result = await self.validator.validate(grant, known, today=today)
                done += 1
                self._emit(stats.source_id, RunState.VALIDATING, done, len(candidates))
                return result

        results = await asyncio.gather(*(validate_one(grant) for grant in candidates))

        accepted: list[_Accepted] = []
        for grant, validation in zip(candidates, results):
            if not validation.is_valid:
                stats.grants_rejected += 1
                logger.debug(
                    "grant_rejected",
                    source=stats.source_id,
                    key=grant.source_id,
                    score=validation.quality_score,
                    errors=validation.errors,
                )
                continue

            dedupe = deduplicator.classify(grant, validation.fingerprint)
            validation.is_duplicate = dedupe.is_duplicate
            validation.duplicate_of = dedupe.existing_key if dedupe.is_duplicate else None
            if dedupe.is_duplicate:
                stats.grants_duplicates += 1
                logger.debug(
                    "grant_duplicate",
                    source=stats.source_id,
                    key=grant.source_id,
                    duplicate_of=dedupe.existing_key,
                    match=dedupe.match_type.value if dedupe.match_type else None,
                    confidence=dedupe.confidence,
                )
                continue

            accepted.append(_Accepted(grant, validation))

        return accepted

    def _normalize(
        self,
        accepted: list[_Accepted],
        stats: IngestionRunStats,
        today: Optional[date],
    ) -> list[NormalizedGrant]:
        records = []
        for index, item in enumerate(accepted, start=1):
            try:
                record = normalize_grant(item.grant, item.validation, today=today)
            except (ValueError, TypeError) as e:
                self._item_failed(stats, "normalize", str(e), item.grant.apply_url)
                continue
            if record.status == GrantStatus.CLOSED:
                stats.grants_expired += 1
            records.append(record)
            self._emit(stats.source_id, RunState.NORMALIZING, index, len(accepted))
        return records

    def _persist(self, records: list[NormalizedGrant], stats: IngestionRunStats) -> None:
        for index, record in enumerate(records, start=1):
            outcome = self.store.upsert_by_key(record.source_name, record.source_id, record)
            if outcome == UpsertOutcome.INSERTED:
                stats.grants_new += 1
            elif outcome == UpsertOutcome.UPDATED:
                stats.grants_updated += 1
            else:
                stats.grants_duplicates += 1
            self._emit(stats.source_id, RunState.PERSISTING, index, len(records))

    # ============= MAINTENANCE =============

    def expire_grants(self, today: Optional[date] = None) -> MaintenanceResult:
        """Close open, fixed-deadline grants whose deadline has passed."""
        today = today or date.today()
        result = MaintenanceResult(job="expire")

        try:
            open_grants = self.store.find_open_grants()
            expired = find_expired_grants(open_grants, today)
            result.processed = len(open_grants)
            result.expired = self.store.mark_closed(g.id for g in expired if g.id is not None)
        except StoreUnavailableError as e:
            result.errors.append(IngestionError(stage="expire", message=str(e), recoverable=False))
            logger.error("expire_failed", error=str(e))
            return result

        logger.info("grants_expired", checked=result.processed, expired=result.expired, today=today.isoformat())
        return result

    async def verify_links(
        self,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> MaintenanceResult:
        """Re-check apply URLs not verified within the configured age."""
        config = self.settings.link_verification
        now = now or utcnow()
        result = MaintenanceResult(job="verify_links")

        try:
            grants = self.store.find_unverified(now - timedelta(days=config.max_age_days), limit or config.limit)
        except StoreUnavailableError as e:
            result.errors.append(IngestionError(stage="verify_links", message=str(e), recoverable=False))
            logger.error("verify_links_failed", error=str(e))
            return result

        if not grants:
            logger.info("no_links_to_verify")
            return result

        urls = list(dict.fromkeys(g.url for g in grants))
        async with self._session():
            checks = await self.http_client.batch_verify_urls(
                urls,
                concurrency=config.concurrency,
                delay=config.batch_delay_ms / 1000.0,
            )

        for grant in grants:
            check = checks.get(grant.url)
            if check is None:
                continue
            status = LinkStatus.ACTIVE if check.is_valid else LinkStatus.BROKEN
            try:
                self.store.update_link_status(grant.id, status, utcnow())
            except StoreUnavailableError as e:
                result.errors.append(IngestionError(
                    stage="verify_links", message=str(e), url=grant.url, recoverable=False,
                ))
                logger.error("verify_links_failed", error=str(e))
                break
            result.processed += 1
            if check.is_valid:
                result.verified += 1
            else:
                result.broken += 1

        logger.info("links_verified", checked=result.processed, active=result.verified, broken=result.broken)
        return result

    def health_report(self, now: Optional[datetime] = None) -> HealthReport:
        return build_health_report(self.store, self.registry.all(), self.settings.health, now=now)
