"""Sync orchestrator -- one full pass from Salesforce into the local store.

fetch -> merge activity -> upsert each record -> append one sync_log entry.

Key behaviours:
- Only one run at a time; a concurrent request raises SyncInProgressError.
- Fetch is bounded by a timeout; a fetch or merge failure is logged to
  sync_log with zero records and re-raised.
- Per-record fault isolation (default on): a record that fails to upsert is
  counted and skipped, the rest are still written. With isolation off, the
  first failing record aborts the run.
- Existing rows are never deleted or deactivated by a sync.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

import structlog

from src.dealboard.core.errors import (
    DealboardError,
    PersistenceError,
    QueryError,
    SyncInProgressError,
)
from src.dealboard.core.monitoring import sync_duration_seconds, sync_records_total, sync_runs_total
from src.dealboard.crm.activity import ActivityMergeEngine
from src.dealboard.crm.source import RemoteRecordSource
from src.dealboard.store.repository import OpportunityRepository, SyncLogRepository

logger = structlog.get_logger(__name__)

# Number of failed ids quoted in the sync_log error message.
_MAX_REPORTED_FAILURES = 10


class SyncState(str, Enum):
    idle = "idle"
    fetching = "fetching"
    merging = "merging"
    writing = "writing"
    done = "done"
    failed = "failed"


@dataclass(frozen=True)
class SyncSummary:
    count: int
    failed: int = 0
    failed_ids: tuple[str, ...] = ()


@dataclass
class SyncProgress:
    state: SyncState = SyncState.idle
    started_at: datetime | None = None
    finished_at: datetime | None = None
    last_count: int | None = None
    last_error: str | None = None
    running: bool = False


class SyncOrchestrator:
    """Runs full syncs and tracks the state of the current/last run.

    Args:
        source: Fetches the filtered opportunity list.
        merger: Attaches last_contact_date.
        opportunities: Target repository for upserts.
        sync_log: Where each run is recorded.
        fetch_timeout: Seconds allowed for the fetch, or None.
        isolate_record_failures: Skip failing records instead of aborting.
    """

    def __init__(
        self,
        source: RemoteRecordSource,
        merger: ActivityMergeEngine,
        opportunities: OpportunityRepository,
        sync_log: SyncLogRepository,
        fetch_timeout: float | None = None,
        isolate_record_failures: bool = True,
    ) -> None:
        self._source = source
        self._merger = merger
        self._opportunities = opportunities
        self._sync_log = sync_log
        self._fetch_timeout = fetch_timeout
        self._isolate = isolate_record_failures
        self._lock = asyncio.Lock()
        self._progress = SyncProgress()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def status(self) -> SyncProgress:
        """Snapshot of the current or most recent run."""
        p = self._progress
        return SyncProgress(
            state=p.state,
            started_at=p.started_at,
            finished_at=p.finished_at,
            last_count=p.last_count,
            last_error=p.last_error,
            running=self.is_running,
        )

    async def run_sync(self) -> SyncSummary:
        """Run one full sync.

        Returns:
            SyncSummary with the number of records written and skipped.

        Raises:
            SyncInProgressError: Another run holds the lock.
            RemoteSourceError: Fetch failed (already recorded in sync_log).
            PersistenceError: A record failed with isolation off, or the
                sync_log itself could not be written.
        """
        if self._lock.locked():
            raise SyncInProgressError("A sync is already running", operation="run_sync")

        async with self._lock:
            self._progress = SyncProgress(
                state=SyncState.fetching,
                started_at=datetime.now(timezone.utc),
            )
            started = time.perf_counter()
            try:
                summary = await self._run()
            except Exception as exc:
                self._finish(SyncState.failed, error=str(exc))
                sync_runs_total.labels(status="error").inc()
                raise
            finally:
                sync_duration_seconds.observe(time.perf_counter() - started)

            self._finish(SyncState.done, count=summary.count)
            outcome = "success" if summary.count or not summary.failed else "error"
            sync_runs_total.labels(status=outcome).inc()
            return summary

    async def _run(self) -> SyncSummary:
        log = logger.bind(started_at=self._progress.started_at)

        try:
            fetched = await asyncio.wait_for(
                self._source.fetch_opportunities(), timeout=self._fetch_timeout
            )
        except asyncio.TimeoutError as exc:
            error = QueryError(
                f"Fetch exceeded {self._fetch_timeout}s", operation="fetch", cause=exc
            )
            await self._record_failure(error)
            raise error from exc
        except Exception as exc:
            await self._record_failure(exc)
            raise
        log.info("sync.fetched", count=len(fetched))

        self._progress.state = SyncState.merging
        try:
            merged = await self._merger.attach_last_contact_dates(fetched)
        except DealboardError as exc:
            await self._record_failure(exc)
            raise

        self._progress.state = SyncState.writing
        synced_at = datetime.now(timezone.utc)
        written = 0
        failed_ids: list[str] = []

        for opp in merged:
            try:
                await self._opportunities.upsert_opportunity(opp, synced_at=synced_at)
            except PersistenceError as exc:
                sync_records_total.labels(result="failed").inc()
                log.error("sync.record_failed", sf_id=opp.id, error=str(exc))
                if not self._isolate:
                    await self._record_failure(exc, records_synced=written)
                    raise
                failed_ids.append(opp.id)
                continue
            sync_records_total.labels(result="written").inc()
            written += 1

        if failed_ids:
            reported = ", ".join(failed_ids[:_MAX_REPORTED_FAILURES])
            if len(failed_ids) > _MAX_REPORTED_FAILURES:
                reported += f" (+{len(failed_ids) - _MAX_REPORTED_FAILURES} more)"
            message = f"{len(failed_ids)} record(s) failed to upsert: {reported}"
            status = "success" if written else "error"
            await self._sync_log.append(status, written, message)
        else:
            await self._sync_log.append("success", written)

        log.info("sync.completed", written=written, failed=len(failed_ids))
        return SyncSummary(count=written, failed=len(failed_ids), failed_ids=tuple(failed_ids))

    async def _record_failure(self, exc: Exception, records_synced: int = 0) -> None:
        logger.error("sync.failed", error=str(exc), records_synced=records_synced)
        # Callers re-raise exc; a sync_log write failure must not replace it.
        try:
            await self._sync_log.append("error", records_synced, str(exc))
        except PersistenceError as log_exc:
            logger.error("sync.log_write_failed", error=str(log_exc), original_error=str(exc))

    def _finish(self, state: SyncState, *, count: int | None = None, error: str | None = None) -> None:
        self._progress.state = state
        self._progress.finished_at = datetime.now(timezone.utc)
        self._progress.last_count = count
        self._progress.last_error = error
