"""Sync endpoints: trigger a full Salesforce sync and report its status."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from src.dealboard.api.deps import get_sync_log_repository, get_sync_orchestrator, http_error
from src.dealboard.core.errors import DealboardError
from src.dealboard.store.repository import SyncLogRepository
from src.dealboard.sync.orchestrator import SyncOrchestrator, SyncState

router = APIRouter(prefix="/sync", tags=["sync"])


class SyncResponse(BaseModel):
    success: bool
    message: str
    count: int
    failed: int = 0


class SyncLogEntryResponse(BaseModel):
    id: int
    sync_type: str | None = None
    sync_status: str | None = None
    records_synced: int | None = None
    error_message: str | None = None
    sync_timestamp: datetime | None = None


class SyncStatusResponse(BaseModel):
    lastSync: SyncLogEntryResponse | None = None
    hasData: bool
    state: SyncState
    running: bool = False


@router.post("", response_model=SyncResponse)
async def run_sync(
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
) -> SyncResponse:
    """Run one full sync; 409 if a sync is already running."""
    try:
        summary = await orchestrator.run_sync()
    except DealboardError as exc:
        raise http_error(exc, "Failed to sync from Salesforce") from exc

    message = f"Synced {summary.count} opportunities from Salesforce"
    if summary.failed:
        message += f" ({summary.failed} failed)"
    return SyncResponse(
        success=summary.count > 0 or summary.failed == 0,
        message=message,
        count=summary.count,
        failed=summary.failed,
    )


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
    sync_log: SyncLogRepository = Depends(get_sync_log_repository),
) -> SyncStatusResponse:
    """Most recent sync_log entry plus the in-process run state."""
    try:
        last = await sync_log.last()
    except DealboardError as exc:
        raise http_error(exc, "Failed to get sync status") from exc

    progress = orchestrator.status()
    return SyncStatusResponse(
        lastSync=SyncLogEntryResponse(**last) if last else None,
        hasData=last is not None,
        state=progress.state,
        running=progress.running,
    )
