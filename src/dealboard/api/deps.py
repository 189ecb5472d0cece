"""FastAPI dependencies that hand out the services built at startup.

Services live on ``app.state`` (populated by the lifespan in
src.dealboard.main). Each getter raises 503 while its service is missing, so
requests arriving before startup finishes, or after a failed startup, get a
clear answer instead of an AttributeError.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, status

from src.dealboard.core.errors import DealboardError, SyncInProgressError, ValidationError
from src.dealboard.store.repository import OpportunityRepository, SyncLogRepository
from src.dealboard.sync.orchestrator import SyncOrchestrator
from src.dealboard.views.service import ViewService


def _from_state(request: Request, name: str, label: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} not initialized",
        )
    return service


def get_view_service(request: Request) -> ViewService:
    return _from_state(request, "view_service", "View service")


def get_sync_orchestrator(request: Request) -> SyncOrchestrator:
    return _from_state(request, "sync_orchestrator", "Sync")


def get_opportunity_repository(request: Request) -> OpportunityRepository:
    return _from_state(request, "opportunity_repository", "Opportunity store")


def get_sync_log_repository(request: Request) -> SyncLogRepository:
    return _from_state(request, "sync_log_repository", "Sync log")


def http_error(exc: DealboardError, error: str) -> HTTPException:
    """Map a domain error onto an HTTPException with an ``{error, details}`` body."""
    if isinstance(exc, ValidationError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, SyncInProgressError):
        code = status.HTTP_409_CONFLICT
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail={"error": error, "details": str(exc)})
