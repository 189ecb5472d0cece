"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready). Readiness fails
with 503 until the store is bootstrapped and while it cannot be reached.
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from src.dealboard.config import get_settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check. No dependencies are touched."""
    settings = get_settings()
    return {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": settings.ENVIRONMENT.value,
    }


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check: store bootstrapped and answering queries."""
    checks: dict = {"database": "ok"}
    store = getattr(request.app.state, "store", None)

    if store is None or not store.bootstrapped:
        checks["database"] = "initializing"
    elif not await store.ping():
        checks["database"] = "error"
    else:
        checks["backend"] = store.dialect_name

    ready = checks["database"] == "ok"
    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if ready else "degraded",
            "checks": checks,
        },
    )
