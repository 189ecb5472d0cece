"""Operator endpoints: data inspection and one-off repairs.

GET /debug/opportunities shows the row count and a few raw rows without any
view filtering. POST /maintenance/is-active repairs rows whose is_active
flag was left NULL by older releases (they would otherwise never appear).
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from src.dealboard.api.deps import get_opportunity_repository, http_error
from src.dealboard.core.errors import DealboardError
from src.dealboard.store.repository import OpportunityRepository

router = APIRouter(tags=["maintenance"])


class DebugOpportunitiesResponse(BaseModel):
    total: int
    sample: list[dict[str, Any]]


class RepairResponse(BaseModel):
    success: bool = True
    message: str
    changes: int


@router.get("/debug/opportunities", response_model=DebugOpportunitiesResponse)
async def debug_opportunities(
    repo: OpportunityRepository = Depends(get_opportunity_repository),
) -> DebugOpportunitiesResponse:
    try:
        total = await repo.count()
        sample = await repo.sample(limit=5)
    except DealboardError as exc:
        raise http_error(exc, "Failed to debug opportunities") from exc
    return DebugOpportunitiesResponse(total=total, sample=sample)


@router.post("/maintenance/is-active", response_model=RepairResponse)
async def fix_is_active(
    repo: OpportunityRepository = Depends(get_opportunity_repository),
) -> RepairResponse:
    try:
        changes = await repo.reactivate_missing_flags()
    except DealboardError as exc:
        raise http_error(exc, "Failed to fix is_active values") from exc
    return RepairResponse(
        message=f"Updated {changes} records to set is_active = 1",
        changes=changes,
    )
