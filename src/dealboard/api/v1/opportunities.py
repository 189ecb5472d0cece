"""REST endpoints for opportunity views and per-opportunity annotations.

GET /opportunities lists active opportunities filtered by view, priority
colour and ISO week, with the caller's annotations attached. The PUT
endpoints edit the locally-owned columns (priority level, notes, follow-up
date) that sync never overwrites.
"""

from __future__ import annotations

from datetime import date

import pydantic
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from src.dealboard.api.deps import get_view_service, http_error
from src.dealboard.config import get_settings
from src.dealboard.core.errors import DealboardError
from src.dealboard.views.schemas import OpportunityFilters, PriorityColor, ViewOpportunity
from src.dealboard.views.service import ViewService

router = APIRouter(prefix="/opportunities", tags=["opportunities"])


# ── Request Schemas ──────────────────────────────────────────────────────────


class PriorityRequest(BaseModel):
    priority: int | None = None


class NotesRequest(BaseModel):
    notes: str | None = None


class FollowUpRequest(BaseModel):
    """Request body for setting (or clearing, with null) a follow-up date."""

    follow_up_date: date | None = Field(default=None, alias="followUpDate")


class UpdateResponse(BaseModel):
    success: bool = True
    message: str


# ── Helpers ──────────────────────────────────────────────────────────────────


def build_filters(view: str | None, priority: PriorityColor | None, week: str | None) -> OpportunityFilters:
    """Filters for a list request, with the configured owner exclusions."""
    settings = get_settings()
    try:
        return OpportunityFilters(
            exclude_owners=settings.view_excluded_owners,
            exclude_upgrade_design=True,
            view=view,
            priority=priority,
            week=week,
        )
    except pydantic.ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "Invalid filters", "details": exc.errors(include_url=False, include_context=False)},
        ) from exc


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.get("", response_model=list[ViewOpportunity])
async def list_opportunities(
    view: str | None = Query(default=None, description="weekly, fiveyard or all"),
    priority: PriorityColor | None = Query(default=None, description="Annotation colour"),
    week: str | None = Query(default=None, description="ISO week, e.g. 2024-W03"),
    user_id: str | None = Query(default=None),
    service: ViewService = Depends(get_view_service),
) -> list[ViewOpportunity]:
    """List active opportunities for the given view."""
    filters = build_filters(view, priority, week)
    try:
        return await service.list_opportunities(filters, user_id)
    except DealboardError as exc:
        raise http_error(exc, "Failed to fetch opportunities from database") from exc


@router.put("/{opportunity_id}/priority", response_model=UpdateResponse)
async def update_priority(
    opportunity_id: str,
    body: PriorityRequest,
    service: ViewService = Depends(get_view_service),
) -> UpdateResponse:
    """Set the 1-5 priority level of an opportunity."""
    try:
        await service.update_priority(opportunity_id, body.priority)
    except DealboardError as exc:
        raise http_error(exc, "Failed to update priority") from exc
    return UpdateResponse(message="Priority updated")


@router.put("/{opportunity_id}/notes", response_model=UpdateResponse)
async def update_notes(
    opportunity_id: str,
    body: NotesRequest,
    service: ViewService = Depends(get_view_service),
) -> UpdateResponse:
    """Replace the custom notes of an opportunity."""
    try:
        await service.update_notes(opportunity_id, body.notes)
    except DealboardError as exc:
        raise http_error(exc, "Failed to update notes") from exc
    return UpdateResponse(message="Notes updated")


@router.put("/{opportunity_id}/followup", response_model=UpdateResponse)
async def set_follow_up(
    opportunity_id: str,
    body: FollowUpRequest,
    service: ViewService = Depends(get_view_service),
) -> UpdateResponse:
    """Set or clear the follow-up date stored on the opportunity row."""
    try:
        await service.set_follow_up_date(opportunity_id, body.follow_up_date)
    except DealboardError as exc:
        raise http_error(exc, "Failed to set follow-up date") from exc
    return UpdateResponse(message="Follow-up date set")
