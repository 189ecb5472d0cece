"""User preference (annotation) endpoints.

Annotations are scoped by ``user_id`` (defaults to the configured default
user). POST /user-preferences accepts a single object or an array; the
/bulk variant requires an array and writes it atomically.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from src.dealboard.api.deps import get_view_service, http_error
from src.dealboard.core.errors import DealboardError
from src.dealboard.views.schemas import PreferenceView
from src.dealboard.views.service import ViewService

router = APIRouter(prefix="/user-preferences", tags=["preferences"])


class SavePreferencesRequest(BaseModel):
    """Request body; ``preferences`` is one annotation object or a list of them."""

    user_id: str | None = None
    preferences: Any = None
    merge: bool = False


class SaveResponse(BaseModel):
    success: bool = True
    message: str
    count: int = 1


@router.get("", response_model=list[PreferenceView])
async def list_preferences(
    user_id: str | None = Query(default=None),
    service: ViewService = Depends(get_view_service),
) -> list[PreferenceView]:
    """All annotations of one user."""
    try:
        return await service.get_preferences(user_id)
    except DealboardError as exc:
        raise http_error(exc, "Failed to fetch user preferences") from exc


@router.get("/{opportunity_id}", response_model=PreferenceView | None)
async def get_preference(
    opportunity_id: str,
    user_id: str | None = Query(default=None),
    service: ViewService = Depends(get_view_service),
) -> PreferenceView | None:
    """One user's annotation of one opportunity, or null."""
    try:
        return await service.get_preference(opportunity_id, user_id)
    except DealboardError as exc:
        raise http_error(exc, "Failed to fetch user preferences for opportunity") from exc


@router.post("", response_model=SaveResponse)
async def save_preferences(
    body: SavePreferencesRequest,
    service: ViewService = Depends(get_view_service),
) -> SaveResponse:
    """Save one annotation, or many if ``preferences`` is an array."""
    if body.preferences is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "preferences is required"},
        )
    try:
        if isinstance(body.preferences, list):
            saved = await service.save_bulk_preferences(body.preferences, body.user_id)
            return SaveResponse(message=f"{saved} preferences saved", count=saved)
        await service.save_preferences(body.preferences, body.user_id, merge=body.merge)
    except DealboardError as exc:
        raise http_error(exc, "Failed to save user preferences") from exc
    return SaveResponse(message="User preferences saved")


@router.post("/bulk", response_model=SaveResponse)
async def save_bulk_preferences(
    body: SavePreferencesRequest,
    service: ViewService = Depends(get_view_service),
) -> SaveResponse:
    """Replace many annotations in one transaction."""
    if not isinstance(body.preferences, list):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "Preferences must be an array"},
        )
    try:
        saved = await service.save_bulk_preferences(body.preferences, body.user_id)
    except DealboardError as exc:
        raise http_error(exc, "Failed to bulk save user preferences") from exc
    return SaveResponse(message=f"{saved} preferences saved", count=saved)
