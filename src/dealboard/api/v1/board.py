"""Board endpoint -- opportunities arranged into columns for one view.

weekly: Monday..Friday plus a weekend column, by created date.
fiveyard: opportunities the user flagged as five-yard-line.
followups: opportunities whose effective follow-up date is ``date``.
Within a column the order is priority colour, then stage (Closed Won first,
Closed Lost last).
"""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query

from src.dealboard.api.deps import get_view_service, http_error
from src.dealboard.api.v1.opportunities import build_filters
from src.dealboard.core.errors import DealboardError
from src.dealboard.views.schemas import BoardView, PriorityColor, ViewName
from src.dealboard.views.service import ViewService

router = APIRouter(prefix="/board", tags=["board"])


@router.get("", response_model=BoardView)
async def get_board(
    view: ViewName = Query(default=ViewName.weekly),
    priority: PriorityColor | None = Query(default=None),
    week: str | None = Query(default=None, description="ISO week, e.g. 2024-W03"),
    target_date: date | None = Query(default=None, alias="date"),
    user_id: str | None = Query(default=None),
    service: ViewService = Depends(get_view_service),
) -> BoardView:
    """Compose the board for one view."""
    filters = build_filters(None, priority, week)
    try:
        return await service.compose_board(view, filters, user_id, target_date)
    except DealboardError as exc:
        raise http_error(exc, "Failed to compose board") from exc
