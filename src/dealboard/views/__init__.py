"""Read side -- filtered opportunity views, board composition, user annotations."""

from src.dealboard.views.schemas import (
    BoardView,
    OpportunityFilters,
    PreferenceInput,
    PreferenceView,
    PriorityColor,
    ViewName,
    ViewOpportunity,
)
from src.dealboard.views.service import ViewService

__all__ = [
    "BoardView",
    "OpportunityFilters",
    "PreferenceInput",
    "PreferenceView",
    "PriorityColor",
    "ViewName",
    "ViewOpportunity",
    "ViewService",
]
