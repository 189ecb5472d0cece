"""View/preference service -- the read side plus user annotations.

ViewService turns stored opportunity rows into filtered, annotated view
records and manages the per-user preference overlay. Follow-up status is
computed at read time from dates only; nothing derived is stored.

Annotations whose opportunity no longer exists are kept but never surface
in a view (views are driven by opportunity rows).
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime, timedelta, timezone
from typing import Any

import pydantic
import structlog

from src.dealboard.core.errors import ValidationError
from src.dealboard.store.repository import OpportunityRepository, PreferenceRepository
from src.dealboard.views import composition
from src.dealboard.views.filters import (
    FIVE_YARD_STAGES,
    five_yard_cutoff,
    follow_up_status,
    iso_week_range,
    to_date,
)
from src.dealboard.views.schemas import (
    BoardView,
    OpportunityFilters,
    PreferenceInput,
    PreferenceView,
    ViewName,
    ViewOpportunity,
)

logger = structlog.get_logger(__name__)

DEFAULT_LIMIT = 100
PRIORITY_LEVEL_RANGE = (1, 5)


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _validate_preference(item: Any, index: int | None = None) -> PreferenceInput:
    if isinstance(item, PreferenceInput):
        return item
    try:
        return PreferenceInput.model_validate(item)
    except pydantic.ValidationError as exc:
        where = f"preference {index}" if index is not None else "preference"
        raise ValidationError(
            f"Invalid {where}: {exc.errors(include_url=False)}",
            operation="save_preferences",
            cause=exc,
        ) from exc


class ViewService:
    """Filtered opportunity views and user annotations.

    Args:
        opportunities: Opportunity repository.
        preferences: Preference repository.
        default_user_id: User id applied when a caller gives none.
        today: Clock for follow-up and five-yard calculations.
    """

    def __init__(
        self,
        opportunities: OpportunityRepository,
        preferences: PreferenceRepository,
        default_user_id: str = "default",
        today: Callable[[], date] = _utc_today,
    ) -> None:
        self._opportunities = opportunities
        self._preferences = preferences
        self._default_user_id = default_user_id
        self._today = today

    def _user(self, user_id: str | None) -> str:
        return user_id or self._default_user_id

    # ── Opportunity views ──────────────────────────────────────────────────

    async def list_opportunities(
        self,
        filters: OpportunityFilters,
        user_id: str | None = None,
    ) -> list[ViewOpportunity]:
        """Active opportunities matching the filters, with the user's annotations.

        "all" returns every match; any other view returns the 100 most
        recently modified. "fiveyard" keeps opportunities closing within 30
        days or in a late stage.
        """
        today = self._today()
        query: dict[str, Any] = {
            "exclude_owners": filters.exclude_owners,
            "exclude_upgrade_design": filters.exclude_upgrade_design,
            "limit": None if filters.view == ViewName.all.value else DEFAULT_LIMIT,
        }
        if filters.week:
            monday, sunday = iso_week_range(filters.week)
            query["created_from"] = monday.isoformat()
            query["created_before"] = (sunday + timedelta(days=1)).isoformat()
        if filters.view == ViewName.fiveyard.value:
            query["close_date_cutoff"] = five_yard_cutoff(today).isoformat()
            query["late_stages"] = FIVE_YARD_STAGES

        rows = await self._opportunities.list_rows(**query)
        prefs = {
            row["opportunity_id"]: PreferenceView.from_row(row)
            for row in await self._preferences.list_for_user(self._user(user_id))
        }

        views = [self._to_view(row, prefs.get(row["sf_id"]), today) for row in rows]
        if filters.priority is not None:
            views = composition.filter_by_priority(views, filters.priority)

        logger.debug(
            "views.opportunities_listed",
            view=filters.view,
            week=filters.week,
            count=len(views),
        )
        return views

    @staticmethod
    def _to_view(row: dict[str, Any], pref: PreferenceView | None, today: date) -> ViewOpportunity:
        explicit = (pref.follow_up_date if pref is not None else None) or row.get("follow_up_date")
        needs, reason = follow_up_status(explicit, row.get("next_step"), today)
        return ViewOpportunity(
            id=row["sf_id"],
            name=row.get("name"),
            stage=row.get("stage"),
            amount=row.get("amount"),
            close_date=row.get("close_date"),
            created_date=row.get("created_date"),
            last_modified=row.get("last_modified"),
            last_contact_date=row.get("last_contact_date") or row.get("last_modified"),
            account_name=row.get("account_name"),
            account_phone=row.get("account_phone"),
            account_person_mobile_phone=row.get("account_person_mobile_phone"),
            opportunity_phone=row.get("opportunity_phone"),
            owner_name=row.get("owner_name"),
            next_step=row.get("next_step"),
            description=row.get("description"),
            priority_level=row.get("priority_level"),
            custom_notes=row.get("custom_notes"),
            follow_up_date=row.get("follow_up_date"),
            customer_preferences=row.get("customer_preferences"),
            location=row.get("location"),
            needs_follow_up=needs,
            follow_up_reason=reason,
            preference=pref,
        )

    async def compose_board(
        self,
        view: ViewName,
        filters: OpportunityFilters,
        user_id: str | None = None,
        target_date: date | None = None,
    ) -> BoardView:
        """Arrange opportunities into board columns for one view.

        weekly: weekday columns by created date. fiveyard: the caller's
        five-yard flags. followups: effective follow-up date equal to
        target_date (default today).
        """
        query_view = ViewName.fiveyard.value if view == ViewName.fiveyard else filters.view
        items = await self.list_opportunities(
            filters.model_copy(update={"view": query_view}), user_id
        )

        if view == ViewName.weekly:
            columns = composition.group_by_weekday(items)
        elif view == ViewName.fiveyard:
            columns = {"fiveyard": composition.five_yard_view(items)}
        elif view == ViewName.followups:
            columns = {"followups": composition.followups_for_date(items, target_date or self._today())}
        else:
            columns = {"all": composition.sort_for_board(items)}
        return BoardView(view=view, columns=columns)

    # ── Opportunity annotations ────────────────────────────────────────────

    async def update_priority(self, opportunity_id: str, priority_level: Any) -> int:
        low, high = PRIORITY_LEVEL_RANGE
        is_int = isinstance(priority_level, int) and not isinstance(priority_level, bool)
        if not is_int or not low <= priority_level <= high:
            raise ValidationError(
                f"Priority must be between {low} and {high}", operation="update_priority"
            )
        return await self._opportunities.update_priority(opportunity_id, priority_level)

    async def update_notes(self, opportunity_id: str, notes: str | None) -> int:
        return await self._opportunities.update_notes(opportunity_id, notes)

    async def set_follow_up_date(self, opportunity_id: str, follow_up_date: str | date | None) -> int:
        day = to_date(follow_up_date) if follow_up_date else None
        if follow_up_date and day is None:
            raise ValidationError(
                f"Unreadable follow-up date: {follow_up_date!r}", operation="set_follow_up_date"
            )
        return await self._opportunities.set_follow_up_date(
            opportunity_id, day.isoformat() if day else None
        )

    # ── Preferences ────────────────────────────────────────────────────────

    async def get_preferences(self, user_id: str | None = None) -> list[PreferenceView]:
        rows = await self._preferences.list_for_user(self._user(user_id))
        return [PreferenceView.from_row(row) for row in rows]

    async def get_preference(self, opportunity_id: str, user_id: str | None = None) -> PreferenceView | None:
        row = await self._preferences.get(self._user(user_id), opportunity_id)
        return PreferenceView.from_row(row) if row else None

    async def save_preferences(
        self,
        payload: PreferenceInput | dict[str, Any],
        user_id: str | None = None,
        *,
        merge: bool = False,
    ) -> PreferenceView:
        """Save one annotation.

        Replaces the stored annotation (omitted fields reset to defaults)
        unless merge=True, which overlays only the submitted fields.
        """
        user = self._user(user_id)
        pref = _validate_preference(payload)
        existing = await self._preferences.get(user, pref.opportunity_id) if merge else None
        await self._preferences.save(user, pref.opportunity_id, pref.to_fields(existing))
        saved = await self._preferences.get(user, pref.opportunity_id)
        return PreferenceView.from_row(saved or {"user_id": user, "opportunity_id": pref.opportunity_id})

    async def save_bulk_preferences(
        self,
        payloads: list[PreferenceInput | dict[str, Any]],
        user_id: str | None = None,
    ) -> int:
        """Replace many annotations atomically.

        Every record is validated before anything is written; a single bad
        record, or a write failure part-way, leaves the store unchanged.

        Returns:
            Number of annotations saved.
        """
        user = self._user(user_id)
        prefs = [_validate_preference(item, index) for index, item in enumerate(payloads)]
        saved = await self._preferences.save_many(
            user, [(pref.opportunity_id, pref.to_fields()) for pref in prefs]
        )
        logger.info("views.preferences_bulk_saved", user_id=user, count=saved)
        return saved
