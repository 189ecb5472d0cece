"""Pydantic schemas for the read side: filters, view records, annotations."""

from __future__ import annotations

import re
from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

_WEEK_PATTERN = re.compile(r"^\d{4}-W\d{2}$")


class PriorityColor(str, Enum):
    """Annotation colour; gray means no priority set."""

    gray = "gray"
    red = "red"
    yellow = "yellow"
    blue = "blue"
    green = "green"


class ViewName(str, Enum):
    weekly = "weekly"
    fiveyard = "fiveyard"
    all = "all"
    followups = "followups"


# ── Preferences ──────────────────────────────────────────────────────────────

PREFERENCE_DEFAULTS: dict[str, Any] = {
    "priority_color": PriorityColor.gray.value,
    "intent_level": 5,
    "five_yard_line": 0,
    "follow_up_date": None,
    "position_x": None,
    "position_y": None,
}


class PreferenceInput(BaseModel):
    """One annotation as submitted by a client.

    Omitted or null fields mean "default" on a replacing save and "keep" on
    a merging save.
    """

    model_config = ConfigDict(extra="ignore")

    opportunity_id: str = Field(min_length=1)
    priority_color: PriorityColor | None = None
    intent_level: int | None = Field(default=None, ge=1, le=10)
    five_yard_line: bool | None = None
    follow_up_date: date | None = None
    position_x: float | None = None
    position_y: float | None = None

    @field_validator("follow_up_date", mode="before")
    @classmethod
    def _blank_date_is_none(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            if not value:
                return None
            # Accept full timestamps; only the calendar day is kept.
            if len(value) > 10 and value[4] == "-" and value[10] in "T ":
                return value[:10]
        return value

    def _submitted(self) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for name in PREFERENCE_DEFAULTS:
            value = getattr(self, name)
            if value is None:
                continue
            if isinstance(value, PriorityColor):
                value = value.value
            elif isinstance(value, bool):
                value = int(value)
            elif isinstance(value, date):
                value = value.isoformat()
            values[name] = value
        return values

    def to_fields(self, existing: dict[str, Any] | None = None) -> dict[str, Any]:
        """Stored column values for this annotation.

        Args:
            existing: The stored row to overlay onto (merge). When None, every
                field not submitted takes its default (replace).
        """
        base = dict(PREFERENCE_DEFAULTS)
        if existing is not None:
            base.update({k: existing.get(k, v) for k, v in PREFERENCE_DEFAULTS.items()})
        base.update(self._submitted())
        return base


class PreferenceView(BaseModel):
    """A stored annotation as returned to clients."""

    user_id: str
    opportunity_id: str
    priority_color: str = PriorityColor.gray.value
    intent_level: int = 5
    five_yard_line: bool = False
    follow_up_date: str | None = None
    position_x: float | None = None
    position_y: float | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> PreferenceView:
        return cls(
            user_id=row["user_id"],
            opportunity_id=row["opportunity_id"],
            priority_color=row.get("priority_color") or PriorityColor.gray.value,
            intent_level=row.get("intent_level") if row.get("intent_level") is not None else 5,
            five_yard_line=bool(row.get("five_yard_line")),
            follow_up_date=row.get("follow_up_date"),
            position_x=row.get("position_x"),
            position_y=row.get("position_y"),
            updated_at=row.get("updated_at"),
        )


# ── Opportunity Views ────────────────────────────────────────────────────────


class OpportunityFilters(BaseModel):
    """Filters for the opportunity list; every set filter must match."""

    exclude_owners: list[str] = Field(default_factory=list)
    exclude_upgrade_design: bool = True
    week: str | None = None
    view: str | None = None
    priority: PriorityColor | None = None

    @field_validator("week")
    @classmethod
    def _check_week(cls, value: str | None) -> str | None:
        if value in (None, ""):
            return None
        if not _WEEK_PATTERN.match(value):
            raise ValueError("week must look like YYYY-Www")
        return value


class ViewOpportunity(BaseModel):
    """An opportunity as presented to clients (camelCase JSON)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    name: str | None = None
    stage: str | None = None
    amount: float | None = None
    close_date: str | None = None
    created_date: str | None = None
    last_modified: str | None = None
    last_contact_date: str | None = None
    account_name: str | None = None
    account_phone: str | None = None
    account_person_mobile_phone: str | None = None
    opportunity_phone: str | None = None
    owner_name: str | None = None
    next_step: str | None = None
    description: str | None = None
    priority_level: int | None = None
    custom_notes: str | None = None
    follow_up_date: str | None = None
    customer_preferences: str | None = None
    location: str | None = None
    needs_follow_up: bool = False
    follow_up_reason: str | None = None
    preference: PreferenceView | None = None


class BoardView(BaseModel):
    """Opportunities arranged for one board view, keyed by column."""

    view: ViewName
    columns: dict[str, list[ViewOpportunity]]
