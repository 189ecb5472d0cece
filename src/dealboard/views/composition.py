"""Board composition -- ordering and grouping of view opportunities.

Priority comes from the caller's annotation colour (gray when unannotated):
red, yellow, blue, gray, green. Within one priority, Closed Won sorts first
and Closed Lost last; everything else keeps its incoming order (sorts are
stable).
"""

from __future__ import annotations

from datetime import date, timezone

from src.dealboard.crm.activity import parse_sf_datetime
from src.dealboard.views.filters import to_date
from src.dealboard.views.schemas import PriorityColor, ViewOpportunity

PRIORITY_RANK: dict[str, int] = {
    PriorityColor.red.value: 1,
    PriorityColor.yellow.value: 2,
    PriorityColor.blue.value: 3,
    PriorityColor.gray.value: 4,
    PriorityColor.green.value: 5,
}
DEFAULT_RANK = PRIORITY_RANK[PriorityColor.gray.value]

WEEKDAY_COLUMNS: tuple[str, ...] = ("monday", "tuesday", "wednesday", "thursday", "friday", "weekend")


def priority_color(opp: ViewOpportunity) -> str:
    if opp.preference is None:
        return PriorityColor.gray.value
    return opp.preference.priority_color or PriorityColor.gray.value


def priority_rank(color: str | None) -> int:
    return PRIORITY_RANK.get(color or "", DEFAULT_RANK)


def stage_bucket(stage: str | None) -> int:
    lowered = (stage or "").lower()
    if "closed won" in lowered:
        return 0
    if "closed lost" in lowered:
        return 2
    return 1


def sort_by_priority(items: list[ViewOpportunity]) -> list[ViewOpportunity]:
    return sorted(items, key=lambda o: priority_rank(priority_color(o)))


def sort_for_board(items: list[ViewOpportunity]) -> list[ViewOpportunity]:
    return sorted(items, key=lambda o: (priority_rank(priority_color(o)), stage_bucket(o.stage)))


def filter_by_priority(items: list[ViewOpportunity], color: PriorityColor | str | None) -> list[ViewOpportunity]:
    if color is None:
        return list(items)
    wanted = color.value if isinstance(color, PriorityColor) else color
    return [o for o in items if priority_color(o) == wanted]


def group_by_weekday(items: list[ViewOpportunity]) -> dict[str, list[ViewOpportunity]]:
    """Bucket by the UTC weekday of createdDate; Saturday and Sunday share "weekend".

    Opportunities without a readable created date are left off the board.
    """
    columns: dict[str, list[ViewOpportunity]] = {name: [] for name in WEEKDAY_COLUMNS}
    for opp in items:
        created = parse_sf_datetime(opp.created_date)
        if created is None:
            continue
        weekday = created.astimezone(timezone.utc).weekday()
        columns[WEEKDAY_COLUMNS[min(weekday, 5)]].append(opp)
    return {name: sort_for_board(bucket) for name, bucket in columns.items()}


def five_yard_view(items: list[ViewOpportunity]) -> list[ViewOpportunity]:
    """Opportunities the caller flagged as five-yard-line, by priority."""
    flagged = [o for o in items if o.preference is not None and o.preference.five_yard_line]
    return sort_by_priority(flagged)


def effective_follow_up(opp: ViewOpportunity) -> date | None:
    """Annotation follow-up date if set, else the opportunity's own."""
    if opp.preference is not None and opp.preference.follow_up_date:
        return to_date(opp.preference.follow_up_date)
    return to_date(opp.follow_up_date)


def followups_for_date(items: list[ViewOpportunity], target: date) -> list[ViewOpportunity]:
    due = [o for o in items if effective_follow_up(o) == target]
    return sort_by_priority(due)
