"""Date rules for the read side: ISO weeks, the five-yard window, follow-ups.

Everything here is pure; ``today`` is always passed in so results are
deterministic under test.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta

from src.dealboard.core.errors import ValidationError
from src.dealboard.crm.activity import parse_sf_datetime

FIVE_YARD_WINDOW_DAYS = 30
FIVE_YARD_STAGES: tuple[str, ...] = (
    "Proposal/Price Quote",
    "Negotiation/Review",
    "Closed Won",
)

REASON_CUSTOM_DATE = "Custom follow-up date reached"
REASON_NEXT_STEP = "Next step date passed"

# Next-step text is free-form; these are the date spellings reps actually use.
_NEXT_STEP_FORMATS: tuple[str, ...] = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%Y/%m/%d",
    "%b %d, %Y",
    "%B %d, %Y",
    "%b %d %Y",
    "%B %d %Y",
)


def iso_week_range(week: str) -> tuple[date, date]:
    """Return (Monday, Sunday) of an ISO week written as YYYY-Www.

    Raises:
        ValidationError: Malformed string or week number out of range.
    """
    try:
        year_text, week_text = week.split("-W")
        monday = date.fromisocalendar(int(year_text), int(week_text), 1)
    except ValueError as exc:
        raise ValidationError(f"Invalid ISO week: {week!r}", operation="iso_week_range", cause=exc) from exc
    return monday, monday + timedelta(days=6)


def five_yard_cutoff(today: date) -> date:
    return today + timedelta(days=FIVE_YARD_WINDOW_DAYS)


def to_date(value: str | date | datetime | None) -> date | None:
    """Calendar day of an ISO date, ISO timestamp, or Salesforce timestamp."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = value.strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass
    parsed = parse_sf_datetime(text)
    return parsed.date() if parsed else None


def parse_next_step_date(next_step: str | None) -> date | None:
    """Interpret a next-step note as a date, if it is one."""
    if not next_step:
        return None
    text = next_step.strip()
    for fmt in _NEXT_STEP_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return to_date(text) if len(text) >= 10 and text[4] == "-" else None


def follow_up_status(
    explicit_date: str | date | None,
    next_step: str | None,
    today: date,
) -> tuple[bool, str | None]:
    """Decide whether an opportunity needs follow-up, and why.

    An explicit follow-up date on or before today wins; otherwise a next
    step that parses as a date on or before today; otherwise nothing.
    """
    explicit = to_date(explicit_date)
    if explicit is not None and explicit <= today:
        return True, REASON_CUSTOM_DATE
    step_date = parse_next_step_date(next_step)
    if step_date is not None and step_date <= today:
        return True, REASON_NEXT_STEP
    return False, None
