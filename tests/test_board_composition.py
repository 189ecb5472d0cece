"""Tests for read-side date rules and board composition (pure functions)."""

from __future__ import annotations

from datetime import date

import pytest

from src.dealboard.core.errors import ValidationError
from src.dealboard.views import composition
from src.dealboard.views.filters import (
    REASON_CUSTOM_DATE,
    REASON_NEXT_STEP,
    five_yard_cutoff,
    follow_up_status,
    iso_week_range,
    parse_next_step_date,
    to_date,
)
from src.dealboard.views.schemas import PreferenceView, ViewOpportunity


def _opp(sf_id: str, color: str | None = None, stage: str = "Prospecting", **kwargs) -> ViewOpportunity:
    pref = None
    if color is not None or kwargs.get("five_yard") or kwargs.get("pref_follow_up"):
        pref = PreferenceView(
            user_id="default",
            opportunity_id=sf_id,
            priority_color=color or "gray",
            five_yard_line=kwargs.pop("five_yard", False),
            follow_up_date=kwargs.pop("pref_follow_up", None),
        )
    kwargs.pop("five_yard", None)
    kwargs.pop("pref_follow_up", None)
    return ViewOpportunity(id=sf_id, stage=stage, preference=pref, **kwargs)


# ── Filters ──────────────────────────────────────────────────────────────────


class TestIsoWeekRange:
    def test_monday_to_sunday(self):
        assert iso_week_range("2024-W03") == (date(2024, 1, 15), date(2024, 1, 21))

    def test_week_one_can_start_in_previous_year(self):
        assert iso_week_range("2025-W01") == (date(2024, 12, 30), date(2025, 1, 5))

    def test_week_53_only_in_long_years(self):
        assert iso_week_range("2020-W53")[0] == date(2020, 12, 28)
        with pytest.raises(ValidationError):
            iso_week_range("2021-W53")

    @pytest.mark.parametrize("week", ["2024-03", "2024-W00", "garbage"])
    def test_invalid(self, week):
        with pytest.raises(ValidationError):
            iso_week_range(week)


class TestFollowUpStatus:
    today = date(2024, 3, 10)

    def test_explicit_date_due(self):
        assert follow_up_status("2024-03-10", None, self.today) == (True, REASON_CUSTOM_DATE)

    def test_explicit_date_past_with_next_step_ahead(self):
        assert follow_up_status("2024-03-09", "03/11/2024", self.today) == (True, REASON_CUSTOM_DATE)

    def test_explicit_date_wins_when_both_due(self):
        assert follow_up_status("2024-03-09", "2024-03-01", self.today) == (True, REASON_CUSTOM_DATE)

    def test_explicit_date_in_future_falls_through_to_next_step(self):
        assert follow_up_status("2024-03-20", "03/01/2024", self.today) == (True, REASON_NEXT_STEP)

    def test_next_step_not_a_date(self):
        assert follow_up_status(None, "Send revised quote", self.today) == (False, None)

    def test_nothing_due(self):
        assert follow_up_status("2024-04-01", "2024-04-02", self.today) == (False, None)


class TestDateParsing:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("2024-03-01", date(2024, 3, 1)),
            ("03/01/2024", date(2024, 3, 1)),
            ("3/1/24", date(2024, 3, 1)),
            ("Mar 1, 2024", date(2024, 3, 1)),
            ("March 1 2024", date(2024, 3, 1)),
            ("2024-03-01T15:00:00.000+0000", date(2024, 3, 1)),
            ("call Tuesday", None),
            ("", None),
            (None, None),
        ],
    )
    def test_next_step_formats(self, text, expected):
        assert parse_next_step_date(text) == expected

    def test_to_date_from_salesforce_timestamp(self):
        assert to_date("2024-01-15T10:00:00.000+0000") == date(2024, 1, 15)

    def test_five_yard_cutoff(self):
        assert five_yard_cutoff(date(2024, 1, 15)) == date(2024, 2, 14)


# ── Composition ──────────────────────────────────────────────────────────────


class TestOrdering:
    def test_priority_then_stage_bucket(self):
        items = [
            _opp("g", "green"),
            _opp("lost", "red", stage="Closed Lost"),
            _opp("plain"),
            _opp("won", "red", stage="Closed Won"),
            _opp("r", "red"),
            _opp("y", "yellow"),
            _opp("b", "blue"),
        ]

        ordered = [o.id for o in composition.sort_for_board(items)]

        assert ordered == ["won", "r", "lost", "y", "b", "plain", "g"]

    def test_sort_is_stable_within_bucket(self):
        items = [_opp(str(i), "blue") for i in range(5)]
        assert [o.id for o in composition.sort_for_board(items)] == ["0", "1", "2", "3", "4"]

    def test_unknown_colour_ranks_as_gray(self):
        assert composition.priority_rank("purple") == composition.priority_rank("gray") == 4

    def test_filter_by_priority(self):
        items = [_opp("a", "red"), _opp("b"), _opp("c", "red")]
        assert [o.id for o in composition.filter_by_priority(items, "red")] == ["a", "c"]
        assert [o.id for o in composition.filter_by_priority(items, "gray")] == ["b"]
        assert len(composition.filter_by_priority(items, None)) == 3


class TestGroupByWeekday:
    def test_weekday_columns_and_weekend(self):
        items = [
            _opp("mon", created_date="2024-01-15T10:00:00.000+0000"),
            _opp("fri", created_date="2024-01-19T10:00:00.000+0000"),
            _opp("sat", created_date="2024-01-20T10:00:00.000+0000"),
            _opp("sun", created_date="2024-01-21T10:00:00.000+0000"),
            _opp("none", created_date=None),
            _opp("junk", created_date="yesterday"),
        ]

        columns = composition.group_by_weekday(items)

        assert list(columns) == ["monday", "tuesday", "wednesday", "thursday", "friday", "weekend"]
        assert [o.id for o in columns["monday"]] == ["mon"]
        assert [o.id for o in columns["friday"]] == ["fri"]
        assert {o.id for o in columns["weekend"]} == {"sat", "sun"}
        assert sum(len(v) for v in columns.values()) == 4

    def test_weekday_taken_in_utc(self):
        # Sunday 20:00 at -0500 is Monday 01:00 UTC.
        columns = composition.group_by_weekday([_opp("late", created_date="2024-01-14T20:00:00.000-0500")])

        assert [o.id for o in columns["monday"]] == ["late"]


class TestFiveYardAndFollowups:
    def test_five_yard_view_only_flagged(self):
        items = [
            _opp("a", "green", five_yard=True),
            _opp("b", "red"),
            _opp("c", "red", five_yard=True),
            _opp("d"),
        ]

        assert [o.id for o in composition.five_yard_view(items)] == ["c", "a"]

    def test_followups_prefer_annotation_date(self):
        target = date(2024, 3, 10)
        items = [
            _opp("row-date", follow_up_date="2024-03-10"),
            _opp("pref-date", "yellow", pref_follow_up="2024-03-10", follow_up_date="2024-04-01"),
            _opp("overridden", "red", pref_follow_up="2024-03-11", follow_up_date="2024-03-10"),
        ]

        due = composition.followups_for_date(items, target)

        assert [o.id for o in due] == ["pref-date", "row-date"]
