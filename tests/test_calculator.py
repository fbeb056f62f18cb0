"""Tests for recurrence date math."""

from datetime import date, timedelta

import pytest

from src.models.budget import ItemKind, RecurrenceRule
from src.recurrence.calculator import (
    CalculationError,
    next_due_date,
    next_occurrence,
    project_items,
    project_occurrences,
)

from conftest import make_item


RECURRING_RULES = [r for r in RecurrenceRule if r != RecurrenceRule.ONCE]


class TestNextOccurrence:
    """Tests for next_occurrence()."""

    @pytest.mark.parametrize("rule,expected", [
        (RecurrenceRule.DAILY, date(2024, 3, 16)),
        (RecurrenceRule.WEEKLY, date(2024, 3, 22)),
        (RecurrenceRule.BIWEEKLY, date(2024, 3, 29)),
        (RecurrenceRule.MONTHLY, date(2024, 4, 15)),
        (RecurrenceRule.YEARLY, date(2025, 3, 15)),
    ])
    def test_intervals(self, rule, expected):
        assert next_occurrence(date(2024, 3, 15), rule) == expected

    def test_monthly_clamps_to_leap_february(self):
        assert next_occurrence(date(2024, 1, 31), RecurrenceRule.MONTHLY) == date(2024, 2, 29)

    def test_monthly_clamps_to_common_february(self):
        assert next_occurrence(date(2023, 1, 31), RecurrenceRule.MONTHLY) == date(2023, 2, 28)

    def test_monthly_clamps_to_thirty_day_month(self):
        assert next_occurrence(date(2024, 3, 31), RecurrenceRule.MONTHLY) == date(2024, 4, 30)

    def test_monthly_crosses_year(self):
        assert next_occurrence(date(2024, 12, 31), RecurrenceRule.MONTHLY) == date(2025, 1, 31)

    def test_yearly_leap_day_clamps(self):
        assert next_occurrence(date(2024, 2, 29), RecurrenceRule.YEARLY) == date(2025, 2, 28)

    def test_daily_crosses_leap_day(self):
        assert next_occurrence(date(2024, 2, 28), RecurrenceRule.DAILY) == date(2024, 2, 29)

    def test_once_returns_input(self):
        d = date(2024, 5, 1)
        assert next_occurrence(d, RecurrenceRule.ONCE) == d

    def test_accepts_rule_value_string(self):
        assert next_occurrence(date(2024, 5, 1), "weekly") == date(2024, 5, 8)

    def test_unknown_rule_raises(self):
        with pytest.raises(CalculationError, match="fortnightly"):
            next_occurrence(date(2024, 5, 1), "fortnightly")

    @pytest.mark.parametrize("day", range(1, 32))
    def test_monthly_keeps_or_clamps_day(self, day):
        """Same day-of-month, or the last day when the next month is shorter."""
        start = date(2024, 1, day)
        result = next_occurrence(start, RecurrenceRule.MONTHLY)
        assert result.month == 2
        assert result.day == min(day, 29)

    @pytest.mark.parametrize("rule", RECURRING_RULES)
    def test_strictly_forward(self, rule):
        d = date(2023, 12, 31)
        for _ in range(50):
            nxt = next_occurrence(d, rule)
            assert nxt > d
            d = nxt


class TestNextDueDate:
    """Tests for the clamp-to-now schedule advance."""

    def test_monthly_end_of_january(self):
        """Jan 31 processed on Feb 5 moves to Feb 29, not Mar 5."""
        result = next_due_date(date(2024, 1, 31), RecurrenceRule.MONTHLY, date(2024, 2, 5))
        assert result == date(2024, 2, 29)

    def test_stale_daily_clamps_to_as_of(self):
        """Ten days behind: one interval from as_of, not ten from the old date."""
        as_of = date(2024, 6, 20)
        stale = as_of - timedelta(days=10)
        assert next_due_date(stale, RecurrenceRule.DAILY, as_of) == as_of + timedelta(days=1)

    def test_due_today_advances_one_interval(self):
        as_of = date(2024, 6, 20)
        assert next_due_date(as_of, RecurrenceRule.WEEKLY, as_of) == date(2024, 6, 27)

    def test_stale_monthly_clamps(self):
        result = next_due_date(date(2024, 1, 10), RecurrenceRule.MONTHLY, date(2024, 4, 2))
        assert result == date(2024, 5, 2)

    def test_once_unchanged(self):
        d = date(2024, 1, 1)
        assert next_due_date(d, RecurrenceRule.ONCE, date(2024, 6, 1)) == d

    @pytest.mark.parametrize("rule", RECURRING_RULES)
    @pytest.mark.parametrize("days_behind", [0, 1, 13, 40, 400])
    def test_always_after_as_of(self, rule, days_behind):
        as_of = date(2024, 3, 1)
        stale = as_of - timedelta(days=days_behind)
        result = next_due_date(stale, rule, as_of)
        assert result > as_of
        assert result > stale


class TestProjections:
    """Tests for upcoming-occurrence projection."""

    def test_weekly_projection(self):
        dates = list(project_occurrences(
            date(2024, 1, 1), RecurrenceRule.WEEKLY, date(2024, 1, 29)
        ))
        assert dates == [
            date(2024, 1, 1),
            date(2024, 1, 8),
            date(2024, 1, 15),
            date(2024, 1, 22),
            date(2024, 1, 29),
        ]

    def test_monthly_projection_steps_from_previous(self):
        dates = list(project_occurrences(
            date(2024, 1, 31), RecurrenceRule.MONTHLY, date(2024, 4, 30)
        ))
        assert dates == [
            date(2024, 1, 31),
            date(2024, 2, 29),
            date(2024, 3, 29),
            date(2024, 4, 29),
        ]

    def test_projection_respects_limit(self):
        dates = list(project_occurrences(
            date(2024, 1, 1), RecurrenceRule.DAILY, date(2025, 1, 1), limit=3
        ))
        assert len(dates) == 3

    def test_once_projects_single_date(self):
        dates = list(project_occurrences(
            date(2024, 1, 1), RecurrenceRule.ONCE, date(2024, 12, 31)
        ))
        assert dates == [date(2024, 1, 1)]

    def test_start_after_until_is_empty(self):
        assert list(project_occurrences(
            date(2024, 6, 1), RecurrenceRule.DAILY, date(2024, 5, 1)
        )) == []

    def test_project_items_sorted_and_signed(self):
        salary = make_item(name="Salary", rule=RecurrenceRule.MONTHLY,
                           recurrence_date=date(2024, 1, 25))
        rent = make_item(name="Rent", kind=ItemKind.EXPENSE, amount="700",
                         rule=RecurrenceRule.MONTHLY, recurrence_date=date(2024, 1, 1))
        laptop = make_item(name="Laptop", rule=RecurrenceRule.ONCE)

        projections = project_items([salary, rent, laptop], until=date(2024, 2, 28))

        assert [(p.name, p.occurs_on) for p in projections] == [
            ("Rent", date(2024, 1, 1)),
            ("Salary", date(2024, 1, 25)),
            ("Rent", date(2024, 2, 1)),
            ("Salary", date(2024, 2, 25)),
        ]
        assert projections[0].signed_amount < 0
        assert projections[1].signed_amount > 0

    def test_project_items_since(self):
        rent = make_item(name="Rent", rule=RecurrenceRule.WEEKLY,
                         recurrence_date=date(2024, 1, 1))
        projections = project_items([rent], until=date(2024, 1, 31), since=date(2024, 1, 20))
        assert [p.occurs_on for p in projections] == [date(2024, 1, 22), date(2024, 1, 29)]
