"""
Recurrence date math.

All calendar arithmetic goes through dateutil's relativedelta, which
clamps to the last valid day of the target month: Jan 31 + 1 month is
Feb 29 in a leap year and Feb 28 otherwise, Feb 29 + 1 year is Feb 28.

Everything here is pure. "Now" is always passed in.
"""

from datetime import date
from typing import Iterable, Iterator, Optional

from dateutil.relativedelta import relativedelta

from src.models.budget import BudgetItem, OccurrenceProjection, RecurrenceRule


class CalculationError(Exception):
    """Recurrence rule the calculator doesn't know."""
    pass


INTERVALS: dict[RecurrenceRule, relativedelta] = {
    RecurrenceRule.DAILY: relativedelta(days=1),
    RecurrenceRule.WEEKLY: relativedelta(weeks=1),
    RecurrenceRule.BIWEEKLY: relativedelta(weeks=2),
    RecurrenceRule.MONTHLY: relativedelta(months=1),
    RecurrenceRule.YEARLY: relativedelta(years=1),
}


def _coerce_rule(rule) -> RecurrenceRule:
    try:
        return RecurrenceRule(rule)
    except ValueError:
        raise CalculationError(f"Unknown recurrence rule: {rule!r}")


def next_occurrence(current_date: date, rule: RecurrenceRule) -> date:
    """
    Date one interval after current_date.

    ONCE returns current_date unchanged; callers should not ask for it.

    Raises:
        CalculationError: If rule is not a known recurrence rule
    """
    rule = _coerce_rule(rule)
    if rule == RecurrenceRule.ONCE:
        return current_date
    return current_date + INTERVALS[rule]


def next_due_date(recurrence_date: date, rule: RecurrenceRule, as_of: date) -> date:
    """
    Next schedule date for an item that is due on as_of.

    One interval is added to the stored date. If that is still on or
    before as_of, the schedule is stale and the interval is added to
    as_of instead, so a delayed run fires each item once and the
    result is always after as_of.

    >>> next_due_date(date(2024, 1, 31), RecurrenceRule.MONTHLY, date(2024, 2, 5))
    datetime.date(2024, 2, 29)
    >>> next_due_date(date(2024, 3, 1), RecurrenceRule.DAILY, date(2024, 3, 11))
    datetime.date(2024, 3, 12)
    """
    candidate = next_occurrence(recurrence_date, rule)
    if candidate <= as_of and _coerce_rule(rule) != RecurrenceRule.ONCE:
        return next_occurrence(as_of, rule)
    return candidate


def project_occurrences(
    start: date,
    rule: RecurrenceRule,
    until: date,
    limit: int = 366,
) -> Iterator[date]:
    """
    Yield start and each following occurrence up to until (inclusive).

    Each step is taken from the previous date, the same way the
    recurring run advances a template, so a Jan 31 monthly item
    projects Jan 31, Feb 29, Mar 29, ...
    """
    rule = _coerce_rule(rule)
    current = start
    count = 0
    while current <= until and count < limit:
        yield current
        count += 1
        if rule == RecurrenceRule.ONCE:
            return
        current = next_occurrence(current, rule)


def project_items(
    items: Iterable[BudgetItem],
    until: date,
    limit_per_item: int = 366,
    since: Optional[date] = None,
) -> list[OccurrenceProjection]:
    """
    Upcoming occurrences of recurring items, ordered by date.

    Args:
        items: Budget items (one-off items are skipped)
        until: Last date to include
        limit_per_item: Cap on occurrences per item
        since: Drop occurrences before this date
    """
    projections = []
    for item in items:
        if not item.is_recurring or item.recurrence_date is None:
            continue
        for occurs_on in project_occurrences(
            item.recurrence_date, item.recurrence_rule, until, limit_per_item
        ):
            if since is not None and occurs_on < since:
                continue
            projections.append(OccurrenceProjection(
                item_id=item.id,
                name=item.name,
                kind=item.kind,
                category=item.category,
                occurs_on=occurs_on,
                signed_amount=item.signed_amount,
            ))
    projections.sort(key=lambda p: (p.occurs_on, str(p.item_id)))
    return projections
