"""
Recurrence date arithmetic.

Occurrence n of a schedule is always computed from the start date, never
from occurrence n-1, so month-end clamping does not drift: a schedule
starting on Jan 31 yields Feb 29 (or 28), then Mar 31.
"""

import calendar
from datetime import date, timedelta
from typing import Iterator, Optional, Tuple

from vendor_ledger.app.models.ledger_enums import RecurrencePattern

MONTH_STEPS = {
    RecurrencePattern.MONTHLY: 1,
    RecurrencePattern.QUARTERLY: 3,
    RecurrencePattern.YEARLY: 12,
}

DAY_STEPS = {
    RecurrencePattern.DAILY: 1,
    RecurrencePattern.WEEKLY: 7,
}


def add_months(start: date, months: int) -> date:
    """Same day ``months`` later, clamped to the last day of a shorter month."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def occurrence_date(start: date, pattern: RecurrencePattern, index: int) -> date:
    """Date of the ``index``-th occurrence (0 is the start date itself)."""
    pattern = RecurrencePattern(pattern)
    if pattern in DAY_STEPS:
        return start + timedelta(days=DAY_STEPS[pattern] * index)
    return add_months(start, MONTH_STEPS[pattern] * index)


def due_occurrences(
    start: date,
    pattern: RecurrencePattern,
    end_date: Optional[date],
    from_index: int,
    as_of: date,
) -> Iterator[Tuple[int, date]]:
    """
    Yield (index, date) for every occurrence from ``from_index`` that is due.

    An occurrence is due when its date is on or before ``as_of`` and, for
    bounded schedules, on or before ``end_date``. Missed occurrences are all
    yielded (backfill), oldest first.
    """
    index = from_index
    while True:
        when = occurrence_date(start, pattern, index)
        if when > as_of or (end_date is not None and when > end_date):
            return
        yield index, when
        index += 1


def is_exhausted(end_date: Optional[date], next_due: date) -> bool:
    return end_date is not None and next_due > end_date
