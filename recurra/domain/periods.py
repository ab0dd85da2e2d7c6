"""Day-granularity date arithmetic for recurring schedules."""

from datetime import date, datetime, timedelta
from typing import Union

DateLike = Union[date, datetime]


class InvalidIntervalError(ValueError):
    """Raised when a recurrence interval is not a positive number of days."""

    def __init__(self, interval_days: object):
        super().__init__(f"Recurrence interval must be a positive number of days, got {interval_days!r}")
        self.interval_days = interval_days


def to_day(value: DateLike) -> date:
    """Truncate a datetime to its calendar day.

    ``datetime`` is a subclass of ``date``, so it has to be checked first.
    """
    if isinstance(value, datetime):
        return value.date()
    return value


def next_occurrence(base_date: DateLike, interval_days: int) -> date:
    """Calculate the occurrence following ``base_date``.

    Calendar arithmetic handles month and year rollover, so the result is
    always a valid date.

    Args:
        base_date: Current occurrence date
        interval_days: Recurrence interval in whole days (> 0)

    Returns:
        Next occurrence date

    Raises:
        InvalidIntervalError: If interval_days is not a positive integer

    Example:
        >>> next_occurrence(date(2023, 12, 28), 5)
        datetime.date(2024, 1, 2)
    """
    if isinstance(interval_days, bool) or not isinstance(interval_days, int) or interval_days <= 0:
        raise InvalidIntervalError(interval_days)
    return to_day(base_date) + timedelta(days=interval_days)


def days_until(due: DateLike, today: DateLike) -> int:
    """Signed number of whole days from ``today`` to ``due``.

    Both values are truncated to their day first, so the difference is
    floored rather than rounded: a due date earlier today is 0, yesterday -1.
    """
    return (to_day(due) - to_day(today)).days


def due_occurrences(next_due: date, interval_days: int, today: date) -> list[date]:
    """List every occurrence from ``next_due`` up to and including ``today``.

    This is the backfill schedule of a template whose job did not run for
    several periods.

    Example:
        >>> due_occurrences(date(2024, 1, 1), 7, date(2024, 1, 15))
        [datetime.date(2024, 1, 1), datetime.date(2024, 1, 8), datetime.date(2024, 1, 15)]
    """
    dates = []
    current = next_due
    while current <= today:
        dates.append(current)
        current = next_occurrence(current, interval_days)
    return dates


def first_after(next_due: date, interval_days: int, today: date) -> date:
    """First occurrence strictly after ``today``."""
    current = next_due
    while current <= today:
        current = next_occurrence(current, interval_days)
    return current
