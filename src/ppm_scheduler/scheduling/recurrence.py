from datetime import datetime

from dateutil.relativedelta import relativedelta

FREQUENCY_UNITS = ("days", "weeks", "months", "years")

DEFAULT_HORIZON_MONTHS = 12
DEFAULT_MAX_OCCURRENCES = 100


def _coerce_value(value) -> int | None:
    """Return the rule value as a positive int, or None when it is not one."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    if number != value and not isinstance(value, str):
        # 1.5 months is not a rule we can honour
        return None
    return number if number > 0 else None


def period(unit: str | None, value) -> relativedelta | None:
    """Build the calendar step for a frequency rule, or None if the rule is invalid."""
    number = _coerce_value(value)
    if number is None or unit not in FREQUENCY_UNITS:
        return None
    return relativedelta(**{unit: number})


def add_period(instant: datetime, unit: str | None, value) -> datetime | None:
    """Advance ``instant`` by one period of the rule."""
    step = period(unit, value)
    if step is None:
        return None
    return instant + step


def expand(
    unit: str | None,
    value,
    start: datetime,
    horizon: datetime,
    max_occurrences: int = DEFAULT_MAX_OCCURRENCES,
) -> list[datetime]:
    """Expand a frequency rule into the due-dates that follow ``start``.

    Each due-date is the previous one plus one period, with month-end
    clamping: a 2024-01-31 start gives 02-29, 03-29, 04-29. The start itself
    is never a due-date.

    Args:
        unit: One of days, weeks, months, years.
        value: Positive number of units between occurrences.
        start: Instant the first period is added to.
        horizon: Latest instant a due-date may fall on (inclusive).
        max_occurrences: Upper bound on the number of due-dates returned.

    Returns:
        Strictly ascending due-dates, empty when the rule is invalid.
    """
    step = period(unit, value)
    if step is None:
        return []

    due_dates: list[datetime] = []
    cursor = start + step
    while cursor <= horizon and len(due_dates) < max_occurrences:
        due_dates.append(cursor)
        cursor = cursor + step
    return due_dates
