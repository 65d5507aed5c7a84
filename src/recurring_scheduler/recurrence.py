"""
Calendar arithmetic for recurrence definitions.

Every occurrence of a definition lies on a fixed grid derived from its anchor:

    weekly   anchor + k weeks
    monthly  anchor shifted by k calendar months
    yearly   anchor shifted by k calendar years

for k >= 0. Time-of-day, weekday, day-of-month and month always come from the
anchor itself, so repeated calls never drift. Arithmetic is wall-clock in the
anchor's tzinfo, which keeps the local time-of-day stable across DST changes.

When the anchor's day does not exist in a target month (the 31st in April, the
29th of February in a common year) the day is clamped to the last day of that
month. The following months return to the anchor's day.
"""

import calendar
from datetime import datetime, timedelta
from typing import List, Union

from recurring_scheduler.domain.definition import Frequency, ensure_aware
from recurring_scheduler.errors import InvalidFrequencyError


def coerce_frequency(frequency: Union[Frequency, str]) -> Frequency:
    if isinstance(frequency, Frequency):
        return frequency
    try:
        return Frequency(frequency)
    except ValueError:
        raise InvalidFrequencyError(f"Unsupported frequency: {frequency!r}") from None


def _shift_months(dt: datetime, months: int) -> datetime:
    total_months = (dt.month - 1) + months
    year = dt.year + total_months // 12
    month = (total_months % 12) + 1

    # Clip days (e.g. Feb 31 -> Feb 28)
    days_in_month = calendar.monthrange(year, month)[1]
    day = min(dt.day, days_in_month)

    return dt.replace(year=year, month=month, day=day)


def add_periods(anchor: datetime, frequency: Union[Frequency, str], periods: int = 1) -> datetime:
    """
    Return the anchor moved forward by ``periods`` whole periods of ``frequency``.

    Raises:
        InvalidFrequencyError: If ``frequency`` is not a supported frequency.
    """
    frequency = coerce_frequency(frequency)
    if frequency == Frequency.WEEKLY:
        return anchor + timedelta(weeks=periods)
    if frequency == Frequency.MONTHLY:
        return _shift_months(anchor, periods)
    return _shift_months(anchor, 12 * periods)


def _lower_bound(anchor: datetime, frequency: Frequency, after: datetime) -> int:
    # Never overshoots: DST shifts and month clamping move a slot by less than one period.
    if frequency == Frequency.WEEKLY:
        estimate = (after - anchor) // timedelta(weeks=1)
    elif frequency == Frequency.MONTHLY:
        local = after.astimezone(anchor.tzinfo)
        estimate = (local.year - anchor.year) * 12 + (local.month - anchor.month)
    else:
        estimate = after.astimezone(anchor.tzinfo).year - anchor.year
    return max(0, estimate - 1)


def next_after(anchor: datetime, frequency: Union[Frequency, str], after: datetime) -> datetime:
    """
    Compute the first grid slot of ``anchor`` that is strictly later than ``after``.

    Args:
        anchor (datetime): The definition's original anchor time.
        frequency (Frequency): Weekly, monthly or yearly.
        after (datetime): Reference timestamp, typically the slot just executed.

    Returns:
        datetime: A slot on the anchor's grid, always greater than ``after``.

    Raises:
        InvalidFrequencyError: If ``frequency`` is not a supported frequency.
    """
    frequency = coerce_frequency(frequency)
    anchor = ensure_aware(anchor)
    after = ensure_aware(after)

    if anchor > after:
        return anchor

    periods = _lower_bound(anchor, frequency, after)
    candidate = add_periods(anchor, frequency, periods)
    while candidate <= after:
        periods += 1
        candidate = add_periods(anchor, frequency, periods)
    return candidate


def occurrences_between(anchor: datetime, frequency: Union[Frequency, str], start: datetime, end: datetime) -> List[datetime]:
    """
    List the grid slots of ``anchor`` in the half-open interval ``(start, end]``.
    """
    slots: List[datetime] = []
    slot = next_after(anchor, frequency, start)
    while slot <= end:
        slots.append(slot)
        slot = next_after(anchor, frequency, slot)
    return slots
