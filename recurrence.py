"""Next-occurrence arithmetic for reminders.

Every occurrence is computed from the initial date (``initial + k * N units``),
never from the previous occurrence. Month and year steps clamp to the last day
of the target month, so an initial date of Feb 29 lands on Feb 28 in non-leap
years and goes back to Feb 29 in leap years, and Jan 31 monthly gives Feb 28
then Mar 31.
"""

from datetime import date, timedelta
from typing import Optional, Union

from dateutil.relativedelta import relativedelta

from database import FrequencyEnum

FrequencyLike = Union[FrequencyEnum, str]

_DAY_UNITS = {FrequencyEnum.DAY: 1, FrequencyEnum.WEEK: 7}
_MONTH_UNITS = {FrequencyEnum.MONTH: 1, FrequencyEnum.YEAR: 12}


def _validate(frequency_type: FrequencyLike, frequency_number: int) -> FrequencyEnum:
    kind = FrequencyEnum(frequency_type)
    if kind is not FrequencyEnum.ONE_TIME:
        if frequency_number is None or int(frequency_number) < 1:
            raise ValueError(f"frequency_number must be a positive integer, got {frequency_number!r}")
    return kind


def nth_occurrence(frequency_type: FrequencyLike, frequency_number: int, initial_date: date, n: int) -> date:
    """Return the n-th occurrence (n=0 is the initial date itself)."""
    kind = _validate(frequency_type, frequency_number)
    if kind is FrequencyEnum.ONE_TIME:
        if n != 0:
            raise ValueError("one_time reminders only have a single occurrence")
        return initial_date
    step = int(frequency_number) * n
    if kind in _DAY_UNITS:
        return initial_date + timedelta(days=_DAY_UNITS[kind] * step)
    return initial_date + relativedelta(months=_MONTH_UNITS[kind] * step)


def next_occurrence(
    frequency_type: FrequencyLike,
    frequency_number: int,
    initial_date: date,
    today: date,
) -> Optional[date]:
    """Return the first occurrence strictly after ``today``.

    Returns None for one_time reminders, which have nothing left to schedule
    once their occurrence fired. A reminder that was dormant for several
    cycles jumps straight to the next future date.
    """
    kind = _validate(frequency_type, frequency_number)
    if kind is FrequencyEnum.ONE_TIME:
        return None
    if initial_date > today:
        return initial_date

    number = int(frequency_number)
    if kind in _DAY_UNITS:
        step_days = _DAY_UNITS[kind] * number
        elapsed = (today - initial_date).days
        return initial_date + timedelta(days=(elapsed // step_days + 1) * step_days)

    step_months = _MONTH_UNITS[kind] * number
    elapsed_months = (today.year - initial_date.year) * 12 + (today.month - initial_date.month)
    n = elapsed_months // step_months
    candidate = nth_occurrence(kind, number, initial_date, n)
    # Clamping can leave the estimate on or before today; one more step fixes it
    while candidate <= today:
        n += 1
        candidate = nth_occurrence(kind, number, initial_date, n)
    return candidate


def next_occurrence_for(reminder, today: date) -> Optional[date]:
    """next_occurrence() for a Reminder row."""
    return next_occurrence(
        reminder.frequency_type,
        reminder.frequency_number,
        reminder.initial_date,
        today,
    )
