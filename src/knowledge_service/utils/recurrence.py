"""Recurrence calculation for reminders.

Given an anchor (the current ``scheduled_for``), a recurrence type and an
interval, find the first occurrence strictly after ``now``.

End-of-month rule:
    Month and year steps use ``dateutil.relativedelta``. Every candidate is
    computed from the original anchor as ``anchor + k * interval`` units, never
    from the previous candidate, and a day that does not exist in the target
    month is clamped to that month's last day. So Jan 31 monthly yields
    Feb 28 (or 29), Mar 31, Apr 30, ... within one computation, and Feb 29
    yearly yields Feb 28 in common years. Time of day and tzinfo are kept.

    Across poll cycles the anchor is the stored ``scheduled_for``, so once a
    series has been clamped (Jan 31 -> Feb 28) the next cycle anchors on the
    28th.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import NamedTuple, get_args

from dateutil.relativedelta import relativedelta

from ..errors import ConfigurationError, PastDateError, ValidationError
from ..models.validators import RecurrenceType

RECURRENCE_TYPES: frozenset[str] = frozenset(get_args(RecurrenceType))

# Fixed-length recurrences, in days per interval unit
_DAY_STEPS = {"daily": 1, "weekly": 7}
# Calendar recurrences, in months per interval unit
_MONTH_STEPS = {"monthly": 1, "yearly": 12}


class RecurrenceStep(NamedTuple):
    """Next occurrence plus the number of interval steps taken to reach it."""

    next_occurrence: datetime
    steps: int

    @property
    def skipped(self) -> int:
        """Occurrences that fell between the anchor and ``now`` and were dropped."""
        return max(self.steps - 1, 0)


def validate_recurrence(recurrence_type: str, interval: int) -> None:
    """Reject unknown types and non-positive intervals.

    Raises:
        ConfigurationError: If ``recurrence_type`` is not supported
        ValidationError: If ``interval`` is below 1
    """
    if recurrence_type not in RECURRENCE_TYPES:
        raise ConfigurationError(f"Unsupported recurrence type: {recurrence_type!r}")
    if interval < 1:
        raise ValidationError(f"recurrence interval must be >= 1, got {interval}")


def shift(anchor: datetime, recurrence_type: str, units: int) -> datetime:
    """Return ``anchor`` moved by ``units`` recurrence units, clamping month ends."""
    if recurrence_type in _DAY_STEPS:
        return anchor + timedelta(days=_DAY_STEPS[recurrence_type] * units)
    if recurrence_type in _MONTH_STEPS:
        return anchor + relativedelta(months=_MONTH_STEPS[recurrence_type] * units)
    raise ConfigurationError(f"Unsupported recurrence type: {recurrence_type!r}")


def advance_recurrence(
    anchor: datetime,
    recurrence_type: str,
    interval: int,
    now: datetime,
) -> RecurrenceStep:
    """Find the first occurrence of the series strictly after ``now``.

    Args:
        anchor: Current trigger time of the series
        recurrence_type: One of none/daily/weekly/monthly/yearly
        interval: Number of units between occurrences (>= 1)
        now: Reference time, normally ``clock.now()``

    Returns:
        RecurrenceStep with the next occurrence and how many steps were taken.
        An anchor already after ``now`` is returned unchanged with 0 steps.

    Raises:
        PastDateError: ``type=none`` and the anchor is not after ``now``
        ConfigurationError: Unknown recurrence type
        ValidationError: Interval below 1
    """
    validate_recurrence(recurrence_type, interval)

    if anchor > now:
        return RecurrenceStep(anchor, 0)

    if recurrence_type == "none":
        raise PastDateError()

    if recurrence_type in _DAY_STEPS:
        step = timedelta(days=_DAY_STEPS[recurrence_type] * interval)
        # Closed form: the smallest k with anchor + k*step > now
        k = (now - anchor) // step + 1
        return RecurrenceStep(anchor + k * step, k)

    step_months = _MONTH_STEPS[recurrence_type] * interval
    months_between = (now.year - anchor.year) * 12 + (now.month - anchor.month)
    # Start one step short of the estimate so a clamped day cannot skip an occurrence
    k = max(1, months_between // step_months - 1)
    candidate = shift(anchor, recurrence_type, k * interval)
    while candidate <= now:
        k += 1
        candidate = shift(anchor, recurrence_type, k * interval)
    return RecurrenceStep(candidate, k)


def compute_next_occurrence(
    anchor: datetime,
    recurrence_type: str,
    interval: int,
    now: datetime,
) -> datetime:
    """Next valid trigger time for the series; see ``advance_recurrence``."""
    return advance_recurrence(anchor, recurrence_type, interval, now).next_occurrence
