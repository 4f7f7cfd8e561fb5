"""
Step SLA Tracking.

Computes whether an assigned step has exceeded its time limit and how far
through its window it is.  The boundary is closed on the non-overdue side:
a step checked at exactly ``assigned_at + limit`` is still on time.

The reminder thresholds (50% and 80% of the window) drive reminder
notifications; delivering them is the caller's job.
"""

from __future__ import annotations

import enum
from datetime import datetime, timedelta, timezone

from safeflow.models import AssignedStep

_SECONDS_PER_HOUR = 3600.0


class ReminderLevel(str, enum.Enum):
    """How much of a step's window has elapsed, for reminder scheduling."""

    NONE = "none"
    AT_50 = "at50"
    AT_80 = "at80"


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _check_limit(time_limit_hours: float) -> None:
    if time_limit_hours <= 0:
        raise ValueError(f"time_limit_hours must be > 0, got {time_limit_hours}")


def deadline(assigned_at: datetime, time_limit_hours: float) -> datetime:
    """Return the instant at which the step becomes overdue."""
    _check_limit(time_limit_hours)
    return _as_utc(assigned_at) + timedelta(hours=time_limit_hours)


def overdue(
    assigned_at: datetime,
    time_limit_hours: float,
    now: datetime,
) -> tuple[bool, float]:
    """Return ``(is_overdue, hours_over)``.

    ``is_overdue`` is True iff ``now > assigned_at + time_limit_hours``.
    ``hours_over`` is 0.0 while the step is on time.

    Raises:
        ValueError: If *time_limit_hours* is not positive.
    """
    over = (_as_utc(now) - deadline(assigned_at, time_limit_hours)).total_seconds()
    if over > 0:
        return True, over / _SECONDS_PER_HOUR
    return False, 0.0


def elapsed_ratio(
    assigned_at: datetime,
    time_limit_hours: float,
    now: datetime,
) -> float:
    """Fraction of the window used so far (0.0 before assignment, may exceed 1.0)."""
    _check_limit(time_limit_hours)
    elapsed = (_as_utc(now) - _as_utc(assigned_at)).total_seconds()
    return max(elapsed, 0.0) / (time_limit_hours * _SECONDS_PER_HOUR)


def reminder_threshold(
    assigned_at: datetime,
    time_limit_hours: float,
    now: datetime,
) -> ReminderLevel:
    """Return the highest reminder threshold crossed so far."""
    ratio = elapsed_ratio(assigned_at, time_limit_hours, now)
    if ratio >= 0.8:
        return ReminderLevel.AT_80
    if ratio >= 0.5:
        return ReminderLevel.AT_50
    return ReminderLevel.NONE


def step_overdue(step: AssignedStep, now: datetime) -> tuple[bool, float]:
    """``overdue()`` for an assigned step; only pending steps can be overdue."""
    if step.status != "pending":
        return False, 0.0
    return overdue(step.assigned_at, step.time_limit_hours, now)
