"""Cycle prediction engine.

Pure calendar arithmetic over a last-period start date and a cycle length:
- Next period start
- Ovulation day (14 days before the next period)
- Fertile window (ovulation ± 2 days)

All inputs are reduced to calendar days before any arithmetic, so a
``datetime`` carrying a time-of-day predicts the same dates as its ``date``.

No lower bound is enforced on the cycle length beyond ``> 0``.  A cycle
shorter than the 14-day luteal phase yields an ovulation date *before* the
period start; callers must tolerate that.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta

from src.reminders.models import CycleProfile

LUTEAL_PHASE_DAYS = 14
FERTILE_WINDOW_MARGIN_DAYS = 2


@dataclass(frozen=True)
class FertileWindow:
    """Five-day window of elevated conception probability."""

    start: date
    end: date
    ovulation: date

    @property
    def length_days(self) -> int:
        return (self.end - self.start).days + 1


@dataclass(frozen=True)
class CyclePrediction:
    """All predicted dates for a profile's current cycle.

    Attributes:
        next_period:    Predicted start of the next period.
        period_end:     Predicted last bleeding day of the next period.
        ovulation:      Predicted ovulation day of the current cycle.
        fertile_window: Fertile window around ``ovulation``.
    """

    next_period: date | None = None
    period_end: date | None = None
    ovulation: date | None = None
    fertile_window: FertileWindow | None = None


def to_calendar_day(value: date | datetime | None) -> date | None:
    """Strip any time-of-day component."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    return value


def same_calendar_day(a: date | datetime | None, b: date | datetime | None) -> bool:
    """Return True if both values fall on the same calendar day."""
    day_a = to_calendar_day(a)
    day_b = to_calendar_day(b)
    if day_a is None or day_b is None:
        return False
    return day_a == day_b


def next_period(last_start: date | datetime | None, cycle_length: int) -> date | None:
    """Predict the next period start: ``last_start + cycle_length`` days.

    Args:
        last_start:   First day of the most recent period.
        cycle_length: Cycle length in days.

    Returns:
        Predicted start date, or None if ``last_start`` is absent or
        ``cycle_length`` is not positive.
    """
    start = to_calendar_day(last_start)
    if start is None or cycle_length <= 0:
        return None
    return start + timedelta(days=cycle_length)


def ovulation(last_start: date | datetime | None, cycle_length: int) -> date | None:
    """Predict ovulation: ``last_start + (cycle_length - 14)`` days.

    Cycles shorter than 14 days produce a date before ``last_start``.
    """
    start = to_calendar_day(last_start)
    if start is None or cycle_length <= 0:
        return None
    return start + timedelta(days=cycle_length - LUTEAL_PHASE_DAYS)


def fertile_window(
    last_start: date | datetime | None, cycle_length: int
) -> FertileWindow | None:
    """Predict the fertile window around the ovulation day.

    Returns:
        FertileWindow spanning ovulation - 2 to ovulation + 2 days, or None
        when no ovulation date can be predicted.
    """
    ov = ovulation(last_start, cycle_length)
    if ov is None:
        return None
    margin = timedelta(days=FERTILE_WINDOW_MARGIN_DAYS)
    return FertileWindow(start=ov - margin, end=ov + margin, ovulation=ov)


def cycle_day(last_start: date | datetime, on: date | datetime) -> int:
    """Return the 1-indexed cycle day of ``on``; day 1 is the period start."""
    return (to_calendar_day(on) - to_calendar_day(last_start)).days + 1


def predict(profile: CycleProfile) -> CyclePrediction:
    """Bundle every prediction for a profile."""
    upcoming = next_period(profile.last_period_start, profile.cycle_length_days)
    if upcoming is None:
        return CyclePrediction()

    period_end = None
    if profile.period_duration_days > 0:
        period_end = upcoming + timedelta(days=profile.period_duration_days - 1)

    window = fertile_window(profile.last_period_start, profile.cycle_length_days)
    return CyclePrediction(
        next_period=upcoming,
        period_end=period_end,
        ovulation=window.ovulation if window else None,
        fertile_window=window,
    )
