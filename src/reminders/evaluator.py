"""Decide which cycle reminders are due for a user on a given day.

The evaluator is pure: it reads a CycleProfile and NotificationPreference,
asks the predictor for the relevant dates and emits one ReminderEvent per
enabled kind whose predicted date is *today*.  Kinds are independent, so a
single call may return zero to three events.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta

from src.reminders import predictor
from src.reminders.config_loader import ReminderConfig, get_reminder_config
from src.reminders.models import (
    CycleProfile,
    NotificationPreference,
    ReminderEvent,
    ReminderKind,
    ReminderMetadata,
    UpcomingReminder,
)

logger = logging.getLogger("arcular.reminders.evaluator")

UPCOMING_LOOKAHEAD_DAYS = 30


class ReminderEvaluator:
    """Compute due reminders from stored cycle data.

    Usage::

        evaluator = ReminderEvaluator()
        events = evaluator.evaluate(profile, prefs, today=date(2024, 1, 29))
        for event in events:
            print(event.kind, event.title)
    """

    def __init__(self, config: ReminderConfig | None = None) -> None:
        self._config = config or get_reminder_config()

    def evaluate(
        self,
        profile: CycleProfile,
        prefs: NotificationPreference,
        today: date,
    ) -> list[ReminderEvent]:
        """Return the reminder events due on ``today``.

        Args:
            profile: The user's cycle data and reminder flags.
            prefs:   The user's push settings.
            today:   Reference calendar day.

        Returns:
            Zero or more ReminderEvents, at most one per kind.
        """
        if not prefs.is_dispatch_target:
            return []
        if profile.last_period_start is None:
            return []

        today = predictor.to_calendar_day(today)
        events: list[ReminderEvent] = []

        for kind in profile.reminder_flags.enabled_kinds():
            predicted, window_end = self._predicted_date(profile, kind)
            if predicted is None or not predictor.same_calendar_day(today, predicted):
                continue
            template = self._config.message(kind)
            events.append(
                ReminderEvent(
                    kind=kind,
                    title=template.title,
                    body=template.body,
                    target_user_id=profile.user_id,
                    metadata=ReminderMetadata(
                        reminder_type=kind,
                        predicted_date=predicted,
                        window_end=window_end,
                    ),
                )
            )

        if events:
            logger.debug(
                "User %s has %d reminder(s) due on %s: %s",
                profile.user_id,
                len(events),
                today,
                ", ".join(e.kind.value for e in events),
            )
        return events

    def upcoming(
        self,
        profile: CycleProfile,
        today: date,
        days: int = UPCOMING_LOOKAHEAD_DAYS,
    ) -> list[UpcomingReminder]:
        """List enabled reminders that fall within the next ``days`` days.

        Used by the dashboard; ignores push preferences.

        Returns:
            Reminders sorted by date, nearest first.
        """
        if profile.last_period_start is None:
            return []

        today = predictor.to_calendar_day(today)
        horizon = today + timedelta(days=days)
        reminders: list[UpcomingReminder] = []

        for kind in profile.reminder_flags.enabled_kinds():
            predicted, _ = self._predicted_date(profile, kind)
            if predicted is None or not (today <= predicted <= horizon):
                continue
            template = self._config.message(kind)
            reminders.append(
                UpcomingReminder(
                    kind=kind,
                    title=template.title,
                    body=template.body,
                    date=predicted,
                    days_until=(predicted - today).days,
                )
            )

        reminders.sort(key=lambda r: r.date)
        return reminders

    @staticmethod
    def _predicted_date(
        profile: CycleProfile, kind: ReminderKind
    ) -> tuple[date | None, date | None]:
        """Return (trigger date, window end) for a reminder kind."""
        start = profile.last_period_start
        length = profile.cycle_length_days
        if kind is ReminderKind.NEXT_PERIOD:
            return predictor.next_period(start, length), None
        if kind is ReminderKind.OVULATION:
            return predictor.ovulation(start, length), None
        window = predictor.fertile_window(start, length)
        if window is None:
            return None, None
        return window.start, window.end
