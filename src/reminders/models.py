"""Canonical data models for the menstrual reminder pipeline.

CycleProfile and NotificationPreference are read from the user directory.
ReminderEvent, DeliveryOutcome, DispatchResult and RunResult only live for
the duration of one scheduler run and are never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ReminderKind(str, Enum):
    """The closed set of reminder events a user can receive."""

    NEXT_PERIOD = "next_period"
    OVULATION = "ovulation"
    FERTILE_WINDOW_START = "fertile_window"


class ErrorClass(str, Enum):
    """Classification attached to a failed delivery."""

    INVALID_TOKEN = "invalid_token"
    NOT_REGISTERED = "not_registered"
    TRANSIENT = "transient"
    OTHER = "other"
    UNAVAILABLE = "unavailable"  # provider not initialized / disconnected
    NO_TOKEN = "no_token"        # nothing to deliver to

    @property
    def is_stale_token(self) -> bool:
        return self in (ErrorClass.INVALID_TOKEN, ErrorClass.NOT_REGISTERED)


# ---------------------------------------------------------------------------
# Directory-owned records
# ---------------------------------------------------------------------------


@dataclass
class ReminderFlags:
    """Which cycle events the user asked to be reminded about."""

    next_period: bool = False
    ovulation: bool = False
    fertile_window: bool = False

    def enabled_kinds(self) -> list[ReminderKind]:
        kinds = []
        if self.next_period:
            kinds.append(ReminderKind.NEXT_PERIOD)
        if self.ovulation:
            kinds.append(ReminderKind.OVULATION)
        if self.fertile_window:
            kinds.append(ReminderKind.FERTILE_WINDOW_START)
        return kinds


@dataclass
class CycleHistoryEntry:
    """A past cycle as logged by the user.

    Attributes:
        start_date: First day of menstruation.
        end_date:   Last day of menstruation, if logged.
        notes:      Free-text notes.
    """

    start_date: date
    end_date: date | None = None
    notes: str | None = None


@dataclass
class CycleProfile:
    """Per-user cycle data used for predictions.

    Attributes:
        user_id:              Stable user identifier (Firebase UID).
        last_period_start:    Start of the most recent period.  No prediction
                              is possible while this is None.
        cycle_length_days:    Days between consecutive period starts.
        period_duration_days: Typical bleeding duration in days.
        reminder_flags:       Per-kind reminder opt-ins.
        cycle_history:        Logged past cycles, oldest first.
    """

    user_id: str
    last_period_start: date | None = None
    cycle_length_days: int = 28
    period_duration_days: int = 5
    reminder_flags: ReminderFlags = field(default_factory=ReminderFlags)
    cycle_history: list[CycleHistoryEntry] = field(default_factory=list)


@dataclass
class NotificationPreference:
    """Push notification settings for one user."""

    push_enabled: bool = True
    device_token: str | None = None
    menstrual_reminders_enabled: bool = True

    @property
    def is_dispatch_target(self) -> bool:
        """True when a reminder may be pushed to this user at all."""
        return bool(
            self.push_enabled
            and self.device_token
            and self.menstrual_reminders_enabled
        )


@dataclass
class EligibleUser:
    """One row of the directory's eligible-user listing.

    ``load_error`` is set when the stored record could not be mapped; the
    scheduler reports such users as per-user errors without evaluating them.
    """

    user_id: str
    profile: CycleProfile
    preferences: NotificationPreference
    display_name: str | None = None
    load_error: str | None = None


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PushNotification:
    """Provider-agnostic notification payload.

    ``data`` must hold string values only; FCM rejects anything else.
    """

    title: str
    body: str
    kind: str = "general"
    screen: str = "home"
    data: dict[str, str] = field(default_factory=dict)

    def data_bag(self) -> dict[str, str]:
        bag = {"type": self.kind, "screen": self.screen}
        bag.update(self.data)
        return bag


@dataclass(frozen=True)
class ReminderMetadata:
    """Fixed routing/metadata record sent alongside a reminder."""

    reminder_type: ReminderKind
    predicted_date: date
    screen: str = "menstrual-cycle"
    window_end: date | None = None

    def to_data(self) -> dict[str, str]:
        data = {
            "screen": self.screen,
            "reminderType": self.reminder_type.value,
            "predictedDate": self.predicted_date.isoformat(),
        }
        if self.window_end is not None:
            data["endDate"] = self.window_end.isoformat()
        return data


@dataclass(frozen=True)
class ReminderEvent:
    """A reminder that is due today for one user."""

    kind: ReminderKind
    title: str
    body: str
    target_user_id: str
    metadata: ReminderMetadata

    def to_notification(self) -> PushNotification:
        return PushNotification(
            title=self.title,
            body=self.body,
            kind=self.kind.value,
            screen=self.metadata.screen,
            data=self.metadata.to_data(),
        )


@dataclass(frozen=True)
class UpcomingReminder:
    """A reminder that will fire within the lookahead window."""

    kind: ReminderKind
    title: str
    body: str
    date: date
    days_until: int

    def to_dict(self) -> dict:
        return {
            "type": self.kind.value,
            "title": self.title,
            "body": self.body,
            "date": self.date.isoformat(),
            "daysUntil": self.days_until,
        }


# ---------------------------------------------------------------------------
# Dispatch results
# ---------------------------------------------------------------------------


@dataclass
class DeliveryOutcome:
    """Result of pushing one notification to one user.

    Attributes:
        kind:        Notification kind (reminder kind value or 'general').
        success:     True if the provider accepted the message.
        message_id:  Provider message id on success.
        error_class: Failure classification, None on success.
        error:       Provider error text, None on success.
    """

    kind: str
    success: bool
    message_id: str | None = None
    error_class: ErrorClass | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "success": self.success,
            "messageId": self.message_id,
            "errorClass": self.error_class.value if self.error_class else None,
            "error": self.error,
        }


@dataclass
class DispatchResult:
    """Per-user outcome of one scheduler pass."""

    user_id: str
    attempted: int = 0
    delivered: int = 0
    outcomes: list[DeliveryOutcome] = field(default_factory=list)

    def record(self, outcome: DeliveryOutcome) -> None:
        self.attempted += 1
        if outcome.success:
            self.delivered += 1
        self.outcomes.append(outcome)

    @property
    def all_failed(self) -> bool:
        return self.attempted > 0 and self.delivered == 0

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "attempted": self.attempted,
            "delivered": self.delivered,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


@dataclass
class UserError:
    user_id: str
    error: str


@dataclass
class RunResult:
    """Aggregate statistics of one DailyReminderScheduler pass.

    Attributes:
        processed:       Eligible users visited.
        success:         Users that received at least one reminder.
        total_reminders: Notifications delivered across all users.
        per_user_errors: Users whose evaluation raised or whose sends all failed.
        dispatches:      Per-user dispatch details (users with due events only).
        skipped:         True if another run was already in flight.
        error:           Set when the run could not start (e.g. directory down).
    """

    processed: int = 0
    success: int = 0
    total_reminders: int = 0
    per_user_errors: list[UserError] = field(default_factory=list)
    dispatches: list[DispatchResult] = field(default_factory=list)
    run_date: date | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    skipped: bool = False
    error: str | None = None

    @property
    def duration_ms(self) -> int | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "success": self.success,
            "totalReminders": self.total_reminders,
            "perUserErrors": [
                {"userId": e.user_id, "error": e.error} for e in self.per_user_errors
            ],
            "dispatches": [d.to_dict() for d in self.dispatches],
            "runDate": self.run_date.isoformat() if self.run_date else None,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "durationMs": self.duration_ms,
            "skipped": self.skipped,
            "error": self.error,
        }
