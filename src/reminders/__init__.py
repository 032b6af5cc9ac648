"""Arcular menstrual reminder pipeline.

Computes per-user cycle predictions, decides which reminders are due today
and pushes them to the user's device.

Subpackages:
    providers/ — Push provider ABC and the Firebase Cloud Messaging provider

Core modules:
    predictor     — Next period, ovulation and fertile window predictions
    evaluator     — Which reminders are due for a user on a given day
    gateway       — Notification delivery, stale token cleanup, audit hook
    directory     — User / preference lookups (asyncpg)
    scheduler     — One daily reminder pass over all eligible users
    runner        — APScheduler cron jobs driving the pipeline
    dedup         — Optional once-per-day-per-kind delivery guard
    config_loader — Load/validate/hot-reload reminder_config.yaml
"""

from src.reminders.config_loader import ReminderConfig, get_reminder_config
from src.reminders.evaluator import ReminderEvaluator
from src.reminders.gateway import GatewayState, NotificationGateway
from src.reminders.models import (
    CycleProfile,
    NotificationPreference,
    ReminderEvent,
    ReminderKind,
    RunResult,
)
from src.reminders.runner import ScheduleRunner
from src.reminders.scheduler import DailyReminderScheduler

__all__ = [
    "CycleProfile",
    "NotificationPreference",
    "ReminderKind",
    "ReminderEvent",
    "RunResult",
    "ReminderEvaluator",
    "NotificationGateway",
    "GatewayState",
    "DailyReminderScheduler",
    "ScheduleRunner",
    "ReminderConfig",
    "get_reminder_config",
]
