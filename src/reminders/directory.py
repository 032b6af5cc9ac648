"""User / notification-preference directory.

The reminder pipeline never owns user records; it reads cycle profiles and
push preferences and, on a stale token, clears the stored device token.
UserDirectory is the seam; PostgresUserDirectory implements it over the
shared asyncpg pool.

Tables read:
    users            — uid, full_name, fcm_token, push_enabled,
                       menstrual_reminders, reminder_time, timezone
    menstrual_cycles — user_id, last_period_start_date, cycle_length,
                       period_duration, remind_next_period, remind_ovulation,
                       remind_fertile_window, cycle_history (jsonb)
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Mapping

from src.reminders.models import (
    CycleHistoryEntry,
    CycleProfile,
    EligibleUser,
    NotificationPreference,
    ReminderFlags,
)
from src.services import database

logger = logging.getLogger("arcular.reminders.directory")


class DirectoryError(RuntimeError):
    """Raised when the directory backend cannot be queried."""


class UserDirectory(ABC):
    """Read/write access to the user records the reminder pipeline needs."""

    @abstractmethod
    async def find_eligible_users(self) -> list[EligibleUser]:
        """Return users with a device token and menstrual reminders enabled."""

    @abstractmethod
    async def get_device_token(self, user_id: str) -> str | None:
        """Return the user's device token, or None."""

    @abstractmethod
    async def get_device_tokens(self, user_ids: list[str]) -> dict[str, str]:
        """Return user_id → token for every user that has a token."""

    @abstractmethod
    async def get_cycle_profile(self, user_id: str) -> CycleProfile | None:
        """Return the user's cycle profile, or None if never recorded."""

    @abstractmethod
    async def update_device_token(self, user_id: str, token: str | None) -> bool:
        """Set (or unset, with None) the user's device token."""

    @abstractmethod
    async def clear_device_token(self, user_id: str, stale_token: str) -> bool:
        """Unset the token only if it still equals ``stale_token``.

        Must be atomic so a token registered concurrently by the client is
        never wiped by a late invalid-token report for the old one.
        """

    @abstractmethod
    async def update_notification_preferences(
        self,
        user_id: str,
        menstrual_reminders: bool | None = None,
        push_enabled: bool | None = None,
        reminder_time: str | None = None,
        timezone: str | None = None,
    ) -> bool:
        """Patch the user's notification preferences."""


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------


def _as_date(value: Any) -> date | None:
    if value is None:
        return None
    if isinstance(value, date):
        return value if type(value) is date else value.date()
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _parse_history(raw: Any, user_id: str | None = None) -> list[CycleHistoryEntry]:
    """Parse stored cycle history; malformed data is logged and skipped."""
    if raw is None:
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            logger.warning("Unparseable cycle history for user %s: %s", user_id, exc)
            return []
    if not isinstance(raw, list):
        logger.warning(
            "Cycle history for user %s is a %s, expected a list", user_id, type(raw).__name__
        )
        return []
    entries = []
    for item in raw:
        if not isinstance(item, Mapping):
            logger.warning("Skipping cycle history entry for user %s: %r", user_id, item)
            continue
        start = _as_date(item.get("startDate") or item.get("start_date"))
        if start is None:
            continue
        entries.append(
            CycleHistoryEntry(
                start_date=start,
                end_date=_as_date(item.get("endDate") or item.get("end_date")),
                notes=item.get("notes"),
            )
        )
    entries.sort(key=lambda e: e.start_date)
    return entries


def profile_from_row(row: Mapping[str, Any]) -> CycleProfile:
    """Build a CycleProfile from a joined users/menstrual_cycles row."""
    return CycleProfile(
        user_id=row["uid"],
        last_period_start=_as_date(row.get("last_period_start_date")),
        cycle_length_days=row.get("cycle_length") or 28,
        period_duration_days=row.get("period_duration") or 5,
        reminder_flags=ReminderFlags(
            next_period=bool(row.get("remind_next_period")),
            ovulation=bool(row.get("remind_ovulation")),
            fertile_window=bool(row.get("remind_fertile_window")),
        ),
        cycle_history=_parse_history(row.get("cycle_history"), row["uid"]),
    )


def preference_from_row(row: Mapping[str, Any]) -> NotificationPreference:
    push_enabled = row.get("push_enabled")
    reminders = row.get("menstrual_reminders")
    return NotificationPreference(
        push_enabled=True if push_enabled is None else bool(push_enabled),
        device_token=row.get("fcm_token") or None,
        menstrual_reminders_enabled=True if reminders is None else bool(reminders),
    )


# ---------------------------------------------------------------------------
# Postgres implementation
# ---------------------------------------------------------------------------

_PROFILE_COLUMNS = """
    u.uid, u.full_name, u.fcm_token, u.push_enabled, u.menstrual_reminders,
    m.last_period_start_date, m.cycle_length, m.period_duration,
    m.remind_next_period, m.remind_ovulation, m.remind_fertile_window,
    m.cycle_history
"""


class PostgresUserDirectory(UserDirectory):
    """UserDirectory backed by the shared asyncpg pool."""

    async def find_eligible_users(self) -> list[EligibleUser]:
        try:
            rows = await database.fetch(
                f"""
                SELECT {_PROFILE_COLUMNS}
                FROM users u
                JOIN menstrual_cycles m ON m.user_id = u.uid
                WHERE u.fcm_token IS NOT NULL
                  AND u.fcm_token <> ''
                  AND COALESCE(u.menstrual_reminders, TRUE)
                  AND COALESCE(u.push_enabled, TRUE)
                ORDER BY u.uid
                """
            )
        except Exception as exc:
            raise DirectoryError(f"Failed to load eligible users: {exc}") from exc

        users = [self._user_from_row(row) for row in rows]
        logger.info("Directory returned %d eligible user(s)", len(users))
        return users

    @staticmethod
    def _user_from_row(row: Mapping[str, Any]) -> EligibleUser:
        """Map one row; a row that cannot be mapped carries its load_error."""
        try:
            return EligibleUser(
                user_id=row["uid"],
                profile=profile_from_row(row),
                preferences=preference_from_row(row),
                display_name=row.get("full_name"),
            )
        except Exception as exc:
            logger.warning("Malformed cycle record for user %s: %s", row.get("uid"), exc)
            return EligibleUser(
                user_id=row.get("uid"),
                profile=CycleProfile(user_id=row.get("uid")),
                preferences=NotificationPreference(device_token=row.get("fcm_token") or None),
                display_name=row.get("full_name"),
                load_error=f"malformed cycle record: {exc}",
            )

    async def get_device_token(self, user_id: str) -> str | None:
        row = await database.fetchrow(
            "SELECT fcm_token FROM users WHERE uid = $1", user_id
        )
        if row is None:
            return None
        return row["fcm_token"] or None

    async def get_device_tokens(self, user_ids: list[str]) -> dict[str, str]:
        if not user_ids:
            return {}
        rows = await database.fetch(
            "SELECT uid, fcm_token FROM users WHERE uid = ANY($1::text[]) "
            "AND fcm_token IS NOT NULL AND fcm_token <> ''",
            list(user_ids),
        )
        return {row["uid"]: row["fcm_token"] for row in rows}

    async def get_cycle_profile(self, user_id: str) -> CycleProfile | None:
        row = await database.fetchrow(
            f"""
            SELECT {_PROFILE_COLUMNS}
            FROM users u
            JOIN menstrual_cycles m ON m.user_id = u.uid
            WHERE u.uid = $1
            """,
            user_id,
        )
        if row is None:
            return None
        return profile_from_row(row)

    async def update_device_token(self, user_id: str, token: str | None) -> bool:
        result = await database.execute(
            "UPDATE users SET fcm_token = $2 WHERE uid = $1", user_id, token
        )
        updated = result != "UPDATE 0"
        if updated:
            logger.info(
                "Device token %s for user %s", "updated" if token else "removed", user_id
            )
        else:
            logger.warning("User %s not found for device token update", user_id)
        return updated

    async def clear_device_token(self, user_id: str, stale_token: str) -> bool:
        result = await database.execute(
            "UPDATE users SET fcm_token = NULL WHERE uid = $1 AND fcm_token = $2",
            user_id,
            stale_token,
        )
        return result != "UPDATE 0"

    async def update_notification_preferences(
        self,
        user_id: str,
        menstrual_reminders: bool | None = None,
        push_enabled: bool | None = None,
        reminder_time: str | None = None,
        timezone: str | None = None,
    ) -> bool:
        updates = {
            "menstrual_reminders": menstrual_reminders,
            "push_enabled": push_enabled,
            "reminder_time": reminder_time,
            "timezone": timezone,
        }
        updates = {k: v for k, v in updates.items() if v is not None}
        if not updates:
            return False

        set_clauses = []
        params: list[Any] = [user_id]
        for i, (key, value) in enumerate(updates.items(), start=2):
            set_clauses.append(f"{key} = ${i}")
            params.append(value)

        result = await database.execute(
            f"UPDATE users SET {', '.join(set_clauses)} WHERE uid = $1", *params
        )
        return result != "UPDATE 0"
