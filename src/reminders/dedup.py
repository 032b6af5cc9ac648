"""Deduplication of reminder deliveries.

Without a dedup store, a second run on the same day resends every reminder
that is still due.  With one, a reminder is skipped once it has been
delivered to the user for that day.

Dedup key:
    (user_id, reminder kind, calendar day)
"""

from __future__ import annotations

import logging
import threading
from datetime import date, timedelta

from src.reminders.models import ReminderKind

logger = logging.getLogger("arcular.reminders.dedup")


def reminder_key(user_id: str, kind: ReminderKind, day: date) -> str:
    """Generate a dedup key for one reminder delivery.

    Args:
        user_id: Stable user identifier.
        kind:    Reminder kind.
        day:     Calendar day the reminder was due on.

    Returns:
        Colon-separated dedup key string.
    """
    return f"{user_id}:{kind.value}:{day.isoformat()}"


class InMemoryReminderDedup:
    """In-process store of delivered reminder keys.

    Keys are kept per day so the cleanup job can drop old days cheaply.

    Usage::

        dedup = InMemoryReminderDedup()
        key = reminder_key(user_id, event.kind, today)
        if not dedup.is_seen(key):
            ...  # deliver
            dedup.mark_seen(key, today)
    """

    def __init__(self) -> None:
        self._by_day: dict[date, set[str]] = {}
        self._lock = threading.Lock()

    def is_seen(self, key: str) -> bool:
        with self._lock:
            return any(key in keys for keys in self._by_day.values())

    def mark_seen(self, key: str, day: date) -> None:
        with self._lock:
            self._by_day.setdefault(day, set()).add(key)

    def purge_older_than(self, today: date, retention_days: int) -> int:
        """Drop keys for days before ``today - retention_days``.

        Returns:
            Number of keys removed.
        """
        cutoff = today - timedelta(days=retention_days)
        removed = 0
        with self._lock:
            for day in [d for d in self._by_day if d < cutoff]:
                removed += len(self._by_day.pop(day))
        if removed:
            logger.info("Purged %d reminder dedup key(s) older than %s", removed, cutoff)
        return removed

    def __len__(self) -> int:
        with self._lock:
            return sum(len(keys) for keys in self._by_day.values())

    def clear(self) -> None:
        """Reset the store."""
        with self._lock:
            self._by_day.clear()
