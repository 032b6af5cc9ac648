"""Daily menstrual reminder pass.

One run:
1. Load eligible users from the directory
2. Re-check each user's push preferences
3. Evaluate which reminders are due today
4. Deliver each due reminder through the notification gateway
5. Aggregate per-user outcomes into a RunResult

Users are processed one at a time with a short pause between them so the
push provider is not flooded.  ``max_concurrent_users`` > 1 processes that
many users in parallel, each slot still pausing after its user.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, timezone
from typing import Any

from src.reminders.dedup import InMemoryReminderDedup, reminder_key
from src.reminders.directory import UserDirectory
from src.reminders.evaluator import ReminderEvaluator
from src.reminders.gateway import NotificationGateway
from src.reminders.models import DispatchResult, EligibleUser, RunResult, UserError

logger = logging.getLogger("arcular.reminders.scheduler")


class DailyReminderScheduler:
    """Run the daily reminder pass over every eligible user.

    Usage::

        scheduler = DailyReminderScheduler(directory, evaluator, gateway)
        result = await scheduler.run_once()
        print(result.processed, result.success, result.total_reminders)
    """

    def __init__(
        self,
        directory: UserDirectory,
        evaluator: ReminderEvaluator,
        gateway: NotificationGateway,
        inter_user_delay_s: float = 0.1,
        max_concurrent_users: int = 1,
        dedup: InMemoryReminderDedup | None = None,
        tz: Any = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            directory:            Source of eligible users.
            evaluator:            Computes due reminders per user.
            gateway:              Delivers notifications.
            inter_user_delay_s:   Pause after each user, in seconds.
            max_concurrent_users: Users processed in parallel.
            dedup:                Optional once-per-day-per-kind guard.
            tz:                   pytz/tzinfo used to derive "today" when
                                  run_once() is called without a date.
        """
        self._directory = directory
        self._evaluator = evaluator
        self._gateway = gateway
        self._delay = max(0.0, inter_user_delay_s)
        self._max_concurrent = max(1, max_concurrent_users)
        self._dedup = dedup
        self._tz = tz
        self._run_lock = asyncio.Lock()
        self._last_result: RunResult | None = None

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    @property
    def last_result(self) -> RunResult | None:
        return self._last_result

    def today(self) -> date:
        if self._tz is None:
            return date.today()
        return datetime.now(self._tz).date()

    async def run_once(self, today: date | None = None) -> RunResult:
        """Execute one reminder pass.  Never raises.

        An overlapping call returns at once with ``skipped=True``.

        Args:
            today: Reference day (defaults to the current day in ``tz``).

        Returns:
            RunResult with aggregate counts.
        """
        run_date = today or self.today()

        if self._run_lock.locked():
            logger.warning("Reminder run for %s skipped: a run is already in progress", run_date)
            now = datetime.now(timezone.utc)
            return RunResult(run_date=run_date, started_at=now, finished_at=now, skipped=True)

        async with self._run_lock:
            result = await self._run(run_date)
        self._last_result = result
        return result

    async def _run(self, run_date: date) -> RunResult:
        result = RunResult(run_date=run_date, started_at=datetime.now(timezone.utc))
        logger.info("Starting menstrual reminder run for %s", run_date)

        try:
            users = await self._directory.find_eligible_users()
        except Exception as exc:
            logger.error("Reminder run aborted, could not load users: %s", exc)
            result.error = str(exc)
            result.finished_at = datetime.now(timezone.utc)
            return result

        users = [u for u in users if u.preferences.is_dispatch_target]
        logger.info("Found %d user(s) eligible for menstrual reminders", len(users))

        if self._max_concurrent == 1:
            for i, user in enumerate(users):
                await self._process_user(user, run_date, result)
                if self._delay and i < len(users) - 1:
                    await asyncio.sleep(self._delay)
        else:
            semaphore = asyncio.Semaphore(self._max_concurrent)
            await asyncio.gather(
                *(self._process_user_throttled(u, run_date, result, semaphore) for u in users)
            )

        result.finished_at = datetime.now(timezone.utc)
        logger.info(
            "Reminder run complete: processed=%d success=%d reminders=%d errors=%d (%d ms)",
            result.processed,
            result.success,
            result.total_reminders,
            len(result.per_user_errors),
            result.duration_ms,
        )
        return result

    async def _process_user_throttled(
        self,
        user: EligibleUser,
        run_date: date,
        result: RunResult,
        semaphore: asyncio.Semaphore,
    ) -> None:
        async with semaphore:
            await self._process_user(user, run_date, result)
            if self._delay:
                await asyncio.sleep(self._delay)

    async def _process_user(self, user: EligibleUser, run_date: date, result: RunResult) -> None:
        """Evaluate and deliver reminders for one user, recording into ``result``."""
        result.processed += 1
        if user.load_error:
            logger.error("Skipping user %s: %s", user.user_id, user.load_error)
            result.per_user_errors.append(UserError(user.user_id, user.load_error))
            return
        try:
            dispatch = await self._dispatch(user, run_date)
        except Exception as exc:
            logger.error("Error processing reminders for user %s: %s", user.user_id, exc)
            result.per_user_errors.append(UserError(user.user_id, str(exc)))
            return

        if dispatch is None:
            return

        result.dispatches.append(dispatch)
        result.total_reminders += dispatch.delivered
        if dispatch.delivered:
            result.success += 1
        elif dispatch.all_failed:
            errors = "; ".join(
                f"{o.kind}: {o.error_class.value if o.error_class else 'error'}"
                for o in dispatch.outcomes
            )
            result.per_user_errors.append(
                UserError(user.user_id, f"all {dispatch.attempted} reminder(s) failed ({errors})")
            )

    async def _dispatch(self, user: EligibleUser, run_date: date) -> DispatchResult | None:
        events = self._evaluator.evaluate(user.profile, user.preferences, run_date)
        if not events:
            return None

        dispatch = DispatchResult(user_id=user.user_id)
        for event in events:
            key = reminder_key(user.user_id, event.kind, run_date)
            if self._dedup is not None and self._dedup.is_seen(key):
                logger.debug("Reminder %s already delivered, skipping", key)
                continue

            outcome = await self._gateway.deliver(user.user_id, event.to_notification())
            dispatch.record(outcome)
            if outcome.success:
                logger.info("Sent %s reminder to user %s", event.kind.value, user.user_id)
                if self._dedup is not None:
                    self._dedup.mark_seen(key, run_date)

        if dispatch.attempted == 0:
            return None
        return dispatch
