"""Cron-driven runner for the reminder pipeline jobs.

Jobs (schedules from reminder_config.yaml, all in one timezone):
    menstrual_reminders — daily reminder pass (09:00)
    health_check        — gateway reconnect probe and status log (hourly)
    cleanup             — purge expired dedup keys (02:00)

A failing job is logged and recorded in its status; it stays scheduled.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Awaitable, Callable

import pytz
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from src.reminders.config_loader import ReminderConfig
from src.reminders.dedup import InMemoryReminderDedup
from src.reminders.gateway import NotificationGateway
from src.reminders.models import RunResult
from src.reminders.scheduler import DailyReminderScheduler

logger = logging.getLogger("arcular.reminders.runner")

REMINDER_JOB = "menstrual_reminders"
HEALTH_CHECK_JOB = "health_check"
CLEANUP_JOB = "cleanup"


class JobState(str, Enum):
    SCHEDULED = "scheduled"
    RUNNING = "running"
    FAILED = "failed"
    STOPPED = "stopped"


@dataclass
class JobStatus:
    """Runtime state of one scheduled job.

    Attributes:
        name:        Job id.
        cron:        Crontab expression.
        state:       Current JobState.
        last_run:    UTC start time of the most recent execution.
        last_error:  Error of the most recent execution, None if it succeeded.
    """

    name: str
    cron: str
    state: JobState = JobState.SCHEDULED
    last_run: datetime | None = None
    last_error: str | None = None

    @property
    def running(self) -> bool:
        return self.state is JobState.RUNNING


class ScheduleRunner:
    """Own the APScheduler instance and the pipeline's cron jobs.

    Usage::

        runner = ScheduleRunner(scheduler, gateway, get_reminder_config())
        await runner.initialize()
        print(runner.status())
        await runner.stop_all()
    """

    def __init__(
        self,
        scheduler: DailyReminderScheduler,
        gateway: NotificationGateway,
        config: ReminderConfig,
        dedup: InMemoryReminderDedup | None = None,
    ) -> None:
        self._reminders = scheduler
        self._gateway = gateway
        self._config = config
        self._dedup = dedup
        self._tz = pytz.timezone(config.timezone)
        self._aps: AsyncIOScheduler | None = None
        self._initialized = False
        self._handlers: dict[str, Callable[[], Awaitable[None]]] = {
            REMINDER_JOB: self._reminder_job,
            HEALTH_CHECK_JOB: self._health_check_job,
            CLEANUP_JOB: self._cleanup_job,
        }
        self._jobs: dict[str, JobStatus] = {}

    @property
    def initialized(self) -> bool:
        return self._initialized

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Wait briefly for the gateway, then schedule every job.

        Calling it again while initialized only logs a warning.
        """
        if self._initialized:
            logger.warning("Schedule runner already initialized")
            return

        timeout = self._config.dispatch.gateway_ready_timeout_seconds
        if not await self._gateway.wait_until_ready(timeout):
            logger.warning(
                "Push gateway not ready after %.0fs; scheduling jobs anyway", timeout
            )

        aps = AsyncIOScheduler(timezone=self._tz)
        self._jobs = {}
        for name, handler in self._handlers.items():
            schedule = self._config.job(name)
            aps.add_job(
                self._run_job,
                CronTrigger.from_crontab(schedule.cron, timezone=self._tz),
                args=[name],
                id=name,
                name=schedule.description or name,
                replace_existing=True,
                coalesce=True,
                max_instances=1,
                misfire_grace_time=300,
            )
            self._jobs[name] = JobStatus(name=name, cron=schedule.cron)
            logger.info("Scheduled job %s (%s %s)", name, schedule.cron, self._config.timezone)

        aps.start()
        self._aps = aps
        self._initialized = True
        logger.info("Schedule runner initialized with %d job(s)", len(self._jobs))

    async def stop_all(self) -> None:
        if self._aps is not None:
            self._aps.shutdown(wait=False)
            self._aps = None
        for job in self._jobs.values():
            job.state = JobState.STOPPED
        self._initialized = False
        logger.info("All scheduled jobs stopped")

    async def restart(self) -> None:
        logger.info("Restarting schedule runner")
        await self.stop_all()
        await self.initialize()

    # ------------------------------------------------------------------
    # Manual trigger / status
    # ------------------------------------------------------------------

    async def trigger_now(self, today: date | None = None) -> RunResult:
        """Run the reminder pass immediately, outside the schedule."""
        logger.info("Manual reminder run triggered")
        return await self._reminders.run_once(today)

    def _next_run(self, name: str) -> datetime | None:
        if self._aps is None:
            return None
        job = self._aps.get_job(name)
        return job.next_run_time if job else None

    def status(self) -> dict:
        jobs = {}
        for name, job in self._jobs.items():
            next_run = self._next_run(name)
            jobs[name] = {
                "running": job.running,
                "scheduled": next_run is not None,
                "state": job.state.value,
                "cron": job.cron,
                "last_run": job.last_run.isoformat() if job.last_run else None,
                "next_run": next_run.isoformat() if next_run else None,
                "last_error": job.last_error,
            }
        return {
            "initialized": self._initialized,
            "timezone": self._config.timezone,
            "active_jobs": sum(1 for j in jobs.values() if j["scheduled"]),
            "jobs": jobs,
        }

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------

    async def _run_job(self, name: str) -> None:
        job = self._jobs[name]
        if job.running:
            logger.warning("Job %s is still running; skipping this tick", name)
            return

        job.state = JobState.RUNNING
        job.last_run = datetime.now(timezone.utc)
        try:
            await self._handlers[name]()
        except Exception as exc:
            job.state = JobState.FAILED
            job.last_error = str(exc)
            logger.exception("Job %s failed", name)
        else:
            job.last_error = None
        finally:
            job.state = JobState.SCHEDULED if self._initialized else JobState.STOPPED

    async def _reminder_job(self) -> None:
        result = await self._reminders.run_once()
        if result.error:
            raise RuntimeError(f"reminder run failed: {result.error}")

    async def _health_check_job(self) -> None:
        ready = await self._gateway.ensure_ready()
        gateway = self._gateway.status()
        if ready:
            logger.info("Health check: push gateway %s", gateway["state"])
        else:
            logger.warning(
                "Health check: push gateway %s (%s)", gateway["state"], gateway["last_error"]
            )
        for name, job in self.status()["jobs"].items():
            logger.debug(
                "Health check: job %s state=%s next_run=%s", name, job["state"], job["next_run"]
            )

    async def _cleanup_job(self) -> None:
        if self._dedup is None:
            logger.debug("Cleanup: no dedup store configured")
            return
        today = datetime.now(self._tz).date()
        self._dedup.purge_older_than(today, self._config.dedup.retention_days)
