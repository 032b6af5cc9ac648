"""Arcular API — FastAPI application entry point.

Run locally:
    uvicorn src.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

import pytz
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.config import Settings, get_settings
from src.middleware.firebase_auth import FirebaseAuthMiddleware
from src.reminders.config_loader import get_reminder_config, reload_reminder_config
from src.reminders.dedup import InMemoryReminderDedup
from src.reminders.directory import PostgresUserDirectory
from src.reminders.evaluator import ReminderEvaluator
from src.reminders.gateway import NotificationGateway
from src.reminders.providers import FirebasePushProvider
from src.reminders.runner import ScheduleRunner
from src.reminders.scheduler import DailyReminderScheduler
from src.routers import health, notifications
from src.services.database import close_pool, init_pool

# ---------- Logging ----------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("arcular")


# ---------- Reminder pipeline wiring ----------

def build_pipeline(app: FastAPI, settings: Settings) -> None:
    """Construct the reminder pipeline and attach it to ``app.state``."""
    if settings.reminder_config_path:
        config = reload_reminder_config(Path(settings.reminder_config_path))
    else:
        config = get_reminder_config()

    directory = PostgresUserDirectory()
    provider = FirebasePushProvider(
        settings, android_channel_id=config.dispatch.android_channel_id
    )
    gateway = NotificationGateway(
        provider,
        directory,
        multicast_batch_size=config.dispatch.multicast_batch_size,
    )
    evaluator = ReminderEvaluator(config)
    dedup = InMemoryReminderDedup() if config.dedup.enabled else None
    scheduler = DailyReminderScheduler(
        directory,
        evaluator,
        gateway,
        inter_user_delay_s=config.dispatch.inter_user_delay_s,
        max_concurrent_users=config.dispatch.max_concurrent_users,
        dedup=dedup,
        tz=pytz.timezone(config.timezone),
    )

    app.state.reminder_config = config
    app.state.directory = directory
    app.state.gateway = gateway
    app.state.evaluator = evaluator
    app.state.scheduler = scheduler
    app.state.runner = ScheduleRunner(scheduler, gateway, config, dedup=dedup)


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())
    logger.info(
        "Starting Arcular API v%s [%s]",
        settings.app_version,
        settings.environment,
    )
    await init_pool(settings)
    build_pipeline(app, settings)
    if settings.scheduler_enabled:
        await app.state.runner.initialize()
    else:
        logger.info("Reminder scheduler disabled by configuration")
    yield
    await app.state.runner.stop_all()
    await close_pool()
    logger.info("Arcular API shut down")


# ---------- App factory ----------

def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Arcular API",
        description="Healthcare coordination backend: menstrual cycle reminders and push notifications.",
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ---------- Middleware (order matters — outermost first) ----------

    # Firebase ID token authentication
    app.add_middleware(FirebaseAuthMiddleware, settings=settings)

    # CORS — must be the innermost middleware so it can handle preflight
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------- Health check (outside v1 prefix — always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    v1_prefix = "/api/v1"

    app.include_router(notifications.router, prefix=v1_prefix)

    return app


app = create_app()
