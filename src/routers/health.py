"""Health check endpoint — public, no auth required."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from src.config import get_settings
from src.reminders.gateway import GatewayState
from src.services.database import get_pool

router = APIRouter(tags=["system"])
logger = logging.getLogger("arcular.health")


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    Also performs a lightweight DB connectivity check and reports the push
    gateway state.
    """
    settings = get_settings()
    db_ok = False
    try:
        pool = get_pool()
        async with pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
        db_ok = True
    except Exception as exc:
        logger.warning("Health check DB probe failed: %s", exc)

    gateway = getattr(request.app.state, "gateway", None)
    # UNINITIALIZED is the normal lazy state before the first send
    push_ok = gateway is not None and gateway.state is not GatewayState.FAILED

    return {
        "status": "healthy" if db_ok and push_ok else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "database": "connected" if db_ok else "unreachable",
        "push": gateway.state.value if gateway is not None else "not_configured",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
