"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, Request

from src.reminders.directory import UserDirectory
from src.reminders.evaluator import ReminderEvaluator
from src.reminders.gateway import NotificationGateway
from src.reminders.runner import ScheduleRunner
from src.reminders.scheduler import DailyReminderScheduler

ADMIN = "admin"
STAFF = "staff"


@dataclass(frozen=True)
class AuthContext:
    """Authenticated user context extracted from a Firebase ID token."""

    user_id: str  # Firebase UID
    email: str | None = None
    user_type: str | None = None  # 'type' custom claim: patient | doctor | staff | admin ...


async def get_current_user(request: Request) -> AuthContext:
    """Extract the authenticated user from the request state.

    The Firebase auth middleware sets ``request.state.auth`` before routes run.
    """
    auth: AuthContext | None = getattr(request.state, "auth", None)
    if auth is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return auth


def require_roles(*roles: str):
    """Build a dependency that admits only users whose type is in ``roles``."""

    async def _check(user: Annotated[AuthContext, Depends(get_current_user)]) -> AuthContext:
        if user.user_type not in roles:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return _check


# ---------- Pipeline components (built in the lifespan, held on app.state) ----------


def _component(request: Request, name: str):
    component = getattr(request.app.state, name, None)
    if component is None:
        raise HTTPException(status_code=503, detail=f"{name} not available")
    return component


def get_gateway(request: Request) -> NotificationGateway:
    return _component(request, "gateway")


def get_runner(request: Request) -> ScheduleRunner:
    return _component(request, "runner")


def get_directory(request: Request) -> UserDirectory:
    return _component(request, "directory")


def get_evaluator(request: Request) -> ReminderEvaluator:
    return _component(request, "evaluator")


def get_scheduler(request: Request) -> DailyReminderScheduler:
    return _component(request, "scheduler")


# Annotated shortcuts for route signatures
CurrentUser = Annotated[AuthContext, Depends(get_current_user)]
AdminUser = Annotated[AuthContext, Depends(require_roles(ADMIN))]
StaffUser = Annotated[AuthContext, Depends(require_roles(ADMIN, STAFF))]
Gateway = Annotated[NotificationGateway, Depends(get_gateway)]
Runner = Annotated[ScheduleRunner, Depends(get_runner)]
Directory = Annotated[UserDirectory, Depends(get_directory)]
Evaluator = Annotated[ReminderEvaluator, Depends(get_evaluator)]
Scheduler = Annotated[DailyReminderScheduler, Depends(get_scheduler)]
