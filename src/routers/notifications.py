"""Push notification endpoints: device tokens, topics, reminder admin."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException

from src.dependencies import (
    AdminUser,
    CurrentUser,
    Directory,
    Evaluator,
    Gateway,
    Runner,
    Scheduler,
    StaffUser,
)
from src.models.base import ApiResponse
from src.models.notifications import (
    RegisterTokenRequest,
    TopicRequest,
    TriggerRemindersRequest,
)

router = APIRouter(prefix="/notifications", tags=["notifications"])
logger = logging.getLogger("arcular.notifications")


# ---------- Device tokens ----------

@router.post("/register-token", response_model=ApiResponse)
async def register_token(
    user: CurrentUser, body: RegisterTokenRequest, directory: Directory
) -> ApiResponse:
    """Store the caller's FCM device token."""
    if not await directory.update_device_token(user.user_id, body.fcm_token):
        raise HTTPException(status_code=404, detail="User not found")
    return ApiResponse(message="FCM token registered successfully")


@router.delete("/remove-token", response_model=ApiResponse)
async def remove_token(user: CurrentUser, directory: Directory) -> ApiResponse:
    """Forget the caller's device token (e.g. on logout)."""
    if not await directory.update_device_token(user.user_id, None):
        raise HTTPException(status_code=404, detail="User not found")
    return ApiResponse(message="FCM token removed successfully")


# ---------- Reminders ----------

@router.get("/upcoming-reminders", response_model=ApiResponse)
async def upcoming_reminders(
    user: CurrentUser,
    directory: Directory,
    evaluator: Evaluator,
    scheduler: Scheduler,
    days: int = 30,
) -> ApiResponse:
    """List the caller's enabled reminders due within ``days`` days.

    "Today" is taken in the scheduler's timezone so the dashboard agrees with
    the daily run.
    """
    if not 1 <= days <= 365:
        raise HTTPException(status_code=400, detail="days must be between 1 and 365")

    profile = await directory.get_cycle_profile(user.user_id)
    if profile is None:
        return ApiResponse(data=[])

    reminders = evaluator.upcoming(profile, scheduler.today(), days=days)
    return ApiResponse(data=[r.to_dict() for r in reminders])


@router.post("/trigger-reminders", response_model=ApiResponse)
async def trigger_reminders(
    user: StaffUser, runner: Runner, body: TriggerRemindersRequest | None = None
) -> ApiResponse:
    """Run the daily reminder pass now."""
    logger.info("Reminder run triggered manually by %s", user.user_id)
    result = await runner.trigger_now(body.run_date if body else None)
    if result.error:
        raise HTTPException(status_code=500, detail=f"Reminder run failed: {result.error}")
    message = (
        "A reminder run is already in progress"
        if result.skipped
        else "Menstrual reminders triggered successfully"
    )
    return ApiResponse(message=message, data=result.to_dict())


@router.get("/cron-status", response_model=ApiResponse)
async def cron_status(user: StaffUser, runner: Runner) -> ApiResponse:
    return ApiResponse(data=runner.status())


@router.post("/restart-cron", response_model=ApiResponse)
async def restart_cron(user: AdminUser, runner: Runner) -> ApiResponse:
    logger.info("Schedule runner restart requested by %s", user.user_id)
    await runner.restart()
    return ApiResponse(message="Cron jobs restarted successfully", data=runner.status())


@router.get("/gateway-status", response_model=ApiResponse)
async def gateway_status(user: StaffUser, gateway: Gateway) -> ApiResponse:
    return ApiResponse(data=gateway.status())


# ---------- Topics ----------

async def _caller_token(user_id: str, directory: Directory) -> str:
    token = await directory.get_device_token(user_id)
    if not token:
        raise HTTPException(status_code=400, detail="No FCM token registered for this user")
    return token


@router.post("/subscribe-topic", response_model=ApiResponse)
async def subscribe_topic(
    user: CurrentUser, body: TopicRequest, directory: Directory, gateway: Gateway
) -> ApiResponse:
    token = await _caller_token(user.user_id, directory)
    if not await gateway.subscribe([token], body.topic):
        raise HTTPException(status_code=500, detail="Failed to subscribe to topic")
    return ApiResponse(message=f"Subscribed to topic: {body.topic}")


@router.post("/unsubscribe-topic", response_model=ApiResponse)
async def unsubscribe_topic(
    user: CurrentUser, body: TopicRequest, directory: Directory, gateway: Gateway
) -> ApiResponse:
    token = await _caller_token(user.user_id, directory)
    if not await gateway.unsubscribe([token], body.topic):
        raise HTTPException(status_code=500, detail="Failed to unsubscribe from topic")
    return ApiResponse(message=f"Unsubscribed from topic: {body.topic}")
