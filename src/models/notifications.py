"""Pydantic request models for the notification endpoints."""

from __future__ import annotations

from datetime import date

from pydantic import Field, field_validator

from src.models.base import ArcularBase


class RegisterTokenRequest(ArcularBase):
    fcm_token: str = Field(min_length=1, alias="fcmToken")


class TopicRequest(ArcularBase):
    topic: str = Field(min_length=1, max_length=900)

    @field_validator("topic")
    @classmethod
    def _strip_topics_prefix(cls, v: str) -> str:
        # FCM accepts both "news" and "/topics/news"
        return v.removeprefix("/topics/")


class TriggerRemindersRequest(ArcularBase):
    """Optional override of the reference day for a manual run."""

    run_date: date | None = Field(default=None, alias="date")
