"""Shared Pydantic base models and utilities."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ArcularBase(BaseModel):
    """Base model with shared config for all Arcular schemas."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


# ---------- Response wrappers ----------


class ApiResponse(BaseModel):
    """Envelope returned by every notification endpoint."""

    success: bool = True
    message: str | None = None
    data: Any = None


class ErrorDetail(BaseModel):
    detail: str
