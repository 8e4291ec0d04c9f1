"""Pydantic schemas for service account registration."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ServiceAccountCreate(BaseModel):
    """Service account key submitted for registration."""

    name: str = Field(min_length=1, max_length=255)
    credentials: dict[str, Any] | str
    daily_quota_limit: int = Field(default=200, ge=1)
    minute_quota_limit: int = Field(default=60, ge=1)


class ServiceAccountRead(BaseModel):
    """Registered service account without its key material."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    name: str
    email: str
    is_active: bool
    daily_quota_limit: int
    minute_quota_limit: int
    created_at: datetime
    updated_at: datetime


__all__ = ["ServiceAccountCreate", "ServiceAccountRead"]
