"""Pydantic schemas for quota health responses."""

from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from url_indexing_pipeline.services.quota_service import QuotaHealth


class AccountQuotaRead(BaseModel):
    """Today's usage for one service account."""

    model_config = ConfigDict(from_attributes=True)

    service_account_id: UUID
    name: str
    daily_quota_limit: int
    requests_made: int
    requests_successful: int
    requests_failed: int
    remaining: int
    last_request_at: datetime | None


class QuotaHealthRead(BaseModel):
    """Aggregated quota health of a user's active service accounts."""

    model_config = ConfigDict(from_attributes=True)

    user_id: UUID
    date: date
    total_daily_limit: int
    total_requests_made: int
    remaining: int
    usage_percentage: float
    health: QuotaHealth
    accounts: list[AccountQuotaRead]


__all__ = ["AccountQuotaRead", "QuotaHealthRead"]
