"""Quota health API routes."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends

from url_indexing_pipeline.api.dependencies import get_quota_service
from url_indexing_pipeline.schemas import QuotaHealthRead
from url_indexing_pipeline.services.quota_service import QuotaService

router = APIRouter(prefix="/api/indexing", tags=["quota"])


@router.get("/users/{user_id}/quota", response_model=QuotaHealthRead)
async def user_quota(
    user_id: UUID,
    quota_service: QuotaService = Depends(get_quota_service),
) -> QuotaHealthRead:
    summary = await quota_service.summarize_user_quota(user_id)
    return QuotaHealthRead.model_validate(summary)
