"""Pydantic schemas for indexing job resources."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from url_indexing_pipeline.models import JobScheduleKind, JobSourceKind, JobStatus


class IndexingJobRead(BaseModel):
    """Serialized indexing job with its progress counters."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    name: str
    source_kind: JobSourceKind
    status: JobStatus
    schedule_kind: JobScheduleKind
    next_run_at: datetime | None
    total_urls: int
    processed_urls: int
    successful_urls: int
    failed_urls: int
    progress_percentage: float
    run_count: int
    locked_at: datetime | None
    locked_by: str | None
    started_at: datetime | None
    completed_at: datetime | None
    error_message: str | None
    created_at: datetime
    updated_at: datetime


class IndexingJobCreate(BaseModel):
    """Definition of a new indexing job."""

    name: str = Field(min_length=1, max_length=255)
    source_kind: JobSourceKind
    source_payload: dict[str, Any] | list[str] | str
    schedule_kind: JobScheduleKind = JobScheduleKind.ONE_TIME
    start_at: datetime | None = None


class IndexingJobListResponse(BaseModel):
    """One page of a user's jobs."""

    items: list[IndexingJobRead]
    page: int
    limit: int
    total: int
    total_pages: int


class JobLogRead(BaseModel):
    """Serialized job log entry."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: UUID
    level: str
    event_type: str
    message: str
    metadata: dict[str, Any] | None = Field(
        default=None, validation_alias="metadata_json"
    )
    created_at: datetime


class IndexingJobDetail(IndexingJobRead):
    """Indexing job with its most recent log entries."""

    logs: list[JobLogRead] = Field(default_factory=list)


class JobProcessResponse(BaseModel):
    """Outcome of processing one job on request."""

    job_id: UUID
    success: bool
    error: str | None


class JobTriggerItem(BaseModel):
    """One job processed by a manual trigger."""

    job_id: UUID
    name: str
    success: bool
    error: str | None


class JobTriggerResponse(BaseModel):
    """Outcome of processing a user's pending jobs."""

    user_id: UUID
    processed: int
    succeeded: int
    failed: int
    results: list[JobTriggerItem]


class JobStatusChangeResponse(BaseModel):
    """Job status after a pause, cancel or resume request."""

    job_id: UUID
    status: JobStatus


__all__ = [
    "IndexingJobCreate",
    "IndexingJobDetail",
    "IndexingJobListResponse",
    "IndexingJobRead",
    "JobLogRead",
    "JobProcessResponse",
    "JobStatusChangeResponse",
    "JobTriggerItem",
    "JobTriggerResponse",
]
