"""Indexing job processing and control API routes."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from url_indexing_pipeline.api.dependencies import (
    get_job_control_service,
    get_job_log_service,
    get_job_monitor,
    get_job_orchestrator,
    get_job_service,
)
from url_indexing_pipeline.models import JobScheduleKind, JobStatus
from url_indexing_pipeline.schemas import (
    IndexingJobCreate,
    IndexingJobDetail,
    IndexingJobListResponse,
    IndexingJobRead,
    JobLogRead,
    JobProcessResponse,
    JobStatusChangeResponse,
    JobTriggerItem,
    JobTriggerResponse,
)
from url_indexing_pipeline.services.job_control import (
    JobControlService,
    JobNotFoundError,
    JobStateConflictError,
)
from url_indexing_pipeline.services.job_log_service import JobLogService
from url_indexing_pipeline.services.job_monitor import JobMonitor
from url_indexing_pipeline.services.job_orchestrator import JobOrchestrator
from url_indexing_pipeline.services.job_service import JobService, JobValidationError

router = APIRouter(prefix="/api/indexing", tags=["indexing"])


def _job_not_found(job_id: UUID) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Job {job_id} not found",
    )


async def _change_status(
    job_id: UUID,
    transition: Callable[[UUID], Awaitable[JobStatus]],
) -> JobStatusChangeResponse:
    try:
        new_status = await transition(job_id)
    except JobNotFoundError as error:
        raise _job_not_found(job_id) from error
    except JobStateConflictError as error:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(error),
        ) from error

    return JobStatusChangeResponse(job_id=job_id, status=new_status)


@router.post(
    "/users/{user_id}/jobs",
    response_model=IndexingJobRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_job(
    user_id: UUID,
    payload: IndexingJobCreate,
    jobs: JobService = Depends(get_job_service),
) -> IndexingJobRead:
    try:
        job = await jobs.create_job(
            user_id,
            name=payload.name,
            source_kind=payload.source_kind,
            source_payload=payload.source_payload,
            schedule_kind=payload.schedule_kind,
            start_at=payload.start_at,
        )
    except JobValidationError as error:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(error),
        ) from error
    return IndexingJobRead.model_validate(job)


@router.get("/users/{user_id}/jobs", response_model=IndexingJobListResponse)
async def list_jobs(
    user_id: UUID,
    job_status: JobStatus | None = Query(default=None, alias="status"),
    schedule_kind: JobScheduleKind | None = Query(default=None),
    search: str | None = Query(default=None, max_length=255),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    jobs: JobService = Depends(get_job_service),
) -> IndexingJobListResponse:
    result = await jobs.list_jobs(
        user_id,
        status=job_status,
        schedule_kind=schedule_kind,
        search=search,
        page=page,
        limit=limit,
    )
    return IndexingJobListResponse(
        items=[IndexingJobRead.model_validate(job) for job in result.items],
        page=result.page,
        limit=result.limit,
        total=result.total,
        total_pages=result.total_pages,
    )


@router.post("/users/{user_id}/process", response_model=JobTriggerResponse)
async def process_user_jobs(
    user_id: UUID,
    monitor: JobMonitor = Depends(get_job_monitor),
) -> JobTriggerResponse:
    results = await monitor.trigger_for_user(user_id)
    succeeded = sum(1 for result in results if result.success)
    return JobTriggerResponse(
        user_id=user_id,
        processed=len(results),
        succeeded=succeeded,
        failed=len(results) - succeeded,
        results=[
            JobTriggerItem(
                job_id=result.job_id,
                name=result.name,
                success=result.success,
                error=result.error,
            )
            for result in results
        ],
    )


@router.post("/jobs/{job_id}/process", response_model=JobProcessResponse)
async def process_job(
    job_id: UUID,
    orchestrator: JobOrchestrator = Depends(get_job_orchestrator),
) -> JobProcessResponse:
    result = await orchestrator.process_job(job_id)
    if not result.claimed:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=result.error,
        )
    return JobProcessResponse(
        job_id=result.job_id, success=result.success, error=result.error
    )


@router.get("/jobs/{job_id}", response_model=IndexingJobDetail)
async def get_job(
    job_id: UUID,
    log_limit: int = Query(default=20, ge=0, le=200),
    control: JobControlService = Depends(get_job_control_service),
    job_logs: JobLogService = Depends(get_job_log_service),
) -> IndexingJobDetail:
    try:
        job = await control.get_job(job_id)
    except JobNotFoundError as error:
        raise _job_not_found(job_id) from error

    logs = await job_logs.list_logs(job_id, limit=log_limit) if log_limit else []
    return IndexingJobDetail(
        **IndexingJobRead.model_validate(job).model_dump(),
        logs=[JobLogRead.model_validate(log) for log in logs],
    )


@router.post("/jobs/{job_id}/pause", response_model=JobStatusChangeResponse)
async def pause_job(
    job_id: UUID,
    control: JobControlService = Depends(get_job_control_service),
) -> JobStatusChangeResponse:
    return await _change_status(job_id, control.pause)


@router.post("/jobs/{job_id}/cancel", response_model=JobStatusChangeResponse)
async def cancel_job(
    job_id: UUID,
    control: JobControlService = Depends(get_job_control_service),
) -> JobStatusChangeResponse:
    return await _change_status(job_id, control.cancel)


@router.post("/jobs/{job_id}/resume", response_model=JobStatusChangeResponse)
async def resume_job(
    job_id: UUID,
    control: JobControlService = Depends(get_job_control_service),
) -> JobStatusChangeResponse:
    return await _change_status(job_id, control.resume)
