"""Scheduler and job monitor status routes."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from url_indexing_pipeline.api.dependencies import (
    get_job_monitor,
    get_scheduler_service,
)
from url_indexing_pipeline.services.job_monitor import JobMonitor
from url_indexing_pipeline.services.scheduler import SchedulerService

router = APIRouter(prefix="/api/monitor", tags=["monitor"])


class SchedulerStateResponse(BaseModel):
    """Scheduler state after a pause or resume request."""

    enabled: bool
    running: bool
    paused: bool


class SchedulerJobResponse(BaseModel):
    """Registered sweep and its next run."""

    job_id: str
    name: str | None
    trigger: str
    next_run_time: datetime | None
    paused: bool


class MonitorStatusResponse(BaseModel):
    """Worker, scheduler and job status counts."""

    worker_id: str
    scheduler_enabled: bool
    scheduler_running: bool
    scheduler_paused: bool
    in_flight_job_ids: list[UUID]
    max_concurrent_jobs: int
    last_sweeps: dict[str, datetime]
    job_counts: dict[str, int]
    sweeps: list[SchedulerJobResponse]


@router.get("/status", response_model=MonitorStatusResponse)
async def monitor_status(
    monitor: JobMonitor = Depends(get_job_monitor),
    scheduler: SchedulerService = Depends(get_scheduler_service),
) -> MonitorStatusResponse:
    state = await monitor.status()
    return MonitorStatusResponse(
        worker_id=state.worker_id,
        scheduler_enabled=state.scheduler_enabled,
        scheduler_running=state.scheduler_running,
        scheduler_paused=scheduler.paused,
        in_flight_job_ids=list(state.in_flight_job_ids),
        max_concurrent_jobs=state.max_concurrent_jobs,
        last_sweeps=state.last_sweeps,
        job_counts=state.job_counts,
        sweeps=[
            SchedulerJobResponse(
                job_id=job.job_id,
                name=job.name,
                trigger=job.trigger,
                next_run_time=job.next_run_time,
                paused=job.paused,
            )
            for job in scheduler.list_jobs()
        ],
    )


def _scheduler_state(scheduler: SchedulerService) -> SchedulerStateResponse:
    return SchedulerStateResponse(
        enabled=scheduler.enabled,
        running=scheduler.running,
        paused=scheduler.paused,
    )


@router.post("/scheduler/pause", response_model=SchedulerStateResponse)
async def pause_scheduler(
    scheduler: SchedulerService = Depends(get_scheduler_service),
) -> SchedulerStateResponse:
    try:
        scheduler.pause()
    except RuntimeError as error:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(error),
        ) from error
    return _scheduler_state(scheduler)


@router.post("/scheduler/resume", response_model=SchedulerStateResponse)
async def resume_scheduler(
    scheduler: SchedulerService = Depends(get_scheduler_service),
) -> SchedulerStateResponse:
    try:
        scheduler.resume()
    except RuntimeError as error:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(error),
        ) from error
    return _scheduler_state(scheduler)
