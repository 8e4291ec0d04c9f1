"""APScheduler integration service with lifecycle-safe controls."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import cast

from apscheduler.events import EVENT_JOB_ERROR  # type: ignore[import-untyped]
from apscheduler.events import EVENT_JOB_EXECUTED
from apscheduler.events import EVENT_JOB_MAX_INSTANCES
from apscheduler.events import JobExecutionEvent
from apscheduler.events import JobSubmissionEvent
from apscheduler.events import SchedulerEvent
from apscheduler.job import Job  # type: ignore[import-untyped]
from apscheduler.jobstores.memory import MemoryJobStore  # type: ignore[import-untyped]
from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]
from apscheduler.schedulers.base import STATE_PAUSED  # type: ignore[import-untyped]

from url_indexing_pipeline.config import Settings

JobCallable = Callable[[], Awaitable[None] | None]

_scheduler_logger = logging.getLogger("url_indexing_pipeline.scheduler")


@dataclass(slots=True, frozen=True)
class SchedulerJobState:
    """Serializable scheduler job state for API responses."""

    job_id: str
    name: str | None
    trigger: str
    next_run_time: datetime | None
    paused: bool


class SchedulerService:
    """Own the sweep timers of one worker process.

    Sweeps are bound methods re-registered on every start, so jobs live in
    memory only; one instance of each sweep runs at a time.
    """

    def __init__(
        self,
        *,
        enabled: bool,
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        self._enabled = enabled
        self._scheduler = scheduler or AsyncIOScheduler(
            jobstores={"default": MemoryJobStore()},
            job_defaults={"coalesce": True, "max_instances": 1},
        )
        self._scheduler.add_listener(
            self._handle_job_event,
            EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MAX_INSTANCES,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> SchedulerService:
        return cls(enabled=settings.SCHEDULER_ENABLED)

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def running(self) -> bool:
        if not self._enabled:
            return False
        return cast(bool, self._scheduler.running)

    @property
    def paused(self) -> bool:
        if not self._enabled:
            return False
        return cast(bool, self._scheduler.state == STATE_PAUSED)

    async def start(self) -> None:
        if not self._enabled:
            _scheduler_logger.info("scheduler_disabled")
            return

        if self._scheduler.running:
            return

        self._scheduler.start()
        _scheduler_logger.info("scheduler_started")

    async def shutdown(self) -> None:
        if not self._enabled:
            return

        if not self._scheduler.running:
            return

        self._scheduler.shutdown(wait=False)
        _scheduler_logger.info("scheduler_shutdown")

    def pause(self) -> None:
        self._ensure_running()
        self._scheduler.pause()
        _scheduler_logger.info("scheduler_paused")

    def resume(self) -> None:
        self._ensure_running()
        self._scheduler.resume()
        _scheduler_logger.info("scheduler_resumed")

    def add_interval_job(
        self,
        *,
        job_id: str,
        func: JobCallable,
        seconds: float,
        name: str | None = None,
        replace_existing: bool = True,
    ) -> Job:
        self._ensure_enabled()
        if seconds <= 0:
            raise ValueError("Interval seconds must be greater than zero")

        return self._scheduler.add_job(
            func=func,
            trigger="interval",
            seconds=seconds,
            id=job_id,
            name=name,
            replace_existing=replace_existing,
        )

    def list_jobs(self) -> list[SchedulerJobState]:
        if not self._enabled:
            return []
        return [self._job_to_state(job) for job in self._scheduler.get_jobs()]

    def _ensure_enabled(self) -> None:
        if self._enabled:
            return
        raise RuntimeError("Scheduler is disabled")

    def _ensure_running(self) -> None:
        self._ensure_enabled()
        if not self._scheduler.running:
            raise RuntimeError("Scheduler is not running")

    @staticmethod
    def _job_to_state(job: Job) -> SchedulerJobState:
        next_run_time = getattr(job, "next_run_time", None)
        return SchedulerJobState(
            job_id=job.id,
            name=job.name,
            trigger=str(job.trigger),
            next_run_time=next_run_time,
            paused=next_run_time is None,
        )

    @staticmethod
    def _handle_job_event(event: SchedulerEvent) -> None:
        if isinstance(event, JobSubmissionEvent):
            _scheduler_logger.warning(
                "scheduler_job_skipped_still_running",
                extra={"job_id": event.job_id},
            )
            return

        if not isinstance(event, JobExecutionEvent):
            return

        if event.exception is None:
            _scheduler_logger.debug(
                "scheduler_job_succeeded",
                extra={"job_id": event.job_id},
            )
            return

        _scheduler_logger.error(
            "scheduler_job_failed",
            extra={
                "job_id": event.job_id,
                "error": str(event.exception),
            },
        )


__all__ = ["SchedulerJobState", "SchedulerService"]
