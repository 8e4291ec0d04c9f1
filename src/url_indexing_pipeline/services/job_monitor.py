"""Periodic sweeps that promote, dispatch and reclaim indexing jobs."""

from __future__ import annotations

import asyncio
import calendar
import logging
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from url_indexing_pipeline.config import Settings
from url_indexing_pipeline.models import IndexingJob, JobScheduleKind, JobStatus
from url_indexing_pipeline.services.credential_vault import as_utc
from url_indexing_pipeline.services.job_orchestrator import JobOrchestrator
from url_indexing_pipeline.services.job_recovery_service import (
    InterruptedJobRecord,
    JobRecoveryService,
)
from url_indexing_pipeline.services.scheduler import SchedulerService

SessionScopeFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]
Sleeper = Callable[[float], Awaitable[None]]

PENDING_SWEEP_JOB_ID = "indexing-pending-sweep"
SCHEDULED_SWEEP_JOB_ID = "indexing-scheduled-sweep"
STALE_SWEEP_JOB_ID = "indexing-stale-lock-sweep"

_FIXED_INTERVALS: dict[JobScheduleKind, timedelta] = {
    JobScheduleKind.HOURLY: timedelta(hours=1),
    JobScheduleKind.DAILY: timedelta(days=1),
    JobScheduleKind.WEEKLY: timedelta(weeks=1),
}

_monitor_logger = logging.getLogger("url_indexing_pipeline.monitor")


def _add_one_month(value: datetime) -> datetime:
    year = value.year + value.month // 12
    month = value.month % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def add_schedule_interval(schedule_kind: JobScheduleKind, value: datetime) -> datetime:
    if schedule_kind == JobScheduleKind.MONTHLY:
        return _add_one_month(value)
    interval = _FIXED_INTERVALS.get(schedule_kind)
    if interval is None:
        raise ValueError(f"Schedule {schedule_kind.value} does not recur")
    return value + interval


def compute_next_run_at(
    schedule_kind: JobScheduleKind,
    previous_run_at: datetime | None,
    now: datetime,
) -> datetime | None:
    """Advance a recurring job by one unit; ``None`` for one-time jobs.

    A job that fell behind by more than one unit is moved to one unit after
    ``now`` rather than replaying every missed run.
    """

    if schedule_kind == JobScheduleKind.ONE_TIME:
        return None

    base = as_utc(previous_run_at) if previous_run_at is not None else now
    candidate = add_schedule_interval(schedule_kind, base)
    if candidate <= now:
        candidate = add_schedule_interval(schedule_kind, now)
    return candidate


@dataclass(slots=True, frozen=True)
class JobTriggerResult:
    """Outcome of one job processed by a manual trigger."""

    job_id: UUID
    name: str
    success: bool
    error: str | None


@dataclass(slots=True, frozen=True)
class MonitorStatus:
    """Monitor state for the status endpoint."""

    worker_id: str
    scheduler_enabled: bool
    scheduler_running: bool
    in_flight_job_ids: tuple[UUID, ...]
    max_concurrent_jobs: int
    last_sweeps: dict[str, datetime]
    job_counts: dict[str, int] = field(default_factory=dict)


class JobMonitor:
    """Drive job processing from APScheduler interval sweeps.

    Dispatched jobs run as background tasks bounded by a semaphore; the
    orchestrator's conditional claim keeps concurrent workers from running
    the same job twice.
    """

    def __init__(
        self,
        *,
        orchestrator: JobOrchestrator,
        scheduler: SchedulerService,
        recovery: JobRecoveryService,
        session_factory: SessionScopeFactory | None = None,
        pending_sweep_seconds: float = 60,
        scheduled_sweep_seconds: float = 60,
        stale_sweep_seconds: float = 300,
        pending_batch_size: int = 5,
        max_concurrent_jobs: int = 5,
        dispatch_stagger_seconds: float = 0.5,
        stale_after: timedelta = timedelta(minutes=30),
        shutdown_grace_period_seconds: float = 30,
        clock: Callable[[], datetime] | None = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        if pending_batch_size <= 0:
            raise ValueError("pending_batch_size must be greater than zero")
        if max_concurrent_jobs <= 0:
            raise ValueError("max_concurrent_jobs must be greater than zero")
        if session_factory is None:
            from url_indexing_pipeline.database import session_scope

            session_factory = session_scope

        self._orchestrator = orchestrator
        self._scheduler = scheduler
        self._recovery = recovery
        self._session_factory = session_factory
        self._pending_sweep_seconds = pending_sweep_seconds
        self._scheduled_sweep_seconds = scheduled_sweep_seconds
        self._stale_sweep_seconds = stale_sweep_seconds
        self._pending_batch_size = pending_batch_size
        self._max_concurrent_jobs = max_concurrent_jobs
        self._dispatch_stagger_seconds = dispatch_stagger_seconds
        self._stale_after = stale_after
        self._shutdown_grace_period_seconds = shutdown_grace_period_seconds
        self._clock = clock or (lambda: datetime.now(UTC))
        self._sleep = sleep
        self._semaphore = asyncio.Semaphore(max_concurrent_jobs)
        self._in_flight: dict[UUID, asyncio.Task[None]] = {}
        self._last_sweeps: dict[str, datetime] = {}
        self._accepting = True

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        orchestrator: JobOrchestrator,
        scheduler: SchedulerService,
        recovery: JobRecoveryService,
        session_factory: SessionScopeFactory | None = None,
    ) -> JobMonitor:
        return cls(
            orchestrator=orchestrator,
            scheduler=scheduler,
            recovery=recovery,
            session_factory=session_factory,
            pending_sweep_seconds=settings.MONITOR_PENDING_SWEEP_SECONDS,
            scheduled_sweep_seconds=settings.MONITOR_SCHEDULED_SWEEP_SECONDS,
            stale_sweep_seconds=settings.MONITOR_STALE_SWEEP_SECONDS,
            pending_batch_size=settings.MONITOR_PENDING_BATCH_SIZE,
            max_concurrent_jobs=settings.MONITOR_MAX_CONCURRENT_JOBS,
            dispatch_stagger_seconds=settings.MONITOR_DISPATCH_STAGGER_SECONDS,
            stale_after=timedelta(minutes=settings.STALE_LOCK_MINUTES),
            shutdown_grace_period_seconds=settings.SHUTDOWN_GRACE_PERIOD_SECONDS,
        )

    @property
    def in_flight_job_ids(self) -> frozenset[UUID]:
        return frozenset(self._in_flight)

    def register_jobs(self) -> None:
        """Add the three sweeps to the scheduler; no-op when it is disabled."""

        if not self._scheduler.enabled:
            _monitor_logger.info("monitor_sweeps_not_registered")
            return

        self._scheduler.add_interval_job(
            job_id=PENDING_SWEEP_JOB_ID,
            func=self.sweep_pending,
            seconds=self._pending_sweep_seconds,
            name="Dispatch pending indexing jobs",
        )
        self._scheduler.add_interval_job(
            job_id=SCHEDULED_SWEEP_JOB_ID,
            func=self.sweep_scheduled,
            seconds=self._scheduled_sweep_seconds,
            name="Promote due scheduled indexing jobs",
        )
        self._scheduler.add_interval_job(
            job_id=STALE_SWEEP_JOB_ID,
            func=self.sweep_stale,
            seconds=self._stale_sweep_seconds,
            name="Reclaim stale indexing job locks",
        )

    async def sweep_pending(self) -> list[UUID]:
        """Dispatch up to one batch of pending, unlocked jobs."""

        self._last_sweeps["pending"] = self._clock()
        if not self._accepting:
            return []

        async with self._session_factory() as session:
            job_ids = list(
                (
                    await session.execute(
                        select(IndexingJob.id)
                        .where(
                            IndexingJob.status == JobStatus.PENDING,
                            IndexingJob.locked_at.is_(None),
                        )
                        .order_by(IndexingJob.created_at.asc(), IndexingJob.id.asc())
                        .limit(self._pending_batch_size)
                    )
                )
                .scalars()
                .all()
            )

        dispatched: list[UUID] = []
        for job_id in job_ids:
            if job_id in self._in_flight or self._orchestrator.is_processing(job_id):
                continue
            if dispatched and self._dispatch_stagger_seconds > 0:
                await self._sleep(self._dispatch_stagger_seconds)
            self._dispatch(job_id)
            dispatched.append(job_id)

        if dispatched:
            _monitor_logger.info(
                "pending_jobs_dispatched",
                extra={
                    "count": len(dispatched),
                    "worker_id": self._orchestrator.worker_id,
                },
            )
        return dispatched

    async def sweep_scheduled(self) -> int:
        """Move due scheduled or recurring jobs to ``pending``."""

        now = self._clock()
        self._last_sweeps["scheduled"] = now
        async with self._session_factory() as session:
            due_jobs = (
                await session.execute(
                    select(
                        IndexingJob.id,
                        IndexingJob.status,
                        IndexingJob.schedule_kind,
                        IndexingJob.next_run_at,
                    ).where(
                        IndexingJob.next_run_at.is_not(None),
                        IndexingJob.next_run_at <= now,
                        IndexingJob.locked_at.is_(None),
                        or_(
                            IndexingJob.status == JobStatus.SCHEDULED,
                            and_(
                                IndexingJob.status == JobStatus.COMPLETED,
                                IndexingJob.schedule_kind != JobScheduleKind.ONE_TIME,
                            ),
                        ),
                    )
                )
            ).all()

            promoted = 0
            for row in due_jobs:
                schedule_kind = JobScheduleKind(row.schedule_kind)
                result = await session.execute(
                    update(IndexingJob)
                    .where(
                        IndexingJob.id == row.id,
                        IndexingJob.status == row.status,
                        IndexingJob.locked_at.is_(None),
                    )
                    .values(
                        status=JobStatus.PENDING,
                        next_run_at=compute_next_run_at(
                            schedule_kind, row.next_run_at, now
                        ),
                    )
                    .execution_options(synchronize_session=False)
                )
                promoted += result.rowcount

        if promoted:
            _monitor_logger.info("scheduled_jobs_promoted", extra={"count": promoted})
        return promoted

    async def sweep_stale(self) -> list[InterruptedJobRecord]:
        self._last_sweeps["stale"] = self._clock()
        return await self._recovery.reclaim_stale_locks(stale_after=self._stale_after)

    async def trigger_for_user(self, user_id: UUID) -> list[JobTriggerResult]:
        """Process a user's pending jobs now, one after another."""

        async with self._session_factory() as session:
            rows = (
                await session.execute(
                    select(IndexingJob.id, IndexingJob.name)
                    .where(
                        IndexingJob.user_id == user_id,
                        IndexingJob.status == JobStatus.PENDING,
                        IndexingJob.locked_at.is_(None),
                    )
                    .order_by(IndexingJob.created_at.asc(), IndexingJob.id.asc())
                    .limit(self._pending_batch_size)
                )
            ).all()

        results: list[JobTriggerResult] = []
        for row in rows:
            outcome = await self._orchestrator.process_job(row.id)
            results.append(
                JobTriggerResult(
                    job_id=row.id,
                    name=row.name,
                    success=outcome.success,
                    error=outcome.error,
                )
            )

        _monitor_logger.info(
            "user_jobs_triggered",
            extra={"user_id": str(user_id), "count": len(results)},
        )
        return results

    async def status(self) -> MonitorStatus:
        return MonitorStatus(
            worker_id=self._orchestrator.worker_id,
            scheduler_enabled=self._scheduler.enabled,
            scheduler_running=self._scheduler.running,
            in_flight_job_ids=tuple(self._in_flight),
            max_concurrent_jobs=self._max_concurrent_jobs,
            last_sweeps=dict(self._last_sweeps),
            job_counts=await self._recovery.count_jobs_by_status(),
        )

    async def shutdown(self) -> list[InterruptedJobRecord]:
        """Stop dispatching, drain in-flight jobs, then fail what is left."""

        self._accepting = False
        tasks = list(self._in_flight.values())
        if tasks:
            _, still_running = await asyncio.wait(
                tasks, timeout=self._shutdown_grace_period_seconds
            )
            for task in still_running:
                task.cancel()
            if still_running:
                await asyncio.gather(*still_running, return_exceptions=True)
                _monitor_logger.warning(
                    "in_flight_jobs_cancelled",
                    extra={"count": len(still_running)},
                )

        return await self._recovery.release_worker_jobs(self._orchestrator.worker_id)

    def _dispatch(self, job_id: UUID) -> None:
        task = asyncio.create_task(
            self._run_bounded(job_id), name=f"indexing-job-{job_id}"
        )
        self._in_flight[job_id] = task
        task.add_done_callback(lambda finished: self._on_task_done(job_id, finished))

    async def _run_bounded(self, job_id: UUID) -> None:
        async with self._semaphore:
            await self._orchestrator.process_job(job_id)

    def _on_task_done(self, job_id: UUID, task: asyncio.Task[None]) -> None:
        self._in_flight.pop(job_id, None)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            _monitor_logger.error(
                "dispatched_job_crashed",
                extra={"job_id": str(job_id), "error": str(error)},
                exc_info=error,
            )


__all__ = [
    "JobMonitor",
    "JobTriggerResult",
    "MonitorStatus",
    "add_schedule_interval",
    "compute_next_run_at",
]
