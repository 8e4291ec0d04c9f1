"""Tests for periodic job sweeps and schedule arithmetic."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from uuid import UUID, uuid4

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from url_indexing_pipeline.models import (
    Base,
    IndexingJob,
    JobScheduleKind,
    JobSourceKind,
    JobStatus,
)
from url_indexing_pipeline.services.credential_vault import as_utc
from url_indexing_pipeline.services.job_monitor import (
    PENDING_SWEEP_JOB_ID,
    SCHEDULED_SWEEP_JOB_ID,
    STALE_SWEEP_JOB_ID,
    JobMonitor,
    compute_next_run_at,
)
from url_indexing_pipeline.services.job_orchestrator import JobProcessResult
from url_indexing_pipeline.services.job_recovery_service import JobRecoveryService
from url_indexing_pipeline.services.scheduler import SchedulerService

SessionScopeFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

_NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


@dataclass
class _FakeOrchestrator:
    """Marks jobs completed, or holds them as running until released."""

    session_scope: SessionScopeFactory
    worker_id: str = "worker-test"
    gate: asyncio.Event | None = None
    processed: list[UUID] = field(default_factory=list)

    def is_processing(self, job_id: UUID) -> bool:
        return False

    async def process_job(self, job_id: UUID) -> JobProcessResult:
        self.processed.append(job_id)
        async with self.session_scope() as session:
            await session.execute(
                update(IndexingJob)
                .where(IndexingJob.id == job_id)
                .values(
                    status=JobStatus.RUNNING,
                    locked_by=self.worker_id,
                    locked_at=_NOW,
                )
            )
        if self.gate is not None:
            await self.gate.wait()
        async with self.session_scope() as session:
            await session.execute(
                update(IndexingJob)
                .where(IndexingJob.id == job_id)
                .values(status=JobStatus.COMPLETED, locked_by=None, locked_at=None)
            )
        return JobProcessResult(job_id=job_id, success=True)


@dataclass
class MonitorTestContext:
    engine: AsyncEngine
    session_scope: SessionScopeFactory
    orchestrator: _FakeOrchestrator
    user_id: UUID

    def monitor(
        self,
        *,
        scheduler: SchedulerService | None = None,
        pending_batch_size: int = 5,
        shutdown_grace_period_seconds: float = 5,
    ) -> JobMonitor:
        return JobMonitor(
            orchestrator=self.orchestrator,  # type: ignore[arg-type]
            scheduler=scheduler or SchedulerService(enabled=False),
            recovery=JobRecoveryService(
                session_factory=self.session_scope, clock=lambda: _NOW
            ),
            session_factory=self.session_scope,
            pending_batch_size=pending_batch_size,
            dispatch_stagger_seconds=0,
            shutdown_grace_period_seconds=shutdown_grace_period_seconds,
            clock=lambda: _NOW,
        )

    async def add_job(
        self,
        name: str,
        *,
        status: JobStatus = JobStatus.PENDING,
        schedule_kind: JobScheduleKind = JobScheduleKind.ONE_TIME,
        next_run_at: datetime | None = None,
        locked_at: datetime | None = None,
        created_offset_minutes: int = 0,
    ) -> UUID:
        async with self.session_scope() as session:
            job = IndexingJob(
                user_id=self.user_id,
                name=name,
                source_kind=JobSourceKind.MANUAL,
                source_payload={"urls": ["https://example.com/a"]},
                status=status,
                schedule_kind=schedule_kind,
                next_run_at=next_run_at,
                locked_at=locked_at,
                locked_by="worker-other" if locked_at else None,
                created_at=_NOW + timedelta(minutes=created_offset_minutes),
            )
            session.add(job)
            await session.flush()
            return job.id

    async def get_job(self, job_id: UUID) -> IndexingJob:
        async with self.session_scope() as session:
            job = await session.get(IndexingJob, job_id)
            assert job is not None
            return job


async def _build_context(tmp_path: Path) -> MonitorTestContext:
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'monitor.sqlite'}"
    engine = create_async_engine(database_url)
    session_factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )

    @asynccontextmanager
    async def scoped_session() -> AsyncIterator[AsyncSession]:
        session = session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)

    return MonitorTestContext(
        engine=engine,
        session_scope=scoped_session,
        orchestrator=_FakeOrchestrator(session_scope=scoped_session),
        user_id=uuid4(),
    )


def test_compute_next_run_at_advances_by_schedule_unit() -> None:
    previous = datetime(2026, 10, 19, 11, 0, tzinfo=UTC)

    assert compute_next_run_at(JobScheduleKind.ONE_TIME, previous, _NOW) is None
    assert compute_next_run_at(JobScheduleKind.HOURLY, previous, _NOW) == (
        datetime(2026, 10, 19, 13, 0, tzinfo=UTC)
    )
    assert compute_next_run_at(JobScheduleKind.DAILY, previous, _NOW) == (
        datetime(2026, 10, 20, 11, 0, tzinfo=UTC)
    )
    assert compute_next_run_at(JobScheduleKind.WEEKLY, previous, _NOW) == (
        datetime(2026, 10, 26, 11, 0, tzinfo=UTC)
    )


def test_compute_next_run_at_clamps_month_end() -> None:
    january_end = datetime(2027, 1, 31, 9, 0, tzinfo=UTC)
    december = datetime(2026, 12, 15, 9, 0, tzinfo=UTC)

    assert compute_next_run_at(
        JobScheduleKind.MONTHLY, january_end, january_end
    ) == datetime(2027, 2, 28, 9, 0, tzinfo=UTC)
    assert compute_next_run_at(JobScheduleKind.MONTHLY, december, december) == (
        datetime(2027, 1, 15, 9, 0, tzinfo=UTC)
    )


def test_compute_next_run_at_skips_missed_runs() -> None:
    long_ago = _NOW - timedelta(days=10)

    assert compute_next_run_at(JobScheduleKind.DAILY, long_ago, _NOW) == (
        _NOW + timedelta(days=1)
    )
    assert compute_next_run_at(JobScheduleKind.HOURLY, None, _NOW) == (
        _NOW + timedelta(hours=1)
    )


@pytest.mark.asyncio
async def test_sweep_scheduled_promotes_due_jobs(tmp_path: Path) -> None:
    context = await _build_context(tmp_path)
    due_one_time = await context.add_job(
        "due-once",
        status=JobStatus.SCHEDULED,
        next_run_at=_NOW - timedelta(minutes=1),
    )
    due_recurring = await context.add_job(
        "due-daily",
        status=JobStatus.COMPLETED,
        schedule_kind=JobScheduleKind.DAILY,
        next_run_at=_NOW - timedelta(hours=1),
    )
    future = await context.add_job(
        "future",
        status=JobStatus.SCHEDULED,
        next_run_at=_NOW + timedelta(hours=1),
    )
    finished_one_time = await context.add_job(
        "finished-once",
        status=JobStatus.COMPLETED,
        next_run_at=_NOW - timedelta(hours=1),
    )

    promoted = await context.monitor().sweep_scheduled()

    assert promoted == 2
    once = await context.get_job(due_one_time)
    assert once.status is JobStatus.PENDING
    assert once.next_run_at is None
    daily = await context.get_job(due_recurring)
    assert daily.status is JobStatus.PENDING
    assert daily.next_run_at is not None
    assert as_utc(daily.next_run_at) == _NOW + timedelta(days=1) - timedelta(hours=1)
    assert (await context.get_job(future)).status is JobStatus.SCHEDULED
    assert (await context.get_job(finished_one_time)).status is JobStatus.COMPLETED

    await context.engine.dispose()


@pytest.mark.asyncio
async def test_sweep_pending_dispatches_unlocked_jobs_in_creation_order(
    tmp_path: Path,
) -> None:
    context = await _build_context(tmp_path)
    second = await context.add_job("second", created_offset_minutes=2)
    first = await context.add_job("first", created_offset_minutes=1)
    await context.add_job("third", created_offset_minutes=3)
    await context.add_job("locked", locked_at=_NOW, created_offset_minutes=0)
    monitor = context.monitor(pending_batch_size=2)

    dispatched = await monitor.sweep_pending()
    await monitor.shutdown()

    assert dispatched == [first, second]
    assert sorted(context.orchestrator.processed) == sorted([first, second])
    assert (await context.get_job(first)).status is JobStatus.COMPLETED
    assert monitor.in_flight_job_ids == frozenset()

    await context.engine.dispose()


@pytest.mark.asyncio
async def test_sweep_pending_skips_jobs_already_in_flight(tmp_path: Path) -> None:
    context = await _build_context(tmp_path)
    job_id = await context.add_job("slow")
    context.orchestrator.gate = asyncio.Event()
    monitor = context.monitor()

    first_sweep = await monitor.sweep_pending()
    second_sweep = await monitor.sweep_pending()

    assert first_sweep == [job_id]
    assert second_sweep == []
    assert monitor.in_flight_job_ids == frozenset({job_id})

    context.orchestrator.gate.set()
    await monitor.shutdown()
    assert context.orchestrator.processed == [job_id]

    await context.engine.dispose()


@pytest.mark.asyncio
async def test_shutdown_fails_jobs_that_outlive_grace_period(tmp_path: Path) -> None:
    context = await _build_context(tmp_path)
    job_id = await context.add_job("stuck")
    context.orchestrator.gate = asyncio.Event()
    monitor = context.monitor(shutdown_grace_period_seconds=0.05)

    await monitor.sweep_pending()
    for _ in range(200):
        if (await context.get_job(job_id)).status is JobStatus.RUNNING:
            break
        await asyncio.sleep(0.01)
    released = await monitor.shutdown()

    assert [record.job_id for record in released] == [job_id]
    job = await context.get_job(job_id)
    assert job.status is JobStatus.FAILED
    assert job.error_message == "Job interrupted by worker shutdown"
    assert await monitor.sweep_pending() == []

    await context.engine.dispose()


@pytest.mark.asyncio
async def test_sweep_stale_reclaims_expired_locks(tmp_path: Path) -> None:
    context = await _build_context(tmp_path)
    stale_id = await context.add_job(
        "stale", status=JobStatus.RUNNING, locked_at=_NOW - timedelta(hours=1)
    )
    monitor = context.monitor()

    reclaimed = await monitor.sweep_stale()

    assert [record.job_id for record in reclaimed] == [stale_id]
    assert (await context.get_job(stale_id)).status is JobStatus.FAILED
    status = await monitor.status()
    assert status.last_sweeps == {"stale": _NOW}
    assert status.job_counts == {"failed": 1}
    assert status.scheduler_enabled is False

    await context.engine.dispose()


@pytest.mark.asyncio
async def test_trigger_for_user_processes_pending_jobs_sequentially(
    tmp_path: Path,
) -> None:
    context = await _build_context(tmp_path)
    first = await context.add_job("first", created_offset_minutes=1)
    second = await context.add_job("second", created_offset_minutes=2)
    await context.add_job("scheduled", status=JobStatus.SCHEDULED)

    results = await context.monitor().trigger_for_user(context.user_id)

    assert [(result.job_id, result.name, result.success) for result in results] == [
        (first, "first", True),
        (second, "second", True),
    ]
    assert await context.monitor().trigger_for_user(uuid4()) == []

    await context.engine.dispose()


@pytest.mark.asyncio
async def test_register_jobs_adds_sweeps_when_scheduler_enabled(
    tmp_path: Path,
) -> None:
    context = await _build_context(tmp_path)
    scheduler = SchedulerService(enabled=True)
    monitor = context.monitor(scheduler=scheduler)

    monitor.register_jobs()
    await scheduler.start()
    try:
        assert {job.job_id for job in scheduler.list_jobs()} == {
            PENDING_SWEEP_JOB_ID,
            SCHEDULED_SWEEP_JOB_ID,
            STALE_SWEEP_JOB_ID,
        }
    finally:
        await scheduler.shutdown()

    context.monitor().register_jobs()

    await context.engine.dispose()
