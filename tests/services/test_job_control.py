"""Tests for pausing, cancelling and resuming jobs."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from uuid import UUID, uuid4

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from url_indexing_pipeline.models import Base, IndexingJob, JobSourceKind, JobStatus
from url_indexing_pipeline.services.job_control import (
    JobControlService,
    JobNotFoundError,
    JobStateConflictError,
)

SessionScopeFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

_NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


@dataclass
class ControlTestContext:
    engine: AsyncEngine
    session_scope: SessionScopeFactory
    service: JobControlService

    async def add_job(
        self,
        *,
        status: JobStatus,
        next_run_at: datetime | None = None,
        locked_by: str | None = None,
    ) -> UUID:
        async with self.session_scope() as session:
            job = IndexingJob(
                user_id=uuid4(),
                name="Controlled job",
                source_kind=JobSourceKind.MANUAL,
                source_payload={"urls": ["https://example.com/a"]},
                status=status,
                next_run_at=next_run_at,
                locked_by=locked_by,
                locked_at=_NOW if locked_by else None,
            )
            session.add(job)
            await session.flush()
            return job.id


async def _build_context(tmp_path: Path) -> ControlTestContext:
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'control.sqlite'}"
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

    return ControlTestContext(
        engine=engine,
        session_scope=scoped_session,
        service=JobControlService(session_factory=scoped_session, clock=lambda: _NOW),
    )


@pytest.mark.asyncio
async def test_pause_and_resume_pending_job(tmp_path: Path) -> None:
    context = await _build_context(tmp_path)
    job_id = await context.add_job(status=JobStatus.PENDING)

    assert await context.service.pause(job_id) is JobStatus.PAUSED
    assert (await context.service.get_job(job_id)).status is JobStatus.PAUSED
    assert await context.service.resume(job_id) is JobStatus.PENDING

    await context.engine.dispose()


@pytest.mark.asyncio
async def test_resume_returns_future_job_to_scheduled(tmp_path: Path) -> None:
    context = await _build_context(tmp_path)
    job_id = await context.add_job(
        status=JobStatus.PAUSED, next_run_at=_NOW + timedelta(hours=2)
    )

    assert await context.service.resume(job_id) is JobStatus.SCHEDULED

    await context.engine.dispose()


@pytest.mark.asyncio
async def test_cancel_scheduled_job(tmp_path: Path) -> None:
    context = await _build_context(tmp_path)
    job_id = await context.add_job(
        status=JobStatus.SCHEDULED, next_run_at=_NOW + timedelta(days=1)
    )

    assert await context.service.cancel(job_id) is JobStatus.CANCELLED

    with pytest.raises(JobStateConflictError, match="while it is cancelled"):
        await context.service.resume(job_id)

    await context.engine.dispose()


@pytest.mark.asyncio
async def test_running_job_cannot_be_paused_or_cancelled(tmp_path: Path) -> None:
    context = await _build_context(tmp_path)
    job_id = await context.add_job(status=JobStatus.RUNNING, locked_by="worker-a")

    with pytest.raises(JobStateConflictError) as raised:
        await context.service.pause(job_id)
    assert raised.value.current_status is JobStatus.RUNNING
    assert raised.value.action == "pause"

    with pytest.raises(JobStateConflictError):
        await context.service.cancel(job_id)

    job = await context.service.get_job(job_id)
    assert job.status is JobStatus.RUNNING
    assert job.locked_by == "worker-a"

    await context.engine.dispose()


@pytest.mark.asyncio
async def test_unknown_job_raises_not_found(tmp_path: Path) -> None:
    context = await _build_context(tmp_path)
    missing_id = uuid4()

    with pytest.raises(JobNotFoundError):
        await context.service.get_job(missing_id)
    with pytest.raises(JobNotFoundError):
        await context.service.pause(missing_id)
    with pytest.raises(JobNotFoundError):
        await context.service.resume(missing_id)

    await context.engine.dispose()
