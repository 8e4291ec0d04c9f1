"""User-facing job state transitions that never touch running jobs."""

from __future__ import annotations

import logging
from collections.abc import Callable, Collection
from contextlib import AbstractAsyncContextManager
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from url_indexing_pipeline.models import IndexingJob, JobStatus
from url_indexing_pipeline.services.credential_vault import as_utc

SessionScopeFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

_STOPPABLE_STATUSES = (JobStatus.PENDING, JobStatus.SCHEDULED)

_control_logger = logging.getLogger("url_indexing_pipeline.job_control")


class JobNotFoundError(LookupError):
    """Raised when a job id does not exist."""


class JobStateConflictError(Exception):
    """Raised when a job is not in a state that allows the transition."""

    def __init__(self, job_id: UUID, current_status: JobStatus, action: str) -> None:
        super().__init__(
            f"Cannot {action} job {job_id} while it is {current_status.value}"
        )
        self.job_id = job_id
        self.current_status = current_status
        self.action = action


class JobControlService:
    """Pause, cancel and resume jobs with conditional updates."""

    def __init__(
        self,
        *,
        session_factory: SessionScopeFactory | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if session_factory is None:
            from url_indexing_pipeline.database import session_scope

            session_factory = session_scope

        self._session_factory = session_factory
        self._clock = clock or (lambda: datetime.now(UTC))

    async def get_job(self, job_id: UUID) -> IndexingJob:
        async with self._session_factory() as session:
            job = await session.get(IndexingJob, job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return job

    async def pause(self, job_id: UUID) -> JobStatus:
        return await self._transition(
            job_id,
            action="pause",
            allowed=_STOPPABLE_STATUSES,
            target=JobStatus.PAUSED,
        )

    async def cancel(self, job_id: UUID) -> JobStatus:
        return await self._transition(
            job_id,
            action="cancel",
            allowed=_STOPPABLE_STATUSES,
            target=JobStatus.CANCELLED,
        )

    async def resume(self, job_id: UUID) -> JobStatus:
        """Return a paused job to ``scheduled`` or, if already due, ``pending``."""

        async with self._session_factory() as session:
            next_run_at = (
                await session.execute(
                    select(IndexingJob.next_run_at).where(IndexingJob.id == job_id)
                )
            ).scalar_one_or_none()

        target = JobStatus.PENDING
        if next_run_at is not None and as_utc(next_run_at) > self._clock():
            target = JobStatus.SCHEDULED

        return await self._transition(
            job_id,
            action="resume",
            allowed=(JobStatus.PAUSED,),
            target=target,
        )

    async def _transition(
        self,
        job_id: UUID,
        *,
        action: str,
        allowed: Collection[JobStatus],
        target: JobStatus,
    ) -> JobStatus:
        async with self._session_factory() as session:
            result = await session.execute(
                update(IndexingJob)
                .where(
                    IndexingJob.id == job_id,
                    IndexingJob.status.in_(tuple(allowed)),
                    IndexingJob.locked_at.is_(None),
                )
                .values(status=target)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                _control_logger.info(
                    "job_status_changed",
                    extra={"job_id": str(job_id), "status": target.value},
                )
                return target

            current_status = (
                await session.execute(
                    select(IndexingJob.status).where(IndexingJob.id == job_id)
                )
            ).scalar_one_or_none()

        if current_status is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        raise JobStateConflictError(job_id, JobStatus(current_status), action)


__all__ = ["JobControlService", "JobNotFoundError", "JobStateConflictError"]
