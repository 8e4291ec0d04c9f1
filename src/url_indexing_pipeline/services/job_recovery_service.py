"""Recovery of jobs whose worker crashed or is shutting down."""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import ColumnElement, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from url_indexing_pipeline.models import IndexingJob, JobStatus

SessionScopeFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

SHUTDOWN_INTERRUPTED_MESSAGE = "Job interrupted by worker shutdown"

_recovery_logger = logging.getLogger("url_indexing_pipeline.recovery")


def stale_lock_message(stale_after: timedelta) -> str:
    minutes = int(stale_after.total_seconds() // 60)
    return f"Job lock expired after {minutes} minutes; worker presumed crashed"


@dataclass(slots=True, frozen=True)
class InterruptedJobRecord:
    """Job that was running when its lock was released by recovery."""

    job_id: UUID
    user_id: UUID
    name: str
    locked_by: str | None
    locked_at: datetime | None
    processed_urls: int
    total_urls: int


class JobRecoveryService:
    """Fail jobs whose lock holder is gone."""

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

    async def reclaim_stale_locks(
        self, *, stale_after: timedelta
    ) -> list[InterruptedJobRecord]:
        """Fail running jobs locked longer ago than ``stale_after``.

        Reclaimed jobs are not re-queued; their next run comes from the
        schedule or a manual trigger.
        """

        cutoff = self._clock() - stale_after
        records = await self._mark_failed(
            (
                IndexingJob.status == JobStatus.RUNNING,
                IndexingJob.locked_at.is_not(None),
                IndexingJob.locked_at < cutoff,
            ),
            reason=stale_lock_message(stale_after),
        )
        if records:
            _recovery_logger.warning(
                "stale_job_locks_reclaimed",
                extra={
                    "count": len(records),
                    "job_ids": [str(record.job_id) for record in records],
                },
            )
        return records

    async def release_worker_jobs(self, worker_id: str) -> list[InterruptedJobRecord]:
        """Fail jobs still locked by ``worker_id``."""

        records = await self._mark_failed(
            (
                IndexingJob.status == JobStatus.RUNNING,
                IndexingJob.locked_by == worker_id,
            ),
            reason=SHUTDOWN_INTERRUPTED_MESSAGE,
        )
        if records:
            _recovery_logger.warning(
                "worker_jobs_released",
                extra={"worker_id": worker_id, "count": len(records)},
            )
        return records

    async def count_jobs_by_status(self) -> dict[str, int]:
        async with self._session_factory() as session:
            rows = (
                await session.execute(
                    select(IndexingJob.status, func.count(IndexingJob.id)).group_by(
                        IndexingJob.status
                    )
                )
            ).all()

        return {JobStatus(status).value: int(count) for status, count in rows}

    async def _mark_failed(
        self, conditions: tuple[ColumnElement[bool], ...], *, reason: str
    ) -> list[InterruptedJobRecord]:
        now = self._clock()
        async with self._session_factory() as session:
            jobs = (
                (await session.execute(select(IndexingJob).where(*conditions)))
                .scalars()
                .all()
            )
            if not jobs:
                return []

            records = [
                InterruptedJobRecord(
                    job_id=job.id,
                    user_id=job.user_id,
                    name=job.name,
                    locked_by=job.locked_by,
                    locked_at=job.locked_at,
                    processed_urls=job.processed_urls,
                    total_urls=job.total_urls,
                )
                for job in jobs
            ]
            job_ids = [record.job_id for record in records]
            result = await session.execute(
                update(IndexingJob)
                .where(IndexingJob.id.in_(job_ids), *conditions)
                .values(
                    status=JobStatus.FAILED,
                    error_message=reason,
                    completed_at=now,
                    locked_at=None,
                    locked_by=None,
                )
                .execution_options(synchronize_session=False)
            )

        if result.rowcount != len(records):
            _recovery_logger.info(
                "job_recovery_race_detected",
                extra={"count": len(records) - result.rowcount},
            )
        return records


__all__ = [
    "InterruptedJobRecord",
    "JobRecoveryService",
    "SHUTDOWN_INTERRUPTED_MESSAGE",
    "stale_lock_message",
]
