"""Durable per-URL submission records for job runs."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from url_indexing_pipeline.models import IndexingJob, SubmissionStatus, UrlSubmission

SessionScopeFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

DEFAULT_INSERT_BATCH_SIZE = 100

_ledger_logger = logging.getLogger("url_indexing_pipeline.ledger")


@dataclass(slots=True, frozen=True)
class PendingSubmission:
    """Work item drained by the orchestrator."""

    id: UUID
    url: str
    position: int


class SubmissionLedger:
    """Create, read, and settle ``UrlSubmission`` rows."""

    def __init__(
        self,
        *,
        session_factory: SessionScopeFactory | None = None,
        batch_size: int = DEFAULT_INSERT_BATCH_SIZE,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if session_factory is None:
            from url_indexing_pipeline.database import session_scope

            session_factory = session_scope

        if batch_size <= 0:
            raise ValueError("batch_size must be greater than zero")

        self._session_factory = session_factory
        self._batch_size = batch_size
        self._clock = clock or (lambda: datetime.now(UTC))

    async def create_submissions(
        self,
        job_id: UUID,
        *,
        run_number: int,
        urls: Sequence[str],
    ) -> int:
        """Insert one pending row per URL and set the job's ``total_urls``.

        Rows still pending from earlier runs are marked skipped first, so the
        pending queue only ever holds the current run. Everything happens in
        one transaction.
        """

        async with self._session_factory() as session:
            superseded = await session.execute(
                update(UrlSubmission)
                .where(
                    UrlSubmission.job_id == job_id,
                    UrlSubmission.status == SubmissionStatus.PENDING,
                    UrlSubmission.run_number != run_number,
                )
                .values(
                    status=SubmissionStatus.SKIPPED,
                    error_message=f"Superseded by run {run_number}",
                )
            )
            for start in range(0, len(urls), self._batch_size):
                batch = urls[start : start + self._batch_size]
                await session.execute(
                    insert(UrlSubmission),
                    [
                        {
                            "job_id": job_id,
                            "run_number": run_number,
                            "position": start + offset,
                            "url": url,
                            "status": SubmissionStatus.PENDING,
                            "retry_count": 0,
                        }
                        for offset, url in enumerate(batch)
                    ],
                )
            await session.execute(
                update(IndexingJob)
                .where(IndexingJob.id == job_id)
                .values(total_urls=len(urls))
            )

        if superseded.rowcount:
            _ledger_logger.info(
                "stale_pending_submissions_skipped",
                extra={
                    "job_id": str(job_id),
                    "run_number": run_number,
                    "count": superseded.rowcount,
                },
            )
        _ledger_logger.info(
            "submissions_created",
            extra={"job_id": str(job_id), "run_number": run_number, "count": len(urls)},
        )
        return len(urls)

    async def list_pending(
        self, job_id: UUID, *, run_number: int
    ) -> list[PendingSubmission]:
        """Pending rows of the run in creation order."""

        async with self._session_factory() as session:
            rows = (
                await session.execute(
                    select(UrlSubmission.id, UrlSubmission.url, UrlSubmission.position)
                    .where(
                        UrlSubmission.job_id == job_id,
                        UrlSubmission.run_number == run_number,
                        UrlSubmission.status == SubmissionStatus.PENDING,
                    )
                    .order_by(UrlSubmission.position.asc())
                )
            ).all()

        return [PendingSubmission(id=row[0], url=row[1], position=row[2]) for row in rows]

    async def mark_submitted(
        self, submission_id: UUID, *, service_account_id: UUID
    ) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(UrlSubmission)
                .where(UrlSubmission.id == submission_id)
                .values(
                    status=SubmissionStatus.SUBMITTED,
                    service_account_id=service_account_id,
                    submitted_at=self._clock(),
                    error_message=None,
                )
            )

    async def mark_failed(
        self,
        submission_id: UUID,
        *,
        service_account_id: UUID | None,
        error_message: str,
    ) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(UrlSubmission)
                .where(UrlSubmission.id == submission_id)
                .values(
                    status=SubmissionStatus.FAILED,
                    service_account_id=service_account_id,
                    error_message=error_message,
                    retry_count=UrlSubmission.retry_count + 1,
                )
            )

    async def count_by_status(
        self, job_id: UUID, *, run_number: int | None = None
    ) -> dict[str, int]:
        statement = (
            select(UrlSubmission.status, func.count(UrlSubmission.id))
            .where(UrlSubmission.job_id == job_id)
            .group_by(UrlSubmission.status)
        )
        if run_number is not None:
            statement = statement.where(UrlSubmission.run_number == run_number)

        async with self._session_factory() as session:
            rows = (await session.execute(statement)).all()

        return {SubmissionStatus(row[0]).value: int(row[1]) for row in rows}


__all__ = ["PendingSubmission", "SubmissionLedger"]
