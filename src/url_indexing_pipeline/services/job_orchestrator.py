"""Job state machine: claim, extract, ledger, submit, finalize."""

from __future__ import annotations

import asyncio
import logging
import os
import socket
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from url_indexing_pipeline.models import IndexingJob, JobSourceKind, JobStatus
from url_indexing_pipeline.services.account_rotator import (
    AccountRotation,
    AccountRotator,
)
from url_indexing_pipeline.services.google_indexing_client import IndexingClient
from url_indexing_pipeline.services.job_log_service import JobLogLevel, JobLogService
from url_indexing_pipeline.services.notifier import (
    JobEventNotifier,
    JobProgressEvent,
    UrlStatusEvent,
)
from url_indexing_pipeline.services.quota_service import QuotaService
from url_indexing_pipeline.services.submission_ledger import SubmissionLedger
from url_indexing_pipeline.services.url_source_resolver import (
    UrlExtractionError,
    UrlSourceResolver,
)

SessionScopeFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]
Sleeper = Callable[[float], Awaitable[None]]

ALREADY_PROCESSING_ERROR = "Job is already being processed"
CLAIM_CONFLICT_ERROR = "Job is not pending or is locked by another worker"
NO_URLS_ERROR = "No URLs found to process in job source"

_orchestrator_logger = logging.getLogger("url_indexing_pipeline.orchestrator")


class JobLockLostError(Exception):
    """Raised when a running job is no longer owned by this worker."""


@dataclass(slots=True, frozen=True)
class JobProcessResult:
    """Outcome of one ``process_job`` call."""

    job_id: UUID
    success: bool
    error: str | None = None
    claimed: bool = True


@dataclass(slots=True, frozen=True)
class _ClaimedJob:
    id: UUID
    user_id: UUID
    name: str
    source_kind: JobSourceKind
    source_payload: Any
    run_number: int


@dataclass(slots=True)
class _RunProgress:
    total: int
    processed: int = 0
    successful: int = 0
    failed: int = 0

    def record(self, *, success: bool) -> None:
        self.processed += 1
        if success:
            self.successful += 1
        else:
            self.failed += 1

    @property
    def percentage(self) -> float:
        if self.total <= 0:
            return 0.0
        return round(self.processed / self.total * 100, 2)

    def event(
        self,
        status: JobStatus,
        error: str | None = None,
        *,
        current_url: str | None = None,
    ) -> JobProgressEvent:
        return JobProgressEvent(
            status=status.value,
            progress_percentage=self.percentage,
            processed_urls=self.processed,
            successful_urls=self.successful,
            failed_urls=self.failed,
            total_urls=self.total,
            error_message=error,
            current_url=current_url,
        )


def default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid4().hex[:8]}"


class JobOrchestrator:
    """Drive one indexing job from claim to a terminal status.

    The claim is a single conditional update from ``pending`` to ``running``;
    every later write is guarded by ``locked_by`` so a worker whose lock was
    reclaimed cannot overwrite the outcome.
    """

    def __init__(
        self,
        *,
        resolver: UrlSourceResolver,
        ledger: SubmissionLedger,
        rotator: AccountRotator,
        indexing_client: IndexingClient,
        quota_service: QuotaService,
        notifier: JobEventNotifier,
        job_logs: JobLogService,
        session_factory: SessionScopeFactory | None = None,
        worker_id: str | None = None,
        submission_delay_seconds: float = 0.1,
        clock: Callable[[], datetime] | None = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        if session_factory is None:
            from url_indexing_pipeline.database import session_scope

            session_factory = session_scope

        self._session_factory = session_factory
        self._resolver = resolver
        self._ledger = ledger
        self._rotator = rotator
        self._indexing_client = indexing_client
        self._quota_service = quota_service
        self._notifier = notifier
        self._job_logs = job_logs
        self._worker_id = worker_id or default_worker_id()
        self._submission_delay_seconds = submission_delay_seconds
        self._clock = clock or (lambda: datetime.now(UTC))
        self._sleep = sleep
        self._active_job_ids: set[UUID] = set()

    @property
    def worker_id(self) -> str:
        return self._worker_id

    @property
    def active_job_ids(self) -> frozenset[UUID]:
        return frozenset(self._active_job_ids)

    def is_processing(self, job_id: UUID) -> bool:
        return job_id in self._active_job_ids

    async def process_job(self, job_id: UUID) -> JobProcessResult:
        """Claim and run a pending job. Never raises for job-level failures."""

        if job_id in self._active_job_ids:
            return JobProcessResult(
                job_id=job_id,
                success=False,
                error=ALREADY_PROCESSING_ERROR,
                claimed=False,
            )

        self._active_job_ids.add(job_id)
        try:
            claimed_job = await self._claim(job_id)
            if claimed_job is None:
                _orchestrator_logger.info(
                    "job_claim_conflict",
                    extra={"job_id": str(job_id), "worker_id": self._worker_id},
                )
                return JobProcessResult(
                    job_id=job_id,
                    success=False,
                    error=CLAIM_CONFLICT_ERROR,
                    claimed=False,
                )

            progress = _RunProgress(total=0)
            try:
                await self._run(claimed_job, progress)
            except Exception as error:
                error_message = str(error) or error.__class__.__name__
                _orchestrator_logger.error(
                    "job_failed",
                    extra={
                        "job_id": str(job_id),
                        "worker_id": self._worker_id,
                        "error": error_message,
                    },
                    exc_info=not isinstance(error, UrlExtractionError),
                )
                try:
                    await self._fail(claimed_job, progress, error_message)
                except Exception:
                    _orchestrator_logger.exception(
                        "job_fail_transition_error",
                        extra={"job_id": str(job_id), "worker_id": self._worker_id},
                    )
                return JobProcessResult(
                    job_id=job_id, success=False, error=error_message
                )

            return JobProcessResult(job_id=job_id, success=True)
        finally:
            self._active_job_ids.discard(job_id)

    async def _claim(self, job_id: UUID) -> _ClaimedJob | None:
        now = self._clock()
        async with self._session_factory() as session:
            result = await session.execute(
                update(IndexingJob)
                .where(
                    IndexingJob.id == job_id,
                    IndexingJob.status == JobStatus.PENDING,
                    IndexingJob.locked_at.is_(None),
                )
                .values(
                    status=JobStatus.RUNNING,
                    locked_at=now,
                    locked_by=self._worker_id,
                    run_count=IndexingJob.run_count + 1,
                    total_urls=0,
                    processed_urls=0,
                    successful_urls=0,
                    failed_urls=0,
                    progress_percentage=0.0,
                    started_at=now,
                    completed_at=None,
                    error_message=None,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None

            row = (
                await session.execute(
                    select(
                        IndexingJob.user_id,
                        IndexingJob.name,
                        IndexingJob.source_kind,
                        IndexingJob.source_payload,
                        IndexingJob.run_count,
                    ).where(IndexingJob.id == job_id)
                )
            ).one()

        _orchestrator_logger.info(
            "job_claimed",
            extra={
                "job_id": str(job_id),
                "worker_id": self._worker_id,
                "run_number": row.run_count,
            },
        )
        return _ClaimedJob(
            id=job_id,
            user_id=row.user_id,
            name=row.name,
            source_kind=JobSourceKind(row.source_kind),
            source_payload=row.source_payload,
            run_number=row.run_count,
        )

    async def _run(self, job: _ClaimedJob, progress: _RunProgress) -> None:
        await self._notify(job, progress.event(JobStatus.RUNNING))
        await self._log(
            job,
            "job_started",
            f"Run {job.run_number} started by worker {self._worker_id}",
        )

        urls = await self._resolver.resolve(job.source_kind, job.source_payload)
        if not urls:
            raise UrlExtractionError(NO_URLS_ERROR)
        await self._log(
            job,
            "urls_extracted",
            f"Extracted {len(urls)} URLs from {job.source_kind.value} source",
            metadata={"count": len(urls)},
        )

        rotation = await self._rotator.start_rotation(job.user_id)

        progress.total = await self._ledger.create_submissions(
            job.id, run_number=job.run_number, urls=urls
        )
        pending = await self._ledger.list_pending(job.id, run_number=job.run_number)

        for index, submission in enumerate(pending):
            success = await self._submit_one(
                job, rotation, index, submission.id, submission.url
            )
            progress.record(success=success)
            await self._save_progress(job, progress)
            await self._notify(
                job, progress.event(JobStatus.RUNNING, current_url=submission.url)
            )

            if index < len(pending) - 1 and self._submission_delay_seconds > 0:
                await self._sleep(self._submission_delay_seconds)

        await self._complete(job, progress)

    async def _submit_one(
        self,
        job: _ClaimedJob,
        rotation: AccountRotation,
        index: int,
        submission_id: UUID,
        url: str,
    ) -> bool:
        lease = await rotation.acquire(index)
        for skipped_account_id in lease.skipped_account_ids:
            await self._log(
                job,
                "account_skipped",
                "Service account could not provide an access token and is "
                "skipped for the rest of this run",
                level="warning",
                metadata={"service_account_id": str(skipped_account_id)},
            )

        account_id = lease.account.id
        result = await self._indexing_client.publish(
            url, access_token=lease.access_token
        )
        if result.success:
            await self._ledger.mark_submitted(
                submission_id, service_account_id=account_id
            )
        else:
            await self._ledger.mark_failed(
                submission_id,
                service_account_id=account_id,
                error_message=result.error_message or "Indexing API request failed",
            )
            if result.error_code == "AUTH_ERROR":
                await rotation.report_rejected_token(account_id)

        if result.request_sent:
            await self._quota_service.record_request(account_id, success=result.success)

        await self._notify_url_status(
            job,
            UrlStatusEvent(
                submission_id=submission_id,
                url=url,
                status="submitted" if result.success else "failed",
                service_account_id=account_id,
                error_message=result.error_message,
            ),
        )
        if result.success:
            remaining_quota = await self._quota_service.get_remaining_quota(account_id)
            await self._log(
                job,
                "quota_usage",
                f"Service account has {remaining_quota} requests left today",
                metadata={
                    "service_account_id": str(account_id),
                    "remaining_quota": remaining_quota,
                },
            )

        _orchestrator_logger.debug(
            "url_submission_processed",
            extra={
                "job_id": str(job.id),
                "submission_id": str(submission_id),
                "service_account_id": str(account_id),
                "url": url,
                "status": "submitted" if result.success else "failed",
            },
        )
        return result.success

    async def _save_progress(self, job: _ClaimedJob, progress: _RunProgress) -> None:
        async with self._session_factory() as session:
            result = await session.execute(
                update(IndexingJob)
                .where(
                    IndexingJob.id == job.id,
                    IndexingJob.locked_by == self._worker_id,
                )
                .values(
                    processed_urls=progress.processed,
                    successful_urls=progress.successful,
                    failed_urls=progress.failed,
                    progress_percentage=progress.percentage,
                )
                .execution_options(synchronize_session=False)
            )
        if result.rowcount != 1:
            raise JobLockLostError(
                f"Job {job.id} is no longer locked by worker {self._worker_id}"
            )

    async def _complete(self, job: _ClaimedJob, progress: _RunProgress) -> None:
        async with self._session_factory() as session:
            result = await session.execute(
                update(IndexingJob)
                .where(
                    IndexingJob.id == job.id,
                    IndexingJob.locked_by == self._worker_id,
                )
                .values(
                    status=JobStatus.COMPLETED,
                    completed_at=self._clock(),
                    progress_percentage=progress.percentage,
                    locked_at=None,
                    locked_by=None,
                )
                .execution_options(synchronize_session=False)
            )
        if result.rowcount != 1:
            raise JobLockLostError(
                f"Job {job.id} is no longer locked by worker {self._worker_id}"
            )

        _orchestrator_logger.info(
            "job_completed",
            extra={
                "job_id": str(job.id),
                "worker_id": self._worker_id,
                "processed_urls": progress.processed,
                "total_urls": progress.total,
            },
        )
        await self._log(
            job,
            "job_completed",
            f"Processed {progress.processed} URLs: {progress.successful} submitted, "
            f"{progress.failed} failed",
            metadata={
                "successful_urls": progress.successful,
                "failed_urls": progress.failed,
            },
        )
        await self._notify(job, progress.event(JobStatus.COMPLETED))

    async def _fail(
        self, job: _ClaimedJob, progress: _RunProgress, error_message: str
    ) -> None:
        async with self._session_factory() as session:
            result = await session.execute(
                update(IndexingJob)
                .where(
                    IndexingJob.id == job.id,
                    IndexingJob.locked_by == self._worker_id,
                    IndexingJob.status == JobStatus.RUNNING,
                )
                .values(
                    status=JobStatus.FAILED,
                    error_message=error_message,
                    completed_at=self._clock(),
                    locked_at=None,
                    locked_by=None,
                )
                .execution_options(synchronize_session=False)
            )
        if result.rowcount != 1:
            # The stale-lock sweep already settled this job.
            return

        await self._log(job, "job_failed", error_message, level="error")
        await self._notify(job, progress.event(JobStatus.FAILED, error_message))

    async def _notify(self, job: _ClaimedJob, event: JobProgressEvent) -> None:
        try:
            await self._notifier.notify(job.user_id, job.id, event)
        except Exception:
            _orchestrator_logger.warning(
                "job_notification_failed",
                extra={"job_id": str(job.id), "status": event.status},
                exc_info=True,
            )

    async def _notify_url_status(self, job: _ClaimedJob, event: UrlStatusEvent) -> None:
        try:
            await self._notifier.notify_url_status(job.user_id, job.id, event)
        except Exception:
            _orchestrator_logger.warning(
                "job_notification_failed",
                extra={"job_id": str(job.id), "status": event.status},
                exc_info=True,
            )

    async def _log(
        self,
        job: _ClaimedJob,
        event_type: str,
        message: str,
        *,
        level: JobLogLevel = "info",
        metadata: dict[str, Any] | None = None,
    ) -> None:
        try:
            await self._job_logs.log(
                job.id,
                event_type=event_type,
                message=message,
                level=level,
                metadata=metadata,
            )
        except Exception:
            _orchestrator_logger.warning(
                "job_log_write_failed",
                extra={"job_id": str(job.id), "status": event_type},
                exc_info=True,
            )


__all__ = [
    "ALREADY_PROCESSING_ERROR",
    "CLAIM_CONFLICT_ERROR",
    "JobLockLostError",
    "JobOrchestrator",
    "JobProcessResult",
    "NO_URLS_ERROR",
    "default_worker_id",
]
