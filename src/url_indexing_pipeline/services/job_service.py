"""Create and list indexing jobs."""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlparse
from uuid import UUID

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from url_indexing_pipeline.models import (
    IndexingJob,
    JobScheduleKind,
    JobSourceKind,
    JobStatus,
)
from url_indexing_pipeline.services.credential_vault import as_utc
from url_indexing_pipeline.services.job_monitor import compute_next_run_at

SessionScopeFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]
Clock = Callable[[], datetime]

MAX_MANUAL_URLS = 10_000
MAX_PAGE_SIZE = 100

_job_service_logger = logging.getLogger("url_indexing_pipeline.jobs")


class JobValidationError(ValueError):
    """Raised when a job definition cannot be accepted."""


@dataclass(slots=True, frozen=True)
class JobPage:
    """One page of a user's jobs."""

    items: list[IndexingJob]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def normalize_source_payload(
    source_kind: JobSourceKind, source_payload: Any
) -> dict[str, Any]:
    """Return the stored form of a job source, or raise ``JobValidationError``.

    Manual sources become ``{"urls": [...]}`` and sitemap sources become
    ``{"sitemap_url": ...}``; bare lists and strings are accepted as shorthand.
    """

    if source_kind is JobSourceKind.MANUAL:
        urls = source_payload
        if isinstance(source_payload, dict):
            urls = source_payload.get("urls")
        if not isinstance(urls, list) or not urls:
            raise JobValidationError("Manual jobs need a non-empty list of URLs")
        if len(urls) > MAX_MANUAL_URLS:
            raise JobValidationError(
                f"Manual jobs accept at most {MAX_MANUAL_URLS} URLs"
            )
        if not all(isinstance(url, str) and url.strip() for url in urls):
            raise JobValidationError("Manual job URLs must be non-empty strings")
        return {"urls": [url.strip() for url in urls]}

    sitemap_url = (
        source_payload.get("sitemap_url")
        if isinstance(source_payload, dict)
        else source_payload
    )
    if not isinstance(sitemap_url, str) or not _is_http_url(sitemap_url.strip()):
        raise JobValidationError("Sitemap jobs need an http or https sitemap URL")
    return {"sitemap_url": sitemap_url.strip()}


def _jobs_query(
    user_id: UUID,
    *,
    status: JobStatus | None,
    schedule_kind: JobScheduleKind | None,
    search: str | None,
) -> Select[tuple[IndexingJob]]:
    statement = select(IndexingJob).where(IndexingJob.user_id == user_id)
    if status is not None:
        statement = statement.where(IndexingJob.status == status)
    if schedule_kind is not None:
        statement = statement.where(IndexingJob.schedule_kind == schedule_kind)
    if search:
        statement = statement.where(IndexingJob.name.ilike(f"%{search}%"))
    return statement


class JobService:
    """Persist new job definitions and page through a user's jobs."""

    def __init__(
        self,
        *,
        session_factory: SessionScopeFactory | None = None,
        clock: Clock = _utc_now,
    ) -> None:
        if session_factory is None:
            from url_indexing_pipeline.database import session_scope

            session_factory = session_scope

        self._session_factory = session_factory
        self._clock = clock

    async def create_job(
        self,
        user_id: UUID,
        *,
        name: str,
        source_kind: JobSourceKind,
        source_payload: Any,
        schedule_kind: JobScheduleKind = JobScheduleKind.ONE_TIME,
        start_at: datetime | None = None,
    ) -> IndexingJob:
        """Store a job as ``scheduled`` for a future ``start_at``, else ``pending``.

        Recurring jobs that start now get ``next_run_at`` one unit ahead so the
        scheduled sweep picks them up again after the first run completes.
        """

        name = name.strip()
        if not name:
            raise JobValidationError("Job name must not be empty")
        payload = normalize_source_payload(source_kind, source_payload)

        now = self._clock()
        if start_at is not None and as_utc(start_at) > now:
            status = JobStatus.SCHEDULED
            next_run_at: datetime | None = as_utc(start_at)
        else:
            status = JobStatus.PENDING
            next_run_at = compute_next_run_at(schedule_kind, None, now)

        async with self._session_factory() as session:
            job = IndexingJob(
                user_id=user_id,
                name=name,
                source_kind=source_kind,
                source_payload=payload,
                schedule_kind=schedule_kind,
                status=status,
                next_run_at=next_run_at,
            )
            session.add(job)
            await session.flush()
            await session.refresh(job)

        _job_service_logger.info(
            "job_created",
            extra={
                "job_id": str(job.id),
                "user_id": str(user_id),
                "status": status.value,
            },
        )
        return job

    async def list_jobs(
        self,
        user_id: UUID,
        *,
        status: JobStatus | None = None,
        schedule_kind: JobScheduleKind | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> JobPage:
        if page < 1:
            raise ValueError("page must be greater than zero")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValueError(f"limit must be between 1 and {MAX_PAGE_SIZE}")

        statement = _jobs_query(
            user_id, status=status, schedule_kind=schedule_kind, search=search
        )
        async with self._session_factory() as session:
            total = (
                await session.execute(
                    select(func.count()).select_from(statement.subquery())
                )
            ).scalar_one()
            items = list(
                (
                    await session.execute(
                        statement.order_by(
                            IndexingJob.created_at.desc(), IndexingJob.id.desc()
                        )
                        .offset((page - 1) * limit)
                        .limit(limit)
                    )
                )
                .scalars()
                .all()
            )

        return JobPage(items=items, total=total, page=page, limit=limit)


__all__ = [
    "JobPage",
    "JobService",
    "JobValidationError",
    "normalize_source_payload",
]
