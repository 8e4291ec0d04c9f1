"""Persisted per-job processing events."""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from typing import Any, Literal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from url_indexing_pipeline.models import JobLog

SessionScopeFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]
JobLogLevel = Literal["info", "warning", "error"]


class JobLogService:
    """Append and read ``JobLog`` entries."""

    def __init__(self, *, session_factory: SessionScopeFactory | None = None) -> None:
        if session_factory is None:
            from url_indexing_pipeline.database import session_scope

            session_factory = session_scope

        self._session_factory = session_factory

    async def log(
        self,
        job_id: UUID,
        *,
        event_type: str,
        message: str,
        level: JobLogLevel = "info",
        metadata: dict[str, Any] | None = None,
    ) -> None:
        async with self._session_factory() as session:
            session.add(
                JobLog(
                    job_id=job_id,
                    level=level,
                    event_type=event_type,
                    message=message[:1024],
                    metadata_json=metadata,
                )
            )

    async def list_logs(self, job_id: UUID, *, limit: int = 100) -> list[JobLog]:
        async with self._session_factory() as session:
            return list(
                (
                    await session.execute(
                        select(JobLog)
                        .where(JobLog.job_id == job_id)
                        .order_by(JobLog.created_at.desc())
                        .limit(limit)
                    )
                )
                .scalars()
                .all()
            )


__all__ = ["JobLogLevel", "JobLogService"]
