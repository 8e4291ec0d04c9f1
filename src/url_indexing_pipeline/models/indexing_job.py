"""Indexing job ORM model."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy import (
    DateTime,
    Enum as SqlEnum,
    Float,
    Index,
    Integer,
    JSON,
    String,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from url_indexing_pipeline.models.base import Base

if TYPE_CHECKING:
    from url_indexing_pipeline.models.job_log import JobLog
    from url_indexing_pipeline.models.url_submission import UrlSubmission


class JobSourceKind(str, Enum):
    """Where a job's target URLs come from."""

    MANUAL = "manual"
    SITEMAP = "sitemap"


class JobStatus(str, Enum):
    """Lifecycle states of an indexing job."""

    SCHEDULED = "scheduled"
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class JobScheduleKind(str, Enum):
    """Recurrence of an indexing job."""

    ONE_TIME = "one_time"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


def _enum_values(enum: type[Enum]) -> list[str]:
    return [member.value for member in enum]


class IndexingJob(Base):
    """User-requested batch of URLs to submit for indexing."""

    __tablename__ = "indexing_jobs"
    __table_args__ = (
        Index("ix_indexing_jobs_status_locked_at", "status", "locked_at"),
        Index("ix_indexing_jobs_status_next_run_at", "status", "next_run_at"),
        Index("ix_indexing_jobs_user_id_status", "user_id", "status"),
    )

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid4
    )
    user_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    source_kind: Mapped[JobSourceKind] = mapped_column(
        SqlEnum(
            JobSourceKind,
            name="job_source_kind",
            values_callable=_enum_values,
        ),
        nullable=False,
    )
    source_payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    status: Mapped[JobStatus] = mapped_column(
        SqlEnum(JobStatus, name="job_status", values_callable=_enum_values),
        nullable=False,
        default=JobStatus.PENDING,
        server_default=JobStatus.PENDING.value,
    )
    schedule_kind: Mapped[JobScheduleKind] = mapped_column(
        SqlEnum(
            JobScheduleKind,
            name="job_schedule_kind",
            values_callable=_enum_values,
        ),
        nullable=False,
        default=JobScheduleKind.ONE_TIME,
        server_default=JobScheduleKind.ONE_TIME.value,
    )
    next_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    total_urls: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )
    processed_urls: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )
    successful_urls: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )
    failed_urls: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )
    progress_percentage: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.0, server_default=text("0")
    )
    run_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )
    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    locked_by: Mapped[str | None] = mapped_column(String(128))
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    error_message: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    submissions: Mapped[list[UrlSubmission]] = relationship(
        back_populates="job",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    logs: Mapped[list[JobLog]] = relationship(
        back_populates="job",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


__all__ = ["IndexingJob", "JobScheduleKind", "JobSourceKind", "JobStatus"]
