"""Per-URL submission ledger ORM model."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import (
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from url_indexing_pipeline.models.base import Base

if TYPE_CHECKING:
    from url_indexing_pipeline.models.indexing_job import IndexingJob


class SubmissionStatus(str, Enum):
    """Per-URL submission outcome."""

    PENDING = "pending"
    SUBMITTED = "submitted"
    INDEXED = "indexed"
    FAILED = "failed"
    SKIPPED = "skipped"


class UrlSubmission(Base):
    """Durable tracking row for one target URL within a job run."""

    __tablename__ = "url_submissions"
    __table_args__ = (
        Index(
            "ix_url_submissions_job_id_run_status",
            "job_id",
            "run_number",
            "status",
        ),
        Index("ix_url_submissions_service_account_id", "service_account_id"),
    )

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid4
    )
    job_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("indexing_jobs.id", ondelete="CASCADE"),
        nullable=False,
    )
    run_number: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1, server_default=text("1")
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    status: Mapped[SubmissionStatus] = mapped_column(
        SqlEnum(
            SubmissionStatus,
            name="submission_status",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=SubmissionStatus.PENDING,
        server_default=SubmissionStatus.PENDING.value,
    )
    service_account_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("service_accounts.id", ondelete="SET NULL"),
    )
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    indexed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    error_message: Mapped[str | None] = mapped_column(Text)
    retry_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )
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

    job: Mapped[IndexingJob] = relationship(back_populates="submissions")


__all__ = ["SubmissionStatus", "UrlSubmission"]
