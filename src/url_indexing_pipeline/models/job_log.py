"""Job log ORM model for per-job processing events."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy import DateTime, ForeignKey, Index, JSON, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from url_indexing_pipeline.models.base import Base

if TYPE_CHECKING:
    from url_indexing_pipeline.models.indexing_job import IndexingJob


class JobLog(Base):
    """Append-only structured event emitted while processing a job."""

    __tablename__ = "job_logs"
    __table_args__ = (Index("ix_job_logs_job_id_created_at", "job_id", "created_at"),)

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid4
    )
    job_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("indexing_jobs.id", ondelete="CASCADE"),
        nullable=False,
    )
    level: Mapped[str] = mapped_column(String(16), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    message: Mapped[str] = mapped_column(String(1024), nullable=False)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    job: Mapped[IndexingJob] = relationship(back_populates="logs")


__all__ = ["JobLog"]
