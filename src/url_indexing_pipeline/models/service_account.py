"""Service account ORM model."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    Integer,
    String,
    Text,
    Uuid,
    func,
    text,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from url_indexing_pipeline.models.base import Base

if TYPE_CHECKING:
    from url_indexing_pipeline.models.quota_usage import QuotaUsageRecord


class ServiceAccount(Base):
    """Google service account credential set owned by a user."""

    __tablename__ = "service_accounts"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid4
    )
    user_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    encrypted_credentials: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=true()
    )
    daily_quota_limit: Mapped[int] = mapped_column(
        Integer, nullable=False, default=200, server_default=text("200")
    )
    minute_quota_limit: Mapped[int] = mapped_column(
        Integer, nullable=False, default=60, server_default=text("60")
    )
    encrypted_access_token: Mapped[str | None] = mapped_column(Text)
    access_token_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
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

    quota_usage_records: Mapped[list[QuotaUsageRecord]] = relationship(
        back_populates="service_account",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


__all__ = ["ServiceAccount"]
