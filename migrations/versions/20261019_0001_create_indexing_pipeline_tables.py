"""Create service account, quota, job and submission ledger tables.

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00

"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from alembic import op
import sqlalchemy as sa

revision: str = "20261019_0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_JOB_SOURCE_KINDS = ("manual", "sitemap")
_JOB_STATUSES = (
    "scheduled",
    "pending",
    "running",
    "completed",
    "failed",
    "paused",
    "cancelled",
)
_JOB_SCHEDULE_KINDS = ("one_time", "hourly", "daily", "weekly", "monthly")
_SUBMISSION_STATUSES = ("pending", "submitted", "indexed", "failed", "skipped")


def _timestamps() -> list[sa.Column[Any]]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "service_accounts",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("encrypted_credentials", sa.Text(), nullable=True),
        sa.Column(
            "is_active", sa.Boolean(), server_default=sa.true(), nullable=False
        ),
        sa.Column(
            "daily_quota_limit",
            sa.Integer(),
            server_default=sa.text("200"),
            nullable=False,
        ),
        sa.Column(
            "minute_quota_limit",
            sa.Integer(),
            server_default=sa.text("60"),
            nullable=False,
        ),
        sa.Column("encrypted_access_token", sa.Text(), nullable=True),
        sa.Column(
            "access_token_expires_at", sa.DateTime(timezone=True), nullable=True
        ),
        *_timestamps(),
    )
    op.create_index(
        "ix_service_accounts_user_id", "service_accounts", ["user_id"]
    )

    op.create_table(
        "quota_usage_records",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column(
            "service_account_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("service_accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column(
            "requests_made", sa.Integer(), server_default=sa.text("0"), nullable=False
        ),
        sa.Column(
            "requests_successful",
            sa.Integer(),
            server_default=sa.text("0"),
            nullable=False,
        ),
        sa.Column(
            "requests_failed",
            sa.Integer(),
            server_default=sa.text("0"),
            nullable=False,
        ),
        sa.Column("last_request_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "service_account_id",
            "date",
            name="uq_quota_usage_records_service_account_id_date",
        ),
    )

    op.create_table(
        "indexing_jobs",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column(
            "source_kind",
            sa.Enum(*_JOB_SOURCE_KINDS, name="job_source_kind"),
            nullable=False,
        ),
        sa.Column("source_payload", sa.JSON(), nullable=False),
        sa.Column(
            "status",
            sa.Enum(*_JOB_STATUSES, name="job_status"),
            server_default="pending",
            nullable=False,
        ),
        sa.Column(
            "schedule_kind",
            sa.Enum(*_JOB_SCHEDULE_KINDS, name="job_schedule_kind"),
            server_default="one_time",
            nullable=False,
        ),
        sa.Column("next_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "total_urls", sa.Integer(), server_default=sa.text("0"), nullable=False
        ),
        sa.Column(
            "processed_urls", sa.Integer(), server_default=sa.text("0"), nullable=False
        ),
        sa.Column(
            "successful_urls",
            sa.Integer(),
            server_default=sa.text("0"),
            nullable=False,
        ),
        sa.Column(
            "failed_urls", sa.Integer(), server_default=sa.text("0"), nullable=False
        ),
        sa.Column(
            "progress_percentage",
            sa.Float(),
            server_default=sa.text("0"),
            nullable=False,
        ),
        sa.Column(
            "run_count", sa.Integer(), server_default=sa.text("0"), nullable=False
        ),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("locked_by", sa.String(length=128), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_indexing_jobs_status_locked_at",
        "indexing_jobs",
        ["status", "locked_at"],
    )
    op.create_index(
        "ix_indexing_jobs_status_next_run_at",
        "indexing_jobs",
        ["status", "next_run_at"],
    )
    op.create_index(
        "ix_indexing_jobs_user_id_status",
        "indexing_jobs",
        ["user_id", "status"],
    )

    op.create_table(
        "url_submissions",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column(
            "job_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("indexing_jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "run_number", sa.Integer(), server_default=sa.text("1"), nullable=False
        ),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("url", sa.String(length=2048), nullable=False),
        sa.Column(
            "status",
            sa.Enum(*_SUBMISSION_STATUSES, name="submission_status"),
            server_default="pending",
            nullable=False,
        ),
        sa.Column(
            "service_account_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("service_accounts.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("indexed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column(
            "retry_count", sa.Integer(), server_default=sa.text("0"), nullable=False
        ),
        *_timestamps(),
    )
    op.create_index(
        "ix_url_submissions_job_id_run_status",
        "url_submissions",
        ["job_id", "run_number", "status"],
    )
    op.create_index(
        "ix_url_submissions_service_account_id",
        "url_submissions",
        ["service_account_id"],
    )


def downgrade() -> None:
    op.drop_index(
        "ix_url_submissions_service_account_id", table_name="url_submissions"
    )
    op.drop_index("ix_url_submissions_job_id_run_status", table_name="url_submissions")
    op.drop_table("url_submissions")
    op.drop_index("ix_indexing_jobs_user_id_status", table_name="indexing_jobs")
    op.drop_index("ix_indexing_jobs_status_next_run_at", table_name="indexing_jobs")
    op.drop_index("ix_indexing_jobs_status_locked_at", table_name="indexing_jobs")
    op.drop_table("indexing_jobs")
    op.drop_table("quota_usage_records")
    op.drop_index("ix_service_accounts_user_id", table_name="service_accounts")
    op.drop_table("service_accounts")
    sa.Enum(name="submission_status").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="job_schedule_kind").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="job_status").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="job_source_kind").drop(op.get_bind(), checkfirst=True)
