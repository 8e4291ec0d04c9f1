"""Per-service-account daily quota tracking service."""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from url_indexing_pipeline.models import QuotaUsageRecord, ServiceAccount

SessionScopeFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

WARNING_THRESHOLD_PERCENT = 75.0
CRITICAL_THRESHOLD_PERCENT = 90.0
EXHAUSTED_THRESHOLD_PERCENT = 100.0

_quota_logger = logging.getLogger("url_indexing_pipeline.quota")


class QuotaHealth(str, Enum):
    """Aggregate quota pressure for a user's service accounts."""

    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    EXHAUSTED = "exhausted"


@dataclass(slots=True, frozen=True)
class AccountQuotaUsage:
    """Today's usage for one service account."""

    service_account_id: UUID
    name: str
    daily_quota_limit: int
    requests_made: int
    requests_successful: int
    requests_failed: int
    last_request_at: datetime | None

    @property
    def remaining(self) -> int:
        return max(self.daily_quota_limit - self.requests_made, 0)


@dataclass(slots=True, frozen=True)
class QuotaHealthSummary:
    """Aggregated daily quota state across a user's active accounts."""

    user_id: UUID
    date: date
    total_daily_limit: int
    total_requests_made: int
    usage_percentage: float
    health: QuotaHealth
    accounts: tuple[AccountQuotaUsage, ...]

    @property
    def remaining(self) -> int:
        return max(self.total_daily_limit - self.total_requests_made, 0)


def classify_quota_health(usage_percentage: float) -> QuotaHealth:
    if usage_percentage >= EXHAUSTED_THRESHOLD_PERCENT:
        return QuotaHealth.EXHAUSTED
    if usage_percentage >= CRITICAL_THRESHOLD_PERCENT:
        return QuotaHealth.CRITICAL
    if usage_percentage >= WARNING_THRESHOLD_PERCENT:
        return QuotaHealth.WARNING
    return QuotaHealth.HEALTHY


class QuotaService:
    """Record Indexing API usage per account and report quota health."""

    def __init__(
        self,
        *,
        session_factory: SessionScopeFactory | None = None,
        today_factory: Callable[[], date] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if session_factory is None:
            from url_indexing_pipeline.database import session_scope

            session_factory = session_scope

        self._session_factory = session_factory
        self._clock = clock or (lambda: datetime.now(UTC))
        self._today_factory = today_factory or (lambda: self._clock().date())

    async def record_request(self, service_account_id: UUID, *, success: bool) -> None:
        """Count one Indexing API request against today's quota."""

        await self.record_usage(
            service_account_id,
            successful=1 if success else 0,
            failed=0 if success else 1,
        )

    async def record_usage(
        self,
        service_account_id: UUID,
        *,
        successful: int = 0,
        failed: int = 0,
    ) -> None:
        """Add request counts to today's usage row, creating it when missing.

        Counters are incremented in the database so concurrent writers add up
        instead of overwriting each other.
        """

        if successful < 0 or failed < 0:
            raise ValueError("usage counts must be zero or greater")

        requests_made = successful + failed
        if requests_made == 0:
            return

        async with self._session_factory() as session:
            statement = self._insert_for(session)(QuotaUsageRecord).values(
                id=uuid4(),
                service_account_id=service_account_id,
                date=self._today_factory(),
                requests_made=requests_made,
                requests_successful=successful,
                requests_failed=failed,
                last_request_at=self._clock(),
            )
            excluded = statement.excluded
            statement = statement.on_conflict_do_update(
                index_elements=["service_account_id", "date"],
                set_={
                    "requests_made": QuotaUsageRecord.requests_made
                    + excluded.requests_made,
                    "requests_successful": QuotaUsageRecord.requests_successful
                    + excluded.requests_successful,
                    "requests_failed": QuotaUsageRecord.requests_failed
                    + excluded.requests_failed,
                    "last_request_at": excluded.last_request_at,
                    "updated_at": func.now(),
                },
            )
            await session.execute(statement)

    async def get_usage(self, service_account_id: UUID) -> QuotaUsageRecord | None:
        """Return today's usage row for an account, if any request was made."""

        async with self._session_factory() as session:
            return (
                await session.execute(
                    select(QuotaUsageRecord).where(
                        QuotaUsageRecord.service_account_id == service_account_id,
                        QuotaUsageRecord.date == self._today_factory(),
                    )
                )
            ).scalar_one_or_none()

    async def get_remaining_quota(self, service_account_id: UUID) -> int:
        """Return today's remaining daily quota for an account."""

        async with self._session_factory() as session:
            account = await session.get(ServiceAccount, service_account_id)
            if account is None:
                raise ValueError(f"Service account {service_account_id} does not exist")
            daily_limit = account.daily_quota_limit

        usage = await self.get_usage(service_account_id)
        used = usage.requests_made if usage is not None else 0
        return max(daily_limit - used, 0)

    async def summarize_user_quota(self, user_id: UUID) -> QuotaHealthSummary:
        """Aggregate today's usage across the user's active accounts."""

        usage_date = self._today_factory()
        async with self._session_factory() as session:
            rows = (
                await session.execute(
                    select(ServiceAccount, QuotaUsageRecord)
                    .outerjoin(
                        QuotaUsageRecord,
                        (QuotaUsageRecord.service_account_id == ServiceAccount.id)
                        & (QuotaUsageRecord.date == usage_date),
                    )
                    .where(
                        ServiceAccount.user_id == user_id,
                        ServiceAccount.is_active.is_(True),
                    )
                    .order_by(ServiceAccount.created_at.asc(), ServiceAccount.id.asc())
                )
            ).all()

        accounts = tuple(self._account_usage(row[0], row[1]) for row in rows)
        total_limit = sum(account.daily_quota_limit for account in accounts)
        total_made = sum(account.requests_made for account in accounts)
        if total_limit > 0:
            usage_percentage = round(total_made / total_limit * 100, 2)
        else:
            usage_percentage = EXHAUSTED_THRESHOLD_PERCENT

        summary = QuotaHealthSummary(
            user_id=user_id,
            date=usage_date,
            total_daily_limit=total_limit,
            total_requests_made=total_made,
            usage_percentage=usage_percentage,
            health=classify_quota_health(usage_percentage),
            accounts=accounts,
        )
        if summary.health is not QuotaHealth.HEALTHY:
            _quota_logger.warning(
                "quota_health_degraded",
                extra={
                    "user_id": str(user_id),
                    "health": summary.health.value,
                    "usage_percentage": usage_percentage,
                },
            )
        return summary

    @staticmethod
    def _account_usage(
        account: ServiceAccount, usage: QuotaUsageRecord | None
    ) -> AccountQuotaUsage:
        return AccountQuotaUsage(
            service_account_id=account.id,
            name=account.name,
            daily_quota_limit=account.daily_quota_limit,
            requests_made=usage.requests_made if usage else 0,
            requests_successful=usage.requests_successful if usage else 0,
            requests_failed=usage.requests_failed if usage else 0,
            last_request_at=usage.last_request_at if usage else None,
        )

    @staticmethod
    def _insert_for(session: AsyncSession) -> Any:
        dialect_name = session.get_bind().dialect.name
        if dialect_name == "postgresql":
            return postgresql_insert
        if dialect_name == "sqlite":
            return sqlite_insert
        raise RuntimeError(f"Quota upserts are not supported on {dialect_name}")


__all__ = [
    "AccountQuotaUsage",
    "QuotaHealth",
    "QuotaHealthSummary",
    "QuotaService",
    "classify_quota_health",
]
