"""Round-robin selection of a user's service accounts for URL submissions."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from url_indexing_pipeline.models import ServiceAccount

SessionScopeFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

_rotator_logger = logging.getLogger("url_indexing_pipeline.account_rotator")


class NoActiveAccountsError(Exception):
    """Raised when a user has no active service accounts."""


class NoUsableAccountsError(Exception):
    """Raised when every account of a run failed to produce a token."""


class AccessTokenProvider(Protocol):
    """Source of bearer tokens for service accounts."""

    async def get_access_token(self, account_id: UUID) -> str | None: ...

    async def invalidate_token(self, account_id: UUID) -> None: ...


@dataclass(slots=True, frozen=True)
class RotationAccount:
    """Service account identity used during a job run."""

    id: UUID
    name: str
    email: str


@dataclass(slots=True, frozen=True)
class AccountLease:
    """Account chosen for one URL together with its bearer token."""

    account: RotationAccount
    access_token: str
    skipped_account_ids: tuple[UUID, ...]


class AccountRotation:
    """Per-run rotation state.

    URL ``index`` is assigned to ``accounts[index % len(accounts)]``. When that
    account cannot produce a token it is excluded for the rest of the run and
    the following accounts in rotation order are tried instead.
    """

    def __init__(
        self,
        *,
        accounts: Sequence[RotationAccount],
        token_provider: AccessTokenProvider,
    ) -> None:
        if not accounts:
            raise NoActiveAccountsError("No active service accounts available")
        self._accounts = tuple(accounts)
        self._token_provider = token_provider
        self._unusable_ids: set[UUID] = set()

    @property
    def accounts(self) -> tuple[RotationAccount, ...]:
        return self._accounts

    @property
    def unusable_account_ids(self) -> frozenset[UUID]:
        return frozenset(self._unusable_ids)

    def assigned_account(self, index: int) -> RotationAccount:
        if index < 0:
            raise ValueError("index must be zero or greater")
        return self._accounts[index % len(self._accounts)]

    def candidates(self, index: int) -> list[RotationAccount]:
        """Accounts to try for ``index``, in rotation order, skipping unusable ones."""

        start = index % len(self._accounts)
        ordered = self._accounts[start:] + self._accounts[:start]
        return [account for account in ordered if account.id not in self._unusable_ids]

    def mark_unusable(self, account_id: UUID) -> None:
        self._unusable_ids.add(account_id)

    async def report_rejected_token(self, account_id: UUID) -> None:
        """Forget a cached token the API refused so the next use re-exchanges."""

        await self._token_provider.invalidate_token(account_id)
        _rotator_logger.info(
            "access_token_rejected",
            extra={"service_account_id": str(account_id)},
        )

    async def acquire(self, index: int) -> AccountLease:
        """Return the first account from ``index`` onwards that yields a token."""

        skipped: list[UUID] = []
        for account in self.candidates(index):
            access_token = await self._token_provider.get_access_token(account.id)
            if access_token:
                return AccountLease(
                    account=account,
                    access_token=access_token,
                    skipped_account_ids=tuple(skipped),
                )

            self.mark_unusable(account.id)
            skipped.append(account.id)
            _rotator_logger.warning(
                "service_account_skipped",
                extra={
                    "service_account_id": str(account.id),
                    "run_index": index,
                    "remaining_accounts": len(self._accounts)
                    - len(self._unusable_ids),
                },
            )

        raise NoUsableAccountsError(
            "No usable service accounts remain: every active account failed to "
            "provide an access token"
        )


class AccountRotator:
    """Load a user's active service accounts and start rotations over them."""

    def __init__(
        self,
        *,
        token_provider: AccessTokenProvider,
        session_factory: SessionScopeFactory | None = None,
    ) -> None:
        if session_factory is None:
            from url_indexing_pipeline.database import session_scope

            session_factory = session_scope

        self._session_factory = session_factory
        self._token_provider = token_provider

    async def load_active_accounts(self, user_id: UUID) -> list[RotationAccount]:
        async with self._session_factory() as session:
            rows = (
                (
                    await session.execute(
                        select(ServiceAccount)
                        .where(
                            ServiceAccount.user_id == user_id,
                            ServiceAccount.is_active.is_(True),
                        )
                        .order_by(
                            ServiceAccount.created_at.asc(), ServiceAccount.id.asc()
                        )
                    )
                )
                .scalars()
                .all()
            )

        if not rows:
            raise NoActiveAccountsError(
                f"No active service accounts available for user {user_id}"
            )

        return [
            RotationAccount(id=row.id, name=row.name, email=row.email) for row in rows
        ]

    async def start_rotation(self, user_id: UUID) -> AccountRotation:
        accounts = await self.load_active_accounts(user_id)
        _rotator_logger.info(
            "account_rotation_started",
            extra={"user_id": str(user_id), "count": len(accounts)},
        )
        return AccountRotation(accounts=accounts, token_provider=self._token_provider)


__all__ = [
    "AccessTokenProvider",
    "AccountLease",
    "AccountRotation",
    "AccountRotator",
    "NoActiveAccountsError",
    "NoUsableAccountsError",
    "RotationAccount",
]
