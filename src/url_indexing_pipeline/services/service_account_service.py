"""Register Google service accounts with sealed key material."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from url_indexing_pipeline.models import ServiceAccount
from url_indexing_pipeline.services.google_credentials import (
    GoogleCredentialsError,
    parse_service_account_info,
)
from url_indexing_pipeline.services.secret_box import SecretBox

SessionScopeFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

_accounts_logger = logging.getLogger("url_indexing_pipeline.service_accounts")


class ServiceAccountValidationError(ValueError):
    """Raised when submitted key material is not a usable service account."""


class ServiceAccountConflictError(Exception):
    """Raised when the user already registered an account with the same email."""


class ServiceAccountService:
    """Validate, seal and store service account keys.

    Plaintext key JSON never reaches the database; only ``SecretBox.seal``
    output is persisted in ``encrypted_credentials``.
    """

    def __init__(
        self,
        *,
        secret_box: SecretBox,
        session_factory: SessionScopeFactory | None = None,
    ) -> None:
        if session_factory is None:
            from url_indexing_pipeline.database import session_scope

            session_factory = session_scope

        self._secret_box = secret_box
        self._session_factory = session_factory

    async def register_account(
        self,
        user_id: UUID,
        *,
        name: str,
        credentials: str | dict[str, Any],
        daily_quota_limit: int = 200,
        minute_quota_limit: int = 60,
    ) -> ServiceAccount:
        name = name.strip()
        if not name:
            raise ServiceAccountValidationError(
                "Service account name must not be empty"
            )
        if daily_quota_limit < 1 or minute_quota_limit < 1:
            raise ServiceAccountValidationError(
                "Quota limits must be greater than zero"
            )

        credentials_json = (
            credentials if isinstance(credentials, str) else json.dumps(credentials)
        )
        try:
            info = parse_service_account_info(credentials_json)
        except GoogleCredentialsError as error:
            raise ServiceAccountValidationError(str(error)) from error

        email = str(info["client_email"]).strip().lower()
        async with self._session_factory() as session:
            existing_id = await session.scalar(
                select(ServiceAccount.id).where(
                    ServiceAccount.user_id == user_id,
                    ServiceAccount.email == email,
                )
            )
            if existing_id is not None:
                raise ServiceAccountConflictError(
                    f"Service account {email} is already registered"
                )

            account = ServiceAccount(
                user_id=user_id,
                name=name,
                email=email,
                encrypted_credentials=self._secret_box.seal(credentials_json),
                daily_quota_limit=daily_quota_limit,
                minute_quota_limit=minute_quota_limit,
            )
            session.add(account)
            await session.flush()
            await session.refresh(account)

        _accounts_logger.info(
            "service_account_registered",
            extra={"user_id": str(user_id), "service_account_id": str(account.id)},
        )
        return account

    async def list_accounts(self, user_id: UUID) -> list[ServiceAccount]:
        async with self._session_factory() as session:
            return list(
                (
                    await session.execute(
                        select(ServiceAccount)
                        .where(ServiceAccount.user_id == user_id)
                        .order_by(ServiceAccount.created_at.asc(), ServiceAccount.id)
                    )
                )
                .scalars()
                .all()
            )


__all__ = [
    "ServiceAccountConflictError",
    "ServiceAccountService",
    "ServiceAccountValidationError",
]
