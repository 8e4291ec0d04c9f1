"""Bearer token access for stored service account credentials."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from url_indexing_pipeline.models import ServiceAccount
from url_indexing_pipeline.services.google_credentials import (
    AccessToken,
    GoogleCredentialsError,
    build_indexing_credentials,
    exchange_for_access_token,
)
from url_indexing_pipeline.services.secret_box import SecretBox, SecretBoxError

SessionScopeFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]
TokenExchanger = Callable[[str], AccessToken]

DEFAULT_EXPIRY_BUFFER = timedelta(minutes=5)

_vault_logger = logging.getLogger("url_indexing_pipeline.credential_vault")


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from SQLite."""

    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class CredentialVault:
    """Decrypt stored credentials and hand out cached or fresh bearer tokens.

    A ``None`` result means the account cannot be used right now; callers are
    expected to move on to another account rather than fail.
    """

    def __init__(
        self,
        *,
        secret_box: SecretBox,
        session_factory: SessionScopeFactory | None = None,
        expiry_buffer: timedelta = DEFAULT_EXPIRY_BUFFER,
        http_timeout_seconds: float = 30.0,
        token_exchanger: TokenExchanger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if session_factory is None:
            from url_indexing_pipeline.database import session_scope

            session_factory = session_scope

        self._session_factory = session_factory
        self._secret_box = secret_box
        self._expiry_buffer = expiry_buffer
        self._http_timeout_seconds = http_timeout_seconds
        self._token_exchanger = token_exchanger or self._exchange_with_google
        self._clock = clock or (lambda: datetime.now(UTC))

    async def get_access_token(self, account_id: UUID) -> str | None:
        """Return a usable bearer token for the account, or ``None``."""

        async with self._session_factory() as session:
            account = await session.get(ServiceAccount, account_id)
            if account is None:
                _vault_logger.warning(
                    "service_account_not_found",
                    extra={"service_account_id": str(account_id)},
                )
                return None
            sealed_token = account.encrypted_access_token
            token_expires_at = account.access_token_expires_at
            sealed_credentials = account.encrypted_credentials

        now = self._clock()
        if sealed_token and token_expires_at is not None:
            if as_utc(token_expires_at) - self._expiry_buffer > now:
                try:
                    return self._secret_box.open(sealed_token)
                except SecretBoxError:
                    _vault_logger.warning(
                        "cached_access_token_unreadable",
                        extra={"service_account_id": str(account_id)},
                    )

        if not sealed_credentials:
            _vault_logger.warning(
                "service_account_credentials_missing",
                extra={"service_account_id": str(account_id)},
            )
            return None

        try:
            credentials_json = self._secret_box.open(sealed_credentials)
        except SecretBoxError as error:
            _vault_logger.error(
                "service_account_credentials_unreadable",
                extra={"service_account_id": str(account_id), "error": str(error)},
            )
            return None

        if not credentials_json.strip():
            _vault_logger.warning(
                "service_account_credentials_missing",
                extra={"service_account_id": str(account_id)},
            )
            return None

        try:
            access_token = await asyncio.to_thread(
                self._token_exchanger, credentials_json
            )
        except GoogleCredentialsError as error:
            _vault_logger.error(
                "access_token_exchange_failed",
                extra={"service_account_id": str(account_id), "error": str(error)},
            )
            return None

        await self._store_token(account_id, access_token)
        _vault_logger.info(
            "access_token_refreshed",
            extra={
                "service_account_id": str(account_id),
                "expires_at": access_token.expires_at.isoformat(),
            },
        )
        return access_token.token

    async def invalidate_token(self, account_id: UUID) -> None:
        """Drop the cached token so the next request performs an exchange."""

        async with self._session_factory() as session:
            await session.execute(
                update(ServiceAccount)
                .where(ServiceAccount.id == account_id)
                .values(encrypted_access_token=None, access_token_expires_at=None)
            )

    async def _store_token(self, account_id: UUID, access_token: AccessToken) -> None:
        sealed_token = self._secret_box.seal(access_token.token)
        async with self._session_factory() as session:
            await session.execute(
                update(ServiceAccount)
                .where(ServiceAccount.id == account_id)
                .values(
                    encrypted_access_token=sealed_token,
                    access_token_expires_at=access_token.expires_at,
                )
            )

    def _exchange_with_google(self, credentials_json: str) -> AccessToken:
        credentials = build_indexing_credentials(credentials_json)
        return exchange_for_access_token(
            credentials,
            timeout_seconds=self._http_timeout_seconds,
        )


__all__ = ["CredentialVault", "DEFAULT_EXPIRY_BUFFER", "TokenExchanger", "as_utc"]
