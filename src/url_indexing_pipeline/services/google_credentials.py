"""Google service account credential parsing and token exchange."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Final, cast

import google_auth_httplib2  # type: ignore[import-untyped]
import httplib2  # type: ignore[import-untyped]
from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account

INDEXING_SCOPE: Final[str] = "https://www.googleapis.com/auth/indexing"
DEFAULT_TOKEN_LIFETIME: Final[timedelta] = timedelta(hours=1)
REQUIRED_SERVICE_ACCOUNT_FIELDS = frozenset(
    {
        "type",
        "private_key",
        "client_email",
        "token_uri",
    }
)


class GoogleCredentialsError(Exception):
    """Raised when a service account credential cannot produce a token."""


@dataclass(slots=True, frozen=True)
class AccessToken:
    """Bearer token with its absolute expiry."""

    token: str
    expires_at: datetime


def parse_service_account_info(credentials_json: str) -> dict[str, Any]:
    """Parse and validate a service account key document."""

    try:
        payload: Any = json.loads(credentials_json)
    except json.JSONDecodeError as error:
        raise GoogleCredentialsError(
            "Service account credential contains invalid JSON "
            f"at line {error.lineno}, column {error.colno}"
        ) from error

    if not isinstance(payload, dict):
        raise GoogleCredentialsError(
            "Service account credential must contain a JSON object"
        )

    missing_fields = sorted(REQUIRED_SERVICE_ACCOUNT_FIELDS.difference(payload.keys()))
    if missing_fields:
        raise GoogleCredentialsError(
            "Service account credential is missing required fields "
            f"({', '.join(missing_fields)})"
        )

    if payload.get("type") != "service_account":
        raise GoogleCredentialsError(
            "Service account credential must have type='service_account'"
        )

    return cast(dict[str, Any], payload)


def build_indexing_credentials(credentials_json: str) -> service_account.Credentials:
    """Build signed-assertion credentials scoped to the Indexing API."""

    payload = parse_service_account_info(credentials_json)
    try:
        credentials = service_account.Credentials.from_service_account_info(  # type: ignore[no-untyped-call]
            payload,
            scopes=[INDEXING_SCOPE],
        )
    except (ValueError, GoogleAuthError) as error:
        raise GoogleCredentialsError(
            f"Unable to construct Google service account credentials: {error}"
        ) from error
    return cast(service_account.Credentials, credentials)


def exchange_for_access_token(
    credentials: service_account.Credentials,
    *,
    timeout_seconds: float,
    now: datetime | None = None,
) -> AccessToken:
    """Exchange a signed assertion for a bearer token. Blocking."""

    request = google_auth_httplib2.Request(httplib2.Http(timeout=timeout_seconds))
    try:
        credentials.refresh(request)
    except (GoogleAuthError, ValueError, OSError) as error:
        raise GoogleCredentialsError(f"Token exchange failed: {error}") from error

    if not credentials.token:
        raise GoogleCredentialsError("Token endpoint returned no access token")

    issued_at = now or datetime.now(UTC)
    expiry = credentials.expiry
    if expiry is None:
        expires_at = issued_at + DEFAULT_TOKEN_LIFETIME
    elif expiry.tzinfo is None:
        # google-auth reports naive UTC expiries.
        expires_at = expiry.replace(tzinfo=UTC)
    else:
        expires_at = expiry

    return AccessToken(token=str(credentials.token), expires_at=expires_at)


__all__ = [
    "AccessToken",
    "GoogleCredentialsError",
    "INDEXING_SCOPE",
    "build_indexing_credentials",
    "exchange_for_access_token",
    "parse_service_account_info",
]
