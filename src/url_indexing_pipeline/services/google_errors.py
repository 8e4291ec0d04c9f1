"""Google API error parsing, classification, and retry utilities."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from time import sleep
from typing import Any, ClassVar, TypeVar, cast

from googleapiclient.errors import HttpError  # type: ignore[import-untyped]

TRANSIENT_HTTP_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})
QUOTA_ERROR_REASONS = frozenset(
    {
        "ratelimitexceeded",
        "userratelimitexceeded",
        "quotaexceeded",
        "dailylimitexceeded",
    }
)
TRANSIENT_ERROR_REASONS = QUOTA_ERROR_REASONS | {"backenderror", "internalerror"}
AUTH_ERROR_REASONS = frozenset(
    {
        "autherror",
        "forbidden",
        "insufficientpermissions",
        "insufficientauthenticationscopes",
        "unauthorized",
        "unauthenticated",
        "permissiondenied",
    }
)

_LOGGER = logging.getLogger("url_indexing_pipeline.google_api")

R = TypeVar("R")


class GoogleAPIError(Exception):
    """Base Google API exception with parsed response context."""

    error_code: ClassVar[str] = "API_ERROR"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        reason: str | None = None,
        details: dict[str, Any] | None = None,
        operation: str | None = None,
        retry_after_seconds: int | None = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.reason = reason
        self.details = details
        self.operation = operation
        self.retry_after_seconds = retry_after_seconds
        super().__init__(message)


class QuotaExceededError(GoogleAPIError):
    """Raised when a Google API quota or rate limit is exceeded."""

    error_code = "QUOTA_EXCEEDED"


class AuthenticationError(GoogleAPIError):
    """Raised when the bearer token is rejected or lacks permission."""

    error_code = "AUTH_ERROR"


class InvalidURLError(GoogleAPIError):
    """Raised when the submitted URL is rejected by the Indexing API."""

    error_code = "INVALID_URL"


def _extract_status_code(error: HttpError) -> int | None:
    if hasattr(error, "status_code"):
        return cast(int | None, getattr(error, "status_code"))

    response = getattr(error, "resp", None)
    if response is None:
        return None

    return cast(int | None, getattr(response, "status", None))


def _extract_payload_details(error: HttpError) -> dict[str, Any] | None:
    content = getattr(error, "content", b"")
    if isinstance(content, bytes):
        payload_text = content.decode("utf-8", errors="replace")
    elif isinstance(content, str):
        payload_text = content
    else:
        return None

    if payload_text.strip() == "":
        return None

    try:
        parsed_payload = json.loads(payload_text)
    except json.JSONDecodeError:
        return None

    if not isinstance(parsed_payload, dict):
        return None

    error_payload = parsed_payload.get("error")
    if isinstance(error_payload, dict):
        return cast(dict[str, Any], error_payload)

    return cast(dict[str, Any], parsed_payload)


def _extract_retry_after_seconds(error: HttpError) -> int | None:
    response = getattr(error, "resp", None)
    if response is None or not hasattr(response, "get"):
        return None

    retry_after = response.get("retry-after") or response.get("Retry-After")
    if retry_after is None:
        return None

    retry_after_text = str(retry_after).strip()
    if retry_after_text.isdigit():
        return int(retry_after_text)
    return None


def _error_reasons(details: dict[str, Any] | None) -> set[str]:
    if details is None:
        return set()

    reasons: set[str] = set()
    for key in ("reason", "status"):
        value = details.get(key)
        if isinstance(value, str):
            reasons.add(value.strip().lower().replace("_", ""))

    errors = details.get("errors")
    if isinstance(errors, list):
        for item in errors:
            if isinstance(item, dict) and isinstance(item.get("reason"), str):
                reasons.add(item["reason"].strip().lower())

    return reasons


def _classify(
    *, status_code: int | None, reasons: set[str], message: str
) -> type[GoogleAPIError]:
    message_lower = message.lower()
    if (
        status_code == 429
        or reasons & QUOTA_ERROR_REASONS
        or "quota" in message_lower
        or "rate limit" in message_lower
    ):
        return QuotaExceededError

    if status_code == 401 or (
        status_code == 403 and (not reasons or reasons & AUTH_ERROR_REASONS)
    ):
        return AuthenticationError

    if status_code in {400, 422} and "url" in message_lower:
        return InvalidURLError

    return GoogleAPIError


def parse_google_http_error(
    error: HttpError,
    *,
    operation: str | None = None,
) -> GoogleAPIError:
    """Parse a googleapiclient HttpError into a typed GoogleAPIError."""

    status_code = _extract_status_code(error)
    reason_text = str(getattr(error, "reason", "") or "")
    details = _extract_payload_details(error)
    message = str(details.get("message")) if details else str(error)
    exception_type = _classify(
        status_code=status_code,
        reasons=_error_reasons(details),
        message=f"{reason_text} {message}",
    )

    parsed_error = exception_type(
        message,
        status_code=status_code,
        reason=reason_text or None,
        details=details,
        operation=operation,
        retry_after_seconds=_extract_retry_after_seconds(error),
    )
    _LOGGER.warning(
        "google_api_http_error",
        extra={
            "operation": operation,
            "status_code": status_code,
            "error_type": parsed_error.__class__.__name__,
            "error": parsed_error.message,
        },
    )
    return parsed_error


def is_retryable_google_error(error: GoogleAPIError) -> bool:
    """Return whether a parsed GoogleAPIError is transient."""

    if error.status_code in TRANSIENT_HTTP_STATUS_CODES:
        return True

    return bool(_error_reasons(error.details) & TRANSIENT_ERROR_REASONS)


def execute_with_google_retry(
    request: Callable[[], R],
    *,
    operation: str,
    max_retries: int = 0,
    base_delay_seconds: float = 0.5,
) -> R:
    """Execute a blocking Google API call, retrying transient failures.

    Every attempt consumes one unit of provider quota, so the default is a
    single attempt.
    """

    if max_retries < 0:
        raise ValueError("max_retries must be zero or greater")

    for attempt in range(max_retries + 1):
        try:
            return request()
        except HttpError as error:
            parsed_error = parse_google_http_error(error, operation=operation)
            if attempt >= max_retries or not is_retryable_google_error(parsed_error):
                raise parsed_error from error

            _LOGGER.warning(
                "google_api_retrying",
                extra={
                    "operation": operation,
                    "attempt": attempt + 1,
                    "max_retries": max_retries,
                    "status_code": parsed_error.status_code,
                },
            )

        sleep(base_delay_seconds * (2**attempt))

    raise RuntimeError("retry loop exited unexpectedly")


__all__ = [
    "AuthenticationError",
    "GoogleAPIError",
    "InvalidURLError",
    "QuotaExceededError",
    "execute_with_google_retry",
    "is_retryable_google_error",
    "parse_google_http_error",
]
