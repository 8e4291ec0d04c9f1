"""Google Indexing API v3 publish client authenticated with bearer tokens."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol, cast
from urllib.parse import urlparse

import google_auth_httplib2  # type: ignore[import-untyped]
import httplib2  # type: ignore[import-untyped]
from google.auth.exceptions import GoogleAuthError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build  # type: ignore[import-untyped]

from url_indexing_pipeline.services.google_errors import (
    GoogleAPIError,
    execute_with_google_retry,
)

URL_UPDATED = "URL_UPDATED"
PUBLISH_OPERATION = "urlNotifications.publish"
_LOGGER = logging.getLogger("url_indexing_pipeline.google_api.indexing")


@dataclass(slots=True, frozen=True)
class IndexingURLResult:
    """Single URL submission status."""

    url: str
    success: bool
    request_sent: bool
    http_status: int | None
    metadata: dict[str, Any] | None
    error_code: str | None
    error_message: str | None


class IndexingClient(Protocol):
    """Publishes URL notifications on behalf of a service account."""

    async def publish(self, url: str, *, access_token: str) -> IndexingURLResult: ...


class _GoogleBuildCallable(Protocol):
    def __call__(
        self,
        service_name: str,
        version: str,
        *,
        http: Any,
        cache_discovery: bool,
    ) -> Any: ...


def _is_valid_url(url: str) -> bool:
    parsed_url = urlparse(url)
    return parsed_url.scheme in {"http", "https"} and bool(parsed_url.netloc)


def _failure(
    url: str,
    *,
    request_sent: bool,
    http_status: int | None,
    error_code: str,
    error_message: str,
) -> IndexingURLResult:
    return IndexingURLResult(
        url=url,
        success=False,
        request_sent=request_sent,
        http_status=http_status,
        metadata=None,
        error_code=error_code,
        error_message=error_message,
    )


class GoogleIndexingClient:
    """Submit ``URL_UPDATED`` notifications with a caller-supplied token.

    Blocking googleapiclient calls run in a worker thread; each request is
    bounded by ``timeout_seconds``.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 30.0,
        max_retries: int = 0,
        builder: _GoogleBuildCallable = build,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be greater than zero")
        self._timeout_seconds = timeout_seconds
        self._max_retries = max_retries
        self._builder = builder

    def _build_service(self, access_token: str) -> Any:
        # Token-only credentials cannot refresh; a 401 must surface as HttpError.
        authorized_http = google_auth_httplib2.AuthorizedHttp(
            Credentials(token=access_token),  # type: ignore[no-untyped-call]
            http=httplib2.Http(timeout=self._timeout_seconds),
            refresh_status_codes=(),
        )
        return self._builder(
            "indexing",
            "v3",
            http=authorized_http,
            cache_discovery=False,
        )

    def publish_sync(self, url: str, *, access_token: str) -> IndexingURLResult:
        """Submit a single URL notification to the Google Indexing API."""

        if not _is_valid_url(url):
            _LOGGER.warning(
                "google_api_invalid_url",
                extra={"operation": PUBLISH_OPERATION, "url": url},
            )
            return _failure(
                url,
                request_sent=False,
                http_status=None,
                error_code="INVALID_URL",
                error_message="URL must include an http or https scheme and hostname",
            )

        try:
            service = self._build_service(access_token)
            response = execute_with_google_retry(
                lambda: cast(
                    dict[str, Any],
                    service.urlNotifications()
                    .publish(body={"url": url, "type": URL_UPDATED})
                    .execute(),
                ),
                operation=PUBLISH_OPERATION,
                max_retries=self._max_retries,
            )
        except GoogleAPIError as error:
            return _failure(
                url,
                request_sent=True,
                http_status=error.status_code,
                error_code=error.error_code,
                error_message=error.message,
            )
        except GoogleAuthError as error:
            _LOGGER.warning(
                "google_api_auth_error",
                extra={"operation": PUBLISH_OPERATION, "url": url, "error": str(error)},
            )
            return _failure(
                url,
                request_sent=True,
                http_status=401,
                error_code="AUTH_ERROR",
                error_message=f"Access token was rejected: {error}",
            )
        except (OSError, httplib2.HttpLib2Error) as error:
            _LOGGER.warning(
                "google_api_transport_error",
                extra={"operation": PUBLISH_OPERATION, "url": url, "error": str(error)},
            )
            return _failure(
                url,
                request_sent=True,
                http_status=None,
                error_code="TRANSPORT_ERROR",
                error_message=f"Request to Indexing API failed: {error}",
            )

        metadata = cast(dict[str, Any], response.get("urlNotificationMetadata", {}))
        return IndexingURLResult(
            url=url,
            success=True,
            request_sent=True,
            http_status=200,
            metadata=metadata,
            error_code=None,
            error_message=None,
        )

    async def publish(self, url: str, *, access_token: str) -> IndexingURLResult:
        """Async wrapper for submitting a single URL."""

        return await asyncio.to_thread(
            self.publish_sync, url, access_token=access_token
        )


__all__ = [
    "GoogleIndexingClient",
    "IndexingClient",
    "IndexingURLResult",
    "URL_UPDATED",
]
