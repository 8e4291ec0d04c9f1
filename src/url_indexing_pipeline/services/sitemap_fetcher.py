"""Async sitemap fetching with retries, header fallback, and gzip support."""

from __future__ import annotations

import asyncio
import gzip
import logging
import zlib
from dataclasses import dataclass
from typing import Final
from urllib.parse import urlsplit

import httpx

from url_indexing_pipeline.config import get_settings

DEFAULT_TIMEOUT_SECONDS: Final[float] = 30.0
DEFAULT_MAX_REDIRECTS: Final[int] = 5
DEFAULT_MAX_RETRIES: Final[int] = 2
DEFAULT_BACKOFF_BASE_SECONDS: Final[float] = 0.5
TRANSIENT_HTTP_STATUS_CODES: Final[frozenset[int]] = frozenset(
    {408, 425, 429, 500, 502, 503, 504}
)
PRIMARY_HEADERS: Final[dict[str, str]] = {
    "Accept": "application/xml,text/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}
ALTERNATE_HEADERS: Final[dict[str, str]] = {
    "Accept": "application/xml,text/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-GB,en;q=0.8",
}
GZIP_FILE_SUFFIX: Final[str] = ".gz"
_GZIP_MAGIC_BYTES: Final[bytes] = b"\x1f\x8b"

_logger = logging.getLogger("url_indexing_pipeline.sitemap.fetcher")


@dataclass(slots=True, frozen=True)
class SitemapFetchResult:
    """Fetched sitemap body, decompressed when needed."""

    url: str
    status_code: int
    content: bytes
    content_type: str | None


class SitemapFetchError(Exception):
    """Base exception for sitemap fetching failures."""


class SitemapFetchTimeoutError(SitemapFetchError):
    """Raised when sitemap fetch times out after retries."""


class SitemapFetchNetworkError(SitemapFetchError):
    """Raised when sitemap fetch fails due to network issues."""


class SitemapFetchHTTPError(SitemapFetchError):
    """Raised when the sitemap host answers with a non-2xx status."""

    def __init__(self, url: str, status_code: int) -> None:
        self.url = url
        self.status_code = status_code
        super().__init__(f"Failed to fetch sitemap {url!r}: HTTP {status_code}")


class SitemapFetchDecompressionError(SitemapFetchError):
    """Raised when a fetched sitemap cannot be decompressed."""


def _retry_delay_seconds(attempt_index: int, backoff_base_seconds: float) -> float:
    return float(backoff_base_seconds * (2**attempt_index))


def _is_gzip_response(response: httpx.Response) -> bool:
    # httpx already decodes Content-Encoding; only .gz files arrive compressed.
    path = urlsplit(str(response.url)).path.lower()
    content_type = (response.headers.get("content-type") or "").lower()
    return path.endswith(GZIP_FILE_SUFFIX) or "gzip" in content_type


def _decompress_if_needed(response: httpx.Response, *, url: str) -> bytes:
    content = response.content
    if not _is_gzip_response(response) or not content.startswith(_GZIP_MAGIC_BYTES):
        return content

    try:
        return gzip.decompress(content)
    except (OSError, EOFError, zlib.error) as exc:
        raise SitemapFetchDecompressionError(
            f"Failed to decompress sitemap {url!r}: {exc}"
        ) from exc


async def _get_with_403_retry(
    *,
    client: httpx.AsyncClient,
    url: str,
    user_agent: str,
) -> httpx.Response:
    response = await client.get(
        url, headers={"User-Agent": user_agent, **PRIMARY_HEADERS}
    )
    if response.status_code != httpx.codes.FORBIDDEN:
        return response

    return await client.get(
        url, headers={"User-Agent": user_agent, **ALTERNATE_HEADERS}
    )


async def fetch_sitemap(
    url: str,
    *,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    max_redirects: int = DEFAULT_MAX_REDIRECTS,
    max_retries: int = DEFAULT_MAX_RETRIES,
    backoff_base_seconds: float = DEFAULT_BACKOFF_BASE_SECONDS,
    user_agent: str | None = None,
) -> SitemapFetchResult:
    """Fetch a sitemap URL, retrying timeouts and transient statuses."""

    if timeout_seconds <= 0:
        raise ValueError("timeout_seconds must be greater than zero")

    if max_retries < 0:
        raise ValueError("max_retries must be zero or greater")

    request_user_agent = user_agent or get_settings().OUTBOUND_HTTP_USER_AGENT
    async with httpx.AsyncClient(
        timeout=httpx.Timeout(timeout_seconds),
        follow_redirects=True,
        max_redirects=max_redirects,
    ) as client:
        for attempt in range(max_retries + 1):
            try:
                response = await _get_with_403_retry(
                    client=client,
                    url=url,
                    user_agent=request_user_agent,
                )
                response.raise_for_status()
                return SitemapFetchResult(
                    url=str(response.url),
                    status_code=response.status_code,
                    content=_decompress_if_needed(response, url=url),
                    content_type=response.headers.get("content-type"),
                )
            except httpx.TimeoutException as exc:
                _logger.warning(
                    "sitemap_fetch_timeout",
                    extra={"url": url, "attempt": attempt + 1},
                )
                if attempt == max_retries:
                    raise SitemapFetchTimeoutError(
                        f"Timed out fetching sitemap {url!r} after {max_retries + 1} attempts"
                    ) from exc
            except httpx.NetworkError as exc:
                _logger.warning(
                    "sitemap_fetch_network_error",
                    extra={"url": url, "attempt": attempt + 1, "error": str(exc)},
                )
                if attempt == max_retries:
                    raise SitemapFetchNetworkError(
                        f"Network error fetching sitemap {url!r}: {exc}"
                    ) from exc
            except httpx.HTTPStatusError as exc:
                status_code = exc.response.status_code
                retryable = status_code in TRANSIENT_HTTP_STATUS_CODES
                _logger.warning(
                    "sitemap_fetch_http_status",
                    extra={
                        "url": url,
                        "attempt": attempt + 1,
                        "status_code": status_code,
                        "retryable": retryable,
                    },
                )
                if not retryable or attempt == max_retries:
                    raise SitemapFetchHTTPError(url, status_code) from exc
            except httpx.HTTPError as exc:
                raise SitemapFetchError(
                    f"HTTP error while fetching sitemap {url!r}: {exc}"
                ) from exc

            await asyncio.sleep(
                _retry_delay_seconds(
                    attempt_index=attempt,
                    backoff_base_seconds=backoff_base_seconds,
                )
            )

    raise SitemapFetchError(f"Unexpected failure while fetching sitemap {url!r}")


__all__ = [
    "SitemapFetchDecompressionError",
    "SitemapFetchError",
    "SitemapFetchHTTPError",
    "SitemapFetchNetworkError",
    "SitemapFetchResult",
    "SitemapFetchTimeoutError",
    "fetch_sitemap",
]
