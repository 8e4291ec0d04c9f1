"""Expand a job's declared source into the flat list of target URLs."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from url_indexing_pipeline.models import JobSourceKind
from url_indexing_pipeline.services.sitemap_fetcher import (
    SitemapFetchError,
    fetch_sitemap,
)
from url_indexing_pipeline.services.sitemap_parser import (
    SitemapKind,
    SitemapParseError,
    parse_sitemap,
)

SitemapFetcher = Callable[[str], Awaitable[bytes]]

DEFAULT_MAX_DEPTH = 5

_resolver_logger = logging.getLogger("url_indexing_pipeline.url_source")


class UrlExtractionError(Exception):
    """Raised when a job's source cannot be turned into URLs."""


class SitemapDepthExceededError(UrlExtractionError):
    """Raised when nested sitemap indexes go deeper than allowed."""


class SitemapCircularReferenceError(UrlExtractionError):
    """Raised when a sitemap index references one of its own ancestors."""


class UrlSourceResolver:
    """Resolve ``manual`` URL lists and (nested) sitemaps.

    Sitemap indexes are expanded depth-first and leaf URLs are concatenated in
    document order. Duplicates are kept.
    """

    def __init__(
        self,
        *,
        max_depth: int = DEFAULT_MAX_DEPTH,
        fetcher: SitemapFetcher | None = None,
        fetch_timeout_seconds: float = 30.0,
        fetch_max_retries: int = 2,
    ) -> None:
        if max_depth < 0:
            raise ValueError("max_depth must be zero or greater")
        self._max_depth = max_depth
        self._fetch_timeout_seconds = fetch_timeout_seconds
        self._fetch_max_retries = fetch_max_retries
        self._fetcher = fetcher or self._fetch_with_httpx

    async def resolve(
        self, source_kind: JobSourceKind | str, source_payload: Any
    ) -> list[str]:
        try:
            kind = JobSourceKind(source_kind)
        except ValueError as error:
            raise UrlExtractionError(f"Unsupported job source '{source_kind}'") from error

        if kind is JobSourceKind.MANUAL:
            return self._manual_urls(source_payload)

        sitemap_url = self._sitemap_url(source_payload)
        urls = await self._expand_sitemap(sitemap_url, depth=0, ancestors=())
        _resolver_logger.info(
            "sitemap_urls_resolved",
            extra={"url": sitemap_url, "count": len(urls)},
        )
        return urls

    @staticmethod
    def _manual_urls(source_payload: Any) -> list[str]:
        urls = source_payload
        if isinstance(source_payload, dict):
            urls = source_payload.get("urls")
        if not isinstance(urls, list):
            raise UrlExtractionError("Manual job source must contain a list of URLs")
        if not all(isinstance(url, str) for url in urls):
            raise UrlExtractionError("Manual job source URLs must be strings")
        return list(urls)

    @staticmethod
    def _sitemap_url(source_payload: Any) -> str:
        sitemap_url = (
            source_payload.get("sitemap_url")
            if isinstance(source_payload, dict)
            else source_payload
        )
        if not isinstance(sitemap_url, str) or not sitemap_url.strip():
            raise UrlExtractionError("Sitemap job source must contain a sitemap URL")
        return sitemap_url.strip()

    async def _expand_sitemap(
        self, url: str, *, depth: int, ancestors: tuple[str, ...]
    ) -> list[str]:
        if depth > self._max_depth:
            raise SitemapDepthExceededError(
                f"Sitemap nesting exceeds maximum depth of {self._max_depth} at {url!r}"
            )
        if url in ancestors:
            raise SitemapCircularReferenceError(
                f"Sitemap {url!r} references itself through a parent index"
            )

        try:
            content = await self._fetcher(url)
            parsed = parse_sitemap(content)
        except (SitemapFetchError, SitemapParseError) as error:
            raise UrlExtractionError(f"Failed to read sitemap {url!r}: {error}") from error

        if parsed.kind is SitemapKind.URLSET:
            return parsed.locations

        urls: list[str] = []
        for child_url in parsed.locations:
            urls.extend(
                await self._expand_sitemap(
                    child_url, depth=depth + 1, ancestors=(*ancestors, url)
                )
            )
        return urls

    async def _fetch_with_httpx(self, url: str) -> bytes:
        result = await fetch_sitemap(
            url,
            timeout_seconds=self._fetch_timeout_seconds,
            max_retries=self._fetch_max_retries,
        )
        return result.content


__all__ = [
    "SitemapCircularReferenceError",
    "SitemapDepthExceededError",
    "SitemapFetcher",
    "UrlExtractionError",
    "UrlSourceResolver",
]
