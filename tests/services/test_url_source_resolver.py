"""Tests for expanding job sources into target URLs."""

from __future__ import annotations

import pytest

from url_indexing_pipeline.models import JobSourceKind
from url_indexing_pipeline.services.sitemap_fetcher import SitemapFetchHTTPError
from url_indexing_pipeline.services.url_source_resolver import (
    SitemapCircularReferenceError,
    SitemapDepthExceededError,
    UrlExtractionError,
    UrlSourceResolver,
)


def _urlset(*urls: str) -> bytes:
    entries = "".join(f"<url><loc>{url}</loc></url>" for url in urls)
    return (
        '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">'
        f"{entries}</urlset>"
    ).encode()


def _index(*sitemaps: str) -> bytes:
    entries = "".join(f"<sitemap><loc>{url}</loc></sitemap>" for url in sitemaps)
    return (
        '<sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">'
        f"{entries}</sitemapindex>"
    ).encode()


class _FakeFetcher:
    def __init__(self, documents: dict[str, bytes | Exception]) -> None:
        self._documents = documents
        self.fetched: list[str] = []

    async def __call__(self, url: str) -> bytes:
        self.fetched.append(url)
        document = self._documents[url]
        if isinstance(document, Exception):
            raise document
        return document


@pytest.mark.asyncio
async def test_manual_source_returns_urls_unchanged() -> None:
    resolver = UrlSourceResolver(fetcher=_FakeFetcher({}))
    urls = ["https://example.com/b", "https://example.com/a", "https://example.com/b"]

    assert await resolver.resolve(JobSourceKind.MANUAL, {"urls": urls}) == urls
    assert await resolver.resolve("manual", urls) == urls
    assert await resolver.resolve("manual", {"urls": []}) == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload", [None, {"urls": "https://example.com"}, {"urls": [1, 2]}]
)
async def test_manual_source_rejects_malformed_payload(payload: object) -> None:
    resolver = UrlSourceResolver(fetcher=_FakeFetcher({}))

    with pytest.raises(UrlExtractionError):
        await resolver.resolve(JobSourceKind.MANUAL, payload)


@pytest.mark.asyncio
async def test_unknown_source_kind_is_an_extraction_error() -> None:
    resolver = UrlSourceResolver(fetcher=_FakeFetcher({}))

    with pytest.raises(UrlExtractionError, match="Unsupported job source"):
        await resolver.resolve("rss", {})


@pytest.mark.asyncio
async def test_sitemap_index_is_expanded_depth_first_in_document_order() -> None:
    fetcher = _FakeFetcher(
        {
            "https://example.com/sitemap.xml": _index(
                "https://example.com/posts.xml",
                "https://example.com/pages.xml",
            ),
            "https://example.com/posts.xml": _urlset(
                "https://example.com/p1",
                "https://example.com/p2",
                "https://example.com/p3",
            ),
            "https://example.com/pages.xml": _urlset(
                "https://example.com/a",
                "https://example.com/b",
                "https://example.com/c",
                "https://example.com/p1",
            ),
        }
    )
    resolver = UrlSourceResolver(fetcher=fetcher)

    urls = await resolver.resolve(
        JobSourceKind.SITEMAP, {"sitemap_url": "https://example.com/sitemap.xml"}
    )

    assert urls == [
        "https://example.com/p1",
        "https://example.com/p2",
        "https://example.com/p3",
        "https://example.com/a",
        "https://example.com/b",
        "https://example.com/c",
        "https://example.com/p1",
    ]
    assert fetcher.fetched == [
        "https://example.com/sitemap.xml",
        "https://example.com/posts.xml",
        "https://example.com/pages.xml",
    ]


@pytest.mark.asyncio
async def test_sitemap_nesting_beyond_max_depth_fails() -> None:
    fetcher = _FakeFetcher(
        {
            "https://example.com/0.xml": _index("https://example.com/1.xml"),
            "https://example.com/1.xml": _index("https://example.com/2.xml"),
            "https://example.com/2.xml": _urlset("https://example.com/deep"),
        }
    )

    shallow = UrlSourceResolver(max_depth=1, fetcher=fetcher)
    with pytest.raises(SitemapDepthExceededError, match="maximum depth of 1"):
        await shallow.resolve(JobSourceKind.SITEMAP, "https://example.com/0.xml")

    deep_enough = UrlSourceResolver(max_depth=2, fetcher=fetcher)
    assert await deep_enough.resolve(
        JobSourceKind.SITEMAP, "https://example.com/0.xml"
    ) == ["https://example.com/deep"]


@pytest.mark.asyncio
async def test_sitemap_index_cycle_fails_instead_of_looping() -> None:
    fetcher = _FakeFetcher(
        {
            "https://example.com/a.xml": _index("https://example.com/b.xml"),
            "https://example.com/b.xml": _index("https://example.com/a.xml"),
        }
    )
    resolver = UrlSourceResolver(max_depth=10, fetcher=fetcher)

    with pytest.raises(SitemapCircularReferenceError):
        await resolver.resolve(JobSourceKind.SITEMAP, "https://example.com/a.xml")


@pytest.mark.asyncio
async def test_sitemap_fetch_and_parse_failures_become_extraction_errors() -> None:
    fetcher = _FakeFetcher(
        {
            "https://example.com/missing.xml": SitemapFetchHTTPError(
                "https://example.com/missing.xml", 404
            ),
            "https://example.com/broken.xml": b"<urlset><url>",
        }
    )
    resolver = UrlSourceResolver(fetcher=fetcher)

    with pytest.raises(UrlExtractionError, match="HTTP 404"):
        await resolver.resolve(JobSourceKind.SITEMAP, "https://example.com/missing.xml")
    with pytest.raises(UrlExtractionError, match="Invalid sitemap XML"):
        await resolver.resolve(JobSourceKind.SITEMAP, "https://example.com/broken.xml")
    with pytest.raises(UrlExtractionError, match="sitemap URL"):
        await resolver.resolve(JobSourceKind.SITEMAP, {"sitemap_url": "  "})
