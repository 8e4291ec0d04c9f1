"""Parse ``urlset`` and ``sitemapindex`` XML documents."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlsplit

from lxml import etree  # type: ignore[import-untyped]

_logger = logging.getLogger("url_indexing_pipeline.sitemap.parser")


class SitemapKind(str, Enum):
    """Supported sitemap root elements."""

    INDEX = "sitemapindex"
    URLSET = "urlset"


class SitemapParseError(Exception):
    """Base exception raised for sitemap parsing failures."""


class SitemapXMLParseError(SitemapParseError):
    """Raised when sitemap XML cannot be parsed."""


class UnknownSitemapTypeError(SitemapParseError):
    """Raised when sitemap XML root element is unsupported."""


@dataclass(slots=True, frozen=True)
class ParsedSitemap:
    """Root kind plus ``<loc>`` values in document order.

    For an index the locations are child sitemap URLs, for a URL set they are
    page URLs.
    """

    kind: SitemapKind
    locations: list[str]


def _local_name(tag_name: str) -> str:
    if tag_name.startswith("{"):
        _, _, local_name = tag_name.partition("}")
        return local_name.lower()

    _, _, local_name = tag_name.rpartition(":")
    return (local_name or tag_name).lower()


def _is_valid_http_url(url: str) -> bool:
    parsed_url = urlsplit(url)
    return parsed_url.scheme in {"http", "https"} and bool(parsed_url.netloc)


def _child_loc(entry: etree._Element) -> str | None:
    for child in entry:
        if not isinstance(child.tag, str) or _local_name(child.tag) != "loc":
            continue
        if not isinstance(child.text, str):
            return None
        return child.text.strip() or None
    return None


def parse_sitemap(xml_content: bytes | str) -> ParsedSitemap:
    """Detect the sitemap kind and collect its ``<loc>`` entries."""

    xml_bytes = (
        xml_content.encode("utf-8") if isinstance(xml_content, str) else xml_content
    )
    if not xml_bytes.strip():
        raise SitemapXMLParseError("Sitemap XML content is empty")

    parser = etree.XMLParser(resolve_entities=False, no_network=True, recover=False)
    try:
        root = etree.fromstring(xml_bytes, parser=parser)
    except etree.XMLSyntaxError as exc:
        raise SitemapXMLParseError(f"Invalid sitemap XML: {exc}") from exc

    if not isinstance(root.tag, str):
        raise UnknownSitemapTypeError(
            "Sitemap XML root element is not a valid XML element"
        )

    root_name = _local_name(root.tag)
    if root_name == SitemapKind.INDEX.value:
        kind, entry_name = SitemapKind.INDEX, "sitemap"
    elif root_name == SitemapKind.URLSET.value:
        kind, entry_name = SitemapKind.URLSET, "url"
    else:
        raise UnknownSitemapTypeError(
            f"Unsupported sitemap root element <{root_name}>. "
            "Expected <sitemapindex> or <urlset>."
        )

    locations: list[str] = []
    for entry in root:
        if not isinstance(entry.tag, str) or _local_name(entry.tag) != entry_name:
            continue

        loc = _child_loc(entry)
        if loc is None:
            _logger.warning("sitemap_entry_without_loc", extra={"kind": kind.value})
            continue

        if not _is_valid_http_url(loc):
            _logger.warning("sitemap_entry_malformed_url", extra={"url": loc})
            continue

        locations.append(loc)

    return ParsedSitemap(kind=kind, locations=locations)


__all__ = [
    "ParsedSitemap",
    "SitemapKind",
    "SitemapParseError",
    "SitemapXMLParseError",
    "UnknownSitemapTypeError",
    "parse_sitemap",
]
