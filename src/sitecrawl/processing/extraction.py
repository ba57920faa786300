"""HTML extraction helpers.

Each function takes a parsed lxml document and pulls out one kind of data:
structured data, main content text, media, links or document metadata.
They raise on unexpected input; the processor isolates every stage.
"""

import copy
import json
import logging
import re
from typing import TYPE_CHECKING, Any, cast
from urllib.parse import urljoin, urlsplit

from lxml import etree, html

from sitecrawl.processing.models import (
    ExtractedLink,
    LinkType,
    MediaItem,
    MediaType,
    PageMetadata,
    StructuredData,
)

if TYPE_CHECKING:
    from lxml.html import HtmlElement

logger = logging.getLogger(__name__)

WHITESPACE_RE = re.compile(r"\s+")
DOWNLOAD_EXTENSIONS = re.compile(r"\.(pdf|doc|docx|xls|xlsx|zip|rar)$", re.IGNORECASE)
SOCIAL_HOSTS = ("facebook.com", "twitter.com", "linkedin.com", "instagram.com")
NAVIGATION_WORDS = ("home", "about", "contact", "menu")

# Tried in order; the first with enough text wins
MAIN_CONTENT_SELECTORS = (
    "article",
    '[role="main"]',
    ".content",
    ".post-content",
    ".entry-content",
    ".article-content",
    "main",
    "#content",
    "#main",
    ".main-content",
)
MIN_MAIN_CONTENT_CHARS = 100
BOILERPLATE_SELECTORS = (
    "nav, header, footer, aside, .sidebar, .menu, .navigation, "
    "script, style, noscript, .ads, .advertisement"
)


def parse_html(content: str) -> "HtmlElement":
    """Parse an HTML document into an lxml tree rooted at <html>.

    Raises:
        ValueError: If content is empty
        lxml.etree.ParserError: If the document cannot be parsed
    """
    if not content or not content.strip():
        raise ValueError("Empty HTML document")
    try:
        return cast("HtmlElement", html.document_fromstring(content))
    except ValueError:
        # str input with an XML encoding declaration must be parsed as bytes
        return cast("HtmlElement", html.document_fromstring(content.encode("utf-8")))


def clean_text(text: str | None) -> str:
    """Collapse runs of whitespace and trim."""
    if not text:
        return ""
    return WHITESPACE_RE.sub(" ", text).strip()


def _first_attr(tree: "HtmlElement", selector: str, attr: str) -> str | None:
    for element in tree.cssselect(selector):
        value = element.get(attr)
        if value and value.strip():
            return value.strip()
    return None


def _first_text(tree: "HtmlElement", selector: str) -> str | None:
    for element in tree.cssselect(selector):
        text = clean_text(element.text_content())
        if text:
            return text
    return None


def extract_structured_data(tree: "HtmlElement") -> StructuredData:
    """Collect JSON-LD, OpenGraph, Twitter card and microdata.

    Malformed JSON-LD blocks are skipped. Microdata items are grouped by
    their ``itemtype``; a property that appears more than once becomes a list.
    """
    structured = StructuredData()

    for script in tree.cssselect('script[type="application/ld+json"]'):
        body = script.text_content().strip()
        if not body:
            continue
        try:
            structured.json_ld.append(json.loads(body, strict=False))
        except json.JSONDecodeError as e:
            logger.debug(f"Malformed JSON-LD: {e}")

    for meta in tree.cssselect('meta[property^="og:"]'):
        prop = meta.get("property")
        content = meta.get("content")
        if prop and content:
            structured.open_graph[prop.removeprefix("og:")] = content

    for meta in tree.cssselect('meta[name^="twitter:"]'):
        name = meta.get("name")
        content = meta.get("content")
        if name and content:
            structured.twitter_cards[name.removeprefix("twitter:")] = content

    for scope in tree.cssselect("[itemscope]"):
        item_type = scope.get("itemtype")
        if not item_type:
            continue
        structured.microdata.setdefault(item_type, []).append(_microdata_item(scope))

    return structured


def _microdata_item(scope: "HtmlElement") -> dict[str, Any]:
    item: dict[str, Any] = {}
    for child in scope.cssselect("[itemprop]"):
        prop = child.get("itemprop")
        if not prop:
            continue
        value = child.get("content") or child.text_content().strip()
        existing = item.get(prop)
        if isinstance(existing, list):
            existing.append(value)
        elif existing:
            item[prop] = [existing, value]
        else:
            item[prop] = value
    return item


def extract_main_content(tree: "HtmlElement") -> str:
    """Return the page's primary text.

    Uses the first content selector whose text exceeds 100 characters,
    otherwise the body with navigation, ads and scripts removed.
    """
    for selector in MAIN_CONTENT_SELECTORS:
        matches = tree.cssselect(selector)
        if not matches:
            continue
        text = matches[0].text_content().strip()
        if len(text) > MIN_MAIN_CONTENT_CHARS:
            return clean_text(text)

    bodies = tree.cssselect("body")
    if not bodies:
        return ""
    body = copy.deepcopy(bodies[0])
    for element in body.cssselect(BOILERPLATE_SELECTORS):
        # drop_tree keeps the element's tail text
        element.drop_tree()
    return clean_text(body.text_content())


def _absolute(base_url: str, src: str) -> str | None:
    try:
        url = urljoin(base_url, src.strip())
    except ValueError:
        logger.debug(f"Malformed media URL: {src!r}")
        return None
    return url or None


def extract_media(tree: "HtmlElement", base_url: str) -> list[MediaItem]:
    """List images, video sources and audio sources with absolute URLs."""
    media: list[MediaItem] = []

    for img in tree.cssselect("img"):
        src = img.get("src")
        if not src:
            continue
        url = _absolute(base_url, src)
        if url is None:
            continue
        media.append(
            MediaItem(
                type=MediaType.IMAGE,
                url=url,
                alt=img.get("alt") or "",
                title=img.get("title") or "",
                width=img.get("width"),
                height=img.get("height"),
            )
        )

    sources = (("video source", MediaType.VIDEO), ("audio source", MediaType.AUDIO))
    for selector, media_type in sources:
        for source in tree.cssselect(selector):
            src = source.get("src")
            if not src:
                continue
            url = _absolute(base_url, src)
            if url is not None:
                media.append(MediaItem(type=media_type, url=url))

    return media


def classify_link(url: str, text: str) -> LinkType:
    """Classify a link by destination first, then by anchor text.

    Examples:
        >>> classify_link("https://twitter.com/acme", "Follow")
        <LinkType.SOCIAL: 'social'>
        >>> classify_link("https://example.com/report.pdf", "Report")
        <LinkType.DOWNLOAD: 'download'>
        >>> classify_link("https://example.com/team", "About us")
        <LinkType.NAVIGATION: 'navigation'>
    """
    href = url.lower()
    label = text.lower()

    if any(host in href for host in SOCIAL_HOSTS):
        return LinkType.SOCIAL
    if DOWNLOAD_EXTENSIONS.search(href):
        return LinkType.DOWNLOAD
    if href.startswith("mailto:"):
        return LinkType.EMAIL
    if any(word in label for word in NAVIGATION_WORDS):
        return LinkType.NAVIGATION
    return LinkType.CONTENT


def extract_links(tree: "HtmlElement", base_url: str) -> list[ExtractedLink]:
    """List every ``a[href]`` as an absolute, classified link."""
    base_host = (urlsplit(base_url).hostname or "").lower()
    links: list[ExtractedLink] = []

    for anchor in tree.cssselect("a[href]"):
        href = (anchor.get("href") or "").strip()
        if not href:
            continue
        try:
            url = urljoin(base_url, href)
            host = (urlsplit(url).hostname or "").lower()
        except ValueError:
            logger.debug(f"Malformed link URL: {href!r}")
            continue

        text = anchor.text_content().strip()
        links.append(
            ExtractedLink(
                url=url,
                text=text,
                title=anchor.get("title") or "",
                is_internal=bool(host) and host == base_host,
                type=classify_link(url, text),
                domain=host,
            )
        )

    return links


def extract_metadata(tree: "HtmlElement") -> PageMetadata:
    """Read document metadata using fallback chains.

    title: <title>, og:title, first <h1>. description: meta description,
    og:description. author: meta author, article:author. publish date:
    article:published_time, time[datetime].
    """
    return PageMetadata(
        title=(
            _first_text(tree, "title")
            or _first_attr(tree, 'meta[property="og:title"]', "content")
            or _first_text(tree, "h1")
            or ""
        ),
        description=(
            _first_attr(tree, 'meta[name="description"]', "content")
            or _first_attr(tree, 'meta[property="og:description"]', "content")
            or ""
        ),
        author=(
            _first_attr(tree, 'meta[name="author"]', "content")
            or _first_attr(tree, 'meta[property="article:author"]', "content")
        ),
        publish_date=(
            _first_attr(tree, 'meta[property="article:published_time"]', "content")
            or _first_attr(tree, "time[datetime]", "datetime")
        ),
        modified_date=_first_attr(tree, 'meta[property="article:modified_time"]', "content"),
        canonical=_first_attr(tree, 'link[rel="canonical"]', "href"),
        robots=_first_attr(tree, 'meta[name="robots"]', "content"),
        viewport=_first_attr(tree, 'meta[name="viewport"]', "content"),
        charset=_first_attr(tree, "meta[charset]", "charset"),
        generator=_first_attr(tree, 'meta[name="generator"]', "content"),
    )


def extract_title_and_description(content: str) -> tuple[str, str]:
    """Cheap title/description lookup used right after a static fetch.

    Returns empty strings when the document cannot be parsed.
    """
    try:
        tree = parse_html(content)
    except (ValueError, etree.ParserError):
        return "", ""
    title = _first_text(tree, "title") or ""
    description = (
        _first_attr(tree, 'meta[name="description"]', "content")
        or _first_attr(tree, 'meta[property="og:description"]', "content")
        or ""
    )
    return title, description
