"""Link discovery rules.

Decides which URLs found on a page become crawl candidates: http(s) only,
same host unless the crawl method follows external links, and no static
asset or data-file extensions. Media sources are candidates too when the
crawl method collects media.
"""

import logging
import re
from dataclasses import dataclass
from urllib.parse import urljoin, urlsplit

from lxml import etree

from sitecrawl.config import CrawlMethod
from sitecrawl.processing.extraction import parse_html
from sitecrawl.utils import ALLOWED_SCHEMES, normalize_url

logger = logging.getLogger(__name__)

SKIP_EXTENSIONS = re.compile(r"\.(css|js|json|xml|txt|md|csv|svg|ico|git|gitignore)$", re.IGNORECASE)
MEDIA_CONTENT_TYPES = re.compile(r"image|video|audio|application/(pdf|zip)", re.IGNORECASE)


def is_media_content_type(content_type: str) -> bool:
    """Return True for image, video, audio, PDF and ZIP responses."""
    return bool(MEDIA_CONTENT_TYPES.search(content_type or ""))


@dataclass(frozen=True)
class DiscoveredLink:
    """A normalized crawl candidate found on a page."""

    url: str
    text: str
    is_internal: bool


class LinkExtractor:
    """Extracts crawl candidates from HTML.

    Example:
        >>> extractor = LinkExtractor(CrawlMethod.LINKS)
        >>> links = extractor.extract_links(html, "https://example.com/")
    """

    def __init__(self, method: CrawlMethod = CrawlMethod.LINKS) -> None:
        self.method = method

    def extract_links(self, content: str, base_url: str) -> list[DiscoveredLink]:
        """Extract normalized, deduplicated crawl candidates.

        Args:
            content: HTML document
            base_url: URL the document was fetched from

        Returns:
            Links in document order; malformed URLs are skipped silently
        """
        try:
            tree = parse_html(content)
        except (ValueError, etree.ParserError):
            return []

        base_host = (urlsplit(base_url).hostname or "").lower()
        seen: set[str] = set()
        result: list[DiscoveredLink] = []

        for anchor in tree.cssselect("a[href]"):
            link = self._candidate(anchor.get("href"), base_url, base_host, seen)
            if link is None:
                continue
            url, is_internal = link
            if not is_internal and not self.method.follows_external:
                continue
            if SKIP_EXTENSIONS.search(urlsplit(url).path):
                continue
            result.append(DiscoveredLink(url, anchor.text_content().strip(), is_internal))

        if self.method.saves_media:
            for element in tree.cssselect("img[src], video[src], audio[src], source[src]"):
                link = self._candidate(element.get("src"), base_url, base_host, seen)
                if link is None:
                    continue
                url, is_internal = link
                if not is_internal and not self.method.follows_external:
                    continue
                result.append(DiscoveredLink(url, element.get("alt") or "", is_internal))

        return result

    @staticmethod
    def _candidate(
        href: str | None, base_url: str, base_host: str, seen: set[str]
    ) -> tuple[str, bool] | None:
        if not href or not href.strip():
            return None
        try:
            absolute = urljoin(base_url, href.strip())
            if urlsplit(absolute).scheme.lower() not in ALLOWED_SCHEMES:
                return None
            url = normalize_url(absolute)
        except ValueError:
            return None

        if url in seen:
            return None
        seen.add(url)
        host = (urlsplit(url).hostname or "").lower()
        return url, host == base_host
