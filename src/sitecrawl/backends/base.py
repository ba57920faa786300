"""Repository contract for crawl results.

Defines the records the crawl session persists (pages, links, per-domain
settings) and the protocol every storage backend implements.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass
class PageRecord:
    """One fetched page, upserted by URL.

    The column set is relied on by other tooling; extend additively only.
    """

    url: str
    domain: str
    status_code: int
    content_type: str
    data_length: int
    title: str = ""
    description: str = ""
    content: str | None = None
    is_dynamic: bool = False
    last_modified: str | None = None
    main_content: str = ""
    word_count: int = 0
    reading_time: int = 0
    language: str = "unknown"
    keywords: list[dict[str, Any]] = field(default_factory=list)
    quality_score: int = 0
    structured_data: dict[str, Any] = field(default_factory=dict)
    media_count: int = 0
    internal_links_count: int = 0
    external_links_count: int = 0


@dataclass(frozen=True)
class LinkRecord:
    """A link found on a page."""

    target_url: str
    text: str = ""


@dataclass
class StoredPage:
    """A page row as read back from storage."""

    id: int
    url: str
    domain: str
    crawled_at: str
    status_code: int
    content_type: str
    data_length: int
    title: str
    description: str
    content: str | None
    is_dynamic: bool
    last_modified: str | None
    main_content: str
    word_count: int
    reading_time: int
    language: str
    keywords: list[dict[str, Any]]
    quality_score: int
    structured_data: dict[str, Any]
    media_count: int
    internal_links_count: int
    external_links_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "domain": self.domain,
            "crawledAt": self.crawled_at,
            "statusCode": self.status_code,
            "contentType": self.content_type,
            "dataLength": self.data_length,
            "title": self.title,
            "description": self.description,
            "content": self.content,
            "isDynamic": self.is_dynamic,
            "lastModified": self.last_modified,
            "mainContent": self.main_content,
            "wordCount": self.word_count,
            "readingTime": self.reading_time,
            "language": self.language,
            "keywords": self.keywords,
            "qualityScore": self.quality_score,
            "structuredData": self.structured_data,
            "mediaCount": self.media_count,
            "internalLinksCount": self.internal_links_count,
            "externalLinksCount": self.external_links_count,
        }


@dataclass
class RepositoryStats:
    """Aggregate numbers over everything stored."""

    total_pages: int = 0
    total_domains: int = 0
    total_links: int = 0
    total_bytes: int = 0
    avg_quality_score: float = 0.0
    avg_word_count: float = 0.0
    languages: dict[str, int] = field(default_factory=dict)


class Repository(Protocol):
    """Storage interface used by the crawl session and robots cache.

    Implementations own their connection lifecycle: ``initialize`` before
    first use, ``close`` when done.
    """

    async def initialize(self) -> None:
        """Open connections and create the schema if needed."""
        ...

    async def close(self) -> None:
        """Release connections."""
        ...

    async def upsert_page(self, record: PageRecord) -> int:
        """Insert or update a page by URL.

        Returns:
            The page's id (stable across updates)
        """
        ...

    async def insert_links(self, page_id: int, links: list[LinkRecord]) -> int:
        """Insert links for a page, ignoring duplicate (page_id, target_url) pairs.

        Returns:
            Number of links actually inserted
        """
        ...

    async def get_domain_robots(self, domain: str) -> str | None:
        """Return the persisted robots.txt body for domain, if any."""
        ...

    async def set_domain_robots(self, domain: str, robots_txt: str) -> None:
        """Persist the robots.txt body for domain."""
        ...

    async def set_domain_allowed(self, domain: str, allowed: bool) -> None:
        """Record whether crawling domain is allowed."""
        ...

    async def is_domain_allowed(self, domain: str) -> bool | None:
        """Return the recorded allow flag, or None if the domain is unknown."""
        ...

    async def query_page(self, url: str) -> StoredPage | None:
        """Return the stored page for url, if any."""
        ...

    async def query_links_by_source(self, page_id: int) -> list[LinkRecord]:
        """Return links recorded for a page."""
        ...

    async def get_stats(self) -> RepositoryStats:
        """Return aggregate statistics."""
        ...
