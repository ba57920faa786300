"""SQLite repository backend.

Stores pages, their outgoing links and per-domain settings (robots.txt body,
crawl allowance) in one database file. JSON-valued columns (keywords,
structured data) are stored as text.
"""

import asyncio
import json
import logging
import sqlite3
from pathlib import Path
from typing import Any

import aiosqlite

from sitecrawl.backends.base import LinkRecord, PageRecord, RepositoryStats, StoredPage
from sitecrawl.exceptions import StorageError

logger = logging.getLogger(__name__)

MEMORY_DATABASE = ":memory:"

_PAGE_COLUMNS = (
    "url",
    "domain",
    "last_modified",
    "content_type",
    "status_code",
    "data_length",
    "title",
    "description",
    "content",
    "is_dynamic",
    "main_content",
    "word_count",
    "reading_time",
    "language",
    "keywords",
    "quality_score",
    "structured_data",
    "media_count",
    "internal_links_count",
    "external_links_count",
)


class SQLiteRepository:
    """aiosqlite-backed repository.

    Schema:
        pages: id (PK), url (UNIQUE), domain, crawled_at, page fields...
        links: id (PK), source_id (FK pages.id), target_url, text,
            UNIQUE(source_id, target_url)
        domain_settings: domain (PK), robots_txt, crawl_delay, last_crawled, allowed

    Performance optimizations:
        - WAL mode for concurrent readers
        - Indexes on pages(domain), pages(crawled_at), links(source_id),
          links(target_url)
    """

    def __init__(self, path: Path | str = MEMORY_DATABASE) -> None:
        """Initialize SQLite repository.

        Args:
            path: Database file, or ":memory:" for a throwaway database
        """
        self.path = path
        self._conn: aiosqlite.Connection | None = None
        # one connection is shared by concurrent workers; serialize transactions
        self._write_lock = asyncio.Lock()

    async def __aenter__(self) -> "SQLiteRepository":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def initialize(self) -> None:
        """Open connection and create schema if needed."""
        if str(self.path) != MEMORY_DATABASE:
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = await aiosqlite.connect(self.path)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open database {self.path}: {e}") from e
        self._conn.row_factory = sqlite3.Row

        if str(self.path) != MEMORY_DATABASE:
            await self._conn.execute("PRAGMA journal_mode = WAL")
        await self._conn.execute("PRAGMA synchronous = NORMAL")
        await self._conn.execute("PRAGMA foreign_keys = ON")

        await self._create_schema()

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    def _require_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Repository not initialized")
        return self._conn

    async def _create_schema(self) -> None:
        conn = self._require_conn()
        await conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS pages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                url TEXT UNIQUE NOT NULL,
                domain TEXT NOT NULL,
                crawled_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                last_modified TEXT,
                content_type TEXT,
                status_code INTEGER,
                data_length INTEGER,
                title TEXT,
                description TEXT,
                content TEXT,
                is_dynamic BOOLEAN DEFAULT 0,
                main_content TEXT,
                word_count INTEGER DEFAULT 0,
                reading_time INTEGER DEFAULT 0,
                language TEXT,
                keywords TEXT,
                quality_score INTEGER DEFAULT 0,
                structured_data TEXT,
                media_count INTEGER DEFAULT 0,
                internal_links_count INTEGER DEFAULT 0,
                external_links_count INTEGER DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS links (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                source_id INTEGER NOT NULL,
                target_url TEXT NOT NULL,
                text TEXT,
                FOREIGN KEY (source_id) REFERENCES pages(id) ON DELETE CASCADE,
                UNIQUE(source_id, target_url)
            );

            CREATE TABLE IF NOT EXISTS domain_settings (
                domain TEXT PRIMARY KEY,
                robots_txt TEXT,
                crawl_delay INTEGER DEFAULT 1000,
                last_crawled DATETIME,
                allowed BOOLEAN DEFAULT 1
            );

            CREATE INDEX IF NOT EXISTS idx_pages_domain ON pages(domain);
            CREATE INDEX IF NOT EXISTS idx_pages_crawled_at ON pages(crawled_at);
            CREATE INDEX IF NOT EXISTS idx_links_source ON links(source_id);
            CREATE INDEX IF NOT EXISTS idx_links_target ON links(target_url);
        """
        )
        await conn.commit()

    async def upsert_page(self, record: PageRecord) -> int:
        """Insert or update a page keyed by URL and return its id."""
        conn = self._require_conn()
        values = self._page_values(record)
        placeholders = ", ".join("?" for _ in _PAGE_COLUMNS)
        updates = ", ".join(f"{col} = excluded.{col}" for col in _PAGE_COLUMNS if col != "url")

        async with self._write_lock:
            try:
                await conn.execute(
                    f"""
                    INSERT INTO pages ({", ".join(_PAGE_COLUMNS)})
                    VALUES ({placeholders})
                    ON CONFLICT(url) DO UPDATE SET
                        {updates},
                        crawled_at = CURRENT_TIMESTAMP
                    """,
                    values,
                )
                cursor = await conn.execute("SELECT id FROM pages WHERE url = ?", (record.url,))
                row = await cursor.fetchone()
                await conn.commit()
            except sqlite3.Error as e:
                await conn.rollback()
                raise StorageError(f"Failed to save page {record.url}: {e}") from e

        if row is None:
            raise StorageError(f"Page vanished after upsert: {record.url}")
        return int(row["id"])

    @staticmethod
    def _page_values(record: PageRecord) -> tuple[Any, ...]:
        return (
            record.url,
            record.domain,
            record.last_modified,
            record.content_type,
            record.status_code,
            record.data_length,
            record.title,
            record.description,
            record.content,
            int(record.is_dynamic),
            record.main_content,
            record.word_count,
            record.reading_time,
            record.language,
            json.dumps(record.keywords),
            record.quality_score,
            json.dumps(record.structured_data),
            record.media_count,
            record.internal_links_count,
            record.external_links_count,
        )

    async def insert_links(self, page_id: int, links: list[LinkRecord]) -> int:
        """Insert links in one transaction, ignoring duplicates."""
        conn = self._require_conn()
        if not links:
            return 0

        async with self._write_lock:
            before = conn.total_changes
            await conn.execute("BEGIN IMMEDIATE")
            try:
                await conn.executemany(
                    "INSERT OR IGNORE INTO links (source_id, target_url, text) VALUES (?, ?, ?)",
                    [(page_id, link.target_url, link.text) for link in links],
                )
                await conn.commit()
            except sqlite3.Error as e:
                await conn.rollback()
                raise StorageError(f"Failed to save links for page {page_id}: {e}") from e
            return conn.total_changes - before

    async def get_domain_robots(self, domain: str) -> str | None:
        conn = self._require_conn()
        cursor = await conn.execute(
            "SELECT robots_txt FROM domain_settings WHERE domain = ?", (domain,)
        )
        row = await cursor.fetchone()
        return row["robots_txt"] if row is not None else None

    async def set_domain_robots(self, domain: str, robots_txt: str) -> None:
        conn = self._require_conn()
        async with self._write_lock:
            await conn.execute(
                """
                INSERT INTO domain_settings (domain, robots_txt) VALUES (?, ?)
                ON CONFLICT(domain) DO UPDATE SET robots_txt = excluded.robots_txt
                """,
                (domain, robots_txt),
            )
            await conn.commit()

    async def set_domain_allowed(self, domain: str, allowed: bool) -> None:
        conn = self._require_conn()
        async with self._write_lock:
            await conn.execute(
                """
                INSERT INTO domain_settings (domain, allowed, last_crawled)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(domain) DO UPDATE SET
                    allowed = excluded.allowed,
                    last_crawled = excluded.last_crawled
                """,
                (domain, int(allowed)),
            )
            await conn.commit()

    async def is_domain_allowed(self, domain: str) -> bool | None:
        conn = self._require_conn()
        cursor = await conn.execute(
            "SELECT allowed FROM domain_settings WHERE domain = ?", (domain,)
        )
        row = await cursor.fetchone()
        return bool(row["allowed"]) if row is not None else None

    async def query_page(self, url: str) -> StoredPage | None:
        conn = self._require_conn()
        cursor = await conn.execute("SELECT * FROM pages WHERE url = ?", (url,))
        row = await cursor.fetchone()
        if row is None:
            return None
        return StoredPage(
            id=row["id"],
            url=row["url"],
            domain=row["domain"],
            crawled_at=str(row["crawled_at"]),
            status_code=row["status_code"],
            content_type=row["content_type"] or "",
            data_length=row["data_length"] or 0,
            title=row["title"] or "",
            description=row["description"] or "",
            content=row["content"],
            is_dynamic=bool(row["is_dynamic"]),
            last_modified=row["last_modified"],
            main_content=row["main_content"] or "",
            word_count=row["word_count"] or 0,
            reading_time=row["reading_time"] or 0,
            language=row["language"] or "unknown",
            keywords=_load_json(row["keywords"], []),
            quality_score=row["quality_score"] or 0,
            structured_data=_load_json(row["structured_data"], {}),
            media_count=row["media_count"] or 0,
            internal_links_count=row["internal_links_count"] or 0,
            external_links_count=row["external_links_count"] or 0,
        )

    async def query_links_by_source(self, page_id: int) -> list[LinkRecord]:
        conn = self._require_conn()
        cursor = await conn.execute(
            "SELECT target_url, text FROM links WHERE source_id = ? ORDER BY id", (page_id,)
        )
        rows = await cursor.fetchall()
        return [LinkRecord(target_url=row["target_url"], text=row["text"] or "") for row in rows]

    async def get_page_count(self) -> int:
        conn = self._require_conn()
        cursor = await conn.execute("SELECT COUNT(*) FROM pages")
        row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def get_stats(self) -> RepositoryStats:
        conn = self._require_conn()
        cursor = await conn.execute(
            """
            SELECT
                COUNT(*) AS total_pages,
                COUNT(DISTINCT domain) AS total_domains,
                COALESCE(SUM(data_length), 0) AS total_bytes,
                COALESCE(AVG(quality_score), 0) AS avg_quality,
                COALESCE(AVG(word_count), 0) AS avg_words
            FROM pages
            """
        )
        row = await cursor.fetchone()
        cursor = await conn.execute("SELECT COUNT(*) FROM links")
        links_row = await cursor.fetchone()
        cursor = await conn.execute(
            """
            SELECT language, COUNT(*) AS n FROM pages
            WHERE language IS NOT NULL
            GROUP BY language ORDER BY n DESC
            """
        )
        languages = {r["language"]: r["n"] for r in await cursor.fetchall()}

        if row is None:
            return RepositoryStats()
        return RepositoryStats(
            total_pages=row["total_pages"],
            total_domains=row["total_domains"],
            total_links=int(links_row[0]) if links_row else 0,
            total_bytes=row["total_bytes"],
            avg_quality_score=round(float(row["avg_quality"]), 1),
            avg_word_count=round(float(row["avg_words"]), 1),
            languages=languages,
        )


def _load_json(value: str | None, default: Any) -> Any:
    if not value:
        return default
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        logger.warning(f"Discarding malformed JSON column value: {value[:80]!r}")
        return default
