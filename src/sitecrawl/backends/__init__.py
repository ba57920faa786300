"""Storage backends for crawl results.

Factory for creating the repository the crawl session persists into.
"""

from pathlib import Path

from sitecrawl.backends.base import (
    LinkRecord,
    PageRecord,
    Repository,
    RepositoryStats,
    StoredPage,
)
from sitecrawl.backends.sqlite_backend import MEMORY_DATABASE, SQLiteRepository

__all__ = [
    "LinkRecord",
    "PageRecord",
    "Repository",
    "RepositoryStats",
    "StoredPage",
    "SQLiteRepository",
    "MEMORY_DATABASE",
    "create_repository",
]


def create_repository(path: Path | str | None = None) -> Repository:
    """Create the repository for path (a throwaway in-memory one when None).

    The caller must ``await repository.initialize()`` before use.
    """
    return SQLiteRepository(path if path is not None else MEMORY_DATABASE)
