"""Unit tests for CLI module."""

import asyncio
import re
from collections.abc import Coroutine
from pathlib import Path
from typing import Any
from unittest.mock import patch

from typer.testing import CliRunner

from sitecrawl import __version__
from sitecrawl.backends import LinkRecord, PageRecord, SQLiteRepository
from sitecrawl.cli import app
from sitecrawl.exceptions import InvalidTargetError, StorageError

runner = CliRunner()

SUMMARY = {
    "pagesScanned": 4,
    "linksFound": 12,
    "totalData": 40,
    "mediaFiles": 0,
    "successCount": 4,
    "failureCount": 1,
    "skippedCount": 2,
    "elapsedTime": {"hours": 0, "minutes": 0, "seconds": 9},
    "pagesPerSecond": "0.44",
    "successRate": "80.0%",
}


def _close_coro_and_return(value: Any) -> Any:
    """Return a side_effect that closes the coroutine and returns value."""

    def handler(coro: Coroutine[Any, Any, Any]) -> Any:
        coro.close()
        return value

    return handler


def _close_coro_and_raise(exc: BaseException) -> Any:
    """Return a side_effect that closes the coroutine and raises an exception."""

    def handler(coro: Coroutine[Any, Any, Any]) -> None:
        coro.close()
        raise exc

    return handler


def _populate(db_path: Path, quality_score: int = 60) -> None:
    async def write() -> None:
        async with SQLiteRepository(db_path) as repository:
            page_id = await repository.upsert_page(
                PageRecord(
                    url="https://example.com/",
                    domain="example.com",
                    status_code=200,
                    content_type="text/html",
                    data_length=1024,
                    title="Example Domain",
                    language="en",
                    quality_score=quality_score,
                )
            )
            await repository.insert_links(page_id, [LinkRecord("https://example.com/about", "About")])

    asyncio.run(write())


class TestVersionCommand:
    """Tests for --version flag."""

    def test_version_flag(self) -> None:
        """Test --version displays version and exits."""
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert f"sitecrawl version {__version__}" in result.stdout

    def test_version_short_flag(self) -> None:
        """Test -V displays version and exits."""
        result = runner.invoke(app, ["-V"])

        assert result.exit_code == 0
        assert "sitecrawl version" in result.stdout


class TestValidateCommand:
    """Tests for 'sitecrawl validate' command."""

    def test_validate_public_ip(self) -> None:
        """Test a public IP literal is accepted without DNS."""
        result = runner.invoke(app, ["validate", "8.8.8.8"])

        assert result.exit_code == 0
        assert "[OK] Target is allowed" in result.stdout
        assert "http://8.8.8.8/" in result.stdout

    def test_validate_loopback(self) -> None:
        """Test a loopback target is refused."""
        result = runner.invoke(app, ["validate", "127.0.0.1"])

        assert result.exit_code == 1
        assert "[FAIL]" in result.stdout
        assert "Target host is not allowed" in result.stdout

    def test_validate_localhost(self) -> None:
        """Test localhost is refused."""
        result = runner.invoke(app, ["validate", "http://localhost:3000"])

        assert result.exit_code == 1


class TestCrawlCommand:
    """Tests for 'sitecrawl crawl' command."""

    def test_crawl_prints_summary(self, tmp_path: Path) -> None:
        """Test a finished crawl prints the summary table."""
        with patch("sitecrawl.cli.asyncio.run", side_effect=_close_coro_and_return(SUMMARY)):
            result = runner.invoke(
                app, ["crawl", "example.com", "--db", str(tmp_path / "crawl.db"), "--no-dynamic"]
            )

        assert result.exit_code == 0
        assert "Starting crawl" in result.stdout
        assert "Crawl Summary" in result.stdout
        assert "80.0%" in result.stdout

    def test_crawl_invalid_target(self, tmp_path: Path) -> None:
        """Test an invalid target exits with code 2."""
        error = InvalidTargetError("Target host is not allowed", "10.0.0.1")
        with patch("sitecrawl.cli.asyncio.run", side_effect=_close_coro_and_raise(error)):
            result = runner.invoke(app, ["crawl", "10.0.0.1", "--db", str(tmp_path / "c.db")])

        assert result.exit_code == 2
        assert "Invalid target" in result.stdout

    def test_crawl_storage_error(self, tmp_path: Path) -> None:
        """Test other crawler errors exit with code 1."""
        error = StorageError("database is locked")
        with patch("sitecrawl.cli.asyncio.run", side_effect=_close_coro_and_raise(error)):
            result = runner.invoke(app, ["crawl", "example.com", "--db", str(tmp_path / "c.db")])

        assert result.exit_code == 1
        assert "Crawl failed" in result.stdout

    def test_crawl_keyboard_interrupt(self, tmp_path: Path) -> None:
        """Test Ctrl+C exits with code 130."""
        with patch(
            "sitecrawl.cli.asyncio.run", side_effect=_close_coro_and_raise(KeyboardInterrupt())
        ):
            result = runner.invoke(app, ["crawl", "example.com", "--db", str(tmp_path / "c.db")])

        assert result.exit_code == 130
        assert "interrupted" in result.stdout

    def test_crawl_invalid_config(self, tmp_path: Path) -> None:
        """Test a malformed config file exits with code 1."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text("robots: [unclosed\n")

        result = runner.invoke(app, ["crawl", "example.com", "--config", str(config_file)])

        assert result.exit_code == 1
        assert "Configuration error" in result.stdout

    def test_crawl_missing_config(self, tmp_path: Path) -> None:
        """Test a missing config file is rejected by the argument parser."""
        result = runner.invoke(
            app, ["crawl", "example.com", "--config", str(tmp_path / "missing.yaml")]
        )

        assert result.exit_code == 2


class TestPageCommand:
    """Tests for 'sitecrawl page' command."""

    def test_page_missing_database(self, tmp_path: Path) -> None:
        """Test a missing database exits with code 1."""
        result = runner.invoke(
            app, ["page", "https://example.com/", "--db", str(tmp_path / "missing.db")]
        )

        assert result.exit_code == 1
        assert "Database not found" in result.stdout

    def test_page_shows_stored_page(self, tmp_path: Path) -> None:
        """Test a stored page and its links are printed."""
        db_path = tmp_path / "crawl.db"
        _populate(db_path)

        result = runner.invoke(app, ["page", "https://example.com/", "--db", str(db_path)])

        assert result.exit_code == 0
        assert "Example Domain" in result.stdout
        assert "https://example.com/about" in result.stdout

    def test_page_shows_zero_and_false_values(self, tmp_path: Path) -> None:
        """Test falsy stored values are printed rather than blanked."""
        db_path = tmp_path / "crawl.db"
        _populate(db_path, quality_score=0)

        result = runner.invoke(app, ["page", "https://example.com/", "--db", str(db_path)])

        assert result.exit_code == 0
        assert re.search(r"qualityScore\W+0\W", result.stdout)
        assert re.search(r"isDynamic\W+False\W", result.stdout)

    def test_page_unknown_url(self, tmp_path: Path) -> None:
        """Test an unknown URL exits with code 1."""
        db_path = tmp_path / "crawl.db"
        _populate(db_path)

        result = runner.invoke(app, ["page", "https://example.com/nope", "--db", str(db_path)])

        assert result.exit_code == 1
        assert "No page stored" in result.stdout


class TestStatsCommand:
    """Tests for 'sitecrawl stats' command."""

    def test_stats_missing_database(self, tmp_path: Path) -> None:
        """Test a missing database exits with code 1."""
        result = runner.invoke(app, ["stats", "--db", str(tmp_path / "missing.db")])

        assert result.exit_code == 1

    def test_stats_shows_totals(self, tmp_path: Path) -> None:
        """Test aggregate statistics are printed."""
        db_path = tmp_path / "crawl.db"
        _populate(db_path)

        result = runner.invoke(app, ["stats", "--db", str(db_path)])

        assert result.exit_code == 0
        assert "Repository Statistics" in result.stdout
        assert "60.0" in result.stdout
        assert "Languages" in result.stdout
