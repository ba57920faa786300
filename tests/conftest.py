"""Pytest fixtures for sitecrawl tests."""

import asyncio
import time
from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from sitecrawl.backends import SQLiteRepository
from sitecrawl.config import CrawlOptions
from sitecrawl.dns import DNSResolutionError
from sitecrawl.exceptions import FetchFatalError
from sitecrawl.fetcher import FetchMode, FetchResult
from sitecrawl.validator import TargetValidator

PUBLIC_HOSTS = {
    "example.com": ["93.184.216.34", "2606:2800:220:1:248:1893:25c8:1946"],
    "www.example.com": ["93.184.216.34"],
    "other.org": ["151.101.1.69"],
}


class FakeResolver:
    """Resolver backed by a dict; unknown names fail to resolve."""

    def __init__(self, records: dict[str, list[str]] | None = None) -> None:
        self.records = dict(PUBLIC_HOSTS if records is None else records)
        self.lookups: list[str] = []

    async def resolve_all(self, hostname: str) -> list[str]:
        self.lookups.append(hostname)
        if hostname not in self.records:
            raise DNSResolutionError(hostname, "NXDOMAIN")
        return list(self.records[hostname])


class RecordingReporter:
    """Reporter that keeps every event in order."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        self.events.append((event, payload))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def payloads(self, event: str) -> list[dict[str, Any]]:
        return [payload for name, payload in self.events if name == event]

    def logs(self) -> list[str]:
        return [p["log"] for p in self.payloads("stats") if "log" in p]


class FakeFetcher:
    """Fetch strategy serving canned responses.

    Values in ``pages`` are a FetchResult, an exception to raise, or a list
    of those consumed one per call (the last one repeats).
    """

    def __init__(self, pages: dict[str, Any] | None = None, latency: float = 0.0) -> None:
        self.pages: dict[str, Any] = dict(pages or {})
        self.latency = latency
        self.calls: list[tuple[str, FetchMode, float]] = []

    def urls(self) -> list[str]:
        return [url for url, _, _ in self.calls]

    async def fetch(self, url: str, mode: FetchMode = FetchMode.DYNAMIC) -> FetchResult:
        self.calls.append((url, mode, time.monotonic()))
        if self.latency:
            await asyncio.sleep(self.latency)

        outcome = self.pages.get(url)
        if isinstance(outcome, list):
            outcome = outcome.pop(0) if len(outcome) > 1 else outcome[0]
        if outcome is None:
            raise FetchFatalError(url, "HTTP 404", 404)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def html_page(
    title: str = "Test Page",
    links: list[str] | None = None,
    body: str = "",
    description: str = "",
) -> str:
    """Build a small HTML document."""
    anchors = "\n".join(f'<a href="{href}">Link {i}</a>' for i, href in enumerate(links or []))
    meta = f'<meta name="description" content="{description}">' if description else ""
    return (
        f"<html><head><title>{title}</title>{meta}</head>"
        f"<body><h1>{title}</h1><p>{body}</p>{anchors}</body></html>"
    )


def page_result(url: str, content: str, content_type: str = "text/html; charset=utf-8") -> FetchResult:
    """FetchResult for a static HTML page."""
    return FetchResult(
        url=url,
        content=content,
        status_code=200,
        content_type=content_type,
        content_length=len(content.encode("utf-8")),
    )


PAGE_HTML = (
    "<html><head><title>Example Domain</title>"
    '<meta name="description" content="An example page"></head>'
    "<body><h1>Example</h1></body></html>"
)


def no_memory_pressure(_: float) -> bool:
    return False


def make_page(
    content: str = PAGE_HTML,
    status: int = 200,
    goto_error: Exception | None = None,
) -> MagicMock:
    """Mock Playwright page returning content."""
    response = MagicMock()
    response.status = status
    response.all_headers = AsyncMock(
        return_value={"content-type": "text/html; charset=utf-8", "last-modified": "Mon"}
    )
    description = MagicMock()
    description.get_attribute = AsyncMock(return_value="Rendered description")

    page = MagicMock()
    page.url = "https://example.com/"
    page.on = MagicMock()
    page.goto = AsyncMock(return_value=response, side_effect=goto_error)
    page.content = AsyncMock(return_value=content)
    page.title = AsyncMock(return_value="Rendered title")
    page.query_selector = AsyncMock(return_value=description)
    page.wait_for_selector = AsyncMock()
    page.wait_for_timeout = AsyncMock()
    page.close = AsyncMock()
    return page


def make_playwright(page: MagicMock) -> dict[str, Any]:
    """Mock the async_playwright() entry point down to the browser context."""
    context = MagicMock()
    context.new_page = AsyncMock(return_value=page)
    context.add_cookies = AsyncMock()
    context.close = AsyncMock()

    browser = MagicMock()
    browser.new_context = AsyncMock(return_value=context)
    browser.close = AsyncMock()

    pw = MagicMock()
    pw.chromium.launch = AsyncMock(return_value=browser)
    pw.stop = AsyncMock()

    starter = MagicMock()
    starter.start = AsyncMock(return_value=pw)
    return {"starter": starter, "pw": pw, "browser": browser, "context": context, "page": page}


@pytest.fixture
def resolver() -> FakeResolver:
    """Resolver knowing a few public hosts."""
    return FakeResolver()


@pytest.fixture
def validator(resolver: FakeResolver) -> TargetValidator:
    """TargetValidator that never touches real DNS."""
    return TargetValidator(resolver=resolver)


@pytest.fixture
def reporter() -> RecordingReporter:
    """Reporter that records events."""
    return RecordingReporter()


@pytest.fixture
async def repository(tmp_path: Path) -> AsyncGenerator[SQLiteRepository, None]:
    """Initialized SQLite repository in a temp directory."""
    repo = SQLiteRepository(tmp_path / "crawl.db")
    await repo.initialize()
    yield repo
    await repo.close()


@pytest.fixture
def make_options() -> Any:
    """Factory for fast, static, robots-free session options."""

    def _make(**overrides: Any) -> CrawlOptions:
        values: dict[str, Any] = {
            "target": "https://example.com/",
            "crawl_delay": 200,
            "dynamic": False,
            "respect_robots": False,
        }
        values.update(overrides)
        return CrawlOptions(**values)

    return _make
