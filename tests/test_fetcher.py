"""Tests for static fetching, the headless renderer and the fetch strategy."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from conftest import PAGE_HTML, make_page, make_playwright, no_memory_pressure
from playwright.async_api import Error as PlaywrightError
from pytest_httpx import HTTPXMock

from sitecrawl.config import BrowserConfig, HttpConfig
from sitecrawl.exceptions import FetchFatalError, FetchTransientError
from sitecrawl.fetcher import (
    LAUNCH_FAILED_FALLBACK,
    LOW_MEMORY_FALLBACK,
    DynamicRenderer,
    FetchMode,
    FetchStrategy,
    StaticFetcher,
    is_recoverable_browser_error,
    raise_for_status,
)
from sitecrawl.http_client import create_httpx_client

# ============================================================================
# Status classification
# ============================================================================


@pytest.mark.parametrize("status", [408, 429, 500, 502, 503, 504, 599])
def test_transient_statuses(status: int) -> None:
    """Test 429 and 5xx are retryable."""
    with pytest.raises(FetchTransientError):
        raise_for_status("https://example.com/", status)


@pytest.mark.parametrize("status", [400, 401, 403, 404, 410])
def test_fatal_statuses(status: int) -> None:
    """Test other 4xx are fatal."""
    with pytest.raises(FetchFatalError) as exc_info:
        raise_for_status("https://example.com/", status)
    assert exc_info.value.status_code == status


def test_success_statuses_pass() -> None:
    """Test 2xx and 3xx do not raise."""
    raise_for_status("https://example.com/", 200)
    raise_for_status("https://example.com/", 304)


def test_recoverable_browser_errors() -> None:
    """Test which browser failures route to a static fetch."""
    assert is_recoverable_browser_error(PlaywrightError("Target closed"))
    assert is_recoverable_browser_error(PlaywrightError("Timeout 30000ms exceeded."))
    assert not is_recoverable_browser_error(PlaywrightError("net::ERR_NAME_NOT_RESOLVED"))


# ============================================================================
# StaticFetcher
# ============================================================================


@pytest.mark.asyncio
async def test_static_fetch_html(httpx_mock: HTTPXMock) -> None:
    """Test an HTML page is fetched with title and description pre-extracted."""
    httpx_mock.add_response(
        url="https://example.com/",
        html=PAGE_HTML,
        headers={"Last-Modified": "Wed, 21 Oct 2015 07:28:00 GMT"},
    )
    async with httpx.AsyncClient() as client:
        result = await StaticFetcher(client).fetch("https://example.com/")

    assert result.status_code == 200
    assert result.is_dynamic is False
    assert result.is_html
    assert result.title == "Example Domain"
    assert result.description == "An example page"
    assert result.content_length == len(PAGE_HTML.encode("utf-8"))
    assert result.last_modified == "Wed, 21 Oct 2015 07:28:00 GMT"


@pytest.mark.asyncio
async def test_shared_client_sends_configured_user_agent(httpx_mock: HTTPXMock) -> None:
    """Test the client factory applies the configured User-Agent over the defaults."""
    httpx_mock.add_response(
        url="https://example.com/",
        match_headers={"User-Agent": "sitecrawl-test/1.0"},
        html=PAGE_HTML,
    )
    async with create_httpx_client(HttpConfig(user_agent="sitecrawl-test/1.0")) as client:
        result = await StaticFetcher(client).fetch("https://example.com/")

    assert result.status_code == 200


@pytest.mark.asyncio
async def test_static_fetch_json_skips_title(httpx_mock: HTTPXMock) -> None:
    """Test non-HTML bodies are returned without title extraction."""
    httpx_mock.add_response(url="https://api.example.com/items", json={"items": []})
    async with httpx.AsyncClient() as client:
        result = await StaticFetcher(client).fetch("https://api.example.com/items")

    assert result.content_type == "application/json"
    assert result.title == ""
    assert json.loads(result.content) == {"items": []}


@pytest.mark.asyncio
async def test_static_fetch_404_is_fatal(httpx_mock: HTTPXMock) -> None:
    """Test a 404 raises FetchFatalError."""
    httpx_mock.add_response(url="https://example.com/missing", status_code=404)
    async with httpx.AsyncClient() as client:
        with pytest.raises(FetchFatalError) as exc_info:
            await StaticFetcher(client).fetch("https://example.com/missing")

    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_static_fetch_503_is_transient(httpx_mock: HTTPXMock) -> None:
    """Test a 503 raises FetchTransientError."""
    httpx_mock.add_response(url="https://example.com/", status_code=503)
    async with httpx.AsyncClient() as client:
        with pytest.raises(FetchTransientError):
            await StaticFetcher(client).fetch("https://example.com/")


@pytest.mark.asyncio
async def test_static_fetch_connection_errors_are_transient(httpx_mock: HTTPXMock) -> None:
    """Test connection failures and timeouts are transient."""
    httpx_mock.add_exception(httpx.ConnectError("refused"), url="https://example.com/a")
    httpx_mock.add_exception(httpx.ReadTimeout("slow"), url="https://example.com/b")
    async with httpx.AsyncClient() as client:
        fetcher = StaticFetcher(client)
        with pytest.raises(FetchTransientError, match="ConnectError"):
            await fetcher.fetch("https://example.com/a")
        with pytest.raises(FetchTransientError, match="timed out"):
            await fetcher.fetch("https://example.com/b")


@pytest.mark.asyncio
async def test_static_fetch_too_many_redirects_is_fatal(httpx_mock: HTTPXMock) -> None:
    """Test redirect loops are fatal."""
    httpx_mock.add_exception(
        httpx.TooManyRedirects("loop"), url="https://example.com/loop"
    )
    async with httpx.AsyncClient() as client:
        with pytest.raises(FetchFatalError, match="Too many redirects"):
            await StaticFetcher(client).fetch("https://example.com/loop")


@pytest.mark.asyncio
async def test_static_fetch_oversized_body_is_fatal(httpx_mock: HTTPXMock) -> None:
    """Test bodies over the size cap are refused."""
    httpx_mock.add_response(url="https://example.com/big", text="x" * 500)
    async with httpx.AsyncClient() as client:
        fetcher = StaticFetcher(client, HttpConfig(max_body_mb=0.0001))
        with pytest.raises(FetchFatalError, match="too large"):
            await fetcher.fetch("https://example.com/big")


# ============================================================================
# DynamicRenderer
# ============================================================================


@pytest.mark.asyncio
async def test_render_success() -> None:
    """Test a rendered page carries browser content and headers."""
    mocks = make_playwright(make_page())
    with patch("sitecrawl.fetcher.async_playwright", return_value=mocks["starter"]):
        async with DynamicRenderer(BrowserConfig(), memory_check=no_memory_pressure) as renderer:
            assert renderer.fallback_reason is None
            result = await renderer.render("https://example.com/")

    assert result is not None
    assert result.is_dynamic is True
    assert result.content == PAGE_HTML
    assert result.title == "Rendered title"
    assert result.description == "Rendered description"
    assert result.content_type == "text/html; charset=utf-8"
    assert result.last_modified == "Mon"
    mocks["page"].goto.assert_awaited_once_with(
        "https://example.com/", wait_until="domcontentloaded", timeout=30000
    )
    mocks["page"].close.assert_awaited_once()
    mocks["browser"].close.assert_awaited_once()
    mocks["pw"].stop.assert_awaited_once()


@pytest.mark.asyncio
async def test_render_js_heavy_site_waits_for_content() -> None:
    """Test JS-heavy sites wait for network idle, a selector and a settle delay."""
    mocks = make_playwright(make_page())
    url = "https://www.youtube.com/watch?v=abc"
    with patch("sitecrawl.fetcher.async_playwright", return_value=mocks["starter"]):
        async with DynamicRenderer(BrowserConfig(), memory_check=no_memory_pressure) as renderer:
            await renderer.render(url)
            await renderer.render(url)

    page = mocks["page"]
    page.goto.assert_awaited_with(url, wait_until="networkidle", timeout=60000)
    page.wait_for_selector.assert_awaited_with(
        "h1.ytd-video-primary-info-renderer", timeout=15000
    )
    page.wait_for_timeout.assert_awaited_with(2000)
    # consent cookies are set once per domain
    mocks["context"].add_cookies.assert_awaited_once()
    cookies = mocks["context"].add_cookies.await_args.args[0]
    assert {"name": "CONSENT", "value": "YES+", "domain": ".youtube.com", "path": "/"} in cookies


@pytest.mark.asyncio
async def test_render_recoverable_error_returns_none() -> None:
    """Test 'Target closed' asks the caller to fetch statically."""
    mocks = make_playwright(make_page(goto_error=PlaywrightError("Target closed")))
    with patch("sitecrawl.fetcher.async_playwright", return_value=mocks["starter"]):
        async with DynamicRenderer(BrowserConfig(), memory_check=no_memory_pressure) as renderer:
            assert await renderer.render("https://example.com/") is None
            assert renderer.page_count == 1
            assert renderer.enabled is True

    mocks["page"].close.assert_awaited_once()


@pytest.mark.asyncio
async def test_render_unrecoverable_error_is_transient() -> None:
    """Test other browser errors become retryable fetch errors."""
    mocks = make_playwright(make_page(goto_error=PlaywrightError("net::ERR_NAME_NOT_RESOLVED")))
    with patch("sitecrawl.fetcher.async_playwright", return_value=mocks["starter"]):
        async with DynamicRenderer(BrowserConfig(), memory_check=no_memory_pressure) as renderer:
            with pytest.raises(FetchTransientError, match="Browser error"):
                await renderer.render("https://example.com/")


@pytest.mark.asyncio
async def test_render_http_error_status() -> None:
    """Test a 404 navigation raises FetchFatalError."""
    mocks = make_playwright(make_page(status=404))
    with patch("sitecrawl.fetcher.async_playwright", return_value=mocks["starter"]):
        async with DynamicRenderer(BrowserConfig(), memory_check=no_memory_pressure) as renderer:
            with pytest.raises(FetchFatalError):
                await renderer.render("https://example.com/missing")


@pytest.mark.asyncio
async def test_low_memory_disables_dynamic_mode() -> None:
    """Test memory pressure at start skips the browser launch."""
    starter = MagicMock()
    with patch("sitecrawl.fetcher.async_playwright", return_value=starter) as factory:
        renderer = DynamicRenderer(BrowserConfig(), memory_check=lambda _: True)
        assert await renderer.start() == LOW_MEMORY_FALLBACK
        assert await renderer.render("https://example.com/") is None
        await renderer.close()

    factory.assert_not_called()
    assert renderer.constrained is True
    assert renderer.enabled is False


@pytest.mark.asyncio
async def test_memory_pressure_mid_session_disables_rendering() -> None:
    """Test the circuit breaker trips between renders."""
    readings = iter([False, False, True])
    mocks = make_playwright(make_page())
    with patch("sitecrawl.fetcher.async_playwright", return_value=mocks["starter"]):
        async with DynamicRenderer(
            BrowserConfig(), memory_check=lambda _: next(readings)
        ) as renderer:
            assert await renderer.render("https://example.com/") is not None
            assert await renderer.render("https://example.com/") is None
            assert renderer.fallback_reason == LOW_MEMORY_FALLBACK


@pytest.mark.asyncio
async def test_launch_failure_falls_back() -> None:
    """Test a browser that fails to start leaves static mode only."""
    starter = MagicMock()
    starter.start = AsyncMock(side_effect=RuntimeError("Executable doesn't exist"))
    with patch("sitecrawl.fetcher.async_playwright", return_value=starter):
        renderer = DynamicRenderer(BrowserConfig(), memory_check=no_memory_pressure)
        assert await renderer.start() == LAUNCH_FAILED_FALLBACK
        assert await renderer.render("https://example.com/") is None
        assert renderer.available is False


@pytest.mark.asyncio
async def test_browser_recycled_after_threshold() -> None:
    """Test the browser is relaunched after recycle_after_pages renders."""
    mocks = make_playwright(make_page())
    config = BrowserConfig(recycle_after_pages=2)
    with patch("sitecrawl.fetcher.async_playwright", return_value=mocks["starter"]):
        async with DynamicRenderer(config, memory_check=no_memory_pressure) as renderer:
            for _ in range(3):
                assert await renderer.render("https://example.com/") is not None
            assert renderer.page_count == 1

    assert mocks["starter"].start.await_count == 2
    assert mocks["browser"].close.await_count == 2


@pytest.mark.asyncio
async def test_close_is_idempotent() -> None:
    """Test closing twice releases the browser once."""
    mocks = make_playwright(make_page())
    with patch("sitecrawl.fetcher.async_playwright", return_value=mocks["starter"]):
        renderer = DynamicRenderer(BrowserConfig(), memory_check=no_memory_pressure)
        await renderer.start()
        await renderer.close()
        await renderer.close()

    mocks["browser"].close.assert_awaited_once()
    mocks["pw"].stop.assert_awaited_once()


# ============================================================================
# FetchStrategy
# ============================================================================


@pytest.mark.asyncio
async def test_strategy_falls_back_to_static_after_browser_crash(httpx_mock: HTTPXMock) -> None:
    """Test a 'Target closed' render is completed by a static fetch in the same attempt."""
    httpx_mock.add_response(url="https://example.com/", html=PAGE_HTML)
    mocks = make_playwright(make_page(goto_error=PlaywrightError("Target closed")))
    with patch("sitecrawl.fetcher.async_playwright", return_value=mocks["starter"]):
        async with httpx.AsyncClient() as client:
            async with DynamicRenderer(BrowserConfig(), memory_check=no_memory_pressure) as renderer:
                strategy = FetchStrategy(StaticFetcher(client), renderer)
                result = await strategy.fetch("https://example.com/", FetchMode.DYNAMIC)

    assert result.is_dynamic is False
    assert result.title == "Example Domain"


@pytest.mark.asyncio
async def test_strategy_empty_render_falls_back(httpx_mock: HTTPXMock) -> None:
    """Test an empty rendered body is replaced by the static body."""
    httpx_mock.add_response(url="https://example.com/", html=PAGE_HTML)
    renderer = MagicMock()
    renderer.render = AsyncMock(return_value=MagicMock(content=""))
    async with httpx.AsyncClient() as client:
        result = await FetchStrategy(StaticFetcher(client), renderer).fetch("https://example.com/")

    assert result.content == PAGE_HTML


@pytest.mark.asyncio
async def test_strategy_static_mode_skips_renderer(httpx_mock: HTTPXMock) -> None:
    """Test static mode never touches the browser."""
    httpx_mock.add_response(url="https://example.com/", html=PAGE_HTML)
    renderer = MagicMock()
    renderer.render = AsyncMock()
    async with httpx.AsyncClient() as client:
        strategy = FetchStrategy(StaticFetcher(client), renderer)
        await strategy.fetch("https://example.com/", FetchMode.STATIC)

    renderer.render.assert_not_awaited()


@pytest.mark.asyncio
async def test_strategy_propagates_render_errors() -> None:
    """Test HTTP errors from the browser are not retried statically."""
    renderer = MagicMock()
    renderer.render = AsyncMock(side_effect=FetchFatalError("https://example.com/", "HTTP 404", 404))
    static = MagicMock()
    static.fetch = AsyncMock()

    with pytest.raises(FetchFatalError):
        await FetchStrategy(static, renderer).fetch("https://example.com/")
    static.fetch.assert_not_awaited()
