"""Page fetching: headless browser first, plain HTTP as fallback.

DynamicRenderer owns one Playwright browser per crawl session and is used as
an async context manager so the browser is released on every exit path.
StaticFetcher performs capped HTTP GETs through the shared httpx client.
FetchStrategy combines them: when a dynamic fetch is impossible or hits a
recoverable browser error, the same attempt continues with a static fetch.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any
from urllib.parse import urlsplit

import httpx
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from sitecrawl.config import BrowserConfig, HttpConfig
from sitecrawl.exceptions import FetchError, FetchFatalError, FetchTransientError
from sitecrawl.http_client import TRANSIENT_STATUS_CODES
from sitecrawl.memory import is_memory_constrained
from sitecrawl.processing.extraction import extract_title_and_description

logger = logging.getLogger(__name__)

LOW_MEMORY_FALLBACK = (
    "Falling back to static crawling: environment lacks sufficient memory for dynamic rendering"
)
LAUNCH_FAILED_FALLBACK = "Falling back to static crawling: dynamic renderer failed to start"

# Browser errors after which the page is retried over plain HTTP
RECOVERABLE_BROWSER_ERRORS = (
    "target closed",
    "target page, context or browser has been closed",
    "session closed",
    "connection closed",
    "browser has been closed",
    "frame was detached",
    "protocol error",
    "timeout",
)


class FetchMode(StrEnum):
    DYNAMIC = "dynamic"
    STATIC = "static"


@dataclass
class FetchResult:
    """A successfully retrieved page."""

    url: str
    content: str
    status_code: int
    content_type: str
    content_length: int
    last_modified: str | None = None
    is_dynamic: bool = False
    title: str = ""
    description: str = ""

    @property
    def is_html(self) -> bool:
        return "html" in self.content_type.lower()


def raise_for_status(url: str, status_code: int) -> None:
    """Raise the matching FetchError for a non-success status."""
    if status_code < 400:
        return
    if status_code in TRANSIENT_STATUS_CODES or status_code >= 500:
        raise FetchTransientError(url, f"HTTP {status_code}", status_code)
    raise FetchFatalError(url, f"HTTP {status_code}", status_code)


def is_recoverable_browser_error(error: BaseException) -> bool:
    """Return True for browser failures that a static fetch can route around."""
    message = str(error).lower()
    return any(marker in message for marker in RECOVERABLE_BROWSER_ERRORS)


class StaticFetcher:
    """HTTP GET with a body size cap and browser-like headers."""

    def __init__(self, client: httpx.AsyncClient, config: HttpConfig | None = None) -> None:
        self.client = client
        self.config = config or HttpConfig()

    async def fetch(self, url: str) -> FetchResult:
        """Fetch url over HTTP.

        Args:
            url: Absolute http(s) URL

        Returns:
            FetchResult with decoded body; HTML bodies also carry title and
            description

        Raises:
            FetchTransientError: Timeouts, connection failures, 429/5xx
            FetchFatalError: Other 4xx, redirect loops, oversized bodies
        """
        max_bytes = self.config.max_body_bytes
        try:
            async with self.client.stream("GET", url) as response:
                raise_for_status(url, response.status_code)

                declared = _parse_int(response.headers.get("content-length"))
                if declared is not None and declared > max_bytes:
                    raise FetchFatalError(url, f"Response too large ({declared} bytes)")

                body = bytearray()
                async for chunk in response.aiter_bytes():
                    body.extend(chunk)
                    if len(body) > max_bytes:
                        raise FetchFatalError(url, f"Response exceeds {max_bytes} bytes")

                content = _decode(bytes(body), response.encoding)
                content_type = response.headers.get("content-type", "")
                final_url = str(response.url)
                last_modified = response.headers.get("last-modified")
        except httpx.TooManyRedirects as e:
            raise FetchFatalError(url, "Too many redirects") from e
        except httpx.TimeoutException as e:
            raise FetchTransientError(url, "Request timed out") from e
        except httpx.HTTPError as e:
            raise FetchTransientError(url, f"{type(e).__name__}: {e}") from e

        result = FetchResult(
            url=final_url,
            content=content,
            status_code=response.status_code,
            content_type=content_type,
            content_length=declared if declared is not None else len(content.encode("utf-8")),
            last_modified=last_modified,
            is_dynamic=False,
        )
        if result.is_html:
            result.title, result.description = extract_title_and_description(content)
        return result


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _decode(body: bytes, encoding: str | None) -> str:
    try:
        return body.decode(encoding or "utf-8", errors="replace")
    except LookupError:
        return body.decode("utf-8", errors="replace")


class DynamicRenderer:
    """Session-scoped headless Chromium.

    Use as an async context manager; entering launches the browser (or
    records why dynamic rendering is unavailable), exiting closes it. Pages
    share one browser context; each render opens and always closes its own
    page.

    Example:
        async with DynamicRenderer(config) as renderer:
            result = await renderer.render("https://example.com/")
    """

    def __init__(
        self,
        config: BrowserConfig | None = None,
        memory_check: Callable[[float], bool] = is_memory_constrained,
    ) -> None:
        """Initialize renderer.

        Args:
            config: Browser settings
            memory_check: Returns True when RSS exceeds the given MB limit
        """
        self.config = config or BrowserConfig()
        self._memory_check = memory_check
        self._playwright: Any = None
        self._browser: Any = None
        self._context: Any = None
        self._lock = asyncio.Lock()
        self._cookie_domains: set[str] = set()
        self._active_pages = 0
        self.page_count = 0
        self.constrained = False
        self.enabled = True
        self.fallback_reason: str | None = None

    async def __aenter__(self) -> DynamicRenderer:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def available(self) -> bool:
        return self.enabled and self._browser is not None

    def disable(self, reason: str) -> None:
        """Turn dynamic rendering off for the rest of the session."""
        if self.enabled:
            logger.warning(reason)
        self.enabled = False
        self.fallback_reason = reason

    async def start(self) -> str | None:
        """Launch the browser.

        Returns:
            None on success, otherwise the fallback message explaining why
            the session continues with static fetching only
        """
        if self._memory_check(self.config.memory_limit_mb):
            self.constrained = True
            self.disable(LOW_MEMORY_FALLBACK)
            return self.fallback_reason

        try:
            async with self._lock:
                await self._launch()
        except Exception as e:
            logger.warning(f"Browser launch failed: {e}")
            await self._shutdown()
            self.disable(LAUNCH_FAILED_FALLBACK)
            return self.fallback_reason
        return None

    async def _launch(self) -> None:
        logger.info("Launching headless browser...")
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self.config.headless,
            args=list(self.config.launch_args),
        )
        self._context = await self._browser.new_context(
            user_agent=self.config.user_agent,
            viewport={
                "width": self.config.viewport_width,
                "height": self.config.viewport_height,
            },
            extra_http_headers={
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                "Accept-Language": "en-US,en;q=0.5",
                "DNT": "1",
            },
        )
        self._cookie_domains.clear()
        self.page_count = 0
        logger.info("Headless browser ready")

    async def _shutdown(self) -> None:
        if self._context is not None:
            with contextlib.suppress(Exception):
                await self._context.close()
        if self._browser is not None:
            with contextlib.suppress(Exception):
                await self._browser.close()
        if self._playwright is not None:
            with contextlib.suppress(Exception):
                await self._playwright.stop()
        self._context = None
        self._browser = None
        self._playwright = None

    async def close(self) -> None:
        """Close the browser. Safe to call more than once."""
        async with self._lock:
            if self._browser is None and self._playwright is None:
                return
            logger.info("Closing headless browser...")
            await self._shutdown()
            logger.info("Headless browser closed")

    @property
    def recycle_threshold(self) -> int:
        if self.constrained:
            return self.config.constrained_recycle_after_pages
        return self.config.recycle_after_pages

    async def _maybe_recycle(self) -> None:
        async with self._lock:
            if self.page_count < self.recycle_threshold or self._active_pages > 0:
                return
            logger.info(f"Recycling browser after {self.page_count} pages")
            await self._shutdown()
            try:
                await self._launch()
            except Exception as e:
                logger.warning(f"Browser recycle failed: {e}")
                await self._shutdown()
                self.disable(LAUNCH_FAILED_FALLBACK)

    @contextlib.asynccontextmanager
    async def _open_page(self) -> AsyncIterator[Any]:
        page = await self._context.new_page()
        self._active_pages += 1
        try:
            yield page
        finally:
            self._active_pages -= 1
            with contextlib.suppress(Exception):
                await page.close()

    async def _set_site_cookies(self, url: str) -> None:
        host = (urlsplit(url).hostname or "").lower()
        for domain, cookies in self.config.site_cookies.items():
            if domain in self._cookie_domains or not (host == domain or host.endswith(f".{domain}")):
                continue
            await self._context.add_cookies(
                [
                    {"name": name, "value": value, "domain": f".{domain}", "path": "/"}
                    for name, value in cookies.items()
                ]
            )
            self._cookie_domains.add(domain)

    async def render(self, url: str) -> FetchResult | None:
        """Render url in the browser.

        Returns:
            FetchResult, or None when the caller should fetch statically
            instead (dynamic disabled, memory pressure, recoverable error)

        Raises:
            FetchError: For HTTP error statuses and unrecoverable browser errors
        """
        if not self.enabled:
            return None
        if self._memory_check(self.config.memory_limit_mb):
            self.constrained = True
            self.disable(LOW_MEMORY_FALLBACK)
            return None

        await self._maybe_recycle()
        if not self.available:
            return None

        heavy = self.config.is_js_heavy(url)
        timeout = (
            self.config.heavy_navigation_timeout_ms if heavy else self.config.navigation_timeout_ms
        )
        try:
            await self._set_site_cookies(url)
            async with self._open_page() as page:
                page.on("dialog", lambda dialog: asyncio.ensure_future(dialog.dismiss()))
                response = await page.goto(
                    url,
                    wait_until="networkidle" if heavy else "domcontentloaded",
                    timeout=timeout,
                )
                if heavy:
                    await self._wait_for_content(page, url)

                status = response.status if response is not None else 200
                raise_for_status(url, status)
                headers = await response.all_headers() if response is not None else {}

                content = await page.content()
                title = await page.title()
                description = await self._meta_description(page)
                final_url = page.url or url
        except FetchError:
            raise
        except PlaywrightError as e:
            if is_recoverable_browser_error(e):
                logger.warning(f"Dynamic fetch failed for {url} ({e}); retrying statically")
                return None
            raise FetchTransientError(url, f"Browser error: {e}") from e
        finally:
            self.page_count += 1

        return FetchResult(
            url=final_url,
            content=content,
            status_code=status,
            content_type=headers.get("content-type", "text/html"),
            content_length=len(content.encode("utf-8")),
            last_modified=headers.get("last-modified"),
            is_dynamic=True,
            title=title or "",
            description=description or "",
        )

    async def _wait_for_content(self, page: Any, url: str) -> None:
        selector = self.config.selector_for(url)
        if selector and self.config.selector_timeout_ms:
            try:
                await page.wait_for_selector(selector, timeout=self.config.selector_timeout_ms)
            except PlaywrightError:
                logger.debug(f"Selector {selector!r} not found on {url}")
        if self.config.settle_delay_ms:
            await page.wait_for_timeout(self.config.settle_delay_ms)

    @staticmethod
    async def _meta_description(page: Any) -> str:
        element = await page.query_selector('meta[name="description"]')
        if element is None:
            return ""
        return (await element.get_attribute("content")) or ""


class FetchStrategy:
    """Choose between dynamic and static fetching for each URL."""

    def __init__(self, static: StaticFetcher, renderer: DynamicRenderer | None = None) -> None:
        self.static = static
        self.renderer = renderer

    async def fetch(self, url: str, mode: FetchMode = FetchMode.DYNAMIC) -> FetchResult:
        """Fetch url, falling back to static within the same attempt.

        Raises:
            FetchError: When the page cannot be retrieved
        """
        if mode is FetchMode.DYNAMIC and self.renderer is not None:
            result = await self.renderer.render(url)
            if result is not None and result.content:
                return result
        return await self.static.fetch(url)
