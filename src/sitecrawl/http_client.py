"""Shared HTTP client factory.

Static page fetches and robots.txt lookups go through one pooled
httpx.AsyncClient per session, configured with browser-like headers.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from sitecrawl.config import BROWSER_USER_AGENT, HttpConfig

logger = logging.getLogger(__name__)

BROWSER_HEADERS: dict[str, str] = {
    "User-Agent": BROWSER_USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Accept-Encoding": "gzip, deflate",
}

# Status codes worth another attempt later
TRANSIENT_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})


def create_httpx_client(
    config: HttpConfig | None = None,
    headers: dict[str, str] | None = None,
    event_hooks: dict[str, list[Callable[..., Awaitable[Any]]]] | None = None,
) -> httpx.AsyncClient:
    """Create the shared async HTTP client.

    Args:
        config: HTTP settings (timeouts, redirects, pool size)
        headers: Extra headers merged over the browser-like defaults
        event_hooks: httpx request/response hooks; request hooks also run
            for every redirect hop

    Returns:
        Configured httpx.AsyncClient; the caller owns closing it
    """
    config = config or HttpConfig()
    merged = {**BROWSER_HEADERS, "User-Agent": config.user_agent}
    if headers:
        merged.update(headers)

    limits = httpx.Limits(
        max_connections=config.max_connections,
        max_keepalive_connections=max(1, config.max_connections // 2),
    )
    logger.debug(
        f"Creating HTTP client (timeout={config.timeout_seconds}s, "
        f"max_redirects={config.max_redirects})"
    )
    return httpx.AsyncClient(
        timeout=httpx.Timeout(config.timeout_seconds, connect=config.connect_timeout_seconds),
        limits=limits,
        follow_redirects=True,
        max_redirects=config.max_redirects,
        headers=merged,
        event_hooks=event_hooks or {},
    )
