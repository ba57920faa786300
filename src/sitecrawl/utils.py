"""Utility functions.

Logging bootstrap plus the URL helpers shared by the validator, the robots
cache and the crawl session.
"""

import logging
from urllib.parse import urlsplit, urlunsplit

from rich.logging import RichHandler

ALLOWED_SCHEMES = frozenset({"http", "https"})


def setup_logging(verbose: bool = False) -> None:
    """Setup logging with RichHandler for console output.

    Args:
        verbose: If True, sets logging to DEBUG level and shows file paths.
                If False, sets logging to INFO level and suppresses noisy loggers.
    """
    level = logging.DEBUG if verbose else logging.INFO

    handler = RichHandler(
        rich_tracebacks=True,
        markup=True,
        show_time=True,
        show_path=verbose,
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))

    logging.basicConfig(
        level=level,
        handlers=[handler],
        force=True,
    )

    if not verbose:
        for name in ("httpx", "httpcore", "aiosqlite", "asyncio"):
            logging.getLogger(name).setLevel(logging.WARNING)


def has_scheme(value: str) -> bool:
    """Return True if value already starts with a URL scheme."""
    head, sep, _ = value.partition("://")
    return bool(sep) and head.isalpha()


def normalize_url(url: str) -> str:
    """Normalize a URL for deduplication and storage.

    Prepends ``http://`` when no scheme is given, lowercases scheme and host,
    strips the fragment and drops a trailing slash except on the root path.

    Args:
        url: Absolute URL or bare hostname

    Returns:
        Normalized URL string

    Raises:
        ValueError: If the URL is empty, has no host or uses a scheme other
            than http/https

    Examples:
        >>> normalize_url("Example.com/docs/")
        'http://example.com/docs'
        >>> normalize_url("https://example.com/#top")
        'https://example.com/'
    """
    url = url.strip()
    if not url:
        raise ValueError("URL is empty")
    if not has_scheme(url):
        url = f"http://{url}"

    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        raise ValueError(f"Unsupported URL scheme: {parts.scheme}")
    if not parts.hostname:
        raise ValueError(f"URL has no host: {url}")

    netloc = parts.netloc.lower()
    path = parts.path or "/"
    if path != "/" and path.endswith("/"):
        path = path.rstrip("/") or "/"

    return urlunsplit((scheme, netloc, path, parts.query, ""))


def domain_key(url: str) -> str:
    """Return ``host[:port]`` for a URL, ignoring any userinfo.

    Politeness state and robots.txt are both keyed on this, so
    ``https://user@example.com/`` and ``https://example.com/`` share one entry.

    Examples:
        >>> domain_key("https://user:pw@Example.com/x")
        'example.com'
        >>> domain_key("http://[::1]:8080/")
        '[::1]:8080'
    """
    parts = urlsplit(url)
    host = (parts.hostname or "").lower()
    if ":" in host:
        host = f"[{host}]"
    try:
        port = parts.port
    except ValueError:
        port = None
    return f"{host}:{port}" if port is not None else host
