"""Custom exceptions for sitecrawl."""


class SitecrawlError(Exception):
    """Base exception for all sitecrawl errors."""


class ConfigError(SitecrawlError):
    """Raised when configuration is invalid or cannot be loaded."""


class InvalidTargetError(SitecrawlError):
    """Raised when a crawl target is malformed or points at a forbidden host."""

    def __init__(self, reason: str, raw_input: str = "") -> None:
        self.reason = reason
        self.raw_input = raw_input
        super().__init__(reason)


class RobotsFetchError(SitecrawlError):
    """Raised when robots.txt cannot be retrieved over any scheme."""

    def __init__(self, domain: str, reason: str) -> None:
        self.domain = domain
        self.reason = reason
        super().__init__(f"Failed to fetch robots.txt for {domain}: {reason}")


class FetchError(SitecrawlError):
    """Raised when a page cannot be fetched.

    Subclasses distinguish transient failures (timeouts, connection resets,
    429/5xx) from fatal ones (other 4xx, oversized bodies). Both follow the
    same item-level retry policy; the distinction is kept for logging.
    """

    transient = False

    def __init__(self, url: str, reason: str, status_code: int | None = None) -> None:
        self.url = url
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"{reason} ({url})")


class FetchTransientError(FetchError):
    """Raised for failures that may succeed on a later attempt."""

    transient = True


class FetchFatalError(FetchError):
    """Raised for failures that will not change on retry."""


class ProcessingError(SitecrawlError):
    """Raised when content processing fails as a whole."""


class StorageError(SitecrawlError):
    """Raised when the repository cannot be read or written."""
