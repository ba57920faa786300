"""Configuration system.

Session options arrive from untrusted clients, so numeric fields are floored
and clamped into range instead of rejected. Everything else is a regular
Pydantic model loaded from YAML through load_config().
"""

import math
from enum import StrEnum
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
)

from sitecrawl.exceptions import ConfigError

DEFAULT_USER_AGENT = "MikuCrawler/3.0.0"

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class CrawlMethod(StrEnum):
    """What a crawl is after. Controls link scope and media accounting."""

    LINKS = "links"
    CONTENT = "content"
    MEDIA = "media"
    FULL = "full"

    @property
    def saves_media(self) -> bool:
        return self in (CrawlMethod.MEDIA, CrawlMethod.FULL)

    @property
    def follows_external(self) -> bool:
        return self is CrawlMethod.FULL


def clamp_int(value: Any, low: int, high: int, default: int) -> int:
    """Floor a loosely typed number and clamp it into [low, high].

    Non-numeric input (None, "abc", NaN) falls back to ``default``.

    Examples:
        >>> clamp_int(5000, 1, 200, 50)
        200
        >>> clamp_int("2.9", 1, 5, 2)
        2
        >>> clamp_int(None, 0, 5, 3)
        3
    """
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        # arbitrarily large ints overflow float()
        return max(low, min(high, value))
    try:
        number = float(value)
    except OverflowError:
        return high if value > 0 else low
    except (TypeError, ValueError):
        return default
    if math.isnan(number):
        return default
    if math.isinf(number):
        return high if number > 0 else low
    return max(low, min(high, math.floor(number)))


# name -> (low, high, default)
_CLAMPED_FIELDS: dict[str, tuple[int, int, int]] = {
    "crawl_depth": (1, 5, 2),
    "max_pages": (1, 200, 50),
    "crawl_delay": (200, 10000, 1000),
    "max_concurrent_requests": (1, 10, 5),
    "retry_limit": (0, 5, 3),
}

_REQUEST_ALIASES = {
    "crawlDepth": "crawl_depth",
    "maxPages": "max_pages",
    "crawlDelay": "crawl_delay",
    "maxConcurrentRequests": "max_concurrent_requests",
    "retryLimit": "retry_limit",
    "crawlMethod": "crawl_method",
    "respectRobots": "respect_robots",
    "contentOnly": "content_only",
    "saveMedia": "save_media_requested",
}


class CrawlOptions(BaseModel):
    """Options for one crawl session.

    Numeric options are hard-clamped rather than rejected, so a client asking
    for ``max_pages=5000`` gets 200 and ``crawl_depth=0`` gets 1.
    """

    target: str = Field(..., description="URL or bare hostname to crawl")
    crawl_depth: int = Field(default=2, description="Link levels to follow (1-5)")
    max_pages: int = Field(default=50, description="Page budget for the session (1-200)")
    crawl_delay: int = Field(
        default=1000,
        description="Minimum milliseconds between dispatches to one domain (200-10000)",
    )
    max_concurrent_requests: int = Field(
        default=5, description="Pages fetched concurrently (1-10)"
    )
    retry_limit: int = Field(default=3, description="Retries per failed page (0-5)")
    crawl_method: CrawlMethod = Field(
        default=CrawlMethod.LINKS,
        description="links, content, media or full (full also follows external links)",
    )
    dynamic: bool = Field(default=True, description="Render pages in a headless browser")
    respect_robots: bool = Field(default=True, description="Honour robots.txt rules")
    content_only: bool = Field(
        default=False, description="Do not store raw page bodies"
    )
    save_media_requested: bool = Field(
        default=False, description="Count media responses even for links/content crawls"
    )

    @field_validator(
        "crawl_depth", "max_pages", "crawl_delay", "max_concurrent_requests", "retry_limit",
        mode="before",
    )
    @classmethod
    def clamp_numeric(cls, v: Any, info: ValidationInfo) -> int:
        """Floor and clamp numeric options into their allowed range."""
        low, high, default = _CLAMPED_FIELDS[info.field_name]
        return clamp_int(v, low, high, default)

    @field_validator("crawl_method", mode="before")
    @classmethod
    def coerce_method(cls, v: Any) -> CrawlMethod:
        """Lowercase the method; unknown values become ``links``."""
        if isinstance(v, CrawlMethod):
            return v
        try:
            return CrawlMethod(str(v).strip().lower())
        except ValueError:
            return CrawlMethod.LINKS

    @field_validator("target")
    @classmethod
    def strip_target(cls, v: str) -> str:
        return v.strip()

    @property
    def save_media(self) -> bool:
        """True when media responses should be counted."""
        return self.save_media_requested or self.crawl_method.saves_media

    @classmethod
    def from_request(cls, data: dict[str, Any]) -> "CrawlOptions":
        """Build options from a client payload using camelCase keys.

        ``dynamic`` and ``respectRobots`` are only false when the client sent
        a literal ``False``; ``contentOnly`` follows Python truthiness.
        """
        values: dict[str, Any] = {}
        for key, value in data.items():
            values[_REQUEST_ALIASES.get(key, key)] = value

        for flag in ("dynamic", "respect_robots"):
            if flag in values:
                values[flag] = values[flag] is not False
        if "content_only" in values:
            values["content_only"] = bool(values["content_only"])
        if "save_media_requested" in values:
            values["save_media_requested"] = values["save_media_requested"] is True
        values.setdefault("target", "")
        if values["target"] is None:
            values["target"] = ""
        values["target"] = str(values["target"])
        return cls(**values)


class BrowserConfig(BaseModel):
    """Headless browser (Playwright) settings for dynamic fetches."""

    headless: bool = Field(default=True, description="Run Chromium without a window")
    launch_args: list[str] = Field(
        default_factory=lambda: [
            "--no-sandbox",
            "--disable-setuid-sandbox",
            "--disable-dev-shm-usage",
            "--disable-gpu",
            "--disable-blink-features=AutomationControlled",
            "--disable-extensions",
            "--disable-background-networking",
        ],
        description="Extra Chromium command line flags",
    )
    user_agent: str = Field(default=BROWSER_USER_AGENT, description="Browser user agent")
    viewport_width: int = Field(default=1280, ge=320, le=3840)
    viewport_height: int = Field(default=720, ge=240, le=2160)
    navigation_timeout_ms: int = Field(
        default=30000, ge=1000, le=120000, description="Navigation timeout for ordinary sites"
    )
    heavy_navigation_timeout_ms: int = Field(
        default=60000, ge=1000, le=180000, description="Navigation timeout for JS-heavy sites"
    )
    selector_timeout_ms: int = Field(
        default=15000, ge=0, le=60000, description="Wait for a site content selector"
    )
    settle_delay_ms: int = Field(
        default=2000, ge=0, le=10000, description="Extra pause after a JS-heavy page loads"
    )
    recycle_after_pages: int = Field(
        default=200, ge=1, description="Relaunch the browser after this many pages"
    )
    constrained_recycle_after_pages: int = Field(
        default=50, ge=1, description="Recycle threshold when memory is constrained"
    )
    memory_limit_mb: int = Field(
        default=1024,
        ge=64,
        description="Process RSS above which dynamic rendering is disabled for the session",
    )
    js_heavy_sites: list[str] = Field(
        default_factory=lambda: [
            "youtube.com", "google.com", "facebook.com", "meta.com", "twitter.com",
            "x.com", "instagram.com", "linkedin.com", "discord.com", "reddit.com",
            "pinterest.com", "tiktok.com", "netflix.com", "amazon.com", "airbnb.com",
            "uber.com", "spotify.com", "github.com", "stackoverflow.com", "medium.com",
            "twitch.tv", "salesforce.com", "slack.com", "notion.so", "figma.com",
            "canva.com", "trello.com", "asana.com", "dropbox.com", "zoom.us",
        ],
        description="Domains that need network-idle waits and longer timeouts",
    )
    site_selectors: dict[str, str] = Field(
        default_factory=lambda: {
            "youtube.com/watch": "h1.ytd-video-primary-info-renderer",
            "twitter.com": '[data-testid="tweet"]',
            "x.com": '[data-testid="tweet"]',
            "linkedin.com": ".feed-container-theme",
            "instagram.com": '[role="main"]',
            "facebook.com": '[role="main"]',
            "meta.com": '[role="main"]',
            "reddit.com": '[data-testid="post-container"]',
            "github.com": ".js-repo-root, .repository-content",
            "medium.com": "article",
            "stackoverflow.com": ".question, .answer",
        },
        description="URL substring -> CSS selector awaited before reading content",
    )
    site_cookies: dict[str, dict[str, str]] = Field(
        default_factory=lambda: {
            "youtube.com": {"CONSENT": "YES+", "PREF": "tz=UTC"},
            "reddit.com": {"over18": "1"},
        },
        description="Domain -> cookies set before navigation",
    )

    def is_js_heavy(self, url: str) -> bool:
        return any(site in url for site in self.js_heavy_sites)

    def selector_for(self, url: str) -> str | None:
        for pattern, selector in self.site_selectors.items():
            if pattern in url:
                return selector
        return None


class HttpConfig(BaseModel):
    """Static HTTP fetch settings."""

    user_agent: str = Field(
        default=BROWSER_USER_AGENT, description="User-Agent sent with static requests"
    )
    timeout_seconds: float = Field(default=15.0, ge=1.0, le=60.0)
    connect_timeout_seconds: float = Field(default=10.0, ge=1.0, le=60.0)
    max_body_mb: float = Field(default=5.0, gt=0, description="Response size cap")
    max_redirects: int = Field(default=5, ge=0, le=20)
    max_connections: int = Field(default=20, ge=1)

    @property
    def max_body_bytes(self) -> int:
        return int(self.max_body_mb * 1024 * 1024)


class RobotsConfig(BaseModel):
    """robots.txt cache settings."""

    user_agent: str = Field(default="MikuCrawler", description="Agent matched against rules")
    fetch_user_agent: str = Field(
        default=DEFAULT_USER_AGENT, description="User-Agent header sent for robots.txt"
    )
    ttl_seconds: int = Field(default=3600, ge=1)
    max_entries: int = Field(default=100, ge=1)
    fetch_timeout_seconds: float = Field(default=5.0, gt=0)
    max_redirects: int = Field(default=3, ge=0)
    allow_on_failure: bool = Field(
        default=True,
        description="Treat an unreachable robots.txt as allow-all instead of disallow-all",
    )


class StorageConfig(BaseModel):
    """Repository settings."""

    db_path: Path = Field(default=Path("./data/crawler.db"), description="SQLite file")


class AppConfig(BaseModel):
    """Root configuration for the crawler process."""

    model_config = ConfigDict(validate_default=True)

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    http: HttpConfig = Field(default_factory=HttpConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    robots: RobotsConfig = Field(default_factory=RobotsConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    defaults: dict[str, Any] = Field(
        default_factory=dict,
        description="Default session options merged under each crawl request",
    )

    def crawl_options(self, **overrides: Any) -> CrawlOptions:
        """Build CrawlOptions from ``defaults`` plus non-None overrides."""
        values = dict(self.defaults)
        values.update({k: v for k, v in overrides.items() if v is not None})
        return CrawlOptions(**values)


def load_config(path: Path) -> AppConfig:
    """Load and validate YAML configuration file.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated AppConfig instance

    Raises:
        ConfigError: If config file is not found, invalid YAML, or validation fails
    """
    try:
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with path.open("r", encoding="utf-8") as f:
            config_dict = yaml.safe_load(f)

        if config_dict is None:
            return AppConfig()

        if not isinstance(config_dict, dict):
            raise ConfigError(
                f"Configuration file must contain a YAML mapping, "
                f"got {type(config_dict).__name__}"
            )

        return AppConfig(**config_dict)
    except FileNotFoundError as e:
        raise ConfigError(f"Configuration file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"Configuration validation failed for {path}:\n{e}") from e
