"""robots.txt compliance cache.

Rules are cached per domain in memory (TTL, bounded, oldest entry evicted
first) and persisted through the repository so a later session can skip the
network round trip. Fetching tries HTTPS, then HTTP. When neither works the
cache answers allow-all by default, or deny-all when ``allow_on_failure`` is
off.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

import httpx
from robotexclusionrulesparser import RobotExclusionRulesParser

from sitecrawl.config import RobotsConfig
from sitecrawl.exceptions import FetchError, RobotsFetchError

logger = logging.getLogger(__name__)

ROBOTS_SCHEMES = ("https", "http")


class RobotsStore(Protocol):
    """Persistence used by the cache (a subset of the repository)."""

    async def get_domain_robots(self, domain: str) -> str | None: ...

    async def set_domain_robots(self, domain: str, robots_txt: str) -> None: ...


@dataclass
class RobotsRules:
    """Parsed robots.txt rules for one domain."""

    domain: str
    rules_text: str = ""
    deny_all: bool = False
    _parser: RobotExclusionRulesParser = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._parser = RobotExclusionRulesParser()
        self._parser.parse(self.rules_text)

    @classmethod
    def allow_all(cls, domain: str) -> RobotsRules:
        return cls(domain=domain)

    @classmethod
    def disallow_all(cls, domain: str) -> RobotsRules:
        return cls(domain=domain, deny_all=True)

    def is_allowed(self, url: str, agent: str) -> bool:
        """Return True if agent may fetch url."""
        if self.deny_all:
            return False
        return bool(self._parser.is_allowed(agent, url))

    def get_crawl_delay(self, agent: str) -> float | None:
        """Crawl-delay for agent in seconds, or None when unset."""
        if self.deny_all:
            return None
        delay = self._parser.get_crawl_delay(agent)
        return float(delay) if delay is not None else None


@dataclass
class RobotsRecord:
    """Cached rules plus their expiry time."""

    domain: str
    rules: RobotsRules
    expires_at: float

    @property
    def rules_text(self) -> str:
        return self.rules.rules_text


class RobotsCache:
    """TTL cache of robots.txt rules keyed by domain.

    Concurrent lookups for the same domain share one fetch.

    Example:
        >>> cache = RobotsCache(client, repository)
        >>> rules = await cache.get_rules("example.com")
        >>> rules.is_allowed("https://example.com/private", "MikuCrawler")
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        store: RobotsStore | None = None,
        config: RobotsConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize robots cache.

        Args:
            client: HTTP client for fetching robots.txt; one is created (and
                closed by close()) when omitted
            store: Optional persistence for fetched bodies
            config: TTL, size, timeout and failure policy
            clock: Monotonic time source, injectable for tests
        """
        self.config = config or RobotsConfig()
        self.store = store
        self._clock = clock
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            follow_redirects=True,
            max_redirects=self.config.max_redirects,
            headers={"User-Agent": self.config.fetch_user_agent},
        )
        self._cache: OrderedDict[str, RobotsRecord] = OrderedDict()
        self._lock = asyncio.Lock()
        self._pending: dict[str, asyncio.Future[RobotsRules]] = {}

    @property
    def agent(self) -> str:
        return self.config.user_agent

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, domain: object) -> bool:
        return isinstance(domain, str) and self.get_cached(domain) is not None

    def get_cached(self, domain: str) -> RobotsRules | None:
        """Return unexpired cached rules for domain, or None."""
        record = self._cache.get(domain.lower())
        if record is None or self._clock() >= record.expires_at:
            return None
        return record.rules

    def put(self, domain: str, rules: RobotsRules) -> None:
        """Cache rules, evicting the oldest entry when full."""
        domain = domain.lower()
        self._cache.pop(domain, None)
        while len(self._cache) >= self.config.max_entries:
            evicted, _ = self._cache.popitem(last=False)
            logger.debug(f"Evicted robots.txt for {evicted}")
        self._cache[domain] = RobotsRecord(
            domain=domain,
            rules=rules,
            expires_at=self._clock() + self.config.ttl_seconds,
        )

    async def get_rules(self, domain: str) -> RobotsRules:
        """Get rules for domain, loading or fetching them on a miss.

        Args:
            domain: Host (with port, if non-default) whose robots.txt applies

        Returns:
            RobotsRules; allow-all or deny-all when robots.txt is unreachable,
            depending on ``allow_on_failure``
        """
        domain = domain.lower()
        cached = self.get_cached(domain)
        if cached is not None:
            return cached

        async with self._lock:
            pending = self._pending.get(domain)
            if pending is None:
                future: asyncio.Future[RobotsRules] = asyncio.get_running_loop().create_future()
                self._pending[domain] = future
        if pending is not None:
            return await asyncio.shield(pending)

        try:
            rules = await self._load(domain)
            self.put(domain, rules)
            future.set_result(rules)
            return rules
        except BaseException as e:
            future.set_exception(e)
            future.exception()
            raise
        finally:
            async with self._lock:
                self._pending.pop(domain, None)

    async def _load(self, domain: str) -> RobotsRules:
        # Only a never-seen domain may come from the store; an expired entry
        # is refreshed from the network.
        if self.store is not None and domain not in self._cache:
            stored = await self.store.get_domain_robots(domain)
            if stored:
                logger.debug(f"Loaded robots.txt for {domain} from repository")
                return RobotsRules(domain=domain, rules_text=stored)

        try:
            text = await self.fetch(domain)
        except RobotsFetchError as e:
            if self.config.allow_on_failure:
                logger.warning(f"{e}. Proceeding without it.")
                return RobotsRules.allow_all(domain)
            logger.warning(f"{e}. Treating domain as disallowed.")
            return RobotsRules.disallow_all(domain)

        if text and self.store is not None:
            await self.store.set_domain_robots(domain, text)
        return RobotsRules(domain=domain, rules_text=text)

    async def fetch(self, domain: str) -> str:
        """Fetch robots.txt body for domain over HTTPS, then HTTP.

        A 4xx answer means "no robots.txt" and yields an empty body.

        Raises:
            RobotsFetchError: If every scheme failed
        """
        errors: list[str] = []
        for scheme in ROBOTS_SCHEMES:
            url = f"{scheme}://{domain}/robots.txt"
            try:
                response = await self.client.get(
                    url,
                    headers={"User-Agent": self.config.fetch_user_agent},
                    timeout=self.config.fetch_timeout_seconds,
                )
            except httpx.HTTPError as e:
                errors.append(f"{scheme}: {type(e).__name__}")
                continue
            except FetchError as e:
                errors.append(f"{scheme}: {e.reason}")
                continue

            if response.status_code == 200:
                logger.debug(f"Loaded robots.txt for {domain} via {scheme}")
                return response.text
            if 400 <= response.status_code < 500:
                logger.debug(f"No robots.txt for {domain} (status {response.status_code})")
                return ""
            errors.append(f"{scheme}: HTTP {response.status_code}")

        raise RobotsFetchError(domain, ", ".join(errors))

    async def is_allowed(self, url: str, domain: str, agent: str | None = None) -> bool:
        rules = await self.get_rules(domain)
        return rules.is_allowed(url, agent or self.agent)

    async def get_crawl_delay(self, domain: str, agent: str | None = None) -> float | None:
        rules = await self.get_rules(domain)
        return rules.get_crawl_delay(agent or self.agent)

    async def close(self) -> None:
        """Close the HTTP client if this cache created it."""
        if self._owns_client:
            await self.client.aclose()
