"""Async DNS resolution with caching.

The target validator needs every address a hostname resolves to, not just
the first one, so that a single private record among public ones is caught.
Lookups go through aiodns (A and AAAA queried concurrently); results are
cached with a TTL and concurrent lookups for one hostname share a future.
"""

from __future__ import annotations

import asyncio
import logging
import socket
import time
from dataclasses import dataclass, field

import aiodns

logger = logging.getLogger(__name__)


class DNSResolutionError(Exception):
    """DNS resolution failed."""

    def __init__(self, hostname: str, reason: str) -> None:
        self.hostname = hostname
        self.reason = reason
        super().__init__(f"DNS resolution failed for {hostname}: {reason}")


@dataclass
class DNSCacheEntry:
    """Cached DNS resolution result."""

    addresses: tuple[str, ...]
    expires_at: float
    resolved_at: float = field(default_factory=time.time)

    @property
    def is_expired(self) -> bool:
        return time.time() > self.expires_at


@dataclass
class DNSStats:
    """DNS resolver statistics."""

    cache_hits: int = 0
    cache_misses: int = 0
    resolution_errors: int = 0
    total_resolution_time_ms: float = 0.0

    @property
    def cache_hit_rate(self) -> float:
        """Cache hit rate as a percentage."""
        total = self.cache_hits + self.cache_misses
        return (self.cache_hits / total * 100) if total > 0 else 0.0


class AsyncDNSResolver:
    """Async resolver returning all IPv4 and IPv6 addresses of a host.

    Example:
        resolver = AsyncDNSResolver(cache_ttl=60)
        addresses = await resolver.resolve_all("example.com")
    """

    def __init__(
        self,
        cache_ttl: int = 60,
        max_concurrent: int = 20,
        timeout: float = 5.0,
        use_aiodns: bool = True,
    ) -> None:
        """Initialize DNS resolver.

        Args:
            cache_ttl: Cache TTL in seconds. Kept short so rebinding a name to
                a new address is noticed on the next validation.
            max_concurrent: Maximum concurrent DNS lookups
            timeout: Per-lookup timeout in seconds
            use_aiodns: Query with aiodns; when False, use the event loop's
                getaddrinfo in the default executor instead
        """
        self._cache: dict[str, DNSCacheEntry] = {}
        self._cache_ttl = cache_ttl
        self._timeout = timeout
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._lock = asyncio.Lock()
        self._pending: dict[str, asyncio.Future[tuple[str, ...]]] = {}
        self._use_aiodns = use_aiodns
        self._resolver: aiodns.DNSResolver | None = None
        self.stats = DNSStats()

    def _get_resolver(self) -> aiodns.DNSResolver:
        # aiodns binds to the running loop, so create it lazily
        if self._resolver is None:
            self._resolver = aiodns.DNSResolver(timeout=self._timeout)
        return self._resolver

    async def resolve_all(self, hostname: str) -> list[str]:
        """Resolve hostname to every A and AAAA address.

        Args:
            hostname: Domain name to resolve

        Returns:
            Deduplicated list of IP address strings (never empty)

        Raises:
            DNSResolutionError: If resolution fails or yields no addresses
        """
        hostname = hostname.lower().rstrip(".")
        cached = self._cache.get(hostname)
        if cached is not None and not cached.is_expired:
            self.stats.cache_hits += 1
            return list(cached.addresses)

        async with self._lock:
            pending = self._pending.get(hostname)
            if pending is None:
                future: asyncio.Future[tuple[str, ...]] = (
                    asyncio.get_running_loop().create_future()
                )
                self._pending[hostname] = future
        if pending is not None:
            return list(await asyncio.shield(pending))

        try:
            self.stats.cache_misses += 1
            start_time = time.perf_counter()
            async with self._semaphore:
                addresses = await self._resolve_impl(hostname)
            self.stats.total_resolution_time_ms += (time.perf_counter() - start_time) * 1000

            self._cache[hostname] = DNSCacheEntry(
                addresses=addresses,
                expires_at=time.time() + self._cache_ttl,
            )
            future.set_result(addresses)
            return list(addresses)
        except DNSResolutionError as e:
            self.stats.resolution_errors += 1
            future.set_exception(e)
            # mark retrieved so an unawaited future does not log
            future.exception()
            raise
        except Exception as e:
            self.stats.resolution_errors += 1
            error = DNSResolutionError(hostname, str(e) or type(e).__name__)
            future.set_exception(error)
            future.exception()
            raise error from e
        finally:
            async with self._lock:
                self._pending.pop(hostname, None)

    async def _resolve_impl(self, hostname: str) -> tuple[str, ...]:
        if not self._use_aiodns:
            return await self._resolve_getaddrinfo(hostname)

        resolver = self._get_resolver()
        results = await asyncio.gather(
            resolver.query(hostname, "A"),
            resolver.query(hostname, "AAAA"),
            return_exceptions=True,
        )

        addresses: list[str] = []
        errors: list[str] = []
        for result in results:
            if isinstance(result, aiodns.error.DNSError):
                errors.append(str(result))
                continue
            if isinstance(result, BaseException):
                raise result
            for record in result:
                if record.host not in addresses:
                    addresses.append(record.host)

        if not addresses:
            raise DNSResolutionError(hostname, "; ".join(errors) or "No addresses found")
        logger.debug(f"Resolved {hostname} -> {addresses}")
        return tuple(addresses)

    async def _resolve_getaddrinfo(self, hostname: str) -> tuple[str, ...]:
        loop = asyncio.get_running_loop()
        try:
            infos = await asyncio.wait_for(
                loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM),
                timeout=self._timeout,
            )
        except (socket.gaierror, TimeoutError) as e:
            raise DNSResolutionError(hostname, str(e) or "timeout") from e

        addresses: list[str] = []
        for _family, _type, _proto, _canon, sockaddr in infos:
            address = str(sockaddr[0])
            if address not in addresses:
                addresses.append(address)
        if not addresses:
            raise DNSResolutionError(hostname, "No addresses found")
        return tuple(addresses)

    def clear_cache(self) -> None:
        """Clear the DNS cache."""
        self._cache.clear()

    @property
    def cache_size(self) -> int:
        return len(self._cache)
