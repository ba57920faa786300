"""Crawl target validation (SSRF defense).

Turns user input into a normalized CrawlTarget, refusing anything that could
make the crawler talk to loopback, private, link-local, multicast or
otherwise non-public addresses. Hostnames are resolved and every returned
record is checked, so a name that mixes a public and a private address is
rejected as well.
"""

import ipaddress
import logging
from dataclasses import dataclass
from typing import Protocol
from urllib.parse import urlsplit

import httpx

from sitecrawl.dns import AsyncDNSResolver, DNSResolutionError
from sitecrawl.exceptions import FetchFatalError
from sitecrawl.utils import normalize_url

logger = logging.getLogger(__name__)

REQUIRED_MESSAGE = "Target URL is required"
INVALID_URL_MESSAGE = "Invalid target URL"
NOT_ALLOWED_MESSAGE = "Target host is not allowed"
UNRESOLVABLE_MESSAGE = "Unable to resolve target hostname"

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


class Resolver(Protocol):
    """Anything that can resolve a hostname to all of its addresses."""

    async def resolve_all(self, hostname: str) -> list[str]: ...


@dataclass(frozen=True)
class CrawlTarget:
    """A validated crawl target."""

    raw_input: str
    normalized_url: str
    hostname: str


@dataclass(frozen=True)
class InvalidTarget:
    """Why a target was refused."""

    raw_input: str
    reason: str


def is_public_address(address: IPAddress) -> bool:
    """Return True if address is globally routable unicast.

    IPv4-mapped IPv6 addresses are judged by the IPv4 address they carry.

    Examples:
        >>> is_public_address(ipaddress.ip_address("8.8.8.8"))
        True
        >>> is_public_address(ipaddress.ip_address("192.168.1.1"))
        False
        >>> is_public_address(ipaddress.ip_address("::ffff:127.0.0.1"))
        False
    """
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        address = address.ipv4_mapped

    if (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_multicast
        or address.is_reserved
        or address.is_unspecified
    ):
        return False
    return address.is_global


def parse_ip_literal(host: str) -> IPAddress | None:
    """Parse host as an IP literal, tolerating IPv6 brackets and zone ids."""
    candidate = host.strip("[]").split("%", 1)[0]
    try:
        return ipaddress.ip_address(candidate)
    except ValueError:
        return None


class TargetValidator:
    """Validate and normalize crawl targets.

    ``validate`` never raises: every failure comes back as an InvalidTarget
    with a message suitable for showing to the user.
    """

    def __init__(self, resolver: Resolver | None = None) -> None:
        self.resolver: Resolver = resolver or AsyncDNSResolver()

    async def validate(self, raw_input: str | None) -> CrawlTarget | InvalidTarget:
        """Validate a user-supplied URL or bare hostname.

        Args:
            raw_input: URL as typed by the user

        Returns:
            CrawlTarget on success, InvalidTarget describing the refusal otherwise
        """
        raw = (raw_input or "").strip()
        if not raw:
            return InvalidTarget(raw_input or "", REQUIRED_MESSAGE)

        try:
            normalized = normalize_url(raw)
        except ValueError as e:
            logger.debug(f"Rejected target {raw!r}: {e}")
            return InvalidTarget(raw, INVALID_URL_MESSAGE)

        hostname = (urlsplit(normalized).hostname or "").lower()
        reason = await self.check_host(hostname)
        if reason is not None:
            logger.warning(f"Rejected target {raw!r}: {reason}")
            return InvalidTarget(raw, reason)

        return CrawlTarget(raw_input=raw, normalized_url=normalized, hostname=hostname)

    async def check_host(self, hostname: str) -> str | None:
        """Return a refusal reason for hostname, or None when it is safe to fetch."""
        host = hostname.strip("[]").rstrip(".").lower()
        if not host:
            return INVALID_URL_MESSAGE
        if host == "localhost" or host.endswith(".localhost"):
            return NOT_ALLOWED_MESSAGE

        literal = parse_ip_literal(host)
        if literal is not None:
            return None if is_public_address(literal) else NOT_ALLOWED_MESSAGE

        try:
            addresses = await self.resolver.resolve_all(host)
        except DNSResolutionError as e:
            logger.debug(f"DNS lookup failed for {host}: {e.reason}")
            return UNRESOLVABLE_MESSAGE
        except OSError as e:
            logger.debug(f"DNS lookup failed for {host}: {e}")
            return UNRESOLVABLE_MESSAGE

        if not addresses:
            return UNRESOLVABLE_MESSAGE
        for address in addresses:
            parsed = parse_ip_literal(address)
            if parsed is None or not is_public_address(parsed):
                return NOT_ALLOWED_MESSAGE
        return None


class HostGuard:
    """Memoized host checks for every request a session makes.

    Installed as an httpx request hook it also covers redirect hops, so a
    public page cannot bounce the crawler onto an internal address.
    """

    def __init__(self, validator: TargetValidator) -> None:
        self.validator = validator
        self._verdicts: dict[str, str | None] = {}

    def known(self, hostname: str) -> bool:
        return hostname.lower() in self._verdicts

    async def check(self, hostname: str) -> str | None:
        """Return a refusal reason for hostname, or None when it is safe."""
        host = hostname.lower()
        if host not in self._verdicts:
            self._verdicts[host] = await self.validator.check_host(host)
        return self._verdicts[host]

    async def on_request(self, request: httpx.Request) -> None:
        reason = await self.check(request.url.host)
        if reason is not None:
            raise FetchFatalError(str(request.url), f"Blocked request: {reason}")
