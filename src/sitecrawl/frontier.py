"""Scheduling state owned by the crawl session's scheduler task.

Nothing here is locked: every object is mutated only from the scheduler,
which receives worker results as messages.
"""

import asyncio
import logging
import time
from collections import deque
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

from sitecrawl.utils import domain_key

logger = logging.getLogger(__name__)

BASE_BACKOFF_MS = 1000
MAX_BACKOFF_MS = 30000
DEFAULT_SLEEP_SECONDS = 0.1
MIN_SLEEP_SECONDS = 0.05
MAX_DOMAIN_STATES = 500
DOMAIN_IDLE_SECONDS = 60.0


def compute_backoff(retry_count: int) -> int:
    """Retry delay in milliseconds for the retry_count-th retry.

    Examples:
        >>> [compute_backoff(n) for n in (1, 2, 3)]
        [2000, 4000, 8000]
        >>> compute_backoff(10)
        30000
    """
    return min(BASE_BACKOFF_MS * 2 ** max(0, retry_count), MAX_BACKOFF_MS)


@dataclass
class FrontierItem:
    """A URL waiting to be crawled."""

    url: str
    depth: int
    retry_count: int = 0
    parent_url: str | None = None

    @property
    def domain(self) -> str:
        return domain_key(self.url)


class Frontier:
    """FIFO queue of pending items plus the visited set.

    A URL is accepted at most once: pushing a URL that is queued or already
    visited is a no-op.
    """

    def __init__(self) -> None:
        self._queue: deque[FrontierItem] = deque()
        self._queued: set[str] = set()
        self.visited: set[str] = set()

    def __len__(self) -> int:
        return len(self._queue)

    def __bool__(self) -> bool:
        return bool(self._queue)

    def __iter__(self) -> Iterator[FrontierItem]:
        return iter(self._queue)

    def seen(self, url: str) -> bool:
        return url in self._queued or url in self.visited

    def push(self, item: FrontierItem) -> bool:
        """Append item unless its URL is queued or visited."""
        if self.seen(item.url):
            return False
        self._queue.append(item)
        self._queued.add(item.url)
        return True

    def pop(self) -> FrontierItem:
        item = self._queue.popleft()
        self._queued.discard(item.url)
        return item

    def requeue(self, item: FrontierItem) -> None:
        """Put a popped item back at the end, e.g. when its domain is cooling down."""
        self._queue.append(item)
        self._queued.add(item.url)

    def mark_visited(self, url: str) -> None:
        self.visited.add(url)


@dataclass
class DomainState:
    """Politeness bookkeeping for one domain (monotonic seconds)."""

    domain: str
    delay_ms: int
    next_allowed_at: float = 0.0
    last_seen_at: float = 0.0


class DomainScheduler:
    """Per-domain delay between dispatches.

    A domain's delay is the earliest time the next dispatch may start, so two
    dispatches to one domain are always at least ``delay_ms`` apart. A
    completed page pushes the next slot out again by the same delay.
    """

    def __init__(
        self,
        default_delay_ms: int,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = MAX_DOMAIN_STATES,
        idle_seconds: float = DOMAIN_IDLE_SECONDS,
    ) -> None:
        self.default_delay_ms = default_delay_ms
        self._clock = clock
        self.max_entries = max_entries
        self.idle_seconds = idle_seconds
        self._states: dict[str, DomainState] = {}

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, domain: object) -> bool:
        return domain in self._states

    def get(self, domain: str) -> DomainState:
        state = self._states.get(domain)
        if state is None:
            state = DomainState(domain=domain, delay_ms=self.default_delay_ms)
            self._states[domain] = state
        return state

    def set_delay(self, domain: str, delay_ms: int) -> None:
        self.get(domain).delay_ms = delay_ms

    def wait_time(self, domain: str) -> float:
        """Seconds until domain may be dispatched to (0 when ready)."""
        state = self._states.get(domain)
        if state is None:
            return 0.0
        return max(0.0, state.next_allowed_at - self._clock())

    def record_dispatch(self, domain: str) -> None:
        state = self.get(domain)
        now = self._clock()
        state.next_allowed_at = max(now, state.next_allowed_at) + state.delay_ms / 1000
        state.last_seen_at = now

    def record_completion(self, domain: str) -> None:
        state = self.get(domain)
        now = self._clock()
        state.next_allowed_at = max(state.next_allowed_at, now + state.delay_ms / 1000)
        state.last_seen_at = now

    def prune(self) -> int:
        """Forget idle domains once the map grows past max_entries.

        Returns:
            Number of entries removed
        """
        if len(self._states) <= self.max_entries:
            return 0
        now = self._clock()
        stale = [
            domain
            for domain, state in self._states.items()
            if now - state.last_seen_at > self.idle_seconds and state.next_allowed_at <= now
        ]
        for domain in stale:
            del self._states[domain]
        if stale:
            logger.debug(f"Pruned {len(stale)} idle domain states")
        return len(stale)


class RetryScheduler:
    """Cancellable delayed re-delivery of failed items.

    Each retry is a task that sleeps and then hands the item to ``deliver``.
    ``cancel_all`` abandons every pending retry, so nothing is re-delivered
    after the session stops.
    """

    def __init__(self, deliver: Callable[[FrontierItem], None]) -> None:
        self._deliver = deliver
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, url: object) -> bool:
        return url in self._tasks

    def schedule(self, item: FrontierItem, delay_seconds: float) -> None:
        if item.url in self._tasks:
            return
        self._tasks[item.url] = asyncio.create_task(
            self._wait(item, delay_seconds), name=f"retry:{item.url}"
        )

    async def _wait(self, item: FrontierItem, delay_seconds: float) -> None:
        await asyncio.sleep(delay_seconds)
        self._tasks.pop(item.url, None)
        self._deliver(item)

    def cancel_all(self) -> int:
        """Cancel every pending retry and return how many were dropped."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        return len(tasks)


@dataclass
class SessionStats:
    """Counters reported while crawling and in the final summary."""

    pages_scanned: int = 0
    links_found: int = 0
    total_data_kb: int = 0
    media_files: int = 0
    success_count: int = 0
    failure_count: int = 0
    skipped_count: int = 0
    start_time: float = field(default_factory=time.monotonic)
    end_time: float | None = None

    @property
    def elapsed_seconds(self) -> float:
        end = self.end_time if self.end_time is not None else time.monotonic()
        return max(0.0, end - self.start_time)

    def elapsed_time(self) -> dict[str, int]:
        total = int(self.elapsed_seconds)
        return {"hours": total // 3600, "minutes": (total % 3600) // 60, "seconds": total % 60}

    def pages_per_second(self) -> str:
        elapsed = self.elapsed_seconds
        rate = self.pages_scanned / elapsed if elapsed > 0 else 0.0
        return f"{rate:.2f}"

    def success_rate(self) -> str:
        attempted = self.success_count + self.failure_count
        if attempted == 0:
            return "0%"
        return f"{self.success_count / attempted * 100:.1f}%"

    def counters(self) -> dict[str, int]:
        return {
            "pagesScanned": self.pages_scanned,
            "linksFound": self.links_found,
            "totalData": self.total_data_kb,
            "mediaFiles": self.media_files,
            "successCount": self.success_count,
            "failureCount": self.failure_count,
            "skippedCount": self.skipped_count,
        }

    def summary(self) -> dict[str, Any]:
        """Final statistics for the end-of-session event."""
        return {
            **self.counters(),
            "elapsedTime": self.elapsed_time(),
            "pagesPerSecond": self.pages_per_second(),
            "successRate": self.success_rate(),
        }
