"""Reporter sinks for crawl session events.

A session emits named events with JSON-serializable payloads. Emitting is
fire-and-forget: a sink never raises back into the scheduler, and
high-frequency ``queueStats`` events may be dropped under backpressure.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any, Protocol

from rich.console import Console
from rich.markup import escape

logger = logging.getLogger(__name__)

STATS = "stats"
QUEUE_STATS = "queueStats"
PAGE_CONTENT = "pageContent"
PAGE_DETAILS = "pageDetails"
CRAWL_ERROR = "crawlError"
ATTACK_END = "attackEnd"

# Events that may be discarded when a subscriber falls behind
DROPPABLE_EVENTS = frozenset({QUEUE_STATS})


class Reporter(Protocol):
    """Sink for session events."""

    def emit(self, event: str, payload: dict[str, Any]) -> None: ...


class NullReporter:
    """Discards every event."""

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        pass


class CallbackReporter:
    """Forwards events to a plain callable, logging (not raising) its errors."""

    def __init__(self, callback: Callable[[str, dict[str, Any]], None]) -> None:
        self.callback = callback

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        try:
            self.callback(event, payload)
        except Exception as e:
            logger.warning(f"Reporter callback failed for {event}: {e}")


class QueueReporter:
    """Buffers events in a bounded asyncio.Queue for a transport to drain.

    When the queue is full, droppable events are discarded; other events
    evict the oldest droppable one still buffered, or the oldest event if
    there is none.

    Example:
        >>> reporter = QueueReporter(maxsize=100)
        >>> session = CrawlSession(options, reporter=reporter, ...)
        >>> event, payload = await reporter.get()
    """

    def __init__(self, maxsize: int = 1000) -> None:
        self.queue: asyncio.Queue[tuple[str, dict[str, Any]]] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        try:
            self.queue.put_nowait((event, payload))
            return
        except asyncio.QueueFull:
            pass

        if event in DROPPABLE_EVENTS:
            self.dropped += 1
            return

        self._evict_one()
        self.queue.put_nowait((event, payload))

    def _evict_one(self) -> None:
        buffered = []
        while not self.queue.empty():
            buffered.append(self.queue.get_nowait())

        for index, (name, _) in enumerate(buffered):
            if name in DROPPABLE_EVENTS:
                del buffered[index]
                break
        else:
            del buffered[0]
        self.dropped += 1

        for item in buffered:
            self.queue.put_nowait(item)

    async def get(self) -> tuple[str, dict[str, Any]]:
        return await self.queue.get()

    def qsize(self) -> int:
        return self.queue.qsize()


class ConsoleReporter:
    """Prints session events to a rich Console."""

    def __init__(self, console: Console | None = None, show_queue: bool = False) -> None:
        self.console = console or Console()
        self.show_queue = show_queue
        self.final_stats: dict[str, Any] | None = None

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        match event:
            case "stats":
                if "log" in payload:
                    self.console.print(
                        f"[dim]{escape(str(payload['log']))}[/dim]", highlight=False
                    )
            case "queueStats":
                if self.show_queue:
                    self.console.print(
                        f"[cyan]queue[/cyan] active={payload.get('activeRequests')} "
                        f"pending={payload.get('queueLength')}",
                        highlight=False,
                    )
            case "pageContent":
                processed = payload.get("processedData", {})
                self.console.print(
                    f"[green]✓[/green] {escape(str(payload.get('url')))} "
                    f"[dim](quality {processed.get('qualityScore', 0)}/100)[/dim]",
                    highlight=False,
                )
            case "crawlError":
                self.console.print(f"[red]Error:[/red] {escape(str(payload.get('message')))}")
            case "attackEnd":
                self.final_stats = payload
            case _:
                logger.debug(f"Unhandled event {event}")
