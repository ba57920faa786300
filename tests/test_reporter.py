"""Tests for reporter sinks."""

import pytest
from rich.console import Console

from sitecrawl.reporter import (
    ATTACK_END,
    CRAWL_ERROR,
    PAGE_CONTENT,
    QUEUE_STATS,
    STATS,
    CallbackReporter,
    ConsoleReporter,
    QueueReporter,
)


@pytest.mark.asyncio
async def test_queue_reporter_drops_queue_stats_when_full() -> None:
    """Test high-frequency events are discarded under backpressure."""
    reporter = QueueReporter(maxsize=2)
    reporter.emit(STATS, {"n": 1})
    reporter.emit(STATS, {"n": 2})
    reporter.emit(QUEUE_STATS, {"n": 3})

    assert reporter.dropped == 1
    assert reporter.qsize() == 2
    assert await reporter.get() == (STATS, {"n": 1})


@pytest.mark.asyncio
async def test_queue_reporter_evicts_droppable_first() -> None:
    """Test an important event replaces a buffered queueStats event."""
    reporter = QueueReporter(maxsize=2)
    reporter.emit(QUEUE_STATS, {"n": 1})
    reporter.emit(PAGE_CONTENT, {"n": 2})
    reporter.emit(ATTACK_END, {"n": 3})

    assert reporter.dropped == 1
    assert [await reporter.get(), await reporter.get()] == [
        (PAGE_CONTENT, {"n": 2}),
        (ATTACK_END, {"n": 3}),
    ]


@pytest.mark.asyncio
async def test_queue_reporter_evicts_oldest_otherwise() -> None:
    """Test the oldest event goes when nothing droppable is buffered."""
    reporter = QueueReporter(maxsize=2)
    reporter.emit(STATS, {"n": 1})
    reporter.emit(PAGE_CONTENT, {"n": 2})
    reporter.emit(ATTACK_END, {"n": 3})

    assert reporter.qsize() == 2
    assert (await reporter.get())[1] == {"n": 2}


def test_callback_reporter_swallows_errors() -> None:
    """Test a failing callback does not propagate."""
    seen: list[str] = []

    def callback(event: str, payload: dict) -> None:
        seen.append(event)
        raise RuntimeError("subscriber gone")

    reporter = CallbackReporter(callback)
    reporter.emit(STATS, {})
    reporter.emit(CRAWL_ERROR, {"message": "x"})
    assert seen == [STATS, CRAWL_ERROR]


def test_console_reporter_output() -> None:
    """Test events are printed and the final stats kept."""
    console = Console(record=True, width=200)
    reporter = ConsoleReporter(console)

    reporter.emit(STATS, {"log": "[Crawler] Crawled https://example.com/"})
    reporter.emit(PAGE_CONTENT, {"url": "https://example.com/", "processedData": {"qualityScore": 70}})
    reporter.emit(CRAWL_ERROR, {"message": "Target host is not allowed"})
    reporter.emit(QUEUE_STATS, {"activeRequests": 1, "queueLength": 4})
    reporter.emit(ATTACK_END, {"pagesScanned": 1})

    output = console.export_text()
    assert "[Crawler] Crawled https://example.com/" in output
    assert "quality 70/100" in output
    assert "Target host is not allowed" in output
    assert "pending=4" not in output
    assert reporter.final_stats == {"pagesScanned": 1}


def test_console_reporter_prints_markup_literally() -> None:
    """Test URLs and messages containing rich markup are printed verbatim."""
    console = Console(record=True, width=200)
    reporter = ConsoleReporter(console)

    reporter.emit(STATS, {"log": "[Crawler] Crawled https://example.com/[/x]"})
    reporter.emit(PAGE_CONTENT, {"url": "https://example.com/[bold]", "processedData": {}})
    reporter.emit(CRAWL_ERROR, {"message": "bad [/red] input"})

    output = console.export_text()
    assert "https://example.com/[/x]" in output
    assert "https://example.com/[bold]" in output
    assert "bad [/red] input" in output
