"""Crawl session orchestrator.

A CrawlSession validates its target, checks robots.txt, then runs a single
scheduler task that owns the frontier, the visited set, per-domain delays
and the statistics. Pages are fetched, processed and persisted by worker
tasks that report back through an inbox queue; the scheduler applies every
state change. Progress is streamed to a Reporter as named events.

Example:
    >>> async with SQLiteRepository("crawl.db") as repository:
    ...     session = CrawlSession(CrawlOptions(target="example.com"), repository)
    ...     await session.run()
"""

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any, Protocol
from urllib.parse import urlsplit

import httpx

from sitecrawl.backends.base import LinkRecord, PageRecord, Repository
from sitecrawl.config import AppConfig, CrawlOptions
from sitecrawl.exceptions import FetchError, InvalidTargetError, SitecrawlError
from sitecrawl.fetcher import (
    DynamicRenderer,
    FetchMode,
    FetchResult,
    FetchStrategy,
    StaticFetcher,
)
from sitecrawl.frontier import (
    DEFAULT_SLEEP_SECONDS,
    MIN_SLEEP_SECONDS,
    DomainScheduler,
    Frontier,
    FrontierItem,
    RetryScheduler,
    SessionStats,
    compute_backoff,
)
from sitecrawl.http_client import create_httpx_client
from sitecrawl.processing import ContentProcessor, ProcessedContent, fallback_content
from sitecrawl.reporter import (
    ATTACK_END,
    CRAWL_ERROR,
    PAGE_CONTENT,
    PAGE_DETAILS,
    QUEUE_STATS,
    STATS,
    NullReporter,
    Reporter,
)
from sitecrawl.robots import RobotsCache
from sitecrawl.rules import DiscoveredLink, LinkExtractor, is_media_content_type
from sitecrawl.utils import domain_key
from sitecrawl.validator import CrawlTarget, HostGuard, InvalidTarget, TargetValidator

logger = logging.getLogger(__name__)

ROBOTS_DISALLOWED_MESSAGE = "Robots.txt disallows crawling this target; stopping."


class SessionState(StrEnum):
    CREATED = "created"
    VALIDATING = "validating"
    CRAWLING = "crawling"
    DRAINING = "draining"
    STOPPED = "stopped"


class PageFetcher(Protocol):
    """What the session needs from a fetch strategy."""

    async def fetch(self, url: str, mode: FetchMode = FetchMode.DYNAMIC) -> FetchResult: ...


@dataclass
class PageOutcome:
    """Worker message: a page was fetched, processed and stored."""

    item: FrontierItem
    result: FetchResult
    processed: ProcessedContent
    page_id: int
    link_count: int
    candidates: list[DiscoveredLink] = field(default_factory=list)
    skipped: int = 0
    crawl_delays: dict[str, int] = field(default_factory=dict)


@dataclass
class FailureOutcome:
    """Worker message: the attempt failed."""

    item: FrontierItem
    error: BaseException


@dataclass
class RetryDue:
    """Retry timer message: item may be queued again."""

    item: FrontierItem


@dataclass
class _Wake:
    pass


class CrawlSession:
    """One crawl of one target.

    ``start`` returns once crawling has begun; the session then runs in the
    background until its budget is spent, the frontier is exhausted or
    ``stop`` is called. After ``start`` nothing is raised to the caller:
    failures are reported as events.
    """

    def __init__(
        self,
        options: CrawlOptions,
        repository: Repository,
        reporter: Reporter | None = None,
        config: AppConfig | None = None,
        validator: TargetValidator | None = None,
        robots: RobotsCache | None = None,
        fetcher: PageFetcher | None = None,
        renderer: DynamicRenderer | None = None,
        processor: ContentProcessor | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize session.

        Args:
            options: Clamped session options
            repository: Initialized repository pages and links are written to
            reporter: Event sink (events are discarded when omitted)
            config: Application config for HTTP, browser and robots settings
            validator: Target validator; also guards every HTTP request
            robots: robots.txt cache; built on the session client when omitted
            fetcher: Fetch strategy; built from client and renderer when omitted
            renderer: Headless browser; created when ``options.dynamic`` is set
            processor: Content processor
            client: Shared HTTP client; created (and closed) when omitted
        """
        self.options = options
        self.repository = repository
        self.reporter: Reporter = reporter or NullReporter()
        self.config = config or AppConfig()
        self.validator = validator or TargetValidator()
        self.guard = HostGuard(self.validator)
        self.processor = processor or ContentProcessor()
        self.link_extractor = LinkExtractor(options.crawl_method)

        self._owns_client = client is None
        self._client = client or create_httpx_client(
            self.config.http,
            event_hooks={"request": [self.guard.on_request]},
        )
        self._owns_robots = robots is None
        self.robots = robots or RobotsCache(
            client=self._client, store=repository, config=self.config.robots
        )

        if renderer is None and fetcher is None and options.dynamic:
            renderer = DynamicRenderer(self.config.browser)
        self.renderer = renderer
        self.fetcher: PageFetcher = fetcher or FetchStrategy(
            StaticFetcher(self._client, self.config.http), renderer
        )

        self.state = SessionState.CREATED
        self.target: CrawlTarget | None = None
        self.stats = SessionStats()
        self.frontier = Frontier()
        self.domains = DomainScheduler(options.crawl_delay)
        self._inbox: asyncio.Queue[Any] = asyncio.Queue()
        self.retries = RetryScheduler(lambda item: self._inbox.put_nowait(RetryDue(item)))
        self._in_flight: dict[str, asyncio.Task[None]] = {}
        self._exit_stack = contextlib.AsyncExitStack()
        self._loop_task: asyncio.Task[None] | None = None
        self._active = False
        self._stopping = False
        self._stopped = asyncio.Event()

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def _emit(self, event: str, payload: dict[str, Any]) -> None:
        try:
            self.reporter.emit(event, payload)
        except Exception as e:
            logger.warning(f"Reporter failed on {event}: {e}")

    def _log_event(self, message: str) -> None:
        self._emit(STATS, {**self.stats.counters(), "log": message})

    def _emit_queue_stats(self) -> None:
        self._emit(
            QUEUE_STATS,
            {
                "activeRequests": self.active_count,
                "queueLength": len(self.frontier),
                "elapsedTime": self.stats.elapsed_time(),
                "pagesPerSecond": self.stats.pages_per_second(),
            },
        )

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def active_count(self) -> int:
        return len(self._in_flight)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Validate the target and begin crawling in the background.

        Raises:
            InvalidTargetError: If the target is malformed or not public
        """
        if self.state is not SessionState.CREATED:
            logger.warning(f"Session already {self.state}; ignoring start()")
            return

        self.state = SessionState.VALIDATING
        self.stats = SessionStats()
        outcome = await self.validator.validate(self.options.target)
        if isinstance(outcome, InvalidTarget):
            self._emit(CRAWL_ERROR, {"message": outcome.reason, "target": outcome.raw_input})
            self._stopping = True
            await self._release()
            self.state = SessionState.STOPPED
            self._stopped.set()
            raise InvalidTargetError(outcome.reason, outcome.raw_input)

        self.target = outcome
        self._active = True
        logger.info(f"Starting crawl of {outcome.normalized_url}")
        try:
            if self.options.dynamic and self.renderer is not None:
                await self._exit_stack.enter_async_context(self.renderer)
                if self.renderer.fallback_reason:
                    self._log_event(self.renderer.fallback_reason)

            domain = domain_key(outcome.normalized_url)
            if self.options.respect_robots:
                rules = await self.robots.get_rules(domain)
                if not rules.is_allowed(outcome.normalized_url, self.robots.agent):
                    logger.warning(f"robots.txt disallows {outcome.normalized_url}")
                    self._log_event(ROBOTS_DISALLOWED_MESSAGE)
                    await self.repository.set_domain_allowed(domain, False)
                    await self.stop()
                    return
                delay = rules.get_crawl_delay(self.robots.agent)
                if delay:
                    self.domains.set_delay(
                        domain, max(int(delay * 1000), self.options.crawl_delay)
                    )
            await self.repository.set_domain_allowed(domain, True)
        except Exception as e:
            logger.exception(f"Failed to start crawl: {e}")
            self._emit(CRAWL_ERROR, {"message": str(e) or type(e).__name__})
            await self.stop()
            return

        self.frontier.push(FrontierItem(url=outcome.normalized_url, depth=0))
        self.state = SessionState.CRAWLING
        self._loop_task = asyncio.create_task(self._run(), name="crawl-scheduler")

    async def run(self) -> dict[str, Any]:
        """Start, wait for the session to finish and return the final summary."""
        await self.start()
        await self.wait()
        return self.stats.summary()

    async def wait(self) -> None:
        """Block until the session has stopped."""
        await self._stopped.wait()

    async def stop(self) -> None:
        """Stop the session. Safe to call any number of times.

        Admission stops immediately and pending retries are abandoned;
        in-flight pages finish, then the browser is released and the final
        summary is emitted.
        """
        if self._stopping:
            await self._stopped.wait()
            return
        self._stopping = True
        self._active = False
        if self.state is not SessionState.STOPPED:
            self.state = SessionState.DRAINING

        dropped = self.retries.cancel_all()
        if dropped:
            logger.debug(f"Abandoned {dropped} pending retries")
        self._inbox.put_nowait(_Wake())

        if self._loop_task is not None and self._loop_task is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await self._loop_task

        if self._in_flight:
            await asyncio.gather(*self._in_flight.values(), return_exceptions=True)
        self._drain_inbox()

        await self._release()
        self.stats.end_time = time.monotonic()
        self.state = SessionState.STOPPED
        summary = self.stats.summary()
        logger.info(
            f"Crawl finished: {summary['pagesScanned']} pages, "
            f"{summary['failureCount']} failed, success rate {summary['successRate']}"
        )
        self._emit(ATTACK_END, summary)
        self._stopped.set()

    async def _release(self) -> None:
        try:
            await self._exit_stack.aclose()
        except Exception as e:
            logger.warning(f"Failed to release browser: {e}")
        if self._owns_robots:
            with contextlib.suppress(Exception):
                await self.robots.close()
        if self._owns_client:
            with contextlib.suppress(Exception):
                await self._client.aclose()

    # ------------------------------------------------------------------
    # Scheduler
    # ------------------------------------------------------------------

    def _budget_left(self) -> bool:
        return self.stats.pages_scanned + len(self._in_flight) < self.options.max_pages

    def _is_known(self, url: str) -> bool:
        return self.frontier.seen(url) or url in self._in_flight or url in self.retries

    def _is_finished(self) -> bool:
        if self._in_flight:
            return False
        if not self._budget_left():
            return True
        return not self.frontier and not len(self.retries)

    async def _run(self) -> None:
        try:
            while self._active:
                self._drain_inbox()
                if not self._active or self._is_finished():
                    break

                wait = self._dispatch_ready()
                self._emit_queue_stats()
                self.domains.prune()

                if wait is None:
                    timeout = DEFAULT_SLEEP_SECONDS
                else:
                    timeout = max(
                        min(wait, self.options.crawl_delay / 1000), MIN_SLEEP_SECONDS
                    )
                try:
                    message = await asyncio.wait_for(self._inbox.get(), timeout)
                except TimeoutError:
                    continue
                self._handle(message)
        except Exception as e:
            logger.exception(f"Scheduler failed: {e}")
            self._emit(CRAWL_ERROR, {"message": str(e) or type(e).__name__})

        if not self._stopping:
            await self.stop()

    def _dispatch_ready(self) -> float | None:
        """Start workers for ready items.

        Returns:
            Seconds until the soonest deferred item's domain opens up, or None
            when nothing was deferred
        """
        deferred: list[FrontierItem] = []
        soonest: float | None = None

        while (
            self.frontier
            and len(self._in_flight) < self.options.max_concurrent_requests
            and self._budget_left()
        ):
            item = self.frontier.pop()
            if item.url in self.frontier.visited or item.url in self._in_flight:
                continue

            wait = self.domains.wait_time(item.domain)
            if wait > 0:
                deferred.append(item)
                soonest = wait if soonest is None else min(soonest, wait)
                continue

            self.domains.record_dispatch(item.domain)
            self._in_flight[item.url] = asyncio.create_task(
                self._work(item), name=f"crawl:{item.url}"
            )

        for item in deferred:
            self.frontier.requeue(item)
        return soonest

    def _drain_inbox(self) -> None:
        while True:
            try:
                message = self._inbox.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._handle(message)

    def _handle(self, message: Any) -> None:
        match message:
            case PageOutcome():
                self._on_page(message)
            case FailureOutcome():
                self._on_failure(message)
            case RetryDue(item=item):
                if self._active:
                    self.frontier.push(item)
            case _Wake():
                pass
            case _:
                logger.warning(f"Unexpected scheduler message: {message!r}")

    def _on_page(self, outcome: PageOutcome) -> None:
        item, result, processed = outcome.item, outcome.result, outcome.processed
        self._in_flight.pop(item.url, None)
        self.frontier.mark_visited(item.url)
        if result.url != item.url:
            self.frontier.mark_visited(result.url)

        stats = self.stats
        stats.pages_scanned += 1
        stats.success_count += 1
        stats.total_data_kb += result.content_length // 1024
        stats.links_found += outcome.link_count
        stats.skipped_count += outcome.skipped
        if self.options.save_media and is_media_content_type(result.content_type):
            stats.media_files += 1

        for domain, delay_ms in outcome.crawl_delays.items():
            self.domains.set_delay(domain, max(delay_ms, self.options.crawl_delay))
        self.domains.record_completion(item.domain)

        self._emit(PAGE_CONTENT, self._page_payload(outcome))
        self._log_event(
            f"[Crawler] Crawled {result.url} ({result.status_code}) | "
            f"{result.content_length // 1024}KB | "
            f"{processed.analysis.word_count} words | "
            f"Lang: {processed.analysis.language} | "
            f"Quality: {processed.quality_score}/100 | "
            f"{outcome.link_count} links | {len(processed.media)} media"
        )

        if not self._active:
            return
        queued = 0
        for link in outcome.candidates:
            child = FrontierItem(url=link.url, depth=item.depth + 1, parent_url=item.url)
            if not self._is_known(child.url) and self.frontier.push(child):
                queued += 1
        if queued:
            logger.debug(f"Queued {queued} links from {item.url} at depth {item.depth + 1}")

    def _on_failure(self, outcome: FailureOutcome) -> None:
        item, error = outcome.item, outcome.error
        self._in_flight.pop(item.url, None)

        retryable = not isinstance(error, InvalidTargetError)
        if self._active and retryable and item.retry_count < self.options.retry_limit:
            retry = replace(item, retry_count=item.retry_count + 1)
            delay_ms = compute_backoff(retry.retry_count)
            transient = isinstance(error, FetchError) and error.transient
            kind = "transient error" if transient else "error"
            logger.warning(
                f"Failed {item.url} ({kind}: {error}); retry {retry.retry_count}/"
                f"{self.options.retry_limit} in {delay_ms}ms"
            )
            self.retries.schedule(retry, delay_ms / 1000)
            return

        self.frontier.mark_visited(item.url)
        self.stats.failure_count += 1
        logger.warning(f"Giving up on {item.url}: {error}")
        self._log_event(f"[Crawler] Failed {item.url}: {error}")

    def _page_payload(self, outcome: PageOutcome) -> dict[str, Any]:
        result, processed = outcome.result, outcome.processed
        data = processed.to_dict()
        return {
            "id": outcome.page_id,
            "url": result.url,
            "title": processed.metadata.title or result.title,
            "description": processed.metadata.description or result.description,
            "contentType": result.content_type,
            "domain": domain_key(result.url),
            "processedData": {
                "extractedData": data["extractedData"],
                "metadata": data["metadata"],
                "analysis": data["analysis"],
                "media": data["media"],
                "qualityScore": processed.quality_score,
                "language": processed.analysis.language,
            },
        }

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    async def _work(self, item: FrontierItem) -> None:
        try:
            outcome: PageOutcome | FailureOutcome = await self._crawl_page(item)
        except asyncio.CancelledError as e:
            self._inbox.put_nowait(FailureOutcome(item, e))
            raise
        except Exception as e:
            outcome = FailureOutcome(item, e)
        self._inbox.put_nowait(outcome)

    async def _crawl_page(self, item: FrontierItem) -> PageOutcome:
        mode = FetchMode.DYNAMIC if self.options.dynamic else FetchMode.STATIC
        result = await self.fetcher.fetch(item.url, mode)
        if domain_key(result.url) != item.domain:
            # the browser follows redirects without the request hook
            reason = await self.guard.check(urlsplit(result.url).hostname or "")
            if reason is not None:
                raise InvalidTargetError(f"Redirected to {result.url}: {reason}", item.url)

        loop = asyncio.get_running_loop()
        try:
            processed = await loop.run_in_executor(
                None, self.processor.process, result.content, result.url, result.content_type
            )
        except Exception as e:
            logger.warning(f"Processor failed for {result.url}: {e}")
            processed = fallback_content(result.url, result.content_type, e)

        record = self._page_record(result, processed)
        page_id = await self.repository.upsert_page(record)
        links = [LinkRecord(target_url=link.url, text=link.text) for link in processed.links]
        if links:
            await self.repository.insert_links(page_id, links)

        outcome = PageOutcome(
            item=item,
            result=result,
            processed=processed,
            page_id=page_id,
            link_count=len(links),
        )
        if item.depth + 1 < self.options.crawl_depth and result.is_html:
            candidates = self.link_extractor.extract_links(result.content, result.url)
            try:
                await self._admit_links(outcome, candidates)
            except Exception as e:
                # the page is stored; keep whatever was admitted before the error
                logger.warning(f"Link admission failed for {result.url}: {e}")
        return outcome

    def _page_record(self, result: FetchResult, processed: ProcessedContent) -> PageRecord:
        analysis = processed.analysis
        return PageRecord(
            url=result.url,
            domain=domain_key(result.url),
            status_code=result.status_code,
            content_type=result.content_type,
            data_length=result.content_length,
            title=processed.metadata.title or result.title,
            description=processed.metadata.description or result.description,
            content=None if self.options.content_only else result.content,
            is_dynamic=result.is_dynamic,
            last_modified=result.last_modified,
            main_content=processed.extracted.main_content,
            word_count=analysis.word_count,
            reading_time=analysis.reading_time,
            language=analysis.language,
            keywords=[{"word": k.word, "count": k.count} for k in analysis.keywords],
            quality_score=processed.quality_score,
            structured_data=processed.extracted.structured_data.to_dict(),
            media_count=len(processed.media),
            internal_links_count=processed.internal_links_count,
            external_links_count=processed.external_links_count,
        )

    async def _admit_links(self, outcome: PageOutcome, candidates: list[DiscoveredLink]) -> None:
        """Filter discovered links through host safety and robots.txt."""
        page_domain = outcome.item.domain
        for link in candidates:
            if self._is_known(link.url):
                continue
            domain = domain_key(link.url)
            reason = await self.guard.check(urlsplit(link.url).hostname or "")
            if reason is not None:
                logger.debug(f"Skipping {link.url}: {reason}")
                continue

            if self.options.respect_robots:
                is_new = domain not in self.robots
                try:
                    rules = await self.robots.get_rules(domain)
                except SitecrawlError as e:
                    logger.warning(f"robots.txt lookup failed for {domain}: {e}")
                else:
                    if is_new and domain != page_domain:
                        delay = rules.get_crawl_delay(self.robots.agent)
                        if delay:
                            outcome.crawl_delays[domain] = int(delay * 1000)
                    if not rules.is_allowed(link.url, self.robots.agent):
                        outcome.skipped += 1
                        continue

            outcome.candidates.append(link)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def page_details(self, url: str) -> dict[str, Any] | None:
        """Return a stored page with its outgoing links and emit it as pageDetails."""
        page = await self.repository.query_page(url)
        if page is None:
            return None
        links = await self.repository.query_links_by_source(page.id)
        details = {
            **page.to_dict(),
            "links": [{"url": link.target_url, "text": link.text} for link in links],
        }
        self._emit(PAGE_DETAILS, details)
        return details
