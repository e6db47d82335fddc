"""Breadth-first crawl scheduler.

One ``CrawlScheduler`` drives one run: it owns the BFS queue, the depth and
page budgets, the ``seen``/``enqueued`` sets and the politeness pacing, and
emits lifecycle events as it goes. Page loading and extraction are delegated
to ``PageProcessor``, which ``CrawlEngine.analyze_page`` reuses for single
pages.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional, Set, Tuple
from urllib.parse import urlsplit

from crawlite.config import CrawlOptions
from crawlite.constants import SETTLE_TIMEOUT_MS
from crawlite.errors import LoadFailedError, LoadTimeoutError, RendererUnavailableError
from crawlite.events import (
    CrawlCancelled,
    CrawlFailed,
    CrawlFinished,
    CrawlStarted,
    EventBus,
    PageDiscovered,
    PageDone,
    PageLoading,
)
from crawlite.extraction import SETTLE_SCRIPT, ExtractedPage
from crawlite.infrastructure.dns import HostIpCache
from crawlite.infrastructure.stealth import StealthManager
from crawlite.infrastructure.tasks import BackgroundTasks, with_timeout
from crawlite.infrastructure.timing import PolitenessPacer
from crawlite.models import (
    CrawlRun,
    CrawlStatus,
    CrawlSummary,
    PageRecord,
    PageState,
    QueueEntry,
    ResponseMeta,
    now_ms,
)
from crawlite.renderer.base import PageRenderer
from crawlite.url_policy import (
    folder_boundary_of,
    host_of,
    is_internal,
    is_non_html_resource,
    is_under_folder,
    safe_normalize_url,
    with_default_scheme,
)

logger = logging.getLogger(__name__)


@dataclass
class PageResult:
    """Outcome of loading and extracting one page."""
    record: PageRecord
    extracted: ExtractedPage
    ok: bool
    error: Optional[LoadFailedError] = None


class PageProcessor:
    """
    Loads one page and assembles its ``done`` record.

    Load failures and timeouts are recorded as ``ok=False`` with an empty
    extraction and no response metadata; extraction failures also fall back
    to an empty extraction. Neither raises.
    """

    def __init__(
        self,
        renderer: PageRenderer,
        extractor,
        options: CrawlOptions,
        response_meta: Dict[str, ResponseMeta],
        resolver: HostIpCache,
        tasks: BackgroundTasks,
        stealth: Optional[StealthManager] = None,
    ):
        self._renderer = renderer
        self._extractor = extractor
        self._options = options
        self._response_meta = response_meta
        self._resolver = resolver
        self._tasks = tasks
        self._stealth = stealth

    async def _load(self, url: str) -> Tuple[Optional[int], Optional[LoadFailedError]]:
        """Navigate with the page-load deadline; returns (load time in ms, failure)."""
        timeout_ms = self._options.page_load_timeout_ms
        started = time.monotonic()
        try:
            outcome = await with_timeout(
                self._renderer.navigate(url),
                timeout_ms / 1000,
                on_timeout=self._renderer.stop,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = LoadFailedError(url, f"page load failed ({e})")
            logger.warning(f"{error}")
            return None, error

        if outcome.timed_out:
            error = LoadTimeoutError(url, timeout_ms)
            logger.warning(f"{error}")
            return None, error
        return int((time.monotonic() - started) * 1000), None

    async def _settle(self) -> None:
        if not self._renderer.supports_scripts:
            return
        try:
            await with_timeout(self._renderer.evaluate(SETTLE_SCRIPT), SETTLE_TIMEOUT_MS / 1000)
        except Exception as e:
            logger.debug(f"Settle wait failed: {e}")

    async def _extract(self, url: str) -> ExtractedPage:
        try:
            outcome = await with_timeout(
                self._extractor.extract(self._renderer, self._options.deduplicate_links),
                self._options.page_load_timeout_ms / 1000,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Extraction failed for {url}: {e}")
            return ExtractedPage.empty()

        if outcome.timed_out:
            logger.warning(f"Extraction timed out for {url}")
            return ExtractedPage.empty()
        return outcome.value

    async def process(self, url: str, analyze_wait_ms: int = 0) -> PageResult:
        """
        Load, settle and extract one page.

        Args:
            url: URL to load
            analyze_wait_ms: Extra wait before extraction, in milliseconds

        Returns:
            PageResult with the assembled ``done`` record
        """
        started = time.monotonic()
        discovered_at = now_ms()

        hostname = urlsplit(url).hostname or ""
        ip_task = self._tasks.spawn(self._resolver.lookup(hostname), name=f"dns:{hostname}")

        load_time_ms, load_error = await self._load(url)
        ok = load_time_ms is not None

        if self._stealth is not None and self._stealth.script:
            self._tasks.spawn(self._stealth.reapply(), name="stealth:reapply")

        if ok:
            await self._settle()
            if analyze_wait_ms > 0:
                await asyncio.sleep(analyze_wait_ms / 1000)
            extracted = await self._extract(url)
            final_url = extracted.url or self._renderer.current_url or url
        else:
            # The renderer may still show the previous document
            extracted = ExtractedPage.empty()
            final_url = url
        normalized = safe_normalize_url(final_url) or safe_normalize_url(url)

        meta = self._response_meta.get(normalized) if ok else None
        status_code = meta.status_code if meta else None
        if meta and meta.content_length is not None:
            content_length = meta.content_length
        else:
            content_length = extracted.html_bytes if ok else None

        final_host = urlsplit(normalized).hostname or hostname
        if ip_task.done() and not ip_task.cancelled() and ip_task.exception() is None and final_host == hostname:
            ip_address = ip_task.result()
        else:
            ip_address = self._resolver.cached(final_host)

        record = PageRecord(
            url=final_url,
            normalized_url=normalized,
            state=PageState.DONE,
            title=extracted.title,
            h1=extracted.h1,
            has_viewport=extracted.has_viewport,
            has_canonical=extracted.has_canonical,
            canonical_url=extracted.canonical_url,
            meta_robots=extracted.meta_robots,
            description=extracted.description,
            keywords=extracted.keywords,
            headings_text=extracted.headings_text,
            headings_count=extracted.headings_count,
            headings_raw_count=extracted.headings_raw_count,
            headings_empty_count=extracted.headings_empty_count,
            nested_headings=extracted.nested_headings,
            links=extracted.links,
            links_detailed=extracted.links_detailed,
            images=extracted.images,
            scripts=extracted.scripts,
            stylesheets=extracted.stylesheets,
            misc=extracted.misc,
            ip_address=ip_address,
            status_code=status_code,
            content_length=content_length,
            load_time_ms=load_time_ms,
            analysis_time_ms=int((time.monotonic() - started) * 1000),
            discovered_at=discovered_at,
        )
        return PageResult(record=record, extracted=extracted, ok=ok, error=load_error)


class CrawlScheduler:
    """
    Runs one breadth-first crawl.

    State machine per run: ``idle -> running -> finished | cancelled | error``.
    Cancellation is checked at the top of every iteration; an in-flight page
    is always completed (or timed out) first.
    """

    def __init__(
        self,
        run: CrawlRun,
        options: CrawlOptions,
        renderer: PageRenderer,
        extractor,
        events: EventBus,
        response_meta: Dict[str, ResponseMeta],
        resolver: HostIpCache,
        renderer_lock: Optional[asyncio.Lock] = None,
        pacer: Optional[PolitenessPacer] = None,
    ):
        self.run = run
        self.options = options
        self._renderer = renderer
        self._extractor = extractor
        self._events = events
        self._response_meta = response_meta
        self._resolver = resolver
        self._renderer_lock = renderer_lock or asyncio.Lock()
        self._pacer = pacer or PolitenessPacer(options.delay_ms, options.jitter_ms)

        self.start_url = with_default_scheme(run.start_url)
        self.seed = safe_normalize_url(self.start_url)
        self.base_host = host_of(self.seed)
        self.folder_boundary: Optional[str] = None
        if options.restrict_to_current_folder:
            self.folder_boundary = folder_boundary_of(urlsplit(self.start_url).path)

        self.queue: Deque[QueueEntry] = deque()
        self.seen: Set[str] = set()
        self.enqueued: Set[str] = set()

    def _in_scope(self, url: str) -> bool:
        if not is_internal(url, self.base_host):
            return False
        if self.folder_boundary is not None and not is_under_folder(url, self.folder_boundary):
            return False
        return True

    def _emit_discovered(self, url: str, normalized: str) -> None:
        self._events.emit(PageDiscovered(
            run_id=self.run.run_id,
            page=PageRecord.discovered(url, normalized),
            processed=self.run.processed,
            queued=len(self.queue),
        ))

    def _expand(self, result: PageResult, depth: int) -> None:
        """Queue the in-scope links harvested from a page."""
        for link in result.extracted.links:
            normalized = safe_normalize_url(link)
            if not normalized:
                continue
            if is_non_html_resource(normalized):
                continue
            if normalized in self.seen or normalized in self.enqueued:
                continue
            if not self._in_scope(normalized):
                logger.debug(f"Out of scope: {link}")
                continue
            if len(self.enqueued) >= self.options.max_pages:
                # The page budget can never consume more than this
                break

            self.enqueued.add(normalized)
            self.queue.append(QueueEntry(url=link, depth=depth + 1))
            self.run.queued = len(self.queue)
            self._emit_discovered(link, normalized)

    def _finish(self, status: CrawlStatus) -> None:
        self.run.status = status
        self.run.queued = len(self.queue)
        self.run.finished_at = now_ms()

    async def execute(self) -> CrawlSummary:
        """
        Run the crawl to completion, cancellation or error.

        Returns:
            CrawlSummary of the run

        Raises:
            Exception: The unexpected error that moved the run to ``error``
        """
        run = self.run
        stealth = StealthManager(self._renderer)
        tasks = BackgroundTasks()
        processor = PageProcessor(
            self._renderer,
            self._extractor,
            self.options,
            self._response_meta,
            self._resolver,
            tasks,
            stealth=stealth,
        )

        async with self._renderer_lock:
            try:
                if run.cancelled:
                    # Superseded before the renderer became free
                    self._finish(CrawlStatus.CANCELLED)
                    self._emit_cancelled()
                    return run.summary()

                run.status = CrawlStatus.RUNNING
                self.queue.append(QueueEntry(url=self.start_url, depth=0))
                self.enqueued.add(self.seed)
                run.queued = len(self.queue)

                logger.info(
                    f"Crawl {run.run_id} started at {self.start_url} "
                    f"(max_depth={self.options.max_depth}, max_pages={self.options.max_pages})"
                )
                self._events.emit(CrawlStarted(
                    run_id=run.run_id,
                    started_at=run.started_at,
                    start_url=self.start_url,
                    options=self.options.to_dict(),
                ))
                self._emit_discovered(self.start_url, self.seed)

                await stealth.begin(self.options.stealth_spec())
                await self._loop(processor, run)

                if run.cancelled:
                    self._finish(CrawlStatus.CANCELLED)
                    logger.info(f"Crawl {run.run_id} cancelled after {run.processed} pages")
                    self._emit_cancelled()
                else:
                    self._finish(CrawlStatus.FINISHED)
                    logger.info(f"Crawl {run.run_id} finished: {run.processed} pages")
                    self._events.emit(CrawlFinished(
                        run_id=run.run_id,
                        processed=run.processed,
                        queued=run.queued,
                        finished_at=run.finished_at,
                    ))
                return run.summary()

            except asyncio.CancelledError:
                self._finish(CrawlStatus.CANCELLED)
                self._emit_cancelled()
                raise
            except Exception as e:
                self._finish(CrawlStatus.ERROR)
                run.error = str(e)
                logger.error(f"Crawl {run.run_id} failed: {e}")
                self._events.emit(CrawlFailed(
                    run_id=run.run_id,
                    processed=run.processed,
                    queued=run.queued,
                    error=str(e),
                    finished_at=run.finished_at,
                ))
                raise
            finally:
                await stealth.end()
                await tasks.cancel_all()

    def _emit_cancelled(self) -> None:
        self._events.emit(CrawlCancelled(
            run_id=self.run.run_id,
            processed=self.run.processed,
            queued=self.run.queued,
            finished_at=self.run.finished_at or now_ms(),
        ))

    async def _loop(self, processor: PageProcessor, run: CrawlRun) -> None:
        analyze_wait_ms = self.options.analyze_wait_ms or 0

        while self.queue:
            if run.cancelled:
                break
            if run.processed >= self.options.max_pages:
                break
            if not self._renderer.is_available:
                raise RendererUnavailableError("Renderer went away during the crawl")

            entry = self.queue.popleft()
            run.queued = len(self.queue)

            normalized = safe_normalize_url(entry.url)
            if not normalized or normalized in self.seen:
                continue
            if not is_internal(normalized, self.base_host):
                logger.debug(f"Skipping external URL: {entry.url}")
                continue

            self.seen.add(normalized)
            self._events.emit(PageLoading(
                run_id=run.run_id,
                url=entry.url,
                processed=run.processed,
                queued=run.queued,
            ))

            result = await processor.process(entry.url, analyze_wait_ms=analyze_wait_ms)

            # A redirect target counts as visited too
            if result.record.normalized_url:
                self.seen.add(result.record.normalized_url)

            run.processed += 1
            self._events.emit(PageDone(
                run_id=run.run_id,
                page=result.record,
                processed=run.processed,
                queued=len(self.queue),
                ok=result.ok,
            ))

            if result.ok and entry.depth < self.options.max_depth:
                self._expand(result, entry.depth)

            if self.queue and run.processed < self.options.max_pages and not run.cancelled:
                await self._pacer.wait(run.cancel_event)
