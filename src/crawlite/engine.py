"""Crawl engine: the public entry points.

    async with PlaywrightRenderer() as renderer:
        engine = CrawlEngine(renderer)
        engine.subscribe(print)
        run = await engine.start_crawl("https://example.com", {"maxPages": 50})
        summary = await run.wait()

At most one run drives the renderer at a time. Starting a run while another
is active cancels the earlier one, stops its in-flight navigation, and the new
run begins once the earlier loop has exited.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Mapping, Optional, Union

from crawlite.config import CrawlOptions
from crawlite.errors import RendererUnavailableError
from crawlite.events import EventBus, EventListener
from crawlite.extraction import HtmlExtractor, ScriptExtractor
from crawlite.infrastructure.dns import HostIpCache
from crawlite.infrastructure.stealth import StealthManager
from crawlite.infrastructure.tasks import BackgroundTasks
from crawlite.infrastructure.timing import PolitenessPacer
from crawlite.models import CrawlRun, CrawlSummary, PageRecord, ResponseMeta, SitemapInventory
from crawlite.renderer.base import PageRenderer, ResponseInfo, parse_content_length
from crawlite.scheduler import CrawlScheduler, PageProcessor
from crawlite.sitemap_discovery import SitemapDiscoverer
from crawlite.url_policy import normalize_url, safe_normalize_url, with_default_scheme

logger = logging.getLogger(__name__)

OptionsLike = Union[CrawlOptions, Mapping[str, Any], None]


def coerce_options(options: OptionsLike) -> CrawlOptions:
    """Accept a CrawlOptions instance or a mapping (snake_case or camelCase keys)."""
    if isinstance(options, CrawlOptions):
        return options
    return CrawlOptions.model_validate(dict(options or {}))


class CrawlEngine:
    """
    Entry points for crawling, single-page analysis and sitemap discovery.

    The engine owns the event bus, the response metadata cache (status code and
    content length by normalized URL) and the host IP cache; all of them are
    shared across runs on the same renderer.
    """

    def __init__(
        self,
        renderer: PageRenderer,
        extractor=None,
        resolver: Optional[HostIpCache] = None,
        sitemap_discoverer: Optional[SitemapDiscoverer] = None,
        pacer_factory: Optional[Callable[[CrawlOptions], PolitenessPacer]] = None,
    ):
        """
        Initialize the engine.

        Args:
            renderer: Page renderer to drive
            extractor: Page extractor (script-based for script-capable
                renderers, HTML-based otherwise, if None)
            resolver: Host IP cache
            sitemap_discoverer: Sitemap discoverer for ``discover_sitemap``
            pacer_factory: Builds the politeness pacer for a run
        """
        self._renderer = renderer
        if extractor is None:
            extractor = ScriptExtractor() if renderer.supports_scripts else HtmlExtractor()
        self._extractor = extractor
        self._resolver = resolver or HostIpCache()
        self._sitemap = sitemap_discoverer or SitemapDiscoverer()
        self._pacer_factory = pacer_factory or (lambda o: PolitenessPacer(o.delay_ms, o.jitter_ms))
        self._events = EventBus()
        self._response_meta: Dict[str, ResponseMeta] = {}
        self._renderer_lock = asyncio.Lock()
        self._active: Optional[CrawlRun] = None

        renderer.on_response_completed(self._record_response)

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def active_run(self) -> Optional[CrawlRun]:
        return self._active

    @property
    def response_meta(self) -> Dict[str, ResponseMeta]:
        return self._response_meta

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """Register an event listener; returns its unsubscribe function."""
        return self._events.subscribe(listener)

    def _record_response(self, info: ResponseInfo) -> None:
        key = safe_normalize_url(info.url)
        if not key:
            return
        self._response_meta[key] = ResponseMeta(
            status_code=info.status_code,
            content_length=parse_content_length(info.headers),
        )

    def _require_renderer(self) -> None:
        if not self._renderer.is_available:
            raise RendererUnavailableError("Renderer is not available")

    async def start_crawl(self, seed_url: str, options: OptionsLike = None) -> CrawlRun:
        """
        Start a crawl run in the background.

        Args:
            seed_url: Seed URL (bare domains are accepted)
            options: CrawlOptions or a mapping of option values

        Returns:
            Handle of the new run

        Raises:
            InvalidURLError: If the seed URL does not parse
            RendererUnavailableError: If the renderer is not available
        """
        opts = coerce_options(options)
        normalize_url(seed_url)
        self._require_renderer()

        previous = self._active
        if previous is not None and not previous.done:
            logger.info(f"Superseding crawl {previous.run_id}")
            previous.cancel()
            try:
                await self._renderer.stop()
            except Exception as e:
                logger.debug(f"Stopping superseded navigation failed: {e}")

        run = CrawlRun(start_url=seed_url)
        self._active = run

        scheduler = CrawlScheduler(
            run,
            opts,
            self._renderer,
            self._extractor,
            self._events,
            self._response_meta,
            self._resolver,
            renderer_lock=self._renderer_lock,
            pacer=self._pacer_factory(opts),
        )
        task = asyncio.create_task(scheduler.execute(), name=f"crawl:{run.run_id}")
        task.add_done_callback(self._on_run_done)
        run.attach_task(task)
        return run

    def _on_run_done(self, task: asyncio.Task) -> None:
        # Failures are reported through the error event and CrawlRun.wait()
        if not task.cancelled():
            task.exception()

    def cancel_crawl(self, run_id: str) -> bool:
        """
        Cancel the active run if its id matches.

        Returns:
            True if a run was cancelled
        """
        run = self._active
        if run is None or run.run_id != run_id or run.done:
            return False
        logger.info(f"Cancelling crawl {run_id}")
        run.cancel()
        return True

    async def crawl(self, seed_url: str, options: OptionsLike = None) -> CrawlSummary:
        """Start a run and wait for it to end."""
        run = await self.start_crawl(seed_url, options)
        return await run.wait()

    async def discover_sitemap(self, seed_url: str, max_urls: Optional[int] = None) -> SitemapInventory:
        """Build the sitemap URL inventory for the seed's origin."""
        return await self._sitemap.discover(seed_url, max_urls=max_urls)

    async def analyze_page(self, url: str, options: OptionsLike = None) -> PageRecord:
        """
        Load and extract a single page outside of any crawl run.

        Stealth overrides from ``options`` are installed for the duration of
        the call. The extra wait before extraction is ``analyze_wait_ms``, or
        ``delay_ms`` plus random jitter when that is unset.

        Args:
            url: Page URL
            options: CrawlOptions or a mapping of option values

        Returns:
            The page's ``done`` record

        Raises:
            InvalidURLError: If the URL does not parse
            RendererUnavailableError: If the renderer is not available
        """
        opts = coerce_options(options)
        normalize_url(url)
        self._require_renderer()

        if opts.analyze_wait_ms is not None:
            wait_ms = opts.analyze_wait_ms
        else:
            wait_ms = PolitenessPacer(opts.delay_ms, opts.jitter_ms).next_delay_ms()

        async with self._renderer_lock:
            stealth = StealthManager(self._renderer)
            tasks = BackgroundTasks()
            processor = PageProcessor(
                self._renderer,
                self._extractor,
                opts,
                self._response_meta,
                self._resolver,
                tasks,
                stealth=stealth,
            )
            try:
                await stealth.begin(opts.stealth_spec())
                result = await processor.process(with_default_scheme(url), analyze_wait_ms=wait_ms)
            finally:
                await stealth.end()
                await tasks.cancel_all()

        logger.info(f"Analyzed {url} (ok={result.ok}, status={result.record.status_code})")
        return result.record
