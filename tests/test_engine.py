"""Tests for the crawl engine entry points."""

import asyncio
from typing import List
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

pytest_plugins = ('pytest_asyncio',)

from crawlite.config import CrawlOptions
from crawlite.engine import CrawlEngine, coerce_options
from crawlite.errors import InvalidURLError, RendererUnavailableError
from crawlite.events import CrawlCancelled, CrawlStarted, PageDone, PageLoading
from crawlite.extraction import HtmlExtractor, ScriptExtractor
from crawlite.models import CrawlStatus, PageState, SitemapInventory
from crawlite.renderer.http_renderer import HttpRenderer
from crawlite.results import CrawlResults

from conftest import html_page


class TestCoerceOptions:
    """Tests for coerce_options."""

    def test_mapping_and_instance(self):
        options = CrawlOptions(max_pages=3)
        assert coerce_options(options) is options
        assert coerce_options({"maxPages": 7}).max_pages == 7
        assert coerce_options(None).max_pages == CrawlOptions().max_pages


class TestStartCrawl:
    """Tests for start_crawl validation and run supersession."""

    @pytest.mark.asyncio
    async def test_invalid_seed_raises(self, make_renderer, resolver):
        """Test that an unparseable seed is rejected before a run starts."""
        engine = CrawlEngine(make_renderer({}), resolver=resolver)
        with pytest.raises(InvalidURLError):
            await engine.start_crawl("ftp://example.test/")
        with pytest.raises(InvalidURLError):
            await engine.start_crawl("   ")
        assert engine.active_run is None

    @pytest.mark.asyncio
    async def test_unavailable_renderer_raises(self, make_renderer, resolver):
        renderer = make_renderer({})
        renderer.available = False
        engine = CrawlEngine(renderer, resolver=resolver)
        with pytest.raises(RendererUnavailableError):
            await engine.start_crawl("https://example.test/")

    def test_extractor_follows_renderer_capabilities(self, make_renderer, make_recording_renderer):
        assert isinstance(CrawlEngine(make_renderer({}))._extractor, HtmlExtractor)
        assert isinstance(CrawlEngine(make_recording_renderer())._extractor, ScriptExtractor)

    @pytest.mark.asyncio
    async def test_new_run_supersedes_active_run(self, make_renderer, resolver, small_site):
        """Test that starting a run cancels the active one before the new one starts."""
        renderer = make_renderer(small_site)
        engine = CrawlEngine(renderer, resolver=resolver)
        events: List = []
        engine.subscribe(events.append)
        first_page = asyncio.Event()
        engine.subscribe(lambda event: first_page.set() if isinstance(event, PageDone) else None)

        first = await engine.start_crawl("https://example.test/", {"delay_ms": 60000, "jitter_ms": 0})
        await asyncio.wait_for(first_page.wait(), timeout=5)

        second = await engine.start_crawl("https://example.test/", {"delay_ms": 0, "jitter_ms": 0})
        assert engine.active_run is second

        second_summary = await asyncio.wait_for(second.wait(), timeout=5)
        first_summary = await first.wait()

        assert first_summary.status == CrawlStatus.CANCELLED
        assert second_summary.status == CrawlStatus.FINISHED
        assert second_summary.processed == 3
        assert renderer.stop_calls >= 1

        first_cancelled = next(
            i for i, e in enumerate(events) if isinstance(e, CrawlCancelled) and e.run_id == first.run_id
        )
        second_started = next(
            i for i, e in enumerate(events) if isinstance(e, CrawlStarted) and e.run_id == second.run_id
        )
        assert first_cancelled < second_started
        assert not any(
            isinstance(e, PageLoading) and e.run_id == first.run_id for e in events[first_cancelled:]
        )

    @pytest.mark.asyncio
    async def test_run_superseded_before_it_starts(self, make_renderer, resolver, small_site):
        """Test that a run cancelled while waiting for the renderer never loads a page."""
        renderer = make_renderer(small_site)
        engine = CrawlEngine(renderer, resolver=resolver)
        events: List = []
        engine.subscribe(events.append)

        first = await engine.start_crawl("https://example.test/", {"delay_ms": 0, "jitter_ms": 0})
        second = await engine.start_crawl("https://example.test/", {"delay_ms": 0, "jitter_ms": 0})
        await second.wait()
        await first.wait()

        first_events = [e for e in events if e.run_id == first.run_id]
        assert [type(e) for e in first_events] == [CrawlCancelled]
        assert first.status == CrawlStatus.CANCELLED
        assert second.status == CrawlStatus.FINISHED

    @pytest.mark.asyncio
    async def test_response_meta_is_shared(self, make_renderer, resolver, small_site):
        renderer = make_renderer(small_site)
        engine = CrawlEngine(renderer, resolver=resolver)
        await engine.crawl("https://example.test/", {"delay_ms": 0, "jitter_ms": 0})

        assert engine.response_meta["https://example.test/a"].status_code == 200

    @pytest.mark.asyncio
    async def test_unsubscribe(self, make_renderer, resolver, small_site):
        engine = CrawlEngine(make_renderer(small_site), resolver=resolver)
        events: List = []
        unsubscribe = engine.subscribe(events.append)
        unsubscribe()

        await engine.crawl("https://example.test/", {"delay_ms": 0, "jitter_ms": 0})
        assert events == []


class TestAnalyzePage:
    """Tests for single-page analysis."""

    @pytest.mark.asyncio
    async def test_analyze_page(self, make_renderer, resolver, small_site):
        """Test that a single page is loaded and extracted without events."""
        renderer = make_renderer(small_site)
        engine = CrawlEngine(renderer, resolver=resolver)
        events: List = []
        engine.subscribe(events.append)

        record = await engine.analyze_page("example.test/a", {"analyze_wait_ms": 0})

        assert record.state == PageState.DONE
        assert record.title == "A"
        assert record.status_code == 200
        assert record.links == ["https://example.test/b", "https://other.test/x"]
        assert renderer.navigations == ["https://example.test/a"]
        assert events == []

    @pytest.mark.asyncio
    async def test_analyze_page_installs_and_removes_overrides(self, make_recording_renderer, resolver, small_site):
        """Test that stealth overrides are scoped to the analysis call."""
        renderer = make_recording_renderer(small_site)
        engine = CrawlEngine(renderer, extractor=HtmlExtractor(), resolver=resolver)

        record = await engine.analyze_page(
            "https://example.test/",
            {"analyze_wait_ms": 0, "accept_language": "fr-FR", "suppress_automation_signal": True},
        )

        assert record.title == "Home"
        names = renderer.call_names()
        assert names[:3] == ["attach", "identity", "add_init_script"]
        assert names[-1] == "detach"
        assert renderer.init_scripts == {}

    @pytest.mark.asyncio
    async def test_analyze_invalid_url(self, make_renderer, resolver):
        engine = CrawlEngine(make_renderer({}), resolver=resolver)
        with pytest.raises(InvalidURLError):
            await engine.analyze_page("ftp://example.test/file")

    @pytest.mark.asyncio
    async def test_discover_sitemap_delegates(self, make_renderer):
        discoverer = MagicMock()
        inventory = SitemapInventory(urls=("https://example.test/a",))
        discoverer.discover = AsyncMock(return_value=inventory)
        engine = CrawlEngine(make_renderer({}), sitemap_discoverer=discoverer)

        assert await engine.discover_sitemap("example.test", max_urls=10) is inventory
        discoverer.discover.assert_awaited_once_with("example.test", max_urls=10)


class TestHttpRendererCrawl:
    """End-to-end crawl over the static HTTP renderer and a mocked transport."""

    @pytest.mark.asyncio
    async def test_crawl_static_site(self, resolver):
        pages = {
            "/": html_page("Home", "/docs/", "/about"),
            "/docs": html_page("Docs", "/docs/intro"),
            "/docs/intro": html_page("Intro"),
            "/about": html_page("About", "/"),
        }

        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path.rstrip("/") or "/"
            if path in pages:
                return httpx.Response(200, html=pages[path])
            return httpx.Response(404, html=html_page("Not Found"))

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)
        results = CrawlResults()
        async with HttpRenderer(client=client) as renderer:
            engine = CrawlEngine(renderer, resolver=resolver)
            engine.subscribe(results)
            summary = await engine.crawl("https://static.test/", {"delay_ms": 0, "jitter_ms": 0})
        await client.aclose()

        assert summary.status == CrawlStatus.FINISHED
        assert results.status == CrawlStatus.FINISHED
        titles = {page.normalized_url: page.title for page in results.done_pages}
        assert titles == {
            "https://static.test": "Home",
            "https://static.test/docs": "Docs",
            "https://static.test/about": "About",
            "https://static.test/docs/intro": "Intro",
        }
        assert all(page.status_code == 200 for page in results.done_pages)
        assert results.failed_urls == []

    @pytest.mark.asyncio
    async def test_failed_request_gives_empty_record(self, resolver):
        """Test that a refused request is not filled from the previous page."""
        pages = {
            "/": html_page("Home", "/a", "/about"),
            "/about": html_page("About"),
        }

        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path.rstrip("/") or "/"
            if path == "/a":
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, html=pages[path])

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)
        events: List = []
        async with HttpRenderer(client=client) as renderer:
            engine = CrawlEngine(renderer, resolver=resolver)
            engine.subscribe(events.append)
            summary = await engine.crawl("https://static.test/", {"delay_ms": 0, "jitter_ms": 0})
        await client.aclose()

        done = {e.page.normalized_url: e for e in events if isinstance(e, PageDone)}
        failed = done["https://static.test/a"]
        assert failed.ok is False
        assert failed.page.title == ""
        assert failed.page.links == []
        assert failed.page.content_length is None
        assert done["https://static.test/about"].page.title == "About"
        assert summary.processed == 3
