"""
Playwright-backed page renderer.

Drives a single Chromium (or Firefox/WebKit) page. The low-level control
channel is a CDP session, which is what lets identity overrides and
pre-document scripts be installed and removed again per run; it is only
available on Chromium.

    async with PlaywrightRenderer(config) as renderer:
        engine = CrawlEngine(renderer)
        summary = await engine.crawl("https://example.com")
"""
import asyncio
import logging
from typing import Any, Optional

from crawlite.browser_config import BrowserConfig
from crawlite.errors import NavigationError, RendererError, RendererUnavailableError
from crawlite.renderer.base import PageRenderer, ResponseInfo

logger = logging.getLogger(__name__)

# Deadline for the window.stop() fallback, in seconds
STOP_FALLBACK_TIMEOUT_S = 2.0


class PlaywrightRenderer(PageRenderer):
    """Page renderer over one Playwright page, used as an async context manager."""

    def __init__(self, config: Optional[BrowserConfig] = None):
        """
        Initialize the renderer.

        Args:
            config: BrowserConfig instance (defaults from environment if None)
        """
        super().__init__()
        self._config = config or BrowserConfig()
        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None
        self._cdp = None
        self._original_user_agent: Optional[str] = None

        logger.debug(f"PlaywrightRenderer initialized with config: {self._config}")

    async def __aenter__(self) -> "PlaywrightRenderer":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self) -> None:
        """Launch the browser and open the page."""
        try:
            from playwright.async_api import async_playwright
        except ImportError:
            raise ImportError(
                "Playwright is required for browser rendering. "
                "Install with: pip install playwright && playwright install chromium"
            )

        logger.info(f"Launching {self._config.browser_type} browser (headless={self._config.headless})")

        self._playwright = await async_playwright().start()
        browser_launcher = getattr(self._playwright, self._config.browser_type)

        launch_options = {"headless": self._config.headless}
        if self._config.launch_args:
            launch_options["args"] = self._config.launch_args

        try:
            self._browser = await browser_launcher.launch(**launch_options)
        except Exception as e:
            await self._playwright.stop()
            self._playwright = None
            raise RendererUnavailableError(f"Browser launch failed: {e}") from e

        context_options = {
            "viewport": {
                "width": self._config.viewport_width,
                "height": self._config.viewport_height,
            },
        }
        if self._config.user_agent:
            context_options["user_agent"] = self._config.user_agent
        if self._config.locale:
            context_options["locale"] = self._config.locale

        self._context = await self._browser.new_context(**context_options)
        self._page = await self._context.new_page()
        self._page.on("response", self._handle_response)

        if self._config.block_resources:
            blocked = set(self._config.block_resources)
            await self._page.route(
                "**/*",
                lambda route: (
                    route.abort()
                    if route.request.resource_type in blocked
                    else route.continue_()
                )
            )

        logger.info("Browser launched successfully")

    async def close(self) -> None:
        """Close the page, browser and Playwright driver."""
        if self._cdp is not None:
            await self.detach_control_channel()

        if self._browser:
            logger.info("Closing browser")
            await self._browser.close()
            self._browser = None
        self._context = None
        self._page = None

        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

    # --- Lifecycle ---

    @property
    def is_available(self) -> bool:
        return self._page is not None and not self._page.is_closed()

    @property
    def supports_scripts(self) -> bool:
        return True

    def _require_page(self):
        if not self.is_available:
            raise RendererUnavailableError(
                "Browser page is not running. Use PlaywrightRenderer as an async context manager: "
                "async with PlaywrightRenderer(config) as renderer:"
            )
        return self._page

    # --- Navigation ---

    async def navigate(self, url: str) -> None:
        page = self._require_page()
        try:
            # No Playwright deadline; the crawler races navigation against its own
            await page.goto(url, wait_until=self._config.wait_until, timeout=0)
        except Exception as e:
            raise NavigationError(url, str(e)) from e

    async def stop(self) -> None:
        if not self.is_available:
            return
        try:
            if self._cdp is not None:
                await self._cdp.send("Page.stopLoading")
            else:
                await asyncio.wait_for(
                    self._page.evaluate("() => window.stop()"),
                    timeout=STOP_FALLBACK_TIMEOUT_S,
                )
        except Exception as e:
            logger.debug(f"Stop loading failed: {e}")

    @property
    def current_url(self) -> str:
        return self._page.url if self._page is not None else ""

    async def content(self) -> str:
        return await self._require_page().content()

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return await self._require_page().evaluate(script, arg)

    # --- Control channel and overrides ---

    @property
    def control_channel_attached(self) -> bool:
        return self._cdp is not None

    async def attach_control_channel(self) -> None:
        page = self._require_page()
        if self._cdp is not None:
            return
        if self._config.browser_type != "chromium":
            raise RendererError(f"CDP control channel is not available on {self._config.browser_type}")

        session = await self._context.new_cdp_session(page)
        await session.send("Page.enable")
        await session.send("Network.enable")
        self._cdp = session
        logger.debug("CDP session attached")

    async def detach_control_channel(self) -> None:
        session, self._cdp = self._cdp, None
        if session is None:
            return
        try:
            await session.detach()
        except Exception as e:
            logger.debug(f"CDP detach failed: {e}")

    def _require_cdp(self):
        if self._cdp is None:
            raise RendererError("CDP control channel is not attached")
        return self._cdp

    async def add_init_script(self, source: str) -> Any:
        result = await self._require_cdp().send(
            "Page.addScriptToEvaluateOnNewDocument", {"source": source}
        )
        return result.get("identifier")

    async def remove_init_script(self, handle: Any) -> None:
        await self._require_cdp().send(
            "Page.removeScriptToEvaluateOnNewDocument", {"identifier": handle}
        )

    async def set_identity_override(
        self,
        user_agent: Optional[str] = None,
        accept_language: Optional[str] = None,
        platform: Optional[str] = None,
    ) -> None:
        session = self._require_cdp()

        # userAgent is mandatory for Network.setUserAgentOverride
        if self._original_user_agent is None:
            self._original_user_agent = await self._require_page().evaluate("() => navigator.userAgent")

        params = {"userAgent": user_agent or self._original_user_agent}
        if accept_language:
            params["acceptLanguage"] = accept_language
        if platform:
            params["platform"] = platform
        await session.send("Network.setUserAgentOverride", params)

    # --- Network metadata ---

    def _handle_response(self, response) -> None:
        try:
            request = response.request
            if not request.is_navigation_request() or request.frame.parent_frame is not None:
                return
            info = ResponseInfo(url=response.url, status_code=response.status, headers=dict(response.headers))
        except Exception as e:
            logger.debug(f"Ignoring response event: {e}")
            return
        self._emit_response(info)
