"""
Static HTTP page renderer.

For sites that need no JavaScript: fetches documents with httpx and exposes
them through the renderer contract. Script evaluation is unsupported, so pair
it with ``HtmlExtractor``.
"""
import logging
from typing import Optional

import httpx

from crawlite.config import settings
from crawlite.errors import NavigationError, RendererUnavailableError
from crawlite.renderer.base import PageRenderer, ResponseInfo

logger = logging.getLogger(__name__)


class HttpRenderer(PageRenderer):
    """Renderer that loads documents with a plain HTTP client."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        user_agent: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        """
        Initialize the renderer.

        Args:
            client: HTTP client to use (a private one is created if None)
            user_agent: Default user agent for the private client
            timeout: Transport timeout in seconds for the private client
        """
        super().__init__()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            follow_redirects=True,
            timeout=timeout if timeout is not None else settings.HTTP_TIMEOUT,
            headers={
                "User-Agent": user_agent or settings.USER_AGENT,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            },
        )
        self._default_headers = httpx.Headers(self._client.headers)
        self._url = ""
        self._html = ""

    async def __aenter__(self) -> "HttpRenderer":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        if self._owns_client and not self._client.is_closed:
            await self._client.aclose()

    @property
    def is_available(self) -> bool:
        return not self._client.is_closed

    async def navigate(self, url: str) -> None:
        if not self.is_available:
            raise RendererUnavailableError("HTTP client is closed")

        # A failed load must not leave the previous document in place
        self._url = url
        self._html = ""

        try:
            response = await self._client.get(url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise NavigationError(url, f"request failed ({e.__class__.__name__})") from e

        for hop in [*response.history, response]:
            self._emit_response(
                ResponseInfo(url=str(hop.url), status_code=hop.status_code, headers=dict(hop.headers))
            )

        self._url = str(response.url)
        self._html = response.text
        logger.debug(f"Fetched {url} -> {self._url} (status={response.status_code})")

    async def stop(self) -> None:
        # Cancelling the navigate task aborts the in-flight request
        return None

    @property
    def current_url(self) -> str:
        return self._url

    async def content(self) -> str:
        return self._html

    async def set_identity_override(
        self,
        user_agent: Optional[str] = None,
        accept_language: Optional[str] = None,
        platform: Optional[str] = None,
    ) -> None:
        headers = httpx.Headers(self._default_headers)
        if user_agent:
            headers["User-Agent"] = user_agent
        if accept_language:
            headers["Accept-Language"] = accept_language
        if platform:
            headers["Sec-CH-UA-Platform"] = f'"{platform}"'
        self._client.headers = headers
