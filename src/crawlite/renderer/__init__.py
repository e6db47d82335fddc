"""Page renderer adapters."""

from crawlite.renderer.base import PageRenderer, ResponseInfo
from crawlite.renderer.http_renderer import HttpRenderer
from crawlite.renderer.playwright_renderer import PlaywrightRenderer

__all__ = [
    "PageRenderer",
    "ResponseInfo",
    "HttpRenderer",
    "PlaywrightRenderer",
]
