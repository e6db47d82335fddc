"""Exception hierarchy for the crawler.

Only ``InvalidURLError`` (for a seed URL) and ``RendererUnavailableError``
escape the public entry points. Everything else is raised and caught inside
the step that produced it and surfaces as data on page records or inventories.
"""

from typing import Optional


class CrawliteError(Exception):
    """Base class for all crawler errors."""


class InvalidURLError(CrawliteError):
    """Raised when a URL cannot be parsed into a crawlable http(s) URL."""

    def __init__(self, url: str, reason: str = "unparsable URL"):
        self.url = url
        self.reason = reason
        super().__init__(f"{reason}: {url!r}")


class LoadFailedError(CrawliteError):
    """Raised when a page load fails."""

    def __init__(self, url: str, message: str = "page load failed"):
        self.url = url
        super().__init__(f"{message}: {url}")


class LoadTimeoutError(LoadFailedError):
    """Raised when a page load exceeds its deadline."""

    def __init__(self, url: str, timeout_ms: int):
        self.timeout_ms = timeout_ms
        super().__init__(url, f"page load timed out after {timeout_ms}ms")


class ExtractionFailedError(CrawliteError):
    """Raised when the page extractor cannot produce a record."""


class FetchFailedError(CrawliteError):
    """Raised when a sitemap or robots.txt fetch fails or returns non-2xx."""

    def __init__(self, url: str, status_code: Optional[int] = None, message: str = "fetch failed"):
        self.url = url
        self.status_code = status_code
        detail = f" (status={status_code})" if status_code is not None else ""
        super().__init__(f"{message}: {url}{detail}")


class OverrideFailedError(CrawliteError):
    """Raised when one step of the stealth override sequence fails."""

    def __init__(self, step: str, message: str = ""):
        self.step = step
        super().__init__(f"stealth override step '{step}' failed{': ' + message if message else ''}")


class RendererError(CrawliteError):
    """Base class for renderer adapter errors."""


class RendererUnavailableError(RendererError):
    """Raised when the rendering engine is not running or has gone away."""


class NavigationError(RendererError):
    """Raised by a renderer when navigation to a URL fails."""

    def __init__(self, url: str, message: str = "navigation failed"):
        self.url = url
        super().__init__(f"{message}: {url}")


class ScriptUnsupportedError(RendererError):
    """Raised when a renderer cannot run scripts in the loaded document."""
