"""Crawlite: breadth-first SEO crawler with sitemap discovery and stealth overrides."""

__version__ = "0.1.0"

from crawlite.config import CrawlOptions, settings
from crawlite.engine import CrawlEngine
from crawlite.errors import (
    CrawliteError,
    ExtractionFailedError,
    FetchFailedError,
    InvalidURLError,
    LoadFailedError,
    LoadTimeoutError,
    NavigationError,
    OverrideFailedError,
    RendererError,
    RendererUnavailableError,
    ScriptUnsupportedError,
)
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
from crawlite.extraction import ExtractedPage, HtmlExtractor, ScriptExtractor
from crawlite.models import (
    CrawlRun,
    CrawlStatus,
    CrawlSummary,
    LinkDetail,
    PageRecord,
    PageState,
    QueueEntry,
    ResponseMeta,
    SitemapInventory,
    SitemapUrlMeta,
    StealthOverrideSpec,
)
from crawlite.renderer import HttpRenderer, PageRenderer, PlaywrightRenderer, ResponseInfo
from crawlite.results import CrawlResults
from crawlite.sitemap_discovery import SitemapDiscoverer, discover_sitemap
from crawlite.url_policy import (
    folder_boundary_of,
    host_of,
    is_internal,
    is_non_html_resource,
    is_under_folder,
    normalize_url,
)

__all__ = [
    # Entry points
    "CrawlEngine",
    "CrawlOptions",
    "CrawlResults",
    "SitemapDiscoverer",
    "discover_sitemap",
    # Renderers and extraction
    "PageRenderer",
    "ResponseInfo",
    "PlaywrightRenderer",
    "HttpRenderer",
    "ExtractedPage",
    "ScriptExtractor",
    "HtmlExtractor",
    # Models
    "CrawlRun",
    "CrawlStatus",
    "CrawlSummary",
    "LinkDetail",
    "PageRecord",
    "PageState",
    "QueueEntry",
    "ResponseMeta",
    "SitemapInventory",
    "SitemapUrlMeta",
    "StealthOverrideSpec",
    # Events
    "EventBus",
    "CrawlStarted",
    "PageLoading",
    "PageDiscovered",
    "PageDone",
    "CrawlCancelled",
    "CrawlFinished",
    "CrawlFailed",
    # URL policy
    "normalize_url",
    "host_of",
    "is_internal",
    "folder_boundary_of",
    "is_under_folder",
    "is_non_html_resource",
    # Errors
    "CrawliteError",
    "InvalidURLError",
    "LoadFailedError",
    "LoadTimeoutError",
    "ExtractionFailedError",
    "FetchFailedError",
    "OverrideFailedError",
    "RendererError",
    "RendererUnavailableError",
    "NavigationError",
    "ScriptUnsupportedError",
    # Settings
    "settings",
]
