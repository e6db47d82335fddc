"""Data models for crawl runs, page records and sitemap inventories."""

import asyncio
import secrets
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Optional

from crawlite.constants import RUN_ID_PREFIX, RUN_ID_RANDOM_BYTES


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def empty_heading_counts() -> dict[str, int]:
    return {"h1": 0, "h2": 0, "h3": 0, "h4": 0, "h5": 0, "h6": 0}


def empty_heading_texts() -> dict[str, list[str]]:
    return {"h1": [], "h2": [], "h3": [], "h4": [], "h5": [], "h6": []}


class PageState(str, Enum):
    """Lifecycle state of a page record."""
    DISCOVERED = "discovered"
    DONE = "done"


class CrawlStatus(str, Enum):
    """Lifecycle state of a crawl run."""
    IDLE = "idle"
    RUNNING = "running"
    FINISHED = "finished"
    CANCELLED = "cancelled"
    ERROR = "error"


@dataclass
class LinkDetail:
    """An outgoing link together with its anchor text."""
    url: str
    anchor: str = ""


@dataclass
class PageRecord:
    """The unit of crawl output.

    A ``discovered`` record is a stub with only the URL fields populated; a
    ``done`` record carries extracted SEO fields, network metadata and timing.
    Identity is ``normalized_url``.
    """

    url: str
    normalized_url: str
    state: PageState = PageState.DISCOVERED

    # Extracted SEO fields
    title: str = ""
    h1: str = ""
    has_viewport: bool = False
    has_canonical: bool = False
    canonical_url: str = ""
    meta_robots: str = ""
    description: str = ""
    keywords: str = ""
    headings_text: dict[str, list[str]] = field(default_factory=empty_heading_texts)
    headings_count: dict[str, int] = field(default_factory=empty_heading_counts)
    headings_raw_count: dict[str, int] = field(default_factory=empty_heading_counts)
    headings_empty_count: dict[str, int] = field(default_factory=empty_heading_counts)
    nested_headings: list[str] = field(default_factory=list)
    links: list[str] = field(default_factory=list)
    links_detailed: list[LinkDetail] = field(default_factory=list)
    images: list[str] = field(default_factory=list)
    scripts: list[str] = field(default_factory=list)
    stylesheets: list[str] = field(default_factory=list)
    misc: list[str] = field(default_factory=list)

    # Network metadata
    ip_address: str = ""
    status_code: Optional[int] = None
    content_length: Optional[int] = None

    # Timing (milliseconds)
    load_time_ms: Optional[int] = None
    analysis_time_ms: Optional[int] = None
    discovered_at: int = field(default_factory=now_ms)

    @classmethod
    def discovered(cls, url: str, normalized_url: str) -> "PageRecord":
        """Create a stub record for a URL that was just accepted into the queue."""
        return cls(url=url, normalized_url=normalized_url, state=PageState.DISCOVERED)

    @property
    def key(self) -> str:
        """Identity key used by result collectors."""
        return self.normalized_url or self.url

    @property
    def is_done(self) -> bool:
        return self.state == PageState.DONE

    def to_dict(self) -> dict:
        data = asdict(self)
        data["state"] = self.state.value
        return data


@dataclass
class QueueEntry:
    """A URL waiting in the BFS frontier."""
    url: str
    depth: int


@dataclass
class ResponseMeta:
    """Network metadata recorded for a top-level navigation response."""
    status_code: Optional[int] = None
    content_length: Optional[int] = None


@dataclass(frozen=True)
class SitemapUrlMeta:
    """Optional per-URL fields declared in a sitemap ``<url>`` block."""
    lastmod: Optional[str] = None
    changefreq: Optional[str] = None
    priority: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.lastmod or self.changefreq or self.priority)

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v}


@dataclass(frozen=True)
class SitemapInventory:
    """Flat URL inventory built from a site's sitemap files."""
    sitemaps: tuple[str, ...] = ()
    urls: tuple[str, ...] = ()
    url_meta_by_url: dict[str, SitemapUrlMeta] = field(default_factory=dict)
    truncated: bool = False

    def to_dict(self) -> dict:
        return {
            "sitemaps": list(self.sitemaps),
            "urls": list(self.urls),
            "url_meta_by_url": {u: m.to_dict() for u, m in self.url_meta_by_url.items()},
            "truncated": self.truncated,
        }


@dataclass(frozen=True)
class StealthOverrideSpec:
    """Identity and anti-automation overrides applied for one run."""
    user_agent: Optional[str] = None
    accept_language: Optional[str] = None
    platform: Optional[str] = None
    suppress_automation_signal: bool = False

    def is_empty(self) -> bool:
        return not (
            self.user_agent
            or self.accept_language
            or self.platform
            or self.suppress_automation_signal
        )


@dataclass
class CrawlSummary:
    """Final counters of a crawl run."""
    run_id: str
    status: CrawlStatus
    processed: int = 0
    queued: int = 0
    started_at: int = 0
    finished_at: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data


class CrawlRun:
    """
    Handle of one crawl run.

    Returned by ``CrawlEngine.start_crawl``. Cancellation is cooperative: it
    sets a flag that the run loop checks once per iteration and wakes any
    politeness pause in progress.
    """

    def __init__(self, start_url: str, run_id: Optional[str] = None, started_at: Optional[int] = None):
        self.started_at = started_at if started_at is not None else now_ms()
        self.run_id = run_id or self.new_run_id(self.started_at)
        self.start_url = start_url
        self.status = CrawlStatus.IDLE
        self.processed = 0
        self.queued = 0
        self.finished_at: Optional[int] = None
        self.error: Optional[str] = None
        self._cancel_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @staticmethod
    def new_run_id(started_at: int) -> str:
        return f"{RUN_ID_PREFIX}{started_at}_{secrets.token_hex(RUN_ID_RANDOM_BYTES)}"

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def cancel_event(self) -> asyncio.Event:
        return self._cancel_event

    @property
    def done(self) -> bool:
        return self.status in (CrawlStatus.FINISHED, CrawlStatus.CANCELLED, CrawlStatus.ERROR)

    def cancel(self) -> None:
        """Request cooperative cancellation."""
        self._cancel_event.set()

    def attach_task(self, task: "asyncio.Task[CrawlSummary]") -> None:
        self._task = task

    async def wait(self) -> CrawlSummary:
        """
        Wait for the run to end.

        Returns:
            CrawlSummary with the final counters

        Raises:
            Exception: Whatever stopped the run when it ended in the error state
        """
        if self._task is None:
            return self.summary()
        return await asyncio.shield(self._task)

    def summary(self) -> CrawlSummary:
        return CrawlSummary(
            run_id=self.run_id,
            status=self.status,
            processed=self.processed,
            queued=self.queued,
            started_at=self.started_at,
            finished_at=self.finished_at,
            error=self.error,
        )

    def __repr__(self) -> str:
        return f"CrawlRun(run_id={self.run_id!r}, status={self.status.value}, processed={self.processed})"
