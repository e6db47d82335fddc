"""In-memory collector of crawl results.

Mirrors what a UI store keeps: an ordered page map keyed by normalized URL,
plus the status and counters of the latest run.

    results = CrawlResults()
    engine.subscribe(results)
    await engine.crawl("https://example.com")
    for page in results.pages.values():
        ...
"""

from collections import OrderedDict
from typing import Dict, List, Optional

from crawlite.events import (
    CrawlCancelled,
    CrawlEvent,
    CrawlFailed,
    CrawlFinished,
    CrawlStarted,
    PageDiscovered,
    PageDone,
    PageLoading,
)
from crawlite.models import CrawlStatus, PageRecord


class CrawlResults:
    """Event listener that accumulates page records for one run at a time."""

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        """Forget everything collected so far."""
        self.pages: "OrderedDict[str, PageRecord]" = OrderedDict()
        self.failed_urls: List[str] = []
        self.status = CrawlStatus.IDLE
        self.run_id: Optional[str] = None
        self.start_url: Optional[str] = None
        self.current_url: Optional[str] = None
        self.processed = 0
        self.queued = 0
        self.error: Optional[str] = None

    def __call__(self, event: CrawlEvent) -> None:
        self.handle(event)

    def upsert(self, page: PageRecord) -> None:
        """Insert or update a page; a stub never replaces a done record."""
        key = page.key
        existing = self.pages.get(key)
        if existing is not None and existing.is_done and not page.is_done:
            return
        self.pages[key] = page

    def handle(self, event: CrawlEvent) -> None:
        if isinstance(event, CrawlStarted):
            self.reset()
            self.run_id = event.run_id
            self.start_url = event.start_url
            self.status = CrawlStatus.RUNNING
            return

        if self.run_id is not None and event.run_id != self.run_id:
            # Late events from a superseded run
            return

        if isinstance(event, PageDiscovered):
            self.upsert(event.page)
        elif isinstance(event, PageLoading):
            self.current_url = event.url
        elif isinstance(event, PageDone):
            self.upsert(event.page)
            if not event.ok:
                self.failed_urls.append(event.page.url)
        elif isinstance(event, CrawlFinished):
            self.status = CrawlStatus.FINISHED
            self.current_url = None
        elif isinstance(event, CrawlCancelled):
            self.status = CrawlStatus.CANCELLED
            self.current_url = None
        elif isinstance(event, CrawlFailed):
            self.status = CrawlStatus.ERROR
            self.error = event.error
            self.current_url = None

        self.processed = event.processed
        self.queued = event.queued

    @property
    def done_pages(self) -> List[PageRecord]:
        return [page for page in self.pages.values() if page.is_done]

    def to_dict(self) -> Dict:
        return {
            "run_id": self.run_id,
            "start_url": self.start_url,
            "status": self.status.value,
            "processed": self.processed,
            "queued": self.queued,
            "error": self.error,
            "pages": [page.to_dict() for page in self.pages.values()],
        }
