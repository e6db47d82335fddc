"""Crawl lifecycle events and the bus that delivers them to listeners."""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, List, Union

from crawlite.models import PageRecord

logger = logging.getLogger(__name__)


@dataclass
class CrawlStarted:
    type: ClassVar[str] = "started"
    run_id: str
    started_at: int
    start_url: str
    options: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "run_id": self.run_id,
            "started_at": self.started_at,
            "start_url": self.start_url,
            "options": dict(self.options),
        }


@dataclass
class PageLoading:
    type: ClassVar[str] = "page:loading"
    run_id: str
    url: str
    processed: int
    queued: int

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "run_id": self.run_id,
            "url": self.url,
            "processed": self.processed,
            "queued": self.queued,
        }


@dataclass
class PageDiscovered:
    """A URL was accepted into the queue; ``page`` is a stub record."""
    type: ClassVar[str] = "page:discovered"
    run_id: str
    page: PageRecord
    processed: int
    queued: int

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "run_id": self.run_id,
            "page": self.page.to_dict(),
            "processed": self.processed,
            "queued": self.queued,
        }


@dataclass
class PageDone:
    """A page was loaded and extracted. ``ok`` is False when the load failed or timed out."""
    type: ClassVar[str] = "page:done"
    run_id: str
    page: PageRecord
    processed: int
    queued: int
    ok: bool

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "run_id": self.run_id,
            "page": self.page.to_dict(),
            "processed": self.processed,
            "queued": self.queued,
            "ok": self.ok,
        }


@dataclass
class CrawlCancelled:
    type: ClassVar[str] = "cancelled"
    run_id: str
    processed: int
    queued: int
    finished_at: int

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "run_id": self.run_id,
            "processed": self.processed,
            "queued": self.queued,
            "finished_at": self.finished_at,
        }


@dataclass
class CrawlFinished:
    type: ClassVar[str] = "finished"
    run_id: str
    processed: int
    queued: int
    finished_at: int

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "run_id": self.run_id,
            "processed": self.processed,
            "queued": self.queued,
            "finished_at": self.finished_at,
        }


@dataclass
class CrawlFailed:
    """The run loop stopped on an unexpected error."""
    type: ClassVar[str] = "error"
    run_id: str
    processed: int
    queued: int
    error: str
    finished_at: int

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "run_id": self.run_id,
            "processed": self.processed,
            "queued": self.queued,
            "error": self.error,
            "finished_at": self.finished_at,
        }


CrawlEvent = Union[
    CrawlStarted, PageLoading, PageDiscovered, PageDone, CrawlCancelled, CrawlFinished, CrawlFailed
]

EventListener = Callable[[CrawlEvent], None]


class EventBus:
    """
    Synchronous fan-out of crawl events.

    A listener that raises is logged and skipped; it never interrupts a run.
    """

    def __init__(self):
        self._listeners: List[EventListener] = []

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """
        Register a listener.

        Returns:
            Function that unsubscribes the listener
        """
        self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: EventListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def emit(self, event: CrawlEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"Event listener failed on {event.type}: {e}")

    def __len__(self) -> int:
        return len(self._listeners)


def is_terminal(event: CrawlEvent) -> bool:
    """True for the event that ends a run."""
    return isinstance(event, (CrawlCancelled, CrawlFinished, CrawlFailed))
