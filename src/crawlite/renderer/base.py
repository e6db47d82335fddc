"""
Renderer contract consumed by the crawl scheduler.

A renderer wraps one navigable surface (a browser page, or a plain HTTP
client for static sites). The crawler drives it one page at a time.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from crawlite.errors import ScriptUnsupportedError

logger = logging.getLogger(__name__)


@dataclass
class ResponseInfo:
    """Metadata of a completed top-level navigation response."""
    url: str
    status_code: Optional[int] = None
    headers: Dict[str, str] = field(default_factory=dict)


ResponseCallback = Callable[[ResponseInfo], None]


class PageRenderer(ABC):
    """
    Abstract page renderer.

    Subclasses implement navigation, document access and the low-level
    control channel used by the stealth override manager. Script-related
    methods default to raising ``ScriptUnsupportedError`` and the control
    channel defaults to a no-op, so a script-less renderer only needs the
    navigation and content methods.
    """

    def __init__(self):
        self._response_callbacks: List[ResponseCallback] = []

    # --- Lifecycle ---

    @property
    def is_available(self) -> bool:
        """False once the underlying engine is gone."""
        return True

    @property
    def supports_scripts(self) -> bool:
        """Whether ``evaluate`` can run scripts in the loaded document."""
        return False

    # --- Navigation ---

    @abstractmethod
    async def navigate(self, url: str) -> None:
        """Load ``url``. Raises NavigationError on failure; may be cancelled."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop an in-flight navigation (best-effort)."""

    @property
    @abstractmethod
    def current_url(self) -> str:
        """URL of the current document after redirects."""

    @abstractmethod
    async def content(self) -> str:
        """Serialized HTML of the current document."""

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        """Evaluate a script in the current document.

        ``script`` may be an expression or a function source; functions are
        called with ``arg``.
        """
        raise ScriptUnsupportedError(f"{type(self).__name__} cannot run scripts")

    # --- Control channel and overrides ---

    @property
    def control_channel_attached(self) -> bool:
        return False

    async def attach_control_channel(self) -> None:
        """Attach the low-level control channel used for overrides."""

    async def detach_control_channel(self) -> None:
        """Detach the low-level control channel."""

    async def add_init_script(self, source: str) -> Any:
        """Install a script that runs before page scripts on every new document.

        Returns:
            Opaque handle for ``remove_init_script``
        """
        raise ScriptUnsupportedError(f"{type(self).__name__} cannot install init scripts")

    async def remove_init_script(self, handle: Any) -> None:
        raise ScriptUnsupportedError(f"{type(self).__name__} cannot remove init scripts")

    async def set_identity_override(
        self,
        user_agent: Optional[str] = None,
        accept_language: Optional[str] = None,
        platform: Optional[str] = None,
    ) -> None:
        """Override the network identity presented by this renderer."""

    # --- Network metadata ---

    def on_response_completed(self, callback: ResponseCallback) -> None:
        """Register a callback for completed top-level navigation responses."""
        if callback not in self._response_callbacks:
            self._response_callbacks.append(callback)

    def _emit_response(self, info: ResponseInfo) -> None:
        for callback in list(self._response_callbacks):
            try:
                callback(info)
            except Exception as e:
                logger.warning(f"Response callback failed for {info.url}: {e}")


def read_header_value(headers: Optional[Dict[str, Any]], name: str) -> str:
    """Case-insensitive header lookup; list values yield their first item."""
    if not isinstance(headers, dict):
        return ""
    target = name.lower()
    for key, value in headers.items():
        if str(key).lower() != target:
            continue
        if isinstance(value, str):
            return value
        if isinstance(value, (list, tuple)) and value and isinstance(value[0], str):
            return value[0]
    return ""


def parse_content_length(headers: Optional[Dict[str, Any]]) -> Optional[int]:
    """Parse ``Content-Length``; anything but a non-negative number gives None."""
    value = read_header_value(headers, "content-length").strip()
    if not value:
        return None
    try:
        number = float(value)
    except ValueError:
        return None
    if number != number or number < 0 or number == float("inf"):
        return None
    return int(number)
