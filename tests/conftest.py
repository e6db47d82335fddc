"""Shared fixtures: in-memory renderers, a fake resolver and tiny sites."""

import asyncio
from typing import Any, Dict, Iterable, List, Optional

import pytest

from crawlite.errors import NavigationError
from crawlite.infrastructure.dns import HostIpCache
from crawlite.renderer.base import PageRenderer, ResponseInfo
from crawlite.url_policy import normalize_url


def html_page(title: str, *links: str, body: str = "") -> str:
    """Build a small HTML document with one anchor per link."""
    anchors = "".join(f'<a href="{href}">{href}</a>' for href in links)
    return (
        f"<html><head><title>{title}</title></head>"
        f"<body><h1>{title}</h1>{body}{anchors}</body></html>"
    )


class FakeRenderer(PageRenderer):
    """Script-less renderer serving pages from a dict keyed by URL."""

    def __init__(
        self,
        pages: Dict[str, str],
        hang: Iterable[str] = (),
        fail: Iterable[str] = (),
        redirects: Optional[Dict[str, str]] = None,
    ):
        super().__init__()
        self.pages = {normalize_url(url): html for url, html in pages.items()}
        self.hang = {normalize_url(url) for url in hang}
        self.fail = {normalize_url(url) for url in fail}
        self.redirects = {normalize_url(k): v for k, v in (redirects or {}).items()}
        self.navigations: List[str] = []
        self.stop_calls = 0
        self.available = True
        self._url = ""
        self._html = ""

    @property
    def is_available(self) -> bool:
        return self.available

    @property
    def navigated_keys(self) -> List[str]:
        return [normalize_url(url) for url in self.navigations]

    async def navigate(self, url: str) -> None:
        self.navigations.append(url)
        key = normalize_url(url)

        if key in self.hang:
            await asyncio.Event().wait()
        if key in self.fail:
            raise NavigationError(url, "connection refused")

        target = self.redirects.get(key, url)
        html = self.pages.get(normalize_url(target))
        if target != url:
            self._emit_response(ResponseInfo(url=url, status_code=301, headers={}))

        status = 200 if html is not None else 404
        html = html if html is not None else html_page("Not Found")
        self._emit_response(ResponseInfo(
            url=target,
            status_code=status,
            headers={"Content-Type": "text/html", "Content-Length": str(len(html.encode()))},
        ))
        self._url = target
        self._html = html
        await asyncio.sleep(0)

    async def stop(self) -> None:
        self.stop_calls += 1

    @property
    def current_url(self) -> str:
        return self._url

    async def content(self) -> str:
        return self._html


class RecordingRenderer(FakeRenderer):
    """Script-capable fake that records control-channel calls.

    Set ``fail_on`` to a set of method names that should raise.
    """

    def __init__(self, pages: Optional[Dict[str, str]] = None, fail_on: Iterable[str] = ()):
        super().__init__(pages or {})
        self.fail_on = set(fail_on)
        self.calls: List[tuple] = []
        self.attached = False
        self.init_scripts: Dict[int, str] = {}
        self.evaluated: List[str] = []
        self._next_handle = 1

    def _maybe_fail(self, name: str) -> None:
        if name in self.fail_on:
            raise RuntimeError(f"{name} refused")

    @property
    def supports_scripts(self) -> bool:
        return True

    @property
    def control_channel_attached(self) -> bool:
        return self.attached

    async def attach_control_channel(self) -> None:
        self.calls.append(("attach",))
        self._maybe_fail("attach")
        self.attached = True

    async def detach_control_channel(self) -> None:
        self.calls.append(("detach",))
        self._maybe_fail("detach")
        self.attached = False

    async def set_identity_override(self, user_agent=None, accept_language=None, platform=None) -> None:
        self.calls.append(("identity", user_agent, accept_language, platform))
        self._maybe_fail("identity")

    async def add_init_script(self, source: str) -> Any:
        self.calls.append(("add_init_script",))
        self._maybe_fail("add_init_script")
        handle = self._next_handle
        self._next_handle += 1
        self.init_scripts[handle] = source
        return handle

    async def remove_init_script(self, handle: Any) -> None:
        self.calls.append(("remove_init_script", handle))
        self._maybe_fail("remove_init_script")
        self.init_scripts.pop(handle, None)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.evaluated.append(script)
        self._maybe_fail("evaluate")
        return None

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]


class FakeResolver(HostIpCache):
    """Resolver that never touches the network."""

    def __init__(self, address: str = "192.0.2.10"):
        super().__init__()
        self.address = address
        self.lookups: List[str] = []

    async def lookup(self, host: str) -> str:
        self.lookups.append(host)
        if not host:
            return ""
        self._ip_by_host[host.lower()] = self.address
        return self.address


@pytest.fixture
def resolver():
    return FakeResolver()


@pytest.fixture
def small_site():
    """The three-page site: / -> /a -> {/b, external}, /b -> /a."""
    return {
        "https://example.test/": html_page("Home", "/a"),
        "https://example.test/a": html_page("A", "/b", "https://other.test/x"),
        "https://example.test/b": html_page("B", "/a"),
    }


@pytest.fixture
def fast_options():
    """Option overrides that disable politeness pacing."""
    return {"delay_ms": 0, "jitter_ms": 0}


@pytest.fixture
def make_renderer():
    """Factory for FakeRenderer instances."""
    return FakeRenderer


@pytest.fixture
def make_recording_renderer():
    """Factory for RecordingRenderer instances."""
    return RecordingRenderer
