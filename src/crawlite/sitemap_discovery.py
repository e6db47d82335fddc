"""Sitemap discovery: robots.txt and sitemap index expansion into a URL inventory.

Parsing is a permissive regex scan rather than an XML parser. Sitemap files are
untrusted and can be huge; a scanner that finds no matches in malformed input
is preferable to one that raises. CDATA sections and namespaced ``<loc>``
tags (``<sm:loc>``) are not recognized.
"""

import logging
import re
from collections import deque
from typing import Deque, Dict, List, Optional, Set, Tuple
from urllib.parse import urljoin, urlsplit

import httpx

from crawlite.config import settings
from crawlite.constants import (
    DEFAULT_SITEMAP_MAX_URLS,
    MAX_SITEMAP_MAX_URLS,
    MAX_SITEMAPS_VISITED,
    MIN_SITEMAP_MAX_URLS,
    ROBOTS_TXT_MAX_BYTES,
    SITEMAP_MAX_BYTES,
    SITEMAP_WELL_KNOWN_PATHS,
)
from crawlite.errors import FetchFailedError, InvalidURLError
from crawlite.infrastructure.rate_limiter import TokenBucketLimiter
from crawlite.models import SitemapInventory, SitemapUrlMeta
from crawlite.url_policy import normalize_url, safe_normalize_url

logger = logging.getLogger(__name__)

_XML_ENTITIES = (
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&apos;", "'"),
    ("&amp;", "&"),  # last, so "&amp;lt;" decodes to "&lt;"
)

_LOC_RE = re.compile(r"<loc[^>]*>([\s\S]*?)</loc>", re.IGNORECASE)
_URL_BLOCK_RE = re.compile(r"<url\b[^>]*>([\s\S]*?)</url>", re.IGNORECASE)
_SITEMAP_INDEX_RE = re.compile(r"<sitemapindex\b", re.IGNORECASE)
_ROBOTS_SITEMAP_RE = re.compile(r"^sitemap:\s*(.+)$", re.IGNORECASE)
_TAG_RE_CACHE: Dict[str, re.Pattern] = {}


def clamp_max_urls(value: Optional[int]) -> int:
    """Clamp a requested inventory size to the supported range."""
    if value is None or isinstance(value, bool):
        return DEFAULT_SITEMAP_MAX_URLS
    try:
        number = int(value)
    except (TypeError, ValueError):
        return DEFAULT_SITEMAP_MAX_URLS
    return max(MIN_SITEMAP_MAX_URLS, min(MAX_SITEMAP_MAX_URLS, number))


def decode_xml_entities(value: str) -> str:
    """Decode the five predefined XML entities."""
    text = value or ""
    for entity, char in _XML_ENTITIES:
        text = text.replace(entity, char)
    return text


def _first_tag_value(block: str, tag: str) -> str:
    pattern = _TAG_RE_CACHE.get(tag)
    if pattern is None:
        pattern = re.compile(rf"<{tag}[^>]*>([\s\S]*?)</{tag}>", re.IGNORECASE)
        _TAG_RE_CACHE[tag] = pattern
    match = pattern.search(block)
    if not match:
        return ""
    return decode_xml_entities(match.group(1)).strip()


def extract_xml_locs(xml: str, limit: Optional[int] = None) -> List[str]:
    """
    Extract every non-empty ``<loc>`` value in document order.

    Args:
        xml: Sitemap or sitemap index body
        limit: Stop after this many values (None for no limit)

    Returns:
        Decoded, trimmed loc values
    """
    out: List[str] = []
    for match in _LOC_RE.finditer(xml or ""):
        loc = decode_xml_entities(match.group(1)).strip()
        if not loc:
            continue
        out.append(loc)
        if limit is not None and len(out) >= limit:
            break
    return out


def extract_xml_url_entries(xml: str, limit: Optional[int] = None) -> List[Tuple[str, SitemapUrlMeta]]:
    """
    Extract ``<url>`` blocks as ``(loc, meta)`` pairs.

    Blocks without a ``<loc>`` are skipped.

    Args:
        xml: Sitemap body
        limit: Stop after this many entries (None for no limit)

    Returns:
        List of (loc, SitemapUrlMeta) tuples
    """
    out: List[Tuple[str, SitemapUrlMeta]] = []
    for match in _URL_BLOCK_RE.finditer(xml or ""):
        block = match.group(1)
        loc = _first_tag_value(block, "loc")
        if not loc:
            continue
        meta = SitemapUrlMeta(
            lastmod=_first_tag_value(block, "lastmod") or None,
            changefreq=_first_tag_value(block, "changefreq") or None,
            priority=_first_tag_value(block, "priority") or None,
        )
        out.append((loc, meta))
        if limit is not None and len(out) >= limit:
            break
    return out


def parse_robots_sitemaps(robots_txt: str, base_url: str) -> List[str]:
    """Return the targets of every ``Sitemap:`` directive in a robots.txt body."""
    out: List[str] = []
    for line in (robots_txt or "").splitlines():
        match = _ROBOTS_SITEMAP_RE.match(line.strip())
        if not match:
            continue
        target = match.group(1).strip()
        if target:
            out.append(urljoin(base_url, target))
    return out


async def fetch_url_text(
    client: httpx.AsyncClient,
    url: str,
    max_bytes: int,
) -> str:
    """
    Fetch a URL as text, keeping at most ``max_bytes`` of the body.

    Args:
        client: HTTP client to use
        url: URL to fetch
        max_bytes: Body size cap; longer bodies are truncated

    Returns:
        Decoded response body

    Raises:
        FetchFailedError: On transport errors, an unusable URL or a non-2xx status
    """
    try:
        async with client.stream("GET", url) as response:
            if not 200 <= response.status_code < 300:
                raise FetchFailedError(url, response.status_code)

            chunks: List[bytes] = []
            size = 0
            async for chunk in response.aiter_bytes():
                remaining = max_bytes - size
                if remaining <= 0:
                    break
                chunks.append(chunk[:remaining])
                size += min(len(chunk), remaining)

            body = b"".join(chunks)
            encoding = response.charset_encoding or "utf-8"
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        raise FetchFailedError(url, message=f"fetch failed ({e.__class__.__name__})") from e

    try:
        return body.decode(encoding, errors="replace")
    except LookupError:
        return body.decode("utf-8", errors="replace")


class SitemapDiscoverer:
    """
    Build a flat URL inventory from a site's sitemaps.

    Candidates are ``/sitemap.xml``, ``/sitemap_index.xml`` and every
    ``Sitemap:`` directive in ``/robots.txt``. They are processed FIFO and
    de-duplicated by normalized URL; sitemap indexes push their children back
    onto the queue. A failed or non-2xx fetch skips that candidate only.

    Holds no state between ``discover`` calls, so one instance may serve
    concurrent discoveries.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        limiter: Optional[TokenBucketLimiter] = None,
        user_agent: Optional[str] = None,
        max_sitemaps: int = MAX_SITEMAPS_VISITED,
    ):
        """
        Initialize the discoverer.

        Args:
            client: Shared HTTP client (a private one is opened per call if None)
            limiter: Optional shared fetch budget
            user_agent: User agent for the private client
            max_sitemaps: Cap on sitemap files visited per discovery
        """
        self._client = client
        self._limiter = limiter
        self.user_agent = user_agent or settings.USER_AGENT
        self.max_sitemaps = max_sitemaps

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            follow_redirects=True,
            timeout=settings.HTTP_TIMEOUT,
            headers={
                "User-Agent": self.user_agent,
                "Accept": "application/xml, text/xml, text/plain, */*",
            },
        )

    async def _fetch(self, client: httpx.AsyncClient, url: str, max_bytes: int) -> Optional[str]:
        if self._limiter is not None:
            await self._limiter.acquire()
        try:
            return await fetch_url_text(client, url, max_bytes)
        except FetchFailedError as e:
            logger.debug(f"Skipping {url}: {e}")
            return None

    async def discover(self, seed_url: str, max_urls: Optional[int] = None) -> SitemapInventory:
        """
        Discover the sitemap URL inventory of the seed's origin.

        Args:
            seed_url: Any URL on the site (bare domains are accepted)
            max_urls: Inventory size cap, clamped to [1, 2000000]

        Returns:
            SitemapInventory (empty when the seed does not parse)
        """
        try:
            seed = normalize_url(seed_url)
        except InvalidURLError as e:
            logger.warning(f"Sitemap discovery skipped: {e}")
            return SitemapInventory()

        limit = clamp_max_urls(max_urls)

        if self._client is not None:
            return await self._discover(self._client, seed, limit)

        async with self._new_client() as client:
            return await self._discover(client, seed, limit)

    async def _discover(self, client: httpx.AsyncClient, seed: str, limit: int) -> SitemapInventory:
        parts = urlsplit(seed)
        origin = f"{parts.scheme}://{parts.netloc}"

        candidates: List[str] = [f"{origin}{path}" for path in SITEMAP_WELL_KNOWN_PATHS]
        robots_txt = await self._fetch(client, f"{origin}/robots.txt", ROBOTS_TXT_MAX_BYTES)
        if robots_txt:
            for target in parse_robots_sitemaps(robots_txt, f"{origin}/"):
                if target not in candidates:
                    candidates.append(target)

        queue: Deque[str] = deque(candidates)
        sitemaps_seen: Set[str] = set()
        urls_seen: Set[str] = set()
        sitemaps: List[str] = []
        urls: List[str] = []
        url_meta_by_url: Dict[str, SitemapUrlMeta] = {}
        truncated = False

        while queue and not (truncated and len(urls) >= limit):
            candidate = queue.popleft()
            key = safe_normalize_url(candidate)
            if not key or key in sitemaps_seen:
                continue
            sitemaps_seen.add(key)

            body = await self._fetch(client, candidate, SITEMAP_MAX_BYTES)
            if not body:
                continue
            sitemaps.append(candidate)

            if _SITEMAP_INDEX_RE.search(body):
                for loc in extract_xml_locs(body):
                    child = safe_normalize_url(loc)
                    if not child or child in sitemaps_seen:
                        continue
                    if len(sitemaps_seen) + len(queue) >= self.max_sitemaps:
                        logger.warning(f"Sitemap cap of {self.max_sitemaps} reached at {candidate}")
                        truncated = True
                        break
                    queue.append(loc)
                continue

            entries = extract_xml_url_entries(body)
            if not entries:
                entries = [(loc, SitemapUrlMeta()) for loc in extract_xml_locs(body)]

            for loc, meta in entries:
                key = safe_normalize_url(loc)
                if not key or key in urls_seen:
                    continue
                if len(urls) >= limit:
                    truncated = True
                    break
                urls_seen.add(key)
                urls.append(loc)
                if not meta.is_empty():
                    url_meta_by_url[loc] = meta

            logger.debug(f"Parsed {candidate}: {len(entries)} entries, {len(urls)} URLs total")

        logger.info(
            f"Sitemap discovery for {origin}: {len(sitemaps)} sitemaps, "
            f"{len(urls)} URLs{' (truncated)' if truncated else ''}"
        )

        return SitemapInventory(
            sitemaps=tuple(sitemaps),
            urls=tuple(urls),
            url_meta_by_url=url_meta_by_url,
            truncated=truncated,
        )


async def discover_sitemap(
    seed_url: str,
    max_urls: Optional[int] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> SitemapInventory:
    """Convenience wrapper around ``SitemapDiscoverer.discover``."""
    return await SitemapDiscoverer(client=client).discover(seed_url, max_urls=max_urls)
