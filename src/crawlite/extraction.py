"""
Page data extraction producers.

Both producers return the same ``ExtractedPage`` shape:

- ``ScriptExtractor`` runs ``EXTRACT_PAGE_DATA_JS`` inside a script-capable
  renderer and coerces whatever comes back.
- ``HtmlExtractor`` parses the serialized document with BeautifulSoup, for
  renderers that cannot run scripts.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from crawlite.constants import (
    HEADING_LEVELS,
    MAX_HEADING_TEXTS,
    MAX_META_LENGTH,
    MAX_NESTED_HEADINGS,
    MAX_TEXT_LENGTH,
    SETTLE_DELAY_MS,
)
from crawlite.errors import ExtractionFailedError
from crawlite.models import LinkDetail, empty_heading_counts, empty_heading_texts
from crawlite.renderer.base import PageRenderer
from crawlite.url_policy import NON_HTML_EXTENSIONS, is_non_html_resource

logger = logging.getLogger(__name__)


# Waits one animation frame plus a short timeout so client-side rendering settles
SETTLE_SCRIPT = (
    "() => new Promise((resolve) => requestAnimationFrame(() => "
    f"setTimeout(resolve, {SETTLE_DELAY_MS})))"
)

_BLOCKED_EXTENSIONS_JS = "[" + ",".join(f"'{ext}'" for ext in sorted(NON_HTML_EXTENSIONS)) + "]"

# Called with a single boolean argument: whether to de-duplicate links
EXTRACT_PAGE_DATA_JS = """
(dedupeLinks) => {
  const LEVELS = ['h1', 'h2', 'h3', 'h4', 'h5', 'h6'];
  const BLOCKED = new Set(%(blocked)s);
  const text = (v) => (typeof v === 'string' ? v : '');
  const normText = (s) => text(s).trim().replace(/\\s+/g, ' ').slice(0, %(max_text)d);
  const pickMeta = (name) => {
    const el = document.querySelector('meta[name="' + name + '"]');
    return text(el ? el.getAttribute('content') : '').trim().slice(0, %(max_meta)d);
  };
  const isVisible = (el) => {
    try {
      if (!el.getClientRects().length) return false;
      const style = window.getComputedStyle(el);
      return !(style.display === 'none' || style.visibility === 'hidden' || style.opacity === '0');
    } catch (e) { return true; }
  };
  const uniq = (arr, limit) => {
    const seen = new Set();
    const out = [];
    for (const item of arr) {
      const v = String(item || '').trim();
      if (!v || seen.has(v.toLowerCase())) continue;
      seen.add(v.toLowerCase());
      out.push(v);
      if (limit && out.length >= limit) break;
    }
    return out;
  };
  const count = (sel) => { try { return document.querySelectorAll(sel).length; } catch (e) { return 0; } };
  const absUrl = (raw) => { try { return new URL(String(raw || ''), location.href).toString(); } catch (e) { return ''; } };
  const isHttp = (u) => /^https?:\\/\\//i.test(u);
  const isDocOrMedia = (u) => {
    try {
      const last = new URL(u).pathname.toLowerCase().split('/').pop();
      return last.includes('.') && BLOCKED.has(last.split('.').pop());
    } catch (e) { return false; }
  };

  let h1 = '';
  for (const el of document.querySelectorAll('h1')) {
    const t = normText(el.textContent);
    if (t && isVisible(el) && t.length > h1.length) h1 = t;
  }

  const headingsText = {}, headingsCount = {}, headingsRawCount = {}, headingsEmptyCount = {};
  for (const lvl of LEVELS) {
    const nodes = Array.from(document.querySelectorAll(lvl));
    headingsText[lvl] = uniq(nodes.filter(isVisible).map((el) => normText(el.textContent)), %(max_headings)d);
    headingsRawCount[lvl] = nodes.length;
    headingsCount[lvl] = headingsText[lvl].length || nodes.length;
    headingsEmptyCount[lvl] = nodes.filter((el) => !normText(el.textContent)).length;
  }

  const nested = [];
  for (const parent of document.querySelectorAll('h1,h2,h3,h4,h5,h6')) {
    const child = parent.querySelector('h1,h2,h3,h4,h5,h6');
    if (!child) continue;
    const issue = parent.tagName.toLowerCase() + ' contains ' + child.tagName.toLowerCase();
    if (!nested.includes(issue)) nested.push(issue);
    if (nested.length >= %(max_nested)d) break;
  }

  let htmlBytes = null;
  try { htmlBytes = new TextEncoder().encode(document.documentElement.outerHTML).length; } catch (e) {}

  const links = [], linksDetailed = [], images = [], scripts = [], stylesheets = [], misc = [];
  for (const a of document.querySelectorAll('a[href]')) {
    const raw = text(a.getAttribute('href')).trim();
    if (!raw) continue;
    if (raw.startsWith('#') || /^(mailto|tel|javascript):/i.test(raw)) { misc.push(raw); continue; }
    const abs = absUrl(raw);
    if (abs && isHttp(abs) && !isDocOrMedia(abs)) {
      links.push(abs);
      linksDetailed.push({ url: abs, anchor: normText(a.textContent) });
    } else {
      misc.push(abs || raw);
    }
  }
  const collect = (sel, attr, target) => {
    for (const el of document.querySelectorAll(sel)) {
      const abs = absUrl(el.getAttribute(attr));
      if (!abs) continue;
      (isHttp(abs) ? target : misc).push(abs);
    }
  };
  collect('img[src]', 'src', images);
  collect('script[src]', 'src', scripts);
  collect('link[rel="stylesheet"][href]', 'href', stylesheets);
  for (const l of document.querySelectorAll('link[href]')) {
    if (text(l.getAttribute('rel')).toLowerCase().includes('stylesheet')) continue;
    const abs = absUrl(l.getAttribute('href'));
    if (abs) misc.push(abs);
  }

  const canonicalEl = document.querySelector('link[rel="canonical"][href]');
  const canonicalUrl = canonicalEl ? String(canonicalEl.href || '') : '';
  const viewport = document.querySelector('meta[name="viewport"]');
  const exact = (arr) => Array.from(new Set(arr));
  let detailed = linksDetailed;
  if (dedupeLinks) {
    const byUrl = new Map();
    for (const it of linksDetailed) {
      const prev = byUrl.get(it.url);
      if (!prev || (!prev.anchor && it.anchor)) byUrl.set(it.url, it);
    }
    detailed = Array.from(byUrl.values());
  }

  return {
    url: String(location.href || ''),
    title: text(document.title).trim(),
    h1,
    hasViewport: Boolean(viewport && text(viewport.getAttribute('content')).trim()),
    hasCanonical: Boolean(canonicalUrl.trim()),
    canonicalUrl,
    description: pickMeta('description'),
    keywords: pickMeta('keywords'),
    metaRobots: pickMeta('robots'),
    headingsText, headingsCount, headingsRawCount, headingsEmptyCount,
    nestedHeadings: nested,
    htmlBytes,
    links: dedupeLinks ? exact(links) : links,
    linksDetailed: detailed,
    images: exact(images),
    scripts: exact(scripts),
    stylesheets: exact(stylesheets),
    misc: exact(misc),
  };
}
""" % {
    "blocked": _BLOCKED_EXTENSIONS_JS,
    "max_text": MAX_TEXT_LENGTH,
    "max_meta": MAX_META_LENGTH,
    "max_headings": MAX_HEADING_TEXTS,
    "max_nested": MAX_NESTED_HEADINGS,
}

_MISC_LINK_RE = re.compile(r"^(mailto|tel|javascript):", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def _int_or_zero(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return int(value)


def _heading_counts(value: Any) -> Dict[str, int]:
    counts = empty_heading_counts()
    if isinstance(value, dict):
        for level in HEADING_LEVELS:
            counts[level] = _int_or_zero(value.get(level))
    return counts


def _heading_texts(value: Any) -> Dict[str, List[str]]:
    texts = empty_heading_texts()
    if isinstance(value, dict):
        for level in HEADING_LEVELS:
            texts[level] = _str_list(value.get(level))
    return texts


def _norm_text(value: Optional[str], limit: int = MAX_TEXT_LENGTH) -> str:
    return _WHITESPACE_RE.sub(" ", (value or "").strip())[:limit]


def _uniq(items: Iterable[str], limit: Optional[int] = None, case_insensitive: bool = False) -> List[str]:
    seen = set()
    out: List[str] = []
    for item in items:
        value = (item or "").strip()
        key = value.lower() if case_insensitive else value
        if not value or key in seen:
            continue
        seen.add(key)
        out.append(value)
        if limit is not None and len(out) >= limit:
            break
    return out


def _dedupe_link_details(details: List[LinkDetail]) -> List[LinkDetail]:
    by_url: Dict[str, LinkDetail] = {}
    for detail in details:
        previous = by_url.get(detail.url)
        if previous is None or (not previous.anchor and detail.anchor):
            by_url[detail.url] = detail
    return list(by_url.values())


@dataclass
class ExtractedPage:
    """SEO fields harvested from one loaded document."""

    url: str = ""
    title: str = ""
    h1: str = ""
    has_viewport: bool = False
    has_canonical: bool = False
    canonical_url: str = ""
    meta_robots: str = ""
    description: str = ""
    keywords: str = ""
    headings_text: Dict[str, List[str]] = field(default_factory=empty_heading_texts)
    headings_count: Dict[str, int] = field(default_factory=empty_heading_counts)
    headings_raw_count: Dict[str, int] = field(default_factory=empty_heading_counts)
    headings_empty_count: Dict[str, int] = field(default_factory=empty_heading_counts)
    nested_headings: List[str] = field(default_factory=list)
    html_bytes: Optional[int] = None
    links: List[str] = field(default_factory=list)
    links_detailed: List[LinkDetail] = field(default_factory=list)
    images: List[str] = field(default_factory=list)
    scripts: List[str] = field(default_factory=list)
    stylesheets: List[str] = field(default_factory=list)
    misc: List[str] = field(default_factory=list)

    @classmethod
    def empty(cls) -> "ExtractedPage":
        """All-empty extraction used when the extractor fails."""
        return cls()

    @classmethod
    def from_script_result(cls, data: Any) -> "ExtractedPage":
        """
        Coerce the raw value returned by ``EXTRACT_PAGE_DATA_JS``.

        Fields of the wrong type become empty values instead of raising.
        """
        if not isinstance(data, dict):
            raise ExtractionFailedError(f"extraction script returned {type(data).__name__}")

        details: List[LinkDetail] = []
        raw_details = data.get("linksDetailed")
        if isinstance(raw_details, list):
            for item in raw_details:
                if not isinstance(item, dict):
                    continue
                url = str(item.get("url") or "").strip()
                if url:
                    details.append(LinkDetail(url=url, anchor=str(item.get("anchor") or "").strip()))

        html_bytes = data.get("htmlBytes")
        if isinstance(html_bytes, bool) or not isinstance(html_bytes, (int, float)):
            html_bytes = None

        return cls(
            url=_str(data.get("url")),
            title=_str(data.get("title")),
            h1=_str(data.get("h1")),
            has_viewport=bool(data.get("hasViewport")),
            has_canonical=bool(data.get("hasCanonical")),
            canonical_url=_str(data.get("canonicalUrl")),
            meta_robots=_str(data.get("metaRobots")),
            description=_str(data.get("description")),
            keywords=_str(data.get("keywords")),
            headings_text=_heading_texts(data.get("headingsText")),
            headings_count=_heading_counts(data.get("headingsCount")),
            headings_raw_count=_heading_counts(data.get("headingsRawCount")),
            headings_empty_count=_heading_counts(data.get("headingsEmptyCount")),
            nested_headings=_str_list(data.get("nestedHeadings")),
            html_bytes=int(html_bytes) if html_bytes is not None else None,
            links=_str_list(data.get("links")),
            links_detailed=details,
            images=_str_list(data.get("images")),
            scripts=_str_list(data.get("scripts")),
            stylesheets=_str_list(data.get("stylesheets")),
            misc=_str_list(data.get("misc")),
        )


class ScriptExtractor:
    """Extracts page data by running a script inside the renderer."""

    async def extract(self, renderer: PageRenderer, deduplicate_links: bool = True) -> ExtractedPage:
        """
        Extract page data from the renderer's current document.

        Raises:
            ExtractionFailedError: If the script cannot run or returns garbage
        """
        try:
            data = await renderer.evaluate(EXTRACT_PAGE_DATA_JS, bool(deduplicate_links))
        except Exception as e:
            raise ExtractionFailedError(f"extraction script failed: {e}") from e
        return ExtractedPage.from_script_result(data)


class HtmlExtractor:
    """Extracts page data by parsing the serialized document with BeautifulSoup.

    Without a layout engine every element counts as visible.
    """

    def __init__(self, parser: str = "html.parser"):
        self.parser = parser

    async def extract(self, renderer: PageRenderer, deduplicate_links: bool = True) -> ExtractedPage:
        try:
            html = await renderer.content()
        except Exception as e:
            raise ExtractionFailedError(f"could not read document: {e}") from e
        return self.extract_html(html, renderer.current_url, deduplicate_links)

    def extract_html(self, html: str, base_url: str, deduplicate_links: bool = True) -> ExtractedPage:
        """Extract page data from an HTML string.

        Args:
            html: Document HTML
            base_url: URL the document was loaded from
            deduplicate_links: De-duplicate links keeping first-seen order

        Returns:
            ExtractedPage
        """
        soup = BeautifulSoup(html or "", self.parser)
        document_url = base_url

        base_tag = soup.find("base", href=True)
        if base_tag:
            base_url = urljoin(base_url, base_tag["href"])

        def meta(name: str) -> str:
            tag = soup.find("meta", attrs={"name": re.compile(f"^{name}$", re.IGNORECASE)})
            return (tag.get("content") or "").strip()[:MAX_META_LENGTH] if tag else ""

        def absolute(raw: Optional[str]) -> str:
            try:
                return urljoin(base_url, (raw or "").strip())
            except ValueError:
                return ""

        title = soup.title.get_text().strip() if soup.title else ""

        headings_text = empty_heading_texts()
        headings_count = empty_heading_counts()
        headings_raw_count = empty_heading_counts()
        headings_empty_count = empty_heading_counts()
        for level in HEADING_LEVELS:
            nodes = soup.find_all(level)
            texts = [_norm_text(node.get_text()) for node in nodes]
            headings_text[level] = _uniq(texts, limit=MAX_HEADING_TEXTS, case_insensitive=True)
            headings_raw_count[level] = len(nodes)
            headings_count[level] = len(headings_text[level]) or len(nodes)
            headings_empty_count[level] = sum(1 for t in texts if not t)

        h1 = max(headings_text["h1"], key=len, default="")

        nested: List[str] = []
        for parent in soup.find_all(list(HEADING_LEVELS)):
            child = parent.find(list(HEADING_LEVELS))
            if child is None:
                continue
            issue = f"{parent.name} contains {child.name}"
            if issue not in nested:
                nested.append(issue)
            if len(nested) >= MAX_NESTED_HEADINGS:
                break

        links: List[str] = []
        details: List[LinkDetail] = []
        misc: List[str] = []
        for anchor in soup.find_all("a", href=True):
            raw = anchor["href"].strip()
            if not raw:
                continue
            if raw.startswith("#") or _MISC_LINK_RE.match(raw):
                misc.append(raw)
                continue
            url = absolute(raw)
            if url.lower().startswith(("http://", "https://")) and not is_non_html_resource(url):
                links.append(url)
                details.append(LinkDetail(url=url, anchor=_norm_text(anchor.get_text())))
            else:
                misc.append(url or raw)

        def collect(tags, attr: str) -> List[str]:
            out = []
            for tag in tags:
                url = absolute(tag.get(attr))
                if not url:
                    continue
                if url.lower().startswith(("http://", "https://")):
                    out.append(url)
                else:
                    misc.append(url)
            return out

        def has_rel(tag, value: str) -> bool:
            rel = tag.get("rel") or []
            if isinstance(rel, str):
                rel = rel.split()
            return value in [r.lower() for r in rel]

        link_tags = soup.find_all("link", href=True)
        images = collect(soup.find_all("img", src=True), "src")
        scripts = collect(soup.find_all("script", src=True), "src")
        stylesheets = collect([t for t in link_tags if has_rel(t, "stylesheet")], "href")
        for tag in link_tags:
            if not has_rel(tag, "stylesheet"):
                url = absolute(tag["href"])
                if url:
                    misc.append(url)

        canonical_tag = next((t for t in link_tags if has_rel(t, "canonical")), None)
        canonical_url = absolute(canonical_tag["href"]) if canonical_tag else ""
        viewport = soup.find("meta", attrs={"name": re.compile("^viewport$", re.IGNORECASE)})

        if deduplicate_links:
            links = _uniq(links)
            details = _dedupe_link_details(details)

        return ExtractedPage(
            url=document_url,
            title=title,
            h1=h1,
            has_viewport=bool(viewport and (viewport.get("content") or "").strip()),
            has_canonical=bool(canonical_url.strip()),
            canonical_url=canonical_url,
            meta_robots=meta("robots"),
            description=meta("description"),
            keywords=meta("keywords"),
            headings_text=headings_text,
            headings_count=headings_count,
            headings_raw_count=headings_raw_count,
            headings_empty_count=headings_empty_count,
            nested_headings=nested,
            html_bytes=len((html or "").encode("utf-8")),
            links=links,
            links_detailed=details,
            images=_uniq(images),
            scripts=_uniq(scripts),
            stylesheets=_uniq(stylesheets),
            misc=_uniq(misc),
        )
