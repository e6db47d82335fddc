"""Tests for sitemap discovery against a mocked HTTP transport."""

from typing import Dict, List
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from crawlite.errors import FetchFailedError
from crawlite.sitemap_discovery import (
    SitemapDiscoverer,
    clamp_max_urls,
    decode_xml_entities,
    extract_xml_locs,
    extract_xml_url_entries,
    fetch_url_text,
    parse_robots_sitemaps,
)

pytest_plugins = ('pytest_asyncio',)

ORIGIN = "https://shop.test"


def urlset(*locs: str) -> str:
    body = "".join(f"<url><loc>{loc}</loc></url>" for loc in locs)
    return f'<?xml version="1.0"?><urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{body}</urlset>'


def sitemap_index(*locs: str) -> str:
    body = "".join(f"<sitemap><loc>{loc}</loc></sitemap>" for loc in locs)
    return f'<?xml version="1.0"?><sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{body}</sitemapindex>'


def make_client(routes: Dict[str, object], requested: List[str] = None) -> httpx.AsyncClient:
    """Client whose transport serves ``routes`` (path -> body or status code)."""

    def handler(request: httpx.Request) -> httpx.Response:
        if requested is not None:
            requested.append(request.url.path)
        route = routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, text="not found")
        if isinstance(route, int):
            return httpx.Response(route, text="error")
        return httpx.Response(200, text=route)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestXmlScanning:
    """Tests for the regex-based XML scanners."""

    def test_extract_locs_decodes_entities(self):
        xml = urlset("https://shop.test/a?x=1&amp;y=2", "  https://shop.test/b  ")
        assert extract_xml_locs(xml) == ["https://shop.test/a?x=1&y=2", "https://shop.test/b"]

    def test_extract_locs_limit(self):
        xml = urlset(*[f"https://shop.test/{i}" for i in range(10)])
        assert len(extract_xml_locs(xml, limit=3)) == 3

    def test_empty_locs_skipped(self):
        assert extract_xml_locs("<loc>  </loc><loc>https://shop.test/x</loc>") == ["https://shop.test/x"]

    def test_malformed_xml_yields_nothing(self):
        assert extract_xml_locs("<urlset><loc>https://shop.test/a") == []
        assert extract_xml_url_entries("not xml at all") == []

    def test_url_entries_carry_meta(self):
        xml = (
            "<urlset><url><loc>https://shop.test/a</loc><lastmod>2024-01-02</lastmod>"
            "<changefreq>daily</changefreq><priority>0.8</priority></url>"
            "<url><lastmod>2024-01-01</lastmod></url>"
            "<url><loc>https://shop.test/b</loc></url></urlset>"
        )
        entries = extract_xml_url_entries(xml)
        assert [loc for loc, _ in entries] == ["https://shop.test/a", "https://shop.test/b"]
        meta = entries[0][1]
        assert (meta.lastmod, meta.changefreq, meta.priority) == ("2024-01-02", "daily", "0.8")
        assert entries[1][1].is_empty()

    def test_decode_amp_last(self):
        assert decode_xml_entities("&amp;lt;") == "&lt;"
        assert decode_xml_entities("&lt;&gt;&quot;&apos;") == "<>\"'"

    def test_parse_robots_sitemaps(self):
        robots = "User-agent: *\nDisallow: /admin\nSITEMAP: https://shop.test/s1.xml\nsitemap: /s2.xml\nSitemap:\n"
        assert parse_robots_sitemaps(robots, f"{ORIGIN}/") == [
            "https://shop.test/s1.xml",
            "https://shop.test/s2.xml",
        ]

    @pytest.mark.parametrize("value, expected", [
        (None, 200000),
        (0, 1),
        (-5, 1),
        (10, 10),
        (10**9, 2000000),
        ("50", 50),
        ("many", 200000),
    ])
    def test_clamp_max_urls(self, value, expected):
        assert clamp_max_urls(value) == expected


class TestFetchUrlText:
    """Tests for fetch_url_text."""

    @pytest.mark.asyncio
    async def test_body_is_capped(self):
        async with make_client({"/big": "x" * 1000}) as client:
            text = await fetch_url_text(client, f"{ORIGIN}/big", max_bytes=100)
        assert text == "x" * 100

    @pytest.mark.asyncio
    async def test_non_2xx_raises(self):
        async with make_client({"/gone": 410}) as client:
            with pytest.raises(FetchFailedError) as exc_info:
                await fetch_url_text(client, f"{ORIGIN}/gone", max_bytes=100)
        assert exc_info.value.status_code == 410

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(FetchFailedError):
                await fetch_url_text(client, f"{ORIGIN}/x", max_bytes=100)

    @pytest.mark.asyncio
    async def test_unusable_url_raises(self):
        """Test that a URL httpx refuses to send becomes FetchFailedError."""
        async with make_client({}) as client:
            with pytest.raises(FetchFailedError):
                await fetch_url_text(client, f"{ORIGIN}/bad\x01map.xml", max_bytes=100)


class TestSitemapDiscoverer:
    """Tests for SitemapDiscoverer.discover."""

    @pytest.mark.asyncio
    async def test_robots_and_well_known_paths(self):
        routes = {
            "/robots.txt": "User-agent: *\nSitemap: https://shop.test/custom.xml\n",
            "/sitemap.xml": (
                "<urlset><url><loc>https://shop.test/a</loc><lastmod>2024-05-01</lastmod></url>"
                "<url><loc>https://shop.test/b</loc></url></urlset>"
            ),
            "/custom.xml": urlset("https://shop.test/c", "https://shop.test/a/"),
        }
        async with make_client(routes) as client:
            inventory = await SitemapDiscoverer(client=client).discover("shop.test")

        assert inventory.sitemaps == ("https://shop.test/sitemap.xml", "https://shop.test/custom.xml")
        assert inventory.urls == ("https://shop.test/a", "https://shop.test/b", "https://shop.test/c")
        assert inventory.url_meta_by_url["https://shop.test/a"].lastmod == "2024-05-01"
        assert "https://shop.test/b" not in inventory.url_meta_by_url
        assert inventory.truncated is False

    @pytest.mark.asyncio
    async def test_index_children_are_expanded(self):
        routes = {
            "/sitemap_index.xml": sitemap_index("https://shop.test/products.xml", "https://shop.test/pages.xml"),
            "/products.xml": urlset("https://shop.test/p/1", "https://shop.test/p/2"),
            "/pages.xml": urlset("https://shop.test/about"),
        }
        async with make_client(routes) as client:
            inventory = await SitemapDiscoverer(client=client).discover(f"{ORIGIN}/any/page")

        assert inventory.sitemaps == (
            "https://shop.test/sitemap_index.xml",
            "https://shop.test/products.xml",
            "https://shop.test/pages.xml",
        )
        assert inventory.urls == ("https://shop.test/p/1", "https://shop.test/p/2", "https://shop.test/about")

    @pytest.mark.asyncio
    async def test_self_referencing_index_terminates(self):
        routes = {
            "/sitemap.xml": sitemap_index("https://shop.test/sitemap.xml", "https://shop.test/more.xml"),
            "/more.xml": sitemap_index("https://shop.test/sitemap.xml/", "https://shop.test/leaf.xml"),
            "/leaf.xml": urlset("https://shop.test/only"),
        }
        requested: List[str] = []
        async with make_client(routes, requested) as client:
            inventory = await SitemapDiscoverer(client=client).discover(ORIGIN)

        assert inventory.urls == ("https://shop.test/only",)
        assert requested.count("/sitemap.xml") == 1
        assert requested.count("/more.xml") == 1

    @pytest.mark.asyncio
    async def test_truncates_at_max_urls(self):
        routes = {"/sitemap.xml": urlset(*[f"https://shop.test/item/{i}" for i in range(10)])}
        async with make_client(routes) as client:
            inventory = await SitemapDiscoverer(client=client).discover(ORIGIN, max_urls=5)

        assert len(inventory.urls) == 5
        assert inventory.urls[0] == "https://shop.test/item/0"
        assert inventory.truncated is True

    @pytest.mark.asyncio
    async def test_exactly_max_urls_is_not_truncated(self):
        routes = {"/sitemap.xml": urlset(*[f"https://shop.test/item/{i}" for i in range(5)])}
        async with make_client(routes) as client:
            inventory = await SitemapDiscoverer(client=client).discover(ORIGIN, max_urls=5)

        assert len(inventory.urls) == 5
        assert inventory.truncated is False

    @pytest.mark.asyncio
    async def test_bare_locs_fallback(self):
        routes = {"/sitemap.xml": "<list><loc>https://shop.test/x</loc><loc>https://shop.test/y</loc></list>"}
        async with make_client(routes) as client:
            inventory = await SitemapDiscoverer(client=client).discover(ORIGIN)

        assert inventory.urls == ("https://shop.test/x", "https://shop.test/y")
        assert inventory.url_meta_by_url == {}

    @pytest.mark.asyncio
    async def test_failed_candidates_are_skipped(self):
        routes = {
            "/robots.txt": 500,
            "/sitemap.xml": 503,
            "/sitemap_index.xml": urlset("https://shop.test/ok"),
        }
        async with make_client(routes) as client:
            inventory = await SitemapDiscoverer(client=client).discover(ORIGIN)

        assert inventory.sitemaps == ("https://shop.test/sitemap_index.xml",)
        assert inventory.urls == ("https://shop.test/ok",)

    @pytest.mark.asyncio
    async def test_unusable_child_sitemap_is_skipped(self):
        """Test that one malformed index entry does not abort discovery."""
        routes = {
            "/sitemap.xml": sitemap_index("https://shop.test/bad\x01map.xml", "https://shop.test/good.xml"),
            "/good.xml": urlset("https://shop.test/a"),
        }
        async with make_client(routes) as client:
            inventory = await SitemapDiscoverer(client=client).discover(ORIGIN)

        assert inventory.urls == ("https://shop.test/a",)
        assert inventory.sitemaps == ("https://shop.test/sitemap.xml", "https://shop.test/good.xml")

    @pytest.mark.asyncio
    async def test_no_sitemaps_gives_empty_inventory(self):
        async with make_client({}) as client:
            inventory = await SitemapDiscoverer(client=client).discover(ORIGIN)

        assert inventory.sitemaps == ()
        assert inventory.urls == ()
        assert inventory.truncated is False

    @pytest.mark.asyncio
    async def test_sitemap_cap_truncates(self):
        children = [f"https://shop.test/child-{i}.xml" for i in range(20)]
        routes = {"/sitemap.xml": sitemap_index(*children)}
        requested: List[str] = []
        async with make_client(routes, requested) as client:
            inventory = await SitemapDiscoverer(client=client, max_sitemaps=5).discover(ORIGIN)

        assert inventory.truncated is True
        child_requests = [path for path in requested if path.startswith("/child-")]
        assert 0 < len(child_requests) < 20

    @pytest.mark.asyncio
    async def test_invalid_seed_gives_empty_inventory(self):
        client = MagicMock()
        inventory = await SitemapDiscoverer(client=client).discover("ftp://shop.test")
        assert inventory.urls == ()
        client.stream.assert_not_called()

    @pytest.mark.asyncio
    async def test_limiter_is_acquired_per_fetch(self):
        limiter = MagicMock()
        limiter.acquire = AsyncMock(return_value=0.0)
        routes = {"/sitemap.xml": urlset("https://shop.test/a")}
        requested: List[str] = []
        async with make_client(routes, requested) as client:
            await SitemapDiscoverer(client=client, limiter=limiter).discover(ORIGIN)

        assert limiter.acquire.await_count == len(requested)

    def test_inventory_to_dict(self):
        from crawlite.models import SitemapInventory, SitemapUrlMeta

        inventory = SitemapInventory(
            sitemaps=("https://shop.test/sitemap.xml",),
            urls=("https://shop.test/a",),
            url_meta_by_url={"https://shop.test/a": SitemapUrlMeta(priority="0.5")},
        )
        assert inventory.to_dict() == {
            "sitemaps": ["https://shop.test/sitemap.xml"],
            "urls": ["https://shop.test/a"],
            "url_meta_by_url": {"https://shop.test/a": {"priority": "0.5"}},
            "truncated": False,
        }
