"""Tests for the command-line interface."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

pytest_plugins = ('pytest_asyncio',)

from crawlite import cli
from crawlite.browser_config import FAST_CONFIG, STEALTH_LAUNCH_ARGS
from crawlite.infrastructure.rate_limiter import TokenBucketLimiter
from crawlite.renderer.http_renderer import HttpRenderer
from crawlite.errors import InvalidURLError
from crawlite.models import SitemapInventory


def parse(argv):
    """Parse arguments without running the selected command."""
    with patch.object(cli, "setup_logging"), patch.object(cli, "crawl_command", return_value=0) as crawl, \
            patch.object(cli, "analyze_command", return_value=0) as analyze:
        cli.main(argv)
    for command in (crawl, analyze):
        if command.called:
            return command.call_args.args[0]
    raise AssertionError("no command ran")


class TestOptionsFromArgs:
    """Tests for turning CLI flags into CrawlOptions."""

    def test_defaults(self):
        options = cli._options_from_args(parse(["crawl", "example.test"]))
        assert options.max_depth == 2
        assert options.max_pages == 200
        assert options.deduplicate_links is True
        assert options.restrict_to_current_folder is True
        assert options.suppress_automation_signal is False

    def test_flags(self):
        args = parse([
            "crawl", "example.test",
            "--max-depth", "1",
            "--max-pages", "0",
            "--timeout-ms", "5000",
            "--whole-site",
            "--no-dedupe",
            "--accept-language", "de-DE",
            "--suppress-automation",
        ])
        options = cli._options_from_args(args)
        assert options.max_depth == 1
        assert options.max_pages == 1
        assert options.page_load_timeout_ms == 5000
        assert options.restrict_to_current_folder is False
        assert options.deduplicate_links is False
        assert options.accept_language == "de-DE"
        assert options.suppress_automation_signal is True

    def test_analyze_has_no_crawl_flags(self):
        args = parse(["analyze", "example.test/page", "--analyze-wait-ms", "100"])
        options = cli._options_from_args(args)
        assert options.analyze_wait_ms == 100
        assert args.renderer == "browser"


class TestMain:
    """Tests for cli.main."""

    def test_sitemap_command_prints_inventory(self, capsys):
        inventory = SitemapInventory(sitemaps=("https://example.test/sitemap.xml",), urls=("https://example.test/a",))
        discoverer = MagicMock()
        discoverer.discover = AsyncMock(return_value=inventory)

        with patch.object(cli, "setup_logging"), patch.object(cli, "SitemapDiscoverer", return_value=discoverer):
            code = cli.main(["sitemap", "example.test", "--max-urls", "10"])

        assert code == 0
        discoverer.discover.assert_awaited_once_with("example.test", max_urls=10)
        assert json.loads(capsys.readouterr().out)["urls"] == ["https://example.test/a"]

    def test_crawler_errors_exit_nonzero(self, capsys):
        with patch.object(cli, "setup_logging"), \
                patch.object(cli, "crawl_command", side_effect=InvalidURLError("ftp://x", "unsupported scheme")):
            code = cli.main(["crawl", "ftp://x"])

        assert code == 1
        assert "unsupported scheme" in capsys.readouterr().err

    def test_no_command_prints_help(self, capsys):
        with patch.object(cli, "setup_logging"):
            assert cli.main([]) == 2

    def test_sitemap_rate_limit(self, capsys):
        discoverer = MagicMock()
        discoverer.discover = AsyncMock(return_value=SitemapInventory())

        with patch.object(cli, "setup_logging"), \
                patch.object(cli, "SitemapDiscoverer", return_value=discoverer) as discoverer_cls:
            cli.main(["sitemap", "example.test", "--max-rps", "2.5"])

        limiter = discoverer_cls.call_args.kwargs["limiter"]
        assert isinstance(limiter, TokenBucketLimiter)
        assert limiter.rate == 2.5
        assert limiter.capacity == 2


class TestOpenRenderer:
    """Tests for renderer selection."""

    @staticmethod
    def _patched_renderer():
        renderer_cls = MagicMock()
        renderer_cls.return_value.__aenter__ = AsyncMock(return_value="renderer")
        renderer_cls.return_value.__aexit__ = AsyncMock(return_value=False)
        return renderer_cls

    @pytest.mark.asyncio
    @pytest.mark.parametrize("flags, wait_until, launch_args", [
        ([], "load", []),
        (["--fast"], "domcontentloaded", []),
        (["--suppress-automation"], "load", list(STEALTH_LAUNCH_ARGS)),
    ])
    async def test_browser_presets(self, flags, wait_until, launch_args):
        args = parse(["crawl", "example.test", "--headed", *flags])
        renderer_cls = self._patched_renderer()

        with patch.object(cli, "PlaywrightRenderer", renderer_cls):
            async with cli._open_renderer(args) as renderer:
                assert renderer == "renderer"

        config = renderer_cls.call_args.args[0]
        assert config.headless is False
        assert config.wait_until == wait_until
        assert config.launch_args == launch_args

    @pytest.mark.asyncio
    async def test_presets_are_not_mutated(self):
        args = parse(["crawl", "example.test", "--fast", "--headed"])
        with patch.object(cli, "PlaywrightRenderer", self._patched_renderer()):
            async with cli._open_renderer(args):
                pass
        assert FAST_CONFIG.headless is True

    @pytest.mark.asyncio
    async def test_http_renderer(self):
        args = parse(["analyze", "example.test", "--renderer", "http"])
        async with cli._open_renderer(args) as renderer:
            assert isinstance(renderer, HttpRenderer)
        assert renderer.is_available is False
