"""Command-line interface for the crawler."""

import asyncio
import json
import sys
from contextlib import asynccontextmanager
from typing import Optional

from crawlite.browser_config import FAST_CONFIG, STEALTH_CONFIG, BrowserConfig
from crawlite.config import CrawlOptions, settings
from crawlite.engine import CrawlEngine
from crawlite.errors import CrawliteError
from crawlite.infrastructure.rate_limiter import TokenBucketLimiter
from crawlite.logging_config import setup_logging
from crawlite.renderer.http_renderer import HttpRenderer
from crawlite.renderer.playwright_renderer import PlaywrightRenderer
from crawlite.results import CrawlResults
from crawlite.sitemap_discovery import SitemapDiscoverer


def _print_json(data, stream=None) -> None:
    stream = stream or sys.stdout
    stream.write(json.dumps(data, ensure_ascii=False, default=str) + "\n")
    stream.flush()


def _options_from_args(args) -> CrawlOptions:
    """Build CrawlOptions from parsed arguments; unset flags keep defaults."""
    values = {
        "max_depth": args.max_depth,
        "max_pages": args.max_pages,
        "delay_ms": args.delay_ms,
        "jitter_ms": args.jitter_ms,
        "page_load_timeout_ms": args.timeout_ms,
        "analyze_wait_ms": args.analyze_wait_ms,
        "user_agent": args.user_agent,
        "accept_language": args.accept_language,
        "platform": args.platform,
    }
    options = {k: v for k, v in values.items() if v is not None}
    options["deduplicate_links"] = not args.no_dedupe
    options["restrict_to_current_folder"] = not args.whole_site
    options["suppress_automation_signal"] = args.suppress_automation
    return CrawlOptions(**options)


@asynccontextmanager
async def _open_renderer(args):
    """Open the renderer selected on the command line."""
    if args.renderer == "http":
        async with HttpRenderer() as renderer:
            yield renderer
        return

    if args.suppress_automation:
        config = STEALTH_CONFIG.model_copy(deep=True)
    elif args.fast:
        config = FAST_CONFIG.model_copy(deep=True)
    else:
        config = BrowserConfig()
    if args.headed:
        config.headless = False
    async with PlaywrightRenderer(config) as renderer:
        yield renderer


async def _crawl(args) -> int:
    options = _options_from_args(args)
    results = CrawlResults()

    async with _open_renderer(args) as renderer:
        engine = CrawlEngine(renderer)
        engine.subscribe(results)
        if not args.quiet:
            engine.subscribe(lambda event: _print_json(event.to_dict()))

        summary = await engine.crawl(args.url, options)

    if args.output_file:
        with open(args.output_file, "w", encoding="utf-8") as f:
            json.dump(results.to_dict(), f, indent=2, ensure_ascii=False, default=str)
        print(f"\n✅ Results written to {args.output_file}", file=sys.stderr)

    _print_json({"type": "summary", **summary.to_dict()})
    return 0


async def _sitemap(args) -> int:
    limiter = None
    if args.max_rps:
        limiter = TokenBucketLimiter(rate=args.max_rps, capacity=max(1, int(args.max_rps)))
    inventory = await SitemapDiscoverer(limiter=limiter).discover(args.url, max_urls=args.max_urls)
    _print_json(inventory.to_dict())
    return 0


async def _analyze(args) -> int:
    options = _options_from_args(args)
    async with _open_renderer(args) as renderer:
        record = await CrawlEngine(renderer).analyze_page(args.url, options)
    _print_json(record.to_dict())
    return 0


def crawl_command(args) -> int:
    return asyncio.run(_crawl(args))


def sitemap_command(args) -> int:
    return asyncio.run(_sitemap(args))


def analyze_command(args) -> int:
    return asyncio.run(_analyze(args))


def _add_page_options(subparser, crawl: bool) -> None:
    subparser.add_argument("url", help="Seed URL (bare domains are accepted)")
    subparser.add_argument(
        "--renderer",
        choices=["browser", "http"],
        default="browser",
        help="Page renderer: headless browser or plain HTTP (default: browser)",
    )
    subparser.add_argument("--headed", action="store_true", help="Show the browser window")
    subparser.add_argument(
        "--fast",
        action="store_true",
        help="Block images, fonts and media and stop waiting at DOMContentLoaded",
    )
    subparser.add_argument("--timeout-ms", type=int, help="Per-page load deadline (1000-300000, default: 10000)")
    subparser.add_argument("--analyze-wait-ms", type=int, help="Extra wait before extraction (0-60000)")
    subparser.add_argument("--delay-ms", type=int, help="Base pause between pages (default: 650)")
    subparser.add_argument("--jitter-ms", type=int, help="Random extra pause (default: 350)")
    subparser.add_argument("--no-dedupe", action="store_true", help="Keep duplicate links in page records")
    subparser.add_argument("--user-agent", help="Override the user agent")
    subparser.add_argument("--accept-language", help="Override Accept-Language and navigator.language")
    subparser.add_argument("--platform", help="Override navigator.platform")
    subparser.add_argument(
        "--suppress-automation",
        action="store_true",
        help="Make navigator.webdriver read as false",
    )
    if crawl:
        subparser.add_argument("--max-depth", type=int, help="Link-expansion depth (default: 2)")
        subparser.add_argument("--max-pages", type=int, help="Maximum pages to visit (default: 200)")
        subparser.add_argument(
            "--whole-site",
            action="store_true",
            help="Follow links outside the seed's folder",
        )
        subparser.add_argument("--output-file", "-f", help="Write collected page records as JSON")
        subparser.add_argument("--quiet", "-q", action="store_true", help="Do not stream events")
    else:
        subparser.set_defaults(max_depth=None, max_pages=None, whole_site=False)


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Crawlite - breadth-first SEO crawler with sitemap discovery"
    )

    # Global flags (before subcommands)
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=settings.LOG_LEVEL.upper(),
        help=f"Set logging verbosity (default: {settings.LOG_LEVEL.upper()})",
    )
    parser.add_argument(
        "--log-file",
        default=settings.LOG_FILE,
        help="Write logs to file in addition to console",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    crawl_parser = subparsers.add_parser(
        "crawl", help="Crawl a site breadth-first, streaming events as JSON lines."
    )
    _add_page_options(crawl_parser, crawl=True)
    crawl_parser.set_defaults(func=crawl_command)

    sitemap_parser = subparsers.add_parser(
        "sitemap", help="Discover the sitemap URL inventory of a site."
    )
    sitemap_parser.add_argument("url", help="Any URL on the site")
    sitemap_parser.add_argument(
        "--max-urls",
        type=int,
        default=None,
        help="Inventory size cap (1-2000000, default: 200000)",
    )
    sitemap_parser.add_argument(
        "--max-rps",
        type=float,
        default=None,
        help="Cap sitemap fetches per second (default: unlimited)",
    )
    sitemap_parser.set_defaults(func=sitemap_command)

    analyze_parser = subparsers.add_parser(
        "analyze", help="Load and extract a single page."
    )
    _add_page_options(analyze_parser, crawl=False)
    analyze_parser.set_defaults(func=analyze_command)

    args = parser.parse_args(argv)

    setup_logging(
        level=args.log_level,
        log_file=getattr(args, 'log_file', None),
    )

    if not hasattr(args, "func"):
        parser.print_help()
        return 2

    try:
        return args.func(args)
    except CrawliteError as e:
        print(f"\n❌ {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
