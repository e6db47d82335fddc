# src/crawlite/constants.py
"""Centralized constants for the crawler.

This module contains defaults, caps and magic numbers that are used across
multiple modules. For per-run options, see config.CrawlOptions.
"""

# =============================================================================
# Crawl Run Defaults
# =============================================================================

# Link-expansion cutoff (seed is depth 0)
DEFAULT_MAX_DEPTH = 2

# Hard budget on pages visited per run
DEFAULT_MAX_PAGES = 200

# Politeness pacing between page loads (milliseconds)
DEFAULT_DELAY_MS = 650
DEFAULT_JITTER_MS = 350

# Per-page load deadline (milliseconds)
DEFAULT_PAGE_LOAD_TIMEOUT_MS = 10000
MIN_PAGE_LOAD_TIMEOUT_MS = 1000
MAX_PAGE_LOAD_TIMEOUT_MS = 300000

# Extra settle wait before extraction (milliseconds)
MAX_ANALYZE_WAIT_MS = 60000

# Delay after the animation frame that lets dynamic content settle
SETTLE_DELAY_MS = 250

# Prefix and random suffix length of run identifiers
RUN_ID_PREFIX = "run_"
RUN_ID_RANDOM_BYTES = 4


# =============================================================================
# Sitemap Discovery Constants
# =============================================================================

# Well-known sitemap locations probed before robots.txt directives
SITEMAP_WELL_KNOWN_PATHS = ("/sitemap.xml", "/sitemap_index.xml")

# Inventory size cap
DEFAULT_SITEMAP_MAX_URLS = 200000
MIN_SITEMAP_MAX_URLS = 1
MAX_SITEMAP_MAX_URLS = 2000000

# Cycle/explosion guard for nested sitemap indexes
MAX_SITEMAPS_VISITED = 200

# Response body caps (bytes)
ROBOTS_TXT_MAX_BYTES = 512 * 1024
SITEMAP_MAX_BYTES = 5 * 1024 * 1024

# Default HTTP timeout for sitemap and static page fetches (seconds)
DEFAULT_HTTP_TIMEOUT_SECONDS = 30.0


# =============================================================================
# Extraction Constants
# =============================================================================

# Maximum length kept for meta description/keywords/robots
MAX_META_LENGTH = 500

# Maximum length kept for heading and anchor text
MAX_TEXT_LENGTH = 300

# Maximum unique heading texts per level
MAX_HEADING_TEXTS = 200

# Maximum nested heading findings per page
MAX_NESTED_HEADINGS = 20

HEADING_LEVELS = ("h1", "h2", "h3", "h4", "h5", "h6")


# =============================================================================
# Identity Defaults
# =============================================================================

DEFAULT_USER_AGENT = "Crawlite/1.0 (+https://github.com/crawlite)"


# =============================================================================
# Page Processing Bounds
# =============================================================================

# Upper bound on the post-load settle script (milliseconds)
SETTLE_TIMEOUT_MS = 2000
