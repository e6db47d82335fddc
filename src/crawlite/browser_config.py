"""
Browser configuration for the Playwright renderer.

This module provides a validated Pydantic configuration model for the
browser-related settings and pre-configured instances for common use cases.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from crawlite.config import settings


# Launch flags that remove the most obvious automation fingerprints
STEALTH_LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-features=IsolateOrigins,site-per-process",
    "--no-first-run",
    "--no-default-browser-check",
]


class BrowserConfig(BaseModel):
    """
    Configuration for PlaywrightRenderer.

    All fields are validated by Pydantic to ensure type safety and valid values.
    Per-page load deadlines are not configured here; the crawler enforces
    ``CrawlOptions.page_load_timeout_ms`` around each navigation.
    """

    model_config = ConfigDict(frozen=False, validate_assignment=True)

    headless: bool = Field(
        default_factory=lambda: settings.HEADLESS,
        description="Run browser in headless mode (no visible UI)"
    )

    browser_type: Literal["chromium", "firefox", "webkit"] = Field(
        default_factory=lambda: settings.BROWSER_TYPE,
        description="Browser engine to use; the stealth control channel needs chromium"
    )

    wait_until: Literal["load", "domcontentloaded", "networkidle", "commit"] = Field(
        default="load",
        description="When to consider navigation complete"
    )

    viewport_width: int = Field(default=1366, ge=320, le=7680)
    viewport_height: int = Field(default=768, ge=240, le=4320)

    locale: Optional[str] = Field(
        default=None,
        description="Browser context locale (e.g. 'en-US')"
    )

    user_agent: Optional[str] = Field(
        default=None,
        description="Context-wide user agent. Per-run overrides come from CrawlOptions."
    )

    block_resources: List[str] = Field(
        default_factory=list,
        description="Resource types to block (e.g., 'image', 'font', 'media')"
    )

    launch_args: List[str] = Field(
        default_factory=list,
        description="Additional browser launch arguments"
    )


# --- Pre-configured Instances for Common Use Cases ---

FAST_CONFIG = BrowserConfig(
    headless=True,
    browser_type="chromium",
    wait_until="domcontentloaded",
    block_resources=["image", "font", "media"],
)
"""
Fast configuration optimized for speed.

Blocks heavy resources and uses faster page load detection.
"""

STEALTH_CONFIG = BrowserConfig(
    headless=True,
    browser_type="chromium",
    wait_until="load",
    launch_args=list(STEALTH_LAUNCH_ARGS),
)
"""
Stealth configuration for sites with bot detection.

Pair with CrawlOptions.suppress_automation_signal and identity overrides.
"""
