from dotenv import load_dotenv
from typing import Any, Optional
import os

from pydantic import BaseModel, ConfigDict, Field, field_validator

from crawlite.constants import (
    DEFAULT_DELAY_MS,
    DEFAULT_HTTP_TIMEOUT_SECONDS,
    DEFAULT_JITTER_MS,
    DEFAULT_MAX_DEPTH,
    DEFAULT_MAX_PAGES,
    DEFAULT_PAGE_LOAD_TIMEOUT_MS,
    DEFAULT_USER_AGENT,
    MAX_ANALYZE_WAIT_MS,
    MAX_PAGE_LOAD_TIMEOUT_MS,
    MIN_PAGE_LOAD_TIMEOUT_MS,
)
from crawlite.models import StealthOverrideSpec

load_dotenv()  # Loads variables from .env file


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """
    Manages process settings loaded from environment variables.
    """
    USER_AGENT = os.getenv("CRAWLITE_USER_AGENT", DEFAULT_USER_AGENT)
    LOG_LEVEL = os.getenv("CRAWLITE_LOG_LEVEL", "INFO")
    LOG_FILE = os.getenv("CRAWLITE_LOG_FILE")

    # Browser renderer
    BROWSER_TYPE = os.getenv("CRAWLITE_BROWSER_TYPE", "chromium")
    HEADLESS = _env_bool("CRAWLITE_HEADLESS", True)

    # Sitemap and static page fetches (seconds)
    HTTP_TIMEOUT = float(os.getenv("CRAWLITE_HTTP_TIMEOUT", str(DEFAULT_HTTP_TIMEOUT_SECONDS)))


settings = Settings()


def _clamp_int(value: Any, default: int, minimum: Optional[int] = None, maximum: Optional[int] = None) -> int:
    """Coerce a loosely-typed option to an int inside ``[minimum, maximum]``.

    Non-numeric input falls back to ``default``; out-of-range input is clamped.
    """
    if isinstance(value, bool):
        return default
    try:
        number = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default
    if minimum is not None:
        number = max(minimum, number)
    if maximum is not None:
        number = min(maximum, number)
    return number


class CrawlOptions(BaseModel):
    """
    Per-run crawl options.

    Numeric values outside their range are clamped rather than rejected, and
    camelCase names (``maxDepth``, ``pageLoadTimeoutMs``...) are accepted as
    aliases so option payloads from other front ends can be passed through.
    """

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    max_depth: int = Field(
        default=DEFAULT_MAX_DEPTH,
        alias="maxDepth",
        description="Link-expansion cutoff; the seed is depth 0",
    )

    max_pages: int = Field(
        default=DEFAULT_MAX_PAGES,
        alias="maxPages",
        description="Hard budget on pages visited in one run",
    )

    delay_ms: int = Field(
        default=DEFAULT_DELAY_MS,
        alias="delayMs",
        description="Base pause between page loads in milliseconds",
    )

    jitter_ms: int = Field(
        default=DEFAULT_JITTER_MS,
        alias="jitterMs",
        description="Random extra pause (0..jitter_ms) added to delay_ms",
    )

    page_load_timeout_ms: int = Field(
        default=DEFAULT_PAGE_LOAD_TIMEOUT_MS,
        alias="pageLoadTimeoutMs",
        description="Per-page load deadline in milliseconds",
    )

    analyze_wait_ms: Optional[int] = Field(
        default=None,
        alias="analyzeWaitMs",
        description="Extra settle wait before extraction in milliseconds",
    )

    deduplicate_links: bool = Field(
        default=True,
        alias="deduplicateLinks",
        description="De-duplicate harvested links at the extraction layer",
    )

    restrict_to_current_folder: bool = Field(
        default=True,
        alias="restrictToCurrentFolder",
        description="Only follow links nested under the seed's folder",
    )

    user_agent: Optional[str] = Field(default=None, alias="userAgent")
    accept_language: Optional[str] = Field(default=None, alias="acceptLanguage")
    platform: Optional[str] = Field(default=None)

    suppress_automation_signal: bool = Field(
        default=False,
        alias="suppressAutomationSignal",
        description="Make navigator.webdriver read as false",
    )

    @field_validator("max_depth", mode="before")
    @classmethod
    def _clamp_max_depth(cls, v: Any) -> int:
        return _clamp_int(v, DEFAULT_MAX_DEPTH, minimum=0)

    @field_validator("max_pages", mode="before")
    @classmethod
    def _clamp_max_pages(cls, v: Any) -> int:
        return _clamp_int(v, DEFAULT_MAX_PAGES, minimum=1)

    @field_validator("delay_ms", mode="before")
    @classmethod
    def _clamp_delay(cls, v: Any) -> int:
        return _clamp_int(v, DEFAULT_DELAY_MS, minimum=0)

    @field_validator("jitter_ms", mode="before")
    @classmethod
    def _clamp_jitter(cls, v: Any) -> int:
        return _clamp_int(v, DEFAULT_JITTER_MS, minimum=0)

    @field_validator("page_load_timeout_ms", mode="before")
    @classmethod
    def _clamp_page_load_timeout(cls, v: Any) -> int:
        return _clamp_int(
            v,
            DEFAULT_PAGE_LOAD_TIMEOUT_MS,
            minimum=MIN_PAGE_LOAD_TIMEOUT_MS,
            maximum=MAX_PAGE_LOAD_TIMEOUT_MS,
        )

    @field_validator("analyze_wait_ms", mode="before")
    @classmethod
    def _clamp_analyze_wait(cls, v: Any) -> Optional[int]:
        if v is None or v == "":
            return None
        try:
            number = int(float(v))
        except (TypeError, ValueError, OverflowError):
            return None
        return min(MAX_ANALYZE_WAIT_MS, max(0, number))

    @field_validator("user_agent", "accept_language", "platform", mode="before")
    @classmethod
    def _blank_to_none(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        text = str(v).strip()
        return text or None

    def stealth_spec(self) -> StealthOverrideSpec:
        """Build the stealth override spec for this run."""
        return StealthOverrideSpec(
            user_agent=self.user_agent,
            accept_language=self.accept_language,
            platform=self.platform,
            suppress_automation_signal=self.suppress_automation_signal,
        )

    def to_dict(self) -> dict:
        return self.model_dump()
