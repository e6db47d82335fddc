"""
Infrastructure Package.

Timeouts and background tasks, politeness pacing, rate limiting, DNS caching
and stealth overrides used by the crawl scheduler and sitemap discovery.
"""

from .dns import HostIpCache
from .rate_limiter import TokenBucketLimiter
from .stealth import (
    STEALTH_SCRIPTS,
    StealthManager,
    build_stealth_script,
    primary_language,
)
from .tasks import BackgroundTasks, TimeoutOutcome, with_timeout
from .timing import PolitenessPacer

__all__ = [
    "HostIpCache",
    "TokenBucketLimiter",
    "STEALTH_SCRIPTS",
    "StealthManager",
    "build_stealth_script",
    "primary_language",
    "BackgroundTasks",
    "TimeoutOutcome",
    "with_timeout",
    "PolitenessPacer",
]
