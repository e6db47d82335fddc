"""
Token bucket rate limiter.

Shared fetch budget for sitemap discovery: several discoveries (or a
discovery running next to a crawl) can draw from one bucket so the origin
server sees a bounded request rate.
"""

import asyncio
import logging
import time

logger = logging.getLogger(__name__)


class TokenBucketLimiter:
    """
    Token bucket rate limiter for burst handling.

    Allows short bursts while maintaining average rate.
    """

    def __init__(
        self,
        rate: float = 5.0,  # Tokens per second
        capacity: int = 10,  # Max burst size
    ):
        """
        Initialize token bucket.

        Args:
            rate: Token generation rate (per second)
            capacity: Maximum tokens in bucket

        Raises:
            ValueError: If rate or capacity is not positive
        """
        if rate <= 0:
            raise ValueError(f"rate must be positive, got {rate}")
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")

        self.rate = rate
        self.capacity = capacity
        self._tokens = float(capacity)
        self._last_update = time.monotonic()
        self._lock = asyncio.Lock()
        self._total_wait_time = 0.0

    async def acquire(self, tokens: int = 1) -> float:
        """
        Acquire tokens, waiting if necessary.

        Args:
            tokens: Number of tokens to acquire

        Returns:
            Time waited (seconds)

        Raises:
            ValueError: If more tokens are requested than the bucket can hold
        """
        if tokens > self.capacity:
            raise ValueError(f"cannot acquire {tokens} tokens from a bucket of {self.capacity}")

        async with self._lock:
            wait_time = 0.0

            while True:
                self._refill()

                if self._tokens >= tokens:
                    self._tokens -= tokens
                    self._total_wait_time += wait_time
                    if wait_time:
                        logger.debug(f"Rate limited: waited {wait_time:.3f}s for {tokens} token(s)")
                    return wait_time

                # Calculate wait time for enough tokens
                needed = tokens - self._tokens
                wait = needed / self.rate

                await asyncio.sleep(wait)
                wait_time += wait

    def _refill(self) -> None:
        """Refill tokens based on elapsed time."""
        now = time.monotonic()
        elapsed = now - self._last_update

        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
        self._last_update = now

    @property
    def available_tokens(self) -> float:
        """Current available tokens."""
        self._refill()
        return self._tokens

    @property
    def total_wait_time(self) -> float:
        """Total seconds callers have spent waiting on this bucket."""
        return self._total_wait_time
