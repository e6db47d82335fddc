"""
Politeness pacing between page loads.

Each pause is ``delay_ms`` plus a uniformly random ``0..jitter_ms`` so that
request timing does not form a perfectly regular signature.
"""

import asyncio
import logging
import random
from typing import Optional

logger = logging.getLogger(__name__)


class PolitenessPacer:
    """Sleeps between page loads, waking early when a stop event is set."""

    def __init__(self, delay_ms: int, jitter_ms: int, rng: Optional[random.Random] = None):
        self.delay_ms = max(0, int(delay_ms))
        self.jitter_ms = max(0, int(jitter_ms))
        self._rng = rng or random.Random()
        self._wait_count = 0

    def next_delay_ms(self) -> int:
        """Draw the next pause length in milliseconds."""
        jitter = self._rng.randint(0, self.jitter_ms) if self.jitter_ms else 0
        return self.delay_ms + jitter

    async def wait(self, stop_event: Optional[asyncio.Event] = None) -> int:
        """
        Sleep for the next pause length.

        Args:
            stop_event: Optional event that cuts the pause short when set

        Returns:
            Pause length that was drawn, in milliseconds
        """
        delay_ms = self.next_delay_ms()
        self._wait_count += 1
        if delay_ms <= 0:
            # Still yield so other tasks (e.g. a cancel request) can run
            await asyncio.sleep(0)
            return 0

        logger.debug(f"Page delay: {delay_ms}ms (wait #{self._wait_count})")
        if stop_event is None:
            await asyncio.sleep(delay_ms / 1000)
            return delay_ms

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=delay_ms / 1000)
        except asyncio.TimeoutError:
            pass
        return delay_ms
