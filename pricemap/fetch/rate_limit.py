"""Per-fetcher rate limiter with jittered delays."""
import asyncio
import logging
import random
from typing import Optional

from pricemap.jobs.run_control import RunControl

logger = logging.getLogger(__name__)


class RateLimiter:
    """Spaces out requests of one fetcher and numbers them."""

    def __init__(self, base_delay: float, jitter: float = 2.0):
        self.base_delay = max(base_delay, 0.0)
        self.jitter = max(jitter, 0.0)
        self.request_count = 0
        self._lock = asyncio.Lock()

    def next_delay(self) -> float:
        """Random delay in [base_delay, base_delay + jitter]."""
        return random.uniform(self.base_delay, self.base_delay + self.jitter)

    async def acquire(self, control: Optional[RunControl] = None) -> int:
        """
        Wait if necessary and reserve the next request slot.
        Returns the number of requests issued before this one.
        """
        control = control or RunControl()
        async with self._lock:
            sequence = self.request_count
            if sequence > 0:
                delay = self.next_delay()
                if delay > 0:
                    logger.debug(f"Rate limiting: sleeping {delay:.2f}s before request #{sequence + 1}")
                    await control.sleep(delay)
            self.request_count += 1
            return sequence
