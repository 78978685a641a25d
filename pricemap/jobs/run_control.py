"""Run control: cancellation and time limits shared by a scrape run."""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)


class ScrapeCancelled(Exception):
    """The run was cancelled or hit its time limit.

    `records` holds the complete records a source gathered before it stopped.
    """

    def __init__(self, reason: str = "cancelled", records: Optional[list] = None):
        self.reason = reason
        self.records = records if records is not None else []
        super().__init__(reason)


@dataclass
class RunControl:
    """Controls run stopping conditions."""

    stop_after_seconds: Optional[float] = None

    # Internal state
    start_time: float = field(default_factory=time.monotonic)
    cancel_reason: Optional[str] = None
    _event: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    def cancel(self, reason: str = "cancelled") -> None:
        """Signal every source and fetch sharing this control to stop."""
        if self.cancel_reason is None:
            self.cancel_reason = reason
            logger.warning(f"Run cancelled: {reason}")
        self._event.set()

    def remaining(self) -> Optional[float]:
        """Seconds left before the time limit, None without a limit."""
        if not self.stop_after_seconds:
            return None
        return max(self.stop_after_seconds - (time.monotonic() - self.start_time), 0.0)

    def should_stop(self) -> tuple[bool, Optional[str]]:
        """Check if run should stop. Returns (should_stop, reason)."""
        if self._event.is_set():
            return True, self.cancel_reason or "cancelled"

        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            return True, f"Reached stop_after_seconds={self.stop_after_seconds}"

        return False, None

    def raise_if_stopped(self) -> None:
        stop, reason = self.should_stop()
        if stop:
            raise ScrapeCancelled(reason)

    async def sleep(self, delay: float) -> None:
        """Sleep for `delay` seconds, waking up early when the run stops."""
        self.raise_if_stopped()
        timeout = max(delay, 0.0)
        remaining = self.remaining()
        if remaining is not None:
            timeout = min(timeout, remaining)
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass
        self.raise_if_stopped()

    def get_summary(self) -> dict:
        """Get summary statistics."""
        stop, reason = self.should_stop()
        return {
            "elapsed_seconds": round(time.monotonic() - self.start_time, 2),
            "stopped": stop,
            "reason": reason,
        }
