"""Tests for run control."""
import time

import pytest

from pricemap.jobs.run_control import RunControl, ScrapeCancelled


def test_not_stopped_by_default():
    """A fresh control does not stop."""
    control = RunControl()
    assert control.should_stop() == (False, None)
    assert control.remaining() is None


def test_cancel_keeps_first_reason():
    """The first cancel reason is reported."""
    control = RunControl()
    control.cancel("shutdown")
    control.cancel("other")
    assert control.should_stop() == (True, "shutdown")
    with pytest.raises(ScrapeCancelled) as exc_info:
        control.raise_if_stopped()
    assert exc_info.value.reason == "shutdown"
    assert exc_info.value.records == []


def test_deadline():
    """The run stops once stop_after_seconds elapsed."""
    control = RunControl(stop_after_seconds=10, start_time=time.monotonic() - 11)
    stop, reason = control.should_stop()
    assert stop
    assert "stop_after_seconds" in reason


@pytest.mark.asyncio
async def test_sleep_wakes_on_deadline():
    """sleep() returns early at the deadline and raises."""
    control = RunControl(stop_after_seconds=0.05)
    started = time.monotonic()
    with pytest.raises(ScrapeCancelled):
        await control.sleep(5)
    assert time.monotonic() - started < 2


@pytest.mark.asyncio
async def test_sleep_completes():
    """A short sleep without stop returns normally."""
    control = RunControl()
    await control.sleep(0.01)
    assert control.get_summary()["stopped"] is False
