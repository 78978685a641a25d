"""Tests for the CLI entry point."""
import asyncio
import os
import signal
import sys

import pytest

from pricemap.jobs.run_control import RunControl
from pricemap.main import install_signal_handlers, parse_args, remove_signal_handlers


def test_parse_args():
    """CLI flags are parsed into the namespace."""
    args = parse_args(["--mode", "sequential", "--workers", "3", "--sources", "rightmove,nyc_opendata"])
    assert args.mode == "sequential"
    assert args.workers == 3
    assert args.sources == "rightmove,nyc_opendata"
    assert not args.replay_spool


@pytest.mark.skipif(sys.platform == "win32", reason="event loop signal handlers are Unix-only")
@pytest.mark.asyncio
async def test_sigterm_cancels_the_run():
    """SIGTERM goes through RunControl.cancel instead of killing the process."""
    control = RunControl()
    signals = install_signal_handlers(control)
    try:
        assert signal.SIGTERM in signals
        os.kill(os.getpid(), signal.SIGTERM)
        for _ in range(50):
            if control.should_stop()[0]:
                break
            await asyncio.sleep(0.01)
    finally:
        remove_signal_handlers(signals)

    assert control.should_stop() == (True, "received SIGTERM")
