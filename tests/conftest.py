"""
pytest configuration for the pipeline tests.

Adds src directory to Python path for imports and provides a fake clock so
backoff, refresh and stagnation behaviour can be tested without real delays.
"""

import asyncio
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))

from core.logging.context import clear_log_context  # noqa: E402
from core.resilience.clock import Clock  # noqa: E402

FAKE_EPOCH = datetime(2026, 1, 5, 14, 30, tzinfo=UTC)


class FakeClock(Clock):
    """
    Deterministic clock.

    sleep() advances both clocks by the requested amount instead of waiting
    and records every requested duration in ``sleeps``.
    """

    def __init__(self, start: datetime = FAKE_EPOCH):
        self._now = start
        self._monotonic = 1000.0
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._monotonic

    def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)
        self._monotonic += seconds

    async def sleep(self, seconds, shutdown_event=None) -> bool:
        if shutdown_event is not None and shutdown_event.is_set():
            return True
        if seconds > 0:
            self.sleeps.append(seconds)
            self.advance(seconds)
        await asyncio.sleep(0)
        return shutdown_event is not None and shutdown_event.is_set()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def _reset_log_context():
    yield
    clear_log_context()
