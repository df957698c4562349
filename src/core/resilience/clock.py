# Copyright (c) 2024-2026 nickdsmith. All Rights Reserved.
# SPDX-License-Identifier: PROPRIETARY
#
# This file is proprietary and confidential. Unauthorized copying of this file,
# via any medium is strictly prohibited.

"""
Injectable time source.

Every component that reads the time or sleeps takes a Clock so that
backoff schedules, refresh intervals and stagnation resets can be driven
by a fake clock in tests instead of real delays.
"""

import asyncio
import time
from datetime import UTC, datetime


class Clock:
    """Wall clock, monotonic clock and shutdown-aware sleep."""

    def now(self) -> datetime:
        """Current time as an offset-aware UTC datetime."""
        return datetime.now(UTC)

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(
        self, seconds: float, shutdown_event: asyncio.Event | None = None
    ) -> bool:
        """
        Sleep for ``seconds`` or until ``shutdown_event`` is set.

        Returns:
            True if the sleep was cut short by shutdown, False otherwise
        """
        if shutdown_event is not None and shutdown_event.is_set():
            return True

        if seconds <= 0:
            return False

        if shutdown_event is None:
            await asyncio.sleep(seconds)
            return False

        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False


SYSTEM_CLOCK = Clock()


__all__ = ["Clock", "SYSTEM_CLOCK"]
