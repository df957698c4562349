# Copyright (c) 2024-2026 nickdsmith. All Rights Reserved.
# SPDX-License-Identifier: PROPRIETARY
#
# This file is proprietary and confidential. Unauthorized copying of this file,
# via any medium is strictly prohibited.

"""
Time-windowed fetching from the search API.

Each cycle asks for ``[last_boundary, now)``. The fetcher is the one
place where window correctness is enforced:

- A backwards, zero-width or unparseable window is replaced by
  ``(now - poll_interval, now)``.
- A run of MAX_CONSECUTIVE_EMPTY empty results snaps the boundary to
  ``now - WINDOW_RESET`` so a stuck boundary cannot drift away from
  real time.
- A request rejected as invalid (400/422) is not retried; the window is
  reset instead.
- Any other failure is retried with exponential backoff (network errors
  wait an extra fixed pause first). When attempts run out the boundary is
  returned unchanged so the same window is tried again next cycle.

fetch() never raises. Every path returns a FetchResult.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional

from core.errors.exceptions import ValidationError, is_network_error
from core.logging import get_logger, log_exception, log_with_context
from core.resilience.clock import SYSTEM_CLOCK, Clock
from core.resilience.retry import RetryStats, retry_async
from core.utils.json_serializers import format_utc_timestamp
from graylog_pipeline import metrics
from graylog_pipeline.config import PipelineConfig
from graylog_pipeline.graylog.client import GraylogClient
from graylog_pipeline.graylog.models import TimeWindow

logger = get_logger(__name__)


class FetchStatus(str, Enum):
    OK = "ok"
    EMPTY = "empty"
    WINDOW_RESET = "window_reset"
    ABANDONED = "abandoned"


@dataclass
class FetchResult:
    """
    Outcome of one fetch cycle.

    Attributes:
        records: Opaque events in the order the API returned them
        new_boundary: Where the next window should start
        window: The window that was actually queried
        status: How the cycle ended
        attempts: Number of requests made
    """

    records: list[Any]
    new_boundary: datetime
    window: TimeWindow
    status: FetchStatus
    attempts: int = 0
    error: Optional[Exception] = field(default=None, repr=False)


class WindowFetcher:
    """Fetches successive windows and owns the stagnation counter."""

    def __init__(
        self,
        client: GraylogClient,
        config: PipelineConfig,
        clock: Optional[Clock] = None,
    ):
        self.client = client
        self.config = config
        self.clock = clock or SYSTEM_CLOCK
        self.retry_config = config.retry_config()
        self.consecutive_empty_fetches = 0

    @property
    def _poll_interval(self) -> timedelta:
        return timedelta(seconds=self.config.poll_interval_seconds)

    @property
    def _reset_lookback(self) -> timedelta:
        return timedelta(seconds=self.config.window_reset_seconds)

    def compute_window(self, last_boundary: Optional[datetime]) -> TimeWindow:
        """
        Window for this cycle: ``[last_boundary or now - poll, now)``.

        Falls back to the last poll interval when the result would be
        backwards, zero-width, or built from a naive/invalid boundary.
        """
        now = self.clock.now()
        start = last_boundary if last_boundary is not None else now - self._poll_interval

        window = TimeWindow(start=start, end=now)
        if not window.is_valid:
            fallback = TimeWindow.last(self._poll_interval, now)
            logger.warning(
                "Invalid fetch window, using last poll interval instead",
                extra={
                    "boundary": str(last_boundary),
                    "window_from": format_utc_timestamp(fallback.start),
                    "window_to": format_utc_timestamp(fallback.end),
                },
            )
            return fallback
        return window

    def _reset_result(self, window: TimeWindow, attempts: int, reason: str) -> FetchResult:
        new_boundary = self.clock.now() - self._reset_lookback
        self.consecutive_empty_fetches = 0
        log_with_context(
            logger,
            logging.WARNING,
            f"Resetting fetch window: {reason}",
            window_from=format_utc_timestamp(window.start),
            window_to=format_utc_timestamp(window.end),
            new_boundary=format_utc_timestamp(new_boundary),
            fetch_status=FetchStatus.WINDOW_RESET.value,
        )
        return FetchResult(
            records=[],
            new_boundary=new_boundary,
            window=window,
            status=FetchStatus.WINDOW_RESET,
            attempts=attempts,
        )

    def _network_pause(self, error: Exception) -> float:
        if is_network_error(error):
            return self.config.network_error_delay_seconds
        return 0.0

    async def fetch(
        self,
        last_boundary: Optional[datetime],
        shutdown_event: Optional[asyncio.Event] = None,
    ) -> FetchResult:
        """
        Fetch every event after ``last_boundary`` up to now.

        Args:
            last_boundary: Boundary from the checkpoint or previous cycle;
                None on cold start
            shutdown_event: Interrupts backoff sleeps when set

        Returns:
            FetchResult. On failure the records are empty and new_boundary
            equals last_boundary (or the window start on cold start).
        """
        window = self.compute_window(last_boundary)
        stats = RetryStats()
        start = self.clock.monotonic()

        try:
            records = await retry_async(
                lambda: self.client.search(window, self.config.max_fetch),
                self.retry_config,
                clock=self.clock,
                shutdown_event=shutdown_event,
                operation_name="graylog_search",
                extra_delay=self._network_pause,
                stats=stats,
            )
        except ValidationError as e:
            log_exception(
                logger,
                e,
                "Search rejected the window, not retrying",
                level=logging.WARNING,
                include_traceback=False,
                window_from=format_utc_timestamp(window.start),
                window_to=format_utc_timestamp(window.end),
            )
            metrics.record_fetch(FetchStatus.WINDOW_RESET.value)
            return self._reset_result(window, stats.attempts, "request rejected as invalid")
        except Exception as e:
            unchanged = last_boundary if isinstance(last_boundary, datetime) else window.start
            log_exception(
                logger,
                e,
                "Fetch abandoned, boundary unchanged",
                level=logging.ERROR,
                include_traceback=False,
                window_from=format_utc_timestamp(window.start),
                window_to=format_utc_timestamp(window.end),
                boundary=format_utc_timestamp(unchanged),
                total_attempts=stats.attempts,
                fetch_status=FetchStatus.ABANDONED.value,
            )
            metrics.record_fetch(FetchStatus.ABANDONED.value)
            return FetchResult(
                records=[],
                new_boundary=unchanged,
                window=window,
                status=FetchStatus.ABANDONED,
                attempts=stats.attempts,
                error=e,
            )

        duration_ms = round((self.clock.monotonic() - start) * 1000, 1)

        if not records:
            self.consecutive_empty_fetches += 1
            log_with_context(
                logger,
                logging.INFO,
                "No records in window",
                window_from=format_utc_timestamp(window.start),
                window_to=format_utc_timestamp(window.end),
                consecutive_empty=self.consecutive_empty_fetches,
                duration_ms=duration_ms,
            )
            if self.consecutive_empty_fetches >= self.config.max_consecutive_empty:
                metrics.record_fetch(FetchStatus.WINDOW_RESET.value)
                return self._reset_result(
                    window,
                    stats.attempts,
                    f"{self.consecutive_empty_fetches} consecutive empty fetches",
                )
            metrics.record_fetch(FetchStatus.EMPTY.value)
            return FetchResult(
                records=[],
                new_boundary=window.end,
                window=window,
                status=FetchStatus.EMPTY,
                attempts=stats.attempts,
            )

        self.consecutive_empty_fetches = 0
        if len(records) >= self.config.max_fetch:
            logger.warning(
                "Fetch hit the result limit, window may be truncated",
                extra={
                    "records_fetched": len(records),
                    "limit": self.config.max_fetch,
                    "window_from": format_utc_timestamp(window.start),
                    "window_to": format_utc_timestamp(window.end),
                },
            )

        log_with_context(
            logger,
            logging.INFO,
            "Fetched records",
            window_from=format_utc_timestamp(window.start),
            window_to=format_utc_timestamp(window.end),
            records_fetched=len(records),
            total_attempts=stats.attempts,
            duration_ms=duration_ms,
        )
        metrics.record_fetch(FetchStatus.OK.value, len(records))
        return FetchResult(
            records=records,
            new_boundary=window.end,
            window=window,
            status=FetchStatus.OK,
            attempts=stats.attempts,
        )
