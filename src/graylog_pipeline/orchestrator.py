# Copyright (c) 2024-2026 nickdsmith. All Rights Reserved.
# SPDX-License-Identifier: PROPRIETARY
#
# This file is proprietary and confidential. Unauthorized copying of this file,
# via any medium is strictly prohibited.

"""
Main polling loop.

State machine::

    STARTING -> POLLING <-> FETCH_ERROR | PUBLISH_ERROR
                   |
                   v
             SHUTTING_DOWN -> STOPPED

Each tick refreshes the Kafka connection and saves the checkpoint when
they are due, fetches the next window, publishes what came back and
advances the in-memory boundary. Consecutive failed cycles are counted;
reaching MAX_CONSECUTIVE_ERRORS stops the process with exit code 1 so a
supervisor restarts it from the last checkpoint. The shutdown event runs
the same save/disconnect sequence and exits 0.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from core.errors.exceptions import BrokerUnavailableError, classify_exception
from core.logging import (
    generate_cycle_id,
    get_logger,
    log_exception,
    log_with_context,
    set_log_context,
)
from core.resilience.clock import SYSTEM_CLOCK, Clock
from core.utils.json_serializers import format_utc_timestamp
from graylog_pipeline import metrics
from graylog_pipeline.checkpoint import CheckpointStore
from graylog_pipeline.config import PipelineConfig
from graylog_pipeline.fetcher import FetchStatus, WindowFetcher
from graylog_pipeline.producer import BrokerConnectionManager
from graylog_pipeline.publisher import BatchPublisher

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1


class PipelineState(str, Enum):
    STARTING = "starting"
    POLLING = "polling"
    FETCH_ERROR = "fetch_error"
    PUBLISH_ERROR = "publish_error"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


@dataclass
class CycleReport:
    """What one tick did."""

    fetch_status: FetchStatus
    fetched: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    boundary: Optional[datetime] = None


class PipelineOrchestrator:
    """
    Drives fetcher, publisher and checkpoint store.

    All loop state lives on the instance: ``state``, ``boundary``,
    ``consecutive_errors`` and ``cycles``.
    """

    def __init__(
        self,
        config: PipelineConfig,
        fetcher: WindowFetcher,
        publisher: BatchPublisher,
        connection: BrokerConnectionManager,
        checkpoints: CheckpointStore,
        clock: Optional[Clock] = None,
    ):
        self.config = config
        self.fetcher = fetcher
        self.publisher = publisher
        self.connection = connection
        self.checkpoints = checkpoints
        self.clock = clock or SYSTEM_CLOCK

        self.state = PipelineState.STARTING
        self.boundary: Optional[datetime] = None
        self.consecutive_errors = 0
        self.cycles = 0
        self.exit_code: Optional[int] = None
        self._error_state = PipelineState.FETCH_ERROR

    def _transition(self, new_state: PipelineState) -> None:
        if new_state == self.state:
            return
        previous = self.state
        self.state = new_state
        log_with_context(
            logger,
            logging.INFO if new_state != PipelineState.POLLING else logging.DEBUG,
            f"Pipeline state {previous.value} -> {new_state.value}",
            state=new_state.value,
            previous_state=previous.value,
        )

    def _set_errors(self, count: int) -> None:
        self.consecutive_errors = count
        metrics.update_consecutive_errors(count)

    def _save_checkpoint(self) -> bool:
        if self.boundary is None:
            return False
        saved = self.checkpoints.save(self.boundary)
        metrics.record_checkpoint_save(saved)
        return saved

    def _advance(self, new_boundary: datetime) -> None:
        self.boundary = new_boundary
        metrics.update_boundary(new_boundary.timestamp())

    @property
    def fatal_threshold_reached(self) -> bool:
        return self.consecutive_errors >= self.config.max_consecutive_errors

    async def run_cycle(self, shutdown_event: Optional[asyncio.Event] = None) -> CycleReport:
        """
        One tick: refresh, periodic save, fetch, publish, advance.

        Raises:
            BrokerUnavailableError: If a required reconnect failed
        """
        self.cycles += 1
        set_log_context(cycle_id=generate_cycle_id())

        self._error_state = PipelineState.PUBLISH_ERROR
        await self.connection.refresh_if_stale(shutdown_event)
        if self.checkpoints.save_due(self.config.checkpoint_interval_seconds):
            self._save_checkpoint()

        self._error_state = PipelineState.FETCH_ERROR
        result = await self.fetcher.fetch(self.boundary, shutdown_event)
        report = CycleReport(fetch_status=result.status, fetched=len(result.records))

        if result.status == FetchStatus.ABANDONED:
            # Same window next tick; the error counter is left alone
            self._transition(PipelineState.FETCH_ERROR)
            self._advance(result.new_boundary)
            report.boundary = self.boundary
            return report

        self._transition(PipelineState.POLLING)

        if not result.records:
            self._set_errors(0)
            self._advance(result.new_boundary)
            report.boundary = self.boundary
            return report

        self._error_state = PipelineState.PUBLISH_ERROR
        published = await self.publisher.publish(result.records, shutdown_event)
        report.sent = published.sent
        report.failed = published.failed
        report.skipped = published.skipped

        if published.connection_failures:
            self.connection.request_reconnect()

        if published.failed:
            self._set_errors(self.consecutive_errors + 1)
            self._transition(PipelineState.PUBLISH_ERROR)
            log_with_context(
                logger,
                logging.WARNING,
                "Cycle completed with failed batches",
                records_sent=published.sent,
                records_failed=published.failed,
                consecutive_errors=self.consecutive_errors,
                max_consecutive_errors=self.config.max_consecutive_errors,
            )
        elif not published.skipped:
            self._set_errors(0)

        if published.skipped:
            # Interrupted by shutdown; refetch this window after restart
            report.boundary = self.boundary
            return report

        self._advance(result.new_boundary)
        report.boundary = self.boundary
        if published.sent > 0:
            self._save_checkpoint()
        return report

    async def _run_tick(self, shutdown_event: asyncio.Event) -> None:
        """Run one cycle, giving it a bounded grace period if shutdown arrives mid-cycle."""
        cycle = asyncio.create_task(self.run_cycle(shutdown_event))
        stop_waiter = asyncio.create_task(shutdown_event.wait())
        try:
            done, _ = await asyncio.wait(
                {cycle, stop_waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            stop_waiter.cancel()

        if cycle not in done:
            logger.info(
                "Shutdown requested mid-cycle, waiting for it to finish",
                extra={"delay_seconds": self.config.shutdown_grace_seconds},
            )
            done, _ = await asyncio.wait({cycle}, timeout=self.config.shutdown_grace_seconds)
            if cycle not in done:
                cycle.cancel()
                await asyncio.gather(cycle, return_exceptions=True)
                logger.warning("In-flight cycle cancelled after grace period")
                return

        cycle.result()

    async def _shutdown(self, exit_code: int, reason: str) -> int:
        if self.state == PipelineState.STOPPED:
            return self.exit_code
        self._transition(PipelineState.SHUTTING_DOWN)
        log_with_context(
            logger,
            logging.INFO if exit_code == EXIT_OK else logging.ERROR,
            f"Shutting down: {reason}",
            exit_code=exit_code,
            boundary=format_utc_timestamp(self.boundary) if self.boundary else None,
        )

        self._save_checkpoint()
        await self.connection.disconnect()

        self.exit_code = exit_code
        self._transition(PipelineState.STOPPED)
        return exit_code

    async def run(self, shutdown_event: Optional[asyncio.Event] = None) -> int:
        """
        Run until shutdown or a fatal error.

        Returns:
            Process exit code: 0 after a requested shutdown, 1 on a fatal error
        """
        shutdown_event = shutdown_event or asyncio.Event()
        try:
            return await self._run(shutdown_event)
        except asyncio.CancelledError:
            logger.warning("Pipeline task cancelled, forcing shutdown")
            await self._shutdown(EXIT_FATAL, "cancelled")
            raise
        except Exception as e:
            log_exception(logger, e, "Unhandled pipeline error")
            return await self._shutdown(EXIT_FATAL, "unhandled error")

    async def _run(self, shutdown_event: asyncio.Event) -> int:
        self._transition(PipelineState.STARTING)
        self.boundary = self.checkpoints.load()

        try:
            await self.connection.connect_with_retry(shutdown_event)
        except BrokerUnavailableError as e:
            if shutdown_event.is_set():
                return await self._shutdown(EXIT_OK, "shutdown requested during startup")
            log_exception(logger, e, "Kafka unavailable at startup", include_traceback=False)
            return await self._shutdown(EXIT_FATAL, "broker unavailable at startup")

        self._transition(PipelineState.POLLING)

        while not shutdown_event.is_set():
            try:
                await self._run_tick(shutdown_event)
                delay = self.config.poll_interval_seconds
            except BrokerUnavailableError as e:
                if shutdown_event.is_set():
                    break
                log_exception(logger, e, "Kafka reconnect failed", include_traceback=False)
                return await self._shutdown(EXIT_FATAL, "broker unavailable")
            except Exception as e:
                self._set_errors(self.consecutive_errors + 1)
                self._transition(self._error_state)
                metrics.record_error("orchestrator", classify_exception(e).value)
                log_exception(
                    logger,
                    e,
                    "Cycle failed",
                    consecutive_errors=self.consecutive_errors,
                    max_consecutive_errors=self.config.max_consecutive_errors,
                )
                delay = self.config.error_backoff_seconds

            if self.fatal_threshold_reached:
                log_with_context(
                    logger,
                    logging.CRITICAL,
                    "Too many consecutive errors, stopping",
                    consecutive_errors=self.consecutive_errors,
                    max_consecutive_errors=self.config.max_consecutive_errors,
                )
                return await self._shutdown(EXIT_FATAL, "consecutive error threshold reached")

            if await self.clock.sleep(delay, shutdown_event):
                break

        return await self._shutdown(EXIT_OK, "shutdown requested")
