# Copyright (c) 2024-2026 nickdsmith. All Rights Reserved.
# SPDX-License-Identifier: PROPRIETARY
#
# This file is proprietary and confidential. Unauthorized copying of this file,
# via any medium is strictly prohibited.

"""
Batch publishing of fetched events to Kafka.

Records are split into batches of at most MAX_BATCH_SIZE and sent one
batch at a time with a short pause in between. A failed batch is recorded
and the next batch is still attempted. Each batch yields a tagged outcome
(BatchSent or BatchFailed) instead of an exception, and the orchestrator
reads connection-class failures from the aggregate result.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterator, List, Optional, Sequence, Union

from core.errors.exceptions import PipelineError
from core.errors.kafka_classifier import KafkaErrorClassifier
from core.logging import get_logger, log_exception, log_with_context
from core.resilience.clock import SYSTEM_CLOCK, Clock
from core.utils.json_serializers import json_serializer
from graylog_pipeline import metrics
from graylog_pipeline.producer import BrokerConnectionManager

logger = get_logger(__name__)


def partition_batches(records: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    """Yield consecutive slices of at most ``size`` records."""
    if size <= 0:
        raise ValueError(f"Batch size must be > 0, got {size}")
    for start in range(0, len(records), size):
        yield records[start : start + size]


def make_delivery_key(timestamp_ms: int, batch_index: int, sequence: int) -> str:
    """Unique per-record key: ``<epoch ms>-<batch>-<position in batch>``."""
    return f"{timestamp_ms}-{batch_index}-{sequence}"


def serialize_event(event: Any) -> bytes:
    return json.dumps(event, default=json_serializer).encode("utf-8")


@dataclass(frozen=True)
class BatchSent:
    index: int
    size: int


@dataclass(frozen=True)
class BatchFailed:
    index: int
    size: int
    error: PipelineError
    connection_error: bool = False


BatchOutcome = Union[BatchSent, BatchFailed]


@dataclass
class PublishResult:
    """
    Aggregate result of one publish call.

    Invariant: sent + failed + skipped equals the number of input records.
    skipped is only non-zero when shutdown stopped publishing early.
    """

    sent: int = 0
    failed: int = 0
    skipped: int = 0
    outcomes: List[BatchOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed == 0 and self.skipped == 0

    @property
    def connection_failures(self) -> List[BatchFailed]:
        return [
            o for o in self.outcomes if isinstance(o, BatchFailed) and o.connection_error
        ]

    @property
    def total(self) -> int:
        return self.sent + self.failed + self.skipped


class BatchPublisher:
    """Sequential batch sender on top of a BrokerConnectionManager."""

    def __init__(
        self,
        connection: BrokerConnectionManager,
        topic: str,
        max_batch_size: int = 100,
        inter_batch_delay: float = 0.1,
        clock: Optional[Clock] = None,
    ):
        self.connection = connection
        self.topic = topic
        self.max_batch_size = max_batch_size
        self.inter_batch_delay = inter_batch_delay
        self.clock = clock or SYSTEM_CLOCK

    async def _send_one(
        self, index: int, batch: Sequence[Any], timestamp_ms: int
    ) -> BatchOutcome:
        try:
            messages = [
                (make_delivery_key(timestamp_ms, index, seq), serialize_event(event))
                for seq, event in enumerate(batch)
            ]
            await self.connection.send_batch(self.topic, messages)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            classified = KafkaErrorClassifier.classify_producer_error(
                e, context={"topic": self.topic, "batch_index": index}
            )
            connection_error = KafkaErrorClassifier.is_connection_error(classified)
            log_exception(
                logger,
                classified,
                "Batch publish failed",
                include_traceback=False,
                topic=self.topic,
                batch_index=index,
                batch_size=len(batch),
            )
            metrics.record_error("publisher", classified.category.value)
            return BatchFailed(
                index=index,
                size=len(batch),
                error=classified,
                connection_error=connection_error,
            )

        log_with_context(
            logger,
            logging.DEBUG,
            "Batch published",
            topic=self.topic,
            batch_index=index,
            batch_size=len(batch),
        )
        return BatchSent(index=index, size=len(batch))

    async def publish(
        self,
        records: Sequence[Any],
        shutdown_event: Optional[asyncio.Event] = None,
    ) -> PublishResult:
        """
        Publish ``records`` in order, batch by batch.

        Args:
            records: Opaque events, serialized to JSON
            shutdown_event: Checked between batches; remaining records are
                counted as skipped once it is set

        Returns:
            PublishResult with per-batch outcomes
        """
        result = PublishResult()
        if not records:
            return result

        batches = list(partition_batches(records, self.max_batch_size))
        timestamp_ms = int(self.clock.now().timestamp() * 1000)

        for index, batch in enumerate(batches):
            if index > 0:
                interrupted = await self.clock.sleep(self.inter_batch_delay, shutdown_event)
            else:
                interrupted = shutdown_event is not None and shutdown_event.is_set()
            if interrupted:
                result.skipped = sum(len(b) for b in batches[index:])
                logger.info(
                    "Shutdown requested, skipping remaining batches",
                    extra={
                        "topic": self.topic,
                        "batch_index": index,
                        "batch_count": len(batches),
                        "records_skipped": result.skipped,
                    },
                )
                break

            outcome = await self._send_one(index, batch, timestamp_ms)
            result.outcomes.append(outcome)
            if isinstance(outcome, BatchSent):
                result.sent += outcome.size
            else:
                result.failed += outcome.size

        metrics.record_published(self.topic, result.sent, result.failed)
        log_with_context(
            logger,
            logging.INFO if result.ok else logging.WARNING,
            "Publish complete" if result.ok else "Publish finished with failures",
            topic=self.topic,
            batch_count=len(batches),
            records_sent=result.sent,
            records_failed=result.failed,
            records_skipped=result.skipped,
        )
        return result
