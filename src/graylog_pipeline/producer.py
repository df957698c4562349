# Copyright (c) 2024-2026 nickdsmith. All Rights Reserved.
# SPDX-License-Identifier: PROPRIETARY
#
# This file is proprietary and confidential. Unauthorized copying of this file,
# via any medium is strictly prohibited.

"""
Kafka producer lifecycle.

BrokerConnectionManager is the only owner of the AIOKafkaProducer:
- connects with acks=all and idempotent delivery
- proactively rebuilds the connection after KAFKA_REFRESH_INTERVAL_SECONDS
- rebuilds it on request after a connection-class publish failure
- reconnects with the shared exponential backoff and raises
  BrokerUnavailableError when every attempt fails
"""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from aiokafka import AIOKafkaProducer

from core.errors.exceptions import BrokerUnavailableError, ConnectionError
from core.errors.kafka_classifier import KafkaErrorClassifier
from core.logging import get_logger, log_exception, log_with_context
from core.resilience.clock import SYSTEM_CLOCK, Clock
from core.resilience.retry import RetryConfig, RetryStats, retry_async
from graylog_pipeline import metrics
from graylog_pipeline.config import KafkaConfig

logger = get_logger(__name__)


class BrokerConnectionManager:
    """
    Connect, refresh, reconnect and disconnect the Kafka producer.

    Usage:
        >>> connection = BrokerConnectionManager(config.kafka, config.retry_config())
        >>> await connection.connect_with_retry(shutdown_event)
        >>> try:
        ...     await connection.send_batch("security-logs", [(key, value_bytes)])
        ... finally:
        ...     await connection.disconnect()
    """

    def __init__(
        self,
        config: KafkaConfig,
        retry_config: Optional[RetryConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self.config = config
        self.retry_config = retry_config or RetryConfig()
        self.clock = clock or SYSTEM_CLOCK

        self._producer: Optional[AIOKafkaProducer] = None
        self._connected_at: Optional[datetime] = None
        self._connected_monotonic: Optional[float] = None
        self._reconnect_requested = False

    @property
    def is_connected(self) -> bool:
        return self._producer is not None

    @property
    def connected_at(self) -> Optional[datetime]:
        """Wall-clock time of the last successful connect."""
        return self._connected_at

    @property
    def connection_age(self) -> Optional[float]:
        if self._connected_monotonic is None:
            return None
        return self.clock.monotonic() - self._connected_monotonic

    def _producer_config(self) -> dict:
        producer_config = {
            "bootstrap_servers": self.config.bootstrap_servers,
            "client_id": self.config.client_id,
            "acks": "all",
            "enable_idempotence": True,
            "request_timeout_ms": self.config.request_timeout_ms,
        }

        # Configure security based on protocol
        if self.config.security_protocol != "PLAINTEXT":
            producer_config["security_protocol"] = self.config.security_protocol
            if self.config.security_protocol.startswith("SASL"):
                producer_config["sasl_mechanism"] = self.config.sasl_mechanism
                producer_config["sasl_plain_username"] = self.config.sasl_plain_username
                producer_config["sasl_plain_password"] = self.config.sasl_plain_password
        return producer_config

    async def connect(self) -> None:
        """
        Single connection attempt.

        Replaces any existing producer. Start is bounded by the configured
        connect timeout.

        Raises:
            PipelineError: Classified producer error
        """
        if self._producer is not None:
            await self.disconnect()

        producer = AIOKafkaProducer(**self._producer_config())
        try:
            await asyncio.wait_for(
                producer.start(), timeout=self.config.connect_timeout_seconds
            )
        except Exception as e:
            try:
                await producer.stop()
            except Exception as stop_error:
                logger.debug(
                    "Ignoring error while stopping half-started producer",
                    extra={"error_message": str(stop_error)[:200]},
                )
            raise KafkaErrorClassifier.classify_producer_error(
                e, context={"bootstrap_servers": self.config.bootstrap_servers}
            ) from e

        self._producer = producer
        self._connected_at = self.clock.now()
        self._connected_monotonic = self.clock.monotonic()
        self._reconnect_requested = False
        metrics.update_connection_status(True)

        log_with_context(
            logger,
            logging.INFO,
            "Kafka producer connected",
            bootstrap_servers=self.config.bootstrap_servers,
            topic=self.config.topic,
        )

    async def connect_with_retry(
        self, shutdown_event: Optional[asyncio.Event] = None
    ) -> None:
        """
        Connect with exponential backoff.

        Raises:
            BrokerUnavailableError: When all attempts fail or shutdown
                interrupts the backoff
        """
        stats = RetryStats()
        try:
            await retry_async(
                self.connect,
                self.retry_config,
                clock=self.clock,
                shutdown_event=shutdown_event,
                operation_name="kafka_connect",
                stats=stats,
            )
        except Exception as e:
            metrics.record_error("producer", "connection")
            raise BrokerUnavailableError(
                f"Could not connect to Kafka at {self.config.bootstrap_servers} "
                f"after {stats.attempts} attempts",
                cause=e,
                context={"bootstrap_servers": self.config.bootstrap_servers},
            ) from e

    def request_reconnect(self) -> None:
        """Mark the connection as bad; the next refresh_if_stale() rebuilds it."""
        if not self._reconnect_requested:
            logger.warning(
                "Kafka reconnect requested after connection failure",
                extra={"bootstrap_servers": self.config.bootstrap_servers},
            )
        self._reconnect_requested = True

    def needs_refresh(self) -> bool:
        if self._producer is None or self._reconnect_requested:
            return True
        age = self.connection_age
        return age is not None and age >= self.config.refresh_interval_seconds

    async def refresh_if_stale(
        self, shutdown_event: Optional[asyncio.Event] = None
    ) -> bool:
        """
        Rebuild the connection if it was flagged bad or is older than the
        refresh interval.

        Returns:
            True if a reconnect happened

        Raises:
            BrokerUnavailableError: If reconnecting failed
        """
        if not self.needs_refresh():
            return False

        age = self.connection_age
        log_with_context(
            logger,
            logging.INFO,
            "Refreshing Kafka connection",
            operation="reconnect" if self._reconnect_requested else "periodic_refresh",
            connection_age_seconds=round(age, 1) if age is not None else None,
        )
        await self.disconnect()
        await self.connect_with_retry(shutdown_event)
        return True

    async def send_batch(self, topic: str, messages: List[Tuple[str, bytes]]) -> int:
        """
        Send ``(key, value)`` pairs in order and wait for every delivery.

        Returns:
            Number of messages acknowledged

        Raises:
            PipelineError: Classified producer error; ConnectionError when
                not connected
        """
        if self._producer is None:
            raise ConnectionError(
                "Kafka producer not connected",
                context={"bootstrap_servers": self.config.bootstrap_servers},
            )

        try:
            futures = []
            for key, value in messages:
                futures.append(
                    await self._producer.send(topic, key=key.encode("utf-8"), value=value)
                )
            await asyncio.wait_for(
                asyncio.gather(*futures),
                timeout=self.config.request_timeout_ms / 1000,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise KafkaErrorClassifier.classify_producer_error(
                e, context={"topic": topic}
            ) from e
        return len(messages)

    async def disconnect(self) -> None:
        """
        Flush and stop the producer.

        Safe to call multiple times. Errors are logged but not re-raised so a
        broken connection can always be released.
        """
        producer = self._producer
        if producer is None:
            return

        self._producer = None
        self._connected_monotonic = None
        try:
            await producer.flush()
            await producer.stop()
            logger.info("Kafka producer stopped")
        except Exception as e:
            log_exception(
                logger,
                e,
                "Error stopping Kafka producer",
                level=logging.WARNING,
                include_traceback=False,
            )
        finally:
            metrics.update_connection_status(False)
