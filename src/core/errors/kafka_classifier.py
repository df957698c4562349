# Copyright (c) 2024-2026 nickdsmith. All Rights Reserved.
# SPDX-License-Identifier: PROPRIETARY
#
# This file is proprietary and confidential. Unauthorized copying of this file,
# via any medium is strictly prohibited.

"""
Kafka error classification for producer operations.

Provides consistent error handling for aiokafka exceptions,
mapping them to typed PipelineError hierarchy with retry decisions.
"""

import asyncio
import builtins
from typing import Optional

from core.errors.exceptions import (
    AuthError,
    ConnectionError,
    KafkaError,
    PermanentError,
    PipelineError,
    ThrottlingError,
    TimeoutError,
    TransientError,
    ValidationError,
)

# Kafka error classifications based on aiokafka exception types
KAFKA_ERROR_MAPPINGS = {
    # Broker unreachable: a reconnect is warranted
    "connection": [
        "BrokerNotAvailableError",
        "KafkaConnectionError",
        "NodeNotReadyError",
        "ConnectionError",
        "NoBrokersAvailable",
    ],
    # Request timed out waiting on the broker
    "timeout": [
        "RequestTimedOutError",
        "KafkaTimeoutError",
    ],
    # Transient errors (retry recommended)
    "transient": [
        "LeaderNotAvailableError",
        "NotLeaderForPartitionError",
        "NetworkException",
        "CorrelationIdError",
        "BrokerResponseError",
        "NotEnoughReplicasError",
        "NotEnoughReplicasAfterAppendError",
    ],
    # Auth errors (credentials rejected)
    "auth": [
        "TopicAuthorizationFailedError",
        "ClusterAuthorizationFailedError",
        "SaslAuthenticationError",
        "SaslAuthenticationFailedError",
    ],
    # Permanent errors (don't retry)
    "permanent": [
        "UnknownTopicOrPartitionError",
        "MessageSizeTooLargeError",
        "RecordTooLargeError",
        "InvalidTopicError",
        "InvalidConfigurationError",
        "UnsupportedVersionError",
        "IllegalStateError",
        "RecordBatchTooLargeError",
        "ProducerClosed",
    ],
    # Throttling (backoff needed)
    "throttling": [
        "KafkaThrottlingError",
    ],
}


def classify_kafka_error_type(error_type_name: str) -> Optional[str]:
    """
    Classify Kafka error by exception type name.

    Args:
        error_type_name: Name of the exception class

    Returns:
        Error category: "connection", "timeout", "transient", "auth",
        "permanent", "throttling", or None
    """
    for category, error_types in KAFKA_ERROR_MAPPINGS.items():
        if error_type_name in error_types:
            return category
    return None


class KafkaErrorClassifier:
    """
    Centralized error classification for Kafka producer operations.

    Maps aiokafka exceptions to the PipelineError hierarchy and answers the
    one question the publisher cares about: does this failure mean the
    connection itself is bad?
    """

    @staticmethod
    def classify_producer_error(
        error: Exception, context: Optional[dict] = None
    ) -> PipelineError:
        """
        Classify a Kafka producer error into appropriate exception type.

        Args:
            error: Original exception from aiokafka producer
            context: Additional context (merged with default {"service": "kafka_producer"})

        Returns:
            Classified PipelineError subclass
        """
        if isinstance(error, PipelineError):
            return error

        error_str = str(error).lower()
        error_type = type(error).__name__
        ctx = {"service": "kafka_producer"}
        if context:
            ctx.update(context)

        # Classify by exception type first
        category = classify_kafka_error_type(error_type)

        if category is None:
            # Builtin timeouts come from asyncio.wait_for around send/start
            if isinstance(error, (asyncio.TimeoutError, builtins.TimeoutError)):
                category = "timeout"
            elif isinstance(error, builtins.ConnectionError):
                category = "connection"

        if category == "connection":
            return ConnectionError(
                f"Kafka producer connection error: {error}",
                cause=error,
                context=ctx,
            )

        if category == "timeout":
            return TimeoutError(
                f"Kafka producer timeout: {error}",
                cause=error,
                context=ctx,
            )

        if category == "auth":
            return AuthError(
                f"Kafka producer authentication failed: {error}",
                cause=error,
                context=ctx,
            )

        if category == "throttling":
            return ThrottlingError(
                f"Kafka producer throttled: {error}",
                cause=error,
                context=ctx,
            )

        if category == "permanent":
            # Specific handling for common permanent errors
            if "topic" in error_str and "not" in error_str:
                return PermanentError(
                    f"Kafka topic does not exist: {error}",
                    cause=error,
                    context=ctx,
                )
            if "message" in error_str and ("size" in error_str or "large" in error_str):
                return PermanentError(
                    f"Kafka message too large: {error}",
                    cause=error,
                    context=ctx,
                )
            if "invalid" in error_str:
                return ValidationError(
                    f"Kafka producer validation error: {error}",
                    cause=error,
                    context=ctx,
                )
            return PermanentError(
                f"Kafka producer permanent error: {error}",
                cause=error,
                context=ctx,
            )

        if category == "transient":
            return TransientError(
                f"Kafka producer transient error: {error}",
                cause=error,
                context=ctx,
            )

        # String-based fallback classification
        if any(
            marker in error_str
            for marker in ("unauthorized", "authentication", "authorization")
        ):
            return AuthError(
                f"Kafka producer auth error: {error}",
                cause=error,
                context=ctx,
            )

        if "timeout" in error_str or "timed out" in error_str:
            return TimeoutError(
                f"Kafka producer timeout: {error}",
                cause=error,
                context=ctx,
            )

        if any(
            marker in error_str
            for marker in ("connection", "broker", "network", "unable to bootstrap")
        ):
            return ConnectionError(
                f"Kafka producer connection error: {error}",
                cause=error,
                context=ctx,
            )

        # Default to generic Kafka error
        return KafkaError(
            f"Kafka producer error: {error}",
            cause=error,
            context=ctx,
        )

    @staticmethod
    def is_connection_error(error: Exception) -> bool:
        """
        Check whether a producer failure means the connection should be rebuilt.

        Broker unreachable, request timeouts and unknown-broker errors all
        qualify. Everything else is treated as a per-batch loss only.
        """
        classified = KafkaErrorClassifier.classify_producer_error(error)
        return isinstance(classified, (ConnectionError, TimeoutError))
