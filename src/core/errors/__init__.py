# Copyright (c) 2024-2026 nickdsmith. All Rights Reserved.
# SPDX-License-Identifier: PROPRIETARY
#
# This file is proprietary and confidential. Unauthorized copying of this file,
# via any medium is strictly prohibited.

"""
Error classification and exception hierarchy.

Provides:
- ErrorCategory enum for classifying errors
- PipelineError hierarchy for typed exceptions
- Classification utilities for error handling
- Classifiers for the search API (aiohttp) and the Kafka producer (aiokafka)
"""

from core.errors.classifiers import UpstreamErrorClassifier
from core.errors.exceptions import (
    AuthError,
    BrokerUnavailableError,
    CheckpointError,
    ConnectionError,
    # Enums
    ErrorCategory,
    KafkaError,
    PermanentError,
    # Base classes
    PipelineError,
    # Transient errors
    ThrottlingError,
    TimeoutError,
    TransientError,
    UpstreamError,
    ValidationError,
    classify_exception,
    # Classification utilities
    is_network_error,
    wrap_exception,
)
from core.errors.kafka_classifier import KafkaErrorClassifier

__all__ = [
    # Enums
    "ErrorCategory",
    # Base classes
    "PipelineError",
    "AuthError",
    "TransientError",
    "PermanentError",
    "ValidationError",
    "KafkaError",
    "BrokerUnavailableError",
    "UpstreamError",
    "CheckpointError",
    # Transient errors
    "ThrottlingError",
    "ConnectionError",
    "TimeoutError",
    # Classification utilities
    "is_network_error",
    "classify_exception",
    "wrap_exception",
    # Classifiers
    "UpstreamErrorClassifier",
    "KafkaErrorClassifier",
]
