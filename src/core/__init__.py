# Copyright (c) 2024-2026 nickdsmith. All Rights Reserved.
# SPDX-License-Identifier: PROPRIETARY
#
# This file is proprietary and confidential. Unauthorized copying of this file,
# via any medium is strictly prohibited.

"""
Core library: infrastructure-agnostic building blocks for the ingestion pipeline.

Modules:
    errors      - Error classification and exception hierarchy
    resilience  - Retry with exponential backoff, injectable clock
    logging     - Structured JSON logging with cycle correlation IDs
    utils       - JSON serialization helpers

Design Principles:
    - No knowledge of Graylog or Kafka topics beyond error classification
    - All modules are independently testable
    - Async-first where applicable
"""

from .types import ErrorCategory

__version__ = "1.0.0"

__all__ = [
    "ErrorCategory",
]
