# Copyright (c) 2024-2026 nickdsmith. All Rights Reserved.
# SPDX-License-Identifier: PROPRIETARY
#
# This file is proprietary and confidential. Unauthorized copying of this file,
# via any medium is strictly prohibited.

"""
Core types used across modules.

The ErrorCategory enum is shared across the core library so every
classifier and log line uses the same category values.
"""

from enum import Enum


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    This enum is used throughout the pipeline to classify errors and determine
    appropriate retry/recovery strategies.

    Categories:
        TRANSIENT: Temporary failures that should retry with backoff
                   (e.g., network timeouts, 429/503 errors)
        AUTH: Authentication failures (e.g., 401 from the search API,
              SASL failures against the broker)
        PERMANENT: Non-retriable failures that won't succeed on retry
                   (e.g., 400 bad time range, 404, oversized messages)
        UNKNOWN: Unclassified errors, may retry conservatively
    """

    TRANSIENT = "transient"
    AUTH = "auth"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


__all__ = [
    "ErrorCategory",
]
