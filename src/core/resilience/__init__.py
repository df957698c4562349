# Copyright (c) 2024-2026 nickdsmith. All Rights Reserved.
# SPDX-License-Identifier: PROPRIETARY
#
# This file is proprietary and confidential. Unauthorized copying of this file,
# via any medium is strictly prohibited.

"""
Resilience patterns module.

Components:
    - Clock: Injectable wall/monotonic time and shutdown-aware sleep
    - RetryConfig: Exponential backoff configuration
    - retry_async: Explicit retry loop honouring a shutdown event
"""

from .clock import SYSTEM_CLOCK, Clock
from .retry import (
    DEFAULT_RETRY,
    RetryConfig,
    RetryStats,
    retry_async,
)

__all__ = [
    # Clock
    "Clock",
    "SYSTEM_CLOCK",
    # Retry
    "RetryConfig",
    "RetryStats",
    "retry_async",
    "DEFAULT_RETRY",
]
