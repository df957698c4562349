# Copyright (c) 2024-2026 nickdsmith. All Rights Reserved.
# SPDX-License-Identifier: PROPRIETARY
#
# This file is proprietary and confidential. Unauthorized copying of this file,
# via any medium is strictly prohibited.

"""
Retry utilities with exception-aware handling.

Uses the exception hierarchy to make intelligent retry decisions:
- Transient errors: retry with exponential backoff
- Network errors: optional extra fixed wait before the regular backoff
- Permanent errors: fail immediately (no retry)

Retries are an explicit attempt loop. All waiting goes through an injected
Clock and is interrupted by the shutdown event, so a stop signal is
observed during backoff instead of after it.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from core.errors.exceptions import (
    PipelineError,
    ThrottlingError,
    classify_exception,
    wrap_exception,
)
from core.logging import get_logger
from core.resilience.clock import SYSTEM_CLOCK, Clock

# Import ErrorCategory from core.types to avoid circular dependency
from core.types import ErrorCategory

logger = get_logger(__name__)

T = TypeVar("T")


def _extract_error_category(wrapped: Exception) -> str:
    """Return a string error category from a wrapped exception."""
    if isinstance(wrapped, PipelineError):
        cat = wrapped.category
    else:
        cat = classify_exception(wrapped)
    return cat.value if hasattr(cat, "value") else str(cat)


def _log_retry_failure(
    operation_name: str,
    wrapped: Exception,
    e: Exception,
    error_category: str,
    config: "RetryConfig",
    attempt: int,
) -> None:
    """Log permanent-error or max-retries-exhausted."""
    error_type = type(wrapped).__name__
    if isinstance(wrapped, PipelineError) and not wrapped.is_retryable:
        logger.warning(
            "Permanent error for %s, not retrying: %s",
            operation_name,
            str(e)[:200],
            extra={
                "operation": operation_name,
                "attempt": attempt + 1,
                "error_type": error_type,
                "error_category": error_category,
                "error_message": str(e)[:200],
            },
        )
        return

    logger.error(
        "Max retries exhausted for %s: %s",
        operation_name,
        str(e)[:200],
        extra={
            "operation": operation_name,
            "error_type": error_type,
            "error_category": error_category,
            "max_attempts": config.max_attempts,
            "error_message": str(e)[:200],
        },
    )


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0

    # Equal jitter spreads retries out; off by default so the schedule is
    # exactly base, 2*base, 4*base, ...
    jitter: bool = False

    # If True, don't retry permanent errors even if max_attempts > 0
    respect_permanent: bool = True

    # If True, use retry_after from ThrottlingError when available
    respect_retry_after: bool = True

    def __post_init__(self):
        """Ensure proper types from YAML/env vars."""
        self.max_attempts = int(self.max_attempts)
        self.base_delay = float(self.base_delay)
        self.max_delay = float(self.max_delay)
        self.exponential_base = float(self.exponential_base)
        # Keep boolean if already bool, otherwise convert
        # (bool('false') would be True, so we need this check)
        for name in ("jitter", "respect_permanent", "respect_retry_after"):
            value = getattr(self, name)
            if not isinstance(value, bool):
                setattr(self, name, str(value).lower() in ("true", "1", "yes"))

    def get_delay(self, attempt: int, error: Exception | None = None) -> float:
        """
        Calculate the backoff delay before the next attempt.

        Args:
            attempt: 0-indexed attempt number that just failed
            error: Optional exception to check for retry_after

        Returns:
            Delay in seconds
        """
        # Check for explicit retry_after (e.g., from 429 response)
        if (
            self.respect_retry_after
            and isinstance(error, ThrottlingError)
            and error.retry_after
        ):
            return min(error.retry_after, self.max_delay)

        delay = self.base_delay * (self.exponential_base**attempt)

        if self.jitter:
            # Equal jitter: half fixed, half random
            delay = (delay / 2) + random.uniform(0, delay / 2)

        return min(delay, self.max_delay)

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """
        Determine if error should be retried.

        Args:
            error: The exception that occurred
            attempt: 0-indexed current attempt

        Returns:
            True if should retry
        """
        # Check attempt count first
        if attempt >= self.max_attempts - 1:
            return False

        # Use exception classification
        if isinstance(error, PipelineError):
            if self.respect_permanent and not error.is_retryable:
                return False
            return error.is_retryable

        # Classify unknown exceptions
        category = classify_exception(error)
        if self.respect_permanent and category == ErrorCategory.PERMANENT:
            return False

        return category in (
            ErrorCategory.TRANSIENT,
            ErrorCategory.AUTH,
            ErrorCategory.UNKNOWN,
        )


DEFAULT_RETRY = RetryConfig()


@dataclass
class RetryStats:
    """Statistics from a retry operation."""

    attempts: int = 0
    total_delay: float = 0.0
    final_error: Exception | None = None
    success: bool = False
    interrupted: bool = False

    @property
    def retried(self) -> bool:
        """Whether any retries occurred."""
        return self.attempts > 1


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    *,
    clock: Clock | None = None,
    shutdown_event: asyncio.Event | None = None,
    operation_name: str = "operation",
    extra_delay: Callable[[Exception], float] | None = None,
    stats: RetryStats | None = None,
    wrap_errors: bool = True,
) -> T:
    """
    Run ``operation`` until it succeeds, the error is not retryable, the
    attempt ceiling is reached, or shutdown is signalled.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        config: Retry configuration (defaults to DEFAULT_RETRY)
        clock: Time source used for backoff sleeps
        shutdown_event: When set, backoff is abandoned and the last error raised
        operation_name: Name used in log lines
        extra_delay: Returns additional seconds to wait for a given error
            before the regular backoff (e.g. a longer pause on network errors)
        stats: Optional RetryStats filled in as attempts are made
        wrap_errors: If True, unknown exceptions are raised as PipelineError

    Raises:
        The last (wrapped) error when no further attempt will be made.
    """
    config = config or DEFAULT_RETRY
    clock = clock or SYSTEM_CLOCK
    stats = stats if stats is not None else RetryStats()

    attempt = 0
    while True:
        stats.attempts = attempt + 1
        try:
            result = await operation()
        except Exception as e:
            wrapped = (
                wrap_exception(e)
                if wrap_errors and not isinstance(e, PipelineError)
                else e
            )
            stats.final_error = wrapped
            error_category = _extract_error_category(wrapped)

            if not config.should_retry(wrapped, attempt):
                _log_retry_failure(
                    operation_name, wrapped, e, error_category, config, attempt
                )
                if wrapped is e:
                    raise
                raise wrapped from e

            delay = config.get_delay(attempt, wrapped)
            pause = extra_delay(wrapped) if extra_delay else 0.0

            logger.warning(
                "Retryable error for %s, will retry",
                operation_name,
                extra={
                    "operation": operation_name,
                    "attempt": attempt + 1,
                    "max_attempts": config.max_attempts,
                    "error_category": error_category,
                    "delay_seconds": round(delay + pause, 2),
                    "delay_source": "network_pause" if pause else "exponential_backoff",
                    "error_message": str(e)[:200],
                },
            )

            interrupted = await clock.sleep(pause + delay, shutdown_event)
            stats.total_delay += pause + delay
            if interrupted:
                stats.interrupted = True
                logger.info(
                    "Shutdown requested during backoff for %s, giving up",
                    operation_name,
                    extra={"operation": operation_name, "attempt": attempt + 1},
                )
                if wrapped is e:
                    raise
                raise wrapped from e

            attempt += 1
            continue

        if attempt > 0:
            logger.info(
                "Retry succeeded for %s after %d attempts",
                operation_name,
                attempt + 1,
                extra={
                    "operation": operation_name,
                    "attempt": attempt + 1,
                    "total_attempts": config.max_attempts,
                },
            )
        stats.success = True
        return result


__all__ = [
    "RetryConfig",
    "RetryStats",
    "retry_async",
    "DEFAULT_RETRY",
]
