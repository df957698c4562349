# Copyright (c) 2024-2026 nickdsmith. All Rights Reserved.
# SPDX-License-Identifier: PROPRIETARY
#
# This file is proprietary and confidential. Unauthorized copying of this file,
# via any medium is strictly prohibited.

"""
Unified exception hierarchy for the ingestion pipeline.

Provides typed exceptions with retry classification so that each layer
(search client, window fetcher, broker producer) can decide between
retrying, resetting, or giving up without inspecting raw library errors.
"""

import errno

# Import ErrorCategory from canonical source to avoid duplicate enum issues
# (comparing enums from different classes always returns False)
from core.types import ErrorCategory


class PipelineError(Exception):
    """
    Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for retry decisions
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        return self.category in (
            ErrorCategory.TRANSIENT,
            ErrorCategory.AUTH,
            ErrorCategory.UNKNOWN,
        )

    @property
    def should_refresh_auth(self) -> bool:
        return self.category == ErrorCategory.AUTH

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


# =============================================================================
# Authentication Errors
# =============================================================================


class AuthError(PipelineError):
    """Base class for authentication errors."""

    category = ErrorCategory.AUTH


# =============================================================================
# Network/Connection Errors (Transient)
# =============================================================================


class TransientError(PipelineError):
    """Base class for transient/retriable errors."""

    category = ErrorCategory.TRANSIENT


class ThrottlingError(TransientError):
    """Rate limited (429) - should back off."""

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause, context)
        self.retry_after = retry_after  # Seconds to wait if provided


class TimeoutError(TransientError):
    """Operation timeout error (transient, retryable)."""

    pass


class ConnectionError(TransientError):
    """Connection refused/reset or broker unreachable (transient, retryable)."""

    pass


# =============================================================================
# Permanent Errors (Don't Retry)
# =============================================================================


class PermanentError(PipelineError):
    """Base class for permanent/non-retriable errors."""

    category = ErrorCategory.PERMANENT


class ValidationError(PermanentError):
    """Request rejected as malformed (e.g. an unusable time range)."""

    pass


# =============================================================================
# Domain-Specific Errors
# =============================================================================


class UpstreamError(PipelineError):
    """Error from the log search API that could not be classified further."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause, context)
        self.status_code = status_code


class KafkaError(PipelineError):
    """Error from Kafka producer operations."""

    pass


class BrokerUnavailableError(KafkaError):
    """
    The broker could not be reached after exhausting reconnect attempts.

    Unlike the other Kafka errors this one is fatal: the pipeline cannot make
    progress without a producer, so the orchestrator stops the process.
    """

    category = ErrorCategory.PERMANENT


class CheckpointError(PipelineError):
    """
    Checkpoint file could not be read or written.

    When the cause is an OSError the category follows its errno: a full
    disk, a read-only filesystem or a permission problem will not clear on
    the next periodic save, anything else might.
    """

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause=cause, context=context)
        if isinstance(cause, OSError):
            self.category = classify_os_error(cause)


# =============================================================================
# Error Classification Utilities
# =============================================================================

# Markers identifying network-level failures (refused/reset/timed out)
NETWORK_ERROR_MARKERS = (
    "connectionerror",
    "connection refused",
    "connection reset",
    "connection aborted",
    "econnrefused",
    "econnreset",
    "etimedout",
    "no route to host",
    "network unreachable",
    "name resolution",
    "cannot connect to host",
    "server disconnected",
    "broken pipe",
)


def is_network_error(exc: Exception) -> bool:
    """
    Check if exception is a network-level failure.

    Network errors (connection refused/reset, timeouts) get a longer fixed
    wait before the regular backoff so a recovering service is not hammered.
    """
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return True
    if isinstance(exc, PipelineError):
        return exc.cause is not None and is_network_error(exc.cause)

    exc_type = type(exc).__name__.lower()
    exc_str = str(exc).lower()
    if "timeout" in exc_type or "timed out" in exc_str:
        return True
    return any(m in exc_type or m in exc_str for m in NETWORK_ERROR_MARKERS)


def classify_os_error(error: OSError) -> ErrorCategory:
    """
    Classify OSError by errno into error category.

    Conservative classification: only mark as PERMANENT if certain.
    Disk full (ENOSPC), read-only filesystem (EROFS), permission denied (EACCES/EPERM).
    """
    permanent_errnos = (errno.ENOSPC, errno.EROFS, errno.EACCES, errno.EPERM)
    return ErrorCategory.PERMANENT if error.errno in permanent_errnos else ErrorCategory.TRANSIENT


def classify_exception(exc: Exception) -> ErrorCategory:
    """Classify an exception into error category."""
    # Already classified
    if isinstance(exc, PipelineError):
        return exc.category

    exc_type = type(exc).__name__.lower()
    exc_str = str(exc).lower()

    if any(m in exc_type or m in exc_str for m in NETWORK_ERROR_MARKERS):
        return ErrorCategory.TRANSIENT

    # Timeout errors
    if "timeout" in exc_type or "timeout" in exc_str:
        return ErrorCategory.TRANSIENT

    if any(m in exc_str for m in ("401", "unauthorized", "authentication")):
        return ErrorCategory.AUTH

    # Throttling
    if "429" in exc_str or "throttl" in exc_str or "rate limit" in exc_str:
        return ErrorCategory.TRANSIENT

    # Server errors
    if "503" in exc_str or "502" in exc_str or "504" in exc_str:
        return ErrorCategory.TRANSIENT

    if "400" in exc_str or "bad request" in exc_str:
        return ErrorCategory.PERMANENT

    # Permission errors (not auth - actual permissions)
    if "403" in exc_str or "forbidden" in exc_str or "access denied" in exc_str:
        return ErrorCategory.PERMANENT

    # Not found
    if "404" in exc_str or "not found" in exc_str:
        return ErrorCategory.PERMANENT

    if isinstance(exc, OSError):
        return classify_os_error(exc)

    return ErrorCategory.UNKNOWN


def wrap_exception(
    exc: Exception,
    default_class: type = PipelineError,
    context: dict | None = None,
) -> PipelineError:
    """Wrap a generic exception in appropriate PipelineError subclass."""
    if isinstance(exc, PipelineError):
        if context:
            exc.context.update(context)
        return exc

    category = classify_exception(exc)
    exc_str = str(exc).lower()
    context = context or {}

    # Add error details to context dict instead of using specialized classes
    if "timeout" in exc_str:
        context["error_type"] = "timeout"
    elif "429" in exc_str or "throttl" in exc_str:
        context["error_type"] = "throttling"
    elif "503" in exc_str:
        context["error_type"] = "service_unavailable"
    elif "404" in exc_str or "not found" in exc_str:
        context["error_type"] = "not_found"
    elif "403" in exc_str or "forbidden" in exc_str:
        context["error_type"] = "forbidden"

    # Map to base exception types by category
    if category == ErrorCategory.AUTH:
        return AuthError(str(exc), cause=exc, context=context)

    if category == ErrorCategory.TRANSIENT:
        if "429" in exc_str or "throttl" in exc_str:
            return ThrottlingError(str(exc), cause=exc, context=context)
        if is_network_error(exc):
            if "timeout" in type(exc).__name__.lower() or "timed out" in exc_str:
                return TimeoutError(str(exc), cause=exc, context=context)
            return ConnectionError(str(exc), cause=exc, context=context)
        return TransientError(str(exc), cause=exc, context=context)

    if category == ErrorCategory.PERMANENT:
        return PermanentError(str(exc), cause=exc, context=context)

    # Default wrapper
    return default_class(str(exc), cause=exc, context=context)
