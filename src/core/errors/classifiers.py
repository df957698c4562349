# Copyright (c) 2024-2026 nickdsmith. All Rights Reserved.
# SPDX-License-Identifier: PROPRIETARY
#
# This file is proprietary and confidential. Unauthorized copying of this file,
# via any medium is strictly prohibited.

"""
Centralized error classification for the upstream log search API.

Maps HTTP status codes and aiohttp transport failures onto the typed
PipelineError hierarchy so the window fetcher can tell a bad window
(reset, don't retry) from a flaky network (wait longer, then retry).
"""

import asyncio
import builtins
from typing import Optional

import aiohttp

from core.errors.exceptions import (
    AuthError,
    ConnectionError,
    PermanentError,
    PipelineError,
    ThrottlingError,
    TimeoutError,
    TransientError,
    UpstreamError,
    ValidationError,
    wrap_exception,
)

# (label, exception class) per status code
_STATUS_MAP: dict[int, tuple[str, type[PipelineError]]] = {
    400: ("Bad request", ValidationError),
    401: ("Unauthorized", AuthError),
    403: ("Forbidden", PermanentError),
    404: ("Not found", PermanentError),
    422: ("Unprocessable request", ValidationError),
    429: ("Rate limited", ThrottlingError),
    500: ("Server error", TransientError),
    502: ("Bad gateway", TransientError),
    503: ("Service unavailable", TransientError),
    504: ("Gateway timeout", TransientError),
}


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class UpstreamErrorClassifier:
    """
    Error classification for the log search API.

    Stateless; every method is a staticmethod so the client can call it
    without holding an instance.
    """

    @staticmethod
    def classify_response(
        status: int,
        url: str,
        body: str = "",
        retry_after: Optional[str] = None,
        context: Optional[dict] = None,
    ) -> PipelineError:
        """
        Classify a non-2xx response into the appropriate exception type.

        Args:
            status: HTTP status code
            url: Request URL (query string included)
            body: Truncated response body, for diagnostics only
            retry_after: Raw Retry-After header, honoured for 429
            context: Additional context merged into the error

        Returns:
            Classified PipelineError subclass
        """
        ctx = {"service": "graylog", "http_status": status}
        if body:
            ctx["response_body"] = body[:500]
        if context:
            ctx.update(context)

        entry = _STATUS_MAP.get(status)
        if entry:
            label, error_cls = entry
            message = f"{label} ({status}): {url}"
            if error_cls is ThrottlingError:
                return ThrottlingError(
                    message, retry_after=_parse_retry_after(retry_after), context=ctx
                )
            return error_cls(message, context=ctx)

        # Fallback: remaining 4xx are permanent, everything else is transient
        if 400 <= status < 500:
            return PermanentError(f"Client error ({status}): {url}", context=ctx)
        if status >= 500:
            return TransientError(f"Server error ({status}): {url}", context=ctx)

        return UpstreamError(f"Unexpected response ({status}): {url}", status_code=status, context=ctx)

    @staticmethod
    def classify_client_error(
        error: Exception, context: Optional[dict] = None
    ) -> PipelineError:
        """
        Classify a transport-level failure raised while talking to the API.

        Args:
            error: Exception raised by aiohttp or asyncio
            context: Additional context (merged with default {"service": "graylog"})

        Returns:
            Classified PipelineError subclass
        """
        if isinstance(error, PipelineError):
            return error

        ctx = {"service": "graylog"}
        if context:
            ctx.update(context)

        # asyncio.TimeoutError is builtins.TimeoutError on 3.11+
        if isinstance(error, (asyncio.TimeoutError, builtins.TimeoutError, aiohttp.ServerTimeoutError)):
            return TimeoutError(f"Search request timed out: {error}", cause=error, context=ctx)

        if isinstance(
            error,
            (
                aiohttp.ClientConnectionError,
                aiohttp.ServerDisconnectedError,
                builtins.ConnectionError,
            ),
        ):
            return ConnectionError(f"Search API connection error: {error}", cause=error, context=ctx)

        if isinstance(error, aiohttp.ContentTypeError):
            return UpstreamError(f"Search API returned non-JSON body: {error}", cause=error, context=ctx)

        if isinstance(error, aiohttp.ClientResponseError):
            return UpstreamErrorClassifier.classify_response(
                error.status, str(error.request_info.real_url), context=ctx
            )

        if isinstance(error, aiohttp.ClientError):
            return TransientError(f"Search API client error: {error}", cause=error, context=ctx)

        return wrap_exception(error, default_class=UpstreamError, context=ctx)
