# Copyright (c) 2024-2026 nickdsmith. All Rights Reserved.
# SPDX-License-Identifier: PROPRIETARY
#
# This file is proprietary and confidential. Unauthorized copying of this file,
# via any medium is strictly prohibited.

"""
Async client for the Graylog search API.

Searches go to the universal absolute endpoint. Graylog releases that no
longer serve it answer 404; the same window is then asked of the views
messages endpoint, and every later search goes there directly.
"""

import asyncio
import logging
from typing import Any

import aiohttp
from pydantic import ValidationError as PydanticValidationError

from core.errors.classifiers import UpstreamErrorClassifier
from core.errors.exceptions import PermanentError, PipelineError, UpstreamError
from core.logging import get_logger, log_with_context
from graylog_pipeline.config import GraylogConfig
from graylog_pipeline.graylog.models import SearchResponse, TimeWindow

logger = get_logger(__name__)

SEARCH_ENDPOINT = "/api/search/universal/absolute"
VIEWS_SEARCH_ENDPOINT = "/api/views/search/messages"


class GraylogClient:
    """
    Async client for the search API.

    One ClientSession is created lazily and reused for every request.
    Every failure is raised as a classified PipelineError so callers can
    choose between retrying and resetting the window without looking at
    aiohttp types.
    """

    def __init__(self, config: GraylogConfig):
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.timeout_seconds = config.request_timeout_seconds
        # Set once the legacy endpoint has answered 404
        self.use_views_api = False

        self._session: aiohttp.ClientSession | None = None
        self._closed = False

        logger.info(
            "GraylogClient initialized",
            extra={
                "http_url": self.base_url,
                "operation": "graylog_search",
            },
        )

    async def __aenter__(self) -> "GraylogClient":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _ensure_session(self) -> None:
        if self._closed:
            raise RuntimeError("GraylogClient is closed, cannot create new session")
        if self._session is None or self._session.closed:
            headers = {
                "Accept": "application/json",
                "X-Requested-By": "graylog-pipeline",
            }
            if self.config.username:
                headers["Authorization"] = aiohttp.BasicAuth(
                    self.config.username, self.config.password
                ).encode()
            self._session = aiohttp.ClientSession(headers=headers)

    async def close(self) -> None:
        self._closed = True
        if self._session and not self._session.closed:
            await self._session.close()
            await asyncio.sleep(0)
        self._session = None

    def _build_params(self, window: TimeWindow, limit: int) -> dict[str, Any]:
        params: dict[str, Any] = {
            "query": self.config.query,
            **window.as_params(),
            "limit": limit,
            "sort": "timestamp:asc",
        }
        if self.config.fields:
            params["fields"] = self.config.fields
        if self.config.stream_id:
            params["filter"] = f"streams:{self.config.stream_id}"
        return params

    def _build_views_body(self, window: TimeWindow, limit: int) -> dict[str, Any]:
        bounds = window.as_params()
        body: dict[str, Any] = {
            "timerange": {"type": "absolute", "from": bounds["from"], "to": bounds["to"]},
            "query": {"type": "elasticsearch", "query_string": self.config.query},
            "limit": limit,
        }
        if self.config.stream_id:
            body["streams"] = [self.config.stream_id]
        return body

    async def search(self, window: TimeWindow, limit: int) -> list[Any]:
        """
        Fetch the events in ``window``, oldest first, at most ``limit`` of them.

        Returns:
            The inner event payloads, unchanged; an empty list when the
            window holds nothing

        Raises:
            PipelineError: ValidationError for a rejected range (400/422),
                ConnectionError/TimeoutError for network failures, and the
                other classified types for remaining HTTP statuses
        """
        await self._ensure_session()

        bounds = window.as_params()
        ctx = {"window_from": bounds["from"], "window_to": bounds["to"]}

        if self.use_views_api:
            return await self._search_views(window, limit, ctx)

        try:
            payload, status, duration = await self._request(
                "GET", SEARCH_ENDPOINT, ctx, params=self._build_params(window, limit)
            )
        except PermanentError as e:
            if e.context.get("http_status") != 404:
                raise
            log_with_context(
                logger,
                logging.WARNING,
                "Legacy search endpoint not found, falling back to views API",
                http_url=f"{self.base_url}{VIEWS_SEARCH_ENDPOINT}",
                **ctx,
            )
            events = await self._search_views(window, limit, ctx)
            self.use_views_api = True
            return events

        parsed = self._parse(SearchResponse.model_validate, payload, status, ctx)
        return self._finish(parsed, status, duration, limit, ctx, "GET")

    async def _search_views(
        self, window: TimeWindow, limit: int, ctx: dict[str, Any]
    ) -> list[Any]:
        payload, status, duration = await self._request(
            "POST", VIEWS_SEARCH_ENDPOINT, ctx, json_body=self._build_views_body(window, limit)
        )
        parsed = self._parse(SearchResponse.from_views_payload, payload, status, ctx)
        return self._finish(parsed, status, duration, limit, ctx, "POST")

    async def _request(
        self,
        method: str,
        path: str,
        ctx: dict[str, Any],
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> tuple[Any, int, float]:
        """Send one request and return ``(json payload, status, seconds)``."""
        url = f"{self.base_url}{path}"
        start_time = asyncio.get_running_loop().time()
        try:
            async with self._session.request(
                method,
                url,
                params=params,
                json=json_body,
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            ) as response:
                duration = asyncio.get_running_loop().time() - start_time

                if response.status >= 300:
                    try:
                        body = await response.text()
                    except (aiohttp.ClientError, UnicodeDecodeError):
                        body = "<unable to read response body>"
                    error = UpstreamErrorClassifier.classify_response(
                        response.status,
                        str(response.url),
                        body=body,
                        retry_after=response.headers.get("Retry-After"),
                        context=ctx,
                    )
                    logger.warning(
                        "Search request failed",
                        extra={
                            **ctx,
                            "http_method": method,
                            "http_url": str(response.url),
                            "http_status": response.status,
                            "error_category": error.category.value,
                            "duration_ms": round(duration * 1000, 1),
                        },
                    )
                    raise error

                payload = await response.json()
                return payload, response.status, duration
        except PipelineError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as e:
            raise UpstreamErrorClassifier.classify_client_error(e, context=ctx) from e

    @staticmethod
    def _parse(parser, payload: Any, status: int, ctx: dict[str, Any]) -> SearchResponse | None:
        if payload is None:
            return None
        try:
            return parser(payload)
        except PydanticValidationError as e:
            raise UpstreamError(
                f"Unexpected search response shape: {e.error_count()} validation errors",
                status_code=status,
                cause=e,
                context=ctx,
            ) from e

    @staticmethod
    def _finish(
        parsed: SearchResponse | None,
        status: int,
        duration: float,
        limit: int,
        ctx: dict[str, Any],
        method: str,
    ) -> list[Any]:
        events = parsed.events() if parsed is not None else []
        slow = duration > 2.0
        logger.log(
            logging.INFO if slow else logging.DEBUG,
            "Slow search request" if slow else "Search request succeeded",
            extra={
                **ctx,
                "http_method": method,
                "http_status": status,
                "records_fetched": len(events),
                "limit": limit,
                "duration_ms": round(duration * 1000, 1),
            },
        )
        return events
