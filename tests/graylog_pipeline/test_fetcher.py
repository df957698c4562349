"""
Tests for WindowFetcher.

The search client is mocked except where a local search API is served.
Backoff runs on the fake clock so retry schedules are asserted exactly.
"""

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from core.errors.exceptions import (
    ConnectionError,
    PermanentError,
    TimeoutError,
    TransientError,
    ValidationError,
)
from graylog_pipeline.config import GraylogConfig, PipelineConfig
from graylog_pipeline.fetcher import FetchStatus, WindowFetcher
from graylog_pipeline.graylog.client import SEARCH_ENDPOINT, GraylogClient

FAKE_EPOCH = datetime(2026, 1, 5, 14, 30, tzinfo=UTC)


def _events(n):
    return [{"_id": str(i), "message": f"event {i}"} for i in range(n)]


@pytest.fixture
def client():
    client = MagicMock()
    client.search = AsyncMock(return_value=[])
    return client


@pytest.fixture
def fetcher(client, fake_clock):
    return WindowFetcher(client, PipelineConfig(), clock=fake_clock)


class TestComputeWindow:
    """Window construction and validity guard."""

    def test_from_boundary_to_now(self, fetcher):
        boundary = FAKE_EPOCH - timedelta(seconds=42)
        window = fetcher.compute_window(boundary)
        assert window.start == boundary
        assert window.end == FAKE_EPOCH

    def test_cold_start_uses_poll_interval(self, fetcher):
        window = fetcher.compute_window(None)
        assert window.start == FAKE_EPOCH - timedelta(seconds=5)
        assert window.end == FAKE_EPOCH

    @pytest.mark.parametrize(
        "boundary",
        [
            FAKE_EPOCH,
            FAKE_EPOCH + timedelta(minutes=10),
            datetime(2026, 1, 5, 14, 0),
            "2026-01-05T14:00:00Z",
        ],
        ids=["zero-width", "future", "naive", "not-a-datetime"],
    )
    def test_invalid_window_falls_back(self, fetcher, boundary):
        window = fetcher.compute_window(boundary)
        assert window.is_valid
        assert window.start == FAKE_EPOCH - timedelta(seconds=5)
        assert window.end == FAKE_EPOCH


class TestFetch:
    """Fetch outcomes."""

    @pytest.mark.asyncio
    async def test_records_advance_to_window_end(self, fetcher, client):
        client.search.return_value = _events(3)
        boundary = FAKE_EPOCH - timedelta(seconds=5)

        result = await fetcher.fetch(boundary)

        assert result.status == FetchStatus.OK
        assert [r["_id"] for r in result.records] == ["0", "1", "2"]
        assert result.new_boundary == FAKE_EPOCH
        assert result.attempts == 1
        client.search.assert_awaited_once_with(result.window, 1000)

    @pytest.mark.asyncio
    async def test_empty_advances_and_counts(self, fetcher, client):
        result = await fetcher.fetch(FAKE_EPOCH - timedelta(seconds=5))

        assert result.status == FetchStatus.EMPTY
        assert result.records == []
        assert result.new_boundary == FAKE_EPOCH
        assert fetcher.consecutive_empty_fetches == 1

    @pytest.mark.asyncio
    async def test_records_reset_empty_counter(self, fetcher, client):
        await fetcher.fetch(FAKE_EPOCH - timedelta(seconds=5))
        await fetcher.fetch(FAKE_EPOCH - timedelta(seconds=5))
        assert fetcher.consecutive_empty_fetches == 2

        client.search.return_value = _events(1)
        await fetcher.fetch(FAKE_EPOCH - timedelta(seconds=5))

        assert fetcher.consecutive_empty_fetches == 0

    @pytest.mark.asyncio
    async def test_stagnation_resets_after_ten_empty_fetches(self, fetcher, fake_clock):
        boundary = FAKE_EPOCH - timedelta(seconds=5)
        statuses = []
        for _ in range(10):
            result = await fetcher.fetch(boundary)
            statuses.append(result.status)
            boundary = result.new_boundary
            fake_clock.advance(5)

        assert statuses[:9] == [FetchStatus.EMPTY] * 9
        assert statuses[9] == FetchStatus.WINDOW_RESET
        # Reset is computed at fetch time, before the final advance
        assert result.new_boundary == FAKE_EPOCH + timedelta(seconds=45) - timedelta(minutes=5)
        assert fetcher.consecutive_empty_fetches == 0

    @pytest.mark.asyncio
    async def test_hitting_limit_still_ok(self, fetcher, client):
        client.search.return_value = _events(1000)

        result = await fetcher.fetch(FAKE_EPOCH - timedelta(seconds=5))

        assert result.status == FetchStatus.OK
        assert len(result.records) == 1000


class TestFetchFailures:
    """Retry, reset and abandon paths. fetch() must never raise."""

    @pytest.mark.asyncio
    async def test_validation_error_resets_without_retry(self, fetcher, client, fake_clock):
        client.search.side_effect = ValidationError("invalid time range")

        result = await fetcher.fetch(FAKE_EPOCH - timedelta(hours=3))

        assert result.status == FetchStatus.WINDOW_RESET
        assert result.new_boundary == FAKE_EPOCH - timedelta(minutes=5)
        assert result.records == []
        assert client.search.await_count == 1
        assert fake_clock.sleeps == []

    @pytest.mark.asyncio
    async def test_transient_then_success(self, fetcher, client, fake_clock):
        client.search.side_effect = [TransientError("503"), TransientError("503"), _events(2)]

        result = await fetcher.fetch(FAKE_EPOCH - timedelta(seconds=5))

        assert result.status == FetchStatus.OK
        assert result.attempts == 3
        assert fake_clock.sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_exhaustion_keeps_boundary(self, fetcher, client, fake_clock):
        client.search.side_effect = TransientError("503")
        boundary = FAKE_EPOCH - timedelta(seconds=5)

        result = await fetcher.fetch(boundary)

        assert result.status == FetchStatus.ABANDONED
        assert result.new_boundary == boundary
        assert result.records == []
        assert result.attempts == 5
        assert isinstance(result.error, TransientError)
        assert fake_clock.sleeps == [1.0, 2.0, 4.0, 8.0]

    @pytest.mark.asyncio
    async def test_network_errors_wait_longer(self, fetcher, client, fake_clock):
        client.search.side_effect = ConnectionError("connection refused")

        result = await fetcher.fetch(FAKE_EPOCH - timedelta(seconds=5))

        assert result.status == FetchStatus.ABANDONED
        assert fake_clock.sleeps == [4.0, 5.0, 7.0, 11.0]

    @pytest.mark.asyncio
    async def test_timeouts_are_network_errors(self, fetcher, client, fake_clock):
        client.search.side_effect = [TimeoutError("timed out"), _events(1)]

        await fetcher.fetch(FAKE_EPOCH - timedelta(seconds=5))

        assert fake_clock.sleeps == [4.0]

    @pytest.mark.asyncio
    async def test_cold_start_exhaustion_uses_window_start(self, fetcher, client):
        client.search.side_effect = TransientError("503")

        result = await fetcher.fetch(None)

        assert result.new_boundary == FAKE_EPOCH - timedelta(seconds=5)

    @pytest.mark.asyncio
    async def test_permanent_error_abandons_immediately(self, fetcher, client, fake_clock):
        client.search.side_effect = PermanentError("403 forbidden")

        result = await fetcher.fetch(FAKE_EPOCH - timedelta(seconds=5))

        assert result.status == FetchStatus.ABANDONED
        assert client.search.await_count == 1
        assert fake_clock.sleeps == []

    @pytest.mark.asyncio
    async def test_unexpected_exception_never_raises(self, fetcher, client):
        client.search.side_effect = RuntimeError("something odd")

        result = await fetcher.fetch(FAKE_EPOCH - timedelta(seconds=5))

        assert result.status == FetchStatus.ABANDONED

    @pytest.mark.asyncio
    async def test_failures_do_not_touch_empty_counter(self, fetcher, client):
        await fetcher.fetch(FAKE_EPOCH - timedelta(seconds=5))
        client.search.side_effect = TransientError("503")

        await fetcher.fetch(FAKE_EPOCH - timedelta(seconds=5))

        assert fetcher.consecutive_empty_fetches == 1

    @pytest.mark.asyncio
    async def test_shutdown_cuts_backoff_short(self, fetcher, client, fake_clock):
        shutdown = asyncio.Event()

        async def fail_and_signal(*args):
            shutdown.set()
            raise TransientError("503")

        client.search.side_effect = fail_and_signal

        result = await fetcher.fetch(FAKE_EPOCH - timedelta(seconds=5), shutdown)

        assert result.status == FetchStatus.ABANDONED
        assert client.search.await_count == 1
        assert fake_clock.sleeps == []


class TestFetchAgainstSearchApi:
    """Fetcher and client together against a local search API."""

    @pytest.mark.asyncio
    async def test_non_object_hits_do_not_stall_boundary(self, fake_clock):
        async def handler(request):
            return web.json_response(
                {
                    "messages": [
                        {"message": {"a": 1}},
                        {"message": "raw syslog line"},
                        {"message": None},
                    ]
                }
            )

        app = web.Application()
        app.router.add_get(SEARCH_ENDPOINT, handler)
        server = TestServer(app)
        await server.start_server()
        client = GraylogClient(GraylogConfig(host=server.host, port=server.port))
        try:
            fetcher = WindowFetcher(client, PipelineConfig(), clock=fake_clock)
            boundary = FAKE_EPOCH - timedelta(seconds=5)

            for _ in range(3):
                result = await fetcher.fetch(boundary)

                assert result.status == FetchStatus.OK
                assert result.records == [{"a": 1}, "raw syslog line", None]
                assert result.attempts == 1
                assert result.new_boundary > boundary
                boundary = result.new_boundary
                fake_clock.advance(5)
        finally:
            await client.close()
            await server.close()
