"""Tests for batch partitioning and the batch publisher."""

import asyncio
import json
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiokafka.errors import KafkaConnectionError, MessageSizeTooLargeError

from core.errors.exceptions import ConnectionError, PermanentError
from graylog_pipeline.publisher import (
    BatchFailed,
    BatchPublisher,
    BatchSent,
    PublishResult,
    make_delivery_key,
    partition_batches,
    serialize_event,
)

EPOCH_MS = 1767623400000  # 2026-01-05T14:30:00Z


def _events(n):
    return [{"_id": str(i), "message": f"event {i}"} for i in range(n)]


@pytest.fixture
def connection():
    connection = MagicMock()
    connection.send_batch = AsyncMock(side_effect=lambda topic, messages: len(messages))
    return connection


@pytest.fixture
def publisher(connection, fake_clock):
    return BatchPublisher(connection, "security-logs", max_batch_size=100, inter_batch_delay=0.1, clock=fake_clock)


class TestPartitionBatches:

    @pytest.mark.parametrize("n", [0, 1, 99, 100, 101, 250, 1000])
    def test_batch_bounds(self, n):
        records = list(range(n))
        batches = list(partition_batches(records, 100))

        assert all(1 <= len(b) <= 100 for b in batches)
        assert len(batches) == -(-n // 100)
        assert [r for b in batches for r in b] == records

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            list(partition_batches([1], 0))


class TestHelpers:

    def test_delivery_key(self):
        assert make_delivery_key(EPOCH_MS, 2, 17) == "1767623400000-2-17"

    def test_serialize_event(self):
        event = {"message": "héllo", "ts": datetime(2026, 1, 5, 14, 30, tzinfo=UTC), "n": 3}
        assert json.loads(serialize_event(event)) == {
            "message": "héllo",
            "ts": "2026-01-05T14:30:00.000Z",
            "n": 3,
        }

    def test_serialize_non_object_events(self):
        assert serialize_event("raw syslog line") == b'"raw syslog line"'
        assert serialize_event(None) == b"null"
        assert serialize_event({}) == b"{}"

    def test_publish_result_properties(self):
        failed = BatchFailed(index=1, size=10, error=ConnectionError("x"), connection_error=True)
        result = PublishResult(sent=90, failed=10, outcomes=[BatchSent(0, 90), failed])

        assert result.ok is False
        assert result.total == 100
        assert result.connection_failures == [failed]


class TestBatchPublisher:

    @pytest.mark.asyncio
    async def test_publishes_all_batches(self, publisher, connection, fake_clock):
        result = await publisher.publish(_events(250))

        assert result.ok
        assert result.sent == 250
        assert [o.size for o in result.outcomes] == [100, 100, 50]
        assert connection.send_batch.await_count == 3
        # Pause between batches, not before the first
        assert fake_clock.sleeps == [0.1, 0.1]

    @pytest.mark.asyncio
    async def test_keys_and_payloads(self, publisher, connection):
        await publisher.publish(_events(101))

        first_call, second_call = connection.send_batch.await_args_list
        topic, messages = first_call.args
        assert topic == "security-logs"
        assert messages[0][0] == f"{EPOCH_MS}-0-0"
        assert messages[99][0] == f"{EPOCH_MS}-0-99"
        assert json.loads(messages[0][1]) == {"_id": "0", "message": "event 0"}

        _, messages = second_call.args
        assert messages == [(f"{EPOCH_MS}-1-0", serialize_event({"_id": "100", "message": "event 100"}))]

    @pytest.mark.asyncio
    async def test_keys_unique_within_call(self, publisher, connection):
        await publisher.publish(_events(300))

        keys = [key for call in connection.send_batch.await_args_list for key, _ in call.args[1]]
        assert len(keys) == len(set(keys)) == 300

    @pytest.mark.asyncio
    async def test_empty_records(self, publisher, connection):
        result = await publisher.publish([])

        assert result == PublishResult()
        connection.send_batch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_batch_does_not_stop_later_batches(self, publisher, connection):
        calls = []

        async def send(topic, messages):
            calls.append(len(messages))
            if len(calls) == 2:
                raise MessageSizeTooLargeError()
            return len(messages)

        connection.send_batch.side_effect = send

        result = await publisher.publish(_events(250))

        assert calls == [100, 100, 50]
        assert result.sent == 150
        assert result.failed == 100
        assert result.sent + result.failed == 250
        assert isinstance(result.outcomes[1], BatchFailed)
        assert isinstance(result.outcomes[1].error, PermanentError)
        assert result.connection_failures == []

    @pytest.mark.asyncio
    async def test_connection_failures_flagged(self, publisher, connection):
        connection.send_batch.side_effect = KafkaConnectionError("broker gone")

        result = await publisher.publish(_events(150))

        assert result.sent == 0
        assert result.failed == 150
        assert len(result.connection_failures) == 2
        assert all(isinstance(o.error, ConnectionError) for o in result.connection_failures)

    @pytest.mark.asyncio
    async def test_shutdown_before_first_batch(self, publisher, connection):
        shutdown = asyncio.Event()
        shutdown.set()

        result = await publisher.publish(_events(150), shutdown)

        assert result.skipped == 150
        assert result.outcomes == []
        connection.send_batch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_shutdown_between_batches(self, publisher, connection):
        shutdown = asyncio.Event()

        async def send(topic, messages):
            shutdown.set()
            return len(messages)

        connection.send_batch.side_effect = send

        result = await publisher.publish(_events(250), shutdown)

        assert result.sent == 100
        assert result.skipped == 150
        assert result.total == 250
        assert result.ok is False
        assert connection.send_batch.await_count == 1

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, publisher, connection):
        connection.send_batch.side_effect = asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await publisher.publish(_events(10))
