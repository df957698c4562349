"""Tests for the checkpoint store."""

import errno
import json
import logging
from datetime import UTC, datetime
from unittest.mock import patch

import pytest

from graylog_pipeline.checkpoint import CheckpointStore, PipelineCheckpoint

BOUNDARY = datetime(2026, 1, 5, 14, 25, 0, 500000, tzinfo=UTC)


@pytest.fixture
def store(tmp_path, fake_clock):
    return CheckpointStore(tmp_path / "state" / "checkpoint.json", clock=fake_clock)


class TestPipelineCheckpoint:

    def test_to_dict_uses_wire_format(self):
        checkpoint = PipelineCheckpoint(last_boundary=BOUNDARY, saved_at=BOUNDARY)
        assert checkpoint.to_dict() == {
            "lastBoundary": "2026-01-05T14:25:00.500Z",
            "savedAt": "2026-01-05T14:25:00.500Z",
        }

    def test_from_dict_without_saved_at(self):
        checkpoint = PipelineCheckpoint.from_dict({"lastBoundary": "2026-01-05T14:25:00.500Z"})
        assert checkpoint.last_boundary == BOUNDARY
        assert checkpoint.saved_at == BOUNDARY

    def test_from_dict_missing_boundary(self):
        with pytest.raises(KeyError):
            PipelineCheckpoint.from_dict({"savedAt": "2026-01-05T14:25:00.500Z"})


class TestCheckpointStore:

    def test_cold_start_returns_none(self, store):
        assert store.load() is None

    def test_save_then_load(self, store, fake_clock):
        assert store.save(BOUNDARY) is True

        assert store.load() == BOUNDARY
        data = json.loads(store.path.read_text())
        assert data == {
            "lastBoundary": "2026-01-05T14:25:00.500Z",
            "savedAt": "2026-01-05T14:30:00.000Z",
        }

    def test_save_creates_parent_directory(self, store):
        assert not store.path.parent.exists()
        store.save(BOUNDARY)
        assert store.path.exists()

    def test_save_leaves_no_temp_file(self, store):
        store.save(BOUNDARY)
        assert [p.name for p in store.path.parent.iterdir()] == ["checkpoint.json"]

    def test_save_overwrites(self, store):
        store.save(BOUNDARY)
        later = datetime(2026, 1, 5, 15, 0, tzinfo=UTC)
        store.save(later)
        assert store.load() == later

    def test_non_utc_boundary_normalized(self, store):
        from datetime import timedelta, timezone

        store.save(datetime(2026, 1, 5, 16, 25, 0, 500000, tzinfo=timezone(timedelta(hours=2))))
        assert store.load() == BOUNDARY

    @pytest.mark.parametrize(
        "content",
        [
            "{not json",
            "[]",
            '{"savedAt": "2026-01-05T14:25:00.500Z"}',
            '{"lastBoundary": "not-a-date"}',
            '{"lastBoundary": 12345}',
            "",
        ],
    )
    def test_corrupt_file_is_cold_start(self, store, content):
        store.path.parent.mkdir(parents=True)
        store.path.write_text(content)
        assert store.load() is None

    def test_save_failure_returns_false(self, store):
        with patch("graylog_pipeline.checkpoint.os.replace", side_effect=OSError(28, "No space left")):
            assert store.save(BOUNDARY) is False
        assert store.last_saved_monotonic is None
        assert not store.path.exists()

    def test_save_failure_keeps_previous_checkpoint(self, store):
        store.save(BOUNDARY)
        with patch("graylog_pipeline.checkpoint.os.replace", side_effect=OSError("disk")):
            store.save(datetime(2026, 1, 5, 15, 0, tzinfo=UTC))
        assert store.load() == BOUNDARY

    def test_corrupt_file_logged_as_checkpoint_error(self, store, caplog):
        store.path.parent.mkdir(parents=True)
        store.path.write_text("{not json")

        with caplog.at_level(logging.WARNING, logger="graylog_pipeline.checkpoint"):
            assert store.load() is None

        record = next(r for r in caplog.records if r.getMessage().startswith("Failed to load"))
        assert record.error_type == "CheckpointError"
        assert "Unreadable checkpoint" in record.error_message

    def test_save_failure_logged_with_os_error_category(self, store, caplog):
        disk_full = OSError(errno.ENOSPC, "No space left on device")
        with patch("graylog_pipeline.checkpoint.os.replace", side_effect=disk_full):
            with caplog.at_level(logging.ERROR, logger="graylog_pipeline.checkpoint"):
                assert store.save(BOUNDARY) is False

        record = next(r for r in caplog.records if r.getMessage() == "Failed to save checkpoint")
        assert record.error_type == "CheckpointError"
        assert record.error_category == "permanent"
        assert "No space left on device" in record.error_message

    def test_transient_save_failure_category(self, store, caplog):
        with patch("graylog_pipeline.checkpoint.os.replace", side_effect=OSError(errno.EIO, "I/O error")):
            with caplog.at_level(logging.ERROR, logger="graylog_pipeline.checkpoint"):
                store.save(BOUNDARY)

        record = next(r for r in caplog.records if r.getMessage() == "Failed to save checkpoint")
        assert record.error_category == "transient"

    def test_save_due(self, store, fake_clock):
        assert store.save_due(300) is False
        fake_clock.advance(300)
        assert store.save_due(300) is True

        store.save(BOUNDARY)
        assert store.save_due(300) is False
        fake_clock.advance(299)
        assert store.save_due(300) is False
        fake_clock.advance(1)
        assert store.save_due(300) is True
