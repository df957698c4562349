"""Tests for search window and response models."""

from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError

from graylog_pipeline.graylog.models import SearchMessage, SearchResponse, TimeWindow

START = datetime(2026, 1, 5, 14, 30, tzinfo=UTC)


class TestTimeWindow:

    def test_last(self):
        window = TimeWindow.last(timedelta(seconds=5), START)
        assert window.start == START - timedelta(seconds=5)
        assert window.end == START
        assert window.duration == timedelta(seconds=5)

    def test_valid_window(self):
        assert TimeWindow(START, START + timedelta(seconds=1)).is_valid is True

    def test_empty_window_is_invalid(self):
        assert TimeWindow(START, START).is_valid is False

    def test_inverted_window_is_invalid(self):
        assert TimeWindow(START, START - timedelta(seconds=1)).is_valid is False

    def test_naive_datetime_is_invalid(self):
        naive = datetime(2026, 1, 5, 14, 30)
        assert TimeWindow(naive, START + timedelta(seconds=1)).is_valid is False

    def test_non_datetime_is_invalid(self):
        assert TimeWindow("2026-01-05T14:30:00Z", START).is_valid is False
        assert TimeWindow(START, None).is_valid is False

    def test_as_params(self):
        window = TimeWindow(START, START + timedelta(milliseconds=5250))
        assert window.as_params() == {
            "from": "2026-01-05T14:30:00.000Z",
            "to": "2026-01-05T14:30:05.250Z",
        }

    def test_str(self):
        window = TimeWindow(START, START + timedelta(seconds=5))
        assert str(window) == "2026-01-05T14:30:00.000Z -> 2026-01-05T14:30:05.000Z"

    def test_frozen(self):
        window = TimeWindow(START, START + timedelta(seconds=5))
        with pytest.raises(AttributeError):
            window.start = START


class TestSearchResponse:

    def test_events_in_order(self):
        response = SearchResponse.model_validate(
            {
                "messages": [
                    {"message": {"_id": "a", "level": 3}, "index": "graylog_1"},
                    {"message": {"_id": "b", "nested": {"k": [1, 2]}}, "index": "graylog_1"},
                ],
                "total_results": 2,
            }
        )
        assert response.events() == [
            {"_id": "a", "level": 3},
            {"_id": "b", "nested": {"k": [1, 2]}},
        ]
        assert response.total_results == 2

    @pytest.mark.parametrize("payload", [{}, {"messages": None}, {"messages": []}])
    def test_no_messages(self, payload):
        assert SearchResponse.model_validate(payload).events() == []

    def test_every_hit_kept_unchanged(self):
        response = SearchResponse.model_validate(
            {
                "messages": [
                    {"index": "graylog_1"},
                    {"message": {}},
                    {"message": "raw syslog line"},
                    {"message": None},
                    {"message": [1, 2]},
                    {"message": {"_id": "c"}},
                ]
            }
        )
        assert response.events() == [None, {}, "raw syslog line", None, [1, 2], {"_id": "c"}]

    def test_bare_hit_wrapped(self):
        response = SearchResponse.model_validate({"messages": ["line one", 7]})
        assert response.events() == ["line one", 7]

    def test_unknown_envelope_fields_ignored(self):
        response = SearchResponse.model_validate(
            {"messages": [], "query": "*", "built_query": "{}", "time": 12}
        )
        assert response.events() == []

    def test_wrong_shape_rejected(self):
        with pytest.raises(ValidationError):
            SearchResponse.model_validate({"messages": "not-a-list"})

    def test_message_defaults(self):
        hit = SearchMessage()
        assert hit.message is None
        assert hit.index is None


class TestViewsPayload:
    """Bodies from the views messages endpoint list bare messages."""

    def test_messages_wrapped(self):
        response = SearchResponse.from_views_payload(
            {"messages": [{"_id": "a"}, "raw", None], "total_results": 3}
        )
        assert response.events() == [{"_id": "a"}, "raw", None]
        assert response.total_results == 3

    @pytest.mark.parametrize("payload", [{}, {"messages": None}, {"messages": []}])
    def test_no_messages(self, payload):
        assert SearchResponse.from_views_payload(payload).events() == []

    def test_wrong_shape_rejected(self):
        with pytest.raises(ValidationError):
            SearchResponse.from_views_payload({"messages": "not-a-list"})
