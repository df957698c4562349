"""
Tests for search API error classification.
"""

import asyncio
from unittest.mock import MagicMock

import aiohttp
import pytest

from core.errors.classifiers import UpstreamErrorClassifier
from core.errors.exceptions import (
    AuthError,
    ConnectionError,
    PermanentError,
    ThrottlingError,
    TimeoutError,
    TransientError,
    UpstreamError,
    ValidationError,
)

URL = "http://graylog:9000/api/search/universal/absolute"


class TestClassifyResponse:
    """Test HTTP status classification."""

    @pytest.mark.parametrize("status", [400, 422])
    def test_bad_request_is_validation(self, status):
        """A rejected time range must not be retried."""
        error = UpstreamErrorClassifier.classify_response(status, URL)
        assert isinstance(error, ValidationError)
        assert error.is_retryable is False

    def test_unauthorized(self):
        assert isinstance(UpstreamErrorClassifier.classify_response(401, URL), AuthError)

    @pytest.mark.parametrize("status", [403, 404])
    def test_forbidden_and_not_found_are_permanent(self, status):
        error = UpstreamErrorClassifier.classify_response(status, URL)
        assert type(error) is PermanentError

    def test_rate_limited_with_retry_after(self):
        error = UpstreamErrorClassifier.classify_response(429, URL, retry_after="7")
        assert isinstance(error, ThrottlingError)
        assert error.retry_after == 7.0

    def test_rate_limited_bad_retry_after(self):
        error = UpstreamErrorClassifier.classify_response(429, URL, retry_after="soon")
        assert error.retry_after is None

    @pytest.mark.parametrize("status", [500, 502, 503, 504])
    def test_server_errors_are_transient(self, status):
        error = UpstreamErrorClassifier.classify_response(status, URL)
        assert type(error) is TransientError

    def test_unmapped_client_error(self):
        assert type(UpstreamErrorClassifier.classify_response(418, URL)) is PermanentError

    def test_unmapped_server_error(self):
        assert type(UpstreamErrorClassifier.classify_response(599, URL)) is TransientError

    def test_unexpected_status(self):
        error = UpstreamErrorClassifier.classify_response(302, URL)
        assert isinstance(error, UpstreamError)
        assert error.status_code == 302

    def test_context_carries_status_and_body(self):
        error = UpstreamErrorClassifier.classify_response(
            400, URL, body="x" * 1000, context={"window_from": "a"}
        )
        assert error.context["http_status"] == 400
        assert error.context["service"] == "graylog"
        assert error.context["window_from"] == "a"
        assert len(error.context["response_body"]) == 500


class TestClassifyClientError:
    """Test transport failure classification."""

    def test_asyncio_timeout(self):
        error = UpstreamErrorClassifier.classify_client_error(asyncio.TimeoutError())
        assert isinstance(error, TimeoutError)

    def test_server_timeout(self):
        error = UpstreamErrorClassifier.classify_client_error(aiohttp.ServerTimeoutError("slow"))
        assert isinstance(error, TimeoutError)

    def test_server_disconnected(self):
        error = UpstreamErrorClassifier.classify_client_error(aiohttp.ServerDisconnectedError())
        assert isinstance(error, ConnectionError)

    def test_connector_error(self):
        os_error = OSError(111, "Connection refused")
        exc = aiohttp.ClientConnectorError(MagicMock(), os_error)
        error = UpstreamErrorClassifier.classify_client_error(exc)
        assert isinstance(error, ConnectionError)
        assert error.cause is exc

    def test_builtin_connection_reset(self):
        error = UpstreamErrorClassifier.classify_client_error(ConnectionResetError("reset"))
        assert isinstance(error, ConnectionError)

    def test_client_response_error_uses_status(self):
        request_info = MagicMock()
        request_info.real_url = URL
        exc = aiohttp.ClientResponseError(request_info, (), status=400)
        error = UpstreamErrorClassifier.classify_client_error(exc)
        assert isinstance(error, ValidationError)

    def test_generic_client_error_is_transient(self):
        error = UpstreamErrorClassifier.classify_client_error(aiohttp.ClientPayloadError("bad"))
        assert type(error) is TransientError

    def test_unknown_exception_defaults_to_upstream_error(self):
        error = UpstreamErrorClassifier.classify_client_error(ValueError("Expecting value"))
        assert isinstance(error, UpstreamError)

    def test_pipeline_error_passthrough(self):
        original = ValidationError("bad")
        assert UpstreamErrorClassifier.classify_client_error(original) is original

