# Copyright (c) 2024-2026 nickdsmith. All Rights Reserved.
# SPDX-License-Identifier: PROPRIETARY
#
# This file is proprietary and confidential. Unauthorized copying of this file,
# via any medium is strictly prohibited.

"""Log formatters for JSON and console output."""

import json
import logging
import re
import sys
from datetime import UTC, datetime
from typing import Any

from core.logging.context import get_log_context
from core.utils.json_serializers import json_serializer


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter with context injection.

    Produces one JSON object per line for easy parsing with jq/grep.
    Sanitizes URLs to remove sensitive tokens before logging.
    """

    # Fields to extract from LogRecord extras
    EXTRA_FIELDS = [
        # Timing
        "duration_ms",
        # HTTP
        "http_status",
        "http_method",
        "http_url",
        # Errors
        "error_category",
        "error_message",
        "error",
        "error_type",
        # Fetch window
        "window_from",
        "window_to",
        "boundary",
        "new_boundary",
        "fetch_status",
        "records_fetched",
        "limit",
        "consecutive_empty",
        # Publishing
        "topic",
        "batch_index",
        "batch_count",
        "batch_size",
        "records_sent",
        "records_failed",
        "records_skipped",
        # Resilience
        "attempt",
        "max_attempts",
        "total_attempts",
        "delay_seconds",
        "delay_source",
        "consecutive_errors",
        "max_consecutive_errors",
        # Lifecycle
        "operation",
        "state",
        "previous_state",
        "exit_code",
        "signal",
        "checkpoint_path",
        "saved_at",
        "bootstrap_servers",
        "connection_age_seconds",
    ]

    # Type mapping for numeric fields
    # This prevents numeric fields from being serialized as strings
    NUMERIC_FIELDS = {
        # Timing fields
        "duration_ms": float,
        "delay_seconds": float,
        "connection_age_seconds": float,
        # Count fields
        "attempt": int,
        "max_attempts": int,
        "total_attempts": int,
        "http_status": int,
        "records_fetched": int,
        "limit": int,
        "consecutive_empty": int,
        "batch_index": int,
        "batch_count": int,
        "batch_size": int,
        "records_sent": int,
        "records_failed": int,
        "records_skipped": int,
        "consecutive_errors": int,
        "max_consecutive_errors": int,
        "exit_code": int,
    }

    # Fields that contain URLs and should be sanitized
    URL_FIELDS = ["url", "http_url"]

    # Pattern to match sensitive query parameters
    SENSITIVE_PARAMS_PATTERN = re.compile(
        r"([?&])(sig|token|key|secret|password|auth)=[^&]*",
        re.IGNORECASE,
    )

    # user:password@ userinfo in URLs
    USERINFO_PATTERN = re.compile(r"(://)[^/@\s]+@")

    def _sanitize_url(self, url: str) -> str:
        url = self.USERINFO_PATTERN.sub(r"\1[REDACTED]@", url)
        return self.SENSITIVE_PARAMS_PATTERN.sub(r"\1\2=[REDACTED]", url)

    def _sanitize_value(self, key: str, value: Any) -> Any:
        if key in self.URL_FIELDS and isinstance(value, str):
            return self._sanitize_url(value)
        return value

    def _ensure_type(self, field: str, value: Any) -> Any:
        """
        Ensure field has correct type.

        Converts values to their expected types (int, float) to prevent
        string serialization that would break log aggregations.

        Args:
            field: Field name
            value: Value to type-check

        Returns:
            Value with correct type, or None if conversion fails
        """
        if field not in self.NUMERIC_FIELDS or value is None:
            return value

        expected_type = self.NUMERIC_FIELDS[field]
        try:
            return expected_type(value)
        except (ValueError, TypeError):
            # Log stores prefer NULL over invalid data
            return None

    @staticmethod
    def _base_log_entry(record: logging.LogRecord) -> dict[str, Any]:
        return {
            "ts": datetime.fromtimestamp(record.created, UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

    @staticmethod
    def _inject_context(log_entry: dict[str, Any], log_context: dict[str, Any]) -> None:
        for field in ("stage", "cycle_id", "worker_id"):
            if log_context.get(field):
                log_entry[field] = log_context[field]

    @staticmethod
    def _should_include_source_location(record: logging.LogRecord) -> bool:
        return record.levelno in (logging.DEBUG, logging.ERROR, logging.CRITICAL)

    def _inject_extra_fields(self, log_entry: dict[str, Any], record: logging.LogRecord) -> None:
        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                # First ensure correct type (prevents string coercion)
                typed_value = self._ensure_type(field, value)
                # Then sanitize URLs if needed
                log_entry[field] = self._sanitize_value(field, typed_value)

    def _inject_exception(self, log_entry: dict[str, Any], record: logging.LogRecord) -> None:
        if not record.exc_info:
            return

        exc_type, exc_value, _ = record.exc_info
        log_entry["exception"] = {
            "type": exc_type.__name__ if exc_type else None,
            "message": str(exc_value) if exc_value else None,
            "stacktrace": self.formatException(record.exc_info),
        }

    def format(self, record: logging.LogRecord) -> str:
        """
        Format log record as JSON.

        Numeric fields keep proper types (int/float) instead of being
        converted to strings.
        """
        log_entry = self._base_log_entry(record)

        self._inject_context(log_entry, get_log_context())

        # Add source location for DEBUG/ERROR
        if self._should_include_source_location(record):
            log_entry["file"] = f"{record.filename}:{record.lineno}"

        # Type validation must happen before sanitization
        self._inject_extra_fields(log_entry, record)

        self._inject_exception(log_entry, record)

        return json.dumps(log_entry, default=json_serializer, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable console formatter with color-coded log levels.

    Colors are auto-disabled when output is not a TTY (pipes, files).
    """

    # ANSI color codes
    COLORS = {
        logging.DEBUG: "\033[36m",  # Cyan
        logging.INFO: "\033[32m",  # Green
        logging.WARNING: "\033[33m",  # Yellow
        logging.ERROR: "\033[31m",  # Red
        logging.CRITICAL: "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._use_colors = sys.stdout.isatty()

    def _format_level_name(self, record: logging.LogRecord) -> str:
        level_name = record.levelname
        if not self._use_colors:
            return level_name

        color = self.COLORS.get(record.levelno, "")
        if not color:
            return level_name

        return f"{color}{level_name}{self.RESET}"

    @staticmethod
    def _build_prefix(level_name: str, log_context: dict[str, Any]) -> str:
        parts = [
            datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            level_name,
        ]

        if log_context.get("stage"):
            parts.append(f"[{log_context['stage']}]")

        return " - ".join(parts)

    @staticmethod
    def _build_tags(record: logging.LogRecord, log_context: dict[str, Any]) -> list[str]:
        cycle_id = getattr(record, "cycle_id", None) or log_context.get("cycle_id")
        batch_index = getattr(record, "batch_index", None)

        tags = []
        if cycle_id:
            tags.append(f"[{cycle_id}]")
        if batch_index is not None:
            tags.append(f"[batch:{batch_index}]")
        return tags

    def format(self, record: logging.LogRecord) -> str:
        """Format log record for console output with optional color coding."""
        log_context = get_log_context()

        level_name = self._format_level_name(record)
        prefix = self._build_prefix(level_name, log_context)
        tags = self._build_tags(record, log_context)

        if tags:
            line = f"{prefix} - {' '.join(tags)} {record.getMessage()}"
        else:
            line = f"{prefix} - {record.getMessage()}"

        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line
