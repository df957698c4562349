# Copyright (c) 2024-2026 nickdsmith. All Rights Reserved.
# SPDX-License-Identifier: PROPRIETARY
#
# This file is proprietary and confidential. Unauthorized copying of this file,
# via any medium is strictly prohibited.

"""
Durable checkpoint of the last fetched time boundary.

The checkpoint is the only state that survives a restart. It is a small
JSON document written atomically (temp file + os.replace), so readers
either see the previous version or the new one, never a mix:

    {
      "lastBoundary": "2026-01-05T14:30:00.000Z",
      "savedAt": "2026-01-05T14:30:00.412Z"
    }
"""

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from core.errors.exceptions import CheckpointError
from core.logging import get_logger, log_exception, log_with_context
from core.resilience.clock import SYSTEM_CLOCK, Clock
from core.utils.json_serializers import format_utc_timestamp, parse_utc_timestamp

logger = get_logger(__name__)


@dataclass
class PipelineCheckpoint:
    """
    Checkpoint state for resuming the pipeline after restart.

    Both timestamps are offset-aware UTC datetimes in memory and ISO-8601
    strings with a Z suffix on disk.
    """

    last_boundary: datetime
    saved_at: datetime

    def to_dict(self) -> dict:
        return {
            "lastBoundary": format_utc_timestamp(self.last_boundary),
            "savedAt": format_utc_timestamp(self.saved_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PipelineCheckpoint":
        """
        Build a checkpoint from its JSON form.

        Raises:
            KeyError: If lastBoundary is missing
            ValueError/TypeError: If a timestamp is malformed
        """
        last_boundary = parse_utc_timestamp(data["lastBoundary"])
        saved_raw = data.get("savedAt")
        saved_at = parse_utc_timestamp(saved_raw) if saved_raw else last_boundary
        return cls(last_boundary=last_boundary, saved_at=saved_at)


class CheckpointStore:
    """
    Loads and saves the pipeline checkpoint file.

    Single writer (this process). A read that races an external writer or
    finds a torn/corrupt file is treated as a cold start rather than an
    error. Save failures are logged and reported through the return value,
    never raised: the pipeline keeps running on its in-memory boundary and
    a later save may succeed.
    """

    def __init__(self, path: Path, clock: Optional[Clock] = None):
        self.path = Path(path)
        self.clock = clock or SYSTEM_CLOCK
        # Monotonic time of the last successful save; None until first save
        self.last_saved_monotonic: Optional[float] = None
        self._created_monotonic = self.clock.monotonic()

    def load(self) -> Optional[datetime]:
        """
        Read the last persisted boundary.

        Returns:
            The boundary as an aware UTC datetime, or None on cold start
            (file absent, unreadable, or not a valid checkpoint)
        """
        if not self.path.exists():
            logger.info(
                "No checkpoint file found, cold start",
                extra={"checkpoint_path": str(self.path)},
            )
            return None

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise TypeError(f"checkpoint root must be an object, got {type(data).__name__}")
            checkpoint = PipelineCheckpoint.from_dict(data)
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            error = CheckpointError("Unreadable checkpoint", cause=e)
            log_exception(
                logger,
                error,
                "Failed to load checkpoint, starting fresh",
                level=logging.WARNING,
                include_traceback=False,
                checkpoint_path=str(self.path),
            )
            return None

        log_with_context(
            logger,
            logging.INFO,
            "Loaded checkpoint",
            checkpoint_path=str(self.path),
            boundary=format_utc_timestamp(checkpoint.last_boundary),
            saved_at=format_utc_timestamp(checkpoint.saved_at),
        )
        return checkpoint.last_boundary

    def save(self, boundary: datetime) -> bool:
        """
        Atomically overwrite the checkpoint with ``boundary``.

        Uses atomic write pattern: write to temp file, then os.replace().

        Returns:
            True on success, False if the write failed (already logged)
        """
        checkpoint = PipelineCheckpoint(last_boundary=boundary, saved_at=self.clock.now())
        temp_path = self.path.with_name(self.path.name + ".tmp")

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)

            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(checkpoint.to_dict(), f, indent=2)
                f.flush()
                os.fsync(f.fileno())

            # Atomic replace (works on POSIX and modern Windows)
            os.replace(temp_path, self.path)
        except OSError as e:
            error = CheckpointError("Checkpoint write failed", cause=e)
            log_exception(
                logger,
                error,
                "Failed to save checkpoint",
                include_traceback=False,
                checkpoint_path=str(self.path),
                boundary=format_utc_timestamp(boundary),
            )
            return False

        self.last_saved_monotonic = self.clock.monotonic()
        log_with_context(
            logger,
            logging.INFO,
            "Checkpoint saved",
            checkpoint_path=str(self.path),
            boundary=format_utc_timestamp(boundary),
        )
        return True

    def save_due(self, interval_seconds: float) -> bool:
        """Whether the periodic save interval has elapsed since the last save (or since startup)."""
        reference = (
            self.last_saved_monotonic
            if self.last_saved_monotonic is not None
            else self._created_monotonic
        )
        return self.clock.monotonic() - reference >= interval_seconds
