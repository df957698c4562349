# Copyright (c) 2024-2026 nickdsmith. All Rights Reserved.
# SPDX-License-Identifier: PROPRIETARY
#
# This file is proprietary and confidential. Unauthorized copying of this file,
# via any medium is strictly prohibited.

"""Logging setup and configuration."""

import io
import logging
import secrets
import shutil
import sys
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from core.logging.context import set_log_context
from core.logging.formatters import ConsoleFormatter, JSONFormatter

# Default settings
DEFAULT_LOG_DIR = Path("logs")
DEFAULT_ROTATION_WHEN = "midnight"
DEFAULT_ROTATION_INTERVAL = 1
DEFAULT_BACKUP_COUNT = 7
DEFAULT_CONSOLE_LEVEL = logging.INFO
DEFAULT_FILE_LEVEL = logging.DEBUG

# Noisy loggers to suppress
NOISY_LOGGERS = [
    "urllib3",
    "aiohttp",
    "aiokafka",
    "kafka",
]


class ArchivingTimedRotatingFileHandler(TimedRotatingFileHandler):
    """
    TimedRotatingFileHandler that moves rotated files to an archive folder.

    When a log file is rotated (e.g., file.log -> file.log.2026-01-22), the
    backup files are moved to an 'archive' directory to keep the main log
    directory clean.

    Example:
        Before rotation:
            logs/2026-01-05/graylog_pipeline_0105_1430.log

        After rotation (daily at midnight):
            logs/2026-01-05/graylog_pipeline_0105_1430.log (new file)
            logs/archive/2026-01-05/graylog_pipeline_0105_1430.log.2026-01-05

    If archive_dir is not provided, rotated files go to an 'archive'
    subdirectory next to the log file.
    """

    def __init__(
        self,
        filename,
        when="midnight",
        interval=1,
        backupCount=0,
        encoding=None,
        delay=False,
        utc=False,
        archive_dir=None,
    ):
        super().__init__(filename, when, interval, backupCount, encoding, delay, utc)
        if archive_dir:
            self.archive_dir = Path(archive_dir)
        else:
            log_path = Path(self.baseFilename)
            self.archive_dir = log_path.parent / "archive"

        self.archive_dir.mkdir(parents=True, exist_ok=True)

    def doRollover(self):
        super().doRollover()

        # TimedRotatingFileHandler appends timestamps like .2026-01-22 to rotated files
        log_path = Path(self.baseFilename)
        base_name = log_path.name

        for rotated_file in log_path.parent.glob(f"{base_name}.*"):
            if rotated_file == log_path:
                continue

            archive_file = self.archive_dir / rotated_file.name
            try:
                shutil.move(str(rotated_file), str(archive_file))
            except OSError as e:
                # stderr rather than a logger to avoid recursion inside the handler
                print(
                    f"Warning: Failed to archive {rotated_file}: {e}", file=sys.stderr
                )


def get_log_file_path(
    log_dir: Path,
    name: str = "pipeline",
    stage: str | None = None,
) -> Path:
    """
    Build log file path with a date subfolder.

    Structure: {log_dir}/{YYYY-MM-DD}/{name}[_{stage}]_{MMDD}_{HHMM}.log

    Examples:
        logs/2026-01-05/graylog_pipeline_0105_1430.log
        logs/2026-01-05/graylog_pipeline_ingest_0105_1430.log

    Args:
        log_dir: Base log directory
        name: Log file prefix
        stage: Optional stage name appended to the prefix

    Returns:
        Full path to log file
    """
    now = datetime.now()
    date_folder = now.strftime("%Y-%m-%d")
    stamp = now.strftime("%m%d_%H%M")

    base_name = f"{name}_{stage}" if stage else name
    return log_dir / date_folder / f"{base_name}_{stamp}.log"


def setup_logging(
    name: str = "pipeline",
    stage: str | None = None,
    log_dir: Path | None = None,
    json_format: bool = True,
    console_level: int = DEFAULT_CONSOLE_LEVEL,
    file_level: int = DEFAULT_FILE_LEVEL,
    rotation_when: str = DEFAULT_ROTATION_WHEN,
    rotation_interval: int = DEFAULT_ROTATION_INTERVAL,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    suppress_noisy: bool = True,
    worker_id: str | None = None,
    log_to_stdout: bool = False,
) -> logging.Logger:
    """
    Configure logging with console and auto-archiving time-based rotating file handlers.

    Rotated backup files are moved to an 'archive' directory under log_dir:
        logs/archive/2026-01-05/graylog_pipeline_0105_1430.log.2026-01-05

    Args:
        name: Logger name and log file prefix
        stage: Stage name injected into the log context
        log_dir: Directory for log files (default: ./logs)
        json_format: Use JSON format for file logs (default: True)
        console_level: Console handler level (default: INFO)
        file_level: File handler level (default: DEBUG)
        rotation_when: When to rotate logs - 'midnight', 'H' (hourly), 'M' (minutes)
        rotation_interval: Interval for rotation (default: 1)
        backup_count: Number of backup files to keep (default: 7)
        suppress_noisy: Quiet down Kafka and HTTP client loggers
        worker_id: Worker identifier for context
        log_to_stdout: Send all log output to stdout only, skipping file handlers.
            Useful for containerized deployments where logs are captured from stdout.

    Returns:
        Configured logger instance
    """
    log_dir = log_dir or DEFAULT_LOG_DIR

    if worker_id:
        set_log_context(worker_id=worker_id)
    if stage:
        set_log_context(stage=stage)

    # Console handler (always created)
    if sys.platform == "win32":
        safe_stdout = io.TextIOWrapper(
            sys.stdout.buffer, encoding="utf-8", errors="replace"
        )
        console_handler = logging.StreamHandler(safe_stdout)
    else:
        console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(ConsoleFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter
    root_logger.handlers.clear()

    log_file: Path | None = None
    if log_to_stdout:
        console_handler.setLevel(min(console_level, file_level))
        root_logger.addHandler(console_handler)
    else:
        console_handler.setLevel(console_level)

        log_file = get_log_file_path(log_dir, name=name, stage=stage)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        if json_format:
            file_formatter = JSONFormatter()
        else:
            file_formatter = logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
            )

        # Structure: logs/archive/date
        try:
            relative_path = log_file.relative_to(log_dir)
            archive_dir = log_dir / "archive" / relative_path.parent
        except ValueError:
            archive_dir = log_file.parent / "archive"

        file_handler = ArchivingTimedRotatingFileHandler(
            log_file,
            when=rotation_when,
            interval=rotation_interval,
            backupCount=backup_count,
            encoding="utf-8",
            archive_dir=archive_dir,
        )
        file_handler.setLevel(file_level)
        file_handler.setFormatter(file_formatter)

        root_logger.addHandler(file_handler)
        root_logger.addHandler(console_handler)

    if suppress_noisy:
        for logger_name in NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    logger = logging.getLogger(name)
    if log_file is None:
        logger.debug("Logging initialized: stdout-only mode")
    else:
        logger.debug(
            "Logging initialized: file=%s, json=%s", log_file, json_format
        )

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Use this instead of logging.getLogger() to ensure consistent naming.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def log_startup(
    logger: logging.Logger,
    service_name: str,
    settings: dict | None = None,
) -> None:
    """
    Log a standard startup banner with the effective configuration.

    Secrets must be masked by the caller before being passed in.

    Args:
        logger: Logger instance to use
        service_name: Name of the service starting up
        settings: Configuration values to log, one line each
    """
    logger.info("=" * 70)
    logger.info("Starting %s", service_name)
    logger.info("=" * 70)

    if settings:
        for key, value in settings.items():
            logger.info("%s: %s", key, value)

    logger.info("=" * 70)


def generate_cycle_id() -> str:
    """
    Generate unique cycle identifier.

    Format: c-YYYYMMDD-HHMMSS-XXXX where XXXX is random hex.

    Returns:
        Unique cycle ID string
    """
    ts = datetime.now().strftime("%Y%m%d-%H%M%S")
    suffix = secrets.token_hex(2)
    return f"c-{ts}-{suffix}"
