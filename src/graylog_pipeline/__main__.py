# Copyright (c) 2024-2026 nickdsmith. All Rights Reserved.
# SPDX-License-Identifier: PROPRIETARY
#
# This file is proprietary and confidential. Unauthorized copying of this file,
# via any medium is strictly prohibited.

"""Graylog to Kafka importer entry point. Use --help for usage."""

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

from dotenv import load_dotenv

from core.logging import get_logger, log_startup, setup_logging
from core.utils import generate_worker_id
from graylog_pipeline.checkpoint import CheckpointStore
from graylog_pipeline.config import PipelineConfig
from graylog_pipeline.fetcher import WindowFetcher
from graylog_pipeline.graylog.client import GraylogClient
from graylog_pipeline.metrics import start_metrics_server
from graylog_pipeline.orchestrator import PipelineOrchestrator
from graylog_pipeline.producer import BrokerConnectionManager
from graylog_pipeline.publisher import BatchPublisher

# __main__.py is at src/graylog_pipeline/__main__.py, so root is 3 levels up
PROJECT_ROOT = Path(__file__).parent.parent.parent

EXIT_CONFIG_ERROR = 2

# Placeholder logger until setup_logging() is called in main()
logger = get_logger(__name__)


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Continuously import Graylog search results into a Kafka topic",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run with config.yaml / environment
    python -m graylog_pipeline

    # Explicit config file, logs to stdout only (containers)
    python -m graylog_pipeline --config /etc/graylog-pipeline/config.yaml --log-to-stdout

    # Expose Prometheus metrics
    python -m graylog_pipeline --metrics-port 9090
        """,
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to YAML config (default: CONFIG_FILE env var or ./config.yaml if present)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=os.getenv("LOG_LEVEL", "INFO").upper(),
        help="Console logging level (default: INFO)",
    )

    parser.add_argument(
        "--log-dir",
        type=str,
        default=None,
        help="Log directory path (default: from LOG_DIR env var or ./logs)",
    )

    parser.add_argument(
        "--log-to-stdout",
        action="store_true",
        help="Send all log output to stdout only, no log files",
    )

    parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Port for Prometheus metrics server (default: disabled)",
    )

    return parser.parse_args(argv)


def setup_signal_handlers(loop: asyncio.AbstractEventLoop, shutdown_event: asyncio.Event):
    """Set up signal handlers for graceful shutdown.

    First SIGINT/SIGTERM: sets the shutdown event; the current cycle gets a
    grace period, then the checkpoint is saved and Kafka disconnected.
    Second signal: forces immediate shutdown by cancelling all tasks.
    Note: Signal handlers not supported on Windows - KeyboardInterrupt used instead."""

    def handle_signal(sig):
        logger.info("Received signal, initiating graceful shutdown", extra={"signal": sig.name})
        if not shutdown_event.is_set():
            shutdown_event.set()
        else:
            logger.warning("Received second signal, forcing immediate shutdown...")
            for task in asyncio.all_tasks(loop):
                task.cancel()

    if sys.platform == "win32":
        logger.debug("Signal handlers not supported on Windows, using KeyboardInterrupt")
        return

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))


def build_orchestrator(config: PipelineConfig) -> tuple[PipelineOrchestrator, GraylogClient]:
    """Wire the pipeline components from configuration."""
    client = GraylogClient(config.graylog)
    connection = BrokerConnectionManager(config.kafka, config.retry_config())
    fetcher = WindowFetcher(client, config)
    publisher = BatchPublisher(
        connection,
        topic=config.kafka.topic,
        max_batch_size=config.max_batch_size,
        inter_batch_delay=config.inter_batch_delay_seconds,
    )
    checkpoints = CheckpointStore(config.checkpoint_file)
    orchestrator = PipelineOrchestrator(
        config,
        fetcher=fetcher,
        publisher=publisher,
        connection=connection,
        checkpoints=checkpoints,
    )
    return orchestrator, client


async def run_pipeline(config: PipelineConfig, shutdown_event: asyncio.Event) -> int:
    orchestrator, client = build_orchestrator(config)
    try:
        return await orchestrator.run(shutdown_event)
    finally:
        await client.close()


def main(argv=None):
    global logger

    load_dotenv(PROJECT_ROOT / ".env")
    args = parse_args(argv)

    worker_id = os.getenv("WORKER_ID") or generate_worker_id("graylog-pipeline")
    log_to_stdout = args.log_to_stdout or _env_flag("LOG_TO_STDOUT")
    log_dir = Path(args.log_dir or os.getenv("LOG_DIR") or "logs")

    setup_logging(
        name="graylog_pipeline",
        log_dir=log_dir,
        json_format=_env_flag("JSON_LOGS", "true"),
        console_level=getattr(logging, args.log_level),
        worker_id=worker_id,
        log_to_stdout=log_to_stdout,
    )

    try:
        config = PipelineConfig.load_config(args.config)
    except (ValueError, FileNotFoundError) as e:
        logger.error("Configuration error: %s", e, extra={"error_message": str(e)})
        sys.exit(EXIT_CONFIG_ERROR)

    log_startup(
        logger,
        "Graylog to Kafka importer",
        {"Worker ID": worker_id, **config.summary()},
    )

    if args.metrics_port is not None:
        actual_port = start_metrics_server(args.metrics_port)
        logger.info("Metrics server started", extra={"operation": f"port {actual_port}"})

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    shutdown_event = asyncio.Event()
    setup_signal_handlers(loop, shutdown_event)

    exit_code = 1
    try:
        exit_code = loop.run_until_complete(run_pipeline(config, shutdown_event))
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down...")
        exit_code = 0
    except asyncio.CancelledError:
        logger.info("Tasks cancelled, shutting down...")
    finally:
        loop.close()
        logger.info("Pipeline shutdown complete", extra={"exit_code": exit_code})

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
