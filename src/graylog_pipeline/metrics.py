# Copyright (c) 2024-2026 nickdsmith. All Rights Reserved.
# SPDX-License-Identifier: PROPRIETARY
#
# This file is proprietary and confidential. Unauthorized copying of this file,
# via any medium is strictly prohibited.

"""
Prometheus metrics for the ingestion pipeline.

Focused on essential metrics:
- Events fetched and published
- Fetch outcomes and error categories
- Checkpoint saves
- Broker connection health and the consecutive error counter

Metrics are always registered; they are only exposed over HTTP when the
entry point is given a metrics port.
"""

import socket

from prometheus_client import REGISTRY, Counter, Gauge, start_http_server

from core.logging import get_logger

logger = get_logger(__name__)

# =============================================================================
# Core Metrics
# =============================================================================

events_fetched_counter = Counter(
    "graylog_pipeline_events_fetched_total",
    "Total events fetched from the search API",
)

events_published_counter = Counter(
    "graylog_pipeline_events_published_total",
    "Total events handed to Kafka, by result",
    labelnames=["topic", "result"],
)

fetch_outcomes_counter = Counter(
    "graylog_pipeline_fetch_outcomes_total",
    "Fetch cycles by outcome",
    labelnames=["status"],
)

errors_counter = Counter(
    "graylog_pipeline_errors_total",
    "Errors by component and category",
    labelnames=["component", "error_category"],
)

checkpoint_saves_counter = Counter(
    "graylog_pipeline_checkpoint_saves_total",
    "Checkpoint save attempts by result",
    labelnames=["result"],
)

consecutive_errors_gauge = Gauge(
    "graylog_pipeline_consecutive_errors",
    "Current consecutive cycle error count",
)

last_boundary_gauge = Gauge(
    "graylog_pipeline_last_boundary_timestamp_seconds",
    "Unix time of the current fetch boundary",
)

broker_connected_gauge = Gauge(
    "graylog_pipeline_broker_connected",
    "Kafka producer connection status (1=connected, 0=disconnected)",
)

# =============================================================================
# Convenience Functions
# =============================================================================

def record_fetch(status: str, event_count: int = 0) -> None:
    """Record a fetch cycle outcome."""
    fetch_outcomes_counter.labels(status=status).inc()
    if event_count:
        events_fetched_counter.inc(event_count)

def record_published(topic: str, sent: int, failed: int) -> None:
    if sent:
        events_published_counter.labels(topic=topic, result="sent").inc(sent)
    if failed:
        events_published_counter.labels(topic=topic, result="failed").inc(failed)

def record_error(component: str, error_category: str) -> None:
    errors_counter.labels(component=component, error_category=error_category).inc()

def record_checkpoint_save(success: bool) -> None:
    checkpoint_saves_counter.labels(result="success" if success else "failure").inc()

def update_consecutive_errors(count: int) -> None:
    consecutive_errors_gauge.set(count)

def update_boundary(timestamp: float) -> None:
    last_boundary_gauge.set(timestamp)

def update_connection_status(connected: bool) -> None:
    broker_connected_gauge.set(1 if connected else 0)

def start_metrics_server(preferred_port: int) -> int:
    """Start Prometheus metrics server with automatic port fallback.
    Returns actual port number that the server is listening on."""
    try:
        start_http_server(preferred_port, registry=REGISTRY)
        return preferred_port
    except OSError as e:
        if e.errno == 98:
            logger.info(
                "Port already in use, finding available port",
                extra={"operation": "metrics_server"},
            )

            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                s.bind(("", 0))
                s.listen(1)
                available_port = s.getsockname()[1]

            start_http_server(available_port, registry=REGISTRY)
            return available_port
        else:
            raise

__all__ = [
    # Metrics
    "events_fetched_counter",
    "events_published_counter",
    "fetch_outcomes_counter",
    "errors_counter",
    "checkpoint_saves_counter",
    "consecutive_errors_gauge",
    "last_boundary_gauge",
    "broker_connected_gauge",
    # Helper functions
    "record_fetch",
    "record_published",
    "record_error",
    "record_checkpoint_save",
    "update_consecutive_errors",
    "update_boundary",
    "update_connection_status",
    "start_metrics_server",
]
