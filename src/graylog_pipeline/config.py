# Copyright (c) 2024-2026 nickdsmith. All Rights Reserved.
# SPDX-License-Identifier: PROPRIETARY
#
# This file is proprietary and confidential. Unauthorized copying of this file,
# via any medium is strictly prohibited.

"""Pipeline configuration from YAML file and environment.

Loads from an optional config.yaml with three sections:
- graylog: search API endpoint, credentials, stream filter
- kafka: bootstrap servers, topic, producer security and timeouts
- pipeline: polling cadence, batch sizes, retry policy, checkpointing

Environment variables ARE supported using ${VAR_NAME} and
${VAR_NAME:-default} syntax in YAML files. Plain environment variables
(GRAYLOG_HOST, KAFKA_LOG_TOPIC, POLL_INTERVAL_SECONDS, ...) override
whatever the file says, so a deployment can run from the environment alone.
"""

import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from core.logging import get_logger
from core.resilience.retry import RetryConfig

logger = get_logger(__name__)

DEFAULT_CONFIG_FILE = Path("config.yaml")

DEFAULT_FIELDS = (
    "timestamp,source,level,message,src_ip,dest_ip,protocol,rule_level,"
    "rule_description,event_type,agent_name,manager_name,id,raw_log,rule,"
    "agent,network,data"
)

VALID_SECURITY_PROTOCOLS = ("PLAINTEXT", "SSL", "SASL_PLAINTEXT", "SASL_SSL")


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file and return dict."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR_NAME} and ${VAR_NAME:-default} environment variables in config data."""
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        pattern = r"\$\{([^}:]+)(?::-(([^}]*))?)?\}"

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else match.group(0)
            return os.getenv(var_name, default_value)

        return re.sub(pattern, replacer, data)
    else:
        return data


def _coerce(name: str, value: Any, target: type) -> Any:
    """Convert a YAML/env value to the dataclass field type."""
    try:
        if target is bool:
            if isinstance(value, bool):
                return value
            return str(value).strip().lower() in ("true", "1", "yes")
        if target is int:
            return int(value)
        if target is float:
            return float(value)
        if target is Path:
            return Path(value)
        return "" if value is None else str(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid value for {name}: {value!r}") from e


def _section_kwargs(
    cls, section_name: str, data: Dict[str, Any], env_map: Dict[str, str]
) -> Dict[str, Any]:
    """Collect constructor kwargs for a config dataclass: YAML values, then environment overrides."""
    known = {f.name: f for f in fields(cls) if f.type in (str, int, float, bool, Path)}
    kwargs: Dict[str, Any] = {}

    for key, value in (data or {}).items():
        if key not in known:
            logger.warning(
                "Ignoring unknown config key", extra={"operation": f"{section_name}.{key}"}
            )
            continue
        kwargs[key] = _coerce(f"{section_name}.{key}", value, known[key].type)

    for attr, env_var in env_map.items():
        raw = os.getenv(env_var)
        if raw is None or raw == "":
            continue
        kwargs[attr] = _coerce(env_var, raw, known[attr].type)

    return kwargs


@dataclass
class GraylogConfig:
    """Graylog search API connection settings."""

    host: str = "localhost"
    port: int = 9000
    scheme: str = "http"
    username: str = ""
    password: str = ""
    # Empty means no stream filter
    stream_id: str = ""
    request_timeout_seconds: float = 60.0
    query: str = "*"
    fields: str = DEFAULT_FIELDS

    def __post_init__(self):
        # Folded YAML scalars leave spaces after commas
        self.fields = ",".join(f.strip() for f in self.fields.split(",") if f.strip())

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}"


@dataclass
class KafkaConfig:
    """Kafka producer settings.

    All timing values in seconds unless the name says otherwise.
    """

    bootstrap_servers: str = "localhost:9092"
    topic: str = "security-logs"
    client_id: str = "graylog-importer"
    security_protocol: str = "PLAINTEXT"
    sasl_mechanism: str = "PLAIN"
    sasl_plain_username: str = ""
    sasl_plain_password: str = ""
    connect_timeout_seconds: float = 5.0
    request_timeout_ms: int = 30000
    refresh_interval_seconds: float = 1800.0


_GRAYLOG_ENV = {
    "host": "GRAYLOG_HOST",
    "port": "GRAYLOG_PORT",
    "scheme": "GRAYLOG_SCHEME",
    "username": "GRAYLOG_USERNAME",
    "password": "GRAYLOG_PASSWORD",
    "stream_id": "GRAYLOG_STREAM_ID",
    "request_timeout_seconds": "GRAYLOG_REQUEST_TIMEOUT",
    "fields": "GRAYLOG_FIELDS",
}

_KAFKA_ENV = {
    "bootstrap_servers": "KAFKA_BOOTSTRAP_SERVERS",
    "topic": "KAFKA_LOG_TOPIC",
    "client_id": "KAFKA_CLIENT_ID",
    "security_protocol": "KAFKA_SECURITY_PROTOCOL",
    "sasl_mechanism": "KAFKA_SASL_MECHANISM",
    "sasl_plain_username": "KAFKA_SASL_USERNAME",
    "sasl_plain_password": "KAFKA_SASL_PASSWORD",
    "connect_timeout_seconds": "KAFKA_CONNECT_TIMEOUT_SECONDS",
    "request_timeout_ms": "KAFKA_REQUEST_TIMEOUT_MS",
    "refresh_interval_seconds": "KAFKA_REFRESH_INTERVAL_SECONDS",
}

_PIPELINE_ENV = {
    "poll_interval_seconds": "POLL_INTERVAL_SECONDS",
    "max_fetch": "MAX_LOGS_PER_FETCH",
    "max_batch_size": "MAX_BATCH_SIZE",
    "inter_batch_delay_seconds": "INTER_BATCH_DELAY_SECONDS",
    "retry_attempts": "RETRY_ATTEMPTS",
    "retry_delay_seconds": "RETRY_DELAY_SECONDS",
    "retry_max_delay_seconds": "RETRY_MAX_DELAY_SECONDS",
    "network_error_delay_multiplier": "NETWORK_ERROR_DELAY_MULTIPLIER",
    "max_consecutive_empty": "MAX_CONSECUTIVE_EMPTY",
    "window_reset_seconds": "WINDOW_RESET_SECONDS",
    "max_consecutive_errors": "MAX_CONSECUTIVE_ERRORS",
    "error_backoff_seconds": "ERROR_BACKOFF_SECONDS",
    "checkpoint_file": "CHECKPOINT_FILE",
    "checkpoint_interval_seconds": "CHECKPOINT_INTERVAL_SECONDS",
    "shutdown_grace_seconds": "SHUTDOWN_GRACE_SECONDS",
}


@dataclass
class PipelineConfig:
    """Complete importer configuration.

    Defaults reproduce the production importer: 5 second polls, 1000
    records per fetch, 100 records per batch, 5 attempts with 1s/2s/4s/8s
    backoff, a forced producer refresh every 30 minutes and a periodic
    checkpoint every 5 minutes.
    """

    graylog: GraylogConfig = field(default_factory=GraylogConfig)
    kafka: KafkaConfig = field(default_factory=KafkaConfig)

    poll_interval_seconds: float = 5.0
    max_fetch: int = 1000
    max_batch_size: int = 100
    inter_batch_delay_seconds: float = 0.1

    retry_attempts: int = 5
    retry_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 30.0
    network_error_delay_multiplier: float = 3.0

    max_consecutive_empty: int = 10
    window_reset_seconds: float = 300.0

    max_consecutive_errors: int = 5
    error_backoff_seconds: float = 10.0

    checkpoint_file: Path = Path(".checkpoints/graylog_checkpoint.json")
    checkpoint_interval_seconds: float = 300.0

    shutdown_grace_seconds: float = 10.0

    @property
    def network_error_delay_seconds(self) -> float:
        """Extra wait applied before the regular backoff on network errors."""
        return self.retry_delay_seconds * self.network_error_delay_multiplier

    def retry_config(self) -> RetryConfig:
        """Backoff policy shared by the fetcher and the broker reconnect loop."""
        return RetryConfig(
            max_attempts=self.retry_attempts,
            base_delay=self.retry_delay_seconds,
            max_delay=self.retry_max_delay_seconds,
        )

    def validate(self) -> None:
        """Validate configuration for correctness and constraints.

        Raises:
            ValueError: Listing every problem found
        """
        errors = []

        positive = {
            "poll_interval_seconds": self.poll_interval_seconds,
            "max_fetch": self.max_fetch,
            "max_batch_size": self.max_batch_size,
            "retry_attempts": self.retry_attempts,
            "max_consecutive_empty": self.max_consecutive_empty,
            "window_reset_seconds": self.window_reset_seconds,
            "max_consecutive_errors": self.max_consecutive_errors,
            "checkpoint_interval_seconds": self.checkpoint_interval_seconds,
            "graylog.request_timeout_seconds": self.graylog.request_timeout_seconds,
            "kafka.connect_timeout_seconds": self.kafka.connect_timeout_seconds,
            "kafka.request_timeout_ms": self.kafka.request_timeout_ms,
            "kafka.refresh_interval_seconds": self.kafka.refresh_interval_seconds,
        }
        for name, value in positive.items():
            if value <= 0:
                errors.append(f"{name} must be > 0, got {value}")

        non_negative = {
            "inter_batch_delay_seconds": self.inter_batch_delay_seconds,
            "retry_delay_seconds": self.retry_delay_seconds,
            "network_error_delay_multiplier": self.network_error_delay_multiplier,
            "error_backoff_seconds": self.error_backoff_seconds,
            "shutdown_grace_seconds": self.shutdown_grace_seconds,
        }
        for name, value in non_negative.items():
            if value < 0:
                errors.append(f"{name} must be >= 0, got {value}")

        if self.max_batch_size > self.max_fetch > 0:
            errors.append(
                f"max_batch_size ({self.max_batch_size}) must not exceed max_fetch ({self.max_fetch})"
            )
        if not self.kafka.topic:
            errors.append("kafka.topic is required")
        if not self.kafka.bootstrap_servers:
            errors.append("kafka.bootstrap_servers is required")
        if not self.graylog.host:
            errors.append("graylog.host is required")
        if self.graylog.scheme not in ("http", "https"):
            errors.append(f"graylog.scheme must be http or https, got '{self.graylog.scheme}'")
        if self.kafka.security_protocol not in VALID_SECURITY_PROTOCOLS:
            errors.append(
                f"kafka.security_protocol must be one of {list(VALID_SECURITY_PROTOCOLS)}, "
                f"got '{self.kafka.security_protocol}'"
            )

        if errors:
            raise ValueError("Invalid configuration: " + "; ".join(errors))

    def summary(self) -> Dict[str, Any]:
        """Effective settings for the startup banner, secrets masked."""
        return {
            "Graylog": f"{self.graylog.base_url} (user={self.graylog.username or '-'}, password=***)",
            "Stream filter": self.graylog.stream_id or "none",
            "Kafka bootstrap servers": self.kafka.bootstrap_servers,
            "Kafka topic": self.kafka.topic,
            "Poll interval": f"{self.poll_interval_seconds}s",
            "Max fetch / batch": f"{self.max_fetch} / {self.max_batch_size}",
            "Retry": f"{self.retry_attempts} attempts, base {self.retry_delay_seconds}s",
            "Checkpoint": f"{self.checkpoint_file} every {self.checkpoint_interval_seconds}s",
        }

    @classmethod
    def load_config(cls, config_path: Optional[Path] = None) -> "PipelineConfig":
        """Load configuration from YAML (if present) and the environment.

        If config_path is given it must exist. Otherwise CONFIG_FILE or
        ./config.yaml is used when present, and defaults plus environment
        variables when not.
        """
        if config_path is not None:
            config_path = Path(config_path)
            if not config_path.exists():
                raise FileNotFoundError(f"Configuration file not found: {config_path}")
        else:
            config_path = Path(os.getenv("CONFIG_FILE", str(DEFAULT_CONFIG_FILE)))

        yaml_data: Dict[str, Any] = {}
        if config_path.exists():
            logger.info("Loading configuration from file: %s", config_path)
            yaml_data = _expand_env_vars(load_yaml(config_path))
        else:
            logger.info("No configuration file found, using environment and defaults")

        graylog = GraylogConfig(
            **_section_kwargs(GraylogConfig, "graylog", yaml_data.get("graylog") or {}, _GRAYLOG_ENV)
        )
        kafka = KafkaConfig(
            **_section_kwargs(KafkaConfig, "kafka", yaml_data.get("kafka") or {}, _KAFKA_ENV)
        )
        settings = _section_kwargs(cls, "pipeline", yaml_data.get("pipeline") or {}, _PIPELINE_ENV)

        config = cls(graylog=graylog, kafka=kafka, **settings)

        logger.debug("Validating configuration...")
        config.validate()
        logger.debug("Configuration validation passed")
        return config
