"""Configuration management for the status and alerting services."""

import os
from typing import Optional

import yaml
from pydantic import BaseModel, Field


class PollingConfig(BaseModel):
    """Polling cadence and backend timeouts."""
    status_interval_seconds: float = Field(default=30.0, description="Status cadence when the source integration has no interval")
    metric_interval_seconds: float = Field(default=60.0, description="Threshold metric poll cadence")
    request_timeout_seconds: float = Field(default=10.0, description="Timeout for driver HTTP calls")
    connection_test_timeout_seconds: float = Field(default=10.0, description="Timeout for connection tests")


class NotificationConfig(BaseModel):
    """Webhook delivery and alert batching settings."""
    retry_delays_seconds: list[float] = Field(default_factory=lambda: [1.0, 3.0, 9.0], description="Delays between delivery attempts")
    max_attempts: int = Field(default=3, description="Delivery attempts per notification")
    send_timeout_seconds: float = Field(default=10.0, description="Timeout for a single webhook POST")
    aggregation_enabled: bool = Field(default=True, description="Batch same-rule alerts into digests")
    aggregation_window_seconds: float = Field(default=60.0, description="Default aggregation window")
    app_name: str = Field(default="StatusDeck", description="Name used in test notifications")


class StatusDeckConfig(BaseModel):
    """Main configuration for the status and alerting services."""

    environment: str = Field(default="production", description="Deployment environment")
    log_level: str = Field(default="INFO", description="Logging level")

    database_path: str = Field(default="data/statusdeck.db", description="SQLite database file")
    secret: str = Field(default="", description="Secret used to decrypt stored credentials")

    host: str = Field(default="0.0.0.0", description="HTTP bind address")
    port: int = Field(default=8080, description="HTTP port")

    polling: PollingConfig = Field(default_factory=PollingConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes", "on")


def load_config(config_path: Optional[str] = None) -> StatusDeckConfig:
    """Load configuration from file, then apply environment overrides."""
    if config_path is None:
        config_path = os.getenv("STATUSDECK_CONFIG", "config/statusdeck.yaml")

    config_data = {}

    if os.path.exists(config_path):
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}

    env_overrides = {
        "environment": os.getenv("STATUSDECK_ENV"),
        "log_level": os.getenv("LOG_LEVEL"),
        "database_path": os.getenv("STATUSDECK_DB_PATH"),
        "secret": os.getenv("STATUSDECK_SECRET"),
        "host": os.getenv("STATUSDECK_HOST"),
        "port": os.getenv("STATUSDECK_PORT"),
    }

    for key, value in env_overrides.items():
        if value is not None:
            if key == "port":
                value = int(value)
            config_data[key] = value

    aggregation = os.getenv("STATUSDECK_AGGREGATION_ENABLED")
    if aggregation is not None:
        config_data.setdefault("notifications", {})["aggregation_enabled"] = _env_bool(aggregation)

    timeout = os.getenv("STATUSDECK_REQUEST_TIMEOUT")
    if timeout is not None:
        config_data.setdefault("polling", {})["request_timeout_seconds"] = float(timeout)

    return StatusDeckConfig(**config_data)


def get_config() -> StatusDeckConfig:
    """Get the configuration for the current process."""
    return load_config()
