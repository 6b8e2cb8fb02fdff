"""Configuration loading from environment variables."""

from __future__ import annotations

import os

from apitracker.models.config import (
    APIConfig,
    APITrackerConfig,
    LogConfig,
    SignalConfig,
    TrackerConfig,
)


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"APITRACKER_{key}", default)


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _env_float(key: str, default: float) -> float:
    return float(_env(key, str(default)))


def _validate_url(value: str) -> str:
    if value and not value.startswith(("http://", "https://")):
        raise ValueError(f"Invalid webhook url: {value}. Must start with http:// or https://")
    return value


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def load_config() -> APITrackerConfig:
    """Load configuration from APITRACKER_* environment variables."""
    return APITrackerConfig(
        tracker=TrackerConfig(
            periodic_interval_seconds=_env_int("PERIODIC_INTERVAL", 30, min_val=5, max_val=600),
            full_rescan_interval_seconds=_env_int("FULL_RESCAN_INTERVAL", 900, min_val=60, max_val=86_400),
            watch_timeout_seconds=_env_int("WATCH_TIMEOUT", 300, min_val=30, max_val=3600),
            discovery_concurrency=_env_int("DISCOVERY_CONCURRENCY", 16, min_val=1, max_val=128),
        ),
        signals=SignalConfig(
            webhook_url=_validate_url(_env("SIGNAL_WEBHOOK_URL", "")),
            webhook_timeout_seconds=_env_float("SIGNAL_WEBHOOK_TIMEOUT", 10.0),
        ),
        api=APIConfig(
            port=_env_int("API_PORT", 8080, min_val=1024, max_val=65535),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
        ),
    )
