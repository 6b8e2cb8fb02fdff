"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class TrackerConfig:
    """Resource tracker scheduling and discovery configuration."""

    periodic_interval_seconds: int = 30
    full_rescan_interval_seconds: int = 900
    watch_timeout_seconds: int = 300
    discovery_concurrency: int = 16


@dataclass
class SignalConfig:
    """Change-signal delivery configuration."""

    webhook_url: str = ""
    webhook_timeout_seconds: float = 10.0


@dataclass
class APIConfig:
    """REST API configuration."""

    port: int = 8080


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"


@dataclass
class APITrackerConfig:
    """Top-level apitracker configuration."""

    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    signals: SignalConfig = field(default_factory=SignalConfig)
    api: APIConfig = field(default_factory=APIConfig)
    log: LogConfig = field(default_factory=LogConfig)
