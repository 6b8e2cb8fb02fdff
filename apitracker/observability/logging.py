"""Structured logging setup for apitracker (structlog).

The service logs one JSON object per line to stderr; the CLI can switch to the
human-readable console renderer. Standard-library loggers used by
kubernetes-asyncio and aiohttp are capped at the same level.
"""

from __future__ import annotations

import logging
import sys

import structlog

_THIRD_PARTY_LOGGERS = ("kubernetes_asyncio", "aiohttp", "uvicorn.access")


def setup_logging(level: str = "info", *, console: bool = False) -> None:
    """Configure structlog.

    Args:
        level:   Minimum level name (debug, info, warning, error).
        console: Render colourless key=value lines instead of JSON.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    renderer: structlog.types.Processor = (
        structlog.dev.ConsoleRenderer(colors=False) if console else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    for name in _THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


def get_logger(component: str) -> structlog.stdlib.BoundLogger:
    """Return a logger bound with ``component``."""
    return structlog.get_logger(component=component)  # type: ignore[return-value]
