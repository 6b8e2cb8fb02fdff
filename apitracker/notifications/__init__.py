"""Out-of-process change signals for apitracker.

Exports:
    WebhookSignal        -- Async signal func POSTing a JSON change notice.
    build_webhook_signal -- Factory used by the application bootstrap.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

import structlog

from apitracker.notifications.webhook import WebhookSignal

if TYPE_CHECKING:
    from apitracker.models.config import SignalConfig
    from apitracker.models.resources import APIResourcesByGroupVersion

_log = structlog.get_logger(component="notifications")

__all__ = ["WebhookSignal", "build_webhook_signal"]


def build_webhook_signal(
    config: SignalConfig,
    snapshot: Callable[[], APIResourcesByGroupVersion] | None = None,
) -> WebhookSignal | None:
    """Return a WebhookSignal when a webhook URL is configured, else None."""
    if not config.webhook_url:
        _log.info("no_signal_webhook_configured")
        return None
    try:
        signal = WebhookSignal(
            url=config.webhook_url,
            snapshot=snapshot,
            timeout=config.webhook_timeout_seconds,
        )
    except ValueError as exc:
        _log.warning("signal_webhook_disabled", reason=str(exc))
        return None
    _log.info("signal_webhook_enabled")
    return signal
