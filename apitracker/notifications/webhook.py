"""JSON webhook change signal.

POSTs a small change notice whenever the API resource snapshot changes, so
out-of-process consumers can requeue their reconciliation without polling.
The body carries only counts and a timestamp; consumers read the snapshot
itself from ``GET /api/v1/resources``.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

import httpx
import structlog

from apitracker.models.resources import APIResourcesByGroupVersion

_log = structlog.get_logger(component="notifications.webhook")


class WebhookSignal:
    """Async signal func delivering a change notice by HTTP POST.

    Register an instance with ``ResourceTracker.add_signal_func``; the notifier
    awaits it in the background, one delivery at a time, and counts a ``False``
    result as a failed signal.

    Args:
        url:      Endpoint URL.
        snapshot: Callable returning the current snapshot, used for the counts
                  in the payload. Optional.
        headers:  Extra request headers (e.g. Authorization).
        timeout:  HTTP request timeout in seconds.
    """

    def __init__(
        self,
        url: str,
        snapshot: Callable[[], APIResourcesByGroupVersion] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float = 10.0,
    ) -> None:
        if not url:
            raise ValueError("Webhook url must not be empty")
        self._url = url
        self._snapshot = snapshot
        self._headers = headers or {}
        self._timeout = timeout

    async def __call__(self) -> bool:
        """POST the change notice. Returns True on a 2xx response."""
        payload = self._build_payload()
        request_headers = {
            "Content-Type": "application/json",
            **self._headers,
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._url, json=payload, headers=request_headers)
                if response.is_success:
                    _log.debug("webhook_signal_delivered", status_code=response.status_code)
                    return True
                _log.warning(
                    "webhook_non_2xx_response",
                    status_code=response.status_code,
                    body=response.text[:200],
                )
                return False
        except httpx.TimeoutException:
            _log.warning("webhook_request_timeout", url=self._url)
            return False
        except httpx.HTTPError as exc:
            _log.warning("webhook_http_error", error=str(exc))
            return False

    def _build_payload(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "event": "api_resources_changed",
            "sent_at": datetime.now(tz=UTC).isoformat(),
        }
        if self._snapshot is not None:
            try:
                snapshot = self._snapshot()
            except Exception as exc:
                _log.debug("webhook_snapshot_unavailable", error=str(exc))
            else:
                payload["group_versions"] = len(snapshot)
                payload["resources"] = snapshot.resource_count()
        return payload
