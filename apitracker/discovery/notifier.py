"""Change notifier: best-effort fan-out of "the snapshot changed" signals.

SignalFunc   -- zero-argument callable registered by consumers. Raising or
                returning ``False`` means failure. Returning an awaitable
                schedules it in the background; its result is judged the same way.
ChangeNotifier -- invokes every registered signal func at most once per changed
                  cycle; failures are logged and never propagate to the collector.
                  A func whose previous background delivery is still running is
                  skipped for that cycle.
queue_signal -- builds a signal func doing a non-blocking hand-off to an
                ``asyncio.Queue``; a full queue drops the signal for that cycle.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import threading
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from apitracker.observability.metrics import signals_total

_log = structlog.get_logger(component="discovery.notifier")

SignalFunc = Callable[[], Awaitable[Any] | None]


class ChangeNotifier:
    """Registry of signal funcs, fired after a cycle that changed the snapshot.

    * Never raises: exceptions from individual signal funcs are caught and logged.
    * Never blocks on a consumer: awaitables are scheduled as background tasks,
      at most one in flight per registered func.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._funcs: list[SignalFunc] = []
        # registration index -> background delivery still running
        self._inflight: dict[int, asyncio.Task[Any]] = {}

    def add_signal_func(self, fn: SignalFunc) -> None:
        """Register *fn*. Safe to call before or after the tracker starts."""
        with self._lock:
            self._funcs.append(fn)

    def __len__(self) -> int:
        with self._lock:
            return len(self._funcs)

    def pending(self) -> int:
        """Number of background deliveries still in flight."""
        return len(self._inflight)

    def notify(self, source: str) -> int:
        """Invoke every signal func once.

        Args:
            source: Collection path that produced the change (for logging).

        Returns:
            Number of signal funcs that succeeded synchronously or were scheduled.
        """
        with self._lock:
            funcs = list(enumerate(self._funcs))

        delivered = 0
        for index, fn in funcs:
            previous = self._inflight.get(index)
            if previous is not None and not previous.done():
                signals_total.labels(outcome="dropped").inc()
                _log.warning("signal_dropped_consumer_busy", source=source, signal_func=index)
                continue

            try:
                result = fn()
            except Exception as exc:  # noqa: BLE001
                signals_total.labels(outcome="failed").inc()
                _log.error("signal_func_failed", source=source, error=str(exc))
                continue

            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._inflight[index] = task
                task.add_done_callback(functools.partial(self._on_background_done, index, source))
            elif result is False:
                signals_total.labels(outcome="failed").inc()
                _log.error("signal_func_failed", source=source, error="signal func reported failure")
                continue
            else:
                signals_total.labels(outcome="sent").inc()
            delivered += 1

        if funcs:
            _log.info("signals_sent", source=source, delivered=delivered, registered=len(funcs))
        return delivered

    async def drain(self) -> None:
        """Wait for background signal deliveries still in flight."""
        if self._inflight:
            await asyncio.gather(*self._inflight.values(), return_exceptions=True)

    def _on_background_done(self, index: int, source: str, task: asyncio.Task[Any]) -> None:
        if self._inflight.get(index) is task:
            del self._inflight[index]
        if task.cancelled():
            signals_total.labels(outcome="cancelled").inc()
            return
        exc = task.exception()
        if exc is not None:
            signals_total.labels(outcome="failed").inc()
            _log.error("signal_func_failed", source=source, error=str(exc), background=True)
            return
        if task.result() is False:
            signals_total.labels(outcome="failed").inc()
            _log.error("signal_func_failed", source=source, error="signal func reported failure", background=True)
            return
        signals_total.labels(outcome="sent").inc()


def queue_signal(queue: asyncio.Queue[Any], item: Any = None) -> SignalFunc:
    """Return a signal func that hands *item* to *queue* without blocking.

    When the queue is full the signal for that cycle is dropped; the consumer
    already has a pending signal and will observe the latest snapshot anyway.
    """

    def _signal() -> None:
        try:
            queue.put_nowait(item)
        except asyncio.QueueFull:
            signals_total.labels(outcome="dropped").inc()
            _log.debug("signal_dropped_queue_full", maxsize=queue.maxsize)

    return _signal
