"""Application bootstrap for apitracker.

Wires components in dependency order and manages the asyncio lifecycle.
Startup order: config -> logging -> K8s client -> resource tracker
              -> signal webhook -> REST

Shutdown stops the tracker first, then the REST server, then closes the
Kubernetes client. Each step's error is caught and logged independently.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING, Any

from apitracker.config import load_config
from apitracker.discovery.errors import TrackerSetupError
from apitracker.models.config import APITrackerConfig
from apitracker.observability.logging import get_logger, setup_logging

if TYPE_CHECKING:
    import structlog

    from apitracker.discovery.tracker import ResourceTracker

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class APITrackerApp:
    """Application root. Owns every component and coordinates their lifecycle.

    ``stop()`` is safe to call on an app that was never started or is
    already stopped.
    """

    def __init__(self, config: APITrackerConfig | None = None) -> None:
        self.config = config
        self.exit_code = 0

        self._api_client: Any = None
        self._tracker: ResourceTracker | None = None
        self._tracker_task: asyncio.Task[None] | None = None
        self._rest_server: Any = None
        self._background_tasks: list[asyncio.Task[None]] = []

        self._running = False
        self._log: structlog.stdlib.BoundLogger | None = None

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises _ComponentError if a mandatory component cannot start.
        """
        # --- 1. Configuration -------------------------------------------
        if self.config is None:
            self.config = load_config()

        # --- 2. Logging -------------------------------------------------
        setup_logging(self.config.log.level)
        self._log = get_logger("app")
        self._log.info("apitracker_starting", version=_apitracker_version())

        # --- 3. Kubernetes client ----------------------------------------
        await self._start_k8s_client()

        # --- 4. Resource tracker -----------------------------------------
        await self._start_tracker()

        # --- 5. Signal webhook -------------------------------------------
        self._start_signals()

        # --- 6. REST API -------------------------------------------------
        await self._start_rest()

        self._running = True
        self._log.info("apitracker_started", port=self.config.api.port)

    async def _start_k8s_client(self) -> None:
        """Build an ApiClient from in-cluster config, falling back to kubeconfig."""
        assert self._log is not None
        try:
            from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]
            from kubernetes_asyncio import config as k8s_config  # type: ignore[import-untyped]

            try:
                k8s_config.load_incluster_config()
                self._log.info("k8s_client_configured", source="in_cluster")
            except k8s_config.ConfigException:
                await k8s_config.load_kube_config()
                self._log.info("k8s_client_configured", source="kubeconfig")

            self._api_client = k8s_client.ApiClient()
        except Exception as exc:
            raise _ComponentError("k8s_client", exc) from exc

    async def _start_tracker(self) -> None:
        """Create the ResourceTracker and run it as a background task.

        Readiness is reported by the REST API; a setup failure inside the task
        stops the application with a non-zero exit code.
        """
        assert self._log is not None
        assert self.config is not None
        try:
            from apitracker.discovery.tracker import ResourceTracker

            self._tracker = ResourceTracker(self._api_client, self.config.tracker)
        except Exception as exc:
            raise _ComponentError("tracker", exc) from exc

        self._tracker_task = asyncio.create_task(self._run_tracker(self._tracker), name="resource-tracker")
        self._log.info(
            "tracker_task_started",
            periodic_interval=self.config.tracker.periodic_interval_seconds,
            full_rescan_interval=self.config.tracker.full_rescan_interval_seconds,
        )

    async def _run_tracker(self, tracker: ResourceTracker) -> None:
        log = self._log or get_logger("app")
        try:
            await tracker.start()
        except TrackerSetupError as exc:
            log.critical("fatal_startup_error", component="tracker", stage=exc.stage, error=str(exc.cause))
            self.exit_code = 1
            self._running = False

    def _start_signals(self) -> None:
        assert self.config is not None
        assert self._tracker is not None
        from apitracker.notifications import build_webhook_signal

        webhook = build_webhook_signal(self.config.signals, snapshot=self._tracker.get_api_resources)
        if webhook is not None:
            self._tracker.add_signal_func(webhook)

    async def _start_rest(self) -> None:
        """Start the uvicorn REST server."""
        assert self._log is not None
        assert self.config is not None
        try:
            import uvicorn  # type: ignore[import-untyped]

            from apitracker.api import create_app

            fastapi_app = create_app(tracker=self._tracker)
            uv_config = uvicorn.Config(
                app=fastapi_app,
                host="0.0.0.0",
                port=self.config.api.port,
                log_config=None,  # structlog handles all logging
                access_log=False,
            )
            server = uvicorn.Server(uv_config)
            task = asyncio.create_task(server.serve(), name="rest-server")
            self._background_tasks.append(task)
            self._rest_server = server
            self._log.info("rest_api_started", port=self.config.api.port)
        except Exception as exc:
            raise _ComponentError("rest", exc) from exc

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Stop the tracker, the REST server and the Kubernetes client."""
        if self._log is None:
            return

        log = self._log
        log.info("apitracker_shutting_down")
        self._running = False

        if self._tracker is not None:
            try:
                await self._tracker.stop()
            except Exception as exc:
                log.error("component_stop_failed", component="tracker", error=str(exc))
        if self._tracker_task is not None:
            try:
                await asyncio.wait_for(self._tracker_task, timeout=_SHUTDOWN_GRACE_SECONDS)
            except TimeoutError:
                log.warning("component_stop_timed_out", component="tracker", timeout=_SHUTDOWN_GRACE_SECONDS)
            except asyncio.CancelledError:
                pass
            self._tracker_task = None

        if self._rest_server is not None:
            self._rest_server.should_exit = True
        for task in reversed(self._background_tasks):
            if not task.done():
                task.cancel()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        self._background_tasks.clear()

        await self._stop_k8s_client()
        self._log = None
        log.info("apitracker_stopped")

    async def _stop_k8s_client(self) -> None:
        """Close the ApiClient connection pool."""
        if self._api_client is None:
            return
        log = self._log or get_logger("app")
        try:
            await self._api_client.close()
        except Exception as exc:
            log.debug("k8s_client_close_failed", error=str(exc))
        self._api_client = None


def _apitracker_version() -> str:
    from apitracker import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main(config: APITrackerConfig | None = None) -> None:
    """Create the app, register OS signals, run until shutdown is requested."""
    app = APITrackerApp(config)
    loop = asyncio.get_running_loop()

    shutdown_task: asyncio.Task[None] | None = None

    def _request_shutdown() -> None:
        nonlocal shutdown_task
        if shutdown_task is not None:
            return
        shutdown_task = asyncio.create_task(app.stop(), name="shutdown")

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _request_shutdown)

    try:
        await app.start()
        while app.running:
            await asyncio.sleep(1)
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical(
            "fatal_startup_error",
            component=exc.component,
            error=str(exc.cause),
        )
        await app.stop()
        raise SystemExit(1) from exc
    finally:
        if shutdown_task is not None:
            await shutdown_task
        else:
            await app.stop()

    if app.exit_code:
        raise SystemExit(app.exit_code)
