"""ResourceTracker: the public entry point of the discovery package.

Owns the snapshot store, identity ledger and change notifier, and runs three
background tasks once started:

  crd-watch    -- EventCollector.run, incremental updates from the CRD watch
  periodic     -- PeriodicReconciler.run_periodic, short-interval full collection
  full-rescan  -- PeriodicReconciler.run_full_rescan, ledger refresh + collection

Readers call :meth:`ResourceTracker.get_api_resources` from any thread; it never
blocks on I/O.
"""

from __future__ import annotations

import asyncio
from typing import Any

from apitracker.discovery.client import DiscoveryClient
from apitracker.discovery.collector import EventCollector
from apitracker.discovery.errors import DiscoveryError, TrackerSetupError
from apitracker.discovery.ledger import IdentityLedger
from apitracker.discovery.notifier import ChangeNotifier, SignalFunc
from apitracker.discovery.reconciler import PATH_INITIAL, PeriodicReconciler
from apitracker.discovery.store import SnapshotStore
from apitracker.models.config import TrackerConfig
from apitracker.models.resources import APIResourcesByGroupVersion
from apitracker.observability.logging import get_logger


class ResourceTracker:
    """Tracks the API resources served by the cluster.

    Args:
        api_client: ``kubernetes_asyncio.client.ApiClient``. Required unless
                    *discovery* is given.
        config:     Loop intervals and discovery settings.
        discovery:  Discovery backend to use instead of building a
                    :class:`DiscoveryClient` around *api_client*.
    """

    def __init__(
        self,
        api_client: Any = None,
        config: TrackerConfig | None = None,
        *,
        discovery: DiscoveryClient | None = None,
    ) -> None:
        self._config = config or TrackerConfig()
        if discovery is None:
            if api_client is None:
                raise ValueError("either api_client or discovery must be provided")
            discovery = DiscoveryClient(api_client, concurrency=self._config.discovery_concurrency)
        self._discovery = discovery

        self._store = SnapshotStore()
        self._ledger = IdentityLedger()
        self._notifier = ChangeNotifier()
        self._write_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._tasks: list[asyncio.Task[None]] = []
        self._started = False
        self._log = get_logger("discovery.tracker")

        self._collector = EventCollector(
            discovery=self._discovery,
            store=self._store,
            ledger=self._ledger,
            notifier=self._notifier,
            write_lock=self._write_lock,
            watch_timeout_seconds=self._config.watch_timeout_seconds,
        )
        self._reconciler = PeriodicReconciler(
            discovery=self._discovery,
            store=self._store,
            ledger=self._ledger,
            notifier=self._notifier,
            collector=self._collector,
            write_lock=self._write_lock,
            periodic_interval_seconds=self._config.periodic_interval_seconds,
            full_rescan_interval_seconds=self._config.full_rescan_interval_seconds,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def ready(self) -> bool:
        """True once the initial collection has completed."""
        return self._store.ready

    def get_api_resources(self) -> APIResourcesByGroupVersion:
        """Return a copy of the current snapshot.

        Raises:
            ResourceTrackerNotStartedError: the initial collection has not completed.
        """
        return self._store.read()

    def add_signal_func(self, fn: SignalFunc) -> None:
        """Register a zero-argument callable fired whenever the snapshot changes."""
        self._notifier.add_signal_func(fn)

    def crd_uid_count(self) -> int:
        """Number of CRD UIDs in the identity ledger."""
        return self._ledger.count()

    async def start(self) -> None:
        """Populate the snapshot, then run the background tasks until stopped.

        Returns after :meth:`stop` once every background task has exited.

        Raises:
            TrackerSetupError: the initial CRD listing or collection failed.
            RuntimeError: the tracker was already started.
        """
        if self._started:
            raise RuntimeError("resource tracker already started")
        self._started = True

        try:
            crds = await self._discovery.list_crds()
        except DiscoveryError as exc:
            self._log.error("tracker_setup_failed", stage="crd_listing", error=str(exc))
            raise TrackerSetupError("crd_listing", exc) from exc
        self._ledger.refresh(crd.uid for crd in crds)
        self._collector.sync_providers(crds)

        try:
            await self._reconciler.collect(PATH_INITIAL, wait=True, notify=False)
        except DiscoveryError as exc:
            self._log.error("tracker_setup_failed", stage="initial_collection", error=str(exc))
            raise TrackerSetupError("initial_collection", exc) from exc

        self._log.info(
            "tracker_started",
            crds=len(crds),
            group_versions=len(self._store.group_versions()),
        )

        if self._stop_event.is_set():
            return

        self._tasks = [
            asyncio.create_task(self._collector.run(self._stop_event), name="crd-watch"),
            asyncio.create_task(self._reconciler.run_periodic(self._stop_event), name="periodic"),
            asyncio.create_task(self._reconciler.run_full_rescan(self._stop_event), name="full-rescan"),
        ]
        try:
            results = await asyncio.gather(*self._tasks, return_exceptions=True)
        finally:
            for task in self._tasks:
                if not task.done():
                    task.cancel()

        for task, result in zip(self._tasks, results, strict=True):
            if isinstance(result, Exception):
                self._log.error("tracker_task_failed", task=task.get_name(), error=str(result))
        self._log.info("tracker_stopped")

    async def stop(self) -> None:
        """Signal every background task to exit."""
        self._stop_event.set()
        # The watch blocks on the stream and cannot observe the event until the
        # next message arrives.
        for task in self._tasks:
            if task.get_name() == "crd-watch" and not task.done():
                task.cancel()
        self._log.info("tracker_stop_requested")
