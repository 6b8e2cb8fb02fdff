"""Periodic reconciler: safety-net full collections on two timers.

* Short interval (default 30s): full discovery; the tick is skipped when another
  writer holds the write lock.
* Long interval (default 15m): relist CRDs to rebuild the identity ledger and the
  provider index, then wait for the write lock and run a full collection.

Failures are logged and retried on the next tick; the last good snapshot is kept.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from apitracker.discovery.client import DiscoveryClient
from apitracker.discovery.collector import EventCollector
from apitracker.discovery.errors import DiscoveryError
from apitracker.discovery.ledger import IdentityLedger
from apitracker.discovery.notifier import ChangeNotifier
from apitracker.discovery.store import SnapshotStore
from apitracker.observability.logging import get_logger
from apitracker.observability.metrics import collections_total

PATH_INITIAL = "initial"
PATH_PERIODIC = "periodic"
PATH_FULL_RESCAN = "full_rescan"


class PeriodicReconciler:
    """Runs full collections on a timer and keeps the identity ledger honest."""

    def __init__(
        self,
        discovery: DiscoveryClient,
        store: SnapshotStore,
        ledger: IdentityLedger,
        notifier: ChangeNotifier,
        collector: EventCollector,
        write_lock: asyncio.Lock,
        periodic_interval_seconds: float = 30,
        full_rescan_interval_seconds: float = 900,
    ) -> None:
        self._discovery = discovery
        self._store = store
        self._ledger = ledger
        self._notifier = notifier
        self._collector = collector
        self._write_lock = write_lock
        self._periodic_interval = periodic_interval_seconds
        self._full_rescan_interval = full_rescan_interval_seconds
        self._log = get_logger("discovery.reconciler")

    async def collect(self, path: str, *, wait: bool = True, notify: bool = True) -> bool:
        """Run a full collection and replace the snapshot.

        Args:
            path:   Label for logs and metrics.
            wait:   Wait for the write lock; when False the call is a no-op if
                    another collection is in progress.
            notify: Fire signal funcs when the snapshot changed.

        Returns:
            True if the snapshot changed.

        Raises:
            DiscoveryError: discovery failed; the snapshot is left untouched.
        """
        if not wait and self._write_lock.locked():
            collections_total.labels(path=path, result="skipped").inc()
            self._log.debug("collection_skipped_busy", path=path)
            return False

        async with self._write_lock:
            try:
                snapshot = await self._discovery.collect()
            except DiscoveryError:
                collections_total.labels(path=path, result="failed").inc()
                raise
            changed = self._store.replace(snapshot)

        collections_total.labels(path=path, result="changed" if changed else "unchanged").inc()
        self._log.info(
            "collection_completed",
            path=path,
            changed=changed,
            group_versions=len(snapshot),
            resources=snapshot.resource_count(),
        )
        if changed and notify:
            self._notifier.notify(path)
        return changed

    async def refresh_identities(self) -> None:
        """Relist CRDs and replace the identity ledger and provider index.

        The listing runs under the write lock so no watch event is applied
        between the listing and the swap.

        Raises:
            DiscoveryError: the CRD listing failed; ledger and index are unchanged.
        """
        async with self._write_lock:
            crds = await self._discovery.list_crds()
            self._collector.sync_providers(crds)
            added, removed = self._ledger.refresh(crd.uid for crd in crds)
        self._log.info("crd_identities_refreshed", crds=len(crds), added=added, removed=removed)

    async def full_rescan(self) -> None:
        """Long-interval cycle: refresh identities, then a full collection."""
        try:
            await self.refresh_identities()
        except DiscoveryError as exc:
            self._log.warning("crd_identity_refresh_failed", error=str(exc))
        await self.collect(PATH_FULL_RESCAN, wait=True)

    async def periodic(self) -> None:
        """Short-interval cycle: full collection unless one is already running."""
        await self.collect(PATH_PERIODIC, wait=False)

    async def run_periodic(self, stop_event: asyncio.Event) -> None:
        await self._run_every(self._periodic_interval, stop_event, self.periodic, PATH_PERIODIC)

    async def run_full_rescan(self, stop_event: asyncio.Event) -> None:
        await self._run_every(self._full_rescan_interval, stop_event, self.full_rescan, PATH_FULL_RESCAN)

    async def _run_every(
        self,
        interval: float,
        stop_event: asyncio.Event,
        cycle: Callable[[], Awaitable[None]],
        name: str,
    ) -> None:
        self._log.info("reconcile_loop_started", loop=name, interval_seconds=interval)
        while True:
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
                break
            except TimeoutError:
                pass

            try:
                await cycle()
            except DiscoveryError as exc:
                self._log.error("reconcile_cycle_failed", loop=name, error=str(exc))
            except Exception as exc:
                self._log.error("reconcile_cycle_failed", loop=name, error=str(exc), exc_info=True)
        self._log.info("reconcile_loop_stopped", loop=name)
