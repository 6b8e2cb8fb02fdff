"""Event-driven collector: keeps the snapshot current from the CRD watch stream.

Per event:

* ADDED for a UID already in the identity ledger is a replay of existing state
  (every new watch starts with one ADDED per CRD) and triggers no discovery.
* ADDED/MODIFIED for a terminating CRD is skipped entirely; its resources are
  still served until the finalizers complete.
* ADDED/MODIFIED otherwise requeries the CRD's served group-versions and
  overlays them on the snapshot.
* DELETED is always processed: each group-version the CRD served is removed
  unless another CRD still serves it.

The watch is re-established forever; failures back off exponentially, a clean
server-side close reconnects immediately.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable

from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]

from apitracker.discovery.backoff import Backoff, forever_watch_backoff
from apitracker.discovery.client import DiscoveryClient
from apitracker.discovery.crd import should_skip_terminating_crd
from apitracker.discovery.errors import DiscoveryError
from apitracker.discovery.ledger import IdentityLedger
from apitracker.discovery.notifier import ChangeNotifier
from apitracker.discovery.store import SnapshotStore
from apitracker.models.resources import CRDEvent, CRDInfo, WatchEventType
from apitracker.observability.logging import get_logger
from apitracker.observability.metrics import collections_total, watch_events_total, watch_restarts_total

# Actions reported by handle_event (also used as metric labels)
ACTION_REPLAYED = "replayed"
ACTION_SKIPPED_TERMINATING = "skipped_terminating"
ACTION_CHANGED = "changed"
ACTION_UNCHANGED = "unchanged"
ACTION_FAILED = "failed"
ACTION_ERROR_EVENT = "error_event"


class EventCollector:
    """Applies CRD watch events to the snapshot store.

    Args:
        discovery:  Discovery backend.
        store:      Shared snapshot store.
        ledger:     Shared identity ledger.
        notifier:   Change notifier fired when an event changes the snapshot.
        write_lock: Lock serialising all snapshot writers (shared with the
                    periodic reconciler).
        watch_timeout_seconds: Server-side timeout for each watch session.
        backoff_factory: Builds the reconnect backoff schedule.
    """

    def __init__(
        self,
        discovery: DiscoveryClient,
        store: SnapshotStore,
        ledger: IdentityLedger,
        notifier: ChangeNotifier,
        write_lock: asyncio.Lock,
        watch_timeout_seconds: int = 300,
        backoff_factory: Callable[[], Backoff] = forever_watch_backoff,
    ) -> None:
        self._discovery = discovery
        self._store = store
        self._ledger = ledger
        self._notifier = notifier
        self._write_lock = write_lock
        self._watch_timeout = watch_timeout_seconds
        self._backoff_factory = backoff_factory
        self._log = get_logger("discovery.collector")

        # CRD name -> group-versions it serves
        self._providers: dict[str, frozenset[str]] = {}

    # ------------------------------------------------------------------
    # Provider index
    # ------------------------------------------------------------------

    def sync_providers(self, crds: Iterable[CRDInfo]) -> None:
        """Rebuild the CRD -> group-version index from a full CRD listing."""
        self._providers = {crd.name: crd.group_versions for crd in crds}

    def providers_of(self, group_version: str) -> set[str]:
        """Names of the CRDs currently known to serve *group_version*."""
        return {name for name, gvs in self._providers.items() if group_version in gvs}

    # ------------------------------------------------------------------
    # Watch loop
    # ------------------------------------------------------------------

    async def run(self, stop_event: asyncio.Event) -> None:
        """Watch CRDs until *stop_event* is set, reconnecting as needed."""
        backoff = self._backoff_factory()
        self._log.info("crd_watch_loop_started", watch_timeout=self._watch_timeout)
        while not stop_event.is_set():
            clean = await self._watch_once(stop_event)
            if stop_event.is_set():
                break

            watch_restarts_total.inc()
            if clean:
                backoff.reset()
                continue

            delay = backoff.step()
            self._log.info("crd_watch_reconnect_scheduled", delay_seconds=round(delay, 3))
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay)
            except TimeoutError:
                pass
        self._log.info("crd_watch_loop_stopped")

    async def _watch_once(self, stop_event: asyncio.Event) -> bool:
        """Run one watch session.

        Returns:
            True if the session ended cleanly (server closed the stream or the
            watch expired), False if it failed and the caller should back off.
        """
        try:
            async for event in self._discovery.watch_crds(timeout_seconds=self._watch_timeout):
                if stop_event.is_set():
                    return True
                if event.type == WatchEventType.ERROR:
                    watch_events_total.labels(type=event.type.value, action=ACTION_ERROR_EVENT).inc()
                    self._log.warning(
                        "crd_watch_error_event",
                        message=event.status.get("message", ""),
                        reason=event.status.get("reason", ""),
                        code=event.status.get("code"),
                    )
                    return event.status.get("code") == 410
                await self.handle_event(event)
        except ApiException as exc:
            if exc.status == 410:
                self._log.info("crd_watch_expired")
                return True
            self._log.warning("crd_watch_failed", status=exc.status, error=str(exc.reason))
            return False
        except Exception as exc:
            self._log.error("crd_watch_failed", error=str(exc), exc_info=True)
            return False

        self._log.debug("crd_watch_closed")
        return True

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    async def handle_event(self, event: CRDEvent) -> str:
        """Apply one watch event. Returns the action taken."""
        crd = event.crd
        if event.type == WatchEventType.ERROR or crd is None:
            watch_events_total.labels(type=event.type.value, action=ACTION_ERROR_EVENT).inc()
            return ACTION_ERROR_EVENT

        action = await self._dispatch(event.type, crd)
        watch_events_total.labels(type=event.type.value, action=action).inc()
        return action

    async def _dispatch(self, event_type: WatchEventType, crd: CRDInfo) -> str:
        self._log.debug("crd_watch_event", event_type=event_type.value, name=crd.name, uid=crd.uid)

        if event_type != WatchEventType.DELETED:
            is_new = self._ledger.add(crd.uid)
            if event_type == WatchEventType.ADDED and not is_new:
                self._providers[crd.name] = crd.group_versions
                return ACTION_REPLAYED

        if should_skip_terminating_crd(crd, event_type):
            self._log.info(
                "crd_terminating_skip",
                name=crd.name,
                deletion_timestamp=str(crd.deletion_timestamp),
                finalizers=list(crd.finalizers),
            )
            return ACTION_SKIPPED_TERMINATING

        try:
            async with self._write_lock:
                changed = await self._recompute(crd, deleted=event_type == WatchEventType.DELETED)
        except DiscoveryError as exc:
            collections_total.labels(path="watch", result="failed").inc()
            self._log.error("crd_event_collection_failed", name=crd.name, error=str(exc))
            return ACTION_FAILED

        collections_total.labels(path="watch", result="changed" if changed else "unchanged").inc()
        if not changed:
            return ACTION_UNCHANGED
        self._notifier.notify("watch")
        return ACTION_CHANGED

    async def _recompute(self, crd: CRDInfo, deleted: bool) -> bool:
        """Requery the group-versions affected by *crd* and apply them to the store.

        Must be called with the write lock held.
        """
        previous = self._providers.get(crd.name, frozenset())
        if deleted:
            previous = previous | crd.group_versions
            self._providers.pop(crd.name, None)
            current: frozenset[str] = frozenset()
        else:
            current = crd.group_versions
            self._providers[crd.name] = current
            self._ledger.add(crd.uid)

        dropped = previous - current
        shared = {gv for gv in dropped if self.providers_of(gv)}
        removals = set(dropped - shared)

        found, not_found = await self._discovery.collect_group_versions(sorted(current | shared))
        removals |= not_found

        changed = self._store.apply(found, removals)
        self._log.info(
            "crd_event_applied",
            name=crd.name,
            deleted=deleted,
            updated=sorted(found),
            removed=sorted(removals),
            changed=changed,
        )
        return changed
