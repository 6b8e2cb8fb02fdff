"""Integration tests for the periodic reconciler."""

from __future__ import annotations

import asyncio

import pytest

from apitracker.discovery.collector import EventCollector
from apitracker.discovery.errors import DiscoveryError
from apitracker.discovery.ledger import IdentityLedger
from apitracker.discovery.notifier import ChangeNotifier
from apitracker.discovery.reconciler import PATH_PERIODIC, PeriodicReconciler
from apitracker.discovery.store import SnapshotStore
from apitracker.models.resources import WatchEventType

from .conftest import FakeDiscovery, event, make_crd, wait_until

pytestmark = pytest.mark.integration


class _Parts:
    def __init__(self, discovery: FakeDiscovery, periodic: float = 30, full_rescan: float = 900) -> None:
        self.discovery = discovery
        self.store = SnapshotStore()
        self.ledger = IdentityLedger()
        self.notifier = ChangeNotifier()
        self.lock = asyncio.Lock()
        self.signals: list[str] = []
        self.notifier.add_signal_func(lambda: self.signals.append("changed"))
        self.collector = EventCollector(
            discovery=discovery,  # type: ignore[arg-type]
            store=self.store,
            ledger=self.ledger,
            notifier=self.notifier,
            write_lock=self.lock,
        )
        self.reconciler = PeriodicReconciler(
            discovery=discovery,  # type: ignore[arg-type]
            store=self.store,
            ledger=self.ledger,
            notifier=self.notifier,
            collector=self.collector,
            write_lock=self.lock,
            periodic_interval_seconds=periodic,
            full_rescan_interval_seconds=full_rescan,
        )


# ---------------------------------------------------------------------------
# Full collection
# ---------------------------------------------------------------------------


class TestCollect:
    async def test_first_collection_marks_ready(self, discovery: FakeDiscovery) -> None:
        parts = _Parts(discovery)
        changed = await parts.reconciler.collect("initial", notify=False)

        assert changed is True
        assert parts.store.ready
        assert set(parts.store.read()) == {"v1", "apps/v1"}
        assert parts.signals == []

    async def test_notifies_only_on_change(self, discovery: FakeDiscovery) -> None:
        parts = _Parts(discovery)
        await parts.reconciler.collect("initial", notify=False)

        assert await parts.reconciler.collect(PATH_PERIODIC) is False
        assert parts.signals == []

        discovery.create_crd(make_crd())
        assert await parts.reconciler.collect(PATH_PERIODIC) is True
        assert parts.signals == ["changed"]

    async def test_failed_collection_keeps_previous_snapshot(self, discovery: FakeDiscovery) -> None:
        parts = _Parts(discovery)
        await parts.reconciler.collect("initial", notify=False)
        before = parts.store.read()

        discovery.fail_collect = DiscoveryError("GET /apis failed", status=503)
        with pytest.raises(DiscoveryError):
            await parts.reconciler.collect(PATH_PERIODIC)

        assert parts.store.read().equals(before)
        assert parts.signals == []

    async def test_periodic_tick_skipped_while_another_collection_runs(self, discovery: FakeDiscovery) -> None:
        parts = _Parts(discovery)
        await parts.reconciler.collect("initial", notify=False)
        calls = discovery.collect_calls

        async with parts.lock:
            await parts.reconciler.periodic()

        assert discovery.collect_calls == calls

    async def test_full_rescan_waits_for_in_progress_collection(self, discovery: FakeDiscovery) -> None:
        parts = _Parts(discovery)
        await parts.reconciler.collect("initial", notify=False)
        calls = discovery.collect_calls

        await parts.lock.acquire()
        rescan = asyncio.create_task(parts.reconciler.full_rescan())
        await asyncio.sleep(0.02)
        assert discovery.collect_calls == calls
        parts.lock.release()
        await asyncio.wait_for(rescan, timeout=2)

        assert discovery.collect_calls == calls + 1


# ---------------------------------------------------------------------------
# Identity refresh
# ---------------------------------------------------------------------------


class TestRefreshIdentities:
    async def test_refresh_removes_missing_and_adds_new_uids(self, discovery: FakeDiscovery) -> None:
        parts = _Parts(discovery)
        parts.ledger.add("uid-deleted-while-watch-was-down")
        widgets = discovery.create_crd(make_crd())

        await parts.reconciler.refresh_identities()

        assert parts.ledger.has(widgets.uid)
        assert not parts.ledger.has("uid-deleted-while-watch-was-down")
        assert parts.collector.providers_of("example.com/v1") == {widgets.name}

    async def test_refresh_failure_leaves_ledger_untouched(self, discovery: FakeDiscovery) -> None:
        parts = _Parts(discovery)
        parts.ledger.add("uid-1")
        discovery.fail_list = DiscoveryError("unable to list CRDs: Forbidden", status=403)

        with pytest.raises(DiscoveryError):
            await parts.reconciler.refresh_identities()
        assert parts.ledger.has("uid-1")

    async def test_event_during_listing_survives_refresh(self, discovery: FakeDiscovery) -> None:
        parts = _Parts(discovery)
        await parts.reconciler.collect("initial", notify=False)
        stale = await discovery.list_crds()
        gate = asyncio.Event()

        async def _slow_listing():
            await gate.wait()
            return stale

        discovery.list_crds = _slow_listing  # type: ignore[method-assign]
        refresh = asyncio.create_task(parts.reconciler.refresh_identities())
        await asyncio.sleep(0.02)

        crd = discovery.create_crd(make_crd())
        handled = asyncio.create_task(parts.collector.handle_event(event(WatchEventType.ADDED, crd)))
        await asyncio.sleep(0.02)
        assert discovery.queried == []

        gate.set()
        await asyncio.wait_for(refresh, timeout=2)
        assert await asyncio.wait_for(handled, timeout=2) == "changed"

        assert parts.ledger.has(crd.uid)
        assert parts.collector.providers_of("example.com/v1") == {crd.name}
        assert "example.com/v1" in parts.store.read()

    async def test_full_rescan_collects_even_if_listing_fails(self, discovery: FakeDiscovery) -> None:
        parts = _Parts(discovery)
        await parts.reconciler.collect("initial", notify=False)
        discovery.fail_list = DiscoveryError("unable to list CRDs: timeout")
        discovery.create_crd(make_crd())

        await parts.reconciler.full_rescan()

        assert "example.com/v1" in parts.store.read()

    async def test_missed_delete_recovered_by_full_rescan(self, discovery: FakeDiscovery) -> None:
        """A CRD deleted while the watch was down disappears from ledger and snapshot."""
        parts = _Parts(discovery)
        crd = discovery.create_crd(make_crd())
        await parts.reconciler.refresh_identities()
        await parts.reconciler.collect("initial", notify=False)

        discovery.stop_serving(crd)  # no DELETED event observed
        await parts.reconciler.full_rescan()

        assert not parts.ledger.has(crd.uid)
        assert "example.com/v1" not in parts.store.read()
        assert parts.signals == ["changed"]

        # The CRD is recreated under the same name; its ADDED event is new again.
        recreated = discovery.create_crd(make_crd(uid="uid-recreated"))
        action = await parts.collector.handle_event(event(WatchEventType.ADDED, recreated))
        assert action == "changed"


# ---------------------------------------------------------------------------
# Terminating resources
# ---------------------------------------------------------------------------


class TestTerminatingRetention:
    async def test_terminating_crd_stays_until_discovery_drops_it(self, discovery: FakeDiscovery) -> None:
        parts = _Parts(discovery)
        crd = discovery.create_crd(make_crd())
        await parts.reconciler.refresh_identities()
        await parts.reconciler.collect("initial", notify=False)

        terminating = make_crd(deletion_timestamp="2024-01-15T10:30:00Z")
        discovery.crds[terminating.name] = terminating
        await parts.collector.handle_event(event(WatchEventType.MODIFIED, terminating))
        await parts.reconciler.collect(PATH_PERIODIC)
        assert "example.com/v1" in parts.store.read()

        discovery.stop_serving(crd)
        await parts.reconciler.collect(PATH_PERIODIC)
        assert "example.com/v1" not in parts.store.read()


# ---------------------------------------------------------------------------
# Loops
# ---------------------------------------------------------------------------


class TestLoops:
    async def test_periodic_loop_runs_and_stops(self, discovery: FakeDiscovery) -> None:
        parts = _Parts(discovery, periodic=0.01)
        await parts.reconciler.collect("initial", notify=False)
        stop = asyncio.Event()
        task = asyncio.create_task(parts.reconciler.run_periodic(stop))

        discovery.create_crd(make_crd())
        await wait_until(lambda: "example.com/v1" in parts.store.group_versions())

        stop.set()
        await asyncio.wait_for(task, timeout=2)

    async def test_periodic_loop_survives_failures(self, discovery: FakeDiscovery) -> None:
        parts = _Parts(discovery, periodic=0.01)
        await parts.reconciler.collect("initial", notify=False)
        discovery.fail_collect = DiscoveryError("GET /apis failed")
        stop = asyncio.Event()
        task = asyncio.create_task(parts.reconciler.run_periodic(stop))

        calls = discovery.collect_calls
        await wait_until(lambda: discovery.collect_calls >= calls + 2)
        assert not task.done()

        discovery.fail_collect = None
        discovery.create_crd(make_crd())
        await wait_until(lambda: "example.com/v1" in parts.store.group_versions())

        stop.set()
        await asyncio.wait_for(task, timeout=2)

    async def test_full_rescan_loop_refreshes_ledger(self, discovery: FakeDiscovery) -> None:
        parts = _Parts(discovery, full_rescan=0.01)
        await parts.reconciler.collect("initial", notify=False)
        crd = discovery.create_crd(make_crd())
        stop = asyncio.Event()
        task = asyncio.create_task(parts.reconciler.run_full_rescan(stop))

        await wait_until(lambda: parts.ledger.has(crd.uid))

        stop.set()
        await asyncio.wait_for(task, timeout=2)
