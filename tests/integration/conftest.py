"""Shared fixtures for apitracker integration tests.

Provides an in-memory discovery backend that behaves like an API server:
CRDs can be created, marked terminating and deleted, and the watch stream
is fed from a queue, so the tracker's collectors can be driven end to end
without a cluster.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable

import pytest

from apitracker.models.resources import (
    APIResource,
    APIResourcesByGroupVersion,
    CRDEvent,
    CRDInfo,
    WatchEventType,
)

# ---------------------------------------------------------------------------
# Factory helpers
# ---------------------------------------------------------------------------


def make_crd(
    kind: str = "Widget",
    group: str = "example.com",
    versions: Iterable[str] = ("v1",),
    uid: str = "",
    deletion_timestamp: str | None = None,
) -> CRDInfo:
    """Create a CRDInfo named ``<kind>s.<group>``."""
    plural = f"{kind.lower()}s"
    return CRDInfo(
        name=f"{plural}.{group}",
        uid=uid or f"uid-{plural}-{group}",
        group=group,
        served_versions=tuple(versions),
        deletion_timestamp=deletion_timestamp,
        finalizers=("customresourcecleanup.apiextensions.k8s.io",) if deletion_timestamp else (),
    )


def crd_resources(crd: CRDInfo) -> list[APIResource]:
    """Discovery entries for a CRD's custom resource (including the finalizers entry)."""
    plural = crd.name.split(".", 1)[0]
    kind = plural[:-1].capitalize()
    return [
        APIResource(plural, True, kind, frozenset({"get", "list", "watch", "create", "delete"})),
        APIResource(f"{plural}/finalizers", True, kind, frozenset({"update", "list", "watch"})),
    ]


def event(event_type: WatchEventType, crd: CRDInfo) -> CRDEvent:
    return CRDEvent(type=event_type, crd=crd)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll *predicate* until it holds, failing the test after *timeout* seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


# ---------------------------------------------------------------------------
# In-memory discovery backend
# ---------------------------------------------------------------------------

_BUILTIN = {
    "v1": [
        APIResource("pods", True, "Pod", frozenset({"get", "list", "watch"})),
        APIResource("nodes", False, "Node", frozenset({"get", "list", "watch"})),
    ],
    "apps/v1": [APIResource("deployments", True, "Deployment", frozenset({"get", "list", "watch"}))],
}


class FakeDiscovery:
    """Stand-in for DiscoveryClient backed by in-memory cluster state.

    Watch sessions read from ``events``: a CRDEvent is yielded, ``None`` ends the
    session cleanly, and an exception instance is raised from the stream.
    """

    def __init__(self) -> None:
        self.served: dict[str, list[APIResource]] = {gv: list(r) for gv, r in _BUILTIN.items()}
        self.crds: dict[str, CRDInfo] = {}
        self.events: asyncio.Queue[CRDEvent | Exception | None] = asyncio.Queue()

        self.queried: list[str] = []
        self.collect_calls = 0
        self.list_calls = 0
        self.watch_sessions = 0

        self.fail_collect: Exception | None = None
        self.fail_list: Exception | None = None
        self.before_collect: Callable[[], Awaitable[None]] | None = None

    # --- cluster mutations -------------------------------------------------

    def create_crd(self, crd: CRDInfo) -> CRDInfo:
        """Register *crd* and start serving its group-versions."""
        self.crds[crd.name] = crd
        for gv in crd.group_versions:
            self.served[gv] = crd_resources(crd)
        return crd

    def stop_serving(self, crd: CRDInfo) -> None:
        """Remove *crd* and stop serving group-versions no other CRD serves."""
        self.crds.pop(crd.name, None)
        still_served = {gv for other in self.crds.values() for gv in other.group_versions}
        for gv in crd.group_versions - still_served:
            self.served.pop(gv, None)

    async def replay(self) -> None:
        """Queue the ADDED events a fresh watch emits for existing CRDs."""
        for crd in self.crds.values():
            await self.events.put(event(WatchEventType.ADDED, crd))

    # --- DiscoveryClient surface --------------------------------------------

    async def collect(self) -> APIResourcesByGroupVersion:
        self.collect_calls += 1
        if self.before_collect is not None:
            await self.before_collect()
        if self.fail_collect is not None:
            raise self.fail_collect
        return APIResourcesByGroupVersion({gv: list(r) for gv, r in self.served.items()})

    async def collect_group_versions(
        self,
        group_versions: Iterable[str],
    ) -> tuple[dict[str, list[APIResource]], set[str]]:
        found: dict[str, list[APIResource]] = {}
        not_found: set[str] = set()
        for gv in group_versions:
            self.queried.append(gv)
            if gv in self.served:
                found[gv] = list(self.served[gv])
            else:
                not_found.add(gv)
        return found, not_found

    async def list_crds(self) -> list[CRDInfo]:
        self.list_calls += 1
        if self.fail_list is not None:
            raise self.fail_list
        return list(self.crds.values())

    async def watch_crds(self, timeout_seconds: int = 300) -> AsyncIterator[CRDEvent]:
        self.watch_sessions += 1
        while True:
            item = await self.events.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield item


@pytest.fixture()
def discovery() -> FakeDiscovery:
    return FakeDiscovery()
