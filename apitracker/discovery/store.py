"""Snapshot store: the single shared copy of the discovered API resources.

All access goes through one ``threading.Lock`` so the synchronous read path is
safe from any thread (event loop, FastAPI worker threads, controller code).
The lock is only ever held for in-memory work; callers perform discovery I/O
before calling :meth:`SnapshotStore.replace` or :meth:`SnapshotStore.apply`.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping

from apitracker.discovery.errors import ResourceTrackerNotStartedError
from apitracker.models.resources import APIResource, APIResourcesByGroupVersion
from apitracker.observability.metrics import snapshot_group_versions


class SnapshotStore:
    """Lock-guarded, atomically swapped snapshot of API resources by group-version."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._snapshot = APIResourcesByGroupVersion()
        self._ready = False

    @property
    def ready(self) -> bool:
        """True once a full collection has been stored."""
        with self._lock:
            return self._ready

    def read(self) -> APIResourcesByGroupVersion:
        """Return an isolated copy of the current snapshot.

        Raises:
            ResourceTrackerNotStartedError: no full collection has completed yet.
        """
        with self._lock:
            if not self._ready:
                raise ResourceTrackerNotStartedError()
            return self._snapshot.copy()

    def replace(self, snapshot: Mapping[str, list[APIResource]]) -> bool:
        """Swap in a complete snapshot and mark the store ready.

        The new snapshot is always stored so informational fields stay current;
        only identity fields decide whether it counts as a change.

        Returns:
            True if the new snapshot differs from the one it replaced.
        """
        new = APIResourcesByGroupVersion({gv: list(resources) for gv, resources in snapshot.items()})
        with self._lock:
            changed = not self._ready or not new.equals(self._snapshot)
            self._snapshot = new
            self._ready = True
            count = len(self._snapshot)
        snapshot_group_versions.set(count)
        return changed

    def apply(
        self,
        updates: Mapping[str, list[APIResource]],
        removals: Iterable[str] = (),
    ) -> bool:
        """Overlay per-group-version updates and drop removed keys atomically.

        Keys in *updates* replace the stored list for that group-version; keys in
        *removals* are deleted. Other keys are untouched.

        Returns:
            True if the resulting snapshot differs from the previous one.
        """
        with self._lock:
            new = self._snapshot.copy()
            for gv in removals:
                new.pop(gv, None)
            for gv, resources in updates.items():
                new[gv] = list(resources)
            changed = not new.equals(self._snapshot)
            self._snapshot = new
            count = len(self._snapshot)
        snapshot_group_versions.set(count)
        return changed

    def group_versions(self) -> set[str]:
        """Return the group-version keys currently stored (empty before ready)."""
        with self._lock:
            return set(self._snapshot)
