"""Identity ledger of known CustomResourceDefinition UIDs.

A fresh CRD watch replays an ``ADDED`` event for every existing CRD. The ledger
lets the collector recognise those replays and skip them. It also exists to
catch what the watch missed: only :meth:`IdentityLedger.refresh`, fed from a
full CRD listing, may prune entries. Incremental events never remove a UID, so
a dropped ``DELETED`` event cannot leave the ledger permanently wrong.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable

from apitracker.observability.metrics import crd_uids_tracked


class IdentityLedger:
    """Thread-safe set of CRD UIDs believed to be live."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._uids: set[str] = set()

    def has(self, uid: str) -> bool:
        with self._lock:
            return uid in self._uids

    def add(self, uid: str) -> bool:
        """Track *uid*. Returns True if it was not tracked before."""
        with self._lock:
            if uid in self._uids:
                return False
            self._uids.add(uid)
            count = len(self._uids)
        crd_uids_tracked.set(count)
        return True

    def count(self) -> int:
        with self._lock:
            return len(self._uids)

    def refresh(self, live_uids: Iterable[str]) -> tuple[set[str], set[str]]:
        """Reconcile the ledger with an authoritative listing.

        Args:
            live_uids: UIDs of every CRD returned by a full list call.

        Returns:
            ``(added, removed)`` UID sets.
        """
        live = set(live_uids)
        with self._lock:
            added = live - self._uids
            removed = self._uids - live
            self._uids = live
        crd_uids_tracked.set(len(live))
        return added, removed
