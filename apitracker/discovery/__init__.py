"""Discovery-resource tracking for Kubernetes API resources.

Exports:
    ResourceTracker   -- Owns the snapshot and runs the watch and reconcile loops.
    DiscoveryClient   -- Discovery and CRD list/watch over kubernetes-asyncio.
    CRDWaiter         -- Waits for CRDs to become Established.
    queue_signal      -- Signal func handing off to an asyncio.Queue.
    ResourceTrackerNotStartedError, DiscoveryError, GroupVersionNotFoundError,
    TrackerSetupError, CRDWaitTimeoutError -- Exception taxonomy.
"""

from apitracker.discovery.client import DiscoveryClient, augment_resources
from apitracker.discovery.crd import CRDWaiter, crd_name_from_gvk, should_skip_terminating_crd
from apitracker.discovery.errors import (
    CRDWaitTimeoutError,
    DiscoveryError,
    GroupVersionNotFoundError,
    ResourceTrackerNotStartedError,
    TrackerSetupError,
)
from apitracker.discovery.notifier import SignalFunc, queue_signal
from apitracker.discovery.tracker import ResourceTracker

__all__ = [
    "CRDWaitTimeoutError",
    "CRDWaiter",
    "DiscoveryClient",
    "DiscoveryError",
    "GroupVersionNotFoundError",
    "ResourceTracker",
    "ResourceTrackerNotStartedError",
    "SignalFunc",
    "TrackerSetupError",
    "augment_resources",
    "crd_name_from_gvk",
    "queue_signal",
    "should_skip_terminating_crd",
]
