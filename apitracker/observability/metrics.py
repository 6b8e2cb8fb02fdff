"""Prometheus metrics for apitracker.

All collectors register on the default ``prometheus_client`` registry and are
exposed by the REST API under ``/metrics``.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

_NAMESPACE = "apitracker"

api_discovery_duration_seconds = Histogram(
    "api_discovery_duration_seconds",
    "Duration of full API discovery collections in seconds",
    namespace=_NAMESPACE,
)

api_discovery_errors_total = Counter(
    "api_discovery_errors_total",
    "Total number of API discovery errors",
    namespace=_NAMESPACE,
)

snapshot_group_versions = Gauge(
    "snapshot_group_versions",
    "Number of group-versions in the current API resource snapshot",
    namespace=_NAMESPACE,
)

crd_uids_tracked = Gauge(
    "crd_uids_tracked",
    "Number of CustomResourceDefinition UIDs in the identity ledger",
    namespace=_NAMESPACE,
)

watch_events_total = Counter(
    "watch_events_total",
    "CRD watch events received, by event type and collector action",
    ["type", "action"],
    namespace=_NAMESPACE,
)

watch_restarts_total = Counter(
    "watch_restarts_total",
    "Number of times the CRD watch was re-established",
    namespace=_NAMESPACE,
)

signals_total = Counter(
    "signals_total",
    "Change signal deliveries, by outcome",
    ["outcome"],
    namespace=_NAMESPACE,
)

collections_total = Counter(
    "collections_total",
    "Snapshot collection cycles, by path and result",
    ["path", "result"],
    namespace=_NAMESPACE,
)
