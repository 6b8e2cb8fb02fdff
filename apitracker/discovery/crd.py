"""CustomResourceDefinition helpers.

should_skip_terminating_crd -- watch-event skip policy for CRDs being deleted.
crd_name_from_gvk / pluralize -- derive ``<plural>.<group>`` CRD names.
CRDWaiter -- block until a set of CRDs report the ``Established`` condition.
"""

from __future__ import annotations

import asyncio
from typing import Any

import structlog
from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]

from apitracker.discovery.backoff import Backoff
from apitracker.discovery.errors import CRDWaitTimeoutError
from apitracker.models.resources import CRDInfo, WatchEventType

_VOWELS = frozenset("aeiou")


def should_skip_terminating_crd(crd: CRDInfo, event_type: WatchEventType) -> bool:
    """Return True if an event for *crd* must not trigger recomputation.

    A CRD with a deletion timestamp keeps emitting MODIFIED events while its
    finalizers run, yet the API server still serves its resources. ADDED and
    MODIFIED events for such a CRD are skipped so its resources stay in the
    snapshot; the DELETED event that follows final removal is always processed.
    """
    return crd.terminating and event_type != WatchEventType.DELETED


def pluralize(kind: str) -> str:
    """Lowercase plural of a Kind, using the usual Kubernetes heuristics."""
    lower = kind.lower()
    if lower.endswith("s"):
        return lower + "es"
    if lower.endswith("y"):
        # gateway -> gateways, policy -> policies
        if len(lower) >= 2 and lower[-2] in _VOWELS:
            return lower + "s"
        return lower[:-1] + "ies"
    return lower + "s"


def crd_name_from_gvk(group: str, kind: str) -> str:
    """CRD object name for a kind, e.g. ``roledefinitions.authorization.example.com``."""
    return f"{pluralize(kind)}.{group}"


def _is_established(crd: Any) -> tuple[bool, str | None]:
    """Return ``(established, condition_status)`` for a CRD model or raw dict."""
    if isinstance(crd, dict):
        conditions = (crd.get("status") or {}).get("conditions") or []
        pairs = [(c.get("type"), c.get("status")) for c in conditions]
    else:
        status = getattr(crd, "status", None)
        conditions = getattr(status, "conditions", None) or []
        pairs = [(getattr(c, "type", None), getattr(c, "status", None)) for c in conditions]

    for cond_type, cond_status in pairs:
        if cond_type == "Established":
            return cond_status == "True", cond_status
    return False, None


class CRDWaiter:
    """Waits for CRDs to become Established.

    Args:
        api: ``kubernetes_asyncio.client.ApiextensionsV1Api`` (or any object with an
             async ``read_custom_resource_definition(name)``).
    """

    def __init__(self, api: Any) -> None:
        self._api = api
        self._log = structlog.get_logger(component="discovery.crd_waiter")

    async def wait_for_crds(self, gvks: list[tuple[str, str, str]], timeout: float) -> None:
        """Wait until every ``(group, version, kind)`` has an Established CRD.

        Raises:
            CRDWaitTimeoutError: a CRD was not established within *timeout* seconds.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        for group, version, kind in gvks:
            crd_name = crd_name_from_gvk(group, kind)
            self._log.info("waiting_for_crd", crd=crd_name, gvk=f"{group}/{version}, Kind={kind}")
            remaining = deadline - loop.time()
            try:
                await asyncio.wait_for(self._wait_for_crd(crd_name), timeout=max(remaining, 0))
            except TimeoutError as exc:
                raise CRDWaitTimeoutError(crd_name, timeout) from exc
            self._log.info("crd_established", crd=crd_name)

    async def _wait_for_crd(self, crd_name: str) -> None:
        """Poll one CRD with capped backoff until it is Established."""
        backoff = Backoff(duration=0.5, factor=1.5, jitter=0.1, steps=30, cap=10.0)
        while True:
            try:
                crd = await self._api.read_custom_resource_definition(crd_name)
            except ApiException as exc:
                if exc.status == 404:
                    self._log.debug("crd_not_found_retrying", crd=crd_name)
                else:
                    self._log.debug("crd_fetch_error_retrying", crd=crd_name, error=str(exc))
            else:
                established, status = _is_established(crd)
                if established:
                    return
                if status is None:
                    self._log.debug("crd_no_established_condition_retrying", crd=crd_name)
                else:
                    self._log.debug("crd_not_established_retrying", crd=crd_name, status=status)

            await asyncio.sleep(backoff.step())
