"""Discovery client: API server discovery and CRD list/watch over kubernetes-asyncio.

The discovery endpoints (``/api``, ``/apis``, ``/api/v1``, ``/apis/<group>/<version>``)
are read as raw JSON through the shared ``ApiClient`` so that any group-version,
including aggregated APIs, can be queried without a generated API class.

Every group-version's resource list is augmented with the verbs and synthetic
subresources that RBAC rules need but discovery does not advertise
(see :func:`augment_resources`).
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Iterable
from typing import Any

import aiohttp
from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]
from kubernetes_asyncio import watch as k8s_watch  # type: ignore[import-untyped]
from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]

from apitracker.discovery.errors import DiscoveryError, GroupVersionNotFoundError
from apitracker.models.resources import (
    APIResource,
    APIResourcesByGroupVersion,
    CRDEvent,
    CRDInfo,
    WatchEventType,
)
from apitracker.observability.logging import get_logger
from apitracker.observability.metrics import api_discovery_duration_seconds, api_discovery_errors_total

_RBAC_GROUP = "rbac.authorization.k8s.io"
_FINALIZER_VERBS = frozenset({"update", "list", "watch"})
_NODE_METRICS_VERBS = frozenset({"get", "list", "watch"})


def split_group_version(group_version: str) -> tuple[str, str]:
    """Split a snapshot key into ``(group, version)``; the core group is ``""``."""
    group, _, version = group_version.rpartition("/")
    return group, version


def augment_resources(group: str, version: str, resources: Iterable[APIResource]) -> list[APIResource]:
    """Add RBAC-relevant verbs and subresources missing from discovery.

    * ``*/status`` and ``*/finalizers`` subresources gain ``list`` and ``watch``.
    * ``rbac.authorization.k8s.io/v1`` roles and rolebindings gain ``bind``;
      roles also gain ``escalate``.
    * Every top-level resource gets a ``<name>/finalizers`` entry.
    * Core ``v1`` nodes get a ``nodes/metrics`` entry.
    """
    rbac_v1 = group == _RBAC_GROUP and version == "v1"
    result: list[APIResource] = []
    for resource in resources:
        if resource.is_subresource:
            if resource.name.endswith(("/status", "/finalizers")):
                resource = resource.with_verbs("list", "watch")
            result.append(resource)
            continue

        if rbac_v1 and resource.name in ("roles", "rolebindings"):
            resource = resource.with_verbs("bind")
        if rbac_v1 and resource.name == "roles":
            resource = resource.with_verbs("escalate")
        result.append(resource)

        result.append(
            APIResource(
                name=f"{resource.name}/finalizers",
                namespaced=resource.namespaced,
                kind=resource.kind,
                verbs=_FINALIZER_VERBS,
                singular_name=resource.singular_name,
            )
        )
        if group == "" and version == "v1" and resource.name == "nodes":
            result.append(
                APIResource(
                    name="nodes/metrics",
                    namespaced=resource.namespaced,
                    kind=resource.kind,
                    verbs=_NODE_METRICS_VERBS,
                    singular_name=resource.singular_name,
                )
            )
    return result


class DiscoveryClient:
    """Thin async wrapper over the API server discovery and CRD endpoints.

    Args:
        api_client:  ``kubernetes_asyncio.client.ApiClient`` to issue requests with.
        concurrency: Maximum number of group-version queries in flight during a
                     full collection.
    """

    def __init__(self, api_client: Any, concurrency: int = 16) -> None:
        self._api_client = api_client
        self._concurrency = max(concurrency, 1)
        self._log = get_logger("discovery.client")

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def server_group_versions(self) -> list[str]:
        """Return every served group-version key, core ``v1`` first."""
        core = await self._get_json("/api")
        groups = await self._get_json("/apis")

        result: list[str] = [str(v) for v in core.get("versions") or []]
        for group in groups.get("groups") or []:
            for version in group.get("versions") or []:
                gv = version.get("groupVersion") or f"{group.get('name', '')}/{version.get('version', '')}"
                result.append(str(gv))
        return result

    async def server_resources_for_group_version(self, group_version: str) -> list[APIResource]:
        """Return the augmented resource list for one group-version.

        Raises:
            GroupVersionNotFoundError: the group-version is not served.
            DiscoveryError: any other request failure.
        """
        group, version = split_group_version(group_version)
        path = f"/apis/{group}/{version}" if group else f"/api/{version}"
        try:
            body = await self._get_json(path)
        except GroupVersionNotFoundError:
            raise
        except DiscoveryError as exc:
            raise DiscoveryError(f"discovery of {group_version} failed: {exc}", status=exc.status) from exc
        resources = [APIResource.from_dict(raw) for raw in body.get("resources") or []]
        return augment_resources(group, version, resources)

    async def collect_group_versions(
        self,
        group_versions: Iterable[str],
    ) -> tuple[dict[str, list[APIResource]], set[str]]:
        """Query several group-versions concurrently.

        Returns:
            ``(found, not_found)``: resources per served group-version, and the
            group-versions the server reported as not served.

        Raises:
            DiscoveryError: the first non-404 failure among the queries.
        """
        targets = list(dict.fromkeys(group_versions))
        semaphore = asyncio.Semaphore(self._concurrency)

        async def _one(gv: str) -> list[APIResource]:
            async with semaphore:
                return await self.server_resources_for_group_version(gv)

        results = await asyncio.gather(*(_one(gv) for gv in targets), return_exceptions=True)

        found: dict[str, list[APIResource]] = {}
        not_found: set[str] = set()
        first_error: BaseException | None = None
        for gv, result in zip(targets, results, strict=True):
            if isinstance(result, GroupVersionNotFoundError):
                not_found.add(gv)
            elif isinstance(result, BaseException):
                self._log.warning("group_version_discovery_failed", group_version=gv, error=str(result))
                first_error = first_error or result
            else:
                found[gv] = result

        if first_error is not None:
            raise first_error
        return found, not_found

    async def collect(self) -> APIResourcesByGroupVersion:
        """Run a full discovery pass over every served group-version.

        Group-versions that vanish between listing and querying are skipped.
        """
        started = time.perf_counter()
        try:
            group_versions = await self.server_group_versions()
            found, not_found = await self.collect_group_versions(group_versions)
        except DiscoveryError:
            api_discovery_errors_total.inc()
            raise

        api_discovery_duration_seconds.observe(time.perf_counter() - started)
        if not_found:
            self._log.debug("group_versions_vanished", group_versions=sorted(not_found))
        self._log.debug(
            "discovery_collected",
            group_versions=len(found),
            resources=sum(len(r) for r in found.values()),
        )
        return APIResourcesByGroupVersion(found)

    # ------------------------------------------------------------------
    # CustomResourceDefinitions
    # ------------------------------------------------------------------

    async def list_crds(self) -> list[CRDInfo]:
        """List every CRD in the cluster."""
        api = k8s_client.ApiextensionsV1Api(self._api_client)
        try:
            result = await api.list_custom_resource_definition()
        except ApiException as exc:
            raise DiscoveryError(f"unable to list CRDs: {exc.reason}", status=exc.status) from exc
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            raise DiscoveryError(f"unable to list CRDs: {exc}") from exc
        return [CRDInfo.from_object(item) for item in getattr(result, "items", None) or []]

    async def watch_crds(self, timeout_seconds: int = 300) -> AsyncIterator[CRDEvent]:
        """Stream CRD watch events until the server closes the watch.

        A new watch replays an ADDED event for every existing CRD.
        """
        api = k8s_client.ApiextensionsV1Api(self._api_client)
        w = k8s_watch.Watch()
        try:
            async for event in w.stream(api.list_custom_resource_definition, timeout_seconds=timeout_seconds):
                yield _to_crd_event(event)
        finally:
            w.stop()
            await w.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _get_json(self, path: str) -> dict[str, Any]:
        """GET *path* from the API server and decode the JSON body."""
        try:
            response = await self._api_client.call_api(
                path,
                "GET",
                header_params={"Accept": "application/json"},
                auth_settings=["BearerToken"],
                _return_http_data_only=True,
                _preload_content=False,
            )
        except ApiException as exc:
            if exc.status == 404:
                raise GroupVersionNotFoundError(path.split("/", 2)[-1]) from exc
            raise DiscoveryError(f"GET {path} failed: {exc.reason}", status=exc.status) from exc
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            raise DiscoveryError(f"GET {path} failed: {exc}") from exc

        try:
            if response.status == 404:
                raise GroupVersionNotFoundError(path.split("/", 2)[-1])
            if not 200 <= response.status <= 299:
                raise DiscoveryError(f"GET {path} returned {response.status}", status=response.status)
            body = await response.json(content_type=None)
        except aiohttp.ClientError as exc:
            raise DiscoveryError(f"GET {path} failed: {exc}") from exc
        finally:
            response.release()

        if not isinstance(body, dict):
            raise DiscoveryError(f"GET {path} returned a non-object body")
        return body


def _to_crd_event(event: dict[str, Any]) -> CRDEvent:
    """Convert a kubernetes-asyncio watch event dict into a CRDEvent."""
    event_type = WatchEventType(str(event.get("type", "ERROR")))
    raw = event.get("raw_object")
    if event_type == WatchEventType.ERROR:
        status = raw if isinstance(raw, dict) else {}
        return CRDEvent(type=event_type, status=status)
    if isinstance(raw, dict):
        return CRDEvent(type=event_type, crd=CRDInfo.from_raw(raw))
    return CRDEvent(type=event_type, crd=CRDInfo.from_object(event.get("object")))
