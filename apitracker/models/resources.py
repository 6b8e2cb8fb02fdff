"""API resource type metadata and CRD data structures."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum
from typing import Any


class WatchEventType(StrEnum):
    """Kubernetes watch event type."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    ERROR = "ERROR"


def group_version_key(group: str, version: str) -> str:
    """Return the snapshot key for a group-version.

    The core group has an empty name, so its key is the bare version (``v1``).
    """
    return f"{group}/{version}" if group else version


@dataclass(frozen=True)
class APIResource:
    """Type metadata for one resource (or subresource) served by the API server.

    Identity is ``(name, namespaced, kind, verbs)``; ``verbs`` is a set, so two
    descriptors listing the same verbs in a different order are equal.
    """

    name: str
    namespaced: bool
    kind: str
    verbs: frozenset[str] = frozenset()
    singular_name: str = field(default="", compare=False)
    short_names: tuple[str, ...] = field(default=(), compare=False)
    categories: tuple[str, ...] = field(default=(), compare=False)

    @property
    def is_subresource(self) -> bool:
        return "/" in self.name

    def with_verbs(self, *verbs: str) -> APIResource:
        """Return a copy with *verbs* added to the verb set."""
        return replace(self, verbs=self.verbs | frozenset(verbs))

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> APIResource:
        """Build from one entry of a discovery ``APIResourceList.resources``."""
        return cls(
            name=str(raw.get("name", "")),
            namespaced=bool(raw.get("namespaced", False)),
            kind=str(raw.get("kind", "")),
            verbs=frozenset(str(v) for v in raw.get("verbs") or []),
            singular_name=str(raw.get("singularName", "") or ""),
            short_names=tuple(str(s) for s in raw.get("shortNames") or []),
            categories=tuple(str(c) for c in raw.get("categories") or []),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialise to the discovery wire shape (verbs sorted for stable output)."""
        data: dict[str, Any] = {
            "name": self.name,
            "namespaced": self.namespaced,
            "kind": self.kind,
            "verbs": sorted(self.verbs),
        }
        if self.singular_name:
            data["singularName"] = self.singular_name
        if self.short_names:
            data["shortNames"] = list(self.short_names)
        if self.categories:
            data["categories"] = list(self.categories)
        return data


class APIResourcesByGroupVersion(dict[str, list[APIResource]]):
    """Snapshot of served API resources keyed by group-version.

    Keys are ``group/version`` strings, or the bare version for the core group.
    """

    def equals(self, other: dict[str, list[APIResource]]) -> bool:
        """Return True if both snapshots describe the same set of resources.

        Key sets must match exactly. Per key, resource lists are compared as
        sets, so neither resource order nor verb order matters.
        """
        if self.keys() != other.keys():
            return False
        for gv, resources in self.items():
            if set(resources) != set(other[gv]):
                return False
        return True

    def copy(self) -> APIResourcesByGroupVersion:
        """Return a copy with fresh per-key lists.

        Descriptors are immutable, so copying the lists isolates the result
        from any later mutation of this snapshot.
        """
        return APIResourcesByGroupVersion({gv: list(resources) for gv, resources in self.items()})

    def resource_count(self) -> int:
        return sum(len(resources) for resources in self.values())

    def to_dict(self) -> dict[str, list[dict[str, Any]]]:
        return {gv: [r.to_dict() for r in resources] for gv, resources in sorted(self.items())}


@dataclass(frozen=True)
class CRDInfo:
    """The parts of a CustomResourceDefinition the tracker relies on."""

    name: str
    uid: str
    group: str
    served_versions: tuple[str, ...] = ()
    deletion_timestamp: datetime | str | None = None
    finalizers: tuple[str, ...] = ()
    resource_version: str = ""

    @property
    def terminating(self) -> bool:
        return self.deletion_timestamp is not None

    @property
    def group_versions(self) -> frozenset[str]:
        """Snapshot keys of every version this CRD currently serves."""
        return frozenset(group_version_key(self.group, v) for v in self.served_versions)

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> CRDInfo:
        """Build from a raw (camelCase) CRD object as found in watch ``raw_object``."""
        metadata = raw.get("metadata") or {}
        spec = raw.get("spec") or {}
        versions = spec.get("versions") or []
        return cls(
            name=str(metadata.get("name", "")),
            uid=str(metadata.get("uid", "")),
            group=str(spec.get("group", "")),
            served_versions=tuple(str(v.get("name", "")) for v in versions if v.get("served", False)),
            deletion_timestamp=metadata.get("deletionTimestamp"),
            finalizers=tuple(metadata.get("finalizers") or []),
            resource_version=str(metadata.get("resourceVersion", "") or ""),
        )

    @classmethod
    def from_object(cls, obj: Any) -> CRDInfo:
        """Build from a deserialised ``V1CustomResourceDefinition`` model."""
        metadata = getattr(obj, "metadata", None)
        spec = getattr(obj, "spec", None)
        versions = getattr(spec, "versions", None) or []
        return cls(
            name=getattr(metadata, "name", None) or "",
            uid=getattr(metadata, "uid", None) or "",
            group=getattr(spec, "group", None) or "",
            served_versions=tuple(v.name for v in versions if getattr(v, "served", False)),
            deletion_timestamp=getattr(metadata, "deletion_timestamp", None),
            finalizers=tuple(getattr(metadata, "finalizers", None) or []),
            resource_version=getattr(metadata, "resource_version", None) or "",
        )


@dataclass(frozen=True)
class CRDEvent:
    """A single CRD watch notification."""

    type: WatchEventType
    crd: CRDInfo | None = None
    status: dict[str, Any] = field(default_factory=dict)
