"""Unit tests for API resource descriptors, snapshots and CRD parsing."""

from __future__ import annotations

from types import SimpleNamespace

from hypothesis import given, settings
from hypothesis import strategies as st

from apitracker.models.resources import (
    APIResource,
    APIResourcesByGroupVersion,
    CRDInfo,
    group_version_key,
)


def _deploy(verbs: tuple[str, ...] = ("get", "list", "watch")) -> APIResource:
    return APIResource(name="deployments", namespaced=True, kind="Deployment", verbs=frozenset(verbs))


def _crd_raw(
    name: str = "widgets.example.com",
    uid: str = "uid-1",
    versions: list[tuple[str, bool]] | None = None,
    deletion_timestamp: str | None = None,
) -> dict:
    metadata: dict = {"name": name, "uid": uid, "resourceVersion": "42", "finalizers": ["customresourcecleanup"]}
    if deletion_timestamp:
        metadata["deletionTimestamp"] = deletion_timestamp
    return {
        "metadata": metadata,
        "spec": {
            "group": "example.com",
            "versions": [{"name": v, "served": served} for v, served in (versions or [("v1", True)])],
        },
    }


# ---------------------------------------------------------------------------
# APIResource
# ---------------------------------------------------------------------------


class TestAPIResource:
    def test_verb_order_is_insignificant(self) -> None:
        assert _deploy(("get", "list")) == _deploy(("list", "get"))

    def test_informational_fields_excluded_from_equality(self) -> None:
        a = APIResource("pods", True, "Pod", frozenset({"get"}), singular_name="pod", short_names=("po",))
        b = APIResource("pods", True, "Pod", frozenset({"get"}))
        assert a == b
        assert hash(a) == hash(b)

    def test_different_verbs_are_unequal(self) -> None:
        assert _deploy(("get",)) != _deploy(("get", "delete"))

    def test_is_subresource(self) -> None:
        assert APIResource("pods/status", True, "Pod").is_subresource
        assert not APIResource("pods", True, "Pod").is_subresource

    def test_with_verbs_adds_without_mutating(self) -> None:
        original = _deploy(("get",))
        extended = original.with_verbs("bind", "get")
        assert extended.verbs == frozenset({"get", "bind"})
        assert original.verbs == frozenset({"get"})

    def test_from_dict_reads_discovery_shape(self) -> None:
        resource = APIResource.from_dict(
            {
                "name": "deployments",
                "singularName": "deployment",
                "namespaced": True,
                "kind": "Deployment",
                "verbs": ["create", "get"],
                "shortNames": ["deploy"],
                "categories": ["all"],
            }
        )
        assert resource.name == "deployments"
        assert resource.namespaced is True
        assert resource.verbs == frozenset({"create", "get"})
        assert resource.short_names == ("deploy",)
        assert resource.categories == ("all",)

    def test_to_dict_sorts_verbs(self) -> None:
        data = _deploy(("watch", "get", "list")).to_dict()
        assert data["verbs"] == ["get", "list", "watch"]
        assert "shortNames" not in data


def test_group_version_key_core_group_is_bare_version() -> None:
    assert group_version_key("", "v1") == "v1"
    assert group_version_key("apps", "v1") == "apps/v1"


# ---------------------------------------------------------------------------
# APIResourcesByGroupVersion
# ---------------------------------------------------------------------------


class TestSnapshotEquality:
    def test_list_order_is_insignificant(self) -> None:
        pods = APIResource("pods", True, "Pod", frozenset({"get"}))
        nodes = APIResource("nodes", False, "Node", frozenset({"get"}))
        a = APIResourcesByGroupVersion({"v1": [pods, nodes]})
        b = APIResourcesByGroupVersion({"v1": [nodes, pods]})
        assert a.equals(b)

    def test_missing_key_is_a_difference(self) -> None:
        a = APIResourcesByGroupVersion({"v1": [], "apps/v1": [_deploy()]})
        b = APIResourcesByGroupVersion({"apps/v1": [_deploy()]})
        assert not a.equals(b)
        assert not b.equals(a)

    def test_removed_descriptor_is_a_difference(self) -> None:
        pods = APIResource("pods", True, "Pod", frozenset({"get"}))
        a = APIResourcesByGroupVersion({"v1": [pods, APIResource("pods/status", True, "Pod")]})
        b = APIResourcesByGroupVersion({"v1": [pods]})
        assert not a.equals(b)

    def test_empty_list_differs_from_absent_key(self) -> None:
        assert not APIResourcesByGroupVersion({"v1": []}).equals(APIResourcesByGroupVersion())

    def test_copy_is_isolated(self) -> None:
        original = APIResourcesByGroupVersion({"apps/v1": [_deploy()]})
        copied = original.copy()
        copied["apps/v1"].append(APIResource("replicasets", True, "ReplicaSet"))
        copied["batch/v1"] = []
        assert len(original["apps/v1"]) == 1
        assert "batch/v1" not in original
        assert isinstance(copied, APIResourcesByGroupVersion)

    def test_resource_count_and_sorted_dict(self) -> None:
        snapshot = APIResourcesByGroupVersion({"v1": [], "apps/v1": [_deploy(), _deploy(("get",))]})
        assert snapshot.resource_count() == 2
        assert list(snapshot.to_dict()) == ["apps/v1", "v1"]


_names = st.sampled_from(["pods", "nodes", "services", "deployments", "pods/status"])
_verbs = st.frozensets(st.sampled_from(["get", "list", "watch", "create", "delete"]), max_size=5)
_resources = st.builds(
    APIResource,
    name=_names,
    namespaced=st.booleans(),
    kind=st.sampled_from(["Pod", "Node", "Service"]),
    verbs=_verbs,
)


@settings(max_examples=100)
@given(
    snapshot=st.dictionaries(
        st.sampled_from(["v1", "apps/v1", "batch/v1", "example.com/v1alpha1"]),
        st.lists(_resources, max_size=6),
        max_size=4,
    ),
    seed=st.randoms(use_true_random=False),
)
def test_equality_ignores_list_and_verb_order(snapshot: dict, seed) -> None:
    """Shuffling every descriptor list (and rebuilding verb sets) never changes equality."""
    shuffled = {}
    for gv, resources in snapshot.items():
        rebuilt = [
            APIResource(r.name, r.namespaced, r.kind, frozenset(sorted(r.verbs, reverse=True))) for r in resources
        ]
        seed.shuffle(rebuilt)
        shuffled[gv] = rebuilt
    assert APIResourcesByGroupVersion(snapshot).equals(APIResourcesByGroupVersion(shuffled))


# ---------------------------------------------------------------------------
# CRDInfo
# ---------------------------------------------------------------------------


class TestCRDInfo:
    def test_from_raw_keeps_only_served_versions(self) -> None:
        crd = CRDInfo.from_raw(_crd_raw(versions=[("v1", True), ("v1beta1", False), ("v2", True)]))
        assert crd.served_versions == ("v1", "v2")
        assert crd.group_versions == frozenset({"example.com/v1", "example.com/v2"})
        assert crd.resource_version == "42"
        assert not crd.terminating

    def test_from_raw_deletion_timestamp_marks_terminating(self) -> None:
        crd = CRDInfo.from_raw(_crd_raw(deletion_timestamp="2024-01-15T10:30:00Z"))
        assert crd.terminating
        assert crd.finalizers == ("customresourcecleanup",)

    def test_from_object_reads_model_attributes(self) -> None:
        obj = SimpleNamespace(
            metadata=SimpleNamespace(
                name="widgets.example.com",
                uid="uid-9",
                deletion_timestamp=None,
                finalizers=None,
                resource_version="7",
            ),
            spec=SimpleNamespace(
                group="example.com",
                versions=[SimpleNamespace(name="v1", served=True), SimpleNamespace(name="v0", served=False)],
            ),
        )
        crd = CRDInfo.from_object(obj)
        assert crd.uid == "uid-9"
        assert crd.group_versions == frozenset({"example.com/v1"})
        assert crd.finalizers == ()
