"""
Tests for the Kubernetes-backed store and its owner index.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest
from kubernetes_asyncio.client import ApiException

from vdb_controller.exceptions import ResourceNotFoundError, StoreError
from vdb_controller.models.resources import DatabaseEndpoint, MySQLEndpoint, ObjectKey, VirtualDatabase
from vdb_controller.services import kube_store as kube_store_module
from vdb_controller.services.codecs import CodecTable
from vdb_controller.services.kube_store import KubeStore

GROUP = "core.database-mesh.io"
VERSION = "v1alpha1"


def endpoint_body(name: str, owner: str, resource_version: str = "1") -> dict:
    return {
        "apiVersion": f"{GROUP}/{VERSION}",
        "kind": "DatabaseEndpoint",
        "metadata": {"name": name, "namespace": "ns", "resourceVersion": resource_version},
        "spec": {
            "database": {"mysql": {"host": "", "port": 0, "user": "admin", "password": "", "db": "appdb"}},
            "owner": {"namespace": "ns", "name": owner},
        },
    }


@pytest.fixture
def custom_api() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def kube_store(custom_api) -> KubeStore:
    store = KubeStore(MagicMock(), CodecTable.default(), namespace="ns")
    store.custom_api = custom_api
    return store


@pytest.mark.asyncio
async def test_get_decodes_object(kube_store, custom_api):
    custom_api.get_namespaced_custom_object.return_value = {
        "apiVersion": f"{GROUP}/{VERSION}",
        "kind": "VirtualDatabase",
        "metadata": {"name": "app1", "namespace": "ns"},
        "spec": {"databaseClassName": "rds-mysql"},
    }

    vdb = await kube_store.get(VirtualDatabase, ObjectKey("ns", "app1"))

    assert vdb.spec.database_class_name == "rds-mysql"
    custom_api.get_namespaced_custom_object.assert_awaited_once_with(
        group=GROUP, version=VERSION, namespace="ns", plural="virtualdatabases", name="app1"
    )


@pytest.mark.asyncio
async def test_get_missing_raises_not_found(kube_store, custom_api):
    custom_api.get_namespaced_custom_object.side_effect = ApiException(status=404, reason="Not Found")

    with pytest.raises(ResourceNotFoundError):
        await kube_store.get(VirtualDatabase, ObjectKey("ns", "app1"))


@pytest.mark.asyncio
async def test_get_failure_raises_store_error(kube_store, custom_api):
    custom_api.get_namespaced_custom_object.side_effect = ApiException(status=500, reason="boom")

    with pytest.raises(StoreError) as exc_info:
        await kube_store.get(VirtualDatabase, ObjectKey("ns", "app1"))
    assert exc_info.value.status == 500


@pytest.mark.asyncio
async def test_create_encodes_and_indexes_owner(kube_store, custom_api):
    custom_api.create_namespaced_custom_object.side_effect = lambda **kwargs: kwargs["body"]
    owner = VirtualDatabase.model_validate({"metadata": {"name": "app1", "namespace": "ns"}})
    endpoint = DatabaseEndpoint.for_owner(owner, MySQLEndpoint(user="admin", db="appdb"))

    await kube_store.create(endpoint)

    body = custom_api.create_namespaced_custom_object.call_args.kwargs["body"]
    assert body["kind"] == "DatabaseEndpoint"
    assert body["apiVersion"] == f"{GROUP}/{VERSION}"
    assert kube_store.owner_of(ObjectKey("ns", "app1")) == ObjectKey("ns", "app1")
    assert kube_store.dependents_of(ObjectKey("ns", "app1")) == {ObjectKey("ns", "app1")}


@pytest.mark.asyncio
async def test_update_conflict_raises_store_error(kube_store, custom_api):
    custom_api.replace_namespaced_custom_object.side_effect = ApiException(status=409, reason="Conflict")
    endpoint = DatabaseEndpoint.model_validate(endpoint_body("app1", "app1"))

    with pytest.raises(StoreError) as exc_info:
        await kube_store.update(endpoint)
    assert exc_info.value.status == 409


class FakeStream:
    def __init__(self, events):
        self.events = events

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for event in self.events:
            yield event


class FakeWatch:
    batches = []
    calls = []

    def stream(self, func, *args, **kwargs):
        FakeWatch.calls.append(kwargs)
        return FakeStream(FakeWatch.batches.pop(0))


@pytest.mark.asyncio
async def test_watch_lists_then_streams_and_relists_on_gone(kube_store, custom_api, monkeypatch):
    monkeypatch.setattr(kube_store_module.watch, "Watch", FakeWatch)
    FakeWatch.calls = []
    FakeWatch.batches = [
        [
            {"type": "MODIFIED", "object": endpoint_body("app1", "app1", "11")},
            {"type": "BOOKMARK", "object": {"metadata": {"resourceVersion": "12"}}},
            {"type": "ERROR", "object": {"code": 410, "message": "too old resource version"}},
        ],
        [
            {"type": "DELETED", "object": endpoint_body("app1", "app1", "21")},
            {"type": "ERROR", "object": {"code": 500, "message": "internal error"}},
        ],
    ]
    custom_api.list_namespaced_custom_object.side_effect = [
        {"metadata": {"resourceVersion": "10"}, "items": [endpoint_body("app1", "app1", "10")]},
        {"metadata": {"resourceVersion": "20"}, "items": []},
    ]

    events = []
    with pytest.raises(StoreError):
        async for event_type, obj in kube_store.watch(DatabaseEndpoint):
            events.append((event_type, obj.key, obj.metadata.resource_version))
            if event_type != "DELETED":
                assert kube_store.owner_of(obj.key) == ObjectKey("ns", "app1")

    assert events == [
        ("ADDED", ObjectKey("ns", "app1"), "10"),
        ("MODIFIED", ObjectKey("ns", "app1"), "11"),
        ("DELETED", ObjectKey("ns", "app1"), "21"),
    ]
    assert [call["resource_version"] for call in FakeWatch.calls] == ["10", "20"]
    assert custom_api.list_namespaced_custom_object.await_count == 2
    assert kube_store.owner_of(ObjectKey("ns", "app1")) is None


@pytest.mark.asyncio
async def test_watch_skips_malformed_objects(kube_store, custom_api, monkeypatch):
    monkeypatch.setattr(kube_store_module.watch, "Watch", FakeWatch)
    bad = endpoint_body("broken", "broken", "2")
    bad["spec"]["database"]["mysql"]["port"] = "not-a-port"
    FakeWatch.calls = []
    FakeWatch.batches = [
        [
            {"type": "MODIFIED", "object": dict(bad, metadata=dict(bad["metadata"], resourceVersion="4"))},
            {"type": "MODIFIED", "object": endpoint_body("app2", "app2", "5")},
            {"type": "ERROR", "object": {"code": 500, "message": "internal error"}},
        ],
    ]
    custom_api.list_namespaced_custom_object.return_value = {
        "metadata": {"resourceVersion": "3"},
        "items": [bad, endpoint_body("app1", "app1", "3")],
    }

    events = []
    with pytest.raises(StoreError):
        async for event_type, obj in kube_store.watch(DatabaseEndpoint):
            events.append((event_type, obj.key))

    assert events == [
        ("ADDED", ObjectKey("ns", "app1")),
        ("MODIFIED", ObjectKey("ns", "app2")),
    ]
    # The stream resumes past the malformed object
    assert [call["resource_version"] for call in FakeWatch.calls] == ["3"]
    assert kube_store.owner_of(ObjectKey("ns", "broken")) is None
