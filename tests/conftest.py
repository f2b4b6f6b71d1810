"""
Pytest configuration and fixtures.
"""
import asyncio
from collections import defaultdict
from typing import AsyncGenerator, AsyncIterator, Dict, List, Optional, Tuple, Type

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from vdb_controller.config.settings import settings
from vdb_controller.exceptions import (
    InstanceAlreadyExistsError,
    InstanceNotFoundError,
    ResourceNotFoundError,
    StoreError,
)
from vdb_controller.models.instance import CreateInstanceRequest, InstanceDescription, InstanceEndpoint
from vdb_controller.models.resources import (
    ANNOTATION_SUBNET_GROUP_NAME,
    ANNOTATION_VPC_SECURITY_GROUP_IDS,
    DatabaseClass,
    ObjectKey,
    Resource,
    VirtualDatabase,
)
from vdb_controller.workers.virtualdatabase_reconciler import VirtualDatabaseReconciler

GENERATED_PASSWORD = "Gen3ratedPassw0rd"


class FakeStore:
    """In-memory desired-state store with the KubeStore read/write surface."""

    def __init__(self):
        self.objects: Dict[Tuple[str, ObjectKey], Resource] = {}
        self.creates: List[Resource] = []
        self.updates: List[Resource] = []
        self.get_errors: Dict[str, StoreError] = {}
        self.create_error: Optional[StoreError] = None
        self.update_error: Optional[StoreError] = None
        self._version = 0
        self._events: Dict[str, asyncio.Queue] = defaultdict(asyncio.Queue)

    def put(self, obj: Resource) -> Resource:
        self._version += 1
        stored = obj.model_copy(deep=True)
        stored.metadata.resource_version = str(self._version)
        self.objects[(stored.kind, stored.key)] = stored
        return stored

    def peek(self, model: Type[Resource], key: ObjectKey) -> Optional[Resource]:
        return self.objects.get((model.__name__, key))

    async def get(self, model: Type[Resource], key: ObjectKey) -> Resource:
        kind = model.__name__
        if kind in self.get_errors:
            raise self.get_errors[kind]
        obj = self.objects.get((kind, key))
        if obj is None:
            raise ResourceNotFoundError(kind, str(key))
        return obj.model_copy(deep=True)

    async def create(self, obj: Resource) -> Resource:
        if self.create_error is not None:
            raise self.create_error
        self.creates.append(obj.model_copy(deep=True))
        return self.put(obj)

    async def update(self, obj: Resource) -> Resource:
        if self.update_error is not None:
            raise self.update_error
        self.updates.append(obj.model_copy(deep=True))
        return self.put(obj)

    def owner_of(self, key: ObjectKey) -> Optional[ObjectKey]:
        endpoint = self.objects.get(("DatabaseEndpoint", key))
        return endpoint.owner_key if endpoint is not None else None

    async def watch(self, model: Type[Resource]) -> AsyncIterator[Tuple[str, Resource]]:
        queue = self._events[model.__name__]
        while True:
            yield await queue.get()

    def emit(self, event_type: str, obj: Resource) -> None:
        """Deliver a watch event to whoever watches the object's kind."""
        self._events[obj.kind].put_nowait((event_type, obj))

    @property
    def mutations(self) -> int:
        return len(self.creates) + len(self.updates)


class FakeProvider:
    """In-memory RDS provider recording every call."""

    def __init__(self):
        self.instances: Dict[str, InstanceDescription] = {}
        self.describe_calls: List[str] = []
        self.create_calls: List[CreateInstanceRequest] = []
        self.describe_error: Optional[Exception] = None
        self.create_error: Optional[Exception] = None

    def set_live(self, identifier: str, address: str, port: int) -> None:
        self.instances[identifier] = InstanceDescription(
            identifier=identifier,
            status="available",
            endpoint=InstanceEndpoint(address=address, port=port),
        )

    async def describe_instance(self, identifier: str) -> InstanceDescription:
        self.describe_calls.append(identifier)
        if self.describe_error is not None:
            raise self.describe_error
        if identifier not in self.instances:
            raise InstanceNotFoundError(identifier)
        return self.instances[identifier]

    async def create_instance(self, request: CreateInstanceRequest) -> InstanceDescription:
        self.create_calls.append(request)
        if self.create_error is not None:
            raise self.create_error
        if request.identifier in self.instances:
            raise InstanceAlreadyExistsError(request.identifier)
        description = InstanceDescription(identifier=request.identifier, status="creating")
        self.instances[request.identifier] = description
        return description


def make_virtualdatabase(
    name: str = "app1",
    namespace: str = "ns",
    class_name: Optional[str] = "rds-mysql",
    db: str = "appdb",
) -> VirtualDatabase:
    spec = {"services": [{"name": "mysql", "databaseMySQL": {"db": db}}]}
    if class_name is not None:
        spec["databaseClassName"] = class_name
    return VirtualDatabase.model_validate(
        {
            "metadata": {"name": name, "namespace": namespace, "uid": f"uid-{name}"},
            "spec": spec,
        }
    )


def make_databaseclass(
    name: str = "rds-mysql",
    namespace: str = "ns",
    provisioner: str = "AWSRdsInstance",
) -> DatabaseClass:
    return DatabaseClass.model_validate(
        {
            "metadata": {
                "name": name,
                "namespace": namespace,
                "annotations": {
                    ANNOTATION_SUBNET_GROUP_NAME: "db-subnets",
                    ANNOTATION_VPC_SECURITY_GROUP_IDS: "sg-1, sg-2",
                },
            },
            "spec": {
                "provisioner": provisioner,
                "engine": {"name": "mysql", "version": "8.0"},
                "instance": {"class": "db.t3.micro"},
                "storage": {"allocatedStorage": 20},
                "defaultMasterUsername": "admin",
            },
        }
    )


@pytest.fixture(scope="session")
def test_settings():
    """Override settings for testing."""
    settings.environment = "testing"
    return settings


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def reconciler(store: FakeStore, provider: FakeProvider) -> VirtualDatabaseReconciler:
    return VirtualDatabaseReconciler(
        store,
        provider,
        reconcile_interval=30.0,
        password_generator=lambda: GENERATED_PASSWORD,
    )


@pytest.fixture
def make_vdb():
    return make_virtualdatabase


@pytest.fixture
def make_class():
    return make_databaseclass


@pytest.fixture
def generated_password() -> str:
    return GENERATED_PASSWORD


@pytest.fixture
def vdb_key() -> ObjectKey:
    return ObjectKey("ns", "app1")


class StubManager:
    """Probe-facing view of the manager."""

    def __init__(self, ready: bool = True, leader_elect: bool = False, is_leader: bool = True):
        self.ready = ready
        self.leader_elect = leader_elect
        self.is_leader = is_leader
        self.controller_running = ready


@pytest.fixture
def manager() -> StubManager:
    return StubManager()


@pytest_asyncio.fixture
async def test_client(manager: StubManager) -> AsyncGenerator[AsyncClient, None]:
    """Create test client for the probe app."""
    from vdb_controller.main import create_probe_app

    app = create_probe_app(manager)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

