"""
Pydantic models for the database-mesh custom resources.

Field names follow Python conventions; aliases match the camelCase keys the
Kubernetes API uses, so objects round-trip through ``to_dict``/``model_validate``.
"""
from enum import Enum
from typing import Dict, List, Literal, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field

API_GROUP = "core.database-mesh.io"
API_VERSION = "v1alpha1"

# DatabaseClass annotations carrying RDS networking parameters
ANNOTATION_SUBNET_GROUP_NAME = "database-mesh.io/aws-rds-subnet-group-name"
ANNOTATION_VPC_SECURITY_GROUP_IDS = "database-mesh.io/aws-rds-vpc-security-group-ids"


class ObjectKey(NamedTuple):
    """Stable identity of a namespaced object."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def parse(cls, value: str) -> "ObjectKey":
        namespace, sep, name = value.partition("/")
        if not sep or not namespace or not name:
            raise ValueError(f"Expected 'namespace/name', got {value!r}")
        return cls(namespace, name)


class _CamelModel(BaseModel):
    """Base for API sub-objects: accepts field names or aliases, keeps unknown keys."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class OwnerReference(_CamelModel):
    api_version: str = Field(alias="apiVersion")
    kind: str
    name: str
    uid: str
    controller: Optional[bool] = None
    block_owner_deletion: Optional[bool] = Field(default=None, alias="blockOwnerDeletion")


class ObjectMeta(_CamelModel):
    name: str
    namespace: str = "default"
    uid: Optional[str] = None
    resource_version: Optional[str] = Field(default=None, alias="resourceVersion")
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)
    owner_references: List[OwnerReference] = Field(default_factory=list, alias="ownerReferences")


class Resource(_CamelModel):
    """Common envelope of every custom resource handled by the controller."""

    api_version: str = Field(default=f"{API_GROUP}/{API_VERSION}", alias="apiVersion")
    metadata: ObjectMeta

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.metadata.namespace, self.metadata.name)

    def to_dict(self) -> dict:
        """Serialize to the JSON body the Kubernetes API expects."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# VirtualDatabase


class DatabaseMySQL(_CamelModel):
    """MySQL-specific part of a service: the logical database to provision."""

    db: str = ""
    server_name: Optional[str] = Field(default=None, alias="serverName")
    host: Optional[str] = None
    port: Optional[int] = None


class VirtualDatabaseService(_CamelModel):
    name: str = ""
    database_mysql: Optional[DatabaseMySQL] = Field(default=None, alias="databaseMySQL")
    traffic_strategy: Optional[str] = Field(default=None, alias="trafficStrategy")


class VirtualDatabaseSpec(_CamelModel):
    database_class_name: Optional[str] = Field(default=None, alias="databaseClassName")
    services: List[VirtualDatabaseService] = Field(default_factory=list)


class VirtualDatabase(Resource):
    """Desired state declared by the user. Read-only to the reconciler."""

    kind: Literal["VirtualDatabase"] = "VirtualDatabase"
    spec: VirtualDatabaseSpec = Field(default_factory=VirtualDatabaseSpec)


# DatabaseClass


class DatabaseProvisioner(str, Enum):
    """Provisioning strategies a DatabaseClass can select."""

    AWS_RDS_INSTANCE = "AWSRdsInstance"
    AWS_RDS_CLUSTER = "AWSRdsCluster"
    AWS_RDS_AURORA = "AWSRdsAurora"


class DatabaseEngineSpec(_CamelModel):
    name: str = ""
    version: str = ""


class DatabaseInstanceSpec(_CamelModel):
    instance_class: str = Field(default="", alias="class")


class DatabaseStorageSpec(_CamelModel):
    allocated_storage: int = Field(default=0, alias="allocatedStorage")


class DatabaseClassSpec(_CamelModel):
    provisioner: str = ""
    engine: DatabaseEngineSpec = Field(default_factory=DatabaseEngineSpec)
    instance: DatabaseInstanceSpec = Field(default_factory=DatabaseInstanceSpec)
    storage: DatabaseStorageSpec = Field(default_factory=DatabaseStorageSpec)
    default_master_username: str = Field(default="", alias="defaultMasterUsername")


class DatabaseClass(Resource):
    """Provisioning template. Treated as immutable configuration."""

    kind: Literal["DatabaseClass"] = "DatabaseClass"
    spec: DatabaseClassSpec = Field(default_factory=DatabaseClassSpec)

    @property
    def is_rds_instance(self) -> bool:
        return self.spec.provisioner == DatabaseProvisioner.AWS_RDS_INSTANCE.value

    @property
    def subnet_group_name(self) -> str:
        return self.metadata.annotations.get(ANNOTATION_SUBNET_GROUP_NAME, "")

    @property
    def vpc_security_group_ids(self) -> List[str]:
        raw = self.metadata.annotations.get(ANNOTATION_VPC_SECURITY_GROUP_IDS, "")
        return [group_id.strip() for group_id in raw.split(",") if group_id.strip()]


# DatabaseEndpoint


class MySQLEndpoint(_CamelModel):
    host: str = ""
    port: int = 0
    user: str = ""
    password: str = ""
    db: str = ""

    @property
    def has_address(self) -> bool:
        return bool(self.host) and self.port > 0


class EndpointDatabase(_CamelModel):
    mysql: Optional[MySQLEndpoint] = None


class EndpointOwner(_CamelModel):
    """Back-reference from an endpoint to the VirtualDatabase that owns it."""

    namespace: str
    name: str

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.namespace, self.name)


class DatabaseEndpointSpec(_CamelModel):
    database: EndpointDatabase = Field(default_factory=EndpointDatabase)
    owner: Optional[EndpointOwner] = None


class DatabaseEndpoint(Resource):
    """Observed connection details, owned by the VirtualDatabase of the same name."""

    kind: Literal["DatabaseEndpoint"] = "DatabaseEndpoint"
    spec: DatabaseEndpointSpec = Field(default_factory=DatabaseEndpointSpec)

    @property
    def owner_key(self) -> Optional[ObjectKey]:
        """
        Key of the owning VirtualDatabase.

        Prefers the explicit back-reference and falls back to a
        VirtualDatabase entry in ownerReferences (same namespace).
        """
        if self.spec.owner is not None:
            return self.spec.owner.key
        for ref in self.metadata.owner_references:
            if ref.kind == "VirtualDatabase":
                return ObjectKey(self.metadata.namespace, ref.name)
        return None

    @classmethod
    def for_owner(cls, owner: VirtualDatabase, mysql: MySQLEndpoint) -> "DatabaseEndpoint":
        """Build an endpoint sharing the owner's identity and pointing back at it."""
        owner_references = []
        if owner.metadata.uid:
            owner_references.append(
                OwnerReference(
                    api_version=owner.api_version,
                    kind=owner.kind,
                    name=owner.metadata.name,
                    uid=owner.metadata.uid,
                    controller=True,
                    block_owner_deletion=True,
                )
            )
        return cls(
            metadata=ObjectMeta(
                name=owner.metadata.name,
                namespace=owner.metadata.namespace,
                owner_references=owner_references,
            ),
            spec=DatabaseEndpointSpec(
                database=EndpointDatabase(mysql=mysql),
                owner=EndpointOwner(namespace=owner.metadata.namespace, name=owner.metadata.name),
            ),
        )
