"""
Per-kind codec table for the database-mesh custom resources.

Built once at startup and handed to the store; there is no global type registry.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, Type, TypeVar

from vdb_controller.models.resources import (
    API_GROUP,
    API_VERSION,
    DatabaseClass,
    DatabaseEndpoint,
    Resource,
    VirtualDatabase,
)

T = TypeVar("T", bound=Resource)


@dataclass(frozen=True)
class ResourceCodec:
    """How one kind maps to the Kubernetes custom objects API and back."""

    kind: str
    group: str
    version: str
    plural: str
    model: Type[Resource]

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"

    def decode(self, body: dict) -> Resource:
        return self.model.model_validate(body)

    def encode(self, obj: Resource) -> dict:
        body = obj.to_dict()
        body["apiVersion"] = self.api_version
        body["kind"] = self.kind
        return body


class CodecTable:
    """Lookup of codecs by kind name or model class."""

    def __init__(self, codecs: Iterable[ResourceCodec]):
        self._by_kind: Dict[str, ResourceCodec] = {}
        self._by_model: Dict[Type[Resource], ResourceCodec] = {}
        for codec in codecs:
            if codec.kind in self._by_kind:
                raise ValueError(f"Duplicate codec for kind {codec.kind}")
            self._by_kind[codec.kind] = codec
            self._by_model[codec.model] = codec

    def __contains__(self, kind: str) -> bool:
        return kind in self._by_kind

    def for_kind(self, kind: str) -> ResourceCodec:
        try:
            return self._by_kind[kind]
        except KeyError:
            raise ValueError(f"No codec registered for kind {kind}") from None

    def for_model(self, model: Type[T]) -> ResourceCodec:
        try:
            return self._by_model[model]
        except KeyError:
            raise ValueError(f"No codec registered for model {model.__name__}") from None

    def for_object(self, obj: Resource) -> ResourceCodec:
        return self.for_model(type(obj))

    @classmethod
    def default(cls) -> "CodecTable":
        """Codecs for the three kinds the controller works with."""
        return cls(
            [
                ResourceCodec("VirtualDatabase", API_GROUP, API_VERSION, "virtualdatabases", VirtualDatabase),
                ResourceCodec("DatabaseClass", API_GROUP, API_VERSION, "databaseclasses", DatabaseClass),
                ResourceCodec("DatabaseEndpoint", API_GROUP, API_VERSION, "databaseendpoints", DatabaseEndpoint),
            ]
        )
