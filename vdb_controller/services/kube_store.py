"""
Desired-state store backed by the Kubernetes custom objects API.

Wraps kubernetes_asyncio's CustomObjectsApi for the three database-mesh kinds
and keeps an owner index (VirtualDatabase -> DatabaseEndpoints) fed by every
endpoint the store reads, writes or watches.
"""
from collections import defaultdict
from typing import AsyncIterator, Dict, Optional, Set, Tuple, Type, TypeVar

from kubernetes_asyncio import client, config, watch
from kubernetes_asyncio.client import ApiException
from pydantic import ValidationError

from vdb_controller.config.logging import get_logger
from vdb_controller.exceptions import ResourceNotFoundError, StoreError
from vdb_controller.models.resources import DatabaseEndpoint, ObjectKey, Resource
from vdb_controller.services.codecs import CodecTable, ResourceCodec
from vdb_controller.utils.retry import retry_on_k8s_error

logger = get_logger(__name__)

T = TypeVar("T", bound=Resource)

# Server-side watch timeout; the stream is re-opened from the last resourceVersion
WATCH_TIMEOUT_SECONDS = 300


class KubeStore:
    """
    Get/create/update/watch for custom resources, decoded through a CodecTable.

    ``namespace=None`` works cluster-wide for list and watch.
    """

    def __init__(
        self,
        api_client: client.ApiClient,
        codecs: CodecTable,
        namespace: Optional[str] = None,
    ):
        self.api_client = api_client
        self.custom_api = client.CustomObjectsApi(api_client)
        self.codecs = codecs
        self.namespace = namespace
        self._dependents: Dict[ObjectKey, Set[ObjectKey]] = defaultdict(set)
        self._owners: Dict[ObjectKey, ObjectKey] = {}

    @classmethod
    async def connect(
        cls,
        codecs: CodecTable,
        in_cluster: bool = False,
        kubeconfig_path: Optional[str] = None,
        namespace: Optional[str] = None,
    ) -> "KubeStore":
        """Load cluster configuration and build a store on its own API client."""
        configuration = client.Configuration()
        if in_cluster:
            config.load_incluster_config(client_configuration=configuration)
        else:
            await config.load_kube_config(config_file=kubeconfig_path, client_configuration=configuration)

        logger.info(
            "kubernetes_configuration_loaded",
            host=configuration.host,
            in_cluster=in_cluster,
            namespace=namespace or "*",
        )
        return cls(client.ApiClient(configuration=configuration), codecs, namespace=namespace)

    async def close(self) -> None:
        """Close the underlying API client."""
        await self.api_client.close()

    # Reads and writes

    async def get(self, model: Type[T], key: ObjectKey) -> T:
        """
        Fetch one object.

        Raises:
            ResourceNotFoundError: If the object does not exist
            StoreError: For any other API failure
        """
        codec = self.codecs.for_model(model)
        try:
            body = await self.custom_api.get_namespaced_custom_object(
                group=codec.group,
                version=codec.version,
                namespace=key.namespace,
                plural=codec.plural,
                name=key.name,
            )
        except ApiException as e:
            if e.status == 404:
                raise ResourceNotFoundError(codec.kind, str(key)) from e
            logger.error("store_get_failed", kind=codec.kind, key=str(key), status=e.status, error=e.reason)
            raise StoreError(f"Failed to get {codec.kind} {key}: {e.reason}", status=e.status) from e

        return self._decode(codec, body)

    async def create(self, obj: T) -> T:
        """Create an object and return it as stored (with uid/resourceVersion)."""
        codec = self.codecs.for_object(obj)
        try:
            body = await self.custom_api.create_namespaced_custom_object(
                group=codec.group,
                version=codec.version,
                namespace=obj.metadata.namespace,
                plural=codec.plural,
                body=codec.encode(obj),
            )
        except ApiException as e:
            logger.error("store_create_failed", kind=codec.kind, key=str(obj.key), status=e.status, error=e.reason)
            raise StoreError(f"Failed to create {codec.kind} {obj.key}: {e.reason}", status=e.status) from e

        logger.info("store_object_created", kind=codec.kind, key=str(obj.key))
        return self._decode(codec, body)

    async def update(self, obj: T) -> T:
        """
        Replace an object.

        The object's resourceVersion is sent along, so a concurrent writer
        makes this fail with a 409 conflict instead of being overwritten.
        """
        codec = self.codecs.for_object(obj)
        try:
            body = await self.custom_api.replace_namespaced_custom_object(
                group=codec.group,
                version=codec.version,
                namespace=obj.metadata.namespace,
                plural=codec.plural,
                name=obj.metadata.name,
                body=codec.encode(obj),
            )
        except ApiException as e:
            logger.error("store_update_failed", kind=codec.kind, key=str(obj.key), status=e.status, error=e.reason)
            raise StoreError(f"Failed to update {codec.kind} {obj.key}: {e.reason}", status=e.status) from e

        logger.info("store_object_updated", kind=codec.kind, key=str(obj.key))
        return self._decode(codec, body)

    # Watch

    async def watch(self, model: Type[T]) -> AsyncIterator[Tuple[str, T]]:
        """
        Stream ``(event_type, object)`` pairs for a kind, forever.

        Starts with an ADDED event for every existing object, then follows the
        watch from the list's resourceVersion. An expired resourceVersion
        (410 Gone) triggers a fresh list. Other API errors are raised as
        StoreError for the caller to back off and retry. Objects that fail
        validation are logged and skipped.
        """
        codec = self.codecs.for_model(model)
        resource_version: Optional[str] = None

        while True:
            if resource_version is None:
                listing = await self._list(codec)
                resource_version = listing.get("metadata", {}).get("resourceVersion")
                for body in listing.get("items", []):
                    body.setdefault("apiVersion", codec.api_version)
                    body.setdefault("kind", codec.kind)
                    obj = self._decode_watched(codec, body)
                    if obj is not None:
                        yield "ADDED", obj

            list_func, args = self._list_call(codec)
            try:
                async with watch.Watch().stream(
                    list_func,
                    *args,
                    resource_version=resource_version,
                    timeout_seconds=WATCH_TIMEOUT_SECONDS,
                ) as stream:
                    async for event in stream:
                        event_type = event["type"]
                        body = event["object"]
                        if event_type == "ERROR":
                            raise ApiException(status=body.get("code"), reason=body.get("message"))
                        resource_version = body.get("metadata", {}).get("resourceVersion", resource_version)
                        if event_type == "BOOKMARK":
                            continue

                        obj = self._decode_watched(codec, body)
                        if obj is None:
                            continue
                        if event_type == "DELETED":
                            self._forget(obj)
                        yield event_type, obj
            except ApiException as e:
                if e.status == 410:
                    logger.info("watch_resource_version_expired", kind=codec.kind)
                    resource_version = None
                    continue
                raise StoreError(f"Watch on {codec.kind} failed: {e.reason}", status=e.status) from e

    @retry_on_k8s_error(max_retries=5, initial_delay=1.0, max_delay=30.0)
    async def _list(self, codec: ResourceCodec) -> dict:
        list_func, args = self._list_call(codec)
        return await list_func(*args)

    def _list_call(self, codec: ResourceCodec):
        if self.namespace:
            return self.custom_api.list_namespaced_custom_object, (
                codec.group, codec.version, self.namespace, codec.plural,
            )
        return self.custom_api.list_cluster_custom_object, (codec.group, codec.version, codec.plural)

    # Owner index

    def owner_of(self, key: ObjectKey) -> Optional[ObjectKey]:
        """Owner of a DatabaseEndpoint, if the store has seen it."""
        return self._owners.get(key)

    def dependents_of(self, owner: ObjectKey) -> Set[ObjectKey]:
        """DatabaseEndpoints known to belong to a VirtualDatabase."""
        return set(self._dependents.get(owner, ()))

    def _decode(self, codec: ResourceCodec, body: dict):
        obj = codec.decode(body)
        if isinstance(obj, DatabaseEndpoint):
            self._index(obj)
        return obj

    def _decode_watched(self, codec: ResourceCodec, body: dict):
        """Decode a listed or streamed object; malformed objects are logged and skipped."""
        try:
            return self._decode(codec, body)
        except ValidationError as e:
            metadata = body.get("metadata") or {}
            logger.warning(
                "watch_object_decode_failed",
                kind=codec.kind,
                namespace=metadata.get("namespace"),
                name=metadata.get("name"),
                error=str(e),
            )
            return None

    def _index(self, endpoint: DatabaseEndpoint) -> None:
        owner = endpoint.owner_key
        previous = self._owners.get(endpoint.key)
        if previous is not None and previous != owner:
            self._dependents[previous].discard(endpoint.key)
        if owner is None:
            self._owners.pop(endpoint.key, None)
            return
        self._owners[endpoint.key] = owner
        self._dependents[owner].add(endpoint.key)

    def _forget(self, obj: Resource) -> None:
        owner = self._owners.pop(obj.key, None)
        if owner is not None:
            self._dependents[owner].discard(obj.key)
            if not self._dependents[owner]:
                del self._dependents[owner]
