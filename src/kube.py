"""
Kubernetes Store - StoreClient backed by the Kubernetes RBAC API.

Maps each managed kind onto the matching RbacAuthorizationV1Api calls and
translates API status codes into store errors. Optimistic concurrency is
provided by the API server: a replace carrying a stale resourceVersion is
rejected with 409.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from kubernetes_asyncio import client, config
from kubernetes_asyncio.client import ApiException

from objects.model import (
    CLUSTER_ROLE,
    CLUSTER_ROLE_BINDING,
    ROLE,
    ROLE_BINDING,
    Identity,
    ManagedObject,
)
from store import AlreadyExistsError, ConflictError, NotFoundError, StoreClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KindMethods:
    """RbacAuthorizationV1Api method suffix and scope for a kind."""

    suffix: str
    namespaced: bool


KIND_METHODS: Dict[str, KindMethods] = {
    ROLE_BINDING: KindMethods("namespaced_role_binding", True),
    ROLE: KindMethods("namespaced_role", True),
    CLUSTER_ROLE_BINDING: KindMethods("cluster_role_binding", False),
    CLUSTER_ROLE: KindMethods("cluster_role", False),
}


async def load_api_client(
    in_cluster: bool = False, kubeconfig: Optional[str] = None
) -> client.ApiClient:
    """
    Load cluster credentials and return a new ApiClient.

    Args:
        in_cluster: Use the pod's service account instead of a kubeconfig.
        kubeconfig: Path to a kubeconfig file; defaults to the standard lookup.
    """
    if in_cluster:
        config.load_incluster_config()
    else:
        await config.load_kube_config(config_file=kubeconfig)
    return client.ApiClient()


class KubernetesStore(StoreClient):
    """Store that reads and writes RBAC objects through the Kubernetes API."""

    def __init__(self, api_client: client.ApiClient):
        self.api_client = api_client
        self.rbac = client.RbacAuthorizationV1Api(api_client)

    async def close(self) -> None:
        await self.api_client.close()

    def _methods(self, kind: str) -> KindMethods:
        try:
            return KIND_METHODS[kind]
        except KeyError:
            raise ValueError(f"Kind '{kind}' is not supported by the Kubernetes store")

    def _to_object(self, kind: str, response: Any) -> ManagedObject:
        manifest = self.api_client.sanitize_for_serialization(response)
        manifest.setdefault("kind", kind)
        return ManagedObject.from_manifest(manifest)

    async def get(self, kind: str, identity: Identity) -> ManagedObject:
        methods = self._methods(kind)
        read = getattr(self.rbac, f"read_{methods.suffix}")
        try:
            if methods.namespaced:
                response = await read(identity.name, identity.namespace)
            else:
                response = await read(identity.name)
        except ApiException as e:
            if e.status == 404:
                raise NotFoundError(kind, identity) from e
            raise
        return self._to_object(kind, response)

    async def create(self, obj: ManagedObject) -> ManagedObject:
        methods = self._methods(obj.kind)
        create = getattr(self.rbac, f"create_{methods.suffix}")
        body = obj.to_manifest()
        body["metadata"].pop("resourceVersion", None)
        try:
            if methods.namespaced:
                response = await create(obj.namespace, body)
            else:
                response = await create(body)
        except ApiException as e:
            if e.status == 409:
                raise AlreadyExistsError(obj.kind, obj.identity) from e
            raise
        return self._to_object(obj.kind, response)

    async def update(self, obj: ManagedObject) -> ManagedObject:
        methods = self._methods(obj.kind)
        replace = getattr(self.rbac, f"replace_{methods.suffix}")
        body = obj.to_manifest()
        try:
            if methods.namespaced:
                response = await replace(obj.name, obj.namespace, body)
            else:
                response = await replace(obj.name, body)
        except ApiException as e:
            if e.status == 404:
                raise NotFoundError(obj.kind, obj.identity) from e
            if e.status == 409:
                raise ConflictError(obj.kind, obj.identity) from e
            raise
        return self._to_object(obj.kind, response)

    async def list(
        self,
        kind: str,
        namespace: Optional[str] = None,
        labels: Optional[Mapping[str, str]] = None,
    ) -> List[ManagedObject]:
        methods = self._methods(kind)
        kwargs = {}
        if labels:
            kwargs["label_selector"] = ",".join(f"{k}={v}" for k, v in labels.items())

        if methods.namespaced and namespace is not None:
            list_fn = getattr(self.rbac, f"list_{methods.suffix}")
            response = await list_fn(namespace, **kwargs)
        elif methods.namespaced:
            # list_role_binding_for_all_namespaces / list_role_for_all_namespaces
            plural = methods.suffix[len("namespaced_"):]
            list_fn = getattr(self.rbac, f"list_{plural}_for_all_namespaces")
            response = await list_fn(**kwargs)
        else:
            list_fn = getattr(self.rbac, f"list_{methods.suffix}")
            response = await list_fn(**kwargs)

        items = self.api_client.sanitize_for_serialization(response).get("items") or []
        objects = []
        for item in items:
            # List responses omit kind/apiVersion on items
            item.setdefault("kind", kind)
            objects.append(ManagedObject.from_manifest(item))
        return objects
