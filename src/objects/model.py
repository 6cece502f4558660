"""
Managed Object Model - In-memory representation of RBAC objects.

Objects are plain dataclasses that serialize to and from Kubernetes-style
manifest dicts, so every store backend shares a single wire format.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

RBAC_API_GROUP = "rbac.authorization.k8s.io"
RBAC_API_VERSION = "rbac.authorization.k8s.io/v1"

# Core API group name is the empty string
CORE_API_GROUP = ""

ROLE_BINDING = "RoleBinding"
CLUSTER_ROLE_BINDING = "ClusterRoleBinding"
ROLE = "Role"
CLUSTER_ROLE = "ClusterRole"
SERVICE_ACCOUNT = "ServiceAccount"

CLUSTER_SCOPED_KINDS = frozenset({CLUSTER_ROLE_BINDING, CLUSTER_ROLE})

_MODELLED_METADATA = frozenset({"name", "namespace", "labels", "resourceVersion"})


@dataclass(frozen=True)
class Identity:
    """Namespace/name key of a stored object. Namespace is '' when cluster scoped."""

    namespace: str
    name: str

    def __str__(self) -> str:
        if not self.namespace:
            return self.name
        return f"{self.namespace}/{self.name}"


@dataclass
class Subject:
    """Who a binding grants access to."""

    kind: str
    name: str
    namespace: str = ""
    api_group: str = CORE_API_GROUP

    def to_dict(self) -> Dict[str, Any]:
        data = {"kind": self.kind, "apiGroup": self.api_group, "name": self.name}
        if self.namespace:
            data["namespace"] = self.namespace
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Subject":
        return cls(
            kind=data["kind"],
            name=data["name"],
            namespace=data.get("namespace") or "",
            api_group=data.get("apiGroup") or CORE_API_GROUP,
        )


@dataclass
class RoleRef:
    """What access a binding grants."""

    kind: str
    name: str
    api_group: str = RBAC_API_GROUP

    def to_dict(self) -> Dict[str, Any]:
        return {"apiGroup": self.api_group, "kind": self.kind, "name": self.name}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RoleRef":
        return cls(
            kind=data["kind"],
            name=data["name"],
            api_group=data.get("apiGroup") or RBAC_API_GROUP,
        )


@dataclass
class PolicyRule:
    """A single permission rule of a Role."""

    verbs: List[str]
    api_groups: List[str] = field(default_factory=list)
    resources: List[str] = field(default_factory=list)
    resource_names: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "apiGroups": list(self.api_groups),
            "resources": list(self.resources),
            "verbs": list(self.verbs),
        }
        if self.resource_names:
            data["resourceNames"] = list(self.resource_names)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PolicyRule":
        return cls(
            verbs=list(data.get("verbs") or []),
            api_groups=list(data.get("apiGroups") or []),
            resources=list(data.get("resources") or []),
            resource_names=list(data.get("resourceNames") or []),
        )


@dataclass
class ManagedObject:
    """
    A resource under reconciliation.

    Carries metadata common to all kinds plus the kind-specific fields
    compared during reconciliation. ``resource_version`` is assigned by the
    store and must be carried forward on update for optimistic concurrency.
    """

    kind: str
    identity: Identity
    labels: Dict[str, str] = field(default_factory=dict)
    resource_version: Optional[str] = None
    api_version: str = RBAC_API_VERSION
    subjects: List[Subject] = field(default_factory=list)
    role_ref: Optional[RoleRef] = None
    rules: List[PolicyRule] = field(default_factory=list)
    # Metadata not modelled above (annotations, ownerReferences, finalizers, ...)
    extra_metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def namespace(self) -> str:
        return self.identity.namespace

    @property
    def name(self) -> str:
        return self.identity.name

    @property
    def cluster_scoped(self) -> bool:
        return self.kind in CLUSTER_SCOPED_KINDS

    def deep_copy(self) -> "ManagedObject":
        return copy.deepcopy(self)

    def to_manifest(self) -> Dict[str, Any]:
        """
        Serialize into a Kubernetes-style manifest dict.

        Returns:
            Dict with apiVersion, kind, metadata and the kind-specific fields.
        """
        metadata: Dict[str, Any] = copy.deepcopy(self.extra_metadata)
        metadata["name"] = self.name
        metadata["labels"] = dict(self.labels)
        if self.namespace:
            metadata["namespace"] = self.namespace
        if self.resource_version is not None:
            metadata["resourceVersion"] = self.resource_version

        manifest: Dict[str, Any] = {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": metadata,
        }
        if self.kind in (ROLE, CLUSTER_ROLE):
            manifest["rules"] = [rule.to_dict() for rule in self.rules]
        else:
            manifest["subjects"] = [subject.to_dict() for subject in self.subjects]
            if self.role_ref is not None:
                manifest["roleRef"] = self.role_ref.to_dict()
        return manifest

    @classmethod
    def from_manifest(cls, manifest: Dict[str, Any]) -> "ManagedObject":
        """
        Parse a Kubernetes-style manifest dict.

        Unknown top-level fields are ignored; metadata beyond name, namespace,
        labels and resourceVersion is kept in extra_metadata. Missing lists are
        treated as empty.

        Args:
            manifest: The manifest, as returned by a store or API server.

        Returns:
            A new ManagedObject.
        """
        metadata = manifest.get("metadata") or {}
        role_ref = manifest.get("roleRef")
        resource_version = metadata.get("resourceVersion")
        return cls(
            kind=manifest["kind"],
            api_version=manifest.get("apiVersion") or RBAC_API_VERSION,
            identity=Identity(
                namespace=metadata.get("namespace") or "",
                name=metadata["name"],
            ),
            labels=dict(metadata.get("labels") or {}),
            resource_version=(
                str(resource_version) if resource_version is not None else None
            ),
            subjects=[Subject.from_dict(s) for s in manifest.get("subjects") or []],
            role_ref=RoleRef.from_dict(role_ref) if role_ref else None,
            rules=[PolicyRule.from_dict(r) for r in manifest.get("rules") or []],
            extra_metadata={
                key: copy.deepcopy(value)
                for key, value in metadata.items()
                if key not in _MODELLED_METADATA
            },
        )
