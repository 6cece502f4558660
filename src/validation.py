"""
Manifest Validation - Parse instance manifests into desired objects.

A manifest names an owning instance and the RBAC objects it should own.
It is validated against a JSON Schema before any object is built.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from jsonschema import Draft7Validator

from objects.clusterrolebinding import desired_cluster_role_binding
from objects.model import ManagedObject, PolicyRule
from objects.owner import Instance
from objects.role import desired_role
from objects.rolebinding import desired_role_binding

logger = logging.getLogger(__name__)

_NAME = {"type": "string", "minLength": 1, "maxLength": 253}
_STRING_LIST = {"type": "array", "items": {"type": "string"}}

MANIFEST_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["instance"],
    "additionalProperties": False,
    "properties": {
        "instance": {
            "type": "object",
            "required": ["name", "namespace"],
            "additionalProperties": False,
            "properties": {
                "name": _NAME,
                "namespace": _NAME,
                "targetNamespace": _NAME,
            },
        },
        "roles": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name", "rules"],
                "additionalProperties": False,
                "properties": {
                    "name": _NAME,
                    "rules": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "required": ["verbs"],
                            "additionalProperties": False,
                            "properties": {
                                "apiGroups": _STRING_LIST,
                                "resources": _STRING_LIST,
                                "resourceNames": _STRING_LIST,
                                "verbs": {**_STRING_LIST, "minItems": 1},
                            },
                        },
                    },
                },
            },
        },
        "roleBindings": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name", "serviceAccount", "role"],
                "additionalProperties": False,
                "properties": {
                    "name": _NAME,
                    "serviceAccount": _NAME,
                    "role": _NAME,
                },
            },
        },
        "clusterRoleBindings": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name", "serviceAccount", "clusterRole"],
                "additionalProperties": False,
                "properties": {
                    "name": _NAME,
                    "serviceAccount": _NAME,
                    "clusterRole": _NAME,
                },
            },
        },
    },
}


class ManifestError(ValueError):
    """The manifest is malformed or inconsistent."""


@dataclass
class InstanceManifest:
    """An owning instance together with the objects it should own."""

    instance: Instance
    objects: List[ManagedObject] = field(default_factory=list)


def validate_manifest(data: Any) -> None:
    """
    Validate raw manifest data against MANIFEST_SCHEMA.

    Raises:
        ManifestError: Listing every schema violation found.
    """
    validator = Draft7Validator(MANIFEST_SCHEMA)
    errors = sorted(
        validator.iter_errors(data), key=lambda e: [str(p) for p in e.absolute_path]
    )
    if not errors:
        return

    messages = []
    for error in errors:
        path = ".".join(str(p) for p in error.absolute_path) or "(root)"
        messages.append(f"{path}: {error.message}")
    raise ManifestError("; ".join(messages))


def parse_manifest(data: Any) -> InstanceManifest:
    """
    Validate data and build the desired objects it describes.

    The instance's targetNamespace defaults to its own namespace.

    Raises:
        ManifestError: If validation fails or two objects of a kind share a name.
    """
    validate_manifest(data)

    instance_data = data["instance"]
    instance = Instance(
        name=instance_data["name"],
        namespace=instance_data["namespace"],
        target_namespace=instance_data.get("targetNamespace")
        or instance_data["namespace"],
    )

    objects: List[ManagedObject] = []
    for role in data.get("roles") or []:
        rules = [PolicyRule.from_dict(rule) for rule in role["rules"]]
        objects.append(desired_role(role["name"], rules, instance))
    for rb in data.get("roleBindings") or []:
        objects.append(
            desired_role_binding(rb["name"], rb["serviceAccount"], rb["role"], instance)
        )
    for crb in data.get("clusterRoleBindings") or []:
        objects.append(
            desired_cluster_role_binding(
                crb["name"], crb["serviceAccount"], crb["clusterRole"], instance
            )
        )

    seen = set()
    for obj in objects:
        key = (obj.kind, obj.identity)
        if key in seen:
            raise ManifestError(f"Duplicate {obj.kind} '{obj.name}' in manifest")
        seen.add(key)

    logger.debug(
        f"Parsed manifest for instance {instance.namespace}/{instance.name}: "
        f"{len(objects)} object(s)"
    )
    return InstanceManifest(instance=instance, objects=objects)
