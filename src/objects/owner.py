"""
Owner Descriptor - The workload instance that owns RBAC objects.
"""

from dataclasses import dataclass
from typing import Dict

OWNING_INSTANCE_NAME_LABEL = "rolekeeper.io/owning-instance-name"
OWNING_INSTANCE_NS_LABEL = "rolekeeper.io/owning-instance-namespace"


@dataclass(frozen=True)
class Instance:
    """
    A managed workload instance.

    ``namespace`` is where the instance itself lives; ``target_namespace`` is
    where the objects it owns are placed.
    """

    name: str
    namespace: str
    target_namespace: str


def owner_labels(instance: Instance) -> Dict[str, str]:
    """Return the labels every object owned by instance must carry."""
    return {
        OWNING_INSTANCE_NAME_LABEL: instance.name,
        OWNING_INSTANCE_NS_LABEL: instance.namespace,
    }
