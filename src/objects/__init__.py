"""
Managed RBAC objects.

Builders, comparison field sets and the convergence engine shared by every
managed kind.
"""

from objects.clusterrolebinding import (
    desired_cluster_role_binding,
    ensure_cluster_role_binding,
)
from objects.errors import CreateError, ReadError, ReconcileError, UpdateError
from objects.model import Identity, ManagedObject, PolicyRule, RoleRef, Subject
from objects.owner import Instance, owner_labels
from objects.reconcile import ReconcileOutcome, Reconciler
from objects.role import desired_role, ensure_role
from objects.rolebinding import (
    current_role_binding,
    desired_role_binding,
    ensure_role_binding,
)

__all__ = [
    "CreateError",
    "Identity",
    "Instance",
    "ManagedObject",
    "PolicyRule",
    "ReadError",
    "ReconcileError",
    "ReconcileOutcome",
    "Reconciler",
    "RoleRef",
    "Subject",
    "UpdateError",
    "current_role_binding",
    "desired_cluster_role_binding",
    "desired_role",
    "desired_role_binding",
    "ensure_cluster_role_binding",
    "ensure_role",
    "ensure_role_binding",
    "owner_labels",
]
