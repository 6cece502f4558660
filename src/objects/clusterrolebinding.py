"""ClusterRoleBinding objects owned by an Instance."""

from objects.equality import BINDING_FIELDS
from objects.model import (
    CLUSTER_ROLE,
    CLUSTER_ROLE_BINDING,
    CORE_API_GROUP,
    RBAC_API_GROUP,
    SERVICE_ACCOUNT,
    Identity,
    ManagedObject,
    RoleRef,
    Subject,
)
from objects.owner import Instance, owner_labels
from objects.reconcile import ReconcileOutcome, Reconciler


def desired_cluster_role_binding(
    name: str, service_account: str, cluster_role: str, instance: Instance
) -> ManagedObject:
    """Build the desired cluster-scoped binding of service_account to cluster_role."""
    return ManagedObject(
        kind=CLUSTER_ROLE_BINDING,
        identity=Identity(namespace="", name=name),
        labels=owner_labels(instance),
        subjects=[
            Subject(
                kind=SERVICE_ACCOUNT,
                api_group=CORE_API_GROUP,
                name=service_account,
                namespace=instance.target_namespace,
            )
        ],
        role_ref=RoleRef(
            api_group=RBAC_API_GROUP, kind=CLUSTER_ROLE, name=cluster_role
        ),
    )


async def ensure_cluster_role_binding(
    reconciler: Reconciler,
    name: str,
    service_account: str,
    cluster_role: str,
    instance: Instance,
) -> ReconcileOutcome:
    """Ensure a ClusterRoleBinding named name exists for instance."""
    desired = desired_cluster_role_binding(
        name, service_account, cluster_role, instance
    )
    return await reconciler.ensure(desired, owner_labels(instance), BINDING_FIELDS)
