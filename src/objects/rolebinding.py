"""
RoleBinding objects owned by an Instance.
"""

from typing import Optional

from objects.equality import BINDING_FIELDS
from objects.model import (
    CORE_API_GROUP,
    RBAC_API_GROUP,
    ROLE,
    ROLE_BINDING,
    SERVICE_ACCOUNT,
    Identity,
    ManagedObject,
    RoleRef,
    Subject,
)
from objects.owner import Instance, owner_labels
from objects.reconcile import ReconcileOutcome, Reconciler
from store import Found, ReadFailed, StoreClient


def desired_role_binding(
    name: str, service_account: str, role: str, instance: Instance
) -> ManagedObject:
    """
    Build the desired RoleBinding.

    The binding is placed in the instance's target namespace, labelled as
    owned by instance, and grants role to service_account in that namespace.
    Inputs are not validated.
    """
    return ManagedObject(
        kind=ROLE_BINDING,
        identity=Identity(namespace=instance.target_namespace, name=name),
        labels=owner_labels(instance),
        subjects=[
            Subject(
                kind=SERVICE_ACCOUNT,
                api_group=CORE_API_GROUP,
                name=service_account,
                namespace=instance.target_namespace,
            )
        ],
        role_ref=RoleRef(api_group=RBAC_API_GROUP, kind=ROLE, name=role),
    )


async def current_role_binding(
    store: StoreClient, namespace: str, name: str
) -> Optional[ManagedObject]:
    """
    Return the stored RoleBinding at namespace/name, or None if absent.

    Raises:
        Exception: Whatever the store raised for failures other than absence.
    """
    result = await store.fetch(ROLE_BINDING, Identity(namespace=namespace, name=name))
    if isinstance(result, ReadFailed):
        raise result.cause
    if isinstance(result, Found):
        return result.obj
    return None


async def ensure_role_binding(
    reconciler: Reconciler,
    name: str,
    service_account: str,
    role: str,
    instance: Instance,
) -> ReconcileOutcome:
    """
    Ensure a RoleBinding named name exists for instance, binding
    service_account to role.

    Raises:
        ReconcileError: If reading, creating or updating the binding failed.
    """
    desired = desired_role_binding(name, service_account, role, instance)
    return await reconciler.ensure(desired, owner_labels(instance), BINDING_FIELDS)
