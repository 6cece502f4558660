"""Role objects owned by an Instance."""

from typing import Sequence

from objects.equality import ROLE_FIELDS
from objects.model import ROLE, Identity, ManagedObject, PolicyRule
from objects.owner import Instance, owner_labels
from objects.reconcile import ReconcileOutcome, Reconciler


def desired_role(
    name: str, rules: Sequence[PolicyRule], instance: Instance
) -> ManagedObject:
    """Build the desired Role in the instance's target namespace."""
    return ManagedObject(
        kind=ROLE,
        identity=Identity(namespace=instance.target_namespace, name=name),
        labels=owner_labels(instance),
        rules=[
            PolicyRule(
                verbs=list(rule.verbs),
                api_groups=list(rule.api_groups),
                resources=list(rule.resources),
                resource_names=list(rule.resource_names),
            )
            for rule in rules
        ],
    )


async def ensure_role(
    reconciler: Reconciler,
    name: str,
    rules: Sequence[PolicyRule],
    instance: Instance,
) -> ReconcileOutcome:
    """Ensure a Role named name with rules exists for instance."""
    desired = desired_role(name, rules, instance)
    return await reconciler.ensure(desired, owner_labels(instance), ROLE_FIELDS)
