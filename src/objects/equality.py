"""
Field Equality - Declarative comparison of current vs. desired objects.

Each managed kind declares the fixed set of fields reconciliation converges.
Metadata (labels, resource version) is never compared here; ownership is
checked separately before comparison.
"""

import copy
from typing import Dict, Optional, Sequence, Tuple

from objects.model import (
    CLUSTER_ROLE,
    CLUSTER_ROLE_BINDING,
    ROLE,
    ROLE_BINDING,
    ManagedObject,
)

BINDING_FIELDS: Tuple[str, ...] = ("subjects", "role_ref")
ROLE_FIELDS: Tuple[str, ...] = ("rules",)

COMPARE_FIELDS: Dict[str, Tuple[str, ...]] = {
    ROLE_BINDING: BINDING_FIELDS,
    CLUSTER_ROLE_BINDING: BINDING_FIELDS,
    ROLE: ROLE_FIELDS,
    CLUSTER_ROLE: ROLE_FIELDS,
}


def compare_fields_for(kind: str) -> Tuple[str, ...]:
    """
    Look up the comparison field set for a kind.

    Raises:
        ValueError: If the kind is not managed.
    """
    try:
        return COMPARE_FIELDS[kind]
    except KeyError:
        raise ValueError(f"No comparison fields registered for kind '{kind}'")


def config_changed(
    current: ManagedObject,
    desired: ManagedObject,
    fields: Optional[Sequence[str]] = None,
) -> Tuple[Optional[ManagedObject], bool]:
    """
    Compare current against desired over a fixed field set.

    Neither input is mutated.

    Args:
        current: Object as read from the store.
        desired: Object as built for this reconciliation.
        fields: Attribute names to compare; defaults to the kind's set.

    Returns:
        Tuple of (merged, changed). When changed, merged is a copy of current
        with the compared fields taken from desired; otherwise (None, False).
    """
    if fields is None:
        fields = compare_fields_for(desired.kind)

    differing = [f for f in fields if getattr(current, f) != getattr(desired, f)]
    if not differing:
        return None, False

    merged = current.deep_copy()
    for name in differing:
        setattr(merged, name, copy.deepcopy(getattr(desired, name)))
    return merged, True
