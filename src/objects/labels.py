"""Label helpers used by the ownership check and store listings."""

from typing import Mapping

from objects.model import ManagedObject


def selector_matches(labels: Mapping[str, str], selector: Mapping[str, str]) -> bool:
    """Equality-based label selector match. An empty selector matches anything."""
    return all(labels.get(key) == value for key, value in selector.items())


def labels_exist(obj: ManagedObject, required: Mapping[str, str]) -> bool:
    """Check that obj carries every required label with a matching value."""
    return selector_matches(obj.labels, required)
