"""Pytest configuration and fixtures."""

from typing import List, Optional

import pytest
from unittest.mock import AsyncMock, MagicMock

import config
from objects.model import Identity, ManagedObject
from objects.owner import Instance
from objects.reconcile import Reconciler
from store import MemoryStore


class RecordingStore(MemoryStore):
    """
    MemoryStore that records every call and can be told to fail.

    Failures are injected per operation by setting ``get_error``,
    ``create_error`` or ``update_error`` to an exception instance.
    """

    def __init__(self):
        super().__init__()
        self.calls: List[str] = []
        self.get_error: Optional[Exception] = None
        self.create_error: Optional[Exception] = None
        self.update_error: Optional[Exception] = None

    async def get(self, kind: str, identity: Identity) -> ManagedObject:
        self.calls.append("get")
        if self.get_error is not None:
            raise self.get_error
        return await super().get(kind, identity)

    async def create(self, obj: ManagedObject) -> ManagedObject:
        self.calls.append("create")
        if self.create_error is not None:
            raise self.create_error
        return await super().create(obj)

    async def update(self, obj: ManagedObject) -> ManagedObject:
        self.calls.append("update")
        if self.update_error is not None:
            raise self.update_error
        return await super().update(obj)

    @property
    def mutations(self) -> List[str]:
        return [c for c in self.calls if c in ("create", "update")]

    def seed(self, obj: ManagedObject) -> ManagedObject:
        """Place obj in the store directly, bypassing call recording."""
        stored = obj.deep_copy()
        stored.resource_version = self._next_version()
        self._objects[(obj.kind, obj.identity)] = stored
        return stored.deep_copy()


@pytest.fixture(autouse=True)
def clean_config():
    """Reset the configuration singleton around every test."""
    config.reset_config()
    yield
    config.reset_config()


@pytest.fixture
def instance():
    """Owning instance used across tests."""
    return Instance(name="instA", namespace="ns1", target_namespace="ns1")


@pytest.fixture
def other_instance():
    """A second instance whose objects must never be touched by instA."""
    return Instance(name="instB", namespace="ns2", target_namespace="ns1")


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def reconciler(store):
    return Reconciler(store)


@pytest.fixture
def mock_pool():
    """Create a mock asyncpg pool."""
    pool = AsyncMock()
    pool.acquire = MagicMock()
    return pool
