"""
Object Store - Client abstraction over the backing object store.

Defines the get/create/update contract consumed by the convergence engine,
the tagged fetch result, and the in-memory and PostgreSQL backends. The
Kubernetes API backend lives in ``kube``.
"""

import itertools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple, Union

import asyncpg

from db import DatabaseManager
from objects.labels import selector_matches
from objects.model import Identity, ManagedObject

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base class for store failures."""

    def __init__(self, kind: str, identity: Identity, message: str):
        self.kind = kind
        self.identity = identity
        super().__init__(f"{kind} {identity}: {message}")


class NotFoundError(StoreError):
    """No object exists at the requested identity."""

    def __init__(self, kind: str, identity: Identity):
        super().__init__(kind, identity, "not found")


class AlreadyExistsError(StoreError):
    """Create targeted an identity that is already taken."""

    def __init__(self, kind: str, identity: Identity):
        super().__init__(kind, identity, "already exists")


class ConflictError(StoreError):
    """Update targeted a stale resource version."""

    def __init__(self, kind: str, identity: Identity, message: str = ""):
        super().__init__(
            kind,
            identity,
            message or "the object has been modified; please apply your changes "
            "to the latest version and try again",
        )


# ==================== Fetch Result ====================


@dataclass
class Found:
    """The object exists and was read successfully."""

    obj: ManagedObject


@dataclass
class NotFound:
    """No object exists at the identity; reconciliation should create it."""


@dataclass
class ReadFailed:
    """Reading failed for any reason other than absence."""

    cause: Exception


FetchResult = Union[Found, NotFound, ReadFailed]


class StoreClient(ABC):
    """
    Abstract client for a backing object store.

    ``update`` must fail with ConflictError when the object's
    resource_version no longer matches the stored one, and ``create`` must
    fail with AlreadyExistsError when the identity is taken. The engine's
    concurrency safety relies entirely on these two guarantees.
    """

    @abstractmethod
    async def get(self, kind: str, identity: Identity) -> ManagedObject:
        """
        Read an object.

        Raises:
            NotFoundError: If nothing is stored at identity.
        """
        pass

    @abstractmethod
    async def create(self, obj: ManagedObject) -> ManagedObject:
        """Persist a new object and return it with its assigned resource version."""
        pass

    @abstractmethod
    async def update(self, obj: ManagedObject) -> ManagedObject:
        """Replace an existing object, checking obj.resource_version."""
        pass

    @abstractmethod
    async def list(
        self,
        kind: str,
        namespace: Optional[str] = None,
        labels: Optional[Mapping[str, str]] = None,
    ) -> List[ManagedObject]:
        """List objects of a kind, optionally filtered by namespace and labels."""
        pass

    async def fetch(self, kind: str, identity: Identity) -> FetchResult:
        """
        Read an object and classify the outcome.

        Absence is reported as NotFound rather than raised; every other
        failure is captured as ReadFailed. Cancellation is not captured.
        """
        try:
            obj = await self.get(kind, identity)
        except NotFoundError:
            return NotFound()
        except Exception as e:
            return ReadFailed(e)
        return Found(obj)


# ==================== In-memory backend ====================


class MemoryStore(StoreClient):
    """
    In-process store with optimistic concurrency.

    Resource versions come from a single monotonically increasing counter,
    mirroring how an API server assigns them. Returned objects are copies;
    callers can never mutate stored state in place.
    """

    def __init__(self):
        self._objects: Dict[Tuple[str, Identity], ManagedObject] = {}
        self._versions = itertools.count(1)

    def _next_version(self) -> str:
        return str(next(self._versions))

    async def get(self, kind: str, identity: Identity) -> ManagedObject:
        stored = self._objects.get((kind, identity))
        if stored is None:
            raise NotFoundError(kind, identity)
        return stored.deep_copy()

    async def create(self, obj: ManagedObject) -> ManagedObject:
        key = (obj.kind, obj.identity)
        if key in self._objects:
            raise AlreadyExistsError(obj.kind, obj.identity)

        stored = obj.deep_copy()
        stored.resource_version = self._next_version()
        self._objects[key] = stored
        logger.debug(
            f"Stored {obj.kind} {obj.identity} at version {stored.resource_version}"
        )
        return stored.deep_copy()

    async def update(self, obj: ManagedObject) -> ManagedObject:
        key = (obj.kind, obj.identity)
        existing = self._objects.get(key)
        if existing is None:
            raise NotFoundError(obj.kind, obj.identity)
        if obj.resource_version != existing.resource_version:
            raise ConflictError(obj.kind, obj.identity)

        stored = obj.deep_copy()
        stored.resource_version = self._next_version()
        self._objects[key] = stored
        logger.debug(
            f"Stored {obj.kind} {obj.identity} at version {stored.resource_version}"
        )
        return stored.deep_copy()

    async def list(
        self,
        kind: str,
        namespace: Optional[str] = None,
        labels: Optional[Mapping[str, str]] = None,
    ) -> List[ManagedObject]:
        results = []
        for (stored_kind, identity), obj in sorted(
            self._objects.items(), key=lambda item: str(item[0][1])
        ):
            if stored_kind != kind:
                continue
            if namespace is not None and identity.namespace != namespace:
                continue
            if labels and not selector_matches(obj.labels, labels):
                continue
            results.append(obj.deep_copy())
        return results


# ==================== PostgreSQL backend ====================


class PostgresStore(StoreClient):
    """
    Store backed by the ``managed_objects`` table.

    Conflicts are detected with a compare-and-swap on the resource_version
    column; creation races surface as unique violations.
    """

    def __init__(self, db: DatabaseManager):
        self.db = db

    def _object_from_row(self, row: Dict) -> ManagedObject:
        obj = ManagedObject.from_manifest(row["body"])
        obj.labels = dict(row["labels"])
        obj.resource_version = str(row["resource_version"])
        return obj

    def _body(self, obj: ManagedObject) -> Dict:
        body = obj.to_manifest()
        body["metadata"].pop("resourceVersion", None)
        return body

    async def get(self, kind: str, identity: Identity) -> ManagedObject:
        row = await self.db.get_object(kind, identity.namespace, identity.name)
        if row is None:
            raise NotFoundError(kind, identity)
        return self._object_from_row(row)

    async def create(self, obj: ManagedObject) -> ManagedObject:
        try:
            version = await self.db.insert_object(
                kind=obj.kind,
                namespace=obj.namespace,
                name=obj.name,
                labels=obj.labels,
                body=self._body(obj),
            )
        except asyncpg.UniqueViolationError as e:
            raise AlreadyExistsError(obj.kind, obj.identity) from e

        created = obj.deep_copy()
        created.resource_version = str(version)
        return created

    async def update(self, obj: ManagedObject) -> ManagedObject:
        if obj.resource_version is None:
            raise ConflictError(
                obj.kind, obj.identity, "update requires a resource version"
            )

        version = await self.db.update_object(
            kind=obj.kind,
            namespace=obj.namespace,
            name=obj.name,
            labels=obj.labels,
            body=self._body(obj),
            expected_version=int(obj.resource_version),
        )
        if version is None:
            raise ConflictError(obj.kind, obj.identity)

        updated = obj.deep_copy()
        updated.resource_version = str(version)
        return updated

    async def list(
        self,
        kind: str,
        namespace: Optional[str] = None,
        labels: Optional[Mapping[str, str]] = None,
    ) -> List[ManagedObject]:
        rows = await self.db.list_objects(
            kind=kind,
            namespace=namespace,
            labels=dict(labels) if labels else None,
        )
        return [self._object_from_row(row) for row in rows]
