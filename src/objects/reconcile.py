"""
Convergence Engine - Drive one managed object toward its desired state.

A single ``ensure`` call reads the current object and issues at most one
mutating call: create when absent, update when owned and divergent, and
nothing otherwise. Retries are left to the caller; re-invoking ``ensure``
re-reads fresh state, so lost creation races and version conflicts resolve
on the next pass.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Mapping, Optional, Sequence, TypeVar

from events import EventBus, EventType, ObjectEvent
from objects.equality import compare_fields_for, config_changed
from objects.errors import CreateError, ReadError, UpdateError
from objects.labels import labels_exist
from objects.model import ManagedObject
from store import NotFound, ReadFailed, StoreClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ReconcileOutcome(Enum):
    """What a single ensure call did."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED_FOREIGN = "skipped_foreign"

    @property
    def mutated(self) -> bool:
        return self in (ReconcileOutcome.CREATED, ReconcileOutcome.UPDATED)


_EVENT_TYPES = {
    ReconcileOutcome.CREATED: EventType.CREATED,
    ReconcileOutcome.UPDATED: EventType.UPDATED,
    ReconcileOutcome.UNCHANGED: EventType.UNCHANGED,
    ReconcileOutcome.SKIPPED_FOREIGN: EventType.SKIPPED_FOREIGN,
}


class Reconciler:
    """
    Converges managed objects in a single store.

    The store client is injected; there is no process-wide client. An
    optional timeout bounds each of the two I/O boundaries separately.
    """

    def __init__(
        self,
        store: StoreClient,
        event_bus: Optional[EventBus] = None,
        timeout: Optional[float] = None,
    ):
        self.store = store
        self.event_bus = event_bus
        self.timeout = timeout

    async def _call(self, aw: Awaitable[T]) -> T:
        if self.timeout is None:
            return await aw
        return await asyncio.wait_for(aw, self.timeout)

    async def ensure(
        self,
        desired: ManagedObject,
        owner_labels: Mapping[str, str],
        compare_fields: Optional[Sequence[str]] = None,
    ) -> ReconcileOutcome:
        """
        Ensure the store holds desired, without touching foreign objects.

        Args:
            desired: Fully built desired object.
            owner_labels: Labels the current object must carry to be updated.
            compare_fields: Fields to converge; defaults to the kind's set.

        Returns:
            The ReconcileOutcome of this call.

        Raises:
            ReadError: If the current object could not be read.
            CreateError: If creating the absent object failed.
            UpdateError: If updating the divergent object failed.
        """
        if compare_fields is None:
            compare_fields = compare_fields_for(desired.kind)

        try:
            result = await self._call(self.store.fetch(desired.kind, desired.identity))
        except asyncio.TimeoutError as e:
            result = ReadFailed(e)

        if isinstance(result, ReadFailed):
            cause = result.cause
            raise ReadError(desired.kind, desired.identity, cause) from cause

        if isinstance(result, NotFound):
            created = await self._create(desired)
            return self._finish(ReconcileOutcome.CREATED, created)

        current = result.obj

        if not labels_exist(current, owner_labels):
            logger.info(
                f"Skipping {desired.kind} {desired.identity}: "
                f"not owned by {dict(owner_labels)}"
            )
            return self._finish(ReconcileOutcome.SKIPPED_FOREIGN, current)

        merged, changed = config_changed(current, desired, compare_fields)
        if not changed:
            logger.debug(f"{desired.kind} {desired.identity} is up to date")
            return self._finish(ReconcileOutcome.UNCHANGED, current)

        updated = await self._update(merged)
        return self._finish(ReconcileOutcome.UPDATED, updated)

    async def _create(self, desired: ManagedObject) -> ManagedObject:
        try:
            created = await self._call(self.store.create(desired))
        except Exception as e:
            raise CreateError(desired.kind, desired.identity, e) from e
        logger.info(f"Created {desired.kind} {desired.identity}")
        return created

    async def _update(self, merged: ManagedObject) -> ManagedObject:
        try:
            updated = await self._call(self.store.update(merged))
        except Exception as e:
            raise UpdateError(merged.kind, merged.identity, e) from e
        logger.info(f"Updated {merged.kind} {merged.identity}")
        return updated

    def _finish(
        self, outcome: ReconcileOutcome, obj: ManagedObject
    ) -> ReconcileOutcome:
        if self.event_bus is not None:
            self.event_bus.publish(
                ObjectEvent(
                    event_type=_EVENT_TYPES[outcome],
                    kind=obj.kind,
                    namespace=obj.namespace,
                    name=obj.name,
                    resource_version=obj.resource_version,
                )
            )
        return outcome
