"""
Instance Controller - Reconcile every RBAC object owned by one instance.

Objects with distinct identities are ensured concurrently, bounded by a
semaphore. Each object gets exactly one ensure call per pass; a failure of
one object does not prevent the others from converging.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from config import ControllerConfig
from objects.equality import compare_fields_for
from objects.errors import ReconcileError
from objects.model import Identity, ManagedObject
from objects.owner import Instance, owner_labels
from objects.reconcile import ReconcileOutcome, Reconciler

logger = logging.getLogger(__name__)


@dataclass
class ObjectResult:
    """Result of ensuring a single object."""

    kind: str
    identity: Identity
    outcome: Optional[ReconcileOutcome] = None
    error: Optional[ReconcileError] = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class InstanceResult:
    """Aggregate result of one reconciliation pass over an instance."""

    instance: Instance
    results: List[ObjectResult] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def failures(self) -> List[ObjectResult]:
        return [r for r in self.results if not r.success]

    @property
    def success(self) -> bool:
        return not self.failures


class InstanceReconcileError(Exception):
    """One or more objects of an instance failed to reconcile."""

    def __init__(self, result: InstanceResult):
        self.result = result
        failures = result.failures
        details = "; ".join(str(f.error) for f in failures)
        super().__init__(
            f"{len(failures)} of {len(result.results)} object(s) failed for "
            f"instance {result.instance.namespace}/{result.instance.name}: {details}"
        )


class InstanceReconciler:
    """
    Ensures the desired RBAC objects of an instance.

    Desired objects are expected to carry distinct (kind, identity) keys;
    duplicates are rejected so two workers never race on the same object
    within one pass.
    """

    def __init__(
        self,
        reconciler: Reconciler,
        config: Optional[ControllerConfig] = None,
    ):
        self.reconciler = reconciler
        self.config = config or ControllerConfig()
        self.semaphore = asyncio.Semaphore(self.config.max_concurrent_reconciles)

    async def _ensure_one(
        self, desired: ManagedObject, instance: Instance
    ) -> ObjectResult:
        result = ObjectResult(kind=desired.kind, identity=desired.identity)
        async with self.semaphore:
            try:
                result.outcome = await self.reconciler.ensure(
                    desired, owner_labels(instance)
                )
            except ReconcileError as e:
                logger.error(f"Reconciliation failed: {e}")
                result.error = e
        return result

    async def reconcile(
        self, instance: Instance, desired: Sequence[ManagedObject]
    ) -> InstanceResult:
        """
        Run one reconciliation pass over desired.

        Args:
            instance: Owner of every object in desired.
            desired: Desired objects, one per (kind, identity).

        Returns:
            InstanceResult with one ObjectResult per desired object, in order.

        Raises:
            ValueError: If desired contains duplicate (kind, identity) keys or
                a kind without comparison fields.
            InstanceReconcileError: If any object failed; carries the result.
        """
        seen = set()
        for obj in desired:
            key = (obj.kind, obj.identity)
            if key in seen:
                raise ValueError(f"Duplicate desired object {obj.kind} {obj.identity}")
            seen.add(key)
            compare_fields_for(obj.kind)

        start_time = time.monotonic()
        # Siblings always run to completion before an unexpected error surfaces
        outcomes = await asyncio.gather(
            *(self._ensure_one(obj, instance) for obj in desired),
            return_exceptions=True,
        )
        for item in outcomes:
            if isinstance(item, BaseException):
                raise item
        results: List[ObjectResult] = list(outcomes)
        instance_result = InstanceResult(
            instance=instance,
            results=results,
            duration_seconds=time.monotonic() - start_time,
        )

        mutated = sum(1 for r in results if r.outcome is not None and r.outcome.mutated)
        logger.info(
            f"Reconciled instance {instance.namespace}/{instance.name}: "
            f"{len(results)} object(s), {mutated} changed, "
            f"{len(instance_result.failures)} failed "
            f"in {instance_result.duration_seconds:.2f}s"
        )

        if not instance_result.success:
            raise InstanceReconcileError(instance_result)
        return instance_result
