"""
Reconciliation errors.

Every failure is wrapped with the object kind, identity and the operation
attempted, and chained to the underlying cause.
"""

from typing import Optional

from objects.model import Identity


class ReconcileError(Exception):
    """Base class for failures raised by the convergence engine."""

    operation = "reconcile"

    def __init__(
        self,
        kind: str,
        identity: Identity,
        cause: Optional[BaseException] = None,
    ):
        self.kind = kind
        self.identity = identity
        self.cause = cause
        message = f"failed to {self.operation} {kind} {identity}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class ReadError(ReconcileError):
    """Fetching the current object failed for a reason other than absence."""

    operation = "get"


class CreateError(ReconcileError):
    """Creating the desired object failed, including lost creation races."""

    operation = "create"


class UpdateError(ReconcileError):
    """Updating the object failed, including optimistic-concurrency conflicts."""

    operation = "update"
