"""Unit tests for controller.py - Instance reconciliation."""

import asyncio

import pytest

from config import ControllerConfig
from controller import (
    InstanceReconcileError,
    InstanceReconciler,
    InstanceResult,
    ObjectResult,
)
from objects.clusterrolebinding import desired_cluster_role_binding
from objects.model import Identity, PolicyRule
from objects.reconcile import ReconcileOutcome, Reconciler
from objects.role import desired_role
from objects.rolebinding import desired_role_binding
from store import MemoryStore


def _desired(instance):
    rules = [PolicyRule(verbs=["get"], api_groups=[""], resources=["secrets"])]
    return [
        desired_role("certgen", rules, instance),
        desired_role_binding("certgen", "svc-x", "certgen", instance),
        desired_cluster_role_binding("instA-view", "svc-x", "view", instance),
    ]


class TrackingStore(MemoryStore):
    """Store that records the peak number of concurrent reads."""

    def __init__(self):
        super().__init__()
        self.active = 0
        self.peak = 0

    async def get(self, kind, identity):
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(0.01)
            return await super().get(kind, identity)
        finally:
            self.active -= 1


class TestResults:
    """Tests for result dataclasses."""

    def test_object_result_success(self):
        result = ObjectResult(
            kind="Role",
            identity=Identity("ns1", "r"),
            outcome=ReconcileOutcome.CREATED,
        )
        assert result.success

    def test_instance_result_failures(self, instance):
        ok = ObjectResult("Role", Identity("ns1", "a"), ReconcileOutcome.UNCHANGED)
        bad = ObjectResult("Role", Identity("ns1", "b"), error=Exception("boom"))

        result = InstanceResult(instance=instance, results=[ok, bad])

        assert result.failures == [bad]
        assert not result.success


@pytest.mark.asyncio
class TestInstanceReconciler:
    """Tests for InstanceReconciler."""

    async def test_creates_everything(self, store, instance):
        controller = InstanceReconciler(Reconciler(store))

        result = await controller.reconcile(instance, _desired(instance))

        assert result.success
        assert [r.outcome for r in result.results] == [ReconcileOutcome.CREATED] * 3
        assert [r.kind for r in result.results] == [
            "Role",
            "RoleBinding",
            "ClusterRoleBinding",
        ]

    async def test_second_pass_is_noop(self, store, instance):
        controller = InstanceReconciler(Reconciler(store))
        await controller.reconcile(instance, _desired(instance))
        store.calls.clear()

        result = await controller.reconcile(instance, _desired(instance))

        assert {r.outcome for r in result.results} == {ReconcileOutcome.UNCHANGED}
        assert store.mutations == []

    async def test_failure_does_not_stop_others(self, store, instance):
        store.create_error = RuntimeError("quota exceeded")
        controller = InstanceReconciler(Reconciler(store))
        desired = _desired(instance)
        store.seed(desired[0])

        with pytest.raises(InstanceReconcileError) as exc_info:
            await controller.reconcile(instance, desired)

        result = exc_info.value.result
        assert result.results[0].outcome == ReconcileOutcome.UNCHANGED
        assert len(result.failures) == 2
        assert "2 of 3 object(s) failed" in str(exc_info.value)
        assert "quota exceeded" in str(exc_info.value)

    async def test_duplicate_objects_rejected(self, store, instance):
        controller = InstanceReconciler(Reconciler(store))
        rb = desired_role_binding("rb-a", "svc-x", "role-y", instance)

        with pytest.raises(ValueError, match="Duplicate desired object"):
            await controller.reconcile(instance, [rb, rb.deep_copy()])

        assert store.calls == []

    async def test_concurrency_is_bounded(self, instance):
        store = TrackingStore()
        controller = InstanceReconciler(
            Reconciler(store), ControllerConfig(max_concurrent_reconciles=2)
        )
        desired = [
            desired_role_binding(f"rb-{i}", "svc-x", "role-y", instance)
            for i in range(6)
        ]

        result = await controller.reconcile(instance, desired)

        assert result.success
        assert store.peak <= 2

    async def test_empty_desired(self, store, instance):
        result = await InstanceReconciler(Reconciler(store)).reconcile(instance, [])

        assert result.success
        assert result.results == []

    async def test_unmanaged_kind_rejected_before_any_read(self, store, instance):
        controller = InstanceReconciler(Reconciler(store))
        rb = desired_role_binding("rb-a", "svc-x", "role-y", instance)
        configmap = rb.deep_copy()
        configmap.kind = "ConfigMap"

        with pytest.raises(ValueError, match="ConfigMap"):
            await controller.reconcile(instance, [rb, configmap])

        assert store.calls == []

    async def test_unexpected_error_raised_after_siblings_finish(
        self, store, instance
    ):
        class BrokenReconciler(Reconciler):
            async def ensure(self, desired, owner_labels, compare_fields=None):
                if desired.name == "rb-1":
                    raise RuntimeError("unexpected")
                await asyncio.sleep(0.01)
                return await super().ensure(desired, owner_labels, compare_fields)

        controller = InstanceReconciler(BrokenReconciler(store))
        desired = [
            desired_role_binding(f"rb-{i}", "svc-x", "role-y", instance)
            for i in range(3)
        ]

        with pytest.raises(RuntimeError, match="unexpected"):
            await controller.reconcile(instance, desired)

        assert store.mutations == ["create", "create"]
