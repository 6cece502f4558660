"""Unit tests for cli.py - rolekeeperctl."""

import json
import os

import pytest
import yaml
from click.testing import CliRunner
from unittest.mock import AsyncMock, patch

from cli import _with_events, cli
from config import Config, StoreConfig
from events import EventType
from main import Application
from objects.owner import Instance
from objects.reconcile import ReconcileOutcome
from objects.rolebinding import ensure_role_binding


MANIFEST = {
    "instance": {"name": "instA", "namespace": "ns1"},
    "roles": [
        {
            "name": "certgen",
            "rules": [{"apiGroups": [""], "resources": ["secrets"], "verbs": ["get"]}],
        }
    ],
    "roleBindings": [
        {"name": "certgen", "serviceAccount": "svc-x", "role": "certgen"}
    ],
}


def _memory_config():
    cfg = Config.default()
    cfg.store = StoreConfig(backend="memory")
    return cfg


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def clean_env():
    with patch.dict(os.environ, {}, clear=True):
        yield


class TestApply:
    """Tests for the apply command."""

    def test_apply_yaml_table(self, runner, tmp_path):
        path = tmp_path / "instance.yaml"
        path.write_text(yaml.safe_dump(MANIFEST))

        result = runner.invoke(cli, ["--store", "memory", "apply", str(path)])

        assert result.exit_code == 0, result.output
        assert "certgen" in result.output
        assert "created" in result.output

    def test_apply_json_output(self, runner, tmp_path):
        path = tmp_path / "instance.json"
        path.write_text(json.dumps(MANIFEST))

        result = runner.invoke(
            cli, ["--store", "memory", "apply", str(path), "-o", "json"]
        )

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert [d["kind"] for d in data] == ["Role", "RoleBinding"]
        assert {d["outcome"] for d in data} == {"created"}
        assert data[1]["namespace"] == "ns1"

    def test_apply_invalid_manifest(self, runner, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.safe_dump({"roles": []}))

        result = runner.invoke(cli, ["--store", "memory", "apply", str(path)])

        assert result.exit_code == 1
        assert "Invalid manifest" in result.output

    def test_apply_missing_file(self, runner):
        result = runner.invoke(cli, ["--store", "memory", "apply", "/no/such.yaml"])

        assert result.exit_code == 2


class TestEnsureRoleBinding:
    """Tests for the ensure-rolebinding command."""

    ARGS = [
        "--store",
        "memory",
        "ensure-rolebinding",
        "--instance-name",
        "instA",
        "--instance-namespace",
        "ns1",
        "--name",
        "rb-a",
        "--service-account",
        "svc-x",
        "--role",
        "role-y",
    ]

    def test_creates(self, runner):
        result = runner.invoke(cli, self.ARGS)

        assert result.exit_code == 0, result.output
        assert result.output.strip() == "rolebinding ns1/rb-a created"

    def test_target_namespace(self, runner):
        result = runner.invoke(cli, self.ARGS + ["--target-namespace", "workload"])

        assert result.output.strip() == "rolebinding workload/rb-a created"

    def test_read_failure(self, runner):
        with patch(
            "store.MemoryStore.get",
            new_callable=AsyncMock,
            side_effect=PermissionError("forbidden"),
        ):
            result = runner.invoke(cli, self.ARGS)

        assert result.exit_code == 1
        assert "failed to get RoleBinding ns1/rb-a: forbidden" in result.output

    def test_missing_option(self, runner):
        result = runner.invoke(cli, self.ARGS[:-2])

        assert result.exit_code == 2
        assert "--role" in result.output


class TestGet:
    """Tests for the get command."""

    def test_empty_store(self, runner):
        result = runner.invoke(cli, ["--store", "memory", "get", "RoleBinding"])

        assert result.exit_code == 0, result.output
        assert "No RoleBinding objects found" in result.output

    def test_unknown_kind(self, runner):
        result = runner.invoke(cli, ["--store", "memory", "get", "configmap"])

        assert result.exit_code == 2


class TestMigrate:
    """Tests for the migrate command."""

    def test_requires_password(self, runner):
        result = runner.invoke(cli, ["migrate"])

        assert result.exit_code == 1
        assert "DB_PASSWORD" in result.output

    def test_reports_count(self, runner):
        with patch("cli.Application.migrate", new_callable=AsyncMock) as migrate:
            migrate.return_value = 1
            result = runner.invoke(cli, ["migrate"])

        assert result.exit_code == 0, result.output
        assert "Applied 1 migration(s)" in result.output


class TestGlobalOptions:
    """Tests for options on the command group."""

    def test_invalid_backend_env(self, runner):
        with patch.dict(os.environ, {"STORE_BACKEND": "sqlite"}):
            result = runner.invoke(cli, ["get", "role"])

        assert result.exit_code == 1
        assert "Unknown store backend" in result.output


class TestStartupErrors:
    """Tests for configuration errors surfacing while the store is built."""

    def test_ensure_without_database_password(self, runner):
        with patch.dict(os.environ, {"STORE_BACKEND": "postgres"}):
            result = runner.invoke(cli, TestEnsureRoleBinding.ARGS[2:])

        assert result.exit_code == 1
        assert not isinstance(result.exception, ValueError)
        assert "DB_PASSWORD environment variable must be set" in result.output

    def test_apply_without_database_password(self, runner, tmp_path):
        path = tmp_path / "instance.yaml"
        path.write_text(yaml.safe_dump(MANIFEST))

        with patch.dict(os.environ, {"STORE_BACKEND": "postgres"}):
            result = runner.invoke(cli, ["apply", str(path)])

        assert result.exit_code == 1
        assert "DB_PASSWORD" in result.output

    def test_get_without_database_password(self, runner):
        result = runner.invoke(cli, ["--store", "postgres", "get", "role"])

        assert result.exit_code == 1
        assert "DB_PASSWORD" in result.output


class TestEvents:
    """Tests for the --events option."""

    def _event_lines(self, output):
        return [
            json.loads(line) for line in output.splitlines() if line.startswith("{")
        ]

    def test_apply_prints_all_events(self, runner, tmp_path):
        path = tmp_path / "instance.yaml"
        path.write_text(yaml.safe_dump(MANIFEST))

        result = runner.invoke(
            cli, ["--store", "memory", "apply", str(path), "--events", "all"]
        )

        assert result.exit_code == 0, result.output
        events = self._event_lines(result.output)
        assert sorted(e["kind"] for e in events) == ["Role", "RoleBinding"]
        assert {e["event_type"] for e in events} == {"CREATED"}

    def test_ensure_prints_event(self, runner):
        result = runner.invoke(cli, TestEnsureRoleBinding.ARGS + ["--events", "all"])

        assert result.exit_code == 0, result.output
        (event,) = self._event_lines(result.output)
        assert event["event_type"] == "CREATED"
        assert event["namespace"] == "ns1"
        assert event["name"] == "rb-a"

    def test_no_events_by_default(self, runner):
        result = runner.invoke(cli, TestEnsureRoleBinding.ARGS)

        assert self._event_lines(result.output) == []


@pytest.mark.asyncio
class TestWithEvents:
    """Tests for event collection around a single ensure."""

    def _ensure(self, app):
        instance = Instance(name="instA", namespace="ns1", target_namespace="ns1")
        return ensure_role_binding(app.reconciler, "rb-a", "svc-x", "role-y", instance)

    async def test_changes_filter_drops_unchanged(self):
        app = Application(_memory_config())
        await app.initialize()

        first, created = await _with_events(app, "changes", self._ensure(app))
        second, unchanged = await _with_events(app, "changes", self._ensure(app))

        assert first == ReconcileOutcome.CREATED
        assert [e.event_type for e in created] == [EventType.CREATED]
        assert second == ReconcileOutcome.UNCHANGED
        assert unchanged == []
        assert app.event_bus.subscriber_count() == 0

    async def test_unsubscribes_on_failure(self):
        app = Application(_memory_config())
        await app.initialize()

        async def boom():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await _with_events(app, "all", boom())

        assert app.event_bus.subscriber_count() == 0
