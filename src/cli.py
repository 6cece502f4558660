#!/usr/bin/env python3
"""
rolekeeperctl - kubectl-like interface for ensuring instance RBAC objects.
"""

import asyncio
import dataclasses
import json
import sys
from typing import Any, Awaitable, Callable, List, Optional, Tuple, TypeVar

import click
import yaml
from tabulate import tabulate

from config import STORE_BACKENDS, Config, get_config
from controller import InstanceReconcileError, InstanceResult
from events import EventType, ObjectEvent
from main import Application, configure_logging
from objects.errors import ReconcileError
from objects.model import CLUSTER_ROLE_BINDING, ROLE, ROLE_BINDING, ManagedObject
from objects.owner import (
    OWNING_INSTANCE_NAME_LABEL,
    OWNING_INSTANCE_NS_LABEL,
    Instance,
)
from objects.rolebinding import ensure_role_binding
from validation import ManifestError, parse_manifest

T = TypeVar("T")

KINDS = {k.lower(): k for k in (ROLE_BINDING, CLUSTER_ROLE_BINDING, ROLE)}

EVENT_FILTERS = {
    "all": None,
    "changes": lambda event: event.event_type
    in (EventType.CREATED, EventType.UPDATED),
}

events_option = click.option(
    "--events",
    type=click.Choice(sorted(EVENT_FILTERS)),
    default=None,
    help="Print reconciliation events as JSON lines on stderr",
)


def _load_file(filename: str) -> Any:
    """Read a YAML or JSON file."""
    with open(filename, "r") as f:
        if filename.endswith(".yaml") or filename.endswith(".yml"):
            return yaml.safe_load(f)
        return json.load(f)


def _run(config: Config, fn: Callable[[Application], Awaitable[T]]) -> T:
    """
    Run fn against an initialized Application, closing it afterwards.

    Configuration errors raised while initializing become ClickExceptions.
    """

    async def runner() -> T:
        app = Application(config)
        try:
            try:
                await app.initialize()
            except ValueError as e:
                raise click.ClickException(str(e))
            return await fn(app)
        finally:
            await app.close()

    return asyncio.run(runner())


async def _with_events(
    app: Application, events: Optional[str], aw: Awaitable[T]
) -> Tuple[T, List[ObjectEvent]]:
    """Await aw, collecting the events it publishes when events is set."""
    if events is None:
        return await aw, []

    subscriber_id, subscription = app.event_bus.subscribe(EVENT_FILTERS[events])
    try:
        result = await aw
    finally:
        app.event_bus.unsubscribe(subscriber_id)
    return result, [event async for event in subscription]


def _echo_events(emitted: List[ObjectEvent]) -> None:
    for event in emitted:
        click.echo(event.to_json(), err=True)


def _print_result(result: InstanceResult, output: str) -> None:
    if output == "json":
        data = [
            {
                "kind": r.kind,
                "namespace": r.identity.namespace,
                "name": r.identity.name,
                "outcome": r.outcome.value if r.outcome else None,
                "error": str(r.error) if r.error else None,
            }
            for r in result.results
        ]
        click.echo(json.dumps(data, indent=2))
        return

    rows = []
    for r in result.results:
        rows.append(
            [
                r.kind,
                r.identity.namespace or "-",
                r.identity.name,
                r.outcome.value if r.outcome else "failed",
                str(r.error.cause) if r.error else "",
            ]
        )
    click.echo(
        tabulate(rows, headers=["Kind", "Namespace", "Name", "Outcome", "Error"])
    )


def _object_rows(objects: List[ManagedObject]) -> List[List[str]]:
    rows = []
    for obj in objects:
        owner = obj.labels.get(OWNING_INSTANCE_NAME_LABEL)
        owner_ns = obj.labels.get(OWNING_INSTANCE_NS_LABEL)
        if obj.role_ref is not None:
            detail = f"{obj.role_ref.kind}/{obj.role_ref.name}"
        else:
            detail = f"{len(obj.rules)} rule(s)"
        rows.append(
            [
                obj.namespace or "-",
                obj.name,
                f"{owner_ns}/{owner}" if owner else "<none>",
                ",".join(s.name for s in obj.subjects) or "-",
                detail,
                obj.resource_version or "",
            ]
        )
    return rows


@click.group()
@click.option(
    "--store",
    type=click.Choice(STORE_BACKENDS),
    default=None,
    help="Override the STORE_BACKEND setting",
)
@click.option("--log-level", default=None, help="Override the LOG_LEVEL setting")
@click.pass_context
def cli(ctx, store, log_level):
    """rolekeeperctl - converge instance RBAC objects toward their desired state"""
    try:
        config = get_config()
    except ValueError as e:
        raise click.ClickException(str(e))

    if store:
        config = dataclasses.replace(
            config, store=dataclasses.replace(config.store, backend=store)
        )
    configure_logging(log_level or config.log_level)
    ctx.obj = config


@cli.command()
@click.argument("filename", type=click.Path(exists=True, dir_okay=False))
@click.option("--output", "-o", type=click.Choice(["table", "json"]), default="table")
@events_option
@click.pass_obj
def apply(config, filename, output, events):
    """Ensure every object listed in an instance manifest"""
    try:
        manifest = parse_manifest(_load_file(filename))
    except ManifestError as e:
        raise click.ClickException(f"Invalid manifest: {e}")

    async def reconcile(app: Application) -> InstanceResult:
        try:
            return await app.controller.reconcile(manifest.instance, manifest.objects)
        except InstanceReconcileError as e:
            return e.result

    async def run(app: Application) -> Tuple[InstanceResult, List[ObjectEvent]]:
        return await _with_events(app, events, reconcile(app))

    result, emitted = _run(config, run)
    _print_result(result, output)
    _echo_events(emitted)
    if not result.success:
        sys.exit(1)


@cli.command("ensure-rolebinding")
@click.option("--instance-name", required=True, help="Owning instance name")
@click.option("--instance-namespace", required=True, help="Owning instance namespace")
@click.option(
    "--target-namespace",
    default=None,
    help="Namespace for the binding (defaults to the instance namespace)",
)
@click.option("--name", required=True, help="RoleBinding name")
@click.option("--service-account", required=True, help="Subject service account")
@click.option("--role", required=True, help="Role to bind")
@events_option
@click.pass_obj
def ensure_rolebinding(
    config,
    instance_name,
    instance_namespace,
    target_namespace,
    name,
    service_account,
    role,
    events,
):
    """Ensure a single RoleBinding"""
    instance = Instance(
        name=instance_name,
        namespace=instance_namespace,
        target_namespace=target_namespace or instance_namespace,
    )

    async def ensure(app: Application):
        return await _with_events(
            app,
            events,
            ensure_role_binding(app.reconciler, name, service_account, role, instance),
        )

    try:
        outcome, emitted = _run(config, ensure)
    except ReconcileError as e:
        raise click.ClickException(str(e))

    click.echo(f"rolebinding {instance.target_namespace}/{name} {outcome.value}")
    _echo_events(emitted)


@cli.command()
@click.argument("kind", type=click.Choice(sorted(KINDS), case_sensitive=False))
@click.option("--namespace", "-n", default=None, help="Only list this namespace")
@click.option(
    "--instance-name", default=None, help="Only list objects owned by this instance"
)
@click.option("--instance-namespace", default=None, help="Namespace of --instance-name")
@click.option("--output", "-o", type=click.Choice(["table", "yaml"]), default="table")
@click.pass_obj
def get(config, kind, namespace, instance_name, instance_namespace, output):
    """List stored objects of a kind"""
    kind = KINDS[kind.lower()]
    labels = {}
    if instance_name:
        labels[OWNING_INSTANCE_NAME_LABEL] = instance_name
    if instance_namespace:
        labels[OWNING_INSTANCE_NS_LABEL] = instance_namespace

    async def list_objects(app: Application) -> List[ManagedObject]:
        return await app.store.list(kind, namespace=namespace, labels=labels or None)

    objects = _run(config, list_objects)

    if not objects:
        click.echo(f"No {kind} objects found")
        return

    if output == "yaml":
        click.echo(
            yaml.safe_dump_all(
                [obj.to_manifest() for obj in objects], default_flow_style=False
            )
        )
        return

    headers = ["Namespace", "Name", "Owner", "Subjects", "Role / Rules", "Version"]
    click.echo(tabulate(_object_rows(objects), headers=headers, tablefmt="grid"))


@cli.command()
@click.pass_obj
def migrate(config):
    """Apply pending database migrations"""
    try:
        applied = asyncio.run(Application(config).migrate())
    except ValueError as e:
        raise click.ClickException(str(e))
    click.echo(f"Applied {applied} migration(s)")


if __name__ == "__main__":
    cli()
