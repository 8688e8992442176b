"""Click commands: deploy, destroy, plan.

Exit codes: 0 on success, 1 when the deployment or teardown did not
complete (an unreachable cluster or unreadable state file counts too, as
does a missing tool), 2 on usage and configuration errors.
"""

from __future__ import annotations

import asyncio
import shutil
import signal
from dataclasses import dataclass

import click

from stackdeploy import __version__
from stackdeploy.cluster.kubernetes import connect_cluster
from stackdeploy.config import load_config
from stackdeploy.credentials.broker import CredentialBroker
from stackdeploy.errors import ConfigError, StackDeployError
from stackdeploy.executor.graph import topological_order
from stackdeploy.executor.state import StateStore
from stackdeploy.models.config import StackConfig
from stackdeploy.models.resources import AccessInfo
from stackdeploy.observability.logging import setup_logging
from stackdeploy.orchestrator.plan import build_plan, chart_fullname, issue_credentials
from stackdeploy.orchestrator.stack import StackOrchestrator

REQUIRED_TOOLS = ("helm", "kubectl")


@dataclass
class _Context:
    config: StackConfig
    kube_context: str | None


def missing_tools(tools: tuple[str, ...] = REQUIRED_TOOLS) -> list[str]:
    return [tool for tool in tools if shutil.which(tool) is None]


@click.group()
@click.version_option(__version__, prog_name="stackdeploy")
@click.option(
    "--kube-context",
    envvar="STACKDEPLOY_KUBE_CONTEXT",
    default=None,
    help="kubeconfig context to use (default: current context).",
)
@click.pass_context
def cli(ctx: click.Context, kube_context: str | None) -> None:
    """Deploy a PostgreSQL-backed SonarQube stack to Kubernetes with Helm.

    Every setting is read from STACKDEPLOY_* environment variables.
    """
    try:
        config = load_config()
    except ConfigError as exc:
        raise click.UsageError(str(exc)) from exc
    setup_logging(config.log.level, config.log.format)
    ctx.obj = _Context(config=config, kube_context=kube_context)


# ---------------------------------------------------------------------------
# deploy
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--skip-deps", is_flag=True, help="Skip checking that helm and kubectl are installed.")
@click.pass_obj
def deploy(obj: _Context, skip_deps: bool) -> None:
    """Deploy or update the stack. Safe to re-run."""
    if not skip_deps:
        missing = missing_tools()
        if missing:
            click.echo(f"Error: required tools not found on PATH: {', '.join(missing)}", err=True)
            raise SystemExit(1)

    try:
        info = asyncio.run(_deploy(obj))
    except StackDeployError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    _print_banner(obj.config, info)


async def _deploy(obj: _Context) -> AccessInfo:
    broker = CredentialBroker()
    cluster = await connect_cluster(broker, obj.config.prober, obj.kube_context)
    orchestrator = StackOrchestrator(cluster, broker, StateStore(obj.config.executor.state_path))

    # First signal stops new resources from starting; in-flight ones finish.
    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, cancel.set)
    try:
        return await orchestrator.deploy(obj.config, cancel=cancel)
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
        await cluster.close()


def _print_banner(config: StackConfig, info: AccessInfo) -> None:
    service = chart_fullname(config.application.release, "sonarqube")
    click.echo("")
    click.echo("SonarQube is ready.")
    click.echo(f"  Namespace:    {info.namespace}")
    click.echo(f"  URL:          {info.endpoint_url}")
    click.echo(f"  Port-forward: kubectl port-forward -n {info.namespace} svc/{service} 9000:9000")
    click.echo(f"  Credentials:  {info.credentials_notice}")


# ---------------------------------------------------------------------------
# destroy
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--force", is_flag=True, help="Delete every planned resource even without recorded state.")
@click.pass_obj
def destroy(obj: _Context, force: bool) -> None:
    """Tear the stack down in reverse dependency order."""
    store = StateStore(obj.config.executor.state_path)
    try:
        nothing_recorded = not force and not store.load()
        asyncio.run(_destroy(obj, store, force))
    except StackDeployError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc
    if nothing_recorded:
        click.echo("No deployment state found. Nothing to destroy.")
    else:
        click.echo("Stack destroyed.")


async def _destroy(obj: _Context, store: StateStore, force: bool) -> None:
    broker = CredentialBroker()
    cluster = await connect_cluster(broker, obj.config.prober, obj.kube_context)
    try:
        await StackOrchestrator(cluster, broker, store).teardown(obj.config, force=force)
    finally:
        await cluster.close()


# ---------------------------------------------------------------------------
# plan
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_obj
def plan(obj: _Context) -> None:
    """Show the resources a deploy would realize, in apply order."""
    broker = CredentialBroker()
    issue_credentials(obj.config, broker)
    stack_plan = build_plan(obj.config, broker)
    try:
        records = StateStore(obj.config.executor.state_path).load()
    except StackDeployError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc
    phases = {(r["kind"], r.get("namespace", ""), r["name"]): r.get("phase", "") for r in records}
    for i, spec in enumerate(topological_order(stack_plan), start=1):
        ref = spec.ref
        phase = phases.get((ref.kind, ref.namespace, ref.name), "new")
        deps = ", ".join(sorted(str(d) for d in spec.depends_on)) or "-"
        click.echo(f"{i}. {ref}  [{phase}]  depends on: {deps}")
