"""clusterfed CLI: command-line interface for clusterfed.

Commands:
    bootstrap   Install a federation control plane on a cluster
    teardown    Remove an installed control plane
    join        Join a member cluster to the federation
    unjoin      Remove a member cluster from the federation
    get         Get one resource from a member cluster
    list        List resources from a member cluster
    validate    Validate config and inventory files
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import timedelta
from pathlib import Path
from typing import Any, NoReturn

import click

from clusterfed import __version__
from clusterfed.bootstrap.options import BootstrapConfig, merge_bootstrap_config
from clusterfed.bootstrap.orchestrator import install_control_plane
from clusterfed.bootstrap.teardown import teardown_control_plane
from clusterfed.clients.kube import KubeClient, build_api_client
from clusterfed.clients.registry import ClusterClientRegistry, ControlPlaneClients
from clusterfed.config import ClusterFedConfig, load_config
from clusterfed.errors import ClusterFedError
from clusterfed.federation.membership import KubeMembershipOperations, join, unjoin
from clusterfed.inventory.loader import ClusterInventory, InventoryError, load_inventory
from clusterfed.models import ClusterConnection, PageWindow, ResourceQuery
from clusterfed.resources.processor import ResourceProcessor
from clusterfed.resources.registry import build_default_registry

# --- Defaults ---

DEFAULT_INVENTORY = "./clusters.yaml"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _fail(message: str) -> NoReturn:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _cfg(ctx: click.Context) -> ClusterFedConfig:
    return ctx.obj["config"]


def _inventory(ctx: click.Context) -> ClusterInventory:
    path = ctx.obj["inventory"] or _cfg(ctx).inventory or DEFAULT_INVENTORY
    return load_inventory(path)


def _registry(ctx: click.Context, inventory: ClusterInventory) -> ClusterClientRegistry:
    return ClusterClientRegistry(inventory, host_cluster_name=_cfg(ctx).host_cluster_name)


def _control_plane_client(path: Path) -> KubeClient:
    if not path.is_file():
        raise ClusterFedError(f"Control-plane kubeconfig not found: {path}")
    return KubeClient(build_api_client(ClusterConnection(kubeconfig=path.read_bytes())))


def _default_kubeconfig_path(cluster: str) -> Path:
    return Path(f"./{cluster}-federation.kubeconfig")


def _control_plane_path(ctx: click.Context, host: str | None, kubeconfig: str | None) -> Path:
    if kubeconfig:
        return Path(kubeconfig)
    return _default_kubeconfig_path(host or _cfg(ctx).host_cluster_name)


def _plain(obj: Any) -> Any:
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return obj


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


# --- Root group ---


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "config_path", default=None, help="Path to clusterfed.yaml")
@click.option("--inventory", default=None, help="Path to cluster inventory YAML file")
@click.option("--log-level", default=None, help="Log level (DEBUG, INFO, WARNING, ERROR)")
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: str | None,
    inventory: str | None,
    log_level: str | None,
) -> None:
    """clusterfed: bootstrap and operate a multi-cluster federation."""
    try:
        cfg = load_config(config_path)
    except ClusterFedError as e:
        _fail(str(e))
    logging.basicConfig(level=(log_level or cfg.log_level).upper(), format=LOG_FORMAT)
    ctx.obj = {"config": cfg, "inventory": inventory}


# --- bootstrap / teardown ---


@cli.command()
@click.argument("cluster")
@click.option("--crds", default=None, help="CRD bundle URL or local path")
@click.option(
    "--output", "-o", default=None,
    help="Where to write the control-plane kubeconfig (default ./<cluster>-federation.kubeconfig)",
)
@click.pass_context
def bootstrap(ctx: click.Context, cluster: str, crds: str | None, output: str | None) -> None:
    """Install a federation control plane on CLUSTER."""
    try:
        inv = _inventory(ctx)
        target = inv.get_or_raise(cluster)
        defaults = merge_bootstrap_config(BootstrapConfig(), _cfg(ctx).bootstrap)
        if crds:
            defaults = merge_bootstrap_config(defaults, {"crds": crds})
        result = install_control_plane(target, _registry(ctx, inv), defaults)
    except (ClusterFedError, InventoryError) as e:
        _fail(str(e))

    out = Path(output) if output else _default_kubeconfig_path(cluster)
    out.write_bytes(result.kubeconfig)
    click.echo(click.style("OK", fg="green") + f"  control plane installed on {cluster}")
    click.echo(f"  kubeconfig:      {out}")
    click.echo(f"  bootstrap token: {result.bootstrap_token}")


@cli.command()
@click.argument("cluster")
@click.option("--namespace", default="karmada-system", help="Control-plane namespace")
@click.pass_context
def teardown(ctx: click.Context, cluster: str, namespace: str) -> None:
    """Remove the federation control plane from CLUSTER."""
    try:
        inv = _inventory(ctx)
        target = inv.get_or_raise(cluster)
        kube = _registry(ctx, inv).get_kube_client(target.region, target.name)
        removed = teardown_control_plane(kube, namespace)
    except (ClusterFedError, InventoryError) as e:
        _fail(str(e))

    if removed:
        click.echo(click.style("OK", fg="green") + f"  control plane removed from {cluster}")
    else:
        click.echo(f"No control plane installed on {cluster}")


# --- join / unjoin ---


def _membership_args(
    ctx: click.Context, cluster: str, host: str | None, kubeconfig: str | None,
) -> tuple[KubeClient, Any, ClusterInventory]:
    inv = _inventory(ctx)
    member = inv.get_or_raise(cluster)
    inv.get_or_raise(host or _cfg(ctx).host_cluster_name)
    return _control_plane_client(_control_plane_path(ctx, host, kubeconfig)), member, inv


@cli.command("join")
@click.argument("cluster")
@click.option("--host", default=None, help="Cluster hosting the control plane")
@click.option("--kubeconfig", default=None, help="Control-plane kubeconfig written by bootstrap")
@click.pass_context
def join_cmd(ctx: click.Context, cluster: str, host: str | None, kubeconfig: str | None) -> None:
    """Join CLUSTER to the federation."""
    try:
        control_plane, member, _ = _membership_args(ctx, cluster, host, kubeconfig)
        join(control_plane, member.connection, member, KubeMembershipOperations())
    except (ClusterFedError, InventoryError) as e:
        _fail(str(e))
    click.echo(click.style("OK", fg="green") + f"  {cluster} joined")


@cli.command("unjoin")
@click.argument("cluster")
@click.option("--host", default=None, help="Cluster hosting the control plane")
@click.option("--kubeconfig", default=None, help="Control-plane kubeconfig written by bootstrap")
@click.option("--wait", default=60, show_default=True, help="Seconds to wait for removal")
@click.pass_context
def unjoin_cmd(
    ctx: click.Context, cluster: str, host: str | None, kubeconfig: str | None, wait: int,
) -> None:
    """Remove CLUSTER from the federation."""
    try:
        control_plane, member, inv = _membership_args(ctx, cluster, host, kubeconfig)
        unjoin(control_plane, member.connection, member, KubeMembershipOperations(),
               wait=timedelta(seconds=wait), clients=_registry(ctx, inv))
    except (ClusterFedError, InventoryError) as e:
        _fail(str(e))
    click.echo(click.style("OK", fg="green") + f"  {cluster} unjoined")


# --- get / list ---


def _processor(
    ctx: click.Context, host: str | None = None, kubeconfig: str | None = None,
) -> ResourceProcessor:
    control_plane = ControlPlaneClients(
        _control_plane_path(ctx, host, kubeconfig), client_factory=build_api_client,
    )
    return ResourceProcessor(build_default_registry(_registry(ctx, _inventory(ctx)), control_plane))


@cli.command("get")
@click.argument("resource")
@click.argument("name")
@click.option("--namespace", "-n", default="", help="Namespace (empty for cluster-scoped kinds)")
@click.option("--cluster", default="", help="Member cluster (default: host cluster)")
@click.option("--region", default="", help="Region of the member cluster")
@click.option("--host", default=None, help="Cluster hosting the control plane (federation kinds)")
@click.option("--kubeconfig", default=None, help="Control-plane kubeconfig (federation kinds)")
@click.pass_context
def get_cmd(
    ctx: click.Context,
    resource: str,
    name: str,
    namespace: str,
    cluster: str,
    region: str,
    host: str | None,
    kubeconfig: str | None,
) -> None:
    """Get RESOURCE named NAME."""
    try:
        processor = _processor(ctx, host, kubeconfig)
        obj = processor.get(resource, namespace, name, region=region, cluster=cluster)
    except (ClusterFedError, InventoryError) as e:
        _fail(str(e))
    _echo_json(_plain(obj))


@cli.command("list")
@click.argument("resource")
@click.option("--namespace", "-n", default="", help="Namespace (empty for cluster-scoped kinds)")
@click.option("--selector", "-l", default="", help="Label selector")
@click.option("--sort", "sort_by", default="createTime", help="Sort key (name, createTime)")
@click.option("--ascending", is_flag=True, help="Sort ascending")
@click.option("--offset", default=0, type=click.IntRange(min=0), help="Page offset")
@click.option("--limit", default=None, type=click.IntRange(min=1), help="Page size")
@click.option("--cluster", default="", help="Member cluster (default: host cluster)")
@click.option("--region", default="", help="Region of the member cluster")
@click.option("--host", default=None, help="Cluster hosting the control plane (federation kinds)")
@click.option("--kubeconfig", default=None, help="Control-plane kubeconfig (federation kinds)")
@click.pass_context
def list_cmd(
    ctx: click.Context,
    resource: str,
    namespace: str,
    selector: str,
    sort_by: str,
    ascending: bool,
    offset: int,
    limit: int | None,
    cluster: str,
    region: str,
    host: str | None,
    kubeconfig: str | None,
) -> None:
    """List RESOURCE objects."""
    query = ResourceQuery(
        label_selector=selector,
        sort_by=sort_by,
        ascending=ascending,
        page=PageWindow(offset=offset, limit=limit) if limit or offset else None,
    )
    try:
        processor = _processor(ctx, host, kubeconfig)
        result = processor.list(resource, namespace, query, region=region, cluster=cluster)
    except (ClusterFedError, InventoryError) as e:
        _fail(str(e))
    _echo_json(result.to_wire())


# --- validate command ---


@cli.command()
@click.pass_context
def validate(ctx: click.Context) -> None:
    """Validate the config file, inventory and control-plane overrides."""
    cfg = _cfg(ctx)
    errors: list[str] = []

    try:
        defaults = merge_bootstrap_config(BootstrapConfig(), cfg.bootstrap)
        click.echo(click.style("OK", fg="green") + "  bootstrap defaults")
    except ClusterFedError as e:
        defaults = BootstrapConfig()
        errors.append(f"bootstrap: {e}")
        click.echo(click.style("FAIL", fg="red") + f"  bootstrap: {e}")

    try:
        inv = _inventory(ctx)
        click.echo(click.style("OK", fg="green") + f"  inventory: {len(inv)} cluster(s) loaded")
    except InventoryError as e:
        errors.append(f"inventory: {e}")
        click.echo(click.style("FAIL", fg="red") + f"  inventory: {e}")
        inv = None

    if inv is not None:
        if inv.get(cfg.host_cluster_name) is None:
            errors.append(f"host cluster '{cfg.host_cluster_name}' is not in the inventory")
            click.echo(click.style("FAIL", fg="red") + f"  host cluster: {cfg.host_cluster_name} not found")
        for cluster in inv.control_plane_hosts():
            try:
                merge_bootstrap_config(defaults, cluster.control_plane.overrides)
                click.echo(click.style("OK", fg="green") + f"  control plane overrides: {cluster.name}")
            except ClusterFedError as e:
                errors.append(f"{cluster.name}: {e}")
                click.echo(click.style("FAIL", fg="red") + f"  {cluster.name}: {e}")

    if errors:
        click.echo(f"\n{len(errors)} error(s) found.")
        sys.exit(1)
    click.echo("\nConfiguration valid.")
