"""Click command group for apitracker.

Commands:
    run        -- Run the tracker service (REST API, webhook signals).
    discover   -- One-shot discovery collection printed as JSON.
    wait-crds  -- Block until the given CRDs are Established.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import click

from apitracker import __version__
from apitracker.observability.logging import setup_logging


def parse_gvk(value: str) -> tuple[str, str, str]:
    """Parse ``group/version/Kind`` into a tuple.

    Raises:
        click.BadParameter: the value does not have three non-empty parts.
    """
    parts = value.split("/")
    if len(parts) != 3 or not all(parts):
        raise click.BadParameter(f"expected group/version/Kind, got {value!r}")
    group, version, kind = parts
    return group, version, kind


async def _api_client(kubeconfig: str | None) -> Any:
    from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]
    from kubernetes_asyncio import config as k8s_config  # type: ignore[import-untyped]

    if kubeconfig:
        await k8s_config.load_kube_config(config_file=kubeconfig)
    else:
        try:
            k8s_config.load_incluster_config()
        except k8s_config.ConfigException:
            await k8s_config.load_kube_config()
    return k8s_client.ApiClient()


@click.group()
@click.version_option(__version__, prog_name="apitracker")
def cli() -> None:
    """Track the API resource types served by a Kubernetes cluster."""


@cli.command("run")
def run_command() -> None:
    """Run the tracker service until SIGTERM/SIGINT.

    Configuration is read from APITRACKER_* environment variables.
    """
    from apitracker.app import main

    asyncio.run(main())


@cli.command("discover")
@click.option("--group", "-g", default=None, help="Only print group-versions of this API group")
@click.option("--kubeconfig", type=click.Path(dir_okay=False), default=None, help="Path to a kubeconfig file")
@click.option("--log-level", default="warning", show_default=True, help="Log level")
def discover_command(group: str | None, kubeconfig: str | None, log_level: str) -> None:
    """Run one full discovery collection and print the snapshot as JSON."""
    from apitracker.discovery.client import DiscoveryClient, split_group_version
    from apitracker.discovery.errors import DiscoveryError

    setup_logging(log_level, console=True)

    async def _collect() -> dict[str, Any]:
        api_client = await _api_client(kubeconfig)
        try:
            snapshot = await DiscoveryClient(api_client).collect()
        finally:
            await api_client.close()
        return {
            gv: resources
            for gv, resources in snapshot.to_dict().items()
            if group is None or split_group_version(gv)[0] == group
        }

    try:
        result = asyncio.run(_collect())
    except DiscoveryError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(json.dumps(result, indent=2))


@cli.command("wait-crds")
@click.argument("gvks", nargs=-1, required=True)
@click.option("--timeout", type=float, default=300.0, show_default=True, help="Overall timeout in seconds")
@click.option("--kubeconfig", type=click.Path(dir_okay=False), default=None, help="Path to a kubeconfig file")
@click.option("--log-level", default="info", show_default=True, help="Log level")
def wait_crds_command(gvks: tuple[str, ...], timeout: float, kubeconfig: str | None, log_level: str) -> None:
    """Wait until every GVK (group/version/Kind) has an Established CRD.

    Examples:
        apitracker wait-crds authorization.example.com/v1/RoleDefinition
    """
    from apitracker.discovery.crd import CRDWaiter
    from apitracker.discovery.errors import CRDWaitTimeoutError

    parsed = [parse_gvk(value) for value in gvks]
    setup_logging(log_level, console=True)

    async def _wait() -> None:
        from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]

        api_client = await _api_client(kubeconfig)
        try:
            await CRDWaiter(k8s_client.ApiextensionsV1Api(api_client)).wait_for_crds(parsed, timeout)
        finally:
            await api_client.close()

    try:
        asyncio.run(_wait())
    except CRDWaitTimeoutError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"{len(parsed)} CRD(s) established")
