"""kubeitest command-line interface.

Commands:
    kubeitest unique-name FILE       Print FILE with a UUID appended to metadata.name.
    kubeitest apply-crd FILE         Apply a CRD and wait until its names are accepted.
    kubeitest setup-repository       Install the package repository CRD and object.
    kubeitest version                Print version and exit.

Cluster access follows the ``KUBEITEST_*`` environment configuration.
"""

from __future__ import annotations

from typing import IO

import click
from kubernetes_asyncio.client.exceptions import ApiException

from kubeitest import __version__
from kubeitest.client.sync import SyncKubeClient
from kubeitest.config import load_config
from kubeitest.errors import KubeITestError
from kubeitest.models.config import KubeITestConfig
from kubeitest.models.resources import CUSTOM_RESOURCE_DEFINITION, name_of
from kubeitest.observability.logging import setup_logging
from kubeitest.repository import setup_repository
from kubeitest.specs import with_unique_name


def _load(namespace: str | None) -> KubeITestConfig:
    try:
        config = load_config()
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    if namespace:
        config.namespace = namespace
    setup_logging(config.log.level, config.log.format)
    return config


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option("--namespace", "-n", default=None, help="Override KUBEITEST_NAMESPACE.")
@click.pass_context
def cli(ctx: click.Context, namespace: str | None) -> None:
    """kubeitest - integration test helpers for Kubernetes operators."""
    ctx.ensure_object(dict)
    ctx.obj["namespace"] = namespace


@cli.command("version")
def version_cmd() -> None:
    """Print the kubeitest version."""
    click.echo(f"kubeitest {__version__}")


@cli.command("unique-name")
@click.argument("spec_file", type=click.File("r"))
def unique_name_cmd(spec_file: IO[str]) -> None:
    """Print SPEC_FILE with a unique suffix appended to metadata.name."""
    try:
        click.echo(with_unique_name(spec_file.read()), nl=False)
    except KubeITestError as exc:
        raise click.ClickException(str(exc)) from exc


@cli.command("apply-crd")
@click.argument("crd_file", type=click.File("r"))
@click.pass_context
def apply_crd_cmd(ctx: click.Context, crd_file: IO[str]) -> None:
    """Apply CRD_FILE and wait until the API server accepts its names."""
    config = _load(ctx.obj["namespace"])
    try:
        crd = CUSTOM_RESOURCE_DEFINITION.decode(crd_file.read())
        with SyncKubeClient(config) as client:
            client.apply_crd(crd)
    except (KubeITestError, ApiException) as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(click.style(f"CustomResourceDefinition {name_of(crd)} accepted", fg="green"))


@cli.command("setup-repository")
@click.pass_context
def setup_repository_cmd(ctx: click.Context) -> None:
    """Install the package repository used by the operators under test."""
    config = _load(ctx.obj["namespace"])
    try:
        with SyncKubeClient(config) as client:
            setup_repository(client)
    except (KubeITestError, ApiException) as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(click.style("Package repository installed", fg="green"))


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    cli()
