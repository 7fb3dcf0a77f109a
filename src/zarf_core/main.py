"""CLI main entry point."""

import json
import sys
from pathlib import Path

import click

from . import __version__
from .cluster.client import KubernetesClient
from .cluster.data import DataInjector, KubectlExec
from .cluster.records import RecordStore
from .cluster.state import GitServerInfo, RegistryInfo, StateStore, sanitize
from .config import DeployConfig, load_config
from .errors import DeployError, ZarfError
from .packager import (
    ComponentInstaller,
    Deployer,
    DeployOptions,
    HelmInstaller,
    Remover,
    ShellActionRunner,
    parse_set_variables,
)
from .shared.logging import configure_logging
from .transport import CraneImageTransport, GitCLITransport


def _split_names(value: str | None) -> list[str] | None:
    if not value:
        return None
    return [name.strip() for name in value.split(",") if name.strip()]


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def build_deployer(cluster: KubernetesClient, config: DeployConfig, kubeconfig: str | None) -> Deployer:
    """Wire the orchestrator to the crane, git, helm and kubectl adapters."""
    installer = ComponentInstaller(
        config,
        images=CraneImageTransport(),
        git=GitCLITransport(),
        charts=HelmInstaller(cluster, kubeconfig=kubeconfig),
        actions=ShellActionRunner(),
        data_injector=DataInjector(
            cluster, KubectlExec(kubeconfig), interval_seconds=config.poll_interval_seconds
        ),
    )
    return Deployer(cluster, config, installer, cli_version=__version__)


def build_remover(cluster: KubernetesClient, kubeconfig: str | None) -> Remover:
    return Remover(cluster, HelmInstaller(cluster, kubeconfig=kubeconfig), ShellActionRunner())


def _connect(ctx: click.Context) -> KubernetesClient:
    return KubernetesClient(context=ctx.obj["kube_context"], kubeconfig=ctx.obj["kubeconfig"])


@click.group()
@click.option("-c", "--config", "config_path", type=click.Path(), help="Config file path")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"]),
    default=None,
    help="Log level (default: from config, else info)",
)
@click.option("--log-format", type=click.Choice(["console", "json"]), default="console", help="Log format")
@click.option("--log-file", type=click.Path(), default=None, help="Write logs to a file instead of stderr")
@click.option("--kubeconfig", default=None, help="Kubeconfig path")
@click.option("--context", "kube_context", default=None, help="Kubeconfig context")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: str | None,
    log_level: str | None,
    log_format: str,
    log_file: str | None,
    kubeconfig: str | None,
    kube_context: str | None,
    json_output: bool,
) -> None:
    """Deploy air-gapped packages into Kubernetes clusters."""
    ctx.ensure_object(dict)
    config = load_config(Path(config_path) if config_path else None)
    configure_logging(
        level=log_level or config.log_level,
        log_file=log_file,
        json_output=log_format == "json",
    )
    ctx.obj["config"] = config
    ctx.obj["kubeconfig"] = kubeconfig
    ctx.obj["kube_context"] = kube_context
    ctx.obj["json_output"] = json_output


@cli.command()
def version() -> None:
    """Show version information."""
    click.echo(f"zarf-core version {__version__}")


@cli.group()
def package() -> None:
    """Deploy, remove and list packages."""


@package.command()
@click.argument("path", type=click.Path(exists=True))
@click.option("--components", default=None, help="Comma-separated components to deploy")
@click.option("--set", "set_variables", multiple=True, help="Deploy variable (KEY=VALUE)")
@click.option("--architecture", default="", help="Override the package architecture")
@click.option("--storage-class", default="", help="Storage class for init packages")
@click.option("--registry-url", default="", help="External registry address (init only)")
@click.option("--registry-push-username", default="", help="External registry push user")
@click.option("--registry-push-password", default="", help="External registry push password")
@click.option("--git-url", default="", help="External git server address (init only)")
@click.option("--git-push-username", default="", help="External git push user")
@click.option("--git-push-password", default="", help="External git push password")
@click.pass_context
def deploy(
    ctx: click.Context,
    path: str,
    components: str | None,
    set_variables: tuple[str, ...],
    architecture: str,
    storage_class: str,
    registry_url: str,
    registry_push_username: str,
    registry_push_password: str,
    git_url: str,
    git_push_username: str,
    git_push_password: str,
) -> None:
    """Deploy a package from a directory or archive.

    Examples:

        # Initialize a cluster
        zarf-core package deploy ./zarf-init-amd64.tar.gz

        # Deploy selected components with a variable
        zarf-core package deploy ./pkg --components web,db --set DOMAIN=example.com
    """
    from .formatters import print_connect_strings, print_deployed_components

    try:
        options = DeployOptions(
            package_path=path,
            components=_split_names(components),
            set_variables=parse_set_variables(set_variables),
            architecture=architecture,
            storage_class=storage_class,
            registry_info=RegistryInfo(
                address=registry_url,
                push_username=registry_push_username,
                push_password=registry_push_password,
            ),
            git_server=GitServerInfo(
                address=git_url,
                push_username=git_push_username,
                push_password=git_push_password,
            ),
        )
        deployer = build_deployer(_connect(ctx), ctx.obj["config"], ctx.obj["kubeconfig"])
        result = deployer.deploy(options)
    except DeployError as e:
        if e.deployed_components:
            click.echo(f"Deployed before the failure: {', '.join(c.name for c in e.deployed_components)}", err=True)
        _fail(e.message)
        return
    except ZarfError as e:
        _fail(e.message)
        return

    if ctx.obj["json_output"]:
        click.echo(
            json.dumps(
                {
                    "package": result.package,
                    "generation": result.generation,
                    "deployedComponents": [c.to_dict() for c in result.deployed_components],
                    "connectStrings": {k: v.to_dict() for k, v in result.connect_strings.items()},
                },
                indent=2,
            )
        )
    else:
        print_deployed_components(result.package, result.deployed_components)
        print_connect_strings(result.connect_strings)


@package.command()
@click.argument("name")
@click.option("--components", default=None, help="Comma-separated components to remove")
@click.pass_context
def remove(ctx: click.Context, name: str, components: str | None) -> None:
    """Remove a deployed package, or some of its components."""
    try:
        remover = build_remover(_connect(ctx), ctx.obj["kubeconfig"])
        remaining = remover.remove(name, _split_names(components))
    except ZarfError as e:
        _fail(e.message)
        return

    if remaining is None:
        click.echo(f"Removed package {name}")
    else:
        click.echo(f"Removed components from {name}; remaining: {', '.join(c.name for c in remaining.deployed_components)}")


@package.command(name="list")
@click.pass_context
def list_packages(ctx: click.Context) -> None:
    """List deployed packages."""
    from .formatters import print_package_list

    try:
        records = RecordStore(_connect(ctx)).list_packages()
    except ZarfError as e:
        _fail(e.message)
        return

    if ctx.obj["json_output"]:
        click.echo(
            json.dumps(
                [
                    {
                        "name": r.name,
                        "version": r.data.metadata.version,
                        "generation": r.generation,
                        "components": [c.name for c in r.deployed_components],
                    }
                    for r in records
                ],
                indent=2,
            )
        )
    else:
        print_package_list(records)


@cli.group()
def state() -> None:
    """Inspect the cluster state."""


@state.command()
@click.pass_context
def show(ctx: click.Context) -> None:
    """Show the cluster state with credentials masked."""
    from .formatters import print_state_yaml

    try:
        data = sanitize(StateStore(_connect(ctx)).load())
    except ZarfError as e:
        _fail(e.message)
        return

    if ctx.obj["json_output"]:
        click.echo(json.dumps(data, indent=2))
    else:
        print_state_yaml(data)


def main() -> None:
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
