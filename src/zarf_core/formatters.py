"""CLI output formatting helpers."""

from typing import Any

import click
import yaml

from .types import ConnectString, DeployedComponent, DeployedPackage


def print_state_yaml(data: dict[str, Any]) -> None:
    """Print a (sanitized) cluster state as YAML.

    Args:
        data: State dict with credentials already masked
    """
    click.echo(yaml.dump(data, default_flow_style=False, sort_keys=False))


def print_deployed_components(package: str, components: list[DeployedComponent]) -> None:
    """Print the components a deploy installed.

    Args:
        package: Package name
        components: Deployed components in install order
    """
    click.echo(f"Deployed {package}:")
    for component in components:
        charts = ", ".join(f"{c.namespace}/{c.chart_name}" for c in component.installed_charts)
        click.echo(f"  ✓ {component.name}" + (f" (charts: {charts})" if charts else ""))


def print_connect_strings(connect_strings: dict[str, ConnectString]) -> None:
    """Print connect strings advertised by installed charts."""
    if not connect_strings:
        return
    click.echo("\nConnect commands:")
    for name, connect in sorted(connect_strings.items()):
        desc = f": {connect.description}" if connect.description else ""
        click.echo(f"  - {name}{desc}")
        if connect.url:
            click.echo(f"      {connect.url}")


def print_package_list(records: list[DeployedPackage]) -> None:
    """Print deployed packages and their components.

    Args:
        records: Deployment records sorted by name
    """
    if not records:
        click.echo("No deployed packages found")
        return

    click.echo(f"{'Package':<30} {'Version':<12} {'Gen':<5} Components")
    for record in records:
        components = ", ".join(c.name for c in record.deployed_components)
        version = record.data.metadata.version or "-"
        click.echo(f"{record.name:<30} {version:<12} {record.generation:<5} {components}")
