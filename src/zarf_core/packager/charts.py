"""Helm chart and manifest installation.

Raw manifests are wrapped into a generated chart so every installed resource
is owned by a Helm release, which keeps removal uniform.
"""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import yaml

from ..cluster.client import ControlPlaneClient
from ..errors import ChartError, PackageError
from ..shared.logging import get_logger
from ..types import ConnectString, InstalledChart

log = get_logger(__name__)

CONNECT_NAME_LABEL = "zarf.dev/connect-name"
CONNECT_DESCRIPTION_ANNOTATION = "zarf.dev/connect-description"
CONNECT_URL_ANNOTATION = "zarf.dev/connect-url"
RELEASE_NAME_ANNOTATION = "meta.helm.sh/release-name"

MAX_RELEASE_NAME_LENGTH = 53


def manifest_chart_name(package_name: str, component_name: str, manifest_name: str) -> str:
    name = f"{package_name}-{component_name}-{manifest_name}"
    return name[:MAX_RELEASE_NAME_LENGTH].rstrip("-")


def write_manifest_chart(chart_name: str, manifest_files: list[Path], dest: Path) -> Path:
    """Generate a minimal chart whose templates are the given manifests.

    Returns:
        Path to the chart directory
    """
    chart_dir = dest / chart_name
    templates = chart_dir / "templates"
    templates.mkdir(parents=True, exist_ok=True)

    with open(chart_dir / "Chart.yaml", "w") as f:
        yaml.dump(
            {
                "apiVersion": "v2",
                "name": chart_name,
                "version": "0.1.0",
                "description": "Generated from raw manifests",
            },
            f,
            default_flow_style=False,
            sort_keys=False,
        )

    for index, manifest in enumerate(manifest_files):
        if not manifest.is_file():
            raise PackageError(f"{manifest.name} is missing from the package")
        shutil.copy2(manifest, templates / f"{index:03d}-{manifest.name}")

    return chart_dir


@dataclass
class ChartInstall:
    """Everything needed for one ``helm upgrade --install``."""

    release: str
    chart_path: Path
    namespace: str
    values_files: list[Path]
    wait: bool = True
    timeout_seconds: int = 900


class ChartInstaller(Protocol):
    """Installs and uninstalls Helm releases."""

    def install(self, request: ChartInstall) -> tuple[InstalledChart, dict[str, ConnectString]]: ...

    def uninstall(self, chart: InstalledChart) -> None: ...


class HelmInstaller:
    """ChartInstaller that shells out to ``helm``."""

    def __init__(
        self,
        cluster: ControlPlaneClient | None = None,
        kubeconfig: str | None = None,
        binary: str = "helm",
    ):
        """Initialize installer.

        Args:
            cluster: Used to discover connect strings after an install.
            kubeconfig: Path to kubeconfig file.
            binary: helm executable.
        """
        self.cluster = cluster
        self.kubeconfig = kubeconfig
        self.binary = binary

    def _helm_cmd(self) -> list[str]:
        """Build base helm command."""
        cmd = [self.binary]
        if self.kubeconfig:
            cmd.extend(["--kubeconfig", self.kubeconfig])
        return cmd

    def _run(self, args: list[str]) -> tuple[bool, str]:
        """Run helm.

        Returns:
            Tuple of (success, message).
        """
        try:
            result = subprocess.run(self._helm_cmd() + args, capture_output=True, text=True)
        except FileNotFoundError:
            return False, "helm not found. Is helm installed?"
        if result.returncode != 0:
            return False, result.stderr.strip()
        return True, result.stdout.strip()

    def install(self, request: ChartInstall) -> tuple[InstalledChart, dict[str, ConnectString]]:
        """Install or upgrade a release.

        Returns:
            The installed chart record and any connect strings it exposes.

        Raises:
            ChartError: If helm fails.
        """
        args = [
            "upgrade",
            "--install",
            request.release,
            str(request.chart_path),
            "--namespace",
            request.namespace,
            "--create-namespace",
        ]
        for values in request.values_files:
            args.extend(["--values", str(values)])
        if request.wait:
            args.extend(["--wait", "--timeout", f"{request.timeout_seconds}s"])

        log.info("charts.install", release=request.release, namespace=request.namespace)
        ok, message = self._run(args)
        if not ok:
            raise ChartError(
                f"unable to install chart {request.release} in {request.namespace}: {message}",
                retryable=True,
            )

        return (
            InstalledChart(namespace=request.namespace, chart_name=request.release),
            self.connect_strings(request.namespace, request.release),
        )

    def uninstall(self, chart: InstalledChart) -> None:
        """Remove a release; a release that is already gone is not an error."""
        log.info("charts.uninstall", release=chart.chart_name, namespace=chart.namespace)
        ok, message = self._run(["uninstall", chart.chart_name, "--namespace", chart.namespace])
        if not ok and "not found" not in message:
            raise ChartError(f"unable to uninstall chart {chart.chart_name} from {chart.namespace}: {message}")

    def connect_strings(self, namespace: str, release: str) -> dict[str, ConnectString]:
        """Connect strings advertised by services the release created."""
        if self.cluster is None:
            return {}
        return find_connect_strings(self.cluster.list_services(namespace, label_selector=CONNECT_NAME_LABEL), release)


def find_connect_strings(services: list[dict], release: str) -> dict[str, ConnectString]:
    found = {}
    for service in services:
        metadata = service.get("metadata") or {}
        annotations = metadata.get("annotations") or {}
        if annotations.get(RELEASE_NAME_ANNOTATION) != release:
            continue
        name = (metadata.get("labels") or {}).get(CONNECT_NAME_LABEL)
        if name:
            found[name] = ConnectString(
                description=annotations.get(CONNECT_DESCRIPTION_ANNOTATION, ""),
                url=annotations.get(CONNECT_URL_ANNOTATION, ""),
            )
    return found
