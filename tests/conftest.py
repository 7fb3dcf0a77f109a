"""Shared test fixtures for zarf-core tests.

This module provides an in-memory control plane for testing the deploy core:
- FakeCluster: implements ControlPlaneClient over plain dicts
- make_node / make_pod: build Kubernetes-shaped objects
- Recording adapters for images, git, charts and actions
- write_package: lay out an unpacked package on disk
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest
import yaml

from zarf_core.errors import ActionError, ChartError, TransportError
from zarf_core.packager.charts import ChartInstall
from zarf_core.transport.images import RegistryTarget
from zarf_core.types import ConnectString, InstalledChart

# =============================================================================
# Kubernetes object builders
# =============================================================================


def make_node(
    name: str,
    arch: str = "amd64",
    ready: bool = True,
    taints: list[dict[str, str]] | None = None,
    provider_id: str = "",
    labels: dict[str, str] | None = None,
) -> dict[str, Any]:
    return {
        "metadata": {"name": name, "labels": labels or {}},
        "spec": {"providerID": provider_id, "taints": taints or []},
        "status": {
            "nodeInfo": {"architecture": arch},
            "conditions": [{"type": "Ready", "status": "True" if ready else "False"}],
        },
    }


def make_pod(
    name: str,
    namespace: str = "default",
    node: str = "node-1",
    images: list[str] | None = None,
    phase: str = "Running",
    labels: dict[str, str] | None = None,
    init_images: list[str] | None = None,
) -> dict[str, Any]:
    return {
        "metadata": {"name": name, "namespace": namespace, "labels": labels or {}},
        "spec": {
            "nodeName": node,
            "initContainers": [{"name": f"init-{i}", "image": img} for i, img in enumerate(init_images or [])],
            "containers": [{"name": f"c-{i}", "image": img} for i, img in enumerate(images or [])],
        },
        "status": {"phase": phase},
    }


def _matches(labels: dict[str, str], selector: str | None) -> bool:
    if not selector:
        return True
    for term in selector.split(","):
        term = term.strip()
        if "=" in term:
            key, value = term.split("=", 1)
            if labels.get(key) != value:
                return False
        elif term not in labels:
            return False
    return True


def _labels(obj: dict[str, Any]) -> dict[str, str]:
    return (obj.get("metadata") or {}).get("labels") or {}


# =============================================================================
# Package layouts
# =============================================================================


def write_package(root: Path, descriptor: dict[str, Any], files: dict[str, bytes | str] | None = None) -> Path:
    """Write zarf.yaml plus package resources (relative path -> content) under root."""
    root.mkdir(parents=True, exist_ok=True)
    (root / "zarf.yaml").write_text(yaml.safe_dump(descriptor, sort_keys=False))
    for relative, content in (files or {}).items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content)
    return root


# =============================================================================
# FakeCluster - in-memory ControlPlaneClient
# =============================================================================


class FakeCluster:
    """In-memory control plane that records every mutating call."""

    def __init__(
        self,
        nodes: list[dict[str, Any]] | None = None,
        pods: list[dict[str, Any]] | None = None,
        namespaces: list[str] | None = None,
    ):
        self.nodes = list(nodes if nodes is not None else [make_node("node-1")])
        self.namespaces: dict[str, dict[str, Any]] = {
            name: {"metadata": {"name": name, "labels": {}}} for name in (namespaces or ["default", "kube-system"])
        }
        self.pods: dict[tuple[str, str], dict[str, Any]] = {}
        for pod in pods if pods is not None else [make_pod("coredns", "kube-system", images=["coredns:1.11"])]:
            meta = pod["metadata"]
            self.pods[(meta.get("namespace", "default"), meta["name"])] = pod
        self.configmaps: dict[tuple[str, str], dict[str, Any]] = {}
        self.services: dict[tuple[str, str], dict[str, Any]] = {}
        self.secrets: dict[tuple[str, str], dict[str, Any]] = {}
        self.calls: list[tuple[str, str]] = []
        self.next_node_port = 32000
        self.max_injection_pods = 0

    # Namespaces

    def get_namespace(self, name):
        return copy.deepcopy(self.namespaces.get(name))

    def list_namespaces(self):
        return [copy.deepcopy(ns) for ns in self.namespaces.values()]

    def create_namespace(self, name, labels=None):
        self.calls.append(("create_namespace", name))
        self.namespaces[name] = {"metadata": {"name": name, "labels": dict(labels or {})}}
        return copy.deepcopy(self.namespaces[name])

    def label_namespace(self, name, labels):
        self.calls.append(("label_namespace", name))
        self.namespaces[name]["metadata"]["labels"].update(labels)

    # Nodes and pods

    def list_nodes(self):
        return copy.deepcopy(self.nodes)

    def list_pods(self, namespace=None, label_selector=None):
        return [
            copy.deepcopy(pod)
            for (ns, _), pod in self.pods.items()
            if (namespace is None or ns == namespace) and _matches(_labels(pod), label_selector)
        ]

    def get_pod(self, namespace, name):
        return copy.deepcopy(self.pods.get((namespace, name)))

    def create_pod(self, namespace, body):
        name = body["metadata"]["name"]
        self.calls.append(("create_pod", name))
        pod = copy.deepcopy(body)
        pod.setdefault("status", {"phase": "Pending"})
        self.pods[(namespace, name)] = pod
        injection_pods = len(self.list_pods(label_selector="app=zarf-injector"))
        self.max_injection_pods = max(self.max_injection_pods, injection_pods)
        return copy.deepcopy(pod)

    def delete_pod(self, namespace, name):
        self.calls.append(("delete_pod", name))
        self.pods.pop((namespace, name), None)

    # Config maps

    def create_configmap(self, namespace, body):
        name = body["metadata"]["name"]
        self.calls.append(("create_configmap", name))
        self.configmaps[(namespace, name)] = copy.deepcopy(body)
        return copy.deepcopy(body)

    def delete_configmap(self, namespace, name):
        self.calls.append(("delete_configmap", name))
        self.configmaps.pop((namespace, name), None)

    def delete_configmaps(self, namespace, label_selector):
        self.calls.append(("delete_configmaps", label_selector))
        for key in [k for k, cm in self.configmaps.items() if k[0] == namespace and _matches(_labels(cm), label_selector)]:
            del self.configmaps[key]

    # Services

    def create_service(self, namespace, body):
        name = body["metadata"]["name"]
        self.calls.append(("create_service", name))
        service = copy.deepcopy(body)
        for port in service.get("spec", {}).get("ports", []):
            port.setdefault("nodePort", self.next_node_port)
        self.services[(namespace, name)] = service
        return copy.deepcopy(service)

    def delete_service(self, namespace, name):
        self.calls.append(("delete_service", name))
        self.services.pop((namespace, name), None)

    def list_services(self, namespace=None, label_selector=None):
        return [
            copy.deepcopy(svc)
            for (ns, _), svc in self.services.items()
            if (namespace is None or ns == namespace) and _matches(_labels(svc), label_selector)
        ]

    # Secrets

    def get_secret(self, namespace, name):
        return copy.deepcopy(self.secrets.get((namespace, name)))

    def list_secrets(self, namespace, label_selector=None):
        return [
            copy.deepcopy(secret)
            for (ns, _), secret in self.secrets.items()
            if ns == namespace and _matches(_labels(secret), label_selector)
        ]

    def apply_secret(self, namespace, body):
        self.calls.append(("apply_secret", body["metadata"]["name"]))
        self.secrets[(namespace, body["metadata"]["name"])] = copy.deepcopy(body)
        return copy.deepcopy(body)

    def delete_secret(self, namespace, name):
        self.calls.append(("delete_secret", name))
        self.secrets.pop((namespace, name), None)


# =============================================================================
# Recording adapters
# =============================================================================


@dataclass
class RecordingImages:
    """ImageTransport that records pushes and can fail on chosen images."""

    failing: set[str] = field(default_factory=set)
    pushes: list[tuple[list[str], str, bool]] = field(default_factory=list)

    def pull(self, references, dest_dir):
        return dest_dir

    def push(self, images_dir, references, registry: RegistryTarget, rewrite_host=True, checksum=True):
        self.pushes.append((list(references), registry.address, checksum))
        for ref in references:
            if ref in self.failing:
                raise TransportError(f"unable to push {ref}")
        return list(references)


@dataclass
class RecordingGit:
    pushes: list[tuple[Path, str, str]] = field(default_factory=list)

    def push(self, repo_dir, source_url, target):
        self.pushes.append((repo_dir, source_url, target.address))
        return source_url


@dataclass
class RecordingCharts:
    """ChartInstaller that records installs and uninstalls."""

    installs: list[ChartInstall] = field(default_factory=list)
    uninstalls: list[InstalledChart] = field(default_factory=list)
    connect_strings: dict[str, ConnectString] = field(default_factory=dict)
    failing_uninstall: set[str] = field(default_factory=set)
    # Rendered values and templates, captured before the run's temp dir is removed
    rendered: list[dict[str, str]] = field(default_factory=list)

    def install(self, request):
        self.installs.append(request)
        files = list(request.values_files)
        templates = Path(request.chart_path) / "templates"
        if templates.is_dir():
            files.extend(sorted(templates.iterdir()))
        self.rendered.append({p.name: p.read_text() for p in files if p.is_file()})
        return InstalledChart(namespace=request.namespace, chart_name=request.release), dict(self.connect_strings)

    def uninstall(self, chart):
        if chart.chart_name in self.failing_uninstall:
            raise ChartError(f"unable to uninstall {chart.chart_name}")
        self.uninstalls.append(chart)


@dataclass
class RecordingActions:
    """ActionRunner that records every command it is asked to run."""

    ran: list[tuple[str, str]] = field(default_factory=list)
    failing: set[str] = field(default_factory=set)

    def run(self, actions, defaults, context):
        for action in actions:
            self.ran.append((context.component, action.cmd))
            if action.cmd in self.failing:
                raise ActionError(f"action {action.cmd!r} failed")


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def cluster() -> FakeCluster:
    """A healthy single-node amd64 cluster with one running pod."""
    return FakeCluster()


@pytest.fixture
def no_sleep():
    """Sleep replacement that records requested delays."""
    delays: list[float] = []

    def sleep(seconds: float) -> None:
        delays.append(seconds)

    sleep.delays = delays
    return sleep
