"""Package and deployment data model.

Descriptor types mirror the keys of ``zarf.yaml``; record types mirror the
JSON stored in the package deployment secret. Both use camelCase on the wire.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

INIT_PACKAGE_KIND = "ZarfInitConfig"
STANDARD_PACKAGE_KIND = "ZarfPackageConfig"


class PackageKind(Enum):
    """Kinds of package descriptor."""

    INIT = INIT_PACKAGE_KIND
    STANDARD = STANDARD_PACKAGE_KIND


@dataclass
class Action:
    """One command run before or after a component step."""

    cmd: str
    dir: str | None = None
    env: list[str] = field(default_factory=list)
    max_retries: int | None = None
    max_total_seconds: int | None = None
    mute: bool | None = None
    description: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Action:
        return cls(
            cmd=data.get("cmd", ""),
            dir=data.get("dir"),
            env=list(data.get("env") or []),
            max_retries=data.get("maxRetries"),
            max_total_seconds=data.get("maxTotalSeconds"),
            mute=data.get("mute"),
            description=data.get("description", ""),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"cmd": self.cmd}
        if self.dir is not None:
            out["dir"] = self.dir
        if self.env:
            out["env"] = list(self.env)
        if self.max_retries is not None:
            out["maxRetries"] = self.max_retries
        if self.max_total_seconds is not None:
            out["maxTotalSeconds"] = self.max_total_seconds
        if self.mute is not None:
            out["mute"] = self.mute
        if self.description:
            out["description"] = self.description
        return out


@dataclass
class ActionDefaults:
    """Values applied to every action in a set unless the action overrides them."""

    dir: str | None = None
    env: list[str] = field(default_factory=list)
    max_retries: int = 0
    max_total_seconds: int = 0
    mute: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ActionDefaults:
        data = data or {}
        return cls(
            dir=data.get("dir"),
            env=list(data.get("env") or []),
            max_retries=int(data.get("maxRetries", 0)),
            max_total_seconds=int(data.get("maxTotalSeconds", 0)),
            mute=bool(data.get("mute", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "dir": self.dir,
            "env": list(self.env),
            "maxRetries": self.max_retries,
            "maxTotalSeconds": self.max_total_seconds,
            "mute": self.mute,
        }


@dataclass
class ActionSet:
    """Action lists for one lifecycle (deploy or remove)."""

    defaults: ActionDefaults = field(default_factory=ActionDefaults)
    before: list[Action] = field(default_factory=list)
    after: list[Action] = field(default_factory=list)
    on_success: list[Action] = field(default_factory=list)
    on_failure: list[Action] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ActionSet:
        data = data or {}
        return cls(
            defaults=ActionDefaults.from_dict(data.get("defaults")),
            before=[Action.from_dict(a) for a in data.get("before") or []],
            after=[Action.from_dict(a) for a in data.get("after") or []],
            on_success=[Action.from_dict(a) for a in data.get("onSuccess") or []],
            on_failure=[Action.from_dict(a) for a in data.get("onFailure") or []],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "defaults": self.defaults.to_dict(),
            "before": [a.to_dict() for a in self.before],
            "after": [a.to_dict() for a in self.after],
            "onSuccess": [a.to_dict() for a in self.on_success],
            "onFailure": [a.to_dict() for a in self.on_failure],
        }


@dataclass
class ComponentActions:
    """Deploy-time and remove-time action sets."""

    on_deploy: ActionSet = field(default_factory=ActionSet)
    on_remove: ActionSet = field(default_factory=ActionSet)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ComponentActions:
        data = data or {}
        return cls(
            on_deploy=ActionSet.from_dict(data.get("onDeploy")),
            on_remove=ActionSet.from_dict(data.get("onRemove")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"onDeploy": self.on_deploy.to_dict(), "onRemove": self.on_remove.to_dict()}


@dataclass
class FileSpec:
    """A file (or directory) copied onto the deploying host."""

    source: str
    target: str
    shasum: str = ""
    executable: bool = False
    symlinks: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FileSpec:
        return cls(
            source=data.get("source", ""),
            target=data.get("target", ""),
            shasum=data.get("shasum", ""),
            executable=bool(data.get("executable", False)),
            symlinks=list(data.get("symlinks") or []),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "target": self.target,
            "shasum": self.shasum,
            "executable": self.executable,
            "symlinks": list(self.symlinks),
        }


@dataclass
class ChartSpec:
    """A Helm chart shipped inside a component."""

    name: str
    namespace: str = "default"
    release_name: str = ""
    version: str = ""
    values_files: list[str] = field(default_factory=list)
    no_wait: bool = False

    @property
    def release(self) -> str:
        return self.release_name or self.name

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChartSpec:
        return cls(
            name=data["name"],
            namespace=data.get("namespace") or "default",
            release_name=data.get("releaseName", ""),
            version=data.get("version", ""),
            values_files=list(data.get("valuesFiles") or []),
            no_wait=bool(data.get("noWait", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "namespace": self.namespace,
            "releaseName": self.release_name,
            "version": self.version,
            "valuesFiles": list(self.values_files),
            "noWait": self.no_wait,
        }


@dataclass
class ManifestSpec:
    """A set of raw Kubernetes manifests shipped inside a component."""

    name: str
    namespace: str = "default"
    files: list[str] = field(default_factory=list)
    no_wait: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ManifestSpec:
        return cls(
            name=data["name"],
            namespace=data.get("namespace") or "default",
            files=list(data.get("files") or []),
            no_wait=bool(data.get("noWait", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "namespace": self.namespace,
            "files": list(self.files),
            "noWait": self.no_wait,
        }


@dataclass
class DataInjectionTarget:
    """Where a data injection lands."""

    namespace: str
    selector: str
    container: str
    path: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DataInjectionTarget:
        return cls(
            namespace=data["namespace"],
            selector=data["selector"],
            container=data["container"],
            path=data["path"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "namespace": self.namespace,
            "selector": self.selector,
            "container": self.container,
            "path": self.path,
        }


@dataclass
class DataInjection:
    """Data copied into a running pod once it schedules."""

    source: str
    target: DataInjectionTarget
    compress: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DataInjection:
        return cls(
            source=data["source"],
            target=DataInjectionTarget.from_dict(data["target"]),
            compress=bool(data.get("compress", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"source": self.source, "target": self.target.to_dict(), "compress": self.compress}


@dataclass
class Component:
    """A named, independently installable unit of a package."""

    name: str
    description: str = ""
    required: bool = False
    images: list[str] = field(default_factory=list)
    repos: list[str] = field(default_factory=list)
    charts: list[ChartSpec] = field(default_factory=list)
    manifests: list[ManifestSpec] = field(default_factory=list)
    files: list[FileSpec] = field(default_factory=list)
    data_injections: list[DataInjection] = field(default_factory=list)
    actions: ComponentActions = field(default_factory=ComponentActions)

    @property
    def requires_cluster(self) -> bool:
        return bool(
            self.images or self.repos or self.charts or self.manifests or self.data_injections
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Component:
        return cls(
            name=data["name"],
            description=data.get("description", ""),
            required=bool(data.get("required", False)),
            images=list(data.get("images") or []),
            repos=list(data.get("repos") or []),
            charts=[ChartSpec.from_dict(c) for c in data.get("charts") or []],
            manifests=[ManifestSpec.from_dict(m) for m in data.get("manifests") or []],
            files=[FileSpec.from_dict(f) for f in data.get("files") or []],
            data_injections=[DataInjection.from_dict(d) for d in data.get("dataInjections") or []],
            actions=ComponentActions.from_dict(data.get("actions")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "required": self.required,
            "images": list(self.images),
            "repos": list(self.repos),
            "charts": [c.to_dict() for c in self.charts],
            "manifests": [m.to_dict() for m in self.manifests],
            "files": [f.to_dict() for f in self.files],
            "dataInjections": [d.to_dict() for d in self.data_injections],
            "actions": self.actions.to_dict(),
        }


@dataclass
class Variable:
    """A deploy-time variable substituted into files and values."""

    name: str
    default: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Variable:
        return cls(name=data["name"], default=str(data.get("default", "")))

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "default": self.default}


@dataclass
class PackageMetadata:
    """Descriptive data about a package."""

    name: str
    description: str = ""
    version: str = ""
    architecture: str = ""
    yolo: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PackageMetadata:
        return cls(
            name=data["name"],
            description=data.get("description", ""),
            version=str(data.get("version", "")),
            architecture=data.get("architecture", ""),
            yolo=bool(data.get("yolo", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "architecture": self.architecture,
            "yolo": self.yolo,
        }


@dataclass
class Package:
    """An ordered list of components plus metadata. Read-only to the orchestrator."""

    kind: PackageKind
    metadata: PackageMetadata
    components: list[Component] = field(default_factory=list)
    variables: list[Variable] = field(default_factory=list)
    build_architecture: str = ""

    @property
    def is_init(self) -> bool:
        return self.kind == PackageKind.INIT

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def architecture(self) -> str:
        return self.metadata.architecture or self.build_architecture

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Package:
        build = data.get("build") or {}
        return cls(
            kind=PackageKind(data.get("kind", STANDARD_PACKAGE_KIND)),
            metadata=PackageMetadata.from_dict(data.get("metadata") or {}),
            components=[Component.from_dict(c) for c in data.get("components") or []],
            variables=[Variable.from_dict(v) for v in data.get("variables") or []],
            build_architecture=build.get("architecture", ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "metadata": self.metadata.to_dict(),
            "build": {"architecture": self.build_architecture},
            "components": [c.to_dict() for c in self.components],
            "variables": [v.to_dict() for v in self.variables],
        }


@dataclass
class InstalledChart:
    """A Helm release created by a component."""

    namespace: str
    chart_name: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InstalledChart:
        return cls(namespace=data["namespace"], chart_name=data["chartName"])

    def to_dict(self) -> dict[str, Any]:
        return {"namespace": self.namespace, "chartName": self.chart_name}


@dataclass
class DeployedComponent:
    """Persisted evidence that a component completed installation."""

    name: str
    installed_charts: list[InstalledChart] = field(default_factory=list)
    observed_generation: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeployedComponent:
        return cls(
            name=data["name"],
            installed_charts=[InstalledChart.from_dict(c) for c in data.get("installedCharts") or []],
            observed_generation=int(data.get("observedGeneration", 0)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "installedCharts": [c.to_dict() for c in self.installed_charts],
            "observedGeneration": self.observed_generation,
        }


@dataclass
class ConnectString:
    """A named way to reach something a chart exposed."""

    description: str = ""
    url: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConnectString:
        return cls(description=data.get("description", ""), url=data.get("url", ""))

    def to_dict(self) -> dict[str, Any]:
        return {"description": self.description, "url": self.url}


@dataclass
class DeployedPackage:
    """The per-package deployment record."""

    name: str
    data: Package
    deployed_components: list[DeployedComponent] = field(default_factory=list)
    connect_strings: dict[str, ConnectString] = field(default_factory=dict)
    generation: int = 1
    cli_version: str = ""

    def component(self, name: str) -> DeployedComponent | None:
        for deployed in self.deployed_components:
            if deployed.name == name:
                return deployed
        return None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeployedPackage:
        return cls(
            name=data["name"],
            data=Package.from_dict(data.get("data") or {}),
            deployed_components=[
                DeployedComponent.from_dict(c) for c in data.get("deployedComponents") or []
            ],
            connect_strings={
                k: ConnectString.from_dict(v) for k, v in (data.get("connectStrings") or {}).items()
            },
            generation=int(data.get("generation", 1)),
            cli_version=data.get("cliVersion", ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "data": self.data.to_dict(),
            "deployedComponents": [c.to_dict() for c in self.deployed_components],
            "connectStrings": {k: v.to_dict() for k, v in self.connect_strings.items()},
            "generation": self.generation,
            "cliVersion": self.cli_version,
        }
