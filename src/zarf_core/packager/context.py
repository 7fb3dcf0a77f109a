"""Run-scoped deploy context shared by the orchestrator and the component installer."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from pathlib import Path

from ..cluster.state import ClusterState
from ..loader import PackageLayout
from ..types import DeployedPackage, Package
from .templates import TemplateValues


@dataclass
class DeployContext:
    """State owned by one deploy run.

    Attributes:
        layout: The unpacked package being deployed
        state: Cluster state resolved for this run
        templates: Placeholder values for files, values and manifests
        variables: Deploy variables after ``--set`` overrides
        temp_dir: Scratch directory for generated charts and ``###ZARF_TEMP###``
        deploying_components: Names of the components selected for this run
        cancel: Set when the run aborts; ends outstanding data injection waits
        marker: Completion marker file name for data injections
        started: Wall-clock start of the run
        connected: Whether the cluster state has been resolved
        previous: The package record from an earlier deploy, if any
        generation: Generation number this run records
    """

    layout: PackageLayout
    state: ClusterState
    templates: TemplateValues
    variables: dict[str, str]
    temp_dir: Path
    deploying_components: list[str] = field(default_factory=list)
    cancel: threading.Event = field(default_factory=threading.Event)
    marker: str = ""
    started: float = field(default_factory=time.time)
    connected: bool = False
    previous: DeployedPackage | None = None
    generation: int = 1

    @property
    def package(self) -> Package:
        return self.layout.package
