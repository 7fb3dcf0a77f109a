"""Package archive and descriptor loading.

A package is either an unpacked directory or a ``.tar``/``.tar.gz`` archive
holding ``zarf.yaml`` plus the per-component resource tree:

    zarf.yaml
    images/<image tarballs>
    seed-images/<OCI layout of the seed registry image>   (init packages)
    components/<component>/{files,charts,values,manifests,repos,data}/...
"""

from __future__ import annotations

import re
import shutil
import tarfile
from dataclasses import dataclass
from pathlib import Path

import yaml

from .errors import PackageError
from .shared.logging import get_logger
from .shared.paths import make_temp_dir
from .types import Component, Package

log = get_logger(__name__)

DESCRIPTOR_NAME = "zarf.yaml"

_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9\-]*$")
_VARIABLE_PATTERN = re.compile(r"^[A-Z0-9_]+$")
MAX_CHART_NAME_LENGTH = 40


@dataclass
class ComponentPaths:
    """Resource directories of one component inside an unpacked package."""

    base: Path

    @property
    def files(self) -> Path:
        return self.base / "files"

    @property
    def charts(self) -> Path:
        return self.base / "charts"

    @property
    def values(self) -> Path:
        return self.base / "values"

    @property
    def manifests(self) -> Path:
        return self.base / "manifests"

    @property
    def repos(self) -> Path:
        return self.base / "repos"

    @property
    def data(self) -> Path:
        return self.base / "data"


@dataclass
class PackageLayout:
    """An unpacked package on disk plus its parsed descriptor."""

    root: Path
    package: Package
    cleanup_root: bool = False

    @property
    def images(self) -> Path:
        return self.root / "images"

    @property
    def seed_images(self) -> Path:
        return self.root / "seed-images"

    def component_paths(self, component: Component | str) -> ComponentPaths:
        name = component if isinstance(component, str) else component.name
        return ComponentPaths(self.root / "components" / name)

    def cleanup(self) -> None:
        """Remove the unpacked tree if this layout created it."""
        if self.cleanup_root:
            shutil.rmtree(self.root, ignore_errors=True)


def validate_package(package: Package) -> None:
    """Check the structural invariants of a parsed descriptor.

    Raises:
        PackageError: listing every violation found.
    """
    problems: list[str] = []

    if not package.metadata.name or not _NAME_PATTERN.match(package.metadata.name):
        problems.append(f"invalid package name {package.metadata.name!r}")
    if package.is_init and package.metadata.yolo:
        problems.append("init packages cannot be YOLO packages")

    seen: set[str] = set()
    for component in package.components:
        if not _NAME_PATTERN.match(component.name):
            problems.append(f"invalid component name {component.name!r}")
        if component.name in seen:
            problems.append(f"duplicate component name {component.name!r}")
        seen.add(component.name)

        if package.metadata.yolo and (component.images or component.repos):
            problems.append(f"component {component.name!r}: YOLO packages cannot carry images or repos")

        chart_names: set[str] = set()
        for chart in component.charts:
            if len(chart.name) > MAX_CHART_NAME_LENGTH:
                problems.append(f"chart {chart.name!r} exceeds {MAX_CHART_NAME_LENGTH} characters")
            if chart.name in chart_names:
                problems.append(f"component {component.name!r}: duplicate chart {chart.name!r}")
            chart_names.add(chart.name)

        for manifest in component.manifests:
            if not manifest.files:
                problems.append(f"manifest {manifest.name!r} lists no files")
            if len(manifest.name) > MAX_CHART_NAME_LENGTH:
                problems.append(f"manifest {manifest.name!r} exceeds {MAX_CHART_NAME_LENGTH} characters")

        for action_set in (component.actions.on_deploy, component.actions.on_remove):
            for action in [*action_set.before, *action_set.after, *action_set.on_success, *action_set.on_failure]:
                if not action.cmd:
                    problems.append(f"component {component.name!r}: action without a command")

    for variable in package.variables:
        if not _VARIABLE_PATTERN.match(variable.name):
            problems.append(f"invalid variable name {variable.name!r}")

    if problems:
        raise PackageError("invalid package: " + "; ".join(problems), data={"problems": problems})


def parse_descriptor(path: Path) -> Package:
    """Parse and validate a ``zarf.yaml`` descriptor."""
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise PackageError(f"unable to read {path}: {e}") from e

    try:
        package = Package.from_dict(raw)
    except (KeyError, ValueError, TypeError) as e:
        raise PackageError(f"malformed descriptor {path}: {e}") from e

    validate_package(package)
    return package


def _unpack_archive(archive: Path, temp_dir: str | None) -> Path:
    dest = make_temp_dir(temp_dir)
    try:
        with tarfile.open(archive) as tar:
            tar.extractall(dest, filter="data")
    except (OSError, tarfile.TarError) as e:
        shutil.rmtree(dest, ignore_errors=True)
        raise PackageError(f"unable to unpack {archive}: {e}") from e
    return dest


def load_package(path: str | Path, temp_dir: str | None = None) -> PackageLayout:
    """Open a package directory or unpack a package archive.

    Args:
        path: Package directory, or ``.tar``/``.tar.gz`` archive
        temp_dir: Base directory for unpacking archives

    Returns:
        PackageLayout whose descriptor has already been validated
    """
    source = Path(path).expanduser()
    if not source.exists():
        raise PackageError(f"package not found: {source}")

    if source.is_dir():
        root, owned = source, False
    else:
        root, owned = _unpack_archive(source, temp_dir), True
        log.debug("loader.unpacked", archive=str(source), root=str(root))

    descriptor = root / DESCRIPTOR_NAME
    if not descriptor.is_file():
        if owned:
            shutil.rmtree(root, ignore_errors=True)
        raise PackageError(f"{source} does not contain {DESCRIPTOR_NAME}")

    try:
        package = parse_descriptor(descriptor)
    except PackageError:
        if owned:
            shutil.rmtree(root, ignore_errors=True)
        raise

    return PackageLayout(root=root, package=package, cleanup_root=owned)
