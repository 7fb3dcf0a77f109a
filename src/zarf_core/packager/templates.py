"""Deploy-time template values.

Values files, manifests and file targets may contain ``###ZARF_...###``
placeholders that are filled in from cluster state and deploy variables.
"""

from __future__ import annotations

import re
import shutil
from pathlib import Path

from ..cluster.state import ClusterState
from ..errors import PackageError
from ..types import Package

_PLACEHOLDER = re.compile(r"###ZARF_[A-Z0-9_]+###")


def placeholder(name: str) -> str:
    return f"###ZARF_{name}###"


def parse_set_variables(pairs: list[str] | tuple[str, ...]) -> dict[str, str]:
    """Parse ``KEY=VALUE`` pairs; keys are upper-cased.

    Raises:
        PackageError: If a pair has no ``=``.
    """
    out: dict[str, str] = {}
    for pair in pairs:
        if "=" not in pair:
            raise PackageError(f"invalid variable {pair!r}, expected KEY=VALUE")
        key, value = pair.split("=", 1)
        out[key.strip().upper()] = value
    return out


class TemplateValues:
    """Placeholder-to-value mapping for one deploy run."""

    def __init__(self, values: dict[str, str] | None = None):
        self.values = dict(values or {})

    @classmethod
    def for_deploy(
        cls,
        package: Package,
        state: ClusterState,
        set_variables: dict[str, str],
        marker: str,
    ) -> TemplateValues:
        values = {
            placeholder("REGISTRY"): state.registry_info.address,
            placeholder("NODEPORT"): str(state.registry_info.node_port),
            placeholder("STORAGE_CLASS"): state.storage_class,
            placeholder("GIT_PUSH"): state.git_server.push_username,
            placeholder("GIT_PULL"): state.git_server.pull_username,
            placeholder("GIT_SERVER"): state.git_server.address,
            placeholder("DATA_INJECTION_MARKER"): marker,
        }
        for variable in package.variables:
            values[placeholder(f"VAR_{variable.name}")] = set_variables.get(variable.name, variable.default)
        for name, value in set_variables.items():
            values.setdefault(placeholder(f"VAR_{name}"), value)
        return cls(values)

    def apply(self, text: str) -> str:
        """Replace every known placeholder; unknown ones are left untouched."""
        return _PLACEHOLDER.sub(lambda m: self.values.get(m.group(0), m.group(0)), text)

    def apply_file(self, path: Path) -> None:
        """Template a text file in place; binary files are skipped."""
        try:
            text = path.read_text()
        except FileNotFoundError as e:
            raise PackageError(f"{path.name} is missing from the package") from e
        except UnicodeDecodeError:
            return
        templated = self.apply(text)
        if templated != text:
            path.write_text(templated)

    def apply_copy(self, source: Path, dest_dir: Path) -> Path:
        """Copy a package file into ``dest_dir`` and template the copy.

        The package itself is never modified, so a redeploy starts from the
        original placeholders.

        Returns:
            Path of the templated copy

        Raises:
            PackageError: If ``source`` is missing.
        """
        if not source.is_file():
            raise PackageError(f"{source.name} is missing from the package")
        dest_dir.mkdir(parents=True, exist_ok=True)
        target = dest_dir / source.name
        shutil.copyfile(source, target)
        self.apply_file(target)
        return target
