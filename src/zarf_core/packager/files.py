"""Stages component files onto the deploying host."""

from __future__ import annotations

import hashlib
import os
import shutil
from pathlib import Path

from ..errors import PackageError
from ..shared.logging import get_logger
from ..types import FileSpec
from .templates import TemplateValues

log = get_logger(__name__)

TEMP_PLACEHOLDER = "###ZARF_TEMP###"


def sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(1024 * 1024), b""):
            digest.update(block)
    return digest.hexdigest()


def expand_target(target: str, temp_dir: Path, templates: TemplateValues | None = None) -> Path:
    """Resolve a file target, expanding the temp placeholder, variables and ``~``."""
    resolved = target.replace(TEMP_PLACEHOLDER, str(temp_dir))
    if templates is not None:
        resolved = templates.apply(resolved)
    return Path(resolved).expanduser()


def stage_file(
    spec: FileSpec,
    source: Path,
    temp_dir: Path,
    templates: TemplateValues | None = None,
) -> Path:
    """Copy one file or directory to its target.

    Args:
        spec: The file entry from the component
        source: Location of the file inside the unpacked package
        temp_dir: Directory substituted for the temp placeholder
        templates: Optional values for placeholders in the target path

    Returns:
        The target path written

    Raises:
        PackageError: If the source is missing or its checksum does not match.
    """
    if not source.exists():
        raise PackageError(f"file {spec.source} is missing from the package")

    if spec.shasum and source.is_file():
        actual = sha256_file(source)
        if actual != spec.shasum:
            raise PackageError(
                f"shasum mismatch for {spec.source}: expected {spec.shasum}, got {actual}",
                data={"expected": spec.shasum, "actual": actual},
            )

    target = expand_target(spec.target, temp_dir, templates)
    target.parent.mkdir(parents=True, exist_ok=True)

    if source.is_dir():
        shutil.copytree(source, target, dirs_exist_ok=True)
    else:
        shutil.copy2(source, target)
        target.chmod(0o700 if spec.executable else 0o600)

    for link in spec.symlinks:
        link_path = expand_target(link, temp_dir, templates)
        link_path.parent.mkdir(parents=True, exist_ok=True)
        if link_path.is_symlink() or link_path.exists():
            link_path.unlink()
        os.symlink(target, link_path)

    log.debug("files.staged", source=spec.source, target=str(target), links=len(spec.symlinks))
    return target
