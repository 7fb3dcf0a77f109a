"""Builds the compressed bootstrap payload.

The payload is a gzipped tar holding the registry binary (``zarf-injector``)
and the seed image as an OCI layout (``seed-images/``). The in-cluster
unpacker verifies its checksum and extracts it into the shared seed volume.
"""

from __future__ import annotations

import io
import tarfile
from pathlib import Path

from ..errors import SetupError

REGISTRY_BINARY_NAME = "zarf-injector"
SEED_IMAGES_DIR = "seed-images"


def _normalize(info: tarfile.TarInfo) -> tarfile.TarInfo:
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    info.mtime = 0
    return info


def build_payload(registry_binary: Path, seed_images: Path) -> bytes:
    """Archive the registry binary and the seed image layout.

    Args:
        registry_binary: Executable that serves the seed image
        seed_images: OCI image layout directory holding the seed image

    Returns:
        The gzipped tar bytes

    Raises:
        SetupError: If either input is missing.
    """
    if not registry_binary.is_file():
        raise SetupError(f"registry binary not found at {registry_binary}")
    if not (seed_images / "index.json").is_file():
        raise SetupError(f"seed image layout not found at {seed_images}")

    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        tar.add(registry_binary, arcname=REGISTRY_BINARY_NAME, filter=_normalize)
        tar.add(seed_images, arcname=SEED_IMAGES_DIR, filter=_normalize)
    return buffer.getvalue()
