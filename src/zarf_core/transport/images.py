"""Image references and the crane-backed image transport."""

from __future__ import annotations

import re
import subprocess
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from ..errors import TransportError
from ..shared.logging import get_logger

log = get_logger(__name__)

DEFAULT_REGISTRY = "docker.io"
DEFAULT_TAG = "latest"

_TARBALL_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")


def crc32(text: str) -> int:
    """IEEE CRC-32 of a string, as used for rewritten names."""
    return zlib.crc32(text.encode())


@dataclass(frozen=True)
class ImageRef:
    """A parsed, normalized image reference."""

    host: str
    path: str
    tag: str = ""
    digest: str = ""

    @classmethod
    def parse(cls, reference: str) -> ImageRef:
        """Parse a reference, applying Docker Hub normalization.

        ``nginx`` becomes ``docker.io/library/nginx:latest``.

        Raises:
            ValueError: If the reference is empty or malformed.
        """
        if not reference or reference != reference.strip() or " " in reference:
            raise ValueError(f"invalid image reference {reference!r}")

        name, digest = reference, ""
        if "@" in name:
            name, digest = name.split("@", 1)
            if not digest.startswith("sha256:"):
                raise ValueError(f"invalid digest in image reference {reference!r}")

        tag = ""
        last = name.rsplit("/", 1)[-1]
        if ":" in last:
            name, tag = name.rsplit(":", 1)

        parts = name.split("/", 1)
        if len(parts) == 2 and ("." in parts[0] or ":" in parts[0] or parts[0] == "localhost"):
            host, path = parts
        else:
            host, path = DEFAULT_REGISTRY, name
            if "/" not in path:
                path = f"library/{path}"

        if not path or path.endswith("/"):
            raise ValueError(f"invalid image reference {reference!r}")
        if not tag and not digest:
            tag = DEFAULT_TAG
        return cls(host=host, path=path, tag=tag, digest=digest)

    @property
    def name(self) -> str:
        """Host plus repository path, without tag or digest."""
        return f"{self.host}/{self.path}"

    @property
    def tag_or_digest(self) -> str:
        return f"@{self.digest}" if self.digest else f":{self.tag}"

    @property
    def reference(self) -> str:
        return self.name + self.tag_or_digest


def swap_host(target_host: str, reference: str, checksum: bool = True) -> str:
    """Rewrite ``reference`` to live on ``target_host``.

    Tagged images get a ``-zarf-<crc32>`` tag suffix derived from the original
    name unless ``checksum`` is False; digested images keep their digest.
    References already on the target host are returned unchanged.
    """
    image = ImageRef.parse(reference)
    if target_host.startswith(image.host):
        return reference
    if image.digest:
        return f"{target_host}/{image.path}@{image.digest}"
    if not checksum:
        return f"{target_host}/{image.path}{image.tag_or_digest}"
    return f"{target_host}/{image.path}:{image.tag}-zarf-{crc32(image.name)}"


def image_tarball_name(reference: str) -> str:
    """File name of an image tarball inside a package's images directory."""
    return _TARBALL_UNSAFE.sub("_", ImageRef.parse(reference).reference) + ".tar"


def unique_images(references: list[str]) -> list[str]:
    """Drop duplicate references (after normalization), keeping first-seen order."""
    seen: set[str] = set()
    out = []
    for ref in references:
        key = ImageRef.parse(ref).reference
        if key not in seen:
            seen.add(key)
            out.append(ref)
    return out


@dataclass
class RegistryTarget:
    """Where and as whom images are pushed."""

    address: str
    username: str = ""
    password: str = ""
    insecure: bool = False


class ImageTransport(Protocol):
    """Moves image tarballs to and from registries."""

    def pull(self, references: list[str], dest_dir: Path) -> Path: ...

    def push(
        self,
        images_dir: Path,
        references: list[str],
        registry: RegistryTarget,
        rewrite_host: bool = True,
        checksum: bool = True,
    ) -> list[str]: ...


class CraneImageTransport:
    """ImageTransport that shells out to ``crane``."""

    def __init__(self, binary: str = "crane"):
        self.binary = binary

    def _run(self, args: list[str], stdin: str | None = None) -> tuple[bool, str]:
        """Run crane.

        Returns:
            Tuple of (success, message).
        """
        try:
            result = subprocess.run(
                [self.binary, *args],
                input=stdin,
                capture_output=True,
                text=True,
            )
        except FileNotFoundError:
            return False, f"{self.binary} not found. Is crane installed?"
        if result.returncode != 0:
            return False, result.stderr.strip() or f"{self.binary} {args[0]} failed"
        return True, result.stdout.strip()

    def pull(self, references: list[str], dest_dir: Path) -> Path:
        """Pull each reference into its own tarball under ``dest_dir``."""
        dest_dir.mkdir(parents=True, exist_ok=True)
        for ref in unique_images(references):
            ok, message = self._run(["pull", ref, str(dest_dir / image_tarball_name(ref))])
            if not ok:
                raise TransportError(f"unable to pull {ref}: {message}")
        return dest_dir

    def push(
        self,
        images_dir: Path,
        references: list[str],
        registry: RegistryTarget,
        rewrite_host: bool = True,
        checksum: bool = True,
    ) -> list[str]:
        """Push every image tarball in ``images_dir`` named by ``references``.

        Returns:
            The references pushed to, in order.

        Raises:
            TransportError: On the first image that cannot be pushed.
        """
        if registry.username:
            ok, message = self._run(
                ["auth", "login", registry.address, "-u", registry.username, "--password-stdin"],
                stdin=registry.password,
            )
            if not ok:
                raise TransportError(f"unable to log in to {registry.address}: {message}")

        pushed = []
        for ref in unique_images(references):
            tarball = images_dir / image_tarball_name(ref)
            if not tarball.is_file():
                raise TransportError(f"image {ref} is missing from the package", retryable=False)

            target = swap_host(registry.address, ref, checksum) if rewrite_host else ref
            args = ["push", str(tarball), target]
            if registry.insecure:
                args.append("--insecure")

            log.debug("images.push", source=ref, target=target)
            ok, message = self._run(args)
            if not ok:
                raise TransportError(f"unable to push {ref} to {target}: {message}")
            pushed.append(target)
        return pushed
