"""Payload chunking.

The control-plane API caps each object at roughly 1 MiB, and binary config map
data is base64 encoded on the wire, so payloads are split into 512 KiB chunks.
Chunk names carry a zero-padded index so sorting by name restores the order.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable
from dataclasses import dataclass

CHUNK_SIZE = 512 * 1024
CHUNK_PREFIX = "zarf-payload-"
MAX_CHUNKS = 1000


class PayloadChecksumError(ValueError):
    """Reassembled payload does not match its recorded checksum."""


def chunk_name(index: int) -> str:
    return f"{CHUNK_PREFIX}{index:03d}"


@dataclass(frozen=True)
class PayloadChunk:
    """One size-bounded fragment of a payload."""

    index: int
    data: bytes

    @property
    def name(self) -> str:
        return chunk_name(self.index)


@dataclass(frozen=True)
class BootstrapPayload:
    """A split payload and the checksum of the whole blob."""

    sha256: str
    chunks: tuple[PayloadChunk, ...]

    @property
    def chunk_names(self) -> list[str]:
        return [chunk.name for chunk in self.chunks]

    @property
    def size(self) -> int:
        return sum(len(chunk.data) for chunk in self.chunks)


def split_payload(blob: bytes, chunk_size: int = CHUNK_SIZE) -> BootstrapPayload:
    """Split ``blob`` into ordered chunks of at most ``chunk_size`` bytes.

    The checksum is computed over the original blob before splitting.

    Raises:
        ValueError: If the chunk size is not positive or the blob would need
            more chunks than three-digit names can order.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")

    count = -(-len(blob) // chunk_size)
    if count > MAX_CHUNKS:
        raise ValueError(f"payload of {len(blob)} bytes needs {count} chunks, more than {MAX_CHUNKS}")

    sha256 = hashlib.sha256(blob).hexdigest()
    chunks = tuple(
        PayloadChunk(index, blob[offset : offset + chunk_size])
        for index, offset in enumerate(range(0, len(blob), chunk_size))
    )
    return BootstrapPayload(sha256=sha256, chunks=chunks)


def reassemble(chunks: Iterable[tuple[str, bytes]], expected_sha256: str) -> bytes:
    """Concatenate named chunks in name order and verify the checksum.

    Args:
        chunks: (name, data) pairs in any order
        expected_sha256: Hex digest of the original blob

    Raises:
        PayloadChecksumError: If the result does not hash to ``expected_sha256``.
    """
    blob = b"".join(data for _, data in sorted(chunks, key=lambda pair: pair[0]))
    actual = hashlib.sha256(blob).hexdigest()
    if actual != expected_sha256:
        raise PayloadChecksumError(f"payload checksum mismatch: expected {expected_sha256}, got {actual}")
    return blob
