"""Bootstrap package for seeding a registry into an air-gapped cluster.

This package provides the injection protocol used by init packages:
1. Splits the payload into config-map-sized chunks
2. Stages chunks and the unpacker in the cluster
3. Launches injection pods on images nodes already have
4. Waits for the seed registry to serve the seed image
5. Tears everything down once the permanent registry is live
"""

from .chunker import (
    CHUNK_SIZE,
    BootstrapPayload,
    PayloadChecksumError,
    PayloadChunk,
    chunk_name,
    reassemble,
    split_payload,
)
from .health import HealthCheckResult, SeedRegistryPoller, manifest_url
from .injector import (
    BootstrapInjector,
    InjectionCandidate,
    InjectionResult,
    InjectorState,
    build_injection_pod,
    find_candidates,
)
from .payload import build_payload

__all__ = [
    # Chunking
    "CHUNK_SIZE",
    "BootstrapPayload",
    "PayloadChunk",
    "PayloadChecksumError",
    "chunk_name",
    "split_payload",
    "reassemble",
    # Payload
    "build_payload",
    # Health polling
    "SeedRegistryPoller",
    "HealthCheckResult",
    "manifest_url",
    # Injection
    "BootstrapInjector",
    "InjectionCandidate",
    "InjectionResult",
    "InjectorState",
    "build_injection_pod",
    "find_candidates",
]
