"""Cluster access for zarf-core.

This package wraps everything the deploy core persists in or reads from the
cluster:
- Control-plane client (protocol + Kubernetes implementation)
- Cluster state and agent PKI
- Package deployment records
- Data injections into running pods
"""

from .client import (
    AGENT_LABEL,
    ZARF_NAMESPACE,
    ControlPlaneClient,
    KubernetesClient,
    cluster_is_healthy,
    wait_for_healthy_cluster,
)
from .data import DataInjector, KubectlExec, injection_marker
from .pki import GeneratedPKI, generate_pki
from .records import PACKAGE_INFO_LABEL, RecordStore, record_secret_name
from .state import (
    ClusterState,
    GitServerInfo,
    RegistryInfo,
    StateInitOptions,
    StateStore,
    check_architecture,
    detect_distro,
    sanitize,
)

__all__ = [
    # Client
    "ControlPlaneClient",
    "KubernetesClient",
    "ZARF_NAMESPACE",
    "AGENT_LABEL",
    "cluster_is_healthy",
    "wait_for_healthy_cluster",
    # State
    "ClusterState",
    "RegistryInfo",
    "GitServerInfo",
    "StateInitOptions",
    "StateStore",
    "check_architecture",
    "detect_distro",
    "sanitize",
    # PKI
    "GeneratedPKI",
    "generate_pki",
    # Records
    "RecordStore",
    "PACKAGE_INFO_LABEL",
    "record_secret_name",
    # Data injection
    "DataInjector",
    "KubectlExec",
    "injection_marker",
]
