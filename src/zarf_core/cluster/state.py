"""Cluster state: the cluster-scoped configuration written on first init.

The state lives in secret ``zarf/zarf-state`` under the ``state`` key as JSON.
It is synthesized once (random credentials, detected distro and architecture,
generated agent TLS) and only loaded afterwards.
"""

from __future__ import annotations

import copy
import json
import re
import secrets
import string
from dataclasses import dataclass, field
from typing import Any

from ..errors import StateError, StateMismatchError, StateNotFoundError
from ..shared.logging import get_logger
from .client import AGENT_LABEL, ZARF_NAMESPACE, ControlPlaneClient, object_name, secret_body, secret_value
from .pki import GeneratedPKI, generate_pki

log = get_logger(__name__)

STATE_SECRET_NAME = "zarf-state"
STATE_DATA_KEY = "state"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"

GENERATED_PASSWORD_LENGTH = 24
REGISTRY_SECRET_LENGTH = 48

DEFAULT_REGISTRY_NODE_PORT = 31999
REGISTRY_PUSH_USER = "zarf-push"
REGISTRY_PULL_USER = "zarf-pull"

IN_CLUSTER_GIT_URL = "http://zarf-gitea-http.zarf.svc.cluster.local:3000"
GIT_PUSH_USER = "zarf-git-user"
GIT_PULL_USER = "zarf-git-read-user"
IN_CLUSTER_ARTIFACT_URL = IN_CLUSTER_GIT_URL + "/api/packages/" + GIT_PUSH_USER

SANITIZED = "**sanitized**"

# Known distributions
DISTRO_UNKNOWN = "unknown"
DISTRO_K3S = "k3s"
DISTRO_K3D = "k3d"
DISTRO_KIND = "kind"
DISTRO_MICROK8S = "microk8s"
DISTRO_EKS = "eks"
DISTRO_EKS_ANYWHERE = "eksanywhere"
DISTRO_DOCKER_DESKTOP = "dockerdesktop"
DISTRO_GKE = "gke"
DISTRO_AKS = "aks"
DISTRO_RKE2 = "rke2"
DISTRO_TKG = "tkg"
DISTRO_YOLO = "YOLO"

_PROVIDER_ID_PATTERNS = [
    (re.compile(r"^k3s://k3d-"), DISTRO_K3D),
    (re.compile(r"^kind://"), DISTRO_KIND),
    (re.compile(r"^aws:///"), DISTRO_EKS),
    (re.compile(r"^gce://"), DISTRO_GKE),
    (re.compile(r"^azure:///subscriptions"), DISTRO_AKS),
]

_NODE_IMAGE_PATTERNS = [
    (re.compile(r"^rancher/rancher-agent:v2"), DISTRO_RKE2),
    (re.compile(r"^projects\.registry\.vmware\.com/tkg/tanzu_core/"), DISTRO_TKG),
]

STORAGE_CLASS_BY_DISTRO = {
    DISTRO_K3S: "local-path",
    DISTRO_K3D: "local-path",
    DISTRO_KIND: "standard",
    DISTRO_GKE: "standard",
    DISTRO_DOCKER_DESKTOP: "hostpath",
}


def random_string(length: int) -> str:
    """Cryptographically random alphanumeric string."""
    alphabet = string.ascii_letters + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))


@dataclass
class RegistryInfo:
    """Where images are pushed and pulled, and with which credentials."""

    push_username: str = ""
    push_password: str = ""
    pull_username: str = ""
    pull_password: str = ""
    address: str = ""
    node_port: int = 0
    internal_registry: bool = False
    secret: str = ""

    def fill_in_empty_values(self) -> None:
        """Apply defaults for an in-cluster registry, or reuse push credentials externally."""
        if self.node_port == 0:
            self.node_port = DEFAULT_REGISTRY_NODE_PORT

        if not self.address:
            self.internal_registry = True
            self.address = f"127.0.0.1:{self.node_port}"

        if not self.push_username and self.internal_registry:
            self.push_username = REGISTRY_PUSH_USER
        if not self.push_password and self.internal_registry:
            self.push_password = random_string(GENERATED_PASSWORD_LENGTH)

        if not self.pull_username:
            self.pull_username = REGISTRY_PULL_USER if self.internal_registry else self.push_username
        if not self.pull_password:
            if self.internal_registry:
                self.pull_password = random_string(GENERATED_PASSWORD_LENGTH)
            else:
                self.pull_password = self.push_password

        if not self.secret:
            self.secret = random_string(REGISTRY_SECRET_LENGTH)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RegistryInfo:
        data = data or {}
        return cls(
            push_username=data.get("pushUsername", ""),
            push_password=data.get("pushPassword", ""),
            pull_username=data.get("pullUsername", ""),
            pull_password=data.get("pullPassword", ""),
            address=data.get("address", ""),
            node_port=int(data.get("nodePort", 0)),
            internal_registry=bool(data.get("internalRegistry", False)),
            secret=data.get("secret", ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "pushUsername": self.push_username,
            "pushPassword": self.push_password,
            "pullUsername": self.pull_username,
            "pullPassword": self.pull_password,
            "address": self.address,
            "nodePort": self.node_port,
            "internalRegistry": self.internal_registry,
            "secret": self.secret,
        }


@dataclass
class GitServerInfo:
    """Where repositories are pushed, and with which credentials."""

    push_username: str = ""
    push_password: str = ""
    pull_username: str = ""
    pull_password: str = ""
    address: str = ""
    internal_server: bool = False

    def fill_in_empty_values(self) -> None:
        if not self.address:
            self.address = IN_CLUSTER_GIT_URL
        self.internal_server = self.address == IN_CLUSTER_GIT_URL

        if not self.push_username and self.internal_server:
            self.push_username = GIT_PUSH_USER
        if not self.push_password and self.internal_server:
            self.push_password = random_string(GENERATED_PASSWORD_LENGTH)

        if not self.pull_username:
            self.pull_username = GIT_PULL_USER if self.internal_server else self.push_username
        if not self.pull_password:
            if self.internal_server:
                self.pull_password = random_string(GENERATED_PASSWORD_LENGTH)
            else:
                self.pull_password = self.push_password

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> GitServerInfo:
        data = data or {}
        return cls(
            push_username=data.get("pushUsername", ""),
            push_password=data.get("pushPassword", ""),
            pull_username=data.get("pullUsername", ""),
            pull_password=data.get("pullPassword", ""),
            address=data.get("address", ""),
            internal_server=bool(data.get("internalServer", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "pushUsername": self.push_username,
            "pushPassword": self.push_password,
            "pullUsername": self.pull_username,
            "pullPassword": self.pull_password,
            "address": self.address,
            "internalServer": self.internal_server,
        }


@dataclass
class ArtifactServerInfo:
    """Package (artifact) server derived from the git server by default."""

    push_username: str = ""
    push_token: str = ""
    address: str = ""
    internal_server: bool = False

    def fill_in_empty_values(self, git: GitServerInfo) -> None:
        if not self.address:
            self.address = IN_CLUSTER_ARTIFACT_URL
        self.internal_server = self.address == IN_CLUSTER_ARTIFACT_URL
        if not self.push_username and self.internal_server:
            self.push_username = git.push_username

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ArtifactServerInfo:
        data = data or {}
        return cls(
            push_username=data.get("pushUsername", ""),
            push_token=data.get("pushPassword", ""),
            address=data.get("address", ""),
            internal_server=bool(data.get("internalServer", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "pushUsername": self.push_username,
            "pushPassword": self.push_token,
            "address": self.address,
            "internalServer": self.internal_server,
        }


@dataclass
class InjectorInfo:
    """What the last bootstrap injection staged in the cluster."""

    node_port: int = 0
    payload_sha256: str = ""
    chunk_count: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> InjectorInfo:
        data = data or {}
        return cls(
            node_port=int(data.get("nodePort", 0)),
            payload_sha256=data.get("payloadSha256", ""),
            chunk_count=int(data.get("chunkCount", 0)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodePort": self.node_port,
            "payloadSha256": self.payload_sha256,
            "chunkCount": self.chunk_count,
        }


@dataclass
class ClusterState:
    """Cluster-scoped configuration shared by every deploy."""

    distro: str = DISTRO_UNKNOWN
    architecture: str = ""
    storage_class: str = ""
    zarf_appliance: bool = False
    logging_secret: str = ""
    agent_tls: GeneratedPKI = field(default_factory=lambda: GeneratedPKI("", "", ""))
    registry_info: RegistryInfo = field(default_factory=RegistryInfo)
    git_server: GitServerInfo = field(default_factory=GitServerInfo)
    artifact_server: ArtifactServerInfo = field(default_factory=ArtifactServerInfo)
    injector_info: InjectorInfo = field(default_factory=InjectorInfo)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClusterState:
        return cls(
            distro=data.get("distro", DISTRO_UNKNOWN),
            architecture=data.get("architecture", ""),
            storage_class=data.get("storageClass", ""),
            zarf_appliance=bool(data.get("zarfAppliance", False)),
            logging_secret=data.get("loggingSecret", ""),
            agent_tls=GeneratedPKI.from_dict(data.get("agentTLS")),
            registry_info=RegistryInfo.from_dict(data.get("registryInfo")),
            git_server=GitServerInfo.from_dict(data.get("gitServer")),
            artifact_server=ArtifactServerInfo.from_dict(data.get("artifactServer")),
            injector_info=InjectorInfo.from_dict(data.get("injectorInfo")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "distro": self.distro,
            "architecture": self.architecture,
            "storageClass": self.storage_class,
            "zarfAppliance": self.zarf_appliance,
            "loggingSecret": self.logging_secret,
            "agentTLS": self.agent_tls.to_dict(),
            "registryInfo": self.registry_info.to_dict(),
            "gitServer": self.git_server.to_dict(),
            "artifactServer": self.artifact_server.to_dict(),
            "injectorInfo": self.injector_info.to_dict(),
        }


def sanitize(state: ClusterState) -> dict[str, Any]:
    """JSON view of the state with every credential and TLS value masked."""
    data = copy.deepcopy(state.to_dict())
    data["agentTLS"] = {"ca": SANITIZED, "cert": SANITIZED, "key": SANITIZED}
    data["loggingSecret"] = SANITIZED
    for key in ("pushPassword", "pullPassword", "secret"):
        if key in data["registryInfo"]:
            data["registryInfo"][key] = SANITIZED
    for key in ("pushPassword", "pullPassword"):
        data["gitServer"][key] = SANITIZED
    data["artifactServer"]["pushPassword"] = SANITIZED
    return data


def detect_distro(nodes: list[dict[str, Any]], namespaces: list[dict[str, Any]]) -> str:
    """Guess the Kubernetes distribution from node and namespace metadata."""
    if not nodes:
        return DISTRO_UNKNOWN

    # All nodes should agree on what we are looking for
    node = nodes[0]
    provider_id = (node.get("spec") or {}).get("providerID") or ""
    for pattern, distro in _PROVIDER_ID_PATTERNS:
        if pattern.match(provider_id):
            return distro

    labels = (node.get("metadata") or {}).get("labels") or {}
    if labels.get("node.kubernetes.io/instance-type") == "k3s":
        return DISTRO_K3S
    if labels.get("microk8s.io/cluster") == "true":
        return DISTRO_MICROK8S

    if object_name(node) == "docker-desktop":
        return DISTRO_DOCKER_DESKTOP

    for image in (node.get("status") or {}).get("images") or []:
        for name in image.get("names") or []:
            for pattern, distro in _NODE_IMAGE_PATTERNS:
                if pattern.match(name):
                    return distro

    if any(object_name(ns) == "eksa-system" for ns in namespaces):
        return DISTRO_EKS_ANYWHERE

    return DISTRO_UNKNOWN


def detect_architectures(nodes: list[dict[str, Any]]) -> list[str]:
    """Distinct CPU architectures reported by the cluster's nodes, in node order."""
    found: list[str] = []
    for node in nodes:
        arch = ((node.get("status") or {}).get("nodeInfo") or {}).get("architecture")
        if not arch:
            arch = ((node.get("metadata") or {}).get("labels") or {}).get("kubernetes.io/arch")
        if arch and arch not in found:
            found.append(arch)
    return found


def check_architecture(state: ClusterState, architecture: str) -> None:
    """Fail when the cluster and the package disagree on CPU architecture.

    Raises:
        StateMismatchError: If both are known and differ.
    """
    if architecture and state.architecture and state.architecture != architecture:
        raise StateMismatchError(
            f"this package architecture is {architecture}, "
            f"but the target cluster only has the {state.architecture} architecture",
            data={"package": architecture, "cluster": state.architecture},
        )


@dataclass
class StateInitOptions:
    """Inputs that shape a freshly synthesized cluster state."""

    architecture: str = ""
    storage_class: str = ""
    appliance_mode: bool = False
    registry_info: RegistryInfo = field(default_factory=RegistryInfo)
    git_server: GitServerInfo = field(default_factory=GitServerInfo)
    artifact_server: ArtifactServerInfo = field(default_factory=ArtifactServerInfo)


def _user_supplied(values: Any) -> bool:
    return any(v not in ("", 0, False) for v in values.to_dict().values())


class StateStore:
    """Loads, saves and initializes the cluster state secret."""

    def __init__(self, cluster: ControlPlaneClient):
        self.cluster = cluster

    def load(self) -> ClusterState:
        """Load the persisted state.

        Raises:
            StateNotFoundError: If the cluster has never been initialized.
            StateError: If the secret exists but cannot be decoded.
        """
        secret = self.cluster.get_secret(ZARF_NAMESPACE, STATE_SECRET_NAME)
        raw = secret_value(secret, STATE_DATA_KEY) if secret else None
        if raw is None:
            raise StateNotFoundError()
        try:
            state = ClusterState.from_dict(json.loads(raw))
        except (ValueError, TypeError) as e:
            raise StateError(f"unable to decode the cluster state: {e}") from e
        log.debug("state.loaded", state=sanitize(state))
        return state

    def load_or_none(self) -> ClusterState | None:
        try:
            return self.load()
        except StateNotFoundError:
            return None

    def save(self, state: ClusterState) -> None:
        log.debug("state.saving", state=sanitize(state))
        body = secret_body(
            STATE_SECRET_NAME,
            ZARF_NAMESPACE,
            {STATE_DATA_KEY: json.dumps(state.to_dict()).encode()},
            labels={MANAGED_BY_LABEL: "zarf"},
        )
        self.cluster.apply_secret(ZARF_NAMESPACE, body)

    def ensure_namespace(self) -> None:
        """Create the zarf namespace when it does not exist yet."""
        if self.cluster.get_namespace(ZARF_NAMESPACE) is None:
            log.info("state.create_namespace", namespace=ZARF_NAMESPACE)
            self.cluster.create_namespace(ZARF_NAMESPACE, labels={MANAGED_BY_LABEL: "zarf"})

    def mark_existing_namespaces(self, namespaces: list[dict[str, Any]]) -> None:
        """Label pre-existing namespaces so the admission agent ignores them."""
        for namespace in namespaces:
            name = object_name(namespace)
            if name == ZARF_NAMESPACE:
                continue
            try:
                self.cluster.label_namespace(name, {AGENT_LABEL: "ignore"})
            except Exception as e:
                log.warning("state.label_namespace_failed", namespace=name, error=str(e))

    def init(self, options: StateInitOptions) -> ClusterState:
        """Resolve the cluster state for an init package.

        On a new cluster the state is synthesized, pre-existing namespaces are
        labelled and the zarf namespace is created. On an initialized cluster
        the persisted state is kept as-is; differing credentials are ignored
        with a warning.

        Raises:
            StateMismatchError: If the cluster architecture differs from the package's.
        """
        state = self.load_or_none()

        if state is None:
            log.info("state.new_cluster")
            nodes = self.cluster.list_nodes()
            namespaces = self.cluster.list_namespaces()

            state = ClusterState()
            if options.appliance_mode:
                state.distro = DISTRO_K3S
                state.zarf_appliance = True
            else:
                state.distro = detect_distro(nodes, namespaces)
            if state.distro != DISTRO_UNKNOWN:
                log.info("state.distro_detected", distro=state.distro)

            architectures = detect_architectures(nodes)
            if options.architecture and architectures and options.architecture not in architectures:
                raise StateMismatchError(
                    f"this package architecture is {options.architecture}, but the target "
                    f"cluster only has the {', '.join(architectures)} architecture(s)",
                    data={"package": options.architecture, "cluster": architectures},
                )
            state.architecture = options.architecture or (architectures[0] if architectures else "")

            state.logging_secret = random_string(GENERATED_PASSWORD_LENGTH)
            state.agent_tls = generate_pki()

            self.mark_existing_namespaces(namespaces)
            self.ensure_namespace()

            state.git_server = copy.deepcopy(options.git_server)
            state.git_server.fill_in_empty_values()
            state.registry_info = copy.deepcopy(options.registry_info)
            state.registry_info.fill_in_empty_values()
            state.artifact_server = copy.deepcopy(options.artifact_server)
            state.artifact_server.fill_in_empty_values(state.git_server)
        else:
            check_architecture(state, options.architecture)
            for label, supplied in (
                ("git server", options.git_server),
                ("registry", options.registry_info),
                ("artifact server", options.artifact_server),
            ):
                if _user_supplied(supplied):
                    log.warning("state.reinit_options_ignored", service=label)

        if state.distro in STORAGE_CLASS_BY_DISTRO:
            state.storage_class = STORAGE_CLASS_BY_DISTRO[state.distro]
        if options.storage_class:
            state.storage_class = options.storage_class

        self.save(state)
        return state

    def yolo_state(self) -> ClusterState:
        """Minimal stand-in state for packages that deploy without init."""
        self.ensure_namespace()
        return ClusterState(distro=DISTRO_YOLO)
