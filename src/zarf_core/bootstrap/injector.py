"""Bootstrap injector.

Gets the seed registry running in a cluster that cannot pull from any
registry. The payload (registry binary plus seed image) is staged as config
map chunks, then a pod is launched on a node using an image that node already
has. Its init container reassembles and verifies the payload; its main
container serves the seed image on a fixed port behind a NodePort service.

Each running image in the cluster is a candidate; candidates are tried one at
a time until one serves the seed image.
"""

from __future__ import annotations

import base64
import hashlib
import re
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..cluster.client import AGENT_LABEL, ZARF_NAMESPACE, ControlPlaneClient, object_name
from ..errors import ClusterError, InjectionExhaustedError, SetupError
from ..retry import RetryPolicy, poll_until, retry_call
from ..shared.logging import get_logger
from .chunker import BootstrapPayload
from .health import SeedRegistryPoller

log = get_logger(__name__)

PAYLOAD_LABEL_KEY = "zarf-injector"
PAYLOAD_LABEL_VALUE = "payload"
PAYLOAD_SELECTOR = f"{PAYLOAD_LABEL_KEY}={PAYLOAD_LABEL_VALUE}"

UNPACKER_CONFIGMAP = "rust-binary"
UNPACKER_KEY = "zarf-injector"

SERVICE_NAME = "zarf-injector"
INJECTOR_PORT = 5000

POD_APP_LABEL = "zarf-injector"
POD_SELECTOR = f"app={POD_APP_LABEL}"

INIT_DIR = "/zarf-init"
SEED_DIR = "/zarf-seed"

# Images pushed by an earlier init point at the local registry; they cannot bootstrap it
SEED_IMAGE_PATTERN = re.compile(r"^127\.0\.0\.1:")

_BLOCKING_TAINT_EFFECTS = ("NoSchedule", "NoExecute")


class InjectorState(Enum):
    """Progress of one injection run."""

    IDLE = "idle"
    NAMESPACE_ENSURED = "namespace_ensured"
    PAYLOAD_STAGED = "payload_staged"
    CANDIDATE_SELECTED = "candidate_selected"
    POD_LAUNCHED = "pod_launched"
    VERIFIED = "verified"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class InjectionCandidate:
    """An image already present on a node."""

    node: str
    image: str


@dataclass
class InjectionResult:
    """Outcome of a verified injection."""

    candidate: InjectionCandidate
    node_port: int
    endpoint: str
    pod_cycles: int


def _schedulable_nodes(nodes: list[dict[str, Any]]) -> set[str]:
    names = set()
    for node in nodes:
        taints = (node.get("spec") or {}).get("taints") or []
        if any(t.get("effect") in _BLOCKING_TAINT_EFFECTS for t in taints):
            continue
        names.add(object_name(node))
    return names


def find_candidates(
    nodes: list[dict[str, Any]],
    pods: list[dict[str, Any]],
    seed_pattern: re.Pattern[str] = SEED_IMAGE_PATTERN,
) -> list[InjectionCandidate]:
    """Every distinct image running on a schedulable node, in discovery order.

    Init, regular and ephemeral containers all count. An image is paired with
    the first node it was found on.
    """
    schedulable = _schedulable_nodes(nodes)
    seen: set[str] = set()
    candidates = []

    for pod in pods:
        if (pod.get("status") or {}).get("phase") != "Running":
            continue
        spec = pod.get("spec") or {}
        node = spec.get("nodeName")
        if not node or node not in schedulable:
            continue

        containers = (
            (spec.get("initContainers") or [])
            + (spec.get("containers") or [])
            + (spec.get("ephemeralContainers") or [])
        )
        for container in containers:
            image = container.get("image")
            if not image or image in seen or seed_pattern.match(image):
                continue
            seen.add(image)
            candidates.append(InjectionCandidate(node=node, image=image))

    return candidates


def injection_pod_name(image: str) -> str:
    return "injector-" + hashlib.sha256(image.encode()).hexdigest()[:8]


def build_injection_pod(candidate: InjectionCandidate, payload: BootstrapPayload) -> dict[str, Any]:
    """Two-stage pod pinned to the candidate's node, reusing its image.

    The init container verifies and unpacks the payload into the shared seed
    volume; the main container runs the unpacked registry.
    """
    chunk_mounts = [
        {"name": name, "mountPath": f"{INIT_DIR}/{name}", "subPath": name} for name in payload.chunk_names
    ]
    chunk_volumes = [{"name": name, "configMap": {"name": name}} for name in payload.chunk_names]

    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {
            "name": injection_pod_name(candidate.image),
            "namespace": ZARF_NAMESPACE,
            "labels": {"app": POD_APP_LABEL, AGENT_LABEL: "ignore"},
        },
        "spec": {
            "nodeName": candidate.node,
            "restartPolicy": "Never",
            "initContainers": [
                {
                    "name": "init-injector",
                    "image": candidate.image,
                    "imagePullPolicy": "IfNotPresent",
                    "workingDir": INIT_DIR,
                    "command": [f"{INIT_DIR}/{UNPACKER_KEY}", payload.sha256],
                    "volumeMounts": [
                        {"name": "init", "mountPath": f"{INIT_DIR}/{UNPACKER_KEY}", "subPath": UNPACKER_KEY},
                        {"name": "seed", "mountPath": SEED_DIR},
                        *chunk_mounts,
                    ],
                }
            ],
            "containers": [
                {
                    "name": "injector",
                    "image": candidate.image,
                    "imagePullPolicy": "IfNotPresent",
                    "workingDir": SEED_DIR,
                    "command": [f"{SEED_DIR}/{UNPACKER_KEY}", "serve"],
                    "ports": [{"containerPort": INJECTOR_PORT, "protocol": "TCP"}],
                    "readinessProbe": {
                        "httpGet": {"path": "/v2/", "port": INJECTOR_PORT},
                        "periodSeconds": 2,
                        "successThreshold": 1,
                        "failureThreshold": 10,
                    },
                    "resources": {
                        "requests": {"cpu": "500m", "memory": "64Mi"},
                        "limits": {"cpu": "1", "memory": "256Mi"},
                    },
                    "volumeMounts": [{"name": "seed", "mountPath": SEED_DIR}],
                }
            ],
            "volumes": [
                {"name": "init", "configMap": {"name": UNPACKER_CONFIGMAP, "defaultMode": 0o777}},
                {"name": "seed", "emptyDir": {}},
                *chunk_volumes,
            ],
        },
    }


def build_service() -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": SERVICE_NAME, "namespace": ZARF_NAMESPACE},
        "spec": {
            "type": "NodePort",
            "selector": {"app": POD_APP_LABEL},
            "ports": [{"port": INJECTOR_PORT, "targetPort": INJECTOR_PORT, "protocol": "TCP"}],
        },
    }


def _binary_configmap(name: str, key: str, data: bytes, labels: dict[str, str] | None = None) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": name, "namespace": ZARF_NAMESPACE, "labels": labels or {}},
        "binaryData": {key: base64.b64encode(data).decode("ascii")},
    }


class BootstrapInjector:
    """Runs the injection protocol against one cluster."""

    def __init__(
        self,
        cluster: ControlPlaneClient,
        poller: SeedRegistryPoller | None = None,
        seed_host: str = "127.0.0.1",
        pod_removal_timeout_seconds: float = 60.0,
        interval_seconds: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.cluster = cluster
        self.poller = poller or SeedRegistryPoller(interval_seconds=interval_seconds, sleep=sleep)
        self.seed_host = seed_host
        self.pod_removal_timeout_seconds = pod_removal_timeout_seconds
        self.interval_seconds = interval_seconds
        self.sleep = sleep
        self.state = InjectorState.IDLE
        self.pod_cycles = 0

    def _setup(self, action: str, fn: Callable[[], Any]) -> Any:
        try:
            return fn()
        except ClusterError as e:
            raise SetupError(f"injector setup failed to {action}: {e}", data=e.data) from e

    def ensure_namespace(self) -> None:
        if self.cluster.get_namespace(ZARF_NAMESPACE) is None:
            self.cluster.create_namespace(ZARF_NAMESPACE, labels={AGENT_LABEL: "ignore"})

    def discover_candidates(self) -> list[InjectionCandidate]:
        return find_candidates(self.cluster.list_nodes(), self.cluster.list_pods())

    def stage_payload(self, payload: BootstrapPayload, unpacker: bytes) -> None:
        """Upload the unpacker and every payload chunk, replacing leftovers."""
        self.cluster.delete_configmaps(ZARF_NAMESPACE, PAYLOAD_SELECTOR)
        self.cluster.delete_configmap(ZARF_NAMESPACE, UNPACKER_CONFIGMAP)
        self.cluster.create_configmap(ZARF_NAMESPACE, _binary_configmap(UNPACKER_CONFIGMAP, UNPACKER_KEY, unpacker))
        for chunk in payload.chunks:
            body = _binary_configmap(
                chunk.name, chunk.name, chunk.data, labels={PAYLOAD_LABEL_KEY: PAYLOAD_LABEL_VALUE}
            )
            self.cluster.create_configmap(ZARF_NAMESPACE, body)

    def create_entry_point(self) -> int:
        """Create the NodePort service and return the port the platform assigned."""
        self.cluster.delete_service(ZARF_NAMESPACE, SERVICE_NAME)
        service = self.cluster.create_service(ZARF_NAMESPACE, build_service())
        ports = (service.get("spec") or {}).get("ports") or []
        node_port = ports[0].get("nodePort") if ports else None
        if not node_port:
            raise ClusterError("injector service was not assigned a node port", retryable=False)
        return int(node_port)

    def remove_injection_pods(self) -> None:
        """Delete every injection pod and wait until none remain.

        Transient control-plane errors are retried until the pod removal
        deadline.

        Raises:
            ClusterError: If the pods cannot be deleted, or one is still
                present when the deadline passes.
        """
        policy = RetryPolicy.deadline(self.pod_removal_timeout_seconds, self.interval_seconds)

        def delete_all() -> None:
            for pod in self.cluster.list_pods(ZARF_NAMESPACE, label_selector=POD_SELECTOR):
                self.cluster.delete_pod(ZARF_NAMESPACE, object_name(pod))

        retry_call(
            delete_all,
            policy,
            on_retry=lambda attempt, e: log.debug("injector.pod_delete_retry", attempt=attempt, error=str(e)),
            sleep=self.sleep,
        )

        gone = poll_until(
            lambda: not self.cluster.list_pods(ZARF_NAMESPACE, label_selector=POD_SELECTOR),
            policy,
            sleep=self.sleep,
        )
        if not gone:
            raise ClusterError("previous injection pod did not terminate", retryable=False)

    def _try_candidate(
        self,
        candidate: InjectionCandidate,
        payload: BootstrapPayload,
        endpoint: str,
        seed_image: str,
        cancel: threading.Event | None,
    ) -> bool:
        self.state = InjectorState.CANDIDATE_SELECTED
        try:
            self.remove_injection_pods()
        except ClusterError as e:
            # Another pod may still hold the port; never launch beside it
            log.warning("injector.pod_clear_failed", node=candidate.node, image=candidate.image, error=str(e))
            return False

        try:
            self.cluster.create_pod(ZARF_NAMESPACE, build_injection_pod(candidate, payload))
        except ClusterError as e:
            log.warning("injector.pod_create_failed", node=candidate.node, image=candidate.image, error=str(e))
            return False
        self.pod_cycles += 1
        self.state = InjectorState.POD_LAUNCHED

        result = self.poller.wait_for_seed_image(endpoint, seed_image, cancel=cancel)
        if not result.healthy:
            log.info(
                "injector.candidate_failed",
                node=candidate.node,
                image=candidate.image,
                attempts=result.attempts,
                error=result.error,
            )
        return result.healthy

    def run(
        self,
        payload: BootstrapPayload,
        unpacker: bytes,
        seed_image: str,
        cancel: threading.Event | None = None,
    ) -> InjectionResult:
        """Stage the payload and try candidates until one serves the seed image.

        Args:
            payload: Chunked payload (registry binary plus seed image layout)
            unpacker: Stage-one binary that verifies and unpacks the payload
            seed_image: Reference of the image the seed registry must serve
            cancel: Optional event that ends readiness polling early

        Returns:
            InjectionResult describing the working candidate

        Raises:
            SetupError: If the namespace, payload or entry point cannot be set up.
            InjectionExhaustedError: If no candidate served the seed image.
        """
        if not payload.chunks:
            raise SetupError("bootstrap payload is empty")

        self._setup("create the namespace", self.ensure_namespace)
        self.state = InjectorState.NAMESPACE_ENSURED

        candidates = self._setup("list running images", self.discover_candidates)
        log.info("injector.candidates", count=len(candidates))

        self._setup("stage the payload", lambda: self.stage_payload(payload, unpacker))
        self.state = InjectorState.PAYLOAD_STAGED
        log.info("injector.payload_staged", chunks=len(payload.chunks), sha256=payload.sha256)

        node_port = self._setup("create the entry point", self.create_entry_point)
        endpoint = f"{self.seed_host}:{node_port}"

        for candidate in candidates:
            log.info("injector.candidate", node=candidate.node, image=candidate.image)
            if self._try_candidate(candidate, payload, endpoint, seed_image, cancel):
                self.state = InjectorState.VERIFIED
                log.info("injector.verified", node=candidate.node, image=candidate.image, endpoint=endpoint)
                return InjectionResult(
                    candidate=candidate,
                    node_port=node_port,
                    endpoint=endpoint,
                    pod_cycles=self.pod_cycles,
                )
            if cancel is not None and cancel.is_set():
                break

        self.state = InjectorState.EXHAUSTED
        try:
            self.remove_injection_pods()
        except ClusterError as e:
            log.warning("injector.cleanup_failed", error=str(e))
        raise InjectionExhaustedError(data={"candidates": len(candidates)})

    def teardown(self) -> None:
        """Remove the injection pod, payload chunks, unpacker and entry point.

        Errors are logged, never raised.
        """
        steps: list[tuple[str, Callable[[], None]]] = [
            ("pods", self.remove_injection_pods),
            ("payload", lambda: self.cluster.delete_configmaps(ZARF_NAMESPACE, PAYLOAD_SELECTOR)),
            ("unpacker", lambda: self.cluster.delete_configmap(ZARF_NAMESPACE, UNPACKER_CONFIGMAP)),
            ("service", lambda: self.cluster.delete_service(ZARF_NAMESPACE, SERVICE_NAME)),
        ]
        for name, step in steps:
            try:
                step()
            except Exception as e:
                log.warning("injector.teardown_failed", step=name, error=str(e))
        log.debug("injector.teardown_complete")
