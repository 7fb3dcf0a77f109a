"""Data injections: copy package data into pods once they schedule.

The copy streams a tar archive into ``kubectl exec -i ... tar -x``, then drops
a completion marker file next to the data so workloads waiting on it can
proceed.
"""

from __future__ import annotations

import json
import subprocess
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from ..errors import DataInjectionError
from ..retry import RetryPolicy, retry_call
from ..shared.logging import get_logger
from ..types import DataInjection, DataInjectionTarget
from .client import ControlPlaneClient, object_name

log = get_logger(__name__)


def injection_marker(run_started: float) -> str:
    """Marker file name shared by every injection of one deploy run."""
    return f".zarf-injection-{int(run_started)}"


class KubectlExec:
    """Stream tar archives into pod containers using kubectl."""

    def __init__(self, kubeconfig: str | None = None):
        """Initialize the exec wrapper.

        Args:
            kubeconfig: Path to kubeconfig file.
        """
        self.kubeconfig = kubeconfig

    def _kubectl_cmd(self) -> list[str]:
        """Build base kubectl command."""
        cmd = ["kubectl"]
        if self.kubeconfig:
            cmd.extend(["--kubeconfig", self.kubeconfig])
        return cmd

    def _exec_cmd(self, namespace: str, pod: str, container: str) -> list[str]:
        return self._kubectl_cmd() + ["exec", "-i", "-n", namespace, pod, "-c", container, "--"]

    def mkdir(self, namespace: str, pod: str, container: str, path: str) -> tuple[bool, str]:
        """Create the target directory inside the container.

        Returns:
            Tuple of (success, message).
        """
        try:
            result = subprocess.run(
                self._exec_cmd(namespace, pod, container) + ["mkdir", "-p", path],
                capture_output=True,
                text=True,
            )
            if result.returncode != 0:
                return False, f"Failed to create {path} in {pod}: {result.stderr}"
            return True, f"Created {path}"
        except FileNotFoundError:
            return False, "kubectl not found. Is kubectl installed?"

    def copy(
        self,
        source_dir: Path,
        members: list[str],
        namespace: str,
        pod: str,
        container: str,
        path: str,
        compress: bool = False,
    ) -> tuple[bool, str]:
        """Pipe ``tar -c`` of ``members`` under ``source_dir`` into the container.

        Returns:
            Tuple of (success, message).
        """
        z = ["-z"] if compress else []
        tar_cmd = ["tar", "-c", *z, "-f", "-", "-C", str(source_dir), *members]
        untar_cmd = self._exec_cmd(namespace, pod, container) + ["tar", "-x", *z, "-v", "-f", "-", "-C", path]

        try:
            with subprocess.Popen(tar_cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE) as tar:
                result = subprocess.run(untar_cmd, stdin=tar.stdout, capture_output=True, text=True)
                # Let tar see SIGPIPE if kubectl exits early
                tar.stdout.close()
                tar_stderr = tar.stderr.read().decode(errors="replace")
                tar.wait()
        except FileNotFoundError as e:
            return False, f"{e.filename} not found. Is it installed?"

        if tar.returncode != 0:
            return False, f"tar failed for {source_dir}: {tar_stderr}"
        if result.returncode != 0:
            return False, f"Failed to copy into {pod}: {result.stderr}"
        return True, f"Copied {source_dir} into {pod}:{path}"


def _container_running(pod: dict[str, Any], container: str) -> bool:
    status = pod.get("status") or {}
    statuses = (status.get("initContainerStatuses") or []) + (status.get("containerStatuses") or [])
    return any(s.get("name") == container and (s.get("state") or {}).get("running") for s in statuses)


def matching_pods(
    pods: list[dict[str, Any]],
    marker: str,
    container: str | None,
) -> list[dict[str, Any]]:
    """Pods of this deploy run that are ready to receive data, newest first.

    A pod belongs to this run when the run's marker appears anywhere in its
    definition. With a container name, that container must be running;
    without one, the pod itself must be running.
    """
    ready = []
    newest_first = sorted(
        pods, key=lambda p: (p.get("metadata") or {}).get("creationTimestamp") or "", reverse=True
    )
    for pod in newest_first:
        if marker not in json.dumps(pod):
            continue
        if container:
            if _container_running(pod, container):
                ready.append(pod)
        elif (pod.get("status") or {}).get("phase") == "Running":
            ready.append(pod)
    return ready


class DataInjector:
    """Waits for target pods and copies injection data into them."""

    def __init__(
        self,
        cluster: ControlPlaneClient,
        kubectl: KubectlExec | None = None,
        interval_seconds: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.cluster = cluster
        self.kubectl = kubectl or KubectlExec()
        self.interval_seconds = interval_seconds
        self.sleep = sleep

    def wait_for_pods(
        self,
        target: DataInjectionTarget,
        marker: str,
        cancel: threading.Event,
        container: str | None = None,
    ) -> list[dict[str, Any]]:
        """Block until at least one target pod is ready, or ``cancel`` is set.

        Raises:
            RetryCancelled: If cancelled before any pod was found.
        """

        def lookup() -> list[dict[str, Any]]:
            pods = self.cluster.list_pods(target.namespace, label_selector=target.selector)
            found = matching_pods(pods, marker, container)
            if not found:
                raise DataInjectionError(
                    f"no ready pods for selector {target.selector!r} in {target.namespace}",
                    retryable=True,
                )
            return found

        return retry_call(
            lookup,
            RetryPolicy.forever(self.interval_seconds),
            cancel=cancel,
            sleep=self.sleep,
        )

    def inject(
        self,
        injection: DataInjection,
        source: Path,
        marker_dir: Path,
        marker: str,
        cancel: threading.Event,
    ) -> None:
        """Copy ``source`` into every ready target pod, then leave the marker.

        Args:
            injection: What to copy and where
            source: Local directory whose contents are copied
            marker_dir: Directory holding the marker file
            marker: Marker file name for this run
            cancel: Ends the wait for target pods

        Raises:
            DataInjectionError: If the source is missing or a copy fails.
        """
        target = injection.target
        if not source.exists():
            raise DataInjectionError(f"could not find the data injection source path {source}")

        marker_file = marker_dir / marker
        if not marker_file.exists():
            marker_dir.mkdir(parents=True, exist_ok=True)
            marker_file.write_text("zarf")

        log.debug("data.waiting", namespace=target.namespace, selector=target.selector)
        pods = self.wait_for_pods(target, marker, cancel, container=target.container)

        for pod in pods:
            name = object_name(pod)
            ok, message = self.kubectl.mkdir(target.namespace, name, target.container, target.path)
            if ok:
                ok, message = self.kubectl.copy(
                    source, ["."], target.namespace, name, target.container, target.path, injection.compress
                )
            if ok:
                ok, message = self.kubectl.copy(
                    marker_dir, [marker], target.namespace, name, target.container, target.path, injection.compress
                )
            if not ok:
                raise DataInjectionError(message, data={"pod": name, "path": target.path})
            log.info("data.injected", pod=name, path=target.path)

        # The target container may be an init container; wait on the pod itself
        self.wait_for_pods(target, marker, cancel)
