"""Cluster control-plane client.

``ControlPlaneClient`` is the narrow surface the orchestrator and injector use:
namespaced CRUD for pods, config maps, services and secrets, node and pod
listing, and namespace labelling. Objects cross this boundary as plain dicts
shaped like their Kubernetes JSON, so fakes need no client library types.

``KubernetesClient`` implements it with the official ``kubernetes`` client.
"""

from __future__ import annotations

import base64
import time
from collections.abc import Callable
from typing import Any, Protocol

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from ..errors import ClusterError
from ..retry import RetryPolicy, poll_until
from ..shared.logging import get_logger

log = get_logger(__name__)

# Namespace holding every zarf-managed object
ZARF_NAMESPACE = "zarf"

# Label that tells the mutating admission agent to leave an object alone
AGENT_LABEL = "zarf.dev/agent"


class ControlPlaneClient(Protocol):
    """Operations the deploy core needs from the cluster."""

    def get_namespace(self, name: str) -> dict[str, Any] | None: ...

    def list_namespaces(self) -> list[dict[str, Any]]: ...

    def create_namespace(self, name: str, labels: dict[str, str] | None = None) -> dict[str, Any]: ...

    def label_namespace(self, name: str, labels: dict[str, str]) -> None: ...

    def list_nodes(self) -> list[dict[str, Any]]: ...

    def list_pods(
        self, namespace: str | None = None, label_selector: str | None = None
    ) -> list[dict[str, Any]]: ...

    def get_pod(self, namespace: str, name: str) -> dict[str, Any] | None: ...

    def create_pod(self, namespace: str, body: dict[str, Any]) -> dict[str, Any]: ...

    def delete_pod(self, namespace: str, name: str) -> None: ...

    def create_configmap(self, namespace: str, body: dict[str, Any]) -> dict[str, Any]: ...

    def delete_configmap(self, namespace: str, name: str) -> None: ...

    def delete_configmaps(self, namespace: str, label_selector: str) -> None: ...

    def create_service(self, namespace: str, body: dict[str, Any]) -> dict[str, Any]: ...

    def delete_service(self, namespace: str, name: str) -> None: ...

    def list_services(
        self, namespace: str | None = None, label_selector: str | None = None
    ) -> list[dict[str, Any]]: ...

    def get_secret(self, namespace: str, name: str) -> dict[str, Any] | None: ...

    def list_secrets(self, namespace: str, label_selector: str | None = None) -> list[dict[str, Any]]: ...

    def apply_secret(self, namespace: str, body: dict[str, Any]) -> dict[str, Any]: ...

    def delete_secret(self, namespace: str, name: str) -> None: ...


def _translate(action: str, error: ApiException) -> ClusterError:
    # 4xx other than conflicts and throttling will not improve on retry
    retryable = error.status is None or error.status >= 500 or error.status in (409, 429)
    return ClusterError(
        f"{action} failed: {error.status} {error.reason}",
        retryable=retryable,
        data={"status": error.status},
    )


class KubernetesClient:
    """ControlPlaneClient backed by the official Kubernetes Python client."""

    def __init__(self, context: str | None = None, kubeconfig: str | None = None):
        """Load cluster credentials.

        Args:
            context: kubeconfig context name; the current context when omitted
            kubeconfig: kubeconfig path; the default search path when omitted
        """
        try:
            config.load_kube_config(config_file=kubeconfig, context=context)
        except ConfigException:
            try:
                config.load_incluster_config()
            except ConfigException as e:
                raise ClusterError(f"unable to connect to the cluster: {e}") from e

        self._api_client = client.ApiClient()
        self._core = client.CoreV1Api(self._api_client)

    def _plain(self, obj: Any) -> dict[str, Any]:
        return self._api_client.sanitize_for_serialization(obj)

    def _call(self, action: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except ApiException as e:
            raise _translate(action, e) from e

    def _get_or_none(self, action: str, fn: Callable[..., Any], *args: Any) -> dict[str, Any] | None:
        try:
            return self._plain(fn(*args))
        except ApiException as e:
            if e.status == 404:
                return None
            raise _translate(action, e) from e

    def _delete_ignoring_missing(self, action: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        try:
            fn(*args, **kwargs)
        except ApiException as e:
            if e.status != 404:
                raise _translate(action, e) from e

    # Namespaces

    def get_namespace(self, name: str) -> dict[str, Any] | None:
        return self._get_or_none("get namespace", self._core.read_namespace, name)

    def list_namespaces(self) -> list[dict[str, Any]]:
        result = self._call("list namespaces", self._core.list_namespace)
        return [self._plain(ns) for ns in result.items]

    def create_namespace(self, name: str, labels: dict[str, str] | None = None) -> dict[str, Any]:
        body = {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": name, "labels": labels or {}}}
        return self._plain(self._call("create namespace", self._core.create_namespace, body))

    def label_namespace(self, name: str, labels: dict[str, str]) -> None:
        self._call("label namespace", self._core.patch_namespace, name, {"metadata": {"labels": labels}})

    # Nodes and pods

    def list_nodes(self) -> list[dict[str, Any]]:
        result = self._call("list nodes", self._core.list_node)
        return [self._plain(node) for node in result.items]

    def list_pods(
        self, namespace: str | None = None, label_selector: str | None = None
    ) -> list[dict[str, Any]]:
        kwargs = {"label_selector": label_selector} if label_selector else {}
        if namespace:
            result = self._call("list pods", self._core.list_namespaced_pod, namespace, **kwargs)
        else:
            result = self._call("list pods", self._core.list_pod_for_all_namespaces, **kwargs)
        return [self._plain(pod) for pod in result.items]

    def get_pod(self, namespace: str, name: str) -> dict[str, Any] | None:
        return self._get_or_none("get pod", self._core.read_namespaced_pod, name, namespace)

    def create_pod(self, namespace: str, body: dict[str, Any]) -> dict[str, Any]:
        return self._plain(self._call("create pod", self._core.create_namespaced_pod, namespace, body))

    def delete_pod(self, namespace: str, name: str) -> None:
        self._delete_ignoring_missing(
            "delete pod",
            self._core.delete_namespaced_pod,
            name,
            namespace,
            body=client.V1DeleteOptions(grace_period_seconds=0),
        )

    # Config maps

    def create_configmap(self, namespace: str, body: dict[str, Any]) -> dict[str, Any]:
        return self._plain(
            self._call("create configmap", self._core.create_namespaced_config_map, namespace, body)
        )

    def delete_configmap(self, namespace: str, name: str) -> None:
        self._delete_ignoring_missing(
            "delete configmap", self._core.delete_namespaced_config_map, name, namespace
        )

    def delete_configmaps(self, namespace: str, label_selector: str) -> None:
        self._call(
            "delete configmaps",
            self._core.delete_collection_namespaced_config_map,
            namespace,
            label_selector=label_selector,
        )

    # Services

    def create_service(self, namespace: str, body: dict[str, Any]) -> dict[str, Any]:
        return self._plain(self._call("create service", self._core.create_namespaced_service, namespace, body))

    def delete_service(self, namespace: str, name: str) -> None:
        self._delete_ignoring_missing("delete service", self._core.delete_namespaced_service, name, namespace)

    def list_services(
        self, namespace: str | None = None, label_selector: str | None = None
    ) -> list[dict[str, Any]]:
        kwargs = {"label_selector": label_selector} if label_selector else {}
        if namespace:
            result = self._call("list services", self._core.list_namespaced_service, namespace, **kwargs)
        else:
            result = self._call("list services", self._core.list_service_for_all_namespaces, **kwargs)
        return [self._plain(svc) for svc in result.items]

    # Secrets

    def get_secret(self, namespace: str, name: str) -> dict[str, Any] | None:
        return self._get_or_none("get secret", self._core.read_namespaced_secret, name, namespace)

    def list_secrets(self, namespace: str, label_selector: str | None = None) -> list[dict[str, Any]]:
        kwargs = {"label_selector": label_selector} if label_selector else {}
        result = self._call("list secrets", self._core.list_namespaced_secret, namespace, **kwargs)
        return [self._plain(secret) for secret in result.items]

    def apply_secret(self, namespace: str, body: dict[str, Any]) -> dict[str, Any]:
        """Create the secret, or replace it when it already exists."""
        name = body["metadata"]["name"]
        try:
            created = self._core.create_namespaced_secret(namespace, body)
        except ApiException as e:
            if e.status != 409:
                raise _translate("create secret", e) from e
            replaced = self._call(
                "replace secret", self._core.replace_namespaced_secret, name, namespace, body
            )
            return self._plain(replaced)
        return self._plain(created)

    def delete_secret(self, namespace: str, name: str) -> None:
        self._delete_ignoring_missing("delete secret", self._core.delete_namespaced_secret, name, namespace)


def _node_ready(node: dict[str, Any]) -> bool:
    conditions = (node.get("status") or {}).get("conditions") or []
    return any(c.get("type") == "Ready" and c.get("status") == "True" for c in conditions)


def cluster_is_healthy(cluster: ControlPlaneClient) -> bool:
    """At least one ready node and one running or succeeded pod."""
    if not any(_node_ready(node) for node in cluster.list_nodes()):
        return False
    return any(
        (pod.get("status") or {}).get("phase") in ("Running", "Succeeded") for pod in cluster.list_pods()
    )


def wait_for_healthy_cluster(
    cluster: ControlPlaneClient,
    timeout_seconds: float,
    interval_seconds: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Block until the cluster looks usable.

    Raises:
        ClusterError: If the cluster is still unhealthy when the deadline passes.
    """
    log.debug("cluster.wait_healthy", timeout=timeout_seconds)
    policy = RetryPolicy.deadline(timeout_seconds, interval_seconds)
    if not poll_until(lambda: cluster_is_healthy(cluster), policy, sleep=sleep):
        raise ClusterError(
            f"timed out after {timeout_seconds}s waiting for a healthy cluster",
            retryable=False,
        )


def object_name(obj: dict[str, Any]) -> str:
    return (obj.get("metadata") or {}).get("name", "")


def object_labels(obj: dict[str, Any]) -> dict[str, str]:
    return (obj.get("metadata") or {}).get("labels") or {}


def secret_body(
    name: str,
    namespace: str,
    data: dict[str, bytes],
    labels: dict[str, str] | None = None,
) -> dict[str, Any]:
    """Build an Opaque secret manifest with base64-encoded data."""
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "type": "Opaque",
        "metadata": {"name": name, "namespace": namespace, "labels": labels or {}},
        "data": {key: base64.b64encode(value).decode("ascii") for key, value in data.items()},
    }


def secret_value(secret: dict[str, Any], key: str) -> bytes | None:
    """Decode one data key of a secret, None when the key is absent."""
    encoded = (secret.get("data") or {}).get(key)
    if encoded is None:
        return None
    return base64.b64decode(encoded)
