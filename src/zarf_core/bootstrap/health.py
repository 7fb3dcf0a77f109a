"""Seed registry readiness probing.

A seed registry is live once the seed image's manifest can be fetched through
the injector entry point.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

import httpx

from ..retry import RetryPolicy, poll_until
from ..transport.images import ImageRef

MANIFEST_ACCEPT = ", ".join(
    [
        "application/vnd.oci.image.manifest.v1+json",
        "application/vnd.oci.image.index.v1+json",
        "application/vnd.docker.distribution.manifest.v2+json",
        "application/vnd.docker.distribution.manifest.list.v2+json",
    ]
)


@dataclass
class HealthCheckResult:
    """Result of a readiness wait."""

    healthy: bool
    attempts: int = 0
    elapsed_seconds: float = 0.0
    error: str | None = None


def manifest_url(endpoint: str, image: str) -> str:
    """Registry API URL of an image's manifest at ``endpoint`` (``host:port``)."""
    ref = ImageRef.parse(image)
    tag = ref.digest or ref.tag
    return f"http://{endpoint}/v2/{ref.path}/manifests/{tag}"


class SeedRegistryPoller:
    """Poll the injector entry point until it serves the seed image."""

    def __init__(
        self,
        timeout_seconds: float = 60.0,
        interval_seconds: float = 2.0,
        request_timeout_seconds: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize the poller.

        Args:
            timeout_seconds: Wall-clock deadline for one candidate.
            interval_seconds: Seconds between attempts.
            request_timeout_seconds: Timeout for each HTTP request.
            sleep: Sleep function (injectable for tests).
            clock: Monotonic clock (injectable for tests).
            transport: Optional httpx transport (injectable for tests).
        """
        self.timeout_seconds = timeout_seconds
        self.interval_seconds = interval_seconds
        self.request_timeout_seconds = request_timeout_seconds
        self.sleep = sleep
        self.clock = clock
        self.transport = transport

    def is_serving(self, endpoint: str, image: str) -> tuple[bool, str | None]:
        """Fetch the seed image manifest once.

        Transport errors mean "not ready yet", never failure.

        Returns:
            Tuple of (serving, error).
        """
        try:
            with httpx.Client(timeout=self.request_timeout_seconds, transport=self.transport) as client:
                response = client.get(manifest_url(endpoint, image), headers={"Accept": MANIFEST_ACCEPT})
        except httpx.ConnectError:
            return False, "Connection refused"
        except httpx.TimeoutException:
            return False, "Request timeout"
        except httpx.HTTPError as e:
            return False, str(e)

        if response.status_code == 200:
            return True, None
        return False, f"HTTP {response.status_code}"

    def wait_for_seed_image(
        self,
        endpoint: str,
        image: str,
        cancel: threading.Event | None = None,
    ) -> HealthCheckResult:
        """Poll until the seed image is fetchable or the deadline passes.

        Args:
            endpoint: ``host:port`` of the injector entry point.
            image: Seed image reference.
            cancel: Optional event that ends the wait early.

        Returns:
            HealthCheckResult with status information.
        """
        start = self.clock()
        attempts = 0
        last_error: str | None = None

        def check() -> bool:
            nonlocal attempts, last_error
            attempts += 1
            serving, last_error = self.is_serving(endpoint, image)
            return serving

        policy = RetryPolicy.deadline(self.timeout_seconds, self.interval_seconds)
        healthy = poll_until(check, policy, cancel=cancel, sleep=self.sleep, clock=self.clock)

        return HealthCheckResult(
            healthy=healthy,
            attempts=attempts,
            elapsed_seconds=self.clock() - start,
            error=None if healthy else f"seed image not served within timeout. Last error: {last_error}",
        )
