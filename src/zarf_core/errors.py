"""Error types for zarf-core.

Every error carries a human-readable message and a ``retryable`` flag that the
retry primitive consults to decide whether another attempt is worthwhile.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class ZarfError(Exception):
    """Base error class for zarf-core errors."""

    message: str
    retryable: bool = False
    data: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message


@dataclass
class PackageError(ZarfError):
    """The package descriptor or its unpacked layout is invalid."""


@dataclass
class ClusterError(ZarfError):
    """A control-plane request failed."""

    retryable: bool = True


@dataclass
class SetupError(ZarfError):
    """Bootstrap setup (namespace, entry point, payload staging) failed."""


@dataclass
class InjectionExhaustedError(ZarfError):
    """Every injection candidate was tried and none served the seed image."""

    message: str = "Unable to perform the injection: no candidate image could run the seed registry"


@dataclass
class TransportError(ZarfError):
    """An image or git push failed."""

    retryable: bool = True


@dataclass
class StateError(ZarfError):
    """Cluster state could not be resolved."""


@dataclass
class StateNotFoundError(StateError):
    """No cluster state exists yet."""

    message: str = "Unable to load the cluster state. Did you remember to initialize the cluster?"


@dataclass
class StateMismatchError(StateError):
    """Persisted cluster state disagrees with the package being deployed."""


@dataclass
class ActionError(ZarfError):
    """A component action command failed."""


@dataclass
class ChartError(ZarfError):
    """A Helm install or uninstall failed."""


@dataclass
class DataInjectionError(ZarfError):
    """A data injection could not copy its payload into the target pod."""


@dataclass
class RecordNotFoundError(ZarfError):
    """No deployment record exists for the requested package."""


@dataclass
class DeployError(ZarfError):
    """A component failed to deploy; carries the partial deployment record."""

    component: str | None = None
    deployed_components: list[Any] = field(default_factory=list)


def is_retryable(error: BaseException) -> bool:
    """Classify an exception for the retry primitive.

    Errors that declare themselves non-retryable end retries immediately; any
    other exception is assumed to be transient.
    """
    if isinstance(error, ZarfError):
        return error.retryable
    return True
