"""Per-package deployment records.

Each deployed package has a secret ``zarf/zarf-package-<name>`` labelled
``package-deploy-info=<name>`` whose ``data`` key holds the JSON-encoded
``DeployedPackage``.
"""

from __future__ import annotations

import json

from ..errors import RecordNotFoundError, StateError
from ..shared.logging import get_logger
from ..types import ConnectString, DeployedComponent, DeployedPackage, Package
from .client import ZARF_NAMESPACE, ControlPlaneClient, secret_body, secret_value

log = get_logger(__name__)

PACKAGE_INFO_LABEL = "package-deploy-info"
PACKAGE_SECRET_PREFIX = "zarf-package-"
RECORD_DATA_KEY = "data"


def record_secret_name(package_name: str) -> str:
    return PACKAGE_SECRET_PREFIX + package_name


class RecordStore:
    """Reads and writes DeployedPackage records."""

    def __init__(self, cluster: ControlPlaneClient):
        self.cluster = cluster

    def get(self, package_name: str) -> DeployedPackage:
        """Load the record for one package.

        Raises:
            RecordNotFoundError: If the package has no record.
        """
        secret = self.cluster.get_secret(ZARF_NAMESPACE, record_secret_name(package_name))
        raw = secret_value(secret, RECORD_DATA_KEY) if secret else None
        if raw is None:
            raise RecordNotFoundError(f"unable to find a deployed package named {package_name!r}")
        return self._decode(package_name, raw)

    def get_or_none(self, package_name: str) -> DeployedPackage | None:
        try:
            return self.get(package_name)
        except RecordNotFoundError:
            return None

    def list_packages(self) -> list[DeployedPackage]:
        """Every package with a deployment record, sorted by name."""
        records = []
        for secret in self.cluster.list_secrets(ZARF_NAMESPACE, label_selector=PACKAGE_INFO_LABEL):
            raw = secret_value(secret, RECORD_DATA_KEY)
            if raw is None:
                continue
            name = (secret.get("metadata") or {}).get("labels", {}).get(PACKAGE_INFO_LABEL, "")
            records.append(self._decode(name, raw))
        return sorted(records, key=lambda r: r.name)

    def save(self, record: DeployedPackage) -> None:
        body = secret_body(
            record_secret_name(record.name),
            ZARF_NAMESPACE,
            {RECORD_DATA_KEY: json.dumps(record.to_dict()).encode()},
            labels={PACKAGE_INFO_LABEL: record.name},
        )
        self.cluster.apply_secret(ZARF_NAMESPACE, body)
        log.debug(
            "records.saved",
            package=record.name,
            components=[c.name for c in record.deployed_components],
            generation=record.generation,
        )

    def delete(self, package_name: str) -> None:
        self.cluster.delete_secret(ZARF_NAMESPACE, record_secret_name(package_name))
        log.debug("records.deleted", package=package_name)

    def record_deploy(
        self,
        package: Package,
        deployed_components: list[DeployedComponent],
        cli_version: str,
        generation: int,
        connect_strings: dict[str, ConnectString] | None = None,
    ) -> DeployedPackage:
        """Persist the current progress of a deploy run.

        The record lists exactly the components this run has completed, in order.
        """
        record = DeployedPackage(
            name=package.name,
            data=package,
            deployed_components=list(deployed_components),
            connect_strings=dict(connect_strings or {}),
            generation=generation,
            cli_version=cli_version,
        )
        self.save(record)
        return record

    @staticmethod
    def _decode(package_name: str, raw: bytes) -> DeployedPackage:
        try:
            return DeployedPackage.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            raise StateError(f"unable to decode the record for package {package_name!r}: {e}") from e
