"""Removal of deployed packages.

Components are removed in reverse deploy order, and each component's charts in
reverse install order. The package record is pruned after every uninstalled
chart and every removed component, and deleted once nothing is left.
"""

from __future__ import annotations

from ..cluster.client import ControlPlaneClient
from ..cluster.records import RecordStore
from ..errors import ZarfError
from ..shared.logging import get_logger
from ..types import Component, DeployedComponent, DeployedPackage
from .actions import ActionContext, ActionRunner
from .charts import ChartInstaller

log = get_logger(__name__)


class Remover:
    """Uninstalls recorded components of deployed packages."""

    def __init__(self, cluster: ControlPlaneClient, charts: ChartInstaller, actions: ActionRunner):
        self.records = RecordStore(cluster)
        self.charts = charts
        self.actions = actions

    def remove(self, package_name: str, components: list[str] | None = None) -> DeployedPackage | None:
        """Remove a deployed package, or only the named components of it.

        Args:
            package_name: Name of the deployed package
            components: Component names to remove; all components when omitted

        Returns:
            The remaining record, or None when the package is fully removed

        Raises:
            RecordNotFoundError: If the package was never deployed.
            ZarfError: If an action or chart uninstall fails; components removed
                before the failure stay removed.
        """
        record = self.records.get(package_name)
        selected = [
            c.name for c in record.deployed_components if components is None or c.name in components
        ]
        log.info("remove.start", package=package_name, components=selected)

        for deployed in reversed(list(record.deployed_components)):
            if deployed.name not in selected:
                continue
            self.remove_component(record, deployed)
            record.deployed_components = [c for c in record.deployed_components if c.name != deployed.name]
            if not self._persist(record):
                log.info("remove.complete", package=package_name)
                return None

        log.info("remove.complete", package=package_name, remaining=[c.name for c in record.deployed_components])
        return record

    def remove_component(self, record: DeployedPackage, deployed: DeployedComponent) -> None:
        """Run remove actions and uninstall the component's charts."""
        component = _find_component(record, deployed.name)
        on_remove = component.actions.on_remove
        context = ActionContext(component=deployed.name)

        try:
            self.actions.run(on_remove.before, on_remove.defaults, context)

            for chart in reversed(list(deployed.installed_charts)):
                self.charts.uninstall(chart)
                deployed.installed_charts.remove(chart)
                self._persist(record)

            self.actions.run(on_remove.after, on_remove.defaults, context)
            self.actions.run(on_remove.on_success, on_remove.defaults, context)
        except ZarfError:
            try:
                self.actions.run(on_remove.on_failure, on_remove.defaults, context)
            except ZarfError as e:
                log.warning("remove.on_failure_action_failed", component=deployed.name, error=str(e))
            raise

        log.info("remove.component_removed", package=record.name, component=deployed.name)

    def _persist(self, record: DeployedPackage) -> bool:
        """Save the record, or delete it when no components remain.

        Returns:
            False if the record was deleted
        """
        if not record.deployed_components:
            self.records.delete(record.name)
            return False
        self.records.save(record)
        return True


def _find_component(record: DeployedPackage, name: str) -> Component:
    for component in record.data.components:
        if component.name == name:
            return component
    # Recorded without its definition; remove with no actions
    return Component(name=name)
