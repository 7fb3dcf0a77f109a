"""Unit tests for package removal."""

from __future__ import annotations

import pytest
from conftest import RecordingActions, RecordingCharts

from zarf_core.cluster.records import RecordStore
from zarf_core.errors import ActionError, RecordNotFoundError
from zarf_core.packager import Remover
from zarf_core.errors import ChartError
from zarf_core.types import (
    Action,
    ActionSet,
    Component,
    ComponentActions,
    DeployedComponent,
    InstalledChart,
    Package,
    PackageKind,
    PackageMetadata,
)


def seed_record(cluster, components=None, deployed=None):
    """Record a package with components a and b, each owning charts."""
    package = Package(
        kind=PackageKind.STANDARD,
        metadata=PackageMetadata(name="app"),
        components=components or [Component(name="a"), Component(name="b")],
    )
    deployed = deployed or [
        DeployedComponent(
            name="a",
            installed_charts=[InstalledChart("a-ns", "a-one"), InstalledChart("a-ns", "a-two")],
        ),
        DeployedComponent(name="b", installed_charts=[InstalledChart("b-ns", "b-one")]),
    ]
    RecordStore(cluster).record_deploy(package, deployed, "v0.0.1", 1)


class TestRemover:
    """Tests for Remover.remove."""

    def test_remove_filtered_component(self, cluster):
        """Test removing a of [a, b] leaves b recorded and uninstalls a's charts."""
        seed_record(cluster)
        charts = RecordingCharts()

        remaining = Remover(cluster, charts, RecordingActions()).remove("app", ["a"])

        assert [c.name for c in remaining.deployed_components] == ["b"]
        assert [c.name for c in RecordStore(cluster).get("app").deployed_components] == ["b"]
        # Reverse install order
        assert [c.chart_name for c in charts.uninstalls] == ["a-two", "a-one"]

    def test_remove_whole_package(self, cluster):
        """Test components go in reverse order and the record is deleted."""
        seed_record(cluster)
        charts = RecordingCharts()

        remaining = Remover(cluster, charts, RecordingActions()).remove("app")

        assert remaining is None
        assert [c.chart_name for c in charts.uninstalls] == ["b-one", "a-two", "a-one"]
        assert RecordStore(cluster).get_or_none("app") is None

    def test_missing_package(self, cluster):
        """Test removing an unknown package fails."""
        with pytest.raises(RecordNotFoundError):
            Remover(cluster, RecordingCharts(), RecordingActions()).remove("app")

    def test_uninstall_failure_keeps_progress(self, cluster):
        """Test charts already uninstalled are dropped from the record on failure."""
        seed_record(cluster)
        charts = RecordingCharts(failing_uninstall={"a-one"})

        with pytest.raises(ChartError):
            Remover(cluster, charts, RecordingActions()).remove("app", ["a"])

        record = RecordStore(cluster).get("app")
        a = record.component("a")
        assert [c.chart_name for c in a.installed_charts] == ["a-one"]
        assert record.component("b") is not None

    def test_remove_actions(self, cluster):
        """Test before, after and success actions run around the uninstall."""
        on_remove = ActionSet(
            before=[Action(cmd="drain")],
            after=[Action(cmd="verify")],
            on_success=[Action(cmd="notify")],
            on_failure=[Action(cmd="alert")],
        )
        components = [Component(name="a", actions=ComponentActions(on_remove=on_remove)), Component(name="b")]
        seed_record(cluster, components=components)
        actions = RecordingActions()

        Remover(cluster, RecordingCharts(), actions).remove("app", ["a"])

        assert actions.ran == [("a", "drain"), ("a", "verify"), ("a", "notify")]

    def test_failed_action_runs_failure_actions(self, cluster):
        """Test a failing before action runs onFailure and keeps the component."""
        on_remove = ActionSet(before=[Action(cmd="drain")], on_failure=[Action(cmd="alert")])
        components = [Component(name="a", actions=ComponentActions(on_remove=on_remove)), Component(name="b")]
        seed_record(cluster, components=components)
        actions = RecordingActions(failing={"drain"})
        charts = RecordingCharts()

        with pytest.raises(ActionError):
            Remover(cluster, charts, actions).remove("app", ["a"])

        assert actions.ran == [("a", "drain"), ("a", "alert")]
        assert charts.uninstalls == []
        assert [c.name for c in RecordStore(cluster).get("app").deployed_components] == ["a", "b"]

    def test_component_without_definition(self, cluster):
        """Test a recorded component missing from the descriptor is still removed."""
        seed_record(
            cluster,
            components=[Component(name="b")],
            deployed=[
                DeployedComponent(name="a", installed_charts=[InstalledChart("a-ns", "a-one")]),
                DeployedComponent(name="b"),
            ],
        )
        charts = RecordingCharts()

        Remover(cluster, charts, RecordingActions()).remove("app", ["a"])

        assert [c.chart_name for c in charts.uninstalls] == ["a-one"]
