"""Unit tests for the component installer."""

from __future__ import annotations

import threading
from unittest.mock import MagicMock

import pytest
from conftest import RecordingActions, RecordingCharts, RecordingGit, RecordingImages, write_package

from zarf_core.cluster.state import ClusterState, GitServerInfo, RegistryInfo
from zarf_core.config import DeployConfig
from zarf_core.errors import ChartError, DataInjectionError, TransportError
from zarf_core.loader import load_package
from zarf_core.packager import ComponentInstaller, DeployContext, TemplateValues
from zarf_core.transport import RegistryTarget, repo_folder_name
from zarf_core.types import DeployedComponent, InstalledChart

REGISTRY = "127.0.0.1:31999"
MARKER = ".zarf-injection-1700000000"
REPO = "https://github.com/zarf-dev/zarf.git"

WEB = {
    "name": "web",
    "files": [{"source": "config.txt", "target": "###ZARF_TEMP###/config.txt"}],
    "images": ["nginx:1.25"],
    "repos": [REPO],
    "charts": [{"name": "podinfo", "namespace": "podinfo", "version": "6.4.0", "valuesFiles": ["values.yaml"]}],
    "manifests": [{"name": "extras", "namespace": "web", "files": ["configmap.yaml"]}],
    "actions": {"onDeploy": {"before": [{"cmd": "pre"}], "after": [{"cmd": "post"}]}},
}

WEB_FILES = {
    "components/web/files/0/config.txt": "registry=###ZARF_REGISTRY###\n",
    "components/web/values/podinfo-0": "image: ###ZARF_REGISTRY###/podinfo\n",
    "components/web/manifests/extras-0.yaml": "kind: ConfigMap\ndata:\n  registry: ###ZARF_REGISTRY###\n",
}

INJECTED = {
    "name": "model",
    "charts": [{"name": "server", "namespace": "ml"}],
    "dataInjections": [
        {
            "source": "weights",
            "target": {"namespace": "ml", "selector": "app=server", "container": "loader", "path": "/data/weights"},
        }
    ],
}


def make_context(tmp_path, *components, files=None):
    descriptor = {"kind": "ZarfPackageConfig", "metadata": {"name": "app"}, "components": list(components)}
    layout = load_package(write_package(tmp_path / "pkg", descriptor, files))
    state = ClusterState(
        registry_info=RegistryInfo(address=REGISTRY, push_username="zarf-push", push_password="pw", internal_registry=True),
        git_server=GitServerInfo(address="http://gitea:3000", push_username="zarf-git-user", push_password="gpw"),
    )
    temp_dir = tmp_path / "tmp"
    temp_dir.mkdir()
    return DeployContext(
        layout=layout,
        state=state,
        templates=TemplateValues.for_deploy(layout.package, state, {}, MARKER),
        variables={},
        temp_dir=temp_dir,
        deploying_components=[c["name"] for c in components],
        marker=MARKER,
    )


def make_installer(no_sleep, images=None, git=None, charts=None, actions=None, data_injector=None, retries=3):
    return ComponentInstaller(
        DeployConfig(retries=retries, retry_delay_seconds=0),
        images=images if images is not None else RecordingImages(),
        git=git if git is not None else RecordingGit(),
        charts=charts if charts is not None else RecordingCharts(),
        actions=actions if actions is not None else RecordingActions(),
        data_injector=data_injector,
        sleep=no_sleep,
    )


class TestInstall:
    """Tests for ComponentInstaller.install."""

    def test_step_order(self, tmp_path, no_sleep):
        """Test actions, images, repos and charts run in order."""
        ctx = make_context(tmp_path, WEB, files=WEB_FILES)
        manager = MagicMock()
        manager.images.push.return_value = []
        manager.git.push.return_value = "http://gitea:3000/zarf-git-user/zarf.git"
        manager.charts.install.side_effect = lambda request: (
            InstalledChart(namespace=request.namespace, chart_name=request.release),
            {},
        )
        installer = make_installer(
            no_sleep, images=manager.images, git=manager.git, charts=manager.charts, actions=manager.actions
        )

        installer.install(ctx.package.components[0], ctx)

        assert [name for name, _, _ in manager.mock_calls] == [
            "actions.run",
            "images.push",
            "git.push",
            "charts.install",
            "charts.install",
            "actions.run",
        ]

    def test_resources(self, tmp_path, no_sleep):
        """Test files, images, repos, charts and manifests land where expected."""
        ctx = make_context(tmp_path, WEB, files=WEB_FILES)
        images, git, charts, actions = RecordingImages(), RecordingGit(), RecordingCharts(), RecordingActions()
        installer = make_installer(no_sleep, images=images, git=git, charts=charts, actions=actions)
        paths = ctx.layout.component_paths("web")

        result = installer.install(ctx.package.components[0], ctx)

        assert (ctx.temp_dir / "config.txt").read_text() == f"registry={REGISTRY}\n"
        assert images.pushes == [(["nginx:1.25"], REGISTRY, True)]
        assert git.pushes == [(paths.repos / repo_folder_name(REPO), REPO, "http://gitea:3000")]
        assert actions.ran == [("web", "pre"), ("web", "post")]

        chart, manifest = charts.installs
        assert chart.release == "podinfo"
        assert chart.chart_path == paths.charts / "podinfo-6.4.0"
        assert chart.values_files == [ctx.temp_dir / "values" / "web" / "podinfo-0"]
        assert chart.values_files[0].read_text() == f"image: {REGISTRY}/podinfo\n"
        assert chart.wait
        assert manifest.release == "app-web-extras"
        assert manifest.namespace == "web"
        assert manifest.chart_path.parent == ctx.temp_dir / "charts"
        rendered = (manifest.chart_path / "templates" / "000-extras-0.yaml").read_text()
        assert rendered == f"kind: ConfigMap\ndata:\n  registry: {REGISTRY}\n"

        assert (paths.values / "podinfo-0").read_text() == "image: ###ZARF_REGISTRY###/podinfo\n"
        assert "###ZARF_REGISTRY###" in (paths.manifests / "extras-0.yaml").read_text()

        assert [c.chart_name for c in result.deployed.installed_charts] == ["podinfo", "app-web-extras"]

    def test_packaged_chart_archive(self, tmp_path, no_sleep):
        """Test a chart shipped as a .tgz archive is used when no directory exists."""
        files = dict(WEB_FILES)
        files["components/web/charts/podinfo-6.4.0.tgz"] = b"\x1f\x8b"
        ctx = make_context(tmp_path, WEB, files=files)
        charts = RecordingCharts()

        make_installer(no_sleep, charts=charts).install(ctx.package.components[0], ctx)

        assert charts.installs[0].chart_path.name == "podinfo-6.4.0.tgz"

    def test_skip_image_push(self, tmp_path, no_sleep):
        """Test images can be left for a later push."""
        ctx = make_context(tmp_path, WEB, files=WEB_FILES)
        images = RecordingImages()

        make_installer(no_sleep, images=images).install(ctx.package.components[0], ctx, skip_image_push=True)

        assert images.pushes == []

    def test_previous_charts_kept(self, tmp_path, no_sleep):
        """Test charts from an earlier deploy stay recorded."""
        ctx = make_context(tmp_path, WEB, files=WEB_FILES)
        previous = DeployedComponent(
            name="web",
            installed_charts=[InstalledChart("old", "legacy"), InstalledChart("podinfo", "podinfo")],
        )

        result = make_installer(no_sleep).install(ctx.package.components[0], ctx, previous)

        assert [c.chart_name for c in result.deployed.installed_charts] == ["legacy", "podinfo", "app-web-extras"]


class TestPushImages:
    """Tests for image push retries."""

    def test_retries_transient_failures(self, tmp_path, no_sleep):
        """Test a transient push failure is retried."""
        ctx = make_context(tmp_path, {"name": "web", "images": ["nginx:1.25"]})
        images = MagicMock()
        images.push.side_effect = [TransportError("reset"), ["pushed"]]

        pushed = make_installer(no_sleep, images=images).push_images(ctx.package.components[0], ctx, ctx.state.registry_info)

        assert pushed == ["pushed"]
        assert images.push.call_count == 2
        target = images.push.call_args.args[2]
        assert target == RegistryTarget(address=REGISTRY, username="zarf-push", password="pw", insecure=True)

    def test_retries_exhausted(self, tmp_path, no_sleep):
        """Test the last error surfaces after every attempt fails."""
        ctx = make_context(tmp_path, {"name": "web", "images": ["nginx:1.25"]})
        images = RecordingImages(failing={"nginx:1.25"})

        with pytest.raises(TransportError):
            make_installer(no_sleep, images=images, retries=3).push_images(
                ctx.package.components[0], ctx, ctx.state.registry_info
            )
        assert len(images.pushes) == 3

    def test_agent_keeps_tags(self, tmp_path, no_sleep):
        """Test the agent component's images are pushed without checksum tags."""
        ctx = make_context(tmp_path, {"name": "zarf-agent", "images": ["ghcr.io/zarf-dev/agent:v1"]})
        images = RecordingImages()

        make_installer(no_sleep, images=images).push_images(ctx.package.components[0], ctx, ctx.state.registry_info)

        assert images.pushes == [(["ghcr.io/zarf-dev/agent:v1"], REGISTRY, False)]


class FakeDataInjector:
    """Data injector that records calls and can fail or wait for cancellation."""

    def __init__(self, error=None, wait_for_cancel=False):
        self.calls = []
        self.error = error
        self.wait_for_cancel = wait_for_cancel
        self.saw_cancel = False

    def inject(self, injection, source, marker_dir, marker, cancel):
        self.calls.append((injection.target.path, source, marker))
        if self.wait_for_cancel:
            self.saw_cancel = cancel.wait(5)
            return
        if self.error:
            raise self.error


class TestDataInjections:
    """Tests for data injections during install."""

    def test_injection_runs_and_forces_no_wait(self, tmp_path, no_sleep):
        """Test injections start with the run marker and charts skip waiting."""
        ctx = make_context(tmp_path, INJECTED)
        injector = FakeDataInjector()
        charts = RecordingCharts()

        make_installer(no_sleep, charts=charts, data_injector=injector).install(ctx.package.components[0], ctx)

        paths = ctx.layout.component_paths("model")
        assert injector.calls == [("/data/weights", paths.data / "0" / "weights", MARKER)]
        assert charts.installs[0].wait is False

    def test_injection_failure_only_warns(self, tmp_path, no_sleep):
        """Test a failed injection does not fail the component."""
        ctx = make_context(tmp_path, INJECTED)
        injector = FakeDataInjector(error=DataInjectionError("copy failed"))

        result = make_installer(no_sleep, data_injector=injector).install(ctx.package.components[0], ctx)

        assert result.deployed.name == "model"

    def test_chart_failure_cancels_injections(self, tmp_path, no_sleep):
        """Test a failed chart install releases injections still waiting."""
        ctx = make_context(tmp_path, INJECTED)
        injector = FakeDataInjector(wait_for_cancel=True)
        charts = MagicMock()
        charts.install.side_effect = ChartError("release failed")

        with pytest.raises(ChartError):
            make_installer(no_sleep, charts=charts, data_injector=injector).install(ctx.package.components[0], ctx)

        assert ctx.cancel.is_set()
        assert injector.saw_cancel

    def test_without_injector(self, tmp_path, no_sleep):
        """Test injections are skipped when no injector is configured."""
        ctx = make_context(tmp_path, INJECTED)
        result = make_installer(no_sleep).install(ctx.package.components[0], ctx)
        assert result.deployed.installed_charts == [InstalledChart(namespace="ml", chart_name="server")]


def test_action_context_is_run_scoped(tmp_path, no_sleep):
    """Test each run exposes its own deploying components to actions."""
    ctx = make_context(tmp_path, {"name": "a"}, {"name": "b"})
    context = make_installer(no_sleep).action_context(ctx.package.components[1], ctx)

    assert context.component == "b"
    assert context.deploying_components == ["a", "b"]


class HandoffInjector:
    """Data injector whose weights injection waits until the tokenizer one is done."""

    def __init__(self, events):
        self.events = events
        self.tokenizer_done = threading.Event()
        self.marker_dirs = []

    def inject(self, injection, source, marker_dir, marker, cancel):
        self.marker_dirs.append(marker_dir)
        if injection.target.path == "/data/weights":
            released = self.tokenizer_done.wait(5)
            self.events.append(("weights", released))
        else:
            self.events.append(("tokenizer", True))
            self.tokenizer_done.set()


class LoggingActions(RecordingActions):
    """ActionRunner that writes into a shared event log."""

    def __init__(self, events):
        super().__init__()
        self.events = events

    def run(self, actions, defaults, context):
        super().run(actions, defaults, context)
        self.events.extend(("action", action.cmd) for action in actions)


def test_component_waits_for_every_injection(tmp_path, no_sleep):
    """Test install joins all injections before the after actions run."""
    component = dict(INJECTED)
    component["dataInjections"] = INJECTED["dataInjections"] + [
        {
            "source": "tokenizer",
            "target": {"namespace": "ml", "selector": "app=server", "container": "loader", "path": "/data/tokenizer"},
        }
    ]
    component["actions"] = {"onDeploy": {"after": [{"cmd": "post"}]}}
    ctx = make_context(tmp_path, component)
    events = []
    injector = HandoffInjector(events)

    make_installer(no_sleep, actions=LoggingActions(events), data_injector=injector).install(
        ctx.package.components[0], ctx
    )

    assert events == [("tokenizer", True), ("weights", True), ("action", "post")]
    assert injector.marker_dirs == [ctx.temp_dir / "injections"] * 2
    assert not ctx.cancel.is_set()
