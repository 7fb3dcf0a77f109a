"""Component installer.

Installs one component in a fixed order: before-actions, files, images,
repos, data injections (started in the background), charts and manifests,
then after-actions. Data injections belonging to the component are joined
before it counts as installed.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path

from ..cluster.data import DataInjector
from ..cluster.state import RegistryInfo
from ..config import DeployConfig
from ..errors import DataInjectionError
from ..loader import ComponentPaths
from ..retry import RetryCancelled, RetryPolicy, retry_call
from ..shared.logging import get_logger
from ..transport.git import GitTarget, GitTransport, repo_folder_name
from ..transport.images import ImageTransport, RegistryTarget
from ..types import Component, ConnectString, DataInjection, DeployedComponent, InstalledChart
from .actions import ActionContext, ActionRunner
from .charts import ChartInstall, ChartInstaller, manifest_chart_name, write_manifest_chart
from .context import DeployContext
from .files import stage_file

log = get_logger(__name__)

# The agent's own image cannot be mutated by the agent, so it keeps its original tag
AGENT_COMPONENT = "zarf-agent"


@dataclass
class ComponentResult:
    """What installing one component produced."""

    deployed: DeployedComponent
    connect_strings: dict[str, ConnectString] = field(default_factory=dict)


def registry_target(registry: RegistryInfo) -> RegistryTarget:
    return RegistryTarget(
        address=registry.address,
        username=registry.push_username,
        password=registry.push_password,
        insecure=registry.internal_registry,
    )


def merge_charts(previous: list[InstalledChart], installed: list[InstalledChart]) -> list[InstalledChart]:
    """Charts from an earlier deploy followed by any new ones, without duplicates."""
    merged = list(previous)
    for chart in installed:
        if chart not in merged:
            merged.append(chart)
    return merged


class ComponentInstaller:
    """Installs components against one cluster with pluggable adapters."""

    def __init__(
        self,
        config: DeployConfig,
        images: ImageTransport,
        git: GitTransport,
        charts: ChartInstaller,
        actions: ActionRunner,
        data_injector: DataInjector | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.images = images
        self.git = git
        self.charts = charts
        self.actions = actions
        self.data_injector = data_injector
        self.sleep = sleep

    def _push_policy(self) -> RetryPolicy:
        return RetryPolicy.attempts(max(self.config.retries, 1), self.config.retry_delay_seconds)

    def action_context(self, component: Component, ctx: DeployContext) -> ActionContext:
        return ActionContext(
            component=component.name,
            deploying_components=list(ctx.deploying_components),
            variables=dict(ctx.variables),
        )

    def install(
        self,
        component: Component,
        ctx: DeployContext,
        previous: DeployedComponent | None = None,
        skip_image_push: bool = False,
    ) -> ComponentResult:
        """Install ``component``.

        Args:
            component: The component to install
            ctx: The deploy run this install belongs to
            previous: The component's record from an earlier deploy, if any
            skip_image_push: Leave images alone (the seed registry serves its own)

        Returns:
            ComponentResult with the installed charts and connect strings

        Raises:
            ActionError: If a before or after action fails.
            PackageError: If a file fails verification.
            TransportError: If an image or repo push exhausts its retries.
            ChartError: If a chart install exhausts its retries.
        """
        log.info("component.install", component=component.name)
        paths = ctx.layout.component_paths(component)
        on_deploy = component.actions.on_deploy
        action_ctx = self.action_context(component, ctx)

        self.actions.run(on_deploy.before, on_deploy.defaults, action_ctx)

        for index, spec in enumerate(component.files):
            source = paths.files / str(index) / Path(spec.source).name
            target = stage_file(spec, source, ctx.temp_dir, ctx.templates)
            if target.is_file():
                ctx.templates.apply_file(target)

        if component.images and not skip_image_push:
            self.push_images(component, ctx, ctx.state.registry_info)

        if component.repos:
            self.push_repos(component, ctx, paths)

        with ThreadPoolExecutor(
            max_workers=max(len(component.data_injections), 1),
            thread_name_prefix=f"inject-{component.name}",
        ) as pool:
            futures = [
                pool.submit(self._inject, injection, index, paths, ctx)
                for index, injection in enumerate(component.data_injections)
            ]
            try:
                installed, connect_strings = self.install_charts(component, ctx, paths)
            except BaseException:
                ctx.cancel.set()
                raise
            finally:
                wait(futures)

        self.actions.run(on_deploy.after, on_deploy.defaults, action_ctx)

        deployed = DeployedComponent(
            name=component.name,
            installed_charts=merge_charts(previous.installed_charts if previous else [], installed),
        )
        return ComponentResult(deployed=deployed, connect_strings=connect_strings)

    def push_images(self, component: Component, ctx: DeployContext, registry: RegistryInfo) -> list[str]:
        """Push the component's images with a bounded number of full attempts."""
        checksum = component.name != AGENT_COMPONENT
        target = registry_target(registry)
        log.info("component.push_images", component=component.name, count=len(component.images))
        return retry_call(
            lambda: self.images.push(ctx.layout.images, component.images, target, checksum=checksum),
            self._push_policy(),
            on_retry=lambda attempt, e: log.warning(
                "component.push_images_retry", component=component.name, attempt=attempt, error=str(e)
            ),
            sleep=self.sleep,
        )

    def push_repos(self, component: Component, ctx: DeployContext, paths: ComponentPaths) -> list[str]:
        git_server = ctx.state.git_server
        target = GitTarget(
            address=git_server.address,
            username=git_server.push_username,
            password=git_server.push_password,
        )
        pushed = []
        for url in component.repos:
            repo_dir = paths.repos / repo_folder_name(url)
            log.info("component.push_repo", component=component.name, repo=url)
            pushed.append(
                retry_call(
                    lambda url=url, repo_dir=repo_dir: self.git.push(repo_dir, url, target),
                    self._push_policy(),
                    on_retry=lambda attempt, e: log.warning(
                        "component.push_repo_retry", component=component.name, attempt=attempt, error=str(e)
                    ),
                    sleep=self.sleep,
                )
            )
        return pushed

    def _inject(self, injection: DataInjection, index: int, paths: ComponentPaths, ctx: DeployContext) -> None:
        if self.data_injector is None:
            log.warning("component.data_injection_skipped", path=injection.target.path)
            return
        source = paths.data / str(index) / Path(injection.target.path).name
        try:
            self.data_injector.inject(injection, source, ctx.temp_dir / "injections", ctx.marker, ctx.cancel)
        except DataInjectionError as e:
            log.warning("component.data_injection_failed", path=injection.target.path, error=str(e))
        except RetryCancelled:
            log.warning("component.data_injection_cancelled", path=injection.target.path)

    def install_charts(
        self,
        component: Component,
        ctx: DeployContext,
        paths: ComponentPaths,
    ) -> tuple[list[InstalledChart], dict[str, ConnectString]]:
        """Install every chart, then every manifest set as a generated chart."""
        # Waiting on workloads that wait on injected data would deadlock
        force_no_wait = bool(component.data_injections)
        installed: list[InstalledChart] = []
        connect_strings: dict[str, ConnectString] = {}

        requests = []
        for chart in component.charts:
            chart_path = paths.charts / (f"{chart.name}-{chart.version}" if chart.version else chart.name)
            archive = chart_path.parent / f"{chart_path.name}.tgz"
            if not chart_path.exists() and archive.exists():
                chart_path = archive
            values_dir = ctx.temp_dir / "values" / component.name
            values = [
                ctx.templates.apply_copy(paths.values / f"{chart.name}-{i}", values_dir)
                for i in range(len(chart.values_files))
            ]
            requests.append(
                ChartInstall(
                    release=chart.release,
                    chart_path=chart_path,
                    namespace=chart.namespace,
                    values_files=values,
                    wait=not (chart.no_wait or force_no_wait),
                )
            )

        for manifest in component.manifests:
            files = [paths.manifests / f"{manifest.name}-{i}.yaml" for i in range(len(manifest.files))]
            name = manifest_chart_name(ctx.package.name, component.name, manifest.name)
            chart_dir = write_manifest_chart(name, files, ctx.temp_dir / "charts")
            for template in sorted((chart_dir / "templates").iterdir()):
                ctx.templates.apply_file(template)
            requests.append(
                ChartInstall(
                    release=name,
                    chart_path=chart_dir,
                    namespace=manifest.namespace,
                    values_files=[],
                    wait=not (manifest.no_wait or force_no_wait),
                )
            )

        for request in requests:
            chart, connects = retry_call(
                lambda request=request: self.charts.install(request),
                self._push_policy(),
                sleep=self.sleep,
            )
            installed.append(chart)
            connect_strings.update(connects)

        return installed, connect_strings
