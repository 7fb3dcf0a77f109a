"""Deployment orchestrator.

Drives one deploy run: resolves the cluster state, installs components in
package order and persists the deployment record after every component, so
a run that fails part way leaves an accurate partial record behind.
"""

from __future__ import annotations

import shutil
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from ..bootstrap.chunker import split_payload
from ..bootstrap.health import SeedRegistryPoller
from ..bootstrap.injector import BootstrapInjector
from ..bootstrap.payload import build_payload
from ..cluster.client import ControlPlaneClient, wait_for_healthy_cluster
from ..cluster.data import injection_marker
from ..cluster.records import RecordStore
from ..cluster.state import (
    ArtifactServerInfo,
    ClusterState,
    GitServerInfo,
    InjectorInfo,
    RegistryInfo,
    StateInitOptions,
    StateStore,
    check_architecture,
)
from ..config import DeployConfig
from ..errors import DeployError, PackageError, SetupError, ZarfError
from ..loader import PackageLayout, load_package, validate_package
from ..shared.logging import get_logger
from ..shared.paths import make_temp_dir
from ..types import Component, ConnectString, DeployedComponent, Package
from .component import ComponentInstaller, ComponentResult
from .context import DeployContext
from .templates import TemplateValues, placeholder

log = get_logger(__name__)

# Init package component roles
INJECTOR_COMPONENT = "zarf-injector"
SEED_REGISTRY_COMPONENT = "zarf-seed-registry"
REGISTRY_COMPONENT = "zarf-registry"
K3S_COMPONENT = "k3s"

REGISTRY_COMPONENTS = (INJECTOR_COMPONENT, SEED_REGISTRY_COMPONENT, REGISTRY_COMPONENT)

# Staged by the zarf-injector component into the run's temp directory
UNPACKER_FILE = "zarf-injector"


@dataclass
class DeployOptions:
    """Per-run deploy inputs."""

    package_path: str = ""
    components: list[str] | None = None
    set_variables: dict[str, str] = field(default_factory=dict)
    architecture: str = ""
    storage_class: str = ""
    registry_info: RegistryInfo = field(default_factory=RegistryInfo)
    git_server: GitServerInfo = field(default_factory=GitServerInfo)
    artifact_server: ArtifactServerInfo = field(default_factory=ArtifactServerInfo)


@dataclass
class DeployResult:
    """What a successful deploy run installed."""

    package: str
    deployed_components: list[DeployedComponent] = field(default_factory=list)
    connect_strings: dict[str, ConnectString] = field(default_factory=dict)
    generation: int = 1


def resolve_components(package: Package, names: list[str] | None) -> list[Component]:
    """Components to deploy, in package order.

    With no names every component is selected. Otherwise required components
    plus the named ones are.

    Raises:
        PackageError: If a name matches no component.
    """
    if names is None:
        return list(package.components)

    known = {c.name for c in package.components}
    unknown = [n for n in names if n not in known]
    if unknown:
        raise PackageError(f"no such component(s) in {package.name}: {', '.join(unknown)}")
    return [c for c in package.components if c.required or c.name in names]


class Deployer:
    """Deploys packages into one cluster."""

    def __init__(
        self,
        cluster: ControlPlaneClient,
        config: DeployConfig,
        installer: ComponentInstaller,
        injector: BootstrapInjector | None = None,
        cli_version: str = "",
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.cluster = cluster
        self.config = config
        self.installer = installer
        self.injector = injector
        self.cli_version = cli_version
        self.sleep = sleep
        self.state_store = StateStore(cluster)
        self.records = RecordStore(cluster)

    def deploy(self, options: DeployOptions) -> DeployResult:
        """Load the package at ``options.package_path`` and deploy it."""
        layout = load_package(options.package_path, self.config.temp_dir)
        try:
            return self.deploy_layout(layout, options)
        finally:
            layout.cleanup()

    def deploy_layout(self, layout: PackageLayout, options: DeployOptions) -> DeployResult:
        """Deploy an already unpacked package.

        Returns:
            DeployResult listing every component installed

        Raises:
            PackageError: If the package fails validation.
            StateError: If the cluster state is missing or disagrees with the package.
            ClusterError: If the cluster never becomes healthy.
            DeployError: If a component fails; carries the components installed before it.
        """
        package = layout.package
        validate_package(package)
        components = resolve_components(package, options.components)

        variables = {v.name: v.default for v in package.variables}
        variables.update(options.set_variables)

        started = time.time()
        marker = injection_marker(started)
        ctx = DeployContext(
            layout=layout,
            state=ClusterState(),
            templates=TemplateValues.for_deploy(package, ClusterState(), options.set_variables, marker),
            variables=variables,
            temp_dir=make_temp_dir(self.config.temp_dir),
            deploying_components=[c.name for c in components],
            marker=marker,
            started=started,
        )

        try:
            # An appliance init brings up its own cluster, so connect once a component needs it
            appliance = package.is_init and any(c.name == K3S_COMPONENT for c in components)
            if (package.is_init or any(c.requires_cluster for c in components)) and not appliance:
                self.connect(ctx, components, options)

            log.info("deploy.start", package=package.name, components=ctx.deploying_components)
            return self._deploy_components(components, ctx, options)
        finally:
            ctx.cancel.set()
            shutil.rmtree(ctx.temp_dir, ignore_errors=True)

    def connect(self, ctx: DeployContext, components: list[Component], options: DeployOptions) -> None:
        """Resolve cluster state, the previous record and template values for ``ctx``."""
        package = ctx.package
        ctx.state = self.resolve_state(package, components, options)
        ctx.previous = self.records.get_or_none(package.name)
        ctx.generation = ctx.previous.generation + 1 if ctx.previous else 1
        ctx.templates = TemplateValues.for_deploy(package, ctx.state, options.set_variables, ctx.marker)
        ctx.connected = True
        log.debug("deploy.connected", package=package.name, distro=ctx.state.distro, generation=ctx.generation)

    def resolve_state(
        self,
        package: Package,
        components: list[Component],
        options: DeployOptions,
    ) -> ClusterState:
        """Resolve the cluster state before any cluster component installs.

        Raises:
            StateMismatchError: If the cluster architecture differs from the package's.
            StateNotFoundError: If a standard package targets an uninitialized cluster.
            ClusterError: If the cluster does not become healthy in time.
        """
        wait_for_healthy_cluster(
            self.cluster,
            self.config.cluster_timeout(package.is_init),
            self.config.poll_interval_seconds,
            sleep=self.sleep,
        )

        if package.is_init:
            return self.state_store.init(
                StateInitOptions(
                    architecture=options.architecture or package.architecture,
                    storage_class=options.storage_class,
                    appliance_mode=any(c.name == K3S_COMPONENT for c in components),
                    registry_info=options.registry_info,
                    git_server=options.git_server,
                    artifact_server=options.artifact_server,
                )
            )

        if package.metadata.yolo:
            state = self.state_store.load_or_none()
            if state is None:
                log.info("deploy.yolo_state", package=package.name)
                return self.state_store.yolo_state()
        else:
            state = self.state_store.load()

        check_architecture(state, options.architecture or package.architecture)
        return state

    def _deploy_components(
        self,
        components: list[Component],
        ctx: DeployContext,
        options: DeployOptions,
    ) -> DeployResult:
        deployed: list[DeployedComponent] = []
        connect_strings: dict[str, ConnectString] = {}

        for component in components:
            try:
                if component.requires_cluster and not ctx.connected:
                    self.connect(ctx, components, options)
                previous = ctx.previous.component(component.name) if ctx.previous else None
                result = self.deploy_component(component, ctx, options, previous)
            except Exception as e:
                raise self._failed(component, ctx, deployed, e) from e

            deployed.append(result.deployed)
            connect_strings.update(result.connect_strings)

            if ctx.connected:
                self._record(ctx, deployed, connect_strings)

            on_deploy = component.actions.on_deploy
            try:
                self.installer.actions.run(
                    on_deploy.on_success, on_deploy.defaults, self.installer.action_context(component, ctx)
                )
            except ZarfError as e:
                raise self._failed(component, ctx, deployed, e) from e

        log.info("deploy.complete", package=ctx.package.name, components=[c.name for c in deployed])
        return DeployResult(
            package=ctx.package.name,
            deployed_components=deployed,
            connect_strings=connect_strings,
            generation=ctx.generation,
        )

    def deploy_component(
        self,
        component: Component,
        ctx: DeployContext,
        options: DeployOptions,
        previous: DeployedComponent | None = None,
    ) -> ComponentResult:
        """Install one component, applying init package roles."""
        if ctx.package.is_init:
            if options.registry_info.address and component.name in REGISTRY_COMPONENTS:
                log.info("deploy.component_skipped", component=component.name, reason="external registry")
                return ComponentResult(deployed=DeployedComponent(name=component.name))
            if component.name == SEED_REGISTRY_COMPONENT:
                return self.deploy_seed_registry(component, ctx, previous)

        return self.installer.install(component, ctx, previous)

    def deploy_seed_registry(
        self,
        component: Component,
        ctx: DeployContext,
        previous: DeployedComponent | None = None,
    ) -> ComponentResult:
        """Inject the seed registry, install the component, then seed the permanent registry.

        Raises:
            SetupError: If the bootstrap inputs are missing or cluster setup fails.
            InjectionExhaustedError: If no running image could host the seed registry.
        """
        if not component.images:
            raise PackageError(f"component {component.name!r} does not name a seed image")
        seed_image = component.images[0]

        unpacker = ctx.temp_dir / UNPACKER_FILE
        if not unpacker.is_file():
            raise SetupError(
                f"the injector binary was not staged at {unpacker}; deploy {INJECTOR_COMPONENT} first"
            )

        payload = split_payload(build_payload(unpacker, ctx.layout.seed_images))
        injector = self.injector or self._default_injector()
        result = injector.run(payload, unpacker.read_bytes(), seed_image, cancel=ctx.cancel)

        ctx.state.injector_info = InjectorInfo(
            node_port=result.node_port,
            payload_sha256=payload.sha256,
            chunk_count=len(payload.chunks),
        )
        self.state_store.save(ctx.state)
        ctx.templates.values[placeholder("SEED_REGISTRY")] = result.endpoint

        installed = self.installer.install(component, ctx, previous, skip_image_push=True)

        # The permanent registry is now reachable; give it the seed image
        self.installer.push_images(component, ctx, ctx.state.registry_info)
        injector.teardown()
        return installed

    def _default_injector(self) -> BootstrapInjector:
        poller = SeedRegistryPoller(
            timeout_seconds=self.config.injector_timeout_seconds,
            interval_seconds=self.config.poll_interval_seconds,
            sleep=self.sleep,
        )
        return BootstrapInjector(
            self.cluster,
            poller=poller,
            seed_host=self.config.seed_host,
            interval_seconds=self.config.poll_interval_seconds,
            sleep=self.sleep,
        )

    def _record(
        self,
        ctx: DeployContext,
        deployed: list[DeployedComponent],
        connect_strings: dict[str, ConnectString],
    ) -> None:
        for component in deployed:
            if not component.observed_generation:
                component.observed_generation = ctx.generation
        try:
            self.records.record_deploy(ctx.package, deployed, self.cli_version, ctx.generation, connect_strings)
        except ZarfError as e:
            log.warning("deploy.record_failed", package=ctx.package.name, error=str(e))

    def _failed(
        self,
        component: Component,
        ctx: DeployContext,
        deployed: list[DeployedComponent],
        error: Exception,
    ) -> DeployError:
        ctx.cancel.set()
        on_deploy = component.actions.on_deploy
        try:
            self.installer.actions.run(
                on_deploy.on_failure, on_deploy.defaults, self.installer.action_context(component, ctx)
            )
        except ZarfError as e:
            log.warning("deploy.on_failure_action_failed", component=component.name, error=str(e))

        log.error("deploy.component_failed", component=component.name, error=str(error))
        return DeployError(
            f"unable to deploy component {component.name!r}: {error}",
            component=component.name,
            deployed_components=list(deployed),
        )
