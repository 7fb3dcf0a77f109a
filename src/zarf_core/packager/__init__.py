"""Package deployment and removal.

This package turns an unpacked package into installed cluster resources:
1. Templates values, manifests and files for the target cluster
2. Runs component actions around each step
3. Pushes images and repos, injects data, installs charts
4. Records every deployed component as it completes
5. Removes recorded components in reverse order
"""

from .actions import ActionContext, ActionRunner, ShellActionRunner
from .charts import ChartInstall, ChartInstaller, HelmInstaller
from .component import ComponentInstaller, ComponentResult
from .context import DeployContext
from .deploy import Deployer, DeployOptions, DeployResult, resolve_components
from .files import stage_file
from .remove import Remover
from .templates import TemplateValues, parse_set_variables

__all__ = [
    # Orchestration
    "Deployer",
    "DeployOptions",
    "DeployResult",
    "DeployContext",
    "resolve_components",
    # Components
    "ComponentInstaller",
    "ComponentResult",
    "stage_file",
    # Charts
    "ChartInstaller",
    "ChartInstall",
    "HelmInstaller",
    # Actions
    "ActionRunner",
    "ActionContext",
    "ShellActionRunner",
    # Templates
    "TemplateValues",
    "parse_set_variables",
    # Removal
    "Remover",
]
