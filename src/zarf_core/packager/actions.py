"""Component actions: shell commands run around each component step."""

from __future__ import annotations

import os
import subprocess
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from ..errors import ActionError
from ..retry import RetryPolicy, retry_call
from ..shared.logging import get_logger
from ..types import Action, ActionDefaults

log = get_logger(__name__)


@dataclass
class ActionContext:
    """What an action can see about the run it belongs to."""

    component: str
    deploying_components: list[str] = field(default_factory=list)
    variables: dict[str, str] = field(default_factory=dict)
    base_dir: Path | None = None

    def environment(self) -> dict[str, str]:
        env = {f"ZARF_VAR_{name}": value for name, value in self.variables.items()}
        env["ZARF_COMPONENT_NAME"] = self.component
        env["ZARF_DEPLOYING_COMPONENTS"] = ",".join(self.deploying_components)
        return env


@dataclass
class ResolvedAction:
    """An action with its set's defaults applied."""

    cmd: str
    dir: str | None
    env: list[str]
    max_retries: int
    max_total_seconds: int
    mute: bool
    description: str

    @classmethod
    def resolve(cls, action: Action, defaults: ActionDefaults) -> ResolvedAction:
        return cls(
            cmd=action.cmd,
            dir=action.dir if action.dir is not None else defaults.dir,
            env=[*defaults.env, *action.env],
            max_retries=action.max_retries if action.max_retries is not None else defaults.max_retries,
            max_total_seconds=(
                action.max_total_seconds if action.max_total_seconds is not None else defaults.max_total_seconds
            ),
            mute=action.mute if action.mute is not None else defaults.mute,
            description=action.description,
        )


class ActionRunner(Protocol):
    """Executes action lists."""

    def run(self, actions: list[Action], defaults: ActionDefaults, context: ActionContext) -> None: ...


class ShellActionRunner:
    """Runs actions through ``sh -c`` with per-action retries and time limits."""

    def __init__(
        self,
        shell: tuple[str, ...] = ("sh", "-c"),
        interval_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.shell = shell
        self.interval_seconds = interval_seconds
        self.sleep = sleep
        self.clock = clock

    def run(self, actions: list[Action], defaults: ActionDefaults, context: ActionContext) -> None:
        """Run ``actions`` in order, stopping at the first that fails.

        Raises:
            ActionError: If an action fails after all its retries.
        """
        for action in actions:
            self.run_action(ResolvedAction.resolve(action, defaults), context)

    def _environment(self, action: ResolvedAction, context: ActionContext) -> dict[str, str]:
        env = dict(os.environ)
        env.update(context.environment())
        for entry in action.env:
            key, _, value = entry.partition("=")
            env[key] = value
        return env

    def _cwd(self, action: ResolvedAction, context: ActionContext) -> str | None:
        if not action.dir:
            return str(context.base_dir) if context.base_dir else None
        path = Path(action.dir).expanduser()
        if not path.is_absolute() and context.base_dir:
            path = context.base_dir / path
        return str(path)

    def run_action(self, action: ResolvedAction, context: ActionContext) -> str:
        """Run one action.

        Returns:
            The command's standard output.
        """
        label = action.description or action.cmd
        env = self._environment(action, context)
        cwd = self._cwd(action, context)
        started = self.clock()

        def attempt() -> str:
            timeout = None
            if action.max_total_seconds > 0:
                timeout = action.max_total_seconds - (self.clock() - started)
                if timeout <= 0:
                    raise ActionError(f"action {label!r} timed out after {action.max_total_seconds}s")
            try:
                result = subprocess.run(
                    [*self.shell, action.cmd],
                    cwd=cwd,
                    env=env,
                    capture_output=True,
                    text=True,
                    timeout=timeout,
                )
            except subprocess.TimeoutExpired as e:
                raise ActionError(f"action {label!r} timed out after {action.max_total_seconds}s") from e
            except FileNotFoundError as e:
                raise ActionError(f"unable to run action {label!r}: {e}") from e

            if not action.mute and result.stdout.strip():
                log.info("action.output", component=context.component, action=label, output=result.stdout.strip())
            if result.returncode != 0:
                raise ActionError(
                    f"action {label!r} failed with exit code {result.returncode}: {result.stderr.strip()}",
                    retryable=True,
                    data={"exit_code": result.returncode},
                )
            return result.stdout

        log.debug("action.run", component=context.component, action=label, retries=action.max_retries)
        return retry_call(
            attempt,
            RetryPolicy.attempts(action.max_retries + 1, self.interval_seconds),
            sleep=self.sleep,
            clock=self.clock,
        )
