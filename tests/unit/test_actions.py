"""Unit tests for component actions."""

from __future__ import annotations

import pytest

from zarf_core.errors import ActionError
from zarf_core.packager.actions import ActionContext, ResolvedAction, ShellActionRunner
from zarf_core.types import Action, ActionDefaults


@pytest.fixture
def runner(no_sleep):
    return ShellActionRunner(interval_seconds=0, sleep=no_sleep)


class TestResolvedAction:
    """Tests for applying set defaults."""

    def test_defaults_fill_gaps(self):
        """Test unset fields come from the defaults."""
        defaults = ActionDefaults(dir="/work", env=["A=1"], max_retries=2, max_total_seconds=30, mute=True)
        resolved = ResolvedAction.resolve(Action(cmd="make", env=["B=2"]), defaults)

        assert resolved.dir == "/work"
        assert resolved.env == ["A=1", "B=2"]
        assert resolved.max_retries == 2
        assert resolved.max_total_seconds == 30
        assert resolved.mute is True

    def test_action_overrides(self):
        """Test explicit action values win, including falsy ones."""
        defaults = ActionDefaults(max_retries=5, mute=True)
        resolved = ResolvedAction.resolve(Action(cmd="make", max_retries=0, mute=False), defaults)

        assert resolved.max_retries == 0
        assert resolved.mute is False


class TestActionContext:
    """Tests for the action environment."""

    def test_environment(self):
        """Test variables and deploying components are exported."""
        context = ActionContext(
            component="web", deploying_components=["db", "web"], variables={"DOMAIN": "example.com"}
        )
        assert context.environment() == {
            "ZARF_VAR_DOMAIN": "example.com",
            "ZARF_COMPONENT_NAME": "web",
            "ZARF_DEPLOYING_COMPONENTS": "db,web",
        }


class TestShellActionRunner:
    """Tests for ShellActionRunner."""

    def test_runs_in_order(self, runner, tmp_path):
        """Test actions run in order in the base directory."""
        actions = [Action(cmd="echo one >> log"), Action(cmd="echo two >> log")]
        runner.run(actions, ActionDefaults(), ActionContext(component="web", base_dir=tmp_path))

        assert (tmp_path / "log").read_text() == "one\ntwo\n"

    def test_sees_variables_and_env(self, runner, tmp_path):
        """Test deploy variables and action env reach the command."""
        action = Action(cmd='echo "$ZARF_VAR_DOMAIN $EXTRA $ZARF_COMPONENT_NAME" > out', env=["EXTRA=yes"])
        context = ActionContext(component="web", variables={"DOMAIN": "example.com"}, base_dir=tmp_path)

        runner.run([action], ActionDefaults(), context)

        assert (tmp_path / "out").read_text() == "example.com yes web\n"

    def test_relative_dir(self, runner, tmp_path):
        """Test a relative dir resolves against the base directory."""
        (tmp_path / "sub").mkdir()
        runner.run(
            [Action(cmd="pwd > where", dir="sub")], ActionDefaults(), ActionContext(component="web", base_dir=tmp_path)
        )
        assert (tmp_path / "sub" / "where").read_text().strip() == str(tmp_path / "sub")

    def test_retries_then_fails(self, runner, tmp_path):
        """Test a failing action runs max_retries + 1 times."""
        action = Action(cmd="echo try >> attempts; exit 3", max_retries=2)

        with pytest.raises(ActionError) as exc_info:
            runner.run([action], ActionDefaults(), ActionContext(component="web", base_dir=tmp_path))

        assert exc_info.value.data["exit_code"] == 3
        assert (tmp_path / "attempts").read_text().count("try") == 3

    def test_stops_at_first_failure(self, runner, tmp_path):
        """Test later actions do not run after a failure."""
        actions = [Action(cmd="exit 1"), Action(cmd="touch second")]

        with pytest.raises(ActionError):
            runner.run(actions, ActionDefaults(), ActionContext(component="web", base_dir=tmp_path))
        assert not (tmp_path / "second").exists()

    def test_time_limit(self, runner, tmp_path):
        """Test an action exceeding its time limit fails."""
        action = Action(cmd="sleep 5", max_total_seconds=1)

        with pytest.raises(ActionError, match="timed out"):
            runner.run([action], ActionDefaults(), ActionContext(component="web", base_dir=tmp_path))

    def test_returns_output(self, runner):
        """Test run_action returns stdout."""
        resolved = ResolvedAction.resolve(Action(cmd="printf hello"), ActionDefaults())
        assert runner.run_action(resolved, ActionContext(component="web")) == "hello"
