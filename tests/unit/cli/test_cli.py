"""Unit tests for the opencode-loop CLI."""

import contextlib
from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import pytest
import typer
from typer.testing import CliRunner

from opencode_loop.cli import cli as cli_module
from opencode_loop.cli.cli import app, read_prompt
from opencode_loop.core.protocols import RuntimeRequestError
from opencode_loop.infra.io.config import LoopConfig
from opencode_loop.infra.io.log_output.console import set_iteration, set_verbose
from opencode_loop.orchestration.factory import RuntimeHandle
from tests.fakes.runtime import FakeRuntime, idle_event, loop_control_part

runner = CliRunner()


@pytest.fixture(autouse=True)
def reset_console_state() -> Iterator[None]:
    yield
    set_verbose(False)
    set_iteration(0, 0)


def patch_runtime(monkeypatch: pytest.MonkeyPatch, runtime: FakeRuntime) -> list[LoopConfig]:
    """Route the CLI to a fake runtime; returns the configs it was opened with."""
    configs: list[LoopConfig] = []

    @contextlib.asynccontextmanager
    async def fake_open_runtime(config: LoopConfig) -> AsyncIterator[RuntimeHandle]:
        configs.append(config)
        yield RuntimeHandle(runtime)

    monkeypatch.setattr(cli_module, "open_runtime", fake_open_runtime)
    return configs


@pytest.mark.unit
class TestReadPrompt:
    def test_joins_words(self) -> None:
        assert read_prompt(["Fix", "the", "tests"], None) == "Fix the tests"

    def test_reads_file(self, tmp_path: Path) -> None:
        prompt_file = tmp_path / "task.md"
        prompt_file.write_text("\n  Refactor the parser  \n")
        assert read_prompt(None, prompt_file) == "Refactor the parser"

    def test_both_sources_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(typer.BadParameter, match="not both"):
            read_prompt(["x"], tmp_path / "task.md")

    def test_empty_rejected(self) -> None:
        with pytest.raises(typer.BadParameter, match="non-empty prompt"):
            read_prompt(["  "], None)

    def test_unreadable_file_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(typer.BadParameter, match="Cannot read prompt file"):
            read_prompt(None, tmp_path / "missing.md")


@pytest.mark.unit
class TestRunCommand:
    def test_complete_exits_zero(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        runtime = FakeRuntime([[loop_control_part("complete", "all green"), idle_event()]])
        configs = patch_runtime(monkeypatch, runtime)

        result = runner.invoke(
            app, ["run", "Fix", "the", "tests", "--cwd", str(tmp_path), "-n", "5", "--agent", "build"]
        )

        assert result.exit_code == 0, result.output
        assert runtime.prompts == ["Fix the tests"]
        assert "Agent signaled COMPLETE: all green" in result.output
        assert "Result: COMPLETE" in result.output
        (config,) = configs
        assert config.max_iterations == 5
        assert config.agent == "build"
        assert config.cwd == tmp_path.resolve()
        assert runtime.closed is False

    def test_blocked_exits_two(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        patch_runtime(monkeypatch, FakeRuntime([[loop_control_part("blocked", "no creds"), idle_event()]]))
        result = runner.invoke(app, ["run", "Deploy", "--cwd", str(tmp_path)])
        assert result.exit_code == 2, result.output
        assert "Result: BLOCKED" in result.output

    def test_budget_exhausted_exits_one(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        runtime = FakeRuntime()
        patch_runtime(monkeypatch, runtime)
        result = runner.invoke(app, ["run", "Loop", "--cwd", str(tmp_path), "-n", "2"])
        assert result.exit_code == 1, result.output
        assert len(runtime.prompts) == 2
        assert "Reached max iterations (2)" in result.output

    def test_prompt_from_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        runtime = FakeRuntime([[loop_control_part("complete"), idle_event()]])
        patch_runtime(monkeypatch, runtime)
        prompt_file = tmp_path / "task.md"
        prompt_file.write_text("Write the docs\n")
        result = runner.invoke(app, ["run", "--file", str(prompt_file), "--cwd", str(tmp_path)])
        assert result.exit_code == 0, result.output
        assert runtime.prompts == ["Write the docs"]

    def test_missing_prompt_is_usage_error(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["run", "--cwd", str(tmp_path)])
        assert result.exit_code == 2

    def test_invalid_config_exits_one(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        runtime = FakeRuntime()
        patch_runtime(monkeypatch, runtime)
        result = runner.invoke(app, ["run", "Fix", "--cwd", str(tmp_path), "-n", "0"])
        assert result.exit_code == 1
        assert "max_iterations must be a positive integer" in result.output
        assert runtime.prompts == []

    def test_runtime_failure_exits_one(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        patch_runtime(monkeypatch, FakeRuntime(create_error=RuntimeRequestError("server down")))
        result = runner.invoke(app, ["run", "Fix", "--cwd", str(tmp_path)])
        assert result.exit_code == 1
        assert "Fatal error: server down" in result.output


@pytest.mark.unit
class TestStatusCommand:
    def test_shows_effective_settings(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OPENCODE_LOOP_RUNTIME", "claude")
        monkeypatch.setenv("OPENCODE_LOOP_MAX_ITERATIONS", "12")
        result = runner.invoke(app, ["status"])
        assert result.exit_code == 0, result.output
        assert "Runtime: claude" in result.output
        assert "Max iterations: 12" in result.output
        assert "Model: (runtime default)" in result.output

    def test_invalid_env_exits_one(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OPENCODE_LOOP_MAX_RETRIES", "many")
        result = runner.invoke(app, ["status"])
        assert result.exit_code == 1
        assert "invalid integer 'many'" in result.output
