"""Unit tests for the subprocess-backed agent adapter."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from task_orchestrator.synthesis_plane.agent import (
    AgentInvoker,
    AgentRequest,
    AgentUnavailableError,
    CommandAgent,
)
from task_orchestrator.verification_plane.executor import CommandResult, CommandSpec

if TYPE_CHECKING:
    from pathlib import Path


class RecordingExecutor:
    def __init__(self, result: CommandResult) -> None:
        self.result = result
        self.specs: list[CommandSpec] = []

    async def run(self, spec: CommandSpec) -> CommandResult:
        self.specs.append(spec)
        return self.result


def _result(exit_code: int | None, stdout: str = "", stderr: str = "") -> CommandResult:
    return CommandResult(
        command="agent", exit_code=exit_code, stdout=stdout, stderr=stderr, duration_ms=1
    )


@pytest.mark.asyncio
async def test_prompt_is_piped_over_stdin(tmp_path: Path) -> None:
    executor = RecordingExecutor(_result(0, stdout="done"))
    agent = CommandAgent(["claude", "-p"], timeout_seconds=60.0, executor=executor)

    result = await agent.invoke(AgentRequest(task_id="TASK1", prompt="do it", cwd=tmp_path))

    assert result.success
    assert result.transcript == "done"
    (spec,) = executor.specs
    assert spec.argv == ("claude", "-p")
    assert spec.stdin_text == "do it"
    assert spec.cwd == str(tmp_path)
    assert spec.timeout_seconds == 60.0


@pytest.mark.asyncio
async def test_non_zero_exit_is_reported_not_raised(tmp_path: Path) -> None:
    executor = RecordingExecutor(_result(3, stdout="partial", stderr="  quota exceeded\n"))
    agent = CommandAgent(["claude"], executor=executor)

    result = await agent.invoke(AgentRequest(task_id="TASK1", prompt="x", cwd=tmp_path))

    assert not result.success
    assert result.transcript == "partial"
    assert result.error == "agent exited with code 3: quota exceeded"


@pytest.mark.asyncio
async def test_real_subprocess_round_trip(tmp_path: Path) -> None:
    agent = CommandAgent(["cat"], timeout_seconds=10.0)

    result = await agent.invoke(
        AgentRequest(task_id="TASK2", prompt="# Task TASK2\n", cwd=tmp_path, attempt=2)
    )

    assert result.success
    assert result.transcript == "# Task TASK2\n"
    assert result.duration_seconds >= 0.0


@pytest.mark.asyncio
async def test_missing_binary_is_a_failed_result(tmp_path: Path) -> None:
    agent = CommandAgent(["definitely-not-an-agent-binary"], timeout_seconds=10.0)

    result = await agent.invoke(AgentRequest(task_id="TASK1", prompt="x", cwd=tmp_path))

    assert not result.success
    assert result.error


def test_ensure_available_checks_path(tmp_path: Path) -> None:
    CommandAgent(["sh"]).ensure_available()

    with pytest.raises(AgentUnavailableError, match="agent command not found: nope-agent"):
        CommandAgent(["nope-agent"]).ensure_available()

    script = tmp_path / "agent.sh"
    script.write_text("#!/bin/sh\n", encoding="utf-8")
    CommandAgent([str(script)]).ensure_available()


def test_command_agent_satisfies_the_invoker_protocol() -> None:
    assert isinstance(CommandAgent(["claude"]), AgentInvoker)


@pytest.mark.parametrize(
    ("command", "timeout", "message"),
    [
        ([], 10.0, "non-empty list"),
        (["claude", ""], 10.0, "non-empty list"),
        (["claude"], 0.0, "timeout_seconds must be > 0"),
    ],
)
def test_invalid_agent_configuration(command: list[str], timeout: float, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        CommandAgent(command, timeout_seconds=timeout)


@pytest.mark.parametrize(
    ("prompt", "attempt", "message"),
    [("   ", 1, "prompt cannot be empty"), ("go", 0, "attempt must be >= 1")],
)
def test_request_validation(tmp_path: Path, prompt: str, attempt: int, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        AgentRequest(task_id="TASK1", prompt=prompt, cwd=tmp_path, attempt=attempt)
