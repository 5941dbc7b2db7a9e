"""
task-orchestrator — end-to-end scheduling against a real git repository

File: tests/integration/test_scheduler_end_to_end.py

Purpose
- Run discovered tasks through Scheduler and TaskRunner with real shell
  criteria and real git checkpoints; only the agent is scripted.

What this test file should cover
- Dependency order is honored and every phase leaves a checkpoint commit.
- A second run resumes from completed execution records without re-invoking the agent.
- A task whose declared file never appears exhausts its budget and blocks its dependents.
"""

from __future__ import annotations

import os
import subprocess
from typing import TYPE_CHECKING

import pytest

from task_orchestrator.constants import BLUEPRINT_FILE
from task_orchestrator.control_plane import (
    RunContext,
    Scheduler,
    SchedulerLimits,
    TaskRunner,
    TaskStatus,
    build_run_context,
)
from task_orchestrator.domain.models import (
    Artifact,
    ArtifactType,
    ExecutionStatus,
    PhaseStatus,
)
from task_orchestrator.integration_plane import CheckpointStore, GitEngine
from task_orchestrator.persistence import ExecutionStore
from task_orchestrator.planning import ConflictGraph
from task_orchestrator.spec_ingestion import discover_tasks
from task_orchestrator.synthesis_plane import AgentRequest, AgentResult

if TYPE_CHECKING:
    from pathlib import Path

BLUEPRINT_TEMPLATE = """# BLUEPRINT: {title}

@dependencies [{dependencies}]
@files [{target}]

## 3.2 Success Criteria

| Criterion | Source | Command | Expected |
|-----------|--------|---------|----------|
| Output exists | REQ-1 | `test -f {target}` | exists |

## 4. IMPLEMENTATION STRATEGY

### Phase 1: Build
1. Create {target} with the generated content

### Phase 2: Review
1. Re-read {target} and tidy the wording
"""


def run_git(cwd: Path, *args: str) -> str:
    completed = subprocess.run(
        ["git", *args], cwd=cwd, text=True, capture_output=True, check=False
    )
    if completed.returncode != 0:
        raise AssertionError(f"git {' '.join(args)} failed:\n{completed.stderr}")
    return completed.stdout


@pytest.fixture(autouse=True)
def isolated_git_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_TERMINAL_PROMPT", "0")


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    root = tmp_path / "repo"
    root.mkdir()
    run_git(root, "init", "-q")
    run_git(root, "config", "user.name", "Test User")
    run_git(root, "config", "user.email", "test@example.invalid")
    (root / "README.md").write_text("seed\n", encoding="utf-8")
    run_git(root, "add", "-A")
    run_git(root, "commit", "-q", "-m", "seed")
    return root


def _write_task(context: RunContext, task_id: str, dependencies: str = "none") -> None:
    task_dir = context.task_dir(task_id)
    task_dir.mkdir(parents=True)
    blueprint = BLUEPRINT_TEMPLATE.format(
        title=f"{task_id} output",
        dependencies=dependencies,
        target=f"{task_id.lower()}.txt",
    )
    (task_dir / BLUEPRINT_FILE).write_text(blueprint, encoding="utf-8")


class WorkingAgent:
    """Completes the focused phase and writes the task's declared file."""

    def __init__(self, context: RunContext, *, skip_file_for: str | None = None) -> None:
        self._context = context
        self._skip_file_for = skip_file_for
        self._store = ExecutionStore()
        self.calls: list[tuple[str, int | None]] = []

    async def invoke(self, request: AgentRequest) -> AgentResult:
        self.calls.append((request.task_id, request.phase_id))
        path = self._context.execution_path(request.task_id)
        record = self._store.load(path)
        phase = record.phase(request.phase_id) if request.phase_id is not None else None
        if phase is not None:
            for item in phase.items:
                item.completed = True
            phase.status = PhaseStatus.COMPLETED
        target = f"{request.task_id.lower()}.txt"
        if request.task_id != self._skip_file_for:
            (request.cwd / target).write_text(f"{request.task_id} done\n", encoding="utf-8")
        if not record.artifacts:
            record.artifacts.append(Artifact(type=ArtifactType.MODIFIED, path=target))
        self._store.save(path, record)
        return AgentResult(success=True, transcript="ok")


def _scheduler(context: RunContext, agent: WorkingAgent, **limits: object) -> Scheduler:
    store = ExecutionStore()
    completed = [
        task.id
        for task in discover_tasks(context.state_dir)
        if context.execution_path(task.id).exists()
        and store.load(context.execution_path(task.id)).status is ExecutionStatus.COMPLETED
    ]
    return Scheduler(
        ConflictGraph(discover_tasks(context.state_dir)),
        TaskRunner(context, agent, store=store),
        limits=SchedulerLimits(retry_delay_seconds=0.0, **limits),  # type: ignore[arg-type]
        completed=completed,
        cancellation=context.cancellation,
    )


@pytest.mark.asyncio
async def test_dependent_tasks_run_in_order_with_checkpoints(repo: Path) -> None:
    context = build_run_context({}, cwd=repo)
    _write_task(context, "TASK1")
    _write_task(context, "TASK2", dependencies="TASK1")
    agent = WorkingAgent(context)

    report = await _scheduler(context, agent).run()

    assert report.succeeded
    assert [call[0] for call in agent.calls] == ["TASK1", "TASK1", "TASK2", "TASK2"]
    assert run_git(repo, "log", "--format=%s").splitlines() == [
        "[TASK2] Phase 2: Review complete",
        "[TASK2] Phase 1: Build complete",
        "[TASK1] Phase 2: Review complete",
        "[TASK1] Phase 1: Build complete",
        "seed",
    ]
    checkpoints = CheckpointStore(GitEngine(repo))
    assert checkpoints.get_next_phase("TASK1", 2) == 2
    record = ExecutionStore().load(context.execution_path("TASK2"))
    assert record.status is ExecutionStatus.COMPLETED
    assert record.success_criteria[0].passed is True


@pytest.mark.asyncio
async def test_second_run_resumes_without_invoking_the_agent(repo: Path) -> None:
    context = build_run_context({}, cwd=repo)
    _write_task(context, "TASK1")
    assert (await _scheduler(context, WorkingAgent(context)).run()).succeeded

    agent = WorkingAgent(context)
    report = await _scheduler(context, agent).run()

    assert report.succeeded
    assert report.result("TASK1").attempts == 0
    assert agent.calls == []


@pytest.mark.asyncio
async def test_unfixable_task_blocks_its_dependents(repo: Path) -> None:
    context = build_run_context({"checkpoints": {"enabled": False}}, cwd=repo)
    _write_task(context, "TASK1")
    _write_task(context, "TASK2", dependencies="TASK1")
    agent = WorkingAgent(context, skip_file_for="TASK1")

    report = await _scheduler(context, agent, max_attempts_per_task=2).run()

    assert not report.succeeded
    first = report.result("TASK1")
    assert first.status is TaskStatus.FAILED
    assert first.attempts == 2
    assert first.last_error is not None
    assert first.last_error.startswith("Maximum attempts (2) reached for TASK1")
    second = report.result("TASK2")
    assert second.status is TaskStatus.BLOCKED
    assert second.blocking_chain == ("TASK2", "TASK1")
    assert second.last_error == "Blocked by TASK1 (failed)"
    assert {call[0] for call in agent.calls} == {"TASK1"}
    assert not (repo / "task2.txt").exists()
    assert os.listdir(context.task_dir("TASK2")) == [BLUEPRINT_FILE]
