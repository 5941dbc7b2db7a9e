"""
task-orchestrator — CLI smoke contracts

File: tests/integration/test_cli_smoke.py

Purpose
- Enforce CLI behavior for `python -m task_orchestrator` run/status/checkpoints/validate.
- Verify exit codes, JSON payloads, and persistent side effects (execution
  records, checkpoint commits, JSON-lines run logs).
- The agent is a small Python script that follows the prompt contract: it
  reads the prompt on stdin and edits execution.json for the focused phase.
"""

from __future__ import annotations

import json
import logging
import os
import shlex
import subprocess
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from task_orchestrator.main import ExitCode, cli_entrypoint
from task_orchestrator.observability.logging import get_active_logging_handle, shutdown_logging

if TYPE_CHECKING:
    from collections.abc import Iterator

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SRC_PATH = PROJECT_ROOT / "src"

AGENT_SCRIPT = """\
import json
import pathlib
import re
import sys

prompt = sys.stdin.read()
task = re.search(r"^# Task (TASK\\S+):", prompt, re.M).group(1)
focus = re.search(r"^## Current Focus: Phase (\\d+)", prompt, re.M)
path = pathlib.Path(".orchestrator") / task / "execution.json"
record = json.loads(path.read_text(encoding="utf-8"))
for phase in record["phases"]:
    if focus is not None and phase["id"] == int(focus.group(1)):
        for item in phase["items"]:
            item["completed"] = True
        phase["status"] = "completed"
target = task.lower() + ".txt"
pathlib.Path(target).write_text(task + " done\\n", encoding="utf-8")
if not record["artifacts"]:
    record["artifacts"].append({"type": "created", "path": target, "verified": False})
path.write_text(json.dumps(record, indent=2), encoding="utf-8")
print("updated " + task)
"""

BLUEPRINT_TEMPLATE = """# BLUEPRINT: {task} output

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


def _git(repo_root: Path, *args: str) -> str:
    env = os.environ.copy()
    env.setdefault("GIT_TERMINAL_PROMPT", "0")
    env.setdefault("GIT_CONFIG_NOSYSTEM", "1")
    completed = subprocess.run(
        ["git", *args],
        cwd=repo_root,
        text=True,
        capture_output=True,
        check=False,
        env=env,
    )
    if completed.returncode != 0:
        command = "git " + " ".join(args)
        detail = completed.stderr.strip() or completed.stdout.strip()
        raise RuntimeError(f"git command failed: {command}: {detail}")
    return completed.stdout


def _write(path: Path, contents: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(contents, encoding="utf-8")


def _write_task(repo_root: Path, task_id: str, dependencies: str = "none") -> None:
    _write(
        repo_root / ".orchestrator" / task_id / "BLUEPRINT.md",
        BLUEPRINT_TEMPLATE.format(
            task=task_id, dependencies=dependencies, target=f"{task_id.lower()}.txt"
        ),
    )


def _prepare_workspace(tmp_path: Path) -> tuple[Path, dict[str, str]]:
    repo_root = tmp_path / "repo"
    repo_root.mkdir(parents=True)
    _write(repo_root / "README.md", "seed\n")
    _git(repo_root, "init", "--quiet")
    _git(repo_root, "config", "user.name", "CLI Smoke")
    _git(repo_root, "config", "user.email", "cli-smoke@example.com")
    _git(repo_root, "add", ".")
    _git(repo_root, "commit", "--no-gpg-sign", "--quiet", "-m", "seed workspace")

    _write_task(repo_root, "TASK1")
    _write_task(repo_root, "TASK2", dependencies="TASK1")

    agent_path = tmp_path / "agent.py"
    _write(agent_path, AGENT_SCRIPT)
    env = {
        "TASKORCH_AGENT_COMMAND": shlex.join([sys.executable, str(agent_path)]),
        "TASKORCH_PATHS_LOG_DIR": str(tmp_path / "logs"),
        "TASKORCH_SCHEDULER_RETRY_DELAY_SECONDS": "0",
    }
    return repo_root, env


def _run_cli(
    repo_root: Path, *args: str, extra_env: dict[str, str] | None = None
) -> subprocess.CompletedProcess[str]:
    env = os.environ.copy()
    existing_pythonpath = env.get("PYTHONPATH")
    src_pythonpath = str(SRC_PATH)
    env["PYTHONPATH"] = (
        src_pythonpath if not existing_pythonpath else f"{src_pythonpath}:{existing_pythonpath}"
    )
    env.setdefault("GIT_TERMINAL_PROMPT", "0")
    env.setdefault("GIT_CONFIG_NOSYSTEM", "1")
    env.update(extra_env or {})
    return subprocess.run(
        [sys.executable, "-m", "task_orchestrator", *args, "--repo-root", str(repo_root)],
        cwd=repo_root,
        text=True,
        capture_output=True,
        check=False,
        env=env,
    )


def _render_failure(command_name: str, completed: subprocess.CompletedProcess[str]) -> str:
    return (
        f"{command_name} failed with exit code {completed.returncode}\n"
        f"stdout:\n{completed.stdout.strip()}\n"
        f"stderr:\n{completed.stderr.strip()}\n"
    )


def _json_payload(completed: subprocess.CompletedProcess[str]) -> dict[str, object]:
    return json.loads(completed.stdout.strip().splitlines()[-1])


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()


def test_run_then_inspect_a_completed_workspace(tmp_path: Path) -> None:
    repo_root, env = _prepare_workspace(tmp_path)

    run = _run_cli(repo_root, "run", "--json", "--run-id", "smoke-run", extra_env=env)
    assert run.returncode == 0, _render_failure("run", run)
    payload = _json_payload(run)
    assert payload["succeeded"] is True
    assert payload["run_id"] == "smoke-run"
    assert payload["counts"] == {
        "pending": 0,
        "running": 0,
        "completed": 2,
        "failed": 0,
        "blocked": 0,
    }
    log_path = Path(str(payload["log_path"]))
    assert log_path == tmp_path / "logs" / "smoke-run" / "orchestrator.jsonl"
    lines = log_path.read_text(encoding="utf-8").splitlines()
    assert "scheduler_finished" in [json.loads(line)["event"] for line in lines]
    assert (repo_root / "task1.txt").read_text(encoding="utf-8") == "TASK1 done\n"

    subjects = _git(repo_root, "log", "--format=%s").splitlines()
    assert subjects[:2] == ["[TASK2] Phase 2: Review complete", "[TASK2] Phase 1: Build complete"]

    status = _run_cli(repo_root, "status", "--json", extra_env=env)
    assert status.returncode == 0, _render_failure("status", status)
    rows = _json_payload(status)["tasks"]
    assert [(row["task_id"], row["status"]) for row in rows] == [  # type: ignore[union-attr]
        ("TASK1", "completed"),
        ("TASK2", "completed"),
    ]

    checkpoints = _run_cli(repo_root, "checkpoints", "TASK1", "--json", extra_env=env)
    assert checkpoints.returncode == 0, _render_failure("checkpoints", checkpoints)
    checkpoint_payload = _json_payload(checkpoints)
    assert checkpoint_payload["next_phase"] == 2
    assert len(checkpoint_payload["checkpoints"]) == 2  # type: ignore[arg-type]

    validate = _run_cli(repo_root, "validate", "TASK1", "--json", extra_env=env)
    assert validate.returncode == 0, _render_failure("validate", validate)
    assert _json_payload(validate)["passed"] is True


def test_second_run_is_a_no_op_resume(tmp_path: Path) -> None:
    repo_root, env = _prepare_workspace(tmp_path)
    first = _run_cli(repo_root, "run", "--json", extra_env=env)
    assert first.returncode == 0, _render_failure("run", first)
    head = _git(repo_root, "rev-parse", "HEAD")

    second = _run_cli(repo_root, "run", "--json", extra_env=env)

    assert second.returncode == 0, _render_failure("second run", second)
    tasks = _json_payload(second)["tasks"]
    assert [task["attempts"] for task in tasks] == [0, 0]  # type: ignore[union-attr]
    assert _git(repo_root, "rev-parse", "HEAD") == head


def test_missing_agent_binary_exits_with_agent_error(tmp_path: Path) -> None:
    repo_root, env = _prepare_workspace(tmp_path)
    env["TASKORCH_AGENT_COMMAND"] = "no-such-agent-binary -p"

    completed = _run_cli(repo_root, "run", "--json", extra_env=env)

    assert completed.returncode == int(ExitCode.AGENT_ERROR)
    assert "agent command not found: no-such-agent-binary" in completed.stderr


def test_conflicts_report_with_manifest(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    manifest = tmp_path / "tasks.yaml"
    _write(
        manifest,
        "tasks:\n"
        "  TASK1:\n"
        "    files: [src/app.py]\n"
        "  TASK2:\n"
        "    files: [src/app.py, src/b.py]\n"
        "  TASK3:\n"
        "    dependencies: [TASK1]\n",
    )

    exit_code = cli_entrypoint(
        ["conflicts", "--fix", "--json", "--manifest", str(manifest), "--repo-root", str(tmp_path)]
    )

    assert exit_code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["conflicts"] == [
        {"task1": "TASK1", "task2": "TASK2", "files": ["src/app.py"]}
    ]
    assert payload["tasks_missing_files"] == ["TASK3"]
    assert payload["cycles"] == []
    assert payload["suggestions"] == ["Add @dependencies [TASK1] to TASK2's BLUEPRINT.md"]
    assert payload["resolutions"][0]["resolution"] == "TASK2 now depends on TASK1"


def test_status_of_an_empty_workspace(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = cli_entrypoint(["status", "--json", "--repo-root", str(tmp_path)])

    assert exit_code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["tasks"] == []
    assert payload["state_dir"] == (tmp_path.resolve() / ".orchestrator").as_posix()


def test_inspection_commands_release_their_console_handler(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    for _ in range(2):
        exit_code = cli_entrypoint(["status", "--json", "--repo-root", str(tmp_path)])

        assert exit_code == 0
        assert get_active_logging_handle() is None
        capsys.readouterr()

    shutdown_logging()
    assert logging.getLogger("task_orchestrator").handlers == []


def test_invalid_config_exits_with_config_error(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    _write(tmp_path / "orchestrator.toml", "[scheduler]\nmax_concurrency = 0\n")

    exit_code = cli_entrypoint(["config", "--json", "--repo-root", str(tmp_path)])

    assert exit_code == int(ExitCode.CONFIG_ERROR)
    assert "scheduler.max_concurrency" in capsys.readouterr().err


def test_config_command_prints_redacted_effective_config(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    exit_code = cli_entrypoint(
        ["config", "--json", "--profile", "fast", "--repo-root", str(tmp_path)]
    )

    assert exit_code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["scheduler"]["max_attempts_per_task"] == 3
    assert payload["agent"]["command"] == ["claude", "-p"]
