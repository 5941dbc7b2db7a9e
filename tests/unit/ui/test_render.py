"""Unit tests for plain-text CLI rendering."""

from __future__ import annotations

import io

from task_orchestrator.control_plane.scheduler import RunReport, TaskResult, TaskStatus
from task_orchestrator.integration_plane.checkpoint_store import Checkpoint
from task_orchestrator.planning.conflict_graph import ConflictResolution
from task_orchestrator.ui.render import create_renderer, truncate


def test_truncate_collapses_whitespace_and_marks_the_cut() -> None:
    assert truncate("npm ERR!\n   missing script", 60) == "npm ERR! missing script"
    assert truncate("x" * 70, 60) == "x" * 57 + "..."


def test_check_lines_align_ok_and_fail() -> None:
    stream = io.StringIO()
    renderer = create_renderer(stream=stream)

    renderer.check(True, "artifacts present (2/2) ")
    renderer.check(False, "completion Phase 2 not completed")

    assert stream.getvalue().splitlines() == [
        "  OK    artifacts present (2/2)",
        "  FAIL  completion Phase 2 not completed",
    ]


def test_status_table_without_tasks() -> None:
    stream = io.StringIO()

    create_renderer(stream=stream).status_table("/repo/.orchestrator", [])

    assert stream.getvalue() == "State dir: /repo/.orchestrator\nNo tasks found.\n"


def test_status_table_truncates_multiline_errors() -> None:
    stream = io.StringIO()
    rows = [
        {
            "task_id": "TASK1",
            "status": "in_progress",
            "attempts": 2,
            "current_phase": None,
            "last_error": "Criterion failed:\n" + "y" * 80,
        }
    ]

    create_renderer(stream=stream).status_table("/repo/.orchestrator", rows)

    lines = stream.getvalue().splitlines()
    assert lines[1].split() == ["TASK", "STATUS", "ATTEMPTS", "PHASE", "LAST", "ERROR"]
    row = lines[3].split(maxsplit=4)
    assert row[:4] == ["TASK1", "in_progress", "2", "-"]
    assert len(row[4]) == 60
    assert row[4].startswith("Criterion failed: yyy")
    assert row[4].endswith("...")


def test_checkpoint_history_lists_newest_first_and_resume_point() -> None:
    stream = io.StringIO()
    checkpoints = [
        Checkpoint("b" * 40, "TASK1", 2, "Wire API"),
        Checkpoint("a" * 40, "TASK1", 1, "Scaffold"),
    ]

    create_renderer(stream=stream).checkpoint_history("TASK1", checkpoints, 3)

    lines = stream.getvalue().splitlines()
    assert "Checkpoints for TASK1 (newest first):" in lines
    assert [line.split()[0] for line in lines[-3:-1]] == ["bbbbbbb", "aaaaaaa"]
    assert lines[-1] == "Resume from phase: 3"


def test_checkpoint_history_without_commits() -> None:
    stream = io.StringIO()

    create_renderer(stream=stream).checkpoint_history("TASK4", [], None)

    assert stream.getvalue() == "No checkpoints recorded for TASK4.\n"


def test_run_report_summarizes_a_partial_failure() -> None:
    stream = io.StringIO()
    report = RunReport(
        tasks=(
            TaskResult("TASK1", TaskStatus.COMPLETED, attempts=1),
            TaskResult(
                "TASK2",
                TaskStatus.FAILED,
                attempts=3,
                last_error="Phase 1 (Build) not complete: 0/1 items completed",
            ),
            TaskResult(
                "TASK3",
                TaskStatus.BLOCKED,
                last_error="Blocked by failed dependency TASK2",
                blocking_chain=("TASK3", "TASK2"),
            ),
        ),
        resolutions=(
            ConflictResolution("TASK1", "TASK2", ("src/a.js",), "serialized", edge_added=True),
        ),
        effective_concurrency=2,
        peak_concurrency=1,
    )

    create_renderer(stream=stream).run_report("run-7", report)

    lines = stream.getvalue().splitlines()
    assert lines[:4] == [
        "Run: run-7",
        "Result: partial failure",
        "Concurrency: 1 peak / 2 allowed",
        "Tasks: 0 pending, 0 running, 1 completed, 1 failed, 1 blocked",
    ]
    assert "  - TASK1 before TASK2 (src/a.js)" in lines
    unfinished = lines[lines.index("Unfinished tasks:") + 3 :]
    assert [line.split()[0] for line in unfinished] == ["TASK2", "TASK3"]
    assert "TASK3 <- TASK2" in unfinished[1]
