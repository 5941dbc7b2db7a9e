"""Unit tests for artifact hallucination detection and recovery."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from task_orchestrator.domain.models import (
    Artifact,
    ArtifactType,
    CompletionStatus,
    ExecutionRecord,
    ExecutionStatus,
    Phase,
    PhaseItem,
    PhaseStatus,
)
from task_orchestrator.verification_plane.artifact_auditor import (
    check_review_checklist_blocked,
    mark_artifacts_for_recreation,
    resolve_artifact_path,
    validate_artifacts_exist,
    verify_artifacts,
)

if TYPE_CHECKING:
    from pathlib import Path


def _record() -> ExecutionRecord:
    return ExecutionRecord(
        task="TASK2",
        title="Widgets",
        status=ExecutionStatus.COMPLETED,
        phases=[
            Phase(
                id=1,
                name="Create files",
                status=PhaseStatus.COMPLETED,
                items=[
                    PhaseItem("Create src/widget.py with the Widget class", completed=True),
                    PhaseItem("Write docs", completed=True, evidence="Added README.md"),
                ],
            ),
            Phase(
                id=2,
                name="Polish",
                status=PhaseStatus.COMPLETED,
                items=[PhaseItem("Tidy imports", completed=True)],
            ),
        ],
        artifacts=[
            Artifact(type=ArtifactType.CREATED, path="src/widget.py", verified=True),
            Artifact(type=ArtifactType.MODIFIED, path="README.md", verified=True),
            Artifact(type=ArtifactType.DELETED, path="old.py"),
        ],
    )


def test_missing_created_artifact_is_reported(tmp_path: Path) -> None:
    (tmp_path / "README.md").write_text("docs\n", encoding="utf-8")

    audit = validate_artifacts_exist(_record(), tmp_path)

    assert audit.valid is False
    assert audit.missing_paths == ("src/widget.py",)
    assert (audit.existing_count, audit.total_count) == (1, 2)


def test_backslash_artifact_paths_resolve_like_forward_slashes(tmp_path: Path) -> None:
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "widget.py").write_text("class Widget: ...\n", encoding="utf-8")
    (tmp_path / "README.md").write_text("docs\n", encoding="utf-8")
    record = _record()
    record.artifacts[0].path = "src\\widget.py"

    audit = validate_artifacts_exist(record, tmp_path)
    verify_artifacts(record, tmp_path)

    assert audit.valid is True
    assert audit.existing_count == 2
    assert record.artifacts[0].verified is True
    assert resolve_artifact_path(".\\src\\widget.py", tmp_path) == tmp_path / "src" / "widget.py"


def test_recovery_reopens_only_phases_that_claimed_the_file(tmp_path: Path) -> None:
    record = _record()
    audit = validate_artifacts_exist(record, tmp_path)

    recovery = mark_artifacts_for_recreation(record, audit.missing)

    assert recovery.reset_phases == (1,)
    assert set(recovery.marked_for_recreation) == {"src/widget.py", "README.md"}
    first, second = record.phases
    assert first.status is PhaseStatus.IN_PROGRESS
    assert first.hallucination_recovery is True
    assert [item.completed for item in first.items] == [False, False]
    assert first.items[0].reset_reason == "File src/widget.py was not actually created"
    assert second.status is PhaseStatus.COMPLETED

    widget = record.artifacts[0]
    assert (widget.verified, widget.needs_creation, widget.hallucination_detected) == (
        False,
        True,
        True,
    )
    assert record.status is ExecutionStatus.IN_PROGRESS
    assert record.completion.status is CompletionStatus.PENDING_RECOVERY
    assert record.error_history[-1].severity == "CRITICAL"
    assert record.error_history[-1].failed_validation == "hallucination"
    assert record.pending_fixes == ["hallucination"]


def test_recovery_without_missing_artifacts_is_a_no_op() -> None:
    record = _record()

    assert mark_artifacts_for_recreation(record, ()).actions_taken == 0
    assert record.error_history == []


def test_verify_artifacts_marks_existing_and_absent_deleted(tmp_path: Path) -> None:
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "widget.py").write_text("class Widget: ...\n", encoding="utf-8")
    record = _record()
    record.artifacts[1].verified = False

    verify_artifacts(record, tmp_path)

    created, modified, deleted = record.artifacts
    assert created.verified is True
    assert modified.verified is False
    assert deleted.verified is True
    assert deleted.verification == "absent from filesystem"


def test_review_checklist_blocking_states(tmp_path: Path) -> None:
    assert check_review_checklist_blocked(tmp_path).blocked is False

    checklist = tmp_path / "review-checklist.json"
    checklist.write_text(
        json.dumps({"status": "blocked", "summary": {"critical_issue": "Schema drift"}}),
        encoding="utf-8",
    )
    status = check_review_checklist_blocked(tmp_path)
    assert (status.blocked, status.reason) == (True, "Schema drift")

    checklist.write_text(
        json.dumps(
            {
                "status": "open",
                "items": [{"file": "a.py", "failureReason": "FILE NOT FOUND: a.py"}],
            }
        ),
        encoding="utf-8",
    )
    status = check_review_checklist_blocked(tmp_path)
    assert status.blocked is True
    assert status.missing_files == ("a.py",)

    checklist.write_text("{not json", encoding="utf-8")
    status = check_review_checklist_blocked(tmp_path)
    assert status.blocked is False
    assert status.reason == "Could not parse review-checklist.json"
