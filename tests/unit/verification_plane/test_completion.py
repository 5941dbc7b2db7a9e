"""Unit tests for final completion validation."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from task_orchestrator.domain.models import (
    Artifact,
    ArtifactType,
    Cleanup,
    CriterionResult,
    ExecutionRecord,
    Phase,
    PhaseItem,
    PhaseStatus,
    PreCondition,
    TestType,
)
from task_orchestrator.verification_plane.completion import validate_completion


def _complete_record() -> ExecutionRecord:
    return ExecutionRecord(
        task="TASK4",
        title="Complete",
        phases=[
            Phase(
                id=1,
                name="Build",
                status=PhaseStatus.COMPLETED,
                pre_conditions=[PreCondition(check="ok", passed=True)],
                items=[PhaseItem("Write the module", completed=True)],
            ),
        ],
        artifacts=[Artifact(type=ArtifactType.CREATED, path="src/mod.py", verified=True)],
        success_criteria=[
            CriterionResult("tests pass", passed=True, test_type=TestType.AUTO),
            CriterionResult("looks right", passed=None, test_type=TestType.MANUAL),
        ],
        cleanup=Cleanup(debug_logs_removed=True, formatting_consistent=None),
    )


def test_fully_verified_record_passes() -> None:
    check = validate_completion(_complete_record())

    assert check.passed is True
    assert check.reason is None


def test_open_phase_is_reported_first() -> None:
    record = _complete_record()
    record.phases[0].status = PhaseStatus.IN_PROGRESS
    record.artifacts[0].verified = False

    check = validate_completion(record)

    assert check.passed is False
    assert check.reason == "Phase 1 (Build) not completed (status: in_progress)"


@pytest.mark.parametrize(
    ("mutate", "reason"),
    [
        (
            lambda r: setattr(r.phases[0].items[0], "completed", False),
            "Phase 1 item not completed: Write the module",
        ),
        (
            lambda r: setattr(r.phases[0].pre_conditions[0], "passed", None),
            "Phase 1 pre-condition not passed: ok",
        ),
        (
            lambda r: setattr(r.artifacts[0], "verified", False),
            "Artifact not verified: src/mod.py",
        ),
        (
            lambda r: setattr(r.success_criteria[0], "passed", None),
            "Success criterion not passed: tests pass",
        ),
        (
            lambda r: setattr(r.cleanup, "dead_code_removed", False),
            "Cleanup not complete",
        ),
    ],
)
def test_each_gate_rejects_with_its_reason(
    mutate: Callable[[ExecutionRecord], None], reason: str
) -> None:
    record = _complete_record()
    mutate(record)

    check = validate_completion(record)

    assert check.passed is False
    assert check.reason == reason
