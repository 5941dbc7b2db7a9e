"""
task-orchestrator — unit tests for domain models

File: tests/unit/domain/test_models.py

Purpose
- Validate camelCase parsing, serialization, and task identity rules of the
  execution record model.
"""

from __future__ import annotations

import pytest

from task_orchestrator.domain.models import (
    ArtifactType,
    Confidence,
    ExecutionRecord,
    ExecutionStatus,
    PhaseStatus,
    Task,
    TestType,
    is_valid_task_id,
    task_sort_key,
)

RAW_RECORD: dict[str, object] = {
    "$schema": "execution-schema-v1",
    "version": "1.0",
    "task": "TASK12",
    "title": "Search box",
    "status": "in_progress",
    "started": "2026-01-05T10:00:00Z",
    "attempts": 2,
    "currentPhase": {"id": 2, "name": "Wire API", "lastAction": "editing api.ts"},
    "phases": [
        {
            "id": 1,
            "name": "Scaffold",
            "status": "completed",
            "preConditions": [
                {"check": "node installed", "command": "node -v", "passed": True}
            ],
            "items": [{"description": "Create the component", "completed": True}],
        },
        {"id": 2, "name": "Wire API", "status": "in_progress", "items": []},
    ],
    "successCriteria": [
        {"criterion": "builds", "command": "npm run build", "passed": None, "testType": "AUTO"}
    ],
    "artifacts": [{"type": "created", "path": "src/search.ts", "verified": False}],
    "uncertainties": [
        {"id": "U1", "topic": "API shape", "assumption": "REST", "confidence": "MEDIUM"}
    ],
    "beyondTheBasics": {"cleanup": {"debugLogsRemoved": True}, "notes": "keep"},
    "completion": {"status": "pending_validation", "deviations": ["renamed hook"]},
    "errorHistory": [{"timestamp": "2026-01-05T10:05:00Z", "message": "lint failed"}],
    "pendingFixes": ["criterion"],
    "agentScratch": {"keep": True},
}


def test_from_dict_parses_camel_case_fields() -> None:
    record = ExecutionRecord.from_dict(RAW_RECORD)

    assert record.task == "TASK12"
    assert record.status is ExecutionStatus.IN_PROGRESS
    assert record.current_phase is not None
    assert record.current_phase.last_action == "editing api.ts"
    assert record.phases[0].status is PhaseStatus.COMPLETED
    assert record.phases[0].pre_conditions[0].passed is True
    assert record.success_criteria[0].test_type is TestType.AUTO
    assert record.artifacts[0].type is ArtifactType.CREATED
    assert record.uncertainties[0].confidence is Confidence.MEDIUM
    assert record.cleanup is not None
    assert record.cleanup.debug_logs_removed is True
    assert record.completion.deviations == ["renamed hook"]
    assert record.pending_fixes == ["criterion"]


def test_to_dict_preserves_unknown_fields() -> None:
    payload = ExecutionRecord.from_dict(RAW_RECORD).to_dict()

    assert payload["agentScratch"] == {"keep": True}
    assert payload["beyondTheBasics"] == {
        "notes": "keep",
        "cleanup": {
            "debugLogsRemoved": True,
            "formattingConsistent": None,
            "deadCodeRemoved": None,
        },
    }
    assert payload["currentPhase"] == {
        "id": 2,
        "name": "Wire API",
        "lastAction": "editing api.ts",
    }


def test_optional_fields_are_omitted_when_unset() -> None:
    payload = ExecutionRecord(task="TASK1", title="Minimal").to_dict()

    assert payload["currentPhase"] is None
    assert "pendingFixes" not in payload
    assert "beyondTheBasics" not in payload
    assert payload["status"] == "pending"
    assert payload["attempts"] == 0


def test_sorted_phases_and_lookup() -> None:
    record = ExecutionRecord.from_dict(
        {**RAW_RECORD, "phases": [{"id": 2, "name": "b"}, {"id": 1, "name": "a"}]}
    )

    assert [phase.id for phase in record.sorted_phases()] == [1, 2]
    assert record.phase(2) is not None
    assert record.phase(3) is None
    assert record.phase(2).display_name == "b"


@pytest.mark.parametrize(
    ("mutation", "message"),
    [
        ({"status": "done"}, "ExecutionRecord.status: invalid value 'done'"),
        ({"attempts": -1}, "ExecutionRecord.attempts: must be >= 0"),
        ({"phases": [{"name": "no id"}]}, "ExecutionRecord.phases[0]: missing required fields"),
        (
            {"phases": [{"id": 1}, {"id": 1}]},
            "ExecutionRecord.phases: phase ids must be unique and numbered 1..2, got [1, 1]",
        ),
        (
            {"phases": [{"id": 1}, {"id": 3}]},
            "ExecutionRecord.phases: phase ids must be unique and numbered 1..2, got [1, 3]",
        ),
        ({"artifacts": "src/a.ts"}, "ExecutionRecord.artifacts: expected array"),
    ],
)
def test_invalid_payloads_report_field_paths(mutation: dict[str, object], message: str) -> None:
    with pytest.raises(ValueError) as error:
        ExecutionRecord.from_dict({**RAW_RECORD, **mutation})

    assert str(error.value).startswith(message)


@pytest.mark.parametrize(
    ("task_id", "valid"),
    [
        ("TASK1", True),
        ("TASK042", True),
        ("TASKΩ", True),
        ("task1", False),
        ("TASK", False),
        ("TASK1a", False),
    ],
)
def test_task_id_validation(task_id: str, valid: bool) -> None:
    assert is_valid_task_id(task_id) is valid


def test_task_rejects_invalid_ids() -> None:
    with pytest.raises(ValueError, match="invalid task id 'job-1'"):
        Task("job-1")


def test_task_sort_key_orders_numerically_with_terminal_last() -> None:
    ids = ["TASKΩ", "TASK10", "TASK2", "TASK1"]

    assert sorted(ids, key=task_sort_key) == ["TASK1", "TASK2", "TASK10", "TASKΩ"]
