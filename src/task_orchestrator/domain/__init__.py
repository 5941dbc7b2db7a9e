"""Domain layer: execution record models and their persisted schema."""

from task_orchestrator.domain.execution_schema import (
    EXECUTION_SCHEMA,
    SchemaValidationResult,
    validate_execution_payload,
)
from task_orchestrator.domain.models import (
    Artifact,
    ArtifactType,
    Cleanup,
    Completion,
    CompletionStatus,
    Confidence,
    CriterionResult,
    CurrentPhase,
    ErrorEntry,
    ExecutionRecord,
    ExecutionStatus,
    FailureKind,
    Phase,
    PhaseItem,
    PhaseStatus,
    PreCondition,
    Task,
    TestType,
    Uncertainty,
    is_valid_task_id,
    task_sort_key,
    utc_now_iso,
)

__all__ = [
    "Artifact",
    "ArtifactType",
    "Cleanup",
    "Completion",
    "CompletionStatus",
    "Confidence",
    "CriterionResult",
    "CurrentPhase",
    "EXECUTION_SCHEMA",
    "ErrorEntry",
    "ExecutionRecord",
    "ExecutionStatus",
    "FailureKind",
    "Phase",
    "PhaseItem",
    "PhaseStatus",
    "PreCondition",
    "SchemaValidationResult",
    "Task",
    "TestType",
    "Uncertainty",
    "is_valid_task_id",
    "task_sort_key",
    "utc_now_iso",
    "validate_execution_payload",
]
