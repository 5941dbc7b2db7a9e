"""
task-orchestrator — verification plane

Purpose
- Everything that checks an agent's claims against reality: artifact existence,
  pre-conditions, success criteria and final completion.
"""

from __future__ import annotations

from task_orchestrator.verification_plane.artifact_auditor import (
    ArtifactAudit,
    AuditedArtifact,
    ChecklistStatus,
    RecoveryResult,
    check_review_checklist_blocked,
    mark_artifacts_for_recreation,
    validate_artifacts_exist,
    verify_artifacts,
)
from task_orchestrator.verification_plane.completion import CompletionCheck, validate_completion
from task_orchestrator.verification_plane.criteria_runner import (
    CriteriaRunner,
    CriteriaSummary,
    Criterion,
    evaluate_expected,
    parse_success_criteria,
    summarize,
)
from task_orchestrator.verification_plane.executor import (
    CommandExecutor,
    CommandResult,
    CommandSpec,
    LocalSubprocessExecutor,
)
from task_orchestrator.verification_plane.preconditions import (
    PreconditionReport,
    is_dangerous_command,
    verify_preconditions,
)

__all__ = [
    "ArtifactAudit",
    "AuditedArtifact",
    "ChecklistStatus",
    "CommandExecutor",
    "CommandResult",
    "CommandSpec",
    "CompletionCheck",
    "CriteriaRunner",
    "CriteriaSummary",
    "Criterion",
    "LocalSubprocessExecutor",
    "PreconditionReport",
    "RecoveryResult",
    "check_review_checklist_blocked",
    "evaluate_expected",
    "is_dangerous_command",
    "mark_artifacts_for_recreation",
    "parse_success_criteria",
    "summarize",
    "validate_artifacts_exist",
    "validate_completion",
    "verify_artifacts",
    "verify_preconditions",
]
