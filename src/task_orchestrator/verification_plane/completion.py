"""Final completion check over an execution record."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog

from task_orchestrator.domain.models import ExecutionRecord, PhaseStatus, TestType


@dataclass(frozen=True, slots=True)
class CompletionCheck:
    passed: bool
    reason: str | None = None


def validate_completion(
    execution: ExecutionRecord, *, logger: Any | None = None
) -> CompletionCheck:
    """First failing reason wins; manual criteria are never required to pass."""
    log = logger if logger is not None else structlog.get_logger(__name__)
    check = _first_failure(execution)
    if check.passed:
        log.info("completion_validated", task_id=execution.task)
    else:
        log.info("completion_rejected", task_id=execution.task, reason=check.reason)
    return check


def _first_failure(execution: ExecutionRecord) -> CompletionCheck:
    for phase in execution.sorted_phases():
        if phase.status is not PhaseStatus.COMPLETED:
            return CompletionCheck(
                False,
                f"Phase {phase.id} ({phase.display_name}) not completed "
                f"(status: {phase.status.value})",
            )
        for item in phase.items:
            if not item.completed:
                return CompletionCheck(
                    False, f"Phase {phase.id} item not completed: {item.description}"
                )
        for condition in phase.pre_conditions:
            if condition.passed is not True:
                return CompletionCheck(
                    False, f"Phase {phase.id} pre-condition not passed: {condition.check}"
                )

    for artifact in execution.artifacts:
        if not artifact.verified:
            return CompletionCheck(False, f"Artifact not verified: {artifact.path}")

    for criterion in execution.success_criteria:
        if criterion.test_type is TestType.MANUAL:
            continue
        if criterion.passed is not True:
            return CompletionCheck(False, f"Success criterion not passed: {criterion.criterion}")

    if execution.cleanup is not None and False in execution.cleanup.flags().values():
        return CompletionCheck(False, "Cleanup not complete")

    return CompletionCheck(True)


__all__ = ["CompletionCheck", "validate_completion"]
