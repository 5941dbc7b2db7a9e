"""Compare git working-tree changes with the artifacts an execution record declares."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog

from task_orchestrator.domain.models import ArtifactType, ExecutionRecord
from task_orchestrator.integration_plane.git_engine import GitEngine, GitEngineError
from task_orchestrator.utils.fs import normalize_repo_path

_DECLARED_TYPES = frozenset({ArtifactType.CREATED, ArtifactType.MODIFIED})


@dataclass(frozen=True, slots=True)
class ChangeReport:
    valid: bool
    actual_changes: tuple[str, ...]
    declared_changes: tuple[str, ...]
    undeclared: tuple[str, ...]
    missing: tuple[str, ...]

    def deviations(self) -> tuple[str, ...]:
        """Human-readable discrepancies for ``completion.deviations``."""
        messages: list[str] = []
        if self.undeclared:
            messages.append(f"Undeclared changes in git: {', '.join(self.undeclared)}")
        if self.missing:
            messages.append(f"Declared in artifacts but not modified: {', '.join(self.missing)}")
        return tuple(messages)


def verify_changes(
    execution: ExecutionRecord, git: GitEngine, *, logger: Any | None = None
) -> ChangeReport:
    """Git failures (for example no repository) yield an empty change set."""
    log = logger if logger is not None else structlog.get_logger(__name__)
    try:
        actual = git.changed_paths()
    except GitEngineError as exc:
        log.debug("git_changes_unavailable", task_id=execution.task, error=str(exc))
        actual = ()

    declared: dict[str, None] = {}
    for artifact in execution.artifacts:
        if artifact.type in _DECLARED_TYPES:
            declared.setdefault(normalize_repo_path(artifact.path), None)
    declared_changes = tuple(declared)

    actual_set = set(actual)
    undeclared = tuple(path for path in actual if path not in declared)
    missing = tuple(path for path in declared_changes if path not in actual_set)
    report = ChangeReport(
        valid=not undeclared and not missing,
        actual_changes=actual,
        declared_changes=declared_changes,
        undeclared=undeclared,
        missing=missing,
    )
    if not report.valid:
        log.warning(
            "git_changes_mismatch",
            task_id=execution.task,
            undeclared=list(undeclared),
            missing=list(missing),
        )
    return report


def record_deviations(execution: ExecutionRecord, report: ChangeReport) -> tuple[str, ...]:
    """Append new discrepancies to ``completion.deviations``; returns what was added."""
    added: list[str] = []
    for message in report.deviations():
        if message not in execution.completion.deviations:
            execution.completion.deviations.append(message)
            added.append(message)
    return tuple(added)


__all__ = ["ChangeReport", "record_deviations", "verify_changes"]
