"""
task-orchestrator — hallucinated artifact detection and recovery

File: src/task_orchestrator/verification_plane/artifact_auditor.py

Purpose
- Check that every created/modified artifact an execution record declares
  actually exists on disk, before any other completion check trusts the record.
- Reopen exactly the work that claimed to produce a missing file.

Functional requirements
- Recovery only reopens phases whose items textually reference a missing file.
- A blocked or unreadable review checklist is reported, never raised.
"""

from __future__ import annotations

import json
import os
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Final

import structlog

from task_orchestrator.constants import REVIEW_CHECKLIST_FILE
from task_orchestrator.domain.models import (
    Artifact,
    ArtifactType,
    CompletionStatus,
    ErrorEntry,
    ExecutionRecord,
    ExecutionStatus,
    FailureKind,
    PhaseStatus,
    utc_now_iso,
)
from task_orchestrator.utils.fs import normalize_repo_path

MISSING_REASON: Final[str] = (
    "File does not exist on filesystem despite being declared in execution record"
)
RECOVERY_PHASE: Final[str] = "artifact-validation"
CRITICAL_SEVERITY: Final[str] = "CRITICAL"
_AUDITED_TYPES: Final[frozenset[ArtifactType]] = frozenset(
    {ArtifactType.CREATED, ArtifactType.MODIFIED}
)


@dataclass(frozen=True, slots=True)
class AuditedArtifact:
    path: str
    full_path: Path
    artifact: Artifact
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class ArtifactAudit:
    valid: bool
    missing: tuple[AuditedArtifact, ...]
    existing: tuple[AuditedArtifact, ...]

    @property
    def existing_count(self) -> int:
        return len(self.existing)

    @property
    def missing_count(self) -> int:
        return len(self.missing)

    @property
    def total_count(self) -> int:
        return len(self.missing) + len(self.existing)

    @property
    def missing_paths(self) -> tuple[str, ...]:
        return tuple(item.path for item in self.missing)


@dataclass(frozen=True, slots=True)
class RecoveryResult:
    actions_taken: int
    reset_phases: tuple[int, ...] = ()
    marked_for_recreation: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ChecklistStatus:
    blocked: bool
    reason: str | None = None
    missing_files: tuple[str, ...] = field(default_factory=tuple)


def resolve_artifact_path(raw_path: str, cwd: str | Path) -> Path:
    """Resolve a declared path against ``cwd``; ``\\`` separators are accepted."""
    candidate = Path(normalize_repo_path(raw_path))
    if candidate.is_absolute():
        return candidate
    return Path(cwd) / candidate


def validate_artifacts_exist(
    execution: ExecutionRecord, cwd: str | Path, *, logger: Any | None = None
) -> ArtifactAudit:
    """Filesystem existence check for every created/modified artifact."""
    log = logger if logger is not None else structlog.get_logger(__name__)
    missing: list[AuditedArtifact] = []
    existing: list[AuditedArtifact] = []

    for artifact in execution.artifacts:
        if artifact.type not in _AUDITED_TYPES:
            continue
        full_path = resolve_artifact_path(artifact.path, cwd)
        if os.path.exists(full_path):
            existing.append(AuditedArtifact(artifact.path, full_path, artifact))
        else:
            log.warning("artifact_missing", task_id=execution.task, path=artifact.path)
            missing.append(AuditedArtifact(artifact.path, full_path, artifact, MISSING_REASON))

    if missing:
        log.error(
            "artifact_hallucination_detected",
            task_id=execution.task,
            missing=len(missing),
            total=len(missing) + len(existing),
        )
    return ArtifactAudit(valid=not missing, missing=tuple(missing), existing=tuple(existing))


def mark_artifacts_for_recreation(
    execution: ExecutionRecord,
    missing: Sequence[AuditedArtifact],
    *,
    logger: Any | None = None,
) -> RecoveryResult:
    """
    Reopen the work that claimed to produce each missing artifact.

    Completed items whose description or evidence names a missing file (full
    path or basename) are reset; their phase goes back to in_progress with
    ``hallucinationRecovery`` set. A CRITICAL entry is appended to the error
    history.
    """
    if not missing:
        return RecoveryResult(actions_taken=0)
    log = logger if logger is not None else structlog.get_logger(__name__)
    missing_paths = tuple(item.path for item in missing)

    for artifact in execution.artifacts:
        if artifact.path in missing_paths:
            artifact.verified = False
            artifact.needs_creation = True
            artifact.hallucination_detected = True

    basenames = [(path, PurePosixPath(normalize_repo_path(path)).name) for path in missing_paths]
    reset_phases: list[int] = []
    for phase in execution.phases:
        phase_needs_reset = False
        for item in phase.items:
            if not item.completed:
                continue
            text = f"{item.evidence or ''}\n{item.description}"
            for missing_path, basename in basenames:
                if missing_path in text or basename in text:
                    item.completed = False
                    item.hallucination_detected = True
                    item.reset_reason = f"File {missing_path} was not actually created"
                    phase_needs_reset = True
                    break
        if phase_needs_reset and phase.status is PhaseStatus.COMPLETED:
            phase.status = PhaseStatus.IN_PROGRESS
            phase.hallucination_recovery = True
            reset_phases.append(phase.id)
            log.info("phase_reopened", task_id=execution.task, phase=phase.id)

    execution.completion.status = CompletionStatus.PENDING_RECOVERY
    execution.completion.hallucination_detected = True
    execution.completion.missing_artifacts = list(missing_paths)
    execution.status = ExecutionStatus.IN_PROGRESS
    execution.error_history.append(
        ErrorEntry(
            timestamp=utc_now_iso(),
            message=(
                f"Hallucination detected: {len(missing_paths)} files claimed but not created: "
                f"{', '.join(missing_paths)}"
            ),
            phase=RECOVERY_PHASE,
            severity=CRITICAL_SEVERITY,
            failed_validation=FailureKind.HALLUCINATION.value,
        )
    )
    if FailureKind.HALLUCINATION.value not in execution.pending_fixes:
        execution.pending_fixes.append(FailureKind.HALLUCINATION.value)

    return RecoveryResult(
        actions_taken=len(missing_paths),
        reset_phases=tuple(reset_phases),
        marked_for_recreation=missing_paths,
    )


def check_review_checklist_blocked(task_dir: str | Path) -> ChecklistStatus:
    """Read ``review-checklist.json``; a missing or unparseable file never blocks."""
    checklist_path = Path(task_dir) / REVIEW_CHECKLIST_FILE
    if not checklist_path.exists():
        return ChecklistStatus(blocked=False)
    try:
        checklist = json.loads(checklist_path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return ChecklistStatus(blocked=False, reason="Could not parse review-checklist.json")
    if not isinstance(checklist, dict):
        return ChecklistStatus(blocked=False, reason="Could not parse review-checklist.json")

    if checklist.get("status") == "blocked":
        summary = checklist.get("summary")
        critical = summary.get("critical_issue") if isinstance(summary, dict) else None
        return ChecklistStatus(
            blocked=True, reason=str(critical) if critical else "Review checklist is blocked"
        )

    items = checklist.get("items")
    not_found = [
        item
        for item in (items if isinstance(items, list) else [])
        if isinstance(item, dict) and "FILE NOT FOUND" in str(item.get("failureReason") or "")
    ]
    if not_found:
        return ChecklistStatus(
            blocked=True,
            reason=f"{len(not_found)} review items failed due to missing files",
            missing_files=tuple(str(item.get("file")) for item in not_found if item.get("file")),
        )
    return ChecklistStatus(blocked=False)


def verify_artifacts(execution: ExecutionRecord, cwd: str | Path) -> None:
    """Set ``verified`` from the filesystem; deleted artifacts verify when absent."""
    for artifact in execution.artifacts:
        exists = os.path.exists(resolve_artifact_path(artifact.path, cwd))
        if artifact.type is ArtifactType.DELETED:
            artifact.verified = not exists
            artifact.verification = "absent from filesystem" if not exists else None
        elif exists:
            artifact.verified = True
            artifact.verification = "exists on filesystem"
            artifact.needs_creation = None


__all__ = [
    "ArtifactAudit",
    "AuditedArtifact",
    "ChecklistStatus",
    "MISSING_REASON",
    "RecoveryResult",
    "check_review_checklist_blocked",
    "mark_artifacts_for_recreation",
    "resolve_artifact_path",
    "validate_artifacts_exist",
    "verify_artifacts",
]
