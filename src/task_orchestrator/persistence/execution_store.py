"""
task-orchestrator — execution record persistence.

File: src/task_orchestrator/persistence/execution_store.py

Purpose
- Load, validate, and atomically save per-task ``execution.json`` records.
- Record recoverable failures into a record's error history.

Functional requirements
- Schema validation on every load and save; critical structural issues always
  raise, non-critical issues are logged as warnings in lenient mode.
- Saves replace the file atomically so a crash never leaves a torn record.
- Error recording never raises; failures while recording are logged.
"""

from __future__ import annotations

import json
import traceback
from pathlib import Path
from typing import Any, Final

import structlog

from task_orchestrator.domain.execution_schema import validate_execution_payload
from task_orchestrator.domain.models import (
    CompletionStatus,
    ErrorEntry,
    ExecutionRecord,
    ExecutionStatus,
    utc_now_iso,
)
from task_orchestrator.utils.fs import atomic_write

_CRITICAL_ERROR_MARKERS: Final[tuple[str, ...]] = (
    ".json not found",
    "file not found",
    "failed to parse",
    "syntax error",
    "unexpected token",
    "json parse error",
    "cannot read",
    "permission denied",
    "enoent",
)
_STACK_LINES: Final[int] = 3


class ExecutionRecordError(ValueError):
    """Raised when an execution record cannot be read, parsed, or validated."""


def is_critical_error(message: str) -> bool:
    """Return ``True`` for structural errors that must never be downgraded to warnings."""

    lowered = message.lower()
    return any(marker in lowered for marker in _CRITICAL_ERROR_MARKERS)


class ExecutionStore:
    """File-backed store for execution records."""

    def __init__(self, *, lenient: bool = True, logger: Any | None = None) -> None:
        self._lenient = lenient
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def load(self, path: str | Path) -> ExecutionRecord:
        target = Path(path)
        if not target.exists():
            raise ExecutionRecordError(f"execution.json not found at {target}")
        try:
            payload = json.loads(target.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ExecutionRecordError(f"Failed to parse execution.json: {exc}") from exc
        except OSError as exc:
            raise ExecutionRecordError(f"Cannot read execution.json: {exc}") from exc
        if not isinstance(payload, dict):
            raise ExecutionRecordError("Failed to parse execution.json: root must be an object")

        self._validate(payload, target, operation="load")
        try:
            return ExecutionRecord.from_dict(payload)
        except ValueError as exc:
            raise ExecutionRecordError(f"Invalid execution.json at {target}: {exc}") from exc

    def save(self, path: str | Path, record: ExecutionRecord) -> None:
        target = Path(path)
        payload = record.to_dict()
        self._validate(payload, target, operation="save")
        target.parent.mkdir(parents=True, exist_ok=True)
        atomic_write(target, json.dumps(payload, indent=2, ensure_ascii=False) + "\n")

    def record_error(
        self,
        path: str | Path,
        error: BaseException | str,
        *,
        failed_validation: str = "unknown",
        phase: str | None = None,
    ) -> ExecutionRecord | None:
        """Append ``error`` to the record's history and mark it pending validation."""

        target = Path(path)
        if not target.exists():
            return None
        try:
            record = self.load(target)
            append_error(record, error, failed_validation=failed_validation, phase=phase)
            self.save(target, record)
        except (ExecutionRecordError, OSError) as exc:
            self._logger.warning(
                "execution_error_record_failed", path=str(target), error=str(exc)
            )
            return None
        return record

    def _validate(self, payload: dict[str, Any], path: Path, *, operation: str) -> None:
        result = validate_execution_payload(payload)
        if result.valid:
            return
        critical = [message for message in result.errors if is_critical_error(message)]
        if critical or not self._lenient:
            raise ExecutionRecordError(
                f"execution.json {operation} validation failed at {path}: "
                + "; ".join(result.errors)
            )
        self._logger.warning(
            "execution_schema_warnings",
            path=str(path),
            operation=operation,
            issues=list(result.errors),
        )


def append_error(
    record: ExecutionRecord,
    error: BaseException | str,
    *,
    failed_validation: str = "unknown",
    phase: str | None = None,
    severity: str | None = None,
) -> ErrorEntry:
    """In-memory form of ``ExecutionStore.record_error``."""

    message = str(error)
    stack: str | None = None
    if isinstance(error, BaseException) and error.__traceback__ is not None:
        rendered = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        stack = "\n".join(rendered.strip().splitlines()[:_STACK_LINES])

    entry = ErrorEntry(
        timestamp=utc_now_iso(),
        message=message,
        stack=stack,
        phase=phase,
        severity=severity,
        failed_validation=failed_validation,
    )
    record.error_history.append(entry)
    if failed_validation not in record.pending_fixes:
        record.pending_fixes.append(failed_validation)
    record.status = ExecutionStatus.IN_PROGRESS
    record.completion.status = CompletionStatus.PENDING_VALIDATION
    record.completion.last_error = message
    record.completion.failed_validation = failed_validation
    return entry


__all__ = [
    "ExecutionRecordError",
    "ExecutionStore",
    "append_error",
    "is_critical_error",
]
