"""Persistence plane: per-task execution record storage."""

from task_orchestrator.persistence.execution_store import (
    ExecutionRecordError,
    ExecutionStore,
    append_error,
    is_critical_error,
)

__all__ = [
    "ExecutionRecordError",
    "ExecutionStore",
    "append_error",
    "is_critical_error",
]
