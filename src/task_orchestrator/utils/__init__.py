"""Utility exports for filesystem and concurrency helpers."""

from task_orchestrator.utils.concurrency import CancellationToken
from task_orchestrator.utils.fs import atomic_write, normalize_repo_path

__all__ = [
    "CancellationToken",
    "atomic_write",
    "normalize_repo_path",
]
