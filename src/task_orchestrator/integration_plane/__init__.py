"""
task-orchestrator — integration plane

Purpose
- Git-backed phase checkpoints and verification of working-tree changes
  against declared artifacts.
"""

from __future__ import annotations

from task_orchestrator.integration_plane.change_verifier import (
    ChangeReport,
    record_deviations,
    verify_changes,
)
from task_orchestrator.integration_plane.checkpoint_store import (
    Checkpoint,
    CheckpointResult,
    CheckpointStore,
    checkpoint_message,
)
from task_orchestrator.integration_plane.git_engine import (
    GitCommandError,
    GitEngine,
    GitEngineError,
)

__all__ = [
    "ChangeReport",
    "Checkpoint",
    "CheckpointResult",
    "CheckpointStore",
    "GitCommandError",
    "GitEngine",
    "GitEngineError",
    "checkpoint_message",
    "record_deviations",
    "verify_changes",
]
