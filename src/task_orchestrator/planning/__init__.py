"""
task-orchestrator — planning

Purpose
- Dependency and file-ownership graph that decides which tasks may run
  concurrently, plus deterministic automatic conflict resolution.
"""

from __future__ import annotations

from task_orchestrator.planning.conflict_graph import (
    ConflictGraph,
    ConflictResolution,
    CycleError,
    FileConflict,
)

__all__ = ["ConflictGraph", "ConflictResolution", "CycleError", "FileConflict"]
