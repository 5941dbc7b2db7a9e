"""
task-orchestrator — control plane

Purpose
- Scheduling, per-task attempt execution and phase gating.
"""

from __future__ import annotations

from task_orchestrator.control_plane.phase_gate import (
    enforce_phase_gate,
    first_incomplete_phase,
    phase_is_complete,
    update_phase_progress,
)
from task_orchestrator.control_plane.run_context import RunContext, build_run_context
from task_orchestrator.control_plane.scheduler import (
    AttemptRunner,
    RunReport,
    Scheduler,
    SchedulerLimits,
    TaskResult,
    TaskStatus,
)
from task_orchestrator.control_plane.task_runner import AttemptResult, TaskOutcome, TaskRunner

__all__ = [
    "AttemptResult",
    "AttemptRunner",
    "RunContext",
    "RunReport",
    "Scheduler",
    "SchedulerLimits",
    "TaskOutcome",
    "TaskResult",
    "TaskRunner",
    "TaskStatus",
    "build_run_context",
    "enforce_phase_gate",
    "first_incomplete_phase",
    "phase_is_complete",
    "update_phase_progress",
]
