"""
task-orchestrator — phase gate

File: src/task_orchestrator/control_plane/phase_gate.py

Purpose
- Keep a task's ``currentPhase`` pointer honest: it may never sit beyond the
  first phase that is not completed.

Functional requirements
- A record that over-claims progress is rewound to the first incomplete phase,
  never to a later one.
- Phase progress updates never move the pointer backwards.
"""

from __future__ import annotations

from typing import Any

import structlog

from task_orchestrator.domain.models import CurrentPhase, ExecutionRecord, Phase, PhaseStatus


def phase_is_complete(phase: Phase) -> bool:
    """Every item completed and every pre-condition passed."""
    return all(item.completed for item in phase.items) and all(
        condition.passed is True for condition in phase.pre_conditions
    )


def first_incomplete_phase(execution: ExecutionRecord) -> Phase | None:
    for phase in execution.sorted_phases():
        if phase.status is not PhaseStatus.COMPLETED:
            return phase
    return None


def enforce_phase_gate(execution: ExecutionRecord, *, logger: Any | None = None) -> bool:
    """
    Return True when ``currentPhase`` is consistent with the phase data.

    On a violation ``currentPhase`` is rewritten to the first incomplete phase
    and False is returned. The caller decides whether to record the violation.
    """
    current = execution.current_phase
    if current is None or not execution.phases:
        return True

    first_incomplete = first_incomplete_phase(execution)
    if first_incomplete is None or first_incomplete.id == current.id:
        return True
    if first_incomplete.id > current.id:
        # every phase before the pointer is completed; the pointer is merely behind
        return True

    log = logger if logger is not None else structlog.get_logger(__name__)
    log.warning(
        "phase_gate_violation",
        task_id=execution.task,
        claimed_phase=current.id,
        rewound_to=first_incomplete.id,
        status=first_incomplete.status.value,
    )
    execution.current_phase = CurrentPhase(
        id=first_incomplete.id,
        name=first_incomplete.display_name,
        last_action=current.last_action,
    )
    return False


def update_phase_progress(
    execution: ExecutionRecord, phase_id: int, status: PhaseStatus
) -> None:
    """Set a phase's status; advance ``currentPhase`` only when ``phase_id`` is ahead of it."""
    phase = execution.phase(phase_id)
    if phase is not None:
        phase.status = status

    current = execution.current_phase
    if current is not None and current.id < phase_id:
        current.id = phase_id
        current.name = phase.display_name if phase is not None else f"Phase {phase_id}"


def gate_violation_message(claimed: int, execution: ExecutionRecord) -> str:
    rewound = execution.current_phase.id if execution.current_phase is not None else claimed
    return f"Phase {rewound} must be completed before Phase {claimed}"


__all__ = [
    "enforce_phase_gate",
    "first_incomplete_phase",
    "gate_violation_message",
    "phase_is_complete",
    "update_phase_progress",
]
