"""
task-orchestrator — per-attempt task context

File: src/task_orchestrator/synthesis_plane/context_builder.py

Purpose
- Render the prompt handed to the agent for one attempt at one task.

What should be included in this file
- Execution-state detection (first run, error recovery, blocked by review).
- A strict Jinja2 template; a missing variable is a programming error.

Functional requirements
- Must render deterministically for the same record and blueprint.
- Only the three most recent error-history entries are shown, newest first.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Final

from jinja2 import Environment, StrictUndefined

from task_orchestrator.constants import EXECUTION_FILE, FAILURE_HISTORY_WINDOW
from task_orchestrator.domain.models import ErrorEntry, ExecutionRecord, ExecutionStatus, Phase


class ExecutionState(StrEnum):
    FIRST_EXECUTION = "first-execution"
    ERROR_RECOVERY = "error-recovery"
    BLOCKED_DEPENDENCY = "blocked-dependency"
    BLOCKED_EXECUTION = "blocked-execution"


_TASK_TEMPLATE: Final[str] = """\
# Task {{ task_id }}: {{ title }}

Mode: {{ state }} (attempt {{ attempt }})

You are implementing {{ task_id }} in the current working directory.
Keep `{{ execution_file }}` up to date: mark items completed with evidence, and list
every file you create or modify under `artifacts`. Files you claim must exist on disk.
{% if focus %}

## Current Focus: Phase {{ focus.id }} - {{ focus.name }}
{% for item in focus.items %}
- [{{ "x" if item.completed else " " }}] {{ item.description }}
{% endfor %}
{% endif %}

## Progress
Status: {{ status }}
{% for phase in phases %}
- Phase {{ phase.id }} ({{ phase.name }}): {{ phase.status }}
{% endfor %}
{% if blocked_by %}

## Issues to Fix
{% for issue in blocked_by %}
{{ loop.index }}. {{ issue }}
{% endfor %}
{% endif %}
{% if failures %}

## Previous Failures (most recent first)
{% if pending_fixes %}
Pending fixes: {{ pending_fixes | join(", ") }}
{% endif %}
{% for failure in failures %}
{{ loop.index }}. **{{ failure.kind }}** - {{ failure.message }}
{% if failure.timestamp %}
   - Time: {{ failure.timestamp }}
{% endif %}
{% endfor %}
{% endif %}

## Blueprint

{{ blueprint }}
"""

_ENVIRONMENT: Final[Environment] = Environment(
    undefined=StrictUndefined,
    autoescape=False,
    trim_blocks=True,
    lstrip_blocks=True,
    newline_sequence="\n",
    keep_trailing_newline=True,
)


@dataclass(frozen=True, slots=True)
class TaskContext:
    prompt: str
    state: ExecutionState
    focus_phase: int | None


def detect_execution_state(execution: ExecutionRecord) -> ExecutionState:
    if execution.status is ExecutionStatus.BLOCKED:
        return ExecutionState.BLOCKED_EXECUTION
    if execution.completion.blocked_by:
        return ExecutionState.BLOCKED_DEPENDENCY
    if execution.error_history or execution.pending_fixes:
        return ExecutionState.ERROR_RECOVERY
    return ExecutionState.FIRST_EXECUTION


def recent_failures(
    error_history: Sequence[ErrorEntry], window: int = FAILURE_HISTORY_WINDOW
) -> tuple[ErrorEntry, ...]:
    """Last ``window`` entries, newest first."""
    if window <= 0:
        return ()
    return tuple(reversed(error_history[-window:]))


def build_task_context(
    execution: ExecutionRecord,
    blueprint: str,
    *,
    focus: Phase | None = None,
    attempt: int | None = None,
) -> TaskContext:
    state = detect_execution_state(execution)
    failures = [
        {
            "kind": entry.failed_validation or "unknown",
            "message": entry.message,
            "timestamp": entry.timestamp,
        }
        for entry in recent_failures(execution.error_history)
    ]
    prompt = _ENVIRONMENT.from_string(_TASK_TEMPLATE).render(
        task_id=execution.task,
        title=execution.title,
        state=state.value,
        attempt=attempt if attempt is not None else max(execution.attempts, 1),
        execution_file=EXECUTION_FILE,
        focus=focus,
        status=execution.status.value,
        phases=[
            {"id": phase.id, "name": phase.display_name, "status": phase.status.value}
            for phase in execution.sorted_phases()
        ],
        blocked_by=list(execution.completion.blocked_by),
        pending_fixes=list(execution.pending_fixes),
        failures=failures,
        blueprint=blueprint.strip(),
    )
    return TaskContext(
        prompt=prompt, state=state, focus_phase=focus.id if focus is not None else None
    )


__all__ = [
    "ExecutionState",
    "TaskContext",
    "build_task_context",
    "detect_execution_state",
    "recent_failures",
]
