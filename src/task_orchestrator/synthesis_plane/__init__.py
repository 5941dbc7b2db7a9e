"""
task-orchestrator — synthesis plane

Purpose
- The boundary to the external agent that performs implementation work, and
  the prompt context it receives on every attempt.
"""

from __future__ import annotations

from task_orchestrator.synthesis_plane.agent import (
    AgentInvoker,
    AgentRequest,
    AgentResult,
    AgentUnavailableError,
    CommandAgent,
)
from task_orchestrator.synthesis_plane.context_builder import (
    ExecutionState,
    TaskContext,
    build_task_context,
    detect_execution_state,
    recent_failures,
)

__all__ = [
    "AgentInvoker",
    "AgentRequest",
    "AgentResult",
    "AgentUnavailableError",
    "CommandAgent",
    "ExecutionState",
    "TaskContext",
    "build_task_context",
    "detect_execution_state",
    "recent_failures",
]
