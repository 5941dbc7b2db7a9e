"""Stable constants shared across orchestrator planes."""

from __future__ import annotations

from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
EXECUTION_SCHEMA_ID: Final[str] = "execution-schema-v1"
EXECUTION_RECORD_VERSION: Final[str] = "1.0"
TASK_GRAPH_SCHEMA_VERSION: Final[int] = 1

# Per-task state layout under ``paths.state_dir``.
BLUEPRINT_FILE: Final[str] = "BLUEPRINT.md"
EXECUTION_FILE: Final[str] = "execution.json"
REVIEW_CHECKLIST_FILE: Final[str] = "review-checklist.json"

# Task identifiers. The terminal sentinel always sorts after numbered tasks.
TERMINAL_TASK_ID: Final[str] = "TASKΩ"
TASK_ID_PATTERN: Final[str] = r"^TASK(?:\d+|Ω)$"

# Canonical checkpoint commit subject.
CHECKPOINT_MESSAGE_TEMPLATE: Final[str] = "[{task}] Phase {phase}: {name} complete"

# Error-history entries fed back into the retry prompt.
FAILURE_HISTORY_WINDOW: Final[int] = 3

__all__ = [
    "BLUEPRINT_FILE",
    "CHECKPOINT_MESSAGE_TEMPLATE",
    "CONFIG_SCHEMA_VERSION",
    "EXECUTION_FILE",
    "EXECUTION_RECORD_VERSION",
    "EXECUTION_SCHEMA_ID",
    "FAILURE_HISTORY_WINDOW",
    "REVIEW_CHECKLIST_FILE",
    "TASK_GRAPH_SCHEMA_VERSION",
    "TASK_ID_PATTERN",
    "TERMINAL_TASK_ID",
]
