"""
task-orchestrator — spec ingestion

Purpose
- Turns per-task ``BLUEPRINT.md`` files (or a YAML manifest) into scheduling
  declarations and initial execution records.
"""

from __future__ import annotations

from task_orchestrator.spec_ingestion.blueprint import (
    BlueprintError,
    PlannedPhase,
    PlannedStep,
    StrategyIssue,
    StrategyValidation,
    TaskTags,
    blueprint_title,
    initial_execution_record,
    parse_dependencies_tag,
    parse_files_tag,
    parse_implementation_strategy,
    parse_task_tags,
    read_blueprint,
    validate_implementation_strategy,
)
from task_orchestrator.spec_ingestion.task_loader import discover_tasks, load_task_manifest

__all__ = [
    "BlueprintError",
    "PlannedPhase",
    "PlannedStep",
    "StrategyIssue",
    "StrategyValidation",
    "TaskTags",
    "blueprint_title",
    "discover_tasks",
    "initial_execution_record",
    "load_task_manifest",
    "parse_dependencies_tag",
    "parse_files_tag",
    "parse_implementation_strategy",
    "parse_task_tags",
    "read_blueprint",
    "validate_implementation_strategy",
]
