"""Per-invocation run context shared by every orchestration component."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from task_orchestrator.constants import BLUEPRINT_FILE, EXECUTION_FILE
from task_orchestrator.utils.concurrency import CancellationToken


@dataclass(frozen=True, slots=True)
class RunContext:
    """
    Config, paths, logger and shared locks for one orchestrator run.

    ``checkpoint_lock`` serializes ``git add -A`` / ``git commit`` across
    concurrently running tasks; the index is the only shared mutable resource
    not covered by conflict-free scheduling.
    """

    config: Mapping[str, Any]
    state_dir: Path
    cwd: Path
    run_id: str = "local"
    logger: Any = field(default_factory=lambda: structlog.get_logger("task_orchestrator"))
    checkpoint_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    cancellation: CancellationToken = field(default_factory=CancellationToken)

    def task_dir(self, task_id: str) -> Path:
        return self.state_dir / task_id

    def execution_path(self, task_id: str) -> Path:
        return self.task_dir(task_id) / EXECUTION_FILE

    def blueprint_path(self, task_id: str) -> Path:
        return self.task_dir(task_id) / BLUEPRINT_FILE

    def section(self, name: str) -> Mapping[str, Any]:
        value = self.config.get(name)
        return value if isinstance(value, Mapping) else {}


def build_run_context(
    config: Mapping[str, Any],
    *,
    cwd: str | Path,
    run_id: str = "local",
    logger: Any | None = None,
) -> RunContext:
    """Resolve ``paths.state_dir`` against ``cwd`` and bind the run id to the logger."""
    working_dir = Path(cwd).resolve()
    paths = config.get("paths")
    raw_state_dir = paths.get("state_dir") if isinstance(paths, Mapping) else None
    state_dir = Path(raw_state_dir) if isinstance(raw_state_dir, str) else Path(".orchestrator")
    if not state_dir.is_absolute():
        state_dir = working_dir / state_dir
    base_logger = logger if logger is not None else structlog.get_logger("task_orchestrator")
    return RunContext(
        config=config,
        state_dir=state_dir,
        cwd=working_dir,
        run_id=run_id,
        logger=base_logger.bind(run_id=run_id),
    )


__all__ = ["RunContext", "build_run_context"]
