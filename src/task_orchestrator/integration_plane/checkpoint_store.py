"""
task-orchestrator — phase checkpoints in git history

File: src/task_orchestrator/integration_plane/checkpoint_store.py

Purpose
- One commit per completed phase with the canonical subject
  ``[<task>] Phase <n>: <name> complete``.
- Resume decisions are derived from commit history alone.

Functional requirements
- Checkpoint creation never raises; git failures come back as
  ``CheckpointResult(success=False)``.
- A clean working tree is a successful no-op.
- History queries match the exact task ID (``TASK1`` never matches ``TASK10``)
  and return empty results when history is unavailable.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Final

import structlog

from task_orchestrator.constants import CHECKPOINT_MESSAGE_TEMPLATE
from task_orchestrator.integration_plane.git_engine import GitEngine, GitEngineError, LogEntry

_CHECKPOINT_SUBJECT_RE: Final[re.Pattern[str]] = re.compile(
    r"^\[(?P<task>[^\]]+)\]\s+Phase\s+(?P<phase>\d+):\s+(?P<name>.+)\s+complete",
    re.IGNORECASE,
)
NO_CHANGES_MESSAGE: Final[str] = "No changes to commit"
DEFAULT_HISTORY_LIMIT: Final[int] = 10


@dataclass(frozen=True, slots=True)
class Checkpoint:
    commit_hash: str
    task_id: str
    phase_number: int
    phase_name: str

    @property
    def message(self) -> str:
        return checkpoint_message(self.task_id, self.phase_number, self.phase_name)

    def to_dict(self) -> dict[str, object]:
        return {
            "commit_hash": self.commit_hash,
            "task_id": self.task_id,
            "phase_number": self.phase_number,
            "phase_name": self.phase_name,
        }


@dataclass(frozen=True, slots=True)
class CheckpointResult:
    success: bool
    commit_hash: str | None
    message: str


def checkpoint_message(task_id: str, phase_number: int, phase_name: str) -> str:
    return CHECKPOINT_MESSAGE_TEMPLATE.format(task=task_id, phase=phase_number, name=phase_name)


def parse_checkpoint(entry: LogEntry, task_id: str) -> Checkpoint | None:
    """Parse a log entry into a checkpoint owned by exactly ``task_id``."""
    match = _CHECKPOINT_SUBJECT_RE.match(entry.subject)
    if match is None or match.group("task") != task_id:
        return None
    return Checkpoint(
        commit_hash=entry.commit,
        task_id=task_id,
        phase_number=int(match.group("phase")),
        phase_name=match.group("name"),
    )


class CheckpointStore:
    """Append-only phase-completion ledger over a git working tree."""

    def __init__(
        self,
        git: GitEngine,
        *,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        logger: Any | None = None,
    ) -> None:
        if history_limit < 1:
            raise ValueError("history_limit must be >= 1")
        self._git = git
        self._history_limit = history_limit
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def create_checkpoint(
        self, task_id: str, phase_number: int, phase_name: str
    ) -> CheckpointResult:
        message = checkpoint_message(task_id, phase_number, phase_name)
        try:
            if not self._git.status_porcelain():
                self._logger.info(
                    "checkpoint_skipped_clean_tree", task_id=task_id, phase=phase_number
                )
                return CheckpointResult(success=True, commit_hash=None, message=NO_CHANGES_MESSAGE)
            self._git.add_all()
            commit_hash = self._git.commit(message)
        except GitEngineError as exc:
            self._logger.warning(
                "checkpoint_failed", task_id=task_id, phase=phase_number, error=str(exc)
            )
            return CheckpointResult(success=False, commit_hash=None, message=str(exc))

        self._logger.info(
            "checkpoint_created",
            task_id=task_id,
            phase=phase_number,
            commit=commit_hash[:7],
        )
        return CheckpointResult(success=True, commit_hash=commit_hash, message=message)

    def get_last_checkpoint(self, task_id: str) -> Checkpoint | None:
        """Newest checkpoint commit for ``task_id``."""
        checkpoints = self.get_all_checkpoints(task_id)
        return checkpoints[0] if checkpoints else None

    def get_all_checkpoints(self, task_id: str, limit: int | None = None) -> tuple[Checkpoint, ...]:
        """Up to ``limit`` checkpoints for ``task_id``, newest first."""
        effective_limit = self._history_limit if limit is None else limit
        return self._checkpoints(task_id, limit=effective_limit)

    def get_next_phase(self, task_id: str, total_phases: int) -> int:
        """
        Phase to resume from: 1 without checkpoints, otherwise the phase after the
        highest checkpointed one, capped at ``total_phases``.
        """
        if total_phases < 1:
            raise ValueError("total_phases must be >= 1")
        checkpoints = self._checkpoints(task_id, limit=None)
        if not checkpoints:
            return 1
        highest = max(checkpoint.phase_number for checkpoint in checkpoints)
        return min(highest + 1, total_phases)

    def has_checkpoint(self, task_id: str, phase_number: int) -> bool:
        return any(
            checkpoint.phase_number == phase_number
            for checkpoint in self.get_all_checkpoints(task_id)
        )

    def _checkpoints(self, task_id: str, *, limit: int | None) -> tuple[Checkpoint, ...]:
        try:
            entries = self._git.log(grep=f"[{task_id}]", limit=limit)
        except GitEngineError as exc:
            self._logger.debug("checkpoint_history_unavailable", task_id=task_id, error=str(exc))
            return ()
        parsed = (parse_checkpoint(entry, task_id) for entry in entries)
        return tuple(checkpoint for checkpoint in parsed if checkpoint is not None)


__all__ = [
    "Checkpoint",
    "CheckpointResult",
    "CheckpointStore",
    "NO_CHANGES_MESSAGE",
    "checkpoint_message",
    "parse_checkpoint",
]
