"""Agent boundary — delegates implementation work to an external CLI agent.

File: src/task_orchestrator/synthesis_plane/agent.py

Purpose
- Define the invocation contract between the orchestrator and whatever
  implements a task (an AI coding CLI, a script, a test double).
- Provide a subprocess-backed adapter that pipes the prompt over stdin.

Functional requirements
- Agent failures come back as ``AgentResult(success=False)``; ``invoke`` never raises.
- The agent's side effects on disk are the real output; the transcript is advisory.
"""

from __future__ import annotations

import shutil
import time
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final, Protocol, runtime_checkable

import structlog

from task_orchestrator.verification_plane.executor import (
    CommandExecutor,
    CommandSpec,
    LocalSubprocessExecutor,
)

_TRANSCRIPT_LOG_CHARS: Final[int] = 200


class AgentUnavailableError(RuntimeError):
    """The configured agent command cannot be found on PATH."""


@dataclass(frozen=True, slots=True)
class AgentRequest:
    task_id: str
    prompt: str
    cwd: Path
    attempt: int = 1
    phase_id: int | None = None

    def __post_init__(self) -> None:
        if not self.prompt.strip():
            raise ValueError("AgentRequest.prompt cannot be empty")
        if self.attempt < 1:
            raise ValueError("AgentRequest.attempt must be >= 1")


@dataclass(frozen=True, slots=True)
class AgentResult:
    success: bool
    transcript: str = ""
    error: str | None = None
    duration_seconds: float = 0.0


@runtime_checkable
class AgentInvoker(Protocol):
    """Opaque "run agent, get transcript plus side effects on disk" capability."""

    async def invoke(self, request: AgentRequest) -> AgentResult: ...


class CommandAgent:
    """Runs a configured argv (for example ``claude -p``) with the prompt on stdin."""

    def __init__(
        self,
        command: Sequence[str],
        *,
        timeout_seconds: float | None = 1800.0,
        executor: CommandExecutor | None = None,
        logger: Any | None = None,
    ) -> None:
        argv = tuple(command)
        if not argv or any(not isinstance(part, str) or not part for part in argv):
            raise ValueError("agent command must be a non-empty list of non-empty strings")
        if timeout_seconds is not None and timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self._argv = argv
        self._timeout_seconds = timeout_seconds
        self._executor = executor if executor is not None else LocalSubprocessExecutor()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def command(self) -> tuple[str, ...]:
        return self._argv

    def ensure_available(self) -> None:
        binary = self._argv[0]
        if shutil.which(binary) is None and not Path(binary).is_file():
            raise AgentUnavailableError(f"agent command not found: {binary}")

    async def invoke(self, request: AgentRequest) -> AgentResult:
        started = time.monotonic()
        self._logger.info(
            "agent_invoked",
            task_id=request.task_id,
            attempt=request.attempt,
            phase=request.phase_id,
            command=self._argv[0],
        )
        result = await self._executor.run(
            CommandSpec(
                argv=self._argv,
                cwd=str(request.cwd),
                stdin_text=request.prompt,
                timeout_seconds=self._timeout_seconds,
            )
        )
        duration = time.monotonic() - started

        if result.is_success():
            self._logger.info(
                "agent_completed",
                task_id=request.task_id,
                duration_seconds=round(duration, 3),
                transcript_tail=result.stdout[-_TRANSCRIPT_LOG_CHARS:],
            )
            return AgentResult(success=True, transcript=result.stdout, duration_seconds=duration)

        error = result.error or (
            f"agent exited with code {result.exit_code}: {result.stderr.strip()[:500]}"
        )
        self._logger.warning(
            "agent_failed", task_id=request.task_id, error=error, timed_out=result.timed_out
        )
        return AgentResult(
            success=False, transcript=result.stdout, error=error, duration_seconds=duration
        )


__all__ = [
    "AgentInvoker",
    "AgentRequest",
    "AgentResult",
    "AgentUnavailableError",
    "CommandAgent",
]
