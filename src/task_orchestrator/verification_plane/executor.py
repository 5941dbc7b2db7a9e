"""
task-orchestrator — command execution contract

File: src/task_orchestrator/verification_plane/executor.py

Purpose
- Portable async command execution for success criteria, pre-conditions and
  the subprocess-backed agent.

Functional requirements
- Commands run either as an argv vector or through the shell.
- A timeout kills the whole process group and is reported, never raised.
- Spawn failures are reported as ``CommandResult.error``, never raised.

Non-functional requirements
- Output is decoded leniently, newline-normalized and bounded in size.
"""

from __future__ import annotations

import asyncio
import os
import shlex
import signal
import time
from collections.abc import Mapping
from contextlib import suppress
from dataclasses import dataclass, field
from typing import NoReturn, Protocol, runtime_checkable


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


@dataclass(slots=True)
class CommandSpec:
    """Command invocation: exactly one of ``argv`` or ``shell`` is set."""

    argv: tuple[str, ...] = ()
    shell: str | None = None
    cwd: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    stdin_text: str | None = None
    timeout_seconds: float | None = None
    inherit_env: bool = True

    def __post_init__(self) -> None:
        self.argv = tuple(self.argv)
        if bool(self.argv) == (self.shell is not None):
            _fail("CommandSpec", "exactly one of argv or shell must be provided")
        if self.shell is not None and not self.shell.strip():
            _fail("CommandSpec.shell", "must be a non-empty command string")
        if any(not isinstance(item, str) or not item for item in self.argv):
            _fail("CommandSpec.argv", "entries must be non-empty strings")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            _fail("CommandSpec.timeout_seconds", "must be > 0")

    @property
    def display(self) -> str:
        if self.shell is not None:
            return self.shell
        return shlex.join(self.argv)

    def resolved_timeout(self, default_timeout_seconds: float | None = None) -> float | None:
        if self.timeout_seconds is not None:
            return self.timeout_seconds
        return default_timeout_seconds

    def build_env(self) -> dict[str, str] | None:
        if self.inherit_env:
            env = dict(os.environ)
            env.update(self.env)
            return env
        return dict(self.env)


@dataclass(slots=True)
class CommandResult:
    """Deterministic command execution outcome."""

    command: str
    exit_code: int | None
    stdout: str
    stderr: str
    duration_ms: int
    timed_out: bool = False
    error: str | None = None

    def __post_init__(self) -> None:
        if self.timed_out and self.exit_code is not None:
            _fail("CommandResult.exit_code", "must be None when timed_out is true")

    def is_success(self) -> bool:
        if self.timed_out or self.error is not None or self.exit_code is None:
            return False
        return self.exit_code == 0

    @property
    def output(self) -> str:
        """stdout, or stderr when stdout is blank."""
        return self.stdout if self.stdout.strip() else self.stderr

    def to_dict(self) -> dict[str, object]:
        return {
            "command": self.command,
            "exit_code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "duration_ms": self.duration_ms,
            "timed_out": self.timed_out,
            "error": self.error,
        }


@runtime_checkable
class CommandExecutor(Protocol):
    """Pluggable async command execution interface."""

    async def run(self, spec: CommandSpec) -> CommandResult: ...


class LocalSubprocessExecutor(CommandExecutor):
    """Async local subprocess executor with deterministic capture/timeout behavior."""

    def __init__(
        self,
        *,
        default_timeout_seconds: float | None = None,
        max_output_chars: int | None = 200_000,
    ) -> None:
        if default_timeout_seconds is not None and default_timeout_seconds <= 0:
            _fail("LocalSubprocessExecutor.default_timeout_seconds", "must be > 0")
        if max_output_chars is not None and max_output_chars < 1:
            _fail("LocalSubprocessExecutor.max_output_chars", "must be >= 1")
        self._default_timeout_seconds = default_timeout_seconds
        self._max_output_chars = max_output_chars

    async def run(self, spec: CommandSpec) -> CommandResult:
        started_ns = time.monotonic_ns()
        timeout = spec.resolved_timeout(self._default_timeout_seconds)
        stdin = (
            asyncio.subprocess.PIPE if spec.stdin_text is not None else asyncio.subprocess.DEVNULL
        )

        try:
            if spec.shell is not None:
                process = await asyncio.create_subprocess_shell(
                    spec.shell,
                    cwd=spec.cwd,
                    env=spec.build_env(),
                    stdin=stdin,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    start_new_session=True,
                )
            else:
                process = await asyncio.create_subprocess_exec(
                    *spec.argv,
                    cwd=spec.cwd,
                    env=spec.build_env(),
                    stdin=stdin,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    start_new_session=True,
                )
        except OSError as exc:
            return CommandResult(
                command=spec.display,
                exit_code=None,
                stdout="",
                stderr="",
                duration_ms=_elapsed_ms(started_ns),
                error=str(exc),
            )

        stdin_bytes = spec.stdin_text.encode("utf-8") if spec.stdin_text is not None else None

        try:
            stdout_bytes, stderr_bytes = await _communicate_with_timeout(
                process=process,
                stdin_bytes=stdin_bytes,
                timeout_seconds=timeout,
            )
            timed_out = False
            error_text: str | None = None
            exit_code = process.returncode
        except _CommandTimeoutError as exc:
            stdout_bytes = exc.stdout
            stderr_bytes = exc.stderr
            timed_out = True
            timeout_value = timeout if timeout is not None else 0.0
            error_text = f"command timed out after {timeout_value:.3f}s"
            exit_code = None

        return CommandResult(
            command=spec.display,
            exit_code=exit_code,
            stdout=_truncate_text(_normalize_output_text(stdout_bytes), self._max_output_chars),
            stderr=_truncate_text(_normalize_output_text(stderr_bytes), self._max_output_chars),
            duration_ms=_elapsed_ms(started_ns),
            timed_out=timed_out,
            error=error_text,
        )


@dataclass(slots=True)
class _CommandTimeoutError(Exception):
    stdout: bytes
    stderr: bytes


def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    with suppress(ProcessLookupError, PermissionError):
        if hasattr(os, "killpg"):
            os.killpg(process.pid, signal.SIGKILL)
            return
    with suppress(ProcessLookupError):
        process.kill()


async def _communicate_with_timeout(
    *,
    process: asyncio.subprocess.Process,
    stdin_bytes: bytes | None,
    timeout_seconds: float | None,
) -> tuple[bytes, bytes]:
    try:
        if timeout_seconds is None:
            return await process.communicate(stdin_bytes)
        return await asyncio.wait_for(process.communicate(stdin_bytes), timeout=timeout_seconds)
    except TimeoutError as exc:
        _kill_process_group(process)
        stdout_bytes, stderr_bytes = await process.communicate()
        raise _CommandTimeoutError(stdout=stdout_bytes, stderr=stderr_bytes) from exc
    except asyncio.CancelledError:
        _kill_process_group(process)
        await process.communicate()
        raise


def _elapsed_ms(started_ns: int) -> int:
    delta_ns = time.monotonic_ns() - started_ns
    if delta_ns < 0:
        return 0
    return delta_ns // 1_000_000


def _normalize_output_text(raw: bytes) -> str:
    text = raw.decode("utf-8", errors="replace")
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _truncate_text(text: str, max_chars: int | None) -> str:
    if max_chars is None or len(text) <= max_chars:
        return text
    omitted = len(text) - max_chars
    return f"{text[:max_chars]}\n...[truncated {omitted} chars]"


__all__ = [
    "CommandExecutor",
    "CommandResult",
    "CommandSpec",
    "LocalSubprocessExecutor",
]
