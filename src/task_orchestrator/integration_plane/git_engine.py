"""Deterministic Git helpers for checkpointing and change verification."""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from task_orchestrator.utils.fs import normalize_repo_path

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

LOCAL_USER_NAME = "task-orchestrator"
LOCAL_USER_EMAIL = "task-orchestrator@example.invalid"


class GitEngineError(RuntimeError):
    """Base error for git engine failures."""


class GitCommandError(GitEngineError):
    """Raised when a git subprocess command exits non-zero."""

    def __init__(
        self,
        *,
        command: Sequence[str],
        returncode: int,
        stdout: str,
        stderr: str,
    ) -> None:
        self.command = tuple(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        message = f"git command failed ({returncode}): {' '.join(command)}"
        if stderr.strip():
            message = f"{message}: {stderr.strip()}"
        super().__init__(message)


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Normalized subprocess result for deterministic git wrapper behavior."""

    command: tuple[str, ...]
    cwd: str
    returncode: int
    stdout: str
    stderr: str


@dataclass(frozen=True, slots=True)
class LogEntry:
    """One ``git log`` line: full commit hash and subject."""

    commit: str
    subject: str


class GitEngine:
    """Non-interactive wrapper around the git CLI for one working tree."""

    def __init__(
        self,
        repo_path: Path | str,
        *,
        env_overrides: Mapping[str, str] | None = None,
    ) -> None:
        self.repo_path = Path(repo_path).resolve()
        self._env_overrides = dict(env_overrides or {})

    def is_repository(self) -> bool:
        try:
            result = self._run_git(["rev-parse", "--is-inside-work-tree"], check=False)
        except GitEngineError:
            return False
        return result.returncode == 0 and result.stdout.strip() == "true"

    def status_porcelain(self) -> tuple[str, ...]:
        """Non-empty ``git status --porcelain`` lines; empty means a clean tree."""
        output = self._run_git(["status", "--porcelain"]).stdout
        return tuple(line for line in output.splitlines() if line.strip())

    def add_all(self) -> None:
        self._run_git(["add", "-A"])

    def commit(self, message: str) -> str:
        """Commit the staged index and return the new ``HEAD`` hash."""
        title = message.strip()
        if not title:
            raise GitEngineError("Commit message cannot be empty.")
        self._ensure_local_identity()
        self._run_git(["commit", "--no-gpg-sign", "-m", title])
        return self.rev_parse("HEAD")

    def rev_parse(self, ref: str) -> str:
        return self._run_git(["rev-parse", ref]).stdout.strip()

    def log(self, *, grep: str | None = None, limit: int | None = 10) -> tuple[LogEntry, ...]:
        """Newest-first history, optionally filtered by a fixed-string subject match.

        ``limit=None`` reads the whole history.
        """
        args = ["log", "--format=%H%x09%s"]
        if limit is not None:
            if limit < 1:
                raise ValueError("limit must be >= 1")
            args.append(f"-n{limit}")
        if grep is not None:
            args.extend(["--fixed-strings", f"--grep={grep}"])
        output = self._run_git(args).stdout

        entries: list[LogEntry] = []
        for line in output.splitlines():
            commit, _, subject = line.partition("\t")
            if commit.strip():
                entries.append(LogEntry(commit=commit.strip(), subject=subject))
        return tuple(entries)

    def diff_name_only(self, *, cached: bool = False) -> tuple[str, ...]:
        args = ["diff", "--name-only"]
        if cached:
            args.insert(1, "--cached")
        output = self._run_git(args).stdout
        return tuple(
            normalize_repo_path(line) for line in output.splitlines() if line.strip()
        )

    def changed_paths(self) -> tuple[str, ...]:
        """Union of staged and unstaged paths, staged first, without duplicates."""
        seen: dict[str, None] = {}
        for path in (*self.diff_name_only(cached=True), *self.diff_name_only()):
            seen.setdefault(path, None)
        return tuple(seen)

    def _ensure_local_identity(self) -> None:
        if self._run_git(["config", "--get", "user.name"], check=False).returncode != 0:
            self._run_git(["config", "--local", "user.name", LOCAL_USER_NAME])
        if self._run_git(["config", "--get", "user.email"], check=False).returncode != 0:
            self._run_git(["config", "--local", "user.email", LOCAL_USER_EMAIL])

    def _run_git(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        check: bool = True,
    ) -> CommandResult:
        command = ("git", *args)
        run_cwd = (cwd if cwd is not None else self.repo_path).resolve()
        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"
        env.setdefault("GIT_CONFIG_NOSYSTEM", "1")
        env.update(self._env_overrides)

        try:
            completed = subprocess.run(
                command,
                cwd=run_cwd,
                env=env,
                text=True,
                capture_output=True,
                check=False,
            )
        except OSError as exc:
            raise GitEngineError(f"Unable to run git in {run_cwd.as_posix()}: {exc}") from exc

        result = CommandResult(
            command=command,
            cwd=run_cwd.as_posix(),
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )

        if check and result.returncode != 0:
            raise GitCommandError(
                command=result.command,
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )

        return result


__all__ = [
    "CommandResult",
    "GitCommandError",
    "GitEngine",
    "GitEngineError",
    "LogEntry",
]
