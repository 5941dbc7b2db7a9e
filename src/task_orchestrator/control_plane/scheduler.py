"""
task-orchestrator — DAG scheduler

File: src/task_orchestrator/control_plane/scheduler.py

Purpose
- Admit ready tasks up to a concurrency bound, drive each one through the task
  runner with a bounded retry budget, and report per-task outcomes.

What should be included in this file
- Up-front preparation: conflict auto-resolution, serialization fallback,
  blocking of cyclic and dangling tasks, resume of completed tasks.
- Event-driven readiness: re-evaluated on every completion, never on a tick.

Functional requirements
- A failed or blocked task blocks its transitive dependents; completed siblings
  are never rolled back.
- The run succeeds only when every task completed.

Non-functional requirements
- Deterministic admission order (numeric task order, terminal task last).
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol

import structlog

from task_orchestrator.config.schema import MAX_CONCURRENCY_LIMIT
from task_orchestrator.control_plane.task_runner import AttemptResult, TaskOutcome
from task_orchestrator.planning.conflict_graph import ConflictGraph, ConflictResolution
from task_orchestrator.utils.concurrency import CancellationToken

SleepFn = Callable[[float], Awaitable[None]]


class TaskStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"


class AttemptRunner(Protocol):
    async def run_attempt(self, task_id: str, attempt: int) -> AttemptResult: ...


@dataclass(frozen=True, slots=True)
class SchedulerLimits:
    """Admission and retry bounds, normally read from ``[scheduler]``."""

    max_concurrency: int = 4
    max_attempts_per_task: int = 20
    retry_delay_seconds: float = 1.0
    auto_resolve_conflicts: bool = True

    def __post_init__(self) -> None:
        if not 1 <= self.max_concurrency <= MAX_CONCURRENCY_LIMIT:
            raise ValueError(f"max_concurrency must be between 1 and {MAX_CONCURRENCY_LIMIT}")
        if self.max_attempts_per_task < 1:
            raise ValueError("max_attempts_per_task must be >= 1")
        if self.retry_delay_seconds < 0:
            raise ValueError("retry_delay_seconds must be >= 0")

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> SchedulerLimits:
        section = config.get("scheduler")
        values = section if isinstance(section, Mapping) else {}
        return cls(
            max_concurrency=int(values.get("max_concurrency", 4)),
            max_attempts_per_task=int(values.get("max_attempts_per_task", 20)),
            retry_delay_seconds=float(values.get("retry_delay_seconds", 1.0)),
            auto_resolve_conflicts=bool(values.get("auto_resolve_conflicts", True)),
        )


@dataclass(slots=True)
class TaskResult:
    task_id: str
    status: TaskStatus = TaskStatus.PENDING
    attempts: int = 0
    last_error: str | None = None
    blocking_chain: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, object]:
        return {
            "task_id": self.task_id,
            "status": self.status.value,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "blocking_chain": list(self.blocking_chain),
        }


@dataclass(frozen=True, slots=True)
class RunReport:
    tasks: tuple[TaskResult, ...]
    resolutions: tuple[ConflictResolution, ...] = ()
    effective_concurrency: int = 1
    peak_concurrency: int = 0
    deadlock: tuple[str, ...] = ()
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return all(result.status is TaskStatus.COMPLETED for result in self.tasks)

    def result(self, task_id: str) -> TaskResult:
        for result in self.tasks:
            if result.task_id == task_id:
                return result
        raise KeyError(task_id)

    def counts(self) -> dict[str, int]:
        totals = {status.value: 0 for status in TaskStatus}
        for result in self.tasks:
            totals[result.status.value] += 1
        return totals

    def to_dict(self) -> dict[str, object]:
        return {
            "succeeded": self.succeeded,
            "cancelled": self.cancelled,
            "effective_concurrency": self.effective_concurrency,
            "peak_concurrency": self.peak_concurrency,
            "counts": self.counts(),
            "tasks": [result.to_dict() for result in self.tasks],
            "resolutions": [resolution.to_dict() for resolution in self.resolutions],
            "deadlock": list(self.deadlock),
        }


@dataclass(slots=True)
class _RunState:
    results: dict[str, TaskResult]
    roots: dict[str, str] = field(default_factory=dict)
    in_flight: dict[asyncio.Task[AttemptResult], str] = field(default_factory=dict)
    peak: int = 0


class Scheduler:
    """Event-driven DAG executor over a ``ConflictGraph``."""

    def __init__(
        self,
        graph: ConflictGraph,
        runner: AttemptRunner,
        *,
        limits: SchedulerLimits | None = None,
        completed: Iterable[str] = (),
        cancellation: CancellationToken | None = None,
        logger: Any | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._graph = graph
        self._runner = runner
        self._limits = limits or SchedulerLimits()
        self._completed = frozenset(completed)
        self._cancellation = cancellation or CancellationToken()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._sleep = sleep

    @property
    def limits(self) -> SchedulerLimits:
        return self._limits

    def effective_concurrency(self) -> int:
        """1 when any task lacks a file declaration, else ``max_concurrency``."""
        missing = self._graph.find_tasks_missing_files()
        if missing:
            return 1
        return self._limits.max_concurrency

    def resolve_conflicts(self) -> tuple[ConflictResolution, ...]:
        if not self._limits.auto_resolve_conflicts:
            return ()
        conflicts = self._graph.detect_file_conflicts()
        if not conflicts:
            return ()
        resolutions = self._graph.auto_resolve_conflicts(conflicts)
        suggestions = ConflictGraph.suggest_dependency_fixes(conflicts)
        for resolution, suggestion in zip(resolutions, suggestions, strict=True):
            self._logger.info(
                "conflict_resolved",
                winner=resolution.winner,
                loser=resolution.loser,
                files=list(resolution.files),
                resolution=resolution.resolution,
                suggestion=suggestion,
            )
        return resolutions

    async def run(self) -> RunReport:
        resolutions = self.resolve_conflicts()
        concurrency = self.effective_concurrency()
        if concurrency == 1 and self._limits.max_concurrency > 1:
            self._logger.warning(
                "scheduler_serialized",
                tasks_missing_files=list(self._graph.find_tasks_missing_files()),
            )

        state = _RunState(
            results={task_id: TaskResult(task_id) for task_id in self._graph.tasks}
        )
        self._prepare(state)
        self._logger.info(
            "scheduler_started",
            tasks=len(state.results),
            concurrency=concurrency,
            resumed=sorted(self._completed & set(state.results)),
        )

        while True:
            if not self._cancellation.is_cancelled:
                self._admit(state, concurrency)
            if not state.in_flight:
                break
            done, _ = await asyncio.wait(
                tuple(state.in_flight), return_when=asyncio.FIRST_COMPLETED
            )
            for finished in done:
                self._settle(state, state.in_flight.pop(finished), finished)

        deadlock = () if self._cancellation.is_cancelled else self._deadlock_diagnostics(state)
        report = RunReport(
            tasks=tuple(state.results[task_id] for task_id in self._graph.tasks),
            resolutions=resolutions,
            effective_concurrency=concurrency,
            peak_concurrency=state.peak,
            deadlock=deadlock,
            cancelled=self._cancellation.is_cancelled,
        )
        self._logger.info("scheduler_finished", succeeded=report.succeeded, **report.counts())
        return report

    def _prepare(self, state: _RunState) -> None:
        for task_id in self._completed:
            if task_id in state.results:
                state.results[task_id].status = TaskStatus.COMPLETED

        for cycle in self._graph.detect_cycles():
            reason = "Dependency cycle: " + " -> ".join(cycle)
            for task_id in dict.fromkeys(cycle):
                if state.results[task_id].status is TaskStatus.PENDING:
                    self._mark_root(state, task_id, TaskStatus.BLOCKED, reason)

        for task_id, missing in self._graph.missing_dependencies().items():
            if state.results[task_id].status is TaskStatus.PENDING:
                reason = "Missing dependencies: " + ", ".join(missing)
                self._mark_root(state, task_id, TaskStatus.BLOCKED, reason)

        for task_id in tuple(state.roots):
            self._block_dependents(state, task_id)

    def _admit(self, state: _RunState, concurrency: int) -> None:
        completed = [
            task_id
            for task_id, result in state.results.items()
            if result.status is TaskStatus.COMPLETED
        ]
        not_pending = [
            task_id
            for task_id, result in state.results.items()
            if result.status is not TaskStatus.PENDING
        ]
        for task_id in self._graph.get_ready(completed, exclude=not_pending):
            if len(state.in_flight) >= concurrency:
                break
            state.results[task_id].status = TaskStatus.RUNNING
            task = asyncio.create_task(self._drive(state.results[task_id]), name=task_id)
            state.in_flight[task] = task_id
            state.peak = max(state.peak, len(state.in_flight))
            self._logger.info("task_admitted", task_id=task_id, in_flight=len(state.in_flight))

    async def _drive(self, result: TaskResult) -> AttemptResult:
        limit = self._limits.max_attempts_per_task
        last: AttemptResult | None = None
        for attempt in range(1, limit + 1):
            if self._cancellation.is_cancelled:
                return AttemptResult(
                    result.task_id, TaskOutcome.CANCELLED, self._cancellation.reason
                )
            last = await self._runner.run_attempt(result.task_id, attempt)
            result.attempts = attempt
            if last.outcome is not TaskOutcome.RETRY:
                return last
            result.last_error = last.error
            self._logger.info(
                "task_retry_scheduled",
                task_id=result.task_id,
                attempt=attempt,
                max_attempts=limit,
                error=last.error,
            )
            if attempt < limit and self._limits.retry_delay_seconds > 0:
                await self._sleep(self._limits.retry_delay_seconds)

        message = f"Maximum attempts ({limit}) reached for {result.task_id}"
        if last is not None and last.error:
            message = f"{message}. Last error: {last.error}"
        return AttemptResult(result.task_id, TaskOutcome.RETRY, message)

    def _settle(self, state: _RunState, task_id: str, task: asyncio.Task[AttemptResult]) -> None:
        result = state.results[task_id]
        try:
            outcome = task.result()
        except Exception as exc:  # noqa: BLE001 - isolate one task from the run
            self._logger.exception("task_crashed", task_id=task_id)
            outcome = AttemptResult(task_id, TaskOutcome.RETRY, f"{type(exc).__name__}: {exc}")

        if outcome.outcome is TaskOutcome.COMPLETED:
            result.status = TaskStatus.COMPLETED
            result.last_error = None
            self._logger.info("task_finished", task_id=task_id, attempts=result.attempts)
        elif outcome.outcome is TaskOutcome.CANCELLED:
            result.status = TaskStatus.PENDING
            self._logger.info("task_cancelled", task_id=task_id, reason=outcome.error)
        elif outcome.outcome is TaskOutcome.BLOCKED:
            self._mark_root(state, task_id, TaskStatus.BLOCKED, outcome.error or "blocked")
            self._block_dependents(state, task_id)
        else:
            self._mark_root(state, task_id, TaskStatus.FAILED, outcome.error or "failed")
            self._block_dependents(state, task_id)

    def _mark_root(
        self, state: _RunState, task_id: str, status: TaskStatus, reason: str
    ) -> None:
        result = state.results[task_id]
        result.status = status
        result.last_error = reason
        result.blocking_chain = (task_id,)
        state.roots[task_id] = reason
        self._logger.warning("task_terminal", task_id=task_id, status=status.value, reason=reason)

    def _block_dependents(self, state: _RunState, root: str) -> None:
        pending = [
            dependent
            for dependent in self._graph.get_dependents(root, transitive=True)
            if state.results[dependent].status is TaskStatus.PENDING
        ]
        # chains are computed before any dependent is marked so they end at a root
        chains = {
            dependent: self._graph.blocking_chain(dependent, state.roots) for dependent in pending
        }
        for dependent, chain in chains.items():
            result = state.results[dependent]
            result.status = TaskStatus.BLOCKED
            result.blocking_chain = chain
            origin = chain[-1]
            result.last_error = f"Blocked by {origin} ({state.results[origin].status.value})"
            self._logger.warning(
                "task_blocked", task_id=dependent, blocking_chain=list(chain)
            )

    def _deadlock_diagnostics(self, state: _RunState) -> tuple[str, ...]:
        lines: list[str] = []
        for task_id, result in state.results.items():
            if result.status is not TaskStatus.PENDING:
                continue
            waiting: list[str] = []
            for dependency in self._graph.get_dependencies(task_id):
                status = state.results[dependency].status
                if status is not TaskStatus.COMPLETED:
                    waiting.append(f"{dependency} (status: {status.value})")
            for dependency in self._graph.missing_dependencies().get(task_id, ()):
                waiting.append(f"{dependency} (DOES NOT EXIST IN GRAPH!)")
            lines.append(f"{task_id} waiting for: {', '.join(waiting) or 'nothing'}")
        if lines:
            self._logger.warning("scheduler_deadlock", pending=lines)
        return tuple(lines)


__all__ = [
    "AttemptRunner",
    "RunReport",
    "Scheduler",
    "SchedulerLimits",
    "TaskResult",
    "TaskStatus",
]
