"""
task-orchestrator — single-attempt task pipeline

File: src/task_orchestrator/control_plane/task_runner.py

Purpose
- Drive one attempt of one task through pre-conditions, the phase gate, the
  agent, artifact audit, checkpoints, criteria and completion validation.

Functional requirements
- Every recoverable failure is appended to the execution record's error history
  and reported as ``TaskOutcome.RETRY``; only failed pre-conditions block.
- The artifact audit runs before any check that trusts the record's claims.
- No exception escapes ``run_attempt``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import StrEnum

from task_orchestrator.control_plane.phase_gate import (
    enforce_phase_gate,
    first_incomplete_phase,
    gate_violation_message,
    phase_is_complete,
    update_phase_progress,
)
from task_orchestrator.control_plane.run_context import RunContext
from task_orchestrator.domain.models import (
    CompletionStatus,
    ErrorEntry,
    ExecutionRecord,
    ExecutionStatus,
    FailureKind,
    Phase,
    PhaseStatus,
    utc_now_iso,
)
from task_orchestrator.integration_plane.change_verifier import record_deviations, verify_changes
from task_orchestrator.integration_plane.checkpoint_store import CheckpointStore
from task_orchestrator.integration_plane.git_engine import GitEngine
from task_orchestrator.observability.logging import correlation_scope
from task_orchestrator.persistence.execution_store import (
    ExecutionRecordError,
    ExecutionStore,
    append_error,
)
from task_orchestrator.spec_ingestion.blueprint import (
    initial_execution_record,
    parse_implementation_strategy,
    read_blueprint,
    validate_implementation_strategy,
)
from task_orchestrator.synthesis_plane.agent import AgentInvoker, AgentRequest
from task_orchestrator.synthesis_plane.context_builder import build_task_context
from task_orchestrator.verification_plane.artifact_auditor import (
    check_review_checklist_blocked,
    mark_artifacts_for_recreation,
    validate_artifacts_exist,
    verify_artifacts,
)
from task_orchestrator.verification_plane.completion import validate_completion
from task_orchestrator.verification_plane.criteria_runner import CriteriaRunner
from task_orchestrator.verification_plane.executor import CommandExecutor
from task_orchestrator.verification_plane.preconditions import verify_preconditions


class TaskOutcome(StrEnum):
    COMPLETED = "completed"
    RETRY = "retry"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class AttemptResult:
    task_id: str
    outcome: TaskOutcome
    error: str | None = None
    failed_validation: str | None = None


class TaskRunner:
    """Runs one attempt at a time; the scheduler owns the retry budget."""

    def __init__(
        self,
        context: RunContext,
        agent: AgentInvoker,
        *,
        store: ExecutionStore | None = None,
        checkpoints: CheckpointStore | None = None,
        criteria: CriteriaRunner | None = None,
        executor: CommandExecutor | None = None,
        git: GitEngine | None = None,
    ) -> None:
        self._context = context
        self._agent = agent
        self._logger = context.logger
        self._executor = executor
        execution_cfg = context.section("execution")
        criteria_cfg = context.section("criteria")
        checkpoint_cfg = context.section("checkpoints")
        self._store = store or ExecutionStore(
            lenient=bool(execution_cfg.get("lenient_validation", True)), logger=self._logger
        )
        self._git = git or GitEngine(context.cwd)
        self._checkpoints_enabled = bool(checkpoint_cfg.get("enabled", True))
        self._checkpoints = checkpoints or CheckpointStore(
            self._git,
            history_limit=int(checkpoint_cfg.get("history_limit", 10)),
            logger=self._logger,
        )
        self._criteria = criteria or CriteriaRunner(
            executor,
            timeout_seconds=float(criteria_cfg.get("timeout_seconds", 30.0)),
            evidence_max_chars=int(criteria_cfg.get("evidence_max_chars", 500)),
            logger=self._logger,
        )
        self._precondition_timeout = float(
            context.section("preconditions").get("timeout_seconds", 5.0)
        )

    @property
    def checkpoints(self) -> CheckpointStore:
        return self._checkpoints

    async def run_attempt(self, task_id: str, attempt: int) -> AttemptResult:
        with correlation_scope(task_id=task_id, attempt=attempt):
            try:
                return await self._run_attempt(task_id, attempt)
            except Exception as exc:  # noqa: BLE001 - task boundary
                self._logger.exception("task_attempt_crashed", task_id=task_id, attempt=attempt)
                self._store.record_error(
                    self._context.execution_path(task_id),
                    exc,
                    failed_validation=FailureKind.INTERNAL.value,
                )
                return AttemptResult(
                    task_id,
                    TaskOutcome.RETRY,
                    error=f"{type(exc).__name__}: {exc}",
                    failed_validation=FailureKind.INTERNAL.value,
                )

    async def _run_attempt(self, task_id: str, attempt: int) -> AttemptResult:
        path = self._context.execution_path(task_id)
        blueprint = read_blueprint(self._context.blueprint_path(task_id))
        if path.exists():
            record = self._store.load(path)
        else:
            record = initial_execution_record(task_id, blueprint)
            self._logger.info(
                "execution_record_created", task_id=task_id, phases=len(record.phases)
            )
        record.attempts += 1
        self._store.save(path, record)

        preconditions = await verify_preconditions(
            record,
            self._context.cwd,
            executor=self._executor,
            timeout_seconds=self._precondition_timeout,
            logger=self._logger,
        )
        if preconditions.blocked:
            message = f"Pre-condition failed: {preconditions.failed_check}"
            record.error_history.append(
                ErrorEntry(
                    timestamp=utc_now_iso(),
                    message=message,
                    failed_validation=FailureKind.PRECONDITION.value,
                )
            )
            record.completion.status = CompletionStatus.BLOCKED
            record.completion.last_error = message
            record.completion.failed_validation = FailureKind.PRECONDITION.value
            self._store.save(path, record)
            return AttemptResult(
                task_id, TaskOutcome.BLOCKED, message, FailureKind.PRECONDITION.value
            )

        claimed = record.current_phase.id if record.current_phase is not None else None
        if not enforce_phase_gate(record, logger=self._logger) and claimed is not None:
            append_error(
                record,
                gate_violation_message(claimed, record),
                failed_validation=FailureKind.GATE.value,
            )

        record.status = ExecutionStatus.IN_PROGRESS
        self._store.save(path, record)

        if record.phases:
            # one agent call per phase and attempt
            budget = len(record.phases)
            for _ in range(budget):
                phase = _next_open_phase(record)
                if phase is None:
                    break
                if self._context.cancellation.is_cancelled:
                    return self._cancelled(task_id)
                outcome = await self._run_phase(record, phase, blueprint, attempt)
                if isinstance(outcome, AttemptResult):
                    return outcome
                record = outcome
            leftover = _next_open_phase(record)
            if leftover is not None:
                return self._retry(
                    record,
                    f"Phase {leftover.id} ({leftover.display_name}) still open after "
                    f"{budget} phase runs in one attempt",
                    FailureKind.COMPLETION,
                )
        else:
            if self._context.cancellation.is_cancelled:
                return self._cancelled(task_id)
            outcome = await self._invoke_and_audit(record, None, blueprint, attempt)
            if isinstance(outcome, AttemptResult):
                return outcome
            record = outcome

        return await self._finalize(record, blueprint)

    async def _run_phase(
        self, record: ExecutionRecord, phase: Phase, blueprint: str, attempt: int
    ) -> ExecutionRecord | AttemptResult:
        outcome = await self._invoke_and_audit(record, phase, blueprint, attempt)
        if isinstance(outcome, AttemptResult):
            return outcome
        record = outcome
        path = self._context.execution_path(record.task)

        reloaded_phase = record.phase(phase.id)
        if reloaded_phase is None:
            return self._retry(
                record,
                f"Phase {phase.id} ({phase.display_name}) disappeared from {path.name}",
                FailureKind.IMPLEMENTATION_STRATEGY,
            )
        done = phase_is_complete(reloaded_phase) and (
            bool(reloaded_phase.items) or reloaded_phase.status is PhaseStatus.COMPLETED
        )
        if not done:
            total = len(reloaded_phase.items)
            completed = sum(1 for item in reloaded_phase.items if item.completed)
            return self._retry(
                record,
                f"Phase {reloaded_phase.id} ({reloaded_phase.display_name}) not complete: "
                f"{completed}/{total} items completed",
                FailureKind.COMPLETION,
            )

        update_phase_progress(record, reloaded_phase.id, PhaseStatus.COMPLETED)
        following = first_incomplete_phase(record)
        if following is not None:
            update_phase_progress(record, following.id, following.status)
        self._store.save(path, record)
        self._logger.info("phase_completed", task_id=record.task, phase=reloaded_phase.id)
        await self._checkpoint(record, reloaded_phase)
        return record

    async def _invoke_and_audit(
        self, record: ExecutionRecord, phase: Phase | None, blueprint: str, attempt: int
    ) -> ExecutionRecord | AttemptResult:
        path = self._context.execution_path(record.task)
        task_context = build_task_context(record, blueprint, focus=phase, attempt=attempt)
        result = await self._agent.invoke(
            AgentRequest(
                task_id=record.task,
                prompt=task_context.prompt,
                cwd=self._context.cwd,
                attempt=attempt,
                phase_id=task_context.focus_phase,
            )
        )
        if not result.success:
            return self._retry(record, f"Agent failed: {result.error}", FailureKind.AGENT)

        try:
            record = self._store.load(path)
        except ExecutionRecordError as exc:
            self._logger.error("execution_record_unreadable", task_id=record.task, error=str(exc))
            return AttemptResult(
                record.task, TaskOutcome.RETRY, str(exc), FailureKind.INTERNAL.value
            )

        audit = validate_artifacts_exist(record, self._context.cwd, logger=self._logger)
        if not audit.valid:
            recovery = mark_artifacts_for_recreation(record, audit.missing, logger=self._logger)
            self._store.save(path, record)
            return AttemptResult(
                record.task,
                TaskOutcome.RETRY,
                f"{recovery.actions_taken} declared artifacts missing: "
                + ", ".join(recovery.marked_for_recreation),
                FailureKind.HALLUCINATION.value,
            )
        return record

    async def _checkpoint(self, record: ExecutionRecord, phase: Phase) -> None:
        if not self._checkpoints_enabled:
            return
        async with self._context.checkpoint_lock:
            result = await asyncio.to_thread(
                self._checkpoints.create_checkpoint, record.task, phase.id, phase.display_name
            )
        if not result.success:
            record.error_history.append(
                ErrorEntry(
                    timestamp=utc_now_iso(),
                    message=f"Checkpoint failed for phase {phase.id}: {result.message}",
                    phase=str(phase.id),
                    severity="WARNING",
                    failed_validation=FailureKind.CHECKPOINT.value,
                )
            )
            self._store.save(self._context.execution_path(record.task), record)

    async def _finalize(self, record: ExecutionRecord, blueprint: str) -> AttemptResult:
        task_dir = self._context.task_dir(record.task)

        checklist = check_review_checklist_blocked(task_dir)
        if checklist.blocked:
            return self._retry(
                record,
                f"Review checklist blocked: {checklist.reason}",
                FailureKind.REVIEW_CHECKLIST,
            )

        planned = parse_implementation_strategy(blueprint)
        strategy = validate_implementation_strategy(planned, record)
        for warning in strategy.warnings:
            self._logger.info(
                "implementation_strategy_warning",
                task_id=record.task,
                phase=warning.phase_id,
                reason=warning.reason,
            )
        if not strategy.valid:
            return self._retry(
                record,
                f"Implementation strategy incomplete: {strategy.message}",
                FailureKind.IMPLEMENTATION_STRATEGY,
            )

        record.success_criteria = await self._criteria.run_blueprint(blueprint, self._context.cwd)
        failed = [result for result in record.success_criteria if result.passed is False]
        if failed:
            return self._retry(
                record,
                f"{len(failed)} success criteria failed: "
                + "; ".join(result.criterion for result in failed),
                FailureKind.CRITERION,
            )

        record_deviations(record, verify_changes(record, self._git, logger=self._logger))
        verify_artifacts(record, self._context.cwd)

        check = validate_completion(record, logger=self._logger)
        if not check.passed:
            return self._retry(
                record, f"Completion validation failed: {check.reason}", FailureKind.COMPLETION
            )

        record.status = ExecutionStatus.COMPLETED
        record.completion.status = CompletionStatus.COMPLETED
        record.completion.last_error = None
        record.completion.failed_validation = None
        record.pending_fixes.clear()
        self._store.save(self._context.execution_path(record.task), record)
        self._logger.info("task_completed", task_id=record.task, attempts=record.attempts)
        return AttemptResult(record.task, TaskOutcome.COMPLETED)

    def _cancelled(self, task_id: str) -> AttemptResult:
        self._logger.info("task_attempt_cancelled", task_id=task_id)
        return AttemptResult(task_id, TaskOutcome.CANCELLED, self._context.cancellation.reason)

    def _retry(
        self, record: ExecutionRecord, message: str, kind: FailureKind
    ) -> AttemptResult:
        append_error(record, message, failed_validation=kind.value)
        self._store.save(self._context.execution_path(record.task), record)
        self._logger.warning(
            "task_attempt_failed", task_id=record.task, failed_validation=kind.value, error=message
        )
        return AttemptResult(record.task, TaskOutcome.RETRY, message, kind.value)


def _next_open_phase(record: ExecutionRecord) -> Phase | None:
    for phase in record.sorted_phases():
        if phase.status is not PhaseStatus.COMPLETED or not phase_is_complete(phase):
            return phase
    return None


__all__ = ["AttemptResult", "TaskOutcome", "TaskRunner"]
