"""Phase pre-condition verification.

Pre-conditions run before any implementation attempt. The first failing check
blocks the task outright; blocked tasks are not retried.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

import structlog

from task_orchestrator.domain.models import ExecutionRecord, ExecutionStatus, PreCondition
from task_orchestrator.verification_plane.executor import (
    CommandExecutor,
    CommandSpec,
    LocalSubprocessExecutor,
)

DANGEROUS_PATTERNS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"rm\s+-rf", re.IGNORECASE),
    re.compile(r"sudo\s+", re.IGNORECASE),
    re.compile(r">\s*/dev/", re.IGNORECASE),
    re.compile(r"\|\s*sh\b", re.IGNORECASE),
    re.compile(r"\|\s*bash\b", re.IGNORECASE),
    re.compile(r"eval\s+", re.IGNORECASE),
    re.compile(r"curl.*\|\s*sh", re.IGNORECASE),
)

NO_COMMAND_EVIDENCE: Final[str] = "No command specified - auto-passed"
INFORMATIONAL_EVIDENCE: Final[str] = "Informational pre-condition - auto-passed"
REJECTED_EVIDENCE: Final[str] = "Command rejected: contains dangerous patterns"
DEFAULT_TIMEOUT_SECONDS: Final[float] = 5.0


def is_dangerous_command(command: str | None) -> bool:
    if not command:
        return False
    return any(pattern.search(command) for pattern in DANGEROUS_PATTERNS)


def _is_informational(command: str) -> bool:
    stripped = command.strip()
    return stripped == "true" or stripped.startswith('echo "no command')


@dataclass(frozen=True, slots=True)
class PreconditionReport:
    passed: bool
    blocked: bool = False
    failed_check: str | None = None
    checked: int = 0


async def verify_preconditions(
    execution: ExecutionRecord,
    cwd: str | Path,
    *,
    executor: CommandExecutor | None = None,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    logger: Any | None = None,
) -> PreconditionReport:
    """
    Evaluate every phase's pre-conditions in phase order, mutating each entry.

    Stops at the first failure, marks the execution blocked and reports the
    failing check. Commands never raise; spawn errors and timeouts fail the check.
    """
    log = logger if logger is not None else structlog.get_logger(__name__)
    runner = executor if executor is not None else LocalSubprocessExecutor()
    checked = 0

    for phase in execution.sorted_phases():
        for condition in phase.pre_conditions:
            checked += 1
            if not await _evaluate(condition, cwd, runner, timeout_seconds):
                execution.status = ExecutionStatus.BLOCKED
                log.warning(
                    "precondition_failed",
                    task_id=execution.task,
                    phase=phase.id,
                    check=condition.check,
                    evidence=condition.evidence,
                )
                return PreconditionReport(
                    passed=False, blocked=True, failed_check=condition.check, checked=checked
                )

    log.debug("preconditions_passed", task_id=execution.task, checked=checked)
    return PreconditionReport(passed=True, checked=checked)


async def _evaluate(
    condition: PreCondition,
    cwd: str | Path,
    executor: CommandExecutor,
    timeout_seconds: float,
) -> bool:
    command = condition.command
    if not command or not command.strip():
        condition.passed = True
        condition.evidence = NO_COMMAND_EVIDENCE
        return True
    if _is_informational(command):
        condition.passed = True
        condition.evidence = INFORMATIONAL_EVIDENCE
        return True
    if is_dangerous_command(command):
        condition.passed = False
        condition.evidence = REJECTED_EVIDENCE
        return False

    result = await executor.run(
        CommandSpec(shell=command, cwd=str(cwd), timeout_seconds=timeout_seconds)
    )
    if result.timed_out:
        condition.passed = False
        condition.evidence = f"Command timed out after {int(timeout_seconds * 1000)}ms"
        return False
    if not result.is_success():
        condition.passed = False
        condition.evidence = (result.error or result.stderr.strip() or result.stdout.strip()) or (
            f"Command exited with code {result.exit_code}"
        )
        return False

    stdout = result.stdout.strip()
    condition.evidence = stdout
    condition.passed = not condition.expected or condition.expected in stdout
    return condition.passed


__all__ = [
    "DANGEROUS_PATTERNS",
    "PreconditionReport",
    "is_dangerous_command",
    "verify_preconditions",
]
