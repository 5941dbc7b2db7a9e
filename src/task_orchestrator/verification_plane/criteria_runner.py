"""
task-orchestrator — success criteria parsing and execution

File: src/task_orchestrator/verification_plane/criteria_runner.py

Purpose
- Extract the success-criteria table from a blueprint and run each automated
  criterion as a shell command with a hard timeout.

Functional requirements
- Parsing is best-effort: ordered section and table strategies, first match wins.
- Commands that read like human instructions are flagged, not rejected.
- MANUAL criteria are recorded but never executed.
- A non-zero exit, a timeout or a spawn error always fails the criterion;
  otherwise pass/fail follows command-family output heuristics.

Non-functional requirements
- Evidence is truncated before it is persisted.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

import structlog

from task_orchestrator.domain.models import CriterionResult, TestType
from task_orchestrator.verification_plane.executor import (
    CommandExecutor,
    CommandSpec,
    LocalSubprocessExecutor,
)

DEFAULT_SOURCE: Final[str] = "BLUEPRINT.md §3.2"
EXPECTED_SUCCESS: Final[str] = "Command should succeed"
EXPECTED_MANUAL: Final[str] = "Manual verification required"

_SECTION_STRATEGIES: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"###\s*3\.2\s+Success Criteria.*?\n([\s\S]*?)(?=\n###|\n##|\Z)", re.I),
    re.compile(r"##\s*3\.2\s+Success Criteria.*?\n([\s\S]*?)(?=\n##|\Z)", re.I),
    re.compile(r"###\s*Success Criteria.*?\n([\s\S]*?)(?=\n###|\n##|\Z)", re.I),
    re.compile(r"##\s*Success Criteria.*?\n([\s\S]*?)(?=\n##|\Z)", re.I),
    re.compile(r"\*\*Success Criteria\*\*.*?\n([\s\S]*?)(?=\n##|\n\*\*|\Z)", re.I),
    re.compile(r"3\.2[.)]\s*Success Criteria.*?\n([\s\S]*?)(?=\n##|\n###|\Z)", re.I),
)

# (pattern, column count); 0 means "detect from the row".
_TABLE_STRATEGIES: Final[tuple[tuple[re.Pattern[str], int], ...]] = (
    (
        re.compile(
            r"\|\s*Criterion\s*\|[\s\S]*?\n\|[\s-]+\|[\s-]+\|[\s-]+\|[\s-]+\|[\s-]+\|\s*\n"
            r"((?:\|.*\|.*\|.*\|.*\|.*\|\s*\n?)+)",
            re.I,
        ),
        5,
    ),
    (
        re.compile(
            r"\|\s*Criterion\s*\|[\s\S]*?\n\|[\s-]+\|[\s-]+\|[\s-]+\|[\s-]+\|\s*\n"
            r"((?:\|.*\|.*\|.*\|.*\|\s*\n?)+)",
            re.I,
        ),
        4,
    ),
    (
        re.compile(
            r"\|\s*Criterion\s*\|[\s\S]*?\n\|[\s-]+\|[\s-]+\|[\s-]+\|\s*\n"
            r"((?:\|.*\|.*\|.*\|\s*\n?)+)",
            re.I,
        ),
        3,
    ),
    (
        re.compile(r"\|.*Criterion.*\|.*\n\|[\s-]+\|[\s-]+\|\s*\n((?:\|.*\|.*\|\s*\n?)+)", re.I),
        2,
    ),
    (
        re.compile(
            r"\|[^|\n]+\|[^|\n]*\|\s*\n\|[\s:-]+\|[\s:-]+\|\s*\n((?:\|[^|\n]+\|[^|\n]*\|\s*\n?)+)",
            re.I,
        ),
        0,
    ),
)

_NON_EXECUTABLE_PATTERNS: Final[tuple[tuple[re.Pattern[str], str], ...]] = (
    (
        re.compile(r"^(review|check|verify|ensure|confirm|validate)\s", re.I),
        "Starts with human action verb (review/check/verify)",
    ),
    (
        re.compile(r"^database query:", re.I),
        'Starts with "Database query:" instead of actual DB CLI command',
    ),
    (re.compile(r"^manual", re.I), "Marked as manual verification"),
    (
        re.compile(r"\(.*validation.*\)", re.I),
        "Contains parenthetical notes instead of being executable",
    ),
    (re.compile(r"^search for", re.I), 'Starts with "search for" instead of grep/find command'),
)
_KNOWN_TOOL_RE: Final[re.Pattern[str]] = re.compile(
    r"^(grep|find|test|npm|yarn|python|php|node|go|java|cargo)", re.I
)
_SEPARATOR_CELL_RE: Final[re.Pattern[str]] = re.compile(r"^[-:]+$")
_TEST_TYPES: Final[frozenset[str]] = frozenset(item.value for item in TestType)


@dataclass(frozen=True, slots=True)
class Criterion:
    """A parsed success criterion; ``command`` is ``None`` for MANUAL entries."""

    criterion: str
    command: str | None
    source: str = DEFAULT_SOURCE
    test_type: TestType = TestType.AUTO
    manual_check: str | None = None


@dataclass(frozen=True, slots=True)
class CriteriaSummary:
    passed: int
    failed: int
    manual: int

    @property
    def all_passed(self) -> bool:
        return self.failed == 0


def find_success_criteria_section(text: str) -> str | None:
    for strategy in _SECTION_STRATEGIES:
        match = strategy.search(text)
        if match is not None and match.group(1):
            return match.group(1)
    return None


def find_criteria_table(section: str) -> tuple[tuple[str, ...], int]:
    """Return ``(rows, column_count)`` for the first table shape that matches."""
    for strategy, columns in _TABLE_STRATEGIES:
        match = strategy.search(section)
        if match is not None and match.group(1):
            rows = tuple(row for row in match.group(1).strip().split("\n") if row.strip())
            return rows, columns
    return (), 0


def detect_non_executable_command(command: str) -> str | None:
    """Reason the command reads like prose rather than a shell command, if any."""
    for pattern, reason in _NON_EXECUTABLE_PATTERNS:
        if pattern.search(command):
            return reason
    return None


def extract_command_from_cell(cell: str | None) -> str | None:
    if cell is None:
        return None
    cleaned = cell.replace("`", "").strip()
    if not cleaned or cleaned == "-":
        return None
    return cleaned


def _split_row(row: str) -> list[str]:
    stripped = row.strip()
    if stripped.startswith("|"):
        stripped = stripped[1:]
    if stripped.endswith("|"):
        stripped = stripped[:-1]
    return [cell.strip() for cell in stripped.split("|")]


def _cell(cells: Sequence[str], index: int) -> str:
    return cells[index] if index < len(cells) else ""


def _from_testable(
    criterion: str, testable: str, command_cell: str, manual_cell: str, source: str
) -> Criterion | None:
    testable_type = (testable or "AUTO").strip().upper()
    is_auto = testable_type in {"AUTO", "BOTH"}
    is_manual = testable_type in {"MANUAL", "BOTH"}
    command = extract_command_from_cell(command_cell)
    manual = manual_cell.strip()
    manual_check = manual if manual and manual != "-" else None

    if is_auto and command is not None:
        return Criterion(
            criterion=criterion,
            command=command,
            source=source,
            test_type=TestType.BOTH if is_manual else TestType.AUTO,
            manual_check=manual_check if is_manual else None,
        )
    if is_manual and manual_check is not None:
        return Criterion(
            criterion=criterion,
            command=None,
            source=source,
            test_type=TestType.MANUAL,
            manual_check=manual_check,
        )
    return None


def _parse_row(cells: Sequence[str], columns: int) -> Criterion | None:
    criterion = cells[0]
    count = sum(1 for cell in cells if cell) if columns == 0 else len(cells)

    if columns == 5 and len(cells) >= 5:
        source = cells[1] or DEFAULT_SOURCE
        return _from_testable(criterion, cells[2], cells[3], cells[4], source)

    if columns == 4 and len(cells) >= 4:
        if cells[1].strip().upper() in _TEST_TYPES:
            return _from_testable(criterion, cells[1], cells[2], cells[3], DEFAULT_SOURCE)
        command = extract_command_from_cell(cells[2])
        if command is None:
            return None
        return Criterion(criterion=criterion, command=command, source=cells[1] or DEFAULT_SOURCE)

    if columns == 3 and len(cells) >= 3:
        second = extract_command_from_cell(cells[1])
        third = extract_command_from_cell(cells[2])
        command = third if third is not None and _KNOWN_TOOL_RE.match(third) else (second or third)
        if command is None:
            return None
        return Criterion(criterion=criterion, command=command)

    if count >= 2:
        command = extract_command_from_cell(_cell(cells, 1))
        if command is None:
            return None
        return Criterion(criterion=criterion, command=command)
    return None


def parse_success_criteria(text: str, *, logger: Any | None = None) -> tuple[Criterion, ...]:
    """Parse the success-criteria table of ``text``; empty when none is found."""
    log = logger if logger is not None else structlog.get_logger(__name__)
    section = find_success_criteria_section(text)
    if section is None:
        return ()
    rows, columns = find_criteria_table(section)

    criteria: list[Criterion] = []
    for row in rows:
        cells = _split_row(row)
        if not cells or not cells[0] or _SEPARATOR_CELL_RE.match(cells[0]):
            continue
        parsed = _parse_row(cells, columns)
        if parsed is None:
            continue
        if parsed.command is not None:
            reason = detect_non_executable_command(parsed.command)
            if reason is not None:
                log.warning(
                    "criterion_may_not_be_executable",
                    criterion=parsed.criterion,
                    command=parsed.command,
                    reason=reason,
                )
        criteria.append(parsed)
    return tuple(criteria)


def evaluate_expected(output: str, command: str) -> bool:
    """Command-family heuristics over lowercased output of a successful command."""
    text = output.lower().strip()
    if "grep" in command:
        return bool(text)
    if command.startswith(("test -f", "test -d")):
        return True
    if "-l" in command or "--check" in command or "lint" in command:
        if "no" in text and "error" in text:
            return True
        if "error:" in text or "fatal" in text:
            return False
        return True
    if "test" in command:
        return "failed" not in text and "error" not in text
    if "awk" in command and "PASS" in command:
        return "pass" in text
    return bool(text)


def summarize(results: Iterable[CriterionResult]) -> CriteriaSummary:
    passed = failed = manual = 0
    for result in results:
        if result.passed is True:
            passed += 1
        elif result.passed is False:
            failed += 1
        else:
            manual += 1
    return CriteriaSummary(passed=passed, failed=failed, manual=manual)


class CriteriaRunner:
    """Runs parsed criteria sequentially in a working directory."""

    def __init__(
        self,
        executor: CommandExecutor | None = None,
        *,
        timeout_seconds: float = 30.0,
        evidence_max_chars: int = 500,
        logger: Any | None = None,
    ) -> None:
        self._executor = executor if executor is not None else LocalSubprocessExecutor()
        self._timeout_seconds = timeout_seconds
        self._evidence_max_chars = evidence_max_chars
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    async def run_blueprint(self, blueprint: str, cwd: str | Path) -> list[CriterionResult]:
        criteria = parse_success_criteria(blueprint, logger=self._logger)
        if not criteria:
            self._logger.info("criteria_not_found")
            return []
        return await self.run(criteria, cwd)

    async def run(self, criteria: Iterable[Criterion], cwd: str | Path) -> list[CriterionResult]:
        results = [await self._run_one(criterion, Path(cwd)) for criterion in criteria]
        summary = summarize(results)
        self._logger.info(
            "criteria_evaluated",
            passed=summary.passed,
            failed=summary.failed,
            manual=summary.manual,
        )
        return results

    async def _run_one(self, criterion: Criterion, cwd: Path) -> CriterionResult:
        if criterion.test_type is TestType.MANUAL or criterion.command is None:
            return CriterionResult(
                criterion=criterion.criterion,
                command=None,
                expected=EXPECTED_MANUAL,
                passed=None,
                evidence=f"MANUAL: {criterion.manual_check or ''}",
                source=criterion.source,
                test_type=TestType.MANUAL,
                manual_check=criterion.manual_check,
            )

        result = await self._executor.run(
            CommandSpec(
                shell=criterion.command,
                cwd=str(cwd),
                timeout_seconds=self._timeout_seconds,
            )
        )
        if result.is_success():
            evidence = result.output
            passed = evaluate_expected(evidence, criterion.command)
        else:
            evidence = result.error if result.timed_out else (
                result.output.strip() or result.error or f"exit code {result.exit_code}"
            )
            passed = False

        evidence_text = (evidence or "").strip()[: self._evidence_max_chars]
        if passed:
            self._logger.info("criterion_passed", criterion=criterion.criterion)
        else:
            self._logger.warning(
                "criterion_failed",
                criterion=criterion.criterion,
                command=criterion.command,
                evidence=evidence_text[:200],
            )
        return CriterionResult(
            criterion=criterion.criterion,
            command=criterion.command,
            expected=EXPECTED_SUCCESS,
            passed=passed,
            evidence=evidence_text,
            source=criterion.source,
            test_type=criterion.test_type,
            manual_check=criterion.manual_check,
        )


__all__ = [
    "CriteriaRunner",
    "CriteriaSummary",
    "Criterion",
    "detect_non_executable_command",
    "evaluate_expected",
    "extract_command_from_cell",
    "find_criteria_table",
    "find_success_criteria_section",
    "parse_success_criteria",
    "summarize",
]
