"""
task-orchestrator — blueprint ingestion

File: src/task_orchestrator/spec_ingestion/blueprint.py

Purpose
- Parse the per-task ``BLUEPRINT.md`` into scheduling declarations
  (``@dependencies`` / ``@files``) and the phase/step implementation outline.
- Build the initial pending execution record for a task.
- Validate that an execution record tracks the outlined phases.

Functional requirements
- Parsing is tolerant: ordered strategy tuples, first match wins.
- Documentation-like numbered lines, fenced code and checklists are never
  mistaken for implementation steps.

Non-functional requirements
- Pure text processing, no filesystem access except ``read_blueprint``.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from task_orchestrator.domain.models import (
    CurrentPhase,
    ExecutionRecord,
    ExecutionStatus,
    Phase,
    PhaseItem,
    PhaseStatus,
)

_FILES_TAG_RE: Final[re.Pattern[str]] = re.compile(r"@files\s*\[([^\]]*)\]", re.IGNORECASE)
_DEPENDENCIES_TAG_RE: Final[re.Pattern[str]] = re.compile(
    r"@dependencies\s*\[?([^\]\n]*)\]?", re.IGNORECASE
)
_HEADING_RE: Final[re.Pattern[str]] = re.compile(r"^\s{0,3}#{1,6}\s+(?P<text>\S.*?)\s*#*\s*$")

_SECTION_STRATEGIES: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"##\s*4\.\s*IMPLEMENTATION STRATEGY.*?\n(.*?)(?=\n##\s*\d+\.|\Z)", re.I | re.S),
    re.compile(
        r"##\s*4[.)]\s*Implementation\s+Strategy.*?\n(.*?)(?=\n##\s*\d+\.|\Z)", re.I | re.S
    ),
    re.compile(r"##\s*Implementation\s+Strategy\s*\n(.*?)(?=\n##\s*\d+\.|\Z)", re.I | re.S),
    re.compile(r"#\s*4\.\s*IMPLEMENTATION.*?\n(.*?)(?=\n#\s*\d+\.|\Z)", re.I | re.S),
)
_PHASE_STRATEGIES: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"###\s*Phase\s*(\d+):\s*(.+?)$", re.I | re.M),
    re.compile(r"##\s*Phase\s*(\d+):\s*(.+?)$", re.I | re.M),
    re.compile(r"###\s*Phase\s*(\d+)\s*[:\-–]\s*(.+?)$", re.I | re.M),
    re.compile(r"\*\*Phase\s*(\d+):\s*(.+?)\*\*", re.I | re.M),
    re.compile(r"###\s*(\d+)\.\s*(.+?)$", re.I | re.M),
    re.compile(r"##\s*(\d+)\.\s*(.+?)$", re.I | re.M),
)

_SKIPPED_LINE_PREFIXES: Final[tuple[str, ...]] = (
    "**Gate:**",
    "**Note:**",
    "**Warning:**",
    "**CRITICAL:**",
    "**Important:**",
)
_CHECKBOX_RE: Final[re.Pattern[str]] = re.compile(r"^-\s*\[[ x]\]", re.IGNORECASE)
_SUBSECTION_RE: Final[re.Pattern[str]] = re.compile(r"^\*\*Step\s+[\d.]+:\s*(.+?)\*\*$", re.I)
_NUMBERED_RE: Final[re.Pattern[str]] = re.compile(r"^(\d+)\.\s+(.+)$")
_LINK_RE: Final[re.Pattern[str]] = re.compile(r"\[([^\]]+)\]\([^)]+\)")
_DOCUMENTATION_RES: Final[tuple[re.Pattern[str], ...]] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"^if\s+",
        r"^when\s+",
        r"^note:",
        r"^warning:",
        r"^example:",
        r"^e\.g\.",
        r"^for example",
        r"^this\s+(is|will|should)",
        r"^you\s+(can|should|must|will)",
        r"^see\s+",
        r"^refer\s+to",
        r"^\(optional\)",
    )
)
MIN_STEP_LENGTH: Final[int] = 15
INCOMPLETE_RATIO_LIMIT: Final[float] = 0.5


class BlueprintError(ValueError):
    """Raised when a blueprint cannot be read."""


@dataclass(frozen=True, slots=True)
class TaskTags:
    dependencies: tuple[str, ...]
    files: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class PlannedStep:
    description: str
    source: str


@dataclass(frozen=True, slots=True)
class PlannedPhase:
    id: int
    name: str
    steps: tuple[PlannedStep, ...]


@dataclass(frozen=True, slots=True)
class StrategyIssue:
    phase_id: int
    phase_name: str
    reason: str


@dataclass(frozen=True, slots=True)
class StrategyValidation:
    valid: bool
    missing: tuple[StrategyIssue, ...]
    warnings: tuple[StrategyIssue, ...]

    @property
    def message(self) -> str:
        return "; ".join(f"Phase {issue.phase_id}: {issue.reason}" for issue in self.missing)


def read_blueprint(path: str | Path) -> str:
    target = Path(path)
    try:
        return target.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise BlueprintError(f"BLUEPRINT.md not found at {target}") from exc
    except OSError as exc:
        raise BlueprintError(f"Cannot read BLUEPRINT.md at {target}: {exc}") from exc


def parse_files_tag(text: str) -> tuple[str, ...]:
    """Return the ``@files [a, b]`` entries, trimmed; ``()`` when absent or empty."""
    match = _FILES_TAG_RE.search(text)
    if match is None:
        return ()
    return _dedupe(item.strip() for item in match.group(1).split(","))


def parse_dependencies_tag(text: str) -> tuple[str, ...]:
    """Return ``@dependencies`` entries; brackets are optional and ``none`` means empty."""
    match = _DEPENDENCIES_TAG_RE.search(text)
    if match is None:
        return ()
    raw = match.group(1).strip()
    if not raw or raw.lower() == "none":
        return ()
    return _dedupe(
        token for token in re.split(r"[,\s]+", raw) if token.lower() != "none"
    )


def parse_task_tags(text: str) -> TaskTags:
    return TaskTags(dependencies=parse_dependencies_tag(text), files=parse_files_tag(text))


def blueprint_title(text: str, default: str) -> str:
    """First Markdown heading with any ``BLUEPRINT:`` prefix removed."""
    for line in text.splitlines():
        match = _HEADING_RE.match(line)
        if match is None:
            continue
        title = re.sub(r"^blueprint\s*[:\-–]\s*", "", match.group("text"), flags=re.IGNORECASE)
        if title.strip():
            return title.strip()
    return default


def parse_implementation_strategy(text: str) -> tuple[PlannedPhase, ...]:
    """Extract phases and their numbered steps from the implementation strategy section."""
    section: str | None = None
    for strategy in _SECTION_STRATEGIES:
        match = strategy.search(text)
        if match is not None:
            section = match.group(1)
            break
    if section is None:
        return ()

    matches: list[re.Match[str]] = []
    for strategy in _PHASE_STRATEGIES:
        matches = list(strategy.finditer(section))
        if matches:
            break

    phases: list[PlannedPhase] = []
    for index, match in enumerate(matches):
        phase_id = int(match.group(1))
        name = match.group(2).strip()
        end = matches[index + 1].start() if index + 1 < len(matches) else len(section)
        steps = _extract_steps(section[match.end() : end], phase_id)
        phases.append(PlannedPhase(id=phase_id, name=name, steps=steps))
    return tuple(phases)


def clean_description(raw: str) -> str:
    cleaned = raw.replace("`", "").replace("**", "").replace("*", "")
    return _LINK_RE.sub(r"\1", cleaned).strip()


def is_documentation_item(description: str) -> bool:
    return any(pattern.search(description) for pattern in _DOCUMENTATION_RES)


def _extract_steps(content: str, phase_id: int) -> tuple[PlannedStep, ...]:
    steps: list[PlannedStep] = []
    in_code_block = False
    subsection: str | None = None

    for line in content.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.startswith("```"):
            in_code_block = not in_code_block
            continue
        if in_code_block:
            continue
        if stripped.startswith(_SKIPPED_LINE_PREFIXES):
            continue
        lowered = stripped.lower()
        if lowered.startswith("example:") or lowered.startswith("**example"):
            continue
        if _CHECKBOX_RE.match(stripped):
            continue

        subsection_match = _SUBSECTION_RE.match(stripped)
        if subsection_match is not None:
            subsection = subsection_match.group(1).strip()
            continue

        numbered = _NUMBERED_RE.match(stripped)
        if numbered is None:
            continue
        description = clean_description(numbered.group(2))
        if len(description) <= MIN_STEP_LENGTH or is_documentation_item(description):
            continue
        source = f"BLUEPRINT.md §4 Phase {phase_id}"
        if subsection:
            source = f"{source} ({subsection})"
        steps.append(PlannedStep(description=description, source=source))

    return tuple(steps)


def validate_implementation_strategy(
    planned: Sequence[PlannedPhase], execution: ExecutionRecord
) -> StrategyValidation:
    """
    Check that the record tracks every outlined phase.

    Completed phases are trusted. An open phase fails when it tracks no items
    while the outline has steps, or when more than half its items are open;
    a smaller open share is only a warning. Items may be merged or split freely.
    """
    missing: list[StrategyIssue] = []
    warnings: list[StrategyIssue] = []

    for expected in planned:
        phase = execution.phase(expected.id)
        if phase is None:
            missing.append(
                StrategyIssue(expected.id, expected.name, "Phase missing from execution.json")
            )
            continue
        if phase.status is PhaseStatus.COMPLETED:
            continue
        if not phase.items:
            if expected.steps:
                missing.append(
                    StrategyIssue(
                        expected.id,
                        expected.name,
                        f'Phase has no items tracked and status is "{phase.status.value}"',
                    )
                )
            continue

        incomplete = sum(1 for item in phase.items if not item.completed)
        if not incomplete:
            continue
        total = len(phase.items)
        if incomplete / total > INCOMPLETE_RATIO_LIMIT:
            missing.append(
                StrategyIssue(
                    expected.id, expected.name, f"{incomplete}/{total} items not completed"
                )
            )
        else:
            warnings.append(
                StrategyIssue(expected.id, expected.name, f"{incomplete}/{total} items pending")
            )

    return StrategyValidation(valid=not missing, missing=tuple(missing), warnings=tuple(warnings))


def initial_execution_record(task_id: str, blueprint: str) -> ExecutionRecord:
    """Pending record with phases and items taken from the implementation strategy."""
    planned = {phase.id: phase for phase in reversed(parse_implementation_strategy(blueprint))}
    if sorted(planned) != list(range(1, len(planned) + 1)):
        raise BlueprintError(
            f"Implementation strategy phases must be numbered 1..{len(planned)}, "
            f"got {sorted(planned)}"
        )
    phases = [
        Phase(
            id=phase.id,
            name=phase.name,
            items=[
                PhaseItem(description=step.description, source=step.source)
                for step in phase.steps
            ],
        )
        for phase in sorted(planned.values(), key=lambda item: item.id)
    ]
    record = ExecutionRecord(
        task=task_id,
        title=blueprint_title(blueprint, default=task_id),
        status=ExecutionStatus.PENDING,
        phases=phases,
    )
    if phases:
        record.current_phase = CurrentPhase(id=phases[0].id, name=phases[0].name)
    return record


def _dedupe(values: Iterable[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for value in values:
        if value:
            seen.setdefault(value, None)
    return tuple(seen)


__all__ = [
    "BlueprintError",
    "PlannedPhase",
    "PlannedStep",
    "StrategyIssue",
    "StrategyValidation",
    "TaskTags",
    "blueprint_title",
    "clean_description",
    "initial_execution_record",
    "is_documentation_item",
    "parse_dependencies_tag",
    "parse_files_tag",
    "parse_implementation_strategy",
    "parse_task_tags",
    "read_blueprint",
    "validate_implementation_strategy",
]
