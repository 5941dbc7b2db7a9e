"""Execution record domain models with typed parsing and camelCase serialization.

One ``ExecutionRecord`` is persisted per task as ``execution.json``. The file is
shared with the external agent, so every model keeps the keys it does not know
about in ``extras`` and writes them back unchanged.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, StrEnum
from typing import Any, NoReturn, TypeVar

from task_orchestrator.constants import (
    EXECUTION_RECORD_VERSION,
    EXECUTION_SCHEMA_ID,
    TASK_ID_PATTERN,
    TERMINAL_TASK_ID,
)

TEnum = TypeVar("TEnum", bound=Enum)

_TASK_ID_RE = re.compile(TASK_ID_PATTERN)
_TASK_NUMBER_RE = re.compile(r"^TASK(\d+)$")


class ExecutionStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"
    FAILED = "failed"


class PhaseStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class ArtifactType(StrEnum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


class Confidence(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class CompletionStatus(StrEnum):
    PENDING_VALIDATION = "pending_validation"
    PENDING_RECOVERY = "pending_recovery"
    COMPLETED = "completed"
    BLOCKED = "blocked"
    FAILED = "failed"


class TestType(StrEnum):
    __test__ = False

    AUTO = "AUTO"
    MANUAL = "MANUAL"
    BOTH = "BOTH"


class FailureKind(StrEnum):
    """Recoverable failure categories recorded as ``failedValidation``."""

    PRECONDITION = "precondition"
    HALLUCINATION = "hallucination"
    CRITERION = "criterion"
    CONFLICT = "conflict"
    CHECKPOINT = "checkpoint"
    GATE = "gate"
    IMPLEMENTATION_STRATEGY = "implementation_strategy"
    REVIEW_CHECKLIST = "review_checklist"
    COMPLETION = "completion"
    AGENT = "agent"
    INTERNAL = "internal"


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with a ``Z`` suffix."""

    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def is_valid_task_id(value: str) -> bool:
    return bool(_TASK_ID_RE.fullmatch(value))


def task_sort_key(task_id: str) -> tuple[int, int, str]:
    """Numbered tasks ascend numerically; the terminal sentinel sorts last."""

    if task_id == TERMINAL_TASK_ID:
        return (2, 0, task_id)
    match = _TASK_NUMBER_RE.fullmatch(task_id)
    if match is not None:
        return (0, int(match.group(1)), task_id)
    return (1, 0, task_id)


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _split_object(
    value: object, path: str, *, known: set[str], required: set[str] | None = None
) -> tuple[dict[str, object], dict[str, Any]]:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")

    parsed: dict[str, object] = {}
    extras: dict[str, Any] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            _fail(path, f"object keys must be strings, got {type(key).__name__}")
        if key in known:
            parsed[key] = item
        else:
            extras[key] = item

    missing = sorted(key for key in (required or set()) if key not in parsed)
    if missing:
        _fail(path, f"missing required fields: {missing}")
    return parsed, extras


def _as_str(value: object, path: str) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    return value


def _as_optional_str(value: object, path: str) -> str | None:
    if value is None:
        return None
    return _as_str(value, path)


def _as_bool(value: object, path: str) -> bool:
    if isinstance(value, bool):
        return value
    _fail(path, f"expected boolean, got {type(value).__name__}")


def _as_optional_bool(value: object, path: str) -> bool | None:
    if value is None:
        return None
    return _as_bool(value, path)


def _as_int(value: object, path: str, *, minimum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(path, f"expected integer, got {type(value).__name__}")
    if minimum is not None and value < minimum:
        _fail(path, f"must be >= {minimum}")
    return value


def _as_enum(enum_type: type[TEnum], value: object, path: str) -> TEnum:
    if isinstance(value, enum_type):
        return value
    if not isinstance(value, str):
        _fail(path, f"expected string enum value, got {type(value).__name__}")
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(sorted(str(item.value) for item in enum_type))
        _fail(path, f"invalid value {value!r}; expected one of: {allowed}")


def _as_list(value: object, path: str) -> list[object]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    _fail(path, f"expected array, got {type(value).__name__}")


def _as_str_list(value: object, path: str) -> list[str]:
    return [_as_str(item, f"{path}[{index}]") for index, item in enumerate(_as_list(value, path))]


def _with_extras(payload: dict[str, Any], extras: Mapping[str, Any]) -> dict[str, Any]:
    for key, value in extras.items():
        payload.setdefault(key, value)
    return payload


def _put(payload: dict[str, Any], key: str, value: object) -> None:
    if value is not None:
        payload[key] = value


@dataclass(slots=True)
class PreCondition:
    check: str
    command: str | None = None
    expected: str | None = None
    passed: bool | None = None
    evidence: str | None = None
    extras: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: object, path: str = "PreCondition") -> PreCondition:
        parsed, extras = _split_object(
            data, path, known={"check", "command", "expected", "passed", "evidence"}
        )
        return cls(
            check=_as_str(parsed.get("check", ""), f"{path}.check"),
            command=_as_optional_str(parsed.get("command"), f"{path}.command"),
            expected=_as_optional_str(parsed.get("expected"), f"{path}.expected"),
            passed=_as_optional_bool(parsed.get("passed"), f"{path}.passed"),
            evidence=_as_optional_str(parsed.get("evidence"), f"{path}.evidence"),
            extras=extras,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "check": self.check,
            "command": self.command,
            "expected": self.expected,
            "passed": self.passed,
            "evidence": self.evidence,
        }
        return _with_extras(payload, self.extras)


@dataclass(slots=True)
class PhaseItem:
    description: str
    completed: bool = False
    source: str | None = None
    evidence: str | None = None
    hallucination_detected: bool | None = None
    reset_reason: str | None = None
    extras: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: object, path: str = "PhaseItem") -> PhaseItem:
        parsed, extras = _split_object(
            data,
            path,
            known={
                "description",
                "completed",
                "source",
                "evidence",
                "hallucinationDetected",
                "resetReason",
            },
        )
        return cls(
            description=_as_str(parsed.get("description", ""), f"{path}.description"),
            completed=_as_bool(parsed.get("completed", False), f"{path}.completed"),
            source=_as_optional_str(parsed.get("source"), f"{path}.source"),
            evidence=_as_optional_str(parsed.get("evidence"), f"{path}.evidence"),
            hallucination_detected=_as_optional_bool(
                parsed.get("hallucinationDetected"), f"{path}.hallucinationDetected"
            ),
            reset_reason=_as_optional_str(parsed.get("resetReason"), f"{path}.resetReason"),
            extras=extras,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"description": self.description, "completed": self.completed}
        _put(payload, "source", self.source)
        _put(payload, "evidence", self.evidence)
        _put(payload, "hallucinationDetected", self.hallucination_detected)
        _put(payload, "resetReason", self.reset_reason)
        return _with_extras(payload, self.extras)


@dataclass(slots=True)
class Phase:
    id: int
    name: str
    status: PhaseStatus = PhaseStatus.PENDING
    pre_conditions: list[PreCondition] = field(default_factory=list)
    items: list[PhaseItem] = field(default_factory=list)
    hallucination_recovery: bool = False
    extras: dict[str, Any] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.name or f"Phase {self.id}"

    @classmethod
    def from_dict(cls, data: object, path: str = "Phase") -> Phase:
        parsed, extras = _split_object(
            data,
            path,
            known={"id", "name", "status", "preConditions", "items", "hallucinationRecovery"},
            required={"id"},
        )
        return cls(
            id=_as_int(parsed["id"], f"{path}.id", minimum=1),
            name=_as_str(parsed.get("name", ""), f"{path}.name"),
            status=_as_enum(
                PhaseStatus, parsed.get("status", PhaseStatus.PENDING.value), f"{path}.status"
            ),
            pre_conditions=[
                PreCondition.from_dict(item, f"{path}.preConditions[{index}]")
                for index, item in enumerate(
                    _as_list(parsed.get("preConditions"), f"{path}.preConditions")
                )
            ],
            items=[
                PhaseItem.from_dict(item, f"{path}.items[{index}]")
                for index, item in enumerate(_as_list(parsed.get("items"), f"{path}.items"))
            ],
            hallucination_recovery=_as_bool(
                parsed.get("hallucinationRecovery", False), f"{path}.hallucinationRecovery"
            ),
            extras=extras,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "preConditions": [item.to_dict() for item in self.pre_conditions],
            "items": [item.to_dict() for item in self.items],
        }
        if self.hallucination_recovery:
            payload["hallucinationRecovery"] = True
        return _with_extras(payload, self.extras)


def _numbered_phases(value: object, path: str) -> list[Phase]:
    """Parse phases whose ids are unique and cover ``1..N`` in any order."""

    phases = [
        Phase.from_dict(item, f"{path}[{index}]")
        for index, item in enumerate(_as_list(value, path))
    ]
    ids = sorted(phase.id for phase in phases)
    if ids != list(range(1, len(phases) + 1)):
        _fail(path, f"phase ids must be unique and numbered 1..{len(phases)}, got {ids}")
    return phases


@dataclass(slots=True)
class CriterionResult:
    criterion: str
    command: str | None = None
    expected: str | None = None
    passed: bool | None = None
    evidence: str | None = None
    source: str | None = None
    test_type: TestType | None = None
    manual_check: str | None = None
    extras: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: object, path: str = "CriterionResult") -> CriterionResult:
        parsed, extras = _split_object(
            data,
            path,
            known={
                "criterion",
                "command",
                "expected",
                "passed",
                "evidence",
                "source",
                "testType",
                "manualCheck",
            },
        )
        raw_test_type = parsed.get("testType")
        return cls(
            criterion=_as_str(parsed.get("criterion", ""), f"{path}.criterion"),
            command=_as_optional_str(parsed.get("command"), f"{path}.command"),
            expected=_as_optional_str(parsed.get("expected"), f"{path}.expected"),
            passed=_as_optional_bool(parsed.get("passed"), f"{path}.passed"),
            evidence=_as_optional_str(parsed.get("evidence"), f"{path}.evidence"),
            source=_as_optional_str(parsed.get("source"), f"{path}.source"),
            test_type=(
                None
                if raw_test_type is None
                else _as_enum(TestType, raw_test_type, f"{path}.testType")
            ),
            manual_check=_as_optional_str(parsed.get("manualCheck"), f"{path}.manualCheck"),
            extras=extras,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "criterion": self.criterion,
            "command": self.command,
            "expected": self.expected,
            "passed": self.passed,
            "evidence": self.evidence,
        }
        _put(payload, "source", self.source)
        _put(payload, "testType", None if self.test_type is None else self.test_type.value)
        _put(payload, "manualCheck", self.manual_check)
        return _with_extras(payload, self.extras)


@dataclass(slots=True)
class Artifact:
    type: ArtifactType
    path: str
    verified: bool = False
    verification: str | None = None
    needs_creation: bool | None = None
    hallucination_detected: bool | None = None
    extras: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: object, path: str = "Artifact") -> Artifact:
        parsed, extras = _split_object(
            data,
            path,
            known={
                "type",
                "path",
                "verified",
                "verification",
                "needsCreation",
                "hallucinationDetected",
            },
            required={"type", "path"},
        )
        return cls(
            type=_as_enum(ArtifactType, parsed["type"], f"{path}.type"),
            path=_as_str(parsed["path"], f"{path}.path"),
            verified=_as_bool(parsed.get("verified", False), f"{path}.verified"),
            verification=_as_optional_str(parsed.get("verification"), f"{path}.verification"),
            needs_creation=_as_optional_bool(parsed.get("needsCreation"), f"{path}.needsCreation"),
            hallucination_detected=_as_optional_bool(
                parsed.get("hallucinationDetected"), f"{path}.hallucinationDetected"
            ),
            extras=extras,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.type.value,
            "path": self.path,
            "verified": self.verified,
        }
        _put(payload, "verification", self.verification)
        _put(payload, "needsCreation", self.needs_creation)
        _put(payload, "hallucinationDetected", self.hallucination_detected)
        return _with_extras(payload, self.extras)


@dataclass(slots=True)
class Uncertainty:
    id: str
    topic: str
    assumption: str
    confidence: Confidence
    resolution: str | None = None
    resolved_confidence: Confidence | None = None
    extras: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: object, path: str = "Uncertainty") -> Uncertainty:
        parsed, extras = _split_object(
            data,
            path,
            known={"id", "topic", "assumption", "confidence", "resolution", "resolvedConfidence"},
            required={"id", "topic", "assumption", "confidence"},
        )
        resolved = parsed.get("resolvedConfidence")
        return cls(
            id=_as_str(parsed["id"], f"{path}.id"),
            topic=_as_str(parsed["topic"], f"{path}.topic"),
            assumption=_as_str(parsed["assumption"], f"{path}.assumption"),
            confidence=_as_enum(Confidence, parsed["confidence"], f"{path}.confidence"),
            resolution=_as_optional_str(parsed.get("resolution"), f"{path}.resolution"),
            resolved_confidence=(
                None
                if resolved is None
                else _as_enum(Confidence, resolved, f"{path}.resolvedConfidence")
            ),
            extras=extras,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "topic": self.topic,
            "assumption": self.assumption,
            "confidence": self.confidence.value,
            "resolution": self.resolution,
            "resolvedConfidence": (
                None if self.resolved_confidence is None else self.resolved_confidence.value
            ),
        }
        return _with_extras(payload, self.extras)


@dataclass(slots=True)
class Cleanup:
    debug_logs_removed: bool | None = None
    formatting_consistent: bool | None = None
    dead_code_removed: bool | None = None

    @classmethod
    def from_dict(cls, data: object, path: str = "Cleanup") -> Cleanup:
        parsed, _ = _split_object(
            data,
            path,
            known={"debugLogsRemoved", "formattingConsistent", "deadCodeRemoved"},
        )
        return cls(
            debug_logs_removed=_as_optional_bool(
                parsed.get("debugLogsRemoved"), f"{path}.debugLogsRemoved"
            ),
            formatting_consistent=_as_optional_bool(
                parsed.get("formattingConsistent"), f"{path}.formattingConsistent"
            ),
            dead_code_removed=_as_optional_bool(
                parsed.get("deadCodeRemoved"), f"{path}.deadCodeRemoved"
            ),
        )

    def flags(self) -> dict[str, bool | None]:
        return {
            "debugLogsRemoved": self.debug_logs_removed,
            "formattingConsistent": self.formatting_consistent,
            "deadCodeRemoved": self.dead_code_removed,
        }

    def to_dict(self) -> dict[str, Any]:
        return self.flags()


@dataclass(slots=True)
class Completion:
    status: CompletionStatus = CompletionStatus.PENDING_VALIDATION
    summary: list[str] = field(default_factory=list)
    deviations: list[str] = field(default_factory=list)
    for_future_tasks: list[str] = field(default_factory=list)
    code_review_passed: bool | None = None
    blocked_by: list[str] = field(default_factory=list)
    last_error: str | None = None
    failed_validation: str | None = None
    hallucination_detected: bool | None = None
    missing_artifacts: list[str] = field(default_factory=list)
    extras: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: object, path: str = "Completion") -> Completion:
        parsed, extras = _split_object(
            data,
            path,
            known={
                "status",
                "summary",
                "deviations",
                "forFutureTasks",
                "codeReviewPassed",
                "blockedBy",
                "lastError",
                "failedValidation",
                "hallucinationDetected",
                "missingArtifacts",
            },
        )
        raw_summary = parsed.get("summary")
        summary = [raw_summary] if isinstance(raw_summary, str) else raw_summary
        return cls(
            status=_as_enum(
                CompletionStatus,
                parsed.get("status", CompletionStatus.PENDING_VALIDATION.value),
                f"{path}.status",
            ),
            summary=_as_str_list(summary, f"{path}.summary"),
            deviations=_as_str_list(parsed.get("deviations"), f"{path}.deviations"),
            for_future_tasks=_as_str_list(parsed.get("forFutureTasks"), f"{path}.forFutureTasks"),
            code_review_passed=_as_optional_bool(
                parsed.get("codeReviewPassed"), f"{path}.codeReviewPassed"
            ),
            blocked_by=_as_str_list(parsed.get("blockedBy"), f"{path}.blockedBy"),
            last_error=_as_optional_str(parsed.get("lastError"), f"{path}.lastError"),
            failed_validation=_as_optional_str(
                parsed.get("failedValidation"), f"{path}.failedValidation"
            ),
            hallucination_detected=_as_optional_bool(
                parsed.get("hallucinationDetected"), f"{path}.hallucinationDetected"
            ),
            missing_artifacts=_as_str_list(
                parsed.get("missingArtifacts"), f"{path}.missingArtifacts"
            ),
            extras=extras,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "status": self.status.value,
            "summary": list(self.summary),
            "deviations": list(self.deviations),
            "forFutureTasks": list(self.for_future_tasks),
            "codeReviewPassed": self.code_review_passed,
            "blockedBy": list(self.blocked_by),
        }
        _put(payload, "lastError", self.last_error)
        _put(payload, "failedValidation", self.failed_validation)
        _put(payload, "hallucinationDetected", self.hallucination_detected)
        if self.missing_artifacts:
            payload["missingArtifacts"] = list(self.missing_artifacts)
        return _with_extras(payload, self.extras)


@dataclass(slots=True)
class ErrorEntry:
    timestamp: str
    message: str
    stack: str | None = None
    phase: str | None = None
    severity: str | None = None
    failed_validation: str | None = None
    extras: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: object, path: str = "ErrorEntry") -> ErrorEntry:
        parsed, extras = _split_object(
            data,
            path,
            known={"timestamp", "message", "stack", "phase", "severity", "failedValidation"},
            required={"timestamp", "message"},
        )
        raw_phase = parsed.get("phase")
        return cls(
            timestamp=_as_str(parsed["timestamp"], f"{path}.timestamp"),
            message=_as_str(parsed["message"], f"{path}.message"),
            stack=_as_optional_str(parsed.get("stack"), f"{path}.stack"),
            phase=None if raw_phase is None else str(raw_phase),
            severity=_as_optional_str(parsed.get("severity"), f"{path}.severity"),
            failed_validation=_as_optional_str(
                parsed.get("failedValidation"), f"{path}.failedValidation"
            ),
            extras=extras,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"timestamp": self.timestamp, "message": self.message}
        _put(payload, "stack", self.stack)
        _put(payload, "phase", self.phase)
        _put(payload, "severity", self.severity)
        _put(payload, "failedValidation", self.failed_validation)
        return _with_extras(payload, self.extras)


@dataclass(slots=True)
class CurrentPhase:
    id: int
    name: str
    last_action: str | None = None

    @classmethod
    def from_dict(cls, data: object, path: str = "CurrentPhase") -> CurrentPhase:
        parsed, _ = _split_object(data, path, known={"id", "name", "lastAction"}, required={"id"})
        return cls(
            id=_as_int(parsed["id"], f"{path}.id", minimum=0),
            name=_as_str(parsed.get("name", ""), f"{path}.name"),
            last_action=_as_optional_str(parsed.get("lastAction"), f"{path}.lastAction"),
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"id": self.id, "name": self.name}
        _put(payload, "lastAction", self.last_action)
        return payload


@dataclass(slots=True)
class ExecutionRecord:
    """Persisted per-task execution state (``execution.json``)."""

    task: str
    title: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    started: str = field(default_factory=utc_now_iso)
    attempts: int = 0
    current_phase: CurrentPhase | None = None
    phases: list[Phase] = field(default_factory=list)
    success_criteria: list[CriterionResult] = field(default_factory=list)
    artifacts: list[Artifact] = field(default_factory=list)
    uncertainties: list[Uncertainty] = field(default_factory=list)
    cleanup: Cleanup | None = None
    completion: Completion = field(default_factory=Completion)
    error_history: list[ErrorEntry] = field(default_factory=list)
    pending_fixes: list[str] = field(default_factory=list)
    schema: str = EXECUTION_SCHEMA_ID
    version: str = EXECUTION_RECORD_VERSION
    extras: dict[str, Any] = field(default_factory=dict)

    def phase(self, phase_id: int) -> Phase | None:
        for phase in self.phases:
            if phase.id == phase_id:
                return phase
        return None

    def sorted_phases(self) -> list[Phase]:
        return sorted(self.phases, key=lambda phase: phase.id)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ExecutionRecord:
        path = "ExecutionRecord"
        parsed, extras = _split_object(
            data,
            path,
            known={
                "$schema",
                "version",
                "task",
                "title",
                "status",
                "started",
                "attempts",
                "currentPhase",
                "phases",
                "successCriteria",
                "artifacts",
                "uncertainties",
                "beyondTheBasics",
                "completion",
                "errorHistory",
                "pendingFixes",
            },
            required={"task", "title", "status"},
        )

        cleanup: Cleanup | None = None
        beyond = parsed.get("beyondTheBasics")
        if isinstance(beyond, Mapping):
            beyond_extras = {key: value for key, value in beyond.items() if key != "cleanup"}
            if beyond_extras:
                extras["beyondTheBasics"] = beyond_extras
            if beyond.get("cleanup") is not None:
                cleanup = Cleanup.from_dict(beyond["cleanup"], f"{path}.beyondTheBasics.cleanup")

        raw_current = parsed.get("currentPhase")
        raw_completion = parsed.get("completion")
        return cls(
            schema=_as_str(parsed.get("$schema", EXECUTION_SCHEMA_ID), f"{path}.$schema"),
            version=str(parsed.get("version", EXECUTION_RECORD_VERSION)),
            task=_as_str(parsed["task"], f"{path}.task"),
            title=_as_str(parsed["title"], f"{path}.title"),
            status=_as_enum(ExecutionStatus, parsed["status"], f"{path}.status"),
            started=_as_str(parsed.get("started", utc_now_iso()), f"{path}.started"),
            attempts=_as_int(parsed.get("attempts", 0), f"{path}.attempts", minimum=0),
            current_phase=(
                None
                if raw_current is None
                else CurrentPhase.from_dict(raw_current, f"{path}.currentPhase")
            ),
            phases=_numbered_phases(parsed.get("phases"), f"{path}.phases"),
            success_criteria=[
                CriterionResult.from_dict(item, f"{path}.successCriteria[{index}]")
                for index, item in enumerate(
                    _as_list(parsed.get("successCriteria"), f"{path}.successCriteria")
                )
            ],
            artifacts=[
                Artifact.from_dict(item, f"{path}.artifacts[{index}]")
                for index, item in enumerate(_as_list(parsed.get("artifacts"), f"{path}.artifacts"))
            ],
            uncertainties=[
                Uncertainty.from_dict(item, f"{path}.uncertainties[{index}]")
                for index, item in enumerate(
                    _as_list(parsed.get("uncertainties"), f"{path}.uncertainties")
                )
            ],
            cleanup=cleanup,
            completion=(
                Completion()
                if raw_completion is None
                else Completion.from_dict(raw_completion, f"{path}.completion")
            ),
            error_history=[
                ErrorEntry.from_dict(item, f"{path}.errorHistory[{index}]")
                for index, item in enumerate(
                    _as_list(parsed.get("errorHistory"), f"{path}.errorHistory")
                )
            ],
            pending_fixes=_as_str_list(parsed.get("pendingFixes"), f"{path}.pendingFixes"),
            extras=extras,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "$schema": self.schema,
            "version": self.version,
            "task": self.task,
            "title": self.title,
            "status": self.status.value,
            "started": self.started,
            "attempts": self.attempts,
            "currentPhase": None if self.current_phase is None else self.current_phase.to_dict(),
            "phases": [phase.to_dict() for phase in self.phases],
            "successCriteria": [item.to_dict() for item in self.success_criteria],
            "artifacts": [item.to_dict() for item in self.artifacts],
            "uncertainties": [item.to_dict() for item in self.uncertainties],
            "completion": self.completion.to_dict(),
            "errorHistory": [item.to_dict() for item in self.error_history],
        }
        beyond = dict(self.extras.get("beyondTheBasics") or {})
        if self.cleanup is not None:
            beyond["cleanup"] = self.cleanup.to_dict()
        if beyond:
            payload["beyondTheBasics"] = beyond
        if self.pending_fixes:
            payload["pendingFixes"] = list(self.pending_fixes)
        extras = {key: value for key, value in self.extras.items() if key != "beyondTheBasics"}
        return _with_extras(payload, extras)


@dataclass(frozen=True, slots=True)
class Task:
    """Scheduling view of a task: identity plus declared constraints."""

    id: str
    dependencies: tuple[str, ...] = ()
    files: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not is_valid_task_id(self.id):
            _fail("Task.id", f"invalid task id {self.id!r}; expected TASK<n> or {TERMINAL_TASK_ID}")


__all__ = [
    "Artifact",
    "ArtifactType",
    "Cleanup",
    "Completion",
    "CompletionStatus",
    "Confidence",
    "CriterionResult",
    "CurrentPhase",
    "ErrorEntry",
    "ExecutionRecord",
    "ExecutionStatus",
    "FailureKind",
    "Phase",
    "PhaseItem",
    "PhaseStatus",
    "PreCondition",
    "Task",
    "TestType",
    "Uncertainty",
    "is_valid_task_id",
    "task_sort_key",
    "utc_now_iso",
]
