"""JSON Schema (Draft 2020-12) for persisted ``execution.json`` records.

Validation collects every error as ``"<dotted.path>: <message>"`` so callers
can separate critical structural failures from lenient warnings.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Final

from jsonschema import Draft202012Validator

from task_orchestrator.constants import TASK_ID_PATTERN

_NULLABLE_STRING: Final[dict[str, Any]] = {"type": ["string", "null"]}
_NULLABLE_BOOL: Final[dict[str, Any]] = {"type": ["boolean", "null"]}
_STRING_LIST: Final[dict[str, Any]] = {"type": "array", "items": {"type": "string"}}
_CONFIDENCE: Final[dict[str, Any]] = {"enum": ["LOW", "MEDIUM", "HIGH"]}

EXECUTION_SCHEMA: Final[dict[str, Any]] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "$id": "execution-schema-v1",
    "title": "Task execution record",
    "type": "object",
    "required": ["$schema", "version", "task", "title", "status", "started", "attempts"],
    "properties": {
        "$schema": {"type": "string"},
        "version": {"type": "string"},
        "task": {"type": "string", "pattern": TASK_ID_PATTERN},
        "title": {"type": "string", "minLength": 1},
        "status": {"enum": ["pending", "in_progress", "completed", "blocked", "failed"]},
        "started": {"type": "string", "format": "date-time"},
        "attempts": {"type": "integer", "minimum": 0},
        "currentPhase": {
            "type": ["object", "null"],
            "required": ["id"],
            "properties": {
                "id": {"type": "integer", "minimum": 0},
                "name": {"type": "string"},
                "lastAction": _NULLABLE_STRING,
            },
        },
        "phases": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id", "name", "status"],
                "properties": {
                    "id": {"type": "integer", "minimum": 1},
                    "name": {"type": "string"},
                    "status": {"enum": ["pending", "in_progress", "completed"]},
                    "preConditions": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "required": ["check"],
                            "properties": {
                                "check": {"type": "string"},
                                "command": _NULLABLE_STRING,
                                "expected": _NULLABLE_STRING,
                                "passed": _NULLABLE_BOOL,
                                "evidence": _NULLABLE_STRING,
                            },
                        },
                    },
                    "items": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "required": ["description", "completed"],
                            "properties": {
                                "description": {"type": "string"},
                                "completed": {"type": "boolean"},
                                "source": _NULLABLE_STRING,
                                "evidence": _NULLABLE_STRING,
                            },
                        },
                    },
                    "hallucinationRecovery": {"type": "boolean"},
                },
            },
        },
        "successCriteria": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["criterion"],
                "properties": {
                    "criterion": {"type": "string"},
                    "command": _NULLABLE_STRING,
                    "expected": _NULLABLE_STRING,
                    "passed": _NULLABLE_BOOL,
                    "evidence": _NULLABLE_STRING,
                    "testType": {"enum": ["AUTO", "MANUAL", "BOTH"]},
                },
            },
        },
        "artifacts": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["type", "path"],
                "properties": {
                    "type": {"enum": ["created", "modified", "deleted"]},
                    "path": {"type": "string", "minLength": 1},
                    "verified": {"type": "boolean"},
                    "verification": _NULLABLE_STRING,
                },
            },
        },
        "uncertainties": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id", "topic", "assumption", "confidence"],
                "properties": {
                    "id": {"type": "string"},
                    "topic": {"type": "string"},
                    "assumption": {"type": "string"},
                    "confidence": _CONFIDENCE,
                    "resolution": _NULLABLE_STRING,
                    "resolvedConfidence": {"anyOf": [_CONFIDENCE, {"type": "null"}]},
                },
            },
        },
        "beyondTheBasics": {
            "type": "object",
            "properties": {
                "cleanup": {
                    "type": "object",
                    "required": ["debugLogsRemoved", "formattingConsistent", "deadCodeRemoved"],
                    "properties": {
                        "debugLogsRemoved": _NULLABLE_BOOL,
                        "formattingConsistent": _NULLABLE_BOOL,
                        "deadCodeRemoved": _NULLABLE_BOOL,
                    },
                },
            },
        },
        "completion": {
            "type": "object",
            "properties": {
                "status": {
                    "enum": [
                        "pending_validation",
                        "pending_recovery",
                        "completed",
                        "blocked",
                        "failed",
                    ]
                },
                "summary": {"anyOf": [_STRING_LIST, {"type": "string"}]},
                "deviations": _STRING_LIST,
                "forFutureTasks": _STRING_LIST,
                "codeReviewPassed": _NULLABLE_BOOL,
                "blockedBy": _STRING_LIST,
            },
        },
        "errorHistory": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["timestamp", "message"],
                "properties": {
                    "timestamp": {"type": "string"},
                    "message": {"type": "string"},
                    "stack": _NULLABLE_STRING,
                },
            },
        },
        "pendingFixes": _STRING_LIST,
    },
}

_VALIDATOR: Final[Draft202012Validator] = Draft202012Validator(EXECUTION_SCHEMA)


@dataclass(frozen=True, slots=True)
class SchemaValidationResult:
    valid: bool
    errors: tuple[str, ...]


def validate_execution_payload(payload: Mapping[str, Any]) -> SchemaValidationResult:
    """Validate a raw execution record against ``EXECUTION_SCHEMA``."""

    errors: list[str] = []
    for error in sorted(
        _VALIDATOR.iter_errors(payload), key=lambda item: _format_path(item.absolute_path)
    ):
        errors.append(f"{_format_path(error.absolute_path)}: {_format_message(error)}")
    return SchemaValidationResult(valid=not errors, errors=tuple(errors))


def _format_path(parts: Any) -> str:
    return ".".join(str(part) for part in parts) or "(root)"


def _format_message(error: Any) -> str:
    if error.validator == "required":
        missing = error.message.split("'")[1] if "'" in error.message else error.message
        return f"Missing required field '{missing}'"
    if error.validator == "enum":
        allowed = ", ".join(str(item) for item in error.validator_value)
        return f"Invalid value {error.instance!r}; must be one of: {allowed}"
    if error.validator == "type":
        expected = error.validator_value
        rendered = " or ".join(expected) if isinstance(expected, list) else str(expected)
        return f"Invalid type; expected {rendered}"
    if error.validator == "pattern":
        return f"Invalid format {error.instance!r}; must match {error.validator_value}"
    return str(error.message)


__all__ = [
    "EXECUTION_SCHEMA",
    "SchemaValidationResult",
    "validate_execution_payload",
]
