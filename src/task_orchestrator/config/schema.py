"""
task-orchestrator — configuration schema and validation.

File: src/task_orchestrator/config/schema.py

Purpose
- Define authoritative configuration defaults and strict validation rules.

What should be included in this file
- Schema versioning and migration guidance.
- Validation rules for required fields, types, enums, and numeric constraints.
- Profile overlay validation and deterministic deep-merge helpers.
- Redaction rules for sensitive fields.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Support profile overlays (built-ins: strict, fast).

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from task_orchestrator.constants import CONFIG_SCHEMA_VERSION

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
BUILTIN_PROFILE_NAMES: Final[tuple[str, ...]] = ("strict", "fast")
MAX_CONCURRENCY_LIMIT: Final[int] = 64

_PROFILE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_-]*$")
_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {"secret", "token", "password", "passwd", "apikey", "private", "credential", "credentials"}
)
_SENSITIVE_KEY_PHRASES: Final[tuple[str, ...]] = (
    "api_key",
    "access_token",
    "client_secret",
    "private_key",
    "password",
    "secret",
)

# Config paths that should be normalized relative to config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("paths", "state_dir"),
    ("paths", "log_dir"),
)

_SECTIONS: Final[tuple[str, ...]] = (
    "meta",
    "scheduler",
    "criteria",
    "preconditions",
    "checkpoints",
    "agent",
    "execution",
    "paths",
    "observability",
)


class MetaConfig(TypedDict):
    schema_version: int


class SchedulerConfig(TypedDict):
    max_concurrency: int
    max_attempts_per_task: int
    retry_delay_seconds: float
    auto_resolve_conflicts: bool


class CriteriaConfig(TypedDict):
    timeout_seconds: float
    evidence_max_chars: int


class PreconditionsConfig(TypedDict):
    timeout_seconds: float


class CheckpointsConfig(TypedDict):
    enabled: bool
    history_limit: int


class AgentConfig(TypedDict):
    command: list[str]
    timeout_seconds: float


class ExecutionConfig(TypedDict):
    lenient_validation: bool


class PathsConfig(TypedDict):
    state_dir: str
    log_dir: str


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_format: Literal["json", "text"]
    redact_secrets: bool


class ProfileOverlay(TypedDict, total=False):
    scheduler: dict[str, object]
    criteria: dict[str, object]
    preconditions: dict[str, object]
    checkpoints: dict[str, object]
    agent: dict[str, object]
    execution: dict[str, object]
    paths: dict[str, object]
    observability: dict[str, object]


class OrchestratorConfig(TypedDict):
    meta: MetaConfig
    scheduler: SchedulerConfig
    criteria: CriteriaConfig
    preconditions: PreconditionsConfig
    checkpoints: CheckpointsConfig
    agent: AgentConfig
    execution: ExecutionConfig
    paths: PathsConfig
    observability: ObservabilityConfig
    profiles: dict[str, ProfileOverlay]


DEFAULT_CONFIG: Final[OrchestratorConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "scheduler": {
        "max_concurrency": 4,
        "max_attempts_per_task": 20,
        "retry_delay_seconds": 1.0,
        "auto_resolve_conflicts": True,
    },
    "criteria": {
        "timeout_seconds": 30.0,
        "evidence_max_chars": 500,
    },
    "preconditions": {
        "timeout_seconds": 5.0,
    },
    "checkpoints": {
        "enabled": True,
        "history_limit": 10,
    },
    "agent": {
        "command": ["claude", "-p"],
        "timeout_seconds": 1800.0,
    },
    "execution": {
        "lenient_validation": True,
    },
    "paths": {
        "state_dir": ".orchestrator/",
        "log_dir": "logs/",
    },
    "observability": {
        "log_level": "INFO",
        "log_format": "json",
        "redact_secrets": True,
    },
    "profiles": {
        "strict": {
            "scheduler": {"max_attempts_per_task": 5},
            "execution": {"lenient_validation": False},
        },
        "fast": {
            "scheduler": {"max_attempts_per_task": 3, "retry_delay_seconds": 0.0},
            "criteria": {"timeout_seconds": 10.0},
        },
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> OrchestratorConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    """Return deterministic migration guidance for schema version mismatch."""

    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade orchestrator.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the task-orchestrator runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged: dict[str, Any] = _plain_copy(base)
    for key in sorted(overlay):
        value = overlay[key]
        existing = merged.get(key)
        if isinstance(value, Mapping) and isinstance(existing, dict):
            merged[key] = merge_config(existing, value)
        else:
            merged[key] = _plain_copy(value)
    return merged


def apply_profile_overlay(config: Mapping[str, object], profile: str | None) -> dict[str, Any]:
    """Apply a named profile overlay and re-validate the resulting config."""

    materialized: dict[str, Any] = _plain_copy(config)
    if profile is None:
        return materialized

    selected = profile.strip()
    if not selected:
        return materialized

    profiles_raw = materialized.get("profiles")
    if not isinstance(profiles_raw, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", "profiles section is required"),)
        )

    overlay_raw = profiles_raw.get(selected)
    if overlay_raw is None:
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", f"profile {selected!r} is not defined"),)
        )
    if not isinstance(overlay_raw, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue(f"profiles.{selected}", "profile overlay must be an object"),)
        )

    merged = merge_config(materialized, overlay_raw)
    return assert_valid_config(merged, active_profile=selected)


def validate_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    normalized = _validate_root(root, "", issues, partial=False)

    selected_profile = active_profile.strip() if isinstance(active_profile, str) else None
    if selected_profile:
        profiles = normalized.get("profiles")
        if not isinstance(profiles, Mapping):
            issues.add("profiles", "profiles section is required")
        elif selected_profile not in profiles:
            issues.add("profiles", f"profile {selected_profile!r} is not defined")
        else:
            overlay = profiles[selected_profile]
            if isinstance(overlay, Mapping):
                effective = merge_config(normalized, overlay)
                _validate_root(effective, "", issues, partial=False)
            else:
                issues.add(f"profiles.{selected_profile}", "profile overlay must be an object")

    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())

    return ConfigValidationResult(config=normalized, issues=issues.items())


def assert_valid_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config, active_profile=active_profile)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return deterministic redacted representation for logs."""

    if not isinstance(config, Mapping):
        return {}
    redacted = _redact_value(config, parent_key=None)
    if isinstance(redacted, dict):
        return redacted
    return {}


def dump_redacted(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Alias for schema-level redacted dumps."""

    return redact_config(config)


# A field rule coerces one raw value, records issues and returns None on failure.
_FieldRule = Callable[[object, str, _IssueCollector], Any]


def _int_rule(minimum: int, maximum: int | None = None) -> _FieldRule:
    def rule(value: object, path: str, issues: _IssueCollector) -> int | None:
        parsed = _as_int(value, path, issues, minimum=minimum)
        if parsed is not None and maximum is not None and parsed > maximum:
            issues.add(path, f"must be <= {maximum}")
            return None
        return parsed

    return rule


def _float_rule(minimum: float) -> _FieldRule:
    def rule(value: object, path: str, issues: _IssueCollector) -> float | None:
        return _as_float(value, path, issues, minimum=minimum)

    return rule


def _choice_rule(*allowed_values: str) -> _FieldRule:
    def rule(value: object, path: str, issues: _IssueCollector) -> str | None:
        return _as_enum(value, path, issues, allowed_values=allowed_values)

    return rule


def _schema_version_rule(value: object, path: str, issues: _IssueCollector) -> int | None:
    parsed = _as_int(value, path, issues, minimum=1)
    if parsed is not None and parsed != ConfigSchemaVersion:
        issues.add(path, migration_guidance(parsed))
    return parsed


def _validate_root(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    sections = tuple(name for name in _SECTIONS if not (partial and name == "meta"))
    allowed = set(sections) if partial else {*sections, "profiles"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, set(sections), path, issues)

    out: dict[str, Any] = {}
    for name in sections:
        raw = payload.get(name)
        if raw is None:
            continue
        section_path = _join(path, name)
        section = _as_object(raw, section_path, issues)
        if section is not None:
            out[name] = _validate_section(name, section, section_path, issues, partial=partial)

    if not partial and payload.get("profiles") is not None:
        profiles = _as_object(payload["profiles"], _join(path, "profiles"), issues)
        if profiles is not None:
            out["profiles"] = _validate_profiles(profiles, _join(path, "profiles"), issues)
    return out


def _validate_section(
    name: str,
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    fields = _SECTION_FIELDS[name]
    _reject_unknown_keys(payload, set(fields), path, issues)
    if not partial:
        _require_keys(payload, set(fields), path, issues)

    out: dict[str, Any] = {}
    for key in sorted(fields):
        if key not in payload:
            continue
        parsed = fields[key](payload[key], _join(path, key), issues)
        if parsed is not None:
            out[key] = parsed
    return out


def _validate_profiles(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
) -> dict[str, Any]:
    """Profiles are partial overlays: any section except ``meta``, no required keys."""

    out: dict[str, Any] = {}
    for profile_name in sorted(payload):
        profile_path = _join(path, profile_name)
        if not _PROFILE_NAME_PATTERN.fullmatch(profile_name):
            issues.add(profile_path, "profile name must match ^[a-z][a-z0-9_-]*$")
            continue
        overlay = _as_object(payload[profile_name], profile_path, issues)
        if overlay is not None:
            out[profile_name] = _validate_root(overlay, profile_path, issues, partial=True)
    return out


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_str_list(value: object, path: str, issues: _IssueCollector) -> list[str] | None:
    if isinstance(value, str) or not isinstance(value, Sequence):
        issues.add(path, f"expected list of strings, got {type(value).__name__}")
        return None
    if not value:
        issues.add(path, "must not be empty")
        return None
    parsed: list[str] = []
    for index, item in enumerate(value):
        text = _as_str(item, f"{path}[{index}]", issues)
        if text is None:
            return None
        parsed.append(text)
    return parsed


def _as_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if "\x00" in parsed:
        issues.add(path, "must not contain NUL bytes")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if minimum is not None and parsed < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return parsed


def _as_positive_float(value: object, path: str, issues: _IssueCollector) -> float | None:
    parsed = _as_float(value, path, issues)
    if parsed is None:
        return None
    if parsed <= 0:
        issues.add(path, "must be > 0")
        return None
    return parsed


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key in allowed:
            continue
        key_path = _join(path, key)
        if _looks_sensitive_key(key):
            issues.add(key_path, "embedded secret values are forbidden in orchestrator.toml")
        else:
            issues.add(key_path, "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _looks_sensitive_key(key: str) -> bool:
    normalized = _normalize_key(key)
    if any(phrase in normalized for phrase in _SENSITIVE_KEY_PHRASES):
        return True
    tokens = tuple(token for token in normalized.split("_") if token)
    return any(token in _SENSITIVE_KEY_TOKENS for token in tokens)


def _normalize_key(key: str) -> str:
    with_boundaries = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip())
    return _NON_ALNUM.sub("_", with_boundaries.lower()).strip("_")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _plain_copy(value: object) -> Any:
    """Copy nested mappings/sequences into plain dicts/lists with sorted string keys."""

    if isinstance(value, Mapping):
        keys = sorted(key for key in value if isinstance(key, str))
        return {key: _plain_copy(value[key]) for key in keys}
    if isinstance(value, (list, tuple)):
        return [_plain_copy(item) for item in value]
    return copy.deepcopy(value)


def _redact_value(value: object, parent_key: str | None) -> object:
    if isinstance(value, Mapping):
        out: dict[str, object] = {}
        for key in sorted(value):
            if _looks_sensitive_key(key):
                out[key] = "<redacted>"
            else:
                out[key] = _redact_value(value[key], key)
        return out
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, parent_key) for item in value]
    return value


_SECTION_FIELDS: Final[dict[str, dict[str, _FieldRule]]] = {
    "meta": {"schema_version": _schema_version_rule},
    "scheduler": {
        "max_concurrency": _int_rule(1, MAX_CONCURRENCY_LIMIT),
        "max_attempts_per_task": _int_rule(1),
        "retry_delay_seconds": _float_rule(0.0),
        "auto_resolve_conflicts": _as_bool,
    },
    "criteria": {
        "timeout_seconds": _as_positive_float,
        "evidence_max_chars": _int_rule(1),
    },
    "preconditions": {"timeout_seconds": _as_positive_float},
    "checkpoints": {"enabled": _as_bool, "history_limit": _int_rule(1)},
    "agent": {"command": _as_str_list, "timeout_seconds": _as_positive_float},
    "execution": {"lenient_validation": _as_bool},
    "paths": {"state_dir": _as_path_text, "log_dir": _as_path_text},
    "observability": {
        "log_level": _choice_rule("DEBUG", "INFO", "WARNING", "ERROR"),
        "log_format": _choice_rule("json", "text"),
        "redact_secrets": _as_bool,
    },
}


__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "MAX_CONCURRENCY_LIMIT",
    "PATH_FIELDS",
    "OrchestratorConfig",
    "ProfileOverlay",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "dump_redacted",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
