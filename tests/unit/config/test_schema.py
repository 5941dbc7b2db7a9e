"""
task-orchestrator — unit tests for config schema validation

File: tests/unit/config/test_schema.py

Purpose
- Validate strict schema checks, profile overlays, and redaction.

What this test file should cover
- The shipped orchestrator.toml validates against the defaults.
- Unknown keys, type errors, and range violations report exact paths.
- Embedded secrets are rejected and redacted in dumps.
- Profile overlays merge deterministically and unknown profiles fail.
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

import pytest

from task_orchestrator.config.schema import (
    DEFAULT_CONFIG,
    ConfigValidationError,
    apply_profile_overlay,
    default_config,
    merge_config,
    migration_guidance,
    redact_config,
    validate_config,
)

REPO_ROOT = Path(__file__).resolve().parents[3]


def _load_toml(path: Path) -> dict[str, Any]:
    with path.open("rb") as handle:
        return tomllib.load(handle)


def _issues(config: dict[str, Any]) -> dict[str, str]:
    result = validate_config(config)
    assert not result.is_valid
    return {issue.path: issue.message for issue in result.issues}


def test_shipped_config_matches_defaults() -> None:
    result = validate_config(_load_toml(REPO_ROOT / "orchestrator.toml"))

    assert result.is_valid
    assert result.config == validate_config(default_config()).config


def test_default_config_returns_independent_copies() -> None:
    config = default_config()
    config["scheduler"]["max_concurrency"] = 1

    assert DEFAULT_CONFIG["scheduler"]["max_concurrency"] == 4


def test_unknown_field_reports_exact_path() -> None:
    config: dict[str, Any] = default_config()  # type: ignore[assignment]
    config["scheduler"]["max_workers"] = 3

    assert _issues(config) == {"scheduler.max_workers": "unknown field"}


@pytest.mark.parametrize(
    ("section", "key", "value", "message"),
    [
        ("scheduler", "max_concurrency", 0, "must be >= 1"),
        ("scheduler", "max_concurrency", 65, "must be <= 64"),
        ("scheduler", "max_attempts_per_task", "many", "expected integer, got str"),
        ("scheduler", "retry_delay_seconds", -0.5, "must be >= 0.0"),
        ("criteria", "timeout_seconds", 0, "must be > 0"),
        ("checkpoints", "enabled", "yes", "expected boolean, got str"),
        ("agent", "command", [], "must not be empty"),
        ("agent", "command", "claude -p", "expected list of strings, got str"),
        (
            "observability",
            "log_level",
            "TRACE",
            "invalid value 'TRACE'; expected one of: DEBUG, ERROR, INFO, WARNING",
        ),
    ],
)
def test_invalid_values_report_path_and_message(
    section: str, key: str, value: object, message: str
) -> None:
    config: dict[str, Any] = default_config()  # type: ignore[assignment]
    config[section][key] = value

    assert _issues(config)[f"{section}.{key}"] == message


def test_missing_section_field_is_required() -> None:
    config: dict[str, Any] = default_config()  # type: ignore[assignment]
    del config["paths"]["log_dir"]

    assert _issues(config) == {"paths.log_dir": "missing required field"}


def test_embedded_secret_is_rejected() -> None:
    config: dict[str, Any] = default_config()  # type: ignore[assignment]
    config["agent"]["api_key"] = "sk-THISISFAKE123456789012"

    issues = _issues(config)

    assert issues["agent.api_key"] == "embedded secret values are forbidden in orchestrator.toml"


def test_schema_version_mismatch_gives_migration_guidance() -> None:
    config: dict[str, Any] = default_config()  # type: ignore[assignment]
    config["meta"]["schema_version"] = 2

    assert _issues(config)["meta.schema_version"] == migration_guidance(2)
    assert "upgrade the task-orchestrator runtime" in migration_guidance(2)
    assert "older than supported" in migration_guidance(0)


def test_builtin_profiles_overlay_defaults() -> None:
    strict = apply_profile_overlay(default_config(), "strict")
    fast = apply_profile_overlay(default_config(), "fast")

    assert strict["scheduler"]["max_attempts_per_task"] == 5
    assert strict["execution"]["lenient_validation"] is False
    assert fast["scheduler"]["retry_delay_seconds"] == 0.0
    assert fast["criteria"]["timeout_seconds"] == 10.0
    assert fast["scheduler"]["max_concurrency"] == 4


def test_unknown_profile_fails() -> None:
    with pytest.raises(ConfigValidationError) as error:
        apply_profile_overlay(default_config(), "turbo")

    assert error.value.issues[0].message == "profile 'turbo' is not defined"


def test_invalid_profile_overlay_values_are_validated() -> None:
    config: dict[str, Any] = default_config()  # type: ignore[assignment]
    config["profiles"]["tiny"] = {"scheduler": {"max_concurrency": 0}}

    assert _issues(config) == {"profiles.tiny.scheduler.max_concurrency": "must be >= 1"}


def test_merge_config_is_deep_and_leaves_inputs_untouched() -> None:
    base = {"scheduler": {"max_concurrency": 4, "max_attempts_per_task": 20}}
    overlay = {"scheduler": {"max_concurrency": 2}}

    merged = merge_config(base, overlay)

    assert merged == {"scheduler": {"max_concurrency": 2, "max_attempts_per_task": 20}}
    assert base["scheduler"]["max_concurrency"] == 4


def test_redact_config_masks_secret_looking_keys() -> None:
    redacted = redact_config(
        {"agent": {"command": ["claude"], "accessToken": "abc", "nested": [{"password": "x"}]}}
    )

    assert redacted == {
        "agent": {
            "accessToken": "<redacted>",
            "command": ["claude"],
            "nested": [{"password": "<redacted>"}],
        }
    }
