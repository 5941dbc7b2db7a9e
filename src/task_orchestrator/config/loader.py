"""
task-orchestrator — runtime config loader.

File: src/task_orchestrator/config/loader.py

Purpose
- Build the effective orchestrator config from four layers, lowest first:
  built-in defaults, ``orchestrator.toml``, ``TASKORCH_*`` environment
  variables and CLI overrides. A profile overlay sits between the file and the
  environment.

Environment mapping
- Every scalar default is addressable as ``TASKORCH_<SECTION>_<KEY>``, e.g.
  ``TASKORCH_SCHEDULER_MAX_CONCURRENCY``. Values are coerced to the type of the
  default; list-of-string defaults (``agent.command``) are split shell-style.
- ``TASKORCH_PROFILE`` selects a profile when neither the caller nor the CLI did.

Paths
- ``paths.*`` entries resolve against the directory holding the config file
  (or ``search_dir`` when no file is given), with ``~`` and ``$VARS`` expanded.
"""

from __future__ import annotations

import json
import os
import shlex
import tomllib
from collections.abc import Callable, Iterator, Mapping
from pathlib import Path
from typing import Any, Final, Literal

from task_orchestrator.config.schema import (
    PATH_FIELDS,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    dump_redacted,
    merge_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "orchestrator.toml"
ENV_PREFIX: Final[str] = "TASKORCH_"

_ValueKind = Literal["str", "int", "float", "bool", "argv"]

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})


class ConfigLoadError(ValueError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


def _parse_bool(raw: str) -> bool:
    lowered = raw.lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise ValueError(raw)


# kind -> (parser, description used in the error message)
_COERCERS: Final[dict[_ValueKind, tuple[Callable[[str], object], str]]] = {
    "str": (str, "a string"),
    "int": (int, "an integer"),
    "float": (float, "a number"),
    "bool": (_parse_bool, "a boolean (true/false/1/0/yes/no/on/off)"),
    "argv": (shlex.split, "a shell-style argument list"),
}


def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
    search_dir: str | Path | None = None,
) -> dict[str, Any]:
    """Load effective config with deterministic precedence: CLI > env > file > defaults.

    Without an explicit ``config_path`` the optional default file is looked up in
    ``search_dir`` (the current directory when omitted), and relative path fields
    resolve against that directory.
    """

    if config_path is None:
        base = Path(search_dir) if search_dir is not None else Path.cwd()
        source = (base / DEFAULT_CONFIG_FILE).resolve()
    else:
        source = Path(config_path).expanduser().resolve()

    env_map: Mapping[str, str] = os.environ if environ is None else environ
    cli_map = dict(cli_overrides or {})

    layered = assert_valid_config(
        merge_config(default_config(), _read_toml(source, required=config_path is not None))
    )

    selected = _selected_profile(
        profile, cli_map.get("profile"), env_map.get(f"{ENV_PREFIX}PROFILE")
    )
    if selected is not None:
        layered = apply_profile_overlay(layered, selected)

    layered = merge_config(layered, _env_layer(layered, env_map))
    layered = merge_config(layered, _cli_layer(cli_map))
    return normalize_paths(assert_valid_config(layered), base_dir=source.parent)


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Resolve configured ``paths.*`` fields against ``base_dir``."""

    resolved = merge_config({}, config)
    for field_path in PATH_FIELDS:
        node: Any = resolved
        for part in field_path[:-1]:
            node = node.get(part) if isinstance(node, dict) else None
        if isinstance(node, dict) and isinstance(node.get(field_path[-1]), str):
            node[field_path[-1]] = _absolute_posix(node[field_path[-1]], base_dir)
    return resolved


def effective_config(config: Mapping[str, object]) -> dict[str, Any]:
    """Return a redacted effective config representation suitable for logging."""

    return dump_redacted(config)


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Return deterministic JSON dump of redacted effective config."""

    return json.dumps(
        effective_config(config), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _selected_profile(*candidates: object) -> str | None:
    """First non-``None`` candidate wins; a blank selection means no profile."""

    for candidate in candidates:
        if candidate is None:
            continue
        if not isinstance(candidate, str):
            raise ConfigLoadError("cli override 'profile' must be a string")
        return candidate.strip() or None
    return None


def _env_layer(config: Mapping[str, object], environ: Mapping[str, str]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for path, kind in sorted(_env_bindings(config)):
        env_name = ENV_PREFIX + "_".join(part.upper() for part in path)
        raw = environ.get(env_name)
        if raw is None:
            continue
        parse, description = _COERCERS[kind]
        try:
            value = parse(raw.strip())
        except ValueError as exc:
            raise ConfigLoadError(
                f"{env_name} -> {'.'.join(path)} must be {description}"
            ) from exc
        _assign(layer, path, value)
    return layer


def _env_bindings(
    payload: Mapping[str, object], prefix: tuple[str, ...] = ()
) -> Iterator[tuple[tuple[str, ...], _ValueKind]]:
    for key, value in payload.items():
        path = (*prefix, key)
        if path == ("profiles",):
            continue
        if isinstance(value, Mapping):
            yield from _env_bindings(value, path)
            continue
        kind = _value_kind(value)
        if kind is not None:
            yield path, kind


def _value_kind(value: object) -> _ValueKind | None:
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "float"
    if isinstance(value, str):
        return "str"
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return "argv"
    return None


def _cli_layer(cli_overrides: Mapping[str, object]) -> dict[str, Any]:
    """Expand dotted CLI override keys (``scheduler.max_concurrency``) into a nested layer."""

    layer: dict[str, Any] = {}
    for key in sorted(cli_overrides):
        value = cli_overrides[key]
        if key == "profile" or value is None:
            continue
        path = tuple(part for part in key.split(".") if part)
        if not path:
            raise ConfigLoadError(f"invalid CLI override key {key!r}")
        _assign(layer, path, value)
    return layer


def _assign(target: dict[str, Any], path: tuple[str, ...], value: object) -> None:
    *parents, leaf = path
    for part in parents:
        child = target.get(part)
        if not isinstance(child, dict):
            child = target[part] = {}
        target = child
    target[leaf] = value


def _absolute_posix(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "dump_effective_config",
    "effective_config",
    "load_config",
    "normalize_paths",
]
