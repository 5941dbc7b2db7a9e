"""Task discovery from the state directory or from a YAML manifest."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

import structlog
import yaml

from task_orchestrator.constants import BLUEPRINT_FILE
from task_orchestrator.domain.models import Task, is_valid_task_id, task_sort_key
from task_orchestrator.spec_ingestion.blueprint import (
    BlueprintError,
    parse_task_tags,
    read_blueprint,
)


def discover_tasks(state_dir: str | Path, *, logger: Any | None = None) -> tuple[Task, ...]:
    """
    Build one ``Task`` per ``<state_dir>/<TASK>/BLUEPRINT.md``.

    Folders that are not task IDs are ignored. Task folders without a
    blueprint are skipped with a warning. A task never depends on itself.
    """
    log = logger if logger is not None else structlog.get_logger(__name__)
    root = Path(state_dir)
    if not root.is_dir():
        return ()

    tasks: list[Task] = []
    for folder in sorted(
        (entry for entry in root.iterdir() if entry.is_dir() and is_valid_task_id(entry.name)),
        key=lambda entry: task_sort_key(entry.name),
    ):
        blueprint_path = folder / BLUEPRINT_FILE
        if not blueprint_path.is_file():
            log.warning("task_blueprint_missing", task_id=folder.name, path=str(blueprint_path))
            continue
        try:
            tags = parse_task_tags(read_blueprint(blueprint_path))
        except BlueprintError as exc:
            log.warning("task_blueprint_unreadable", task_id=folder.name, error=str(exc))
            continue
        tasks.append(
            Task(
                id=folder.name,
                dependencies=tuple(dep for dep in tags.dependencies if dep != folder.name),
                files=tags.files,
            )
        )
    return tuple(tasks)


def load_task_manifest(path: str | Path) -> tuple[Task, ...]:
    """
    Read ``tasks: {TASK1: {dependencies: [...], files: [...]}}`` from YAML.

    Raises ``BlueprintError`` with the offending entry path on malformed input.
    """
    manifest_path = Path(path)
    try:
        with manifest_path.open("r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle)
    except OSError as exc:
        raise BlueprintError(
            f"Failed to read task manifest {manifest_path.as_posix()}: {exc}"
        ) from exc
    except yaml.YAMLError as exc:
        raise BlueprintError(f"Invalid YAML in {manifest_path.as_posix()}: {exc}") from exc

    if not isinstance(payload, Mapping) or not isinstance(payload.get("tasks"), Mapping):
        raise BlueprintError(f"{manifest_path.as_posix()} must contain a 'tasks' mapping.")

    tasks: list[Task] = []
    for task_id, entry in payload["tasks"].items():
        entry_path = f"{manifest_path.as_posix()}:tasks.{task_id}"
        if entry is None:
            entry = {}
        if not isinstance(entry, Mapping):
            raise BlueprintError(f"{entry_path} must be an object.")
        try:
            tasks.append(
                Task(
                    id=str(task_id),
                    dependencies=tuple(
                        dep
                        for dep in _as_names(
                            entry.get("dependencies"), f"{entry_path}.dependencies"
                        )
                        if dep != str(task_id)
                    ),
                    files=_as_names(entry.get("files"), f"{entry_path}.files"),
                )
            )
        except ValueError as exc:
            raise BlueprintError(str(exc)) from exc
    return tuple(sorted(tasks, key=lambda task: task_sort_key(task.id)))


def _as_names(value: object, path: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str) or not isinstance(value, Sequence):
        raise BlueprintError(f"{path} must be a list of strings.")
    names: list[str] = []
    for index, item in enumerate(value):
        if not isinstance(item, str) or not item.strip():
            raise BlueprintError(f"{path}[{index}] must be a non-empty string.")
        if item.strip() not in names:
            names.append(item.strip())
    return tuple(names)


__all__ = ["discover_tasks", "load_task_manifest"]
