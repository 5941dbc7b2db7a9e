"""Command-line interface router for task-orchestrator."""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
import uuid
from collections.abc import Mapping, Sequence
from contextlib import suppress
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from task_orchestrator.config import (
    ConfigLoadError,
    ConfigValidationError,
    assert_valid_config,
    effective_config,
    load_config,
)
from task_orchestrator.constants import BLUEPRINT_FILE, EXECUTION_FILE
from task_orchestrator.control_plane import (
    RunContext,
    RunReport,
    Scheduler,
    SchedulerLimits,
    TaskRunner,
    build_run_context,
)
from task_orchestrator.domain.models import ExecutionRecord, ExecutionStatus, Task
from task_orchestrator.integration_plane import CheckpointStore, GitEngine
from task_orchestrator.observability import configure_logging, shutdown_logging
from task_orchestrator.persistence import ExecutionRecordError, ExecutionStore
from task_orchestrator.planning import ConflictGraph
from task_orchestrator.spec_ingestion import (
    BlueprintError,
    discover_tasks,
    load_task_manifest,
    parse_implementation_strategy,
    read_blueprint,
)
from task_orchestrator.synthesis_plane import CommandAgent
from task_orchestrator.ui.render import CLIRenderer, create_renderer, truncate
from task_orchestrator.verification_plane import (
    CriteriaRunner,
    check_review_checklist_blocked,
    summarize,
    validate_artifacts_exist,
    validate_completion,
    verify_artifacts,
)


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="task-orchestrator",
        description=(
            "task-orchestrator: dependency-aware execution of agent tasks.\n\n"
            "Common workflows:\n"
            "  task-orchestrator run                 Execute every task in the state dir\n"
            "  task-orchestrator status              Show execution record statuses\n"
            "  task-orchestrator conflicts --fix     Show file conflicts and resolutions\n"
            "  task-orchestrator validate TASK3      Re-check a task without the agent\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--repo-root",
        default=".",
        help="Repository root directory (default: current working directory).",
    )
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to orchestrator TOML config (default: <repo-root>/orchestrator.toml).",
    )
    common.add_argument(
        "--profile",
        default=None,
        help="Optional config profile overlay name.",
    )
    common.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="Emit deterministic JSON output.",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Show detailed output and INFO-level logs.",
    )

    manifest = argparse.ArgumentParser(add_help=False)
    manifest.add_argument(
        "--manifest",
        default=None,
        help="YAML task manifest used instead of scanning the state dir for blueprints.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # run -----------------------------------------------------------------
    run_parser = subparsers.add_parser(
        "run",
        parents=[common, manifest],
        help="Execute all tasks under the state dir",
        description=(
            "Schedule every task, invoke the agent per attempt and verify its work.\n\n"
            "Examples:\n"
            "  task-orchestrator run\n"
            "  task-orchestrator run --max-concurrency 2 --json\n"
            "  task-orchestrator run --profile fast\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    run_parser.add_argument(
        "--max-concurrency", type=int, default=None, help="Upper bound on parallel tasks"
    )
    run_parser.add_argument(
        "--max-attempts", type=int, default=None, help="Attempt budget per task"
    )
    run_parser.add_argument(
        "--no-auto-resolve",
        action="store_true",
        default=False,
        help="Do not add dependency edges for file conflicts before running",
    )
    run_parser.add_argument("--run-id", default=None, help="Run id used for the log directory")
    run_parser.set_defaults(handler=_cmd_run)

    # status --------------------------------------------------------------
    status_parser = subparsers.add_parser(
        "status",
        parents=[common, manifest],
        help="Show execution record statuses",
    )
    status_parser.set_defaults(handler=_cmd_status)

    # conflicts -----------------------------------------------------------
    conflicts_parser = subparsers.add_parser(
        "conflicts",
        parents=[common, manifest],
        help="Detect file conflicts between parallelizable tasks",
    )
    conflicts_parser.add_argument(
        "--fix",
        action="store_true",
        default=False,
        help="Show the dependency edges auto-resolution would add",
    )
    conflicts_parser.set_defaults(handler=_cmd_conflicts)

    # checkpoints ---------------------------------------------------------
    checkpoints_parser = subparsers.add_parser(
        "checkpoints",
        parents=[common],
        help="List phase checkpoints recorded for a task",
    )
    checkpoints_parser.add_argument("task_id", help="Task id, for example TASK3")
    checkpoints_parser.add_argument(
        "--limit", type=int, default=None, help="Maximum number of checkpoints to show"
    )
    checkpoints_parser.set_defaults(handler=_cmd_checkpoints)

    # validate ------------------------------------------------------------
    validate_parser = subparsers.add_parser(
        "validate",
        parents=[common],
        help="Run artifact, criteria and completion checks without the agent",
    )
    validate_parser.add_argument("task_id", help="Task id, for example TASK3")
    validate_parser.set_defaults(handler=_cmd_validate)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Show the effective configuration with secrets redacted",
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    finally:
        # handlers hold the current sys.stderr; never let one outlive the command
        shutdown_logging()
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_run(args: argparse.Namespace) -> int:
    overrides: dict[str, object] = {
        "scheduler.max_concurrency": args.max_concurrency,
        "scheduler.max_attempts_per_task": args.max_attempts,
    }
    if args.no_auto_resolve:
        overrides["scheduler.auto_resolve_conflicts"] = False
    config = _load_effective_config(args, overrides)
    run_id = args.run_id or _new_run_id()

    try:
        handle = configure_logging(
            config["observability"],
            run_id=run_id,
            log_dir=config["paths"]["log_dir"],
            log_to_console=not args.json,
        )
    except ValueError as exc:
        raise CLIError(str(exc), exit_code=2) from exc

    try:
        context = build_run_context(
            config,
            cwd=_repo_root(args),
            run_id=run_id,
            logger=structlog.get_logger("task_orchestrator.run"),
        )
        tasks = _load_tasks(args, context.state_dir)
        if not tasks:
            raise CLIError(f"no tasks found under {context.state_dir}", exit_code=2)

        agent_cfg = config["agent"]
        agent = CommandAgent(
            agent_cfg["command"],
            timeout_seconds=float(agent_cfg["timeout_seconds"]),
            logger=context.logger,
        )
        agent.ensure_available()

        store = ExecutionStore(
            lenient=bool(config["execution"]["lenient_validation"]), logger=context.logger
        )
        scheduler = Scheduler(
            _build_graph(tasks),
            TaskRunner(context, agent, store=store),
            limits=SchedulerLimits.from_config(config),
            completed=_completed_tasks(context, store, tasks),
            cancellation=context.cancellation,
            logger=context.logger,
        )
        report = asyncio.run(_run_scheduler(scheduler, context))
    finally:
        shutdown_logging()

    if args.json:
        _emit_json(
            {"run_id": run_id, "log_path": _path_or_none(handle.log_path), **report.to_dict()}
        )
    else:
        _get_renderer(args).run_report(run_id, report)
    return 0 if report.succeeded else 1


def _cmd_status(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    _configure_inspection_logging(args, config)
    state_dir = _state_dir(config, _repo_root(args))
    tasks = _load_tasks(args, state_dir)
    store = ExecutionStore(lenient=True)

    rows: list[dict[str, object]] = []
    for task in tasks:
        record, error = _load_record(store, state_dir / task.id / EXECUTION_FILE)
        rows.append(_status_row(task, record, error))

    if args.json:
        _emit_json({"state_dir": state_dir.as_posix(), "tasks": rows})
        return 0

    _get_renderer(args).status_table(state_dir.as_posix(), rows)
    return 0


def _cmd_conflicts(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    _configure_inspection_logging(args, config)
    state_dir = _state_dir(config, _repo_root(args))
    graph = _build_graph(_load_tasks(args, state_dir))

    conflicts = graph.detect_file_conflicts()
    payload: dict[str, object] = {
        "conflicts": [conflict.to_dict() for conflict in conflicts],
        "tasks_missing_files": list(graph.find_tasks_missing_files()),
        "cycles": [list(cycle) for cycle in graph.detect_cycles()],
        "missing_dependencies": {
            task_id: list(missing) for task_id, missing in graph.missing_dependencies().items()
        },
    }
    if args.fix:
        payload["suggestions"] = list(ConflictGraph.suggest_dependency_fixes(conflicts))
        payload["resolutions"] = [
            resolution.to_dict() for resolution in graph.auto_resolve_conflicts(conflicts)
        ]

    if args.json:
        _emit_json(payload)
        return 0

    renderer = _get_renderer(args)
    if not conflicts:
        renderer.text("No file conflicts between parallelizable tasks.")
    else:
        renderer.heading(f"{len(conflicts)} file conflict(s):")
        renderer.items(
            [f"{c.task1} <-> {c.task2}: {', '.join(c.files)}" for c in conflicts]
        )
    if graph.find_tasks_missing_files():
        renderer.section("Tasks without declared files (run serialized):")
        renderer.items(list(graph.find_tasks_missing_files()))
    if graph.detect_cycles():
        renderer.section("Dependency cycles:")
        renderer.items([" -> ".join((*cycle, cycle[0])) for cycle in graph.detect_cycles()])
    if args.fix and conflicts:
        renderer.section("Suggested fixes:")
        renderer.items([str(item) for item in payload["suggestions"]])  # type: ignore[union-attr]
        renderer.section("Resolutions:")
        renderer.items(
            [
                f"{item['winner']} before {item['loser']} ({item['resolution']})"
                for item in payload["resolutions"]  # type: ignore[union-attr]
            ]
        )
    return 0


def _cmd_checkpoints(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    _configure_inspection_logging(args, config)
    repo_root = _repo_root(args)
    task_id = args.task_id
    if args.limit is not None and args.limit < 1:
        raise CLIError("--limit must be >= 1", exit_code=2)

    store = CheckpointStore(
        GitEngine(repo_root), history_limit=int(config["checkpoints"]["history_limit"])
    )
    checkpoints = store.get_all_checkpoints(task_id, args.limit)
    blueprint_path = _state_dir(config, repo_root) / task_id / BLUEPRINT_FILE
    total_phases = _planned_phase_count(blueprint_path)
    next_phase = store.get_next_phase(task_id, total_phases) if total_phases else None

    if args.json:
        _emit_json(
            {
                "task_id": task_id,
                "checkpoints": [checkpoint.to_dict() for checkpoint in checkpoints],
                "next_phase": next_phase,
            }
        )
        return 0

    _get_renderer(args).checkpoint_history(task_id, checkpoints, next_phase)
    return 0


def _cmd_validate(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    _configure_inspection_logging(args, config)
    repo_root = _repo_root(args)
    context = build_run_context(config, cwd=repo_root)
    task_id = args.task_id

    try:
        blueprint = read_blueprint(context.blueprint_path(task_id))
    except BlueprintError as exc:
        raise CLIError(str(exc), exit_code=2) from exc
    store = ExecutionStore(lenient=bool(config["execution"]["lenient_validation"]))
    record, error = _load_record(store, context.execution_path(task_id))
    if record is None:
        raise CLIError(error or f"no execution record for {task_id}", exit_code=2)

    audit = validate_artifacts_exist(record, repo_root)
    criteria_cfg = config["criteria"]
    runner = CriteriaRunner(
        timeout_seconds=float(criteria_cfg["timeout_seconds"]),
        evidence_max_chars=int(criteria_cfg["evidence_max_chars"]),
    )
    record.success_criteria = asyncio.run(runner.run_blueprint(blueprint, repo_root))
    summary = summarize(record.success_criteria)
    checklist = check_review_checklist_blocked(context.task_dir(task_id))
    verify_artifacts(record, repo_root)
    completion = validate_completion(record)

    passed = audit.valid and summary.all_passed and not checklist.blocked and completion.passed
    if args.json:
        _emit_json(
            {
                "task_id": task_id,
                "passed": passed,
                "missing_artifacts": list(audit.missing_paths),
                "criteria": [result.to_dict() for result in record.success_criteria],
                "criteria_summary": {
                    "passed": summary.passed,
                    "failed": summary.failed,
                    "manual": summary.manual,
                },
                "review_checklist": {"blocked": checklist.blocked, "reason": checklist.reason},
                "completion": {"passed": completion.passed, "reason": completion.reason},
            }
        )
        return 0 if passed else 1

    renderer = _get_renderer(args)
    renderer.heading(f"Validation for {task_id}:")
    renderer.check(
        audit.valid,
        f"artifacts present ({audit.existing_count}/{audit.total_count})",
    )
    for path in audit.missing_paths:
        renderer.items([f"missing: {path}"], prefix="")
    renderer.check(
        summary.all_passed,
        f"criteria ({summary.passed} passed, {summary.failed} failed, {summary.manual} manual)",
    )
    if renderer.verbose:
        for result in record.success_criteria:
            state = "manual" if result.passed is None else ("pass" if result.passed else "fail")
            evidence = truncate(result.evidence or "", 80)
            renderer.items([f"[{state}] {result.criterion}: {evidence}"])
    renderer.check(not checklist.blocked, f"review checklist {checklist.reason or ''}")
    renderer.check(completion.passed, f"completion {completion.reason or ''}")
    return 0 if passed else 1


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    payload = effective_config(config)
    if args.json:
        _emit_json(payload)
        return 0
    print(json.dumps(payload, sort_keys=True, indent=2, ensure_ascii=False))
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _run_scheduler(scheduler: Scheduler, context: RunContext) -> RunReport:
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for signum in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(signum, context.cancellation.cancel, signum.name.lower())
            installed.append(signum)
    try:
        return await scheduler.run()
    finally:
        for signum in installed:
            loop.remove_signal_handler(signum)


def _status_row(
    task: Task, record: ExecutionRecord | None, error: str | None
) -> dict[str, object]:
    if record is None:
        return {
            "task_id": task.id,
            "status": "invalid" if error else ExecutionStatus.PENDING.value,
            "attempts": 0,
            "current_phase": None,
            "last_error": error,
        }
    phase = record.current_phase
    return {
        "task_id": task.id,
        "status": record.status.value,
        "attempts": record.attempts,
        "current_phase": f"{phase.id}: {phase.name}" if phase is not None else None,
        "last_error": record.completion.last_error,
    }


def _load_record(
    store: ExecutionStore, path: Path
) -> tuple[ExecutionRecord | None, str | None]:
    if not path.exists():
        return None, None
    try:
        return store.load(path), None
    except ExecutionRecordError as exc:
        return None, str(exc)


def _completed_tasks(
    context: RunContext, store: ExecutionStore, tasks: Sequence[Task]
) -> tuple[str, ...]:
    completed: list[str] = []
    for task in tasks:
        record, error = _load_record(store, context.execution_path(task.id))
        if error is not None:
            context.logger.warning("execution_record_unreadable", task_id=task.id, error=error)
        if record is not None and record.status is ExecutionStatus.COMPLETED:
            completed.append(task.id)
    return tuple(completed)


def _build_graph(tasks: Sequence[Task]) -> ConflictGraph:
    try:
        return ConflictGraph(tasks)
    except ValueError as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _load_tasks(args: argparse.Namespace, state_dir: Path) -> tuple[Task, ...]:
    manifest = getattr(args, "manifest", None)
    if manifest is None:
        return discover_tasks(state_dir)
    manifest_path = Path(manifest).expanduser()
    if not manifest_path.is_absolute():
        manifest_path = _repo_root(args) / manifest_path
    try:
        return load_task_manifest(manifest_path)
    except (OSError, ValueError) as exc:
        raise CLIError(f"invalid task manifest {manifest_path}: {exc}", exit_code=2) from exc


def _planned_phase_count(blueprint_path: Path) -> int:
    try:
        return len(parse_implementation_strategy(read_blueprint(blueprint_path)))
    except BlueprintError:
        return 0


def _configure_inspection_logging(args: argparse.Namespace, config: Mapping[str, Any]) -> None:
    """Console-only logging for read-only commands; ``run_cli`` shuts it down."""
    observability = dict(config["observability"])
    if not args.verbose:
        observability["log_level"] = "WARNING"
    configure_logging(observability, run_id="inspect", log_dir=None)


def _load_effective_config(
    args: argparse.Namespace, cli_overrides: Mapping[str, object] | None = None
) -> dict[str, Any]:
    config_path = _optional_str(getattr(args, "config_path", None))
    profile = _optional_str(getattr(args, "profile", None))

    try:
        loaded = load_config(
            config_path,
            profile=profile,
            cli_overrides=cli_overrides,
            search_dir=_repo_root(args),
        )
        validated = assert_valid_config(loaded, active_profile=profile)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc

    return {key: value for key, value in validated.items()}


def _state_dir(config: Mapping[str, Any], repo_root: Path) -> Path:
    state_dir = Path(str(config["paths"]["state_dir"]))
    return state_dir if state_dir.is_absolute() else repo_root / state_dir


def _repo_root(args: argparse.Namespace) -> Path:
    raw = _optional_str(getattr(args, "repo_root", None)) or "."
    root = Path(raw).expanduser().resolve()
    if not root.is_dir():
        raise CLIError(f"repo root is not a directory: {root}", exit_code=2)
    return root


def _new_run_id() -> str:
    return f"{datetime.now(UTC).strftime('%Y%m%dT%H%M%SZ')}-{uuid.uuid4().hex[:8]}"


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(verbose=bool(getattr(args, "verbose", False)))


def _optional_str(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _path_or_none(path: Path | None) -> str | None:
    return path.as_posix() if path is not None else None


__all__ = ["CLIError", "build_parser", "run_cli"]
