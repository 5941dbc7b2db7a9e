"""Executable CLI entrypoint for ``task_orchestrator``.

Every failure leaving the CLI is mapped onto :class:`ExitCode` by walking the
exception's cause/context chain; the first link with a known type decides.
"""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    """Deterministic process exit-code contract."""

    SUCCESS = 0
    VERIFICATION_REJECTED = 1
    CONFIG_ERROR = 2
    AGENT_ERROR = 3
    INTERNAL_ERROR = 4


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Entrypoint used by ``python -m task_orchestrator`` and the console script."""

    try:
        from task_orchestrator.ui.cli import run_cli

        return _exit_code_from(run_cli(argv))
    except SystemExit as exc:
        return _exit_code_from(exc.code)
    except KeyboardInterrupt:
        _write_stderr("interrupted")
        return int(ExitCode.VERIFICATION_REJECTED)
    except BaseException as exc:  # noqa: BLE001 - CLI boundary normalization.
        exit_code = _route_exception(exc)
        if exit_code is ExitCode.INTERNAL_ERROR:
            traceback.print_exception(type(exc), exc, exc.__traceback__, file=sys.stderr)
        else:
            _write_stderr(str(exc).strip() or exc.__class__.__name__)
        return int(exit_code)


def _exit_code_from(raw_code: object) -> int:
    if raw_code is None:
        return int(ExitCode.SUCCESS)
    if isinstance(raw_code, int) and raw_code in {code.value for code in ExitCode}:
        return raw_code
    if isinstance(raw_code, str) and raw_code.strip():
        _write_stderr(raw_code.strip())
    return int(ExitCode.INTERNAL_ERROR)


def _exit_routes() -> tuple[tuple[tuple[type[BaseException], ...], ExitCode], ...]:
    from task_orchestrator.config import ConfigLoadError, ConfigValidationError
    from task_orchestrator.persistence.execution_store import ExecutionRecordError
    from task_orchestrator.spec_ingestion.blueprint import BlueprintError
    from task_orchestrator.synthesis_plane.agent import AgentUnavailableError

    return (
        (
            (ConfigLoadError, ConfigValidationError, BlueprintError, ExecutionRecordError),
            ExitCode.CONFIG_ERROR,
        ),
        ((AgentUnavailableError,), ExitCode.AGENT_ERROR),
        # bad user input that escaped the typed errors above
        (
            (FileNotFoundError, NotADirectoryError, PermissionError, ValueError),
            ExitCode.CONFIG_ERROR,
        ),
    )


def _route_exception(exc: BaseException) -> ExitCode:
    routes = _exit_routes()
    for link in _exception_chain(exc):
        for error_types, exit_code in routes:
            if isinstance(link, error_types):
                return exit_code
    return ExitCode.INTERNAL_ERROR


def _exception_chain(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        if current.__cause__ is not None:
            current = current.__cause__
        elif not current.__suppress_context__:
            current = current.__context__
        else:
            current = None


def _write_stderr(message: str) -> None:
    sys.stderr.write(message.rstrip("\n") + "\n")


__all__ = ["ExitCode", "cli_entrypoint"]
