"""Structured logging setup with JSON-lines output and redaction support.

Components log through ``structlog.get_logger(__name__)`` with event-name
messages and keyword context. ``configure_logging`` routes those events into
the standard library ``logging`` tree so one run produces a JSON-lines file
under ``<log_dir>/<run_id>/`` plus a console stream.
"""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Iterator, Mapping, MutableMapping
from contextlib import contextmanager, suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

import structlog

_REDACTED_VALUE: Final[str] = "***REDACTED***"
_DEFAULT_LOG_FILENAME: Final[str] = "orchestrator.jsonl"
_ROOT_LOGGER_NAME: Final[str] = "task_orchestrator"

_CORRELATION_KEYS: Final[frozenset[str]] = frozenset({"run_id", "task_id", "attempt", "phase"})

_SENSITIVE_KEY_TERMS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "passphrase",
    "api_key",
    "apikey",
    "authorization",
    "credential",
    "cookie",
    "private_key",
)

_TRANSCRIPT_KEY_TERMS: Final[tuple[str, ...]] = ("transcript", "prompt")

_SENSITIVE_ASSIGNMENT_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(api[_-]?key|token|password|secret|client_secret|authorization)\b\s*([:=])\s*([^\s,;]+)"
)
_BEARER_TOKEN_PATTERN: Final[re.Pattern[str]] = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")
_API_KEY_PATTERN: Final[re.Pattern[str]] = re.compile(r"\bsk-(?:ant-)?[A-Za-z0-9_-]{12,}\b")
_RUN_ID_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

_ACTIVE_HANDLE_LOCK = threading.Lock()
_ACTIVE_HANDLE: LoggingHandle | None = None


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Configuration for one run's structured logging."""

    run_id: str
    base_log_dir: Path | str | None = Path("logs")
    level: int | str = "INFO"
    console_format: str = "json"
    redact_secrets: bool = True
    log_to_console: bool = True
    log_filename: str = _DEFAULT_LOG_FILENAME


@dataclass(frozen=True, slots=True)
class LoggingHandle:
    """Runtime handle for an active logging setup."""

    run_id: str
    log_path: Path | None
    logger: logging.Logger
    handlers: tuple[logging.Handler, ...]

    def shutdown(self) -> None:
        for handler in self.handlers:
            self.logger.removeHandler(handler)
            # the stream may already be closed by its owner (e.g. a swapped sys.stderr)
            with suppress(ValueError, OSError):
                handler.flush()
                handler.close()


def configure_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    run_id: str,
    log_dir: Path | str | None,
    log_to_console: bool = True,
) -> LoggingHandle:
    """Configure structured logging from an ``[observability]`` config section.

    ``log_dir=None`` installs the console stream only.
    """

    cfg = dict(observability_config or {})
    raw_level = cfg.get("log_level", "INFO")
    raw_format = cfg.get("log_format", "json")
    return setup_structured_logging(
        LoggingConfig(
            run_id=run_id,
            base_log_dir=log_dir,
            level=raw_level if isinstance(raw_level, (int, str)) else "INFO",
            console_format=raw_format if isinstance(raw_format, str) else "json",
            redact_secrets=bool(cfg.get("redact_secrets", True)),
            log_to_console=log_to_console,
        )
    )


def setup_structured_logging(config: LoggingConfig) -> LoggingHandle:
    """Install file and console handlers for a single run."""

    shutdown_logging()

    run_id = _validate_run_id(config.run_id)
    level = _parse_log_level(config.level)
    log_path: Path | None = None
    if config.base_log_dir is not None:
        run_log_dir = Path(config.base_log_dir) / run_id
        run_log_dir.mkdir(parents=True, exist_ok=True)
        log_path = run_log_dir / config.log_filename

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    tail: list[Any] = [structlog.stdlib.ProcessorFormatter.remove_processors_meta]
    if config.redact_secrets:
        tail.append(redact_event)
    tail.append(structlog.processors.format_exc_info)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    handlers: list[logging.Handler] = []
    if log_path is not None:
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                foreign_pre_chain=shared_processors,
                processors=[*tail, structlog.processors.JSONRenderer(sort_keys=True)],
            )
        )
        handlers.append(file_handler)

    if config.log_to_console:
        console_renderer: Any
        if config.console_format == "text":
            console_renderer = structlog.dev.ConsoleRenderer(colors=False)
        else:
            console_renderer = structlog.processors.JSONRenderer(sort_keys=True)
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                foreign_pre_chain=shared_processors,
                processors=[*tail, console_renderer],
            )
        )
        handlers.append(console_handler)

    logger = logging.getLogger(_ROOT_LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False
    for handler in handlers:
        logger.addHandler(handler)

    handle = LoggingHandle(
        run_id=run_id, log_path=log_path, logger=logger, handlers=tuple(handlers)
    )
    with _ACTIVE_HANDLE_LOCK:
        global _ACTIVE_HANDLE
        _ACTIVE_HANDLE = handle
    return handle


def shutdown_logging() -> None:
    """Close the active run's handlers, if any."""

    with _ACTIVE_HANDLE_LOCK:
        global _ACTIVE_HANDLE
        handle = _ACTIVE_HANDLE
        _ACTIVE_HANDLE = None
    if handle is not None:
        handle.shutdown()


def get_active_logging_handle() -> LoggingHandle | None:
    with _ACTIVE_HANDLE_LOCK:
        return _ACTIVE_HANDLE


@contextmanager
def correlation_scope(**fields: str | int | None) -> Iterator[None]:
    """Temporarily bind correlation fields for log events in scope."""

    bound: dict[str, str | int] = {}
    for key, value in fields.items():
        if key not in _CORRELATION_KEYS:
            raise ValueError(f"unsupported correlation key: {key!r}")
        if value is not None:
            bound[key] = value
    with structlog.contextvars.bound_contextvars(**bound):
        yield


def redact_event(
    logger: object, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor masking secret-looking keys and token patterns."""

    for key in list(event_dict):
        event_dict[key] = _redact_value(event_dict[key], key_context=key)
    return event_dict


def _redact_value(value: object, *, key_context: str | None) -> object:
    if key_context is not None and _requires_redaction_for_key(key_context):
        return _REDACTED_VALUE

    if isinstance(value, str):
        return _redact_string(value)

    if isinstance(value, (list, tuple)):
        return [_redact_value(item, key_context=None) for item in value]

    if isinstance(value, Mapping):
        return {key: _redact_value(item, key_context=str(key)) for key, item in value.items()}

    return value


def _requires_redaction_for_key(key: str) -> bool:
    key_lower = key.lower()
    return any(term in key_lower for term in _SENSITIVE_KEY_TERMS) or any(
        term in key_lower for term in _TRANSCRIPT_KEY_TERMS
    )


def _redact_string(text: str) -> str:
    redacted = _SENSITIVE_ASSIGNMENT_PATTERN.sub(
        lambda match: f"{match.group(1)}{match.group(2)}{_REDACTED_VALUE}", text
    )
    redacted = _BEARER_TOKEN_PATTERN.sub(f"Bearer {_REDACTED_VALUE}", redacted)
    return _API_KEY_PATTERN.sub(_REDACTED_VALUE, redacted)


def _validate_run_id(run_id: str) -> str:
    if not isinstance(run_id, str) or not _RUN_ID_PATTERN.fullmatch(run_id):
        raise ValueError(f"run_id must match {_RUN_ID_PATTERN.pattern}")
    return run_id


def _parse_log_level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    resolved = logging.getLevelName(value.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"unknown log level: {value!r}")
    return resolved


__all__ = [
    "LoggingConfig",
    "LoggingHandle",
    "configure_logging",
    "correlation_scope",
    "get_active_logging_handle",
    "redact_event",
    "setup_structured_logging",
    "shutdown_logging",
]
