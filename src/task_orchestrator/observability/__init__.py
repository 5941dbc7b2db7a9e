"""Observability plane: structured logging for orchestrator runs."""

from task_orchestrator.observability.logging import (
    LoggingConfig,
    LoggingHandle,
    configure_logging,
    correlation_scope,
    shutdown_logging,
)

__all__ = [
    "LoggingConfig",
    "LoggingHandle",
    "configure_logging",
    "correlation_scope",
    "shutdown_logging",
]
