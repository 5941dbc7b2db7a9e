"""
task-orchestrator — package root

File: src/task_orchestrator/__init__.py

Purpose
- Package root for the task execution orchestrator: drives declared tasks
  through a phase pipeline, schedules independent tasks concurrently, and
  checkpoints verified progress into git history.

Import boundary rules
- No side effects at import time (no config loading, no logging init).
- Heavy submodules are imported by the CLI on demand.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
