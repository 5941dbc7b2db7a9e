"""Plain-text output rendering for the task-orchestrator CLI.

File: src/task_orchestrator/ui/render.py

Purpose
- Keep human-readable CLI output in one place so command handlers only build
  data; ``--json`` output bypasses this module entirely.
- Own the layout of the run report, the per-task status table, checkpoint
  history and validation check lines.

Functional requirements
- Output must be deterministic for the same input.
- Free-form error text is collapsed to one line and truncated so tables stay aligned.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, TextIO

if TYPE_CHECKING:
    from task_orchestrator.control_plane.scheduler import RunReport
    from task_orchestrator.integration_plane.checkpoint_store import Checkpoint

ERROR_COLUMN_WIDTH = 60


def truncate(text: str, limit: int) -> str:
    """Collapse whitespace and cut ``text`` to ``limit`` characters with an ellipsis."""
    single_line = " ".join(text.split())
    return single_line if len(single_line) <= limit else f"{single_line[: limit - 3]}..."


class CLIRenderer:
    """Plain-text renderer; writes to stdout unless a stream is given."""

    def __init__(self, *, verbose: bool = False, stream: TextIO | None = None) -> None:
        self.verbose = verbose
        self._stream = stream

    def _line(self, text: str = "") -> None:
        print(text, file=self._stream)

    def heading(self, text: str) -> None:
        self._line(text)

    def kv(self, key: str, value: object) -> None:
        self._line(f"{key}: {value}")

    def text(self, line: str) -> None:
        self._line(line)

    def section(self, title: str) -> None:
        self._line(f"\n{title}")

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        for entry in entries:
            self._line(f"  {prefix}{entry}")

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[object]],
        *,
        title: str | None = None,
    ) -> None:
        """Print an aligned ASCII table; nothing is printed for zero rows."""
        if not rows:
            return

        widths = [len(header) for header in headers]
        for row in rows:
            for index, cell in enumerate(row[: len(headers)]):
                widths[index] = max(widths[index], len(str(cell)))

        def _pad(cells: Sequence[object]) -> str:
            parts = [
                (str(cells[index]) if index < len(cells) else "").ljust(width)
                for index, width in enumerate(widths)
            ]
            return "  ".join(parts).rstrip()

        if title:
            self.section(title)
        self._line(f"  {_pad(headers)}")
        self._line(f"  {'  '.join('-' * width for width in widths)}")
        for row in rows:
            self._line(f"  {_pad(row)}")

    def check(self, passed: bool, label: str) -> None:
        """One validation line: ``OK`` or ``FAIL`` followed by the label."""
        self._line(f"  {'OK  ' if passed else 'FAIL'}  {label.strip()}")

    def status_table(self, state_dir: str, rows: Sequence[Mapping[str, object]]) -> None:
        self.kv("State dir", state_dir)
        if not rows:
            self.text("No tasks found.")
            return
        self.table(
            ("TASK", "STATUS", "ATTEMPTS", "PHASE", "LAST ERROR"),
            [
                (
                    row["task_id"],
                    row["status"],
                    row["attempts"],
                    row["current_phase"] or "-",
                    truncate(str(row["last_error"] or "-"), ERROR_COLUMN_WIDTH),
                )
                for row in rows
            ],
        )

    def checkpoint_history(
        self, task_id: str, checkpoints: Sequence[Checkpoint], next_phase: int | None
    ) -> None:
        if not checkpoints:
            self.text(f"No checkpoints recorded for {task_id}.")
        self.table(
            ("COMMIT", "PHASE", "NAME"),
            [(cp.commit_hash[:7], cp.phase_number, cp.phase_name) for cp in checkpoints],
            title=f"Checkpoints for {task_id} (newest first):",
        )
        if next_phase is not None:
            self.kv("Resume from phase", next_phase)

    def run_report(self, run_id: str, report: RunReport) -> None:
        """Summary of a finished scheduler run; unfinished tasks get a table row each."""
        if report.succeeded:
            outcome = "success"
        elif report.cancelled:
            outcome = "cancelled"
        else:
            outcome = "partial failure"
        self.kv("Run", run_id)
        self.kv("Result", outcome)
        self.kv(
            "Concurrency",
            f"{report.peak_concurrency} peak / {report.effective_concurrency} allowed",
        )
        self.kv(
            "Tasks",
            ", ".join(f"{count} {status}" for status, count in report.counts().items()),
        )
        if report.resolutions:
            self.section("Conflict resolutions:")
            self.items(
                [
                    f"{item.winner} before {item.loser} ({', '.join(item.files)})"
                    for item in report.resolutions
                ]
            )
        unfinished = [result for result in report.tasks if result.last_error]
        self.table(
            ("TASK", "STATUS", "ATTEMPTS", "CHAIN", "LAST ERROR"),
            [
                (
                    result.task_id,
                    result.status.value,
                    result.attempts,
                    " <- ".join(result.blocking_chain) or "-",
                    truncate(result.last_error or "", ERROR_COLUMN_WIDTH),
                )
                for result in unfinished
            ],
            title="Unfinished tasks:",
        )
        if report.deadlock:
            self.section("Deadlock:")
            self.items(list(report.deadlock))


def create_renderer(*, verbose: bool = False, stream: TextIO | None = None) -> CLIRenderer:
    return CLIRenderer(verbose=verbose, stream=stream)


__all__ = ["CLIRenderer", "create_renderer", "truncate"]
