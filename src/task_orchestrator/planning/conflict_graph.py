"""Dependency and file-ownership graph used to decide safe parallelism.

An edge ``task -> dependency`` means ``task`` may only start once
``dependency`` has completed. Edges come from ``@dependencies`` declarations
or from automatic conflict resolution; declared edges are never removed.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from heapq import heapify, heappop, heappush
from typing import Any

from task_orchestrator.constants import TASK_GRAPH_SCHEMA_VERSION
from task_orchestrator.domain.models import Task, task_sort_key
from task_orchestrator.utils.fs import normalize_repo_path


class CycleError(ValueError):
    """Raised when a cycle is detected in the dependency graph."""

    cycles: tuple[tuple[str, ...], ...]

    def __init__(self, cycles: Iterable[Sequence[str]]) -> None:
        normalized: tuple[tuple[str, ...], ...] = tuple(tuple(path) for path in cycles)
        self.cycles = normalized

        if not normalized:
            message = "Dependency graph contains at least one cycle."
        else:
            preview = ", ".join(" -> ".join(path) for path in normalized[:3])
            suffix = "..." if len(normalized) > 3 else ""
            message = f"Dependency graph contains cycle(s): {preview}{suffix}"
        super().__init__(message)


@dataclass(frozen=True, slots=True)
class FileConflict:
    """Two independently schedulable tasks that declare overlapping files."""

    task1: str
    task2: str
    files: tuple[str, ...]

    def to_dict(self) -> dict[str, object]:
        return {"task1": self.task1, "task2": self.task2, "files": list(self.files)}


@dataclass(frozen=True, slots=True)
class ConflictResolution:
    """Ordering applied to a conflict: ``loser`` runs after ``winner``."""

    winner: str
    loser: str
    files: tuple[str, ...]
    resolution: str
    edge_added: bool

    def to_dict(self) -> dict[str, object]:
        return {
            "winner": self.winner,
            "loser": self.loser,
            "files": list(self.files),
            "resolution": self.resolution,
            "edge_added": self.edge_added,
        }


class ConflictGraph:
    """Task graph with declared file ownership and deterministic traversal."""

    __slots__ = ("_dependencies", "_dependents", "_files", "_auto_edges", "_unknown")

    def __init__(self, tasks: Iterable[Task] | None = None) -> None:
        self._dependencies: dict[str, set[str]] = {}
        self._dependents: dict[str, set[str]] = {}
        self._files: dict[str, tuple[str, ...]] = {}
        self._auto_edges: set[tuple[str, str]] = set()
        self._unknown: dict[str, set[str]] = {}

        if tasks is not None:
            materialized = list(tasks)
            for task in materialized:
                self.add_task(task.id, files=task.files)
            for task in materialized:
                for dependency in task.dependencies:
                    self.add_dependency(task.id, dependency)

    @property
    def tasks(self) -> tuple[str, ...]:
        """All task IDs, numbered tasks ascending and the terminal sentinel last."""
        return tuple(sorted(self._dependencies, key=task_sort_key))

    @property
    def edges(self) -> tuple[tuple[str, str], ...]:
        """All ``(task, dependency)`` edges in deterministic order."""
        ordered: list[tuple[str, str]] = []
        for task_id in self.tasks:
            for dependency in sorted(self._dependencies[task_id], key=task_sort_key):
                ordered.append((task_id, dependency))
        return tuple(ordered)

    @property
    def auto_resolved_edges(self) -> tuple[tuple[str, str], ...]:
        return tuple(sorted(self._auto_edges))

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._dependencies

    def __len__(self) -> int:
        return len(self._dependencies)

    def add_task(self, task_id: str, *, files: Iterable[str] = ()) -> None:
        """Add a task if it does not already exist; re-adding replaces its file set."""
        if not task_id:
            raise ValueError("Task ID must be non-empty.")
        self._dependencies.setdefault(task_id, set())
        self._dependents.setdefault(task_id, set())
        self._files[task_id] = tuple(item.strip() for item in files if item.strip())

        # A task declared after its dependents resolves their dangling references.
        for dependent, unknown in list(self._unknown.items()):
            if task_id in unknown:
                unknown.discard(task_id)
                self._link(dependent, task_id)
                if not unknown:
                    del self._unknown[dependent]

    def add_dependency(self, task_id: str, depends_on: str) -> None:
        """Record that ``task_id`` requires ``depends_on`` to complete first."""
        self._assert_task_exists(task_id)
        if depends_on == task_id:
            raise CycleError([(task_id, task_id)])
        if depends_on not in self._dependencies:
            self._unknown.setdefault(task_id, set()).add(depends_on)
            return
        self._link(task_id, depends_on)

    def files(self, task_id: str) -> tuple[str, ...]:
        self._assert_task_exists(task_id)
        return self._files[task_id]

    def get_dependencies(self, task_id: str, *, transitive: bool = False) -> tuple[str, ...]:
        """Return direct or transitive dependencies for ``task_id``."""
        self._assert_task_exists(task_id)
        if not transitive:
            return tuple(sorted(self._dependencies[task_id], key=task_sort_key))
        return self._transitive_closure(task_id, upstream=True)

    def get_dependents(self, task_id: str, *, transitive: bool = False) -> tuple[str, ...]:
        """Return direct or transitive dependents for ``task_id``."""
        self._assert_task_exists(task_id)
        if not transitive:
            return tuple(sorted(self._dependents[task_id], key=task_sort_key))
        return self._transitive_closure(task_id, upstream=False)

    def depends_on(self, task_id: str, other: str) -> bool:
        """``True`` when ``task_id`` transitively requires ``other``."""
        if task_id not in self._dependencies or other not in self._dependencies:
            return False
        visited: set[str] = set()
        pending = list(self._dependencies[task_id])
        while pending:
            node = pending.pop()
            if node == other:
                return True
            if node in visited:
                continue
            visited.add(node)
            pending.extend(self._dependencies[node] - visited)
        return False

    def can_run_in_parallel(self, task1: str, task2: str) -> bool:
        """Two known tasks may run together only when neither reaches the other."""
        if task1 not in self._dependencies or task2 not in self._dependencies:
            return False
        if task1 == task2:
            return False
        return not self.depends_on(task1, task2) and not self.depends_on(task2, task1)

    def detect_file_conflicts(self) -> tuple[FileConflict, ...]:
        """Return file overlaps between every pair of tasks that could run concurrently."""
        ordered = self.tasks
        normalized = {task_id: _normalized_files(self._files[task_id]) for task_id in ordered}
        conflicts: list[FileConflict] = []
        for index, task1 in enumerate(ordered):
            files1 = normalized[task1]
            if not files1:
                continue
            for task2 in ordered[index + 1 :]:
                files2 = normalized[task2]
                if not files2 or not self.can_run_in_parallel(task1, task2):
                    continue
                shared = tuple(
                    original for key, original in files1.items() if key in files2
                )
                if shared:
                    conflicts.append(FileConflict(task1=task1, task2=task2, files=shared))
        return tuple(conflicts)

    def auto_resolve_conflicts(
        self, conflicts: Iterable[FileConflict]
    ) -> tuple[ConflictResolution, ...]:
        """Serialize each conflicting pair: the lexicographically later task waits."""
        resolutions: list[ConflictResolution] = []
        for conflict in conflicts:
            winner, loser = sorted((conflict.task1, conflict.task2))
            if self.depends_on(winner, loser):
                # an earlier edge already runs the pair the other way round
                winner, loser = loser, winner
            if self.depends_on(loser, winner):
                resolutions.append(
                    ConflictResolution(
                        winner=winner,
                        loser=loser,
                        files=conflict.files,
                        resolution=f"{loser} already ordered after {winner}",
                        edge_added=False,
                    )
                )
                continue
            self._link(loser, winner)
            self._auto_edges.add((loser, winner))
            resolutions.append(
                ConflictResolution(
                    winner=winner,
                    loser=loser,
                    files=conflict.files,
                    resolution=f"{loser} now depends on {winner}",
                    edge_added=True,
                )
            )
        return tuple(resolutions)

    @staticmethod
    def suggest_dependency_fixes(conflicts: Iterable[FileConflict]) -> tuple[str, ...]:
        """Operator guidance for making an automatic ordering explicit."""
        suggestions: list[str] = []
        for conflict in conflicts:
            winner, loser = sorted((conflict.task1, conflict.task2))
            suggestions.append(f"Add @dependencies [{winner}] to {loser}'s BLUEPRINT.md")
        return tuple(suggestions)

    def find_tasks_missing_files(self) -> tuple[str, ...]:
        """Tasks without a file declaration; their writes cannot be conflict-checked."""
        return tuple(task_id for task_id in self.tasks if not self._files[task_id])

    def missing_dependencies(self) -> dict[str, tuple[str, ...]]:
        """Declared dependency IDs that name no task in the graph."""
        return {
            task_id: tuple(sorted(self._unknown[task_id], key=task_sort_key))
            for task_id in sorted(self._unknown, key=task_sort_key)
        }

    def get_ready(
        self, completed: Iterable[str], *, exclude: Iterable[str] = ()
    ) -> tuple[str, ...]:
        """
        Return tasks ready to run.

        A task is ready when it is not completed or excluded, declares no missing
        dependency, and every dependency is in ``completed``.
        """
        completed_tasks = set(completed)
        excluded = set(exclude) | completed_tasks
        return tuple(
            task_id
            for task_id in self.tasks
            if task_id not in excluded
            and task_id not in self._unknown
            and self._dependencies[task_id].issubset(completed_tasks)
        )

    def topological_order(self) -> tuple[str, ...]:
        """Return a deterministic dependency-first ordering or raise ``CycleError``."""
        pending = {task_id: len(self._dependencies[task_id]) for task_id in self._dependencies}
        ready = [task_sort_key(task_id) for task_id, count in pending.items() if count == 0]
        heapify(ready)

        order: list[str] = []
        while ready:
            task_id = heappop(ready)[2]
            order.append(task_id)
            for dependent in self._dependents[task_id]:
                pending[dependent] -= 1
                if pending[dependent] == 0:
                    heappush(ready, task_sort_key(dependent))

        if len(order) != len(self._dependencies):
            raise CycleError(self.detect_cycles())
        return tuple(order)

    def detect_cycles(self) -> tuple[tuple[str, ...], ...]:
        """
        Detect dependency cycles.

        Returns cycle paths as closed paths, e.g. ``("TASK1", "TASK2", "TASK1")``.
        """
        state: dict[str, int] = {}
        stack: list[str] = []
        stack_index: dict[str, int] = {}
        cycles: dict[tuple[str, ...], None] = {}

        for start in self.tasks:
            if state.get(start, 0) != 0:
                continue

            state[start] = 1
            stack.append(start)
            stack_index[start] = 0
            frames: list[tuple[str, Iterator[str]]] = [(start, self._iter_dependencies(start))]

            while frames:
                node, dependency_iter = frames[-1]
                try:
                    dependency = next(dependency_iter)
                except StopIteration:
                    frames.pop()
                    state[node] = 2
                    stack.pop()
                    del stack_index[node]
                    continue

                dependency_state = state.get(dependency, 0)
                if dependency_state == 0:
                    state[dependency] = 1
                    stack_index[dependency] = len(stack)
                    stack.append(dependency)
                    frames.append((dependency, self._iter_dependencies(dependency)))
                elif dependency_state == 1:
                    cycle = tuple(stack[stack_index[dependency] :] + [dependency])
                    cycles[_canonicalize_cycle(cycle)] = None

        return tuple(sorted(cycles))

    def blocking_chain(self, task_id: str, terminal: Mapping[str, str]) -> tuple[str, ...]:
        """
        Path from ``task_id`` through its dependencies to the first task in ``terminal``.

        ``terminal`` maps failed/blocked task IDs to a reason; the chain stops at
        the first dependency found there, preferring the shortest path.
        """
        self._assert_task_exists(task_id)
        if task_id in self._unknown:
            return (task_id,)
        previous: dict[str, str] = {}
        frontier = [task_id]
        seen = {task_id}
        while frontier:
            next_frontier: list[str] = []
            for node in frontier:
                for dependency in sorted(self._dependencies[node], key=task_sort_key):
                    if dependency in seen:
                        continue
                    seen.add(dependency)
                    previous[dependency] = node
                    if dependency in terminal:
                        chain = [dependency]
                        while chain[-1] != task_id:
                            chain.append(previous[chain[-1]])
                        return tuple(reversed(chain))
                    next_frontier.append(dependency)
            frontier = next_frontier
        return (task_id,)

    def serialize(self) -> dict[str, Any]:
        """Serialize graph to a stable JSON-friendly mapping."""
        return {
            "schema_version": TASK_GRAPH_SCHEMA_VERSION,
            "tasks": [
                {
                    "id": task_id,
                    "files": list(self._files[task_id]),
                    "dependencies": [
                        *self.get_dependencies(task_id),
                        *sorted(self._unknown.get(task_id, ()), key=task_sort_key),
                    ],
                }
                for task_id in self.tasks
            ],
            "auto_resolved": [list(edge) for edge in self.auto_resolved_edges],
        }

    @classmethod
    def deserialize(cls, payload: Mapping[str, object]) -> ConflictGraph:
        """Deserialize from :meth:`serialize` output."""
        version = payload.get("schema_version", TASK_GRAPH_SCHEMA_VERSION)
        if version != TASK_GRAPH_SCHEMA_VERSION:
            raise ValueError(f"unsupported task graph schema_version: {version!r}")

        raw_tasks = payload.get("tasks", ())
        if not isinstance(raw_tasks, Sequence) or isinstance(raw_tasks, (str, bytes)):
            raise TypeError("'tasks' must be a sequence of task objects.")

        tasks: list[Task] = []
        for index, raw in enumerate(raw_tasks):
            if not isinstance(raw, Mapping):
                raise TypeError(f"'tasks[{index}]' must be an object.")
            tasks.append(
                Task(
                    id=str(raw.get("id", "")),
                    dependencies=tuple(str(item) for item in raw.get("dependencies", ())),
                    files=tuple(str(item) for item in raw.get("files", ())),
                )
            )
        graph = cls(tasks)

        raw_auto = payload.get("auto_resolved", ())
        if not isinstance(raw_auto, Sequence):
            raise TypeError("'auto_resolved' must be a sequence of [task, dependency] pairs.")
        for index, raw_edge in enumerate(raw_auto):
            if not isinstance(raw_edge, Sequence) or len(raw_edge) != 2:
                raise ValueError(f"'auto_resolved[{index}]' must contain exactly two task IDs.")
            task_id, dependency = str(raw_edge[0]), str(raw_edge[1])
            graph.add_dependency(task_id, dependency)
            graph._auto_edges.add((task_id, dependency))
        return graph

    def _link(self, task_id: str, dependency: str) -> None:
        self._dependencies[task_id].add(dependency)
        self._dependents[dependency].add(task_id)

    def _iter_dependencies(self, task_id: str) -> Iterator[str]:
        return iter(sorted(self._dependencies[task_id], key=task_sort_key))

    def _transitive_closure(self, task_id: str, *, upstream: bool) -> tuple[str, ...]:
        adjacency = self._dependencies if upstream else self._dependents
        visited: set[str] = set()
        pending: list[str] = list(adjacency[task_id])

        while pending:
            node = pending.pop()
            if node in visited:
                continue
            visited.add(node)
            for neighbor in adjacency[node]:
                if neighbor not in visited:
                    pending.append(neighbor)

        return tuple(sorted(visited, key=task_sort_key))

    def _assert_task_exists(self, task_id: str) -> None:
        if task_id not in self._dependencies:
            raise KeyError(f"Unknown task: {task_id}")


def _normalized_files(files: Iterable[str]) -> dict[str, str]:
    """Map comparison keys to the first declared spelling of each file."""
    keyed: dict[str, str] = {}
    for original in files:
        keyed.setdefault(normalize_repo_path(original).lower(), original)
    return keyed


def _canonicalize_cycle(cycle: Sequence[str]) -> tuple[str, ...]:
    core = tuple(cycle[:-1])
    if len(core) == 1:
        return (core[0], core[0])

    best = core
    for offset in range(1, len(core)):
        rotated = core[offset:] + core[:offset]
        if rotated < best:
            best = rotated
    return best + (best[0],)


__all__ = ["ConflictGraph", "ConflictResolution", "CycleError", "FileConflict"]
