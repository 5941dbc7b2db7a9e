"""Unit tests for planning.conflict_graph."""

from __future__ import annotations

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from task_orchestrator.domain.models import Task
from task_orchestrator.planning.conflict_graph import ConflictGraph, CycleError


def _graph(*tasks: Task) -> ConflictGraph:
    return ConflictGraph(tasks)


def test_two_tasks_sharing_a_file_conflict_and_get_serialized() -> None:
    graph = _graph(Task("TASK1", files=("src/a.js",)), Task("TASK2", files=("src/a.js",)))

    conflicts = graph.detect_file_conflicts()
    assert len(conflicts) == 1
    assert (conflicts[0].task1, conflicts[0].task2) == ("TASK1", "TASK2")
    assert conflicts[0].files == ("src/a.js",)

    resolutions = graph.auto_resolve_conflicts(conflicts)
    assert resolutions[0].winner == "TASK1"
    assert resolutions[0].loser == "TASK2"
    assert resolutions[0].edge_added is True
    assert graph.get_dependencies("TASK2") == ("TASK1",)
    assert graph.auto_resolved_edges == (("TASK2", "TASK1"),)
    assert graph.can_run_in_parallel("TASK1", "TASK2") is False
    assert graph.detect_file_conflicts() == ()


def test_dependent_tasks_never_conflict() -> None:
    graph = _graph(
        Task("TASK1", files=("a.py",)),
        Task("TASK2", dependencies=("TASK1",), files=("a.py",)),
    )

    assert graph.detect_file_conflicts() == ()


def test_file_comparison_ignores_case_and_leading_dot_slash() -> None:
    graph = _graph(Task("TASK1", files=("./Src/App.py",)), Task("TASK2", files=("src/app.py",)))

    conflicts = graph.detect_file_conflicts()
    assert [conflict.files for conflict in conflicts] == [("./Src/App.py",)]


def test_auto_resolve_keeps_existing_reverse_order() -> None:
    graph = _graph(
        Task("TASK1", files=("x",)),
        Task("TASK2", files=("x",)),
        Task("TASK3", files=("x",)),
    )
    conflicts = graph.detect_file_conflicts()
    graph.auto_resolve_conflicts(conflicts)

    assert graph.topological_order() == ("TASK1", "TASK2", "TASK3")
    assert graph.detect_cycles() == ()


def test_suggestions_name_the_later_task_blueprint() -> None:
    graph = _graph(Task("TASK3", files=("a",)), Task("TASK4", files=("a",)))

    suggestions = ConflictGraph.suggest_dependency_fixes(graph.detect_file_conflicts())
    assert suggestions == ("Add @dependencies [TASK3] to TASK4's BLUEPRINT.md",)


def test_missing_files_and_missing_dependencies_are_reported() -> None:
    graph = _graph(Task("TASK1"), Task("TASK2", dependencies=("TASK9",), files=("b",)))

    assert graph.find_tasks_missing_files() == ("TASK1",)
    assert graph.missing_dependencies() == {"TASK2": ("TASK9",)}
    assert graph.get_ready(()) == ("TASK1",)


def test_late_declared_dependency_resolves_dangling_reference() -> None:
    graph = ConflictGraph()
    graph.add_task("TASK2")
    graph.add_dependency("TASK2", "TASK1")
    assert graph.missing_dependencies() == {"TASK2": ("TASK1",)}

    graph.add_task("TASK1")
    assert graph.missing_dependencies() == {}
    assert graph.get_dependencies("TASK2") == ("TASK1",)


def test_self_dependency_raises_cycle_error() -> None:
    graph = ConflictGraph()
    graph.add_task("TASK1")

    with pytest.raises(CycleError):
        graph.add_dependency("TASK1", "TASK1")


def test_cycles_are_detected_and_block_topological_order() -> None:
    graph = _graph(
        Task("TASK1", dependencies=("TASK2",)),
        Task("TASK2", dependencies=("TASK1",)),
        Task("TASK3"),
    )

    assert graph.detect_cycles() == (("TASK1", "TASK2", "TASK1"),)
    with pytest.raises(CycleError) as error:
        graph.topological_order()
    assert error.value.cycles


def test_get_ready_respects_completed_and_exclude() -> None:
    graph = _graph(
        Task("TASK1"),
        Task("TASK2", dependencies=("TASK1",)),
        Task("TASK3"),
    )

    assert graph.get_ready(()) == ("TASK1", "TASK3")
    assert graph.get_ready({"TASK1"}, exclude={"TASK3"}) == ("TASK2",)
    assert graph.get_ready({"TASK1", "TASK2", "TASK3"}) == ()


def test_terminal_task_sorts_last() -> None:
    graph = _graph(Task("TASKΩ"), Task("TASK10"), Task("TASK2"))

    assert graph.tasks == ("TASK2", "TASK10", "TASKΩ")


def test_blocking_chain_stops_at_first_terminal_dependency() -> None:
    graph = _graph(
        Task("TASK1"),
        Task("TASK2", dependencies=("TASK1",)),
        Task("TASK3", dependencies=("TASK2",)),
    )

    assert graph.blocking_chain("TASK3", {"TASK1": "failed"}) == ("TASK3", "TASK2", "TASK1")
    assert graph.blocking_chain("TASK3", {"TASK2": "blocked"}) == ("TASK3", "TASK2")
    assert graph.blocking_chain("TASK1", {}) == ("TASK1",)


def test_serialize_round_trip_preserves_auto_resolved_edges() -> None:
    graph = _graph(
        Task("TASK1", files=("a",)),
        Task("TASK2", files=("a",)),
        Task("TASK3", dependencies=("TASK7",)),
    )
    graph.auto_resolve_conflicts(graph.detect_file_conflicts())

    payload = graph.serialize()
    restored = ConflictGraph.deserialize(payload)

    assert restored.serialize() == payload
    assert restored.missing_dependencies() == {"TASK3": ("TASK7",)}


def test_deserialize_rejects_unknown_schema_version() -> None:
    with pytest.raises(ValueError, match="schema_version"):
        ConflictGraph.deserialize({"schema_version": 99, "tasks": []})


_FILES = st.lists(st.sampled_from(("a.py", "b.py", "c.py", "d.py")), max_size=3, unique=True)


@st.composite
def _dag_tasks(draw: st.DrawFn) -> list[Task]:
    count = draw(st.integers(min_value=1, max_value=8))
    tasks: list[Task] = []
    for index in range(1, count + 1):
        earlier = [f"TASK{n}" for n in range(1, index)]
        dependencies = draw(st.lists(st.sampled_from(earlier), unique=True)) if earlier else []
        tasks.append(Task(f"TASK{index}", tuple(dependencies), tuple(draw(_FILES))))
    return tasks


@settings(max_examples=50, deadline=None)
@given(tasks=_dag_tasks())
def test_auto_resolution_leaves_no_conflicts_and_no_cycles(tasks: list[Task]) -> None:
    graph = ConflictGraph(tasks)

    graph.auto_resolve_conflicts(graph.detect_file_conflicts())

    assert graph.detect_file_conflicts() == ()
    assert graph.detect_cycles() == ()
    assert len(graph.topological_order()) == len(tasks)


@settings(max_examples=50, deadline=None)
@given(tasks=_dag_tasks())
def test_parallel_pairs_are_symmetric_and_irreflexive(tasks: list[Task]) -> None:
    graph = ConflictGraph(tasks)

    for first in graph.tasks:
        assert graph.can_run_in_parallel(first, first) is False
        for second in graph.tasks:
            assert graph.can_run_in_parallel(first, second) == graph.can_run_in_parallel(
                second, first
            )


def _assert_dependencies_never_parallel(graph: ConflictGraph) -> None:
    for task_id in graph.tasks:
        for dependency in graph.get_dependencies(task_id, transitive=True):
            assert graph.can_run_in_parallel(task_id, dependency) is False
            assert graph.can_run_in_parallel(dependency, task_id) is False


@settings(max_examples=50, deadline=None)
@given(tasks=_dag_tasks())
def test_dependency_pairs_never_run_in_parallel(tasks: list[Task]) -> None:
    graph = ConflictGraph(tasks)
    _assert_dependencies_never_parallel(graph)

    graph.auto_resolve_conflicts(graph.detect_file_conflicts())

    _assert_dependencies_never_parallel(graph)


@settings(max_examples=50, deadline=None)
@given(tasks=_dag_tasks())
def test_topological_order_places_dependencies_first(tasks: list[Task]) -> None:
    graph = ConflictGraph(tasks)

    position = {task_id: index for index, task_id in enumerate(graph.topological_order())}
    for task_id, dependency in graph.edges:
        assert position[dependency] < position[task_id]
