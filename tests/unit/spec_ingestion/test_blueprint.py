"""Unit tests for blueprint tag and implementation-strategy parsing."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from task_orchestrator.domain.models import (
    ExecutionRecord,
    ExecutionStatus,
    Phase,
    PhaseItem,
    PhaseStatus,
)
from task_orchestrator.spec_ingestion.blueprint import (
    BlueprintError,
    blueprint_title,
    initial_execution_record,
    parse_dependencies_tag,
    parse_files_tag,
    parse_implementation_strategy,
    read_blueprint,
    validate_implementation_strategy,
)

if TYPE_CHECKING:
    from pathlib import Path

BLUEPRINT = """# BLUEPRINT: Login form

@dependencies [TASK1, TASK2]
@files [src/login.js, src/api.js, src/login.js]

## 3.2 Success Criteria

| Criterion | Source | Command | Expected |
|-----------|--------|---------|----------|
| Login file exists | REQ-1 | `test -f src/login.js` | exists |

## 4. IMPLEMENTATION STRATEGY

### Phase 1: Scaffolding
1. Create the login component skeleton
2. Short step
3. If needed, adjust the bundler configuration
**Step 1.1: Wiring**
4. Register the `/login` route in the router table

```
1. Code blocks are never parsed as steps at all
```

### Phase 2: Validation
1. Add email validation to the form submit handler
- [ ] Checkbox lines are progress markers and skipped

## 5. Notes
1. Steps after the strategy section do not belong to any phase
"""


def test_files_tag_is_trimmed_and_deduplicated() -> None:
    assert parse_files_tag(BLUEPRINT) == ("src/login.js", "src/api.js")


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("@dependencies [TASK1, TASK2]", ("TASK1", "TASK2")),
        ("@dependencies TASK3 TASK4", ("TASK3", "TASK4")),
        ("@dependencies [none]", ()),
        ("@dependencies []", ()),
        ("no tags here", ()),
    ],
)
def test_dependencies_tag_variants(text: str, expected: tuple[str, ...]) -> None:
    assert parse_dependencies_tag(text) == expected


def test_files_tag_absent_or_empty_yields_empty_tuple() -> None:
    assert parse_files_tag("nothing declared") == ()
    assert parse_files_tag("@files []") == ()


def test_blueprint_title_strips_prefix_and_falls_back() -> None:
    assert blueprint_title(BLUEPRINT, default="TASK3") == "Login form"
    assert blueprint_title("no headings", default="TASK3") == "TASK3"


def test_implementation_strategy_extracts_phases_and_meaningful_steps() -> None:
    phases = parse_implementation_strategy(BLUEPRINT)

    assert [(phase.id, phase.name) for phase in phases] == [(1, "Scaffolding"), (2, "Validation")]
    first, second = phases
    assert [step.description for step in first.steps] == [
        "Create the login component skeleton",
        "Register the /login route in the router table",
    ]
    assert first.steps[0].source == "BLUEPRINT.md §4 Phase 1"
    assert first.steps[1].source == "BLUEPRINT.md §4 Phase 1 (Wiring)"
    assert [step.description for step in second.steps] == [
        "Add email validation to the form submit handler"
    ]


def test_implementation_strategy_missing_section_yields_no_phases() -> None:
    assert parse_implementation_strategy("# Title\n\n## 1. Overview\ntext\n") == ()


def test_initial_execution_record_mirrors_the_outline() -> None:
    record = initial_execution_record("TASK3", BLUEPRINT)

    assert record.task == "TASK3"
    assert record.title == "Login form"
    assert record.status is ExecutionStatus.PENDING
    assert [phase.id for phase in record.phases] == [1, 2]
    assert all(phase.status is PhaseStatus.PENDING for phase in record.phases)
    assert len(record.phases[0].items) == 2
    assert record.current_phase is not None
    assert (record.current_phase.id, record.current_phase.name) == (1, "Scaffolding")


def test_initial_execution_record_rejects_gapped_outline() -> None:
    gapped = BLUEPRINT.replace("### Phase 2: Validation", "### Phase 3: Validation")

    with pytest.raises(BlueprintError, match=r"numbered 1\.\.2, got \[1, 3\]"):
        initial_execution_record("TASK3", gapped)


def _record(*phases: Phase) -> ExecutionRecord:
    return ExecutionRecord(task="TASK3", title="t", phases=list(phases))


def test_strategy_validation_flags_missing_phase_and_untracked_items() -> None:
    planned = parse_implementation_strategy(BLUEPRINT)
    record = _record(Phase(id=1, name="Scaffolding", status=PhaseStatus.IN_PROGRESS))

    validation = validate_implementation_strategy(planned, record)

    assert validation.valid is False
    reasons = {issue.phase_id: issue.reason for issue in validation.missing}
    assert reasons[1] == 'Phase has no items tracked and status is "in_progress"'
    assert reasons[2] == "Phase missing from execution.json"
    assert "Phase 2: Phase missing from execution.json" in validation.message


def test_strategy_validation_warns_when_few_items_are_open() -> None:
    planned = parse_implementation_strategy(BLUEPRINT)
    items = [PhaseItem(f"item {index}", completed=index != 0) for index in range(3)]
    record = _record(
        Phase(id=1, name="Scaffolding", status=PhaseStatus.IN_PROGRESS, items=items),
        Phase(id=2, name="Validation", status=PhaseStatus.COMPLETED),
    )

    validation = validate_implementation_strategy(planned, record)

    assert validation.valid is True
    assert [issue.reason for issue in validation.warnings] == ["1/3 items pending"]


def test_strategy_validation_fails_when_most_items_are_open() -> None:
    planned = parse_implementation_strategy(BLUEPRINT)
    items = [PhaseItem(f"item {index}", completed=index == 0) for index in range(3)]
    record = _record(
        Phase(id=1, name="Scaffolding", status=PhaseStatus.IN_PROGRESS, items=items),
        Phase(id=2, name="Validation", status=PhaseStatus.COMPLETED),
    )

    validation = validate_implementation_strategy(planned, record)

    assert validation.valid is False
    assert validation.missing[0].reason == "2/3 items not completed"


def test_read_blueprint_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(BlueprintError, match="BLUEPRINT.md not found"):
        read_blueprint(tmp_path / "TASK1" / "BLUEPRINT.md")
