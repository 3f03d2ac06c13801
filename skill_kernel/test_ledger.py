"""
Skill Kernel — Transitions, Cascade and Undo Tests

Covers: create/update/delete ledger snapshots, cascade closure per entity
type, dependency-ordered restore, undo of every action, the undo state
machine, write-time cycle rejection, all-or-nothing failures and the level
log written beside assessments.

Run:  python -m pytest skill_kernel/test_ledger.py
"""

from __future__ import annotations

import pytest

from skill_kernel.cascade import compute_cascade, restore_plan
from skill_kernel.domain_types import ChangeHistoryEntry, TransitionResult
from skill_kernel.engine import SkillEngine
from skill_kernel.errors import (
    AlreadyUndoneError, CycleError, NotFoundError, ValidationError,
)
from skill_kernel.events import (
    BaseEvent,
    CreateEntityEvent,
    DeleteEntityEvent,
    SetAssessmentLevelEvent,
    SetTargetLevelEvent,
    UpdateEntityEvent,
)
from skill_kernel.ledger import build_entry, plan_undo


# ══════════════════════════════════════════════════════════════
# Test Fixtures
# ══════════════════════════════════════════════════════════════

class _Driver:
    """Feeds commands into an engine and keeps the ledger in a list."""

    def __init__(self) -> None:
        self.engine = SkillEngine()
        self.engine.initialize_state()
        self.ledger: list[ChangeHistoryEntry] = []

    def _apply(self, event: BaseEvent) -> TransitionResult:
        seq = self.engine.last_sequence + 1
        event.sequence = seq
        event.timestamp = f"2026-01-01T00:00:{seq:02d}Z"
        _, result = self.engine.apply_event(event)
        return result

    def run(self, event: BaseEvent) -> ChangeHistoryEntry:
        result = self._apply(event)
        entry = build_entry(
            self.engine.state, result, f"h{len(self.ledger) + 1}", event.timestamp,
        )
        self.ledger.append(entry)
        return entry

    def create(self, entity_type: str, **data) -> ChangeHistoryEntry:
        return self.run(CreateEntityEvent(payload={"entity_type": entity_type, "data": data}))

    def undo(self, entry: ChangeHistoryEntry) -> None:
        self._apply(plan_undo(entry))
        entry.undone = True

    @property
    def state(self):
        return self.engine.state


def _make_world() -> _Driver:
    """Category with two subcategories (one nested), four skills, two assessed employees."""
    d = _Driver()
    d.create("category", id="eng", name="Engineering")
    d.create("subcategory", id="backend", category_id="eng", name="Backend")
    d.create("subcategory", id="data", parent_subcategory_id="backend", name="Data")
    for sid, sub in (("api", "backend"), ("sql", "backend"), ("etl", "data"), ("dbt", "data")):
        d.create("skill", id=sid, subcategory_id=sub, name=sid.upper())
    d.create("employee", id="anna", name="Anna")
    d.create("employee", id="ben", name="Ben")
    for emp, skill, level in (("anna", "api", 50), ("anna", "etl", 75), ("ben", "dbt", 100)):
        d.run(SetAssessmentLevelEvent(payload={"employee_id": emp, "skill_id": skill, "level": level}))
    d.create("qualification_plan", id="plan1", employee_id="anna")
    d.create("qualification_measure", id="m1", plan_id="plan1", skill_id="sql", target_level=75)
    return d


# ══════════════════════════════════════════════════════════════
# Recording
# ══════════════════════════════════════════════════════════════

def test_01_create_entry_snapshots() -> None:
    d = _make_world()
    entry = d.ledger[0]
    assert entry.action == "create"
    assert entry.previous_data is None
    assert entry.new_data["id"] == "eng"
    assert entry.entity_label == "Engineering"


def test_02_nested_subcategory_inherits_category() -> None:
    d = _make_world()
    assert d.state.subcategories["data"].category_id == "eng"


def test_03_update_entry_snapshots_and_undo() -> None:
    d = _make_world()
    entry = d.run(UpdateEntityEvent(payload={
        "entity_type": "skill", "entity_id": "api", "changes": {"name": "REST"},
    }))
    assert entry.previous_data["name"] == "API"
    assert entry.new_data["name"] == "REST"
    d.undo(entry)
    assert d.state.skills["api"].name == "API"
    assert d.state.skills["api"].updated_at == entry.previous_data["updated_at"]


def test_04_assessment_level_create_then_update() -> None:
    d = _make_world()
    first = d.ledger[9]
    assert first.entity_type == "assessment" and first.action == "create"
    assert first.entity_label == "Anna / API"
    again = d.run(SetAssessmentLevelEvent(payload={
        "employee_id": "anna", "skill_id": "api", "level": 100,
    }))
    assert again.action == "update"
    assert again.previous_data["level"] == 50
    d.undo(again)
    assert d.state.get_assessment("anna", "api").level == 50
    d.undo(first)
    assert d.state.get_assessment("anna", "api") is None


def test_05_target_level_on_fresh_pair_is_a_create() -> None:
    d = _make_world()
    entry = d.run(SetTargetLevelEvent(payload={
        "employee_id": "ben", "skill_id": "api", "target_level": 75,
    }))
    assert entry.action == "create"
    assert d.state.get_assessment("ben", "api").target_level == 75
    cleared = d.run(SetTargetLevelEvent(payload={
        "employee_id": "ben", "skill_id": "api", "target_level": None,
    }))
    assert cleared.action == "update"
    assert d.state.get_assessment("ben", "api").target_level is None


# ══════════════════════════════════════════════════════════════
# Cascade
# ══════════════════════════════════════════════════════════════

def test_06_category_cascade_closure() -> None:
    d = _make_world()
    cascade = compute_cascade(d.state, "category", "eng")
    assert cascade.subcategories == ("backend", "data")
    assert cascade.skills == ("api", "dbt", "etl", "sql")
    assert len(cascade.assessments) == 3
    assert cascade.qualification_plans == ()


def test_07_employee_cascade_closure() -> None:
    d = _make_world()
    cascade = compute_cascade(d.state, "employee", "anna")
    assert len(cascade.assessments) == 2
    assert cascade.qualification_plans == ("plan1",)
    assert cascade.qualification_measures == ("m1",)


def test_08_delete_and_undo_category_restores_everything() -> None:
    d = _make_world()
    before = d.state.to_dict()
    entry = d.run(DeleteEntityEvent(payload={"entity_type": "category", "entity_id": "eng"}))
    assert entry.new_data is None
    snapshot = entry.previous_data["_cascade"]
    assert len(snapshot["subcategories"]) == 2
    assert len(snapshot["skills"]) == 4
    assert len(snapshot["assessments"]) == 3
    assert not d.state.categories and not d.state.skills and not d.state.assessments

    d.undo(entry)
    assert d.state.to_dict() == before


def test_09_delete_subcategory_takes_nested_children() -> None:
    d = _make_world()
    entry = d.run(DeleteEntityEvent(payload={"entity_type": "subcategory", "entity_id": "backend"}))
    assert set(d.state.subcategories) == set()
    assert set(d.state.skills) == set()
    assert "eng" in d.state.categories
    d.undo(entry)
    assert set(d.state.subcategories) == {"backend", "data"}


def test_10_restore_plan_orders_parents_first() -> None:
    plan = restore_plan({
        "subcategories": [
            {"id": "a", "parent_subcategory_id": "b"},
            {"id": "b", "parent_subcategory_id": None},
        ],
        "skills": [{"id": "s"}],
        "assessments": [{"id": "x"}],
    })
    assert [(t, row["id"]) for t, row in plan] == [
        ("subcategory", "b"), ("subcategory", "a"), ("skill", "s"), ("assessment", "x"),
    ]


def test_11_delete_employee_and_undo() -> None:
    d = _make_world()
    entry = d.run(DeleteEntityEvent(payload={"entity_type": "employee", "entity_id": "anna"}))
    assert "plan1" not in d.state.qualification_plans
    assert "m1" not in d.state.qualification_measures
    d.undo(entry)
    assert d.state.qualification_measures["m1"].target_level == 75
    assert d.state.get_assessment("anna", "etl").level == 75


def test_12_delete_bumps_structural_version() -> None:
    d = _make_world()
    version = d.state.structural_version
    d.run(DeleteEntityEvent(payload={"entity_type": "employee", "entity_id": "ben"}))
    assert d.state.structural_version == version
    d.run(DeleteEntityEvent(payload={"entity_type": "skill", "entity_id": "dbt"}))
    assert d.state.structural_version == version + 1


# ══════════════════════════════════════════════════════════════
# Undo state machine and failures
# ══════════════════════════════════════════════════════════════

def test_13_undo_create_removes_entity() -> None:
    d = _make_world()
    entry = d.create("department", id="dep", name="Platform")
    d.undo(entry)
    assert d.state.get("department", "dep") is None


def test_14_undo_twice_fails() -> None:
    d = _make_world()
    entry = d.create("role", id="r", name="Reviewer")
    d.undo(entry)
    with pytest.raises(AlreadyUndoneError):
        plan_undo(entry)


def test_15_undo_create_with_later_dependents_is_refused() -> None:
    d = _make_world()
    entry = d.ledger[0]
    before = d.state.to_dict()
    with pytest.raises(ValidationError):
        d.undo(entry)
    assert d.state.to_dict() == before
    assert entry.undone is False


def test_16_undo_delete_with_missing_parent_fails_atomically() -> None:
    d = _make_world()
    skill_entry = d.run(DeleteEntityEvent(payload={"entity_type": "skill", "entity_id": "etl"}))
    d.run(DeleteEntityEvent(payload={"entity_type": "subcategory", "entity_id": "data"}))
    before = d.state.to_dict()
    with pytest.raises(NotFoundError):
        d.undo(skill_entry)
    assert d.state.to_dict() == before


def test_17_cyclic_writes_are_rejected() -> None:
    d = _make_world()
    with pytest.raises(CycleError):
        d.run(UpdateEntityEvent(payload={
            "entity_type": "subcategory", "entity_id": "backend",
            "changes": {"parent_subcategory_id": "data"},
        }))
    d.create("role", id="a", name="A")
    d.create("role", id="b", name="B", inherits_from_id="a")
    with pytest.raises(CycleError):
        d.run(UpdateEntityEvent(payload={
            "entity_type": "role", "entity_id": "a", "changes": {"inherits_from_id": "b"},
        }))
    assert d.state.roles["a"].inherits_from_id is None


def test_18_validation_failures_leave_state_untouched() -> None:
    d = _make_world()
    seq = d.engine.last_sequence
    with pytest.raises(ValidationError):
        d.create("category", id="x", name="   ")
    with pytest.raises(NotFoundError):
        d.create("skill", id="y", subcategory_id="ghost", name="Y")
    with pytest.raises(ValidationError):
        d.run(SetAssessmentLevelEvent(payload={"employee_id": "anna", "skill_id": "api", "level": 30}))
    with pytest.raises(ValidationError):
        d.run(DeleteEntityEvent(payload={"entity_type": "assessment", "entity_id": "anna:api"}))
    assert d.engine.last_sequence == seq
    assert "x" not in d.state.categories


# ══════════════════════════════════════════════════════════════
# Level log
# ══════════════════════════════════════════════════════════════

def _set(d: _Driver, emp: str, skill: str, level: int) -> ChangeHistoryEntry:
    return d.run(SetAssessmentLevelEvent(payload={
        "employee_id": emp, "skill_id": skill, "level": level,
    }))


def _log_rows(d: _Driver, emp: str, skill: str) -> list:
    rows = [g for g in d.state.assessment_logs.values()
            if g.employee_id == emp and g.skill_id == skill]
    return sorted((g.timestamp, g.previous_level, g.new_level) for g in rows)


def test_19_first_levels_are_logged_from_zero() -> None:
    d = _make_world()
    assert len(d.state.assessment_logs) == 3
    [(ts, previous, new)] = _log_rows(d, "anna", "etl")
    assert (previous, new) == (0, 75)
    assert ts == d.ledger[10].timestamp
    # First writes of 0 or N/A leave no trace.
    _set(d, "ben", "api", 0)
    _set(d, "ben", "sql", -1)
    assert len(d.state.assessment_logs) == 3


def test_20_only_real_level_changes_are_logged() -> None:
    d = _make_world()
    _set(d, "anna", "api", 50)
    assert len(_log_rows(d, "anna", "api")) == 1
    _set(d, "anna", "api", 100)
    _set(d, "ben", "sql", -1)
    _set(d, "ben", "sql", 25)
    assert [row[1:] for row in _log_rows(d, "anna", "api")] == [(0, 50), (50, 100)]
    assert [row[1:] for row in _log_rows(d, "ben", "sql")] == [(-1, 25)]
    d.run(SetTargetLevelEvent(payload={
        "employee_id": "anna", "skill_id": "api", "target_level": 75,
    }))
    assert len(_log_rows(d, "anna", "api")) == 2


def test_21_level_write_carries_its_log_row() -> None:
    d = _make_world()
    result = d._apply(SetAssessmentLevelEvent(payload={
        "employee_id": "anna", "skill_id": "api", "level": 75, "note": "review",
    }))
    assert [t for t, _ in result.writes] == ["assessment", "assessment_log"]
    log = result.writes[1][1]
    assert (log["previous_level"], log["new_level"], log["note"]) == (50, 75, "review")
    assert log["id"] in d.state.assessment_logs


def test_22_logs_cascade_with_employee_and_skill() -> None:
    d = _make_world()
    assert len(compute_cascade(d.state, "employee", "anna").assessment_logs) == 2
    assert len(compute_cascade(d.state, "skill", "dbt").assessment_logs) == 1
    assert len(compute_cascade(d.state, "subcategory", "data").assessment_logs) == 2
    assert len(compute_cascade(d.state, "qualification_plan", "plan1").assessment_logs) == 0

    before = d.state.to_dict()
    entry = d.run(DeleteEntityEvent(payload={"entity_type": "employee", "entity_id": "anna"}))
    assert len(entry.previous_data["_cascade"]["assessment_logs"]) == 2
    assert {g.employee_id for g in d.state.assessment_logs.values()} == {"ben"}
    d.undo(entry)
    assert d.state.to_dict() == before


def test_23_undo_of_a_level_change_keeps_the_log() -> None:
    d = _make_world()
    entry = _set(d, "anna", "api", 100)
    d.undo(entry)
    assert d.state.get_assessment("anna", "api").level == 50
    assert [row[1:] for row in _log_rows(d, "anna", "api")] == [(0, 50), (50, 100)]


def test_24_undo_create_refused_while_logs_exist() -> None:
    d = _make_world()
    hired = d.create("employee", id="dan", name="Dan")
    first_level = _set(d, "dan", "api", 50)
    d.undo(first_level)
    assert d.state.get_assessment("dan", "api") is None
    # Only the log row is left, and it still pins the employee.
    with pytest.raises(ValidationError):
        d.undo(hired)
    assert "dan" in d.state.employees


@pytest.mark.parametrize("event", [
    CreateEntityEvent(payload={"entity_type": "assessment_log", "data": {"id": "x"}}),
    UpdateEntityEvent(payload={"entity_type": "assessment_log", "entity_id": "x", "changes": {}}),
    DeleteEntityEvent(payload={"entity_type": "assessment_log", "entity_id": "x"}),
])
def test_25_log_rows_are_not_written_directly(event) -> None:
    d = _make_world()
    with pytest.raises(ValidationError):
        d.run(event)
