# file: skill_runtime/test_runtime.py
"""
Skill Runtime -- Integration Tests

Scenario coverage:
  Phase 1: CRUD through the facade persists and survives a restart
  Phase 2: One change-log entry per mutation, newest first
  Phase 3: Validation failures write nothing
  Phase 4: Undo (create / update / cascade delete) persisted, at most once
  Phase 5: Storage failure -> resync from storage + PersistenceError
  Phase 6: Export / import / clear and the unsaved-changes fingerprint
  Phase 7: Settings, logging and metrics
  Phase 8: Level history, role-to-skill links and the forecast

Run:  python -m pytest skill_runtime/test_runtime.py
"""

from __future__ import annotations

import logging

import pytest

from skill_kernel.errors import (
    AlreadyUndoneError, CycleError, NotFoundError, PersistenceError, ValidationError,
)
from skill_kernel.snapshot import SnapshotError

from skill_runtime.change_log import ChangeLogRepository
from skill_runtime.config import Settings, load_settings, open_session
from skill_runtime.entity_repository import EntityRepository
from skill_runtime.session import SkillSession


# ══════════════════════════════════════════════════════════════
# Fixtures
# ══════════════════════════════════════════════════════════════

class _FlakyEntityRepository(EntityRepository):
    """Raises PersistenceError on the next write when armed."""

    fail_next = False

    def apply_changes(self, writes=(), removals=()):
        if self.fail_next:
            self.fail_next = False
            raise PersistenceError("disk full")
        super().apply_changes(writes, removals)


class _FlakyChangeLog(ChangeLogRepository):
    fail_next = False

    def _maybe_fail(self) -> None:
        if self.fail_next:
            self.fail_next = False
            raise PersistenceError("change log unavailable")

    def append(self, entry):
        self._maybe_fail()
        super().append(entry)

    def mark_undone(self, entry_id):
        self._maybe_fail()
        super().mark_undone(entry_id)


def _open(db_path) -> SkillSession:
    entity_repo = _FlakyEntityRepository(db_path)
    change_log = _FlakyChangeLog(db_path, conn=entity_repo.connection)
    session = SkillSession(entity_repo, change_log)
    session.initialize()
    return session


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "skills.db"


@pytest.fixture
def session(db_path) -> SkillSession:
    return _open(db_path)


def _seed(session: SkillSession) -> None:
    session.add_category({"id": "eng", "name": "Engineering"})
    session.add_subcategory({"id": "backend", "category_id": "eng", "name": "Backend"})
    session.add_skill({"id": "api", "subcategory_id": "backend", "name": "API Design"})
    session.add_employee({"id": "anna", "name": "Anna"})
    session.set_assessment_level("anna", "api", 50)


# ══════════════════════════════════════════════════════════════
# Phase 1-2: CRUD and ledger
# ══════════════════════════════════════════════════════════════

def test_01_crud_survives_restart(session, db_path) -> None:
    _seed(session)
    session.update_category("eng", {"name": "  Engineering & Data "})
    reopened = _open(db_path)
    assert reopened.get_state() == session.get_state()
    assert reopened.engine.state.categories["eng"].name == "Engineering & Data"
    assert reopened.get_assessment("anna", "api").level == 50


def test_02_generated_ids_and_timestamps(session) -> None:
    dep = session.add_department({"name": "Platform"})
    assert dep["id"]
    assert dep["updated_at"]


def test_03_one_entry_per_mutation_newest_first(session) -> None:
    _seed(session)
    changes = session.get_recent_changes()
    assert [c.entity_type for c in changes] == [
        "assessment", "employee", "skill", "subcategory", "category",
    ]
    assert changes[0].entity_label == "Anna / API Design"
    assert len(session.get_recent_changes(limit=2)) == 2
    assert session.change_log.count() == 5


def test_04_subcategory_inherits_category_from_parent(session) -> None:
    _seed(session)
    nested = session.add_subcategory({"name": "Databases", "parent_subcategory_id": "backend"})
    assert nested["category_id"] == "eng"


# ══════════════════════════════════════════════════════════════
# Phase 3: Validation
# ══════════════════════════════════════════════════════════════

@pytest.mark.parametrize("call", [
    lambda s: s.add_category({"name": "   "}),
    lambda s: s.add_category({"name": "X", "colour": "red"}),
    lambda s: s.add_subcategory({"name": "Loose"}),
    lambda s: s.add_role({"name": "R", "required_skills": [{"skill_id": "api", "level": 30}]}),
    lambda s: s.set_assessment_level("anna", "api", 42),
    lambda s: s.update_skill("api", {"id": "other"}),
    lambda s: s.update("assessment", "anna:api", {"level": 75}),
])
def test_05_validation_errors_write_nothing(session, call) -> None:
    _seed(session)
    before_state = session.get_state()
    before_count = session.change_log.count()
    with pytest.raises(ValidationError):
        call(session)
    assert session.get_state() == before_state
    assert session.change_log.count() == before_count


def test_06_missing_parent_is_not_found(session) -> None:
    with pytest.raises(NotFoundError):
        session.add_skill({"name": "Orphan", "subcategory_id": "ghost"})
    with pytest.raises(NotFoundError):
        session.update_category("ghost", {"name": "X"})
    assert session.change_log.count() == 0


def test_07_cyclic_role_inheritance_is_rejected(session) -> None:
    session.add_role({"id": "a", "name": "A"})
    session.add_role({"id": "b", "name": "B", "inherits_from_id": "a"})
    with pytest.raises(CycleError):
        session.update_role("a", {"inherits_from_id": "b"})
    assert session.engine.state.roles["a"].inherits_from_id is None


# ══════════════════════════════════════════════════════════════
# Phase 4: Undo
# ══════════════════════════════════════════════════════════════

def test_08_undo_update_and_create(session, db_path) -> None:
    _seed(session)
    session.update_skill("api", {"name": "REST"})
    session.undo(session.get_recent_changes()[0].id)
    assert session.engine.state.skills["api"].name == "API Design"

    view = session.add_saved_view({"name": "Mine", "config": {"grouping": "role"}})
    session.undo(session.get_recent_changes()[0].id)
    assert session.engine.state.saved_views == {}
    assert _open(db_path).engine.state.saved_views == {}
    assert view["config"] == {"grouping": "role"}


def test_09_undo_cascade_delete_is_persisted(session, db_path) -> None:
    _seed(session)
    before = session.get_state()
    session.delete_category("eng")
    assert session.get_assessment("anna", "api") is None
    assert _open(db_path).engine.state.skills == {}

    entry = session.get_recent_changes()[0]
    assert entry.action == "delete"
    session.undo(entry.id)
    assert session.get_state() == before
    assert _open(db_path).get_state() == before
    assert session.change_log.get_by_id(entry.id).undone is True


def test_10_undo_at_most_once(session) -> None:
    _seed(session)
    entry_id = session.get_recent_changes()[0].id
    session.undo(entry_id)
    with pytest.raises(AlreadyUndoneError):
        session.undo(entry_id)
    with pytest.raises(NotFoundError):
        session.undo("no-such-change")
    assert session.change_log.undone_count() == 1


def test_11_undo_create_with_dependents_is_refused(session) -> None:
    _seed(session)
    category_entry = session.get_recent_changes(limit=10)[-1]
    assert category_entry.entity_type == "category"
    with pytest.raises(ValidationError):
        session.undo(category_entry.id)
    assert session.change_log.get_by_id(category_entry.id).undone is False
    assert "eng" in session.engine.state.categories


# ══════════════════════════════════════════════════════════════
# Phase 5: Persistence failures
# ══════════════════════════════════════════════════════════════

def test_12_failed_write_resyncs_optimistic_value(session, db_path, caplog) -> None:
    _seed(session)
    session._entity_repo.fail_next = True
    with caplog.at_level(logging.WARNING, logger="skill_runtime.session"):
        with pytest.raises(PersistenceError):
            session.set_assessment_level("anna", "api", 100)
    assert "resynchronising" in caplog.text
    assert session.get_assessment("anna", "api").level == 50
    assert session.change_log.count() == 5
    assert session.get_state() == _open(db_path).get_state()


def test_13_failed_ledger_append_matches_storage(session, db_path) -> None:
    _seed(session)
    session._change_log.fail_next = True
    with pytest.raises(PersistenceError):
        session.set_target_level("anna", "api", 75)
    assert session.get_state() == _open(db_path).get_state()
    assert session.get_assessment("anna", "api").target_level is None
    assert session.change_log.count() == 5
    # Session keeps working after a failure
    session.set_target_level("anna", "api", 100)
    assert session.get_assessment("anna", "api").target_level == 100


def test_14_failed_undo_keeps_entry_open(session) -> None:
    _seed(session)
    entry = session.get_recent_changes()[0]
    session._entity_repo.fail_next = True
    with pytest.raises(PersistenceError):
        session.undo(entry.id)
    assert session.get_assessment("anna", "api").level == 50
    assert session.change_log.get_by_id(entry.id).undone is False


def test_14b_failed_undo_mark_rolls_back_the_restore(session, db_path) -> None:
    _seed(session)
    before = session.get_state()
    session.delete_category("eng")
    entry = session.get_recent_changes()[0]
    session._change_log.fail_next = True
    with pytest.raises(PersistenceError):
        session.undo(entry.id)
    assert session.engine.state.categories == {}
    assert _open(db_path).get_state() == session.get_state()
    assert session.change_log.get_by_id(entry.id).undone is False

    session.undo(entry.id)
    assert session.get_state() == before


# ══════════════════════════════════════════════════════════════
# Phase 6: Export / import
# ══════════════════════════════════════════════════════════════

def test_15_export_import_roundtrip(session, tmp_path) -> None:
    _seed(session)
    path = tmp_path / "export.json"
    session.export_to_file(path)
    assert not session.has_unsaved_changes()
    session.set_assessment_level("anna", "api", 75)
    assert session.has_unsaved_changes()

    other = _open(tmp_path / "other.db")
    other.add_category({"id": "old", "name": "Old"})
    other.import_from_file(path)
    assert other.engine.state.get_assessment("anna", "api").level == 50
    assert "old" not in other.engine.state.categories
    assert other.change_log.count() == 0
    assert not other.has_unsaved_changes()
    assert _open(tmp_path / "other.db").get_state() == other.get_state()


def test_16_invalid_import_leaves_store_untouched(session) -> None:
    _seed(session)
    before = session.get_state()
    with pytest.raises(SnapshotError):
        session.import_data('{"version": 1, "skills": [{"id": "s", "subcategory_id": "ghost", "name": "S"}]}')
    assert session.get_state() == before
    assert session.change_log.count() == 5


def test_17_clear_all_data(session, db_path) -> None:
    _seed(session)
    session.clear_all_data()
    assert session.engine.state.categories == {}
    assert session.change_log.count() == 0
    assert _open(db_path).get_state() == session.get_state()


# ══════════════════════════════════════════════════════════════
# Phase 7: Settings and metrics
# ══════════════════════════════════════════════════════════════

def test_18_settings_from_environment(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("SKILLGRID_DB_PATH", str(tmp_path / "env.db"))
    monkeypatch.setenv("SKILLGRID_HISTORY_LIMIT", "5")
    monkeypatch.delenv("DATABASE_URL", raising=False)
    settings = load_settings(env_file=str(tmp_path / "missing.env"))
    assert settings.history_limit == 5
    assert not settings.uses_postgres

    monkeypatch.setenv("SKILLGRID_HISTORY_LIMIT", "lots")
    with pytest.raises(ValidationError):
        load_settings(env_file=str(tmp_path / "missing.env"))


def test_19_open_session_and_metrics(tmp_path) -> None:
    session = open_session(Settings(db_path=str(tmp_path / "m.db"), history_limit=3))
    _seed(session)
    assert len(session.get_recent_changes()) == 3
    metrics = session.get_metrics()
    assert metrics.change_count == 5
    assert metrics.entity_counts["skills"] == 1
    assert metrics.data_hash == session.data_hash()
    assert metrics.warnings == []


def test_20_repository_put_and_get_all(db_path) -> None:
    repo = EntityRepository(db_path)
    repo.put("category", {"id": "b", "name": "B"})
    repo.put("category", {"id": "a", "name": "A"})
    repo.put("category", {"id": "a", "name": "A2"})
    assert [row["name"] for row in repo.get_all("category")] == ["A2", "B"]
    repo.delete("category", "b")
    assert repo.get("category", "b") is None
    repo.close()


# ══════════════════════════════════════════════════════════════
# Phase 8: Level history, role links, forecast
# ══════════════════════════════════════════════════════════════

def test_21_level_history_is_persisted(session, db_path) -> None:
    _seed(session)
    session.set_assessment_level("anna", "api", 75, note="after review")
    session.set_assessment_level("anna", "api", 75)
    session.set_target_level("anna", "api", 100)
    history = session.get_history("anna")
    assert [(g.previous_level, g.new_level) for g in history] == [(0, 50), (50, 75)]
    assert history[1].note == "after review"
    assert session.get_all_history() == history
    assert _open(db_path).get_history("anna") == history
    assert session.get_history("ghost") == []


def test_22_history_follows_employee_delete_and_undo(session, db_path) -> None:
    _seed(session)
    session.set_assessment_level("anna", "api", 100)
    session.delete_employee("anna")
    assert session.get_all_history() == []
    assert _open(db_path).get_all_history() == []
    session.undo(session.get_recent_changes()[0].id)
    assert len(_open(db_path).get_history("anna")) == 2


def test_23_xp_comparison(session) -> None:
    _seed(session)
    report = session.get_xp_comparison("year")
    assert report["current_xp"] == 50
    assert report["previous_xp"] == 0
    assert report["change_percent"] == 100


def test_24_update_skills_for_role(session, db_path) -> None:
    _seed(session)
    session.add_skill({"id": "sql", "subcategory_id": "backend", "name": "SQL"})
    session.add_skill({"id": "k8s", "subcategory_id": "backend", "name": "Kubernetes"})
    session.add_role({"id": "lead", "name": "Lead"})
    session.update_skill("k8s", {"required_by_role_ids": ["lead", "ops"]})
    count = session.change_log.count()

    assert session.update_skills_for_role("lead", ["api", "sql"]) == ["api", "k8s", "sql"]
    skills = _open(db_path).engine.state.skills
    assert skills["api"].required_by_role_ids == ["lead"]
    assert skills["sql"].required_by_role_ids == ["lead"]
    assert skills["k8s"].required_by_role_ids == ["ops"]
    assert session.change_log.count() == count + 3
    assert {c.entity_id for c in session.get_recent_changes(limit=3)} == {"api", "k8s", "sql"}

    # Nothing to change: nothing written.
    assert session.update_skills_for_role("lead", ["sql", "api"]) == []
    assert session.change_log.count() == count + 3


def test_25_update_skills_for_role_rejects_unknown_ids(session) -> None:
    _seed(session)
    session.add_role({"id": "lead", "name": "Lead"})
    count = session.change_log.count()
    with pytest.raises(NotFoundError):
        session.update_skills_for_role("ghost", ["api"])
    with pytest.raises(NotFoundError):
        session.update_skills_for_role("lead", ["api", "nope"])
    assert session.change_log.count() == count
    assert session.engine.state.skills["api"].required_by_role_ids == []


def test_26_forecast_through_the_session(session) -> None:
    _seed(session)
    session.add_qualification_plan({"id": "p1", "employee_id": "anna"})
    session.add_qualification_measure({
        "id": "m1", "plan_id": "p1", "skill_id": "api",
        "target_level": 100, "target_date": "2026-03-01",
    })
    forecast = session.get_forecast(6, reference="2026-01-10T00:00:00+00:00")
    assert forecast.kpis.completing_measure_count == 1
    assert (forecast.kpis.current_total_xp, forecast.kpis.forecast_total_xp) == (50, 100)
    assert forecast.employee_rows[0].employee_id == "anna"
