# file: skill_runtime/session.py
"""
Skill Session — orchestrates engine + persistence (the mutation facade).

Apply-before-persist order for every mutation:
  1. validate input (pydantic models)   — may raise ValidationError
  2. engine.apply_event(command)        — may raise NotFound/Validation/Cycle
  3. entity_repo.apply_changes(...)     — only if step 2 succeeded
  4. change_log.append(entry)           — same transaction as step 3

Step 2 is the optimistic write: readers see the new value before
storage confirms it. Steps 3 and 4 commit together or not at all; if
either raises PersistenceError the in-memory store is resynchronised
from storage and the error re-raised.
"""

from __future__ import annotations

import logging
import pathlib
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from skill_kernel.constants import DEFAULT_FORECAST_MONTHS, DEFAULT_HISTORY_LIMIT, MODE_AVERAGE
from skill_kernel.domain_types import (
    Assessment, AssessmentLog, ChangeHistoryEntry, Employee, SkillState,
    TransitionResult, entity_to_dict,
)
from skill_kernel.engine import SkillEngine
from skill_kernel.errors import NotFoundError, PersistenceError
from skill_kernel.events import (
    BaseEvent,
    CreateEntityEvent,
    DeleteEntityEvent,
    SetAssessmentLevelEvent,
    SetTargetLevelEvent,
    UpdateEntityEvent,
)
from skill_kernel.forecast import Forecast, generate_forecast
from skill_kernel.hashing import has_unsaved_changes
from skill_kernel.insights import (
    PERIOD_QUARTER, Moment, SkillGap, employee_summary, get_role_skills,
)
from skill_kernel.ledger import build_entry, plan_undo
from skill_kernel.snapshot import encode_snapshot, restore_snapshot
from skill_kernel.state import create_initial_state, state_from_collections

from .change_log import ChangeLogRepository
from .entity_repository import EntityRepository
from .inputs import parse_changes, parse_input, require_writable

if TYPE_CHECKING:
    from .observability import SessionMetrics

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return str(uuid.uuid4())


class SkillSession:
    """
    Single-writer facade over a SkillEngine and its two repositories.

    Every entity mutation writes exactly one change-log entry; undo marks
    an entry consumed without writing a new one.
    """

    def __init__(
        self,
        entity_repo: EntityRepository,
        change_log: ChangeLogRepository,
        engine: Optional[SkillEngine] = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        self._entity_repo = entity_repo
        self._change_log = change_log
        self._engine = engine or SkillEngine()
        self._history_limit = history_limit
        self._last_saved_hash: str = ""

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Load every collection from storage into a fresh engine state."""
        self._load_from_storage()
        state = self._engine.state
        logger.info(
            "Session initialised: %d categories, %d skills, %d employees",
            len(state.categories), len(state.skills), len(state.employees),
        )

    def refresh(self) -> None:
        """Discard the in-memory store and reload it from storage."""
        self._load_from_storage()
        logger.info("Session refreshed from storage")

    def _load_from_storage(self) -> None:
        collections = self._entity_repo.load_collections()
        self._engine.load_state(state_from_collections(collections))

    # ------------------------------------------------------------------
    # Commit (apply-before-persist)
    # ------------------------------------------------------------------

    def _apply(self, event: BaseEvent) -> Tuple[SkillState, TransitionResult]:
        event.sequence = self._engine.last_sequence + 1
        event.timestamp = _now()
        event.event_uuid = event.event_uuid or _new_id()
        return self._engine.apply_event(event)

    def _commit(self, event: BaseEvent) -> ChangeHistoryEntry:
        state, result = self._apply(event)
        entry = build_entry(state, result, _new_id(), event.timestamp)
        try:
            with self._entity_repo.transaction():
                self._entity_repo.apply_changes(result.writes, result.removals)
                self._change_log.append(entry)
        except PersistenceError:
            self._resync(f"{result.action} {result.entity_type} {result.entity_id!r}")
            raise
        logger.debug(
            "Committed %s %s %r (%d write(s), %d removal(s))",
            result.action, result.entity_type, result.entity_id,
            len(result.writes), len(result.removals),
        )
        return entry

    def _resync(self, what: str) -> None:
        logger.warning("Persisting %s failed; resynchronising from storage", what)
        self.refresh()

    # ------------------------------------------------------------------
    # Generic entity CRUD
    # ------------------------------------------------------------------

    def create(self, entity_type: str, data: Dict[str, Any]) -> dict:
        """Create an entity; an ``id`` in *data* is kept, otherwise one is generated."""
        data = dict(data)
        entity_id = data.pop("id", None) or _new_id()
        clean = parse_input(entity_type, data)
        clean["id"] = entity_id
        self._commit(CreateEntityEvent(payload={"entity_type": entity_type, "data": clean}))
        return self._snapshot(entity_type, entity_id)

    def update(self, entity_type: str, entity_id: str, changes: Dict[str, Any]) -> dict:
        require_writable(entity_type)
        current = self._engine.state.get(entity_type, entity_id)
        if current is None:
            raise NotFoundError(entity_type, entity_id)
        clean = parse_changes(entity_type, entity_to_dict(current), changes)
        self._commit(UpdateEntityEvent(payload={
            "entity_type": entity_type, "entity_id": entity_id, "changes": clean,
        }))
        return self._snapshot(entity_type, entity_id)

    def delete(self, entity_type: str, entity_id: str) -> None:
        """Delete an entity together with its dependents."""
        self._commit(DeleteEntityEvent(payload={
            "entity_type": entity_type, "entity_id": entity_id,
        }))

    def _snapshot(self, entity_type: str, entity_id: str) -> dict:
        return entity_to_dict(self._engine.state.get(entity_type, entity_id))

    # ------------------------------------------------------------------
    # Named mutations
    # ------------------------------------------------------------------

    def add_category(self, data: Dict[str, Any]) -> dict:
        return self.create("category", data)

    def update_category(self, category_id: str, changes: Dict[str, Any]) -> dict:
        return self.update("category", category_id, changes)

    def delete_category(self, category_id: str) -> None:
        self.delete("category", category_id)

    def add_subcategory(self, data: Dict[str, Any]) -> dict:
        return self.create("subcategory", data)

    def update_subcategory(self, subcategory_id: str, changes: Dict[str, Any]) -> dict:
        return self.update("subcategory", subcategory_id, changes)

    def delete_subcategory(self, subcategory_id: str) -> None:
        self.delete("subcategory", subcategory_id)

    def add_skill(self, data: Dict[str, Any]) -> dict:
        return self.create("skill", data)

    def update_skill(self, skill_id: str, changes: Dict[str, Any]) -> dict:
        return self.update("skill", skill_id, changes)

    def delete_skill(self, skill_id: str) -> None:
        self.delete("skill", skill_id)

    def add_employee(self, data: Dict[str, Any]) -> dict:
        return self.create("employee", data)

    def update_employee(self, employee_id: str, changes: Dict[str, Any]) -> dict:
        return self.update("employee", employee_id, changes)

    def delete_employee(self, employee_id: str) -> None:
        self.delete("employee", employee_id)

    def add_role(self, data: Dict[str, Any]) -> dict:
        return self.create("role", data)

    def update_role(self, role_id: str, changes: Dict[str, Any]) -> dict:
        return self.update("role", role_id, changes)

    def delete_role(self, role_id: str) -> None:
        self.delete("role", role_id)

    def update_skills_for_role(self, role_id: str, skill_ids: Iterable[str]) -> List[str]:
        """
        Make *skill_ids* exactly the skills that name *role_id* in
        ``required_by_role_ids``. Each changed skill is its own ledger
        entry; unchanged skills are not written. Returns the changed ids.
        """
        if role_id not in self._engine.state.roles:
            raise NotFoundError("role", role_id)
        wanted = set(skill_ids)
        skills = self._engine.state.skills
        for skill_id in sorted(wanted):
            if skill_id not in skills:
                raise NotFoundError("skill", skill_id)

        changed: List[str] = []
        for skill_id in sorted(skills):
            current = list(skills[skill_id].required_by_role_ids)
            if skill_id in wanted and role_id not in current:
                updated = current + [role_id]
            elif skill_id not in wanted and role_id in current:
                updated = [r for r in current if r != role_id]
            else:
                continue
            self.update("skill", skill_id, {"required_by_role_ids": updated})
            changed.append(skill_id)
        logger.info("Role %r now linked to %d skill(s); %d changed", role_id, len(wanted), len(changed))
        return changed

    def add_department(self, data: Dict[str, Any]) -> dict:
        return self.create("department", data)

    def update_department(self, department_id: str, changes: Dict[str, Any]) -> dict:
        return self.update("department", department_id, changes)

    def delete_department(self, department_id: str) -> None:
        self.delete("department", department_id)

    def add_qualification_plan(self, data: Dict[str, Any]) -> dict:
        return self.create("qualification_plan", data)

    def update_qualification_plan(self, plan_id: str, changes: Dict[str, Any]) -> dict:
        return self.update("qualification_plan", plan_id, changes)

    def delete_qualification_plan(self, plan_id: str) -> None:
        self.delete("qualification_plan", plan_id)

    def add_qualification_measure(self, data: Dict[str, Any]) -> dict:
        return self.create("qualification_measure", data)

    def update_qualification_measure(self, measure_id: str, changes: Dict[str, Any]) -> dict:
        return self.update("qualification_measure", measure_id, changes)

    def delete_qualification_measure(self, measure_id: str) -> None:
        self.delete("qualification_measure", measure_id)

    def add_saved_view(self, data: Dict[str, Any]) -> dict:
        return self.create("saved_view", data)

    def update_saved_view(self, view_id: str, changes: Dict[str, Any]) -> dict:
        return self.update("saved_view", view_id, changes)

    def delete_saved_view(self, view_id: str) -> None:
        self.delete("saved_view", view_id)

    # ------------------------------------------------------------------
    # Assessments (create-on-write)
    # ------------------------------------------------------------------

    def set_assessment_level(
        self, employee_id: str, skill_id: str, level: int, note: str = "",
    ) -> dict:
        """Set a level; a change is also recorded in the level log with *note*."""
        payload = {"employee_id": employee_id, "skill_id": skill_id, "level": level}
        if note:
            payload["note"] = note
        self._commit(SetAssessmentLevelEvent(payload=payload))
        return entity_to_dict(self._engine.get_assessment(employee_id, skill_id))

    def set_target_level(
        self, employee_id: str, skill_id: str, target_level: Optional[int] = None,
    ) -> dict:
        """Set or clear (``None``) the individual target of a pair."""
        self._commit(SetTargetLevelEvent(payload={
            "employee_id": employee_id, "skill_id": skill_id, "target_level": target_level,
        }))
        return entity_to_dict(self._engine.get_assessment(employee_id, skill_id))

    # ------------------------------------------------------------------
    # Change ledger
    # ------------------------------------------------------------------

    def undo(self, entry_id: str) -> None:
        """
        Apply the inverse of a recorded change and mark it consumed.

        Unknown id -> NotFoundError; consumed entry -> AlreadyUndoneError.
        A kernel failure leaves both the store and the entry untouched.
        """
        entry = self._change_log.get_by_id(entry_id)
        if entry is None:
            raise NotFoundError("change", entry_id)
        _, result = self._apply(plan_undo(entry))
        try:
            with self._entity_repo.transaction():
                self._entity_repo.apply_changes(result.writes, result.removals)
                self._change_log.mark_undone(entry_id)
        except PersistenceError:
            self._resync(f"undo of change {entry_id!r}")
            raise
        logger.info(
            "Undid %s of %s %r (change %s)",
            entry.action, entry.entity_type, entry.entity_id, entry_id,
        )

    def get_recent_changes(self, limit: Optional[int] = None) -> List[ChangeHistoryEntry]:
        """Newest first; *limit* defaults to the configured history size."""
        return self._change_log.get_recent(self._history_limit if limit is None else limit)

    # ------------------------------------------------------------------
    # Export / import (destructive)
    # ------------------------------------------------------------------

    def export_data(self) -> str:
        """Canonical JSON of every collection; remembers its fingerprint."""
        text = encode_snapshot(self._engine.state)
        self._last_saved_hash = self._engine.data_hash()
        return text

    def export_to_file(self, path: Union[str, pathlib.Path]) -> None:
        pathlib.Path(path).write_text(self.export_data(), encoding="utf-8")

    def import_data(self, json_str: str) -> None:
        """
        Replace the whole store with a snapshot and clear the change log.
        The snapshot is validated completely before storage is touched.
        """
        state = restore_snapshot(json_str)
        try:
            with self._entity_repo.transaction():
                count = self._entity_repo.replace_all(state.to_dict())
                self._change_log.clear()
        except PersistenceError:
            self._resync("import")
            raise
        self._engine.load_state(state)
        self._last_saved_hash = self._engine.data_hash()
        logger.info("Imported %d entities; change log cleared", count)

    def import_from_file(self, path: Union[str, pathlib.Path]) -> None:
        self.import_data(pathlib.Path(path).read_text(encoding="utf-8"))

    def clear_all_data(self) -> None:
        try:
            with self._entity_repo.transaction():
                self._entity_repo.clear()
                self._change_log.clear()
        except PersistenceError:
            self._resync("clear")
            raise
        self._engine.load_state(create_initial_state())
        logger.info("All data cleared")

    def has_unsaved_changes(self) -> bool:
        """True when the store differs from the last export or import."""
        return has_unsaved_changes(self._engine.state, self._last_saved_hash)

    # ------------------------------------------------------------------
    # Query delegates
    # ------------------------------------------------------------------

    def get_assessment(self, employee_id: str, skill_id: str) -> Optional[Assessment]:
        return self._engine.get_assessment(employee_id, skill_id)

    def aggregate(
        self,
        skill_ids: Iterable[str],
        employees: Optional[Sequence[Union[Employee, str]]] = None,
        mode: str = MODE_AVERAGE,
        diagnostics: Optional[List[str]] = None,
    ) -> Optional[int]:
        return self._engine.aggregate(skill_ids, employees, mode, diagnostics)

    def aggregate_node(
        self,
        node_id: str,
        employees: Optional[Sequence[Union[Employee, str]]] = None,
        mode: str = MODE_AVERAGE,
    ) -> Optional[int]:
        return self._engine.aggregate_node(node_id, employees, mode)

    def employee_score(
        self, employee_id: str, skill_ids: Iterable[str], mode: str = MODE_AVERAGE,
    ) -> Optional[int]:
        return self._engine.employee_score(employee_id, skill_ids, mode)

    def resolve_role_target(self, role_ref: str, skill_id: str) -> Optional[int]:
        return self._engine.resolve_role_target(role_ref, skill_id)

    def descendant_skill_ids(self, node_id: str) -> frozenset:
        return self._engine.descendant_skill_ids(node_id)

    def descendant_subcategory_ids(self, node_id: str) -> frozenset:
        return self._engine.descendant_subcategory_ids(node_id)

    def select_employees(self, **filters) -> List[Employee]:
        return self._engine.select_employees(**filters)

    def get_skill_gaps(
        self, employee_id: str, target_role_id: Optional[str] = None,
    ) -> List[SkillGap]:
        return self._engine.get_skill_gaps(employee_id, target_role_id)

    def get_potential_mentors(
        self,
        skill_id: str,
        exclude_employee_id: Optional[str] = None,
        active_only: bool = False,
    ) -> List[Employee]:
        return self._engine.get_potential_mentors(skill_id, exclude_employee_id, active_only)

    def get_history(self, employee_id: str) -> List[AssessmentLog]:
        return self._engine.get_history(employee_id)

    def get_all_history(self) -> List[AssessmentLog]:
        return self._engine.get_all_history()

    def get_xp_comparison(
        self, period: str = PERIOD_QUARTER, reference: Optional[Moment] = None,
    ) -> dict:
        return self._engine.xp_comparison(period, reference)

    def get_forecast(
        self, horizon_months: int = DEFAULT_FORECAST_MONTHS, reference: Optional[Moment] = None,
    ) -> Forecast:
        return generate_forecast(self._engine.state, horizon_months, reference)

    def get_role_skills(self, role_ref: str) -> List[str]:
        return get_role_skills(self._engine.state, role_ref)

    def get_employee_summary(self, employee_id: str) -> dict:
        return employee_summary(self._engine.state, employee_id)

    def data_hash(self) -> str:
        return self._engine.data_hash()

    def get_state(self) -> dict:
        return self._engine.state.to_dict()

    def get_diagnostics(self) -> dict:
        return self._engine.get_diagnostics()

    def get_metrics(self) -> "SessionMetrics":
        from .observability import collect_metrics
        return collect_metrics(self)

    @property
    def engine(self) -> SkillEngine:
        return self._engine

    @property
    def change_log(self) -> ChangeLogRepository:
        return self._change_log
