"""
Skill Kernel — Cascade Closure

Phase one of a delete: compute every dependent that goes with the
primary entity, without touching the state. Phase two (removal) lives
in transitions.py and consumes the CascadeSet computed here.

    category            -> subcategory subtree, their skills, assessments,
                           level log rows
    subcategory         -> nested subcategories, their skills, assessments,
                           level log rows
    skill               -> assessments, level log rows
    employee            -> assessments, level log rows, qualification plans,
                           their measures
    qualification_plan  -> measures
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Set, Tuple

from .constants import CASCADE_RESTORE_ORDER
from .domain_types import COLLECTION_TO_TYPE, SkillState, entity_to_dict
from .hierarchy import (
    NODE_CATEGORY, NODE_SUBCATEGORY, build_child_index, skills_under,
    walk_subcategories,
)


@dataclass(frozen=True)
class CascadeSet:
    """Ids of every dependent, grouped by collection."""

    subcategories: Tuple[str, ...] = ()
    skills: Tuple[str, ...] = ()
    assessments: Tuple[str, ...] = ()
    assessment_logs: Tuple[str, ...] = ()
    qualification_plans: Tuple[str, ...] = ()
    qualification_measures: Tuple[str, ...] = ()

    def items(self) -> Iterator[Tuple[str, Tuple[str, ...]]]:
        """(collection, ids) pairs in restore order."""
        for collection in CASCADE_RESTORE_ORDER:
            yield collection, getattr(self, collection)

    def total(self) -> int:
        return sum(len(ids) for _, ids in self.items())


def _assessments_for_skills(state: SkillState, skill_ids: Set[str]) -> Set[str]:
    return {a.id for a in state.assessments.values() if a.skill_id in skill_ids}


def _logs_for_skills(state: SkillState, skill_ids: Set[str]) -> Set[str]:
    return {g.id for g in state.assessment_logs.values() if g.skill_id in skill_ids}


def compute_cascade(
    state: SkillState,
    entity_type: str,
    entity_id: str,
    diagnostics: Optional[List[str]] = None,
) -> CascadeSet:
    """Dependents of ``(entity_type, entity_id)``. Pure."""
    if entity_type in ("category", "subcategory"):
        index = build_child_index(state)
        if entity_type == "category":
            subs = walk_subcategories(index, entity_id, NODE_CATEGORY, diagnostics)
            # Nodes whose denormalised category points here but whose
            # parent chain does not, plus everything below them.
            stray = {
                sc.id for sc in state.subcategories.values()
                if sc.category_id == entity_id and sc.id not in subs
            }
            for sc_id in stray:
                subs.add(sc_id)
                subs |= walk_subcategories(index, sc_id, NODE_SUBCATEGORY, diagnostics)
            skills = skills_under(state, subs)
        else:
            subs = walk_subcategories(index, entity_id, NODE_SUBCATEGORY, diagnostics)
            skills = skills_under(state, subs | {entity_id})
        return CascadeSet(
            subcategories=tuple(sorted(subs)),
            skills=tuple(sorted(skills)),
            assessments=tuple(sorted(_assessments_for_skills(state, skills))),
            assessment_logs=tuple(sorted(_logs_for_skills(state, skills))),
        )

    if entity_type == "skill":
        return CascadeSet(
            assessments=tuple(sorted(_assessments_for_skills(state, {entity_id}))),
            assessment_logs=tuple(sorted(_logs_for_skills(state, {entity_id}))),
        )

    if entity_type == "employee":
        plans = {p.id for p in state.qualification_plans.values() if p.employee_id == entity_id}
        return CascadeSet(
            assessments=tuple(sorted(
                a.id for a in state.assessments.values() if a.employee_id == entity_id
            )),
            assessment_logs=tuple(sorted(
                g.id for g in state.assessment_logs.values() if g.employee_id == entity_id
            )),
            qualification_plans=tuple(sorted(plans)),
            qualification_measures=tuple(sorted(
                m.id for m in state.qualification_measures.values() if m.plan_id in plans
            )),
        )

    if entity_type == "qualification_plan":
        return CascadeSet(
            qualification_measures=tuple(sorted(
                m.id for m in state.qualification_measures.values() if m.plan_id == entity_id
            )),
        )

    return CascadeSet()


def cascade_snapshot(state: SkillState, cascade: CascadeSet) -> Dict[str, List[dict]]:
    """Entity dicts for every cascade member, ready for the ledger."""
    snapshot: Dict[str, List[dict]] = {}
    for collection, ids in cascade.items():
        entities = getattr(state, collection)
        snapshot[collection] = [entity_to_dict(entities[i]) for i in ids if i in entities]
    return snapshot


def _parents_first(subcategories: List[dict]) -> List[dict]:
    """Order subcategory dicts so that every parent precedes its children."""
    pending = {d["id"]: d for d in subcategories}
    ordered: List[dict] = []
    while pending:
        ready = sorted(
            sid for sid, d in pending.items()
            if d.get("parent_subcategory_id") not in pending
        )
        if not ready:
            # A loop inside the snapshot; keep the remaining order stable.
            ready = sorted(pending)
        for sid in ready:
            ordered.append(pending.pop(sid))
    return ordered


def restore_plan(snapshot: Dict[str, List[dict]]) -> List[Tuple[str, dict]]:
    """
    ``(entity_type, data)`` pairs for re-inserting a cascade snapshot in
    dependency order: subcategories (parents first), skills, assessments,
    log rows, plans, measures.
    """
    plan: List[Tuple[str, dict]] = []
    for collection in CASCADE_RESTORE_ORDER:
        rows = list(snapshot.get(collection) or [])
        if collection == "subcategories":
            rows = _parents_first(rows)
        etype = COLLECTION_TO_TYPE[collection]
        plan.extend((etype, row) for row in rows)
    return plan
