"""
Skill Kernel — Invariant Checks

Hard-fail validation of the entities a transition wrote. Checks raise
NotFoundError for a dangling required reference, CycleError for a
looping parent chain and InvariantViolationError for everything else.

Only touched entities are checked, so stores loaded with legacy damage
(tolerated by the resolvers at read time) stay writable.
"""

from __future__ import annotations

from typing import Iterable, List, Tuple

from .domain_types import ENTITY_TYPES, SkillState
from .errors import CycleError, NotFoundError, SkillGridError, ValidationError
from .hierarchy import find_parent_cycle
from .levels import is_valid_level, is_valid_target
from .targets import find_inheritance_cycle

_NAMED_TYPES = frozenset({
    "category", "subcategory", "skill", "employee", "role", "department",
    "saved_view",
})


class InvariantViolationError(ValidationError):
    """Raised when a store invariant is violated."""

    def __init__(self, rule: str, detail: str) -> None:
        self.rule = rule
        self.detail = detail
        super().__init__(f"[INVARIANT:{rule}] {detail}")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def validate_entity(state: SkillState, entity_type: str, entity_id: str) -> None:
    """Check one stored entity. Missing entities pass (nothing to check)."""
    entity = state.get(entity_type, entity_id)
    if entity is None:
        return

    if entity_type in _NAMED_TYPES and not entity.name.strip():
        raise InvariantViolationError(
            "name_required", f"{entity_type} {entity_id!r} has an empty name",
        )

    checker = _CHECKS.get(entity_type)
    if checker is not None:
        checker(state, entity)


def validate_writes(state: SkillState, writes: Iterable[Tuple[str, dict]]) -> None:
    """Validate every entity named in a TransitionResult's writes."""
    for entity_type, data in writes:
        validate_entity(state, entity_type, data["id"])


def collect_violations(state: SkillState) -> List[str]:
    """Every violation in the store as a message; never raises."""
    problems: List[str] = []
    for entity_type in ENTITY_TYPES:
        for entity_id in sorted(state.collection(entity_type)):
            try:
                validate_entity(state, entity_type, entity_id)
            except SkillGridError as exc:
                problems.append(str(exc))
    return problems


def validate_state(state: SkillState) -> None:
    """Raise on the first violation anywhere in the store."""
    for entity_type in ENTITY_TYPES:
        for entity_id in sorted(state.collection(entity_type)):
            validate_entity(state, entity_type, entity_id)


# ---------------------------------------------------------------------------
# Individual checks (private)
# ---------------------------------------------------------------------------

def _check_subcategory(state: SkillState, sc) -> None:
    if sc.category_id not in state.categories:
        raise NotFoundError("category", sc.category_id)

    if sc.parent_subcategory_id:
        parent = state.subcategories.get(sc.parent_subcategory_id)
        if parent is None:
            raise NotFoundError("subcategory", sc.parent_subcategory_id)
        cycle = find_parent_cycle(state, sc.id)
        if cycle is not None and sc.id in cycle:
            raise CycleError("subcategory parent", cycle)
        if parent.category_id != sc.category_id:
            raise InvariantViolationError(
                "category_denormalised",
                f"Subcategory {sc.id!r} is in category {sc.category_id!r} "
                f"but its parent {parent.id!r} is in {parent.category_id!r}",
            )

    for child in state.subcategories.values():
        if child.parent_subcategory_id == sc.id and child.category_id != sc.category_id:
            raise InvariantViolationError(
                "category_denormalised",
                f"Subcategory {sc.id!r} cannot leave category "
                f"{child.category_id!r} while child {child.id!r} remains in it",
            )


def _check_skill(state: SkillState, skill) -> None:
    if skill.subcategory_id not in state.subcategories:
        raise NotFoundError("subcategory", skill.subcategory_id)


def _check_role(state: SkillState, role) -> None:
    seen = set()
    for req in role.required_skills:
        if req.skill_id in seen:
            raise InvariantViolationError(
                "role_requirements",
                f"Role {role.id!r} lists skill {req.skill_id!r} twice",
            )
        seen.add(req.skill_id)
        if not is_valid_target(req.level):
            raise InvariantViolationError(
                "level_domain",
                f"Role {role.id!r} requires invalid level {req.level!r} "
                f"for skill {req.skill_id!r}",
            )
    cycle = find_inheritance_cycle(state, role.id)
    if cycle is not None and role.id in cycle:
        raise CycleError("role inheritance", cycle)


def _check_assessment(state: SkillState, a) -> None:
    if a.employee_id not in state.employees:
        raise NotFoundError("employee", a.employee_id)
    if a.skill_id not in state.skills:
        raise NotFoundError("skill", a.skill_id)
    if not is_valid_level(a.level):
        raise InvariantViolationError(
            "level_domain", f"Assessment {a.id!r} has invalid level {a.level!r}",
        )
    if a.target_level is not None and not is_valid_target(a.target_level):
        raise InvariantViolationError(
            "level_domain",
            f"Assessment {a.id!r} has invalid target {a.target_level!r}",
        )


def _check_assessment_log(state: SkillState, log) -> None:
    if log.employee_id not in state.employees:
        raise NotFoundError("employee", log.employee_id)
    if log.skill_id not in state.skills:
        raise NotFoundError("skill", log.skill_id)
    for level in (log.previous_level, log.new_level):
        if not is_valid_level(level):
            raise InvariantViolationError(
                "level_domain", f"Log row {log.id!r} has invalid level {level!r}",
            )


def _check_plan(state: SkillState, plan) -> None:
    if plan.employee_id not in state.employees:
        raise NotFoundError("employee", plan.employee_id)


def _check_measure(state: SkillState, measure) -> None:
    if measure.plan_id not in state.qualification_plans:
        raise NotFoundError("qualification_plan", measure.plan_id)
    if not is_valid_level(measure.start_level):
        raise InvariantViolationError(
            "level_domain",
            f"Measure {measure.id!r} has invalid start level {measure.start_level!r}",
        )
    if not is_valid_target(measure.target_level):
        raise InvariantViolationError(
            "level_domain",
            f"Measure {measure.id!r} has invalid target {measure.target_level!r}",
        )


_CHECKS = {
    "subcategory": _check_subcategory,
    "skill": _check_skill,
    "role": _check_role,
    "assessment": _check_assessment,
    "assessment_log": _check_assessment_log,
    "qualification_plan": _check_plan,
    "qualification_measure": _check_measure,
}
