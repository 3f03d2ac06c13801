"""
Skill Kernel — Aggregation Engine

Roll-up scores over a skill set and an employee population. All three
modes derive the per-(employee, skill) level through ``resolve_pair``,
and a single-employee score is simply ``aggregate`` over a one-element
roster, so row summaries and global summaries cannot drift apart.

Rounding is half-up (``x.5`` goes up), not Python's banker's rounding.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Union

from .constants import (
    AGGREGATION_MODES, MAX_LEVEL, MODE_AVERAGE, MODE_FULFILLMENT,
    MODE_MAXIMUM, NA_LEVEL,
)
from .domain_types import Assessment, Employee, SkillState
from .errors import NotFoundError, ValidationError
from .targets import find_role, max_role_target


# ---------------------------------------------------------------------------
# Effective level
# ---------------------------------------------------------------------------

class LevelKind(Enum):
    UNSET = "unset"                    # no assessment, no role expectation
    NOT_APPLICABLE = "not_applicable"  # explicit level -1
    LEVEL = "level"


@dataclass(frozen=True)
class EffectiveLevel:
    kind: LevelKind
    value: int = 0

    @property
    def counts(self) -> bool:
        return self.kind is LevelKind.LEVEL


UNSET = EffectiveLevel(LevelKind.UNSET)
NOT_APPLICABLE = EffectiveLevel(LevelKind.NOT_APPLICABLE)


@dataclass(frozen=True)
class PairResolution:
    """Everything aggregation needs to know about one (employee, skill)."""

    effective: EffectiveLevel
    assessment: Optional[Assessment]
    role_target: Optional[int]

    @property
    def individual_target(self) -> int:
        if self.assessment is None or self.assessment.target_level is None:
            return 0
        return self.assessment.target_level

    @property
    def effective_target(self) -> int:
        return max(self.individual_target, self.role_target or 0)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def resolve_pair(
    state: SkillState,
    employee: Employee,
    skill_id: str,
    diagnostics: Optional[List[str]] = None,
) -> PairResolution:
    assessment = state.get_assessment(employee.id, skill_id)
    role_target = max_role_target(state, employee.roles, skill_id, diagnostics)

    if assessment is None:
        if role_target is not None and role_target > 0:
            effective = EffectiveLevel(LevelKind.LEVEL, 0)
        else:
            effective = UNSET
    elif assessment.level == NA_LEVEL:
        effective = NOT_APPLICABLE
    else:
        effective = EffectiveLevel(LevelKind.LEVEL, assessment.level)
    return PairResolution(effective, assessment, role_target)


def effective_level(
    state: SkillState,
    employee: Employee,
    skill_id: str,
    diagnostics: Optional[List[str]] = None,
) -> EffectiveLevel:
    return resolve_pair(state, employee, skill_id, diagnostics).effective


def effective_target(
    state: SkillState,
    employee: Employee,
    skill_id: str,
    diagnostics: Optional[List[str]] = None,
) -> int:
    return resolve_pair(state, employee, skill_id, diagnostics).effective_target


def pair_fulfillment(level: int, target: int) -> int:
    """Percentage of *target* reached, capped at 100."""
    return min(MAX_LEVEL, round_half_up(level / target * 100))


# ---------------------------------------------------------------------------
# Roster
# ---------------------------------------------------------------------------

def select_employees(
    state: SkillState,
    departments: Optional[Iterable[str]] = None,
    roles: Optional[Iterable[str]] = None,
    include_inactive: bool = False,
) -> List[Employee]:
    """
    Filtered roster sorted by name. *departments* match an employee's
    department by id or name; *roles* match any held role by id or name.
    """
    dept_keys = None
    if departments is not None:
        dept_keys = set()
        for ref in departments:
            dept_keys.add(ref)
            dept = state.departments.get(ref)
            if dept is not None:
                dept_keys.add(dept.name)

    role_ids = None
    if roles is not None:
        role_ids = set()
        for ref in roles:
            role = find_role(state, ref)
            if role is not None:
                role_ids.add(role.id)

    selected = []
    for emp in state.employees.values():
        if not emp.is_active and not include_inactive:
            continue
        if dept_keys is not None and emp.department not in dept_keys:
            continue
        if role_ids is not None:
            held = {r.id for r in (find_role(state, ref) for ref in emp.roles) if r}
            if not held & role_ids:
                continue
        selected.append(emp)
    return sorted(selected, key=lambda e: (e.name.lower(), e.id))


def _as_employees(
    state: SkillState,
    employees: Sequence[Union[Employee, str]],
) -> List[Employee]:
    resolved = []
    for item in employees:
        if isinstance(item, Employee):
            resolved.append(item)
            continue
        emp = state.employees.get(item)
        if emp is None:
            raise NotFoundError("employee", item)
        resolved.append(emp)
    return resolved


# ---------------------------------------------------------------------------
# Modes
# ---------------------------------------------------------------------------

def _average(
    state: SkillState,
    skill_ids: List[str],
    employees: List[Employee],
    diagnostics: Optional[List[str]],
) -> Optional[int]:
    total = 0
    count = 0
    for emp in employees:
        for skill_id in skill_ids:
            eff = resolve_pair(state, emp, skill_id, diagnostics).effective
            if eff.counts:
                total += eff.value
                count += 1
    if count == 0:
        return None
    return round_half_up(total / count)


def _maximum(
    state: SkillState,
    skill_ids: List[str],
    employees: List[Employee],
    diagnostics: Optional[List[str]],
) -> Optional[int]:
    best: Optional[int] = None
    for emp in employees:
        score = _average(state, skill_ids, [emp], diagnostics)
        if score is not None and (best is None or score > best):
            best = score
    return best


def _fulfillment(
    state: SkillState,
    skill_ids: List[str],
    employees: List[Employee],
    diagnostics: Optional[List[str]],
) -> Optional[int]:
    percentages: List[int] = []
    for emp in employees:
        for skill_id in skill_ids:
            pair = resolve_pair(state, emp, skill_id, diagnostics)
            target = pair.effective_target
            if target <= 0:
                continue
            if pair.effective.counts:
                level = pair.effective.value
            elif pair.effective.kind is LevelKind.NOT_APPLICABLE and (pair.role_target or 0) > 0:
                level = 0
            else:
                continue
            percentages.append(pair_fulfillment(level, target))
    if not percentages:
        return None
    return round_half_up(sum(percentages) / len(percentages))


def aggregate(
    state: SkillState,
    skill_ids: Iterable[str],
    employees: Optional[Sequence[Union[Employee, str]]] = None,
    mode: str = MODE_AVERAGE,
    diagnostics: Optional[List[str]] = None,
) -> Optional[int]:
    """
    Roll-up score in *mode* (average | maximum | fulfillment).

    An empty skill set scores 0. None means "no data": every pair was
    excluded. *employees* defaults to the active roster.
    """
    if mode not in AGGREGATION_MODES:
        raise ValidationError(f"Unknown aggregation mode: {mode!r}", field="mode")
    skills = list(dict.fromkeys(skill_ids))
    if not skills:
        return 0
    roster = select_employees(state) if employees is None else _as_employees(state, employees)

    if mode == MODE_AVERAGE:
        return _average(state, skills, roster, diagnostics)
    if mode == MODE_MAXIMUM:
        return _maximum(state, skills, roster, diagnostics)
    return _fulfillment(state, skills, roster, diagnostics)


def employee_score(
    state: SkillState,
    employee: Union[Employee, str],
    skill_ids: Iterable[str],
    mode: str = MODE_AVERAGE,
    diagnostics: Optional[List[str]] = None,
) -> Optional[int]:
    return aggregate(state, skill_ids, [employee], mode, diagnostics)
