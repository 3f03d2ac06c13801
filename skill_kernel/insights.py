"""
Skill Kernel — Insight Queries

Read-only questions asked of the store beyond plain roll-ups: skill gaps,
mentors, role skill sets, the level history and the dashboard statistics.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Union

from .aggregation import round_half_up
from .constants import COVERAGE_THRESHOLD, MENTOR_LEVEL, NA_LEVEL
from .domain_types import Assessment, AssessmentLog, Employee, SkillState
from .errors import NotFoundError, ValidationError
from .levels import score_band
from .targets import find_role, role_requirements


@dataclass(frozen=True)
class SkillGap:
    skill_id: str
    skill_name: str
    subcategory_id: str
    subcategory_name: str
    category_id: str
    category_name: str
    current_level: int
    target_level: int
    gap: int


def employee_assessments(state: SkillState, employee_id: str) -> List[Assessment]:
    return sorted(
        (a for a in state.assessments.values() if a.employee_id == employee_id),
        key=lambda a: a.skill_id,
    )


# ---------------------------------------------------------------------------
# Gaps and mentors
# ---------------------------------------------------------------------------

def get_skill_gaps(
    state: SkillState,
    employee_id: str,
    target_role_id: Optional[str] = None,
    diagnostics: Optional[List[str]] = None,
) -> List[SkillGap]:
    """
    Skills whose target exceeds the employee's current level, largest gap
    first. Targets are the individual goals maxed with the requirements of
    *target_role_id* (or, without one, of every role the employee holds).
    N/A and missing assessments count as level 0.
    """
    emp = state.employees.get(employee_id)
    if emp is None:
        raise NotFoundError("employee", employee_id)

    targets: Dict[str, int] = {}
    for a in employee_assessments(state, employee_id):
        if a.target_level and a.target_level > 0:
            targets[a.skill_id] = a.target_level

    role_refs = [target_role_id] if target_role_id else list(emp.roles)
    for ref in role_refs:
        for skill_id, level in role_requirements(state, ref, diagnostics).items():
            if level > targets.get(skill_id, 0):
                targets[skill_id] = level

    gaps: List[SkillGap] = []
    for skill_id, target in targets.items():
        skill = state.skills.get(skill_id)
        if skill is None:
            continue
        assessment = state.get_assessment(employee_id, skill_id)
        current = max(0, assessment.level) if assessment else 0
        if target - current <= 0:
            continue
        sub = state.subcategories.get(skill.subcategory_id)
        cat = state.categories.get(sub.category_id) if sub else None
        gaps.append(SkillGap(
            skill_id=skill.id,
            skill_name=skill.name,
            subcategory_id=skill.subcategory_id,
            subcategory_name=sub.name if sub else "",
            category_id=cat.id if cat else "",
            category_name=cat.name if cat else "",
            current_level=current,
            target_level=target,
            gap=target - current,
        ))
    gaps.sort(key=lambda g: (-g.gap, g.skill_name.lower(), g.skill_id))
    return gaps


def get_potential_mentors(
    state: SkillState,
    skill_id: str,
    exclude_employee_id: Optional[str] = None,
    active_only: bool = False,
) -> List[Employee]:
    """
    Employees assessed at expert level for *skill_id*, deactivated ones
    included unless *active_only* is set.
    """
    mentors = []
    for emp in state.employees.values():
        if emp.id == exclude_employee_id:
            continue
        if active_only and not emp.is_active:
            continue
        assessment = state.get_assessment(emp.id, skill_id)
        if assessment is not None and assessment.level == MENTOR_LEVEL:
            mentors.append(emp)
    return sorted(mentors, key=lambda e: (e.name.lower(), e.id))


def get_role_skills(
    state: SkillState,
    role_ref: str,
    diagnostics: Optional[List[str]] = None,
) -> List[str]:
    """
    Skill ids a role cares about: its (inherited) requirements plus skills
    that list the role in ``required_by_role_ids``.
    """
    role = find_role(state, role_ref)
    if role is None:
        raise NotFoundError("role", role_ref)
    skill_ids = set(role_requirements(state, role.id, diagnostics))
    for sk in state.skills.values():
        if role.id in sk.required_by_role_ids:
            skill_ids.add(sk.id)
    return sorted(skill_ids)


# ---------------------------------------------------------------------------
# Dashboard statistics
# ---------------------------------------------------------------------------

def calculate_average_score(assessments: Iterable[Assessment]) -> Optional[int]:
    """Mean level ignoring N/A; None if nothing is left."""
    levels = [a.level for a in assessments if a.level != NA_LEVEL]
    if not levels:
        return None
    return round_half_up(sum(levels) / len(levels))


def calculate_percentage_change(previous: float, current: float) -> int:
    if previous == 0:
        return 100 if current > 0 else 0
    return round_half_up((current - previous) / previous * 100)


def calculate_skill_coverage(
    assessments: Iterable[Assessment],
    total_employees: int,
    threshold: int = COVERAGE_THRESHOLD,
) -> dict:
    count = sum(1 for a in assessments if a.level >= threshold)
    percentage = round_half_up(count / total_employees * 100) if total_employees > 0 else 0
    return {"count": count, "percentage": percentage}


def calculate_goal_fulfillment(assessments: Iterable[Assessment]) -> dict:
    """How many individually targeted assessments have reached their goal."""
    with_targets = [a for a in assessments if a.target_level and a.target_level > 0]
    achieved = sum(1 for a in with_targets if a.level >= a.target_level)
    percentage = round_half_up(achieved / len(with_targets) * 100) if with_targets else 0
    return {"achieved": achieved, "total": len(with_targets), "percentage": percentage}


def calculate_average_gap(assessments: Iterable[Assessment]) -> float:
    with_targets = [a for a in assessments if a.target_level and a.target_level > 0]
    if not with_targets:
        return 0.0
    return sum(a.target_level - a.level for a in with_targets) / len(with_targets)


def employee_summary(state: SkillState, employee_id: str) -> dict:
    """Headline numbers for one employee's profile."""
    emp = state.employees.get(employee_id)
    if emp is None:
        raise NotFoundError("employee", employee_id)
    rows = employee_assessments(state, employee_id)
    average = calculate_average_score(rows)
    return {
        "employee_id": emp.id,
        "assessed_skills": sum(1 for a in rows if a.level > 0),
        "expert_skills": sum(1 for a in rows if a.level == MENTOR_LEVEL),
        "total_xp": sum(a.level for a in rows if a.level > 0),
        "average_score": average,
        "band": score_band(average),
        "goals": calculate_goal_fulfillment(rows),
        "average_gap": calculate_average_gap(rows),
    }


# ---------------------------------------------------------------------------
# Level history and period comparison
# ---------------------------------------------------------------------------

PERIOD_QUARTER = "quarter"
PERIOD_YEAR = "year"

Moment = Union[datetime, str]


@dataclass(frozen=True)
class PeriodBoundaries:
    """``previous_end`` is always ``current_start``."""

    current_start: datetime
    previous_start: datetime
    previous_end: datetime


def parse_moment(value: Moment) -> datetime:
    """ISO string or datetime to an aware datetime; naive values are UTC."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def get_history(state: SkillState, employee_id: Optional[str] = None) -> List[AssessmentLog]:
    """Level log rows, oldest first; all employees when *employee_id* is None."""
    logs = [
        g for g in state.assessment_logs.values()
        if employee_id is None or g.employee_id == employee_id
    ]
    return sorted(logs, key=lambda g: (parse_moment(g.timestamp), g.id))


def calculate_historical_xp(
    assessments: Iterable[Assessment],
    logs: Iterable[AssessmentLog],
    before: Moment,
) -> int:
    """
    Total XP as it stood at *before*: start from the current levels and
    roll every later log row back, newest first, so the oldest change
    after *before* decides each pair's level.
    """
    levels: Dict[tuple, int] = {
        (a.employee_id, a.skill_id): a.level for a in assessments
    }
    cutoff = parse_moment(before)
    later = [g for g in logs if parse_moment(g.timestamp) > cutoff]
    later.sort(key=lambda g: parse_moment(g.timestamp), reverse=True)
    for g in later:
        levels[(g.employee_id, g.skill_id)] = g.previous_level
    return sum(level for level in levels.values() if level > 0)


def get_period_boundaries(period: str, reference: Optional[Moment] = None) -> PeriodBoundaries:
    """
    Start of the current and previous quarter or year around *reference*
    (now by default), in the reference's timezone.
    """
    now = parse_moment(reference) if reference is not None else datetime.now(timezone.utc)
    tz = now.tzinfo
    if period == PERIOD_QUARTER:
        quarter = (now.month - 1) // 3
        current = datetime(now.year, quarter * 3 + 1, 1, tzinfo=tz)
        if quarter == 0:
            previous = datetime(now.year - 1, 10, 1, tzinfo=tz)
        else:
            previous = datetime(now.year, (quarter - 1) * 3 + 1, 1, tzinfo=tz)
    elif period == PERIOD_YEAR:
        current = datetime(now.year, 1, 1, tzinfo=tz)
        previous = datetime(now.year - 1, 1, 1, tzinfo=tz)
    else:
        raise ValidationError(f"Unknown comparison period {period!r}", field="period")
    return PeriodBoundaries(current_start=current, previous_start=previous, previous_end=current)


def xp_comparison(
    state: SkillState, period: str = PERIOD_QUARTER, reference: Optional[Moment] = None,
) -> dict:
    """Current total XP against the total at the start of the period."""
    bounds = get_period_boundaries(period, reference)
    assessments = list(state.assessments.values())
    current = sum(a.level for a in assessments if a.level > 0)
    previous = calculate_historical_xp(
        assessments, state.assessment_logs.values(), bounds.current_start,
    )
    return {
        "period": period,
        "since": bounds.current_start.isoformat(),
        "current_xp": current,
        "previous_xp": previous,
        "change_percent": calculate_percentage_change(previous, current),
    }
