"""
Skill Kernel — Forecast

Projects the matrix to a horizon date:
  - open measures (pending / in progress) whose target date falls inside
    the horizon lift their employee's level to the measure's target;
  - active employees whose deactivation date falls inside the horizon
    drop out of the forecast population.

Scores follow the fulfillment rules of aggregation.py: pairs with an
effective target contribute ``pair_fulfillment`` (0 included, N/A
excluded); only when no pair has a target do raw levels above 0 count.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .aggregation import pair_fulfillment, resolve_pair, round_half_up
from .constants import DEFAULT_FORECAST_MONTHS, OPEN_MEASURE_STATUSES
from .domain_types import Employee, QualificationMeasure, SkillState
from .errors import ValidationError
from .insights import Moment, parse_moment

_Pair = Tuple[str, str]


@dataclass(frozen=True)
class ForecastScenario:
    months: int
    reference_date: datetime
    horizon_date: datetime

    @property
    def label(self) -> str:
        return f"{self.months} months"


@dataclass(frozen=True)
class ForecastKpis:
    current_avg_score: int
    forecast_avg_score: int
    score_delta: int
    current_deficit_count: int
    forecast_deficit_count: int
    deficit_delta: int
    departure_count: int
    departure_names: Tuple[str, ...]
    completing_measure_count: int
    total_planned_measure_count: int
    current_total_xp: int
    forecast_total_xp: int
    xp_delta: int


@dataclass(frozen=True)
class SkillForecast:
    skill_id: str
    skill_name: str
    current_level: int
    target_level: Optional[int]
    current_fulfillment: int
    forecast_level: int
    forecast_fulfillment: int


@dataclass(frozen=True)
class EmployeeForecast:
    """``forecast_avg_score`` is None for departing employees."""

    employee_id: str
    employee_name: str
    department: str
    current_avg_score: Optional[int]
    forecast_avg_score: Optional[int]
    delta: int
    is_departing: bool
    departure_date: Optional[str]
    planned_measure_count: int
    completing_measure_count: int
    skill_breakdown: Tuple[SkillForecast, ...]


@dataclass(frozen=True)
class CategoryForecast:
    category_id: str
    category_name: str
    current_avg_score: int
    forecast_avg_score: int
    delta: int


@dataclass(frozen=True)
class Forecast:
    kpis: ForecastKpis
    employee_rows: Tuple[EmployeeForecast, ...]
    category_bars: Tuple[CategoryForecast, ...]
    scenario: ForecastScenario


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def add_months(moment: datetime, months: int) -> datetime:
    """Calendar month arithmetic; the day is clamped to the target month."""
    index = moment.month - 1 + months
    year, month = moment.year + index // 12, index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def fulfillment_score(level: int, target: int) -> int:
    """-1 for N/A, the fulfillment percentage with a target, else the raw level."""
    if level < 0:
        return -1
    if target > 0:
        return pair_fulfillment(level, target)
    return level


def _mean(values: List[int]) -> Optional[int]:
    if not values:
        return None
    return round_half_up(sum(values) / len(values))


def score_pairs(pairs: Iterable[Tuple[int, int]]) -> Optional[int]:
    """Average over ``(level, effective_target)`` pairs."""
    with_target: List[int] = []
    raw: List[int] = []
    for level, target in pairs:
        if target > 0:
            if level >= 0:
                with_target.append(fulfillment_score(level, target))
        elif level > 0:
            raw.append(level)
    return _mean(with_target) if with_target else _mean(raw)


class _Targets:
    """Memoised effective target per pair; unknown employees have none."""

    def __init__(self, state: SkillState, diagnostics: Optional[List[str]]) -> None:
        self._state = state
        self._diagnostics = diagnostics
        self._cache: Dict[_Pair, int] = {}

    def __call__(self, employee_id: str, skill_id: str) -> int:
        key = (employee_id, skill_id)
        if key not in self._cache:
            emp = self._state.employees.get(employee_id)
            self._cache[key] = (
                resolve_pair(self._state, emp, skill_id, self._diagnostics).effective_target
                if emp is not None else 0
            )
        return self._cache[key]


def _by_name(employees: Iterable[Employee]) -> List[Employee]:
    return sorted(employees, key=lambda e: (e.name.lower(), e.id))


def _count_by_owner(
    measures: Iterable[QualificationMeasure], owners: Dict[str, str],
) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for m in measures:
        owner = owners.get(m.plan_id)
        if owner is not None:
            counts[owner] = counts.get(owner, 0) + 1
    return counts


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def generate_forecast(
    state: SkillState,
    horizon_months: int = DEFAULT_FORECAST_MONTHS,
    reference: Optional[Moment] = None,
    diagnostics: Optional[List[str]] = None,
) -> Forecast:
    """Current against projected scores *horizon_months* after *reference* (now)."""
    if horizon_months < 0:
        raise ValidationError("The horizon cannot be negative", field="horizon_months")
    now = parse_moment(reference) if reference is not None else datetime.now(timezone.utc)
    horizon = add_months(now, horizon_months)

    departing = [
        e for e in _by_name(state.employees.values())
        if e.is_active and e.deactivation_date
        and now < parse_moment(e.deactivation_date) <= horizon
    ]
    departing_ids = {e.id for e in departing}
    active = [e for e in _by_name(state.employees.values()) if e.is_active]
    current_ids = {e.id for e in active}
    forecast_ids = current_ids - departing_ids

    owners = {p.id: p.employee_id for p in state.qualification_plans.values()}
    open_measures = [
        m for _, m in sorted(state.qualification_measures.items())
        if m.status in OPEN_MEASURE_STATUSES
    ]
    completing = [
        m for m in open_measures
        if m.target_date and parse_moment(m.target_date) <= horizon
    ]

    assessments = [a for _, a in sorted(state.assessments.items())]
    forecast_levels: Dict[_Pair, int] = {
        (a.employee_id, a.skill_id): a.level for a in assessments
    }
    for m in completing:
        owner = owners.get(m.plan_id)
        if owner not in forecast_ids:
            continue
        key = (owner, m.skill_id)
        if m.target_level > forecast_levels.get(key, 0):
            forecast_levels[key] = m.target_level

    target = _Targets(state, diagnostics)

    def current_pairs(ids: Set[str], skills: Optional[Set[str]] = None):
        return [
            (a.level, target(a.employee_id, a.skill_id)) for a in assessments
            if a.employee_id in ids and (skills is None or a.skill_id in skills)
        ]

    def projected_pairs(ids: Set[str], skills: Optional[Set[str]] = None):
        return [
            (forecast_levels[(a.employee_id, a.skill_id)], target(a.employee_id, a.skill_id))
            for a in assessments
            if a.employee_id in ids and (skills is None or a.skill_id in skills)
        ]

    # KPIs: the projected population also covers pairs a measure opens.
    current_avg = score_pairs(current_pairs(current_ids)) or 0
    forecast_avg = score_pairs(
        (level, target(emp_id, skill_id))
        for (emp_id, skill_id), level in sorted(forecast_levels.items())
        if emp_id in forecast_ids
    ) or 0
    current_deficits = sum(
        1 for level, goal in current_pairs(current_ids) if goal > 0 and level < goal
    )
    forecast_deficits = sum(
        1 for level, goal in projected_pairs(forecast_ids) if goal > 0 and level < goal
    )
    current_xp = sum(a.level for a in assessments if a.employee_id in current_ids and a.level > 0)
    forecast_xp = sum(
        level for (emp_id, _), level in forecast_levels.items()
        if emp_id in forecast_ids and level > 0
    )
    kpis = ForecastKpis(
        current_avg_score=current_avg,
        forecast_avg_score=forecast_avg,
        score_delta=forecast_avg - current_avg,
        current_deficit_count=current_deficits,
        forecast_deficit_count=forecast_deficits,
        deficit_delta=forecast_deficits - current_deficits,
        departure_count=len(departing),
        departure_names=tuple(e.name for e in departing),
        completing_measure_count=len(completing),
        total_planned_measure_count=len(open_measures),
        current_total_xp=current_xp,
        forecast_total_xp=forecast_xp,
        xp_delta=forecast_xp - current_xp,
    )

    planned_counts = _count_by_owner(open_measures, owners)
    completing_counts = _count_by_owner(completing, owners)
    rows = [
        _employee_row(
            state, emp, assessments, forecast_levels, target,
            departing=emp.id in departing_ids,
            planned=planned_counts.get(emp.id, 0),
            completing=completing_counts.get(emp.id, 0),
        )
        for emp in active
    ]
    rows.sort(key=lambda r: -r.delta)

    bars = []
    for cat in sorted(state.categories.values(), key=lambda c: (c.name.lower(), c.id)):
        skill_ids = {
            sk.id for sk in state.skills.values()
            if getattr(state.subcategories.get(sk.subcategory_id), "category_id", None) == cat.id
        }
        cur = score_pairs(current_pairs(current_ids, skill_ids)) or 0
        fut = score_pairs(projected_pairs(forecast_ids, skill_ids)) or 0
        bars.append(CategoryForecast(
            category_id=cat.id,
            category_name=cat.name,
            current_avg_score=cur,
            forecast_avg_score=fut,
            delta=fut - cur,
        ))

    return Forecast(
        kpis=kpis,
        employee_rows=tuple(rows),
        category_bars=tuple(bars),
        scenario=ForecastScenario(
            months=horizon_months, reference_date=now, horizon_date=horizon,
        ),
    )


def _employee_row(
    state: SkillState,
    emp: Employee,
    assessments,
    forecast_levels: Dict[_Pair, int],
    target: _Targets,
    departing: bool,
    planned: int,
    completing: int,
) -> EmployeeForecast:
    own = [a for a in assessments if a.employee_id == emp.id]
    breakdown: List[SkillForecast] = []
    current, projected = [], []
    for a in own:
        goal = target(emp.id, a.skill_id)
        level = forecast_levels[(emp.id, a.skill_id)]
        current.append((a.level, goal))
        projected.append((level, goal))
        if a.level > 0 or (a.level >= 0 and goal > 0):
            skill = state.skills.get(a.skill_id)
            breakdown.append(SkillForecast(
                skill_id=a.skill_id,
                skill_name=skill.name if skill else a.skill_id,
                current_level=a.level,
                target_level=goal or None,
                current_fulfillment=max(0, fulfillment_score(a.level, goal)),
                forecast_level=level,
                forecast_fulfillment=max(0, fulfillment_score(level, goal)),
            ))
    breakdown.sort(key=lambda s: s.current_fulfillment)

    current_avg = score_pairs(current)
    forecast_avg = None if departing else score_pairs(projected)
    return EmployeeForecast(
        employee_id=emp.id,
        employee_name=emp.name,
        department=emp.department,
        current_avg_score=current_avg,
        forecast_avg_score=forecast_avg,
        delta=(forecast_avg or 0) - (current_avg or 0),
        is_departing=departing,
        departure_date=emp.deactivation_date if departing else None,
        planned_measure_count=planned,
        completing_measure_count=completing,
        skill_breakdown=tuple(breakdown),
    )
