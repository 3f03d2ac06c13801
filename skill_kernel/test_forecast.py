"""
Skill Kernel — Forecast Tests

Covers: month arithmetic, fulfillment scoring, departures inside the
horizon, completing measures lifting levels (and opening new pairs),
KPIs, per-employee rows and per-category bars.

Run:  python -m pytest skill_kernel/test_forecast.py
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from skill_kernel.domain_types import (
    Assessment, Category, Employee, QualificationMeasure, QualificationPlan,
    RequiredSkill, Role, Skill, SkillState, SubCategory, assessment_id,
)
from skill_kernel.errors import ValidationError
from skill_kernel.forecast import (
    add_months, fulfillment_score, generate_forecast, score_pairs,
)

REFERENCE = "2026-01-15T12:00:00+00:00"


# ══════════════════════════════════════════════════════════════
# Test Fixtures
# ══════════════════════════════════════════════════════════════

def _a(emp: str, skill: str, level: int, target=None) -> Assessment:
    return Assessment(
        id=assessment_id(emp, skill), employee_id=emp, skill_id=skill,
        level=level, target_level=target,
    )


def _m(mid: str, plan: str, skill: str, target: int, date: str, status="pending"):
    return QualificationMeasure(
        id=mid, plan_id=plan, skill_id=skill, target_level=target,
        target_date=date, status=status,
    )


def _make_state() -> SkillState:
    """
    anna holds a role asking 100 on api; ben leaves in April; cleo is
    already gone; dan leaves after the six-month horizon.
    """
    state = SkillState()
    state.categories["eng"] = Category(id="eng", name="Engineering")
    state.categories["ops"] = Category(id="ops", name="Operations")
    state.subcategories["backend"] = SubCategory(id="backend", category_id="eng", name="Backend")
    state.subcategories["infra"] = SubCategory(id="infra", category_id="ops", name="Infra")
    state.skills["api"] = Skill(id="api", subcategory_id="backend", name="API Design")
    state.skills["sql"] = Skill(id="sql", subcategory_id="backend", name="SQL")
    state.skills["k8s"] = Skill(id="k8s", subcategory_id="infra", name="Kubernetes")
    state.roles["senior"] = Role(
        id="senior", name="Senior", required_skills=[RequiredSkill("api", 100)],
    )
    state.employees["anna"] = Employee(id="anna", name="Anna", department="Core", roles=["senior"])
    state.employees["ben"] = Employee(id="ben", name="Ben", deactivation_date="2026-04-30")
    state.employees["cleo"] = Employee(id="cleo", name="Cleo", is_active=False)
    state.employees["dan"] = Employee(id="dan", name="Dan", deactivation_date="2027-06-01")
    for a in (
        _a("anna", "api", 50),
        _a("anna", "sql", 25),
        _a("ben", "api", 75, target=75),
        _a("ben", "k8s", 50),
        _a("cleo", "api", 100),
        _a("dan", "k8s", 25),
    ):
        state.assessments[a.id] = a
    state.qualification_plans["p1"] = QualificationPlan(id="p1", employee_id="anna")
    state.qualification_plans["p2"] = QualificationPlan(id="p2", employee_id="ben")
    for m in (
        _m("m1", "p1", "api", 100, "2026-03-31"),
        _m("m2", "p1", "sql", 75, "2026-12-31", status="in_progress"),
        _m("m3", "p1", "k8s", 50, "2026-02-01", status="completed"),
        _m("m4", "p1", "k8s", 75, "2026-02-01"),
        _m("m5", "p2", "api", 100, "2026-02-01"),
    ):
        state.qualification_measures[m.id] = m
    return state


# ══════════════════════════════════════════════════════════════
# Helpers
# ══════════════════════════════════════════════════════════════

def test_01_add_months_clamps_the_day() -> None:
    assert add_months(datetime(2026, 1, 31), 1) == datetime(2026, 2, 28)
    assert add_months(datetime(2025, 11, 15), 3) == datetime(2026, 2, 15)
    assert add_months(datetime(2026, 5, 20), 0) == datetime(2026, 5, 20)


def test_02_fulfillment_and_pair_scores() -> None:
    assert fulfillment_score(-1, 50) == -1
    assert fulfillment_score(25, 0) == 25
    assert fulfillment_score(50, 75) == 67
    assert fulfillment_score(100, 75) == 100
    # Pairs with a target win; 0 counts, N/A does not.
    assert score_pairs([(-1, 50), (0, 50), (100, 0)]) == 0
    assert score_pairs([(50, 0), (25, 0), (0, 0)]) == 38
    assert score_pairs([(0, 0), (-1, 0)]) is None


# ══════════════════════════════════════════════════════════════
# Forecast
# ══════════════════════════════════════════════════════════════

def test_03_kpis_at_six_months() -> None:
    forecast = generate_forecast(_make_state(), 6, REFERENCE)
    k = forecast.kpis
    assert (k.current_avg_score, k.forecast_avg_score, k.score_delta) == (75, 100, 25)
    assert (k.current_deficit_count, k.forecast_deficit_count, k.deficit_delta) == (1, 0, -1)
    assert (k.departure_count, k.departure_names) == (1, ("Ben",))
    assert (k.completing_measure_count, k.total_planned_measure_count) == (3, 4)
    assert (k.current_total_xp, k.forecast_total_xp, k.xp_delta) == (225, 225, 0)
    assert forecast.scenario.horizon_date == datetime(2026, 7, 15, 12, tzinfo=timezone.utc)
    assert forecast.scenario.label == "6 months"


def test_04_employee_rows() -> None:
    rows = generate_forecast(_make_state(), 6, REFERENCE).employee_rows
    assert [r.employee_id for r in rows] == ["anna", "dan", "ben"]
    anna, dan, ben = rows
    assert (anna.current_avg_score, anna.forecast_avg_score, anna.delta) == (50, 100, 50)
    assert (anna.planned_measure_count, anna.completing_measure_count) == (3, 2)
    assert [(s.skill_id, s.current_fulfillment, s.forecast_fulfillment)
            for s in anna.skill_breakdown] == [("sql", 25, 25), ("api", 50, 100)]
    assert anna.skill_breakdown[1].target_level == 100
    assert anna.skill_breakdown[0].target_level is None
    assert ben.is_departing and ben.forecast_avg_score is None
    assert (ben.delta, ben.departure_date) == (-100, "2026-04-30")
    assert (dan.is_departing, dan.delta) == (False, 0)
    assert "cleo" not in {r.employee_id for r in rows}


def test_05_category_bars() -> None:
    bars = generate_forecast(_make_state(), 6, REFERENCE).category_bars
    assert [(b.category_id, b.current_avg_score, b.forecast_avg_score, b.delta) for b in bars] == [
        ("eng", 75, 100, 25),
        ("ops", 38, 25, -13),
    ]


def test_06_zero_horizon_changes_nothing() -> None:
    k = generate_forecast(_make_state(), 0, REFERENCE).kpis
    assert k.score_delta == 0 and k.xp_delta == 0 and k.deficit_delta == 0
    assert k.departure_count == 0 and k.completing_measure_count == 0


def test_07_longer_horizon_adds_departures_and_measures() -> None:
    k = generate_forecast(_make_state(), 24, REFERENCE).kpis
    assert k.departure_names == ("Ben", "Dan")
    assert k.completing_measure_count == 4
    # Only anna is left: api 100, sql 75 (m2), k8s 75 (m4).
    assert k.forecast_total_xp == 250


def test_08_negative_horizon_is_rejected() -> None:
    with pytest.raises(ValidationError):
        generate_forecast(_make_state(), -1, REFERENCE)


def test_09_empty_store() -> None:
    forecast = generate_forecast(SkillState(), 6, REFERENCE)
    assert forecast.kpis.current_avg_score == 0
    assert forecast.employee_rows == () and forecast.category_bars == ()
