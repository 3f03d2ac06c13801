"""
Skill Kernel — Core Domain Types

Pure data. No behaviour, no transition logic.
Entity dicts handed across the kernel boundary (ledger snapshots,
repository rows, exports) are always produced by ``entity_to_dict`` and
read back by ``entity_from_dict``.

────────────────────────────────────────────────
DOMAIN GLOSSARY
────────────────────────────────────────────────

Effective level:
    The level used in aggregation after resolving "no assessment",
    "N/A" and "role target implies zero".

N/A (level -1):
    Sentinel meaning the skill is excluded from averaging for this
    employee.

Role inheritance:
    Parent/child relation between roles; a skill's required level is
    found by walking from a role towards its ancestors until an explicit
    requirement is met.

Cascade:
    The transitive set of dependents deleted and restored together with
    a primary entity.

Fulfillment:
    Effective level divided by effective target, capped at 100%,
    averaged over qualifying pairs.

────────────────────────────────────────────────
"""

from __future__ import annotations

import copy
import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .errors import ValidationError


# ── Taxonomy ──────────────────────────────────────────────────

@dataclass
class Category:
    """Root of the skill taxonomy. No parent."""

    id: str
    name: str
    description: str = ""
    updated_at: str = ""


@dataclass
class SubCategory:
    """
    Interior taxonomy node. ``category_id`` is denormalised on every
    node, nested ones included; ``parent_subcategory_id`` is empty for
    the roots directly under the category.
    """

    id: str
    category_id: str
    name: str
    parent_subcategory_id: Optional[str] = None
    description: str = ""
    updated_at: str = ""


@dataclass
class Skill:
    """Leaf of the taxonomy; may hang off any subcategory depth."""

    id: str
    subcategory_id: str
    name: str
    description: str = ""
    department_id: Optional[str] = None
    required_by_role_ids: List[str] = field(default_factory=list)
    updated_at: str = ""


# ── People ────────────────────────────────────────────────────

@dataclass
class Employee:
    """``roles`` holds role ids or role names; both resolve."""

    id: str
    name: str
    department: str = ""
    roles: List[str] = field(default_factory=list)
    is_active: bool = True
    deactivation_date: Optional[str] = None
    reactivation_date: Optional[str] = None
    updated_at: str = ""


@dataclass
class RequiredSkill:
    skill_id: str
    level: int


@dataclass
class Role:
    id: str
    name: str
    inherits_from_id: Optional[str] = None
    required_skills: List[RequiredSkill] = field(default_factory=list)
    updated_at: str = ""


@dataclass
class Department:
    id: str
    name: str
    updated_at: str = ""


@dataclass
class Assessment:
    """
    Unique per (employee_id, skill_id). ``level`` is -1 for N/A or one
    of 0/25/50/75/100; ``target_level`` is the individual goal.
    """

    id: str
    employee_id: str
    skill_id: str
    level: int = 0
    target_level: Optional[int] = None
    updated_at: str = ""


@dataclass
class AssessmentLog:
    """
    One row per level change of an assessment. Written by the kernel
    alongside the assessment itself; never edited afterwards.
    """

    id: str
    employee_id: str
    skill_id: str
    previous_level: int
    new_level: int
    timestamp: str
    note: str = ""


# ── Qualification planning ────────────────────────────────────

@dataclass
class QualificationPlan:
    id: str
    employee_id: str
    target_role_id: Optional[str] = None
    status: str = "active"  # active | completed | archived
    notes: str = ""
    created_at: str = ""
    updated_at: str = ""


@dataclass
class QualificationMeasure:
    id: str
    plan_id: str
    skill_id: str
    start_level: int = 0
    target_level: int = 0
    measure_type: str = "internal"  # internal | external | self_learning
    mentor_id: Optional[str] = None
    external_provider: str = ""
    external_course: str = ""
    estimated_cost: Optional[float] = None
    start_date: Optional[str] = None
    target_date: Optional[str] = None
    completed_date: Optional[str] = None
    status: str = "pending"  # pending | in_progress | completed | cancelled
    notes: str = ""
    updated_at: str = ""


@dataclass
class SavedView:
    """Named matrix configuration; ``config`` is opaque to the kernel."""

    id: str
    name: str
    config: Dict[str, Any] = field(default_factory=dict)
    updated_at: str = ""


# ── Change ledger ─────────────────────────────────────────────

@dataclass
class ChangeHistoryEntry:
    """
    One ledger row per mutation. ``undone`` is the only mutable field
    and flips from False to True exactly once.
    """

    id: str
    entity_type: str
    entity_id: str
    entity_label: str
    action: str  # create | update | delete
    previous_data: Optional[Dict[str, Any]]
    new_data: Optional[Dict[str, Any]]
    timestamp: str
    undone: bool = False


# ── Entity registry ───────────────────────────────────────────

# entity_type -> (class, SkillState attribute / storage collection)
ENTITY_TYPES: Dict[str, Tuple[type, str]] = {
    "category": (Category, "categories"),
    "subcategory": (SubCategory, "subcategories"),
    "skill": (Skill, "skills"),
    "employee": (Employee, "employees"),
    "role": (Role, "roles"),
    "department": (Department, "departments"),
    "assessment": (Assessment, "assessments"),
    "assessment_log": (AssessmentLog, "assessment_logs"),
    "qualification_plan": (QualificationPlan, "qualification_plans"),
    "qualification_measure": (QualificationMeasure, "qualification_measures"),
    "saved_view": (SavedView, "saved_views"),
}

COLLECTION_TO_TYPE: Dict[str, str] = {
    collection: etype for etype, (_, collection) in ENTITY_TYPES.items()
}


def collection_for(entity_type: str) -> str:
    try:
        return ENTITY_TYPES[entity_type][1]
    except KeyError:
        raise ValidationError(f"Unknown entity type: {entity_type!r}") from None


def assessment_id(employee_id: str, skill_id: str) -> str:
    """Assessments are keyed by their (employee, skill) pair."""
    return f"{employee_id}:{skill_id}"


def entity_to_dict(entity: Any) -> dict:
    return dataclasses.asdict(entity)


def entity_from_dict(entity_type: str, data: Dict[str, Any]) -> Any:
    """
    Build an entity dataclass from a plain dict. Unknown keys are a hard
    failure so that stale or foreign payloads never slip into the state.
    """
    if entity_type not in ENTITY_TYPES:
        raise ValidationError(f"Unknown entity type: {entity_type!r}")
    cls = ENTITY_TYPES[entity_type][0]
    known = {f.name for f in dataclasses.fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ValidationError(
            f"Unknown fields for {entity_type}: {sorted(unknown)}"
        )
    kwargs = copy.deepcopy(dict(data))
    if entity_type == "role":
        kwargs["required_skills"] = [
            r if isinstance(r, RequiredSkill) else RequiredSkill(
                skill_id=r["skill_id"], level=int(r["level"]),
            )
            for r in kwargs.get("required_skills") or []
        ]
    try:
        return cls(**kwargs)
    except TypeError as exc:
        raise ValidationError(f"Malformed {entity_type}: {exc}") from exc


# ── Transition outcome ────────────────────────────────────────

@dataclass(frozen=True)
class TransitionResult:
    """
    Structured, immutable outcome of a state transition.

    ``writes`` and ``removals`` are exactly what the persistence layer
    must apply to mirror the transition; ``previous_data`` and
    ``new_data`` are the ledger snapshots.
    """

    event_type: str = ""
    entity_type: str = ""
    entity_id: str = ""
    action: str = ""
    previous_data: Optional[Dict[str, Any]] = None
    new_data: Optional[Dict[str, Any]] = None
    writes: Tuple[Tuple[str, Dict[str, Any]], ...] = ()
    removals: Tuple[Tuple[str, str], ...] = ()
    structural_change: bool = False


# ── State ─────────────────────────────────────────────────────

@dataclass
class SkillState:
    """
    Complete in-memory entity store.

    structural_version: bumped whenever a category, subcategory or skill
    changes; keys the hierarchy memo.
    """

    categories: Dict[str, Category] = field(default_factory=dict)
    subcategories: Dict[str, SubCategory] = field(default_factory=dict)
    skills: Dict[str, Skill] = field(default_factory=dict)
    employees: Dict[str, Employee] = field(default_factory=dict)
    roles: Dict[str, Role] = field(default_factory=dict)
    departments: Dict[str, Department] = field(default_factory=dict)
    assessments: Dict[str, Assessment] = field(default_factory=dict)
    assessment_logs: Dict[str, AssessmentLog] = field(default_factory=dict)
    qualification_plans: Dict[str, QualificationPlan] = field(default_factory=dict)
    qualification_measures: Dict[str, QualificationMeasure] = field(default_factory=dict)
    saved_views: Dict[str, SavedView] = field(default_factory=dict)
    structural_version: int = 0

    def copy(self) -> "SkillState":
        """Deep-copy the entire state for immutable transitions."""
        return copy.deepcopy(self)

    def collection(self, entity_type: str) -> Dict[str, Any]:
        return getattr(self, collection_for(entity_type))

    def get(self, entity_type: str, entity_id: str) -> Any:
        return self.collection(entity_type).get(entity_id)

    def get_assessment(self, employee_id: str, skill_id: str) -> Optional[Assessment]:
        return self.assessments.get(assessment_id(employee_id, skill_id))

    def to_dict(self) -> dict:
        """Serialise every collection as an id-sorted list of entity dicts."""
        return {
            collection: [
                entity_to_dict(entity)
                for _, entity in sorted(getattr(self, collection).items())
            ]
            for _, collection in ENTITY_TYPES.values()
        }
