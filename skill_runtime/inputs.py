# file: skill_runtime/inputs.py
"""
Input models for the mutation facade.

Each mutable entity has a pydantic model describing what a caller may
send. Models reject unknown fields, trim names and check level domains;
the kernel still enforces referential integrity and cycles.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from skill_kernel.errors import ValidationError
from skill_kernel.levels import is_valid_level, is_valid_target

# Written by the kernel, never accepted from callers
SYSTEM_FIELDS = frozenset({"id", "updated_at", "created_at"})


class _Input(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class _NamedInput(_Input):
    name: str

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, v: str) -> str:
        if not v:
            raise ValueError("name must not be empty")
        return v


def _check_level(v: Optional[int]) -> Optional[int]:
    if v is not None and not is_valid_level(v):
        raise ValueError(f"{v!r} is not a level on the scale")
    return v


def _check_target(v: Optional[int]) -> Optional[int]:
    if v is not None and not is_valid_target(v):
        raise ValueError(f"{v!r} is not a valid target level")
    return v


# ---------------------------------------------------------------------------
# Taxonomy
# ---------------------------------------------------------------------------

class CategoryInput(_NamedInput):
    description: str = ""


class SubCategoryInput(_NamedInput):
    """Either ``category_id`` or ``parent_subcategory_id`` must be given."""

    category_id: Optional[str] = None
    parent_subcategory_id: Optional[str] = None
    description: str = ""

    @model_validator(mode="after")
    def _needs_an_anchor(self) -> "SubCategoryInput":
        if not self.category_id and not self.parent_subcategory_id:
            raise ValueError("category_id or parent_subcategory_id is required")
        return self


class SkillInput(_NamedInput):
    subcategory_id: str
    description: str = ""
    department_id: Optional[str] = None
    required_by_role_ids: List[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Organisation
# ---------------------------------------------------------------------------

class EmployeeInput(_NamedInput):
    department: str = ""
    roles: List[str] = Field(default_factory=list)
    is_active: bool = True
    deactivation_date: Optional[str] = None
    reactivation_date: Optional[str] = None


class RequiredSkillInput(_Input):
    skill_id: str
    level: int

    @field_validator("level")
    @classmethod
    def _level_on_scale(cls, v: int) -> int:
        return _check_target(v)


class RoleInput(_NamedInput):
    inherits_from_id: Optional[str] = None
    required_skills: List[RequiredSkillInput] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_skills(self) -> "RoleInput":
        seen: set[str] = set()
        for req in self.required_skills:
            if req.skill_id in seen:
                raise ValueError(f"skill {req.skill_id!r} listed twice")
            seen.add(req.skill_id)
        return self


class DepartmentInput(_NamedInput):
    pass


# ---------------------------------------------------------------------------
# Qualification planning
# ---------------------------------------------------------------------------

class QualificationPlanInput(_Input):
    employee_id: str
    target_role_id: Optional[str] = None
    status: Literal["active", "completed", "archived"] = "active"
    notes: str = ""


class QualificationMeasureInput(_Input):
    plan_id: str
    skill_id: str
    start_level: int = 0
    target_level: int = 0
    measure_type: Literal["internal", "external", "self_learning"] = "internal"
    mentor_id: Optional[str] = None
    external_provider: str = ""
    external_course: str = ""
    estimated_cost: Optional[float] = Field(default=None, ge=0)
    start_date: Optional[str] = None
    target_date: Optional[str] = None
    completed_date: Optional[str] = None
    status: Literal["pending", "in_progress", "completed", "cancelled"] = "pending"
    notes: str = ""

    @field_validator("start_level")
    @classmethod
    def _start_on_scale(cls, v: int) -> int:
        return _check_level(v)

    @field_validator("target_level")
    @classmethod
    def _target_on_scale(cls, v: int) -> int:
        return _check_target(v)


class SavedViewInput(_NamedInput):
    config: Dict[str, Any] = Field(default_factory=dict)


INPUT_MODELS: Dict[str, Type[_Input]] = {
    "category": CategoryInput,
    "subcategory": SubCategoryInput,
    "skill": SkillInput,
    "employee": EmployeeInput,
    "role": RoleInput,
    "department": DepartmentInput,
    "qualification_plan": QualificationPlanInput,
    "qualification_measure": QualificationMeasureInput,
    "saved_view": SavedViewInput,
}


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _describe(exc: PydanticValidationError) -> tuple[str, Optional[str]]:
    first = exc.errors()[0]
    field = ".".join(str(p) for p in first.get("loc", ())) or None
    return first.get("msg", str(exc)), field


def require_writable(entity_type: str) -> Type[_Input]:
    model = INPUT_MODELS.get(entity_type)
    if model is None:
        raise ValidationError(
            f"{entity_type!r} cannot be written through entity commands",
            field="entity_type",
        )
    return model


def parse_input(entity_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a full entity payload; returns the normalised dict."""
    model = require_writable(entity_type)
    try:
        parsed = model.model_validate(data)
    except PydanticValidationError as exc:
        message, field = _describe(exc)
        raise ValidationError(message, field=field) from exc
    return parsed.model_dump()


def parse_changes(
    entity_type: str,
    current: Dict[str, Any],
    changes: Dict[str, Any],
) -> Dict[str, Any]:
    """
    Validate a partial update against the entity it modifies and return
    only the changed keys, normalised.
    """
    if "id" in changes and changes["id"] != current.get("id"):
        raise ValidationError("id cannot be changed", field="id")
    changes = {k: v for k, v in changes.items() if k not in SYSTEM_FIELDS}
    base = {k: v for k, v in current.items() if k not in SYSTEM_FIELDS}
    merged = parse_input(entity_type, {**base, **changes})
    return {k: merged[k] for k in changes}
