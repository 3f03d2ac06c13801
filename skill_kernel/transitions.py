"""
Skill Kernel — Centralized Transition Logic

ALL state-mutation logic lives here. Each handler mutates the private
copy it is given and describes what it did in a TransitionResult:
the ledger snapshots plus the exact writes and removals persistence
must mirror.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

from .cascade import cascade_snapshot, compute_cascade, restore_plan
from .constants import (
    ACTION_CREATE, ACTION_DELETE, ACTION_UPDATE, CASCADE_KEY,
    CASCADING_TYPES, STRUCTURAL_TYPES,
)
from .domain_types import (
    COLLECTION_TO_TYPE, Assessment, AssessmentLog, SkillState, TransitionResult,
    assessment_id, entity_from_dict, entity_to_dict,
)
from .errors import NotFoundError, ValidationError
from .events import BaseEvent
from .levels import is_valid_level, is_valid_target


# ---------------------------------------------------------------------------
# Public dispatcher
# ---------------------------------------------------------------------------

def apply_event(
    state: SkillState, event: BaseEvent,
) -> Tuple[SkillState, TransitionResult]:
    """
    Apply *event* to *state* and return ``(new_state, result)``.
    The input state is never mutated; a deep copy is made first.
    """
    new_state = state.copy()

    etype = event.event_type

    if etype == "create_entity":
        result = _apply_create(new_state, event)
    elif etype == "update_entity":
        result = _apply_update(new_state, event)
    elif etype == "delete_entity":
        result = _apply_delete(new_state, event)
    elif etype == "set_assessment_level":
        result = _apply_set_assessment_level(new_state, event)
    elif etype == "set_target_level":
        result = _apply_set_target_level(new_state, event)
    elif etype == "remove_entity":
        result = _apply_remove(new_state, event)
    elif etype == "overwrite_entity":
        result = _apply_overwrite(new_state, event)
    elif etype == "restore_entity":
        result = _apply_restore(new_state, event)
    else:
        raise ValidationError(f"Unknown event type: {etype}")

    if result.structural_change:
        new_state.structural_version += 1

    return new_state, result


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _require(state: SkillState, entity_type: str, entity_id: str):
    entity = state.get(entity_type, entity_id)
    if entity is None:
        raise NotFoundError(entity_type, entity_id)
    return entity


# Written only as a side effect of level and target commands.
SYSTEM_MANAGED_TYPES = frozenset({"assessment", "assessment_log"})


def _reject_assessment(entity_type: str, verb: str) -> None:
    if entity_type in SYSTEM_MANAGED_TYPES:
        raise ValidationError(
            f"{entity_type} entities cannot be {verb} directly; set a level or target instead",
            field="entity_type",
        )


def _put(state: SkillState, entity_type: str, data: dict) -> dict:
    entity = entity_from_dict(entity_type, data)
    state.collection(entity_type)[entity.id] = entity
    return entity_to_dict(entity)


# ---------------------------------------------------------------------------
# Entity CRUD
# ---------------------------------------------------------------------------

def _apply_create(state: SkillState, event: BaseEvent) -> TransitionResult:
    p = event.payload
    entity_type = p["entity_type"]
    _reject_assessment(entity_type, "created")
    data = dict(p["data"])
    entity_id = data.get("id")
    if not entity_id:
        raise ValidationError("A new entity needs an id", field="id")
    if entity_id in state.collection(entity_type):
        raise ValidationError(f"{entity_type} id collision: {entity_id!r} already exists")

    # Nested subcategories inherit the denormalised category of their parent.
    if entity_type == "subcategory" and not data.get("category_id"):
        parent_id = data.get("parent_subcategory_id")
        if not parent_id:
            raise ValidationError(
                "A subcategory needs a category or a parent", field="category_id",
            )
        data["category_id"] = _require(state, "subcategory", parent_id).category_id
    if entity_type == "qualification_plan" and not data.get("created_at"):
        data["created_at"] = event.timestamp
    data["updated_at"] = event.timestamp

    snap = _put(state, entity_type, data)
    return TransitionResult(
        event_type=event.event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        action=ACTION_CREATE,
        new_data=snap,
        writes=((entity_type, snap),),
        structural_change=entity_type in STRUCTURAL_TYPES,
    )


def _apply_update(state: SkillState, event: BaseEvent) -> TransitionResult:
    p = event.payload
    entity_type = p["entity_type"]
    entity_id = p["entity_id"]
    _reject_assessment(entity_type, "edited")
    existing = _require(state, entity_type, entity_id)

    changes = dict(p.get("changes") or {})
    if changes.pop("id", entity_id) != entity_id:
        raise ValidationError("An entity id cannot be changed", field="id")

    previous = entity_to_dict(existing)
    merged = dict(previous)
    merged.update(changes)
    if (
        entity_type == "subcategory"
        and changes.get("parent_subcategory_id")
        and "category_id" not in changes
    ):
        parent = _require(state, "subcategory", changes["parent_subcategory_id"])
        merged["category_id"] = parent.category_id
    merged["updated_at"] = event.timestamp

    snap = _put(state, entity_type, merged)
    return TransitionResult(
        event_type=event.event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        action=ACTION_UPDATE,
        previous_data=previous,
        new_data=snap,
        writes=((entity_type, snap),),
        structural_change=entity_type in STRUCTURAL_TYPES,
    )


def _apply_delete(state: SkillState, event: BaseEvent) -> TransitionResult:
    """Two-phase delete: compute the closure first, then remove it."""
    p = event.payload
    entity_type = p["entity_type"]
    entity_id = p["entity_id"]
    _reject_assessment(entity_type, "deleted")
    existing = _require(state, entity_type, entity_id)

    cascade = compute_cascade(state, entity_type, entity_id)
    previous = entity_to_dict(existing)
    if entity_type in CASCADING_TYPES:
        previous[CASCADE_KEY] = cascade_snapshot(state, cascade)

    del state.collection(entity_type)[entity_id]
    removals: List[Tuple[str, str]] = [(entity_type, entity_id)]
    for collection, ids in cascade.items():
        entities = getattr(state, collection)
        for dep_id in ids:
            entities.pop(dep_id, None)
            removals.append((COLLECTION_TO_TYPE[collection], dep_id))

    return TransitionResult(
        event_type=event.event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        action=ACTION_DELETE,
        previous_data=previous,
        removals=tuple(removals),
        structural_change=(
            entity_type in STRUCTURAL_TYPES
            or bool(cascade.subcategories or cascade.skills)
        ),
    )


# ---------------------------------------------------------------------------
# Assessments (create-on-write)
# ---------------------------------------------------------------------------

def _pair_assessment(state: SkillState, p: dict):
    employee_id = p["employee_id"]
    skill_id = p["skill_id"]
    _require(state, "employee", employee_id)
    _require(state, "skill", skill_id)
    return employee_id, skill_id, state.assessments.get(assessment_id(employee_id, skill_id))


def _assessment_result(
    event: BaseEvent, previous, assessment: Assessment,
    log: Optional[AssessmentLog] = None,
) -> TransitionResult:
    snap = entity_to_dict(assessment)
    writes: List[Tuple[str, dict]] = [("assessment", snap)]
    if log is not None:
        writes.append(("assessment_log", entity_to_dict(log)))
    return TransitionResult(
        event_type=event.event_type,
        entity_type="assessment",
        entity_id=assessment.id,
        action=ACTION_UPDATE if previous is not None else ACTION_CREATE,
        previous_data=previous,
        new_data=snap,
        writes=tuple(writes),
    )


def _log_level_change(
    state: SkillState, event: BaseEvent, employee_id: str, skill_id: str,
    previous_level: int, new_level: int,
) -> AssessmentLog:
    base = event.event_uuid or f"{assessment_id(employee_id, skill_id)}@{event.timestamp}"
    log_id, suffix = base, 1
    while log_id in state.assessment_logs:
        suffix += 1
        log_id = f"{base}#{suffix}"
    log = AssessmentLog(
        id=log_id,
        employee_id=employee_id,
        skill_id=skill_id,
        previous_level=previous_level,
        new_level=new_level,
        timestamp=event.timestamp,
        note=event.payload.get("note") or "",
    )
    state.assessment_logs[log.id] = log
    return log


def _apply_set_assessment_level(state: SkillState, event: BaseEvent) -> TransitionResult:
    """
    Level write plus its log row: a changed level on an existing pair is
    logged from the old level; a first write is logged from 0 unless the
    new level is 0 or N/A.
    """
    p = event.payload
    level = p["level"]
    if not is_valid_level(level):
        raise ValidationError(f"Invalid level {level!r}", field="level")
    employee_id, skill_id, existing = _pair_assessment(state, p)

    log = None
    if existing is not None:
        previous = entity_to_dict(existing)
        if existing.level != level:
            log = _log_level_change(
                state, event, employee_id, skill_id, existing.level, level,
            )
        existing.level = level
        existing.updated_at = event.timestamp
        assessment = existing
    else:
        previous = None
        assessment = Assessment(
            id=assessment_id(employee_id, skill_id),
            employee_id=employee_id,
            skill_id=skill_id,
            level=level,
            updated_at=event.timestamp,
        )
        state.assessments[assessment.id] = assessment
        if level > 0:
            log = _log_level_change(state, event, employee_id, skill_id, 0, level)
    return _assessment_result(event, previous, assessment, log)


def _apply_set_target_level(state: SkillState, event: BaseEvent) -> TransitionResult:
    p = event.payload
    target = p.get("target_level")
    if target is not None and not is_valid_target(target):
        raise ValidationError(f"Invalid target level {target!r}", field="target_level")
    employee_id, skill_id, existing = _pair_assessment(state, p)

    if existing is not None:
        previous = entity_to_dict(existing)
        existing.target_level = target
        existing.updated_at = event.timestamp
        assessment = existing
    else:
        previous = None
        assessment = Assessment(
            id=assessment_id(employee_id, skill_id),
            employee_id=employee_id,
            skill_id=skill_id,
            level=0,
            target_level=target,
            updated_at=event.timestamp,
        )
        state.assessments[assessment.id] = assessment
    return _assessment_result(event, previous, assessment)


# ---------------------------------------------------------------------------
# Inverse commands (undo)
# ---------------------------------------------------------------------------

def _apply_remove(state: SkillState, event: BaseEvent) -> TransitionResult:
    """Undo of a create. Refuses when dependents appeared in the meantime."""
    p = event.payload
    entity_type = p["entity_type"]
    entity_id = p["entity_id"]
    existing = _require(state, entity_type, entity_id)

    cascade = compute_cascade(state, entity_type, entity_id)
    if cascade.total():
        raise ValidationError(
            f"{entity_type} {entity_id!r} has {cascade.total()} dependent(s) "
            f"created later; undo those changes first"
        )

    del state.collection(entity_type)[entity_id]
    return TransitionResult(
        event_type=event.event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        action=ACTION_DELETE,
        previous_data=entity_to_dict(existing),
        removals=((entity_type, entity_id),),
        structural_change=entity_type in STRUCTURAL_TYPES,
    )


def _apply_overwrite(state: SkillState, event: BaseEvent) -> TransitionResult:
    """Undo of an update: blind overwrite with the recorded snapshot."""
    p = event.payload
    entity_type = p["entity_type"]
    data = p["data"]
    existing = state.get(entity_type, data["id"])
    previous = entity_to_dict(existing) if existing is not None else None

    snap = _put(state, entity_type, data)
    return TransitionResult(
        event_type=event.event_type,
        entity_type=entity_type,
        entity_id=snap["id"],
        action=ACTION_UPDATE,
        previous_data=previous,
        new_data=snap,
        writes=((entity_type, snap),),
        structural_change=entity_type in STRUCTURAL_TYPES,
    )


def _apply_restore(state: SkillState, event: BaseEvent) -> TransitionResult:
    """Undo of a delete: primary entity first, then its cascade in order."""
    p = event.payload
    entity_type = p["entity_type"]
    data = {k: v for k, v in p["data"].items() if k != CASCADE_KEY}

    writes = [(entity_type, _put(state, entity_type, data))]
    structural = entity_type in STRUCTURAL_TYPES
    for dep_type, row in restore_plan(p.get("cascade") or {}):
        writes.append((dep_type, _put(state, dep_type, row)))
        structural = structural or dep_type in STRUCTURAL_TYPES

    return TransitionResult(
        event_type=event.event_type,
        entity_type=entity_type,
        entity_id=data["id"],
        action=ACTION_CREATE,
        new_data=writes[0][1],
        writes=tuple(writes),
        structural_change=structural,
    )
