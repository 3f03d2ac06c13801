"""
Skill Kernel — Change Ledger

Turns a TransitionResult into a ChangeHistoryEntry and plans the
inverse command of an entry:

    create -> remove_entity     (cascadeless; refused if dependents exist)
    update -> overwrite_entity  (previous snapshot written back verbatim)
    delete -> restore_entity    (primary, then ``_cascade`` parents-first)

Entries move ``recorded -> undone`` exactly once.
"""

from __future__ import annotations

from typing import Optional

from .constants import ACTION_CREATE, ACTION_DELETE, ACTION_UPDATE, CASCADE_KEY
from .domain_types import ChangeHistoryEntry, SkillState, TransitionResult
from .errors import AlreadyUndoneError, ValidationError
from .events import (
    BaseEvent, OverwriteEntityEvent, RemoveEntityEvent, RestoreEntityEvent,
)


def _name_of(state: SkillState, entity_type: str, entity_id: Optional[str]) -> str:
    entity = state.get(entity_type, entity_id) if entity_id else None
    return entity.name if entity is not None else (entity_id or "?")


def entity_label(state: SkillState, entity_type: str, data: Optional[dict]) -> str:
    """Human readable label for a ledger row."""
    if not data:
        return ""
    if entity_type == "assessment":
        return (
            f"{_name_of(state, 'employee', data.get('employee_id'))} / "
            f"{_name_of(state, 'skill', data.get('skill_id'))}"
        )
    if entity_type == "qualification_plan":
        return f"Plan for {_name_of(state, 'employee', data.get('employee_id'))}"
    if entity_type == "qualification_measure":
        return f"Measure: {_name_of(state, 'skill', data.get('skill_id'))}"
    return data.get("name") or data.get("id", "")


def build_entry(
    state: SkillState,
    result: TransitionResult,
    entry_id: str,
    timestamp: str,
) -> ChangeHistoryEntry:
    """Ledger row for a committed transition; *state* is the new state."""
    return ChangeHistoryEntry(
        id=entry_id,
        entity_type=result.entity_type,
        entity_id=result.entity_id,
        entity_label=entity_label(
            state, result.entity_type, result.new_data or result.previous_data,
        ),
        action=result.action,
        previous_data=result.previous_data,
        new_data=result.new_data,
        timestamp=timestamp,
    )


def plan_undo(entry: ChangeHistoryEntry) -> BaseEvent:
    """Inverse command for *entry*; raises if the entry is consumed."""
    if entry.undone:
        raise AlreadyUndoneError(entry.id)

    if entry.action == ACTION_CREATE:
        return RemoveEntityEvent(payload={
            "entity_type": entry.entity_type,
            "entity_id": entry.entity_id,
        })

    if entry.action == ACTION_UPDATE:
        if not entry.previous_data:
            raise ValidationError(f"Change {entry.id!r} carries no previous data")
        return OverwriteEntityEvent(payload={
            "entity_type": entry.entity_type,
            "data": dict(entry.previous_data),
        })

    if entry.action == ACTION_DELETE:
        if not entry.previous_data:
            raise ValidationError(f"Change {entry.id!r} carries no previous data")
        data = dict(entry.previous_data)
        cascade = data.pop(CASCADE_KEY, None) or {}
        return RestoreEntityEvent(payload={
            "entity_type": entry.entity_type,
            "data": data,
            "cascade": cascade,
        })

    raise ValidationError(f"Unknown ledger action {entry.action!r}", field="action")
