"""
Skill Kernel — Command Definitions

Commands are **pure data**. They carry intent and payload only.
They contain ZERO transition logic.

The last three commands are never issued by callers directly; the
ledger plans them as the inverse of a recorded change.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass
class BaseEvent:
    """Base for all store commands — pure data container."""

    event_type: str = ""
    timestamp: str = ""
    sequence: int = 0
    event_uuid: str = ""
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        d = {
            "event_type": self.event_type,
            "timestamp": self.timestamp,
            "sequence": self.sequence,
            "payload": dict(self.payload),
        }
        if self.event_uuid:
            d["event_uuid"] = self.event_uuid
        return d


@dataclass
class CreateEntityEvent(BaseEvent):
    """Insert a new entity; ``data`` already carries its id."""

    event_type: str = "create_entity"
    # payload keys: entity_type, data


@dataclass
class UpdateEntityEvent(BaseEvent):
    """Merge ``changes`` into an existing entity."""

    event_type: str = "update_entity"
    # payload keys: entity_type, entity_id, changes


@dataclass
class DeleteEntityEvent(BaseEvent):
    """Delete an entity together with its cascade."""

    event_type: str = "delete_entity"
    # payload keys: entity_type, entity_id


@dataclass
class SetAssessmentLevelEvent(BaseEvent):
    """Set the level of a pair, creating its assessment on first write."""

    event_type: str = "set_assessment_level"
    # payload keys: employee_id, skill_id, level, note (optional)


@dataclass
class SetTargetLevelEvent(BaseEvent):
    """Set or clear (None) the individual target of a pair."""

    event_type: str = "set_target_level"
    # payload keys: employee_id, skill_id, target_level


@dataclass
class RemoveEntityEvent(BaseEvent):
    """Undo of a create: drop the entity, refusing if it has dependents."""

    event_type: str = "remove_entity"
    # payload keys: entity_type, entity_id


@dataclass
class OverwriteEntityEvent(BaseEvent):
    """Undo of an update: write a full snapshot back verbatim."""

    event_type: str = "overwrite_entity"
    # payload keys: entity_type, data


@dataclass
class RestoreEntityEvent(BaseEvent):
    """Undo of a delete: re-insert the entity, then its cascade."""

    event_type: str = "restore_entity"
    # payload keys: entity_type, data, cascade


EVENT_TYPES: Dict[str, type] = {
    cls.event_type: cls
    for cls in (
        CreateEntityEvent,
        UpdateEntityEvent,
        DeleteEntityEvent,
        SetAssessmentLevelEvent,
        SetTargetLevelEvent,
        RemoveEntityEvent,
        OverwriteEntityEvent,
        RestoreEntityEvent,
    )
}
