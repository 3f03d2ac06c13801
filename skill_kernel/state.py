"""
Skill Kernel — State Construction
"""

from __future__ import annotations

from typing import Dict, Iterable, Mapping

from .domain_types import COLLECTION_TO_TYPE, SkillState, entity_from_dict
from .errors import ValidationError


def create_initial_state() -> SkillState:
    """Create a fresh, empty SkillState."""
    return SkillState()


def state_from_collections(
    collections: Mapping[str, Iterable[dict]],
    structural_version: int = 0,
) -> SkillState:
    """
    Build a SkillState from ``{collection: [entity dict, ...]}`` as read
    from storage or an export file. Missing collections stay empty.
    """
    state = SkillState(structural_version=structural_version)
    for collection, rows in collections.items():
        entity_type = COLLECTION_TO_TYPE.get(collection)
        if entity_type is None:
            raise ValidationError(f"Unknown collection: {collection!r}")
        target: Dict[str, object] = getattr(state, collection)
        for row in rows:
            entity = entity_from_dict(entity_type, row)
            if entity.id in target:
                raise ValidationError(
                    f"Duplicate {entity_type} id {entity.id!r} in {collection}"
                )
            target[entity.id] = entity
    return state
