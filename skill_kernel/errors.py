"""
Skill Kernel — Error Kinds

Every error raised by the kernel or the runtime derives from
SkillGridError so callers can catch the whole family at one seam.
"""

from __future__ import annotations

from typing import List, Optional


class SkillGridError(Exception):
    """Base class for all skillgrid errors."""


class ValidationError(SkillGridError):
    """Input rejected before any mutation was attempted."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        self.field = field
        if field:
            message = f"{field}: {message}"
        super().__init__(message)


class NotFoundError(SkillGridError):
    """A referenced entity or ledger entry does not exist."""

    def __init__(self, entity_type: str, entity_id: str) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} {entity_id!r} not found")


class PersistenceError(SkillGridError):
    """The storage layer failed; in-memory state has been resynchronised."""


class CycleError(ValidationError):
    """A write would close a subcategory-parent or role-inheritance loop."""

    def __init__(self, kind: str, path: List[str]) -> None:
        self.kind = kind
        self.path = list(path)
        super().__init__(f"{kind} cycle: {' -> '.join(self.path)}")


class AlreadyUndoneError(ValidationError):
    """A ledger entry can be undone at most once."""

    def __init__(self, entry_id: str) -> None:
        self.entry_id = entry_id
        super().__init__(f"Change {entry_id!r} has already been undone")
