"""
Skill Kernel — Snapshot Encoder / Decoder

Whole-store JSON export and destructive import.

Rules:
  - Every collection serialized as a list sorted by id.
  - Object keys sorted; output byte-identical for identical states.
  - Decoding is strict: unknown collections, unknown entity fields,
    duplicate ids and mis-keyed assessments are rejected.
  - Validation explicitly triggered via restore_snapshot only.
"""

from __future__ import annotations

import json
import pathlib
from typing import Any, Dict, List

from .domain_types import ENTITY_TYPES, SkillState, assessment_id
from .errors import SkillGridError
from .invariants import validate_state
from .state import state_from_collections

SNAPSHOT_VERSION: int = 1

_COLLECTIONS = frozenset(collection for _, collection in ENTITY_TYPES.values())


# ══════════════════════════════════════════════════════════════
# Exception Hierarchy
# ══════════════════════════════════════════════════════════════

class SnapshotError(SkillGridError):
    """Base exception for all snapshot operations."""


class SerializationError(SnapshotError):
    """Raised when encoding a SkillState to JSON fails."""


class DeserializationError(SnapshotError):
    """Raised when decoding JSON to a SkillState fails."""


class InvariantViolationSnapshotError(SnapshotError):
    """Wraps the store violation found while restoring a snapshot."""

    def __init__(self, original: SkillGridError) -> None:
        self.original = original
        super().__init__(
            f"Invariant violation during snapshot restore: {original}"
        )


# ══════════════════════════════════════════════════════════════
# Encoder
# ══════════════════════════════════════════════════════════════

def encode_snapshot(state: SkillState) -> str:
    """
    Serialize a SkillState into a canonical JSON string.
    No mutation. No side effects. No validation.
    """
    try:
        obj: Dict[str, Any] = {"version": SNAPSHOT_VERSION}
        obj.update(state.to_dict())
        return json.dumps(obj, ensure_ascii=False, separators=(",", ":"), sort_keys=True)
    except (TypeError, ValueError) as exc:
        raise SerializationError(f"Failed to encode snapshot: {exc}") from exc


# ══════════════════════════════════════════════════════════════
# Decoder
# ══════════════════════════════════════════════════════════════

def decode_snapshot(json_str: str) -> SkillState:
    """
    Strict deserialization of snapshot JSON to a SkillState.
    Collections may be omitted (they load empty); nothing else is lenient.
    """
    try:
        raw = json.loads(json_str)
    except json.JSONDecodeError as exc:
        raise DeserializationError(f"Invalid JSON: {exc}") from exc

    if not isinstance(raw, dict):
        raise DeserializationError(
            f"Top-level JSON must be object, got {type(raw).__name__}"
        )

    version = raw.get("version")
    if version != SNAPSHOT_VERSION:
        raise DeserializationError(
            f"Unsupported snapshot version {version!r}, expected {SNAPSHOT_VERSION}"
        )
    unknown = set(raw) - _COLLECTIONS - {"version"}
    if unknown:
        raise DeserializationError(f"Unknown fields in snapshot: {sorted(unknown)}")

    collections: Dict[str, List[dict]] = {}
    for collection in sorted(_COLLECTIONS & set(raw)):
        rows = raw[collection]
        if not isinstance(rows, list):
            raise DeserializationError(f"{collection!r} must be a JSON array")
        for i, row in enumerate(rows):
            if not isinstance(row, dict):
                raise DeserializationError(f"{collection}[{i}] must be a JSON object")
        collections[collection] = rows

    try:
        state = state_from_collections(collections)
    except SkillGridError as exc:
        raise DeserializationError(str(exc)) from exc

    for a in state.assessments.values():
        if a.id != assessment_id(a.employee_id, a.skill_id):
            raise DeserializationError(
                f"Assessment id {a.id!r} does not match its pair "
                f"({a.employee_id!r}, {a.skill_id!r})"
            )
    return state


# ══════════════════════════════════════════════════════════════
# Restore (decode + validate)
# ══════════════════════════════════════════════════════════════

def restore_snapshot(json_str: str) -> SkillState:
    """
    Decode a snapshot and immediately validate every entity.
    Hard fail on first violation.
    """
    state = decode_snapshot(json_str)
    try:
        validate_state(state)
    except SkillGridError as exc:
        raise InvariantViolationSnapshotError(exc) from exc
    return state


# ══════════════════════════════════════════════════════════════
# File I/O
# ══════════════════════════════════════════════════════════════

def export_snapshot_to_file(state: SkillState, path: pathlib.Path) -> None:
    """Export canonical snapshot JSON to a file. UTF-8 only."""
    path.write_text(encode_snapshot(state), encoding="utf-8")


def import_snapshot_from_file(path: pathlib.Path) -> SkillState:
    """
    Import a snapshot from a file and validate it.
    Fails if malformed. No fallback. No silent repair.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise DeserializationError(
            f"Failed to read snapshot file {path}: {exc}"
        ) from exc
    return restore_snapshot(text)
