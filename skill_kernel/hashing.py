"""
Skill Kernel — Canonical Hashing

Deterministic canonical serialization + SHA-256 fingerprint of the data
set, used to tell whether the store differs from the last export.

Rules:
  - Every collection serialized as a list sorted by id
  - Object keys sorted
  - ``updated_at`` and ``timestamp`` dropped (they change on every save)
  - UTF-8 JSON, no whitespace
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

from .constants import DATA_HASH_LENGTH
from .domain_types import SkillState

_VOLATILE_KEYS = frozenset({"updated_at", "timestamp"})


def _stable(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {k: _stable(v) for k, v in obj.items() if k not in _VOLATILE_KEYS}
    if isinstance(obj, list):
        items = [_stable(v) for v in obj]
        if items and all(isinstance(v, dict) and "id" in v for v in items):
            items.sort(key=lambda v: str(v["id"]))
        return items
    return obj


def canonical_serialize(state: SkillState) -> bytes:
    """Canonical UTF-8 JSON of every collection. No whitespace."""
    return json.dumps(
        _stable(state.to_dict()),
        ensure_ascii=True,
        separators=(",", ":"),
        sort_keys=True,
    ).encode("utf-8")


def canonical_hash(state: SkillState) -> str:
    """SHA-256 of canonical serialization. Lowercase hex string."""
    return hashlib.sha256(canonical_serialize(state)).hexdigest()


def data_hash(state: SkillState) -> str:
    """Short upper-case fingerprint shown next to exports."""
    return canonical_hash(state)[:DATA_HASH_LENGTH].upper()


def has_unsaved_changes(state: SkillState, last_saved_hash: str) -> bool:
    return data_hash(state) != (last_saved_hash or "").upper()
