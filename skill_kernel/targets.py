"""
Skill Kernel — Target Resolver

Required levels come from roles. A role's own requirement for a skill
always wins; otherwise the walk moves up ``inherits_from_id``. A role
seen twice on one walk means the inheritance graph loops: the walk
stops, reports the loop and yields "no requirement".
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Set

from .domain_types import Role, SkillState

logger = logging.getLogger(__name__)


def find_role(state: SkillState, role_ref: Optional[str]) -> Optional[Role]:
    """Look a role up by id, then by trimmed case-insensitive name."""
    if not role_ref:
        return None
    role = state.roles.get(role_ref)
    if role is not None:
        return role
    needle = role_ref.strip().lower()
    for rid in sorted(state.roles):
        candidate = state.roles[rid]
        if candidate.name.strip().lower() == needle:
            return candidate
    return None


def own_requirement(role: Role, skill_id: str) -> Optional[int]:
    for req in role.required_skills:
        if req.skill_id == skill_id:
            return req.level
    return None


def _parent_of(state: SkillState, role: Role) -> Optional[Role]:
    if not role.inherits_from_id:
        return None
    return find_role(state, role.inherits_from_id)


def resolve_role_target(
    state: SkillState,
    role_ref: Optional[str],
    skill_id: str,
    diagnostics: Optional[List[str]] = None,
) -> Optional[int]:
    """Required level for *skill_id* under *role_ref*, or None."""
    visited: Set[str] = set()
    role = find_role(state, role_ref)
    while role is not None:
        if role.id in visited:
            _report(
                f"Role inheritance cycle at {role.id!r} while resolving "
                f"skill {skill_id!r} for {role_ref!r}",
                diagnostics,
            )
            return None
        visited.add(role.id)
        level = own_requirement(role, skill_id)
        if level is not None:
            return level
        role = _parent_of(state, role)
    return None


def max_role_target(
    state: SkillState,
    role_refs: Iterable[str],
    skill_id: str,
    diagnostics: Optional[List[str]] = None,
) -> Optional[int]:
    """
    Highest requirement across several roles, each resolved on its own.
    None when no role requires the skill.
    """
    best: Optional[int] = None
    for ref in role_refs:
        level = resolve_role_target(state, ref, skill_id, diagnostics)
        if level is not None and (best is None or level > best):
            best = level
    return best


def role_requirements(
    state: SkillState,
    role_ref: Optional[str],
    diagnostics: Optional[List[str]] = None,
) -> Dict[str, int]:
    """
    Flattened requirement map of a role including everything inherited.
    The nearest declaration of a skill wins.
    """
    merged: Dict[str, int] = {}
    visited: Set[str] = set()
    role = find_role(state, role_ref)
    while role is not None:
        if role.id in visited:
            _report(
                f"Role inheritance cycle at {role.id!r} while flattening "
                f"{role_ref!r}",
                diagnostics,
            )
            break
        visited.add(role.id)
        for req in role.required_skills:
            merged.setdefault(req.skill_id, req.level)
        role = _parent_of(state, role)
    return merged


def find_inheritance_cycle(state: SkillState, role_id: str) -> Optional[List[str]]:
    """Loop reachable from *role_id* as a path of role ids, or None."""
    path: List[str] = []
    role = state.roles.get(role_id)
    while role is not None:
        if role.id in path:
            return path[path.index(role.id):] + [role.id]
        path.append(role.id)
        role = _parent_of(state, role)
    return None


def find_role_cycles(state: SkillState) -> List[List[str]]:
    cycles: List[List[str]] = []
    seen: Set[frozenset] = set()
    for rid in sorted(state.roles):
        cycle = find_inheritance_cycle(state, rid)
        if cycle is not None and frozenset(cycle) not in seen:
            seen.add(frozenset(cycle))
            cycles.append(cycle)
    return cycles


def _report(message: str, diagnostics: Optional[List[str]]) -> None:
    logger.warning(message)
    if diagnostics is not None:
        diagnostics.append(message)
