"""
Skill Kernel — Hierarchy Resolver

Descendant closure of the Category -> SubCategory(*) -> Skill tree.
Traversal is iterative with a visited set, so malformed parent pointers
(loops, self-parents) end the walk instead of recursing forever; the
loop is logged and reported through the optional ``diagnostics`` list.

Results are memoised per ``(node_kind, node_id, structural_version)``.
"""

from __future__ import annotations

import logging
from typing import Dict, FrozenSet, List, Optional, Set, Tuple

from .domain_types import SkillState

logger = logging.getLogger(__name__)

NODE_CATEGORY = "category"
NODE_SUBCATEGORY = "subcategory"
NODE_SKILL = "skill"

_NodeKey = Tuple[str, str]


# ---------------------------------------------------------------------------
# Adjacency
# ---------------------------------------------------------------------------

def build_child_index(state: SkillState) -> Dict[_NodeKey, List[str]]:
    """
    Map each parent node to its direct child subcategory ids.
    Subcategories without a parent are the roots of their category.
    """
    index: Dict[_NodeKey, List[str]] = {}
    for sc_id in sorted(state.subcategories):
        sc = state.subcategories[sc_id]
        if sc.parent_subcategory_id:
            key = (NODE_SUBCATEGORY, sc.parent_subcategory_id)
        else:
            key = (NODE_CATEGORY, sc.category_id)
        index.setdefault(key, []).append(sc_id)
    return index


def resolve_node_kind(state: SkillState, node_id: str) -> Optional[str]:
    if node_id in state.categories:
        return NODE_CATEGORY
    if node_id in state.subcategories:
        return NODE_SUBCATEGORY
    if node_id in state.skills:
        return NODE_SKILL
    return None


# ---------------------------------------------------------------------------
# Closure walks
# ---------------------------------------------------------------------------

def walk_subcategories(
    index: Dict[_NodeKey, List[str]],
    node_id: str,
    node_kind: str,
    diagnostics: Optional[List[str]] = None,
) -> Set[str]:
    """Iterative DFS below *node_id*; the start node itself is excluded."""
    found: Set[str] = set()
    stack: List[str] = list(index.get((node_kind, node_id), []))
    while stack:
        sc_id = stack.pop()
        if sc_id in found or (node_kind == NODE_SUBCATEGORY and sc_id == node_id):
            _report(
                f"Subcategory cycle below {node_kind} {node_id!r} "
                f"(revisited {sc_id!r})",
                diagnostics,
            )
            continue
        found.add(sc_id)
        stack.extend(index.get((NODE_SUBCATEGORY, sc_id), []))
    return found


def skills_under(state: SkillState, subcategory_ids: Set[str]) -> Set[str]:
    return {
        sk_id for sk_id, sk in state.skills.items()
        if sk.subcategory_id in subcategory_ids
    }


def find_parent_cycle(
    state: SkillState,
    subcategory_id: str,
) -> Optional[List[str]]:
    """
    Follow parent pointers upwards from *subcategory_id*. Returns the
    loop as a path (first node repeated at the end) or None.
    """
    path: List[str] = []
    seen: Set[str] = set()
    current: Optional[str] = subcategory_id
    while current:
        if current in seen:
            return path[path.index(current):] + [current]
        seen.add(current)
        path.append(current)
        sc = state.subcategories.get(current)
        current = sc.parent_subcategory_id if sc else None
    return None


def find_subcategory_cycles(state: SkillState) -> List[List[str]]:
    """Every distinct parent-pointer loop in the store."""
    cycles: List[List[str]] = []
    seen: Set[FrozenSet[str]] = set()
    for sc_id in sorted(state.subcategories):
        cycle = find_parent_cycle(state, sc_id)
        if cycle is None:
            continue
        members = frozenset(cycle)
        if members not in seen:
            seen.add(members)
            cycles.append(cycle)
    return cycles


# ---------------------------------------------------------------------------
# Memoising resolver
# ---------------------------------------------------------------------------

class HierarchyResolver:
    """
    Stateful cache in front of the pure walks. Entries are valid for a
    single ``structural_version``; a version change drops the cache.
    """

    def __init__(self) -> None:
        self._version: Optional[int] = None
        self._index: Dict[_NodeKey, List[str]] = {}
        self._subcategory_cache: Dict[Tuple[str, str, int], Tuple[FrozenSet[str], Tuple[str, ...]]] = {}
        self._skill_cache: Dict[Tuple[str, str, int], Tuple[FrozenSet[str], Tuple[str, ...]]] = {}
        self.hits = 0
        self.misses = 0

    def _sync(self, state: SkillState) -> None:
        if state.structural_version != self._version:
            self._version = state.structural_version
            self._index = build_child_index(state)
            self._subcategory_cache.clear()
            self._skill_cache.clear()

    def descendant_subcategory_ids(
        self,
        state: SkillState,
        node_id: str,
        node_kind: Optional[str] = None,
        diagnostics: Optional[List[str]] = None,
    ) -> FrozenSet[str]:
        self._sync(state)
        kind = node_kind or resolve_node_kind(state, node_id)
        if kind not in (NODE_CATEGORY, NODE_SUBCATEGORY):
            return frozenset()

        key = (kind, node_id, state.structural_version)
        if key in self._subcategory_cache:
            self.hits += 1
        else:
            self.misses += 1
        ids, notes = self._subcategory_entry(key)
        if diagnostics is not None:
            diagnostics.extend(notes)
        return ids

    def _subcategory_entry(
        self, key: Tuple[str, str, int],
    ) -> Tuple[FrozenSet[str], Tuple[str, ...]]:
        """Cached subtree walk; does not touch the hit/miss counters."""
        cached = self._subcategory_cache.get(key)
        if cached is None:
            kind, node_id, _ = key
            notes: List[str] = []
            ids = frozenset(walk_subcategories(self._index, node_id, kind, notes))
            cached = (ids, tuple(notes))
            self._subcategory_cache[key] = cached
        return cached

    def descendant_skill_ids(
        self,
        state: SkillState,
        node_id: str,
        node_kind: Optional[str] = None,
        diagnostics: Optional[List[str]] = None,
    ) -> FrozenSet[str]:
        """
        Skills attached to *node_id* or anywhere beneath it. A skill id
        resolves to itself; an unknown id resolves to the empty set.
        """
        self._sync(state)
        kind = node_kind or resolve_node_kind(state, node_id)
        if kind == NODE_SKILL:
            return frozenset({node_id}) if node_id in state.skills else frozenset()
        if kind not in (NODE_CATEGORY, NODE_SUBCATEGORY):
            return frozenset()

        key = (kind, node_id, state.structural_version)
        cached = self._skill_cache.get(key)
        if cached is None:
            self.misses += 1
            subs, notes = self._subcategory_entry(key)
            cached = (frozenset(skills_under(state, subs | {node_id})), notes)
            self._skill_cache[key] = cached
        else:
            self.hits += 1
        if diagnostics is not None:
            diagnostics.extend(cached[1])
        return cached[0]

    def cache_info(self) -> dict:
        return {
            "version": self._version,
            "hits": self.hits,
            "misses": self.misses,
            "entries": len(self._subcategory_cache) + len(self._skill_cache),
        }


def _report(message: str, diagnostics: Optional[List[str]]) -> None:
    logger.warning(message)
    if diagnostics is not None:
        diagnostics.append(message)
