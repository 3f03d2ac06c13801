"""
Skill Kernel — Diagnostics

Health report of the store: counts plus every structural defect the
resolvers would otherwise only tolerate silently.
"""

from __future__ import annotations

from .domain_types import ENTITY_TYPES, SkillState
from .hierarchy import find_subcategory_cycles
from .invariants import collect_violations
from .targets import find_role, find_role_cycles


def compute_diagnostics(state: SkillState) -> dict:
    """Return a diagnostic dict summarising the current store health."""
    warnings: list[str] = []

    sub_cycles = find_subcategory_cycles(state)
    for cycle in sub_cycles:
        warnings.append(f"Subcategory cycle: {' -> '.join(cycle)}")

    role_cycles = find_role_cycles(state)
    for cycle in role_cycles:
        warnings.append(f"Role inheritance cycle: {' -> '.join(cycle)}")

    unknown_roles = sorted({
        ref
        for emp in state.employees.values()
        for ref in emp.roles
        if find_role(state, ref) is None
    })
    if unknown_roles:
        warnings.append(
            f"{len(unknown_roles)} unknown role reference(s): {', '.join(unknown_roles)}"
        )

    dangling_parents = sorted(
        r.id for r in state.roles.values()
        if r.inherits_from_id and find_role(state, r.inherits_from_id) is None
    )
    if dangling_parents:
        warnings.append(
            f"{len(dangling_parents)} role(s) inherit from a missing role: "
            f"{', '.join(dangling_parents)}"
        )

    violations = collect_violations(state)
    warnings.extend(violations)

    return {
        "counts": {
            collection: len(getattr(state, collection))
            for _, collection in ENTITY_TYPES.values()
        },
        "active_employee_count": sum(1 for e in state.employees.values() if e.is_active),
        "structural_version": state.structural_version,
        "subcategory_cycles": sub_cycles,
        "role_cycles": role_cycles,
        "unknown_role_refs": unknown_roles,
        "violation_count": len(violations),
        "warnings": warnings,
    }
