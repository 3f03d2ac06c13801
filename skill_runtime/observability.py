# file: skill_runtime/observability.py
"""
Observability — In-process metrics collection.

No external dependencies. Uses engine diagnostics + timing.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .session import SkillSession


@dataclass(frozen=True)
class SessionMetrics:
    """Snapshot of observable session metrics."""

    load_latency_ms: float
    entity_counts: dict
    active_employee_count: int
    change_count: int
    undone_count: int
    data_hash: str
    unsaved_changes: bool
    structural_version: int
    hierarchy_cache: dict
    warnings: list


def collect_metrics(session: "SkillSession") -> SessionMetrics:
    """
    Collect metrics from a live session.

    Reloads the store from storage to measure load latency.
    """
    start = time.perf_counter()
    session.refresh()
    elapsed_ms = (time.perf_counter() - start) * 1000.0

    diagnostics = session.get_diagnostics()
    return SessionMetrics(
        load_latency_ms=round(elapsed_ms, 2),
        entity_counts=diagnostics["counts"],
        active_employee_count=diagnostics["active_employee_count"],
        change_count=session.change_log.count(),
        undone_count=session.change_log.undone_count(),
        data_hash=session.data_hash(),
        unsaved_changes=session.has_unsaved_changes(),
        structural_version=diagnostics["structural_version"],
        hierarchy_cache=diagnostics["hierarchy_cache"],
        warnings=diagnostics["warnings"],
    )
