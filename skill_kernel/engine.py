"""
Skill Kernel — Engine

Top-level orchestrator. Delegates mutation to transitions.py,
validates via invariants.py, answers queries through the resolvers and
reports via diagnostics.py.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, Tuple, Union

from .aggregation import aggregate, employee_score, select_employees
from .constants import MODE_AVERAGE
from .diagnostics import compute_diagnostics
from .domain_types import Assessment, AssessmentLog, Employee, SkillState, TransitionResult
from .events import BaseEvent
from .hashing import data_hash
from .hierarchy import HierarchyResolver
from .insights import (
    SkillGap, get_history, get_potential_mentors, get_skill_gaps, xp_comparison,
)
from .invariants import validate_writes
from .state import create_initial_state
from .targets import max_role_target, resolve_role_target
from .transitions import apply_event as _transition_apply


class SkillEngine:
    """
    Stateful engine that wraps the pure functional transition layer.

      - Sequence numbers strictly increasing, no gaps, no duplicates
      - A failing transition or invariant leaves the state untouched
      - Hierarchy closures are memoised per structural version
    """

    def __init__(self) -> None:
        self._state: SkillState | None = None
        self._last_sequence: int = 0
        self._hierarchy = HierarchyResolver()

    # -- State access -------------------------------------------------------

    @property
    def state(self) -> SkillState:
        if self._state is None:
            raise RuntimeError("Engine not initialised — call initialize_state() first")
        return self._state

    @property
    def last_sequence(self) -> int:
        return self._last_sequence

    @property
    def hierarchy(self) -> HierarchyResolver:
        return self._hierarchy

    # -- Lifecycle ----------------------------------------------------------

    def initialize_state(self) -> SkillState:
        """Create a fresh empty state and store it."""
        self._state = create_initial_state()
        self._last_sequence = 0
        return self._state

    def load_state(self, state: SkillState) -> SkillState:
        """
        Replace the whole store (initial load or resync from storage).
        The structural version moves forward so no memoised closure of
        the previous store survives.
        """
        if self._state is not None:
            state.structural_version = max(
                state.structural_version, self._state.structural_version + 1,
            )
        self._state = state
        return state

    def apply_event(
        self, event: BaseEvent,
    ) -> Tuple[SkillState, TransitionResult]:
        """
        Apply a single command:
          1. Validate sequence (strictly increasing, no gaps)
          2. Delegate to transitions.apply_event
          3. Validate every entity the transition wrote
          4. Store and return
        """
        expected = self._last_sequence + 1
        if event.sequence != expected:
            raise ValueError(
                f"Sequence violation: expected {expected}, "
                f"got {event.sequence}"
            )

        new_state, result = _transition_apply(self.state, event)
        validate_writes(new_state, result.writes)
        self._state = new_state
        self._last_sequence = event.sequence
        return new_state, result

    # -- Queries ------------------------------------------------------------

    def get_assessment(self, employee_id: str, skill_id: str) -> Optional[Assessment]:
        return self.state.get_assessment(employee_id, skill_id)

    def descendant_subcategory_ids(
        self, node_id: str, diagnostics: Optional[List[str]] = None,
    ) -> frozenset:
        return self._hierarchy.descendant_subcategory_ids(
            self.state, node_id, diagnostics=diagnostics,
        )

    def descendant_skill_ids(
        self,
        node_id: str,
        node_kind: Optional[str] = None,
        diagnostics: Optional[List[str]] = None,
    ) -> frozenset:
        return self._hierarchy.descendant_skill_ids(
            self.state, node_id, node_kind, diagnostics,
        )

    def resolve_role_target(
        self, role_ref: str, skill_id: str, diagnostics: Optional[List[str]] = None,
    ) -> Optional[int]:
        return resolve_role_target(self.state, role_ref, skill_id, diagnostics)

    def employee_role_target(self, employee_id: str, skill_id: str) -> Optional[int]:
        emp = self.state.employees.get(employee_id)
        if emp is None:
            return None
        return max_role_target(self.state, emp.roles, skill_id)

    def select_employees(self, **filters) -> List[Employee]:
        return select_employees(self.state, **filters)

    def aggregate(
        self,
        skill_ids: Iterable[str],
        employees: Optional[Sequence[Union[Employee, str]]] = None,
        mode: str = MODE_AVERAGE,
        diagnostics: Optional[List[str]] = None,
    ) -> Optional[int]:
        return aggregate(self.state, skill_ids, employees, mode, diagnostics)

    def aggregate_node(
        self,
        node_id: str,
        employees: Optional[Sequence[Union[Employee, str]]] = None,
        mode: str = MODE_AVERAGE,
        diagnostics: Optional[List[str]] = None,
    ) -> Optional[int]:
        """Roll-up for a category, subcategory or skill row."""
        skill_ids = sorted(self.descendant_skill_ids(node_id, diagnostics=diagnostics))
        return aggregate(self.state, skill_ids, employees, mode, diagnostics)

    def employee_score(
        self,
        employee_id: str,
        skill_ids: Iterable[str],
        mode: str = MODE_AVERAGE,
        diagnostics: Optional[List[str]] = None,
    ) -> Optional[int]:
        return employee_score(self.state, employee_id, skill_ids, mode, diagnostics)

    def get_skill_gaps(
        self, employee_id: str, target_role_id: Optional[str] = None,
    ) -> List[SkillGap]:
        return get_skill_gaps(self.state, employee_id, target_role_id)

    def get_potential_mentors(
        self,
        skill_id: str,
        exclude_employee_id: Optional[str] = None,
        active_only: bool = False,
    ) -> List[Employee]:
        return get_potential_mentors(self.state, skill_id, exclude_employee_id, active_only)

    def get_history(self, employee_id: str) -> List[AssessmentLog]:
        """Level changes of one employee, oldest first."""
        return get_history(self.state, employee_id)

    def get_all_history(self) -> List[AssessmentLog]:
        return get_history(self.state)

    def xp_comparison(self, period: str, reference=None) -> dict:
        return xp_comparison(self.state, period, reference)

    def data_hash(self) -> str:
        return data_hash(self.state)

    def get_diagnostics(self) -> dict:
        """Return diagnostic snapshot of the current state."""
        report = compute_diagnostics(self.state)
        report["hierarchy_cache"] = self._hierarchy.cache_info()
        return report
