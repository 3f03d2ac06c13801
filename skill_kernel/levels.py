"""
Skill Kernel — Level Scale

The six assessable levels in display order. The order is also the
click-through cycle of a matrix cell: 0 -> N/A -> 25 -> 50 -> 75 -> 100.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from .constants import MIN_LEVEL, NA_LEVEL


@dataclass(frozen=True)
class SkillLevel:
    value: int
    label: str
    title: str
    description: str


LEVELS: Tuple[SkillLevel, ...] = (
    SkillLevel(0, "0%", "No knowledge", "No experience or training so far."),
    SkillLevel(NA_LEVEL, "N/A", "Not relevant", "Ignored by every calculation."),
    SkillLevel(25, "25%", "Basic knowledge", "Theoretically familiar; first contact."),
    SkillLevel(50, "50%", "Practitioner", "Carries out tasks; sometimes needs support."),
    SkillLevel(75, "75%", "Proficient", "Masters the standard reliably and independently."),
    SkillLevel(100, "100%", "Expert / mentor", "Solves complex problems and passes knowledge on."),
)

VALID_LEVELS = frozenset(level.value for level in LEVELS)

# Targets never carry the N/A sentinel.
VALID_TARGETS = VALID_LEVELS - {NA_LEVEL}


def is_valid_level(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value in VALID_LEVELS


def is_valid_target(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value in VALID_TARGETS


def get_level_by_value(value: int) -> Optional[SkillLevel]:
    for level in LEVELS:
        if level.value == value:
            return level
    return None


def get_next_level(current: int) -> int:
    """Next value in the cell cycle. Unknown values restart the cycle."""
    for idx, level in enumerate(LEVELS):
        if level.value == current:
            return LEVELS[(idx + 1) % len(LEVELS)].value
    return LEVELS[0].value


def score_band(score: Optional[int]) -> str:
    """Coarse band for a roll-up score, mirroring the level titles."""
    if score is None:
        return "none"
    if score >= 75:
        return "proficient"
    if score >= 50:
        return "practitioner"
    if score >= 25:
        return "basic"
    if score > MIN_LEVEL:
        return "beginner"
    return "untrained"

