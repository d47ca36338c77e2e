"""
The belt ladder: a closed, linear ordering with per-belt advancement thresholds.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

BELT_ORDER: Tuple[str, ...] = (
    "white", "yellow", "orange", "green", "blue", "purple", "brown", "black"
)

MASTERED_THRESHOLD = 0.8


@dataclass(frozen=True)
class BeltThreshold:
    """What an enrollment at this belt needs before assessing for the next one."""
    concept_pct: float
    min_sessions: int
    min_concepts: int


BELT_THRESHOLDS: Dict[str, BeltThreshold] = {
    "white": BeltThreshold(concept_pct=0.60, min_sessions=1, min_concepts=2),
    "yellow": BeltThreshold(concept_pct=0.70, min_sessions=3, min_concepts=4),
    "orange": BeltThreshold(concept_pct=0.75, min_sessions=5, min_concepts=6),
    "green": BeltThreshold(concept_pct=0.80, min_sessions=8, min_concepts=8),
    "blue": BeltThreshold(concept_pct=0.82, min_sessions=12, min_concepts=10),
    "purple": BeltThreshold(concept_pct=0.85, min_sessions=16, min_concepts=12),
    "brown": BeltThreshold(concept_pct=0.88, min_sessions=20, min_concepts=15),
    "black": BeltThreshold(concept_pct=0.90, min_sessions=25, min_concepts=18),
}


def belt_rank(belt: Optional[str]) -> int:
    """Index of a belt in the ladder. Unknown or missing belts rank as white."""
    if belt in BELT_ORDER:
        return BELT_ORDER.index(belt)
    return 0


def next_belt(belt: str) -> Optional[str]:
    """The belt after `belt`, or None at the top of the ladder."""
    if belt not in BELT_ORDER:
        return None
    idx = BELT_ORDER.index(belt)
    if idx >= len(BELT_ORDER) - 1:
        return None
    return BELT_ORDER[idx + 1]


def is_terminal(belt: str) -> bool:
    return belt == BELT_ORDER[-1]
