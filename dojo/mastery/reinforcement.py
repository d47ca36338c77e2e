"""
Reinforcement scheduling: which concepts the next session should revisit.

Output is advisory prompt material, so `prioritize` never raises.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from dojo.mastery.belts import MASTERED_THRESHOLD
from dojo.mastery.decay import DECAY_WINDOW_DAYS, days_since, effective_mastery
from dojo.memory.models import FocusItem, SkillEnrollment
from dojo.shared.config import settings
from dojo.shared.logging import get_logger

logger = get_logger(__name__)

PRIORITY_SCORES: Dict[str, float] = {"high": 3.0, "medium": 2.0, "low": 1.0}


@dataclass
class _Candidate:
    concept: str
    reason: str
    score: float
    # Secondary key, larger sorts first
    tiebreak: float


def _queue_candidates(enrollment: SkillEnrollment, now: Optional[datetime]) -> List[_Candidate]:
    candidates = []
    for position, item in enumerate(enrollment.reinforcement_queue):
        # Practiced since it was queued and mastered now: the entry is spent
        if item.attempts > 0:
            if effective_mastery(enrollment.concepts.get(item.concept), now) >= MASTERED_THRESHOLD:
                continue
        reason = f"queued for reinforcement ({item.priority} priority"
        if item.context:
            reason += f", try it in: {item.context}"
        reason += ")"
        candidates.append(_Candidate(
            concept=item.concept,
            reason=reason,
            score=PRIORITY_SCORES.get(item.priority, PRIORITY_SCORES["low"]),
            tiebreak=float(position),  # most recently queued first
        ))
    return candidates


def _implicit_candidates(
    enrollment: SkillEnrollment,
    now: Optional[datetime],
    weak_threshold: float,
    stale_after_days: int
) -> List[_Candidate]:
    candidates = []
    for key, record in enrollment.concepts.items():
        if record.exposure_count == 0:
            continue
        mastery = effective_mastery(record, now)
        days = days_since(record, now)
        is_weak = mastery < weak_threshold
        is_stale = days is None or days > stale_after_days
        if not (is_weak or is_stale):
            continue

        reasons = []
        if is_weak:
            reasons.append(f"mastery {mastery * 100:.0f}%")
        if is_stale:
            reasons.append("never practiced" if days is None else f"not practiced in {days} days")

        staleness = 1.0 if days is None else min(days / DECAY_WINDOW_DAYS, 1.0)
        candidates.append(_Candidate(
            concept=key,
            reason=", ".join(reasons),
            score=(1.0 - mastery) + staleness,
            tiebreak=-mastery,  # lowest mastery first
        ))
    return candidates


def prioritize(
    enrollment: SkillEnrollment,
    now: Optional[datetime] = None,
    limit: Optional[int] = None
) -> List[FocusItem]:
    """
    Rank concepts to revisit, best first, at most `limit` of them.

    Queue entries score by priority tier (high 3, medium 2, low 1); weak or
    stale concepts score by mastery gap plus staleness, in (0, 2]. Each
    concept appears once, at its best rank.
    """
    try:
        limit = limit or settings.mastery.reinforcement_limit
        candidates = _queue_candidates(enrollment, now) + _implicit_candidates(
            enrollment,
            now,
            settings.mastery.weak_mastery_threshold,
            settings.mastery.stale_after_days,
        )
        candidates.sort(key=lambda c: (c.score, c.tiebreak), reverse=True)

        seen = set()
        focus: List[FocusItem] = []
        for candidate in candidates:
            if candidate.concept in seen:
                continue
            seen.add(candidate.concept)
            focus.append(FocusItem(concept=candidate.concept, reason=candidate.reason))
            if len(focus) >= limit:
                break
        return focus
    except Exception as e:
        logger.error(f"Reinforcement prioritization failed: {str(e)}")
        return []
