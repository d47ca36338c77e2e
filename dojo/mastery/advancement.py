"""
Belt advancement evaluation and the assessment-eligibility flag.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from dojo.mastery.belts import BELT_THRESHOLDS, MASTERED_THRESHOLD, belt_rank, next_belt
from dojo.mastery.decay import effective_mastery
from dojo.memory.models import EligibilityDetails, EligibilityReport, SkillEnrollment
from dojo.memory.store import EnrollmentStore
from dojo.shared.logging import get_logger, log_with_context

logger = get_logger(__name__)


def evaluate(
    enrollment: SkillEnrollment,
    completed_session_count: int,
    now: Optional[datetime] = None
) -> EligibilityReport:
    """
    Decide whether an enrollment may assess for its next belt.

    Only concepts tagged at or below the current belt count. A concept is
    mastered when its decayed mastery is at least MASTERED_THRESHOLD.
    """
    upcoming = next_belt(enrollment.current_belt)
    if upcoming is None:
        return EligibilityReport(
            eligible=False,
            next_belt=None,
            details=EligibilityDetails(
                session_count=completed_session_count,
                reason="Already at max belt",
            ),
        )

    current_rank = belt_rank(enrollment.current_belt)
    threshold = BELT_THRESHOLDS[enrollment.current_belt]

    total_at_level = 0
    mastered_at_level = 0
    for record in enrollment.concepts.values():
        if belt_rank(record.belt_level) > current_rank:
            continue
        total_at_level += 1
        if effective_mastery(record, now) >= MASTERED_THRESHOLD:
            mastered_at_level += 1

    concept_pct = mastered_at_level / total_at_level if total_at_level > 0 else 0.0

    meets_pct = concept_pct >= threshold.concept_pct
    meets_sessions = completed_session_count >= threshold.min_sessions
    meets_concepts = total_at_level >= threshold.min_concepts

    return EligibilityReport(
        eligible=meets_pct and meets_sessions and meets_concepts,
        next_belt=upcoming,
        details=EligibilityDetails(
            concept_pct=concept_pct,
            required_pct=threshold.concept_pct,
            session_count=completed_session_count,
            required_sessions=threshold.min_sessions,
            total_concepts=total_at_level,
            required_concepts=threshold.min_concepts,
            mastered_concepts=mastered_at_level,
        ),
    )


async def check_assessment_eligibility(
    store: EnrollmentStore,
    enrollment_id: str,
    completed_session_count: int,
    now: Optional[datetime] = None
) -> EligibilityReport:
    """
    Evaluate and persist `assessment_available` when it changed.

    A lost version race means someone else wrote the enrollment meanwhile;
    the flag is recomputed on the next check, so the conflict propagates.
    """
    enrollment = await asyncio.to_thread(store.get_enrollment, enrollment_id)
    report = evaluate(enrollment, completed_session_count, now)

    if report.eligible != enrollment.assessment_available:
        await asyncio.to_thread(
            store.update_enrollment,
            enrollment.id,
            enrollment.version,
            assessment_available=report.eligible,
            now=now,
        )
        log_with_context(
            logger,
            logging.INFO,
            f"Assessment availability set to {report.eligible}",
            user_id=enrollment.user_id,
            action="assessment_flag",
            enrollment_id=enrollment.id,
            next_belt=report.next_belt,
        )

    return report
