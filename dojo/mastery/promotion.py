"""
Belt promotion transaction and the other audited belt writes.

History is the record of truth: the history entry is written before the belt
changes, and removed again if the version-checked belt update loses a race.
A belt can therefore never change without an entry explaining it.
"""

import asyncio
import logging
from typing import Optional

from dojo.mastery.belts import next_belt
from dojo.memory.models import BeltHistoryEntry, PromotionResult, SkillEnrollment
from dojo.memory.store import EnrollmentStore
from dojo.shared.clock import Clock, utcnow
from dojo.shared.exceptions import (
    ConcurrentModificationError,
    ConflictError,
    MaxBeltReachedError,
)
from dojo.shared.logging import get_logger, log_with_context

logger = get_logger(__name__)


async def promote(
    store: EnrollmentStore,
    enrollment_id: str,
    source_session_id: Optional[str] = None,
    clock: Clock = utcnow
) -> PromotionResult:
    """
    Advance an enrollment to the next belt.

    Raises:
        NotFoundError if the enrollment does not exist
        MaxBeltReachedError if it already holds the terminal belt
        ConcurrentModificationError if the enrollment changed under us; the
            history entry has been removed and the caller may retry
    """
    enrollment = await asyncio.to_thread(store.get_enrollment, enrollment_id)
    upcoming = next_belt(enrollment.current_belt)
    if upcoming is None:
        raise MaxBeltReachedError(f"Enrollment {enrollment_id} is already at {enrollment.current_belt}")

    now = clock()
    entry = await asyncio.to_thread(
        store.add_belt_history,
        BeltHistoryEntry(
            enrollment_id=enrollment.id,
            from_belt=enrollment.current_belt,
            to_belt=upcoming,
            achieved_at=now,
            source_session_id=source_session_id,
        ),
    )

    try:
        await asyncio.to_thread(
            store.update_enrollment,
            enrollment.id,
            enrollment.version,
            current_belt=upcoming,
            assessment_available=False,
            now=now,
        )
    except ConflictError as e:
        await asyncio.to_thread(store.delete_belt_history, entry.id)
        log_with_context(
            logger,
            logging.WARNING,
            "Promotion lost a version race; history entry rolled back",
            user_id=enrollment.user_id,
            action="promotion_conflict",
            session_id=source_session_id,
            enrollment_id=enrollment.id,
        )
        raise ConcurrentModificationError(
            f"Enrollment {enrollment_id} was modified concurrently, please retry"
        ) from e
    except Exception:
        await asyncio.to_thread(store.delete_belt_history, entry.id)
        raise

    log_with_context(
        logger,
        logging.INFO,
        f"Promoted {enrollment.current_belt} -> {upcoming}",
        user_id=enrollment.user_id,
        action="belt_promotion",
        session_id=source_session_id,
        enrollment_id=enrollment.id,
    )
    return PromotionResult(
        enrollment_id=enrollment.id,
        user_id=enrollment.user_id,
        skill_id=enrollment.skill_id,
        from_belt=enrollment.current_belt,
        to_belt=upcoming,
    )


async def fail_assessment(store: EnrollmentStore, enrollment_id: str) -> SkillEnrollment:
    """Failure path of an assessment: the flag resets, the belt stays."""
    def _reset(enrollment: SkillEnrollment):
        enrollment.assessment_available = False

    return await asyncio.to_thread(store.atomic_update, enrollment_id, _reset)


async def set_belt(
    store: EnrollmentStore,
    enrollment_id: str,
    belt: str,
    source_session_id: Optional[str] = None,
    reason: Optional[str] = None,
    clock: Clock = utcnow
) -> PromotionResult:
    """
    Direct belt assignment (onboarding). Audited, but without the version check.

    The rank check and the history entry share the belt write's transaction,
    so a belt raised concurrently is never lowered again. Assigning the
    current belt changes nothing.

    Raises:
        InvalidStateError if `belt` ranks below the current belt
    """
    enrollment, entry = await asyncio.to_thread(
        store.assign_belt,
        enrollment_id,
        belt,
        source_session_id,
        reason,
        clock(),
    )
    if entry is None:
        return PromotionResult(
            enrollment_id=enrollment.id,
            user_id=enrollment.user_id,
            skill_id=enrollment.skill_id,
            from_belt=belt,
            to_belt=belt,
        )

    log_with_context(
        logger,
        logging.INFO,
        f"Belt set {entry.from_belt} -> {belt}",
        user_id=enrollment.user_id,
        action="set_belt",
        session_id=source_session_id,
        enrollment_id=enrollment.id,
        reason=reason,
    )
    return PromotionResult(
        enrollment_id=enrollment.id,
        user_id=enrollment.user_id,
        skill_id=enrollment.skill_id,
        from_belt=entry.from_belt,
        to_belt=belt,
    )
