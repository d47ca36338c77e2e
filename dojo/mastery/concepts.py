"""
Concept store: per-enrollment concept records and their exposure bookkeeping.

The headline `mastery` of a concept is supplied by the sensei's holistic
judgment. Counters (exposures, successes, streak) are kept alongside it for
eligibility math and auditing; the two are never derived from each other
except when the sensei omits a score.
"""

import asyncio
import logging
import re
from datetime import datetime
from typing import List, Optional, Tuple

from dojo.memory.models import ConceptRecord, ReinforcementItem, SkillEnrollment
from dojo.memory.store import EnrollmentStore
from dojo.shared.clock import utcnow
from dojo.shared.config import settings
from dojo.shared.exceptions import ConflictError
from dojo.shared.logging import get_logger, log_with_context

logger = get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalize_concept_key(name: str) -> str:
    """Canonical concept key: lowercase, whitespace runs collapsed to one underscore."""
    return _WHITESPACE.sub("_", name.strip().lower())


def get_or_create(
    enrollment: SkillEnrollment,
    concept: str,
    belt_level: Optional[str] = None
) -> Tuple[str, ConceptRecord]:
    """
    Look up a concept by canonical key.

    Returns a copy of the stored record, or a zero-valued record tagged with
    `belt_level` (white when not given). The enrollment is not modified.
    """
    key = normalize_concept_key(concept)
    existing = enrollment.concepts.get(key)
    if existing is not None:
        return key, existing.model_copy(deep=True)
    return key, ConceptRecord(belt_level=belt_level or "white")


def record_exposure(
    record: ConceptRecord,
    success: bool,
    assessed_mastery: Optional[float] = None,
    context: Optional[str] = None,
    belt_level: Optional[str] = None,
    now: Optional[datetime] = None
) -> ConceptRecord:
    """
    Apply one exercise of the concept to `record` in place.

    `assessed_mastery` replaces the stored mastery outright, so it can go down.
    When it is omitted the success ratio is used instead.
    """
    record.exposure_count += 1
    if success:
        record.success_count += 1
        record.streak += 1
    else:
        record.streak = 0

    record.last_seen = now or utcnow()

    if assessed_mastery is None:
        record.mastery = record.success_count / record.exposure_count
    else:
        record.mastery = max(0.0, min(1.0, float(assessed_mastery)))

    if context and context not in record.contexts:
        record.contexts.append(context)

    if belt_level:
        record.belt_level = belt_level

    return record


def _count_attempt(enrollment: SkillEnrollment, key: str) -> Optional[List[ReinforcementItem]]:
    """Queue with `attempts` bumped on entries for `key`, or None if none are queued."""
    if not any(item.concept == key for item in enrollment.reinforcement_queue):
        return None
    return [
        item.model_copy(update={"attempts": item.attempts + 1}) if item.concept == key else item
        for item in enrollment.reinforcement_queue
    ]


def mastery_label(record: ConceptRecord) -> str:
    """Session log line for a mastery update, e.g. '80%'."""
    return f"{record.mastery * 100:.0f}%"


class ConceptStore:
    """Version-checked concept writes with bounded retry on conflict."""

    def __init__(self, store: EnrollmentStore, max_retries: Optional[int] = None,
                 retry_base_delay: Optional[float] = None):
        self.store = store
        self.max_retries = max_retries or settings.mastery.max_update_retries
        self.retry_base_delay = (
            settings.mastery.retry_base_delay if retry_base_delay is None else retry_base_delay
        )

    async def persist(
        self,
        enrollment: SkillEnrollment,
        key: str,
        record: ConceptRecord,
        reinforcement_queue: Optional[List[ReinforcementItem]] = None
    ) -> int:
        """
        Write one concept back, conditioned on the version `enrollment` was read at.

        Raises:
            ConflictError if another writer got there first
        """
        concepts = dict(enrollment.concepts)
        concepts[key] = record
        if reinforcement_queue is None:
            return await asyncio.to_thread(
                self.store.update_enrollment,
                enrollment.id,
                enrollment.version,
                concepts=concepts,
            )
        return await asyncio.to_thread(
            self.store.update_enrollment,
            enrollment.id,
            enrollment.version,
            concepts=concepts,
            reinforcement_queue=reinforcement_queue,
        )

    async def update_mastery(
        self,
        enrollment_id: str,
        concept: str,
        success: bool,
        assessed_mastery: Optional[float] = None,
        context: Optional[str] = None,
        belt_level: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Tuple[str, ConceptRecord]:
        """
        Record an exposure, re-reading and retrying when a concurrent write wins.

        Returns:
            (concept key, record as persisted)

        Raises:
            NotFoundError if the enrollment does not exist
            ConflictError if every attempt lost its race
        """
        for attempt in range(self.max_retries):
            enrollment = await asyncio.to_thread(self.store.get_enrollment, enrollment_id)
            key, record = get_or_create(enrollment, concept, belt_level)
            record_exposure(
                record,
                success,
                assessed_mastery=assessed_mastery,
                context=context,
                belt_level=belt_level,
                now=now,
            )
            try:
                await self.persist(enrollment, key, record, _count_attempt(enrollment, key))
                return key, record
            except ConflictError:
                await self._backoff(enrollment_id, key, attempt)

        raise ConflictError(
            f"Could not update concept '{concept}' after {self.max_retries} attempts"
        )

    async def tally_observation(self, enrollment_id: str, concept: str, severity: str) -> bool:
        """
        Append an observation severity to an existing concept's tally.

        Returns False when the concept has never been exercised; observations
        do not create concepts.
        """
        key = normalize_concept_key(concept)
        for attempt in range(self.max_retries):
            enrollment = await asyncio.to_thread(self.store.get_enrollment, enrollment_id)
            existing = enrollment.concepts.get(key)
            if existing is None:
                return False
            record = existing.model_copy(deep=True)
            record.observations.append(severity)
            try:
                await self.persist(enrollment, key, record)
                return True
            except ConflictError:
                await self._backoff(enrollment_id, key, attempt)

        raise ConflictError(
            f"Could not record observation on '{concept}' after {self.max_retries} attempts"
        )

    async def _backoff(self, enrollment_id: str, key: str, attempt: int):
        log_with_context(
            logger,
            logging.WARNING,
            f"Concept write conflict, retrying ({attempt + 1}/{self.max_retries})",
            action="concept_conflict",
            enrollment_id=enrollment_id,
            concept=key,
        )
        if attempt < self.max_retries - 1:
            await asyncio.sleep(self.retry_base_delay * (2 ** attempt))
