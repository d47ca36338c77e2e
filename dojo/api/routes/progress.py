"""
Enrollment and belt progress endpoints.

Store and session reads are blocking SQLite calls, so every one of them runs
in a worker thread.
"""

import asyncio
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel

from dojo.api.dependencies import get_notifier, get_session_manager, get_store, get_user_id
from dojo.mastery.advancement import check_assessment_eligibility, evaluate
from dojo.mastery.belts import belt_rank
from dojo.mastery.decay import effective_mastery
from dojo.mastery.promotion import promote
from dojo.mastery.reinforcement import prioritize
from dojo.memory.activity import ActivityNotifier
from dojo.memory.models import (
    BeltHistoryEntry,
    EligibilityReport,
    FocusItem,
    PromotionResult,
    ReinforcementItem,
    SkillEnrollment,
    TrainingSession,
)
from dojo.memory.store import EnrollmentStore
from dojo.session.manager import SessionManager
from dojo.shared.clock import utcnow

router = APIRouter(tags=["progress"])

RECENT_SESSIONS = 10


class EnrollRequest(BaseModel):
    skill_id: str


class BeltInfoResponse(BaseModel):
    current_belt: str
    current_belt_index: int
    next_belt: Optional[str]
    assessment_available: bool
    advancement: EligibilityReport
    focus: List[FocusItem]


class SkillSummary(BaseModel):
    enrollment_id: str
    skill_id: str
    current_belt: str
    concept_count: int
    avg_mastery: int
    assessment_available: bool


class DashboardResponse(BaseModel):
    total_skills: int
    total_sessions: int
    completed_sessions: int
    skills: List[SkillSummary]


class ConceptDetail(BaseModel):
    name: str
    mastery: int
    exposure_count: int
    streak: int
    contexts: List[str]
    belt_level: str
    last_seen: Optional[datetime]


class SkillProgressResponse(BaseModel):
    enrollment_id: str
    skill_id: str
    current_belt: str
    assessment_available: bool
    session_count: int
    concepts: List[ConceptDetail]
    belt_history: List[BeltHistoryEntry]
    recent_sessions: List[TrainingSession]
    reinforcement_queue: List[ReinforcementItem]


def _percent(value: float) -> int:
    return int(round(value * 100))


def summarize(enrollment: SkillEnrollment, now: datetime) -> SkillSummary:
    """Dashboard line for one skill; mastery is the decayed average in percent."""
    records = list(enrollment.concepts.values())
    average = (
        sum(effective_mastery(record, now) for record in records) / len(records)
        if records else 0.0
    )
    return SkillSummary(
        enrollment_id=enrollment.id,
        skill_id=enrollment.skill_id,
        current_belt=enrollment.current_belt,
        concept_count=len(records),
        avg_mastery=_percent(average),
        assessment_available=enrollment.assessment_available,
    )


@router.post("/enrollments", response_model=SkillEnrollment, status_code=status.HTTP_201_CREATED)
async def enroll(
    body: EnrollRequest,
    user_id: str = Depends(get_user_id),
    store: EnrollmentStore = Depends(get_store),
    notifier: ActivityNotifier = Depends(get_notifier),
):
    """Start training a skill at white belt."""
    enrollment = await asyncio.to_thread(store.create_enrollment, user_id, body.skill_id)
    notifier.skill_started(user_id, body.skill_id)
    return enrollment


@router.delete("/enrollments/{enrollment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_enrollment(
    enrollment_id: str,
    user_id: str = Depends(get_user_id),
    store: EnrollmentStore = Depends(get_store),
):
    """Remove a skill, with its belt history."""
    await asyncio.to_thread(store.get_enrollment, enrollment_id, user_id)
    await asyncio.to_thread(store.delete_enrollment, enrollment_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/progress", response_model=DashboardResponse)
async def dashboard(
    user_id: str = Depends(get_user_id),
    store: EnrollmentStore = Depends(get_store),
    sessions: SessionManager = Depends(get_session_manager),
):
    """Overview of every enrolled skill with session totals."""
    enrollments = await asyncio.to_thread(store.list_enrollments, user_id)
    totals = await asyncio.to_thread(sessions.count_for_user, user_id)
    now = utcnow()
    return DashboardResponse(
        total_skills=len(enrollments),
        total_sessions=totals["total"],
        completed_sessions=totals["completed"],
        skills=[summarize(enrollment, now) for enrollment in enrollments],
    )


@router.get("/progress/{enrollment_id}", response_model=SkillProgressResponse)
async def skill_progress(
    enrollment_id: str,
    user_id: str = Depends(get_user_id),
    store: EnrollmentStore = Depends(get_store),
    sessions: SessionManager = Depends(get_session_manager),
):
    """Per-concept detail, belt history and recent sessions of one skill."""
    enrollment = await asyncio.to_thread(store.get_enrollment, enrollment_id, user_id)
    history = await asyncio.to_thread(store.list_belt_history, enrollment_id)
    recent = await asyncio.to_thread(sessions.list_recent, enrollment_id, RECENT_SESSIONS)
    count = await asyncio.to_thread(sessions.count_completed, enrollment_id)

    now = utcnow()
    concepts = [
        ConceptDetail(
            name=name,
            mastery=_percent(effective_mastery(record, now)),
            exposure_count=record.exposure_count,
            streak=record.streak,
            contexts=record.contexts,
            belt_level=record.belt_level,
            last_seen=record.last_seen,
        )
        for name, record in sorted(enrollment.concepts.items())
    ]
    return SkillProgressResponse(
        enrollment_id=enrollment.id,
        skill_id=enrollment.skill_id,
        current_belt=enrollment.current_belt,
        assessment_available=enrollment.assessment_available,
        session_count=count,
        concepts=concepts,
        belt_history=history,
        recent_sessions=recent,
        reinforcement_queue=enrollment.reinforcement_queue,
    )


@router.get("/progress/{enrollment_id}/belt-info", response_model=BeltInfoResponse)
async def belt_info(
    enrollment_id: str,
    user_id: str = Depends(get_user_id),
    store: EnrollmentStore = Depends(get_store),
    sessions: SessionManager = Depends(get_session_manager),
):
    """Advancement details and suggested focus, read-only."""
    enrollment = await asyncio.to_thread(store.get_enrollment, enrollment_id, user_id)
    count = await asyncio.to_thread(sessions.count_completed, enrollment_id)
    report = evaluate(enrollment, count)
    return BeltInfoResponse(
        current_belt=enrollment.current_belt,
        current_belt_index=belt_rank(enrollment.current_belt),
        next_belt=report.next_belt,
        assessment_available=enrollment.assessment_available,
        advancement=report,
        focus=prioritize(enrollment),
    )


@router.post("/progress/{enrollment_id}/check-assessment", response_model=EligibilityReport)
async def check_assessment(
    enrollment_id: str,
    user_id: str = Depends(get_user_id),
    store: EnrollmentStore = Depends(get_store),
    sessions: SessionManager = Depends(get_session_manager),
):
    """Evaluate eligibility and update the assessment flag."""
    await asyncio.to_thread(store.get_enrollment, enrollment_id, user_id)
    count = await asyncio.to_thread(sessions.count_completed, enrollment_id)
    return await check_assessment_eligibility(store, enrollment_id, count)


@router.post("/progress/{enrollment_id}/promote", response_model=PromotionResult)
async def manual_promote(
    enrollment_id: str,
    user_id: str = Depends(get_user_id),
    store: EnrollmentStore = Depends(get_store),
    notifier: ActivityNotifier = Depends(get_notifier),
):
    """Promote without an assessment session."""
    await asyncio.to_thread(store.get_enrollment, enrollment_id, user_id)
    promotion = await promote(store, enrollment_id, None)
    notifier.belt_promotion(user_id, promotion.skill_id, promotion.from_belt, promotion.to_belt)
    return promotion


@router.get("/progress/{enrollment_id}/history", response_model=List[BeltHistoryEntry])
async def belt_history(
    enrollment_id: str,
    user_id: str = Depends(get_user_id),
    store: EnrollmentStore = Depends(get_store),
):
    await asyncio.to_thread(store.get_enrollment, enrollment_id, user_id)
    return await asyncio.to_thread(store.list_belt_history, enrollment_id)
