"""
Pydantic models for enrollments, concepts, belt history and training sessions.
"""

from pydantic import BaseModel, Field, model_validator
from typing import Optional, List, Dict, Literal
from datetime import datetime

Belt = Literal["white", "yellow", "orange", "green", "blue", "purple", "brown", "black"]
Priority = Literal["low", "medium", "high"]
SessionType = Literal["training", "assessment", "onboarding", "kata"]
SessionStatus = Literal["active", "completed", "abandoned"]
Correctness = Literal["pass", "partial", "fail"]
Quality = Literal["needs_work", "acceptable", "good", "excellent"]
ObservationType = Literal["missed_opportunity", "anti_pattern", "breakthrough", "struggle", "near_miss"]
Severity = Literal["minor", "moderate", "significant", "positive"]


class ConceptRecord(BaseModel):
    """Per-concept practice record. `mastery` is the undecayed assessed value."""
    mastery: float = Field(default=0.0, ge=0.0, le=1.0)
    exposure_count: int = Field(default=0, ge=0)
    success_count: int = Field(default=0, ge=0)
    streak: int = Field(default=0, ge=0)
    last_seen: Optional[datetime] = None
    contexts: List[str] = Field(default_factory=list)
    observations: List[str] = Field(default_factory=list)
    belt_level: Belt = "white"

    @model_validator(mode="after")
    def _check_counters(self) -> "ConceptRecord":
        if self.success_count > self.exposure_count:
            raise ValueError("success_count cannot exceed exposure_count")
        if self.streak > self.success_count:
            raise ValueError("streak cannot exceed success_count")
        return self


class ReinforcementItem(BaseModel):
    """Explicit backlog entry for a concept to revisit."""
    concept: str
    context: Optional[str] = None
    priority: Priority = "medium"
    attempts: int = Field(default=0, ge=0)
    source_session: Optional[str] = None
    queued_at: Optional[datetime] = None


class SkillEnrollment(BaseModel):
    """One user's enrollment in one skill."""
    id: str
    user_id: str
    skill_id: str
    current_belt: Belt = "white"
    assessment_available: bool = False
    concepts: Dict[str, ConceptRecord] = Field(default_factory=dict)
    reinforcement_queue: List[ReinforcementItem] = Field(default_factory=list)
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BeltHistoryEntry(BaseModel):
    """Immutable audit record of a belt change."""
    id: Optional[int] = None
    enrollment_id: str
    from_belt: Optional[Belt] = None
    to_belt: Belt
    achieved_at: datetime
    source_session_id: Optional[str] = None
    reason: Optional[str] = None


class Observation(BaseModel):
    """Sensei observation logged against a session."""
    type: ObservationType
    concept: str
    note: str = ""
    severity: Severity = "minor"


class ProblemRecord(BaseModel):
    """Metadata of the problem presented in a session."""
    prompt: str = ""
    concepts_targeted: List[str] = Field(default_factory=list)
    belt_level: Belt = "white"
    language: str = ""


class TrainingSession(BaseModel):
    """One training interaction. The engine appends facts; it does not own the lifecycle."""
    id: str
    enrollment_id: str
    user_id: str
    type: SessionType = "training"
    status: SessionStatus = "active"
    correctness: Optional[Correctness] = None
    quality: Optional[Quality] = None
    notes: str = ""
    observations: List[Observation] = Field(default_factory=list)
    mastery_updates: Dict[str, str] = Field(default_factory=dict)
    problem: Optional[ProblemRecord] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class EligibilityDetails(BaseModel):
    """Actual vs. required values for each advancement dimension."""
    concept_pct: float = 0.0
    required_pct: Optional[float] = None
    session_count: int = 0
    required_sessions: Optional[int] = None
    total_concepts: int = 0
    required_concepts: Optional[int] = None
    mastered_concepts: int = 0
    reason: Optional[str] = None


class EligibilityReport(BaseModel):
    """Result of evaluating an enrollment against its next belt."""
    eligible: bool
    next_belt: Optional[Belt] = None
    details: EligibilityDetails


class PromotionResult(BaseModel):
    """Outcome of a committed belt change."""
    enrollment_id: str
    user_id: str
    skill_id: str = ""
    from_belt: Optional[Belt] = None
    to_belt: Belt


class FocusItem(BaseModel):
    """A concept suggested for the next session and why."""
    concept: str
    reason: str
