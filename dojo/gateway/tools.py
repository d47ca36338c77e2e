"""
Tool definitions the sensei can call, and the input models that validate them.
"""

from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, Field

from dojo.memory.models import Belt, Correctness, ObservationType, Priority, Quality, Severity


class RecordObservationInput(BaseModel):
    """Record an observation about the student's work or behavior during this session."""
    type: ObservationType
    concept: str = Field(min_length=1)
    note: str
    severity: Severity


class UpdateMasteryInput(BaseModel):
    """Update mastery data for a concept after evaluating the student's work."""
    concept: str = Field(min_length=1)
    success: bool
    mastery: Optional[float] = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Assessed mastery right now; time decay is applied automatically. "
                    "If omitted, mastery is computed from counters.",
    )
    context: Optional[str] = None
    belt_level: Optional[Belt] = None


class QueueReinforcementInput(BaseModel):
    """Add a concept to the reinforcement queue for future sessions."""
    concept: str = Field(min_length=1)
    priority: Priority
    context: Optional[str] = None


class CompleteSessionInput(BaseModel):
    """Mark the session complete with a summary evaluation."""
    correctness: Correctness
    quality: Quality
    notes: Optional[str] = None


class SetBeltInput(BaseModel):
    """Set the student's belt during onboarding."""
    belt: Belt
    reason: str


class SetTrainingContextInput(BaseModel):
    """Set the training context for this skill in the catalog."""
    training_context: str = Field(min_length=1)


class PresentProblemInput(BaseModel):
    """Record a training problem's metadata and populate the student's editor."""
    prompt: str
    concepts_targeted: List[str]
    belt_level: Belt
    starter_code: Optional[str] = None
    language: Optional[str] = None


TOOL_INPUTS: Dict[str, Type[BaseModel]] = {
    "record_observation": RecordObservationInput,
    "update_mastery": UpdateMasteryInput,
    "queue_reinforcement": QueueReinforcementInput,
    "complete_session": CompleteSessionInput,
    "set_belt": SetBeltInput,
    "set_training_context": SetTrainingContextInput,
    "present_problem": PresentProblemInput,
}


def tool_definitions() -> List[Dict[str, Any]]:
    """Tool specs in the shape LLM tool-use APIs expect."""
    return [
        {
            "name": name,
            "description": model.__doc__,
            "input_schema": model.model_json_schema(),
        }
        for name, model in TOOL_INPUTS.items()
    ]


TRAINING_TOOLS = tool_definitions()
