"""
Tool-call gateway: the boundary between the sensei's tool calls and the engine.

One turn of a session runs under that session's lock; its tool calls are
handled strictly in order. Engine errors come back as structured tool
results so the conversation loop can relay them.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field, ValidationError

from dojo.gateway.tools import (
    TOOL_INPUTS,
    CompleteSessionInput,
    PresentProblemInput,
    QueueReinforcementInput,
    RecordObservationInput,
    SetBeltInput,
    SetTrainingContextInput,
    UpdateMasteryInput,
)
from dojo.mastery.advancement import check_assessment_eligibility
from dojo.mastery.concepts import ConceptStore, mastery_label, normalize_concept_key
from dojo.mastery.promotion import fail_assessment, promote, set_belt
from dojo.memory.activity import ActivityNotifier
from dojo.memory.models import (
    EligibilityReport,
    Observation,
    ProblemRecord,
    PromotionResult,
    ReinforcementItem,
)
from dojo.memory.store import EnrollmentStore
from dojo.session.lock import SessionLockRegistry
from dojo.session.manager import SessionManager
from dojo.shared.clock import Clock, utcnow
from dojo.shared.config import settings
from dojo.shared.exceptions import (
    ConcurrentModificationError,
    ConflictError,
    DojoError,
    InvalidStateError,
    MaxBeltReachedError,
    NotFoundError,
)
from dojo.shared.logging import get_logger, log_with_context

logger = get_logger(__name__)


@dataclass(frozen=True)
class ToolContext:
    """Authenticated identity of a turn, as handed over by the routing layer."""
    user_id: str
    enrollment_id: str
    session_id: str


class ToolCall(BaseModel):
    """One tool invocation emitted by the sensei."""
    name: str
    input: Dict[str, Any] = Field(default_factory=dict)
    id: Optional[str] = None


def error_result(error: DojoError) -> Dict[str, Any]:
    return {"error": str(error), "code": error.code, "retryable": error.retryable}


class ToolCallGateway:
    """Routes validated tool calls to the concept store, evaluator and promotion."""

    def __init__(
        self,
        store: EnrollmentStore,
        sessions: SessionManager,
        notifier: ActivityNotifier,
        locks: Optional[SessionLockRegistry] = None,
        concepts: Optional[ConceptStore] = None,
        clock: Clock = utcnow
    ):
        self.store = store
        self.sessions = sessions
        self.notifier = notifier
        self.locks = locks or SessionLockRegistry()
        self.concepts = concepts or ConceptStore(store)
        self.clock = clock
        self._handlers: Dict[str, Callable[[Any, ToolContext], Awaitable[Dict[str, Any]]]] = {
            "record_observation": self._record_observation,
            "update_mastery": self._update_mastery,
            "queue_reinforcement": self._queue_reinforcement,
            "complete_session": self._complete_session,
            "set_belt": self._set_belt,
            "set_training_context": self._set_training_context,
            "present_problem": self._present_problem,
        }

    async def run_turn(self, ctx: ToolContext, tool_calls: Iterable[Any]) -> List[Dict[str, Any]]:
        """
        Process one turn's tool calls in order under the session lock.

        Raises:
            SessionBusyError if another turn is in flight for the session
            NotFoundError if the session is not the caller's
            InvalidStateError if the session is not active
        """
        async with self.locks.hold(ctx.session_id):
            session = await asyncio.to_thread(self.sessions.get, ctx.session_id, ctx.user_id)
            if session.enrollment_id != ctx.enrollment_id:
                raise NotFoundError(f"Session {ctx.session_id} not found")
            if session.status != "active":
                raise InvalidStateError(f"Session {ctx.session_id} is not active")

            results = []
            closed = False
            for tool_call in tool_calls:
                if closed:
                    # Completed earlier in this turn
                    results.append(error_result(
                        InvalidStateError(f"Session {ctx.session_id} is no longer active")
                    ))
                    continue
                result = await self.handle_tool_call(tool_call, ctx)
                results.append(result)
                closed = result.get("status") == "completed"
            return results

    async def handle_tool_call(self, tool_call: Any, ctx: ToolContext) -> Dict[str, Any]:
        """Validate and dispatch a single tool call; always returns a tool result."""
        call = tool_call if isinstance(tool_call, ToolCall) else ToolCall.model_validate(tool_call)

        handler = self._handlers.get(call.name)
        if handler is None:
            return {"error": f"Unknown tool: {call.name}", "code": "unknown_tool", "retryable": False}

        try:
            payload = TOOL_INPUTS[call.name].model_validate(call.input)
        except ValidationError as e:
            return {"error": f"Invalid input for {call.name}: {e}", "code": "invalid_input", "retryable": False}

        try:
            return await handler(payload, ctx)
        except DojoError as e:
            log_with_context(
                logger,
                logging.WARNING,
                f"Tool {call.name} failed: {str(e)}",
                user_id=ctx.user_id,
                action=call.name,
                session_id=ctx.session_id,
                code=e.code,
            )
            return error_result(e)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _record_observation(self, payload: RecordObservationInput, ctx: ToolContext) -> Dict[str, Any]:
        key = normalize_concept_key(payload.concept)
        observation = Observation(
            type=payload.type,
            concept=key,
            note=payload.note,
            severity=payload.severity,
        )
        await asyncio.to_thread(self.sessions.add_observation, ctx.session_id, observation)
        tallied = await self.concepts.tally_observation(ctx.enrollment_id, key, payload.severity)
        return {
            "success": True,
            "message": f"Observation recorded: {payload.type} on {key}",
            "tallied": tallied,
        }

    async def _update_mastery(self, payload: UpdateMasteryInput, ctx: ToolContext) -> Dict[str, Any]:
        key, record = await self.concepts.update_mastery(
            ctx.enrollment_id,
            payload.concept,
            payload.success,
            assessed_mastery=payload.mastery,
            context=payload.context,
            belt_level=payload.belt_level,
            now=self.clock(),
        )
        await asyncio.to_thread(
            self.sessions.record_mastery_update, ctx.session_id, key, mastery_label(record)
        )
        return {
            "success": True,
            "concept": key,
            "mastery": record.mastery,
            "exposure_count": record.exposure_count,
            "success_count": record.success_count,
            "streak": record.streak,
        }

    async def _queue_reinforcement(self, payload: QueueReinforcementInput, ctx: ToolContext) -> Dict[str, Any]:
        key = normalize_concept_key(payload.concept)
        item = ReinforcementItem(
            concept=key,
            context=payload.context,
            priority=payload.priority,
            source_session=ctx.session_id,
            queued_at=self.clock(),
        )
        enrollment = await asyncio.to_thread(self.store.append_reinforcement, ctx.enrollment_id, item)
        return {
            "success": True,
            "message": f"Queued reinforcement for {key}",
            "queue_length": len(enrollment.reinforcement_queue),
        }

    async def _complete_session(self, payload: CompleteSessionInput, ctx: ToolContext) -> Dict[str, Any]:
        now = self.clock()
        session = await asyncio.to_thread(
            self.sessions.complete,
            ctx.session_id,
            payload.correctness,
            payload.quality,
            payload.notes or "",
            now,
        )
        result: Dict[str, Any] = {"success": True, "message": "Session completed", "status": session.status}

        if session.type == "assessment":
            if payload.correctness == "pass":
                result.update(await self._pass_assessment(ctx))
            else:
                await fail_assessment(self.store, ctx.enrollment_id)
                result["assessment"] = "failed"
        else:
            report = await self._refresh_eligibility(ctx)
            if report is not None:
                result["eligibility"] = report.model_dump(mode="json")

        self.notifier.session_completed(ctx.user_id, now)
        return result

    async def _pass_assessment(self, ctx: ToolContext) -> Dict[str, Any]:
        """Promote after a passed assessment, retrying lost version races from fresh reads."""
        attempts = settings.mastery.promotion_retries
        for attempt in range(attempts):
            try:
                promotion = await promote(self.store, ctx.enrollment_id, ctx.session_id, clock=self.clock)
            except MaxBeltReachedError:
                return {"assessment": "passed", "promotion": None, "outcome": "max_belt_reached"}
            except ConcurrentModificationError as e:
                if attempt == attempts - 1:
                    return {"assessment": "passed", "promotion": None, **error_result(e)}
                continue

            self._announce_promotion(promotion)
            return {"assessment": "passed", "promotion": promotion.model_dump(mode="json")}

    async def _refresh_eligibility(self, ctx: ToolContext) -> Optional[EligibilityReport]:
        count = await asyncio.to_thread(self.sessions.count_completed, ctx.enrollment_id)
        for _ in range(settings.mastery.promotion_retries):
            try:
                return await check_assessment_eligibility(
                    self.store, ctx.enrollment_id, count, now=self.clock()
                )
            except ConflictError:
                continue
        logger.warning(f"Could not refresh assessment flag for {ctx.enrollment_id}")
        return None

    async def _set_belt(self, payload: SetBeltInput, ctx: ToolContext) -> Dict[str, Any]:
        session = await asyncio.to_thread(self.sessions.get, ctx.session_id)
        if session.type != "onboarding":
            raise InvalidStateError("set_belt is only valid during onboarding sessions")

        change = await set_belt(
            self.store,
            ctx.enrollment_id,
            payload.belt,
            source_session_id=ctx.session_id,
            reason=payload.reason,
            clock=self.clock,
        )
        return {"success": True, "from_belt": change.from_belt, "to_belt": change.to_belt}

    async def _set_training_context(self, payload: SetTrainingContextInput, ctx: ToolContext) -> Dict[str, Any]:
        enrollment = await asyncio.to_thread(self.store.get_enrollment, ctx.enrollment_id)
        await asyncio.to_thread(
            self.store.set_training_context, enrollment.skill_id, payload.training_context
        )
        return {"success": True, "message": "Training context saved"}

    async def _present_problem(self, payload: PresentProblemInput, ctx: ToolContext) -> Dict[str, Any]:
        problem = ProblemRecord(
            prompt=payload.prompt,
            concepts_targeted=[normalize_concept_key(c) for c in payload.concepts_targeted],
            belt_level=payload.belt_level,
            language=payload.language or "",
        )
        await asyncio.to_thread(self.sessions.record_problem, ctx.session_id, problem)
        return {"success": True, "message": "Problem presented", "starter_code": payload.starter_code}

    def _announce_promotion(self, promotion: PromotionResult):
        self.notifier.belt_promotion(
            promotion.user_id, promotion.skill_id, promotion.from_belt, promotion.to_belt
        )
        self.notifier.assessment_passed(promotion.user_id, promotion.skill_id, promotion.to_belt)
