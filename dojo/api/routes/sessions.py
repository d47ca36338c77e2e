"""
Training session endpoints, including the tool-call turn.
"""

import asyncio
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from dojo.api.dependencies import get_gateway, get_session_manager, get_store, get_user_id
from dojo.gateway.handler import ToolCall, ToolCallGateway, ToolContext
from dojo.memory.models import SessionType, TrainingSession
from dojo.memory.store import EnrollmentStore
from dojo.session.manager import SessionManager

router = APIRouter(prefix="/sessions", tags=["sessions"])


class CreateSessionRequest(BaseModel):
    enrollment_id: str
    type: SessionType = "training"


class ToolTurnRequest(BaseModel):
    tool_calls: List[ToolCall] = Field(default_factory=list)


class ToolTurnResponse(BaseModel):
    results: List[Dict[str, Any]]


@router.post("", response_model=TrainingSession, status_code=status.HTTP_201_CREATED)
async def create_session(
    body: CreateSessionRequest,
    user_id: str = Depends(get_user_id),
    store: EnrollmentStore = Depends(get_store),
    sessions: SessionManager = Depends(get_session_manager),
):
    await asyncio.to_thread(store.get_enrollment, body.enrollment_id, user_id)
    return await asyncio.to_thread(sessions.create, body.enrollment_id, user_id, body.type)


@router.get("/{session_id}", response_model=TrainingSession)
async def get_session(
    session_id: str,
    user_id: str = Depends(get_user_id),
    sessions: SessionManager = Depends(get_session_manager),
):
    return await asyncio.to_thread(sessions.get, session_id, user_id)


@router.post("/{session_id}/abandon", response_model=TrainingSession)
async def abandon_session(
    session_id: str,
    user_id: str = Depends(get_user_id),
    sessions: SessionManager = Depends(get_session_manager),
):
    await asyncio.to_thread(sessions.get, session_id, user_id)
    return await asyncio.to_thread(sessions.abandon, session_id)


@router.post("/{session_id}/reactivate", response_model=TrainingSession)
async def reactivate_session(
    session_id: str,
    user_id: str = Depends(get_user_id),
    sessions: SessionManager = Depends(get_session_manager),
):
    await asyncio.to_thread(sessions.get, session_id, user_id)
    return await asyncio.to_thread(sessions.reactivate, session_id)


@router.post("/{session_id}/tool-calls", response_model=ToolTurnResponse)
async def run_tool_calls(
    session_id: str,
    body: ToolTurnRequest,
    user_id: str = Depends(get_user_id),
    sessions: SessionManager = Depends(get_session_manager),
    gateway: ToolCallGateway = Depends(get_gateway),
):
    """Apply one turn of sensei tool calls to the session."""
    session = await asyncio.to_thread(sessions.get, session_id, user_id)
    ctx = ToolContext(user_id=user_id, enrollment_id=session.enrollment_id, session_id=session_id)
    results = await gateway.run_turn(ctx, body.tool_calls)
    return ToolTurnResponse(results=results)
