"""
FastAPI dependency injection for Dojo services.
"""

from typing import Annotated

from fastapi import Header, Request

from dojo.gateway.handler import ToolCallGateway
from dojo.memory.activity import ActivityNotifier
from dojo.memory.store import EnrollmentStore
from dojo.session.manager import SessionManager


def get_store(request: Request) -> EnrollmentStore:
    """Get EnrollmentStore singleton from lifespan state."""
    return request.app.state.store


def get_session_manager(request: Request) -> SessionManager:
    """Get SessionManager singleton from lifespan state."""
    return request.app.state.session_manager


def get_gateway(request: Request) -> ToolCallGateway:
    """Get ToolCallGateway singleton from lifespan state."""
    return request.app.state.gateway


def get_notifier(request: Request) -> ActivityNotifier:
    """Get ActivityNotifier singleton from lifespan state."""
    return request.app.state.notifier


def get_user_id(x_user_id: Annotated[str, Header()]) -> str:
    """Authenticated user id, set by the auth layer in front of this service."""
    return x_user_id
