"""
Health check endpoint.
"""

import time
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from dojo.api.dependencies import get_store
from dojo.memory.store import EnrollmentStore
from dojo.shared.exceptions import StoreError
from dojo.shared.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["health"])

# Track startup time for uptime
_start_time: Optional[float] = None


def set_start_time(t: float):
    """Set application start time."""
    global _start_time
    _start_time = t


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    database_connected: bool
    uptime_seconds: float


@router.get("/health", response_model=HealthResponse)
async def health_check(store: EnrollmentStore = Depends(get_store)):
    """
    Service health check.
    Returns status, database reachability and uptime.
    """
    database_connected = True
    try:
        store.get_training_context("__health__")
    except StoreError as e:
        logger.error(f"Health check failed: {str(e)}")
        database_connected = False

    uptime_seconds = 0.0
    if _start_time:
        uptime_seconds = round(time.time() - _start_time, 2)

    return HealthResponse(
        status="healthy" if database_connected else "degraded",
        database_connected=database_connected,
        uptime_seconds=uptime_seconds,
    )
