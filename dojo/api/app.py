"""
Dojo FastAPI application.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dojo.api.routes import health, progress, sessions
from dojo.gateway.handler import ToolCallGateway
from dojo.memory.activity import ActivityFeed, ActivityNotifier
from dojo.memory.store import EnrollmentStore
from dojo.session.lock import SessionLockRegistry
from dojo.session.manager import SessionManager
from dojo.shared.config import settings
from dojo.shared.exceptions import (
    ConflictError,
    DojoError,
    InvalidStateError,
    MaxBeltReachedError,
    NotFoundError,
    SessionBusyError,
)
from dojo.shared.logging import get_logger

logger = get_logger(__name__)

_STATUS_BY_ERROR = (
    (NotFoundError, 404),
    (InvalidStateError, 400),
    (SessionBusyError, 409),
    (MaxBeltReachedError, 409),
    (ConflictError, 409),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logger.info("Starting Dojo API")

    store = EnrollmentStore(settings.database_path)
    session_manager = SessionManager(settings.database_path)
    notifier = ActivityNotifier(ActivityFeed(settings.database_path))

    app.state.store = store
    app.state.session_manager = session_manager
    app.state.notifier = notifier
    app.state.gateway = ToolCallGateway(store, session_manager, notifier, locks=SessionLockRegistry())

    # Track uptime
    health.set_start_time(time.time())

    logger.info("Dojo API ready")
    yield

    # Shutdown
    logger.info("Shutting down Dojo API")
    await notifier.drain()
    logger.info("Dojo API stopped")


async def dojo_error_handler(request: Request, exc: DojoError) -> JSONResponse:
    """Map engine errors onto HTTP statuses."""
    status_code = 500
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status_code = code
            break

    headers = None
    if isinstance(exc, SessionBusyError):
        headers = {"Retry-After": str(settings.session.busy_retry_after_seconds)}
    if status_code == 500:
        logger.error(f"Unhandled engine error on {request.url.path}: {str(exc)}")

    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "code": exc.code, "retryable": exc.retryable},
        headers=headers,
    )


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    app = FastAPI(
        title="Dojo",
        description="Mastery tracking and belt advancement for sensei-led skill training",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(DojoError, dojo_error_handler)

    # Routes
    app.include_router(health.router)
    app.include_router(progress.router)
    app.include_router(sessions.router)

    @app.get("/")
    async def root():
        return {"service": "dojo", "status": "running"}

    return app


app = create_app()


def main():
    """CLI entry point for uvicorn."""
    import uvicorn

    uvicorn.run(
        "dojo.api.app:app",
        host=settings.api.host,
        port=settings.api.port,
        reload=False,
    )


if __name__ == "__main__":
    main()
