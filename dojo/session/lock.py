"""
Per-session mutual exclusion for training turns.

Acquisition never waits: a second turn on a busy session fails immediately
with SessionBusyError, which callers treat as transient.
"""

import threading
from contextlib import asynccontextmanager
from typing import Set

from dojo.shared.exceptions import SessionBusyError
from dojo.shared.logging import get_logger

logger = get_logger(__name__)


class SessionLockRegistry:
    """In-process set of sessions with a turn in flight."""

    def __init__(self):
        self._held: Set[str] = set()
        self._guard = threading.Lock()

    def try_acquire(self, session_id: str) -> bool:
        """Take the lock for `session_id` if free. Never blocks."""
        with self._guard:
            if session_id in self._held:
                return False
            self._held.add(session_id)
            return True

    def release(self, session_id: str):
        with self._guard:
            self._held.discard(session_id)

    def is_held(self, session_id: str) -> bool:
        with self._guard:
            return session_id in self._held

    @asynccontextmanager
    async def hold(self, session_id: str):
        """
        Hold the session for the duration of a turn.

        Released on every exit path, including cancellation of the turn.

        Raises:
            SessionBusyError if another turn holds it
        """
        if not self.try_acquire(session_id):
            logger.warning("Session busy", extra={"session_id": session_id})
            raise SessionBusyError(f"Session {session_id} is already processing a message")
        try:
            yield
        finally:
            self.release(session_id)
