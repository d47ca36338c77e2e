"""
Training session manager: session records and their status state machine.

    active -> completed   (terminal, may be reactivated)
    active -> abandoned   (terminal, soft delete)
    completed -> active   (reactivation)

Every transition is a single status-conditioned UPDATE, so two racing
completions cannot both succeed.
"""

import sqlite3
import json
import uuid
from typing import Optional, Dict, Any, Callable, List
from datetime import datetime
from pathlib import Path
from contextlib import contextmanager

from dojo.memory.models import Observation, ProblemRecord, TrainingSession
from dojo.shared.clock import utcnow
from dojo.shared.config import settings
from dojo.shared.exceptions import InvalidStateError, NotFoundError, StoreError
from dojo.shared.logging import get_logger

logger = get_logger(__name__)


class SessionManager:
    """Owns the sessions table; the engine only appends facts to sessions."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path) if db_path else Path(settings.database_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    def _init_database(self):
        """Initialize session table."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                enrollment_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                type TEXT NOT NULL DEFAULT 'training',
                status TEXT NOT NULL DEFAULT 'active',
                correctness TEXT,
                quality TEXT,
                notes TEXT NOT NULL DEFAULT '',
                observations TEXT NOT NULL DEFAULT '[]',  -- JSON array
                mastery_updates TEXT NOT NULL DEFAULT '{}',  -- JSON object
                problem TEXT,  -- JSON object
                created_at TEXT NOT NULL,
                completed_at TEXT
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_sessions_enrollment ON sessions(enrollment_id, status)"
        )
        conn.commit()
        conn.close()

    @contextmanager
    def _get_connection(self, immediate: bool = False):
        """Get a connection wrapped in one transaction."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise StoreError(f"Session store failure: {e}") from e
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def create(
        self,
        enrollment_id: str,
        user_id: str,
        session_type: str = "training",
        now: Optional[datetime] = None
    ) -> TrainingSession:
        """Open a new active session."""
        session = TrainingSession(
            id=uuid.uuid4().hex,
            enrollment_id=enrollment_id,
            user_id=user_id,
            type=session_type,
            created_at=now or utcnow(),
        )

        with self._get_connection() as conn:
            conn.execute(
                """INSERT INTO sessions (id, enrollment_id, user_id, type, status, created_at)
                   VALUES (?, ?, ?, ?, 'active', ?)""",
                (session.id, enrollment_id, user_id, session.type, session.created_at.isoformat())
            )

        logger.info(f"Session {session.id} created ({session.type})")
        return session

    def get(self, session_id: str, user_id: Optional[str] = None) -> TrainingSession:
        """
        Read a session.

        Raises:
            NotFoundError if it does not exist or belongs to another user
        """
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()

        if row is None or (user_id is not None and row["user_id"] != user_id):
            raise NotFoundError(f"Session {session_id} not found")
        return self._row_to_session(row)

    def complete(
        self,
        session_id: str,
        correctness: str,
        quality: str,
        notes: str = "",
        now: Optional[datetime] = None
    ) -> TrainingSession:
        """
        Flip active -> completed and record the evaluation.

        Raises:
            InvalidStateError if the session is not active (e.g. already completed);
                the stored evaluation is left untouched
        """
        now = now or utcnow()
        self._transition(
            session_id,
            from_status="active",
            to_status="completed",
            extra_sql=", correctness = ?, quality = ?, notes = ?, completed_at = ?",
            extra_params=(correctness, quality, notes or "", now.isoformat()),
        )
        logger.info(f"Session {session_id} completed ({correctness}/{quality})")
        return self.get(session_id)

    def abandon(self, session_id: str) -> TrainingSession:
        """Soft-delete an active session."""
        self._transition(session_id, from_status="active", to_status="abandoned")
        logger.info(f"Session {session_id} abandoned")
        return self.get(session_id)

    def reactivate(self, session_id: str) -> TrainingSession:
        """Reopen a completed session."""
        self._transition(
            session_id,
            from_status="completed",
            to_status="active",
            extra_sql=", completed_at = NULL",
        )
        logger.info(f"Session {session_id} reactivated")
        return self.get(session_id)

    def _transition(
        self,
        session_id: str,
        from_status: str,
        to_status: str,
        extra_sql: str = "",
        extra_params: tuple = ()
    ):
        with self._get_connection(immediate=True) as conn:
            cursor = conn.execute(
                f"UPDATE sessions SET status = ?{extra_sql} WHERE id = ? AND status = ?",
                (to_status, *extra_params, session_id, from_status)
            )
            if cursor.rowcount == 0:
                row = conn.execute(
                    "SELECT status FROM sessions WHERE id = ?", (session_id,)
                ).fetchone()
                if row is None:
                    raise NotFoundError(f"Session {session_id} not found")
                raise InvalidStateError(
                    f"Session {session_id} is {row['status']}, expected {from_status}"
                )

    def add_observation(self, session_id: str, observation: Observation):
        """Atomically append an observation to the session log."""
        self._update_json(
            session_id,
            "observations",
            lambda observations: observations + [observation.model_dump(mode="json")],
        )

    def record_mastery_update(self, session_id: str, concept_key: str, label: str):
        """Atomically set one entry of the session's mastery update log."""
        self._update_json(
            session_id,
            "mastery_updates",
            lambda updates: {**updates, concept_key: label},
        )

    def record_problem(self, session_id: str, problem: ProblemRecord):
        """Store metadata of the problem presented in this session."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                "UPDATE sessions SET problem = ? WHERE id = ?",
                (json.dumps(problem.model_dump(mode="json")), session_id)
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Session {session_id} not found")

    def count_completed(self, enrollment_id: str) -> int:
        """Completed sessions for an enrollment (the advancement session count)."""
        with self._get_connection() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM sessions WHERE enrollment_id = ? AND status = 'completed'",
                (enrollment_id,)
            ).fetchone()[0]

    def count_for_user(self, user_id: str) -> Dict[str, int]:
        """Session totals across all of a user's skills."""
        with self._get_connection() as conn:
            row = conn.execute(
                """SELECT COUNT(*) AS total,
                          COALESCE(SUM(status = 'completed'), 0) AS completed
                   FROM sessions WHERE user_id = ?""",
                (user_id,)
            ).fetchone()
        return {"total": row["total"], "completed": row["completed"]}

    def list_recent(self, enrollment_id: str, limit: int = 10) -> List[TrainingSession]:
        """Newest sessions of an enrollment first."""
        with self._get_connection() as conn:
            rows = conn.execute(
                """SELECT * FROM sessions WHERE enrollment_id = ?
                   ORDER BY created_at DESC, rowid DESC LIMIT ?""",
                (enrollment_id, limit)
            ).fetchall()
        return [self._row_to_session(row) for row in rows]

    def _update_json(self, session_id: str, column: str, change: Callable[[Any], Any]):
        with self._get_connection(immediate=True) as conn:
            row = conn.execute(
                f"SELECT {column} FROM sessions WHERE id = ?", (session_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"Session {session_id} not found")
            value = change(json.loads(row[column]))
            conn.execute(
                f"UPDATE sessions SET {column} = ? WHERE id = ?",
                (json.dumps(value), session_id)
            )

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> TrainingSession:
        data: Dict[str, Any] = dict(row)
        data["observations"] = json.loads(data["observations"])
        data["mastery_updates"] = json.loads(data["mastery_updates"])
        data["problem"] = json.loads(data["problem"]) if data["problem"] else None
        return TrainingSession.model_validate(data)
