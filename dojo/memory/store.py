"""
EnrollmentStore: SQLite + WAL mode document store for skill enrollments.

Each enrollment row is one document (belt, flags, concept map and reinforcement
queue as JSON) carrying a version counter. Every write either is conditioned on
the version the caller read or runs as a single IMMEDIATE transaction; both bump
the version so optimistic readers notice.
"""

import sqlite3
import json
import uuid
from pathlib import Path
from typing import Optional, Dict, Any, List, Callable, Tuple
from datetime import datetime
from contextlib import contextmanager

from dojo.mastery.belts import belt_rank
from dojo.memory.models import (
    BeltHistoryEntry,
    ConceptRecord,
    ReinforcementItem,
    SkillEnrollment,
)
from dojo.shared.clock import utcnow
from dojo.shared.config import settings
from dojo.shared.exceptions import ConflictError, InvalidStateError, NotFoundError, StoreError
from dojo.shared.logging import get_logger

logger = get_logger(__name__)

_UNSET = object()


class EnrollmentStore:
    """Version-checked persistence for enrollments, belt history and the skill catalog."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path) if db_path else Path(settings.database_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    def _init_database(self):
        """Initialize database schema."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        try:
            # Enable WAL mode
            conn.execute("PRAGMA journal_mode=WAL")

            conn.executescript("""
                CREATE TABLE IF NOT EXISTS enrollments (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    skill_id TEXT NOT NULL,
                    current_belt TEXT NOT NULL DEFAULT 'white',
                    assessment_available INTEGER NOT NULL DEFAULT 0,
                    concepts_json TEXT NOT NULL DEFAULT '{}',
                    reinforcement_json TEXT NOT NULL DEFAULT '[]',
                    version INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE (user_id, skill_id)
                );

                CREATE TABLE IF NOT EXISTS belt_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    enrollment_id TEXT NOT NULL,
                    from_belt TEXT,
                    to_belt TEXT NOT NULL,
                    achieved_at TEXT NOT NULL,
                    source_session_id TEXT,
                    reason TEXT
                );

                CREATE TABLE IF NOT EXISTS skill_catalog (
                    skill_id TEXT PRIMARY KEY,
                    training_context TEXT NOT NULL DEFAULT '',
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_enrollments_user ON enrollments(user_id);
                CREATE INDEX IF NOT EXISTS idx_history_enrollment ON belt_history(enrollment_id);
            """)
            conn.commit()
        finally:
            conn.close()

    @contextmanager
    def _get_connection(self, immediate: bool = False):
        """
        Get a connection wrapped in one transaction.

        `immediate` takes the write lock up front so read-modify-write
        sequences inside the block are atomic.
        """
        conn = sqlite3.connect(str(self.db_path), timeout=30.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise StoreError(f"Enrollment store failure: {e}") from e
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Enrollments
    # ------------------------------------------------------------------

    def create_enrollment(
        self,
        user_id: str,
        skill_id: str,
        now: Optional[datetime] = None
    ) -> SkillEnrollment:
        """Start a skill at white belt and write the initial history entry."""
        now = now or utcnow()
        enrollment_id = uuid.uuid4().hex

        try:
            with self._get_connection(immediate=True) as conn:
                conn.execute(
                    """INSERT INTO enrollments (id, user_id, skill_id, created_at, updated_at)
                       VALUES (?, ?, ?, ?, ?)""",
                    (enrollment_id, user_id, skill_id, now.isoformat(), now.isoformat())
                )
                conn.execute(
                    """INSERT INTO belt_history (enrollment_id, from_belt, to_belt, achieved_at)
                       VALUES (?, NULL, 'white', ?)""",
                    (enrollment_id, now.isoformat())
                )
        except StoreError as e:
            if isinstance(e.__cause__, sqlite3.IntegrityError):
                raise InvalidStateError(f"User {user_id} is already enrolled in {skill_id}") from e
            raise

        logger.info(f"Enrollment {enrollment_id} created for skill {skill_id}")
        return self.get_enrollment(enrollment_id)

    def get_enrollment(self, enrollment_id: str, user_id: Optional[str] = None) -> SkillEnrollment:
        """
        Read an enrollment document.

        Raises:
            NotFoundError if it does not exist or belongs to another user
        """
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM enrollments WHERE id = ?",
                (enrollment_id,)
            ).fetchone()

        if row is None or (user_id is not None and row["user_id"] != user_id):
            raise NotFoundError(f"Enrollment {enrollment_id} not found")
        return self._row_to_enrollment(row)

    def find_enrollment(self, user_id: str, skill_id: str) -> Optional[SkillEnrollment]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM enrollments WHERE user_id = ? AND skill_id = ?",
                (user_id, skill_id)
            ).fetchone()
        return self._row_to_enrollment(row) if row else None

    def list_enrollments(self, user_id: str) -> List[SkillEnrollment]:
        """All of a user's enrollments, oldest first."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM enrollments WHERE user_id = ? ORDER BY created_at ASC, rowid ASC",
                (user_id,)
            ).fetchall()
        return [self._row_to_enrollment(row) for row in rows]

    def update_enrollment(
        self,
        enrollment_id: str,
        expected_version: int,
        *,
        current_belt: Any = _UNSET,
        assessment_available: Any = _UNSET,
        concepts: Any = _UNSET,
        reinforcement_queue: Any = _UNSET,
        now: Optional[datetime] = None
    ) -> int:
        """
        Compare-and-swap write of the given fields.

        Returns:
            The new version

        Raises:
            ConflictError if the stored version no longer matches
            NotFoundError if the enrollment is gone
        """
        assignments: List[str] = []
        params: List[Any] = []

        if current_belt is not _UNSET:
            assignments.append("current_belt = ?")
            params.append(current_belt)
        if assessment_available is not _UNSET:
            assignments.append("assessment_available = ?")
            params.append(1 if assessment_available else 0)
        if concepts is not _UNSET:
            assignments.append("concepts_json = ?")
            params.append(self._dump_concepts(concepts))
        if reinforcement_queue is not _UNSET:
            assignments.append("reinforcement_json = ?")
            params.append(self._dump_queue(reinforcement_queue))

        assignments.append("version = version + 1")
        assignments.append("updated_at = ?")
        params.append((now or utcnow()).isoformat())

        with self._get_connection(immediate=True) as conn:
            cursor = conn.execute(
                f"UPDATE enrollments SET {', '.join(assignments)} WHERE id = ? AND version = ?",
                (*params, enrollment_id, expected_version)
            )
            if cursor.rowcount == 0:
                exists = conn.execute(
                    "SELECT version FROM enrollments WHERE id = ?",
                    (enrollment_id,)
                ).fetchone()
                if exists is None:
                    raise NotFoundError(f"Enrollment {enrollment_id} not found")
                raise ConflictError(
                    f"Enrollment {enrollment_id} changed (expected version {expected_version}, "
                    f"found {exists['version']})"
                )

        return expected_version + 1

    def atomic_update(
        self,
        enrollment_id: str,
        mutate: Callable[[SkillEnrollment], None],
        now: Optional[datetime] = None
    ) -> SkillEnrollment:
        """
        Read, mutate and write one enrollment inside a single IMMEDIATE transaction.

        Used for appends and low-contention writes that need no version dance.
        The version is still bumped.
        """
        now = now or utcnow()
        with self._get_connection(immediate=True) as conn:
            row = conn.execute(
                "SELECT * FROM enrollments WHERE id = ?",
                (enrollment_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"Enrollment {enrollment_id} not found")

            enrollment = self._row_to_enrollment(row)
            mutate(enrollment)
            enrollment.version += 1
            enrollment.updated_at = now

            conn.execute(
                """UPDATE enrollments
                   SET current_belt = ?, assessment_available = ?, concepts_json = ?,
                       reinforcement_json = ?, version = ?, updated_at = ?
                   WHERE id = ?""",
                (
                    enrollment.current_belt,
                    1 if enrollment.assessment_available else 0,
                    self._dump_concepts(enrollment.concepts),
                    self._dump_queue(enrollment.reinforcement_queue),
                    enrollment.version,
                    now.isoformat(),
                    enrollment_id,
                )
            )

        return enrollment

    def assign_belt(
        self,
        enrollment_id: str,
        belt: str,
        source_session_id: Optional[str] = None,
        reason: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Tuple[SkillEnrollment, Optional[BeltHistoryEntry]]:
        """
        Set the belt and write its history entry in one IMMEDIATE transaction.

        The current belt is read under the write lock, so the history entry
        always names the belt actually replaced.

        Returns:
            (enrollment after the write, history entry or None when `belt` is already held)

        Raises:
            InvalidStateError if `belt` ranks below the current belt
            NotFoundError if the enrollment is gone
        """
        now = now or utcnow()
        with self._get_connection(immediate=True) as conn:
            row = conn.execute(
                "SELECT * FROM enrollments WHERE id = ?",
                (enrollment_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"Enrollment {enrollment_id} not found")

            enrollment = self._row_to_enrollment(row)
            from_belt = enrollment.current_belt
            if belt == from_belt:
                return enrollment, None
            if belt_rank(belt) < belt_rank(from_belt):
                raise InvalidStateError(f"Cannot lower belt from {from_belt} to {belt}")

            cursor = conn.execute(
                """INSERT INTO belt_history
                   (enrollment_id, from_belt, to_belt, achieved_at, source_session_id, reason)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (enrollment_id, from_belt, belt, now.isoformat(), source_session_id, reason)
            )
            entry = BeltHistoryEntry(
                id=cursor.lastrowid,
                enrollment_id=enrollment_id,
                from_belt=from_belt,
                to_belt=belt,
                achieved_at=now,
                source_session_id=source_session_id,
                reason=reason,
            )

            conn.execute(
                """UPDATE enrollments
                   SET current_belt = ?, assessment_available = 0,
                       version = version + 1, updated_at = ?
                   WHERE id = ?""",
                (belt, now.isoformat(), enrollment_id)
            )
            enrollment.current_belt = belt
            enrollment.assessment_available = False
            enrollment.version += 1
            enrollment.updated_at = now

        return enrollment, entry

    def append_reinforcement(self, enrollment_id: str, item: ReinforcementItem) -> SkillEnrollment:
        """Atomically push an item onto the reinforcement queue."""
        return self.atomic_update(
            enrollment_id,
            lambda enrollment: enrollment.reinforcement_queue.append(item)
        )

    def delete_enrollment(self, enrollment_id: str):
        """Remove a skill enrollment and its belt history."""
        with self._get_connection(immediate=True) as conn:
            cursor = conn.execute("DELETE FROM enrollments WHERE id = ?", (enrollment_id,))
            if cursor.rowcount == 0:
                raise NotFoundError(f"Enrollment {enrollment_id} not found")
            conn.execute("DELETE FROM belt_history WHERE enrollment_id = ?", (enrollment_id,))

        logger.info(f"Enrollment {enrollment_id} deleted")

    # ------------------------------------------------------------------
    # Belt history
    # ------------------------------------------------------------------

    def add_belt_history(self, entry: BeltHistoryEntry) -> BeltHistoryEntry:
        """Append a history entry and return it with its id."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                """INSERT INTO belt_history
                   (enrollment_id, from_belt, to_belt, achieved_at, source_session_id, reason)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    entry.enrollment_id,
                    entry.from_belt,
                    entry.to_belt,
                    entry.achieved_at.isoformat(),
                    entry.source_session_id,
                    entry.reason,
                )
            )
            entry_id = cursor.lastrowid

        return entry.model_copy(update={"id": entry_id})

    def delete_belt_history(self, entry_id: int):
        """Compensating delete for a write-ahead entry whose belt update lost."""
        with self._get_connection() as conn:
            conn.execute("DELETE FROM belt_history WHERE id = ?", (entry_id,))

    def list_belt_history(self, enrollment_id: str) -> List[BeltHistoryEntry]:
        with self._get_connection() as conn:
            rows = conn.execute(
                """SELECT * FROM belt_history
                   WHERE enrollment_id = ?
                   ORDER BY achieved_at ASC, id ASC""",
                (enrollment_id,)
            ).fetchall()

        return [BeltHistoryEntry.model_validate(dict(row)) for row in rows]

    # ------------------------------------------------------------------
    # Skill catalog
    # ------------------------------------------------------------------

    def set_training_context(self, skill_id: str, training_context: str, now: Optional[datetime] = None):
        """Upsert the catalog-level training context written during onboarding."""
        now = now or utcnow()
        with self._get_connection() as conn:
            conn.execute(
                """INSERT INTO skill_catalog (skill_id, training_context, updated_at)
                   VALUES (?, ?, ?)
                   ON CONFLICT(skill_id) DO UPDATE SET
                       training_context = excluded.training_context,
                       updated_at = excluded.updated_at""",
                (skill_id, training_context, now.isoformat())
            )

    def get_training_context(self, skill_id: str) -> str:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT training_context FROM skill_catalog WHERE skill_id = ?",
                (skill_id,)
            ).fetchone()
        return row["training_context"] if row else ""

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    @staticmethod
    def _dump_concepts(concepts: Dict[str, ConceptRecord]) -> str:
        return json.dumps({key: record.model_dump(mode="json") for key, record in concepts.items()})

    @staticmethod
    def _dump_queue(queue: List[ReinforcementItem]) -> str:
        return json.dumps([item.model_dump(mode="json") for item in queue])

    @staticmethod
    def _row_to_enrollment(row: sqlite3.Row) -> SkillEnrollment:
        return SkillEnrollment(
            id=row["id"],
            user_id=row["user_id"],
            skill_id=row["skill_id"],
            current_belt=row["current_belt"],
            assessment_available=bool(row["assessment_available"]),
            concepts=json.loads(row["concepts_json"]),
            reinforcement_queue=json.loads(row["reinforcement_json"]),
            version=row["version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
