"""
Activity feed and daily practice streaks.

These are side channels of the engine: `ActivityNotifier` dispatches them as
background tasks whose failures are logged and never reach the caller.
"""

import asyncio
import sqlite3
import json
from pathlib import Path
from typing import Optional, Dict, Any, List, Set, Callable
from datetime import datetime

from dojo.shared.clock import utcnow
from dojo.shared.config import settings
from dojo.shared.logging import get_logger

logger = get_logger(__name__)

STREAK_MILESTONES = (7, 14, 30, 60, 100)


class ActivityFeed:
    """SQLite-backed activity events and per-user practice streaks."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path) if db_path else Path(settings.database_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    def _init_database(self):
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS activities (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                type TEXT NOT NULL,
                data_json TEXT NOT NULL DEFAULT '{}',
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS practice_streaks (
                user_id TEXT PRIMARY KEY,
                current_streak INTEGER NOT NULL DEFAULT 0,
                longest_streak INTEGER NOT NULL DEFAULT 0,
                total_sessions INTEGER NOT NULL DEFAULT 0,
                last_session TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_activities_user ON activities(user_id, type);
        """)
        conn.commit()
        conn.close()

    def _get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        return conn

    def emit(self, user_id: str, activity_type: str, data: Dict[str, Any], now: Optional[datetime] = None) -> int:
        conn = self._get_connection()
        try:
            cursor = conn.execute(
                "INSERT INTO activities (user_id, type, data_json, created_at) VALUES (?, ?, ?, ?)",
                (user_id, activity_type, json.dumps(data), (now or utcnow()).isoformat())
            )
            conn.commit()
            return cursor.lastrowid
        finally:
            conn.close()

    def list_activities(self, user_id: str, activity_type: Optional[str] = None) -> List[Dict[str, Any]]:
        conn = self._get_connection()
        try:
            if activity_type:
                rows = conn.execute(
                    "SELECT * FROM activities WHERE user_id = ? AND type = ? ORDER BY id",
                    (user_id, activity_type)
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM activities WHERE user_id = ? ORDER BY id", (user_id,)
                ).fetchall()
            return [
                {**dict(row), "data": json.loads(row["data_json"])}
                for row in rows
            ]
        finally:
            conn.close()

    def update_streak(self, user_id: str, now: Optional[datetime] = None) -> int:
        """
        Count a completed session toward the user's daily streak.

        Same calendar day: unchanged. Next day: +1. Any gap: back to 1.

        Returns:
            The current streak
        """
        now = now or utcnow()
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT * FROM practice_streaks WHERE user_id = ?", (user_id,)
            ).fetchone()

            current, longest, total = 0, 0, 0
            last_session = None
            if row:
                current, longest, total = row["current_streak"], row["longest_streak"], row["total_sessions"]
                last_session = datetime.fromisoformat(row["last_session"]) if row["last_session"] else None

            if last_session is None:
                current = 1
            else:
                gap_days = (now.date() - last_session.date()).days
                if gap_days == 1:
                    current += 1
                elif gap_days > 1:
                    current = 1
                else:
                    current = max(current, 1)

            longest = max(longest, current)
            conn.execute(
                """INSERT INTO practice_streaks (user_id, current_streak, longest_streak, total_sessions, last_session)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(user_id) DO UPDATE SET
                       current_streak = excluded.current_streak,
                       longest_streak = excluded.longest_streak,
                       total_sessions = excluded.total_sessions,
                       last_session = excluded.last_session""",
                (user_id, current, longest, total + 1, now.isoformat())
            )
            conn.commit()
            return current
        finally:
            conn.close()

    def get_streak(self, user_id: str) -> Dict[str, Any]:
        conn = self._get_connection()
        try:
            row = conn.execute(
                "SELECT * FROM practice_streaks WHERE user_id = ?", (user_id,)
            ).fetchone()
            if row is None:
                return {"user_id": user_id, "current_streak": 0, "longest_streak": 0,
                        "total_sessions": 0, "last_session": None}
            return dict(row)
        finally:
            conn.close()

    def emit_streak_milestone(self, user_id: str, streak: int, now: Optional[datetime] = None) -> bool:
        """Emit a streak milestone once per user and milestone."""
        if streak not in STREAK_MILESTONES:
            return False
        existing = [
            a for a in self.list_activities(user_id, "streak_milestone")
            if a["data"].get("streak_days") == streak
        ]
        if existing:
            return False
        self.emit(user_id, "streak_milestone", {"streak_days": streak}, now)
        return True

    def record_session_completed(self, user_id: str, now: Optional[datetime] = None) -> int:
        streak = self.update_streak(user_id, now)
        self.emit_streak_milestone(user_id, streak, now)
        return streak


class ActivityNotifier:
    """Best-effort, never-blocking dispatch of activity side effects."""

    def __init__(self, feed: ActivityFeed):
        self.feed = feed
        self._pending: Set[asyncio.Task] = set()

    def dispatch(self, name: str, fn: Callable[..., Any], *args, **kwargs):
        """Schedule `fn` in a worker thread; the caller does not wait for it."""
        task = asyncio.get_running_loop().create_task(self._run(name, fn, *args, **kwargs))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _run(self, name: str, fn: Callable[..., Any], *args, **kwargs):
        try:
            await asyncio.to_thread(fn, *args, **kwargs)
        except Exception as e:
            logger.error(f"Failed to emit {name} activity: {str(e)}")

    async def drain(self):
        """Wait for in-flight notifications (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def skill_started(self, user_id: str, skill_id: str):
        self.dispatch("skill_started", self.feed.emit, user_id, "skill_started", {"skill_id": skill_id})

    def session_completed(self, user_id: str, now: Optional[datetime] = None):
        self.dispatch("session_completed", self.feed.record_session_completed, user_id, now)

    def belt_promotion(self, user_id: str, skill_id: str, from_belt: Optional[str], to_belt: str):
        self.dispatch(
            "belt_promotion",
            self.feed.emit,
            user_id,
            "belt_promotion",
            {"skill_id": skill_id, "from_belt": from_belt, "to_belt": to_belt},
        )

    def assessment_passed(self, user_id: str, skill_id: str, belt: str):
        self.dispatch(
            "assessment_passed",
            self.feed.emit,
            user_id,
            "assessment_passed",
            {"skill_id": skill_id, "belt": belt},
        )
