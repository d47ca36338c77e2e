"""
Tests for the activity feed, practice streaks and background notifier.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from dojo.memory.activity import ActivityNotifier

DAY1 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def test_streak_progression(feed):
    assert feed.update_streak("u1", DAY1) == 1
    assert feed.update_streak("u1", DAY1 + timedelta(hours=5)) == 1
    assert feed.update_streak("u1", DAY1 + timedelta(days=1)) == 2
    assert feed.update_streak("u1", DAY1 + timedelta(days=4)) == 1

    streak = feed.get_streak("u1")
    assert streak["current_streak"] == 1
    assert streak["longest_streak"] == 2
    assert streak["total_sessions"] == 4


def test_unknown_user_has_empty_streak(feed):
    assert feed.get_streak("nobody")["current_streak"] == 0


def test_streak_milestone_emitted_once(feed):
    for day in range(7):
        feed.record_session_completed("u1", DAY1 + timedelta(days=day))
    feed.record_session_completed("u1", DAY1 + timedelta(days=6, hours=3))

    milestones = feed.list_activities("u1", "streak_milestone")
    assert len(milestones) == 1
    assert milestones[0]["data"] == {"streak_days": 7}
    assert feed.emit_streak_milestone("u1", 7) is False
    assert feed.emit_streak_milestone("u1", 8) is False


def test_emit_and_list(feed):
    feed.emit("u1", "skill_started", {"skill_id": "python"})
    feed.emit("u2", "skill_started", {"skill_id": "go"})

    activities = feed.list_activities("u1")
    assert len(activities) == 1
    assert activities[0]["data"]["skill_id"] == "python"


@pytest.mark.asyncio
async def test_notifier_dispatches_in_background(notifier, feed):
    notifier.skill_started("u1", "python")
    notifier.belt_promotion("u1", "python", "white", "yellow")
    await notifier.drain()

    types = [a["type"] for a in feed.list_activities("u1")]
    assert sorted(types) == ["belt_promotion", "skill_started"]


@pytest.mark.asyncio
async def test_notifier_swallows_failures():
    broken_feed = MagicMock()
    broken_feed.emit.side_effect = RuntimeError("feed down")
    notifier = ActivityNotifier(broken_feed)

    notifier.assessment_passed("u1", "python", "yellow")
    await notifier.drain()

    broken_feed.emit.assert_called_once()
