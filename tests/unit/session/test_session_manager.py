"""
Tests for session records and the status state machine.
"""

from datetime import datetime, timezone

import pytest

from dojo.memory.models import Observation, ProblemRecord
from dojo.shared.exceptions import InvalidStateError, NotFoundError

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_session_isolation(sessions):
    """Two users never see each other's sessions."""
    s1 = sessions.create("e1", "user-1")
    s2 = sessions.create("e2", "user-2")

    assert s1.id != s2.id
    assert sessions.get(s1.id, "user-1").user_id == "user-1"
    with pytest.raises(NotFoundError):
        sessions.get(s1.id, "user-2")


def test_complete_is_applied_once(sessions):
    session = sessions.create("e1", "user-1")

    completed = sessions.complete(session.id, "pass", "good", "clean solution", NOW)
    assert completed.status == "completed"
    assert completed.completed_at == NOW

    with pytest.raises(InvalidStateError):
        sessions.complete(session.id, "fail", "needs_work", "second try")

    stored = sessions.get(session.id)
    assert (stored.correctness, stored.quality, stored.notes) == ("pass", "good", "clean solution")


def test_abandon_and_reactivate(sessions):
    abandoned = sessions.abandon(sessions.create("e1", "user-1").id)
    assert abandoned.status == "abandoned"
    with pytest.raises(InvalidStateError):
        sessions.reactivate(abandoned.id)

    session = sessions.create("e1", "user-1")
    sessions.complete(session.id, "partial", "acceptable")
    reopened = sessions.reactivate(session.id)
    assert reopened.status == "active"
    assert reopened.completed_at is None


def test_transition_on_missing_session(sessions):
    with pytest.raises(NotFoundError):
        sessions.abandon("missing")


def test_count_completed(sessions):
    for _ in range(3):
        sessions.complete(sessions.create("e1", "user-1").id, "pass", "good")
    sessions.abandon(sessions.create("e1", "user-1").id)
    sessions.create("e1", "user-1")
    sessions.complete(sessions.create("e2", "user-1").id, "pass", "good")

    assert sessions.count_completed("e1") == 3


def test_session_log_appends(sessions):
    session = sessions.create("e1", "user-1", "kata")

    sessions.add_observation(session.id, Observation(type="breakthrough", concept="closures", severity="positive"))
    sessions.add_observation(session.id, Observation(type="struggle", concept="generators", note="stuck on yield"))
    sessions.record_mastery_update(session.id, "closures", "80%")
    sessions.record_mastery_update(session.id, "closures", "85%")
    sessions.record_problem(session.id, ProblemRecord(prompt="Write a counter", concepts_targeted=["closures"]))

    stored = sessions.get(session.id)
    assert stored.type == "kata"
    assert [o.concept for o in stored.observations] == ["closures", "generators"]
    assert stored.mastery_updates == {"closures": "85%"}
    assert stored.problem.concepts_targeted == ["closures"]


def test_list_recent_newest_first(sessions):
    first = sessions.create("e1", "user-1", now=NOW)
    second = sessions.create("e1", "user-1", now=NOW.replace(hour=13))
    sessions.create("e2", "user-1", now=NOW.replace(hour=14))

    assert [s.id for s in sessions.list_recent("e1")] == [second.id, first.id]
    assert [s.id for s in sessions.list_recent("e1", limit=1)] == [second.id]


def test_count_for_user_spans_enrollments(sessions):
    done = sessions.create("e1", "user-1")
    sessions.complete(done.id, "pass", "good")
    sessions.create("e2", "user-1")
    sessions.create("e3", "user-2")

    assert sessions.count_for_user("user-1") == {"total": 2, "completed": 1}
    assert sessions.count_for_user("nobody") == {"total": 0, "completed": 0}
