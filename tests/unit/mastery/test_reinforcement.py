"""
Tests for reinforcement prioritization.
"""

from datetime import datetime, timedelta, timezone

from dojo.mastery.reinforcement import prioritize
from dojo.memory.models import ConceptRecord, ReinforcementItem, SkillEnrollment

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _concept(mastery, days_ago=0):
    return ConceptRecord(
        mastery=mastery, exposure_count=2, success_count=1, last_seen=NOW - timedelta(days=days_ago)
    )


def _enrollment(queue=(), **concepts):
    return SkillEnrollment(
        id="e1",
        user_id="u1",
        skill_id="python",
        concepts=concepts,
        reinforcement_queue=list(queue),
    )


def test_queue_priority_then_implicit():
    enrollment = _enrollment(
        queue=[
            ReinforcementItem(concept="slicing", priority="low"),
            ReinforcementItem(concept="generators", priority="high", context="log parser"),
        ],
        closures=_concept(0.2),
        loops=_concept(0.9),
    )

    focus = prioritize(enrollment, now=NOW)

    assert [item.concept for item in focus] == ["generators", "slicing", "closures"]
    assert "high priority" in focus[0].reason
    assert "log parser" in focus[0].reason
    assert "mastery 20%" in focus[2].reason


def test_stale_concepts_are_included():
    enrollment = _enrollment(loops=_concept(0.9, days_ago=20), recursion=_concept(0.9))

    focus = prioritize(enrollment, now=NOW)

    assert [item.concept for item in focus] == ["loops"]
    assert focus[0].reason == "not practiced in 20 days"


def test_each_concept_appears_once():
    enrollment = _enrollment(
        queue=[ReinforcementItem(concept="closures", priority="medium")],
        closures=_concept(0.1),
    )

    focus = prioritize(enrollment, now=NOW)

    assert len(focus) == 1
    assert "queued" in focus[0].reason


def test_most_recent_queue_entry_wins_ties():
    enrollment = _enrollment(queue=[
        ReinforcementItem(concept="first", priority="high"),
        ReinforcementItem(concept="second", priority="high"),
    ])

    focus = prioritize(enrollment, now=NOW)

    assert [item.concept for item in focus] == ["second", "first"]


def test_lowest_mastery_first_among_implicit():
    enrollment = _enrollment(a=_concept(0.4), b=_concept(0.1), c=_concept(0.3))

    focus = prioritize(enrollment, now=NOW)

    assert [item.concept for item in focus] == ["b", "c", "a"]


def test_limit_caps_output():
    enrollment = _enrollment(**{f"c{i}": _concept(0.1 * i) for i in range(5)})
    assert len(prioritize(enrollment, now=NOW, limit=2)) == 2


def test_unexposed_concepts_are_skipped():
    enrollment = _enrollment(fresh=ConceptRecord())
    assert prioritize(enrollment, now=NOW) == []


def test_failure_degrades_to_empty(monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("bad record")

    monkeypatch.setattr("dojo.mastery.reinforcement.effective_mastery", boom)
    enrollment = _enrollment(closures=_concept(0.2))

    assert prioritize(enrollment, now=NOW) == []


def test_practiced_and_mastered_queue_entries_drop_out():
    enrollment = _enrollment(
        queue=[
            ReinforcementItem(concept="closures", priority="high", attempts=1),
            ReinforcementItem(concept="slicing", priority="low", attempts=2),
            ReinforcementItem(concept="loops", priority="medium"),
        ],
        closures=_concept(0.9),
        slicing=_concept(0.4),
        loops=_concept(0.95),
    )

    focus = prioritize(enrollment, now=NOW)

    assert [item.concept for item in focus] == ["loops", "slicing"]
