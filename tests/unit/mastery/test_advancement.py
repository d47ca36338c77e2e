"""
Tests for belt advancement evaluation and the assessment flag.
"""

from datetime import datetime, timedelta, timezone

import pytest

from dojo.mastery.advancement import check_assessment_eligibility, evaluate
from dojo.mastery.belts import BELT_ORDER, belt_rank, is_terminal, next_belt
from dojo.memory.models import ConceptRecord, SkillEnrollment

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _concept(mastery, days_ago=0, belt="white"):
    return ConceptRecord(
        mastery=mastery,
        exposure_count=3,
        success_count=3,
        streak=3,
        last_seen=NOW - timedelta(days=days_ago),
        belt_level=belt,
    )


def _enrollment(belt="white", **concepts):
    return SkillEnrollment(id="e1", user_id="u1", skill_id="python", current_belt=belt, concepts=concepts)


def test_belt_ladder():
    assert BELT_ORDER[0] == "white" and BELT_ORDER[-1] == "black"
    assert next_belt("white") == "yellow"
    assert next_belt("black") is None
    assert is_terminal("black")
    assert belt_rank("orange") == 2
    assert belt_rank(None) == 0


def test_eligible_white_belt():
    enrollment = _enrollment(a=_concept(0.95), b=_concept(0.95), c=_concept(0.95))

    report = evaluate(enrollment, completed_session_count=5, now=NOW)

    assert report.eligible is True
    assert report.next_belt == "yellow"
    assert report.details.concept_pct == pytest.approx(1.0)
    assert report.details.mastered_concepts == 3
    assert report.details.total_concepts == 3


def test_no_sessions_not_eligible():
    enrollment = _enrollment(a=_concept(0.95), b=_concept(0.95), c=_concept(0.95))

    report = evaluate(enrollment, completed_session_count=0, now=NOW)

    assert report.eligible is False
    assert report.details.session_count == 0
    assert report.details.required_sessions == 1


def test_too_few_concepts_not_eligible():
    report = evaluate(_enrollment(a=_concept(1.0)), completed_session_count=5, now=NOW)
    assert report.eligible is False
    assert report.details.required_concepts == 2


def test_decay_pulls_concepts_below_mastered():
    enrollment = _enrollment(a=_concept(0.95, days_ago=60), b=_concept(0.95, days_ago=60))

    report = evaluate(enrollment, completed_session_count=5, now=NOW)

    assert report.eligible is False
    assert report.details.mastered_concepts == 0
    assert report.details.concept_pct == 0.0


def test_higher_belt_concepts_are_ignored():
    enrollment = _enrollment(
        a=_concept(0.95),
        b=_concept(0.95),
        c=_concept(0.1, belt="green"),
        d=_concept(0.1, belt="yellow"),
    )

    report = evaluate(enrollment, completed_session_count=1, now=NOW)

    assert report.details.total_concepts == 2
    assert report.eligible is True


def test_max_belt_is_never_eligible():
    enrollment = _enrollment("black", a=_concept(1.0), b=_concept(1.0))

    report = evaluate(enrollment, completed_session_count=100, now=NOW)

    assert report.eligible is False
    assert report.next_belt is None
    assert report.details.reason == "Already at max belt"


@pytest.mark.asyncio
async def test_check_persists_flag_only_on_change(store, enrollment):
    concepts = {"a": _concept(0.95), "b": _concept(0.9)}
    store.update_enrollment(enrollment.id, enrollment.version, concepts=concepts, now=NOW)

    report = await check_assessment_eligibility(store, enrollment.id, 2, now=NOW)
    after_first = store.get_enrollment(enrollment.id)
    assert report.eligible is True
    assert after_first.assessment_available is True

    await check_assessment_eligibility(store, enrollment.id, 2, now=NOW)
    assert store.get_enrollment(enrollment.id).version == after_first.version


@pytest.mark.asyncio
async def test_check_clears_flag_when_mastery_decays(store, enrollment):
    concepts = {"a": _concept(0.95), "b": _concept(0.9)}
    store.update_enrollment(enrollment.id, enrollment.version, concepts=concepts, now=NOW)
    await check_assessment_eligibility(store, enrollment.id, 2, now=NOW)

    report = await check_assessment_eligibility(store, enrollment.id, 2, now=NOW + timedelta(days=60))

    assert report.eligible is False
    assert store.get_enrollment(enrollment.id).assessment_available is False
