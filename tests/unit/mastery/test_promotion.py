"""
Tests for the promotion transaction: history first, version-checked belt second.
"""

import pytest

from dojo.mastery.promotion import fail_assessment, promote, set_belt
from dojo.shared.exceptions import (
    ConcurrentModificationError,
    InvalidStateError,
    MaxBeltReachedError,
    NotFoundError,
    StoreError,
)


@pytest.mark.asyncio
async def test_promote_advances_one_belt(store, enrollment):
    store.update_enrollment(enrollment.id, enrollment.version, assessment_available=True)

    result = await promote(store, enrollment.id, "session-1")

    stored = store.get_enrollment(enrollment.id)
    history = store.list_belt_history(enrollment.id)
    assert (result.from_belt, result.to_belt) == ("white", "yellow")
    assert result.skill_id == "python"
    assert stored.current_belt == "yellow"
    assert stored.assessment_available is False
    assert [(h.from_belt, h.to_belt) for h in history] == [(None, "white"), ("white", "yellow")]
    assert history[-1].source_session_id == "session-1"


@pytest.mark.asyncio
async def test_promote_at_black_belt(store, enrollment):
    store.update_enrollment(enrollment.id, enrollment.version, current_belt="black")
    before = len(store.list_belt_history(enrollment.id))

    with pytest.raises(MaxBeltReachedError):
        await promote(store, enrollment.id)

    assert len(store.list_belt_history(enrollment.id)) == before
    assert store.get_enrollment(enrollment.id).current_belt == "black"


@pytest.mark.asyncio
async def test_lost_race_rolls_back_history(store, enrollment, monkeypatch):
    real_update = store.update_enrollment

    def racing_update(*args, **kwargs):
        # A concurrent writer bumps the version first
        store.atomic_update(enrollment.id, lambda e: None)
        return real_update(*args, **kwargs)

    monkeypatch.setattr(store, "update_enrollment", racing_update)
    before = store.list_belt_history(enrollment.id)

    with pytest.raises(ConcurrentModificationError) as exc_info:
        await promote(store, enrollment.id, "session-1")

    assert exc_info.value.retryable is True
    assert store.list_belt_history(enrollment.id) == before
    assert store.get_enrollment(enrollment.id).current_belt == "white"


@pytest.mark.asyncio
async def test_store_failure_rolls_back_history(store, enrollment, monkeypatch):
    def broken_update(*args, **kwargs):
        raise StoreError("disk full")

    monkeypatch.setattr(store, "update_enrollment", broken_update)

    with pytest.raises(StoreError):
        await promote(store, enrollment.id)

    assert len(store.list_belt_history(enrollment.id)) == 1


@pytest.mark.asyncio
async def test_promote_unknown_enrollment(store):
    with pytest.raises(NotFoundError):
        await promote(store, "missing")


@pytest.mark.asyncio
async def test_fail_assessment_keeps_belt(store, enrollment):
    store.update_enrollment(enrollment.id, enrollment.version, assessment_available=True)

    stored = await fail_assessment(store, enrollment.id)

    assert stored.assessment_available is False
    assert stored.current_belt == "white"
    assert len(store.list_belt_history(enrollment.id)) == 1


@pytest.mark.asyncio
async def test_set_belt_skips_ahead_with_reason(store, enrollment):
    result = await set_belt(store, enrollment.id, "green", source_session_id="onboard", reason="prior experience")

    history = store.list_belt_history(enrollment.id)
    assert result.to_belt == "green"
    assert store.get_enrollment(enrollment.id).current_belt == "green"
    assert history[-1].reason == "prior experience"
    assert history[-1].from_belt == "white"


@pytest.mark.asyncio
async def test_set_belt_same_belt_is_noop(store, enrollment):
    result = await set_belt(store, enrollment.id, "white", reason="already there")

    assert result.from_belt == result.to_belt == "white"
    assert len(store.list_belt_history(enrollment.id)) == 1
    assert store.get_enrollment(enrollment.id).version == enrollment.version


@pytest.mark.asyncio
async def test_set_belt_refuses_demotion(store, enrollment):
    await set_belt(store, enrollment.id, "blue", reason="placement")

    with pytest.raises(InvalidStateError):
        await set_belt(store, enrollment.id, "yellow", reason="oops")

    assert store.get_enrollment(enrollment.id).current_belt == "blue"


@pytest.mark.asyncio
async def test_set_belt_never_lowers_a_concurrently_raised_belt(store, enrollment, monkeypatch):
    real_assign = store.assign_belt

    def racing_assign(*args, **kwargs):
        # Another writer raises the belt before our write lands
        real_assign(enrollment.id, "blue", reason="placement")
        return real_assign(*args, **kwargs)

    monkeypatch.setattr(store, "assign_belt", racing_assign)

    with pytest.raises(InvalidStateError):
        await set_belt(store, enrollment.id, "yellow", reason="onboarding")

    history = store.list_belt_history(enrollment.id)
    assert store.get_enrollment(enrollment.id).current_belt == "blue"
    assert [(h.from_belt, h.to_belt) for h in history] == [(None, "white"), ("white", "blue")]


@pytest.mark.asyncio
async def test_set_belt_history_names_the_replaced_belt(store, enrollment, monkeypatch):
    real_assign = store.assign_belt

    def racing_assign(*args, **kwargs):
        real_assign(enrollment.id, "yellow", reason="placement")
        return real_assign(*args, **kwargs)

    monkeypatch.setattr(store, "assign_belt", racing_assign)

    result = await set_belt(store, enrollment.id, "green", reason="onboarding")

    assert result.from_belt == "yellow"
    assert store.list_belt_history(enrollment.id)[-1].from_belt == "yellow"
