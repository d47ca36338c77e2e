"""
Tests for read-time mastery decay.
"""

from datetime import datetime, timedelta, timezone

import pytest

from dojo.mastery.decay import DECAY_WINDOW_DAYS, days_since, decay_factor, effective_mastery
from dojo.memory.models import ConceptRecord

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _record(mastery, days_ago=0, exposures=1):
    return ConceptRecord(
        mastery=mastery,
        exposure_count=exposures,
        success_count=0,
        last_seen=NOW - timedelta(days=days_ago) if days_ago is not None else None,
    )


def test_fresh_mastery_is_undecayed():
    assert effective_mastery(_record(0.8), NOW) == pytest.approx(0.8)


def test_half_window_halves_mastery():
    """0.80 last seen 45 days ago reads as 0.40."""
    assert effective_mastery(_record(0.8, days_ago=45), NOW) == pytest.approx(0.4)


def test_full_window_decays_to_zero():
    assert effective_mastery(_record(1.0, days_ago=DECAY_WINDOW_DAYS), NOW) == 0.0
    assert effective_mastery(_record(1.0, days_ago=400), NOW) == 0.0


def test_decay_is_monotonic_in_elapsed_time():
    values = [effective_mastery(_record(0.9, days_ago=d), NOW) for d in range(0, 120, 5)]
    assert all(later <= earlier for earlier, later in zip(values, values[1:]))
    assert all(0.0 <= v <= 1.0 for v in values)


def test_partial_days_are_floored():
    record = ConceptRecord(mastery=0.9, exposure_count=1, last_seen=NOW - timedelta(hours=23))
    assert days_since(record, NOW) == 0
    assert effective_mastery(record, NOW) == pytest.approx(0.9)


def test_missing_or_unexposed_records_read_as_zero():
    assert effective_mastery(None, NOW) == 0.0
    assert effective_mastery(_record(0.9, exposures=0), NOW) == 0.0
    assert effective_mastery(_record(0.9, days_ago=None), NOW) == 0.0


def test_future_last_seen_counts_as_today():
    record = ConceptRecord(mastery=0.7, exposure_count=1, last_seen=NOW + timedelta(days=3))
    assert days_since(record, NOW) == 0
    assert effective_mastery(record, NOW) == pytest.approx(0.7)


def test_naive_timestamps_are_treated_as_utc():
    record = ConceptRecord(
        mastery=0.8, exposure_count=1, last_seen=datetime(2026, 1, 15, 12, 0)
    )
    assert days_since(record, NOW) == 45


def test_decay_factor_bounds():
    assert decay_factor(0) == 1.0
    assert decay_factor(DECAY_WINDOW_DAYS * 2) == 0.0
