"""
Read-time time decay of concept mastery.

Stored mastery is the value the sensei assessed at the last exposure. Every
advancement or display decision reads it through `effective_mastery`, which
ramps it linearly down to zero over DECAY_WINDOW_DAYS without practice.
"""

import math
from datetime import datetime
from typing import Optional

from dojo.memory.models import ConceptRecord
from dojo.shared.clock import ensure_aware, utcnow

DECAY_WINDOW_DAYS = 90
SECONDS_PER_DAY = 24 * 60 * 60


def days_since(record: Optional[ConceptRecord], now: Optional[datetime] = None) -> Optional[int]:
    """Whole days since the concept was last exercised, or None if never seen."""
    if record is None or record.last_seen is None:
        return None
    now = ensure_aware(now) or utcnow()
    elapsed = (now - ensure_aware(record.last_seen)).total_seconds()
    return max(0, math.floor(elapsed / SECONDS_PER_DAY))


def decay_factor(days: int, window: int = DECAY_WINDOW_DAYS) -> float:
    return max(0.0, 1.0 - days / window)


def effective_mastery(record: Optional[ConceptRecord], now: Optional[datetime] = None) -> float:
    """
    Mastery as of `now`.

    Returns 0 for a missing record, one never exposed, or one never seen.
    """
    if record is None or record.exposure_count == 0:
        return 0.0
    days = days_since(record, now)
    if days is None:
        return 0.0
    return max(0.0, min(1.0, record.mastery * decay_factor(days)))
