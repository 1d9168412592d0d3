"""
Base score ratchet: a cumulative per-day score that never drops below
yesterday's value (nor below 100), grown by code churn with diminishing
returns and limited to ``cap_ratio`` of yesterday's base per day.
"""

import math
from dataclasses import dataclass
from typing import Optional

from achievo_cli.log import get_logger
from achievo_cli.scoring.util import clamp, round_half_up

logger = get_logger("score")

BASE_FLOOR = 100
INSERT_WEIGHT = 1.6
DELETE_WEIGHT = 0.8
SATURATION = 220.0
AI_POINTS = 30.0
LOCAL_POINTS = 40.0


def churn_increment(insertions: int, deletions: int) -> float:
    raw = INSERT_WEIGHT * max(0, insertions) + DELETE_WEIGHT * max(0, deletions)
    return 100.0 * (1 - math.exp(-raw / SATURATION))


def _applied(increment: float, remaining: float) -> int:
    if remaining < 1:
        return 0
    if increment >= remaining:
        return int(math.floor(remaining))
    capped = max(0.0, increment)
    if 0 < capped < 1:
        return 1
    return min(round_half_up(capped), int(math.floor(remaining)))


@dataclass(frozen=True)
class BaseUpdate:
    next_base: int
    trend: int
    daily_increment: float
    allowance: float
    already_gained: int
    applied: int


def compute_base_update(
    prev_base: Optional[int],
    current_base: Optional[int],
    insertions: int,
    deletions: int,
    cap_ratio: float,
    ai_score: Optional[int] = None,
    local_score: Optional[int] = None,
) -> BaseUpdate:
    """Grow today's base from ``current_base`` within what's left of today's allowance.

    ``ai_score``/``local_score`` (0..100) add up to 30 and 40 points when given;
    the plain churn path leaves them None.
    """
    prev = max(BASE_FLOOR, prev_base or BASE_FLOOR)
    current = max(prev, current_base or prev)

    increment = churn_increment(insertions, deletions)
    if ai_score is not None:
        increment += clamp(ai_score, 0, 100) / 100 * AI_POINTS
    if local_score is not None:
        increment += clamp(local_score, 0, 100) / 100 * LOCAL_POINTS

    allowance = prev * clamp(cap_ratio, 0.0, 1.0)
    already = current - prev
    applied = _applied(increment, allowance - already)
    nxt = current + applied

    logger.debug(
        "ratchet prev=%d current=%d ins=%d del=%d inc=%.1f allowance=%.1f gained=%d applied=%d next=%d",
        prev, current, insertions, deletions, increment, allowance, already, applied, nxt,
    )
    return BaseUpdate(
        next_base=nxt,
        trend=nxt - prev,
        daily_increment=increment,
        allowance=allowance,
        already_gained=already,
        applied=applied,
    )


def compute_cumulative_base(prev_base: Optional[int], insertions: int, deletions: int, cap_ratio: float) -> int:
    """Churn-only base for a day, starting from yesterday's value."""
    return compute_base_update(prev_base, None, insertions, deletions, cap_ratio).next_base
