import math

from achievo_cli.scoring.util import clamp, round_half_up

PROGRESS_CAP = 25
SOFT_THRESHOLD = 21
EASING_LAMBDA = 0.15


def calc_progress_percent(
    trend: float,
    prev_base: float,
    local_score: float,
    ai_score: float,
    total_changes: float,
    has_changes: bool,
    cap: int = PROGRESS_CAP,
) -> int:
    """Blend trend, local, AI and size signals into a 0..cap percent.

    Weights: 0.40 relative trend, 0.30 local score, 0.20 AI score, 0.10 size.
    Above SOFT_THRESHOLD the result eases toward ``cap`` exponentially. Any
    qualifying change keeps the result at 1% or more.
    """
    prev = max(100.0, prev_base or 0)
    trend_norm = max(0.0, trend or 0) / prev
    local_norm = clamp(local_score or 0, 0, 100) / 100
    ai_norm = clamp(ai_score or 0, 0, 100) / 100
    size_norm = 1 - math.exp(-max(0.0, total_changes or 0) / 300)

    score = 0.40 * trend_norm + 0.30 * local_norm + 0.20 * ai_norm + 0.10 * size_norm
    pct = round_half_up(cap * score)

    if pct > SOFT_THRESHOLD:
        span = cap - SOFT_THRESHOLD
        eased = span * (1 - math.exp(-EASING_LAMBDA * (pct - SOFT_THRESHOLD)))
        pct = round_half_up(SOFT_THRESHOLD + clamp(eased, 0, span))

    pct = max(0, pct)
    if has_changes and pct < 1:
        pct = 1
    return min(cap, pct)
