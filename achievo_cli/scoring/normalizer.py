"""
Historical Normalizer
─────────────────────
Maps today's raw score onto the developer's own history.

  cold start  (fewer than cold_start_n samples)
              standard normal CDF of (raw - mean) / std, scaled by 0.9 and
              capped at cap_cold. Deliberately under-confident.
  steady      empirical percentile of raw within the winsorized sample
              window (linear interpolation between neighbouring ranks),
              capped at cap_stable.

Smoothing against yesterday can only pull the score down, and a day at or
above high_threshold caps the next day at regression_cap_after_high.
"""

import math
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from achievo_cli.config import LocalScoringConfig
from achievo_cli.log import get_logger
from achievo_cli.scoring.util import clamp, round_half_up

logger = get_logger("score")


@dataclass(frozen=True)
class NormalizedScore:
    local_score: int
    local_score_raw: int
    cold_start: bool
    cap: int
    before_smooth: int
    prev_normalized: Optional[int] = None


def normal_cdf_score(raw: float, mean: float, std: float) -> int:
    x = clamp(raw, 0, 100)
    z = (x - mean) / std
    cdf = 0.5 * (1.0 + math.erf(z / math.sqrt(2.0)))
    return clamp(round_half_up(100 * cdf), 0, 100)


def ecdf_score(raw: float, samples: Sequence[float], cap: int, p_low: float = 0.05, p_high: float = 0.95) -> int:
    """Percentile rank of raw among winsorized samples, scaled to 0..100 and capped."""
    arr = np.asarray([s for s in samples if s is not None and math.isfinite(s)], dtype=float)
    if arr.size == 0:
        return clamp(round_half_up(raw), 0, cap)

    lo, hi = np.quantile(arr, [p_low, p_high])
    ranked = np.sort(np.clip(arr, lo, hi))
    n = ranked.size

    idx = int(np.searchsorted(ranked, raw, side="left"))
    end = int(np.searchsorted(ranked, raw, side="right"))
    if end > idx:
        # ties rank at the middle of their run
        pct = 0.5 if n == 1 else ((idx + end - 1) / 2) / (n - 1)
    elif idx <= 0:
        pct = 0.0
    elif idx >= n:
        pct = 1.0
    else:
        x0, x1 = ranked[idx - 1], ranked[idx]
        t = 1.0 if x1 == x0 else (raw - x0) / (x1 - x0)
        pct = ((idx - 1) + t) / (n - 1)

    return clamp(round_half_up(100 * pct), 0, cap)


def _normalize(raw: float, samples: Sequence[float], cold_start: bool, cap: int, cfg: LocalScoringConfig) -> int:
    if cold_start:
        return min(cap, round_half_up(normal_cdf_score(raw, cfg.normal_mean, cfg.normal_std) * 0.9))
    return ecdf_score(raw, samples, cap, cfg.winsor_p_low, cfg.winsor_p_high)


def normalize_local_score(
    raw: int,
    samples: Sequence[float],
    cfg: Optional[LocalScoringConfig] = None,
    prev_local: Optional[int] = None,
    prev_local_raw: Optional[int] = None,
) -> NormalizedScore:
    """Normalize ``raw`` against ``samples`` (prior raw scores, today excluded).

    ``prev_local``/``prev_local_raw`` are yesterday's stored normalized and raw
    scores; when ``prev_local`` is None no smoothing is applied.
    """
    cfg = cfg or LocalScoringConfig()
    samples = [s for s in samples if s is not None]
    cold_start = len(samples) < cfg.cold_start_n
    cap = cfg.cap_cold if cold_start else cfg.cap_stable

    before_smooth = _normalize(raw, samples, cold_start, cap, cfg)
    score = before_smooth
    prev_norm = None

    if prev_local is not None:
        if prev_local_raw is not None:
            prev_norm = _normalize(prev_local_raw, samples, cold_start, cap, cfg)
        else:
            prev_norm = prev_local
        blended = round_half_up(cfg.alpha * score + (1 - cfg.alpha) * clamp(prev_norm, 0, 100))
        score = min(score, blended)
        if prev_local >= cfg.high_threshold:
            score = min(score, cfg.regression_cap_after_high)

    score = clamp(score, 0, cap)
    logger.debug(
        "normalize raw=%s samples=%d cold=%s cap=%d before=%d prev=%s prev_norm=%s after=%d",
        raw, len(samples), cold_start, cap, before_smooth, prev_local, prev_norm, score,
    )
    return NormalizedScore(
        local_score=int(score),
        local_score_raw=int(raw),
        cold_start=cold_start,
        cap=cap,
        before_smooth=int(before_smooth),
        prev_normalized=prev_norm,
    )
