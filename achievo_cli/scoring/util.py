import math


def round_half_up(x: float) -> int:
    # Python's round() is banker's rounding; scores round .5 up.
    return int(math.floor(x + 0.5))


def clamp(x, lo, hi):
    return max(lo, min(hi, x))
