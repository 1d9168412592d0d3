"""Date keys used throughout the store. All dates are local calendar dates."""

import re
from datetime import date, timedelta
from typing import List, Tuple, Union

DateLike = Union[str, date]

_WEEK_KEY = re.compile(r"^(\d{4})-W(\d{2})$")
_MONTH_KEY = re.compile(r"^(\d{4})-(\d{2})$")


def to_key(d: date) -> str:
    return d.isoformat()


def parse_key(key: DateLike) -> date:
    if isinstance(key, date):
        return key
    return date.fromisoformat(key)


def today_key() -> str:
    return to_key(date.today())


def yesterday_key(key: DateLike) -> str:
    return to_key(parse_key(key) - timedelta(days=1))


def shift_key(key: DateLike, days: int) -> str:
    return to_key(parse_key(key) + timedelta(days=days))


def week_key(key: DateLike) -> str:
    """ISO-8601 week key, e.g. 2024-01-08 -> 2024-W02."""
    iso = parse_key(key).isocalendar()
    return f"{iso[0]}-W{iso[1]:02d}"


def month_key(key: DateLike) -> str:
    return to_key(parse_key(key))[:7]


def year_key(key: DateLike) -> str:
    return to_key(parse_key(key))[:4]


def iso_week_range(key: DateLike) -> Tuple[str, str]:
    """Monday..Sunday of the ISO week containing the date."""
    d = parse_key(key)
    monday = d - timedelta(days=d.weekday())
    return to_key(monday), to_key(monday + timedelta(days=6))


def week_range_from_key(wk: str) -> Tuple[str, str]:
    m = _WEEK_KEY.match(wk or "")
    if not m:
        raise ValueError(f"Invalid week key: {wk!r}")
    year, week = int(m.group(1)), int(m.group(2))
    try:
        monday = date.fromisocalendar(year, week, 1)
    except ValueError as e:
        raise ValueError(f"Invalid week key: {wk!r}") from e
    return to_key(monday), to_key(monday + timedelta(days=6))


def previous_week_key(wk: str) -> str:
    start, _ = week_range_from_key(wk)
    return week_key(shift_key(start, -7))


def month_range(mk: str) -> Tuple[str, str]:
    m = _MONTH_KEY.match(mk or "")
    if not m or not 1 <= int(m.group(2)) <= 12:
        raise ValueError(f"Invalid month key: {mk!r}")
    first = date(int(m.group(1)), int(m.group(2)), 1)
    nxt = date(first.year + (first.month == 12), first.month % 12 + 1, 1)
    return to_key(first), to_key(nxt - timedelta(days=1))


def previous_month_key(mk: str) -> str:
    start, _ = month_range(mk)
    return month_key(shift_key(start, -1))


def weeks_in_month(mk: str) -> List[str]:
    """ISO week keys of every week that has at least one day in the month."""
    start, end = month_range(mk)
    keys = []
    d = parse_key(start)
    last = parse_key(end)
    while d <= last:
        wk = week_key(d)
        if wk not in keys:
            keys.append(wk)
        d += timedelta(days=1)
    return keys
