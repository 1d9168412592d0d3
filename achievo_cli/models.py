import time
from typing import Optional

from sqlmodel import Field, SQLModel


def now_ms() -> int:
    return int(time.time() * 1000)


class DayRecord(SQLModel, table=True):
    __tablename__ = "days"

    date: str = Field(primary_key=True)  # YYYY-MM-DD, local
    insertions: int = 0
    deletions: int = 0
    base_score: int = 100
    trend: int = 0  # base_score - yesterday's base_score
    summary: Optional[str] = None

    ai_score: Optional[int] = None
    local_score: Optional[int] = None
    local_score_raw: Optional[int] = None
    progress_percent: Optional[int] = None

    ai_model: Optional[str] = None
    ai_provider: Optional[str] = None
    ai_tokens: Optional[int] = None
    ai_duration_ms: Optional[int] = None
    chunks_count: Optional[int] = None
    last_gen_at: Optional[int] = None

    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)


class PeriodFields(SQLModel):
    insertions: int = 0
    deletions: int = 0
    base_score: int = 0  # latest day's base in the period
    summary: Optional[str] = None

    # Only set by period summaries
    trend: Optional[int] = None
    ai_score: Optional[int] = None
    local_score: Optional[int] = None
    progress_percent: Optional[int] = None
    last_gen_at: Optional[int] = None

    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)


class WeekRecord(PeriodFields, table=True):
    __tablename__ = "weeks"

    week: str = Field(primary_key=True)  # YYYY-Www


class MonthRecord(PeriodFields, table=True):
    __tablename__ = "months"

    month: str = Field(primary_key=True)  # YYYY-MM


class YearRecord(PeriodFields, table=True):
    __tablename__ = "years"

    year: str = Field(primary_key=True)  # YYYY


class TrackerState(SQLModel, table=True):
    __tablename__ = "tracker_state"

    key: str = Field(primary_key=True)
    value: Optional[str] = None
    updated_at: int = Field(default_factory=now_ms)


PERIOD_MODELS = {
    "week": (WeekRecord, "week"),
    "month": (MonthRecord, "month"),
    "year": (YearRecord, "year"),
}
