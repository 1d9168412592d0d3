"""
Aggregation Store
─────────────────
One SQLite file per repository holding day rows and the week/month/year
rollups derived from them, plus the tracker's last processed commit.

Day rows keep the ratchet invariant on every write:
    base_score(d) >= max(100, base_score(d - 1))
    trend(d)      == base_score(d) - max(100, base_score(d - 1))
A stale trend found on read is rewritten in place.

StoreHandle is the single writer: every coroutine that touches the store
goes through its lock, and ``exclusive()`` holds it across several steps.
"""

import asyncio
import functools
import hashlib
import shutil
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlmodel import Session, SQLModel, create_engine, select

from achievo_cli import dates
from achievo_cli.errors import ConfigurationError
from achievo_cli.log import get_logger
from achievo_cli.models import (
    PERIOD_MODELS,
    DayRecord,
    MonthRecord,
    TrackerState,
    WeekRecord,
    YearRecord,
    now_ms,
)
from achievo_cli.scoring.ratchet import BASE_FLOOR, compute_base_update, compute_cumulative_base

logger = get_logger("db")

_METRIC_FIELDS = ("ai_score", "local_score", "local_score_raw", "progress_percent")
_AI_META_FIELDS = ("ai_model", "ai_provider", "ai_tokens", "ai_duration_ms", "chunks_count", "last_gen_at")


def store_path_for(repo_path: str, data_dir: Path) -> Path:
    digest = hashlib.sha1(str(Path(repo_path).expanduser().resolve()).encode("utf-8")).hexdigest()
    return Path(data_dir) / "repos" / f"{digest[:16]}.sqlite3"


class AggregationStore:
    def __init__(self, path: Path, cap_ratio: float = 0.35):
        self.path = Path(path)
        self.cap_ratio = cap_ratio
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._open()

    @classmethod
    def for_repository(cls, repo_path: str, data_dir: Path, cap_ratio: float = 0.35) -> "AggregationStore":
        return cls(store_path_for(repo_path, data_dir), cap_ratio=cap_ratio)

    def _open(self):
        self.engine = create_engine(
            f"sqlite:///{self.path}",
            echo=False,
            connect_args={"check_same_thread": False},
        )
        SQLModel.metadata.create_all(self.engine)

    def _session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    def close(self):
        self.engine.dispose()

    # ─── Days ────────────────────────────────────────────────────────────

    @staticmethod
    def _prev_base(session: Session, key: str) -> int:
        y = session.get(DayRecord, dates.yesterday_key(key))
        return max(BASE_FLOOR, y.base_score if y else BASE_FLOOR)

    @staticmethod
    def _repair(session: Session, row: DayRecord, prev_base: int) -> bool:
        base = max(prev_base, row.base_score)
        expected = base - prev_base
        if row.trend == expected and row.base_score == base:
            return False
        logger.info("repairing stale trend for %s: %d -> %d", row.date, row.trend, expected)
        row.base_score = base
        row.trend = expected
        row.updated_at = now_ms()
        session.add(row)
        return True

    def get_day(self, key: str, repair: bool = True) -> Optional[DayRecord]:
        with self._session() as session:
            row = session.get(DayRecord, key)
            if row is None or not repair:
                return row
            if self._repair(session, row, self._prev_base(session, key)):
                session.commit()
            return row

    def get_range(self, start: str, end: str, repair: bool = True) -> List[DayRecord]:
        """Day rows in date order; stale trends are rewritten on the way."""
        with self._session() as session:
            stmt = (
                select(DayRecord)
                .where(DayRecord.date >= start, DayRecord.date <= end)
                .order_by(DayRecord.date)
            )
            rows = list(session.exec(stmt).all())
            if not repair:
                return rows
            changed = False
            prev = None
            for row in rows:
                if prev is not None and prev.date == dates.yesterday_key(row.date):
                    prev_base = max(BASE_FLOOR, prev.base_score)
                else:
                    prev_base = self._prev_base(session, row.date)
                changed = self._repair(session, row, prev_base) or changed
                prev = row
            if changed:
                session.commit()
            return rows

    def get_totals(self) -> Dict[str, int]:
        with self._session() as session:
            ins, dels = session.exec(
                select(func.coalesce(func.sum(DayRecord.insertions), 0), func.coalesce(func.sum(DayRecord.deletions), 0))
            ).one()
        return {"insertions": int(ins), "deletions": int(dels), "total": int(ins) + int(dels)}

    def set_day(self, record: DayRecord) -> DayRecord:
        """Write a day row as given, only re-deriving its trend."""
        with self._session() as session:
            record.base_score = max(BASE_FLOOR, record.base_score)
            record.trend = record.base_score - self._prev_base(session, record.date)
            record.updated_at = now_ms()
            merged = session.merge(record)
            session.commit()
            session.refresh(merged)
            return merged

    def _load_or_new(self, session: Session, key: str, prev_base: int) -> DayRecord:
        row = session.get(DayRecord, key)
        if row is None:
            row = DayRecord(date=key, base_score=prev_base, trend=0)
        return row

    def _write_counts(self, key: str, insertions: int, deletions: int, accumulate: bool, merge_by_max: bool) -> DayRecord:
        with self._session() as session:
            prev_base = self._prev_base(session, key)
            row = self._load_or_new(session, key, prev_base)
            if accumulate:
                ins = max(0, row.insertions + insertions)
                dels = max(0, row.deletions + deletions)
            elif merge_by_max:
                ins = max(row.insertions, max(0, insertions))
                dels = max(row.deletions, max(0, deletions))
            else:
                ins, dels = max(0, insertions), max(0, deletions)

            candidate = compute_cumulative_base(prev_base, ins, dels, self.cap_ratio)
            row.insertions, row.deletions = int(ins), int(dels)
            # periodic line-only recomputation never lowers the base
            row.base_score = max(prev_base, row.base_score, candidate)
            row.trend = row.base_score - prev_base
            row.updated_at = now_ms()
            session.add(row)
            session.commit()
            logger.debug("counts %s ins=%d del=%d base=%d trend=%d", key, ins, dels, row.base_score, row.trend)
            return row

    def accumulate(self, key: str, delta_insertions: int, delta_deletions: int) -> DayRecord:
        """Add deltas to a day, creating it if needed."""
        return self._write_counts(key, delta_insertions, delta_deletions, accumulate=True, merge_by_max=False)

    def set_counts(self, key: str, insertions: int, deletions: int, merge_by_max: bool = False) -> DayRecord:
        return self._write_counts(key, insertions, deletions, accumulate=False, merge_by_max=merge_by_max)

    def apply_day_update(
        self,
        key: str,
        counts: Optional[Dict[str, int]] = None,
        metrics: Optional[Dict[str, Optional[int]]] = None,
        summary: Optional[str] = None,
        ai_meta: Optional[Dict[str, object]] = None,
        merge_by_max: bool = True,
        overwrite_today: bool = False,
    ) -> DayRecord:
        """Write counts, metrics, summary and AI metadata for one day in one transaction.

        ``merge_by_max`` keeps the larger of stored and new counts/base, so a
        delta the tracker accumulated in the meantime is never lost.
        ``overwrite_today`` recomputes today's growth from yesterday's base
        instead of stacking it on whatever was already gained.
        """
        with self._session() as session:
            prev_base = self._prev_base(session, key)
            row = self._load_or_new(session, key, prev_base)
            stored_base = max(prev_base, row.base_score)

            if counts is not None:
                ins = max(0, int(counts.get("insertions", 0)))
                dels = max(0, int(counts.get("deletions", 0)))
                if merge_by_max:
                    ins, dels = max(row.insertions, ins), max(row.deletions, dels)
                row.insertions, row.deletions = ins, dels

            # a key that is present is written, None clears the field
            for name in _METRIC_FIELDS:
                if metrics and name in metrics:
                    value = metrics[name]
                    setattr(row, name, None if value is None else int(value))
            if summary is not None:
                row.summary = summary
            for name in _AI_META_FIELDS:
                if ai_meta and name in ai_meta:
                    setattr(row, name, ai_meta[name])

            if metrics:
                update = compute_base_update(
                    prev_base,
                    prev_base if overwrite_today else stored_base,
                    row.insertions,
                    row.deletions,
                    self.cap_ratio,
                    ai_score=row.ai_score,
                    local_score=row.local_score,
                )
                new_base = update.next_base
            else:
                new_base = compute_cumulative_base(prev_base, row.insertions, row.deletions, self.cap_ratio)

            if merge_by_max or not overwrite_today:
                new_base = max(stored_base, new_base)
            row.base_score = max(prev_base, new_base)
            row.trend = row.base_score - prev_base
            row.updated_at = now_ms()
            session.add(row)
            session.commit()
            logger.debug(
                "day update %s ins=%d del=%d base=%d trend=%d metrics=%s",
                key, row.insertions, row.deletions, row.base_score, row.trend, metrics,
            )
            return row

    # ─── Rollups ─────────────────────────────────────────────────────────

    @staticmethod
    def period_keys(key: str) -> Dict[str, str]:
        return {"week": dates.week_key(key), "month": dates.month_key(key), "year": dates.year_key(key)}

    def _period_range(self, kind: str, period: str):
        if kind == "week":
            return dates.week_range_from_key(period)
        if kind == "month":
            return dates.month_range(period)
        return f"{period}-01-01", f"{period}-12-31"

    def recompute_rollups(self, key: str) -> Dict[str, SQLModel]:
        """Re-derive the week/month/year rows containing ``key``. Idempotent."""
        out = {}
        with self._session() as session:
            for kind, period in self.period_keys(key).items():
                model, key_col = PERIOD_MODELS[kind]
                start, end = self._period_range(kind, period)
                days = session.exec(
                    select(DayRecord)
                    .where(DayRecord.date >= start, DayRecord.date <= end)
                    .order_by(DayRecord.date)
                ).all()
                ins = sum(d.insertions for d in days)
                dels = sum(d.deletions for d in days)
                base = days[-1].base_score if days else 0

                row = session.get(model, period)
                if row is None:
                    row = model(**{key_col: period}, insertions=ins, deletions=dels, base_score=base)
                    session.add(row)
                elif (row.insertions, row.deletions, row.base_score) != (ins, dels, base):
                    row.insertions, row.deletions, row.base_score = ins, dels, base
                    row.updated_at = now_ms()
                    session.add(row)
                out[kind] = row
            session.commit()
        return out

    def get_period(self, kind: str, period: str):
        model, _ = PERIOD_MODELS[kind]
        with self._session() as session:
            return session.get(model, period)

    def get_week(self, period: str) -> Optional[WeekRecord]:
        return self.get_period("week", period)

    def get_month(self, period: str) -> Optional[MonthRecord]:
        return self.get_period("month", period)

    def get_year(self, period: str) -> Optional[YearRecord]:
        return self.get_period("year", period)

    def set_period(self, kind: str, period: str, **fields):
        model, key_col = PERIOD_MODELS[kind]
        with self._session() as session:
            row = session.get(model, period) or model(**{key_col: period})
            for name, value in fields.items():
                setattr(row, name, value)
            row.updated_at = now_ms()
            session.add(row)
            session.commit()
            return row

    def all_periods(self, kind: str) -> list:
        model, key_col = PERIOD_MODELS[kind]
        with self._session() as session:
            return list(session.exec(select(model).order_by(getattr(model, key_col))).all())

    # ─── Tracker state ───────────────────────────────────────────────────

    def get_state(self, key: str) -> Optional[str]:
        with self._session() as session:
            row = session.get(TrackerState, key)
            return row.value if row else None

    def set_state(self, key: str, value: Optional[str]):
        with self._session() as session:
            row = session.get(TrackerState, key) or TrackerState(key=key)
            row.value = value
            row.updated_at = now_ms()
            session.add(row)
            session.commit()

    # ─── Export / import ─────────────────────────────────────────────────

    def export_to(self, dest: Path) -> Path:
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        self.engine.dispose()
        shutil.copy2(self.path, dest)
        logger.info("exported %s -> %s", self.path, dest)
        return dest

    def import_from(self, src: Path) -> Optional[Path]:
        """Replace this store's file with ``src``. Returns the backup of the old file, if any."""
        src = Path(src)
        if not src.is_file():
            raise ConfigurationError(f"Store file not found: {src}")
        self.engine.dispose()
        backup = None
        if self.path.exists():
            stamp = datetime.now().strftime("%Y%m%d%H%M%S")
            backup = self.path.with_name(f"{self.path.name}.bak-{stamp}")
            shutil.copy2(self.path, backup)
        shutil.copy2(src, self.path)
        self._open()
        logger.info("imported %s (backup: %s)", src, backup)
        return backup


class _AsyncStore:
    """Awaitable view of a store; each call runs in a worker thread."""

    def __init__(self, store: AggregationStore):
        self._store = store

    def __getattr__(self, name):
        attr = getattr(self._store, name)
        if not callable(attr):
            return attr

        @functools.wraps(attr)
        async def call(*args, **kwargs):
            return await asyncio.to_thread(attr, *args, **kwargs)

        return call


class StoreHandle:
    """
    Owned, serialised access to one repository's store.

        row = await handle.get_day(key)             # one locked call
        async with handle.exclusive() as tx:        # several steps, lock held
            await tx.set_counts(key, ins, dels)
            await tx.recompute_rollups(key)
    """

    def __init__(self, store: AggregationStore):
        self.store = store
        self._lock = asyncio.Lock()
        self._view = _AsyncStore(store)
        self.retired = False

    @property
    def path(self) -> Path:
        return self.store.path

    @asynccontextmanager
    async def exclusive(self):
        if self.retired:
            raise ConfigurationError("Store handle has been retired")
        async with self._lock:
            yield self._view

    def __getattr__(self, name):
        attr = getattr(self._view, name)
        if not callable(attr):
            return attr

        async def locked(*args, **kwargs):
            async with self.exclusive() as tx:
                return await getattr(tx, name)(*args, **kwargs)

        return locked

    async def retire(self):
        async with self._lock:
            self.retired = True
            self.store.close()
