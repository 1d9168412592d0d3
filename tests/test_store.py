"""Tests for the aggregation store and its async handle."""

import asyncio
import random

import pytest

from achievo_cli import dates
from achievo_cli.errors import ConfigurationError
from achievo_cli.models import DayRecord
from achievo_cli.store import AggregationStore, store_path_for


def _dump_all(store):
    out = {"days": [d.model_dump() for d in store.get_range("0000-01-01", "9999-12-31")]}
    for kind in ("week", "month", "year"):
        out[kind] = [r.model_dump() for r in store.all_periods(kind)]
    return out


class TestDays:
    def test_accumulate_creates_day(self, store):
        row = store.accumulate("2024-01-08", 500, 0)
        assert (row.insertions, row.deletions) == (500, 0)
        assert row.base_score == 135
        assert row.trend == 35

    def test_accumulate_adds(self, store):
        store.accumulate("2024-01-08", 10, 2)
        row = store.accumulate("2024-01-08", 5, 1)
        assert (row.insertions, row.deletions) == (15, 3)

    def test_base_never_decreases_across_days(self, store):
        rng = random.Random(3)
        key = "2024-01-01"
        prev = 100
        for _ in range(20):
            row = store.accumulate(key, rng.randint(0, 800), rng.randint(0, 800))
            assert row.base_score >= prev >= 100
            assert row.trend == row.base_score - prev
            prev = row.base_score
            key = dates.shift_key(key, 1)

    def test_missing_yesterday_counts_as_floor(self, store):
        row = store.accumulate("2024-01-08", 0, 0)
        assert row.base_score == 100
        assert row.trend == 0

    def test_stale_trend_is_repaired_on_read(self, store):
        store.set_day(DayRecord(date="2024-01-07", base_score=150))
        with store._session() as session:
            session.add(DayRecord(date="2024-01-08", base_score=120, trend=20))
            session.commit()

        row = store.get_day("2024-01-08")
        assert row.base_score == 150
        assert row.trend == 0
        assert store.get_day("2024-01-08", repair=False).trend == 0

    def test_stale_trend_is_repaired_in_ranges(self, store):
        store.set_day(DayRecord(date="2024-01-07", base_score=100))
        store.set_day(DayRecord(date="2024-01-08", base_score=130))
        store.set_day(DayRecord(date="2024-01-10", base_score=140))
        store.set_day(DayRecord(date="2024-01-07", base_score=135))

        rows = store.get_range("2024-01-07", "2024-01-10")
        assert [(r.date, r.base_score, r.trend) for r in rows] == [
            ("2024-01-07", 135, 35),
            ("2024-01-08", 135, 0),
            ("2024-01-10", 140, 40),  # 2024-01-09 is missing, so measured from the floor
        ]
        assert store.get_day("2024-01-08", repair=False).trend == 0

    def test_set_counts_merge_by_max(self, store):
        store.set_counts("2024-01-08", 100, 10)
        row = store.set_counts("2024-01-08", 50, 20, merge_by_max=True)
        assert (row.insertions, row.deletions) == (100, 20)

    def test_set_counts_overwrite_keeps_base(self, store):
        first = store.set_counts("2024-01-08", 500, 0)
        row = store.set_counts("2024-01-08", 1, 0)
        assert row.insertions == 1
        assert row.base_score == first.base_score

    def test_apply_day_update_merges_by_max(self, store):
        store.set_counts("2024-01-08", 100, 10)
        row = store.apply_day_update(
            "2024-01-08",
            counts={"insertions": 50, "deletions": 20},
            metrics={"local_score": 60, "ai_score": 70, "local_score_raw": 55, "progress_percent": 12},
            summary="## Work",
            ai_meta={"ai_model": "m", "ai_provider": "p", "ai_tokens": 9},
        )
        assert (row.insertions, row.deletions) == (100, 20)
        assert (row.local_score, row.ai_score, row.local_score_raw, row.progress_percent) == (60, 70, 55, 12)
        assert row.summary == "## Work"
        assert (row.ai_model, row.ai_provider, row.ai_tokens) == ("m", "p", 9)
        assert row.base_score == 135

    def test_apply_day_update_overwrite(self, store):
        store.set_counts("2024-01-08", 100, 10)
        row = store.apply_day_update(
            "2024-01-08",
            counts={"insertions": 50, "deletions": 5},
            merge_by_max=False,
            overwrite_today=True,
        )
        assert (row.insertions, row.deletions) == (50, 5)
        assert row.base_score == 132
        assert row.trend == 32

    def test_totals(self, store):
        store.accumulate("2024-01-07", 10, 1)
        store.accumulate("2024-01-08", 20, 2)
        assert store.get_totals() == {"insertions": 30, "deletions": 3, "total": 33}


class TestRollups:
    def test_rollup_sums_days_of_the_period(self, store):
        store.accumulate("2024-01-07", 7, 0)   # 2024-W01
        store.accumulate("2024-01-08", 10, 1)  # 2024-W02
        store.accumulate("2024-01-14", 20, 2)  # 2024-W02
        rows = store.recompute_rollups("2024-01-14")

        assert rows["week"].week == "2024-W02"
        assert (rows["week"].insertions, rows["week"].deletions) == (30, 3)
        assert rows["week"].base_score == store.get_day("2024-01-14").base_score
        assert rows["month"].insertions == 37
        assert rows["year"].year == "2024"

    def test_rollup_is_idempotent(self, store):
        for i, key in enumerate(["2024-01-08", "2024-01-09", "2024-02-01"]):
            store.accumulate(key, 10 * (i + 1), i)
            store.recompute_rollups(key)
        before = _dump_all(store)
        for key in ["2024-01-08", "2024-01-09", "2024-02-01"]:
            store.recompute_rollups(key)
        assert _dump_all(store) == before

    def test_rollup_keeps_period_summary_fields(self, store):
        store.accumulate("2024-01-08", 10, 1)
        store.set_period("week", "2024-W02", summary="weekly", ai_score=77)
        store.accumulate("2024-01-09", 5, 0)
        rows = store.recompute_rollups("2024-01-09")
        assert rows["week"].summary == "weekly"
        assert rows["week"].ai_score == 77
        assert rows["week"].insertions == 15


class TestStateAndFiles:
    def test_tracker_state(self, store):
        assert store.get_state("last_processed_commit") is None
        store.set_state("last_processed_commit", "abc")
        assert store.get_state("last_processed_commit") == "abc"

    def test_store_path_is_per_repository(self, tmp_path):
        a = store_path_for(str(tmp_path / "a"), tmp_path / "data")
        b = store_path_for(str(tmp_path / "b"), tmp_path / "data")
        assert a != b
        assert a.parent == tmp_path / "data" / "repos"
        assert a == store_path_for(str(tmp_path / "a"), tmp_path / "data")

    def test_export_import_round_trip(self, store, tmp_path):
        store.accumulate("2024-01-08", 10, 1)
        store.apply_day_update("2024-01-08", metrics={"local_score": 50}, summary="s")
        store.recompute_rollups("2024-01-08")
        store.set_state("last_processed_commit", "abc")
        snapshot = _dump_all(store)

        exported = store.export_to(tmp_path / "out" / "backup.sqlite3")
        assert exported.is_file()

        store.accumulate("2024-01-09", 99, 9)
        store.recompute_rollups("2024-01-09")
        assert _dump_all(store) != snapshot

        backup = store.import_from(exported)
        assert backup is not None and backup.is_file()
        assert _dump_all(store) == snapshot
        assert store.get_state("last_processed_commit") == "abc"

    def test_import_into_fresh_store(self, store, tmp_path):
        store.accumulate("2024-01-08", 10, 1)
        exported = store.export_to(tmp_path / "copy.sqlite3")
        other = AggregationStore(tmp_path / "other.sqlite3")
        try:
            other.import_from(exported)
            assert other.get_day("2024-01-08").insertions == 10
        finally:
            other.close()

    def test_import_missing_file(self, store, tmp_path):
        with pytest.raises(ConfigurationError):
            store.import_from(tmp_path / "nope.sqlite3")


class TestStoreHandle:
    @pytest.mark.asyncio
    async def test_calls_run_through_the_handle(self, handle):
        row = await handle.accumulate("2024-01-08", 3, 1)
        assert row.insertions == 3
        assert (await handle.get_day("2024-01-08")).deletions == 1

    @pytest.mark.asyncio
    async def test_exclusive_serializes(self, handle):
        order = []

        async def first():
            async with handle.exclusive() as tx:
                order.append("first:start")
                await tx.accumulate("2024-01-08", 1, 0)
                await asyncio.sleep(0.01)
                order.append("first:end")

        async def second():
            await asyncio.sleep(0)
            await handle.accumulate("2024-01-08", 1, 0)
            order.append("second")

        await asyncio.gather(first(), second())
        assert order == ["first:start", "first:end", "second"]
        assert (await handle.get_day("2024-01-08")).insertions == 2

    @pytest.mark.asyncio
    async def test_retired_handle_refuses_work(self, handle):
        await handle.retire()
        with pytest.raises(ConfigurationError):
            await handle.get_day("2024-01-08")
