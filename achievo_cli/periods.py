"""Week and month summaries built from the stored day (and week) rows."""

from typing import List, Optional, Sequence, Tuple

from achievo_cli import dates
from achievo_cli.errors import SummarizationError
from achievo_cli.log import get_logger
from achievo_cli.models import now_ms
from achievo_cli.scoring.util import round_half_up
from achievo_cli.store import StoreHandle
from achievo_cli.summarizer import parse_summary_response

logger = get_logger("period")


def format_merged_markdown(title: str, parts: Sequence[Tuple[str, str]]) -> str:
    lines = [f"# {title}", ""]
    for label, text in parts:
        lines.append(f"## {label}")
        lines.append((text or "").strip() or "_No summary for this entry._")
        lines.append("")
    return "\n".join(lines)


def _avg(values: List[int]) -> Optional[int]:
    return round_half_up(sum(values) / len(values)) if values else None


class _Totals:
    def __init__(self):
        self.insertions = 0
        self.deletions = 0
        self.last_base = 0
        self.ai: List[int] = []
        self.local: List[int] = []
        self.progress: List[int] = []
        self.parts: List[Tuple[str, str]] = []

    def add(self, label: str, row):
        self.insertions += max(0, row.insertions or 0)
        self.deletions += max(0, row.deletions or 0)
        self.last_base = row.base_score or self.last_base
        if row.ai_score is not None:
            self.ai.append(row.ai_score)
        if row.local_score is not None:
            self.local.append(row.local_score)
        if row.progress_percent is not None:
            self.progress.append(row.progress_percent)
        self.parts.append((label, row.summary or ""))


class PeriodSummarizer:
    def __init__(self, store: StoreHandle, summarizer=None):
        self.store = store
        self.summarizer = summarizer

    @property
    def offline(self) -> bool:
        return self.summarizer is None

    async def _improve(self, merged: str, label: str, totals: _Totals) -> Tuple[str, Optional[int]]:
        """Ask the provider to rewrite the merged material; keep it when that fails."""
        if self.offline:
            return merged, None
        prompt = (
            f"Summarize the developer's work for {label}.\n"
            f"Lines added: {totals.insertions}, removed: {totals.deletions}.\n\n"
            f"Daily notes:\n{merged}"
        )
        try:
            reply = await self.summarizer.summarize_text(prompt)
        except SummarizationError as e:
            logger.info("%s: provider failed, keeping merged notes: %s", label, e)
            return merged, None
        parsed = parse_summary_response(reply.text)
        if parsed.structured:
            return parsed.markdown, parsed.ai_score
        return (reply.text or "").strip() or merged, None

    async def _save(self, kind: str, period: str, totals: _Totals, trend: int, label: str):
        merged = format_merged_markdown(label, totals.parts)
        summary, ai_from_text = await self._improve(merged, label, totals)
        ai_score = None if self.offline else (ai_from_text if ai_from_text is not None else _avg(totals.ai))
        row = await self.store.set_period(
            kind,
            period,
            insertions=totals.insertions,
            deletions=totals.deletions,
            base_score=totals.last_base,
            trend=trend,
            summary=summary,
            ai_score=ai_score,
            local_score=_avg(totals.local),
            progress_percent=_avg(totals.progress),
            last_gen_at=now_ms(),
        )
        logger.info(
            "%s %s summary: +%d -%d base=%d trend=%d",
            kind, period, totals.insertions, totals.deletions, totals.last_base, trend,
        )
        return row

    async def generate_week_summary(self, week: str):
        start, end = dates.week_range_from_key(week)
        days = await self.store.get_range(start, end)
        totals = _Totals()
        for day in days:
            totals.add(day.date, day)

        prev = await self.store.get_week(dates.previous_week_key(week))
        if prev is not None:
            prev_base = prev.base_score
        else:
            prev_base = days[0].base_score if days else 0
        trend = totals.last_base - prev_base
        return await self._save("week", week, totals, trend, f"Week {week}")

    async def generate_month_summary(self, month: str):
        totals = _Totals()
        for week in dates.weeks_in_month(month):
            row = await self.store.get_week(week)
            # rollups create bare week rows; only generated ones carry a summary
            if row is None or row.last_gen_at is None:
                row = await self.generate_week_summary(week)
            totals.add(week, row)

        prev = await self.store.get_month(dates.previous_month_key(month))
        prev_base = prev.base_score if prev is not None else 0
        trend = totals.last_base - prev_base
        return await self._save("month", month, totals, trend, f"Month {month}")
