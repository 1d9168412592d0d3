"""
Today's Summary
───────────────
One end-to-end run:

    numstat + diff since midnight
      → features → raw score
      → history window → normalized local score
      → persist counts (trend now reflects them)
      → summarize (chunked, then single-shot, then local markdown)
      → progress percent
      → atomic save of the day + rollups, poller suspended

Every step is awaited in order; the JobManager wraps ``run`` so a failure
ends the job in ``error`` instead of leaving it running.
"""

import asyncio
import json
from contextlib import nullcontext
from pathlib import Path
from typing import Callable, Dict, List, Optional

from achievo_cli import dates
from achievo_cli.errors import SummarizationError
from achievo_cli.jobs import chunk_progress
from achievo_cli.log import get_logger
from achievo_cli.models import now_ms
from achievo_cli.scoring import RawScorer, calc_progress_percent, extract_diff_features, normalize_local_score
from achievo_cli.scoring.ratchet import BASE_FLOOR
from achievo_cli.store import StoreHandle
from achievo_cli.summarizer import (
    SummaryContext,
    SummaryReply,
    parse_summary_response,
    render_local_summary,
)

logger = get_logger("score")


class SummaryHistory:
    """Append-only JSON list of generated summaries."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def all(self) -> List[dict]:
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return []
        except json.JSONDecodeError:
            logger.warning("history file %s is unreadable; starting a new one", self.path)
            return []

    def append(self, score: int, summary: str) -> dict:
        item = {"timestamp": now_ms(), "score": score, "summary": summary}
        items = self.all()
        items.append(item)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(items, indent=2, ensure_ascii=False), encoding="utf-8")
        return item


class ProgressOrchestrator:
    def __init__(
        self,
        settings,
        store: StoreHandle,
        vcs,
        summarizer=None,
        poller=None,
        today: Callable[[], str] = dates.today_key,
        history: Optional[SummaryHistory] = None,
    ):
        self.settings = settings
        self.store = store
        self.vcs = vcs
        self.summarizer = summarizer
        self.poller = poller
        self.today = today
        self.scorer = RawScorer()
        self.history = history or SummaryHistory(Path(settings.data_dir) / "history.json")

    async def _history_samples(self, key: str) -> List[int]:
        window = self.settings.local_scoring.window_days
        rows = await self.store.get_range(dates.shift_key(key, -window), dates.yesterday_key(key))
        return [r.local_score_raw for r in rows if r.date != key and r.local_score_raw is not None]

    async def _summarize(self, diff: str, ctx: SummaryContext, on_progress) -> Optional[SummaryReply]:
        if self.summarizer is None or not diff.strip():
            return None

        def on_chunk(done: int, total: int):
            on_progress(chunk_progress(done, total))

        attempts = (
            ("chunked", lambda: self.summarizer.summarize_chunked(diff, ctx, on_chunk)),
            ("single-shot", lambda: self.summarizer.summarize(diff, ctx)),
        )
        for mode, call in attempts:
            try:
                return await call()
            except SummarizationError as e:
                logger.warning("%s summarization failed: %s", mode, e)
        return None

    def _suspend_poller(self):
        return self.poller.suspended() if self.poller is not None else nullcontext()

    async def run(self, on_progress: Callable[[int], None] = lambda pct: None) -> Dict[str, object]:
        key = self.today()
        cfg = self.settings.local_scoring

        counts = await self.vcs.numstat_since(key)
        diff = await self.vcs.unified_diff_since(key)
        ins, dels = counts["insertions"], counts["deletions"]

        feats = extract_diff_features(diff)
        raw = self.scorer.score(feats)
        logger.debug("raw score %d for %s", raw, feats.summary_line())

        samples = await self._history_samples(key)
        yesterday = await self.store.get_day(dates.yesterday_key(key))
        norm = normalize_local_score(
            raw,
            samples,
            cfg,
            prev_local=yesterday.local_score if yesterday else None,
            prev_local_raw=yesterday.local_score_raw if yesterday else None,
        )
        prev_base = max(BASE_FLOOR, yesterday.base_score if yesterday else BASE_FLOOR)
        on_progress(10)

        # counts first, so the trend below reflects them
        day = await self.store.set_counts(key, ins, dels, merge_by_max=True)

        ctx = SummaryContext(
            insertions=ins,
            deletions=dels,
            prev_base_score=prev_base,
            local_score=norm.local_score,
            features=feats,
        )
        on_progress(20)
        reply = await self._summarize(diff, ctx, on_progress)
        if reply is not None:
            parsed = parse_summary_response(reply.text)
            ai_score = parsed.ai_score
            markdown = parsed.markdown
        else:
            ai_score = 0
            markdown = render_local_summary(ctx)

        has_changes = (ins + dels) > 0 or norm.local_score > 0 or feats.hunks > 0
        progress = calc_progress_percent(
            day.trend, prev_base, norm.local_score, ai_score, ins + dels, has_changes
        )
        logger.debug("progress %d%% (trend=%d prev_base=%d ai=%s)", progress, day.trend, prev_base, ai_score)

        metrics = {
            "ai_score": ai_score,
            "local_score": norm.local_score,
            "local_score_raw": norm.local_score_raw,
            "progress_percent": progress,
        }
        # a local rendering clears whatever an earlier provider run left behind
        ai_meta = {
            "last_gen_at": now_ms(),
            "ai_model": None,
            "ai_provider": None,
            "ai_tokens": None,
            "ai_duration_ms": None,
            "chunks_count": None,
        }
        if reply is not None:
            ai_meta.update(
                ai_model=reply.model,
                ai_provider=reply.provider,
                ai_tokens=reply.tokens if reply.tokens is not None else len(reply.text) // 4,
                ai_duration_ms=reply.duration_ms,
                chunks_count=reply.chunks_count,
            )

        with self._suspend_poller():
            async with self.store.exclusive() as tx:
                row = await tx.apply_day_update(
                    key,
                    counts=counts,
                    metrics=metrics,
                    summary=markdown,
                    ai_meta=ai_meta,
                    merge_by_max=True,
                    overwrite_today=True,
                )
                await tx.recompute_rollups(key)

        await asyncio.to_thread(self.history.append, ai_score, markdown)
        logger.info(
            "summary for %s: base=%d trend=%d local=%d ai=%s progress=%d%%",
            key, row.base_score, row.trend, norm.local_score, ai_score, progress,
        )
        return {
            "date": key,
            "insertions": row.insertions,
            "deletions": row.deletions,
            "base_score": row.base_score,
            "trend": row.trend,
            "local_score": norm.local_score,
            "local_score_raw": norm.local_score_raw,
            "cold_start": norm.cold_start,
            "ai_score": ai_score,
            "progress_percent": progress,
            "summary": markdown,
            "features": feats.summary_line(),
            "provider": reply.provider if reply else "local",
            "model": reply.model if reply else None,
            "chunks_count": reply.chunks_count if reply else None,
        }

    async def today_live(self) -> Dict[str, object]:
        """Pull today's numstat and merge it into the stored row."""
        key = self.today()
        counts = await self.vcs.numstat_since(key)
        row = await self.store.set_counts(key, counts["insertions"], counts["deletions"], merge_by_max=True)
        return {
            "date": key,
            "insertions": row.insertions,
            "deletions": row.deletions,
            "total": row.insertions + row.deletions,
            "base_score": row.base_score,
            "trend": row.trend,
        }
