"""
Background Poller
─────────────────
Every ``interval`` seconds: read HEAD; if it moved since the last processed
commit, add the numstat delta to today's row, refresh the rollups and
advance the persisted marker. Errors are kept in ``last_error`` and the
next tick tries again.

``suspended()`` holds ticks off while the orchestrator saves today's row.
"""

import asyncio
from contextlib import contextmanager
from typing import Callable, Dict, Optional

from achievo_cli import dates
from achievo_cli.errors import AchievoError
from achievo_cli.log import get_logger
from achievo_cli.models import now_ms
from achievo_cli.store import StoreHandle

logger = get_logger("tracker")

MARKER_KEY = "last_processed_commit"


class BackgroundPoller:
    def __init__(self, store: StoreHandle, vcs, interval: float = 30, today: Callable[[], str] = dates.today_key):
        self.store = store
        self.vcs = vcs
        self.interval = interval
        self.today = today
        self.last_error: Optional[str] = None
        self.last_tick_at: Optional[int] = None
        self.last_processed_commit: Optional[str] = None
        self._suspended = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def paused(self) -> bool:
        return self._suspended > 0

    def pause(self):
        self._suspended += 1

    def resume(self):
        self._suspended = max(0, self._suspended - 1)

    @contextmanager
    def suspended(self):
        self.pause()
        try:
            yield self
        finally:
            self.resume()

    async def tick(self) -> bool:
        """One polling step. Returns True when a delta was recorded."""
        self.last_tick_at = now_ms()
        if self.paused:
            logger.debug("tick skipped: suspended")
            return False
        try:
            head = await self.vcs.head_commit()
            if not head:
                return False
            async with self.store.exclusive() as tx:
                # the orchestrator may have suspended us while we waited for the lock
                if self.paused:
                    logger.debug("tick skipped: suspended")
                    return False
                marker = await tx.get_state(MARKER_KEY)
                self.last_processed_commit = marker
                if marker == head:
                    self.last_error = None
                    return False
                num = await self.vcs.diff_numstat(marker or None, head)
                key = self.today()
                await tx.accumulate(key, num["insertions"], num["deletions"])
                await tx.recompute_rollups(key)
                await tx.set_state(MARKER_KEY, head)
            self.last_processed_commit = head
            self.last_error = None
            logger.info("tracked %s: +%d -%d", head[:7], num["insertions"], num["deletions"])
            return True
        except AchievoError as e:
            self.last_error = str(e)
            logger.warning("tick failed: %s", e)
            return False
        except Exception as e:
            self.last_error = str(e) or type(e).__name__
            logger.exception("tick failed unexpectedly")
            return False

    async def _loop(self):
        while True:
            await self.tick()
            await asyncio.sleep(self.interval)

    def start(self, interval: Optional[float] = None) -> asyncio.Task:
        if interval is not None and interval >= 1:
            self.interval = interval
        self.stop()
        self._task = asyncio.get_running_loop().create_task(self._loop())
        logger.info("poller started (every %ss)", self.interval)
        return self._task

    def stop(self):
        if self._task is not None:
            self._task.cancel()
            self._task = None
            logger.info("poller stopped")

    async def close(self):
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def status(self) -> Dict[str, object]:
        return {
            "running": self.running,
            "paused": self.paused,
            "interval_seconds": self.interval,
            "last_processed_commit": self.last_processed_commit,
            "last_tick_at": self.last_tick_at,
            "last_error": self.last_error,
        }
