import asyncio
import uuid
from dataclasses import asdict, dataclass, replace
from typing import Any, Awaitable, Callable, Dict, List, Optional

from achievo_cli.log import get_logger
from achievo_cli.models import now_ms

logger = get_logger("job")

TODAY_SUMMARY = "today-summary"

ProgressFn = Callable[[int], None]
JobRun = Callable[[ProgressFn], Awaitable[Dict[str, Any]]]
Listener = Callable[["JobStatus"], None]


@dataclass
class JobStatus:
    id: str = ""
    type: str = TODAY_SUMMARY
    status: str = "idle"  # idle | running | done | error
    progress: int = 0
    started_at: Optional[int] = None
    finished_at: Optional[int] = None
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def chunk_progress(done: int, total: int) -> int:
    """Map summarization chunks onto the 20..95% band."""
    if total <= 0:
        return 20
    return 20 + int(75 * min(done, total) / total)


class JobManager:
    """Runs at most one job of its type at a time and tracks its status."""

    def __init__(self, job_type: str = TODAY_SUMMARY):
        self.job_type = job_type
        self._status = JobStatus(type=job_type)
        self._task: Optional[asyncio.Task] = None
        self._listeners: List[Listener] = []

    def status(self) -> JobStatus:
        return replace(self._status)

    @property
    def running(self) -> bool:
        return self._status.status == "running"

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self):
        snapshot = self.status()
        for listener in list(self._listeners):
            listener(snapshot)

    def _update(self, **fields):
        for name, value in fields.items():
            setattr(self._status, name, value)
        self._emit()

    def set_progress(self, percent: int):
        # progress only moves forward while running; 100 is reserved for done
        percent = max(0, min(99, int(percent)))
        if self.running and percent > self._status.progress:
            self._update(progress=percent)

    def start(self, run: JobRun) -> JobStatus:
        """Start ``run`` unless a job is already in flight, in which case return its status."""
        if self.running:
            logger.info("%s already running (%s)", self.job_type, self._status.id)
            return self.status()
        self._status = JobStatus(
            id=uuid.uuid4().hex,
            type=self.job_type,
            status="running",
            progress=1,
            started_at=now_ms(),
        )
        self._emit()
        logger.info("%s started (%s)", self.job_type, self._status.id)
        self._task = asyncio.get_running_loop().create_task(self._run(run))
        return self.status()

    async def _run(self, run: JobRun):
        try:
            result = await run(self.set_progress)
        except Exception as e:
            logger.exception("%s failed", self.job_type)
            self._update(status="error", error=str(e) or type(e).__name__, finished_at=now_ms())
            return
        self._update(status="done", progress=100, result=result, finished_at=now_ms())
        logger.info("%s done (%s)", self.job_type, self._status.id)

    async def wait(self) -> JobStatus:
        if self._task is not None:
            await self._task
        return self.status()
