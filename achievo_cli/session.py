"""
Per-repository wiring. A RepositorySession owns one store handle and hands
it to the poller, the orchestrator and the period summarizer. Switching
repositories builds a new session and retires the old one; nothing is
shared between them.
"""

from typing import Callable, Optional

from achievo_cli import dates
from achievo_cli.config import Settings
from achievo_cli.errors import ConfigurationError
from achievo_cli.git_client import GitClient
from achievo_cli.jobs import JobManager, JobStatus
from achievo_cli.log import get_logger
from achievo_cli.orchestrator import ProgressOrchestrator
from achievo_cli.periods import PeriodSummarizer
from achievo_cli.poller import BackgroundPoller
from achievo_cli.store import AggregationStore, StoreHandle
from achievo_cli.summarizer import build_summarizer

logger = get_logger("cli")


class RepositorySession:
    def __init__(
        self,
        settings: Settings,
        vcs_factory: Callable = GitClient,
        summarizer_factory: Callable = build_summarizer,
        today: Callable[[], str] = dates.today_key,
    ):
        repo_path = settings.require_repo()
        self.settings = settings
        self.repo_path = repo_path
        self.vcs = vcs_factory(repo_path)
        self.store = StoreHandle(
            AggregationStore.for_repository(repo_path, settings.data_dir, cap_ratio=settings.daily_cap_ratio)
        )
        summarizer = summarizer_factory(settings)
        self.poller = BackgroundPoller(self.store, self.vcs, interval=settings.poll_seconds, today=today)
        self.jobs = JobManager()
        self.orchestrator = ProgressOrchestrator(
            settings, self.store, self.vcs, summarizer=summarizer, poller=self.poller, today=today
        )
        self.periods = PeriodSummarizer(self.store, summarizer)
        logger.debug("session opened for %s (store %s)", repo_path, self.store.path)

    def start_summary(self) -> JobStatus:
        return self.jobs.start(self.orchestrator.run)

    async def close(self):
        await self.poller.close()
        await self.jobs.wait()
        await self.store.retire()
        logger.debug("session closed for %s", self.repo_path)


class Workspace:
    """Holds the active session and rebinds it when the repository changes."""

    def __init__(
        self,
        settings: Settings,
        vcs_factory: Callable = GitClient,
        summarizer_factory: Callable = build_summarizer,
        today: Callable[[], str] = dates.today_key,
    ):
        self.settings = settings
        self._factories = dict(vcs_factory=vcs_factory, summarizer_factory=summarizer_factory, today=today)
        self.session: Optional[RepositorySession] = None

    @property
    def active(self) -> RepositorySession:
        if self.session is None:
            raise ConfigurationError("No active repository (use --repo or 'cd <path>')")
        return self.session

    def open(self) -> RepositorySession:
        if self.session is None:
            self.session = RepositorySession(self.settings, **self._factories)
        return self.session

    async def switch_repository(self, repo_path: str) -> RepositorySession:
        settings = self.settings.with_repo(repo_path)
        # build first so a bad path leaves the current session untouched
        session = RepositorySession(settings, **self._factories)
        old, self.session, self.settings = self.session, session, settings
        if old is not None:
            await old.close()
        logger.info("switched repository to %s", repo_path)
        return session

    async def close(self):
        if self.session is not None:
            await self.session.close()
            self.session = None
