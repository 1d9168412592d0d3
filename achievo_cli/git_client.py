import asyncio
from typing import Dict, Optional

import git

from achievo_cli.errors import VersionControlError
from achievo_cli.log import get_logger

logger = get_logger("git")

EMPTY_TREE = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"
_DIFF_FLAGS = ("--no-color", "-M", "-C", "--textconv")


def get_repo(path: str = "."):
    try:
        return git.Repo(path, search_parent_directories=False)
    except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError):
        return None


def parse_numstat(text: str) -> Dict[str, int]:
    """Sum "<ins>\\t<del>\\t<path>" lines. Binary entries ("-") count as 0."""
    insertions = deletions = 0
    for line in text.splitlines():
        parts = line.split("\t")
        if len(parts) < 3:
            continue
        a, b = parts[0].strip(), parts[1].strip()
        insertions += int(a) if a.isdigit() else 0
        deletions += int(b) if b.isdigit() else 0
    return {"insertions": insertions, "deletions": deletions}


class GitClient:
    """Version-control queries for one working repository.

    The sync methods talk to git directly; the async ones run them in a
    worker thread so callers on the event loop never block.
    """

    def __init__(self, repo_path: str):
        self.repo_path = repo_path
        self.repo = get_repo(repo_path)
        if self.repo is None:
            raise VersionControlError(f"'{repo_path}' is not a valid Git repository.")

    def _git(self, command: str, *args) -> str:
        try:
            return getattr(self.repo.git, command.replace("-", "_"))(*args)
        except git.exc.GitCommandError as e:
            raise VersionControlError(f"git {command} failed: {(e.stderr or '').strip() or e}") from e

    def _base_before(self, date: str) -> str:
        """Last commit before local midnight of ``date``; the root commit if none is older."""
        if not self.head_commit_sync():
            return ""
        base = self._git("rev-list", "--max-count=1", f"--before={date}T00:00:00", "HEAD").strip()
        if not base:
            roots = self._git("rev-list", "--max-parents=0", "HEAD").split()
            base = roots[-1] if roots else ""
        return base

    def head_commit_sync(self) -> str:
        try:
            return self.repo.head.commit.hexsha
        except ValueError:
            # no commits on HEAD yet
            return ""

    def numstat_since_sync(self, date: str) -> Dict[str, int]:
        base = self._base_before(date)
        if not base:
            return {"insertions": 0, "deletions": 0}
        committed = parse_numstat(self._git("diff", *_DIFF_FLAGS, "--numstat", f"{base}..HEAD"))
        working = parse_numstat(self._git("diff", *_DIFF_FLAGS, "--numstat", "HEAD"))
        return {
            "insertions": committed["insertions"] + working["insertions"],
            "deletions": committed["deletions"] + working["deletions"],
        }

    def unified_diff_since_sync(self, date: str) -> str:
        base = self._base_before(date)
        if not base:
            return ""
        committed = self._git("diff", *_DIFF_FLAGS, f"{base}..HEAD").strip()
        uncommitted = self._git("diff", *_DIFF_FLAGS, "HEAD").strip()
        return "\n".join(p for p in (committed, uncommitted) if p)

    def diff_numstat_sync(self, from_id: Optional[str], to_id: str) -> Dict[str, int]:
        base = from_id
        if not base:
            try:
                parents = self.repo.commit(to_id).parents
            except (ValueError, git.exc.BadName, git.exc.BadObject) as e:
                raise VersionControlError(f"Unknown commit {to_id}") from e
            base = parents[0].hexsha if parents else EMPTY_TREE
        return parse_numstat(self._git("diff", "--numstat", base, to_id))

    async def numstat_since(self, date: str) -> Dict[str, int]:
        return await asyncio.to_thread(self.numstat_since_sync, date)

    async def unified_diff_since(self, date: str) -> str:
        return await asyncio.to_thread(self.unified_diff_since_sync, date)

    async def head_commit(self) -> str:
        return await asyncio.to_thread(self.head_commit_sync)

    async def diff_numstat(self, from_id: Optional[str], to_id: str) -> Dict[str, int]:
        return await asyncio.to_thread(self.diff_numstat_sync, from_id, to_id)
