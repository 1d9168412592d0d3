"""Tests for the single-flight job manager."""

import asyncio

import pytest

from achievo_cli.errors import VersionControlError
from achievo_cli.jobs import JobManager, chunk_progress


def test_chunk_progress_band():
    assert chunk_progress(0, 4) == 20
    assert chunk_progress(2, 4) == 57
    assert chunk_progress(4, 4) == 95
    assert chunk_progress(9, 4) == 95
    assert chunk_progress(1, 0) == 20


def test_initial_status_is_idle():
    status = JobManager().status()
    assert status.status == "idle"
    assert status.type == "today-summary"
    assert status.progress == 0


@pytest.mark.asyncio
async def test_single_flight():
    jobs = JobManager()
    release = asyncio.Event()
    runs = []

    async def run(progress):
        runs.append(1)
        await release.wait()
        return {"ok": True}

    first = jobs.start(run)
    await asyncio.sleep(0)
    second = jobs.start(run)

    assert first.status == "running"
    assert second.id == first.id
    assert second.status == "running"

    release.set()
    done = await jobs.wait()
    assert done.status == "done"
    assert done.progress == 100
    assert done.result == {"ok": True}
    assert done.finished_at is not None
    assert len(runs) == 1


@pytest.mark.asyncio
async def test_new_job_after_completion():
    jobs = JobManager()

    async def run(progress):
        return {}

    first = jobs.start(run)
    await jobs.wait()
    second = jobs.start(run)
    await jobs.wait()
    assert second.id != first.id


@pytest.mark.asyncio
async def test_failure_marks_error():
    jobs = JobManager()

    async def run(progress):
        progress(10)
        raise VersionControlError("git exploded")

    jobs.start(run)
    status = await jobs.wait()
    assert status.status == "error"
    assert status.error == "git exploded"
    assert not jobs.running


@pytest.mark.asyncio
async def test_progress_is_monotonic_and_notifies():
    jobs = JobManager()
    seen = []
    unsubscribe = jobs.subscribe(lambda s: seen.append((s.status, s.progress)))

    async def run(progress):
        progress(10)
        progress(5)
        progress(chunk_progress(1, 2))
        progress(250)
        return {}

    jobs.start(run)
    await jobs.wait()
    unsubscribe()

    values = [p for _, p in seen]
    assert values == sorted(values)
    assert seen[0] == ("running", 1)
    assert seen[-1] == ("done", 100)
    assert 99 in values
