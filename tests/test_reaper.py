import asyncio
from datetime import datetime, timezone

import pytest

from quiz_api.core.errors import StoreUnavailableError
from quiz_api.models.quiz import Difficulty
from quiz_api.services.kv import MemoryBackend
from quiz_api.services.reaper import SessionReaper, seconds_until_hour
from quiz_api.services.session_store import SessionStore


@pytest.fixture
def detached_store(clock):
    return SessionStore(MemoryBackend(), timeout_minutes=30, completed_ttl_minutes=120, clock=clock)


def _completed(store, language="python"):
    s = store.create(language, Difficulty.beginner)
    s.completed = True
    store.update(s)
    return s


def test_sweep_removes_only_stale_sessions(detached_store, clock):
    idle = detached_store.create("python", Difficulty.beginner)
    done = _completed(detached_store)
    clock.advance(minutes=40)
    fresh = detached_store.create("go", Difficulty.beginner)

    result = SessionReaper(detached_store).sweep()

    assert result.removed == 1
    assert (result.before, result.after) == (3, 2)
    remaining = {s.sessionId for s in detached_store.scan_active()}
    assert remaining == {done.sessionId, fresh.sessionId}
    assert idle.sessionId not in remaining


def test_sweep_removes_completed_after_grace(detached_store, clock):
    _completed(detached_store)
    clock.advance(minutes=121)

    result = SessionReaper(detached_store).sweep()
    assert result.removed == 1
    assert detached_store.count() == 0


def test_sweep_on_empty_store(store):
    result = SessionReaper(store).sweep()
    assert (result.removed, result.before, result.after) == (0, 0, 0)


def test_report_stats(detached_store, clock):
    detached_store.create("python", Difficulty.beginner)
    _completed(detached_store)

    stats = SessionReaper(detached_store).report_stats()
    assert stats.totalSessions == 2
    assert stats.activeSessions == 1
    assert stats.completedSessions == 1


def test_seconds_until_hour():
    now = datetime(2024, 1, 1, 1, 30, tzinfo=timezone.utc)
    assert seconds_until_hour(now, 2) == 30 * 60
    later = datetime(2024, 1, 1, 2, 0, tzinfo=timezone.utc)
    assert seconds_until_hour(later, 2) == 24 * 3600


class CountingReaper(SessionReaper):
    def __init__(self, store, fail=False):
        super().__init__(store, interval_seconds=0)
        self.fail = fail
        self.sweeps = 0

    def sweep(self):
        self.sweeps += 1
        if self.fail:
            raise StoreUnavailableError()
        return super().sweep()


async def _run_briefly(coro_fn, seconds=0.05):
    task = asyncio.create_task(coro_fn())
    await asyncio.sleep(seconds)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


def test_periodic_loop_keeps_sweeping(store):
    reaper = CountingReaper(store)
    asyncio.run(_run_briefly(reaper.run_periodic))
    assert reaper.sweeps >= 1


def test_periodic_loop_survives_errors(store):
    reaper = CountingReaper(store, fail=True)
    asyncio.run(_run_briefly(reaper.run_periodic))
    assert reaper.sweeps >= 2
