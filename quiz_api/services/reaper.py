import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from quiz_api.models.quiz import SessionStats, SweepResponse
from quiz_api.services.session_store import SessionStore

logger = logging.getLogger(__name__)


def seconds_until_hour(now: datetime, hour: int) -> float:
    """Délai jusqu'au prochain passage à HH:00 UTC."""
    target = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


class SessionReaper:
    """
    Nettoyage périodique des sessions périmées, indépendant du trafic.

    sweep() et report_stats() sont synchrones ; run_periodic() et run_daily()
    les planifient dans la boucle asyncio de l'application.
    """

    def __init__(self, store: SessionStore, interval_seconds: int = 900, stats_hour_utc: int = 2) -> None:
        self.store = store
        self.interval_seconds = interval_seconds
        self.stats_hour_utc = stats_hour_utc

    def sweep(self) -> SweepResponse:
        before = self.store.count()
        now = self.store.now()

        removed = 0
        for session in self.store.scan_active():
            if self.store.is_stale(session, now) and self.store.delete(session.sessionId):
                removed += 1

        after = self.store.count()
        if before != after:
            logger.info("Session cleanup completed. Stored sessions: %s -> %s (%s removed)", before, after, removed)
        return SweepResponse(removed=removed, before=before, after=after)

    def report_stats(self) -> SessionStats:
        stats = self.store.stats()
        logger.info(
            "Daily quiz session stats - Total: %s, Active: %s, Completed: %s",
            stats.totalSessions, stats.activeSessions, stats.completedSessions,
        )
        return stats

    async def run_periodic(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await asyncio.to_thread(self.sweep)
            except Exception:
                logger.exception("Error during scheduled session cleanup")

    async def run_daily(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        while True:
            now = clock() if clock else datetime.now(timezone.utc)
            await asyncio.sleep(seconds_until_hour(now, self.stats_hour_utc))
            try:
                await asyncio.to_thread(self.report_stats)
            except Exception:
                logger.exception("Error logging daily stats")
