# margin/sync/scheduler.py
import logging
import time
from typing import Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from margin.database import async_session_maker
from margin.schemas import FullSyncResult
from margin.settings.config import settings
from margin.sync.engine import run_full_sync
from margin.sync.remote import RestRemoteStore

scheduler: AsyncIOScheduler | None = None
logger = logging.getLogger(__name__)


class SyncThrottle:
    """Refuses triggers that arrive less than `min_interval` seconds after the last accepted one."""

    def __init__(self, min_interval: float | None = None, clock: Callable[[], float] = time.monotonic):
        self.min_interval = float(settings.SYNC_MIN_INTERVAL_SECONDS if min_interval is None else min_interval)
        self._clock = clock
        self._last: Optional[float] = None

    def try_acquire(self) -> bool:
        now = self._clock()
        if self._last is not None and now - self._last < self.min_interval:
            return False
        self._last = now
        return True

    def seconds_until_ready(self) -> float:
        if self._last is None:
            return 0.0
        return max(0.0, self.min_interval - (self._clock() - self._last))

    def reset(self) -> None:
        self._last = None


foreground_throttle = SyncThrottle()


def _pick_tz(name: str | None):
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown APP_TZ %r; using UTC", name)
        return ZoneInfo("UTC")


async def job_full_sync() -> FullSyncResult:
    remote = RestRemoteStore()
    try:
        async with async_session_maker() as db:
            return await run_full_sync(db, remote)
    finally:
        await remote.aclose()


def start_sync_scheduler() -> AsyncIOScheduler | None:
    global scheduler
    if scheduler:
        return scheduler
    minutes = settings.SYNC_INTERVAL_MINUTES
    if minutes <= 0:
        logger.info("Periodic sync disabled (SYNC_INTERVAL_MINUTES=%s)", minutes)
        return None
    tz = _pick_tz(settings.APP_TZ)
    scheduler = AsyncIOScheduler(timezone=tz)
    scheduler.add_job(
        job_full_sync,
        IntervalTrigger(minutes=minutes, timezone=tz),
        id="full_sync",
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info("Sync scheduler started: every %d min tz=%s", minutes, settings.APP_TZ)
    return scheduler


def stop_sync_scheduler() -> None:
    global scheduler
    if scheduler:
        scheduler.shutdown(wait=False)
        scheduler = None
