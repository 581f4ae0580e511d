import logging
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from ..config import SyncConfig
from ..mirror.engine import MirrorEngine

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "periodic_sync"

_scheduler: AsyncIOScheduler | None = None


def _get_scheduler() -> AsyncIOScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = AsyncIOScheduler(timezone=timezone.utc)
    return _scheduler


async def run_periodic_sweep(engine: MirrorEngine) -> None:
    """Scheduler entry point; a sweep never raises into APScheduler."""
    try:
        await engine.run_sweep()
    except Exception as e:
        logger.error("Periodic sync failed: %s", e, exc_info=True)


def start_scheduler(engine: MirrorEngine, sync: SyncConfig) -> AsyncIOScheduler:
    """Start the interval sweep job; the first run fires after the startup delay."""
    scheduler = _get_scheduler()
    first_run = datetime.now(timezone.utc) + timedelta(seconds=sync.startup_delay_seconds)
    scheduler.add_job(
        run_periodic_sweep,
        "interval",
        id=SWEEP_JOB_ID,
        args=[engine],
        minutes=sync.interval_minutes,
        next_run_time=first_run,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=300,
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Scheduler started: sync every %d min", sync.interval_minutes)
    return scheduler


def stop_scheduler() -> None:
    """Shut down the scheduler gracefully."""
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
    _scheduler = None
