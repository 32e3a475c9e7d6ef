"""APScheduler integration for periodic monitoring and analysis passes.

Uses AsyncIOScheduler with IntervalTrigger.  Each job opens its own store
connection for the duration of one pass.  An interval of 0 disables a job.
"""

import contextlib
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore[import-untyped]

from kubepulse.config import get_settings
from kubepulse.pipeline import run_analysis_pass, run_monitoring_pass
from kubepulse.store.db import get_initialized_connection

logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None


async def _scheduled_monitor_job() -> None:
    """Async job executed by the scheduler: one monitoring pass."""
    try:
        conn = get_initialized_connection()
        try:
            await run_monitoring_pass(conn, trigger="scheduled")
        finally:
            conn.close()
    except Exception:
        logger.exception("Scheduled monitoring pass failed")


async def _scheduled_analysis_job() -> None:
    """Async job executed by the scheduler: one analysis pass."""
    try:
        conn = get_initialized_connection()
        try:
            await run_analysis_pass(conn, trigger="scheduled")
        finally:
            conn.close()
    except Exception:
        logger.exception("Scheduled analysis pass failed")


def start_scheduler() -> AsyncIOScheduler | None:
    """Start the scheduler with whichever jobs have a non-zero interval."""
    global _scheduler  # noqa: PLW0603

    settings = get_settings()
    jobs = [
        ("monitor_pass", "Monitoring pass", _scheduled_monitor_job, settings.monitor_interval_seconds),
        ("analysis_pass", "Analysis pass", _scheduled_analysis_job, settings.analysis_interval_seconds),
    ]
    enabled = [j for j in jobs if j[3] > 0]
    if not enabled:
        logger.info("Scheduler disabled (no pass interval configured)")
        return None

    _scheduler = AsyncIOScheduler()
    for job_id, name, func, interval in enabled:
        _scheduler.add_job(
            func,
            trigger=IntervalTrigger(seconds=interval),
            id=job_id,
            name=name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info("Scheduled %s every %ds", name.lower(), interval)
    _scheduler.start()
    return _scheduler


def stop_scheduler() -> None:
    """Gracefully shut down the scheduler if it is running."""
    global _scheduler  # noqa: PLW0603

    if _scheduler is not None:
        with contextlib.suppress(Exception):
            _scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
        _scheduler = None
