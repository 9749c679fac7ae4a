"""
Feed Sync Scheduler

Periodically reconciles every configured feed over the window
[tomorrow, tomorrow + SYNC_DAYS_AHEAD]. Runs inside the FastAPI process on
the same event loop (APScheduler AsyncIOScheduler, cron from SYNC_CRON).

The job never raises: failures are logged and kept as the last result so
the status endpoint can show them. The next tick simply runs again.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from ..config import settings
from ..database import SessionLocal
from ..utils.dates import DateWindow, today, utcnow
from .feed_fetcher import FeedFetcher
from .reconciliation import SyncError, run_sync

logger = logging.getLogger(__name__)

JOB_ID = "feed_sync"

# Global scheduler instance
_scheduler: Optional[AsyncIOScheduler] = None
_last_sync_time: Optional[datetime] = None
_last_sync_result: Optional[Dict] = None


def scheduled_window(days_ahead: Optional[int] = None) -> DateWindow:
    """Tomorrow through tomorrow + days_ahead (today is left to on-demand syncs)"""
    days_ahead = settings.sync_days_ahead if days_ahead is None else days_ahead
    tomorrow = today() + timedelta(days=1)
    return DateWindow.from_days(tomorrow, tomorrow + timedelta(days=days_ahead))


async def run_scheduled_sync(fetcher: Optional[FeedFetcher] = None) -> Dict:
    """
    Sync every feed once.

    Creates its own database session; returns the result dict instead of
    raising so the scheduler keeps running after a failed run.
    """
    global _last_sync_time, _last_sync_result

    logger.info("Running scheduled feed sync...")
    db = SessionLocal()
    try:
        result = await run_sync(db, scheduled_window(), fetcher=fetcher)
        outcome = result.to_dict()
    except SyncError as e:
        logger.error(f"Scheduled sync failed: {e}")
        outcome = {"success": False, "error": str(e)}
    except Exception as e:
        logger.exception(f"Scheduled sync crashed: {e}")
        outcome = {"success": False, "error": str(e)}
    finally:
        db.close()

    _last_sync_time = utcnow()
    _last_sync_result = outcome
    return outcome


def start_sync_scheduler() -> bool:
    """
    Start the feed sync scheduler with the SYNC_CRON schedule.

    Returns:
        True if scheduler started successfully, False otherwise
    """
    global _scheduler

    if _scheduler is not None and _scheduler.running:
        logger.warning("Sync scheduler is already running")
        return True

    try:
        _scheduler = AsyncIOScheduler(timezone=settings.sync_timezone)
        _scheduler.add_job(
            run_scheduled_sync,
            CronTrigger.from_crontab(settings.sync_cron, timezone=settings.sync_timezone),
            id=JOB_ID,
            name=f"Feed sync ({settings.sync_cron})",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        _scheduler.start()

        logger.info(f"Sync scheduler started (cron '{settings.sync_cron}' {settings.sync_timezone})")
        return True

    except Exception as e:
        logger.error(f"Failed to start sync scheduler: {e}")
        _scheduler = None
        return False


def stop_sync_scheduler() -> bool:
    """
    Stop the sync scheduler gracefully.

    Returns:
        True if scheduler stopped successfully, False otherwise
    """
    global _scheduler

    if _scheduler is None:
        logger.warning("Sync scheduler is not running")
        return True

    try:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Sync scheduler stopped")
        return True
    except Exception as e:
        logger.error(f"Failed to stop sync scheduler: {e}")
        return False


def get_scheduler_status() -> Dict:
    """
    Get the current status of the sync scheduler.

    Returns:
        Dict with scheduler status information
    """
    status = {
        "running": False,
        "enabled": settings.sync_enabled,
        "cron": settings.sync_cron,
        "timezone": settings.sync_timezone,
        "days_ahead": settings.sync_days_ahead,
        "next_run": None,
        "last_sync": None,
        "last_sync_result": None,
    }

    if _scheduler is not None and _scheduler.running:
        status["running"] = True
        job = _scheduler.get_job(JOB_ID)
        if job is not None and job.next_run_time:
            status["next_run"] = job.next_run_time.isoformat()

    if _last_sync_time:
        status["last_sync"] = _last_sync_time.isoformat()

    if _last_sync_result:
        status["last_sync_result"] = _last_sync_result

    return status


async def trigger_manual_sync() -> Dict:
    """
    Run the scheduled sync immediately.

    Used by the API endpoint for manual control.
    """
    return await run_scheduled_sync()
