"""APScheduler job definitions for the scheduled catalog refresh."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from catalog_sync.config import settings
from catalog_sync.metrics import record_scheduler_run

logger = logging.getLogger(__name__)

JOB_TYPE = "catalog_refresh"


async def run_scheduled_refresh(service) -> None:
    """Start a bulk sync for every user with active products."""
    try:
        await service.sync_all_users(settings.auto_sync_limit)
    except Exception as e:
        logger.error(f"Scheduled refresh failed: {e}", exc_info=True)
        record_scheduler_run(JOB_TYPE, success=False)
        return
    record_scheduler_run(JOB_TYPE, success=True)


def setup_scheduler(service) -> AsyncIOScheduler:
    """
    Setup and configure APScheduler.

    Args:
        service: SyncService the refresh job runs against

    Returns:
        Configured scheduler instance (not started)
    """
    scheduler = AsyncIOScheduler()
    interval = max(1, int(settings.auto_sync_interval_minutes))

    scheduler.add_job(
        run_scheduled_refresh,
        IntervalTrigger(minutes=interval),
        args=[service],
        id=JOB_TYPE,
        name="Refresh stored products from the supplier",
        max_instances=1,  # Prevent overlapping runs
        coalesce=True,
        misfire_grace_time=600,
        replace_existing=True,
    )

    logger.info(
        "Scheduler configured: catalog refresh every %d minutes, up to %d products per user",
        interval,
        settings.auto_sync_limit,
    )
    return scheduler
