"""APScheduler setup for periodic tasks."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger(__name__)


def create_scheduler(directory) -> AsyncIOScheduler:
    """Create and configure the scheduler with all jobs."""
    from paradero.config import settings

    scheduler = AsyncIOScheduler()

    # Stop codes change rarely; refresh the manual-entry directory
    scheduler.add_job(
        directory.refresh,
        "interval",
        hours=settings.stop_codes_refresh_hours,
        id="refresh_stop_codes",
        name="Refresh stop codes from Red",
        max_instances=1,
    )

    return scheduler
