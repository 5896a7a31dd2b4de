"""Background scheduler that resumes scans stuck mid-pipeline."""

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from bodyscan_api.core.config import Settings

if TYPE_CHECKING:
    from bodyscan_api.services.pipeline import ScanPipeline

logger = logging.getLogger(__name__)

RESUME_JOB_ID = "resume_stalled_scans"


async def run_resume_stalled(pipeline: "ScanPipeline", stale_after_minutes: int) -> None:
    """
    Resume stalled scans as a scheduled task.

    This is called by APScheduler on the configured interval.
    """
    logger.info("Starting scheduled resume of stalled scans...")

    try:
        resumed = await pipeline.resume_stalled(older_than=timedelta(minutes=stale_after_minutes))
        logger.info(f"Scheduled resume completed: {len(resumed)} scan(s) resumed")
    except Exception as e:
        logger.exception(f"Scheduled resume error: {e}")


def start_scheduler(pipeline: "ScanPipeline", settings: Settings) -> AsyncIOScheduler | None:
    """
    Start the background scheduler if enabled.

    Args:
        pipeline: Pipeline whose stalled scans should be resumed
        settings: Application settings

    Returns:
        Scheduler instance if started, None otherwise
    """
    if not settings.resume_schedule_enabled:
        logger.info("Scheduled resume is disabled")
        return None

    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        run_resume_stalled,
        trigger=IntervalTrigger(minutes=settings.resume_interval_minutes),
        args=[pipeline, settings.resume_stale_after_minutes],
        id=RESUME_JOB_ID,
        name="Resume stalled scans",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.start()

    logger.info(
        f"Scheduler started: stalled scans resumed every "
        f"{settings.resume_interval_minutes} min "
        f"(stale after {settings.resume_stale_after_minutes} min)"
    )

    return scheduler


def stop_scheduler(scheduler: AsyncIOScheduler | None) -> None:
    """Stop the background scheduler if running."""
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
