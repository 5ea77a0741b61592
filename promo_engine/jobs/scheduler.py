"""
APScheduler Configuration

Background job scheduler started from the application lifespan when
SCHEDULER_ENABLED is set.
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from promo_engine.config import settings

logger = logging.getLogger(__name__)

# Job stores
jobstores = {
    'default': MemoryJobStore()
}

# Executors
executors = {
    'default': AsyncIOExecutor(),
}

# Job defaults
job_defaults = {
    'coalesce': True,  # Combine multiple pending executions into one
    'max_instances': 1,  # Only one instance of each job at a time
    'misfire_grace_time': 60,
}

# Create scheduler
scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone=settings.SCHEDULER_TIMEZONE
)


async def run_promotion_status_sync():
    """Scheduler entry point; failures are logged and retried on the next tick."""
    from promo_engine.jobs.promotion_jobs import sync_promotion_statuses

    try:
        result = await sync_promotion_statuses()
        logger.info(
            f"Promotion status sync completed: "
            f"{result.get('activated', 0)} activated, {result.get('expired', 0)} expired"
        )
    except Exception as e:
        logger.error(f"Promotion status sync failed: {e}")


def start_scheduler():
    """Start the background job scheduler."""
    if not scheduler.running:
        scheduler.add_job(
            run_promotion_status_sync,
            'interval',
            minutes=settings.PROMOTION_STATUS_SYNC_INTERVAL_MINUTES,
            id='sync_promotion_statuses',
            name='Sync Promotion Statuses',
            replace_existing=True,
        )

        scheduler.start()
        logger.info("Background job scheduler started")

        for job in scheduler.get_jobs():
            logger.info(f"Scheduled job: {job.name} - Next run: {job.next_run_time}")


def shutdown_scheduler():
    """
    Shutdown the scheduler gracefully.

    AsyncIOScheduler only queues the shutdown on its event loop, so jobs are
    removed first to leave nothing registered once this returns.
    """
    if scheduler.running:
        scheduler.remove_all_jobs()
        scheduler.shutdown(wait=True)
        logger.info("Background job scheduler stopped")


def get_job_status():
    """Get status of all scheduled jobs."""
    jobs = scheduler.get_jobs()
    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run_time': str(job.next_run_time) if job.next_run_time else None,
            'trigger': str(job.trigger),
        }
        for job in jobs
    ]
