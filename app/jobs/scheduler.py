"""
APScheduler Configuration

Background job scheduler for the delivery service.

Architecture:
- One AsyncIOScheduler running inside the FastAPI event loop
- Jobs open their own database session (get_db_session)
- A failing run is logged and retried on the next interval
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from app.config import settings

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
    'misfire_grace_time': 60,  # Allow 60 seconds grace time for misfires
}

# Create scheduler
scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone=settings.BUSINESS_TIMEZONE
)


async def run_job(job_name: str):
    """
    Wrapper to run a named job from the scheduler.

    Exceptions are logged here so APScheduler keeps the job scheduled.
    """
    from app.jobs.bookkeeping_jobs import JOBS

    try:
        result = await JOBS[job_name]()
        logger.info(f"Job '{job_name}' completed: {result}")
    except Exception as e:
        logger.error(f"Job '{job_name}' failed: {e}")


def start_scheduler():
    """Start the background job scheduler."""
    if not scheduler.running:
        # Replay failed delivery bookkeeping steps
        scheduler.add_job(
            run_job,
            'interval',
            minutes=settings.BOOKKEEPING_RETRY_INTERVAL_MINUTES,
            args=['retry_bookkeeping'],
            id='retry_bookkeeping',
            name='Retry Delivery Bookkeeping',
            replace_existing=True,
        )

        scheduler.start()
        logger.info("Background job scheduler started")

        # Log all scheduled jobs
        jobs = scheduler.get_jobs()
        for job in jobs:
            logger.info(f"Scheduled job: {job.name} - Next run: {job.next_run_time}")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
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
