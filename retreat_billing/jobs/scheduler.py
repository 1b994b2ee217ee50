"""
APScheduler Configuration for Partner Billing

Scheduled runs (in SCHEDULER_TIMEZONE):
- Consolidated invoicing: monthly on INVOICING_DAY_OF_MONTH at 10:00
- Overdue payment check: daily at 11:00
- Payment status check: daily at 14:00

Each run goes through run_billing_job, which logs and swallows job failures
so the scheduler keeps its schedule.
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from retreat_billing.config import settings

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
    'max_instances': 1,  # Never two billing runs at once
    'misfire_grace_time': 3600,  # Still run if the process was busy or restarting
}

scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone=settings.SCHEDULER_TIMEZONE,
)


async def run_scheduled_job(job_name: str):
    """Entry point APScheduler calls for every billing job."""
    from retreat_billing.jobs.billing_jobs import run_billing_job

    summary = await run_billing_job(job_name)
    logger.info(f"Scheduled job '{job_name}' finished with status {summary['status']}")


def start_scheduler():
    """Start the background job scheduler with the billing jobs."""
    if scheduler.running:
        return

    scheduler.add_job(
        run_scheduled_job,
        'cron',
        day=settings.INVOICING_DAY_OF_MONTH,
        hour=10,
        minute=0,
        args=['consolidated_invoicing'],
        id='consolidated_invoicing',
        name='Monthly Consolidated Invoicing',
        replace_existing=True,
    )

    scheduler.add_job(
        run_scheduled_job,
        'cron',
        hour=11,
        minute=0,
        args=['overdue_payment_check'],
        id='overdue_payment_check',
        name='Overdue Payment Check',
        replace_existing=True,
    )

    scheduler.add_job(
        run_scheduled_job,
        'cron',
        hour=14,
        minute=0,
        args=['payment_check'],
        id='payment_check',
        name='Payment Status Check',
        replace_existing=True,
    )

    scheduler.start()
    logger.info("Billing job scheduler started")

    for job in scheduler.get_jobs():
        logger.info(f"Scheduled job: {job.name} - Next run: {job.next_run_time}")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Billing job scheduler stopped")


def get_job_status():
    """Get status of all scheduled jobs."""
    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run_time': str(job.next_run_time) if job.next_run_time else None,
            'trigger': str(job.trigger),
        }
        for job in scheduler.get_jobs()
    ]
