"""
Background Jobs Module

Handles scheduled tasks for:
- Monthly consolidated invoicing
- Payment status checks
- Overdue payment alerts
"""

from retreat_billing.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler, get_job_status
from retreat_billing.jobs.billing_jobs import run_billing_job

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "get_job_status",
    "run_billing_job",
]
