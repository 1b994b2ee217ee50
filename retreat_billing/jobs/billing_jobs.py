"""
Billing Jobs

Registered background jobs for the billing engine. Each job receives a
BillingOrchestrator and returns a result dict; ``run_billing_job`` wraps a
job with timing, status and error capture so a failing job never takes the
scheduler down.

Usage:
    @billing_job("payment_check")
    async def payment_check(orchestrator):
        result = await orchestrator.reconcile_payments()
        return result.model_dump()
"""

import logging
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable, Dict

logger = logging.getLogger(__name__)

# Registry of billing jobs
_billing_jobs: Dict[str, Callable] = {}


def billing_job(name: str):
    """Decorator to register a billing job under ``name``."""
    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(orchestrator) -> Dict[str, Any]:
            return await func(orchestrator)

        _billing_jobs[name] = wrapper
        logger.debug(f"Registered billing job: {name}")
        return wrapper
    return decorator


def registered_jobs() -> list:
    return list(_billing_jobs.keys())


@billing_job("consolidated_invoicing")
async def consolidated_invoicing(orchestrator) -> Dict[str, Any]:
    """Retry stuck invoices, then bill next month's cycle."""
    retry = await orchestrator.publish_pending_invoices()
    run = await orchestrator.run_billing_cycle()
    return {
        "republished": retry.model_dump(mode="json"),
        "billing_run": run.model_dump(mode="json"),
    }


@billing_job("payment_check")
async def payment_check(orchestrator) -> Dict[str, Any]:
    result = await orchestrator.reconcile_payments()
    return result.model_dump(mode="json")


@billing_job("overdue_payment_check")
async def overdue_payment_check(orchestrator) -> Dict[str, Any]:
    alerts = await orchestrator.check_overdue_payments()
    return {"alerts_created": alerts}


async def run_billing_job(job_name: str, orchestrator=None) -> Dict[str, Any]:
    """
    Run a registered billing job and summarize the outcome.

    Args:
        job_name: Name of the registered job
        orchestrator: BillingOrchestrator to use; built from settings if omitted

    Returns:
        Summary dictionary with status, timing and the job's own result
    """
    if job_name not in _billing_jobs:
        raise ValueError(f"Unknown job: {job_name}. Registered: {registered_jobs()}")

    if orchestrator is None:
        from retreat_billing.services.billing_orchestrator import BillingOrchestrator
        orchestrator = BillingOrchestrator()

    start_time = datetime.now(timezone.utc)
    summary: Dict[str, Any] = {
        "job": job_name,
        "status": "pending",
        "started_at": start_time.isoformat(),
        "result": None,
        "error": None,
    }

    logger.info(f"Starting billing job: {job_name}")
    try:
        summary["result"] = await _billing_jobs[job_name](orchestrator)
        summary["status"] = "success"
    except Exception as e:
        summary["status"] = "failed"
        summary["error"] = str(e)
        logger.error(f"Billing job '{job_name}' failed: {e}")

    end_time = datetime.now(timezone.utc)
    summary["completed_at"] = end_time.isoformat()
    summary["duration_ms"] = int((end_time - start_time).total_seconds() * 1000)

    logger.info(f"Billing job '{job_name}' {summary['status']} in {summary['duration_ms']}ms")
    return summary

