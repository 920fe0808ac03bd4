"""Scheduler configuration for per-instrument monitoring timers."""

from typing import Any, Dict, List

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, EVENT_JOB_MAX_INSTANCES
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .config.logging import get_logger

logger = get_logger(__name__)

MONITOR_JOB_PREFIX = "monitor:"
RESYNC_JOB_ID = "maintenance:resync"
ACTIVITY_SWEEP_JOB_ID = "maintenance:activity_sweep"


def monitor_job_id(symbol: str) -> str:
    """Job id of the monitoring timer for a symbol."""
    return f"{MONITOR_JOB_PREFIX}{symbol}"


def create_scheduler() -> AsyncIOScheduler:
    """
    Create and configure an AsyncIOScheduler for monitoring timers.

    Jobs are bound methods of a live engine, so they are kept in memory;
    they are rebuilt from the alert store on every start.

    Returns:
        Configured AsyncIOScheduler instance
    """
    jobstores = {"default": MemoryJobStore()}

    # Coroutine jobs run as tasks on the scheduler's event loop
    executors = {"default": AsyncIOExecutor()}

    job_defaults = {
        "coalesce": True,  # Collapse missed runs into one
        "max_instances": 1,  # Only one tick per instrument at a time
        "misfire_grace_time": 30,
    }

    scheduler = AsyncIOScheduler(
        jobstores=jobstores,
        executors=executors,
        job_defaults=job_defaults,
        timezone="UTC",
    )

    scheduler.add_listener(job_executed_listener, EVENT_JOB_EXECUTED)
    scheduler.add_listener(job_error_listener, EVENT_JOB_ERROR)
    scheduler.add_listener(job_overlap_listener, EVENT_JOB_MAX_INSTANCES)

    return scheduler


def job_executed_listener(event):
    """Log successful job executions."""
    logger.debug(
        "Job executed",
        job_id=event.job_id,
        scheduled_run_time=str(event.scheduled_run_time),
    )


def job_error_listener(event):
    """Log job execution errors."""
    logger.error(
        "Job crashed",
        job_id=event.job_id,
        error=str(event.exception),
        traceback=event.traceback,
    )


def job_overlap_listener(event):
    """Log runs skipped because the previous run is still going."""
    logger.info("Job run skipped, previous run still in progress", job_id=event.job_id)


def list_scheduled_jobs(scheduler: AsyncIOScheduler) -> List[Dict[str, Any]]:
    """Describe every scheduled job."""
    jobs = []
    for job in scheduler.get_jobs():
        interval = getattr(job.trigger, "interval", None)
        # Pending jobs have no next_run_time until the scheduler starts
        next_run = getattr(job, "next_run_time", None)
        jobs.append(
            {
                "id": job.id,
                "name": job.name,
                "interval_seconds": interval.total_seconds() if interval else None,
                "next_run_time": next_run.isoformat() if next_run else None,
            }
        )
    return jobs
