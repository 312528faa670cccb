from datetime import datetime
from typing import Any, Callable

import pytz
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session

from pagepilot.config import settings
from pagepilot.logging_setup import log_event
from pagepilot.services.auto_boost import run_auto_boost_job
from pagepilot.services.auto_content import run_auto_content_job
from pagepilot.services.auto_post import run_auto_post_job
from pagepilot.services.content import run_generate_scheduled_content
from pagepilot.services.optimizer import run_refresh_post_scores_job
from pagepilot.services.page_health import run_page_health_job
from pagepilot.services.publisher import process_content_queue
from pagepilot.services.rate_limit import cleanup_violations

# Global reference for one-shot jobs and status reporting
_global_scheduler: BackgroundScheduler | None = None

def _tz():
    return pytz.timezone(settings.scheduler_timezone)

def register_jobs(sched: BackgroundScheduler, db_factory: Callable[[], Session]):
    common = {"replace_existing": True, "max_instances": 1}

    sched.add_job(
        process_content_queue,
        trigger="interval",
        minutes=settings.queue_check_minutes,
        args=[db_factory],
        id="process_content_queue",
        **common
    )
    sched.add_job(
        run_generate_scheduled_content,
        trigger="interval",
        hours=1,
        args=[db_factory],
        id="generate_scheduled_content",
        **common
    )
    sched.add_job(
        run_auto_content_job,
        trigger=CronTrigger.from_crontab(settings.auto_content_cron, timezone=_tz()),
        args=[db_factory],
        id="auto_content",
        **common
    )
    sched.add_job(
        run_auto_boost_job,
        trigger=CronTrigger(hour=settings.auto_boost_hour, minute=0, timezone=_tz()),
        args=[db_factory],
        id="auto_boost",
        **common
    )
    sched.add_job(
        run_auto_post_job,
        trigger=CronTrigger.from_crontab(settings.auto_post_cron, timezone=_tz()),
        args=[db_factory],
        id="auto_post",
        **common
    )
    sched.add_job(
        run_page_health_job,
        trigger="interval",
        minutes=settings.page_health_minutes,
        args=[db_factory],
        id="page_health",
        **common
    )
    sched.add_job(
        run_refresh_post_scores_job,
        trigger="interval",
        hours=settings.post_score_refresh_hours,
        args=[db_factory],
        id="refresh_post_scores",
        **common
    )
    sched.add_job(
        cleanup_violations,
        trigger=CronTrigger(day_of_week="sun", hour=0, minute=0, timezone=_tz()),
        id="rate_limit_cleanup",
        **common
    )

def start_scheduler(db_factory: Callable[[], Session]) -> BackgroundScheduler:
    """
    Start a BackgroundScheduler that publishes due queue items and runs the
    automation pipelines.
    """
    global _global_scheduler
    sched = BackgroundScheduler(timezone=_tz())
    register_jobs(sched, db_factory)
    sched.start()
    _global_scheduler = sched
    log_event("scheduler_started", jobs=[job.id for job in sched.get_jobs()])
    return sched

def shutdown_scheduler():
    global _global_scheduler
    if _global_scheduler and _global_scheduler.running:
        _global_scheduler.shutdown(wait=False)
    _global_scheduler = None

def schedule_once(func: Callable, run_date: datetime, args: list[Any], job_id: str) -> bool:
    """Queues a one-shot job; False when the scheduler is not running."""
    if not _global_scheduler or not _global_scheduler.running:
        log_event("scheduler_not_running", level="warning", job_id=job_id)
        return False
    _global_scheduler.add_job(func, trigger="date", run_date=run_date, args=args, id=job_id, replace_existing=True)
    return True

def next_run_time(job_id: str) -> datetime | None:
    if not _global_scheduler:
        return None
    job = _global_scheduler.get_job(job_id)
    return job.next_run_time if job else None

def scheduler_status() -> dict[str, Any]:
    if not _global_scheduler:
        return {"running": False, "jobs": []}
    return {
        "running": _global_scheduler.running,
        "jobs": [
            {
                "id": job.id,
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                "trigger": str(job.trigger),
            }
            for job in _global_scheduler.get_jobs()
        ],
    }
