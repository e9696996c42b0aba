import logging
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def start_scheduler(job: Callable[[], object], interval_minutes: int = 15) -> BackgroundScheduler:
    """Run ``job`` every ``interval_minutes``; runs never overlap."""
    scheduler.remove_all_jobs()
    scheduler.add_job(job, "interval", minutes=interval_minutes, id="sync_job", max_instances=1, coalesce=True)
    if not scheduler.running:
        scheduler.start()
    logger.info("Periodic sync every %d minute(s)", interval_minutes)
    return scheduler


def stop_scheduler(wait: bool = True) -> None:
    if scheduler.running:
        scheduler.shutdown(wait=wait)
