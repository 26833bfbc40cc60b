"""
APScheduler wrapper for recurring sync runs.
"""

import logging
from typing import Any, Callable

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

CRON_FIELDS = ("minute", "hour", "day", "month", "day_of_week")


def cron_trigger(expression: str) -> CronTrigger:
    """
    Build a trigger from a five-field crontab expression.

    Raises:
        ValueError: If the expression does not have five fields, or
            APScheduler rejects one of them
    """
    parts = expression.split()
    if len(parts) != len(CRON_FIELDS):
        raise ValueError(
            f"Cron expression must have 5 parts ({' '.join(CRON_FIELDS)}), got {expression!r}"
        )
    return CronTrigger(**dict(zip(CRON_FIELDS, parts)))


class SyncScheduler:
    """
    Runs sync jobs on interval or cron triggers in the foreground.

    A run still in progress when its next firing comes due makes that
    firing be skipped, so two syncs never write the standby at once.
    """

    def __init__(self, scheduler: BlockingScheduler | None = None):
        self.scheduler = scheduler or BlockingScheduler()
        self.jobs = []

    def _add_job(self, job_func: Callable, trigger: Any, job_id: str, kwargs: dict) -> None:
        job = self.scheduler.add_job(
            job_func,
            trigger=trigger,
            id=job_id,
            kwargs=kwargs,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.jobs = [j for j in self.jobs if j.id != job_id]
        self.jobs.append(job)

    def add_interval_job(
        self,
        job_func: Callable,
        interval_seconds: int,
        job_id: str,
        **kwargs
    ) -> None:
        """
        Schedule job_func every interval_seconds.

        Keyword arguments are passed to job_func on every run. A job with
        the same id is replaced.
        """
        if interval_seconds < 1:
            raise ValueError(f"Interval must be at least 1 second, got {interval_seconds}")

        self._add_job(job_func, IntervalTrigger(seconds=interval_seconds), job_id, kwargs)
        logger.info(f"Scheduled '{job_id}' every {interval_seconds}s")

    def add_cron_job(
        self,
        job_func: Callable,
        cron_expression: str,
        job_id: str,
        **kwargs
    ) -> None:
        """Schedule job_func on a crontab expression such as "0 */6 * * *"."""
        self._add_job(job_func, cron_trigger(cron_expression), job_id, kwargs)
        logger.info(f"Scheduled '{job_id}' on '{cron_expression}'")

    def remove_job(self, job_id: str) -> None:
        self.scheduler.remove_job(job_id)
        self.jobs = [job for job in self.jobs if job.id != job_id]
        logger.info(f"Removed job '{job_id}'")

    def start(self) -> None:
        """Run the scheduler until interrupted."""
        logger.info(f"Starting sync scheduler with {len(self.jobs)} job(s)")

        try:
            self.scheduler.start()
        except (KeyboardInterrupt, SystemExit):
            logger.info("Scheduler interrupted")
            self.stop()

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown()
        logger.info("Scheduler stopped")

    def list_jobs(self) -> list[dict[str, Any]]:
        """Id, name, next run time and trigger of every scheduled job."""
        job_list = []

        for job in self.scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            job_list.append({
                "id": job.id,
                "name": job.name,
                "next_run_time": next_run.isoformat() if next_run else None,
                "trigger": str(job.trigger),
            })

        return job_list
