"""Interval scheduling for the status and metric pollers."""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger


logger = structlog.get_logger(__name__)


class JobScheduler:
    """Runs poller cycles on fixed intervals using APScheduler.

    Every job is registered with ``max_instances=1`` and ``coalesce=True`` so a
    slow cycle delays the next one instead of overlapping it.
    """

    def __init__(self, scheduler: Optional[AsyncIOScheduler] = None):
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)
        self.jobs: Dict[str, Dict[str, Any]] = {}
        self.running = False

    async def start(self):
        if self.running:
            logger.warning("Scheduler already running")
            return

        self.scheduler.start()
        self.running = True
        logger.info("Job scheduler started", job_count=len(self.jobs))

    async def stop(self):
        if not self.running:
            return

        self.scheduler.shutdown(wait=False)
        self.running = False
        logger.info("Job scheduler stopped")

    def add_interval_job(
        self,
        job_id: str,
        func: Callable,
        seconds: float,
        args: Optional[tuple] = None,
        kwargs: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
        run_immediately: bool = False,
    ):
        """Add (or replace) an interval job."""
        if job_id in self.jobs:
            logger.info("Job already exists, replacing", job_id=job_id)
            self.remove_job(job_id)

        trigger = IntervalTrigger(seconds=max(1.0, float(seconds)))
        extra: Dict[str, Any] = {}
        if run_immediately:
            extra["next_run_time"] = datetime.now(timezone.utc)

        job = self.scheduler.add_job(
            func=func,
            trigger=trigger,
            id=job_id,
            args=args or (),
            kwargs=kwargs or {},
            name=description or job_id,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
            **extra,
        )

        self.jobs[job_id] = {
            "job": job,
            "seconds": float(seconds),
            "description": description,
            "added_at": datetime.now(timezone.utc),
        }

        logger.info("Added interval job",
                    job_id=job_id,
                    interval_seconds=seconds,
                    description=description)

    def remove_job(self, job_id: str) -> bool:
        if job_id not in self.jobs:
            return False

        del self.jobs[job_id]
        if self.scheduler.get_job(job_id) is not None:
            self.scheduler.remove_job(job_id)
        logger.info("Removed job", job_id=job_id)
        return True

    def has_job(self, job_id: str) -> bool:
        return job_id in self.jobs

    def get_job_status(self, job_id: str) -> Optional[Dict[str, Any]]:
        if job_id not in self.jobs:
            return None

        job_info = self.jobs[job_id]
        scheduler_job = self.scheduler.get_job(job_id)
        if scheduler_job is None:
            return None

        next_run = getattr(scheduler_job, "next_run_time", None)
        return {
            "job_id": job_id,
            "name": scheduler_job.name,
            "interval_seconds": job_info["seconds"],
            "next_run": next_run.isoformat() if next_run else None,
            "added_at": job_info["added_at"].isoformat(),
            "description": job_info.get("description"),
        }

    def list_jobs(self) -> List[Dict[str, Any]]:
        statuses = (self.get_job_status(job_id) for job_id in list(self.jobs))
        return [s for s in statuses if s]

    def get_scheduler_status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "job_count": len(self.jobs),
            "jobs": self.list_jobs(),
        }
