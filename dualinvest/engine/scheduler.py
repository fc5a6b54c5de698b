"""APScheduler integration.

One interval job drives the cycle runner.
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from dualinvest.engine.cycle import CycleRunner

logger = logging.getLogger(__name__)

JOB_ID = "dual_invest_cycle"


class CycleScheduler:
    def __init__(self, runner: CycleRunner, interval_minutes: int):
        self.runner = runner
        self.interval_minutes = interval_minutes
        self.scheduler = AsyncIOScheduler()

    def _add_job(self):
        self.scheduler.add_job(
            self.runner.run_cycle,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id=JOB_ID,
            name="Dual investment cycle",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
        )
        logger.info(f"Scheduled cycle every {self.interval_minutes}m")

    def start(self):
        """Start the scheduler. Must be called from inside the running event loop."""
        self._add_job()
        self.scheduler.start()
        logger.info(f"Scheduler started with {len(self.scheduler.get_jobs())} jobs")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    def get_status(self) -> dict:
        jobs = self.scheduler.get_jobs()
        return {
            "running": self.scheduler.running,
            "job_count": len(jobs),
            "jobs": [
                {
                    "id": j.id,
                    "name": j.name,
                    "next_run": str(j.next_run_time) if j.next_run_time else None,
                    "trigger": str(j.trigger),
                }
                for j in jobs
            ],
        }
