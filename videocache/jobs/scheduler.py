"""Background jobs — periodic refresh and eviction sweeps on the app's event loop."""

import logging
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from videocache.config import Settings
from videocache.jobs import tasks
from videocache.orchestrator.refresh import RefreshService
from videocache.services.eviction import EvictionService

logger = logging.getLogger(__name__)

REFRESH_JOB_ID = "refresh_popular_keywords"
EXPIRY_JOB_ID = "sweep_expired_cache"
STALE_JOB_ID = "sweep_stale_cache"


class JobScheduler:
    """Owns the cancellable periodic jobs. Job bodies live in videocache.jobs.tasks."""

    def __init__(self, refresh: RefreshService, eviction: EvictionService, config: Settings):
        self.refresh = refresh
        self.eviction = eviction
        self.config = config
        self.scheduler = AsyncIOScheduler(timezone=config.scheduler_timezone)
        self._jobs_registered = False

    def start(self) -> None:
        """Register jobs and start. Must be called from within the running event loop."""
        self._register_jobs()
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Job scheduler started | jobs=%d", len(self.scheduler.get_jobs()))

    def _register_jobs(self) -> None:
        if self._jobs_registered:
            return
        cfg = self.config

        # First refresh shortly after boot, then every interval.
        self.scheduler.add_job(
            tasks.refresh_popular_keywords,
            trigger=IntervalTrigger(
                hours=cfg.scrape_interval_hours,
                start_date=datetime.now(timezone.utc) + timedelta(minutes=1),
            ),
            id=REFRESH_JOB_ID,
            name="Refresh popular keywords",
            kwargs={
                "refresh": self.refresh,
                "min_access_count": cfg.min_keyword_access_count,
                "max_count": cfg.max_keywords_to_scrape,
                "recent_days": cfg.recent_keyword_days,
            },
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

        self.scheduler.add_job(
            tasks.sweep_expired_cache,
            trigger=CronTrigger(hour=cfg.expiry_sweep_hour, minute=0),
            id=EXPIRY_JOB_ID,
            name="Sweep expired cache",
            kwargs={"eviction": self.eviction},
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

        self.scheduler.add_job(
            tasks.sweep_stale_cache,
            trigger=CronTrigger(day_of_week=cfg.stale_sweep_day_of_week, hour=cfg.stale_sweep_hour, minute=0),
            id=STALE_JOB_ID,
            name="Sweep stale cache",
            kwargs={"eviction": self.eviction, "days_inactive": cfg.stale_days},
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

        self._jobs_registered = True
        logger.info(
            "Background jobs registered | refresh=every %dh | expiry=%02d:00 | stale=%s %02d:00",
            cfg.scrape_interval_hours, cfg.expiry_sweep_hour, cfg.stale_sweep_day_of_week, cfg.stale_sweep_hour,
        )

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def status(self) -> dict:
        jobs = []
        for job in self.scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run_time": next_run.isoformat() if next_run else None,
            })
        return {"running": self.running, "jobs": jobs}

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Job scheduler shutdown")
