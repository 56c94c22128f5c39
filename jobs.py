import logging
from datetime import date, datetime, timedelta

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from ranking import RankingAggregator
from settings import Settings
from store import CounterStore, DateRange

logger = logging.getLogger(__name__)

# Seconds a late fire may still run; anything later is skipped, never replayed.
MISFIRE_GRACE_SECONDS = 300


class RankingScheduler:
    def __init__(self, store: CounterStore, aggregator: RankingAggregator, settings: Settings):
        self.store = store
        self.aggregator = aggregator
        self.settings = settings
        self.scheduler = BackgroundScheduler(
            timezone=settings.tz,
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": MISFIRE_GRACE_SECONDS},
        )

    def today(self) -> date:
        return datetime.now(self.settings.tz).date()

    # -------- jobs --------

    def run_daily_ranking(self, today: date | None = None) -> list[str]:
        day = (today or self.today()) - timedelta(days=1)
        keyword = self.settings.trigger_keyword
        return self.aggregator.compute_ranking(DateRange.single(day), f"{keyword} {day.isoformat()} ranking {keyword}")

    def run_weekly_ranking(self, today: date | None = None) -> list[str]:
        end = (today or self.today()) - timedelta(days=1)
        days = self.settings.weekly_window_days
        window = DateRange.trailing(end, days)
        keyword = self.settings.trigger_keyword
        return self.aggregator.compute_ranking(window, f"{keyword} {days}-day ranking ({window.label}) {keyword}")

    def run_retention_sweep(self, today: date | None = None) -> int:
        cutoff = (today or self.today()) - timedelta(days=self.settings.retention_days)
        removed = self.store.delete_older_than(cutoff)
        logger.info("Retention sweep removed %d rows dated before %s", removed, cutoff.isoformat())
        return removed

    # -------- timer --------

    def _guarded(self, name: str, fn):
        def run():
            try:
                fn()
            except Exception:
                logger.exception("Scheduled job %s failed", name)

        return run

    def register_jobs(self):
        s = self.settings
        hour, minute = s.daily_ranking_time
        self.scheduler.add_job(
            self._guarded("daily_ranking", self.run_daily_ranking),
            CronTrigger(hour=hour, minute=minute, timezone=s.tz),
            id="daily_ranking",
            replace_existing=True,
        )
        hour, minute = s.weekly_ranking_time
        self.scheduler.add_job(
            self._guarded("weekly_ranking", self.run_weekly_ranking),
            CronTrigger(day_of_week=s.weekly_ranking_day, hour=hour, minute=minute, timezone=s.tz),
            id="weekly_ranking",
            replace_existing=True,
        )
        hour, minute = s.retention_sweep_time
        self.scheduler.add_job(
            self._guarded("retention_sweep", self.run_retention_sweep),
            CronTrigger(hour=hour, minute=minute, timezone=s.tz),
            id="retention_sweep",
            replace_existing=True,
        )

    def start(self):
        self.register_jobs()
        self.scheduler.start()
        logger.info("Scheduler started (tz=%s): %s", self.settings.timezone, ", ".join(j.id for j in self.scheduler.get_jobs()))

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
