import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from services import local_today, run_generation


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self) -> None:
        self.settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=self.settings.timezone)

    def _run_job(self, source: str = "manual") -> int:
        today = local_today()
        logger.info(f"generation_run: source={source} up_to={today.isoformat()}")
        with session_scope() as session:
            count = run_generation(session, today)
        logger.info(f"generation_run: source={source} occurrences_created={count}")
        return count

    def register_jobs(self) -> None:
        daily_label = (
            f"daily_{self.settings.generation_hour:02d}:"
            f"{self.settings.generation_minute:02d}"
        )
        self.scheduler.add_job(
            self._run_job,
            CronTrigger(
                hour=self.settings.generation_hour,
                minute=self.settings.generation_minute,
            ),
            args=[daily_label],
            id="recurring_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )
        self.scheduler.add_job(
            self._run_job,
            IntervalTrigger(hours=1),
            args=["hourly_safety_net"],
            id="recurring_hourly_safety",
            replace_existing=True,
            misfire_grace_time=300,
        )

    def start(self) -> None:
        self._run_job("startup")
        self.register_jobs()
        self.scheduler.start()
        logger.info("Scheduler started with daily generation and hourly safety net")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
