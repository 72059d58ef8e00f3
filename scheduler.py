import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from config import get_settings
from database import session_scope
from services import create_goal_reminders, local_today


logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> None:
        logger.info(f"goal_reminders_run: source={source}")
        with session_scope() as session:
            count = create_goal_reminders(session, local_today())
            logger.info(f"goal_reminders_run: source={source} reminders_created={count}")

    def start(self) -> None:
        self._run_job("startup")

        self.scheduler.add_job(
            self._run_job,
            CronTrigger(hour=9, minute=0),
            args=["daily_09:00"],
            id="goal_reminders_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info("Scheduler started with daily 09:00 goal reminders")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
