import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from config import get_settings
from database import session_scope
from services import record_snapshots_for_all_users


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.snapshot_hour = settings.snapshot_hour
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> None:
        logger.info(f"snapshot_run: source={source}")
        with session_scope() as session:
            count = record_snapshots_for_all_users(session)
            logger.info(f"snapshot_run: source={source} snapshots_recorded={count}")

    def start(self) -> None:
        self._run_job("startup")

        trigger = CronTrigger(hour=self.snapshot_hour, minute=0)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=[f"daily_{self.snapshot_hour:02d}:00"],
            id="balance_snapshots_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info(f"Scheduler started with daily snapshots at {self.snapshot_hour:02d}:00")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
