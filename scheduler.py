import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from repositories import MovementRepository
from services import RestorationService


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class RestorationScheduler:
    def __init__(self) -> None:
        settings = get_settings()
        self.interval_minutes = settings.restore_interval_minutes
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> int:
        logger.info(f"restore_sweep: source={source}")
        with session_scope() as session:
            user_ids = MovementRepository.user_ids_with_orphans(session)

        restored_total = 0
        for user_id in user_ids:
            with session_scope() as session:
                result = RestorationService(session, user_id).restore_orphaned()
            restored_total += result.restored
            logger.info(
                f"restore_sweep: source={source} user_id={user_id} "
                f"restored={result.restored} failed={result.failed}"
            )
        return restored_total

    def start(self) -> None:
        self._run_job("startup")

        trigger = IntervalTrigger(minutes=self.interval_minutes)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["interval"],
            id="restore_orphans",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info(
            f"Scheduler started with restoration every {self.interval_minutes} minutes"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
