import logging
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker
from core.config import settings
from core.database import async_session_maker
from core.exceptions import ConfigurationError
from ingestion.coordinator import RunCoordinator
from models.base import SyncMode

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Runs an incremental sync of every active provider on a cron schedule"""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        coordinator: Optional[RunCoordinator] = None,
        cron: Optional[str] = None
    ):
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.coordinator = coordinator or RunCoordinator(session_factory or async_session_maker)
        self.cron = cron or settings.SYNC_CRON

    async def run_sync_job(self):
        """Job to run the incremental sync"""
        logger.info("Scheduler: Starting incremental sync")
        try:
            results = await self.coordinator.run(SyncMode.INCREMENTAL)
            failed = [r.source for r in results if r.status == "failed"]
            if failed:
                logger.warning(f"Scheduler: providers failed - {', '.join(failed)}")
        except ConfigurationError as e:
            logger.error(f"Scheduler: sync job failed - {e.message}", extra={"error_context": e.to_dict()})

    def start(self):
        """Start the scheduler"""
        self.scheduler.add_job(
            self.run_sync_job,
            trigger=CronTrigger.from_crontab(self.cron, timezone="UTC"),
            id="grant_sync_job",
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        self.scheduler.start()
        logger.info(f"Sync scheduler started ({self.cron})")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown()
        logger.info("Sync scheduler stopped")
