import logging
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from core.config import settings
from core.exceptions import IngestionError
from core.tenant import TenantRouter
from ingestion.runner import PipelineRunner

logger = logging.getLogger(__name__)


class PipelineScheduler:
    def __init__(self, router: TenantRouter, runner: Optional[PipelineRunner] = None):
        self.scheduler = AsyncIOScheduler()
        self.router = router
        self.runner = runner or PipelineRunner(router)

    async def run_pipeline_job(self):
        """Job to import eligible documents for every tenant"""
        logger.info("Scheduler: Starting import job")
        try:
            results = await self.runner.run_all()
        except IngestionError as e:
            logger.error(f"Scheduler: import job failed - {e.message}", extra={"error_context": e.to_dict()})
            return None

        processed = sum(r["processed"] for r in results.values())
        errors = sum(r["errors"] for r in results.values())
        logger.info(f"Scheduler: import job finished for {len(results)} tenants (processed={processed}, errors={errors})")
        return results

    def start(self):
        """Start the scheduler"""
        self.scheduler.add_job(
            self.run_pipeline_job,
            trigger=IntervalTrigger(minutes=settings.SCHEDULE_INTERVAL_MINUTES),
            id="sqp_import_job",
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        self.scheduler.start()
        logger.info(f"Pipeline scheduler started (every {settings.SCHEDULE_INTERVAL_MINUTES} minutes)")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown()
        logger.info("Pipeline scheduler stopped")
