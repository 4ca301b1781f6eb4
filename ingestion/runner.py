# ============================================================================
# File: ingestion/runner.py
# Description: Batch driver importing eligible report documents per tenant
# ============================================================================
"""
Pipeline Runner - imports a bounded batch of eligible documents.

This module provides:
- run_once: one tenant, oldest eligible documents first, failures contained
  per document
- run_all: every mapped tenant, failures contained per tenant, load shed
  while memory is above the high-water mark
- pull_seller: request and download the current cycle for one seller
"""

from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass, field
import asyncio
import logging

from core.config import settings
from core.exceptions import IngestionError
from core.resilience import MemoryMonitor, RetryExecutor, memory_monitor
from core.tenant import TenantHandle, TenantRouter
from ingestion.documents import DocumentStore
from ingestion.download_tracker import DownloadTracker
from ingestion.downloader import ReportClient, ReportDownloader
from ingestion.importer import ReportImporter
from models.base import ProcessStatus, ReportPeriod

logger = logging.getLogger(__name__)


@dataclass
class RunFilter:
    """Scopes a run to one job, report type or report"""
    cron_job_id: Optional[int] = None
    report_type: Optional[ReportPeriod] = None
    report_id: Optional[str] = None
    limit: Optional[int] = None


@dataclass
class RunSummary:
    processed: int = 0
    errors: int = 0
    outcomes: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"processed": self.processed, "errors": self.errors}


class PipelineRunner:
    """
    Orchestrates imports across tenants.

    Responsibilities:
    - Resolve the tenant handle and open one session per tenant batch
    - Import documents sequentially so no two writers touch one record
    - Report counts, never raw exceptions
    """

    def __init__(
        self,
        router: TenantRouter,
        document_store: Optional[DocumentStore] = None,
        monitor: Optional[MemoryMonitor] = None,
        executor_factory: Optional[Callable[[Any], RetryExecutor]] = None,
        batch_size: Optional[int] = None,
    ):
        self.router = router
        self.document_store = document_store or DocumentStore()
        self.monitor = monitor or memory_monitor
        self.executor_factory = executor_factory
        self.batch_size = batch_size or settings.IMPORT_BATCH_SIZE
        self._locks: Dict[str, asyncio.Lock] = {}

    async def run_once(self, tenant_key: Optional[int] = None, run_filter: Optional[RunFilter] = None) -> RunSummary:
        """
        Import one batch of eligible documents for a tenant.

        Returns:
            RunSummary with processed and errors counts
        """
        run_filter = run_filter or RunFilter()
        handle = await self.router.resolve(tenant_key)

        # One batch per database at a time; tenants falling back to root share its lock
        lock = self._locks.setdefault(handle.context.db_name, asyncio.Lock())
        if lock.locked():
            logger.info(f"Waiting for the running batch on {handle.context.db_name}")
        async with lock:
            return await self._run_batch(handle, run_filter)

    async def _run_batch(self, handle: TenantHandle, run_filter: RunFilter) -> RunSummary:
        summary = RunSummary()

        async with handle.session() as session:
            # --------------------------------------------------
            # PHASE 1: SELECT ELIGIBLE DOCUMENTS
            # --------------------------------------------------
            tracker = DownloadTracker(session)
            records = await tracker.list_processable(
                cron_job_id=run_filter.cron_job_id,
                report_type=run_filter.report_type,
                report_id=run_filter.report_id,
                limit=run_filter.limit or self.batch_size,
            )
            if not records:
                logger.info(f"No documents to process for tenant {handle.tenant_key}")
                return summary

            logger.info(f"Processing {len(records)} documents for tenant {handle.tenant_key}")
            record_ids = [r.id for r in records]

            # --------------------------------------------------
            # PHASE 2: IMPORT EACH DOCUMENT
            # --------------------------------------------------
            importer = self._importer(handle, session)
            for record_id in record_ids:
                if self.monitor.relieve_pressure():
                    logger.warning(
                        f"Memory still above {self.monitor.threshold_mb}MB; "
                        f"deferring remaining documents for tenant {handle.tenant_key}"
                    )
                    break

                record = await tracker.get(record_id)
                try:
                    outcome = await importer.import_document(record)
                except IngestionError as e:
                    summary.errors += 1
                    summary.outcomes.append({"download_record_id": record_id, "error": e.message})
                    logger.error(
                        f"Document {record_id} failed for tenant {handle.tenant_key}: {e.message}",
                        extra={"error_context": e.to_dict()}
                    )
                    continue

                if outcome.skipped:
                    continue

                summary.processed += 1
                summary.outcomes.append(outcome.to_dict())
                if outcome.status == ProcessStatus.FAILED:
                    summary.errors += 1

        logger.info(
            f"Run complete for tenant {handle.tenant_key}: "
            f"processed={summary.processed}, errors={summary.errors}"
        )
        return summary

    async def run_all(self, run_filter: Optional[RunFilter] = None) -> Dict[int, Dict[str, int]]:
        """Run one batch for the root store and every mapped tenant"""
        results: Dict[int, Dict[str, int]] = {}
        tenant_keys = [0] + [k for k in await self.router.list_tenant_keys() if k != 0]

        for tenant_key in tenant_keys:
            if self.monitor.relieve_pressure():
                logger.warning(f"Memory above high-water mark; skipping remaining tenants from {tenant_key}")
                break
            try:
                summary = await self.run_once(tenant_key, run_filter)
            except IngestionError as e:
                logger.error(
                    f"Run failed for tenant {tenant_key}: {e.message}",
                    extra={"error_context": e.to_dict()}
                )
                results[tenant_key] = {"processed": 0, "errors": 1}
                continue
            results[tenant_key] = summary.to_dict()

        return results

    async def pull_seller(
        self,
        tenant_key: Optional[int],
        client: ReportClient,
        seller_id: int,
        amazon_seller_id: Optional[str] = None,
        asins: Optional[List[str]] = None,
    ) -> Dict[str, Optional[int]]:
        """Request and download every unsettled period for one seller"""
        handle = await self.router.resolve(tenant_key)
        async with handle.session() as session:
            downloader = ReportDownloader(
                handle,
                session,
                client,
                document_store=self.document_store,
                executor=self._executor(session),
            )
            return await downloader.pull_cycle(seller_id, amazon_seller_id, asins)

    def _importer(self, handle: TenantHandle, session) -> ReportImporter:
        return ReportImporter(
            handle,
            session,
            document_store=self.document_store,
            executor=self._executor(session),
        )

    def _executor(self, session) -> Optional[RetryExecutor]:
        if self.executor_factory is None:
            return None
        return self.executor_factory(session)
