# ============================================================================
# File: ingestion/importer.py
# Description: Import one downloaded report document into the period tables
# ============================================================================
"""
Report Importer - turns one stored report document into metric rows.

Pipeline per document:
1. Mark the download record PROCESSING (attempt counter +1)
2. Load, tag and normalize the document, then replace rows by logical key,
   all inside the retry executor
3. On success: period SUCCESS, record counts, ASIN rollups
4. On failure: record FAILED with a non-empty error
5. When all three periods are terminal: aggregate ASIN status
"""

from typing import Callable, Optional, Tuple
from dataclasses import dataclass
from datetime import date, datetime
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from core.config import settings
from core.exceptions import IngestionError, SchemaValidationError, TrackingError
from core.resilience import RetryContext, RetryExecutor
from core.tenant import TenantHandle
from ingestion.cron_tracker import CronJobTracker
from ingestion.documents import DocumentStore
from ingestion.download_tracker import DownloadTracker
from ingestion.loaders.metrics_loader import MetricsLoader
from ingestion.periods import is_current_period
from ingestion.rollup import AsinRollupService, RangeUpdate
from ingestion.transformers.normalizer import NormalizationResult, ReportNormalizer
from models.base import AsinPullStatus, DataAvailability, ProcessStatus, PullStatus, ReportPeriod
from models.cron_job import CronJob
from models.download_record import DownloadRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImportTarget:
    """Plain values captured up front; ORM instances expire on rollback"""
    record_id: int
    report_id: Optional[str]
    file_path: str
    period: ReportPeriod
    cron_job_id: int
    seller_id: int
    amazon_seller_id: str
    asins: Tuple[str, ...]


@dataclass
class ImportOutcome:
    download_record_id: int
    status: ProcessStatus
    total: int = 0
    success: int = 0
    failed: int = 0
    date_range: Optional[Tuple[date, date]] = None
    attempts: int = 0
    error: Optional[str] = None
    skipped: bool = False

    @property
    def has_data(self) -> bool:
        return self.total > 0

    def to_dict(self):
        return {
            "download_record_id": self.download_record_id,
            "status": self.status.value,
            "total": self.total,
            "success": self.success,
            "failed": self.failed,
            "date_range": [d.isoformat() for d in self.date_range] if self.date_range else None,
            "attempts": self.attempts,
            "error": self.error,
            "skipped": self.skipped,
        }


class ReportImporter:
    """
    Imports report documents for one tenant.

    Responsibilities:
    - Drive the download record's import lifecycle
    - Keep the cron job period status and ASIN rollups in step
    - Contain failures to the document being imported
    """

    def __init__(
        self,
        tenant: TenantHandle,
        db_session: AsyncSession,
        document_store: Optional[DocumentStore] = None,
        executor: Optional[RetryExecutor] = None,
        max_attempts: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.tenant = tenant
        self.db = db_session
        self.cron = CronJobTracker(db_session)
        self.downloads = DownloadTracker(db_session)
        self.rollup = AsinRollupService(db_session)
        self.loader = MetricsLoader(db_session)
        self.documents = document_store or DocumentStore()
        self.executor = executor or RetryExecutor(tracker=self.cron)
        self.max_attempts = max_attempts or settings.MAX_IMPORT_ATTEMPTS
        self._clock = clock

    async def import_document(self, record: DownloadRecord, force: bool = False) -> ImportOutcome:
        """
        Import one download record.

        The record is claimed first so concurrent runs never import the same
        document; a record another run holds, or one no longer eligible, is
        returned as skipped. ``force`` re-imports a record regardless of its
        process status.

        Returns:
            ImportOutcome with counts and covered date range

        Raises:
            TrackingError: If progress cannot be persisted; the record is
                marked FAILED first when possible
        """
        record_id = record.id
        try:
            return await self._import(record, force)
        except IngestionError as e:
            logger.error(
                f"Import of download record {record_id} aborted: {e.message}",
                extra={"error_context": e.to_dict()}
            )
            await self._record_abort(record_id, e.message)
            raise

    async def _import(self, record: DownloadRecord, force: bool) -> ImportOutcome:
        # --------------------------------------------------
        # PHASE 1: CLAIM
        # --------------------------------------------------
        record_id = record.id
        if force:
            record = await self.downloads.mark_process_start(record_id)
        else:
            record = await self.downloads.claim_for_processing(record_id)
            if record is None:
                status = await self.downloads.get_process_status(record_id)
                return ImportOutcome(record_id, ProcessStatus(status or ProcessStatus.PENDING), skipped=True)
        attempts = record.process_attempts

        job = await self.cron.get(record.cron_job_id)
        target, error = self._target(record, job)
        if target is None:
            logger.error(f"Cannot import download record {record.id}: {error}")
            await self.downloads.mark_process_failure(record.id, error)
            return ImportOutcome(record.id, ProcessStatus.FAILED, attempts=attempts, error=error)

        period_open = await self.cron.enter_in_progress(target.cron_job_id, target.period)
        if not period_open:
            logger.info(
                f"Cron job {target.cron_job_id} {target.period.value} already settled; "
                f"re-importing record {target.record_id} without rewriting period status"
            )
        await self.cron.mark_asins_status(
            target.seller_id, target.amazon_seller_id, target.asins, AsinPullStatus.IN_PROGRESS,
            period=target.period, start_time=datetime.utcnow()
        )

        # --------------------------------------------------
        # PHASE 2: LOAD + NORMALIZE + REPLACE (with retry)
        # --------------------------------------------------
        async def attempt() -> NormalizationResult:
            if period_open:
                await self.cron.enter_in_progress(target.cron_job_id, target.period)

            content = await self.documents.load_json(target.file_path)
            normalizer = ReportNormalizer(
                amazon_seller_id=target.amazon_seller_id,
                seller_id=target.seller_id,
                report_id=target.report_id,
            )
            result = normalizer.normalize(content)

            if result.has_data and result.success == 0:
                raise SchemaValidationError(
                    "No valid records in report document",
                    context={"download_record_id": target.record_id, "failed": result.failed}
                )
            if result.rows:
                await self.loader.load(target.period, result.rows)
            return result

        retry = await self.executor.execute(
            attempt,
            max_attempts=self.max_attempts,
            context=RetryContext(
                cron_job_id=target.cron_job_id,
                period=target.period,
                action="import_document",
                amazon_seller_id=target.amazon_seller_id,
                report_id=target.report_id,
                record_status=period_open,
            ),
        )

        if not retry.success:
            return await self._fail(target, retry.error_message, attempts)

        # --------------------------------------------------
        # PHASE 3: REPORT COMPLETION
        # --------------------------------------------------
        outcome = await self._complete(target, retry.data, period_open, attempts)

        # --------------------------------------------------
        # PHASE 4: AGGREGATE ASIN STATUS
        # --------------------------------------------------
        await self.cron.finalize_if_settled(target.cron_job_id)
        return outcome

    @staticmethod
    def _target(record: DownloadRecord, job: Optional[CronJob]) -> Tuple[Optional[ImportTarget], Optional[str]]:
        if job is None:
            return None, f"Cron job {record.cron_job_id} not found"
        try:
            period = ReportPeriod(record.report_type)
        except ValueError:
            return None, f"Invalid report type: {record.report_type}"
        if not record.file_path:
            return None, "Download record has no file path"

        return ImportTarget(
            record_id=record.id,
            report_id=record.report_id,
            file_path=record.file_path,
            period=period,
            cron_job_id=job.id,
            seller_id=job.seller_id,
            amazon_seller_id=record.amazon_seller_id or job.amazon_seller_id,
            asins=tuple(job.asins),
        ), None

    async def _complete(
        self,
        target: ImportTarget,
        result: NormalizationResult,
        period_open: bool,
        attempts: int,
    ) -> ImportOutcome:
        now = datetime.utcnow()
        if period_open:
            await self.cron.update_report_status(
                target.cron_job_id, target.period, PullStatus.SUCCESS,
                report_id=target.report_id, end_date=now
            )

        if result.has_data:
            updated = await self.downloads.mark_process_result(
                target.record_id, total=result.total, success=result.success, failed=result.failed
            )
        else:
            updated = await self.downloads.mark_process_empty(target.record_id)

        date_range = None
        availability = DataAvailability.STALE_OR_ABSENT
        if result.min_start is not None and result.max_end is not None:
            date_range = (result.min_start, result.max_end)
            if is_current_period(
                target.period, result.min_start, result.max_end,
                tz=self.tenant.tzinfo, now=self._clock() if self._clock else None
            ):
                availability = DataAvailability.CURRENT_PERIOD

        await self.rollup.update_ranges(RangeUpdate(
            cron_job_id=target.cron_job_id,
            seller_id=target.seller_id,
            amazon_seller_id=target.amazon_seller_id,
            report_type=target.period,
            asins=target.asins,
            min_range=date_range[0] if date_range else None,
            max_range=date_range[1] if date_range else None,
            is_data_available=availability,
        ))
        await self.cron.mark_asins_status(
            target.seller_id, target.amazon_seller_id, target.asins, AsinPullStatus.COMPLETED,
            period=target.period, end_time=now
        )

        logger.info(
            f"Imported download record {target.record_id} ({target.period.value}): "
            f"{result.success}/{result.total} rows, range={date_range}"
        )
        return ImportOutcome(
            download_record_id=target.record_id,
            status=updated.process_status,
            total=result.total,
            success=result.success,
            failed=result.failed,
            date_range=date_range,
            attempts=attempts,
            error=updated.last_process_error,
        )

    async def _fail(self, target: ImportTarget, error: Optional[str], attempts: int) -> ImportOutcome:
        error = error or "Import failed"
        await self.downloads.mark_process_failure(target.record_id, error)
        await self.cron.mark_asins_status(
            target.seller_id, target.amazon_seller_id, target.asins, AsinPullStatus.FAILED,
            period=target.period, end_time=datetime.utcnow()
        )
        await self.cron.finalize_if_settled(target.cron_job_id)
        logger.error(f"Import of download record {target.record_id} ({target.period.value}) failed: {error}")
        return ImportOutcome(target.record_id, ProcessStatus.FAILED, attempts=attempts, error=error)

    async def _record_abort(self, record_id: int, error: str) -> None:
        await self.db.rollback()
        try:
            await self.downloads.mark_process_failure(record_id, error)
        except TrackingError as e:
            logger.error(
                f"Could not mark download record {record_id} failed: {e.message}",
                extra={"error_context": e.to_dict()}
            )
