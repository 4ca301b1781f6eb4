"""
Download record tracking: lifecycle of one report document from request
through download to import.
"""

from typing import Any, Dict, List, Optional, Union
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, or_, update
from sqlalchemy.exc import SQLAlchemyError
from models.base import DownloadStatus, ProcessStatus, ReportPeriod, REPROCESSABLE_STATUSES
from models.download_record import DownloadRecord
from core.config import settings
from core.exceptions import ConfigurationError, TrackingError
import logging

logger = logging.getLogger(__name__)

Selector = Union[int, Dict[str, Any]]


class DownloadTracker:
    """
    Records document download and import progress for one tenant database.

    A document is processable only when it is downloaded (COMPLETED) with a
    file locator, its import status is re-processable, and it has import
    attempts left.
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def get(self, record_id: int) -> Optional[DownloadRecord]:
        return await self.db.get(DownloadRecord, record_id)

    async def _require(self, record_id: int) -> DownloadRecord:
        record = await self.get(record_id)
        if record is None:
            raise TrackingError(
                f"Download record {record_id} not found",
                context={"download_record_id": record_id}
            )
        return record

    async def _commit(self, message: str, context: Dict[str, Any]) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"{message}: {e}", extra={"error_context": context})
            raise TrackingError(message, context=context, original_exception=e)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    async def list_processable(
        self,
        cron_job_id: Optional[int] = None,
        report_type: Optional[ReportPeriod] = None,
        report_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[DownloadRecord]:
        """Eligible documents, oldest update first"""
        query = select(DownloadRecord).where(*self._processable())
        if cron_job_id is not None:
            query = query.where(DownloadRecord.cron_job_id == cron_job_id)
        if report_type is not None:
            query = query.where(DownloadRecord.report_type == ReportPeriod(report_type).value)
        if report_id is not None:
            query = query.where(DownloadRecord.report_id == report_id)

        query = query.order_by(DownloadRecord.updated_at.asc(), DownloadRecord.id.asc())
        if limit:
            query = query.limit(limit)

        try:
            result = await self.db.execute(query)
        except SQLAlchemyError as e:
            raise TrackingError(
                "Failed to list processable download records",
                context={"cron_job_id": cron_job_id},
                original_exception=e
            )
        return list(result.scalars().all())

    @staticmethod
    def _processable():
        return (
            DownloadRecord.status == DownloadStatus.COMPLETED,
            DownloadRecord.file_path.is_not(None),
            DownloadRecord.file_path != "",
            or_(
                DownloadRecord.process_status.is_(None),
                DownloadRecord.process_status.in_(REPROCESSABLE_STATUSES),
            ),
            DownloadRecord.process_attempts < DownloadRecord.max_process_attempts,
        )

    async def find(self, cron_job_id: int, report_type: ReportPeriod, report_id: Optional[str] = None) -> Optional[DownloadRecord]:
        query = select(DownloadRecord).where(
            DownloadRecord.cron_job_id == cron_job_id,
            DownloadRecord.report_type == ReportPeriod(report_type).value,
        )
        if report_id is not None:
            query = query.where(DownloadRecord.report_id == report_id)
        result = await self.db.execute(query.order_by(DownloadRecord.id.desc()).limit(1))
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Download lifecycle
    # ------------------------------------------------------------------

    async def create_pending(
        self,
        cron_job_id: int,
        report_type: ReportPeriod,
        report_id: Optional[str] = None,
        amazon_seller_id: Optional[str] = None,
        report_document_id: Optional[str] = None,
    ) -> DownloadRecord:
        record = DownloadRecord(
            cron_job_id=cron_job_id,
            report_type=ReportPeriod(report_type).value,
            report_id=report_id,
            report_document_id=report_document_id,
            amazon_seller_id=amazon_seller_id,
            status=DownloadStatus.PENDING,
            max_download_attempts=settings.MAX_DOWNLOAD_ATTEMPTS,
            max_process_attempts=settings.MAX_PROCESS_ATTEMPTS,
        )
        self.db.add(record)
        await self._commit("Failed to create download record", {"cron_job_id": cron_job_id})
        await self.db.refresh(record)
        return record

    async def mark_download_status(
        self,
        selector: Selector,
        status: DownloadStatus,
        error: Optional[str] = None,
        file_path: Optional[str] = None,
        file_size: Optional[int] = None,
        increment_attempts: bool = False,
        report_document_id: Optional[str] = None,
    ) -> DownloadRecord:
        """
        Update download status by id or by natural key
        ``{"cron_job_id", "report_type"[, "report_id"]}``.

        A natural-key update with no matching row creates a minimal row so
        status history is never lost.
        """
        status = DownloadStatus(status)
        record = await self._select(selector)
        now = datetime.utcnow()

        record.status = status
        if increment_attempts:
            record.download_attempts = (record.download_attempts or 0) + 1
        if file_path is not None:
            record.file_path = file_path
        if file_size is not None:
            record.file_size = file_size
        if report_document_id is not None:
            record.report_document_id = report_document_id

        if status == DownloadStatus.DOWNLOADING:
            record.download_started_at = now
        elif status == DownloadStatus.COMPLETED:
            record.download_completed_at = now
            record.error_message = None
            if record.process_status is None:
                record.process_status = ProcessStatus.PENDING
        elif status == DownloadStatus.FAILED:
            record.error_message = error or "Download failed"
            record.download_completed_at = now
        elif error is not None:
            record.error_message = error
        record.updated_at = now

        await self._commit(
            "Failed to record download status",
            {"selector": str(selector), "status": status.value, "recorded_error": error}
        )
        return record

    async def _select(self, selector: Selector) -> DownloadRecord:
        if isinstance(selector, int):
            return await self._require(selector)

        if not isinstance(selector, dict) or "cron_job_id" not in selector or "report_type" not in selector:
            raise ConfigurationError(
                "Selector must be an id or contain cron_job_id and report_type",
                context={"selector": str(selector)}
            )

        record = await self.find(selector["cron_job_id"], selector["report_type"], selector.get("report_id"))
        if record is None:
            logger.info(f"No download record for {selector}; creating one")
            record = DownloadRecord(
                cron_job_id=selector["cron_job_id"],
                report_type=ReportPeriod(selector["report_type"]).value,
                report_id=selector.get("report_id"),
                amazon_seller_id=selector.get("amazon_seller_id"),
                status=DownloadStatus.PENDING,
                max_download_attempts=settings.MAX_DOWNLOAD_ATTEMPTS,
                max_process_attempts=settings.MAX_PROCESS_ATTEMPTS,
            )
            self.db.add(record)
        return record

    # ------------------------------------------------------------------
    # Import lifecycle
    # ------------------------------------------------------------------

    async def mark_process_start(self, record_id: int) -> DownloadRecord:
        record = await self._require(record_id)
        now = datetime.utcnow()
        record.process_status = ProcessStatus.PROCESSING
        record.process_attempts = (record.process_attempts or 0) + 1
        record.last_process_at = now
        record.updated_at = now
        await self._commit("Failed to mark process start", {"download_record_id": record_id})
        return record

    async def claim_for_processing(self, record_id: int) -> Optional[DownloadRecord]:
        """
        Atomically move a still-eligible record to PROCESSING.

        Returns:
            The claimed record, or None when another run claimed it first or
            it is no longer processable
        """
        now = datetime.utcnow()
        statement = (
            update(DownloadRecord)
            .where(DownloadRecord.id == record_id, *self._processable())
            .values(
                process_status=ProcessStatus.PROCESSING,
                process_attempts=DownloadRecord.process_attempts + 1,
                last_process_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.db.execute(statement)
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise TrackingError(
                "Failed to claim download record",
                context={"download_record_id": record_id},
                original_exception=e
            )
        await self._commit("Failed to claim download record", {"download_record_id": record_id})

        if result.rowcount == 0:
            logger.info(f"Download record {record_id} is not claimable; skipping")
            return None

        record = await self._require(record_id)
        await self.db.refresh(record)
        return record

    async def get_process_status(self, record_id: int) -> Optional[ProcessStatus]:
        result = await self.db.execute(
            select(DownloadRecord.process_status).where(DownloadRecord.id == record_id)
        )
        return result.scalar_one_or_none()

    async def mark_process_result(
        self,
        record_id: int,
        total: int,
        success: int,
        failed: int,
        error: Optional[str] = None,
    ) -> DownloadRecord:
        """
        Record import counts.

        fully_imported iff total > 0 and failed == 0; status SUCCESS when
        fully imported, FAILED_PARTIAL when some rows landed, else FAILED.
        """
        record = await self._require(record_id)
        fully_imported = total > 0 and failed == 0

        if fully_imported:
            process_status = ProcessStatus.SUCCESS
        elif success > 0:
            process_status = ProcessStatus.FAILED_PARTIAL
        else:
            process_status = ProcessStatus.FAILED

        if process_status != ProcessStatus.SUCCESS and not error:
            error = f"{failed} of {total} records failed"

        now = datetime.utcnow()
        record.process_status = process_status
        record.total_records = total
        record.success_count = success
        record.fail_count = failed
        record.fully_imported = fully_imported
        record.last_process_error = error if process_status != ProcessStatus.SUCCESS else None
        record.last_process_at = now
        record.updated_at = now

        await self._commit(
            "Failed to record import result",
            {"download_record_id": record_id, "process_status": process_status.value, "recorded_error": error}
        )
        logger.info(
            f"Download record {record_id}: {process_status.value} "
            f"({success}/{total} imported, {failed} failed)"
        )
        return record

    async def mark_process_empty(self, record_id: int) -> DownloadRecord:
        """A document with no records is a terminal success with nothing imported"""
        record = await self._require(record_id)
        now = datetime.utcnow()
        record.process_status = ProcessStatus.SUCCESS
        record.total_records = 0
        record.success_count = 0
        record.fail_count = 0
        record.fully_imported = False
        record.last_process_error = None
        record.last_process_at = now
        record.updated_at = now
        await self._commit("Failed to record empty import", {"download_record_id": record_id})
        logger.info(f"Download record {record_id}: no data")
        return record

    async def mark_process_failure(self, record_id: int, error: Optional[str]) -> DownloadRecord:
        record = await self._require(record_id)
        now = datetime.utcnow()
        record.process_status = ProcessStatus.FAILED
        record.fully_imported = False
        record.last_process_error = error or "Import failed"
        record.last_process_at = now
        record.updated_at = now
        await self._commit(
            "Failed to record import failure",
            {"download_record_id": record_id, "recorded_error": record.last_process_error}
        )
        return record

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    async def get_download_stats(self) -> Dict[str, Any]:
        try:
            by_status = await self.db.execute(
                select(DownloadRecord.status, func.count(DownloadRecord.id)).group_by(DownloadRecord.status)
            )
            by_process = await self.db.execute(
                select(DownloadRecord.process_status, func.count(DownloadRecord.id)).group_by(DownloadRecord.process_status)
            )
            fully = await self.db.execute(
                select(func.count(DownloadRecord.id)).where(DownloadRecord.fully_imported.is_(True))
            )
        except SQLAlchemyError as e:
            raise TrackingError("Failed to read download statistics", original_exception=e)

        status_counts = {s.value: 0 for s in DownloadStatus}
        for status, count in by_status.all():
            status_counts[DownloadStatus(status).value] = count

        process_counts = {s.value: 0 for s in ProcessStatus}
        process_counts["NONE"] = 0
        for status, count in by_process.all():
            key = ProcessStatus(status).value if status is not None else "NONE"
            process_counts[key] = count

        return {
            "total": sum(status_counts.values()),
            "by_status": status_counts,
            "by_process_status": process_counts,
            "fully_imported": fully.scalar_one(),
        }
