"""
Cron job tracking: per-seller pull cycles with per-period status.

This module owns every write to ``cron_jobs`` and ``cron_logs`` and the
per-ASIN pull status columns on ``seller_asins``. Period status follows a
fixed state machine:

    NOT_STARTED -> IN_PROGRESS -> SUCCESS | FAILED | RETRY_FAILED
    RETRY_FAILED -> IN_PROGRESS | FAILED

SUCCESS and FAILED are terminal. Rewriting the current status is allowed.
"""

from typing import Any, Dict, Iterable, List, Optional
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from models.base import ReportPeriod, PullStatus, AsinPullStatus, ActivityStatus
from models.cron_job import CronJob
from models.cron_log import CronLog
from models.asin_rollup import SellerAsin, pull_status_columns
from core.exceptions import (
    ConfigurationError,
    InvalidStatusTransitionError,
    TrackingError,
)
import logging

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS = {
    PullStatus.NOT_STARTED: {PullStatus.IN_PROGRESS},
    PullStatus.IN_PROGRESS: {PullStatus.SUCCESS, PullStatus.FAILED, PullStatus.RETRY_FAILED},
    PullStatus.RETRY_FAILED: {PullStatus.IN_PROGRESS, PullStatus.FAILED},
    PullStatus.SUCCESS: set(),
    PullStatus.FAILED: set(),
}

TERMINAL_STATUSES = {PullStatus.SUCCESS, PullStatus.FAILED}


def can_transition(current: PullStatus, new: PullStatus) -> bool:
    return current == new or new in ALLOWED_TRANSITIONS[current]


class CronJobTracker:
    """
    Records pull cycle progress for one tenant database.

    Responsibilities:
    - Create or continue the current cycle per seller
    - Validate and persist period status, report ids and errors
    - Persist retry counters and the activity log
    - Mark per-ASIN pull status, per period or aggregated
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def get(self, cron_job_id: int) -> Optional[CronJob]:
        return await self.db.get(CronJob, cron_job_id)

    async def _require(self, cron_job_id: int) -> CronJob:
        job = await self.get(cron_job_id)
        if job is None:
            raise TrackingError(
                f"Cron job {cron_job_id} not found",
                context={"cron_job_id": cron_job_id}
            )
        return job

    async def _commit(self, message: str, context: Dict[str, Any]) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"{message}: {e}", extra={"error_context": context})
            raise TrackingError(message, context=context, original_exception=e)

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    async def latest_cycle(self, seller_id: int) -> Optional[CronJob]:
        result = await self.db.execute(
            select(CronJob)
            .where(CronJob.seller_id == seller_id)
            .order_by(CronJob.created_at.desc(), CronJob.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def create_or_advance_cycle(
        self,
        seller_id: int,
        amazon_seller_id: Optional[str] = None,
        asins: Optional[Iterable[str]] = None,
    ) -> CronJob:
        """
        Return the seller's running cycle, or start a new one.

        A cycle is continued while it is running and has an unsettled
        period; otherwise a new row supersedes it.
        """
        latest = await self.latest_cycle(seller_id)
        if latest is not None and latest.cron_running_status == 1 and not self.all_periods_settled(latest):
            logger.info(f"Continuing cron job {latest.id} for seller {seller_id}")
            return latest

        amazon_seller_id = amazon_seller_id or (latest.amazon_seller_id if latest else None)
        if not amazon_seller_id:
            raise ConfigurationError(
                "amazon_seller_id is required to start the first cycle",
                context={"seller_id": seller_id}
            )
        asin_list = list(dict.fromkeys(asins)) if asins is not None else (latest.asins if latest else [])

        job = CronJob(
            seller_id=seller_id,
            amazon_seller_id=amazon_seller_id,
            asin_list=asin_list,
            cron_running_status=1,
            cron_start_date=datetime.utcnow(),
        )
        self.db.add(job)
        await self._commit("Failed to create cron job", {"seller_id": seller_id})
        await self.db.refresh(job)

        logger.info(f"Started cron job {job.id} for seller {seller_id} with {len(asin_list)} ASINs")
        if asin_list:
            await self.mark_asins_status(
                seller_id, amazon_seller_id, asin_list, AsinPullStatus.IN_PROGRESS,
                start_time=job.cron_start_date
            )
        return job

    async def set_running_status(self, cron_job_id: int, period: Optional[ReportPeriod], status: int) -> None:
        """Set a period's running flag, or the whole cycle's when period is None"""
        job = await self._require(cron_job_id)
        if period is None:
            job.cron_running_status = status
        else:
            job.set_period_value(period, "running_status", status)
        job.updated_at = datetime.utcnow()
        await self._commit(
            "Failed to update running status",
            {"cron_job_id": cron_job_id, "period": getattr(period, "value", period)}
        )

    # ------------------------------------------------------------------
    # Period status
    # ------------------------------------------------------------------

    async def update_report_status(
        self,
        cron_job_id: int,
        period: ReportPeriod,
        status: PullStatus,
        report_id: Optional[str] = None,
        error_message: Optional[str] = None,
        end_date: Optional[datetime] = None,
        report_document_id: Optional[str] = None,
    ) -> CronJob:
        """
        Persist a period status write.

        Raises:
            InvalidStatusTransitionError: If the state machine forbids the move
            TrackingError: If the write cannot be persisted; the error being
                recorded is kept in the context
        """
        period = ReportPeriod(period)
        status = PullStatus(status)
        job = await self._require(cron_job_id)
        current = job.pull_status(period)

        if not can_transition(current, status):
            raise InvalidStatusTransitionError(
                f"Cannot move {period.value} from {current.name} to {status.name}",
                context={"cron_job_id": cron_job_id, "period": period.value}
            )

        if status == PullStatus.FAILED and not error_message:
            error_message = "Report pull failed"

        now = datetime.utcnow()
        job.set_period_value(period, "pull_status", int(status))
        job.set_period_value(period, "last_error", error_message)
        if report_id is not None:
            job.set_period_value(period, "report_id", report_id)
        if report_document_id is not None:
            job.set_period_value(period, "report_document_id", report_document_id)

        if status == PullStatus.IN_PROGRESS:
            job.set_period_value(period, "running_status", 1)
            if job.period_value(period, "start_date") is None:
                job.set_period_value(period, "start_date", now)
        elif status in TERMINAL_STATUSES:
            job.set_period_value(period, "running_status", 0)
            job.set_period_value(period, "end_date", end_date or now)
        elif end_date is not None:
            job.set_period_value(period, "end_date", end_date)
        job.updated_at = now

        await self._commit(
            "Failed to record report status",
            {
                "cron_job_id": cron_job_id,
                "period": period.value,
                "status": status.name,
                "recorded_error": error_message,
            }
        )
        logger.info(f"Cron job {cron_job_id} {period.value}: {current.name} -> {status.name}")
        return job

    async def enter_in_progress(self, cron_job_id: int, period: ReportPeriod) -> bool:
        """Move a non-terminal period to IN_PROGRESS; False if already terminal"""
        job = await self._require(cron_job_id)
        current = job.pull_status(period)
        if current in TERMINAL_STATUSES:
            return False
        if current != PullStatus.IN_PROGRESS:
            await self.update_report_status(cron_job_id, period, PullStatus.IN_PROGRESS)
        return True

    async def set_download_completed(self, cron_job_id: int, period: ReportPeriod, completed: bool = True) -> None:
        job = await self._require(cron_job_id)
        job.set_period_value(period, "download_completed", completed)
        job.updated_at = datetime.utcnow()
        await self._commit("Failed to record download completion", {"cron_job_id": cron_job_id})

    async def increment_retry_count(self, cron_job_id: int, period: ReportPeriod) -> int:
        job = await self._require(cron_job_id)
        count = (job.period_value(period, "retry_count") or 0) + 1
        job.set_period_value(period, "retry_count", count)
        job.updated_at = datetime.utcnow()
        await self._commit("Failed to increment retry count", {"cron_job_id": cron_job_id})
        return count

    async def get_retry_count(self, cron_job_id: int, period: ReportPeriod) -> int:
        job = await self._require(cron_job_id)
        return job.period_value(period, "retry_count") or 0

    @staticmethod
    def all_periods_settled(job: CronJob) -> bool:
        return all(job.pull_status(p) in TERMINAL_STATUSES for p in ReportPeriod)

    # ------------------------------------------------------------------
    # Activity log
    # ------------------------------------------------------------------

    async def log_activity(
        self,
        cron_job_id: int,
        period: Optional[ReportPeriod],
        action: str,
        status: ActivityStatus,
        message: Optional[str] = None,
        report_id: Optional[str] = None,
        report_document_id: Optional[str] = None,
        retry_count: int = 0,
        execution_time: Optional[float] = None,
        records_processed: Optional[int] = None,
        amazon_seller_id: Optional[str] = None,
    ) -> CronLog:
        entry = CronLog(
            cron_job_id=cron_job_id,
            amazon_seller_id=amazon_seller_id,
            report_type=ReportPeriod(period).value if period is not None else None,
            action=action,
            status=int(status),
            message=message,
            report_id=report_id,
            report_document_id=report_document_id,
            retry_count=retry_count,
            execution_time=execution_time,
            records_processed=records_processed,
        )
        self.db.add(entry)
        await self._commit(
            "Failed to write cron activity log",
            {"cron_job_id": cron_job_id, "action": action, "recorded_message": message}
        )
        return entry

    async def list_activity(self, cron_job_id: int, period: Optional[ReportPeriod] = None) -> List[CronLog]:
        query = select(CronLog).where(CronLog.cron_job_id == cron_job_id)
        if period is not None:
            query = query.where(CronLog.report_type == ReportPeriod(period).value)
        result = await self.db.execute(query.order_by(CronLog.id))
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # ASIN pull status
    # ------------------------------------------------------------------

    async def mark_asins_status(
        self,
        seller_id: int,
        amazon_seller_id: str,
        asins: Iterable[str],
        status: AsinPullStatus,
        period: Optional[ReportPeriod] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> int:
        """
        Mark pull status for the given ASINs.

        period=None writes the aggregate ``last_pull_*`` columns.

        Returns:
            Number of rollup rows updated
        """
        asins = list(asins)
        if not asins:
            return 0

        status_col, started_col, ended_col = pull_status_columns(period)
        values: Dict[str, Any] = {status_col: int(status), "updated_at": datetime.utcnow()}
        if start_time is not None:
            values[started_col] = start_time
        if end_time is not None:
            values[ended_col] = end_time

        try:
            result = await self.db.execute(
                update(SellerAsin)
                .where(
                    SellerAsin.seller_id == seller_id,
                    SellerAsin.amazon_seller_id == amazon_seller_id,
                    SellerAsin.asin.in_(asins),
                )
                .values(**values)
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise TrackingError(
                "Failed to mark ASIN pull status",
                context={"seller_id": seller_id, "status": AsinPullStatus(status).name},
                original_exception=e
            )
        await self._commit("Failed to mark ASIN pull status", {"seller_id": seller_id})

        updated = result.rowcount or 0
        if updated == 0:
            logger.warning(f"No ASIN rows matched for seller {seller_id} ({len(asins)} ASINs)")
        return updated

    async def finalize_if_settled(self, cron_job_id: int) -> Optional[AsinPullStatus]:
        """
        Once every period is terminal, record the aggregate ASIN status and
        stop the cycle.

        COMPLETED if any period succeeded, FAILED only if all failed.
        """
        job = await self._require(cron_job_id)
        if not self.all_periods_settled(job):
            return None

        succeeded = any(job.pull_status(p) == PullStatus.SUCCESS for p in ReportPeriod)
        aggregate = AsinPullStatus.COMPLETED if succeeded else AsinPullStatus.FAILED

        await self.mark_asins_status(
            job.seller_id, job.amazon_seller_id, job.asins, aggregate,
            period=None, end_time=datetime.utcnow()
        )
        await self.set_running_status(cron_job_id, None, 0)
        logger.info(f"Cron job {cron_job_id} settled: ASINs marked {aggregate.name}")
        return aggregate
