"""
Report request and download for one cron job period.

The reporting API client is injected; anything satisfying ``ReportClient``
works. Every call goes through the shared rate limiter, circuit breaker and
retry executor, and the download record follows
PENDING -> DOWNLOADING -> COMPLETED | FAILED.
"""

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.resilience import (
    CircuitBreaker,
    RateLimiter,
    RetryContext,
    RetryExecutor,
    report_api_breaker,
    report_api_limiter,
)
from core.tenant import TenantHandle
from ingestion.cron_tracker import CronJobTracker
from ingestion.documents import DocumentStore
from ingestion.download_tracker import DownloadTracker
from ingestion.periods import DateRange, previous_complete_range
from models.base import DownloadStatus, PullStatus, ReportPeriod
from models.download_record import DownloadRecord

logger = logging.getLogger(__name__)


class ReportClient(Protocol):
    """Reporting API collaborator"""

    async def request_report(
        self,
        amazon_seller_id: str,
        period: ReportPeriod,
        date_range: DateRange,
        asins: List[str],
    ) -> str:
        ...

    async def fetch_document(self, report_id: str) -> Any:
        ...


class ReportDownloader:
    """
    Requests and stores report documents for one tenant.

    Attributes:
        client: Reporting API collaborator
        max_attempts: Attempts per request and per download
    """

    def __init__(
        self,
        tenant: TenantHandle,
        db_session: AsyncSession,
        client: ReportClient,
        document_store: Optional[DocumentStore] = None,
        executor: Optional[RetryExecutor] = None,
        breaker: Optional[CircuitBreaker] = None,
        limiter: Optional[RateLimiter] = None,
        max_attempts: Optional[int] = None,
    ):
        self.tenant = tenant
        self.client = client
        self.cron = CronJobTracker(db_session)
        self.downloads = DownloadTracker(db_session)
        self.documents = document_store or DocumentStore()
        self.executor = executor or RetryExecutor(tracker=self.cron)
        self.breaker = breaker or report_api_breaker
        self.limiter = limiter or report_api_limiter
        self.max_attempts = max_attempts or settings.MAX_DOWNLOAD_ATTEMPTS
        self.fetch_timeout = settings.FETCH_TIMEOUT_SECONDS

    async def pull_cycle(
        self,
        seller_id: int,
        amazon_seller_id: Optional[str] = None,
        asins: Optional[Iterable[str]] = None,
    ) -> Dict[str, Optional[int]]:
        """Pull every unsettled period of the seller's current cycle"""
        job = await self.cron.create_or_advance_cycle(seller_id, amazon_seller_id, asins)
        job_id = job.id
        results: Dict[str, Optional[int]] = {}
        for period in ReportPeriod:
            record = await self.pull_period(job_id, period)
            results[period.value] = record.id if record is not None else None
        return results

    async def pull_period(self, cron_job_id: int, period: ReportPeriod) -> Optional[DownloadRecord]:
        """
        Request, download and store one period's report.

        Returns:
            The download record, or None when the period is already settled
        """
        period = ReportPeriod(period)
        job = await self.cron.get(cron_job_id)
        if job is None or job.pull_status(period) in (PullStatus.SUCCESS, PullStatus.FAILED):
            return None
        if job.period_value(period, "download_completed"):
            logger.info(f"Cron job {cron_job_id} {period.value} already downloaded")
            return await self.downloads.find(cron_job_id, period)

        amazon_seller_id = job.amazon_seller_id
        asins = job.asins
        await self.cron.enter_in_progress(cron_job_id, period)

        # --------------------------------------------------
        # PHASE 1: REQUEST
        # --------------------------------------------------
        date_range = previous_complete_range(period, self.tenant.tzinfo)

        async def request() -> str:
            await self.cron.enter_in_progress(cron_job_id, period)
            await self.limiter.acquire(amazon_seller_id)
            return await self.breaker.call(
                lambda: self.client.request_report(amazon_seller_id, period, date_range, asins)
            )

        requested = await self.executor.execute(
            request,
            max_attempts=self.max_attempts,
            context=RetryContext(
                cron_job_id=cron_job_id,
                period=period,
                action="request_report",
                amazon_seller_id=amazon_seller_id,
            ),
        )
        if not requested.success:
            return await self.downloads.mark_download_status(
                {
                    "cron_job_id": cron_job_id,
                    "report_type": period,
                    "amazon_seller_id": amazon_seller_id,
                },
                DownloadStatus.FAILED,
                error=requested.error_message,
            )

        report_id = str(requested.data)
        await self.cron.update_report_status(cron_job_id, period, PullStatus.IN_PROGRESS, report_id=report_id)
        record = await self.downloads.create_pending(
            cron_job_id, period, report_id=report_id, amazon_seller_id=amazon_seller_id
        )
        record_id = record.id
        logger.info(f"Requested {period.value} report {report_id} for seller {amazon_seller_id}")

        # --------------------------------------------------
        # PHASE 2: DOWNLOAD + STORE
        # --------------------------------------------------
        async def download() -> str:
            await self.cron.enter_in_progress(cron_job_id, period)
            await self.downloads.mark_download_status(record_id, DownloadStatus.DOWNLOADING, increment_attempts=True)
            await self.limiter.acquire(amazon_seller_id)
            content = await self.breaker.call(
                lambda: asyncio.wait_for(self.client.fetch_document(report_id), timeout=self.fetch_timeout)
            )
            path = self.documents.build_path(amazon_seller_id, period, report_id, datetime.utcnow())
            return await self.documents.save(content, path)

        downloaded = await self.executor.execute(
            download,
            max_attempts=self.max_attempts,
            context=RetryContext(
                cron_job_id=cron_job_id,
                period=period,
                action="download_report",
                amazon_seller_id=amazon_seller_id,
                report_id=report_id,
            ),
        )
        if not downloaded.success:
            return await self.downloads.mark_download_status(
                record_id, DownloadStatus.FAILED, error=downloaded.error_message
            )

        locator = downloaded.data
        record = await self.downloads.mark_download_status(
            record_id,
            DownloadStatus.COMPLETED,
            file_path=locator,
            file_size=self._size_of(locator),
        )
        await self.cron.set_download_completed(cron_job_id, period)
        logger.info(f"Downloaded {period.value} report {report_id} to {locator}")
        return record

    @staticmethod
    def _size_of(locator: str) -> Optional[int]:
        try:
            return Path(locator).stat().st_size
        except OSError:
            return None
