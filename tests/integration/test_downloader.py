"""
Request and download of a full cron cycle against a fake reporting API,
followed by import of the stored documents
"""

import pytest
from unittest.mock import AsyncMock, MagicMock
from sqlalchemy import select
from core.exceptions import AuthenticationError
from core.resilience import CircuitBreaker, MemoryMonitor, RateLimiter, RetryExecutor, report_api_breaker
from core.tenant import TenantRouter
from ingestion.cron_tracker import CronJobTracker
from ingestion.documents import DocumentStore
from ingestion.downloader import ReportDownloader
from ingestion.runner import PipelineRunner
from models import SellerAsin
from models.base import AsinPullStatus, DownloadStatus, ProcessStatus, PullStatus, ReportPeriod


class FakeReportClient:
    def __init__(self, document, reject=()):
        self.document = document
        self.reject = set(reject)
        self.requests = []
        self.fetches = []

    async def request_report(self, amazon_seller_id, period, date_range, asins):
        self.requests.append((amazon_seller_id, period, date_range, tuple(asins)))
        if period in self.reject:
            raise AuthenticationError("Unauthorized", context={"status_code": 401})
        return f"RPT-{period.value}"

    async def fetch_document(self, report_id):
        self.fetches.append(report_id)
        return self.document


@pytest.fixture
def store(tmp_path):
    return DocumentStore(base_dir=str(tmp_path))


def make_downloader(tenant_handle, db_session, client, store):
    return ReportDownloader(
        tenant_handle,
        db_session,
        client,
        document_store=store,
        executor=RetryExecutor(CronJobTracker(db_session), sleep=AsyncMock()),
        breaker=CircuitBreaker("test-api", failure_threshold=5, reset_timeout=60),
        limiter=RateLimiter(max_requests=100, window_seconds=60),
    )


@pytest.mark.asyncio
async def test_pull_cycle_downloads_every_period(db_session, tenant_handle, store, seed_job, sqp_document):
    job = await seed_job()
    client = FakeReportClient(sqp_document)

    results = await make_downloader(tenant_handle, db_session, client, store).pull_cycle(job.seller_id)

    assert set(results) == {"WEEK", "MONTH", "QUARTER"}
    assert all(record_id is not None for record_id in results.values())
    assert [r[1] for r in client.requests] == list(ReportPeriod)
    assert client.requests[0][3] == ("B000TEST01", "B000TEST02")

    downloader = make_downloader(tenant_handle, db_session, client, store)
    weekly = await downloader.downloads.get(results["WEEK"])
    assert weekly.status == DownloadStatus.COMPLETED
    assert weekly.process_status == ProcessStatus.PENDING
    assert weekly.download_attempts == 1
    assert weekly.file_size > 0
    assert await store.load_json(weekly.file_path) == sqp_document

    job = await downloader.cron.get(job.id)
    assert job.weekly_pull_status == PullStatus.IN_PROGRESS
    assert job.weekly_report_id == "RPT-WEEK"
    assert job.weekly_download_completed is True


@pytest.mark.asyncio
async def test_rejected_request_fails_period(db_session, tenant_handle, store, seed_job, sqp_document):
    job = await seed_job()
    client = FakeReportClient(sqp_document, reject={ReportPeriod.MONTH})
    downloader = make_downloader(tenant_handle, db_session, client, store)

    record = await downloader.pull_period(job.id, ReportPeriod.MONTH)

    assert record.status == DownloadStatus.FAILED
    assert record.error_message == "Unauthorized"
    assert len(client.requests) == 1
    assert client.fetches == []
    job = await downloader.cron.get(job.id)
    assert job.monthly_pull_status == PullStatus.FAILED


@pytest.mark.asyncio
async def test_settled_or_downloaded_periods_are_skipped(db_session, tenant_handle, store, seed_job, sqp_document):
    job = await seed_job(quarterly_pull_status=int(PullStatus.SUCCESS))
    client = FakeReportClient(sqp_document)
    downloader = make_downloader(tenant_handle, db_session, client, store)

    assert await downloader.pull_period(job.id, ReportPeriod.QUARTER) is None

    first = await downloader.pull_period(job.id, ReportPeriod.WEEK)
    again = await downloader.pull_period(job.id, ReportPeriod.WEEK)

    assert again.id == first.id
    assert len(client.requests) == 1


@pytest.mark.asyncio
async def test_pulled_cycle_is_imported(db_session, test_engine, tenant_handle, store, seed_job, sqp_document):
    job = await seed_job()
    client = FakeReportClient(sqp_document)
    await make_downloader(tenant_handle, db_session, client, store).pull_cycle(job.seller_id)

    runner = PipelineRunner(
        TenantRouter(root_engine=test_engine, engine_factory=MagicMock()),
        document_store=store,
        monitor=MemoryMonitor(threshold_mb=100, rss_reader=lambda: 0),
        executor_factory=lambda session: RetryExecutor(CronJobTracker(session), sleep=AsyncMock()),
    )
    summary = await runner.run_once(0)

    assert summary.to_dict() == {"processed": 3, "errors": 0}
    job = await CronJobTracker(db_session).get(job.id)
    await db_session.refresh(job)
    assert job.cron_running_status == 0
    assert {job.pull_status(p) for p in ReportPeriod} == {PullStatus.SUCCESS}

    statuses = (await db_session.execute(select(SellerAsin.last_pull_status))).scalars().all()
    assert statuses == [AsinPullStatus.COMPLETED, AsinPullStatus.COMPLETED]


@pytest.mark.asyncio
async def test_runner_pulls_one_seller(db_session, test_engine, store, seed_job, sqp_document):
    job = await seed_job()
    client = FakeReportClient(sqp_document, reject={ReportPeriod.QUARTER})
    runner = PipelineRunner(
        TenantRouter(root_engine=test_engine, engine_factory=MagicMock()),
        document_store=store,
        executor_factory=lambda session: RetryExecutor(CronJobTracker(session), sleep=AsyncMock()),
    )
    report_api_breaker.reset()

    results = await runner.pull_seller(0, client, job.seller_id)

    assert results["WEEK"] is not None and results["MONTH"] is not None
    job = await CronJobTracker(db_session).get(job.id)
    await db_session.refresh(job)
    assert job.quarterly_pull_status == PullStatus.FAILED
    assert job.weekly_download_completed is True
