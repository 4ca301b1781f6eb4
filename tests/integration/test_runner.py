"""
Batch runs across tenants: per-document and per-tenant failure isolation
"""

import asyncio
import json
import pytest
from unittest.mock import AsyncMock, MagicMock
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool
from core.resilience import MemoryMonitor, RetryExecutor
from core.tenant import TenantRouter
from ingestion.cron_tracker import CronJobTracker
from ingestion.documents import DocumentStore
from ingestion.runner import PipelineRunner, RunFilter
from models import Timezone, User, UserDatabase, UserDatabaseMapping
from models.base import ProcessStatus, ReportPeriod

MB = 1024 * 1024


def make_runner(router, tmp_path, rss=0):
    return PipelineRunner(
        router,
        document_store=DocumentStore(base_dir=str(tmp_path)),
        monitor=MemoryMonitor(threshold_mb=100, rss_reader=lambda: rss),
        executor_factory=lambda session: RetryExecutor(CronJobTracker(session), sleep=AsyncMock()),
    )


@pytest.fixture
def write_document(tmp_path):
    def _write(content, name):
        path = tmp_path / name
        path.write_text(content)
        return str(path)
    return _write


@pytest.fixture
def router(test_engine):
    return TenantRouter(root_engine=test_engine, engine_factory=MagicMock())


@pytest.mark.asyncio
async def test_run_once_contains_document_failures(
    db_session, router, tmp_path, seed_job, seed_record, write_document, sqp_document
):
    job = await seed_job()
    good = await seed_record(job.id, ReportPeriod.WEEK, file_path=write_document(json.dumps(sqp_document), "good.json"))
    bad = await seed_record(job.id, ReportPeriod.MONTH, file_path=write_document("{broken", "bad.json"))

    summary = await make_runner(router, tmp_path).run_once(0)

    assert summary.processed == 2
    assert summary.errors == 1
    assert summary.to_dict() == {"processed": 2, "errors": 1}

    await db_session.refresh(good)
    await db_session.refresh(bad)
    assert good.process_status == ProcessStatus.SUCCESS
    assert bad.process_status == ProcessStatus.FAILED
    assert bad.last_process_error == "Report document is not valid JSON"


@pytest.mark.asyncio
async def test_run_once_respects_filter(db_session, router, tmp_path, seed_job, seed_record, write_document):
    job = await seed_job()
    await seed_record(job.id, ReportPeriod.WEEK, file_path=write_document("[]", "w.json"))
    monthly = await seed_record(job.id, ReportPeriod.MONTH, file_path=write_document("[]", "m.json"))

    summary = await make_runner(router, tmp_path).run_once(0, RunFilter(report_type=ReportPeriod.MONTH))

    assert summary.processed == 1
    assert summary.outcomes[0]["download_record_id"] == monthly.id


@pytest.mark.asyncio
async def test_nothing_to_process(router, tmp_path):
    summary = await make_runner(router, tmp_path).run_once(0)

    assert summary.to_dict() == {"processed": 0, "errors": 0}


@pytest.mark.asyncio
async def test_memory_pressure_defers_documents(router, tmp_path, seed_job, seed_record, write_document):
    job = await seed_job()
    await seed_record(job.id, file_path=write_document("[]", "w.json"))

    summary = await make_runner(router, tmp_path, rss=500 * MB).run_once(0)

    assert summary.processed == 0


@pytest.mark.asyncio
async def test_run_all_isolates_tenants(db_session, test_engine, tmp_path, seed_job, seed_record, write_document):
    # Tenant 7 maps to a database without tables
    tz = Timezone(timezone="UTC")
    db_session.add(tz)
    await db_session.flush()
    database = UserDatabase(db_name="sqp_broken", app_type=1)
    db_session.add_all([database, User(id=7, timezone_id=tz.id)])
    await db_session.flush()
    db_session.add(UserDatabaseMapping(user_id=7, database_id=database.id))
    await db_session.commit()

    job = await seed_job()
    await seed_record(job.id, file_path=write_document("[]", "w.json"))

    broken = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    router = TenantRouter(root_engine=test_engine, engine_factory=lambda url: broken)
    try:
        results = await make_runner(router, tmp_path).run_all()
    finally:
        await broken.dispose()

    assert results[0] == {"processed": 1, "errors": 0}
    assert results[7] == {"processed": 0, "errors": 1}


@pytest.mark.asyncio
async def test_overlapping_runs_import_each_document_once(
    db_session, router, tmp_path, seed_job, seed_record, write_document, sqp_document
):
    job = await seed_job()
    content = json.dumps(sqp_document)
    records = [
        await seed_record(job.id, period, file_path=write_document(content, f"{period.value}.json"))
        for period in ReportPeriod
    ]
    runner = make_runner(router, tmp_path)

    first, second = await asyncio.gather(runner.run_once(0), runner.run_once(0))

    assert first.processed + second.processed == 3
    assert first.errors + second.errors == 0
    for record in records:
        await db_session.refresh(record)
        assert record.process_status == ProcessStatus.SUCCESS
        assert record.process_attempts == 1
