"""
Pytest configuration and fixtures
"""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool
from core.tenant import TenantContext, TenantHandle
from models import Base, CronJob, DownloadRecord, SellerAsin
from models.base import DownloadStatus, ProcessStatus, ReportPeriod
from typing import AsyncGenerator

# In-memory SQLite shared across the connections of one engine
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


async def make_engine():
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create test database engine"""
    engine = await make_engine()
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async_session_maker = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def tenant_handle(test_engine):
    """Root-store handle over the test engine"""
    return TenantHandle(
        TenantContext(tenant_key=0, db_name="test", timezone="UTC", is_root=True),
        test_engine,
    )


@pytest.fixture
def seed_job(db_session):
    """Insert a cron job and matching ASIN rollup rows"""

    async def _seed(seller_id=42, amazon_seller_id="A1SELLER", asins=("B000TEST01", "B000TEST02"), **columns):
        job = CronJob(
            seller_id=seller_id,
            amazon_seller_id=amazon_seller_id,
            asin_list=list(asins),
            **columns
        )
        db_session.add(job)
        for asin in asins:
            db_session.add(SellerAsin(seller_id=seller_id, amazon_seller_id=amazon_seller_id, asin=asin))
        await db_session.commit()
        return job

    return _seed


@pytest.fixture
def seed_record(db_session):
    """Insert a downloaded record ready for import"""

    async def _seed(cron_job_id, report_type=ReportPeriod.WEEK, file_path="report.json", **columns):
        values = {
            "status": DownloadStatus.COMPLETED,
            "process_status": ProcessStatus.PENDING,
            "report_id": "RPT-1",
            "amazon_seller_id": "A1SELLER",
        }
        values.update(columns)
        record = DownloadRecord(
            cron_job_id=cron_job_id,
            report_type=ReportPeriod(report_type).value,
            file_path=file_path,
            **values
        )
        db_session.add(record)
        await db_session.commit()
        return record

    return _seed


def sqp_record(asin="B000TEST01", query="wireless earbuds", start="2025-01-05", end="2025-01-11", clicks=12):
    """One search-query-performance record as the report API returns it"""
    return {
        "startDate": start,
        "endDate": end,
        "asin": asin,
        "searchQueryData": {
            "searchQuery": query,
            "searchQueryScore": 1,
            "searchQueryVolume": 5400,
        },
        "impressionData": {
            "totalQueryImpressionCount": 90000,
            "asinImpressionCount": 1200,
            "asinImpressionShare": 0.0133,
        },
        "clickData": {
            "totalClickCount": 3100,
            "totalClickRate": 0.57,
            "asinClickCount": clicks,
            "asinClickShare": 0.0039,
            "totalMedianClickPrice": {"amount": 29.99, "currencyCode": "USD"},
            "asinMedianClickPrice": {"amount": 31.5, "currencyCode": "USD"},
            "totalSameDayShippingClickCount": 4,
            "totalOneDayShippingClickCount": 80,
            "totalTwoDayShippingClickCount": 900,
        },
        "cartAddData": {
            "totalCartAddCount": 700,
            "totalCartAddRate": 0.13,
            "asinCartAddCount": 3,
            "asinCartAddShare": 0.0043,
            "totalMedianCartAddPrice": {"amount": 27.5, "currencyCode": "USD"},
        },
        "purchaseData": {
            "totalPurchaseCount": 210,
            "totalPurchaseRate": 0.039,
            "asinPurchaseCount": 1,
            "asinPurchaseShare": 0.0048,
            "totalMedianPurchasePrice": {"amount": 26.0, "currencyCode": "USD"},
        },
    }


@pytest.fixture
def make_sqp_record():
    return sqp_record


@pytest.fixture
def sqp_document():
    """Report document with three records across two ASINs"""
    return {
        "reportSpecification": {"reportType": "GET_BRAND_ANALYTICS_SEARCH_QUERY_PERFORMANCE_REPORT"},
        "records": [
            sqp_record("B000TEST01", "wireless earbuds"),
            sqp_record("B000TEST01", "bluetooth earbuds"),
            sqp_record("B000TEST02", "wireless earbuds", clicks=7),
        ],
    }

