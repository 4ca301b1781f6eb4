"""
API endpoint tests
"""

import httpx
import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, MagicMock
from api.main import app
from api.dependencies import get_runner, get_tenant_router
from core.exceptions import TenantResolutionError
from core.resilience import MemoryMonitor, report_api_breaker
from core.tenant import TenantRouter
from ingestion.runner import RunSummary
from models.base import ProcessStatus, ReportPeriod


@pytest.fixture
def runner():
    runner = MagicMock()
    runner.run_once = AsyncMock(return_value=RunSummary(processed=2, errors=1))
    return runner


@pytest_asyncio.fixture
async def client(test_engine, runner, monkeypatch):
    """ASGI client with the tenant router bound to the test database"""
    router = TenantRouter(root_engine=test_engine, engine_factory=MagicMock())
    app.dependency_overrides[get_tenant_router] = lambda: router
    app.dependency_overrides[get_runner] = lambda: runner
    monkeypatch.setattr("api.routes.health.memory_monitor", MemoryMonitor(threshold_mb=100, rss_reader=lambda: 0))
    report_api_breaker.reset()

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_health_endpoint(client):
    response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["database_connected"] is True
    assert data["circuit_breaker"]["state"] == "CLOSED"
    assert "X-Request-ID" in response.headers
    assert "X-API-Latency-ms" in response.headers


@pytest.mark.asyncio
async def test_health_degraded_when_breaker_open(client):
    report_api_breaker._open()
    try:
        response = await client.get("/health")
    finally:
        report_api_breaker.reset()

    assert response.json()["status"] == "degraded"


@pytest.mark.asyncio
async def test_request_id_is_propagated(client):
    response = await client.get("/", headers={"X-Request-ID": "trace-123"})

    assert response.headers["X-Request-ID"] == "trace-123"
    assert response.json()["endpoints"]["stats"] == "/stats"


@pytest.mark.asyncio
async def test_stats_endpoint(client, seed_record):
    await seed_record(1, report_id="A")
    await seed_record(1, report_id="B", process_status=ProcessStatus.SUCCESS, fully_imported=True)

    response = await client.get("/stats", params={"tenant_key": 0})

    assert response.status_code == 200
    data = response.json()
    assert data["tenant_key"] == 0
    assert data["total"] == 2
    assert data["by_status"]["COMPLETED"] == 2
    assert data["by_process_status"]["SUCCESS"] == 1
    assert data["fully_imported"] == 1


@pytest.mark.asyncio
async def test_stats_unresolvable_tenant(client, test_engine):
    router = MagicMock()
    router.resolve = AsyncMock(side_effect=TenantResolutionError("Failed to read tenant database mapping"))
    app.dependency_overrides[get_tenant_router] = lambda: router

    response = await client.get("/stats", params={"tenant_key": 42})

    assert response.status_code == 503
    assert response.json()["detail"] == "Failed to read tenant database mapping"


@pytest.mark.asyncio
async def test_run_endpoint(client, runner):
    response = await client.post("/runs", params={"tenant_key": 42, "report_type": "MONTH", "limit": 5})

    assert response.status_code == 200
    data = response.json()
    assert (data["processed"], data["errors"]) == (2, 1)

    tenant_key, run_filter = runner.run_once.await_args.args
    assert tenant_key == 42
    assert run_filter.report_type == ReportPeriod.MONTH
    assert run_filter.limit == 5


@pytest.mark.asyncio
async def test_run_endpoint_validates_params(client):
    response = await client.post("/runs", params={"report_type": "YEAR"})

    assert response.status_code == 422
