"""
Health check endpoint with database, circuit breaker and memory status
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from api.dependencies import get_tenant_router
from core.resilience import report_api_breaker, memory_monitor
from core.tenant import TenantRouter
from schemas.api import HealthCheckResponse, CircuitBreakerInfo
from datetime import datetime
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(tenant_router: TenantRouter = Depends(get_tenant_router)):
    """
    Health check endpoint.

    Returns:
    - Root database connectivity
    - Report API circuit breaker state
    - Process memory usage
    """
    db_connected = False

    try:
        async with tenant_router.root_handle.session() as session:
            await session.execute(text("SELECT 1"))
        db_connected = True
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Database connection failed: {str(e)}")

    return HealthCheckResponse(
        status="healthy",  # Placeholder, validator will update
        timestamp=datetime.utcnow(),
        database_connected=db_connected,
        circuit_breaker=CircuitBreakerInfo(**report_api_breaker.get_state()),
        memory=memory_monitor.usage(),
        memory_high=memory_monitor.is_memory_high(),
    )
