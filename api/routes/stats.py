"""
Download and import statistics endpoint
"""
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Query
from api.dependencies import get_tenant_router
from core.exceptions import IngestionError, TenantResolutionError
from core.tenant import TenantRouter
from ingestion.download_tracker import DownloadTracker
from schemas.api import DownloadStatsResponse
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Statistics"])


@router.get("/stats", response_model=DownloadStatsResponse)
async def get_stats(
    tenant_key: int = Query(0, ge=0, description="Tenant key; 0 reads the root store"),
    tenant_router: TenantRouter = Depends(get_tenant_router),
):
    """
    Download record statistics for one tenant.

    Counts records by download status and by process status, plus
    the number of fully imported documents.
    """
    try:
        handle = await tenant_router.resolve(tenant_key)
    except TenantResolutionError as e:
        logger.error(f"Stats: tenant {tenant_key} could not be resolved - {e.message}")
        raise HTTPException(status_code=503, detail=e.message)

    try:
        async with handle.session() as session:
            stats = await DownloadTracker(session).get_download_stats()
    except IngestionError as e:
        logger.error(f"Stats query failed for tenant {tenant_key}: {e.message}")
        raise HTTPException(status_code=500, detail=e.message)

    return DownloadStatsResponse(
        timestamp=datetime.utcnow(),
        tenant_key=handle.tenant_key,
        database=handle.context.db_name,
        **stats
    )
