"""
Manual pipeline trigger endpoint
"""
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from api.dependencies import get_runner
from core.exceptions import IngestionError, TenantResolutionError
from ingestion.runner import PipelineRunner, RunFilter
from models.base import ReportPeriod
from schemas.api import RunResponse
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Runs"])


@router.post("/runs", response_model=RunResponse)
async def trigger_run(
    tenant_key: int = Query(0, ge=0),
    cron_job_id: Optional[int] = Query(None, ge=1),
    report_type: Optional[ReportPeriod] = Query(None),
    report_id: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=100),
    runner: PipelineRunner = Depends(get_runner),
):
    """Import one batch of eligible documents for a tenant"""
    run_filter = RunFilter(
        cron_job_id=cron_job_id,
        report_type=report_type,
        report_id=report_id,
        limit=limit,
    )

    try:
        summary = await runner.run_once(tenant_key, run_filter)
    except TenantResolutionError as e:
        raise HTTPException(status_code=503, detail=e.message)
    except IngestionError as e:
        logger.error(f"Manual run failed for tenant {tenant_key}: {e.message}", extra={"error_context": e.to_dict()})
        raise HTTPException(status_code=500, detail=e.message)

    return RunResponse(
        tenant_key=tenant_key,
        processed=summary.processed,
        errors=summary.errors,
        outcomes=summary.outcomes,
    )
