"""
Script to import eligible report documents for one tenant or all tenants
"""

import argparse
import asyncio
import json
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.exceptions import IngestionError
from core.logging import setup_logging
from core.tenant import TenantRouter
from ingestion.runner import PipelineRunner, RunFilter
from models.base import ReportPeriod

logger = logging.getLogger(__name__)


async def run_pipeline(args) -> int:
    router = TenantRouter()
    runner = PipelineRunner(router)
    run_filter = RunFilter(
        cron_job_id=args.cron_job_id,
        report_type=ReportPeriod(args.report_type) if args.report_type else None,
        report_id=args.report_id,
        limit=args.limit,
    )

    try:
        if args.all_tenants:
            results = await runner.run_all(run_filter)
            print(json.dumps({str(k): v for k, v in results.items()}, indent=2))
            return 1 if any(r["errors"] for r in results.values()) else 0

        summary = await runner.run_once(args.tenant_key, run_filter)
        print(json.dumps(summary.to_dict(), indent=2))
        return 1 if summary.errors else 0
    except IngestionError as e:
        logger.error(f"Pipeline run failed: {e.message}", extra={"error_context": e.to_dict()})
        return 2
    finally:
        await router.dispose()
        await router.root_engine.dispose()


if __name__ == "__main__":
    setup_logging()
    parser = argparse.ArgumentParser(description="Run the SQP import pipeline")
    parser.add_argument("--tenant-key", type=int, default=0)
    parser.add_argument("--all-tenants", action="store_true", help="Run the root store and every mapped tenant")
    parser.add_argument("--cron-job-id", type=int)
    parser.add_argument("--report-type", choices=[p.value for p in ReportPeriod])
    parser.add_argument("--report-id")
    parser.add_argument("--limit", type=int)
    sys.exit(asyncio.run(run_pipeline(parser.parse_args())))
