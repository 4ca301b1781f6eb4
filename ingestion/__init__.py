"""
Report ingestion pipeline components.

Modules:
    cron_tracker: Per-period pull state machine and activity log
    download_tracker: Document download and import lifecycle
    documents: Local and remote document storage
    downloader: Request and download reports for one cron cycle
    importer: Import one downloaded document with retry
    periods: Report window arithmetic in the tenant's timezone
    rollup: Per-ASIN latest coverage and availability
    runner: Batch driver across tenants
    scheduler: APScheduler integration for automated import runs

Subpackages:
    transformers: Report document normalization and validation
    loaders: Replace-by-key metric loaders

Architecture:
    1. Request - ask the report API for one period's report
    2. Download - store the document and mark it ready for import
    3. Import - normalize, replace rows by logical key, update rollups

    Every status change is written through the trackers so a crashed
    run resumes from the last committed state.

Usage:
    from core.tenant import TenantRouter
    from ingestion.runner import PipelineRunner

Example:
    runner = PipelineRunner(TenantRouter())
    summary = await runner.run_once(tenant_key=42)

    print(f"Processed {summary.processed} documents, {summary.errors} errors")
"""

__all__ = [
    "CronJobTracker",
    "DownloadTracker",
    "DocumentStore",
    "ReportDownloader",
    "ReportImporter",
    "AsinRollupService",
    "PipelineRunner",
    "PipelineScheduler",
]
