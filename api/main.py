"""
FastAPI application initialization
"""

from fastapi import FastAPI
from api.dependencies import get_tenant_router, get_runner
from api.routes import health, stats, runs
from core.config import settings
from core.logging import setup_logging
import logging
from api.middleware import RequestContextMiddleware
from ingestion.scheduler import PipelineScheduler

setup_logging()

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="SQP Report Ingestion API",
    description="Multi-tenant Search Query Performance report ingestion service",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestContextMiddleware)

# Include routers
app.include_router(health.router)
app.include_router(stats.router)
app.include_router(runs.router)

scheduler = None


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    global scheduler
    logger.info("Starting SQP Report Ingestion API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    scheduler = PipelineScheduler(get_tenant_router(), runner=get_runner())
    scheduler.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down SQP Report Ingestion API")
    if scheduler is not None:
        scheduler.stop()
    await get_tenant_router().dispose()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "SQP Report Ingestion API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "stats": "/stats",
            "runs": "/runs"
        }
    }
