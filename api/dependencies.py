"""
FastAPI dependencies: shared tenant router and pipeline runner
"""

from typing import Optional
from core.database import engine
from core.tenant import TenantRouter
from ingestion.runner import PipelineRunner

_router: Optional[TenantRouter] = None
_runner: Optional[PipelineRunner] = None


def get_tenant_router() -> TenantRouter:
    """Process-wide tenant router bound to the root engine"""
    global _router
    if _router is None:
        _router = TenantRouter(root_engine=engine)
    return _router


def get_runner() -> PipelineRunner:
    global _runner
    if _runner is None:
        _runner = PipelineRunner(get_tenant_router())
    return _runner
