"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List, Dict, Any
from datetime import datetime


# ============================================================================
# Health Check Schemas
# ============================================================================

class CircuitBreakerInfo(BaseModel):
    """Circuit breaker state for health check"""
    name: str
    state: str
    failure_count: int
    failure_threshold: int


class HealthCheckResponse(BaseModel):
    """Health check response model"""
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    database_connected: bool
    circuit_breaker: Optional[CircuitBreakerInfo] = None
    memory: Dict[str, Any] = Field(default_factory=dict)
    memory_high: bool = False
    # Declared last so the validator sees every other field
    status: str = Field(..., description="Overall system status: healthy, degraded, unhealthy")

    @validator("status", pre=True, always=True)
    def determine_status(cls, v, values):
        """Determine overall health status"""
        if not values.get("database_connected", False):
            return "unhealthy"

        breaker = values.get("circuit_breaker")
        if breaker is not None and breaker.state != "CLOSED":
            return "degraded"
        if values.get("memory_high"):
            return "degraded"
        return "healthy"

    class Config:
        validate_assignment = False
        json_schema_extra = {
            "example": {
                "status": "healthy",
                "timestamp": "2025-01-15T10:30:00Z",
                "database_connected": True,
                "circuit_breaker": {
                    "name": "report_api",
                    "state": "CLOSED",
                    "failure_count": 0,
                    "failure_threshold": 5
                },
                "memory": {"rss_mb": 142.5},
                "memory_high": False
            }
        }


# ============================================================================
# Statistics Schemas
# ============================================================================

class DownloadStatsResponse(BaseModel):
    """Download record statistics for one tenant"""
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    tenant_key: int
    database: str
    total: int
    by_status: Dict[str, int]
    by_process_status: Dict[str, int]
    fully_imported: int

    class Config:
        json_schema_extra = {
            "example": {
                "timestamp": "2025-01-15T10:30:00Z",
                "tenant_key": 42,
                "database": "sqp_tenant_42",
                "total": 12,
                "by_status": {"PENDING": 0, "DOWNLOADING": 0, "COMPLETED": 11, "FAILED": 1},
                "by_process_status": {
                    "NONE": 1, "PENDING": 2, "PROCESSING": 0,
                    "SUCCESS": 8, "FAILED": 1, "FAILED_PARTIAL": 0
                },
                "fully_imported": 7
            }
        }


# ============================================================================
# Run Schemas
# ============================================================================

class RunResponse(BaseModel):
    """Outcome of one manual pipeline run"""
    tenant_key: int
    processed: int
    errors: int
    outcomes: List[Dict[str, Any]] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=datetime.utcnow)


# ============================================================================
# Error Response Schema
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response"""
    error: str
    detail: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        json_schema_extra = {
            "example": {
                "error": "Tenant resolution failed",
                "detail": "Failed to read tenant database mapping",
                "timestamp": "2025-01-15T10:30:00Z"
            }
        }
