"""
Core utilities and configuration for the SQP ingestion service.

This package provides foundational components used throughout the pipeline:

Modules:
    config: Application configuration and environment variable management
    database: Engine and session factories for the root and tenant stores
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration and utilities
    tenant: Tenant router resolving tenant keys to database handles
    resilience: Retry executor, circuit breaker, rate limiter, memory monitor

Usage:
    from core.config import settings
    from core.tenant import TenantRouter
    from core.resilience import RetryExecutor, report_api_breaker
    from core.exceptions import NetworkError, SchemaValidationError
    from core.logging import setup_logging

Example:
    setup_logging()

    router = TenantRouter()
    handle = await router.resolve(42)
    async with handle.session() as session:
        # Perform tenant-scoped database operations
        pass
"""

__all__ = [
    "settings",
    "setup_logging",
    "TenantRouter",
    "TenantHandle",
    "RetryExecutor",
    "CircuitBreaker",
    "RateLimiter",
    "MemoryMonitor",
    # Exceptions
    "IngestionError",
    "ExtractionError",
    "DocumentFetchError",
    "TransformationError",
    "ValidationError",
    "LoadError",
    "DatabaseError",
    "TrackingError",
    "TenantResolutionError",
    "ConfigurationError",
    "CircuitOpenError",
    "RateLimitExceededError",
    "OperationTimeoutError",
    "RetryableError",
    "NonRetryableError",
    "NetworkError",
    "RateLimitError",
    "ServiceUnavailableError",
    "DatabaseConnectionError",
    "DeadlockError",
    "AuthenticationError",
    "ResourceNotFoundError",
    "DocumentNotFoundError",
    "SchemaValidationError",
    "DataFormatError",
    "DocumentTooLargeError",
    "InvalidLocatorError",
    "InvalidStatusTransitionError",
]
