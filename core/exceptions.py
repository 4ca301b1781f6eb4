"""
Custom exceptions for the report ingestion pipeline with structured error context.

This module provides the exception hierarchy used by the tenant router,
the resilience toolkit, the trackers and the import pipeline. Each
exception carries context information for debugging and for the
persisted ``lastError`` text.

Exception Hierarchy:
    IngestionError (base)
    ├── ExtractionError
    │   └── DocumentFetchError
    ├── TransformationError
    │   └── ValidationError
    ├── LoadError
    │   └── DatabaseError
    ├── TrackingError
    ├── TenantResolutionError
    ├── ConfigurationError
    ├── CircuitOpenError / RateLimitExceededError / OperationTimeoutError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime


class IngestionError(Exception):
    """
    Base exception for all ingestion-related errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (seller, period, report id, etc.)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.utcnow()

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Extraction Errors
# ============================================================================

class ExtractionError(IngestionError):
    """Base exception for report request and document fetch failures."""
    pass


class DocumentFetchError(ExtractionError):
    """
    Exception raised when a report document cannot be read.

    Context should include:
        - locator: Local path or remote URL of the document
        - status_code: HTTP status code (if applicable)
    """
    pass


# ============================================================================
# Transformation Errors
# ============================================================================

class TransformationError(IngestionError):
    """Base exception for report document transformation failures."""
    pass


class ValidationError(TransformationError):
    """
    Exception raised when a metric row fails validation.

    Context should include:
        - field_name: Name of the field that failed validation
        - asin: ASIN of the offending record (if known)
    """
    pass


# ============================================================================
# Load Errors
# ============================================================================

class LoadError(IngestionError):
    """Base exception for metric persistence failures."""
    pass


class DatabaseError(LoadError):
    """
    Exception raised when database operations fail.

    Context should include:
        - operation: Type of database operation (INSERT, UPDATE, DELETE)
        - table_name: Name of the table
    """
    pass


# ============================================================================
# Tracking / Routing / Configuration Errors
# ============================================================================

class TrackingError(IngestionError):
    """
    Exception raised when recording job or document status fails.

    The business failure being recorded (if any) is kept as
    ``original_exception`` so it is never dropped.
    """
    pass


class TenantResolutionError(IngestionError):
    """Exception raised when the tenant database mapping cannot be read."""
    pass


class ConfigurationError(IngestionError):
    """Exception raised for invalid configuration or caller input."""
    pass


# ============================================================================
# Resilience Errors
# ============================================================================

class CircuitOpenError(IngestionError):
    """Raised without calling the dependency while its circuit is open."""
    pass


class RateLimitExceededError(IngestionError):
    """Raised when a caller exceeds its request budget for the current window."""
    pass


class OperationTimeoutError(IngestionError):
    """Raised when an operation exceeds its wall-clock budget."""
    pass


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(IngestionError):
    """
    Mixin for errors that should trigger retry logic.

    Use this for transient errors like:
    - Network timeouts
    - Rate limiting (HTTP 429)
    - Temporary database connection issues
    - Service unavailable (HTTP 503)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0
    ):
        super().__init__(message, context, original_exception)
        self.max_retries = max_retries
        self.retry_delay = retry_delay


class NonRetryableError(IngestionError):
    """
    Mixin for errors that should NOT trigger retry logic.

    Use this for permanent errors like:
    - Authentication failures (HTTP 401, 403)
    - Invalid data format
    - Schema validation errors
    - Resource not found (HTTP 404)
    """
    pass


# ============================================================================
# Specific Retryable Errors
# ============================================================================

class NetworkError(RetryableError, DocumentFetchError):
    """Network-related errors that should be retried."""
    pass


class RateLimitError(RetryableError, ExtractionError):
    """Rate limiting errors (HTTP 429) that should be retried with backoff."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[int] = None
    ):
        super().__init__(message, context, original_exception)
        self.retry_after = retry_after  # Seconds to wait before retry
        if retry_after:
            self.context["retry_after"] = retry_after


class ServiceUnavailableError(RetryableError, ExtractionError):
    """Upstream 5xx or explicit 'temporarily unavailable' responses."""
    pass


class DatabaseConnectionError(RetryableError, DatabaseError):
    """Database connection errors that should be retried."""
    pass


class DeadlockError(RetryableError, DatabaseError):
    """Database deadlock errors that should be retried."""
    pass


# ============================================================================
# Specific Non-Retryable Errors
# ============================================================================

class AuthenticationError(NonRetryableError, ExtractionError):
    """Authentication failures (HTTP 401, 403) that should not be retried."""
    pass


class ResourceNotFoundError(NonRetryableError, ExtractionError):
    """Resource not found errors (HTTP 404) that should not be retried."""
    pass


class DocumentNotFoundError(ResourceNotFoundError, DocumentFetchError):
    """The document locator does not point at an existing file or object."""
    pass


class SchemaValidationError(NonRetryableError, ValidationError):
    """Schema validation errors that should not be retried."""
    pass


class DataFormatError(NonRetryableError, TransformationError):
    """Document content is not well-formed structured data."""
    pass


class DocumentTooLargeError(NonRetryableError, ConfigurationError):
    """Document payload exceeds the configured size ceiling."""
    pass


class InvalidLocatorError(NonRetryableError, ConfigurationError):
    """Document locator is unsupported or escapes the reports directory."""
    pass


class InvalidStatusTransitionError(NonRetryableError, TrackingError):
    """A period pull status write would violate the job state machine."""
    pass
