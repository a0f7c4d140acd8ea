"""
Custom exceptions for the grant sync pipeline with structured error context.

Each exception carries a context dictionary (provider, offset, batch size,
...) so that failures can be logged and stored with enough detail to
diagnose a partial run.

Exception Hierarchy:
    SyncException (base)
    ├── ProviderError
    │   ├── TransportError
    │   ├── RateLimitExceeded
    │   ├── AuthenticationError
    │   └── ResourceNotFoundError
    ├── NormalizationError
    ├── LoadError
    │   ├── BatchUpsertError
    │   └── FanOutError
    ├── CheckpointError
    ├── FatalProviderError
    ├── ConfigurationError
    ├── SyncInProgressError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime


class SyncException(Exception):
    """
    Base exception for all sync pipeline errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (provider, offset, etc.)
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
# Retry Strategy Mixins
# ============================================================================

class RetryableError(SyncException):
    """
    Mixin for errors that should trigger retry logic.

    Use this for transient errors like:
    - Network timeouts
    - Rate limiting (HTTP 429)
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


class NonRetryableError(SyncException):
    """
    Mixin for errors that should NOT trigger retry logic.

    Use this for permanent errors like:
    - Authentication failures (HTTP 401, 403)
    - Resource not found (HTTP 404)
    """
    pass


# ============================================================================
# Provider (page-level) Errors
# ============================================================================

class ProviderError(SyncException):
    """
    Base exception for failures talking to an external provider.

    Context should include:
        - source_name: Provider name
        - api_url: The endpoint that failed
        - status_code: HTTP status code (if applicable)
    """
    pass


class TransportError(RetryableError, ProviderError):
    """Network or HTTP failure (timeouts, connection errors, 5xx, bad bodies)."""
    pass


class RateLimitExceeded(RetryableError, ProviderError):
    """Provider request budget is spent, locally (rate limiter) or remotely (HTTP 429)."""

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


class AuthenticationError(NonRetryableError, ProviderError):
    """Authentication failures (HTTP 401, 403)."""
    pass


class ResourceNotFoundError(NonRetryableError, ProviderError):
    """Resource not found (HTTP 404)."""
    pass


# ============================================================================
# Record-level Errors
# ============================================================================

class NormalizationError(SyncException):
    """
    Raised when a raw provider record cannot be mapped to a canonical grant.

    Context should include:
        - source_name: Provider name
        - source_identifier: Provider-native id (if it could be read)
        - field_errors: Validation errors
    """
    pass


# ============================================================================
# Load Errors
# ============================================================================

class LoadError(SyncException):
    """Base exception for store write failures."""
    pass


class BatchUpsertError(LoadError):
    """
    The bulk canonical upsert failed; every record of the batch is lost.

    Context should include:
        - data_source_id: Provider id
        - batch_size: Number of records in the failed batch
    """
    pass


class FanOutError(LoadError):
    """
    Writing dependent sub-records for one grant failed.

    Context should include:
        - grant_id: Canonical grant id
        - table_name: Dependent table being written
    """
    pass


# ============================================================================
# Checkpoint / Provider / Configuration Errors
# ============================================================================

class CheckpointError(SyncException):
    """
    Exception raised when checkpoint state cannot be read or written.

    Context should include:
        - data_source_id: Provider id
        - state_key: Checkpoint key
        - operation: read, write, reset
    """
    pass


class FatalProviderError(SyncException):
    """Escapes the per-provider page loop; the provider's run is marked failed."""
    pass


class ConfigurationError(NonRetryableError):
    """Provider configuration could not be loaded, or a provider is unknown/inactive."""
    pass


class SyncInProgressError(NonRetryableError):
    """
    A sync for the provider is already running in this process.

    Context should include:
        - source_name: Provider name
    """
    pass
