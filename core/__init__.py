"""
Core utilities and configuration for the grant sync pipeline.

This package provides foundational components used throughout the pipeline:

Modules:
    config: Application configuration and environment variable management
    database: Database engine and session factory
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration

Usage:
    from core.config import settings
    from core.database import async_session_maker
    from core.exceptions import TransportError, RateLimitExceeded
    from core.logging import setup_logging

Example:
    # Initialize logging
    setup_logging()

    # Open a short-lived session
    async with async_session_maker() as session:
        ...
"""

__all__ = [
    "settings",
    "async_session_maker",
    "get_session",
    "setup_logging",
    # Exceptions
    "SyncException",
    "ProviderError",
    "TransportError",
    "RateLimitExceeded",
    "AuthenticationError",
    "ResourceNotFoundError",
    "NormalizationError",
    "LoadError",
    "BatchUpsertError",
    "FanOutError",
    "CheckpointError",
    "FatalProviderError",
    "ConfigurationError",
    "RetryableError",
    "NonRetryableError",
]
