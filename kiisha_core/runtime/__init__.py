"""
Service runtime layer for the Kiisha portal.

This package provides the shared error model:
- ServiceError: Standardized errors with retry semantics and HTTP status
- StoreFailure, InvalidRecordError: Grant store read failures
- RateLimitedError: Fixed-window limit exhausted
"""

from .errors import (
    ErrorCode,
    InvalidRecordError,
    RateLimitedError,
    RetryableError,
    ServiceError,
    StoreFailure,
    TerminalError,
)

__all__ = [
    "ErrorCode",
    "ServiceError",
    "RetryableError",
    "TerminalError",
    "StoreFailure",
    "InvalidRecordError",
    "RateLimitedError",
]
