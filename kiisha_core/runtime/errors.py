"""
Error types for the portal access-control core.

Every failure the portal surfaces is a ServiceError carrying a stable code,
a message safe to show a portal user and the HTTP status the app renders it
with. Whether a caller may retry is part of the type: a grant store outage
or a rate-limit rejection may clear up, an authorization refusal will not.
"""

from __future__ import annotations

import uuid
from typing import Any


class ErrorCode:
    """Codes rendered as the `detail` of error responses."""

    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    RATE_LIMITED = "RATE_LIMITED"
    STORE_FAILURE = "STORE_FAILURE"
    INVALID_RECORD = "INVALID_RECORD"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ServiceError(Exception):
    """Base portal error.

    Only `code` and `message_safe` ever reach a response. `message_debug`
    and `cause` may name users or hosts, so they stay in the logs.
    `debug_id` ties a response to its log line.

    Attributes:
        code: One of ErrorCode.
        message_safe: Message fit for a portal user.
        message_debug: Log-only detail.
        retryable: Whether repeating the call can succeed.
        cause: Underlying exception, if any.
        debug_id: Short id for correlating a response with its log line.
        status_code: HTTP status used by the app's error handler.
    """

    status_code: int = 500

    def __init__(
        self,
        code: str,
        message_safe: str,
        message_debug: str | None = None,
        retryable: bool = False,
        cause: Exception | None = None,
        debug_id: str | None = None,
    ):
        super().__init__(message_safe)
        self.code = code
        self.message_safe = message_safe
        self.message_debug = message_debug
        self.retryable = retryable
        self.cause = cause
        self.debug_id = debug_id or str(uuid.uuid4())[:8]

    def __str__(self) -> str:
        return f"[{self.code}] {self.message_safe}"

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code!r}, "
            f"message_safe={self.message_safe!r}, "
            f"retryable={self.retryable}, "
            f"debug_id={self.debug_id!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Public view of the error, without debug detail."""
        return {
            "code": self.code,
            "message": self.message_safe,
            "debug_id": self.debug_id,
        }


class RetryableError(ServiceError):
    """A failure that may clear up, such as a store outage or a full window."""

    def __init__(
        self,
        code: str,
        message_safe: str,
        message_debug: str | None = None,
        cause: Exception | None = None,
        debug_id: str | None = None,
    ):
        super().__init__(
            code=code,
            message_safe=message_safe,
            message_debug=message_debug,
            retryable=True,
            cause=cause,
            debug_id=debug_id,
        )


class TerminalError(ServiceError):
    """A failure that repeats on retry: refused access or a corrupt row."""

    def __init__(
        self,
        code: str,
        message_safe: str,
        message_debug: str | None = None,
        cause: Exception | None = None,
        debug_id: str | None = None,
    ):
        super().__init__(
            code=code,
            message_safe=message_safe,
            message_debug=message_debug,
            retryable=False,
            cause=cause,
            debug_id=debug_id,
        )


class StoreFailure(RetryableError):
    """The grant store could not answer a read.

    Always propagated to the caller; never converted into an empty scope.
    """

    status_code = 500

    def __init__(
        self,
        operation: str,
        subject: Any = None,
        cause: Exception | None = None,
    ):
        self.operation = operation
        self.subject = subject
        super().__init__(
            code=ErrorCode.STORE_FAILURE,
            message_safe=f"Grant store read failed: {operation}",
            message_debug=f"subject={subject!r} cause={cause!r}",
            cause=cause,
        )


class InvalidRecordError(TerminalError):
    """A store row carried a value outside its closed set."""

    status_code = 500

    def __init__(self, record_type: str, field: str, value: Any):
        self.record_type = record_type
        self.field = field
        self.value = value
        super().__init__(
            code=ErrorCode.INVALID_RECORD,
            message_safe=f"Invalid {record_type}.{field} value",
            message_debug=f"{record_type}.{field}={value!r}",
        )


class RateLimitedError(RetryableError):
    """Request count exceeded for the active window."""

    status_code = 429

    def __init__(
        self,
        limit: int,
        reset_at_ms: int,
        retry_after_seconds: int,
        key: str | None = None,
    ):
        self.limit = limit
        self.reset_at_ms = reset_at_ms
        self.retry_after_seconds = retry_after_seconds
        self.key = key
        super().__init__(
            code=ErrorCode.RATE_LIMITED,
            message_safe="Too many requests",
            message_debug=f"key={key!r} retry_after={retry_after_seconds}s",
        )

    def to_dict(self) -> dict[str, Any]:
        return {"error": "Too many requests", "retryAfter": self.retry_after_seconds}
