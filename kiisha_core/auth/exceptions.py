"""
Auth-specific exceptions.

Every authentication or authorization failure is exactly one of these two,
so callers can map them to HTTP 401 and 403 without inspecting messages.
"""

from kiisha_core.runtime.errors import ErrorCode, TerminalError


class AuthError(TerminalError):
    """Base authentication/authorization error."""

    pass


class UnauthorizedError(AuthError):
    """Raised when the portal token is missing, invalid or expired."""

    status_code = 401

    def __init__(self, message: str = "Portal authentication required"):
        super().__init__(code=ErrorCode.UNAUTHORIZED, message_safe=message)


class ForbiddenError(AuthError):
    """Raised when a valid identity lacks the required access."""

    status_code = 403

    def __init__(self, message: str = "Access denied"):
        super().__init__(code=ErrorCode.FORBIDDEN, message_safe=message)
