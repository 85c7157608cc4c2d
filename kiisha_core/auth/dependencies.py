"""
FastAPI dependencies for portal authorization.

Provides dependency injection for:
- Resolving the portal context from the portal_token cookie
- Requiring specific client-account roles for endpoints
"""

from __future__ import annotations

from fastapi import Depends, Request

from kiisha_core.auth.guard import AuthGuard, PortalContext
from kiisha_core.domain.portal import ClientRole


def get_auth_guard(request: Request) -> AuthGuard:
    """Get the AuthGuard installed on the application state."""
    return request.app.state.auth_guard


async def get_portal_context(
    request: Request,
    guard: AuthGuard = Depends(get_auth_guard),
) -> PortalContext:
    """Resolve the authenticated portal context for this request.

    Raises:
        UnauthorizedError: 401 if there is no valid portal token.
        ForbiddenError: 403 if the identity has no active access.
    """
    context = await guard.require_auth(request.cookies)
    request.state.portal = context
    return context


def require_portal_role(*roles: ClientRole | str):
    """Dependency factory to require one of the given roles.

    Usage:
        @router.get("/invoices")
        async def invoices(ctx: PortalContext = Depends(require_portal_role(ClientRole.FINANCE))):
            ...

    Args:
        roles: Accepted client-account roles.

    Returns:
        A dependency function that checks the role.
    """
    allowed = list(roles)

    async def _check_role(
        request: Request,
        guard: AuthGuard = Depends(get_auth_guard),
    ) -> PortalContext:
        context = await guard.require_role(request.cookies, allowed)
        request.state.portal = context
        return context

    return _check_role


# Convenience dependencies for common role sets
require_finance_access = require_portal_role(ClientRole.CLIENT_ADMIN, ClientRole.FINANCE)
require_client_admin = require_portal_role(ClientRole.CLIENT_ADMIN)
