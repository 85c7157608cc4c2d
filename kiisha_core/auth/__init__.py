"""
Auth module for the Kiisha portal.

Provides portal token signing/verification, the AuthGuard that resolves
tokens to a PortalScope, access assertions, and FastAPI dependencies.
"""

from kiisha_core.auth.dependencies import (
    get_auth_guard,
    get_portal_context,
    require_client_admin,
    require_finance_access,
    require_portal_role,
)
from kiisha_core.auth.exceptions import AuthError, ForbiddenError, UnauthorizedError
from kiisha_core.auth.guard import (
    AuthGuard,
    PortalContext,
    assert_asset_access,
    assert_org_access,
    assert_project_access,
    assert_site_access,
)
from kiisha_core.auth.token_service import PortalTokenPayload, PortalTokenService

__all__ = [
    "AuthGuard",
    "PortalContext",
    "PortalTokenPayload",
    "PortalTokenService",
    "AuthError",
    "UnauthorizedError",
    "ForbiddenError",
    "assert_project_access",
    "assert_site_access",
    "assert_asset_access",
    "assert_org_access",
    "get_auth_guard",
    "get_portal_context",
    "require_portal_role",
    "require_finance_access",
    "require_client_admin",
]
