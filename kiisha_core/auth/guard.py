"""
Portal authentication guard.

Turns a portal_token cookie into a PortalContext (token identity plus the
resolved PortalScope) and exposes the access assertions handlers must call
before touching an entity.

Every failure is either UnauthorizedError (no or invalid credential) or
ForbiddenError (valid credential, insufficient access).
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from loguru import logger

from kiisha_core.auth.exceptions import ForbiddenError, UnauthorizedError
from kiisha_core.auth.token_service import PortalTokenPayload, PortalTokenService
from kiisha_core.domain.interfaces import ScopeSource
from kiisha_core.domain.portal import EMPTY_SCOPE, ClientRole, GrantType, PortalScope

Cookies = str | Mapping[str, str] | None


@dataclass(frozen=True)
class PortalContext:
    """Authenticated portal identity and its resolved scope."""

    identity: PortalTokenPayload
    scope: PortalScope


class AuthGuard:
    """
    Verify portal tokens and resolve them to a PortalContext.

    Usage:
        guard = AuthGuard(tokens, ScopeResolver(store), LegacyScopeBridge(store))
        context = await guard.require_role(request.cookies, [ClientRole.FINANCE])
        assert_project_access(context, project_id)
    """

    def __init__(
        self,
        tokens: PortalTokenService,
        canonical: ScopeSource,
        legacy: ScopeSource,
    ):
        self.tokens = tokens
        self.canonical = canonical
        self.legacy = legacy

    def verify_token(self, token: str | None) -> PortalTokenPayload | None:
        return self.tokens.verify_token(token)

    def create_token(self, payload: Mapping) -> str:
        return self.tokens.create_token(payload)

    async def resolve_context(self, payload: PortalTokenPayload) -> PortalContext:
        """Resolve the scope for a verified payload.

        The canonical model wins when the payload names a portal user;
        otherwise a customer user id goes through the legacy bridge.
        A payload naming neither gets EMPTY_SCOPE.
        """
        if payload.get("portalUserId"):
            scope = await self.canonical.resolve(payload["portalUserId"])
        elif payload.get("customerUserId"):
            scope = await self.legacy.resolve(payload["customerUserId"])
        else:
            scope = EMPTY_SCOPE
        return PortalContext(identity=payload, scope=scope)

    async def authenticate(self, cookies: Cookies) -> PortalContext | None:
        """Resolve a context from cookies, or None when there is no valid token."""
        token = self.tokens.extract_token(cookies)
        if not token:
            return None

        payload = self.tokens.verify_token(token)
        if not payload:
            return None

        return await self.resolve_context(payload)

    async def require_auth(self, cookies: Cookies) -> PortalContext:
        """Require a valid token whose scope grants some access.

        Raises:
            UnauthorizedError: Missing, invalid or expired token.
            ForbiddenError: Valid token, but no active client account and no
                legacy customer.
        """
        context = await self.authenticate(cookies)
        if context is None:
            raise UnauthorizedError()

        if not context.scope.has_access:
            logger.info(f"Portal user {context.identity.get('email')!r} has no active client account access")
            raise ForbiddenError("No active client account access")

        return context

    async def require_role(
        self,
        cookies: Cookies,
        allowed_roles: Iterable[ClientRole | str],
    ) -> PortalContext:
        """Require at least one membership whose role is in allowed_roles."""
        roles = _client_roles(allowed_roles)
        context = await self.require_auth(cookies)

        if not context.scope.has_any_role(roles):
            raise ForbiddenError(f"Required role: {' or '.join(r.value for r in roles) or 'none'}")

        return context

    async def require_finance_access(self, cookies: Cookies) -> PortalContext:
        return await self.require_role(cookies, [ClientRole.CLIENT_ADMIN, ClientRole.FINANCE])

    async def require_client_admin(self, cookies: Cookies) -> PortalContext:
        return await self.require_role(cookies, [ClientRole.CLIENT_ADMIN])


def _client_roles(allowed_roles: Iterable[ClientRole | str]) -> list[ClientRole]:
    """Known roles only. An unknown role name can never be held, so it grants nothing."""
    roles = []
    for role in allowed_roles:
        try:
            roles.append(ClientRole(role))
        except ValueError:
            logger.warning(f"Ignoring unknown client role {role!r}")
    return roles


# =============================================================================
# Access assertions
# =============================================================================


def assert_project_access(context: PortalContext, project_id: int) -> None:
    scope = context.scope
    if scope.can_access_project(project_id):
        return

    # Legacy scopes carry synthetic PROJECT grants
    if scope.legacy_customer_id is not None and scope.access_level(GrantType.PROJECT, project_id):
        return

    _deny("project", project_id, context)


def assert_site_access(context: PortalContext, site_id: int) -> None:
    if not context.scope.can_access_site(site_id):
        _deny("site", site_id, context)


def assert_asset_access(context: PortalContext, asset_id: int) -> None:
    if not context.scope.can_access_asset(asset_id):
        _deny("asset", asset_id, context)


def assert_org_access(context: PortalContext, org_id: int) -> None:
    if not context.scope.can_access_org(org_id):
        _deny("organization", org_id, context)


def _deny(kind: str, entity_id: int, context: PortalContext) -> None:
    logger.info(
        f"Denied {kind}={entity_id} for portal_user={context.scope.portal_user_id} "
        f"legacy_customer={context.scope.legacy_customer_id}"
    )
    raise ForbiddenError(f"Access denied to this {kind}")
