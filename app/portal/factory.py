"""
Composition root for the portal access-control services.

Builds the grant store, resolvers, token service, guard and rate limiter
from settings and installs them on the FastAPI application state.
"""

from __future__ import annotations

import secrets
from collections.abc import Callable
from dataclasses import dataclass

from fastapi import FastAPI
from loguru import logger

from kiisha_core.auth.guard import AuthGuard
from kiisha_core.auth.token_service import PortalTokenService
from kiisha_core.config import settings
from kiisha_core.infrastructure.memory_store import InMemoryGrantStore
from kiisha_core.infrastructure.postgres import PostgresGrantStore
from kiisha_core.infrastructure.rate_limiter import FixedWindowRateLimiter
from kiisha_core.scope.legacy import LegacyScopeBridge
from kiisha_core.scope.resolver import ScopeResolver
from kiisha_core.tenancy.resolver import TenantResolver


@dataclass
class PortalServices:
    """Everything a portal request needs, wired once per process."""

    store: InMemoryGrantStore | PostgresGrantStore
    tenant_resolver: TenantResolver
    scope_resolver: ScopeResolver
    legacy_bridge: LegacyScopeBridge
    tokens: PortalTokenService
    guard: AuthGuard
    rate_limiter: FixedWindowRateLimiter


def build_grant_store() -> InMemoryGrantStore | PostgresGrantStore:
    """Get the grant store selected by GRANT_STORE_BACKEND."""
    backend = settings.GRANT_STORE_BACKEND.lower()
    if backend == "postgres":
        return PostgresGrantStore()
    if backend != "memory":
        raise ValueError(f"Unknown GRANT_STORE_BACKEND: {settings.GRANT_STORE_BACKEND}")
    return InMemoryGrantStore()


def _token_secret(secret: str | None) -> str:
    secret = secret or settings.JWT_SECRET
    if secret:
        return secret
    if settings.is_production:
        raise ValueError("JWT_SECRET must be configured in production")
    logger.warning("JWT_SECRET not set; using an ephemeral development secret")
    return secrets.token_urlsafe(32)


def build_portal_services(
    store: InMemoryGrantStore | PostgresGrantStore | None = None,
    secret: str | None = None,
    clock: Callable[[], int] | None = None,
) -> PortalServices:
    """
    Wire the portal services.

    Args:
        store: Grant store to use. Defaults to build_grant_store().
        secret: Token signing secret. Defaults to settings.JWT_SECRET.
        clock: Millisecond clock for the rate limiter (tests).

    Returns:
        PortalServices: The wired services.
    """
    store = store if store is not None else build_grant_store()
    scope_resolver = ScopeResolver(store)
    legacy_bridge = LegacyScopeBridge(store, scope_resolver)
    tokens = PortalTokenService(secret=_token_secret(secret))
    rate_limiter = FixedWindowRateLimiter(clock=clock) if clock else FixedWindowRateLimiter()

    return PortalServices(
        store=store,
        tenant_resolver=TenantResolver(store),
        scope_resolver=scope_resolver,
        legacy_bridge=legacy_bridge,
        tokens=tokens,
        guard=AuthGuard(tokens, scope_resolver, legacy_bridge),
        rate_limiter=rate_limiter,
    )


def install_portal_services(app: FastAPI, services: PortalServices) -> None:
    """Expose the services to dependencies through app.state."""
    app.state.portal_services = services
    app.state.auth_guard = services.guard
    app.state.rate_limiter = services.rate_limiter
