"""
FastAPI tenant routing middleware.

Resolves the tenant for every request from its host (or, on development
hosts, the override headers) and attaches a TenantContext to request.state.
"""

from __future__ import annotations

from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from kiisha_core.config import settings
from kiisha_core.domain.tenant import LOBBY, TenantContext
from kiisha_core.tenancy.resolver import TenantResolver


class TenantRoutingMiddleware(BaseHTTPMiddleware):
    """Middleware to attach tenant context to each request.

    In development the resolved tenant is echoed back through the
    X-Kiisha-Tenant-Org and X-Kiisha-Tenant-Slug headers. Those headers are
    never set in production.
    """

    def __init__(self, app, resolver: TenantResolver):
        """Initialize tenant middleware.

        Args:
            app: The FastAPI/Starlette application.
            resolver: Tenant resolver bound to an organization store.
        """
        super().__init__(app)
        self.resolver = resolver

    async def dispatch(self, request: Request, call_next):
        """Resolve tenant context, then continue with the request."""
        host = request.headers.get("host") or (request.url.hostname or "")

        try:
            # Production deployments never honor dev hosts or override headers
            is_dev = False if settings.is_production else None
            tenant = await self.resolver.resolve(host, request.headers, is_dev_environment=is_dev)
        except Exception as e:
            logger.error(f"Tenant routing error for host={host!r}: {e}")
            tenant = LOBBY

        request.state.tenant = tenant

        response = await call_next(request)

        if tenant.is_development:
            for name, value in tenant.debug_headers().items():
                response.headers[name] = value

        return response


def get_tenant_context(request: Request) -> TenantContext:
    """Tenant context attached by the middleware, or the production lobby."""
    return getattr(request.state, "tenant", None) or LOBBY
