"""
FastAPI application for the Kiisha customer portal.

Wires tenant routing, portal authentication and rate limiting around the
portal router.

Usage:
    uvicorn app.main:app --reload --port 8081
"""

import math
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from app.portal.factory import PortalServices, build_portal_services, install_portal_services
from app.portal.routes import router as portal_router
from kiisha_core.config import settings
from kiisha_core.infrastructure.rate_limiter import _rate_limit_exceeded_handler, limiter
from kiisha_core.logging import setup_logging
from kiisha_core.runtime.errors import RateLimitedError, ServiceError
from kiisha_core.tenancy import TenantRoutingMiddleware


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Render a ServiceError without leaking internal detail."""
    if exc.status_code >= 500:
        logger.error(f"{exc!r} on {request.method} {request.url.path}: {exc.message_debug}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.code})


async def rate_limited_handler(request: Request, exc: RateLimitedError) -> JSONResponse:
    """429 with the window headers."""
    headers = {
        "X-RateLimit-Limit": str(exc.limit),
        "X-RateLimit-Remaining": "0",
        "X-RateLimit-Reset": str(math.ceil(exc.reset_at_ms / 1000)),
        "Retry-After": str(exc.retry_after_seconds),
    }
    return JSONResponse(status_code=429, content=exc.to_dict(), headers=headers)


def create_app(services: PortalServices | None = None) -> FastAPI:
    """
    Build the portal application.

    Args:
        services: Pre-wired portal services (tests). Built from settings
            when omitted.

    Returns:
        FastAPI: The configured application.
    """
    services = services or build_portal_services()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await services.rate_limiter.start()
        try:
            yield
        finally:
            await services.rate_limiter.stop()

    app = FastAPI(
        title="Kiisha Portal",
        description="Multi-tenant customer portal access control",
        version="0.1.0",
        lifespan=lifespan,
    )
    install_portal_services(app, services)

    # General per-IP limit
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    # Sensitive-endpoint limits and typed service errors
    app.add_exception_handler(RateLimitedError, rate_limited_handler)
    app.add_exception_handler(ServiceError, service_error_handler)

    app.add_middleware(TenantRoutingMiddleware, resolver=services.tenant_resolver)

    # NOTE: CORS must be the last middleware added so it runs FIRST
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(portal_router)

    @app.get("/health")
    def health():
        """
        Health check endpoint.

        Returns:
            dict: Status and service information.
        """
        return {"status": "ok", "service": settings.SERVICE_NAME, "version": "0.1.0"}

    return app


# Initialize logging
setup_logging()

app = create_app()
