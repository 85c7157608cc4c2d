"""
Tenancy module for the Kiisha portal.

Provides subdomain-based tenant resolution and the middleware that
attaches it to requests.
"""

from kiisha_core.tenancy.middleware import TenantRoutingMiddleware, get_tenant_context
from kiisha_core.tenancy.resolver import (
    RESERVED_SUBDOMAINS,
    TenantResolver,
    build_lobby_url,
    build_org_url,
)

__all__ = [
    "TenantResolver",
    "TenantRoutingMiddleware",
    "get_tenant_context",
    "build_org_url",
    "build_lobby_url",
    "RESERVED_SUBDOMAINS",
]
