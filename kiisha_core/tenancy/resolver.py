"""
Subdomain-based tenant resolution.

Maps an inbound request host to an organization:
- {slug}.kiisha.io -> that organization, when active
- app.kiisha.io -> lobby (no tenant)
- localhost / dev hosts -> explicit override headers, else lobby

Lookup errors fall back to the lobby, never to a wrong tenant.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from loguru import logger

from kiisha_core.config import settings
from kiisha_core.domain.interfaces import OrganizationStore
from kiisha_core.domain.portal import Organization
from kiisha_core.domain.tenant import TenantContext

# Known non-tenant subdomains
RESERVED_SUBDOMAINS = frozenset(
    {
        "app", "www", "api", "admin", "support", "help", "docs", "status",
        "mail", "email", "smtp", "imap", "pop", "ftp", "sftp",
        "cdn", "static", "assets", "media", "images",
        "dev", "staging", "test", "qa", "demo",
    }
)

LOBBY_SUBDOMAIN = "app"

# Explicit org override headers (development only)
ORG_HEADER = "x-kiisha-org"
ORG_SLUG_HEADER = "x-kiisha-org-slug"


class TenantResolver:
    """
    Resolve a TenantContext from a request host and headers.

    Usage:
        resolver = TenantResolver(store)
        tenant = await resolver.resolve("acme.kiisha.io", request.headers)
    """

    def __init__(
        self,
        org_store: OrganizationStore,
        dev_markers: Iterable[str] | None = None,
        reserved: Iterable[str] = RESERVED_SUBDOMAINS,
    ):
        self.org_store = org_store
        self.dev_markers = tuple(dev_markers if dev_markers is not None else settings.DEV_HOST_MARKERS)
        self.reserved = frozenset(reserved)

    def is_development_host(self, host: str) -> bool:
        return any(marker in host for marker in self.dev_markers)

    async def resolve(
        self,
        host: str,
        headers: Mapping[str, str] | None = None,
        is_dev_environment: bool | None = None,
    ) -> TenantContext:
        """
        Map a host (and, in development, override headers) to a tenant.

        Args:
            host: The request host, with or without port.
            headers: Request headers; only read in development.
            is_dev_environment: Force development or production handling.
                Detected from the host when None.

        Returns:
            TenantContext: The resolved tenant or a lobby context.
        """
        host = (host or "").strip()
        if is_dev_environment is None:
            is_dev_environment = self.is_development_host(host)

        if is_dev_environment:
            return await self._resolve_development(_lower_keys(headers or {}))
        return await self._resolve_production(host)

    async def _resolve_development(self, headers: Mapping[str, str]) -> TenantContext:
        org_id_header = headers.get(ORG_HEADER)
        if org_id_header:
            try:
                org_id = int(org_id_header)
            except ValueError:
                logger.debug(f"Ignoring non-numeric {ORG_HEADER} header: {org_id_header!r}")
            else:
                org = await self._lookup(self.org_store.get_active_organization_by_id, org_id)
                if org is not None:
                    return TenantContext(org_id=org.id, org_slug=org.slug, is_lobby=False, is_development=True)

        org_slug_header = headers.get(ORG_SLUG_HEADER)
        if org_slug_header:
            org = await self._lookup(self.org_store.get_active_organization_by_slug, org_slug_header)
            if org is not None:
                return TenantContext(org_id=org.id, org_slug=org.slug, is_lobby=False, is_development=True)

        return TenantContext(is_lobby=True, is_development=True)

    async def _resolve_production(self, host: str) -> TenantContext:
        hostname = host.split(":", 1)[0]
        parts = hostname.split(".")

        # Need at least 3 labels for a subdomain: tenant.kiisha.io
        if len(parts) < 3:
            return TenantContext(is_lobby=True)

        subdomain = parts[0].lower()

        if subdomain in self.reserved:
            return TenantContext(is_lobby=subdomain == LOBBY_SUBDOMAIN)

        org = await self._lookup(self.org_store.get_active_organization_by_slug, subdomain)
        if org is not None:
            return TenantContext(org_id=org.id, org_slug=subdomain, is_lobby=False)

        # Unknown subdomain: lobby, but keep the attempted slug for messaging
        return TenantContext(org_slug=subdomain, is_lobby=True)

    async def _lookup(self, finder, key) -> Organization | None:
        try:
            return await finder(key)
        except Exception as e:
            logger.error(f"Organization lookup failed for {key!r}, falling back to lobby: {e}")
            return None


def _lower_keys(headers: Mapping[str, str]) -> dict[str, str]:
    return {key.lower(): value for key, value in headers.items()}


def build_org_url(org_slug: str, path: str = "/") -> str:
    """URL of an organization's own subdomain."""
    return f"{settings.url_scheme}://{org_slug}.{settings.KIISHA_BASE_HOST}{path}"


def build_lobby_url(path: str = "/") -> str:
    """URL of the no-tenant lobby."""
    return f"{settings.url_scheme}://{LOBBY_SUBDOMAIN}.{settings.KIISHA_BASE_HOST}{path}"
