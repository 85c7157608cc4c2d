"""
Tenant routing context.

Attached to every request by the tenant routing middleware.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TenantContext:
    """Result of mapping a request host to an organization.

    A lobby context carries no org_id. An unknown subdomain yields a lobby
    context that still carries the attempted org_slug, so callers can
    render "no such organization" instead of a generic redirect.
    """

    org_id: int | None = None
    org_slug: str | None = None
    is_lobby: bool = True
    is_development: bool = False

    @property
    def has_tenant(self) -> bool:
        return self.org_id is not None

    def debug_headers(self) -> dict[str, str]:
        """Diagnostic response headers; only meaningful in development."""
        return {
            "X-Kiisha-Tenant-Org": str(self.org_id) if self.org_id is not None else "lobby",
            "X-Kiisha-Tenant-Slug": self.org_slug or "none",
        }


LOBBY = TenantContext()
