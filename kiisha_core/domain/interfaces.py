"""
Service interfaces (Protocols) for the portal access-control core.

This module defines the abstract interfaces (using Python Protocols)
that the resolvers depend on. These protocols enable:
- Swapping the grant store backend (Postgres, in-memory)
- Dependency Injection in the FastAPI composition root
- Easy faking in tests
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol, runtime_checkable

from kiisha_core.domain.portal import (
    ClientAccount,
    ClientAccountMembership,
    Customer,
    CustomerProject,
    CustomerUser,
    FieldPolicy,
    Organization,
    PortalScope,
    PortalUser,
    ScopeGrant,
)

MembershipRow = tuple[ClientAccountMembership, ClientAccount]


@runtime_checkable
class GrantStore(Protocol):
    """Read-only query surface over portal users, memberships, grants and policies.

    Every method raises StoreFailure when the backend cannot answer.
    """

    async def get_portal_user(self, portal_user_id: int) -> PortalUser | None:
        """Fetch a portal user by id, whatever its status."""
        ...

    async def get_portal_user_by_legacy_customer_user(
        self, customer_user_id: int
    ) -> PortalUser | None:
        """Reverse lookup of the canonical user linked to a legacy customer user."""
        ...

    async def list_active_memberships(self, portal_user_id: int) -> list[MembershipRow]:
        """
        Active memberships of a user, joined to their client accounts.

        Only rows where both the membership and the client account are
        active are returned.
        """
        ...

    async def list_active_grants(self, client_account_ids: Iterable[int]) -> list[ScopeGrant]:
        """Active scope grants owned by any of the given client accounts."""
        ...

    async def list_active_field_policies(self, policy_ids: Iterable[int]) -> list[FieldPolicy]:
        """Active field policies whose id is in policy_ids."""
        ...

    async def get_default_field_policy(self) -> FieldPolicy | None:
        """The single active policy marked is_default, if any."""
        ...

    async def get_customer_user(self, customer_user_id: int) -> CustomerUser | None:
        ...

    async def get_customer(self, customer_id: int) -> Customer | None:
        ...

    async def list_active_customer_projects(self, customer_id: int) -> list[CustomerProject]:
        ...


@runtime_checkable
class OrganizationStore(Protocol):
    """Organization lookups used by tenant resolution."""

    async def get_active_organization_by_slug(self, slug: str) -> Organization | None:
        ...

    async def get_active_organization_by_id(self, org_id: int) -> Organization | None:
        ...


@runtime_checkable
class ScopeSource(Protocol):
    """Anything that turns a subject id into a PortalScope."""

    async def resolve(self, subject_id: int) -> PortalScope:
        """
        Resolve the aggregated scope for one subject.

        Args:
            subject_id: Portal user id or legacy customer user id,
                depending on the implementation.

        Returns:
            PortalScope: A freshly built, immutable scope.
        """
        ...
