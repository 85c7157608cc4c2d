"""
Legacy scope bridge.

Produces a canonical PortalScope for users who only exist in the legacy
customer / customer-user / customer-project model, so downstream code never
branches on which model applies.

When a legacy customer user is linked to a canonical portal user, the bridge
defers entirely to ScopeResolver. The legacy record then contributes identity
metadata only, never additional access.
"""

from __future__ import annotations

from loguru import logger

from kiisha_core.domain.interfaces import GrantStore
from kiisha_core.domain.portal import (
    EMPTY_SCOPE,
    AccessLevel,
    ClientAccountRole,
    ClientRole,
    Customer,
    CustomerProject,
    CustomerUser,
    GrantType,
    LegacyRole,
    PortalScope,
    RecordStatus,
    ScopeGrant,
)
from kiisha_core.scope.resolver import ScopeResolver


def legacy_client_role(role: LegacyRole) -> ClientRole:
    """Only legacy admins become client admins; everyone else is a viewer."""
    return ClientRole.CLIENT_ADMIN if role == LegacyRole.ADMIN else ClientRole.VIEWER


class LegacyScopeBridge:
    """
    Resolve a PortalScope from a legacy customer user id.

    Usage:
        bridge = LegacyScopeBridge(store, ScopeResolver(store))
        scope = await bridge.resolve_from_legacy(customer_user_id)
    """

    def __init__(self, store: GrantStore, canonical: ScopeResolver | None = None):
        self.store = store
        self.canonical = canonical or ScopeResolver(store)

    async def resolve(self, customer_user_id: int) -> PortalScope:
        return await self.resolve_from_legacy(customer_user_id)

    async def resolve_from_legacy(self, customer_user_id: int) -> PortalScope:
        """
        Resolve the scope of a legacy customer user.

        Args:
            customer_user_id: Legacy customer user id.

        Returns:
            PortalScope: EMPTY_SCOPE for a missing/inactive user or customer;
            the canonical scope annotated with legacy ids when linked;
            otherwise a scope built from legacy customer projects.

        Raises:
            StoreFailure: If the grant store could not answer a read.
        """
        customer_user = await self.store.get_customer_user(customer_user_id)
        if customer_user is None or customer_user.status != RecordStatus.ACTIVE:
            return EMPTY_SCOPE

        customer = await self.store.get_customer(customer_user.customer_id)
        if customer is None or customer.status != RecordStatus.ACTIVE:
            return EMPTY_SCOPE

        linked = await self.store.get_portal_user_by_legacy_customer_user(customer_user.id)
        if linked is not None:
            logger.debug(
                f"Legacy customer_user={customer_user.id} linked to portal_user={linked.id}; "
                "using canonical scope"
            )
            scope = await self.canonical.resolve(linked.id)
            # No active account in the canonical model means no portal access.
            if not scope.client_accounts:
                return scope
            return scope.with_legacy(customer.id, customer_user.id)

        projects = await self.store.list_active_customer_projects(customer.id)
        logger.debug(
            f"Legacy scope for customer_user={customer_user.id}: projects={len(projects)}"
        )
        return build_legacy_scope(customer_user, customer, projects)


def build_legacy_scope(
    customer_user: CustomerUser,
    customer: Customer,
    projects: list[CustomerProject],
) -> PortalScope:
    """Shape legacy rows as a canonical scope with one synthetic account."""
    org_id = customer.organization_id or 0
    grants = tuple(
        ScopeGrant(
            id=cp.id,
            client_account_id=customer.id,
            grant_type=GrantType.PROJECT,
            org_id=org_id,
            target_id=cp.project_id,
            access_level=AccessLevel.FULL,
        )
        for cp in projects
    )
    return PortalScope(
        portal_user_id=0,
        email=customer_user.email,
        name=customer_user.name,
        client_accounts=(
            ClientAccountRole(
                id=customer.id,
                code=customer.code or f"LEGACY-{customer.id}",
                name=customer.name,
                role=legacy_client_role(customer_user.role),
            ),
        ),
        org_ids=frozenset([customer.organization_id]) if customer.organization_id else frozenset(),
        project_ids=frozenset(cp.project_id for cp in projects),
        grants=grants,
        legacy_customer_id=customer.id,
        legacy_customer_user_id=customer_user.id,
    )
