"""
Portal scope resolution (canonical grant model).

Resolves what organizations, projects, sites, assets and views a portal user
can reach, by aggregating every active scope grant owned by the client
accounts the user is an active member of.

Aggregation is a set union: duplicate grants across memberships are
idempotent and nothing is ever subtracted. A PROJECT grant does not imply
its sites or assets; each grant type only fills its own set.
"""

from __future__ import annotations

from loguru import logger

from kiisha_core.domain.interfaces import GrantStore
from kiisha_core.domain.portal import (
    EMPTY_SCOPE,
    ClientAccountRole,
    FieldPolicy,
    GrantType,
    PortalScope,
    RecordStatus,
    ScopeGrant,
)
from kiisha_core.runtime.errors import StoreFailure


class ScopeResolver:
    """
    Resolve a PortalScope for a canonical portal user.

    Reads are strictly sequential: field policies depend on ids collected
    from grants. Store failures propagate; they are never turned into an
    empty scope.

    Usage:
        resolver = ScopeResolver(store)
        scope = await resolver.resolve(portal_user_id)
    """

    def __init__(self, store: GrantStore):
        self.store = store

    async def resolve(self, portal_user_id: int) -> PortalScope:
        """
        Resolve the aggregated scope for one portal user.

        Args:
            portal_user_id: Canonical portal user id.

        Returns:
            PortalScope: EMPTY_SCOPE for a missing or inactive user; an
            identity-only scope for a user with no active memberships;
            otherwise the union of all grants.

        Raises:
            StoreFailure: If the grant store could not answer a read.
        """
        try:
            return await self._resolve(portal_user_id)
        except StoreFailure as e:
            logger.error(
                f"Scope resolution failed for portal_user={portal_user_id} "
                f"operation={e.operation} debug_id={e.debug_id}"
            )
            raise

    async def _resolve(self, portal_user_id: int) -> PortalScope:
        user = await self.store.get_portal_user(portal_user_id)
        if user is None or user.status != RecordStatus.ACTIVE:
            logger.debug(f"No active portal user {portal_user_id}")
            return EMPTY_SCOPE

        memberships = await self.store.list_active_memberships(user.id)
        if not memberships:
            logger.debug(f"Portal user {user.id} has no active client account memberships")
            return PortalScope(
                portal_user_id=user.id,
                email=user.email,
                name=user.name,
                legacy_customer_user_id=user.legacy_customer_user_id,
            )

        client_accounts = tuple(
            ClientAccountRole.from_membership(membership, account)
            for membership, account in memberships
        )
        account_ids = sorted({ca.id for ca in client_accounts})

        grants = await self.store.list_active_grants(account_ids)
        aggregate = aggregate_grants(grants)

        field_policies = await self._resolve_field_policies(aggregate.policy_ids)

        logger.debug(
            f"Resolved scope for portal_user={user.id}: accounts={len(client_accounts)} "
            f"grants={len(grants)} policies={len(field_policies)}"
        )

        return PortalScope(
            portal_user_id=user.id,
            email=user.email,
            name=user.name,
            client_accounts=client_accounts,
            org_ids=frozenset(aggregate.org_ids),
            project_ids=frozenset(aggregate.by_type[GrantType.PROJECT]),
            site_ids=frozenset(aggregate.by_type[GrantType.SITE]),
            asset_ids=frozenset(aggregate.by_type[GrantType.ASSET]),
            view_ids=frozenset(aggregate.by_type[GrantType.VIEW]),
            grants=tuple(grants),
            field_policies=field_policies,
            legacy_customer_user_id=user.legacy_customer_user_id,
        )

    async def _resolve_field_policies(self, policy_ids: set[int]) -> tuple[FieldPolicy, ...]:
        policies: list[FieldPolicy] = []
        if policy_ids:
            policies = await self.store.list_active_field_policies(sorted(policy_ids))

        # Fall back to the default policy; none at all means no redaction.
        if not policies:
            default = await self.store.get_default_field_policy()
            if default is not None:
                policies = [default]

        return tuple(policies)


class GrantAggregate:
    """Mutable accumulator used while folding grants into id sets."""

    def __init__(self):
        self.org_ids: set[int] = set()
        self.by_type: dict[GrantType, set[int]] = {grant_type: set() for grant_type in GrantType}
        self.policy_ids: set[int] = set()

    def add(self, grant: ScopeGrant) -> None:
        self.org_ids.add(grant.org_id)
        self.by_type[grant.grant_type].add(grant.target_id)
        if grant.field_policy_id is not None:
            self.policy_ids.add(grant.field_policy_id)


def aggregate_grants(grants: list[ScopeGrant]) -> GrantAggregate:
    """Fold grants into org, per-type target and policy id sets."""
    aggregate = GrantAggregate()
    for grant in grants:
        aggregate.add(grant)
    return aggregate
