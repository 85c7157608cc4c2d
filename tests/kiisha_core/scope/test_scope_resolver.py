"""Unit tests for ScopeResolver."""

import pytest

from kiisha_core.domain.portal import (
    EMPTY_SCOPE,
    ClientAccountMembership,
    ClientRole,
    GrantType,
    PortalUser,
    RecordStatus,
)
from kiisha_core.runtime.errors import StoreFailure
from kiisha_core.scope.resolver import ScopeResolver, aggregate_grants
from tests.kiisha_core.fakes import FailingGrantStore, grant, seed_records, seeded_store


class TestResolve:
    """Tests for resolving a canonical portal user."""

    @pytest.mark.asyncio
    async def test_union_across_memberships(self):
        """Grants from every active membership should be unioned."""
        scope = await ScopeResolver(seeded_store()).resolve(1)

        assert scope.portal_user_id == 1
        assert scope.email == "alice@acme.test"
        assert scope.org_ids == {10, 20}
        assert scope.project_ids == {1000, 1001}
        assert scope.site_ids == {2000}
        assert scope.asset_ids == {3000}
        assert scope.view_ids == {4000}
        assert scope.roles == {ClientRole.CLIENT_ADMIN, ClientRole.FINANCE}

    @pytest.mark.asyncio
    async def test_grant_types_do_not_expand(self):
        """A PROJECT grant should not imply access to sites or assets."""
        scope = await ScopeResolver(seeded_store()).resolve(2)

        assert scope.project_ids == {1001}
        assert scope.site_ids == frozenset()
        assert 1001 not in scope.asset_ids

    @pytest.mark.asyncio
    async def test_missing_user_returns_empty_scope(self):
        scope = await ScopeResolver(seeded_store()).resolve(999)

        assert scope is EMPTY_SCOPE

    @pytest.mark.asyncio
    async def test_inactive_user_returns_empty_scope(self):
        store = seeded_store()
        store.add(PortalUser(id=2, email="bob@globex.test", status=RecordStatus.INACTIVE))

        scope = await ScopeResolver(store).resolve(2)

        assert scope is EMPTY_SCOPE

    @pytest.mark.asyncio
    async def test_user_without_memberships_gets_identity_only(self):
        scope = await ScopeResolver(seeded_store()).resolve(3)

        assert scope.portal_user_id == 3
        assert scope.email == "carol@nowhere.test"
        assert scope.client_accounts == ()
        assert scope.has_access is False

    @pytest.mark.asyncio
    async def test_inactive_membership_contributes_nothing(self):
        """Deactivating a membership should remove its grants on the next resolve."""
        store = seeded_store()
        store.add(
            ClientAccountMembership(
                id=2,
                portal_user_id=1,
                client_account_id=200,
                role=ClientRole.FINANCE,
                status=RecordStatus.INACTIVE,
            )
        )

        scope = await ScopeResolver(store).resolve(1)

        assert scope.org_ids == {10}
        assert scope.project_ids == {1000}
        assert scope.asset_ids == frozenset()
        assert scope.roles == {ClientRole.CLIENT_ADMIN}

    @pytest.mark.asyncio
    async def test_duplicate_grants_are_idempotent(self):
        store = seeded_store()
        store.add(grant(99, 200, GrantType.PROJECT, 1000, org_id=10))

        scope = await ScopeResolver(store).resolve(1)

        assert scope.project_ids == {1000, 1001}

    @pytest.mark.asyncio
    async def test_resolution_is_not_cached(self):
        """Each call should read current grants."""
        store = seeded_store()
        resolver = ScopeResolver(store)

        before = await resolver.resolve(2)
        store.add(grant(50, 200, GrantType.SITE, 2500, org_id=20))
        after = await resolver.resolve(2)

        assert 2500 not in before.site_ids
        assert 2500 in after.site_ids


class TestFieldPolicyResolution:
    """Tests for field policy selection."""

    @pytest.mark.asyncio
    async def test_grant_policies_are_used(self):
        scope = await ScopeResolver(seeded_store()).resolve(1)

        assert [p.id for p in scope.field_policies] == [7]

    @pytest.mark.asyncio
    async def test_default_policy_when_grants_name_none(self):
        scope = await ScopeResolver(seeded_store()).resolve(2)

        assert [p.id for p in scope.field_policies] == [8]


class TestStoreFailure:
    """Store failures must propagate, never become an empty scope."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "operation", ["get_portal_user", "list_active_memberships", "list_active_grants"]
    )
    async def test_store_failure_propagates(self, operation):
        store = FailingGrantStore({operation}, seed_records())

        with pytest.raises(StoreFailure) as exc_info:
            await ScopeResolver(store).resolve(1)

        assert exc_info.value.operation == operation
        assert exc_info.value.retryable is True


class TestAggregateGrants:
    """Tests for the aggregation fold."""

    def test_collects_policy_ids(self):
        aggregate = aggregate_grants(
            [
                grant(1, 1, GrantType.SITE, 5, field_policy_id=3),
                grant(2, 1, GrantType.SITE, 6),
            ]
        )

        assert aggregate.by_type[GrantType.SITE] == {5, 6}
        assert aggregate.policy_ids == {3}
