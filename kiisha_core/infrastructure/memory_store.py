"""
In-memory grant store.

This implementation keeps every record in plain dictionaries,
useful for development and testing without PostgreSQL.
"""

from __future__ import annotations

from collections.abc import Iterable

from loguru import logger

from kiisha_core.domain.interfaces import MembershipRow
from kiisha_core.domain.portal import (
    ClientAccount,
    ClientAccountMembership,
    Customer,
    CustomerProject,
    CustomerUser,
    FieldPolicy,
    Organization,
    PortalUser,
    RecordStatus,
    ScopeGrant,
)

ACTIVE = RecordStatus.ACTIVE

Record = (
    Organization
    | ClientAccount
    | PortalUser
    | ClientAccountMembership
    | ScopeGrant
    | FieldPolicy
    | Customer
    | CustomerUser
    | CustomerProject
)


class InMemoryGrantStore:
    """
    Dictionary-backed GrantStore and OrganizationStore.

    Records are replaced wholesale on add(), so a test can deactivate a
    membership by adding a copy with status=inactive.

    Usage:
        store = InMemoryGrantStore()
        store.add(PortalUser(id=1, email="a@example.com"))
        user = await store.get_portal_user(1)
    """

    def __init__(self, records: Iterable[Record] = ()):
        self._tables: dict[type, dict[int, Record]] = {}
        for record in records:
            self.add(record)
        logger.debug("InMemoryGrantStore initialized")

    def add(self, *records: Record) -> None:
        """Insert or replace records, keyed by type and id."""
        for record in records:
            self._tables.setdefault(type(record), {})[record.id] = record

    def _rows(self, record_type: type) -> list:
        return list(self._tables.get(record_type, {}).values())

    def _get(self, record_type: type, record_id: int):
        return self._tables.get(record_type, {}).get(record_id)

    # -- GrantStore ---------------------------------------------------------

    async def get_portal_user(self, portal_user_id: int) -> PortalUser | None:
        return self._get(PortalUser, portal_user_id)

    async def get_portal_user_by_legacy_customer_user(
        self, customer_user_id: int
    ) -> PortalUser | None:
        for user in self._rows(PortalUser):
            if user.legacy_customer_user_id == customer_user_id:
                return user
        return None

    async def list_active_memberships(self, portal_user_id: int) -> list[MembershipRow]:
        rows: list[MembershipRow] = []
        for membership in self._rows(ClientAccountMembership):
            if membership.portal_user_id != portal_user_id or membership.status != ACTIVE:
                continue
            account = self._get(ClientAccount, membership.client_account_id)
            if account is not None and account.status == ACTIVE:
                rows.append((membership, account))
        return rows

    async def list_active_grants(self, client_account_ids: Iterable[int]) -> list[ScopeGrant]:
        ids = set(client_account_ids)
        return [
            g for g in self._rows(ScopeGrant)
            if g.client_account_id in ids and g.status == ACTIVE
        ]

    async def list_active_field_policies(self, policy_ids: Iterable[int]) -> list[FieldPolicy]:
        ids = set(policy_ids)
        return [p for p in self._rows(FieldPolicy) if p.id in ids and p.status == ACTIVE]

    async def get_default_field_policy(self) -> FieldPolicy | None:
        for policy in self._rows(FieldPolicy):
            if policy.is_default and policy.status == ACTIVE:
                return policy
        return None

    async def get_customer_user(self, customer_user_id: int) -> CustomerUser | None:
        return self._get(CustomerUser, customer_user_id)

    async def get_customer(self, customer_id: int) -> Customer | None:
        return self._get(Customer, customer_id)

    async def list_active_customer_projects(self, customer_id: int) -> list[CustomerProject]:
        return [
            cp for cp in self._rows(CustomerProject)
            if cp.customer_id == customer_id and cp.status == ACTIVE
        ]

    # -- OrganizationStore --------------------------------------------------

    async def get_active_organization_by_slug(self, slug: str) -> Organization | None:
        for org in self._rows(Organization):
            if org.slug == slug and org.status == ACTIVE:
                return org
        return None

    async def get_active_organization_by_id(self, org_id: int) -> Organization | None:
        org = self._get(Organization, org_id)
        if org is not None and org.status == ACTIVE:
            return org
        return None
