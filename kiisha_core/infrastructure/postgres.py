"""
PostgreSQL grant store.

This module provides the connection helper and the GrantStore /
OrganizationStore implementation backed by PostgreSQL.
Uses psycopg (async) for the connection and dict rows for parsing.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any, TypeVar

import psycopg
from loguru import logger
from psycopg.rows import dict_row

from kiisha_core.config import settings
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
    ScopeGrant,
)
from kiisha_core.runtime.errors import InvalidRecordError, StoreFailure

T = TypeVar("T")


async def get_db_connection(dsn: str | None = None) -> psycopg.AsyncConnection:
    """
    Get an async PostgreSQL database connection returning dict rows.

    Usage:
        async with await get_db_connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute("SELECT * FROM portal_users")

    Returns:
        psycopg.AsyncConnection: A PostgreSQL connection.
    """
    try:
        conn = await psycopg.AsyncConnection.connect(dsn or settings.POSTGRES_DSN, row_factory=dict_row)
        logger.debug("Connected to PostgreSQL")
        return conn
    except Exception as e:
        logger.error(f"Failed to connect to PostgreSQL: {e}")
        raise


class PostgresGrantStore:
    """
    Grant store reading the canonical and legacy portal tables.

    Each method opens its own connection; resolution is a short sequence
    of reads and nothing is written. Every database error, and every row
    carrying a value outside its closed set, is raised as StoreFailure.

    Usage:
        store = PostgresGrantStore()
        grants = await store.list_active_grants([1, 2])
    """

    def __init__(self, dsn: str | None = None):
        """
        Initialize the store.

        Args:
            dsn: PostgreSQL connection string. Defaults to settings.POSTGRES_DSN.
        """
        self.dsn = dsn or settings.POSTGRES_DSN

    async def _fetch(
        self,
        operation: str,
        subject: Any,
        sql: str,
        params: tuple,
    ) -> list[dict[str, Any]]:
        try:
            async with await get_db_connection(self.dsn) as conn:
                async with conn.cursor() as cur:
                    await cur.execute(sql, params)
                    return await cur.fetchall()
        except psycopg.Error as e:
            logger.error(f"Grant store read failed: operation={operation} subject={subject!r}: {e}")
            raise StoreFailure(operation, subject, cause=e) from e

    def _parse(
        self,
        operation: str,
        subject: Any,
        rows: list[dict[str, Any]],
        factory: Callable[[dict[str, Any]], T],
    ) -> list[T]:
        try:
            return [factory(row) for row in rows]
        except InvalidRecordError as e:
            logger.error(
                f"Rejected store row: operation={operation} subject={subject!r} "
                f"{e.record_type}.{e.field}={e.value!r}"
            )
            raise StoreFailure(operation, subject, cause=e) from e
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            # Missing column, bad JSON text or JSON of the wrong shape
            logger.error(f"Malformed store row: operation={operation} subject={subject!r}: {e!r}")
            raise StoreFailure(operation, subject, cause=e) from e

    async def _fetch_one(self, operation, subject, sql, params, factory):
        rows = await self._fetch(operation, subject, sql, params)
        parsed = self._parse(operation, subject, rows[:1], factory)
        return parsed[0] if parsed else None

    # -- GrantStore ---------------------------------------------------------

    async def get_portal_user(self, portal_user_id: int) -> PortalUser | None:
        return await self._fetch_one(
            "get_portal_user",
            portal_user_id,
            "SELECT id, email, name, status, legacy_customer_user_id "
            "FROM portal_users WHERE id = %s LIMIT 1",
            (portal_user_id,),
            PortalUser.from_row,
        )

    async def get_portal_user_by_legacy_customer_user(
        self, customer_user_id: int
    ) -> PortalUser | None:
        return await self._fetch_one(
            "get_portal_user_by_legacy_customer_user",
            customer_user_id,
            "SELECT id, email, name, status, legacy_customer_user_id "
            "FROM portal_users WHERE legacy_customer_user_id = %s LIMIT 1",
            (customer_user_id,),
            PortalUser.from_row,
        )

    async def list_active_memberships(self, portal_user_id: int) -> list[MembershipRow]:
        rows = await self._fetch(
            "list_active_memberships",
            portal_user_id,
            """
            SELECT m.id, m.portal_user_id, m.client_account_id, m.role, m.status,
                   a.code AS account_code, a.name AS account_name, a.status AS account_status
            FROM client_account_memberships m
            JOIN client_accounts a ON a.id = m.client_account_id
            WHERE m.portal_user_id = %s AND m.status = 'active' AND a.status = 'active'
            """,
            (portal_user_id,),
        )

        def _membership_row(row: dict[str, Any]) -> MembershipRow:
            account = ClientAccount.from_row(
                {
                    "id": row["client_account_id"],
                    "code": row["account_code"],
                    "name": row["account_name"],
                    "status": row["account_status"],
                }
            )
            return ClientAccountMembership.from_row(row), account

        return self._parse("list_active_memberships", portal_user_id, rows, _membership_row)

    async def list_active_grants(self, client_account_ids: Iterable[int]) -> list[ScopeGrant]:
        ids = sorted(set(client_account_ids))
        if not ids:
            return []
        rows = await self._fetch(
            "list_active_grants",
            ids,
            "SELECT id, client_account_id, grant_type, org_id, target_id, access_level, "
            "field_policy_id, status FROM client_scope_grants "
            "WHERE client_account_id = ANY(%s) AND status = 'active'",
            (ids,),
        )
        return self._parse("list_active_grants", ids, rows, ScopeGrant.from_row)

    async def list_active_field_policies(self, policy_ids: Iterable[int]) -> list[FieldPolicy]:
        ids = sorted(set(policy_ids))
        if not ids:
            return []
        rows = await self._fetch(
            "list_active_field_policies",
            ids,
            "SELECT id, name, allowed_fields, allowed_metrics, is_default, status "
            "FROM portal_field_policies WHERE id = ANY(%s) AND status = 'active'",
            (ids,),
        )
        return self._parse("list_active_field_policies", ids, rows, FieldPolicy.from_row)

    async def get_default_field_policy(self) -> FieldPolicy | None:
        return await self._fetch_one(
            "get_default_field_policy",
            None,
            "SELECT id, name, allowed_fields, allowed_metrics, is_default, status "
            "FROM portal_field_policies WHERE is_default = TRUE AND status = 'active' "
            "ORDER BY id LIMIT 1",
            (),
            FieldPolicy.from_row,
        )

    async def get_customer_user(self, customer_user_id: int) -> CustomerUser | None:
        return await self._fetch_one(
            "get_customer_user",
            customer_user_id,
            "SELECT id, customer_id, email, name, role, status "
            "FROM customer_users WHERE id = %s LIMIT 1",
            (customer_user_id,),
            CustomerUser.from_row,
        )

    async def get_customer(self, customer_id: int) -> Customer | None:
        return await self._fetch_one(
            "get_customer",
            customer_id,
            "SELECT id, code, name, organization_id, status FROM customers WHERE id = %s LIMIT 1",
            (customer_id,),
            Customer.from_row,
        )

    async def list_active_customer_projects(self, customer_id: int) -> list[CustomerProject]:
        rows = await self._fetch(
            "list_active_customer_projects",
            customer_id,
            "SELECT id, customer_id, project_id, status FROM customer_projects "
            "WHERE customer_id = %s AND status = 'active'",
            (customer_id,),
        )
        return self._parse("list_active_customer_projects", customer_id, rows, CustomerProject.from_row)

    # -- OrganizationStore --------------------------------------------------

    async def get_active_organization_by_slug(self, slug: str) -> Organization | None:
        return await self._fetch_one(
            "get_active_organization_by_slug",
            slug,
            "SELECT id, slug, name, status FROM organizations "
            "WHERE slug = %s AND status = 'active' LIMIT 1",
            (slug,),
            Organization.from_row,
        )

    async def get_active_organization_by_id(self, org_id: int) -> Organization | None:
        return await self._fetch_one(
            "get_active_organization_by_id",
            org_id,
            "SELECT id, slug, name, status FROM organizations "
            "WHERE id = %s AND status = 'active' LIMIT 1",
            (org_id,),
            Organization.from_row,
        )
