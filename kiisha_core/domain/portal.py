"""
Portal access-control domain models.

This module defines the records read from the grant store and the derived,
immutable PortalScope:
- Closed enums for every status, role, grant type and access level
- Typed store records, parsed from raw rows at the store boundary
- PortalScope: the aggregated access result for one resolution call
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, TypeVar

from kiisha_core.runtime.errors import InvalidRecordError


class RecordStatus(str, Enum):
    """Lifecycle status shared by every persisted record."""

    ACTIVE = "active"
    INACTIVE = "inactive"


class ClientRole(str, Enum):
    """Role a portal user holds inside one client account."""

    CLIENT_ADMIN = "CLIENT_ADMIN"
    FINANCE = "FINANCE"
    OPS = "OPS"
    VIEWER = "VIEWER"


class GrantType(str, Enum):
    """How a scope grant's target_id is interpreted."""

    VIEW = "VIEW"
    PROJECT = "PROJECT"
    SITE = "SITE"
    ASSET = "ASSET"


class AccessLevel(str, Enum):
    FULL = "full"
    LIMITED = "limited"
    REPORTS_ONLY = "reports_only"


class LegacyRole(str, Enum):
    """Role on a pre-migration customer user."""

    ADMIN = "admin"
    USER = "user"
    OWNER = "owner"
    VIEWER = "viewer"


class EntityKind(str, Enum):
    """Entity kinds a field policy can constrain."""

    INVOICE = "invoice"
    PROJECT = "project"
    SITE = "site"
    ASSET = "asset"
    MEASUREMENT = "measurement"
    WORK_ORDER = "workOrder"
    DOCUMENT = "document"


E = TypeVar("E", bound=Enum)


def _parse_enum(enum_cls: type[E], value: Any, record_type: str, field_name: str) -> E:
    """Parse a raw row value into a closed enum, rejecting anything else."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        raise InvalidRecordError(record_type, field_name, value) from None


def _parse_fields(raw: Any) -> dict[str, tuple[str, ...]]:
    if raw is None:
        return {}
    if isinstance(raw, str):
        raw = json.loads(raw)
    return {kind: tuple(names) for kind, names in raw.items() if names is not None}


def _parse_metrics(raw: Any) -> tuple[str, ...] | None:
    if raw is None:
        return None
    if isinstance(raw, str):
        raw = json.loads(raw)
    return tuple(raw)


# =============================================================================
# Store records
# =============================================================================


@dataclass(frozen=True)
class Organization:
    """A tenant, addressed by its subdomain slug."""

    id: int
    slug: str
    name: str
    status: RecordStatus = RecordStatus.ACTIVE

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Organization":
        return cls(
            id=row["id"],
            slug=row["slug"],
            name=row.get("name") or row["slug"],
            status=_parse_enum(RecordStatus, row.get("status", "active"), "organization", "status"),
        )


@dataclass(frozen=True)
class ClientAccount:
    id: int
    code: str
    name: str
    status: RecordStatus = RecordStatus.ACTIVE

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ClientAccount":
        return cls(
            id=row["id"],
            code=row["code"],
            name=row["name"],
            status=_parse_enum(RecordStatus, row["status"], "client_account", "status"),
        )


@dataclass(frozen=True)
class PortalUser:
    """Canonical identity of a portal-facing human.

    legacy_customer_user_id is a weak back-reference used only for
    migration bridging.
    """

    id: int
    email: str
    name: str | None = None
    status: RecordStatus = RecordStatus.ACTIVE
    legacy_customer_user_id: int | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "PortalUser":
        return cls(
            id=row["id"],
            email=row["email"],
            name=row.get("name"),
            status=_parse_enum(RecordStatus, row["status"], "portal_user", "status"),
            legacy_customer_user_id=row.get("legacy_customer_user_id"),
        )


@dataclass(frozen=True)
class ClientAccountMembership:
    id: int
    portal_user_id: int
    client_account_id: int
    role: ClientRole
    status: RecordStatus = RecordStatus.ACTIVE

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ClientAccountMembership":
        return cls(
            id=row["id"],
            portal_user_id=row["portal_user_id"],
            client_account_id=row["client_account_id"],
            role=_parse_enum(ClientRole, row["role"], "membership", "role"),
            status=_parse_enum(RecordStatus, row["status"], "membership", "status"),
        )


@dataclass(frozen=True)
class ScopeGrant:
    """The unit of access: one client account to one target entity."""

    id: int
    client_account_id: int
    grant_type: GrantType
    org_id: int
    target_id: int
    access_level: AccessLevel = AccessLevel.FULL
    field_policy_id: int | None = None
    status: RecordStatus = RecordStatus.ACTIVE

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ScopeGrant":
        return cls(
            id=row["id"],
            client_account_id=row["client_account_id"],
            grant_type=_parse_enum(GrantType, row["grant_type"], "scope_grant", "grant_type"),
            org_id=row["org_id"],
            target_id=row["target_id"],
            access_level=_parse_enum(AccessLevel, row["access_level"], "scope_grant", "access_level"),
            field_policy_id=row.get("field_policy_id"),
            status=_parse_enum(RecordStatus, row["status"], "scope_grant", "status"),
        )


@dataclass(frozen=True)
class FieldPolicy:
    """Named allow-list of field names per entity kind."""

    id: int
    name: str
    allowed_fields: Mapping[str, tuple[str, ...]] = field(default_factory=dict, hash=False)
    allowed_metrics: tuple[str, ...] | None = None
    is_default: bool = False
    status: RecordStatus = RecordStatus.ACTIVE

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "FieldPolicy":
        return cls(
            id=row["id"],
            name=row["name"],
            allowed_fields=_parse_fields(row.get("allowed_fields")),
            allowed_metrics=_parse_metrics(row.get("allowed_metrics")),
            is_default=bool(row.get("is_default", False)),
            status=_parse_enum(RecordStatus, row["status"], "field_policy", "status"),
        )

    def fields_for(self, entity_kind: EntityKind | str) -> tuple[str, ...]:
        kind = entity_kind.value if isinstance(entity_kind, EntityKind) else entity_kind
        return tuple(self.allowed_fields.get(kind, ()))


@dataclass(frozen=True)
class Customer:
    """Legacy customer: owns customer users, linked to projects."""

    id: int
    name: str
    code: str | None = None
    organization_id: int | None = None
    status: RecordStatus = RecordStatus.ACTIVE

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Customer":
        return cls(
            id=row["id"],
            name=row["name"],
            code=row.get("code"),
            organization_id=row.get("organization_id"),
            status=_parse_enum(RecordStatus, row["status"], "customer", "status"),
        )


@dataclass(frozen=True)
class CustomerUser:
    id: int
    customer_id: int
    email: str
    name: str | None = None
    role: LegacyRole = LegacyRole.USER
    status: RecordStatus = RecordStatus.ACTIVE

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "CustomerUser":
        return cls(
            id=row["id"],
            customer_id=row["customer_id"],
            email=row["email"],
            name=row.get("name"),
            role=_parse_enum(LegacyRole, row.get("role") or "user", "customer_user", "role"),
            status=_parse_enum(RecordStatus, row["status"], "customer_user", "status"),
        )


@dataclass(frozen=True)
class CustomerProject:
    id: int
    customer_id: int
    project_id: int
    status: RecordStatus = RecordStatus.ACTIVE

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "CustomerProject":
        return cls(
            id=row["id"],
            customer_id=row["customer_id"],
            project_id=row["project_id"],
            status=_parse_enum(RecordStatus, row["status"], "customer_project", "status"),
        )


# =============================================================================
# Derived values
# =============================================================================


@dataclass(frozen=True)
class ClientAccountRole:
    """A client account as seen from one portal user, with their role in it."""

    id: int
    code: str
    name: str
    role: ClientRole

    @classmethod
    def from_membership(
        cls, membership: ClientAccountMembership, account: ClientAccount
    ) -> "ClientAccountRole":
        return cls(id=account.id, code=account.code, name=account.name, role=membership.role)


@dataclass(frozen=True)
class PortalScope:
    """Resolved, aggregated access for one portal user at one point in time.

    Built fresh by every resolution call and never mutated afterwards.
    """

    portal_user_id: int = 0
    email: str = ""
    name: str | None = None
    client_accounts: tuple[ClientAccountRole, ...] = ()
    org_ids: frozenset[int] = frozenset()
    project_ids: frozenset[int] = frozenset()
    site_ids: frozenset[int] = frozenset()
    asset_ids: frozenset[int] = frozenset()
    view_ids: frozenset[int] = frozenset()
    grants: tuple[ScopeGrant, ...] = ()
    field_policies: tuple[FieldPolicy, ...] = ()
    legacy_customer_id: int | None = None
    legacy_customer_user_id: int | None = None

    @property
    def roles(self) -> frozenset[ClientRole]:
        return frozenset(ca.role for ca in self.client_accounts)

    @property
    def has_access(self) -> bool:
        """True when the scope carries any client account or legacy customer."""
        return bool(self.client_accounts) or self.legacy_customer_id is not None

    def can_access_org(self, org_id: int) -> bool:
        return org_id in self.org_ids

    def can_access_project(self, project_id: int) -> bool:
        return project_id in self.project_ids

    def can_access_site(self, site_id: int) -> bool:
        return site_id in self.site_ids

    def can_access_asset(self, asset_id: int) -> bool:
        return asset_id in self.asset_ids

    def access_level(self, grant_type: GrantType, target_id: int) -> AccessLevel | None:
        """Access level of the first grant matching the target, if any."""
        for grant in self.grants:
            if grant.grant_type == grant_type and grant.target_id == target_id:
                return grant.access_level
        return None

    def has_role(self, role: ClientRole) -> bool:
        return any(ca.role == role for ca in self.client_accounts)

    def has_any_role(self, roles: Iterable[ClientRole]) -> bool:
        wanted = set(roles)
        return any(ca.role in wanted for ca in self.client_accounts)

    def is_client_admin(self) -> bool:
        return self.has_role(ClientRole.CLIENT_ADMIN)

    def has_finance_access(self) -> bool:
        return self.has_any_role((ClientRole.CLIENT_ADMIN, ClientRole.FINANCE))

    def with_legacy(self, customer_id: int, customer_user_id: int) -> "PortalScope":
        """Copy annotated with legacy identifiers; access sets are untouched."""
        return replace(
            self,
            legacy_customer_id=customer_id,
            legacy_customer_user_id=customer_user_id,
        )


EMPTY_SCOPE = PortalScope()
