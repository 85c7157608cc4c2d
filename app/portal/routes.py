"""
Customer portal routes.

Provides endpoints for:
- Tenant context of the current host
- Current portal user and resolved scope
- Per-entity access checks
- Dashboard metrics and field visibility previews
- Rate-limited password reset requests and uploads
"""

from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Body, Depends, Request, Response, status
from loguru import logger
from pydantic import BaseModel, EmailStr

from kiisha_core.auth import (
    PortalContext,
    assert_asset_access,
    assert_org_access,
    assert_project_access,
    assert_site_access,
    get_portal_context,
    require_portal_role,
)
from kiisha_core.domain.portal import ClientRole, EntityKind, GrantType
from kiisha_core.infrastructure.rate_limiter import (
    FixedWindowRateLimiter,
    RateLimits,
    get_rate_limiter,
    rate_limit_headers,
)
from kiisha_core.scope.field_policy import allowed_metrics, filter_fields
from kiisha_core.tenancy import build_lobby_url, build_org_url, get_tenant_context

router = APIRouter(prefix="/portal", tags=["portal"])


# =============================================================================
# Request/Response Schemas
# =============================================================================


class TenantResponse(BaseModel):
    org_id: int | None
    org_slug: str | None
    is_lobby: bool
    is_development: bool
    home_url: str


class ClientAccountResponse(BaseModel):
    id: int
    code: str
    name: str
    role: ClientRole


class MeResponse(BaseModel):
    """Current portal user and a summary of their scope."""

    portal_user_id: int
    email: str
    name: str | None
    client_accounts: list[ClientAccountResponse]
    org_ids: list[int]
    project_ids: list[int]
    site_ids: list[int]
    asset_ids: list[int]
    view_ids: list[int]
    legacy_customer_id: int | None


class AccessResponse(BaseModel):
    kind: str
    id: int
    access_level: str | None


class PasswordResetRequest(BaseModel):
    email: EmailStr


class UploadRequest(BaseModel):
    project_id: int
    filename: str


class AcceptedResponse(BaseModel):
    message: str


# =============================================================================
# Routes
# =============================================================================


@router.get("/tenant", response_model=TenantResponse)
async def tenant(request: Request):
    """Tenant resolved for this request's host."""
    ctx = get_tenant_context(request)
    home_url = build_org_url(ctx.org_slug) if ctx.org_id is not None and ctx.org_slug else build_lobby_url()
    return TenantResponse(
        org_id=ctx.org_id,
        org_slug=ctx.org_slug,
        is_lobby=ctx.is_lobby,
        is_development=ctx.is_development,
        home_url=home_url,
    )


@router.get("/me", response_model=MeResponse)
async def me(context: PortalContext = Depends(get_portal_context)):
    scope = context.scope
    return MeResponse(
        portal_user_id=scope.portal_user_id,
        email=scope.email or context.identity.get("email", ""),
        name=scope.name,
        client_accounts=[
            ClientAccountResponse(id=ca.id, code=ca.code, name=ca.name, role=ca.role)
            for ca in scope.client_accounts
        ],
        org_ids=sorted(scope.org_ids),
        project_ids=sorted(scope.project_ids),
        site_ids=sorted(scope.site_ids),
        asset_ids=sorted(scope.asset_ids),
        view_ids=sorted(scope.view_ids),
        legacy_customer_id=scope.legacy_customer_id,
    )


_ASSERTIONS = {
    "project": (assert_project_access, GrantType.PROJECT),
    "site": (assert_site_access, GrantType.SITE),
    "asset": (assert_asset_access, GrantType.ASSET),
    "org": (assert_org_access, None),
}


@router.get("/access/{kind}/{entity_id}", response_model=AccessResponse)
async def check_access(
    kind: Literal["project", "site", "asset", "org"],
    entity_id: int,
    context: PortalContext = Depends(get_portal_context),
):
    """Assert access to one entity and report the granted access level."""
    assertion, grant_type = _ASSERTIONS[kind]
    assertion(context, entity_id)

    level = context.scope.access_level(grant_type, entity_id) if grant_type else None
    return AccessResponse(kind=kind, id=entity_id, access_level=level.value if level else None)


@router.get("/metrics")
async def metrics(context: PortalContext = Depends(get_portal_context)):
    """Dashboard metrics visible to the current user."""
    return {"metrics": allowed_metrics(context.scope)}


@router.post("/fields/{entity_kind}/preview")
async def preview_fields(
    entity_kind: EntityKind,
    record: dict[str, Any] = Body(...),
    context: PortalContext = Depends(get_portal_context),
):
    """Show how a record would look after field policy filtering."""
    return filter_fields(context.scope, entity_kind, record)


@router.post("/password-reset", response_model=AcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def request_password_reset(
    response: Response,
    reset_request: PasswordResetRequest = Body(...),
    limiter: FixedWindowRateLimiter = Depends(get_rate_limiter),
):
    """Accept a password reset request.

    Rate limited per email. The response never reveals whether the
    account exists.
    """
    email = reset_request.email.lower()
    result = limiter.enforce(email, RateLimits.PASSWORD_RESET)
    response.headers.update(rate_limit_headers(RateLimits.PASSWORD_RESET, result))

    logger.info(f"Password reset requested ({result.remaining} remaining in window)")
    return AcceptedResponse(message="If the account exists, a reset link has been sent.")


@router.post("/uploads", response_model=AcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def accept_upload(
    response: Response,
    upload: UploadRequest = Body(...),
    context: PortalContext = Depends(require_portal_role(ClientRole.CLIENT_ADMIN, ClientRole.OPS)),
    limiter: FixedWindowRateLimiter = Depends(get_rate_limiter),
):
    """Accept an upload against a project the user can access."""
    assert_project_access(context, upload.project_id)

    scope = context.scope
    key = f"user-{scope.portal_user_id}" if scope.portal_user_id else f"customer-{scope.legacy_customer_id}"
    result = limiter.enforce(key, RateLimits.FILE_UPLOAD)
    response.headers.update(rate_limit_headers(RateLimits.FILE_UPLOAD, result))

    return AcceptedResponse(message=f"Upload of {upload.filename} accepted")
