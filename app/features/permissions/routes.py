"""
Permission management API routes.

Provides the administrative surface for per-user overrides plus read-only
views of the catalog and of effective permissions. The router is built once
by create_router() with its guards bound to a single AccessControl.
"""
from dataclasses import asdict
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Request
from slowapi import Limiter

from app.core import config
from app.features.permissions.constants import CATALOG_READ_PERMISSION, OVERRIDE_ADMIN_PERMISSIONS
from app.features.permissions.dependencies import authorize
from app.features.permissions.ownership import canonical_id
from app.features.permissions.schemas import (
    CatalogResponse,
    EffectivePermissionsResponse,
    GrantOverrideRequest,
    OverrideEventResponse,
    OverrideResponse,
    PermissionCheckRequest,
    PermissionCheckResponse,
    PermissionResponse,
    RevokeResponse,
    RoleResponse,
    SweepResponse,
)
from app.features.permissions.service import AccessControl
from app.features.permissions.store import OverrideRecord
from app.features.users.models import User
from app.features.users.schemas import Principal
from app.utils import get_logger


log = get_logger(__name__)


def _path_user_id(request: Request) -> Optional[str]:
    return request.path_params.get("user_id")


def create_router(access: AccessControl, limiter: Optional[Limiter] = None) -> APIRouter:
    """
    Build the /permissions router.

    Args:
        access: the application's AccessControl
        limiter: slowapi limiter for the override write endpoints
    """
    router = APIRouter()

    catalog_reader = authorize(access.require_permission(CATALOG_READ_PERMISSION))
    override_admin = authorize(access.require_all(*OVERRIDE_ADMIN_PERMISSIONS))
    override_reader = authorize(access.require_any("user:read:all", "user:update:any"))
    admin_only = authorize(access.require_role("admin"))
    self_or_user_reader = authorize(
        access.require_ownership_or_permission("user:read", "user:read:all", _path_user_id)
    )
    authenticated = authorize(access.authenticated())

    def rate_limited(endpoint):
        if limiter is None:
            return endpoint
        return limiter.limit(config.RATE_LIMIT_ADMIN)(endpoint)

    def to_response(record: OverrideRecord) -> OverrideResponse:
        return OverrideResponse(**asdict(record), is_active=record.is_active_at(access.store.now()))

    async def principal_for_user(user_id: str) -> Principal:
        async with access.store.session_factory() as db:
            user = await db.get(User, canonical_id(user_id) or "")
        if user is None:
            raise HTTPException(status_code=404, detail="User not found")
        return Principal(id=user.id, role=user.role)

    async def effective_response(principal: Principal) -> EffectivePermissionsResponse:
        breakdown = await access.resolver.explain(principal)
        return EffectivePermissionsResponse(
            principal_id=principal.id,
            role=breakdown.role,
            role_permissions=sorted(breakdown.role_permissions),
            override_permissions=sorted(breakdown.override_permissions),
            permissions=sorted(breakdown.effective),
        )

    # ========================================================================
    # Catalog Routes
    # ========================================================================

    @router.get("/catalog", response_model=CatalogResponse)
    async def get_catalog(principal: Principal = Depends(catalog_reader)):
        """List all permissions and role names."""
        catalog = access.catalog
        return CatalogResponse(
            permissions=[PermissionResponse.model_validate(p) for p in catalog.permissions],
            roles=sorted(catalog.role_names),
        )

    @router.get("/roles/{role}", response_model=RoleResponse)
    async def get_role(role: str, principal: Principal = Depends(catalog_reader)):
        """Get a role's default permissions."""
        definition = access.catalog.role(role)
        if definition is None:
            raise HTTPException(status_code=404, detail="Role not found")
        return RoleResponse(
            name=definition.name,
            display_name=definition.display_name,
            description=definition.description,
            permissions=sorted(definition.permissions),
        )

    # ========================================================================
    # Effective Permission Routes
    # ========================================================================

    @router.get("/me", response_model=EffectivePermissionsResponse)
    async def get_my_permissions(principal: Principal = Depends(authenticated)):
        """Permissions of the caller, split by source."""
        return await effective_response(principal)

    @router.post("/check", response_model=PermissionCheckResponse)
    async def check_permissions(
        check: PermissionCheckRequest,
        principal: Principal = Depends(authenticated),
    ):
        """Check whether the caller holds all (or any) of the given permissions."""
        if check.require_all:
            allowed = await access.resolver.has_all(principal, check.permissions)
        else:
            allowed = await access.resolver.has_any(principal, check.permissions)
        return PermissionCheckResponse(allowed=allowed)

    @router.get("/users/{user_id}/effective", response_model=EffectivePermissionsResponse)
    async def get_user_permissions(user_id: str, principal: Principal = Depends(self_or_user_reader)):
        """Effective permissions of a user (own record, or any with user:read:all)."""
        return await effective_response(await principal_for_user(user_id))

    # ========================================================================
    # Override Routes
    # ========================================================================

    @router.get("/users/{user_id}/overrides", response_model=List[OverrideResponse])
    async def list_user_overrides(
        user_id: str,
        active_only: bool = False,
        principal: Principal = Depends(override_reader),
    ):
        """List a user's permission overrides."""
        records = await access.store.list_overrides(user_id, include_inactive=not active_only)
        return [to_response(r) for r in records]

    @router.get("/users/{user_id}/overrides/history", response_model=List[OverrideEventResponse])
    async def get_override_history(
        user_id: str,
        permission_name: Optional[str] = None,
        principal: Principal = Depends(admin_only),
    ):
        """Full grant/revoke/expire history of a user's overrides."""
        return await access.store.history_for(user_id, permission_name)

    @router.post(
        "/users/{user_id}/overrides",
        response_model=OverrideResponse,
        status_code=status.HTTP_201_CREATED,
    )
    @rate_limited
    async def grant_override(
        request: Request,
        user_id: str,
        grant: GrantOverrideRequest,
        principal: Principal = Depends(override_admin),
    ):
        """Grant a permission to a user, optionally until expires_at."""
        record = await access.store.grant(
            user_id,
            grant.permission_name,
            granted_by=principal.id,
            expires_at=grant.expires_at,
            reason=grant.reason,
        )
        return to_response(record)

    @router.delete("/users/{user_id}/overrides/{permission_name}", response_model=RevokeResponse)
    @rate_limited
    async def revoke_override(
        request: Request,
        user_id: str,
        permission_name: str,
        reason: Optional[str] = None,
        principal: Principal = Depends(override_admin),
    ):
        """Revoke a user's override. The record is kept for audit."""
        revoked = await access.store.revoke(user_id, permission_name, revoked_by=principal.id, reason=reason)
        return RevokeResponse(revoked=revoked)

    @router.post("/overrides/sweep", response_model=SweepResponse)
    async def sweep_overrides(principal: Principal = Depends(admin_only)):
        """Mark expired overrides as no longer granted."""
        return SweepResponse(expired=await access.store.sweep_expired())

    return router
