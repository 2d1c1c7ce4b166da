"""
FastAPI boundary for authorization guards.

Implements:
- Route dependencies that evaluate a guard and map the outcome to 401 / 403
- Programmatic checks for use inside route handlers

Callers only ever see "Authentication required" or "Access denied"; what was
missing is logged server-side.
"""
from typing import Optional
from fastapi import Depends, HTTPException, status, Request

from app.features.permissions.guards import Decision, Guard, Outcome
from app.features.permissions.ownership import is_owner
from app.features.permissions.service import AccessControl
from app.features.users.dependencies import get_current_principal
from app.features.users.schemas import Principal
from app.utils import get_logger


log = get_logger(__name__)

AUTHENTICATION_REQUIRED = "Authentication required"
ACCESS_DENIED = "Access denied"


def raise_for_decision(decision: Decision, principal: Optional[Principal], request: Optional[Request] = None):
    """
    Translate a non-allowed decision into an HTTPException.

    Raises:
        HTTPException: 401 when unauthenticated, 403 when denied
    """
    if decision.allowed:
        return
    if decision.outcome is Outcome.UNAUTHENTICATED or principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=AUTHENTICATION_REQUIRED,
            headers={"WWW-Authenticate": "Bearer"},
        )

    where = f"{request.method} {request.url.path}" if request is not None else "check"
    log.info(f"Denied {where} for principal {principal.id} (role={principal.role}): {decision.detail}")
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=ACCESS_DENIED)


def authorize(guard: Guard):
    """
    FastAPI dependency that requires a guard to allow the request.

    The guard gets the Request as its context, so ownership resolvers can
    read path parameters or load the resource.

    Usage:
        can_update = access.require_ownership_or_permission(
            "user:update", "user:update:any", lambda request: request.path_params["user_id"]
        )

        @router.put("/users/{user_id}")
        async def update_user(user_id: str, principal: Principal = Depends(authorize(can_update))):
            ...

    Returns:
        Dependency function that returns the current principal if allowed
    """
    async def guard_dependency(
        request: Request,
        principal: Optional[Principal] = Depends(get_current_principal),
    ) -> Principal:
        decision = await guard.check(principal, request)
        raise_for_decision(decision, principal, request)
        return principal

    return guard_dependency


async def check_permission(access: AccessControl, principal: Optional[Principal], permission: str):
    """
    Require a permission from inside a handler.

    Example:
        await check_permission(access, principal, "user:delete:any")
    """
    if principal is None:
        raise_for_decision(Decision(Outcome.UNAUTHENTICATED), principal)
    if not await access.has_permission(principal, permission):
        raise_for_decision(Decision.deny(f"missing permission {permission}"), principal)


def check_ownership(principal: Optional[Principal], resource_owner_id) -> None:
    """Require the principal to own an already loaded resource."""
    if principal is None:
        raise_for_decision(Decision(Outcome.UNAUTHENTICATED), principal)
    if not is_owner(principal.id, resource_owner_id):
        raise_for_decision(Decision.deny(f"not the owner (owner={resource_owner_id})"), principal)
