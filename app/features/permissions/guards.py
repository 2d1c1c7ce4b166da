"""
Composable authorization guards.

A guard answers one question for one principal: Unauthenticated, Denied or
Allowed. Guards never raise for access-control outcomes; the boundary maps
the outcome to a response (401 / 403 / proceed).

Usage:
    access = AccessControl(catalog, store)
    can_update = access.require_ownership_or_permission(
        "address:update", "address:update:any", lambda request: request.path_params["owner_id"]
    )
    decision = await can_update.check(principal, request)
    if not decision.allowed:
        ...
"""
import enum
from dataclasses import dataclass
from typing import Any, Optional

from app.features.permissions.ownership import ResourceOwnerResolver, is_owner, resolve_owner
from app.features.permissions.resolver import EffectivePermissionResolver
from app.features.users.schemas import Principal
from app.utils import get_logger


log = get_logger(__name__)


class Outcome(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    DENIED = "denied"
    ALLOWED = "allowed"


@dataclass(frozen=True)
class Decision:
    """
    Result of a guard check.

    detail says what failed; it is for server logs and must not be sent to
    the caller.
    """
    outcome: Outcome
    detail: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.outcome is Outcome.ALLOWED

    @classmethod
    def allow(cls, detail: Optional[str] = None) -> "Decision":
        return cls(Outcome.ALLOWED, detail)

    @classmethod
    def deny(cls, detail: str) -> "Decision":
        return cls(Outcome.DENIED, detail)


UNAUTHENTICATED = Decision(Outcome.UNAUTHENTICATED, "no principal")


class Guard:
    """Base class. Subclasses implement _evaluate for a present principal."""

    async def check(self, principal: Optional[Principal], context: Any = None) -> Decision:
        if principal is None:
            return UNAUTHENTICATED
        return await self._evaluate(principal, context)

    async def _evaluate(self, principal: Principal, context: Any) -> Decision:
        raise NotImplementedError

    def __and__(self, other: "Guard") -> "AllOf":
        return AllOf(self, other)

    def __or__(self, other: "Guard") -> "AnyOf":
        return AnyOf(self, other)


class _PermissionGuard(Guard):
    def __init__(self, resolver: EffectivePermissionResolver, *permissions: str):
        if not permissions:
            raise ValueError(f"{type(self).__name__} needs at least one permission")
        self.resolver = resolver
        self.permissions = tuple(permissions)
        _warn_unknown(resolver, self.permissions, type(self).__name__)


class RequirePermission(_PermissionGuard):
    """Allowed iff the principal holds the permission."""

    def __init__(self, resolver: EffectivePermissionResolver, permission: str):
        super().__init__(resolver, permission)
        self.permission = permission

    async def _evaluate(self, principal: Principal, context: Any) -> Decision:
        if await self.resolver.has_permission(principal, self.permission):
            return Decision.allow()
        return Decision.deny(f"missing permission {self.permission}")


class RequireAll(_PermissionGuard):
    """Allowed iff the principal holds every permission."""

    async def _evaluate(self, principal: Principal, context: Any) -> Decision:
        missing = await self.resolver.missing(principal, self.permissions)
        if not missing:
            return Decision.allow()
        return Decision.deny(f"missing permissions {', '.join(missing)}")


class RequireAny(_PermissionGuard):
    """Allowed iff the principal holds at least one of the permissions."""

    async def _evaluate(self, principal: Principal, context: Any) -> Decision:
        if await self.resolver.has_any(principal, self.permissions):
            return Decision.allow()
        return Decision.deny(f"requires one of {', '.join(self.permissions)}")


class RequireOwnershipOrPermission(Guard):
    """
    Broad permission, or ownership plus the narrow permission.

    any_permission is checked first and wins regardless of ownership. Only
    without it does the owner path apply: the principal must own the
    resource and hold own_permission.
    """

    def __init__(
        self,
        resolver: EffectivePermissionResolver,
        own_permission: str,
        any_permission: str,
        owner_resolver: ResourceOwnerResolver,
    ):
        self.resolver = resolver
        self.own_permission = own_permission
        self.any_permission = any_permission
        self.owner_resolver = owner_resolver
        _warn_unknown(resolver, (own_permission, any_permission), type(self).__name__)

    async def _evaluate(self, principal: Principal, context: Any) -> Decision:
        held = await self.resolver.effective_permissions(principal)
        catalog = self.resolver.catalog

        if catalog.is_known(self.any_permission) and self.any_permission in held:
            return Decision.allow(f"holds {self.any_permission}")

        owner_id = await resolve_owner(self.owner_resolver, context)
        if not is_owner(principal.id, owner_id):
            return Decision.deny(f"lacks {self.any_permission} and is not the owner (owner={owner_id})")

        if catalog.is_known(self.own_permission) and self.own_permission in held:
            return Decision.allow(f"owner with {self.own_permission}")
        return Decision.deny(f"owner but missing permission {self.own_permission}")


class RequireOwnership(Guard):
    """Allowed iff the principal owns the resource. No permission involved."""

    def __init__(self, owner_resolver: ResourceOwnerResolver):
        self.owner_resolver = owner_resolver

    async def _evaluate(self, principal: Principal, context: Any) -> Decision:
        owner_id = await resolve_owner(self.owner_resolver, context)
        if is_owner(principal.id, owner_id):
            return Decision.allow()
        return Decision.deny(f"not the owner (owner={owner_id})")


class RequireRole(Guard):
    """
    Legacy coarse check on the principal's role name.

    Independent of the permission catalog: holding a role grants no
    permissions here, and holding permissions grants no role.
    """

    def __init__(self, *roles: str):
        if not roles:
            raise ValueError("RequireRole needs at least one role")
        self.roles = frozenset(roles)

    async def _evaluate(self, principal: Principal, context: Any) -> Decision:
        if principal.role in self.roles:
            return Decision.allow()
        return Decision.deny(f"role {principal.role!r} not in {sorted(self.roles)}")


class Authenticated(Guard):
    """Allowed for any principal."""

    async def _evaluate(self, principal: Principal, context: Any) -> Decision:
        return Decision.allow()


class AllOf(Guard):
    """Allowed iff every inner guard allows. Stops at the first denial."""

    def __init__(self, *guards: Guard):
        if not guards:
            raise ValueError("AllOf needs at least one guard")
        self.guards = guards

    async def _evaluate(self, principal: Principal, context: Any) -> Decision:
        for guard in self.guards:
            decision = await guard.check(principal, context)
            if not decision.allowed:
                return decision
        return Decision.allow()


class AnyOf(Guard):
    """Allowed iff some inner guard allows."""

    def __init__(self, *guards: Guard):
        if not guards:
            raise ValueError("AnyOf needs at least one guard")
        self.guards = guards

    async def _evaluate(self, principal: Principal, context: Any) -> Decision:
        details = []
        for guard in self.guards:
            decision = await guard.check(principal, context)
            if decision.allowed:
                return decision
            details.append(decision.detail or decision.outcome.value)
        return Decision.deny("; ".join(details))


def _warn_unknown(resolver: EffectivePermissionResolver, permissions, guard_name: str):
    unknown = [p for p in permissions if not resolver.catalog.is_known(p)]
    if unknown:
        log.warning(f"{guard_name} references unknown permissions {unknown}; it will always deny")
