"""
Composition root for the access control core.

One AccessControl is built at startup and handed to everything that needs
to make decisions. There is no module-level instance.
"""
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.features.permissions.catalog import PermissionCatalog
from app.features.permissions.guards import (
    Authenticated,
    RequireAll,
    RequireAny,
    RequireOwnership,
    RequireOwnershipOrPermission,
    RequirePermission,
    RequireRole,
)
from app.features.permissions.ownership import ResourceOwnerResolver
from app.features.permissions.resolver import EffectivePermissionResolver
from app.features.permissions.store import Clock, OverrideStore
from app.features.users.schemas import Principal
from app.utils import get_logger, utcnow


log = get_logger(__name__)


class AccessControl:
    """Catalog, override store and resolver, plus guard builders bound to them."""

    def __init__(self, catalog: PermissionCatalog, store: OverrideStore):
        self.store = store
        self.resolver = EffectivePermissionResolver(catalog, store)

    @classmethod
    def create(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        catalog: Optional[PermissionCatalog] = None,
        clock: Clock = utcnow,
        cache_ttl: float = 0.0,
    ) -> "AccessControl":
        return cls(
            catalog or PermissionCatalog.from_seed(),
            OverrideStore(session_factory, clock=clock, cache_ttl=cache_ttl),
        )

    @property
    def catalog(self) -> PermissionCatalog:
        return self.resolver.catalog

    async def reload_catalog(self, catalog: Optional[PermissionCatalog] = None) -> PermissionCatalog:
        """
        Replace the catalog, by default with a fresh load from the database.

        Guards already built keep working: they read the catalog through the
        shared resolver.
        """
        if catalog is None:
            async with self.store.session_factory() as db:
                catalog = await PermissionCatalog.load(db)
        self.resolver.catalog = catalog
        log.info(f"Catalog reloaded: {catalog!r}")
        return catalog

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    async def has_permission(self, principal: Optional[Principal], name: str) -> bool:
        return await self.resolver.has_permission(principal, name)

    async def effective_permissions(self, principal: Optional[Principal]) -> frozenset[str]:
        return await self.resolver.effective_permissions(principal)

    # ------------------------------------------------------------------
    # Guard builders
    # ------------------------------------------------------------------

    def require_permission(self, permission: str) -> RequirePermission:
        return RequirePermission(self.resolver, permission)

    def require_all(self, *permissions: str) -> RequireAll:
        return RequireAll(self.resolver, *permissions)

    def require_any(self, *permissions: str) -> RequireAny:
        return RequireAny(self.resolver, *permissions)

    def require_ownership_or_permission(
        self, own_permission: str, any_permission: str, owner_resolver: ResourceOwnerResolver
    ) -> RequireOwnershipOrPermission:
        return RequireOwnershipOrPermission(self.resolver, own_permission, any_permission, owner_resolver)

    def require_ownership(self, owner_resolver: ResourceOwnerResolver) -> RequireOwnership:
        return RequireOwnership(owner_resolver)

    def require_role(self, *roles: str) -> RequireRole:
        return RequireRole(*roles)

    def authenticated(self) -> Authenticated:
        return Authenticated()
