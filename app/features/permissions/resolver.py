"""
Effective permission resolution: role defaults plus active overrides.
"""
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError

from app.features.permissions.catalog import PermissionCatalog
from app.features.permissions.store import OverrideStore
from app.features.users.schemas import Principal
from app.utils import get_logger


log = get_logger(__name__)


@dataclass(frozen=True)
class PermissionBreakdown:
    """Where a principal's permissions come from."""
    role: str
    role_permissions: frozenset[str]
    override_permissions: frozenset[str]

    @property
    def effective(self) -> frozenset[str]:
        return self.role_permissions | self.override_permissions


class EffectivePermissionResolver:
    """
    Computes the permissions a principal holds right now.

    Nothing is cached here: every call reads the catalog and the store
    afresh, so an override stops counting the moment it expires.
    """

    def __init__(self, catalog: PermissionCatalog, store: OverrideStore):
        self.catalog = catalog
        self.store = store

    async def effective_permissions(self, principal: Optional[Principal]) -> frozenset[str]:
        """Role defaults union active overrides; empty without a principal."""
        breakdown = await self.explain(principal)
        if breakdown is None:
            return frozenset()
        return breakdown.effective

    async def explain(self, principal: Optional[Principal]) -> Optional[PermissionBreakdown]:
        if principal is None:
            return None

        role_permissions = self.catalog.permissions_for_role(principal.role)
        try:
            overrides = await self.store.active_overrides_for(principal.id)
        except SQLAlchemyError:
            # Fail closed on the extras: role defaults still apply
            log.error(f"Could not load overrides for principal {principal.id}", exc_info=True)
            overrides = frozenset()

        return PermissionBreakdown(
            role=principal.role,
            role_permissions=role_permissions,
            override_permissions=overrides,
        )

    async def has_permission(self, principal: Optional[Principal], name: Optional[str]) -> bool:
        if principal is None or not self.catalog.is_known(name):
            return False
        return name in await self.effective_permissions(principal)

    async def has_all(self, principal: Optional[Principal], names: Iterable[str]) -> bool:
        names = list(names)
        if principal is None or not names:
            return False
        held = await self.effective_permissions(principal)
        return all(self.catalog.is_known(n) and n in held for n in names)

    async def has_any(self, principal: Optional[Principal], names: Iterable[str]) -> bool:
        if principal is None:
            return False
        held = await self.effective_permissions(principal)
        return any(self.catalog.is_known(n) and n in held for n in names)

    async def missing(self, principal: Optional[Principal], names: Iterable[str]) -> list[str]:
        """Permissions from names the principal does not hold, in order."""
        names = list(names)
        if principal is None:
            return names
        held = await self.effective_permissions(principal)
        return [n for n in names if not (self.catalog.is_known(n) and n in held)]
