"""
Read-only registry of permissions and role defaults.

A PermissionCatalog is built once at startup (from seed data or from the
database) and never mutated afterwards. Reloading means building a new
catalog and swapping it in explicitly.
"""
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.permissions.constants import ALL_PERMISSIONS, DEFAULT_PERMISSIONS, DEFAULT_ROLES
from app.features.permissions.models import Permission, Role, RolePermission
from app.utils import get_logger


log = get_logger(__name__)

EMPTY: frozenset[str] = frozenset()


@dataclass(frozen=True)
class PermissionDefinition:
    """A catalog entry."""
    name: str
    category: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class RoleDefinition:
    """A role and its default permission set."""
    name: str
    display_name: str
    permissions: frozenset[str]
    description: Optional[str] = None


class PermissionCatalog:
    """
    Static registry of permission names and role -> permission mappings.

    Lookups never raise: an unknown role has no permissions and an unknown
    permission name is simply not known.
    """

    def __init__(
        self,
        permissions: Iterable[PermissionDefinition],
        roles: Iterable[RoleDefinition],
    ):
        permission_map: dict[str, PermissionDefinition] = {}
        for definition in permissions:
            if definition.name in permission_map:
                raise ValueError(f"Duplicate permission name: {definition.name}")
            permission_map[definition.name] = definition
        self._permissions = MappingProxyType(permission_map)

        role_map: dict[str, RoleDefinition] = {}
        for role in roles:
            unknown = role.permissions - permission_map.keys()
            if unknown:
                log.warning(f"Role '{role.name}' references unknown permissions {sorted(unknown)}, dropping them")
                role = RoleDefinition(
                    name=role.name,
                    display_name=role.display_name,
                    permissions=role.permissions & permission_map.keys(),
                    description=role.description,
                )
            role_map[role.name] = role
        self._roles = MappingProxyType(role_map)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_seed(
        cls,
        permissions: Iterable[tuple] = DEFAULT_PERMISSIONS,
        roles: Mapping[str, dict] = DEFAULT_ROLES,
    ) -> "PermissionCatalog":
        """
        Build a catalog from seed data.

        Args:
            permissions: (name, category, description) tuples
            roles: role name -> {"display_name", "description", "permissions"};
                permissions may be the string "ALL"
        """
        definitions = [
            PermissionDefinition(name=name, category=category, description=description)
            for name, category, description in permissions
        ]
        all_names = frozenset(d.name for d in definitions)

        role_definitions = []
        for role_name, role_config in roles.items():
            granted = role_config.get("permissions", [])
            role_definitions.append(RoleDefinition(
                name=role_name,
                display_name=role_config.get("display_name", role_name),
                description=role_config.get("description"),
                permissions=all_names if granted == ALL_PERMISSIONS else frozenset(granted),
            ))
        return cls(definitions, role_definitions)

    @classmethod
    async def load(cls, db: AsyncSession) -> "PermissionCatalog":
        """
        Build a catalog from the database.

        Only active permissions and active roles are included; a role's set
        is the union of its non-revoked grants.
        """
        result = await db.execute(select(Permission).where(Permission.is_active.is_(True)))
        permissions = [
            PermissionDefinition(name=p.name, category=p.category, description=p.description)
            for p in result.scalars().all()
        ]

        result = await db.execute(select(Role).where(Role.is_active.is_(True)))
        roles = result.scalars().all()

        stmt = (
            select(RolePermission.role_id, Permission.name)
            .join(Permission, Permission.id == RolePermission.permission_id)
            .where(RolePermission.revoked_at.is_(None), Permission.is_active.is_(True))
        )
        result = await db.execute(stmt)
        grants: dict[str, set[str]] = {}
        for role_id, permission_name in result.all():
            grants.setdefault(role_id, set()).add(permission_name)

        role_definitions = [
            RoleDefinition(
                name=role.name,
                display_name=role.display_name,
                description=role.description,
                permissions=frozenset(grants.get(role.id, ())),
            )
            for role in roles
        ]
        log.info(f"Loaded catalog with {len(permissions)} permissions and {len(role_definitions)} roles")
        return cls(permissions, role_definitions)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def permissions_for_role(self, role: Optional[str]) -> frozenset[str]:
        """Default permission set of a role; empty for unknown roles."""
        if not isinstance(role, str) or not role:
            return EMPTY
        definition = self._roles.get(role)
        if definition is None:
            return EMPTY
        return definition.permissions

    def is_known(self, name: Optional[str]) -> bool:
        return isinstance(name, str) and name in self._permissions

    def get(self, name: str) -> Optional[PermissionDefinition]:
        return self._permissions.get(name)

    def knows_role(self, role: Optional[str]) -> bool:
        return isinstance(role, str) and role in self._roles

    def role(self, role: str) -> Optional[RoleDefinition]:
        return self._roles.get(role)

    def permissions_in_category(self, category: str) -> list[PermissionDefinition]:
        return [d for d in self._permissions.values() if d.category == category]

    @property
    def permission_names(self) -> frozenset[str]:
        return frozenset(self._permissions)

    @property
    def role_names(self) -> frozenset[str]:
        return frozenset(self._roles)

    @property
    def permissions(self) -> list[PermissionDefinition]:
        return sorted(self._permissions.values(), key=lambda d: d.name)

    def __repr__(self) -> str:
        return f"<PermissionCatalog(permissions={len(self._permissions)}, roles={len(self._roles)})>"
