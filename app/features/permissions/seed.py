"""
Seeding and role-grant administration for the permission catalog.

Everything here writes to the database only. The in-memory catalog does not
change until AccessControl.reload_catalog() is called.
"""
from typing import Iterable, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.permissions.constants import ALL_PERMISSIONS, DEFAULT_PERMISSIONS, DEFAULT_ROLES
from app.features.permissions.models import Permission, Role, RolePermission
from app.utils import get_logger, utcnow


log = get_logger(__name__)

SYSTEM_ACTOR = "system"


async def seed_permissions(
    db: AsyncSession,
    permissions: Iterable[tuple] = DEFAULT_PERMISSIONS,
) -> dict[str, Permission]:
    """
    Create default permissions.

    Existing permissions are left untouched, including their active flag.

    Returns:
        Dictionary mapping permission names to Permission objects
    """
    result = await db.execute(select(Permission))
    permissions_map = {p.name: p for p in result.scalars().all()}

    created = 0
    for name, category, description in permissions:
        if name in permissions_map:
            continue
        permission = Permission(name=name, category=category, description=description, is_active=True)
        db.add(permission)
        permissions_map[name] = permission
        created += 1

    await db.flush()
    log.info(f"Created {created} permissions ({len(permissions_map)} total)")
    return permissions_map


async def seed_roles(
    db: AsyncSession,
    permissions_map: dict[str, Permission],
    roles: Mapping[str, dict] = DEFAULT_ROLES,
):
    """
    Create default roles and their initial permission grants.

    Roles that already exist are skipped so that grants changed by an
    administrator survive a restart.
    """
    for role_name, role_config in roles.items():
        result = await db.execute(select(Role).where(Role.name == role_name))
        if result.scalars().first():
            log.debug(f"Role '{role_name}' already exists, skipping")
            continue

        role = Role(
            name=role_name,
            display_name=role_config.get("display_name", role_name),
            description=role_config.get("description"),
            is_active=True,
        )
        db.add(role)
        await db.flush()

        if role_config["permissions"] == ALL_PERMISSIONS:
            granted = list(permissions_map.values())
        else:
            granted = []
            for perm_name in role_config["permissions"]:
                if perm_name in permissions_map:
                    granted.append(permissions_map[perm_name])
                else:
                    log.warning(f"Permission '{perm_name}' not found for role '{role_name}'")

        now = utcnow()
        for permission in granted:
            db.add(RolePermission(
                role_id=role.id,
                permission_id=permission.id,
                granted_by=SYSTEM_ACTOR,
                granted_at=now,
            ))
        log.info(f"Created role '{role_name}' with {len(granted)} permissions")

    await db.flush()


async def seed_catalog(db: AsyncSession):
    """Seed default permissions and roles, then commit."""
    permissions_map = await seed_permissions(db)
    await seed_roles(db, permissions_map)
    await db.commit()


async def assign_permission_to_role(
    db: AsyncSession,
    role_name: str,
    permission_name: str,
    granted_by: Optional[str] = None,
) -> RolePermission:
    """
    Grant a permission to a role.

    Returns the live grant if one already exists, otherwise appends a new one.

    Raises:
        ValueError: unknown role or permission
    """
    role, permission = await _role_and_permission(db, role_name, permission_name)

    live = await _live_grants(db, role.id, permission.id)
    if live:
        return live[0]

    grant = RolePermission(
        role_id=role.id,
        permission_id=permission.id,
        granted_by=granted_by,
        granted_at=utcnow(),
    )
    db.add(grant)
    await db.commit()
    log.info(f"Assigned '{permission_name}' to role '{role_name}'")
    return grant


async def remove_permission_from_role(
    db: AsyncSession,
    role_name: str,
    permission_name: str,
    revoked_by: Optional[str] = None,
) -> bool:
    """
    Revoke a permission from a role by stamping the live grant records.

    Returns:
        True if a live grant was revoked
    """
    try:
        role, permission = await _role_and_permission(db, role_name, permission_name)
    except ValueError:
        return False

    live = await _live_grants(db, role.id, permission.id)
    if not live:
        return False

    now = utcnow()
    for grant in live:
        grant.revoked_at = now
        grant.revoked_by = revoked_by
    await db.commit()
    log.info(f"Removed '{permission_name}' from role '{role_name}'")
    return True


async def deactivate_permission(db: AsyncSession, permission_name: str) -> bool:
    """Retire a permission. Its name stays reserved."""
    result = await db.execute(select(Permission).where(Permission.name == permission_name))
    permission = result.scalars().first()
    if permission is None:
        return False
    permission.is_active = False
    await db.commit()
    log.info(f"Deactivated permission '{permission_name}'")
    return True


async def _role_and_permission(db: AsyncSession, role_name: str, permission_name: str):
    result = await db.execute(select(Role).where(Role.name == role_name))
    role = result.scalars().first()
    if role is None:
        raise ValueError(f"Role not found: {role_name}")

    result = await db.execute(select(Permission).where(Permission.name == permission_name))
    permission = result.scalars().first()
    if permission is None:
        raise ValueError(f"Permission not found: {permission_name}")
    return role, permission


async def _live_grants(db: AsyncSession, role_id: str, permission_id: str) -> list[RolePermission]:
    stmt = select(RolePermission).where(
        RolePermission.role_id == role_id,
        RolePermission.permission_id == permission_id,
        RolePermission.revoked_at.is_(None),
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())
