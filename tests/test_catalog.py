"""Tests for the permission catalog."""

import pytest

from app.features.permissions.catalog import PermissionCatalog, PermissionDefinition, RoleDefinition
from app.features.permissions.constants import DEFAULT_PERMISSIONS
from app.features.permissions.seed import (
    assign_permission_to_role,
    deactivate_permission,
    remove_permission_from_role,
)


class TestSeedCatalog:
    """Catalog built from in-code seed data."""

    def test_customer_defaults(self, catalog):
        perms = catalog.permissions_for_role("customer")
        assert "booking:create" in perms
        assert "address:update" in perms
        assert "user:delete:any" not in perms
        assert "address:update:any" not in perms

    def test_agent_defaults(self, catalog):
        perms = catalog.permissions_for_role("agent")
        assert "booking:complete" in perms
        assert "user:read" in perms
        assert "booking:create" not in perms

    def test_admin_has_every_permission(self, catalog):
        assert catalog.permissions_for_role("admin") == catalog.permission_names
        assert len(catalog.permission_names) == len(DEFAULT_PERMISSIONS)

    def test_unknown_role_is_empty(self, catalog):
        assert catalog.permissions_for_role("superuser") == frozenset()
        assert catalog.permissions_for_role("") == frozenset()
        assert catalog.permissions_for_role(None) == frozenset()

    def test_lookup_is_stable(self, catalog):
        first = catalog.permissions_for_role("customer")
        second = catalog.permissions_for_role("customer")
        assert first == second
        assert isinstance(first, frozenset)

    def test_is_known(self, catalog):
        assert catalog.is_known("user:update:any")
        assert not catalog.is_known("user:fly")
        assert not catalog.is_known("")
        assert not catalog.is_known(None)

    def test_non_string_lookups(self, catalog):
        assert not catalog.is_known(["user:read"])
        assert not catalog.knows_role(["customer"])
        assert catalog.permissions_for_role(["customer"]) == frozenset()

    def test_categories(self, catalog):
        names = {d.name for d in catalog.permissions_in_category("system")}
        assert names == {"system:config:read", "system:config:update"}

    def test_catalog_is_read_only(self, catalog):
        with pytest.raises(TypeError):
            catalog._permissions["user:fly"] = PermissionDefinition("user:fly")


class TestCatalogConstruction:

    def test_duplicate_permission_rejected(self):
        with pytest.raises(ValueError):
            PermissionCatalog(
                [PermissionDefinition("a:read"), PermissionDefinition("a:read")],
                [],
            )

    def test_role_with_unknown_permission_is_trimmed(self):
        catalog = PermissionCatalog(
            [PermissionDefinition("a:read")],
            [RoleDefinition("reader", "Reader", frozenset({"a:read", "b:read"}))],
        )
        assert catalog.permissions_for_role("reader") == frozenset({"a:read"})

    def test_role_names_are_not_hard_coded(self):
        catalog = PermissionCatalog.from_seed(
            permissions=[("report:read", "report", "Read reports")],
            roles={"analyst": {"display_name": "Analyst", "permissions": ["report:read"]}},
        )
        assert catalog.role_names == frozenset({"analyst"})
        assert catalog.permissions_for_role("analyst") == frozenset({"report:read"})
        assert catalog.permissions_for_role("customer") == frozenset()


class TestDatabaseCatalog:
    """Catalog loaded from seeded tables."""

    async def test_load_matches_seed(self, session_factory, catalog):
        async with session_factory() as db:
            loaded = await PermissionCatalog.load(db)
        assert loaded.permission_names == catalog.permission_names
        for role in ("admin", "agent", "customer"):
            assert loaded.permissions_for_role(role) == catalog.permissions_for_role(role)
        assert loaded.role("customer").display_name == "Customer"

    async def test_revoked_role_grant_is_excluded(self, session_factory):
        async with session_factory() as db:
            assert await remove_permission_from_role(db, "customer", "booking:create", revoked_by="1")
            loaded = await PermissionCatalog.load(db)
        assert "booking:create" not in loaded.permissions_for_role("customer")

    async def test_regrant_appends_new_record(self, session_factory):
        async with session_factory() as db:
            await remove_permission_from_role(db, "customer", "booking:create")
            await assign_permission_to_role(db, "customer", "booking:create", granted_by="1")
            loaded = await PermissionCatalog.load(db)
        assert "booking:create" in loaded.permissions_for_role("customer")

    async def test_assign_is_idempotent(self, session_factory):
        async with session_factory() as db:
            first = await assign_permission_to_role(db, "agent", "analytics:view")
            second = await assign_permission_to_role(db, "agent", "analytics:view")
        assert first.id == second.id

    async def test_assign_unknown_role_raises(self, session_factory):
        async with session_factory() as db:
            with pytest.raises(ValueError):
                await assign_permission_to_role(db, "ghost", "analytics:view")

    async def test_remove_missing_grant_returns_false(self, session_factory):
        async with session_factory() as db:
            assert not await remove_permission_from_role(db, "customer", "user:delete:any")
            assert not await remove_permission_from_role(db, "ghost", "user:read")

    async def test_deactivated_permission_leaves_catalog(self, session_factory):
        async with session_factory() as db:
            assert await deactivate_permission(db, "file:upload")
            loaded = await PermissionCatalog.load(db)
        assert not loaded.is_known("file:upload")
        assert "file:upload" not in loaded.permissions_for_role("customer")

    async def test_seeding_twice_is_harmless(self, session_factory):
        from app.features.permissions.seed import seed_catalog

        async with session_factory() as db:
            await seed_catalog(db)
            loaded = await PermissionCatalog.load(db)
        assert len(loaded.permission_names) == len(DEFAULT_PERMISSIONS)
