"""HTTP tests for the permission routes."""

from datetime import timedelta

import httpx
import pytest
import pytest_asyncio
from fastapi import Depends, FastAPI, Request

from app.core import config
from app.features.permissions.dependencies import authorize, check_ownership, check_permission
from app.features.permissions.seed import deactivate_permission, remove_permission_from_role
from app.features.users.dependencies import get_current_principal
from app.features.users.schemas import Principal
from app.main import create_app


def as_principal(principal_id, role: str) -> dict:
    return {config.PRINCIPAL_ID_HEADER: str(principal_id), config.PRINCIPAL_ROLE_HEADER: role}


ADMIN = as_principal(1, "admin")
AGENT = as_principal(3, "agent")


@pytest_asyncio.fixture
async def client(engine, access, user_factory, monkeypatch):
    monkeypatch.setattr(config, "TRUST_PRINCIPAL_HEADERS", True)
    await user_factory(1, role="admin")
    await user_factory(7, role="customer")
    await user_factory(9, role="customer")
    await user_factory(42, role="customer")

    app = create_app(engine=engine, access=access, seed_on_startup=True, sweep_interval=0)
    async with app.router.lifespan_context(app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            yield client


class TestStartup:

    async def test_catalog_loaded_from_database_without_seeding(self, engine, access):
        async with access.store.session_factory() as db:
            await remove_permission_from_role(db, "customer", "booking:create")

        app = create_app(engine=engine, access=access, seed_on_startup=False, sweep_interval=0)
        customer = Principal(id="7", role="customer")
        assert await access.has_permission(customer, "booking:create")

        async with app.router.lifespan_context(app):
            assert not await access.has_permission(customer, "booking:create")
            assert await access.has_permission(customer, "booking:read")

    async def test_seeding_on_startup_keeps_database_changes(self, engine, access):
        async with access.store.session_factory() as db:
            await remove_permission_from_role(db, "customer", "booking:create")

        app = create_app(engine=engine, access=access, seed_on_startup=True, sweep_interval=0)
        async with app.router.lifespan_context(app):
            assert not await access.has_permission(Principal(id="7", role="customer"), "booking:create")


class TestAuthenticationBoundary:

    async def test_missing_principal_is_401(self, client):
        response = await client.get("/permissions/me")
        assert response.status_code == 401
        assert response.json()["detail"] == "Authentication required"

    async def test_headers_ignored_when_untrusted(self, client, monkeypatch):
        monkeypatch.setattr(config, "TRUST_PRINCIPAL_HEADERS", False)
        response = await client.get("/permissions/me", headers=ADMIN)
        assert response.status_code == 401

    async def test_denial_is_403_without_detail(self, client):
        response = await client.get("/permissions/catalog", headers=as_principal(7, "customer"))
        assert response.status_code == 403
        assert response.json() == {"detail": "Access denied"}

    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestCatalogRoutes:

    async def test_admin_reads_catalog(self, client):
        response = await client.get("/permissions/catalog", headers=ADMIN)
        assert response.status_code == 200
        data = response.json()
        assert "booking:create" in {p["name"] for p in data["permissions"]}
        assert data["roles"] == ["admin", "agent", "customer"]

    async def test_role_defaults(self, client):
        response = await client.get("/permissions/roles/customer", headers=ADMIN)
        assert response.status_code == 200
        permissions = response.json()["permissions"]
        assert "booking:create" in permissions
        assert "user:delete:any" not in permissions

    async def test_unknown_role_is_404(self, client):
        response = await client.get("/permissions/roles/superuser", headers=ADMIN)
        assert response.status_code == 404


class TestEffectiveRoutes:

    async def test_me(self, client):
        response = await client.get("/permissions/me", headers=as_principal(7, "customer"))
        assert response.status_code == 200
        data = response.json()
        assert data["principal_id"] == "7"
        assert data["role"] == "customer"
        assert data["override_permissions"] == []
        assert "booking:create" in data["permissions"]

    @pytest.mark.parametrize(
        "permissions, require_all, allowed",
        [
            (["booking:create"], True, True),
            (["user:delete:any"], True, False),
            (["booking:create", "user:delete:any"], True, False),
            (["booking:create", "user:delete:any"], False, True),
            (["user:fly"], True, False),
        ],
    )
    async def test_check(self, client, permissions, require_all, allowed):
        response = await client.post(
            "/permissions/check",
            json={"permissions": permissions, "require_all": require_all},
            headers=as_principal(7, "customer"),
        )
        assert response.status_code == 200
        assert response.json() == {"allowed": allowed}

    async def test_check_requires_permissions(self, client):
        response = await client.post("/permissions/check", json={"permissions": []}, headers=ADMIN)
        assert response.status_code == 400
        assert "permissions" in response.json()

    async def test_own_effective_permissions(self, client):
        response = await client.get("/permissions/users/7/effective", headers=as_principal(7, "customer"))
        assert response.status_code == 200

    async def test_other_users_effective_permissions_denied(self, client):
        response = await client.get("/permissions/users/9/effective", headers=as_principal(7, "customer"))
        assert response.status_code == 403

    async def test_admin_reads_any_user(self, client):
        response = await client.get("/permissions/users/9/effective", headers=ADMIN)
        assert response.status_code == 200
        assert response.json()["role"] == "customer"

    async def test_unknown_user_is_404(self, client):
        response = await client.get("/permissions/users/999/effective", headers=ADMIN)
        assert response.status_code == 404


class TestOverrideRoutes:

    async def test_grant_and_revoke(self, client, clock):
        expires_at = (clock.now + timedelta(days=7)).isoformat()
        response = await client.post(
            "/permissions/users/42/overrides",
            json={"permission_name": "user:update:any", "expires_at": expires_at, "reason": "ticket 123"},
            headers=ADMIN,
        )
        assert response.status_code == 201
        data = response.json()
        assert data["principal_id"] == "42"
        assert data["granted_by"] == "1"
        assert data["is_active"] is True

        response = await client.get("/permissions/users/42/effective", headers=ADMIN)
        assert response.json()["override_permissions"] == ["user:update:any"]

        response = await client.delete("/permissions/users/42/overrides/user:update:any", headers=ADMIN)
        assert response.status_code == 200
        assert response.json() == {"revoked": True}

        response = await client.get("/permissions/users/42/overrides", headers=ADMIN)
        overrides = response.json()
        assert len(overrides) == 1
        assert overrides[0]["is_granted"] is False
        assert overrides[0]["reason"] == "ticket 123"

    async def test_granted_override_expires(self, client, clock):
        await client.post(
            "/permissions/users/42/overrides",
            json={"permission_name": "analytics:view", "expires_at": (clock.now + timedelta(hours=1)).isoformat()},
            headers=ADMIN,
        )
        headers = as_principal(42, "customer")
        check = {"permissions": ["analytics:view"]}
        assert (await client.post("/permissions/check", json=check, headers=headers)).json()["allowed"]

        clock.advance(hours=1)
        assert not (await client.post("/permissions/check", json=check, headers=headers)).json()["allowed"]

    async def test_revoke_without_override(self, client):
        response = await client.delete("/permissions/users/42/overrides/analytics:view", headers=ADMIN)
        assert response.status_code == 200
        assert response.json() == {"revoked": False}

    async def test_grant_requires_admin_permissions(self, client):
        response = await client.post(
            "/permissions/users/42/overrides",
            json={"permission_name": "analytics:view"},
            headers=as_principal(7, "customer"),
        )
        assert response.status_code == 403

    async def test_past_expiry_rejected(self, client, clock):
        response = await client.post(
            "/permissions/users/42/overrides",
            json={"permission_name": "analytics:view", "expires_at": (clock.now - timedelta(days=1)).isoformat()},
            headers=ADMIN,
        )
        assert response.status_code == 400
        assert response.json()["field"] == "expires_at"

    async def test_unknown_permission_rejected(self, client):
        response = await client.post(
            "/permissions/users/42/overrides", json={"permission_name": "user:fly"}, headers=ADMIN
        )
        assert response.status_code == 400
        assert response.json()["field"] == "permission_name"

    async def test_unknown_user_rejected(self, client):
        response = await client.post(
            "/permissions/users/999/overrides", json={"permission_name": "analytics:view"}, headers=ADMIN
        )
        assert response.status_code == 400
        assert response.json()["field"] == "principal_id"

    async def test_malformed_permission_name_rejected(self, client):
        response = await client.post(
            "/permissions/users/42/overrides", json={"permission_name": "drop table;"}, headers=ADMIN
        )
        assert response.status_code == 400
        assert "permission_name" in response.json()

    async def test_history_is_admin_only(self, client):
        await client.post("/permissions/users/42/overrides", json={"permission_name": "analytics:view"}, headers=ADMIN)
        await client.delete("/permissions/users/42/overrides/analytics:view", headers=ADMIN)

        response = await client.get("/permissions/users/42/overrides/history", headers=ADMIN)
        assert response.status_code == 200
        assert [e["action"] for e in response.json()] == ["grant", "revoke"]

        response = await client.get("/permissions/users/42/overrides/history", headers=AGENT)
        assert response.status_code == 403

    async def test_deactivated_permission_reported_inactive(self, client, session_factory):
        await client.post("/permissions/users/42/overrides", json={"permission_name": "analytics:view"}, headers=ADMIN)
        async with session_factory() as db:
            await deactivate_permission(db, "analytics:view")

        response = await client.get("/permissions/users/42/overrides", headers=ADMIN)
        overrides = response.json()
        assert overrides[0]["is_granted"] is True
        assert overrides[0]["permission_active"] is False
        assert overrides[0]["is_active"] is False

        response = await client.get("/permissions/users/42/overrides?active_only=true", headers=ADMIN)
        assert response.json() == []

    async def test_overrides_listing_needs_user_permissions(self, client):
        response = await client.get("/permissions/users/42/overrides", headers=AGENT)
        assert response.status_code == 403

    async def test_sweep(self, client, clock):
        await client.post(
            "/permissions/users/42/overrides",
            json={"permission_name": "analytics:view", "expires_at": (clock.now + timedelta(hours=1)).isoformat()},
            headers=ADMIN,
        )
        clock.advance(hours=2)
        response = await client.post("/permissions/overrides/sweep", headers=ADMIN)
        assert response.status_code == 200
        assert response.json() == {"expired": 1}


class TestDependencies:
    """The FastAPI helpers used directly by other features."""

    @pytest_asyncio.fixture
    async def feature_client(self, access):
        app = FastAPI()

        @app.middleware("http")
        async def authenticate(request: Request, call_next):
            principal_id = request.headers.get("X-Test-User")
            if principal_id:
                request.state.principal = Principal(id=principal_id, role=request.headers["X-Test-Role"])
            return await call_next(request)

        can_edit = access.require_ownership_or_permission(
            "address:update", "address:update:any", lambda request: request.path_params["owner_id"]
        )

        @app.put("/addresses/{owner_id}")
        async def update_address(owner_id: str, principal: Principal = Depends(authorize(can_edit))):
            return {"owner_id": owner_id}

        @app.delete("/users/{user_id}")
        async def delete_user(user_id: str, principal=Depends(get_current_principal)):
            await check_permission(access, principal, "user:delete:any")
            return {"deleted": user_id}

        @app.get("/files/{owner_id}")
        async def read_file(owner_id: str, principal=Depends(get_current_principal)):
            check_ownership(principal, owner_id)
            return {"owner_id": owner_id}

        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            yield client

    @staticmethod
    def user(principal_id, role):
        return {"X-Test-User": str(principal_id), "X-Test-Role": role}

    async def test_request_state_principal(self, feature_client):
        response = await feature_client.put("/addresses/7", headers=self.user(7, "customer"))
        assert response.status_code == 200
        response = await feature_client.put("/addresses/9", headers=self.user(7, "customer"))
        assert response.status_code == 403
        response = await feature_client.put("/addresses/9")
        assert response.status_code == 401

    async def test_check_permission_in_handler(self, feature_client):
        response = await feature_client.delete("/users/9", headers=self.user(1, "admin"))
        assert response.status_code == 200
        response = await feature_client.delete("/users/9", headers=self.user(7, "customer"))
        assert response.status_code == 403
        response = await feature_client.delete("/users/9")
        assert response.status_code == 401

    async def test_check_ownership_in_handler(self, feature_client):
        response = await feature_client.get("/files/7", headers=self.user(7, "customer"))
        assert response.status_code == 200
        response = await feature_client.get("/files/7", headers=self.user(1, "admin"))
        assert response.status_code == 403
