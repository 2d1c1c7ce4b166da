"""Pytest configuration and shared fixtures."""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from app.core.database.engine import build_engine, build_session_factory, init_db
from app.features.permissions.catalog import PermissionCatalog
from app.features.permissions.seed import seed_catalog
from app.features.permissions.service import AccessControl
from app.features.users.models import User
from app.features.users.schemas import Principal


class FakeClock:
    """Controllable UTC clock for expiry tests."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Fresh SQLite database per test."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    """Session factory over a database seeded with the default catalog."""
    factory = build_session_factory(engine)
    async with factory() as db:
        await seed_catalog(db)
    return factory


@pytest_asyncio.fixture
async def user_factory(session_factory):
    """Create users and return them as principals."""
    async def create(user_id, role: str = "customer") -> Principal:
        async with session_factory() as db:
            db.add(User(id=str(user_id), name=f"User {user_id}", role=role))
            await db.commit()
        return Principal(id=user_id, role=role)

    return create


@pytest.fixture
def catalog():
    return PermissionCatalog.from_seed()


@pytest_asyncio.fixture
async def access(session_factory, catalog, clock):
    return AccessControl.create(session_factory, catalog=catalog, clock=clock)


@pytest.fixture
def store(access):
    return access.store


@pytest.fixture
def resolver(access):
    return access.resolver
