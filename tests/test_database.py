"""Tests for database helpers."""

from app.core.database.base import generate_ulid
from app.features.users.models import User


class TestGenerateUlid:

    def test_returns_26_character_string(self):
        value = generate_ulid()
        assert isinstance(value, str)
        assert len(value) == 26

    def test_values_are_unique(self):
        assert len({generate_ulid() for _ in range(100)}) == 100

    async def test_default_primary_key_on_insert(self, session_factory):
        async with session_factory() as db:
            user = User(name="No explicit id", role="customer")
            db.add(user)
            await db.commit()
        assert isinstance(user.id, str)
        assert len(user.id) == 26
