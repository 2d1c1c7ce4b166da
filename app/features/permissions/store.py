"""
Persisted per-user permission overrides.

The store is the only writer of override state. Writes are validated and
applied as one transaction each; reads evaluate expiry lazily against the
injected clock, so an expired grant stops counting without any cleanup.
"""
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.features.permissions.exceptions import (
    InvalidExpiryError,
    InvalidGrant,
    UnknownPermissionError,
    UnknownPrincipalError,
)
from app.features.permissions.models import OverrideEvent, Permission, UserPermissionOverride
from app.features.permissions.ownership import canonical_id
from app.features.users.models import User
from app.utils import as_utc, get_logger, utcnow


log = get_logger(__name__)

Clock = Callable[[], datetime]


@dataclass(frozen=True)
class OverrideRecord:
    """Snapshot of an override row, detached from any session."""
    principal_id: str
    permission_name: str
    is_granted: bool
    granted_by: str
    granted_at: datetime
    expires_at: Optional[datetime]
    reason: Optional[str]
    revoked_by: Optional[str] = None
    revoked_at: Optional[datetime] = None
    # A retired permission stops counting even while the override is granted
    permission_active: bool = True

    def is_active_at(self, now: datetime) -> bool:
        return (
            self.permission_active
            and self.is_granted
            and (self.expires_at is None or now < self.expires_at)
        )

    @classmethod
    def from_row(
        cls, row: UserPermissionOverride, permission_name: str, permission_active: bool = True
    ) -> "OverrideRecord":
        return cls(
            principal_id=row.user_id,
            permission_name=permission_name,
            is_granted=row.is_granted,
            granted_by=row.granted_by,
            granted_at=as_utc(row.granted_at),
            expires_at=as_utc(row.expires_at),
            reason=row.reason,
            revoked_by=row.revoked_by,
            revoked_at=as_utc(row.revoked_at),
            permission_active=permission_active,
        )


@dataclass
class _CacheEntry:
    loaded_at: float
    # (permission name, expires_at) for every granted row
    grants: tuple[tuple[str, Optional[datetime]], ...]


class OverrideStore:
    """
    Grants and revocations of individual permissions for individual users.

    Args:
        session_factory: async session factory of the persistence layer
        clock: returns the current time; expiry is judged against it
        cache_ttl: seconds a principal's granted rows may be served from
            memory. The cache holds raw expiry times and is filtered on every
            read, so it never keeps an override alive past expires_at. Every
            write through this store invalidates it.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = utcnow,
        cache_ttl: float = 0.0,
    ):
        self.session_factory = session_factory
        self._clock = clock
        self._cache_ttl = cache_ttl
        self._cache: dict[str, _CacheEntry] = {}
        self._generation = 0

    def now(self) -> datetime:
        return as_utc(self._clock())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def grant(
        self,
        principal_id: Any,
        permission_name: str,
        granted_by: Any,
        expires_at: Optional[datetime] = None,
        reason: Optional[str] = None,
    ) -> OverrideRecord:
        """
        Grant a permission to a user, creating or refreshing the override.

        Granting an already granted permission refreshes granted_at,
        granted_by, expires_at and reason; the decision is unchanged.

        Raises:
            UnknownPrincipalError: no such user
            UnknownPermissionError: no such active permission
            InvalidExpiryError: expires_at is not strictly in the future
            InvalidGrant: granted_by missing
        """
        user_id = canonical_id(principal_id)
        if user_id is None:
            raise UnknownPrincipalError(str(principal_id))
        actor = canonical_id(granted_by)
        if actor is None:
            raise InvalidGrant("granted_by is required", field="granted_by")

        now = self.now()
        expires_at = as_utc(expires_at)
        if expires_at is not None and expires_at <= now:
            raise InvalidExpiryError()

        try:
            record = await self._grant_once(user_id, permission_name, actor, now, expires_at, reason)
        except IntegrityError:
            # A concurrent grant inserted the row first; apply ours as an update
            log.debug(f"Concurrent insert for override ({user_id}, {permission_name}), retrying as update")
            record = await self._grant_once(user_id, permission_name, actor, now, expires_at, reason)

        self._invalidate(user_id)
        log.info(
            f"Granted '{permission_name}' to user {user_id} by {actor}"
            + (f" until {expires_at.isoformat()}" if expires_at else "")
        )
        return record

    async def _grant_once(
        self,
        user_id: str,
        permission_name: str,
        actor: str,
        now: datetime,
        expires_at: Optional[datetime],
        reason: Optional[str],
    ) -> OverrideRecord:
        async with self.session_factory() as db:
            async with db.begin():
                await self._require_principal(db, user_id)
                permission = await self._require_permission(db, permission_name, active_only=True)
                override = await self._locked_override(db, user_id, permission.id)

                if override is None:
                    override = UserPermissionOverride(user_id=user_id, permission_id=permission.id)
                    db.add(override)

                override.is_granted = True
                override.granted_by = actor
                override.granted_at = now
                override.expires_at = expires_at
                override.reason = reason
                override.revoked_by = None
                override.revoked_at = None

                db.add(OverrideEvent(
                    user_id=user_id,
                    permission_name=permission.name,
                    action="grant",
                    actor_id=actor,
                    occurred_at=now,
                    expires_at=expires_at,
                    reason=reason,
                ))
                await db.flush()
                return OverrideRecord.from_row(override, permission.name)

    async def revoke(
        self,
        principal_id: Any,
        permission_name: str,
        revoked_by: Any = None,
        reason: Optional[str] = None,
    ) -> bool:
        """
        Revoke a previously granted override.

        The row is kept with is_granted cleared; expires_at and reason of the
        last grant are left in place and the revoke is appended to the
        history.

        Returns:
            True if an override existed for the pair, False otherwise

        Raises:
            UnknownPrincipalError: no such user
            UnknownPermissionError: no such permission
        """
        user_id = canonical_id(principal_id)
        if user_id is None:
            raise UnknownPrincipalError(str(principal_id))
        actor = canonical_id(revoked_by)
        now = self.now()

        async with self.session_factory() as db:
            async with db.begin():
                await self._require_principal(db, user_id)
                permission = await self._require_permission(db, permission_name, active_only=False)
                override = await self._locked_override(db, user_id, permission.id)

                if override is None:
                    log.debug(f"No override to revoke for ({user_id}, {permission_name})")
                    return False

                if override.is_granted:
                    override.is_granted = False
                    override.revoked_by = actor
                    override.revoked_at = now
                    db.add(OverrideEvent(
                        user_id=user_id,
                        permission_name=permission.name,
                        action="revoke",
                        actor_id=actor,
                        occurred_at=now,
                        reason=reason,
                    ))

        self._invalidate(user_id)
        log.info(f"Revoked '{permission_name}' from user {user_id}" + (f" by {actor}" if actor else ""))
        return True

    async def sweep_expired(self) -> int:
        """
        Clear is_granted on overrides whose expiry has passed.

        Not needed for correctness (reads already ignore expired grants);
        keeps the table honest for reporting.

        Returns:
            Number of overrides expired
        """
        now = self.now()
        expired = 0
        async with self.session_factory() as db:
            async with db.begin():
                stmt = (
                    select(UserPermissionOverride, Permission.name)
                    .join(Permission, Permission.id == UserPermissionOverride.permission_id)
                    .where(
                        UserPermissionOverride.is_granted.is_(True),
                        UserPermissionOverride.expires_at.is_not(None),
                    )
                    .with_for_update()
                )
                result = await db.execute(stmt)
                for override, permission_name in result.all():
                    if not override.is_expired(now):
                        continue
                    override.is_granted = False
                    db.add(OverrideEvent(
                        user_id=override.user_id,
                        permission_name=permission_name,
                        action="expire",
                        occurred_at=now,
                        expires_at=override.expires_at,
                    ))
                    expired += 1

        if expired:
            self._invalidate()
            log.info(f"Swept {expired} expired permission overrides")
        return expired

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def active_overrides_for(self, principal_id: Any) -> frozenset[str]:
        """
        Names of permissions currently granted to a user by override.

        An override counts while is_granted is set and expires_at is unset
        or still in the future.
        """
        user_id = canonical_id(principal_id)
        if user_id is None:
            return frozenset()

        grants = await self._granted(user_id)
        now = self.now()
        return frozenset(
            name for name, expires_at in grants
            if expires_at is None or now < expires_at
        )

    async def get_override(self, principal_id: Any, permission_name: str) -> Optional[OverrideRecord]:
        user_id = canonical_id(principal_id)
        if user_id is None:
            return None
        async with self.session_factory() as db:
            stmt = (
                select(UserPermissionOverride, Permission.is_active)
                .join(Permission, Permission.id == UserPermissionOverride.permission_id)
                .where(UserPermissionOverride.user_id == user_id, Permission.name == permission_name)
            )
            result = await db.execute(stmt)
            row = result.first()
            if row is None:
                return None
            override, permission_active = row
            return OverrideRecord.from_row(override, permission_name, permission_active)

    async def list_overrides(self, principal_id: Any, include_inactive: bool = True) -> list[OverrideRecord]:
        """All override rows for a user, optionally only the active ones."""
        user_id = canonical_id(principal_id)
        if user_id is None:
            return []
        async with self.session_factory() as db:
            stmt = (
                select(UserPermissionOverride, Permission.name, Permission.is_active)
                .join(Permission, Permission.id == UserPermissionOverride.permission_id)
                .where(UserPermissionOverride.user_id == user_id)
                .order_by(Permission.name)
            )
            result = await db.execute(stmt)
            records = [
                OverrideRecord.from_row(row, name, permission_active)
                for row, name, permission_active in result.all()
            ]

        if include_inactive:
            return records
        now = self.now()
        return [r for r in records if r.is_active_at(now)]

    async def history_for(self, principal_id: Any, permission_name: Optional[str] = None) -> list[OverrideEvent]:
        """Override events for a user, oldest first."""
        user_id = canonical_id(principal_id)
        if user_id is None:
            return []
        async with self.session_factory() as db:
            stmt = select(OverrideEvent).where(OverrideEvent.user_id == user_id)
            if permission_name:
                stmt = stmt.where(OverrideEvent.permission_name == permission_name)
            result = await db.execute(stmt.order_by(OverrideEvent.id))
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _granted(self, user_id: str) -> tuple[tuple[str, Optional[datetime]], ...]:
        if self._cache_ttl > 0:
            entry = self._cache.get(user_id)
            if entry is not None and time.monotonic() - entry.loaded_at < self._cache_ttl:
                return entry.grants

        generation = self._generation
        async with self.session_factory() as db:
            stmt = (
                select(Permission.name, UserPermissionOverride.expires_at)
                .join(Permission, Permission.id == UserPermissionOverride.permission_id)
                .where(
                    UserPermissionOverride.user_id == user_id,
                    UserPermissionOverride.is_granted.is_(True),
                    Permission.is_active.is_(True),
                )
            )
            result = await db.execute(stmt)
            grants = tuple((name, as_utc(expires_at)) for name, expires_at in result.all())

        # A write that landed while we were reading makes this result stale
        if self._cache_ttl > 0 and generation == self._generation:
            self._cache[user_id] = _CacheEntry(loaded_at=time.monotonic(), grants=grants)
        return grants

    def _invalidate(self, user_id: Optional[str] = None):
        self._generation += 1
        if user_id is None:
            self._cache.clear()
        else:
            self._cache.pop(user_id, None)

    async def _require_principal(self, db: AsyncSession, user_id: str) -> User:
        user = await db.get(User, user_id)
        if user is None:
            raise UnknownPrincipalError(user_id)
        return user

    async def _require_permission(self, db: AsyncSession, name: str, active_only: bool) -> Permission:
        stmt = select(Permission).where(Permission.name == name)
        if active_only:
            stmt = stmt.where(Permission.is_active.is_(True))
        result = await db.execute(stmt)
        permission = result.scalars().first()
        if permission is None:
            raise UnknownPermissionError(name)
        return permission

    async def _locked_override(
        self, db: AsyncSession, user_id: str, permission_id: str
    ) -> Optional[UserPermissionOverride]:
        stmt = (
            select(UserPermissionOverride)
            .where(
                UserPermissionOverride.user_id == user_id,
                UserPermissionOverride.permission_id == permission_id,
            )
            .with_for_update()
        )
        result = await db.execute(stmt)
        return result.scalars().first()
