"""
Permission, Role, and override models for the access control core.

This module implements the persisted state of the permission system:
- Permission catalog (named capabilities)
- Roles and their append-style permission grants
- Per-user permission overrides with expiry
- Append-only history of override changes
"""
from datetime import datetime
from sqlalchemy import String, ForeignKey, Text, DateTime, Boolean, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, generate_ulid
from app.utils import as_utc, utcnow


# ============================================================================
# Catalog Models
# ============================================================================

class Permission(Base, TimestampMixin):
    """
    Permission model: a named capability of the form resource:action[:scope].

    Examples:
    - "booking:create"
    - "user:update:any"
    - "system:config:read"

    The name is immutable once created; a permission is retired by clearing
    is_active, never by renaming or deleting it.
    """
    __tablename__ = "permissions"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<Permission(id={self.id}, name={self.name!r}, active={self.is_active})>"


class Role(Base, TimestampMixin):
    """
    Role model: a named bundle of default permissions.

    Examples: admin, agent, customer
    """
    __tablename__ = "roles"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    grants: Mapped[list["RolePermission"]] = relationship(
        "RolePermission",
        back_populates="role",
        lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<Role(id={self.id}, name={self.name!r})>"


class RolePermission(Base):
    """
    Append-style grant of a permission to a role.

    Removing a permission from a role stamps revoked_at on the live record;
    granting it again appends a new record. The role's static permission set
    is the union of records with revoked_at unset.
    """
    __tablename__ = "role_permissions"
    __table_args__ = (
        Index("ix_role_permissions_role_active", "role_id", "revoked_at"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    role_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("roles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    permission_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False, index=True
    )

    granted_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    granted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    revoked_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    role: Mapped["Role"] = relationship("Role", back_populates="grants", lazy="selectin")
    permission: Mapped["Permission"] = relationship("Permission", lazy="selectin")

    def __repr__(self) -> str:
        return f"<RolePermission(role_id={self.role_id}, permission_id={self.permission_id}, revoked={self.revoked_at is not None})>"


# ============================================================================
# Override Models
# ============================================================================

class UserPermissionOverride(Base, TimestampMixin):
    """
    Current state of a per-user exception to the role defaults.

    Exactly one row per (user, permission). A revoke clears is_granted and
    leaves the last grant's expiry and reason in place; the complete sequence
    of changes is kept in OverrideEvent.
    """
    __tablename__ = "user_permission_overrides"
    __table_args__ = (
        UniqueConstraint("user_id", "permission_id", name="uq_user_permission_override"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    permission_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False, index=True
    )

    is_granted: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    granted_by: Mapped[str] = mapped_column(String(64), nullable=False)
    granted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    revoked_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    permission: Mapped["Permission"] = relationship("Permission", lazy="selectin")

    def is_expired(self, now: datetime) -> bool:
        """True from expires_at onwards. Overrides without expiry never expire."""
        expires_at = as_utc(self.expires_at)
        return expires_at is not None and now >= expires_at

    def __repr__(self) -> str:
        return f"<UserPermissionOverride(user_id={self.user_id}, permission_id={self.permission_id}, granted={self.is_granted})>"


class OverrideEvent(Base):
    """
    Append-only audit trail of override changes.

    action is one of "grant", "revoke" or "expire" (written by the sweeper).
    """
    __tablename__ = "user_permission_override_events"

    # Integer key keeps events in insertion order
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    permission_name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(20), nullable=False)

    actor_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<OverrideEvent(user_id={self.user_id}, permission={self.permission_name!r}, action={self.action})>"
