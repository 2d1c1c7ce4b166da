"""
User model with ULID primary keys.

Accounts are owned by the host service; the access control core only reads
this table to check that an override targets a real principal.
"""
from sqlalchemy import String, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, generate_ulid


class User(Base, TimestampMixin):
    """
    User model representing principals known to the service.

    Ids are stored as strings; numeric ids from legacy systems are kept in
    their decimal string form so they compare equal to principal ids.
    """
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=generate_ulid)

    email: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Role name as assigned by the host service (admin, agent, customer, ...)
    role: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, role={self.role!r})>"
