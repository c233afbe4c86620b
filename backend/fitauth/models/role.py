"""
models/role.py — Role and UserRole (assignment) table definitions.

A Role groups string permissions stored as a serialized JSON list in a text
column. Parsing of that blob lives in services/auth_service.py, which keeps the
"not JSON → single permission literal" fallback.

UserRole is the many-to-many junction; each assignment can be deactivated
independently of the role itself.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.fitauth.extensions import db
from backend.fitauth.timeutil import utcnow


class Role(db.Model):
    __tablename__ = "roles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    # Upper-cased name; role lookups compare against this column.
    normalized_name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    description: Mapped[str | None] = mapped_column(String(500))

    # JSON array of permission strings, e.g. '["workouts.read", "workouts.write"]'.
    permissions: Mapped[str | None] = mapped_column(Text)

    # System roles cannot be deleted.
    is_system_role: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)

    date_created: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    user_roles: Mapped[list["UserRole"]] = relationship(
        "UserRole",
        back_populates="role",
    )

    @staticmethod
    def normalize(name: str) -> str:
        return name.strip().upper()

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Role name={self.name!r} active={self.is_active}>"


class UserRole(db.Model):
    __tablename__ = "user_roles"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    role_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("roles.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    )

    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    assigned_by: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
    )

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    user: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="user_roles",
        foreign_keys=[user_id],
    )

    role: Mapped[Role] = relationship(
        Role,
        back_populates="user_roles",
        lazy="joined",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<UserRole user_id={self.user_id} role_id={self.role_id} active={self.is_active}>"
