"""
models/user.py — User table definition.

No business logic. No imports from services or routes.

Soft delete only: rows are never removed. "Active" means is_active = true AND
is_deleted = false; that predicate is applied explicitly by
services/credential_store.py at every query, never by an implicit filter.

Optimistic concurrency: date_updated doubles as the mapper's version column,
so a flush that races another writer raises StaleDataError instead of
silently overwriting lockout state.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Index, Integer, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.fitauth.extensions import db
from backend.fitauth.timeutil import utcnow

# Upper bound of access_failed_count; the counter is clamped to it in code too.
MAX_ACCESS_FAILED_COUNT = 10


class User(db.Model):
    __tablename__ = "users"

    __table_args__ = (
        CheckConstraint(
            "LENGTH(TRIM(username)) > 0",
            name="ck_users_username_nonempty",
        ),
        CheckConstraint(
            "email LIKE '%@%'",
            name="ck_users_email_format",
        ),
        CheckConstraint(
            f"access_failed_count >= 0 AND access_failed_count <= {MAX_ACCESS_FAILED_COUNT}",
            name="ck_users_access_failed_count_range",
        ),
        # Username and email are unique among non-deleted users only.
        Index(
            "uq_users_username_live",
            "username",
            unique=True,
            postgresql_where=text("is_deleted = false"),
            sqlite_where=text("is_deleted = 0"),
        ),
        Index(
            "uq_users_email_live",
            "email",
            unique=True,
            postgresql_where=text("is_deleted = false"),
            sqlite_where=text("is_deleted = 0"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    username: Mapped[str] = mapped_column(String(50), nullable=False)
    email: Mapped[str] = mapped_column(String(254), nullable=False)
    email_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    # Rotated on every password reset request and completion. Its current value
    # is the single-use reset token.
    security_stamp: Mapped[str] = mapped_column(String(255), nullable=False)

    first_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    phone_number: Mapped[str | None] = mapped_column(String(20))

    # Stored for the client; no MFA flow reads it.
    two_factor_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    lockout_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    lockout_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    access_failed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    date_created: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    date_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __mapper_args__ = {
        "version_id_col": date_updated,
        "version_id_generator": lambda _previous: utcnow(),
    }

    # ── Relationships ──────────────────────────────────────────────────────

    user_roles: Mapped[list["UserRole"]] = relationship(  # noqa: F821
        "UserRole",
        back_populates="user",
        foreign_keys="UserRole.user_id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    refresh_tokens: Mapped[list["RefreshToken"]] = relationship(  # noqa: F821
        "RefreshToken",
        back_populates="user",
        lazy="noload",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __repr__(self) -> str:  # pragma: no cover
        return f"<User id={self.id} username={self.username!r}>"
