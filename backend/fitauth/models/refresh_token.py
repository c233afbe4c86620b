"""
models/refresh_token.py — RefreshToken table definition.

One row is one link of a rotation chain. No business logic here; the ledger in
services/refresh_ledger.py is the only writer.

Invariants (enforced by the ledger):
  - is_used and is_revoked only ever go False → True.
  - Once either is True the row can never authorise another refresh.
  - Rows are never deleted; replaced_by_token keeps the audit chain.

FK policy: user_id ON DELETE CASCADE. Users are soft-deleted, so in practice
the cascade never fires.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.fitauth.extensions import db
from backend.fitauth.timeutil import utcnow


class RefreshToken(db.Model):
    __tablename__ = "refresh_tokens"

    __table_args__ = (
        CheckConstraint("LENGTH(token) > 0", name="ck_refresh_tokens_token_nonempty"),
        CheckConstraint("LENGTH(jwt_id) > 0", name="ck_refresh_tokens_jwt_id_nonempty"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Opaque base64 value (64 random bytes → 88 chars). The UNIQUE constraint is
    # the only uniqueness guarantee; the generator does not check.
    token: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    # jti of the access token this refresh token was issued alongside.
    jwt_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )

    is_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_revoked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    revoked_by_ip: Mapped[str | None] = mapped_column(String(45))

    replaced_by_token: Mapped[str | None] = mapped_column(String(255))

    date_created: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    user: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="refresh_tokens",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<RefreshToken id={self.id} "
            f"user_id={self.user_id} "
            f"used={self.is_used} revoked={self.is_revoked}>"
        )
