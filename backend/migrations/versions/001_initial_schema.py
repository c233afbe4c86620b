"""Initial schema — users, roles, user_roles, refresh_tokens.

Revision: 001_initial_schema
Created:  2026-10-19

Append-only:
  This file must NEVER be edited after it has been applied to any database.
  If a schema change is required, create a NEW migration file.

Creation order (FK dependencies):
  users → roles → user_roles → refresh_tokens, then indexes.

ON DELETE policies:
  user_roles.user_id        → CASCADE
  user_roles.role_id        → CASCADE
  user_roles.assigned_by    → SET NULL
  refresh_tokens.user_id    → CASCADE
Users are soft-deleted, so in practice none of the cascades fire.

Username and email are unique among rows with is_deleted = false only, via
partial unique indexes (PostgreSQL and SQLite both support the WHERE clause).
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "001_initial_schema"
down_revision: str | None = None      # first migration — no parent
branch_labels: tuple | None = None
depends_on: tuple | None = None


def _created_column(name: str = "date_created") -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
    )


def upgrade() -> None:

    # ── Step 1: users ──────────────────────────────────────────────────────

    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("username", sa.String(50), nullable=False),
        sa.Column("email", sa.String(254), nullable=False),
        sa.Column("email_confirmed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("security_stamp", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("phone_number", sa.String(20), nullable=True),
        sa.Column("two_factor_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("lockout_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("lockout_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("access_failed_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        _created_column(),
        # Optimistic-concurrency version column; the ORM sets it on every write.
        sa.Column("date_updated", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.CheckConstraint(
            "LENGTH(TRIM(username)) > 0",
            name="ck_users_username_nonempty",
        ),
        sa.CheckConstraint(
            "email LIKE '%@%'",
            name="ck_users_email_format",
        ),
        sa.CheckConstraint(
            "access_failed_count >= 0 AND access_failed_count <= 10",
            name="ck_users_access_failed_count_range",
        ),
    )

    # ── Step 2: roles ──────────────────────────────────────────────────────

    op.create_table(
        "roles",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("normalized_name", sa.String(50), nullable=False),
        sa.Column("description", sa.String(500), nullable=True),
        sa.Column("permissions", sa.Text(), nullable=True),
        sa.Column("is_system_role", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_column(),
        sa.PrimaryKeyConstraint("id", name="pk_roles"),
        sa.UniqueConstraint("name", name="uq_roles_name"),
        sa.UniqueConstraint("normalized_name", name="uq_roles_normalized_name"),
    )

    # ── Step 3: user_roles ─────────────────────────────────────────────────

    op.create_table(
        "user_roles",
        sa.Column(
            "user_id",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_user_roles_user"),
            nullable=False,
        ),
        sa.Column(
            "role_id",
            sa.Uuid(),
            sa.ForeignKey("roles.id", ondelete="CASCADE", name="fk_user_roles_role"),
            nullable=False,
        ),
        _created_column("assigned_at"),
        sa.Column(
            "assigned_by",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="SET NULL", name="fk_user_roles_assigned_by"),
            nullable=True,
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint("user_id", "role_id", name="pk_user_roles"),
    )

    # ── Step 4: refresh_tokens ─────────────────────────────────────────────

    op.create_table(
        "refresh_tokens",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column(
            "user_id",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_refresh_tokens_user"),
            nullable=False,
        ),
        sa.Column("token", sa.String(255), nullable=False),
        sa.Column("jwt_id", sa.String(255), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_revoked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_by_ip", sa.String(45), nullable=True),
        sa.Column("replaced_by_token", sa.String(255), nullable=True),
        _created_column(),
        sa.PrimaryKeyConstraint("id", name="pk_refresh_tokens"),
        sa.UniqueConstraint("token", name="uq_refresh_tokens_token"),
        sa.CheckConstraint("LENGTH(token) > 0", name="ck_refresh_tokens_token_nonempty"),
        sa.CheckConstraint("LENGTH(jwt_id) > 0", name="ck_refresh_tokens_jwt_id_nonempty"),
    )

    # ── Step 5: indexes ────────────────────────────────────────────────────

    op.create_index(
        "uq_users_username_live",
        "users",
        ["username"],
        unique=True,
        postgresql_where=sa.text("is_deleted = false"),
        sqlite_where=sa.text("is_deleted = 0"),
    )
    op.create_index(
        "uq_users_email_live",
        "users",
        ["email"],
        unique=True,
        postgresql_where=sa.text("is_deleted = false"),
        sqlite_where=sa.text("is_deleted = 0"),
    )
    op.create_index("ix_users_is_active", "users", ["is_active"])
    op.create_index("ix_users_last_login_at", "users", ["last_login_at"])

    op.create_index("ix_roles_is_active", "roles", ["is_active"])
    op.create_index("ix_roles_is_system_role", "roles", ["is_system_role"])

    op.create_index("ix_user_roles_role_id", "user_roles", ["role_id"])

    # Revocation and "active sessions" queries filter by user.
    op.create_index("ix_refresh_tokens_user_id", "refresh_tokens", ["user_id"])
    op.create_index("ix_refresh_tokens_jwt_id", "refresh_tokens", ["jwt_id"])
    op.create_index("ix_refresh_tokens_expires_at", "refresh_tokens", ["expires_at"])


def downgrade() -> None:
    """
    Drop all objects created in upgrade(), in reverse dependency order.

    Provided for local development reset. In production prefer a corrective
    migration over a rollback.
    """
    op.drop_index("ix_refresh_tokens_expires_at", table_name="refresh_tokens")
    op.drop_index("ix_refresh_tokens_jwt_id",     table_name="refresh_tokens")
    op.drop_index("ix_refresh_tokens_user_id",    table_name="refresh_tokens")
    op.drop_index("ix_user_roles_role_id",        table_name="user_roles")
    op.drop_index("ix_roles_is_system_role",      table_name="roles")
    op.drop_index("ix_roles_is_active",           table_name="roles")
    op.drop_index("ix_users_last_login_at",       table_name="users")
    op.drop_index("ix_users_is_active",           table_name="users")
    op.drop_index("uq_users_email_live",          table_name="users")
    op.drop_index("uq_users_username_live",       table_name="users")

    op.drop_table("refresh_tokens")
    op.drop_table("user_roles")
    op.drop_table("roles")
    op.drop_table("users")
