"""
services/credential_store.py — User / Role persistence helpers.

Every query that looks up a user for authentication applies the live-user
predicate (is_active AND NOT is_deleted) explicitly. There is no global
soft-delete filter.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Only flush here; commits are the route's responsibility.
  - Connectivity faults surface as STORAGE_UNAVAILABLE (errors.py).
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import case, exists, literal, or_, select, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from backend.fitauth.errors import AppError, ErrorCode, translate_storage_errors
from backend.fitauth.models.role import Role, UserRole
from backend.fitauth.models.user import MAX_ACCESS_FAILED_COUNT, User
from backend.fitauth.timeutil import as_utc, utcnow


def _live_user():
    """SQL predicate for users that may authenticate."""
    return User.is_active.is_(True) & User.is_deleted.is_(False)


@translate_storage_errors
def find_by_username_or_email(identifier: str, session: Session) -> User | None:
    """Login lookup: matches either column, live users only."""
    return session.execute(
        select(User).where(
            or_(User.username == identifier, User.email == identifier),
            _live_user(),
        ).execution_options(populate_existing=True)
    ).scalars().first()


@translate_storage_errors
def find_by_id(user_id: uuid.UUID, session: Session, *, live_only: bool = True) -> User | None:
    user = session.get(User, user_id)
    if user is None:
        return None
    if live_only and (not user.is_active or user.is_deleted):
        return None
    return user


@translate_storage_errors
def find_by_email(email: str, session: Session) -> User | None:
    return session.execute(
        select(User).where(User.email == email, _live_user())
    ).scalar_one_or_none()


@translate_storage_errors
def find_for_reset(email: str, security_stamp: str, session: Session) -> User | None:
    """Exact match of email + current security stamp on a live user."""
    return session.execute(
        select(User).where(
            User.email == email,
            User.security_stamp == security_stamp,
            _live_user(),
        )
    ).scalar_one_or_none()


@translate_storage_errors
def username_exists(username: str, session: Session) -> bool:
    return session.execute(
        select(exists().where(User.username == username, User.is_deleted.is_(False)))
    ).scalar()


@translate_storage_errors
def email_exists(email: str, session: Session) -> bool:
    return session.execute(
        select(exists().where(User.email == email, User.is_deleted.is_(False)))
    ).scalar()


@translate_storage_errors
def find_active_role(name: str, session: Session) -> Role | None:
    """Case-insensitive role lookup through normalized_name; active roles only."""
    return session.execute(
        select(Role).where(
            Role.normalized_name == Role.normalize(name),
            Role.is_active.is_(True),
        )
    ).scalar_one_or_none()


def assign_role(user: User, role: Role, assigned_by: uuid.UUID | None = None) -> UserRole:
    assignment = UserRole(role=role, assigned_by=assigned_by, is_active=True)
    user.user_roles.append(assignment)
    return assignment


@translate_storage_errors
def save(user: User, session: Session) -> User:
    """
    Adds/updates `user` and flushes.

    date_updated is the mapper's version column: if another transaction
    updated the row since it was loaded, the flush matches zero rows and
    SQLAlchemy raises StaleDataError, reported as CONCURRENT_UPDATE (409).
    """
    session.add(user)
    try:
        session.flush()
    except StaleDataError as exc:
        raise AppError(
            ErrorCode.CONCURRENT_UPDATE,
            "The account was modified by another request. Please retry.",
            409,
        ) from exc
    return user


@translate_storage_errors
def record_failed_login(
        user_id: uuid.UUID,
        *,
        threshold: int,
        locked_until: datetime,
        session: Session,
) -> tuple[int, datetime | None]:
    """
    Counts one failed login with a single UPDATE evaluated against the stored
    row, so concurrent failures all land and none trips the version check.

    The counter is clamped to MAX_ACCESS_FAILED_COUNT. When the new count
    reaches `threshold`, lockout_end becomes `locked_until`. date_updated is
    bumped so stale copies of the row still fail their next save().

    Returns the stored (access_failed_count, lockout_end) after the update.
    Not committed; in-session copies of the user are left stale.
    """
    failures = User.access_failed_count + 1
    session.execute(
        update(User)
        .where(User.id == user_id)
        .values(
            access_failed_count=case(
                (failures > MAX_ACCESS_FAILED_COUNT, MAX_ACCESS_FAILED_COUNT),
                else_=failures,
            ),
            lockout_end=case(
                (failures >= threshold, literal(locked_until, User.__table__.c.lockout_end.type)),
                else_=User.lockout_end,
            ),
            date_updated=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    row = session.execute(
        select(User.access_failed_count, User.lockout_end).where(User.id == user_id)
    ).one()
    return row.access_failed_count, as_utc(row.lockout_end)
