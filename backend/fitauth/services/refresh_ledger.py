"""
services/refresh_ledger.py — Refresh-token rotation ledger.

Each refresh token is valid for exactly ONE refresh. Rotation replaces the
presented token with a new one and links them through replaced_by_token.

Concurrency: consume() is a compare-and-swap, not read-then-write.
  1. SELECT ... FOR UPDATE locks the row on databases that support it
     (PostgreSQL). SQLite ignores the clause and serialises writers instead.
  2. UPDATE refresh_tokens SET is_used = true, replaced_by_token = :new
       WHERE id = :id AND is_used = false AND is_revoked = false
         AND expires_at > :now
     Zero affected rows means another request consumed or revoked the token
     first, and this one fails.
  3. The replacement row is inserted in the same transaction, so a commit
     either records both the consumption and the new link, or neither.

Failure reasons (not found, jwt id mismatch, used, revoked, expired) are
deliberately collapsed into one INVALID_OR_EXPIRED_TOKEN error so callers
cannot probe the state of a rotation chain. The specific reason is logged.

Layer rules:
  - No Flask imports. Only flush; the route commits.
  - Rows are never deleted.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.fitauth.errors import (
    AppError,
    ErrorCode,
    invalid_or_expired_token,
    translate_storage_errors,
)
from backend.fitauth.models.refresh_token import RefreshToken
from backend.fitauth.timeutil import as_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Replacement:
    """The token that will take over from a consumed one."""

    token: str
    jwt_id: str
    ttl: timedelta


# ── Private helpers ────────────────────────────────────────────────────────

def _rejection_reason(record: RefreshToken | None, presented_jwt_id: str) -> str | None:
    """Returns why `record` cannot be consumed, or None if it can."""
    if record is None:
        return "not_found"
    if record.jwt_id != presented_jwt_id:
        return "jwt_id_mismatch"
    if record.is_used:
        return "already_used"
    if record.is_revoked:
        return "revoked"
    if as_utc(record.expires_at) <= utcnow():
        return "expired"
    return None


def _lookup(token: str, session: Session, *, lock: bool) -> RefreshToken | None:
    # populate_existing: bulk UPDATEs below bypass the identity map, so a
    # previously loaded row must be re-read rather than trusted.
    stmt = (
        select(RefreshToken)
        .where(RefreshToken.token == token)
        .execution_options(populate_existing=True)
    )
    if lock:
        stmt = stmt.with_for_update()
    return session.execute(stmt).scalar_one_or_none()


# ── Public ledger operations ───────────────────────────────────────────────

@translate_storage_errors
def issue(
        user_id: uuid.UUID,
        token: str,
        jwt_id: str,
        ttl: timedelta,
        session: Session,
) -> RefreshToken:
    """
    Inserts a new refresh token row and flushes.

    Raises:
      AppError(REFRESH_TOKEN_CONFLICT, 409) — the token value already exists.
        Never swallowed: a colliding token must not be handed to a client.
    """
    record = RefreshToken(
        user_id=user_id,
        token=token,
        jwt_id=jwt_id,
        expires_at=utcnow() + ttl,
    )
    session.add(record)
    try:
        session.flush()
    except IntegrityError as exc:
        logger.error("Refresh token insert rejected for user %s: %s", user_id, exc.orig)
        raise AppError(
            ErrorCode.REFRESH_TOKEN_CONFLICT,
            "A refresh token could not be stored. Please try again.",
            409,
        ) from exc
    return record


@translate_storage_errors
def peek(presented_token: str, presented_jwt_id: str, session: Session) -> RefreshToken:
    """
    Returns the row for `presented_token` if it could currently be consumed.

    Read-only pre-check used to find the owning user before minting the
    replacement pair. consume() repeats every check atomically.

    Raises:
      AppError(INVALID_OR_EXPIRED_TOKEN, 401)
    """
    record = _lookup(presented_token, session, lock=False)
    reason = _rejection_reason(record, presented_jwt_id)
    if reason is not None:
        logger.info("Refresh token rejected: %s", reason)
        raise invalid_or_expired_token()
    return record


@translate_storage_errors
def consume(
        presented_token: str,
        presented_jwt_id: str,
        replacement: Replacement,
        session: Session,
) -> RefreshToken:
    """
    Marks `presented_token` used and inserts `replacement` in one transaction.

    Returns the consumed record (is_used=True, replaced_by_token set).

    Raises:
      AppError(INVALID_OR_EXPIRED_TOKEN, 401) — not found, jwt id mismatch,
        already used, revoked, expired, or lost a concurrent race.
      AppError(REFRESH_TOKEN_CONFLICT, 409) — replacement value collides.
    """
    record = _lookup(presented_token, session, lock=True)
    reason = _rejection_reason(record, presented_jwt_id)
    if reason is not None:
        logger.info("Refresh token rejected: %s", reason)
        raise invalid_or_expired_token()

    result = session.execute(
        update(RefreshToken)
        .where(
            RefreshToken.id == record.id,
            RefreshToken.is_used.is_(False),
            RefreshToken.is_revoked.is_(False),
            RefreshToken.expires_at > utcnow(),
        )
        .values(is_used=True, replaced_by_token=replacement.token)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning(
            "Refresh token for user %s was consumed or revoked concurrently",
            record.user_id,
        )
        raise invalid_or_expired_token()

    session.expire(record, ["is_used", "replaced_by_token"])

    issue(
        user_id=record.user_id,
        token=replacement.token,
        jwt_id=replacement.jwt_id,
        ttl=replacement.ttl,
        session=session,
    )
    return record


@translate_storage_errors
def revoke(
        token: str,
        ip: str | None,
        session: Session,
        user_id: uuid.UUID | None = None,
) -> bool:
    """
    Revokes one refresh token.

    Returns False when the token is unknown, already revoked, or (when
    `user_id` is given) owned by someone else. Calling it twice is harmless.
    """
    conditions = [RefreshToken.token == token, RefreshToken.is_revoked.is_(False)]
    if user_id is not None:
        conditions.append(RefreshToken.user_id == user_id)

    result = session.execute(
        update(RefreshToken)
        .where(*conditions)
        .values(is_revoked=True, revoked_at=utcnow(), revoked_by_ip=ip)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


@translate_storage_errors
def revoke_all_for_user(user_id: uuid.UUID, ip: str | None, session: Session) -> int:
    """Revokes every non-revoked token of `user_id` in one statement. Returns the count."""
    result = session.execute(
        update(RefreshToken)
        .where(RefreshToken.user_id == user_id, RefreshToken.is_revoked.is_(False))
        .values(is_revoked=True, revoked_at=utcnow(), revoked_by_ip=ip)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


@translate_storage_errors
def count_active_for_user(user_id: uuid.UUID, session: Session) -> int:
    """Number of tokens of `user_id` that are not revoked."""
    return session.execute(
        select(func.count())
        .select_from(RefreshToken)
        .where(RefreshToken.user_id == user_id, RefreshToken.is_revoked.is_(False))
    ).scalar_one()
