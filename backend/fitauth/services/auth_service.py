"""
services/auth_service.py — Authentication business logic (the orchestrator).

Responsibilities:
  - Registration and credential verification with account lockout
  - Issuing access + refresh token pairs and recording them in the ledger
  - Refresh-token rotation, logout (one device / all devices)
  - Forgot / reset password through the security stamp
  - Role and permission aggregation for token claims

Layer rules:
  - No imports from routes or schemas.
  - No use of flask.request, flask.g or flask.current_app. Settings, the
    email sender and the deadline arrive as arguments.
  - Only flush; the route commits. The one exception is the failed-login
    counter, which is committed before INVALID_CREDENTIALS is raised so the
    rollback of the failed request does not undo it.

Login state machine:
  Lookup ─┬─ not found ─────────────────────────────→ INVALID_CREDENTIALS
          └─ found → lockout check ─┬─ locked ──────→ INVALID_CREDENTIALS
                                    └─ unlocked → verify ─┬─ failed → count, maybe lock,
                                                          │           commit, INVALID_CREDENTIALS
                                                          └─ ok → reset counters, issue pair
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from urllib.parse import urlencode

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.fitauth.errors import (
    AppError,
    ErrorCode,
    invalid_credentials,
    invalid_or_expired_token,
    translate_storage_errors,
)
from backend.fitauth.models.role import Role
from backend.fitauth.models.user import User
from backend.fitauth.services import credential_store, refresh_ledger
from backend.fitauth.services.email_service import EmailSender
from backend.fitauth.services.token_issuer import issue_access_token, issue_refresh_token
from backend.fitauth.services.token_validator import extract_token_id
from backend.fitauth.settings import AuthSettings
from backend.fitauth.timeutil import as_utc, utcnow

logger = logging.getLogger(__name__)

TOKEN_TYPE = "Bearer"


@dataclass(frozen=True)
class ForgotPasswordResult:
    """reset_link is None when no active account matched the email."""

    reset_link: str | None
    email_sent: bool


# ── Private helpers ────────────────────────────────────────────────────────

def _new_security_stamp() -> str:
    return str(uuid.uuid4())


def _check_deadline(deadline: datetime | None, operation: str) -> None:
    if deadline is not None and utcnow() >= deadline:
        logger.warning("Deadline exceeded before %s could be recorded", operation)
        raise AppError(
            ErrorCode.DEADLINE_EXCEEDED,
            "The request took too long and was cancelled. Please try again.",
            503,
        )


def _active_roles(user: User) -> list[Role]:
    return [
        assignment.role
        for assignment in user.user_roles
        if assignment.is_active and assignment.role is not None and assignment.role.is_active
    ]


def parse_permissions(blob: str | None) -> list[str]:
    """
    Decodes a role's permission text.

    A JSON list of strings yields its items. Anything else that is not empty
    (invalid JSON, a JSON scalar or object) is taken as one literal permission.
    """
    if blob is None or not blob.strip():
        return []
    try:
        parsed = json.loads(blob)
    except ValueError:
        return [blob]
    if isinstance(parsed, list) and all(isinstance(item, str) for item in parsed):
        return list(parsed)
    return [blob]


def collect_roles(user: User) -> list[str]:
    """Names of the user's active roles, through active assignments only."""
    names: list[str] = []
    for role in _active_roles(user):
        if role.name not in names:
            names.append(role.name)
    return names


def collect_permissions(user: User) -> list[str]:
    """Union of the permissions of every active role, first-seen order."""
    seen: dict[str, None] = {}
    for role in _active_roles(user):
        for permission in parse_permissions(role.permissions):
            seen.setdefault(permission, None)
    return list(seen)


def _isoformat(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value is not None else None


def _build_user_dict(user: User, roles: list[str], permissions: list[str]) -> dict:
    """Serialises a User to a plain dict. No business logic."""
    return {
        "id":                 str(user.id),
        "username":           user.username,
        "email":              user.email,
        "email_confirmed":    user.email_confirmed,
        "first_name":         user.first_name,
        "last_name":          user.last_name,
        "full_name":          user.full_name,
        "roles":              roles,
        "permissions":        permissions,
        "two_factor_enabled": user.two_factor_enabled,
        "last_login_at":      _isoformat(user.last_login_at),
        "date_created":       _isoformat(user.date_created),
    }


def _mint_pair(user: User, settings: AuthSettings) -> tuple[dict, refresh_ledger.Replacement]:
    """
    Signs an access token and draws a refresh token for `user`.

    Nothing is persisted. The caller records the refresh token in the ledger
    (issue or consume) before the pair is returned to anyone.
    """
    roles = collect_roles(user)
    permissions = collect_permissions(user)
    access = issue_access_token(user, roles, permissions, settings.tokens)
    refresh = issue_refresh_token()

    response = {
        "access_token":  access.token,
        "refresh_token": refresh,
        "token_type":    TOKEN_TYPE,
        "expires_in":    settings.tokens.access_ttl_seconds,
        "user":          _build_user_dict(user, roles, permissions),
    }
    replacement = refresh_ledger.Replacement(
        token=refresh,
        jwt_id=access.jti,
        ttl=settings.tokens.refresh_ttl,
    )
    return response, replacement


def _is_locked_out(user: User) -> bool:
    if not user.lockout_enabled or user.lockout_end is None:
        return False
    return as_utc(user.lockout_end) > utcnow()


@translate_storage_errors
def _record_failed_attempt(user: User, settings: AuthSettings, session: Session) -> None:
    """
    Counts the failure in storage and starts a lockout at the threshold.

    Committed here: the request is about to fail and the route will roll back.
    The counter is not reset when a lockout starts, so after it ends the next
    failure locks the account again.
    """
    policy = settings.lockout
    user_id = user.id
    failures, locked_until = credential_store.record_failed_login(
        user_id,
        threshold=policy.threshold,
        locked_until=utcnow() + policy.duration,
        session=session,
    )
    session.commit()

    if failures >= policy.threshold:
        logger.warning(
            "Account %s locked until %s after %d failed login attempts",
            user_id,
            locked_until.isoformat(),
            failures,
        )


def _duplicate_from_integrity_error(exc: IntegrityError) -> AppError | None:
    """
    Maps a unique-index race during registration to the matching duplicate
    error, or None for any other integrity failure.

    PostgreSQL names the violated index; SQLite names the column instead.
    """
    diag = getattr(exc.orig, "diag", None)
    detail = f"{getattr(diag, 'constraint_name', None) or ''} {exc.orig}".lower()
    if "uq_users_email_live" in detail or "unique constraint failed: users.email" in detail:
        return AppError(
            ErrorCode.DUPLICATE_EMAIL,
            "This email address is already registered.",
            409,
            field="email",
        )
    if "uq_users_username_live" in detail or "unique constraint failed: users.username" in detail:
        return AppError(
            ErrorCode.DUPLICATE_USERNAME,
            "This username is already taken.",
            409,
            field="username",
        )
    return None


# ── Public service functions ───────────────────────────────────────────────

def login_user(
        identifier: str,
        password: str,
        *,
        settings: AuthSettings,
        session: Session,
        deadline: datetime | None = None,
) -> dict:
    """
    Verifies credentials and issues a new access + refresh token pair.

    `identifier` is a username or an email address.

    Raises:
      AppError(INVALID_CREDENTIALS, 401) — unknown, inactive or deleted user,
        locked account, or wrong password. One message for every cause.
      AppError(DEADLINE_EXCEEDED, 503)   — nothing was issued.
      AppError(REFRESH_TOKEN_CONFLICT, 409)

    Returns: {"access_token", "refresh_token", "token_type", "expires_in", "user"}
    """
    user = credential_store.find_by_username_or_email(identifier, session)
    if user is None:
        logger.info("Login failed: no active account matches the identifier")
        raise invalid_credentials()

    if _is_locked_out(user):
        logger.info("Login refused for locked account %s", user.id)
        raise invalid_credentials()

    if not settings.hasher.verify(password, user.password_hash):
        _record_failed_attempt(user, settings, session)
        raise invalid_credentials()

    return _complete_login(user, settings=settings, session=session, deadline=deadline)


def _complete_login(
        user: User,
        *,
        settings: AuthSettings,
        session: Session,
        deadline: datetime | None,
) -> dict:
    user.access_failed_count = 0
    user.lockout_end = None
    user.last_login_at = utcnow()
    credential_store.save(user, session)

    response, refresh = _mint_pair(user, settings)
    _check_deadline(deadline, "login")
    refresh_ledger.issue(
        user_id=user.id,
        token=refresh.token,
        jwt_id=refresh.jwt_id,
        ttl=refresh.ttl,
        session=session,
    )
    logger.info("User %s logged in", user.id)
    return response


def register_user(
        username: str,
        email: str,
        password: str,
        role: str,
        *,
        first_name: str = "",
        last_name: str = "",
        phone_number: str | None = None,
        settings: AuthSettings,
        session: Session,
        email_sender: EmailSender | None = None,
        deadline: datetime | None = None,
) -> dict:
    """
    Creates an account with one role, then logs it in.

    Checks run in this order, each with its own error:
      AppError(DUPLICATE_USERNAME, 409)
      AppError(DUPLICATE_EMAIL, 409)
      AppError(INVALID_ROLE, 400)      — no active role with that name

    The welcome email is best-effort: a delivery failure is logged and the
    registration still succeeds.

    Returns: same shape as login_user().
    """
    if credential_store.username_exists(username, session):
        raise AppError(
            ErrorCode.DUPLICATE_USERNAME,
            "This username is already taken.",
            409,
            field="username",
        )

    if credential_store.email_exists(email, session):
        raise AppError(
            ErrorCode.DUPLICATE_EMAIL,
            "This email address is already registered.",
            409,
            field="email",
        )

    role_row = credential_store.find_active_role(role, session)
    if role_row is None:
        raise AppError(
            ErrorCode.INVALID_ROLE,
            f"'{role}' is not a valid role.",
            400,
            field="role",
        )

    user = User(
        username=username,
        email=email,
        password_hash=settings.hasher.hash(password),
        security_stamp=_new_security_stamp(),
        first_name=first_name,
        last_name=last_name,
        phone_number=phone_number,
    )
    credential_store.assign_role(user, role_row)
    try:
        credential_store.save(user, session)
    except IntegrityError as exc:
        duplicate = _duplicate_from_integrity_error(exc)
        if duplicate is None:
            raise
        raise duplicate from exc

    logger.info("Registered user %s with role %s", user.id, role_row.name)

    if email_sender is not None:
        try:
            if not email_sender.send_welcome(user.email, user.first_name or user.username):
                logger.warning("Welcome email for user %s was not delivered", user.id)
        except Exception:
            logger.exception("Welcome email for user %s failed", user.id)

    return _complete_login(user, settings=settings, session=session, deadline=deadline)


def refresh_tokens(
        access_token: str,
        refresh_token: str,
        *,
        settings: AuthSettings,
        session: Session,
        deadline: datetime | None = None,
) -> dict:
    """
    Exchanges a refresh token (plus the access token it was issued with) for a
    new pair. The presented refresh token can never be used again.

    Raises:
      AppError(INVALID_OR_EXPIRED_TOKEN, 401) — bad access token signature,
        unknown / used / revoked / expired refresh token, jti mismatch, or a
        concurrent request consumed it first.
      AppError(ACCOUNT_INACTIVE, 401) — the owner is inactive or deleted.
      AppError(DEADLINE_EXCEEDED, 503)

    Returns: same shape as login_user().
    """
    jwt_id = extract_token_id(access_token, settings.tokens)
    if jwt_id is None:
        logger.info("Refresh rejected: access token could not be verified")
        raise invalid_or_expired_token()

    record = refresh_ledger.peek(refresh_token, jwt_id, session)

    user = credential_store.find_by_id(record.user_id, session)
    if user is None:
        logger.info("Refresh rejected: user %s is inactive or deleted", record.user_id)
        raise AppError(
            ErrorCode.ACCOUNT_INACTIVE,
            "This account is no longer active.",
            401,
        )

    response, replacement = _mint_pair(user, settings)
    _check_deadline(deadline, "refresh")
    refresh_ledger.consume(refresh_token, jwt_id, replacement, session)

    logger.info("Rotated refresh token for user %s", user.id)
    return response


def logout_user(
        user_id: uuid.UUID,
        refresh_token: str,
        ip: str | None,
        session: Session,
) -> bool:
    """
    Revokes one of the caller's refresh tokens.

    Returns False when the token is unknown, already revoked or belongs to
    another user. Logging out twice is not an error.
    """
    revoked = refresh_ledger.revoke(refresh_token, ip, session, user_id=user_id)
    if revoked:
        logger.info("User %s logged out one session", user_id)
    return revoked


def logout_all(user_id: uuid.UUID, ip: str | None, session: Session) -> int:
    """Revokes every outstanding refresh token of the caller. Returns the count."""
    count = refresh_ledger.revoke_all_for_user(user_id, ip, session)
    logger.info("User %s logged out of %d session(s)", user_id, count)
    return count


def forgot_password(
        email: str,
        *,
        reset_base_url: str,
        session: Session,
        email_sender: EmailSender | None = None,
) -> ForgotPasswordResult:
    """
    Starts a password reset.

    Reports success whether or not the address belongs to an account; the
    caller must not reveal the difference. For a match the security stamp is
    rotated (invalidating any earlier link) and a reset link is emailed.
    """
    user = credential_store.find_by_email(email, session)
    if user is None:
        logger.info("Password reset requested for an unknown address")
        return ForgotPasswordResult(reset_link=None, email_sent=False)

    user.security_stamp = _new_security_stamp()
    credential_store.save(user, session)

    query = urlencode({"email": user.email, "token": user.security_stamp})
    link = f"{reset_base_url.rstrip('/')}/reset-password?{query}"

    sent = False
    if email_sender is not None:
        sent = email_sender.send_password_reset(
            user.email, link, user.first_name or user.username
        )
    if not sent:
        logger.warning("Password reset email for user %s was not delivered", user.id)

    logger.info("Password reset started for user %s", user.id)
    return ForgotPasswordResult(reset_link=link, email_sent=sent)


def reset_password(
        email: str,
        token: str,
        new_password: str,
        ip: str | None,
        *,
        settings: AuthSettings,
        session: Session,
) -> int:
    """
    Completes a password reset. `token` is the security stamp from the link.

    On success the stamp is rotated (the link stops working), lockout state
    is cleared and every outstanding refresh token is revoked.

    Raises:
      AppError(INVALID_RESET_TOKEN, 400) — no active user with that email and
        stamp. Covers reused links.

    Returns: number of refresh tokens revoked.
    """
    user = credential_store.find_for_reset(email, token, session)
    if user is None:
        raise AppError(
            ErrorCode.INVALID_RESET_TOKEN,
            "The password reset link is invalid or has already been used.",
            400,
            field="token",
        )

    user.password_hash = settings.hasher.hash(new_password)
    user.security_stamp = _new_security_stamp()
    user.access_failed_count = 0
    user.lockout_end = None
    credential_store.save(user, session)

    revoked = refresh_ledger.revoke_all_for_user(user.id, ip, session)
    logger.info("Password reset for user %s; revoked %d session(s)", user.id, revoked)
    return revoked


def get_current_user(user_id: uuid.UUID, session: Session) -> dict:
    """
    Returns the profile of the authenticated user.

    Raises:
      AppError(USER_NOT_FOUND, 404) — the account was deactivated or deleted
        after the token was issued.
    """
    user = credential_store.find_by_id(user_id, session)
    if user is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            "User not found.",
            404,
        )
    return _build_user_dict(user, collect_roles(user), collect_permissions(user))
