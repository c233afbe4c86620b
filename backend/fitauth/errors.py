"""
errors.py — AppError base class, error code registry and storage-fault translation.

Every error returned by the auth API must use a code defined here.
Do not raise strings or generic exceptions from service or route code.

Rules:
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time,
    EXCEPT the two collapsed security messages below, which must stay
    identical for every cause they cover.
  - Never conflate 401 (unauthenticated) with 403 (unauthorized).
"""

from __future__ import annotations

import functools
from typing import Callable, TypeVar

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"AppError(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by category. HTTP status is indicated in the comment.
# These are the string values sent in the API response.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    INVALID_ROLE               = "INVALID_ROLE"
    INVALID_RESET_TOKEN        = "INVALID_RESET_TOKEN"

    # ── Conflict Errors (409) ──────────────────────────────────────────────
    DUPLICATE_EMAIL            = "DUPLICATE_EMAIL"
    DUPLICATE_USERNAME         = "DUPLICATE_USERNAME"
    REFRESH_TOKEN_CONFLICT     = "REFRESH_TOKEN_CONFLICT"
    CONCURRENT_UPDATE          = "CONCURRENT_UPDATE"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    USER_NOT_FOUND             = "USER_NOT_FOUND"

    # ── Auth Errors ────────────────────────────────────────────────────────
    # 401 = we do not know who you are (unauthenticated)
    # 403 = we know who you are, but you are not allowed (unauthorized)
    INVALID_CREDENTIALS        = "INVALID_CREDENTIALS"       # 401
    ACCOUNT_INACTIVE           = "ACCOUNT_INACTIVE"          # 401
    INVALID_OR_EXPIRED_TOKEN   = "INVALID_OR_EXPIRED_TOKEN"  # 401, refresh flow
    TOKEN_MISSING              = "TOKEN_MISSING"             # 401, middleware
    TOKEN_INVALID              = "TOKEN_INVALID"             # 401, middleware
    TOKEN_EXPIRED              = "TOKEN_EXPIRED"             # 401, middleware
    FORBIDDEN                  = "FORBIDDEN"                 # 403

    # ── System Errors (5xx) ────────────────────────────────────────────────
    STORAGE_UNAVAILABLE        = "STORAGE_UNAVAILABLE"       # 503
    DEADLINE_EXCEEDED          = "DEADLINE_EXCEEDED"         # 503
    INTERNAL_ERROR             = "INTERNAL_ERROR"            # 500


# Collapsed messages. Unknown user, wrong password and locked account share
# the first; unknown, expired, used, revoked and mismatched refresh tokens
# share the second.
INVALID_CREDENTIALS_MESSAGE = "Invalid username or password."
INVALID_TOKEN_MESSAGE       = "The refresh token is invalid or has expired."


def invalid_credentials() -> AppError:
    return AppError(ErrorCode.INVALID_CREDENTIALS, INVALID_CREDENTIALS_MESSAGE, 401)


def invalid_or_expired_token() -> AppError:
    return AppError(ErrorCode.INVALID_OR_EXPIRED_TOKEN, INVALID_TOKEN_MESSAGE, 401)


# ── Storage fault translation ──────────────────────────────────────────────

_STORAGE_FAULTS = (OperationalError, InterfaceError, PoolTimeoutError)

F = TypeVar("F", bound=Callable)


def storage_unavailable() -> AppError:
    return AppError(
        ErrorCode.STORAGE_UNAVAILABLE,
        "The credential store is temporarily unavailable. Please try again later.",
        503,
    )


def translate_storage_errors(f: F) -> F:
    """
    Decorator for Credential Store / Ledger functions.

    Connectivity and timeout faults raised by SQLAlchemy are re-raised as
    STORAGE_UNAVAILABLE so callers can tell them apart from business-rule
    failures. Integrity errors are NOT translated here; callers map them to
    the conflict they represent. No retry is attempted.
    """
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except _STORAGE_FAULTS as exc:
            raise storage_unavailable() from exc

    return wrapper  # type: ignore[return-value]
