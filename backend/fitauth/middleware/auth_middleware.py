"""
middleware/auth_middleware.py — Bearer token authentication decorators.

@require_auth:
  1. Reads the Authorization header (expected: "Bearer <token>")
  2. Validates the access token through services/token_validator.py using the
     application's TokenSettings (signature, algorithm, iss, aud, exp)
  3. Attaches g.user_id (uuid.UUID) and g.claims (AccessClaims)
  4. Raises the matching 401 error if any step fails

@require_permission(name):
  Runs @require_auth, then checks the token's permission claims. Permissions
  come from the token, so a role change takes effect at the next refresh.

Error codes:
  TOKEN_MISSING  (401) — no Authorization header
  TOKEN_INVALID  (401) — malformed header, bad signature / issuer / audience
  TOKEN_EXPIRED  (401) — valid token but exp claim is in the past
  FORBIDDEN      (403) — authenticated, but the permission claim is absent
"""

from __future__ import annotations

import functools
from typing import Callable

from flask import current_app, g, request

from backend.fitauth.errors import AppError, ErrorCode
from backend.fitauth.services.email_service import EmailSender
from backend.fitauth.services.token_validator import TokenFailure, validate
from backend.fitauth.settings import AuthSettings

SETTINGS_EXTENSION = "fitauth.settings"
EMAIL_EXTENSION    = "fitauth.email_sender"


def current_auth_settings() -> AuthSettings:
    """AuthSettings built once by create_app()."""
    return current_app.extensions[SETTINGS_EXTENSION]


def current_email_sender() -> EmailSender:
    return current_app.extensions[EMAIL_EXTENSION]


def require_auth(f: Callable) -> Callable:
    """
    Route decorator that enforces bearer token authentication.

    Usage:
        @auth_bp.route("/me")
        @require_auth
        def me():
            user_id = g.user_id  # always a uuid.UUID when this runs
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        _authenticate_request()
        return f(*args, **kwargs)

    return decorated


def require_permission(permission: str) -> Callable:
    """Route decorator: authenticated AND `permission` among the token's claims."""
    def decorator(f: Callable) -> Callable:
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            _authenticate_request()
            if permission not in g.claims.permissions:
                raise AppError(
                    ErrorCode.FORBIDDEN,
                    "You do not have permission to perform this action.",
                    403,
                )
            return f(*args, **kwargs)

        return decorated

    return decorator


def _authenticate_request() -> None:
    """
    Performs the full authentication sequence and sets g.user_id / g.claims.

    Separated from the decorator wrapper so tests can call it directly inside
    a request context.
    """
    auth_header = request.headers.get("Authorization", "")

    if not auth_header:
        raise AppError(
            ErrorCode.TOKEN_MISSING,
            "Authentication required. Provide a Bearer token in the Authorization header.",
            401,
        )

    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "Authorization header must be in the format: Bearer <token>.",
            401,
        )

    result = validate(parts[1], current_auth_settings().tokens)

    if result.failure is TokenFailure.EXPIRED:
        # Client should use POST /auth/refresh.
        raise AppError(
            ErrorCode.TOKEN_EXPIRED,
            "The access token has expired. Use POST /auth/refresh to obtain a new one.",
            401,
        )
    if not result.ok:
        current_app.logger.info("Access token rejected: %s", result.failure.value)
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The access token is invalid or has been tampered with.",
            401,
        )

    g.claims = result.claims
    g.user_id = result.claims.user_id
