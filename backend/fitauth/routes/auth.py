"""
routes/auth.py — Authentication route handlers.

Layer rules:
  - Parse request body
  - Validate with the appropriate schema (raises ValidationError on bad input)
  - Call exactly ONE service function
  - Commit the DB session
  - Return the standard response envelope: {"data": {...}, "warnings": []}

No business logic here. No DB queries. AppError propagates to the global
error handler in fitauth/__init__.py, which also rolls the session back.

Every request gets a deadline of AUTH_REQUEST_TIMEOUT_SECONDS from the moment
it reached the view; services check it before writing to the ledger.

Endpoints (url_prefix=/api/v1/auth):
  POST   /register         → 201
  POST   /login            → 200
  POST   /refresh          → 200
  POST   /logout           → 200  (auth)
  POST   /logout-all       → 200  (auth)
  POST   /forgot-password  → 200  (always the same answer)
  POST   /reset-password   → 200
  GET    /me               → 200  (auth)
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, jsonify, request

from backend.fitauth.extensions import db
from backend.fitauth.middleware.auth_middleware import (
    current_auth_settings,
    current_email_sender,
    require_auth,
)
from backend.fitauth.schemas.auth_schema import (
    ForgotPasswordSchema,
    LoginSchema,
    LogoutSchema,
    RefreshTokenSchema,
    RegisterSchema,
    ResetPasswordSchema,
)
from backend.fitauth.services import auth_service
from backend.fitauth.timeutil import utcnow

auth_bp = Blueprint("auth", __name__)

FORGOT_PASSWORD_MESSAGE = "If the email exists, a password reset link has been sent."


def _deadline() -> datetime:
    seconds = current_app.config.get("AUTH_REQUEST_TIMEOUT_SECONDS", 10)
    return utcnow() + timedelta(seconds=seconds)


def _client_ip() -> str | None:
    return request.remote_addr


@auth_bp.route("/register", methods=["POST"])
def register():
    """POST /auth/register — Create account; return tokens. (No auth required.)"""
    data = RegisterSchema().load(request.get_json(force=True) or {})
    result = auth_service.register_user(
        username=data["username"],
        email=data["email"],
        password=data["password"],
        role=data["role"],
        first_name=data["first_name"],
        last_name=data["last_name"],
        phone_number=data["phone_number"],
        settings=current_auth_settings(),
        session=db.session,
        email_sender=current_email_sender(),
        deadline=_deadline(),
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@auth_bp.route("/login", methods=["POST"])
def login():
    """POST /auth/login — Authenticate with username or email; return tokens."""
    data = LoginSchema().load(request.get_json(force=True) or {})
    result = auth_service.login_user(
        identifier=data["username"],
        password=data["password"],
        settings=current_auth_settings(),
        session=db.session,
        deadline=_deadline(),
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@auth_bp.route("/refresh", methods=["POST"])
def refresh():
    """POST /auth/refresh — Rotate a refresh token; return a new pair."""
    data = RefreshTokenSchema().load(request.get_json(force=True) or {})
    result = auth_service.refresh_tokens(
        access_token=data["access_token"],
        refresh_token=data["refresh_token"],
        settings=current_auth_settings(),
        session=db.session,
        deadline=_deadline(),
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@auth_bp.route("/logout", methods=["POST"])
@require_auth
def logout():
    """POST /auth/logout — Revoke one of the caller's refresh tokens."""
    data = LogoutSchema().load(request.get_json(force=True) or {})
    revoked = auth_service.logout_user(
        user_id=g.user_id,
        refresh_token=data["refresh_token"],
        ip=_client_ip(),
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "data": {"revoked": revoked, "message": "Logged out successfully."},
        "warnings": [],
    }), 200


@auth_bp.route("/logout-all", methods=["POST"])
@require_auth
def logout_all():
    """POST /auth/logout-all — Revoke every refresh token of the caller."""
    count = auth_service.logout_all(
        user_id=g.user_id,
        ip=_client_ip(),
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "data": {"revoked_count": count, "message": "Logged out from all devices."},
        "warnings": [],
    }), 200


@auth_bp.route("/forgot-password", methods=["POST"])
def forgot_password():
    """POST /auth/forgot-password — Email a reset link. Same answer for every address."""
    data = ForgotPasswordSchema().load(request.get_json(force=True) or {})
    auth_service.forgot_password(
        email=data["email"],
        reset_base_url=current_app.config["PASSWORD_RESET_BASE_URL"] or request.host_url,
        session=db.session,
        email_sender=current_email_sender(),
    )
    db.session.commit()
    return jsonify({"data": {"message": FORGOT_PASSWORD_MESSAGE}, "warnings": []}), 200


@auth_bp.route("/reset-password", methods=["POST"])
def reset_password():
    """POST /auth/reset-password — Set a new password with the emailed token."""
    data = ResetPasswordSchema().load(request.get_json(force=True) or {})
    auth_service.reset_password(
        email=data["email"],
        token=data["token"],
        new_password=data["new_password"],
        ip=_client_ip(),
        settings=current_auth_settings(),
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "data": {"message": "Password has been reset. Please log in with your new password."},
        "warnings": [],
    }), 200


@auth_bp.route("/me", methods=["GET"])
@require_auth
def me():
    """GET /auth/me — Return current user profile. (Auth required.)"""
    result = auth_service.get_current_user(
        user_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200
