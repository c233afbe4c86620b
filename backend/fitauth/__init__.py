"""
fitauth/__init__.py — Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time, which allows:
           - Multiple isolated test app instances
           - `alembic` and `flask seed-roles` to run without starting a server

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Configure logging from LOG_LEVEL
  3. Initialise SQLAlchemy via init_app()
  4. Build the immutable AuthSettings and the EmailSender once, and store
     them in app.extensions for the route layer
  5. Register the auth blueprint under /api/v1/auth
  6. Register global error handlers (AppError → JSON, Exception → 500)
  7. Register CLI commands

Note on model imports:
  All model classes are imported inside create_app() so that SQLAlchemy's
  metadata is populated before Alembic inspects it. The import side effect
  is sufficient.
"""

from __future__ import annotations

import logging
import traceback

from flask import Flask, jsonify, request
from marshmallow import ValidationError
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm.exc import StaleDataError
from werkzeug.exceptions import HTTPException

from backend.config import config_by_name, validate_production_config


# ── Application factory ────────────────────────────────────────────────────

def create_app(config_name: str = "development") -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name: One of "development", "testing", "production".
                     Resolved via config_by_name in config.py.
                     Defaults to "development".
    """
    app = Flask(__name__)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    _configure_logging(app)

    # ── Extensions ─────────────────────────────────────────────────────────
    # Import here (not at module top) to avoid circular imports.
    from backend.fitauth.extensions import db
    db.init_app(app)

    # ── Model registration ─────────────────────────────────────────────────
    with app.app_context():
        from backend.fitauth.models import (  # noqa: F401
            refresh_token,
            role,
            user,
        )

    # ── Auth collaborators ─────────────────────────────────────────────────
    from backend.fitauth.middleware.auth_middleware import EMAIL_EXTENSION, SETTINGS_EXTENSION
    from backend.fitauth.services.email_service import EmailSender
    from backend.fitauth.settings import AuthSettings

    app.extensions[SETTINGS_EXTENSION] = AuthSettings.from_config(app.config)
    app.extensions[EMAIL_EXTENSION] = EmailSender.from_config(app.config)

    # ── Blueprints ─────────────────────────────────────────────────────────
    _register_blueprints(app)

    # ── Error handlers ─────────────────────────────────────────────────────
    _register_error_handlers(app)
    _register_cors(app)

    # ── CLI ────────────────────────────────────────────────────────────────
    from backend.fitauth.seed import register_commands
    register_commands(app)

    return app


def _configure_logging(app: Flask) -> None:
    """
    Applies LOG_LEVEL to the app logger and to every `backend.fitauth.*`
    module logger (services use logging.getLogger(__name__)).
    """
    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO

    app.logger.setLevel(level)
    package_logger = logging.getLogger("backend.fitauth")
    package_logger.setLevel(level)
    if not package_logger.handlers and not logging.getLogger().handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s [%(name)s] %(message)s"
        ))
        package_logger.addHandler(handler)


def _register_blueprints(app: Flask) -> None:
    """
    Registers all route blueprints under the /api/v1 prefix.

    The url_prefix is set here so route files only specify the path
    relative to their resource (e.g. "/login").
    """
    from backend.fitauth.routes.auth import auth_bp

    app.register_blueprint(auth_bp, url_prefix="/api/v1/auth")


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

    Handlers:
      AppError        → structured JSON error envelope with the correct status
      ValidationError → marshmallow schema errors as MISSING_FIELD /
                        INVALID_FIELD (400)
      StaleDataError  → CONCURRENT_UPDATE (409), for stale writes flushed at
                        commit time rather than inside a service
      OperationalError / InterfaceError / pool TimeoutError
                      → STORAGE_UNAVAILABLE (503)
      Exception       → generic INTERNAL_ERROR (500); traceback logged only

    Every handler rolls the session back so no half-issued token pair can be
    committed by a later request on the same session.
    """
    from backend.fitauth.errors import AppError, ErrorCode, storage_unavailable
    from backend.fitauth.extensions import db

    def _rollback() -> None:
        try:
            db.session.rollback()
        except Exception:  # noqa: BLE001
            app.logger.exception("Session rollback failed")

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        """
        Converts an AppError raised anywhere in the request lifecycle
        (middleware, service, route) into the standard error envelope.
        """
        _rollback()
        if error.http_status >= 500:
            app.logger.warning("%s: %s", error.code, error.message)
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        """
        Converts marshmallow ValidationError into the standard error envelope.

        Only the FIRST field error is returned ("one error, not many").
        """
        messages = error.messages  # e.g. {"email": ["Not a valid email address."]}

        field = None
        raw_message = "Invalid input."
        code = ErrorCode.INVALID_FIELD

        if isinstance(messages, dict):
            for field_name, field_errors in messages.items():
                field = field_name if field_name != "_schema" else None
                if isinstance(field_errors, list):
                    raw_message = field_errors[0] if field_errors else "Invalid value."
                else:
                    raw_message = str(field_errors)
                break
        elif isinstance(messages, list) and messages:
            raw_message = messages[0]

        if str(raw_message).startswith("Missing data for required field"):
            code = ErrorCode.MISSING_FIELD

        response_body = {"error": {"code": code, "message": raw_message}}
        if field is not None:
            response_body["error"]["field"] = field

        return jsonify(response_body), 400

    @app.errorhandler(StaleDataError)
    def handle_stale_data(error: StaleDataError):
        _rollback()
        return jsonify(AppError(
            ErrorCode.CONCURRENT_UPDATE,
            "The account was modified by another request. Please retry.",
            409,
        ).to_dict()), 409

    @app.errorhandler(OperationalError)
    @app.errorhandler(InterfaceError)
    @app.errorhandler(PoolTimeoutError)
    def handle_storage_fault(error: Exception):
        _rollback()
        app.logger.error("Storage unavailable: %s", error)
        unavailable = storage_unavailable()
        return jsonify(unavailable.to_dict()), unavailable.http_status

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        """
        Catches all unhandled exceptions and returns a generic 500 response.

        Stack traces never leave the server in the response body.
        """
        if isinstance(error, HTTPException):
            return error
        _rollback()
        app.logger.error(
            "Unhandled exception: %s\n%s",
            str(error),
            traceback.format_exc(),
        )
        return jsonify({
            "error": {
                "code": ErrorCode.INTERNAL_ERROR,
                "message": "An unexpected error occurred. Please try again later.",
            }
        }), 500


def _register_cors(app: Flask) -> None:
    """
    Adds CORS headers for browser-based local development.

    Enabled when DEBUG or TESTING is true so a frontend served from another
    local port can call the API with Authorization headers.
    """

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allow_all = bool(app.config.get("DEBUG") or app.config.get("TESTING"))

        if allow_all:
            # Reflect origin when present so bearer-auth requests from local
            # dev servers are accepted by browsers.
            response.headers["Access-Control-Allow-Origin"] = origin if origin else "*"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"

        return response
