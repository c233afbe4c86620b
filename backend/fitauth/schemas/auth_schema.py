"""
schemas/auth_schema.py — Marshmallow schemas for authentication endpoints.

Validation responsibility:
  - This file: field presence, types, lengths, formats, password strength.
  - services/auth_service.py: DUPLICATE_USERNAME / DUPLICATE_EMAIL /
    INVALID_ROLE (require a DB lookup, not a schema concern).

All schemas inherit from marshmallow.Schema directly so they load without an
application context.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate, validates, validates_schema

# Lowercase, uppercase, digit and one of @$!%*?&. Nothing outside that set.
_PASSWORD_PATTERN = r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]+$"

# bcrypt only reads the first 72 bytes of a password and refuses longer input.
MAX_PASSWORD_BYTES = 72


def _password_field() -> fields.Str:
    return fields.Str(
        required=True,
        load_only=True,
        validate=[
            validate.Length(
                min=8,
                max=100,
                error="Password must be between 8 and 100 characters.",
            ),
            validate.Regexp(
                _PASSWORD_PATTERN,
                error=(
                    "Password must contain at least 8 characters, including uppercase, "
                    "lowercase, number and special character."
                ),
            ),
        ],
    )


def _check_password_bytes(value: str) -> None:
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationError(f"Password cannot exceed {MAX_PASSWORD_BYTES} bytes.")


class RegisterSchema(Schema):
    """
    POST /auth/register

      username         : 3–50 chars, letters, digits, hyphen, underscore
      email            : valid email, max 254 chars
      password         : strength rule above, max 72 bytes
      confirm_password : must equal password
      first_name       : 2–100 chars
      last_name        : 2–100 chars
      phone_number     : optional, max 20 chars
      role             : name of an active role (checked in the service)
    """

    username = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=3,
                max=50,
                error="Username must be between 3 and 50 characters.",
            ),
            validate.Regexp(
                r"^[a-zA-Z0-9_-]+$",
                error="Username can only contain letters, numbers, hyphens, and underscores.",
            ),
        ],
    )

    email = fields.Email(
        required=True,
        validate=validate.Length(max=254),
    )

    password = _password_field()
    confirm_password = fields.Str(required=True, load_only=True)

    first_name = fields.Str(required=True, validate=validate.Length(min=2, max=100))
    last_name = fields.Str(required=True, validate=validate.Length(min=2, max=100))
    phone_number = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Regexp(r"^\+?[0-9 ()-]{4,20}$", error="Invalid phone number."),
    )

    role = fields.Str(required=True, validate=validate.Length(min=1, max=50))

    @validates("password")
    def validate_password_bytes(self, value: str, **kwargs) -> None:
        _check_password_bytes(value)

    @validates_schema
    def validate_confirmation(self, data: dict, **kwargs) -> None:
        if data.get("password") != data.get("confirm_password"):
            raise ValidationError(
                "Password confirmation does not match.",
                field_name="confirm_password",
            )


class LoginSchema(Schema):
    """
    POST /auth/login

    `username` accepts a username or an email address. Credential correctness
    is checked in auth_service.py (INVALID_CREDENTIALS, 401).
    """

    username = fields.Str(
        required=True,
        validate=validate.Length(
            min=3,
            max=254,
            error="Username or email must be between 3 and 254 characters.",
        ),
    )
    password = fields.Str(
        required=True,
        load_only=True,
        validate=validate.Length(min=1, max=100),
    )


class RefreshTokenSchema(Schema):
    """
    POST /auth/refresh

    Both tokens of the pair are required: the access token (expired or not)
    supplies the jti the refresh token was bound to.
    """

    access_token = fields.Str(required=True, validate=validate.Length(min=1))
    refresh_token = fields.Str(required=True, validate=validate.Length(min=1))


class LogoutSchema(Schema):
    """POST /auth/logout"""

    refresh_token = fields.Str(required=True, validate=validate.Length(min=1))


class ForgotPasswordSchema(Schema):
    """POST /auth/forgot-password"""

    email = fields.Email(required=True, validate=validate.Length(max=254))


class ResetPasswordSchema(Schema):
    """
    POST /auth/reset-password

    `token` is the value from the emailed link. Its validity is checked in
    auth_service.py (INVALID_RESET_TOKEN, 400).
    """

    email = fields.Email(required=True, validate=validate.Length(max=254))
    token = fields.Str(required=True, validate=validate.Length(min=1, max=255))
    new_password = _password_field()
    confirm_password = fields.Str(required=True, load_only=True)

    @validates("new_password")
    def validate_password_bytes(self, value: str, **kwargs) -> None:
        _check_password_bytes(value)

    @validates_schema
    def validate_confirmation(self, data: dict, **kwargs) -> None:
        if data.get("new_password") != data.get("confirm_password"):
            raise ValidationError(
                "Password confirmation does not match.",
                field_name="confirm_password",
            )
