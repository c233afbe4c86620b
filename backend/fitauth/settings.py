"""
settings.py — Immutable settings objects handed to the auth services.

Services never read flask.current_app.config. The route layer builds one
AuthSettings per application (cached in app.extensions) and passes it on
every call, so token validation parameters are always an explicit argument
and nothing process-wide is mutated.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping

from backend.fitauth.models.user import MAX_ACCESS_FAILED_COUNT
from backend.fitauth.services.password_hasher import PasswordHasher, build_password_hasher


@dataclass(frozen=True)
class TokenSettings:
    """Signing and validation parameters for access and refresh tokens."""

    secret_key: str
    issuer: str
    audience: str
    access_ttl: timedelta
    refresh_ttl: timedelta
    algorithm: str = "HS256"

    @property
    def access_ttl_seconds(self) -> int:
        return int(self.access_ttl.total_seconds())


@dataclass(frozen=True)
class LockoutPolicy:
    threshold: int = 5
    duration: timedelta = timedelta(minutes=15)

    def __post_init__(self) -> None:
        if not 1 <= self.threshold <= MAX_ACCESS_FAILED_COUNT:
            raise ValueError(
                f"LOCKOUT_THRESHOLD must be between 1 and {MAX_ACCESS_FAILED_COUNT}, "
                f"got {self.threshold}."
            )


@dataclass(frozen=True)
class AuthSettings:
    tokens: TokenSettings
    lockout: LockoutPolicy
    hasher: PasswordHasher

    @classmethod
    def from_config(cls, config: Mapping) -> "AuthSettings":
        """Builds settings from a Flask config mapping (see backend/config.py)."""
        return cls(
            tokens=TokenSettings(
                secret_key=config["JWT_SECRET_KEY"],
                issuer=config["JWT_ISSUER"],
                audience=config["JWT_AUDIENCE"],
                access_ttl=config["JWT_ACCESS_TOKEN_EXPIRES"],
                refresh_ttl=config["JWT_REFRESH_TOKEN_EXPIRES"],
                algorithm=config.get("JWT_ALGORITHM", "HS256"),
            ),
            lockout=LockoutPolicy(
                threshold=config.get("LOCKOUT_THRESHOLD", 5),
                duration=config.get("LOCKOUT_DURATION", timedelta(minutes=15)),
            ),
            hasher=build_password_hasher(
                config.get("PASSWORD_HASH_ALGORITHM", "bcrypt"),
                bcrypt_rounds=config.get("BCRYPT_LOG_ROUNDS", 12),
            ),
        )
