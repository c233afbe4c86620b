"""
services/token_issuer.py — Access and refresh token construction.

Pure functions: nothing here touches the database, flask, or the clock
beyond reading "now". Persisting the refresh token is the ledger's job.

Access token (JWT, HS256):
  sub          user id (str)
  name         username
  email        email
  given_name   first name
  family_name  last name
  jti          fresh uuid4 per token; binds the refresh token to this token
  iat / exp    issued-at / now + access TTL
  iss / aud    fixed per deployment
  role         JSON array, one entry per role
  permission   JSON array, one entry per permission

Refresh token: 64 random bytes, standard base64 (88 chars). Never embedded in
the access token.
"""

from __future__ import annotations

import base64
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

import jwt

from backend.fitauth.settings import TokenSettings
from backend.fitauth.timeutil import utcnow

REFRESH_TOKEN_BYTES = 64


@dataclass(frozen=True)
class IssuedAccessToken:
    token: str
    jti: str
    expires_at: datetime


def issue_access_token(
        user,
        roles: Iterable[str],
        permissions: Iterable[str],
        settings: TokenSettings,
) -> IssuedAccessToken:
    """
    Creates a signed access token for `user`.

    `user` needs id, username, email, first_name and last_name attributes.
    """
    now = utcnow()
    expires_at = now + settings.access_ttl
    jti = str(uuid.uuid4())

    payload = {
        "sub": str(user.id),
        "name": user.username,
        "email": user.email,
        "given_name": user.first_name or "",
        "family_name": user.last_name or "",
        "jti": jti,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
        "iss": settings.issuer,
        "aud": settings.audience,
        "role": list(roles),
        "permission": list(permissions),
    }
    token = jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)
    return IssuedAccessToken(token=token, jti=jti, expires_at=expires_at)


def issue_refresh_token() -> str:
    """Returns a fresh opaque refresh token. Uniqueness is the ledger's concern."""
    return base64.b64encode(secrets.token_bytes(REFRESH_TOKEN_BYTES)).decode("ascii")
