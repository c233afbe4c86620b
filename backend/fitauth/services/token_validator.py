"""
services/token_validator.py — Access token verification.

validate() never raises for bad input. An invalid, tampered, expired or
garbage token is an expected outcome and comes back as a TokenValidation
with ok=False and a TokenFailure reason. Callers decide how to surface it:
  - middleware/auth_middleware.py → TOKEN_EXPIRED / TOKEN_INVALID (401)
  - services/auth_service.py      → INVALID_OR_EXPIRED_TOKEN (401)

Checks, in PyJWT's order:
  1. Only the configured algorithm (HS256) is accepted; "none" and
     asymmetric algorithms are rejected.
  2. HMAC signature against TokenSettings.secret_key.
  3. exp (only when check_expiry=True). The refresh flow presents an access
     token that is expected to be expired, so it skips this check.
  4. iss and aud must match exactly.
  5. sub, jti, iat and exp must be present.
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

import jwt

from backend.fitauth.settings import TokenSettings

_REQUIRED_CLAIMS = ["sub", "jti", "iat", "exp", "iss", "aud"]


class TokenFailure(str, enum.Enum):
    MALFORMED         = "malformed"
    EXPIRED           = "expired"
    BAD_SIGNATURE     = "bad_signature"
    BAD_ALGORITHM     = "bad_algorithm"
    BAD_ISSUER        = "bad_issuer"
    BAD_AUDIENCE      = "bad_audience"
    MISSING_CLAIM     = "missing_claim"
    INVALID           = "invalid"


@dataclass(frozen=True)
class AccessClaims:
    subject: str
    username: str
    email: str
    given_name: str
    family_name: str
    token_id: str
    issued_at: datetime
    expires_at: datetime
    roles: tuple[str, ...] = ()
    permissions: tuple[str, ...] = ()

    @property
    def user_id(self) -> uuid.UUID:
        return uuid.UUID(self.subject)


@dataclass(frozen=True)
class TokenValidation:
    claims: AccessClaims | None = None
    failure: TokenFailure | None = None
    detail: str = field(default="", compare=False)

    @property
    def ok(self) -> bool:
        return self.claims is not None


def validate(
        token: str | None,
        settings: TokenSettings,
        check_expiry: bool = True,
) -> TokenValidation:
    """Verifies `token` and returns its claims or the reason it was rejected."""
    if not isinstance(token, str) or not token.strip():
        return TokenValidation(failure=TokenFailure.MALFORMED, detail="empty token")

    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm],
            issuer=settings.issuer,
            audience=settings.audience,
            options={
                "require": _REQUIRED_CLAIMS,
                "verify_exp": check_expiry,
            },
        )
    except jwt.ExpiredSignatureError as exc:
        return TokenValidation(failure=TokenFailure.EXPIRED, detail=str(exc))
    except jwt.InvalidSignatureError as exc:
        return TokenValidation(failure=TokenFailure.BAD_SIGNATURE, detail=str(exc))
    except jwt.InvalidAlgorithmError as exc:
        return TokenValidation(failure=TokenFailure.BAD_ALGORITHM, detail=str(exc))
    except jwt.InvalidIssuerError as exc:
        return TokenValidation(failure=TokenFailure.BAD_ISSUER, detail=str(exc))
    except jwt.InvalidAudienceError as exc:
        return TokenValidation(failure=TokenFailure.BAD_AUDIENCE, detail=str(exc))
    except jwt.MissingRequiredClaimError as exc:
        return TokenValidation(failure=TokenFailure.MISSING_CLAIM, detail=str(exc))
    except jwt.DecodeError as exc:
        return TokenValidation(failure=TokenFailure.MALFORMED, detail=str(exc))
    except jwt.InvalidTokenError as exc:
        return TokenValidation(failure=TokenFailure.INVALID, detail=str(exc))

    try:
        claims = _claims_from_payload(payload)
    except (TypeError, ValueError) as exc:
        return TokenValidation(failure=TokenFailure.INVALID, detail=str(exc))
    return TokenValidation(claims=claims)


def extract_token_id(token: str | None, settings: TokenSettings) -> str | None:
    """
    Returns the jti of a correctly signed token, ignoring its lifetime.

    Used by the refresh flow, where the presented access token has normally
    already expired. Signature, issuer and audience are still verified.
    """
    result = validate(token, settings, check_expiry=False)
    if not result.ok:
        return None
    return result.claims.token_id


# ── Private helpers ────────────────────────────────────────────────────────

def _as_str_tuple(value) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return tuple(value)
    raise TypeError("role and permission claims must be strings")


def _timestamp(value) -> datetime:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError("timestamp claims must be numeric")
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _claims_from_payload(payload: dict) -> AccessClaims:
    subject = payload["sub"]
    token_id = payload["jti"]
    if not isinstance(subject, str) or not isinstance(token_id, str) or not token_id:
        raise TypeError("sub and jti must be non-empty strings")
    uuid.UUID(subject)  # ValueError for a subject that is not a user id

    return AccessClaims(
        subject=subject,
        username=str(payload.get("name", "")),
        email=str(payload.get("email", "")),
        given_name=str(payload.get("given_name", "")),
        family_name=str(payload.get("family_name", "")),
        token_id=token_id,
        issued_at=_timestamp(payload["iat"]),
        expires_at=_timestamp(payload["exp"]),
        roles=_as_str_tuple(payload.get("role")),
        permissions=_as_str_tuple(payload.get("permission")),
    )
