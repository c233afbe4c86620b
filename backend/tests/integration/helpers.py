"""
tests/integration/helpers.py — Plain helper functions shared by integration tests.

These are functions, not fixtures, so they can be called with arbitrary
arguments in any test.
"""

from __future__ import annotations

import uuid
from urllib.parse import parse_qs, urlparse

from sqlalchemy import func, select

from backend.fitauth.extensions import db
from backend.fitauth.models.refresh_token import RefreshToken
from backend.fitauth.models.user import User

PASSWORD = "Password1!"


def register(
    client,
    username: str = "alice",
    email: str | None = None,
    password: str = PASSWORD,
    role: str = "Athlete",
) -> dict:
    """
    Registers a new user and returns the response data dict.
    Returns: {"access_token", "refresh_token", "token_type", "expires_in", "user"}
    """
    resp = client.post("/api/v1/auth/register", json=register_payload(
        username=username, email=email, password=password, role=role,
    ))
    assert resp.status_code == 201, f"register failed: {resp.get_json()}"
    return resp.get_json()["data"]


def register_payload(
    username: str = "alice",
    email: str | None = None,
    password: str = PASSWORD,
    role: str = "Athlete",
    **overrides,
) -> dict:
    payload = {
        "username": username,
        "email": email or f"{username}@test.com",
        "password": password,
        "confirm_password": password,
        "first_name": username.capitalize(),
        "last_name": "Tester",
        "role": role,
    }
    payload.update(overrides)
    return payload


def login(client, username: str, password: str = PASSWORD) -> dict:
    """Logs in and returns the response data dict."""
    resp = client.post(
        "/api/v1/auth/login",
        json={"username": username, "password": password},
    )
    assert resp.status_code == 200, f"login failed: {resp.get_json()}"
    return resp.get_json()["data"]


def refresh(client, pair: dict):
    """POSTs /auth/refresh with both tokens of `pair`. Returns the HTTP response."""
    return client.post(
        "/api/v1/auth/refresh",
        json={"access_token": pair["access_token"], "refresh_token": pair["refresh_token"]},
    )


def auth_headers(token: str) -> dict:
    """Returns the Authorization header dict for use in test requests."""
    return {"Authorization": f"Bearer {token}"}


def reset_params(link: str) -> tuple[str, str]:
    """Extracts (email, token) from a password reset link."""
    query = parse_qs(urlparse(link).query)
    return query["email"][0], query["token"][0]


def link_from_body(body: str) -> str:
    return next(word for word in body.split() if "/reset-password?" in word)


# ── Direct DB access (call inside app.app_context()) ──────────────────────

def get_user(username: str) -> User:
    return db.session.execute(
        select(User).where(User.username == username)
    ).scalar_one()


def get_refresh_record(token: str) -> RefreshToken:
    return db.session.execute(
        select(RefreshToken).where(RefreshToken.token == token)
    ).scalar_one()


def count_refresh_tokens(user_id: str | uuid.UUID) -> int:
    if isinstance(user_id, str):
        user_id = uuid.UUID(user_id)
    return db.session.execute(
        select(func.count()).select_from(RefreshToken).where(RefreshToken.user_id == user_id)
    ).scalar_one()
