"""
tests/integration/test_auth.py — Integration tests for authentication endpoints.

Endpoints covered:
  POST /auth/register         → 201
  POST /auth/login            → 200
  POST /auth/refresh          → 200
  POST /auth/logout           → 200
  POST /auth/logout-all       → 200
  POST /auth/forgot-password  → 200
  POST /auth/reset-password   → 200
  GET  /auth/me               → 200

Error cases:
  DUPLICATE_USERNAME / DUPLICATE_EMAIL  409
  INVALID_ROLE                          400
  INVALID_CREDENTIALS                   401 — one message for every cause
  INVALID_OR_EXPIRED_TOKEN              401 — refresh flow
  ACCOUNT_INACTIVE                      401 — refresh of a deactivated user
  INVALID_RESET_TOKEN                   400
  TOKEN_MISSING / TOKEN_INVALID / TOKEN_EXPIRED 401 — middleware
"""

from __future__ import annotations

import dataclasses
import uuid
from datetime import timedelta

from backend.fitauth.errors import INVALID_CREDENTIALS_MESSAGE, INVALID_TOKEN_MESSAGE
from backend.fitauth.extensions import db
from backend.fitauth.middleware.auth_middleware import SETTINGS_EXTENSION
from backend.fitauth.models.role import Role
from backend.fitauth.services import credential_store
from backend.fitauth.services.token_issuer import issue_access_token
from backend.fitauth.services.token_validator import validate
from backend.fitauth.timeutil import as_utc, utcnow
from backend.tests.integration.helpers import (
    PASSWORD,
    auth_headers,
    count_refresh_tokens,
    get_refresh_record,
    get_user,
    link_from_body,
    login,
    refresh,
    register,
    register_payload,
    reset_params,
)


# ═══════════════════════════════════════════════════════════════════════════
# POST /auth/register
# ═══════════════════════════════════════════════════════════════════════════

class TestRegister:

    def test_register_success_returns_201_with_tokens(self, client):
        resp = client.post("/api/v1/auth/register", json=register_payload("alice"))
        assert resp.status_code == 201
        data = resp.get_json()["data"]
        assert data["access_token"]
        assert data["refresh_token"]
        assert data["token_type"] == "Bearer"
        assert data["expires_in"] == 15 * 60
        assert data["user"]["username"] == "alice"
        assert data["user"]["email"] == "alice@test.com"
        assert data["user"]["roles"] == ["Athlete"]
        assert data["user"]["full_name"] == "Alice Tester"
        # password_hash must NEVER appear in the response
        assert "password" not in data["user"]
        assert "password_hash" not in data["user"]

    def test_register_returns_uuid_user_id(self, client):
        data = register(client, "bob")
        assert uuid.UUID(data["user"]["id"])

    def test_register_records_refresh_token(self, client, app):
        data = register(client, "alice")
        with app.app_context():
            assert count_refresh_tokens(data["user"]["id"]) == 1

    def test_register_sends_welcome_email(self, client, outbox):
        register(client, "alice")
        assert len(outbox.sent) == 1
        assert outbox.sent[0]["to"] == "alice@test.com"
        assert outbox.sent[0]["subject"] == "Welcome to WorkoutProject!"

    def test_welcome_email_failure_does_not_fail_registration(self, client, outbox):
        outbox.fail = True
        resp = client.post("/api/v1/auth/register", json=register_payload("alice"))
        assert resp.status_code == 201

    def test_role_name_is_case_insensitive(self, client):
        data = register(client, "trainer1", role="trainer")
        assert data["user"]["roles"] == ["Trainer"]

    def test_duplicate_username_returns_409(self, client):
        register(client, "alice")
        resp = client.post("/api/v1/auth/register", json=register_payload(
            "alice", email="other@test.com",
        ))
        assert resp.status_code == 409
        error = resp.get_json()["error"]
        assert error["code"] == "DUPLICATE_USERNAME"
        assert error["field"] == "username"

    def test_duplicate_email_returns_409(self, client):
        register(client, "alice", email="shared@test.com")
        resp = client.post("/api/v1/auth/register", json=register_payload(
            "alice2", email="shared@test.com",
        ))
        assert resp.status_code == 409
        assert resp.get_json()["error"]["code"] == "DUPLICATE_EMAIL"

    def test_username_checked_before_email(self, client):
        register(client, "alice")
        resp = client.post("/api/v1/auth/register", json=register_payload("alice"))
        assert resp.get_json()["error"]["code"] == "DUPLICATE_USERNAME"

    def test_unique_index_race_maps_to_duplicate_errors(self, client, monkeypatch):
        """A concurrent registration passes the existence checks; the index decides."""
        register(client, "alice")
        monkeypatch.setattr(credential_store, "username_exists", lambda *args, **kwargs: False)
        monkeypatch.setattr(credential_store, "email_exists", lambda *args, **kwargs: False)

        resp = client.post("/api/v1/auth/register", json=register_payload(
            "alice", email="other@test.com",
        ))
        assert resp.status_code == 409
        error = resp.get_json()["error"]
        assert error["code"] == "DUPLICATE_USERNAME"
        assert error["field"] == "username"

        resp = client.post("/api/v1/auth/register", json=register_payload(
            "alice2", email="alice@test.com",
        ))
        assert resp.status_code == 409
        error = resp.get_json()["error"]
        assert error["code"] == "DUPLICATE_EMAIL"
        assert error["field"] == "email"

        assert login(client, "alice")["user"]["username"] == "alice"
        assert client.post("/api/v1/auth/login", json={
            "username": "alice2", "password": PASSWORD,
        }).status_code == 401

    def test_unknown_role_returns_400_invalid_role(self, client):
        resp = client.post("/api/v1/auth/register", json=register_payload(
            "alice", role="Nutritionist",
        ))
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "INVALID_ROLE"

    def test_inactive_role_returns_400_invalid_role(self, client, app):
        with app.app_context():
            role = db.session.query(Role).filter_by(normalized_name="TRAINER").one()
            role.is_active = False
            db.session.commit()

        resp = client.post("/api/v1/auth/register", json=register_payload(
            "alice", role="Trainer",
        ))
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "INVALID_ROLE"

    def test_failed_registration_leaves_no_user(self, client, app):
        client.post("/api/v1/auth/register", json=register_payload("alice", role="Ghost"))
        with app.app_context():
            assert db.session.query(Role).count() == 3
            from backend.fitauth.models.user import User
            assert db.session.query(User).count() == 0

    def test_weak_password_returns_400(self, client):
        resp = client.post("/api/v1/auth/register", json=register_payload(
            "alice", password="password",
        ))
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "INVALID_FIELD"
        assert resp.get_json()["error"]["field"] == "password"

    def test_missing_fields_return_400(self, client):
        resp = client.post("/api/v1/auth/register", json={})
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "MISSING_FIELD"


# ═══════════════════════════════════════════════════════════════════════════
# POST /auth/login
# ═══════════════════════════════════════════════════════════════════════════

class TestLogin:

    def test_login_with_username(self, client):
        register(client, "alice")
        data = login(client, "alice")
        assert data["user"]["username"] == "alice"
        assert data["user"]["last_login_at"] is not None

    def test_login_with_email(self, client):
        register(client, "alice")
        data = login(client, "alice@test.com")
        assert data["user"]["username"] == "alice"

    def test_access_token_claims_match_user_and_roles(self, client, app):
        register(client, "alice")
        data = login(client, "alice")

        result = validate(data["access_token"], app.extensions[SETTINGS_EXTENSION].tokens)
        assert result.ok
        assert result.claims.subject == data["user"]["id"]
        assert result.claims.username == "alice"
        assert result.claims.roles == ("Athlete",)
        assert list(result.claims.permissions) == data["user"]["permissions"]
        assert list(result.claims.permissions) == ["workouts.read", "workouts.log"]

    def test_each_login_adds_a_ledger_row(self, client, app):
        data = register(client, "alice")
        login(client, "alice")
        login(client, "alice")
        with app.app_context():
            assert count_refresh_tokens(data["user"]["id"]) == 3

    def test_wrong_password_returns_401_invalid_credentials(self, client):
        register(client, "alice")
        resp = client.post("/api/v1/auth/login", json={
            "username": "alice", "password": "WrongPass1!",
        })
        assert resp.status_code == 401
        error = resp.get_json()["error"]
        assert error["code"] == "INVALID_CREDENTIALS"
        assert error["message"] == INVALID_CREDENTIALS_MESSAGE

    def test_unknown_user_gets_the_same_error(self, client):
        resp = client.post("/api/v1/auth/login", json={
            "username": "ghost", "password": PASSWORD,
        })
        assert resp.status_code == 401
        error = resp.get_json()["error"]
        assert error["code"] == "INVALID_CREDENTIALS"
        assert error["message"] == INVALID_CREDENTIALS_MESSAGE

    def test_inactive_user_gets_the_same_error(self, client, app):
        register(client, "alice")
        with app.app_context():
            get_user("alice").is_active = False
            db.session.commit()

        resp = client.post("/api/v1/auth/login", json={
            "username": "alice", "password": PASSWORD,
        })
        assert resp.status_code == 401
        assert resp.get_json()["error"]["message"] == INVALID_CREDENTIALS_MESSAGE

    def test_deleted_user_cannot_log_in(self, client, app):
        register(client, "alice")
        with app.app_context():
            user = get_user("alice")
            user.is_deleted = True
            user.deleted_at = utcnow()
            db.session.commit()

        resp = client.post("/api/v1/auth/login", json={
            "username": "alice", "password": PASSWORD,
        })
        assert resp.status_code == 401

    def test_failed_attempt_is_counted(self, client, app):
        register(client, "alice")
        client.post("/api/v1/auth/login", json={"username": "alice", "password": "Nope1234!"})
        with app.app_context():
            assert get_user("alice").access_failed_count == 1

    def test_successful_login_resets_counter(self, client, app):
        register(client, "alice")
        for _ in range(3):
            client.post("/api/v1/auth/login", json={"username": "alice", "password": "Nope1234!"})
        login(client, "alice")
        with app.app_context():
            user = get_user("alice")
            assert user.access_failed_count == 0
            assert user.lockout_end is None


# ═══════════════════════════════════════════════════════════════════════════
# Lockout
# ═══════════════════════════════════════════════════════════════════════════

class TestLockout:

    def _fail(self, client, username="alice"):
        return client.post("/api/v1/auth/login", json={
            "username": username, "password": "WrongPass1!",
        })

    def test_five_failures_lock_even_the_correct_password(self, client, app):
        register(client, "alice", role="Athlete")
        for _ in range(5):
            assert self._fail(client).status_code == 401

        resp = client.post("/api/v1/auth/login", json={
            "username": "alice", "password": PASSWORD,
        })
        assert resp.status_code == 401
        error = resp.get_json()["error"]
        assert error["code"] == "INVALID_CREDENTIALS"
        assert error["message"] == INVALID_CREDENTIALS_MESSAGE

    def test_lockout_lasts_the_configured_duration(self, client, app):
        register(client, "alice")
        before = utcnow()
        for _ in range(5):
            self._fail(client)
        after = utcnow()

        with app.app_context():
            user = get_user("alice")
            lockout_end = as_utc(user.lockout_end)
            assert user.access_failed_count == 5
        assert before + timedelta(minutes=15) <= lockout_end <= after + timedelta(minutes=15)

    def test_four_failures_do_not_lock(self, client, app):
        register(client, "alice")
        for _ in range(4):
            self._fail(client)
        login(client, "alice")

    def test_login_works_again_after_lockout_ends(self, client, app):
        register(client, "alice")
        for _ in range(5):
            self._fail(client)

        with app.app_context():
            get_user("alice").lockout_end = utcnow() - timedelta(seconds=1)
            db.session.commit()

        data = login(client, "alice")
        assert data["user"]["username"] == "alice"

    def test_attempts_while_locked_are_not_counted(self, client, app):
        register(client, "alice")
        for _ in range(5):
            self._fail(client)
        for _ in range(3):
            self._fail(client)

        with app.app_context():
            assert get_user("alice").access_failed_count == 5

    def test_counter_never_exceeds_ten(self, client, app):
        register(client, "alice")
        for _ in range(12):
            self._fail(client)
            with app.app_context():
                user = get_user("alice")
                user.lockout_end = None
                db.session.commit()

        with app.app_context():
            assert get_user("alice").access_failed_count == 10

    def test_lockout_disabled_user_is_never_locked(self, client, app):
        register(client, "alice")
        with app.app_context():
            get_user("alice").lockout_enabled = False
            db.session.commit()

        for _ in range(6):
            self._fail(client)
        login(client, "alice")


# ═══════════════════════════════════════════════════════════════════════════
# POST /auth/refresh
# ═══════════════════════════════════════════════════════════════════════════

class TestRefresh:

    def test_refresh_returns_new_pair(self, client):
        pair = register(client, "alice")
        resp = refresh(client, pair)
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["refresh_token"] != pair["refresh_token"]
        assert data["access_token"] != pair["access_token"]
        assert data["token_type"] == "Bearer"
        assert data["user"]["username"] == "alice"

    def test_consumed_token_is_marked_used_and_linked(self, client, app):
        pair = register(client, "alice")
        new_pair = refresh(client, pair).get_json()["data"]

        with app.app_context():
            old = get_refresh_record(pair["refresh_token"])
            assert old.is_used is True
            assert old.replaced_by_token == new_pair["refresh_token"]
            new = get_refresh_record(new_pair["refresh_token"])
            assert new.is_used is False
            assert new.jwt_id == validate(
                new_pair["access_token"], app.extensions[SETTINGS_EXTENSION].tokens,
            ).claims.token_id

    def test_reusing_a_refresh_token_fails(self, client):
        pair = register(client, "alice")
        assert refresh(client, pair).status_code == 200

        resp = refresh(client, pair)
        assert resp.status_code == 401
        error = resp.get_json()["error"]
        assert error["code"] == "INVALID_OR_EXPIRED_TOKEN"
        assert error["message"] == INVALID_TOKEN_MESSAGE

    def test_rotated_pair_can_be_refreshed_again(self, client):
        pair = register(client, "alice")
        second = refresh(client, pair).get_json()["data"]
        assert refresh(client, second).status_code == 200

    def test_refresh_token_is_bound_to_its_access_token(self, client):
        first = register(client, "alice")
        second = login(client, "alice")

        resp = refresh(client, {
            "access_token": second["access_token"],
            "refresh_token": first["refresh_token"],
        })
        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "INVALID_OR_EXPIRED_TOKEN"

    def test_expired_access_token_is_accepted(self, client, app):
        pair = register(client, "alice")
        settings = app.extensions[SETTINGS_EXTENSION].tokens
        claims = validate(pair["access_token"], settings).claims

        # Same jti as the original, but already expired.
        expired_settings = dataclasses.replace(settings, access_ttl=timedelta(seconds=-30))
        with app.app_context():
            user = get_user("alice")
            expired = issue_access_token(user, ["Athlete"], [], expired_settings)
            record = get_refresh_record(pair["refresh_token"])
            record.jwt_id = expired.jti
            db.session.commit()
        assert claims.token_id != expired.jti

        resp = refresh(client, {
            "access_token": expired.token,
            "refresh_token": pair["refresh_token"],
        })
        assert resp.status_code == 200

    def test_expired_refresh_token_fails(self, client, app):
        pair = register(client, "alice")
        with app.app_context():
            get_refresh_record(pair["refresh_token"]).expires_at = utcnow() - timedelta(seconds=1)
            db.session.commit()

        resp = refresh(client, pair)
        assert resp.status_code == 401
        assert resp.get_json()["error"]["message"] == INVALID_TOKEN_MESSAGE

    def test_unknown_refresh_token_fails(self, client):
        pair = register(client, "alice")
        resp = refresh(client, {**pair, "refresh_token": "bm90LWEtcmVhbC10b2tlbg=="})
        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "INVALID_OR_EXPIRED_TOKEN"

    def test_tampered_access_token_fails(self, client):
        pair = register(client, "alice")
        resp = refresh(client, {**pair, "access_token": pair["access_token"] + "x"})
        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "INVALID_OR_EXPIRED_TOKEN"

    def test_inactive_user_cannot_refresh(self, client, app):
        pair = register(client, "alice")
        with app.app_context():
            get_user("alice").is_active = False
            db.session.commit()

        resp = refresh(client, pair)
        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "ACCOUNT_INACTIVE"

    def test_missing_access_token_returns_400(self, client):
        pair = register(client, "alice")
        resp = client.post("/api/v1/auth/refresh", json={"refresh_token": pair["refresh_token"]})
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "MISSING_FIELD"


# ═══════════════════════════════════════════════════════════════════════════
# POST /auth/logout, POST /auth/logout-all
# ═══════════════════════════════════════════════════════════════════════════

class TestLogout:

    def test_logout_revokes_the_token(self, client, app):
        pair = register(client, "alice")
        resp = client.post(
            "/api/v1/auth/logout",
            json={"refresh_token": pair["refresh_token"]},
            headers=auth_headers(pair["access_token"]),
        )
        assert resp.status_code == 200
        assert resp.get_json()["data"]["revoked"] is True

        assert refresh(client, pair).status_code == 401
        with app.app_context():
            record = get_refresh_record(pair["refresh_token"])
            assert record.is_revoked is True
            assert record.revoked_at is not None
            assert record.revoked_by_ip == "127.0.0.1"

    def test_second_logout_reports_nothing_revoked(self, client):
        pair = register(client, "alice")
        body = {"refresh_token": pair["refresh_token"]}
        headers = auth_headers(pair["access_token"])
        client.post("/api/v1/auth/logout", json=body, headers=headers)

        resp = client.post("/api/v1/auth/logout", json=body, headers=headers)
        assert resp.status_code == 200
        assert resp.get_json()["data"]["revoked"] is False

    def test_cannot_revoke_another_users_token(self, client):
        alice = register(client, "alice")
        bob = register(client, "bob")

        resp = client.post(
            "/api/v1/auth/logout",
            json={"refresh_token": bob["refresh_token"]},
            headers=auth_headers(alice["access_token"]),
        )
        assert resp.get_json()["data"]["revoked"] is False
        assert refresh(client, bob).status_code == 200

    def test_logout_requires_auth(self, client):
        pair = register(client, "alice")
        resp = client.post("/api/v1/auth/logout", json={"refresh_token": pair["refresh_token"]})
        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "TOKEN_MISSING"

    def test_logout_all_revokes_every_session(self, client, app):
        first = register(client, "alice")
        second = login(client, "alice")
        third = login(client, "alice")

        resp = client.post("/api/v1/auth/logout-all", headers=auth_headers(third["access_token"]))
        assert resp.status_code == 200
        assert resp.get_json()["data"]["revoked_count"] == 3

        for pair in (first, second, third):
            assert refresh(client, pair).status_code == 401

        from backend.fitauth.services import refresh_ledger
        with app.app_context():
            user_id = uuid.UUID(first["user"]["id"])
            assert refresh_ledger.count_active_for_user(user_id, db.session) == 0

    def test_logout_all_leaves_other_users_alone(self, client):
        alice = register(client, "alice")
        bob = register(client, "bob")
        client.post("/api/v1/auth/logout-all", headers=auth_headers(alice["access_token"]))
        assert refresh(client, bob).status_code == 200


# ═══════════════════════════════════════════════════════════════════════════
# POST /auth/forgot-password, POST /auth/reset-password
# ═══════════════════════════════════════════════════════════════════════════

NEW_PASSWORD = "NewPassword2?"


class TestPasswordReset:

    def _request_reset(self, client, outbox, email="alice@test.com"):
        resp = client.post("/api/v1/auth/forgot-password", json={"email": email})
        assert resp.status_code == 200
        return reset_params(link_from_body(outbox.sent[-1]["body"]))

    def _reset(self, client, email, token, password=NEW_PASSWORD):
        return client.post("/api/v1/auth/reset-password", json={
            "email": email,
            "token": token,
            "new_password": password,
            "confirm_password": password,
        })

    def test_forgot_password_sends_link(self, client, outbox):
        register(client, "alice")
        outbox.sent.clear()

        resp = client.post("/api/v1/auth/forgot-password", json={"email": "alice@test.com"})
        assert resp.status_code == 200
        assert "reset_link" not in resp.get_json()["data"]
        assert len(outbox.sent) == 1
        assert outbox.sent[0]["subject"] == "Reset Your Password"
        link = link_from_body(outbox.sent[0]["body"])
        assert link.startswith("http://localhost:5173/reset-password?")
        assert reset_params(link)[0] == "alice@test.com"

    def test_unknown_email_gets_the_same_answer(self, client, outbox):
        register(client, "alice")
        known = client.post("/api/v1/auth/forgot-password", json={"email": "alice@test.com"})
        outbox.sent.clear()

        unknown = client.post("/api/v1/auth/forgot-password", json={"email": "ghost@test.com"})
        assert unknown.status_code == 200
        assert unknown.get_json() == known.get_json()
        assert outbox.sent == []

    def test_reset_changes_password(self, client, outbox):
        register(client, "alice")
        email, token = self._request_reset(client, outbox)

        resp = self._reset(client, email, token)
        assert resp.status_code == 200

        login(client, "alice", NEW_PASSWORD)
        old = client.post("/api/v1/auth/login", json={"username": "alice", "password": PASSWORD})
        assert old.status_code == 401

    def test_reset_token_works_only_once(self, client, outbox):
        register(client, "alice")
        email, token = self._request_reset(client, outbox)
        assert self._reset(client, email, token).status_code == 200

        resp = self._reset(client, email, token, password="AnotherPass3$")
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "INVALID_RESET_TOKEN"

    def test_new_request_invalidates_previous_link(self, client, outbox):
        register(client, "alice")
        email, first_token = self._request_reset(client, outbox)
        self._request_reset(client, outbox)

        resp = self._reset(client, email, first_token)
        assert resp.status_code == 400

    def test_reset_revokes_refresh_tokens(self, client, app, outbox):
        first = register(client, "alice")
        second = login(client, "alice")
        email, token = self._request_reset(client, outbox)

        assert self._reset(client, email, token).status_code == 200

        assert refresh(client, first).status_code == 401
        assert refresh(client, second).status_code == 401

    def test_reset_clears_lockout(self, client, app, outbox):
        register(client, "alice")
        for _ in range(5):
            client.post("/api/v1/auth/login", json={"username": "alice", "password": "Nope1234!"})

        email, token = self._request_reset(client, outbox)
        assert self._reset(client, email, token).status_code == 200
        login(client, "alice", NEW_PASSWORD)

    def test_wrong_token_is_rejected(self, client, outbox):
        register(client, "alice")
        resp = self._reset(client, "alice@test.com", str(uuid.uuid4()))
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "INVALID_RESET_TOKEN"

    def test_mismatched_confirmation_returns_400(self, client):
        resp = client.post("/api/v1/auth/reset-password", json={
            "email": "alice@test.com",
            "token": "x",
            "new_password": NEW_PASSWORD,
            "confirm_password": "Different1!",
        })
        assert resp.status_code == 400
        assert resp.get_json()["error"]["field"] == "confirm_password"


# ═══════════════════════════════════════════════════════════════════════════
# GET /auth/me and the authentication middleware
# ═══════════════════════════════════════════════════════════════════════════

class TestMe:

    def test_me_returns_profile(self, client):
        pair = register(client, "alice")
        resp = client.get("/api/v1/auth/me", headers=auth_headers(pair["access_token"]))
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["id"] == pair["user"]["id"]
        assert data["roles"] == ["Athlete"]
        assert data["permissions"] == ["workouts.read", "workouts.log"]

    def test_missing_header_returns_token_missing(self, client):
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "TOKEN_MISSING"

    def test_malformed_header_returns_token_invalid(self, client):
        resp = client.get("/api/v1/auth/me", headers={"Authorization": "Token abc"})
        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "TOKEN_INVALID"

    def test_garbage_token_returns_token_invalid(self, client):
        resp = client.get("/api/v1/auth/me", headers=auth_headers("not.a.jwt"))
        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "TOKEN_INVALID"

    def test_expired_token_returns_token_expired(self, client, app):
        register(client, "alice")
        settings = app.extensions[SETTINGS_EXTENSION].tokens
        expired_settings = dataclasses.replace(settings, access_ttl=timedelta(seconds=-30))
        with app.app_context():
            expired = issue_access_token(get_user("alice"), [], [], expired_settings)

        resp = client.get("/api/v1/auth/me", headers=auth_headers(expired.token))
        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "TOKEN_EXPIRED"

    def test_deactivated_user_returns_404(self, client, app):
        pair = register(client, "alice")
        with app.app_context():
            get_user("alice").is_active = False
            db.session.commit()

        resp = client.get("/api/v1/auth/me", headers=auth_headers(pair["access_token"]))
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "USER_NOT_FOUND"
