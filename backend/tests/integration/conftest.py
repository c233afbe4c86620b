"""
tests/integration/conftest.py — Fixtures for all integration tests.

Design:
  - The app is created once per session using create_app("testing").
    TestingConfig uses an in-memory SQLite database unless TEST_DATABASE_URL
    points at a real PostgreSQL instance.
  - All tables are created once via db.create_all(); the default roles
    (Admin, Trainer, Athlete) are seeded once.
  - Between tests, users, role assignments and refresh tokens are deleted so
    tests are isolated. Roles are kept, except that any role a test created
    or deactivated is restored by re-seeding.
  - The email sender is replaced with a recording fake; `outbox` exposes the
    messages a test produced.

Plain helper functions live in helpers.py.
"""

from __future__ import annotations

import pytest
from sqlalchemy import text

from backend.fitauth import create_app
from backend.fitauth.extensions import db as _db
from backend.fitauth.middleware.auth_middleware import EMAIL_EXTENSION
from backend.fitauth.seed import seed_roles
from backend.fitauth.services.email_service import EmailSender


class RecordingEmailSender(EmailSender):
    """Keeps every message instead of talking to SMTP."""

    def __init__(self) -> None:
        super().__init__(from_name="WorkoutProject")
        self.sent: list[dict] = []
        self.fail = False

    def _send(self, to: str, subject: str, text_body: str, html_body: str) -> bool:
        if self.fail:
            return False
        self.sent.append({"to": to, "subject": subject, "body": text_body})
        return True


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """
    Creates the Flask application in 'testing' mode once for the whole run.

    Steps:
      1. Create app with TestingConfig.
      2. db.create_all() and seed the default roles.
      3. Install the recording email sender.
      4. Yield the app; drop all tables at teardown.
    """
    flask_app = create_app("testing")
    flask_app.extensions[EMAIL_EXTENSION] = RecordingEmailSender()

    with flask_app.app_context():
        _db.create_all()
        seed_roles(_db.session)
        _db.session.commit()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_tables(app):
    """Deletes all rows a test may have created, in FK-safe order."""
    yield

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test

        with _db.engine.connect() as conn:
            conn.execute(text("DELETE FROM refresh_tokens"))
            conn.execute(text("DELETE FROM user_roles"))
            conn.execute(text("DELETE FROM users"))
            conn.execute(text("DELETE FROM roles"))
            conn.commit()

        seed_roles(_db.session)
        _db.session.commit()

    app.extensions[EMAIL_EXTENSION].sent.clear()
    app.extensions[EMAIL_EXTENSION].fail = False


# ═══════════════════════════════════════════════════════════════════════════
# Client / outbox fixtures
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


@pytest.fixture
def outbox(app) -> RecordingEmailSender:
    return app.extensions[EMAIL_EXTENSION]
