"""
extensions.py — Flask extension singletons.

Initialises SQLAlchemy as a module-level object so it can be imported anywhere
without creating circular dependencies.

Pattern:
    1. Create the extension object here (no app attached yet).
    2. Call init_app(app) inside the app factory in fitauth/__init__.py.
    3. Import `db` from here wherever needed.

    from backend.fitauth.extensions import db

Do not pass the app object directly to SQLAlchemy() at import time — that
would prevent running tests with a separate test app instance.

Services never touch `db.session` directly; routes pass the session in.
The models only need `db.Model` / `db.metadata`, which work without an
application context, so the ledger can also be driven from a plain
sqlalchemy.orm.Session (see the concurrency integration test).
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
