"""
seed.py — Built-in roles and the `flask seed-roles` command.

Run from the project root:
  FLASK_APP="backend.fitauth:create_app('development')" flask seed-roles

Idempotent: roles that already exist (by normalized name) are left untouched,
including any permission edits made after the first seed.
"""

from __future__ import annotations

import json
import logging

import click
from flask import Flask
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.fitauth.models.role import Role

logger = logging.getLogger(__name__)

DEFAULT_ROLES = [
    {
        "name": "Admin",
        "description": "System Administrator",
        "is_system_role": True,
        "permissions": [
            "users.read",
            "users.write",
            "roles.manage",
            "workouts.read",
            "workouts.write",
        ],
    },
    {
        "name": "Trainer",
        "description": "Fitness Trainer",
        "is_system_role": False,
        "permissions": ["workouts.read", "workouts.write", "athletes.read"],
    },
    {
        "name": "Athlete",
        "description": "Athlete/Client",
        "is_system_role": False,
        "permissions": ["workouts.read", "workouts.log"],
    },
]


def seed_roles(session: Session) -> list[str]:
    """Inserts missing default roles and flushes. Returns the names created."""
    existing = set(session.execute(select(Role.normalized_name)).scalars())

    created = []
    for definition in DEFAULT_ROLES:
        normalized = Role.normalize(definition["name"])
        if normalized in existing:
            continue
        session.add(Role(
            name=definition["name"],
            normalized_name=normalized,
            description=definition["description"],
            permissions=json.dumps(definition["permissions"]),
            is_system_role=definition["is_system_role"],
            is_active=True,
        ))
        created.append(definition["name"])
        logger.info("Seeded role: %s", definition["name"])

    session.flush()
    return created


def register_commands(app: Flask) -> None:

    @app.cli.command("seed-roles")
    def seed_roles_command():
        """Create the Admin, Trainer and Athlete roles if they are missing."""
        from backend.fitauth.extensions import db

        created = seed_roles(db.session)
        db.session.commit()
        if created:
            click.echo(f"Created roles: {', '.join(created)}")
        else:
            click.echo("All default roles already exist.")
