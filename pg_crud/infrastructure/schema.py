"""
Schema bootstrap for the `users` table.

Statements are idempotent so every service start can run them. Tables created
by older deployments (id, name, email only) gain the timestamp columns and
the email uniqueness index.
"""

from __future__ import annotations

import psycopg

from pg_crud.errors import classify_database_error
from pg_crud.infrastructure.pool import ConnectionManager
from pg_crud.utils.logging import get_logger

log = get_logger(__name__)

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id SERIAL PRIMARY KEY,
        name VARCHAR NOT NULL,
        email VARCHAR,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "ALTER TABLE users ADD COLUMN IF NOT EXISTS created_at TIMESTAMPTZ NOT NULL DEFAULT now()",
    "ALTER TABLE users ADD COLUMN IF NOT EXISTS updated_at TIMESTAMPTZ NOT NULL DEFAULT now()",
    "ALTER TABLE users ALTER COLUMN email DROP NOT NULL",
    "CREATE UNIQUE INDEX IF NOT EXISTS users_email_key ON users (email)",
)


def _run(manager: ConnectionManager, statements: tuple[str, ...]) -> None:
    try:
        with manager.lease() as conn:
            with conn.transaction():
                for statement in statements:
                    conn.execute(statement)
    except psycopg.Error as exc:
        classified = classify_database_error(exc)
        if classified is None:
            raise
        raise classified from exc


def ensure_schema(manager: ConnectionManager) -> None:
    """Create the `users` table and its indexes if they do not exist."""
    _run(manager, SCHEMA_STATEMENTS)
    log.info("Schema ready", extra={"table": "users"})


def truncate_users(manager: ConnectionManager) -> None:
    """Remove every user and restart the id sequence at 1."""
    _run(manager, ("TRUNCATE TABLE users RESTART IDENTITY",))
    log.warning("Users table truncated")


__all__ = ["SCHEMA_STATEMENTS", "ensure_schema", "truncate_users"]
