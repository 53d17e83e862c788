"""
Pytest configuration for pg-crud.

Provides fixtures for:
- Settings and DSN for integration tests
- A managed ConnectionManager against a real database (skipped when unreachable)
- A clean `users` table per test
- An in-memory repository so handler and HTTP tests run without a database
"""

from __future__ import annotations

import os
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Generator, Iterator, Optional

import psycopg
import pytest

from pg_crud.config import Settings
from pg_crud.domain.models import ListFilter, Pagination, User, UserFields, UserPatch
from pg_crud.errors import ConstraintViolation, NotFound
from pg_crud.handler import RequestHandler
from pg_crud.infrastructure.pool import ConnectionManager
from pg_crud.infrastructure.schema import ensure_schema, truncate_users


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "crud"),
        pool_max_size=4,
        pool_timeout_seconds=2.0,
        db_connect_retries=1,
        log_level="DEBUG",
        _env_file=None,
    )


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    """
    Database connection string for tests.
    """
    return test_settings.dsn


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except Exception:
        return False


@pytest.fixture(scope="session")
def db_manager(
    test_settings: Settings, db_connection_available: bool
) -> Generator[ConnectionManager, None, None]:
    """
    Provide a session-scoped, opened ConnectionManager with the schema in place.

    Skips tests if database is not available.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    manager = ConnectionManager.from_settings(test_settings)
    manager.open()
    try:
        ensure_schema(manager)
        yield manager
    finally:
        manager.close()


@pytest.fixture(scope="function")
def clean_users_table(db_manager: ConnectionManager) -> Generator[ConnectionManager, None, None]:
    """
    Empty the users table and restart ids at 1 around each test.
    """
    truncate_users(db_manager)
    yield db_manager
    truncate_users(db_manager)


class _FakeManager:
    def describe(self) -> Dict[str, Any]:
        return {"max_size": 1, "leased": 0, "open": True}


class InMemoryUserRepository:
    """Dict-backed stand-in for UserRepository with the same contract."""

    def __init__(self) -> None:
        self.manager = _FakeManager()
        self._rows: Dict[int, User] = {}
        self._next_id = 1
        self._lock = threading.Lock()
        self.fail_with: Optional[Exception] = None

    def _check_failure(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    def _check_unique_email(self, email: Optional[str], exclude: Optional[int] = None) -> None:
        if email is None:
            return
        for row in self._rows.values():
            if row.email == email and row.id != exclude:
                raise ConstraintViolation("Key (email) already exists.", constraint="users_email_key")

    def create(self, fields: UserFields) -> int:
        self._check_failure()
        with self._lock:
            self._check_unique_email(fields.email)
            now = datetime.now(timezone.utc)
            user = User(id=self._next_id, name=fields.name, email=fields.email, created_at=now, updated_at=now)
            self._rows[user.id] = user
            self._next_id += 1
            return user.id

    def read(self, user_id: int) -> User:
        self._check_failure()
        if user_id not in self._rows:
            raise NotFound(user_id)
        return self._rows[user_id]

    def update(self, user_id: int, patch: UserPatch) -> User:
        self._check_failure()
        with self._lock:
            if user_id not in self._rows:
                raise NotFound(user_id)
            changes = patch.changes()
            if "email" in changes:
                self._check_unique_email(changes["email"], exclude=user_id)
            current = self._rows[user_id]
            updated = current.model_copy(update={**changes, "updated_at": datetime.now(timezone.utc)})
            self._rows[user_id] = updated
            return updated

    def delete(self, user_id: int) -> int:
        self._check_failure()
        with self._lock:
            return 1 if self._rows.pop(user_id, None) is not None else 0

    def list(self, criteria: Optional[ListFilter] = None, page: Optional[Pagination] = None) -> Iterator[User]:
        self._check_failure()
        criteria = criteria or ListFilter()
        page = page or Pagination()
        rows = sorted(self._rows.values(), key=lambda u: u.id, reverse=page.descending)
        if page.after_id is not None:
            rows = [u for u in rows if (u.id < page.after_id if page.descending else u.id > page.after_id)]
        if criteria.name is not None:
            rows = [u for u in rows if u.name == criteria.name]
        if criteria.name_contains is not None:
            rows = [u for u in rows if criteria.name_contains.lower() in u.name.lower()]
        if criteria.email is not None:
            rows = [u for u in rows if u.email == criteria.email]
        if page.limit is not None:
            rows = rows[: page.limit]
        return iter(rows)


@pytest.fixture
def memory_repository() -> InMemoryUserRepository:
    return InMemoryUserRepository()


@pytest.fixture
def memory_handler(memory_repository: InMemoryUserRepository) -> RequestHandler:
    return RequestHandler(memory_repository)  # type: ignore[arg-type]
