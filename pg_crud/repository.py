"""
Record repository for the `users` table.

This is the only module that builds SQL. Column and table names are composed
with `psycopg.sql.Identifier`; every value travels as a bound parameter.

Each public method runs in its own transaction on a leased connection and
re-signals database failures through the error taxonomy in `pg_crud.errors`.

Usage:
    repo = UserRepository(manager)
    user_id = repo.create(UserFields(name="a"))
    for user in repo.list(ListFilter(name_contains="a")):
        ...
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Generator, Iterator, List, Optional, Tuple

import psycopg
from psycopg import Connection, sql
from psycopg.rows import dict_row

from pg_crud.domain.models import ListFilter, Pagination, User, UserFields, UserPatch
from pg_crud.errors import CrudError, InvalidRequest, NotFound, classify_database_error
from pg_crud.infrastructure.pool import ConnectionManager
from pg_crud.utils.logging import get_logger

log = get_logger(__name__)

USER_COLUMNS: Tuple[str, ...] = ("id", "name", "email", "created_at", "updated_at")


def _escape_like(value: str) -> str:
    """Escape LIKE wildcards so user input only matches literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class UserStream:
    """
    Lazy, finite, restartable sequence of users.

    Nothing touches the database until iteration starts. Every `iter()` starts
    again from the initial cursor. Rows are fetched one page per round-trip and
    the connection is returned to the pool before any row of the page is
    yielded, so a slow consumer never pins a lease.
    """

    def __init__(self, repository: "UserRepository", criteria: ListFilter, page: Pagination) -> None:
        if page.page_size < 1:
            raise InvalidRequest("page_size", "must be at least 1")
        if page.limit is not None and page.limit < 0:
            raise InvalidRequest("limit", "must not be negative")
        self._repository = repository
        self.criteria = criteria
        self.page = page

    def __iter__(self) -> Iterator[User]:
        after_id = self.page.after_id
        remaining = self.page.limit
        while remaining is None or remaining > 0:
            size = self.page.page_size if remaining is None else min(self.page.page_size, remaining)
            rows = self._repository._fetch_page(self.criteria, after_id, size, self.page.descending)
            yield from rows
            if len(rows) < size:
                return
            after_id = rows[-1].id
            if remaining is not None:
                remaining -= len(rows)


class UserRepository:
    """
    CRUD access to the `users` table over a shared ConnectionManager.
    """

    table: str = "users"

    def __init__(self, manager: ConnectionManager) -> None:
        self.manager = manager

    @contextmanager
    def _transaction(self) -> Generator[Connection, None, None]:
        """Lease a connection and run the block in one transaction, classifying errors."""
        try:
            with self.manager.lease() as conn:
                with conn.transaction():
                    yield conn
        except CrudError:
            raise
        except psycopg.Error as exc:
            classified = classify_database_error(exc)
            if classified is None:
                raise
            log.warning(
                "Database error classified",
                extra={"error_type": type(classified).__name__, "cause": type(exc).__name__},
            )
            raise classified from exc

    def _columns(self) -> sql.Composed:
        return sql.SQL(", ").join(sql.Identifier(c) for c in USER_COLUMNS)

    @staticmethod
    def _to_user(row: Dict[str, Any]) -> User:
        return User.model_validate(row)

    # -- create --------------------------------------------------------------

    def create(self, fields: UserFields) -> int:
        """
        Insert a new user.

        Returns
        -------
        int
            The generated identifier.

        Raises
        ------
        ConstraintViolation
            If the row conflicts with a uniqueness or other integrity constraint.
        """
        values = fields.model_dump()
        query = sql.SQL("INSERT INTO {table} ({columns}) VALUES ({values}) RETURNING {id}").format(
            table=sql.Identifier(self.table),
            columns=sql.SQL(", ").join(sql.Identifier(name) for name in values),
            values=sql.SQL(", ").join(sql.Placeholder(name) for name in values),
            id=sql.Identifier("id"),
        )
        with self._transaction() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(query, values)
                row = cur.fetchone()
        user_id = int(row["id"])
        log.info("User created", extra={"user_id": user_id})
        return user_id

    # -- read ----------------------------------------------------------------

    def read(self, user_id: int) -> User:
        """Fetch one user by id; raises NotFound when absent."""
        query = sql.SQL("SELECT {columns} FROM {table} WHERE {id} = %(id)s").format(
            columns=self._columns(),
            table=sql.Identifier(self.table),
            id=sql.Identifier("id"),
        )
        with self._transaction() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(query, {"id": user_id})
                row = cur.fetchone()
        if row is None:
            raise NotFound(user_id)
        return self._to_user(row)

    # -- update --------------------------------------------------------------

    def update(self, user_id: int, patch: UserPatch) -> User:
        """
        Apply the fields present in `patch` and bump `updated_at`.

        A single UPDATE ... RETURNING statement, so a missing id changes
        nothing and raises NotFound.
        """
        changes = patch.changes()
        assignments = [
            sql.SQL("{} = {}").format(sql.Identifier(name), sql.Placeholder(name))
            for name in changes
        ]
        assignments.append(sql.SQL("{} = now()").format(sql.Identifier("updated_at")))
        query = sql.SQL(
            "UPDATE {table} SET {assignments} WHERE {id} = %(id)s RETURNING {columns}"
        ).format(
            table=sql.Identifier(self.table),
            assignments=sql.SQL(", ").join(assignments),
            id=sql.Identifier("id"),
            columns=self._columns(),
        )
        params = dict(changes)
        params["id"] = user_id
        with self._transaction() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(query, params)
                row = cur.fetchone()
        if row is None:
            raise NotFound(user_id)
        log.info("User updated", extra={"user_id": user_id, "fields": sorted(changes)})
        return self._to_user(row)

    # -- delete --------------------------------------------------------------

    def delete(self, user_id: int) -> int:
        """Delete a user; returns rows affected (0 when the id does not exist)."""
        query = sql.SQL("DELETE FROM {table} WHERE {id} = %(id)s").format(
            table=sql.Identifier(self.table),
            id=sql.Identifier("id"),
        )
        with self._transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(query, {"id": user_id})
                affected = cur.rowcount
        log.info("User delete executed", extra={"user_id": user_id, "rows_affected": affected})
        return affected

    # -- list ----------------------------------------------------------------

    def list(
        self,
        criteria: Optional[ListFilter] = None,
        page: Optional[Pagination] = None,
    ) -> UserStream:
        """Lazy listing ordered by id (ascending unless `page.descending`)."""
        return UserStream(self, criteria or ListFilter(), page or Pagination())

    def count(self, criteria: Optional[ListFilter] = None) -> int:
        """Number of users matching `criteria`."""
        where, params = self._where(criteria or ListFilter(), None, False)
        query = sql.SQL("SELECT count(*) AS total FROM {table}{where}").format(
            table=sql.Identifier(self.table),
            where=where,
        )
        with self._transaction() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(query, params)
                row = cur.fetchone()
        return int(row["total"])

    def _where(
        self,
        criteria: ListFilter,
        after_id: Optional[int],
        descending: bool,
    ) -> Tuple[sql.Composable, Dict[str, Any]]:
        conditions: List[sql.Composable] = []
        params: Dict[str, Any] = {}
        if criteria.name is not None:
            conditions.append(sql.SQL("{} = %(name)s").format(sql.Identifier("name")))
            params["name"] = criteria.name
        if criteria.name_contains is not None:
            conditions.append(
                sql.SQL("{} ILIKE %(name_pattern)s").format(sql.Identifier("name"))
            )
            params["name_pattern"] = f"%{_escape_like(criteria.name_contains)}%"
        if criteria.email is not None:
            conditions.append(sql.SQL("{} = %(email)s").format(sql.Identifier("email")))
            params["email"] = criteria.email
        if after_id is not None:
            op = sql.SQL("<") if descending else sql.SQL(">")
            conditions.append(sql.SQL("{} {} %(after_id)s").format(sql.Identifier("id"), op))
            params["after_id"] = after_id
        if not conditions:
            return sql.SQL(""), params
        return sql.SQL(" WHERE ") + sql.SQL(" AND ").join(conditions), params

    def _fetch_page(
        self,
        criteria: ListFilter,
        after_id: Optional[int],
        size: int,
        descending: bool,
    ) -> List[User]:
        where, params = self._where(criteria, after_id, descending)
        query = sql.SQL(
            "SELECT {columns} FROM {table}{where} ORDER BY {id} {direction} LIMIT %(limit)s"
        ).format(
            columns=self._columns(),
            table=sql.Identifier(self.table),
            where=where,
            id=sql.Identifier("id"),
            direction=sql.SQL("DESC") if descending else sql.SQL("ASC"),
        )
        params["limit"] = size
        with self._transaction() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(query, params)
                rows = cur.fetchall()
        return [self._to_user(row) for row in rows]


__all__ = ["USER_COLUMNS", "UserRepository", "UserStream"]
