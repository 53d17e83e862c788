"""Error taxonomy for pg-crud.

The repository re-signals every database failure as one of these kinds; the
request handler is the only place that turns them into user-visible responses.
"""

from __future__ import annotations

import psycopg
from psycopg_pool import PoolClosed, PoolTimeout


class CrudError(Exception):
    """Base exception for all pg-crud errors."""

    retryable: bool = False


class PoolExhausted(CrudError):
    """Raised when no pooled connection became available within the wait timeout."""

    retryable = True

    def __init__(self, timeout: float | None = None):
        self.timeout = timeout
        msg = "Connection pool exhausted"
        if timeout is not None:
            msg = f"{msg} (waited {timeout:g}s)"
        super().__init__(msg)


class NotFound(CrudError):
    """Raised when a record with the requested identifier does not exist."""

    def __init__(self, record_id: int):
        self.record_id = record_id
        super().__init__(f"User not found: {record_id}")


class ConstraintViolation(CrudError):
    """Raised on uniqueness, foreign-key, not-null or check conflicts."""

    def __init__(self, message: str, constraint: str | None = None):
        self.constraint = constraint
        super().__init__(message)


class TransportFailure(CrudError):
    """Raised when the database is unreachable or the connection broke mid-statement."""

    retryable = True


class InvalidRequest(CrudError):
    """Raised when an operation fails validation before reaching the database."""

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


def classify_database_error(exc: Exception) -> CrudError | None:
    """
    Map a psycopg / psycopg_pool exception onto the error taxonomy.

    Returns None for errors that are not runtime conditions (syntax errors,
    undefined columns); callers let those propagate unchanged.
    """
    if isinstance(exc, CrudError):
        return exc
    if isinstance(exc, PoolTimeout):
        return PoolExhausted()
    if isinstance(exc, PoolClosed):
        return TransportFailure("Connection pool is closed")
    if isinstance(exc, psycopg.IntegrityError):
        diag = getattr(exc, "diag", None)
        constraint = getattr(diag, "constraint_name", None) if diag is not None else None
        detail = getattr(diag, "message_detail", None) if diag is not None else None
        return ConstraintViolation(detail or str(exc).strip(), constraint=constraint)
    if isinstance(exc, (psycopg.OperationalError, psycopg.InterfaceError)):
        return TransportFailure(str(exc).strip() or type(exc).__name__)
    return None


def is_transport_error(exc: BaseException) -> bool:
    """True when the exception means the connection itself can no longer be trusted."""
    if isinstance(exc, psycopg.errors.QueryCanceled):
        return False
    return isinstance(exc, (psycopg.OperationalError, psycopg.InterfaceError, TransportFailure))


__all__ = [
    "CrudError",
    "PoolExhausted",
    "NotFound",
    "ConstraintViolation",
    "TransportFailure",
    "InvalidRequest",
    "classify_database_error",
    "is_transport_error",
]
