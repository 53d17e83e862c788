"""
Infrastructure package for pg-crud.

Centralizes database connectivity concerns (pooling, leases, schema bootstrap).
Keep this layer focused on I/O and resource management, decoupled from
repository and request-handling logic.
"""

from pg_crud.infrastructure.pool import ConnectionManager, PoolStats
from pg_crud.infrastructure.schema import ensure_schema, truncate_users

__all__ = [
    "ConnectionManager",
    "PoolStats",
    "ensure_schema",
    "truncate_users",
]
