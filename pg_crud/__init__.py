"""
pg-crud - CRUD service for a PostgreSQL `users` table.

Layers, from the database outwards:

- Connection management (bounded pool with exclusive leases)
- Record repository (parameterized SQL, error classification)
- Request handler (validation, dispatch, response shaping)
- Transports: FastAPI HTTP app and Typer CLI
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

from pg_crud.config import Settings, get_settings
from pg_crud.errors import (
    ConstraintViolation,
    CrudError,
    InvalidRequest,
    NotFound,
    PoolExhausted,
    TransportFailure,
)
from pg_crud.handler import RequestHandler, Response, Status
from pg_crud.infrastructure.pool import ConnectionManager
from pg_crud.repository import UserRepository, UserStream
from pg_crud.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Errors
    "CrudError",
    "ConstraintViolation",
    "InvalidRequest",
    "NotFound",
    "PoolExhausted",
    "TransportFailure",
    # Components
    "ConnectionManager",
    "UserRepository",
    "UserStream",
    "RequestHandler",
    "Response",
    "Status",
    # Logging
    "configure_logging",
    "get_logger",
]
