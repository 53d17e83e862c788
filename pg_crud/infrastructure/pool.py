"""
Connection management for the pg-crud service.

`ConnectionManager` owns one bounded psycopg connection pool and hands out
exclusive leases. It is constructed explicitly and passed to whatever needs
database access; there is no process-wide instance.

Start-up waits for the database with tenacity retries so the service can be
launched alongside a database container that is still initializing.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from typing import Any, Dict, Generator, Optional

import psycopg
from psycopg import Connection
from psycopg_pool import ConnectionPool, PoolClosed, PoolTimeout
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from pg_crud.config import Settings, get_settings
from pg_crud.errors import PoolExhausted, TransportFailure, is_transport_error
from pg_crud.utils.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class PoolStats:
    """Point-in-time snapshot of lease bookkeeping."""

    max_size: int
    leased: int
    peak_leased: int
    acquired_total: int
    broken_total: int

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


class ConnectionManager:
    """
    Bounded pool of PostgreSQL connections with exclusive leases.

    Parameters
    ----------
    dsn : str
        libpq connection string.
    min_size : int
        Connections kept open while idle.
    max_size : int
        Upper bound on concurrently leased connections.
    timeout : float
        Default seconds `acquire` waits before raising PoolExhausted.
    statement_timeout_ms : int
        Server-side statement timeout applied to every new connection (0 disables).
    connect_retries : int
        Attempts made to reach the database in `open` before giving up.

    Example
    -------
        with ConnectionManager(dsn, max_size=4) as manager:
            with manager.lease() as conn:
                conn.execute("SELECT 1")
    """

    def __init__(
        self,
        dsn: str,
        min_size: int = 1,
        max_size: int = 10,
        timeout: float = 5.0,
        statement_timeout_ms: int = 0,
        connect_retries: int = 5,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        if min_size < 0 or min_size > max_size:
            raise ValueError("min_size must be between 0 and max_size")
        if timeout <= 0:
            raise ValueError("timeout must be positive")

        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.timeout = timeout
        self.statement_timeout_ms = statement_timeout_ms
        self.connect_retries = max(connect_retries, 1)

        self._pool: Optional[ConnectionPool] = None
        self._lifecycle_lock = threading.Lock()
        # Guards the counters below; never held across a database round-trip.
        self._lock = threading.Lock()
        self._leased = 0
        self._peak_leased = 0
        self._acquired_total = 0
        self._broken_total = 0

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ConnectionManager":
        """Build a manager from application settings."""
        settings = settings or get_settings()
        return cls(
            dsn=settings.dsn,
            min_size=settings.pool_min_size,
            max_size=settings.pool_max_size,
            timeout=settings.pool_timeout_seconds,
            statement_timeout_ms=settings.statement_timeout_ms,
            connect_retries=settings.db_connect_retries,
        )

    # -- lifecycle -----------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._pool is not None

    def open(self, wait_for_database: bool = True) -> None:
        """
        Open the underlying pool (idempotent).

        Parameters
        ----------
        wait_for_database : bool
            Probe the database with retries before opening the pool.

        Raises
        ------
        TransportFailure
            If the database is still unreachable after all retry attempts.
        """
        with self._lifecycle_lock:
            if self._pool is not None:
                return
            if wait_for_database:
                self._wait_for_database()
            pool = ConnectionPool(
                conninfo=self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                timeout=self.timeout,
                configure=self._configure if self.statement_timeout_ms > 0 else None,
                open=False,
                name="pg-crud",
            )
            pool.open()
            self._pool = pool
        log.info(
            "Connection pool opened",
            extra={"min_size": self.min_size, "max_size": self.max_size},
        )

    def close(self) -> None:
        """Close the pool; idle connections are terminated and further acquires fail."""
        with self._lifecycle_lock:
            pool, self._pool = self._pool, None
        if pool is not None:
            pool.close()
            log.info("Connection pool closed", extra=self.stats().as_dict())

    def __enter__(self) -> "ConnectionManager":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _wait_for_database(self) -> None:
        retrying = Retrying(
            stop=stop_after_attempt(self.connect_retries),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type((psycopg.OperationalError, psycopg.InterfaceError)),
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        log.warning(
                            "Database not reachable yet, retrying",
                            extra={"attempt": attempt.retry_state.attempt_number},
                        )
                    with psycopg.connect(self.dsn, connect_timeout=5) as conn:
                        conn.execute("SELECT 1")
        except (psycopg.OperationalError, psycopg.InterfaceError) as exc:
            raise TransportFailure(f"Database unreachable: {exc}".strip()) from exc

    def _configure(self, conn: Connection) -> None:
        conn.execute(
            "SELECT set_config('statement_timeout', %s, false)",
            (str(self.statement_timeout_ms),),
        )
        conn.commit()

    # -- leases --------------------------------------------------------------

    def acquire(self, timeout: Optional[float] = None) -> Connection:
        """
        Lease a connection, blocking until one is free.

        Raises
        ------
        PoolExhausted
            If no connection became available within `timeout` seconds
            (defaults to the manager's timeout).
        TransportFailure
            If the manager is not open.
        """
        pool = self._pool
        if pool is None:
            raise TransportFailure("Connection pool is not open")
        wait = self.timeout if timeout is None else timeout
        try:
            conn = pool.getconn(timeout=wait)
        except PoolTimeout as exc:
            log.warning("Timed out waiting for a connection", extra={"timeout": wait})
            raise PoolExhausted(wait) from exc
        except PoolClosed as exc:
            raise TransportFailure("Connection pool is closed") from exc

        with self._lock:
            self._leased += 1
            self._acquired_total += 1
            self._peak_leased = max(self._peak_leased, self._leased)
        return conn

    def release(self, conn: Connection, broken: bool = False) -> None:
        """
        Return a leased connection.

        A connection marked broken (or already closed or broken) is closed and
        discarded; the pool opens a replacement lazily.
        """
        broken = broken or conn.closed or conn.broken
        if broken and not conn.closed:
            conn.close()

        with self._lock:
            self._leased -= 1
            if broken:
                self._broken_total += 1

        pool = self._pool
        if pool is None:
            if not conn.closed:
                conn.close()
            return
        pool.putconn(conn)
        if broken:
            log.warning("Discarded broken connection")

    @contextmanager
    def lease(self, timeout: Optional[float] = None) -> Generator[Connection, None, None]:
        """
        Context manager around acquire/release.

        The connection is marked broken when a transport error escapes the block.
        """
        conn = self.acquire(timeout=timeout)
        broken = False
        try:
            yield conn
        except BaseException as exc:
            broken = is_transport_error(exc)
            raise
        finally:
            self.release(conn, broken=broken)

    def stats(self) -> PoolStats:
        with self._lock:
            return PoolStats(
                max_size=self.max_size,
                leased=self._leased,
                peak_leased=self._peak_leased,
                acquired_total=self._acquired_total,
                broken_total=self._broken_total,
            )

    def describe(self) -> Dict[str, Any]:
        """Stats plus lifecycle state, for health reporting."""
        payload: Dict[str, Any] = self.stats().as_dict()
        payload["open"] = self.is_open
        return payload


__all__ = ["ConnectionManager", "PoolStats"]
