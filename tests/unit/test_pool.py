from __future__ import annotations

import threading
import time
from typing import Any, ClassVar, Optional

import psycopg
import pytest
from psycopg_pool import PoolTimeout

from pg_crud.errors import PoolExhausted, TransportFailure
from pg_crud.infrastructure import pool as pool_module
from pg_crud.infrastructure.pool import ConnectionManager

MAX_SIZE = 3
WORKERS = 12


class _FakeConnection:
    def __init__(self, ident: int) -> None:
        self.ident = ident
        self.closed = False
        self.broken = False

    def close(self) -> None:
        self.closed = True


class _FakeConnectionPool:
    """Bounded pool emulating psycopg_pool.ConnectionPool getconn/putconn."""

    instances: ClassVar[list[_FakeConnectionPool]] = []

    def __init__(self, conninfo: str, min_size: int, max_size: int, timeout: float, **kwargs: Any) -> None:
        self.conninfo = conninfo
        self.min_size = min_size
        self.max_size = max_size
        self.kwargs = kwargs
        self.opened = False
        self.closed = False
        self._slots = threading.BoundedSemaphore(max_size)
        self._created = 0
        self._idle: list[_FakeConnection] = []
        self._lock = threading.Lock()
        self.discarded: list[_FakeConnection] = []
        _FakeConnectionPool.instances.append(self)

    def open(self) -> None:
        self.opened = True

    def close(self) -> None:
        self.closed = True

    def getconn(self, timeout: Optional[float] = None) -> _FakeConnection:
        if not self._slots.acquire(timeout=timeout):
            raise PoolTimeout(f"couldn't get a connection after {timeout} sec")
        with self._lock:
            if self._idle:
                return self._idle.pop()
            self._created += 1
            return _FakeConnection(self._created)

    def putconn(self, conn: _FakeConnection) -> None:
        with self._lock:
            if conn.closed:
                self.discarded.append(conn)
            else:
                self._idle.append(conn)
        self._slots.release()


@pytest.fixture
def manager(monkeypatch) -> ConnectionManager:
    _FakeConnectionPool.instances.clear()
    monkeypatch.setattr(pool_module, "ConnectionPool", _FakeConnectionPool)
    mgr = ConnectionManager("postgresql://test", min_size=1, max_size=MAX_SIZE, timeout=0.2)
    mgr.open(wait_for_database=False)
    yield mgr
    mgr.close()


def test_constructor_rejects_invalid_bounds() -> None:
    with pytest.raises(ValueError):
        ConnectionManager("postgresql://test", max_size=0)
    with pytest.raises(ValueError):
        ConnectionManager("postgresql://test", min_size=5, max_size=2)
    with pytest.raises(ValueError):
        ConnectionManager("postgresql://test", timeout=0)


def test_open_is_idempotent_and_passes_bounds(manager: ConnectionManager) -> None:
    manager.open(wait_for_database=False)
    assert len(_FakeConnectionPool.instances) == 1
    fake = _FakeConnectionPool.instances[0]
    assert fake.opened is True
    assert fake.max_size == MAX_SIZE
    assert fake.kwargs["configure"] is None


def test_statement_timeout_installs_configure_hook(monkeypatch) -> None:
    _FakeConnectionPool.instances.clear()
    monkeypatch.setattr(pool_module, "ConnectionPool", _FakeConnectionPool)
    mgr = ConnectionManager("postgresql://test", statement_timeout_ms=1500)
    mgr.open(wait_for_database=False)
    try:
        assert _FakeConnectionPool.instances[0].kwargs["configure"] is not None
    finally:
        mgr.close()


def test_acquire_and_release_track_leases(manager: ConnectionManager) -> None:
    conn = manager.acquire()
    assert manager.stats().leased == 1
    manager.release(conn)
    stats = manager.stats()
    assert stats.leased == 0
    assert stats.acquired_total == 1
    assert stats.broken_total == 0


def test_acquire_raises_pool_exhausted_after_timeout(manager: ConnectionManager) -> None:
    held = [manager.acquire() for _ in range(MAX_SIZE)]
    try:
        with pytest.raises(PoolExhausted) as excinfo:
            manager.acquire(timeout=0.05)
        assert excinfo.value.retryable is True
        assert manager.stats().leased == MAX_SIZE
    finally:
        for conn in held:
            manager.release(conn)


def test_release_broken_connection_closes_and_discards(manager: ConnectionManager) -> None:
    conn = manager.acquire()
    manager.release(conn, broken=True)
    fake = _FakeConnectionPool.instances[0]
    assert conn.closed is True
    assert fake.discarded == [conn]
    assert manager.stats().broken_total == 1


def test_release_detects_connection_broken_by_driver(manager: ConnectionManager) -> None:
    conn = manager.acquire()
    conn.broken = True
    manager.release(conn)
    assert conn.closed is True
    assert manager.stats().broken_total == 1


def test_lease_marks_connection_broken_on_transport_error(manager: ConnectionManager) -> None:
    with pytest.raises(psycopg.OperationalError):
        with manager.lease() as conn:
            raise psycopg.OperationalError("server closed the connection unexpectedly")
    assert conn.closed is True
    assert manager.stats().leased == 0
    assert manager.stats().broken_total == 1


def test_lease_keeps_connection_on_other_errors(manager: ConnectionManager) -> None:
    with pytest.raises(ValueError):
        with manager.lease() as conn:
            raise ValueError("boom")
    assert conn.closed is False
    assert manager.stats().broken_total == 0


def test_acquire_on_closed_manager_is_transport_failure(manager: ConnectionManager) -> None:
    manager.close()
    with pytest.raises(TransportFailure):
        manager.acquire()


def test_release_after_close_closes_connection(manager: ConnectionManager) -> None:
    conn = manager.acquire()
    manager.close()
    manager.release(conn)
    assert conn.closed is True


def test_concurrent_leases_never_exceed_max_size(manager: ConnectionManager) -> None:
    in_flight = 0
    observed_max = 0
    counter_lock = threading.Lock()
    errors: list[BaseException] = []

    def worker() -> None:
        nonlocal in_flight, observed_max
        try:
            with manager.lease(timeout=5.0):
                with counter_lock:
                    in_flight += 1
                    observed_max = max(observed_max, in_flight)
                time.sleep(0.01)
                with counter_lock:
                    in_flight -= 1
        except BaseException as exc:  # pragma: no cover - surfaced below
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(WORKERS)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    stats = manager.stats()
    assert observed_max <= MAX_SIZE
    assert stats.peak_leased <= MAX_SIZE
    assert stats.leased == 0
    assert stats.acquired_total == WORKERS


def test_open_raises_transport_failure_when_database_unreachable(monkeypatch) -> None:
    attempts: list[str] = []

    def fake_connect(dsn: str, connect_timeout: int) -> None:
        del connect_timeout
        attempts.append(dsn)
        raise psycopg.OperationalError("connection refused")

    monkeypatch.setattr(pool_module.psycopg, "connect", fake_connect)
    monkeypatch.setattr(pool_module, "ConnectionPool", _FakeConnectionPool)
    mgr = ConnectionManager("postgresql://unreachable", connect_retries=1)

    with pytest.raises(TransportFailure, match="Database unreachable"):
        mgr.open()

    assert attempts == ["postgresql://unreachable"]
    assert mgr.is_open is False


def test_describe_reports_open_state(manager: ConnectionManager) -> None:
    payload = manager.describe()
    assert payload["open"] is True
    assert payload["max_size"] == MAX_SIZE
