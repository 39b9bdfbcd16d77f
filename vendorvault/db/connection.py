"""
PostgreSQL access for the credential store, audit log and migration runner.

One ThreadedConnectionPool per process, sized from VENDORVAULT_DB_POOL_*.
``get_connection`` scopes a single transaction: commit on a clean exit,
rollback on any exception, and the connection always goes back to the pool.

Usage:
    from vendorvault.db import get_connection

    with get_connection(locking=True) as conn:
        cur = conn.cursor()
        cur.execute("SELECT fields FROM vendor_credentials WHERE ... FOR UPDATE", params)
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

import psycopg2
import psycopg2.pool

from vendorvault.config import get_config

logger = logging.getLogger(__name__)

_pool: psycopg2.pool.ThreadedConnectionPool | None = None
_pool_lock = threading.Lock()


def _open_pool() -> psycopg2.pool.ThreadedConnectionPool:
    cfg = get_config().db
    logger.info(
        "Opening credential database pool %s@%s/%s (size %d-%d)",
        cfg.user,
        cfg.host or "<socket>",
        cfg.name,
        cfg.pool_min,
        cfg.pool_max,
    )
    try:
        return psycopg2.pool.ThreadedConnectionPool(cfg.pool_min, cfg.pool_max, **cfg.dict)
    except psycopg2.OperationalError as e:
        raise ConnectionError(
            f"Credential database {cfg.name} unreachable at "
            f"{cfg.host or 'local socket'}:{cfg.port} (see VENDORVAULT_DB_*): {e}"
        ) from e


def get_pool() -> psycopg2.pool.ThreadedConnectionPool:
    """Return the process pool, opening it on first use."""
    global _pool
    with _pool_lock:
        if _pool is None or _pool.closed:
            _pool = _open_pool()
        return _pool


@contextmanager
def get_connection(*, locking: bool = False) -> Iterator[psycopg2.extensions.connection]:
    """One transaction on a pooled connection.

    With ``locking``, row-lock waits inside the transaction are capped at
    VENDORVAULT_DB_LOCK_TIMEOUT_MS and surface as a psycopg2 error instead
    of blocking the caller indefinitely.
    """
    pool = get_pool()
    conn = pool.getconn()
    try:
        if locking:
            with conn.cursor() as cur:
                cur.execute(
                    "SET LOCAL lock_timeout = %s", (f"{get_config().db.lock_timeout_ms}ms",)
                )
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        pool.putconn(conn)


def close_pool() -> None:
    """Close every pooled connection (process shutdown)."""
    global _pool
    with _pool_lock:
        if _pool is not None:
            _pool.closeall()
            _pool = None
