"""
Database connection factory utilities for the event cache.

Composes the DSN from settings and provides sync connections (schema bootstrap,
maintenance) and async connection pools (ingestion and reads). Pools are owned
by the store that opens them; nothing here is process-global.

Includes retry logic for transient connection failures using tenacity.
"""

from __future__ import annotations

from typing import Optional

import psycopg
from psycopg import Connection
from psycopg_pool import AsyncConnectionPool, PoolTimeout
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from eventcache.config import Settings, get_settings


def build_dsn(settings: Optional[Settings] = None) -> str:
    """Compose a DSN string from settings."""
    settings = settings or get_settings()
    return (
        f"postgresql://{settings.db_user}:{settings.db_password}"
        f"@{settings.db_host}:{settings.db_port}/{settings.db_name}"
    )


def _session_options(statement_timeout_ms: int) -> str:
    return f"-c statement_timeout={int(statement_timeout_ms)}"


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((psycopg.OperationalError, psycopg.InterfaceError)),
    reraise=True,
)
def get_sync_connection(dsn: Optional[str] = None, statement_timeout_ms: int = 0) -> Connection:
    """
    Acquire a dedicated synchronous connection with automatic retry.

    Retries up to 3 times with exponential backoff for transient connection errors.
    Used for schema bootstrap and other one-off operations.

    Raises
    ------
    psycopg.OperationalError
        If connection fails after all retry attempts.
    """
    return psycopg.connect(dsn or build_dsn(), options=_session_options(statement_timeout_ms))


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((PoolTimeout, psycopg.OperationalError)),
    reraise=True,
)
async def open_async_pool(
    dsn: str,
    min_size: int = 1,
    max_size: int = 10,
    statement_timeout_ms: int = 0,
    timeout: float = 10.0,
) -> AsyncConnectionPool:
    """
    Open an asynchronous connection pool and wait until `min_size` connections exist.

    Parameters
    ----------
    dsn : str
        PostgreSQL connection string.
    min_size : int
        Minimum number of idle connections to keep.
    max_size : int
        Maximum total connections in the pool.
    statement_timeout_ms : int
        Server-side statement timeout applied to every pooled connection (0 = none).
    timeout : float
        Seconds to wait for the initial connections.
    """
    pool = AsyncConnectionPool(
        conninfo=dsn,
        min_size=min_size,
        max_size=max_size,
        kwargs={"options": _session_options(statement_timeout_ms)},
        open=False,
    )
    try:
        await pool.open(wait=True, timeout=timeout)
    except BaseException:
        await pool.close()
        raise
    return pool


__all__ = [
    "build_dsn",
    "get_sync_connection",
    "open_async_pool",
]
