"""
Pytest configuration for the event cache.

Provides fixtures for:
- Signed record construction
- An in-memory entity store for pipeline and cache tests
- Database connection management and schema bootstrap for integration tests
"""

from __future__ import annotations

import os
import time
from datetime import datetime
from typing import Any, Callable, Dict, Generator, List, Optional, Tuple

import psycopg
import pytest

from eventcache.config import Settings
from eventcache.domain.entities import BaseEntity
from eventcache.domain.registry import ENTITY_SCHEMAS
from eventcache.domain.signing import generate_secret, sign_event
from eventcache.infrastructure.db_factory import build_dsn
from eventcache.infrastructure.schema import apply_schema

RecordFactory = Callable[..., Dict[str, Any]]


class MemoryStore:
    """Dict-backed stand-in for `GeoStore` keyed by (class, entity id, time)."""

    def __init__(self) -> None:
        self.rows: Dict[Tuple[str, str, datetime], BaseEntity] = {}
        self.insert_calls = 0

    async def insert_if_absent(self, entity: BaseEntity) -> bool:
        self.insert_calls += 1
        key = (entity.entity_class, entity.entity_id, entity.time)  # type: ignore[attr-defined]
        if key in self.rows:
            return False
        self.rows[key] = entity
        return True

    async def stored_record_id(
        self, entity_class: str, entity_id: str, time: datetime
    ) -> Optional[str]:
        row = self.rows.get((entity_class, entity_id, time))
        return row.record_id if row is not None else None

    async def newest_time(self, entity_class: str) -> Optional[datetime]:
        times = [key[2] for key in self.rows if key[0] == entity_class]
        return max(times, default=None)

    async def fetch_latest(self, entity_class: str, filters: Any = None) -> List[BaseEntity]:
        del filters
        latest: Dict[str, BaseEntity] = {}
        for (cls, entity_id, _), entity in self.rows.items():
            if cls != entity_class:
                continue
            current = latest.get(entity_id)
            if current is None or entity.time > current.time:
                latest[entity_id] = entity
        return sorted(latest.values(), key=lambda entity: entity.time, reverse=True)


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture(scope="session")
def merchant_secret() -> str:
    return generate_secret()


@pytest.fixture
def make_record(merchant_secret: str) -> RecordFactory:
    """
    Factory for correctly signed raw records.

    Defaults to the session merchant key and a `created_at` one minute ago.
    """

    def _make(
        kind: int,
        tags: Optional[List[List[str]]] = None,
        content: str = "",
        created_at: Optional[int] = None,
        secret: Optional[str] = None,
    ) -> Dict[str, Any]:
        return sign_event(
            secret or merchant_secret,
            kind,
            tags=tags,
            content=content,
            created_at=int(time.time()) - 60 if created_at is None else created_at,
        )

    return _make


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
        db_name=os.getenv("DB_NAME", "event_cache"),
        partitioning=os.getenv("PARTITIONING", "native"),
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    """
    Database connection string for tests.
    """
    return build_dsn(test_settings)


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
    except psycopg.Error:
        return False


@pytest.fixture(scope="session")
def db_connection(
    test_dsn: str, db_connection_available: bool
) -> Generator[psycopg.Connection, None, None]:
    """
    Provide a session-scoped database connection for integration tests.

    Skips tests if database is not available.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    conn = psycopg.connect(test_dsn)
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture(scope="session")
def db_schema_initialized(db_connection: psycopg.Connection, test_settings: Settings) -> bool:
    """
    Ensure the entity tables, partitions and indexes exist.
    """
    apply_schema(
        db_connection,
        partitioning=test_settings.partitioning,
        interval_days=test_settings.partition_interval_days,
        months_back=test_settings.native_partition_months_back,
        months_ahead=test_settings.native_partition_months_ahead,
    )
    return True


def _truncate_entity_tables(conn: psycopg.Connection) -> None:
    with conn.cursor() as cur:
        for schema in ENTITY_SCHEMAS.values():
            cur.execute(f'TRUNCATE TABLE public."{schema.table}";')
    conn.commit()


@pytest.fixture(scope="function")
def clean_entity_tables(db_connection: psycopg.Connection, db_schema_initialized: bool):
    """
    Empty every entity table before and after each test function.
    """
    _truncate_entity_tables(db_connection)
    yield
    _truncate_entity_tables(db_connection)
