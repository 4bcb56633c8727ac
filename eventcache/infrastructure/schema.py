"""
DDL bootstrap for the entity tables.

One table per entity class, primary key `(entity_id, time)`, partitioned by
time either as TimescaleDB hypertables or with native monthly range partitions,
and geometry columns indexed with GIST (plus a geography expression index for
metre-based proximity queries).
"""

from __future__ import annotations

from datetime import date
from typing import Iterable, List, Literal, Optional

from psycopg import Connection, sql

from eventcache.domain.registry import COMMON_COLUMNS, ENTITY_SCHEMAS, TableSchema
from eventcache.utils.logging import get_logger

log = get_logger(__name__)

Partitioning = Literal["timescale", "native"]


def _month_starts(today: date, months_back: int, months_ahead: int) -> List[date]:
    index = today.year * 12 + today.month - 1
    return [
        date(month // 12, month % 12 + 1, 1)
        for month in range(index - months_back, index + months_ahead + 2)
    ]


def table_statements(schema: TableSchema, partitioning: Partitioning) -> List[sql.Composable]:
    table = sql.Identifier(schema.table)
    columns = [
        sql.SQL("{} {}").format(sql.Identifier(name), sql.SQL(ddl))
        for name, ddl in COMMON_COLUMNS + schema.columns
    ]
    if schema.geo_column:
        columns.append(
            sql.SQL("{} geometry(Point, 4326)").format(sql.Identifier(schema.geo_column))
        )
    columns.append(sql.SQL("PRIMARY KEY (entity_id, time)"))

    create = sql.SQL("CREATE TABLE IF NOT EXISTS {} ({})").format(
        table, sql.SQL(", ").join(columns)
    )
    if partitioning == "native":
        create = sql.SQL("{} PARTITION BY RANGE (time)").format(create)
    return [create]


def index_statements(schema: TableSchema) -> List[sql.Composable]:
    table = sql.Identifier(schema.table)
    statements: List[sql.Composable] = [
        sql.SQL("CREATE INDEX IF NOT EXISTS {} ON {} (time DESC)").format(
            sql.Identifier(f"{schema.table}_time_idx"), table
        ),
        sql.SQL("CREATE INDEX IF NOT EXISTS {} ON {} (author, time DESC)").format(
            sql.Identifier(f"{schema.table}_author_idx"), table
        ),
    ]
    if schema.merchant_column:
        statements.append(
            sql.SQL("CREATE INDEX IF NOT EXISTS {} ON {} ({}, time DESC)").format(
                sql.Identifier(f"{schema.table}_merchant_idx"),
                table,
                sql.Identifier(schema.merchant_column),
            )
        )
    if schema.geo_column:
        geo = sql.Identifier(schema.geo_column)
        statements.append(
            sql.SQL("CREATE INDEX IF NOT EXISTS {} ON {} USING GIST ({})").format(
                sql.Identifier(f"{schema.table}_{schema.geo_column}_gist"), table, geo
            )
        )
        statements.append(
            sql.SQL("CREATE INDEX IF NOT EXISTS {} ON {} USING GIST (({}::geography))").format(
                sql.Identifier(f"{schema.table}_{schema.geo_column}_geog_gist"), table, geo
            )
        )
    return statements


def hypertable_statement(schema: TableSchema, interval_days: int) -> sql.Composable:
    return sql.SQL(
        "SELECT create_hypertable({}, 'time', chunk_time_interval => {}::interval, "
        "if_not_exists => TRUE)"
    ).format(sql.Literal(schema.table), sql.Literal(f"{int(interval_days)} days"))


def partition_statements(
    schema: TableSchema, months: Iterable[date]
) -> List[sql.Composable]:
    """Monthly range partitions plus a default partition for out-of-window rows."""
    table = sql.Identifier(schema.table)
    months = list(months)
    statements: List[sql.Composable] = [
        sql.SQL("CREATE TABLE IF NOT EXISTS {} PARTITION OF {} DEFAULT").format(
            sql.Identifier(f"{schema.table}_default"), table
        )
    ]
    for start, end in zip(months, months[1:]):
        statements.append(
            sql.SQL(
                "CREATE TABLE IF NOT EXISTS {} PARTITION OF {} FOR VALUES FROM ({}) TO ({})"
            ).format(
                sql.Identifier(f"{schema.table}_p{start:%Y%m}"),
                table,
                sql.Literal(start.isoformat()),
                sql.Literal(end.isoformat()),
            )
        )
    return statements


def apply_schema(
    conn: Connection,
    partitioning: Partitioning = "timescale",
    interval_days: int = 7,
    months_back: int = 12,
    months_ahead: int = 3,
    today: Optional[date] = None,
) -> List[str]:
    """
    Create extensions, entity tables, partitions and indexes (idempotent).

    Returns the names of the tables that were bootstrapped.
    """
    months = _month_starts(today or date.today(), months_back, months_ahead)
    with conn.transaction():
        conn.execute("CREATE EXTENSION IF NOT EXISTS postgis")
        if partitioning == "timescale":
            conn.execute("CREATE EXTENSION IF NOT EXISTS timescaledb")

        for schema in ENTITY_SCHEMAS.values():
            for statement in table_statements(schema, partitioning):
                conn.execute(statement)
            if partitioning == "timescale":
                conn.execute(hypertable_statement(schema, interval_days))
            else:
                for statement in partition_statements(schema, months):
                    conn.execute(statement)
            for statement in index_statements(schema):
                conn.execute(statement)
            log.info(
                "Entity table ready",
                extra={"table": schema.table, "partitioning": partitioning},
            )

    return [schema.table for schema in ENTITY_SCHEMAS.values()]


__all__ = [
    "apply_schema",
    "hypertable_statement",
    "index_statements",
    "partition_statements",
    "table_statements",
]
