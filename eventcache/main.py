"""Command line entry point: `info`, `init-db`, `ingest`, `fetch` and `export`."""

from __future__ import annotations

import asyncio
import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

import typer

from eventcache.cache import CacheQueryService
from eventcache.config import Settings, get_settings
from eventcache.coordinator import IngestionCoordinator, IngestionReport
from eventcache.domain.registry import KIND_REGISTRY, schema_for_kind
from eventcache.infrastructure.db_factory import build_dsn, get_sync_connection
from eventcache.infrastructure.geo_store import EntityFilter, GeoStore
from eventcache.infrastructure.schema import apply_schema
from eventcache.infrastructure.stream import stream_window
from eventcache.pipeline.validator import RecordValidator
from eventcache.reporter import print_entities, print_report
from eventcache.sources.static import JsonlSource
from eventcache.utils.logging import configure_logging
from eventcache.utils.profiler import profile_block

app = typer.Typer(help="Event cache for signed marketplace records.")


def _entity_class(kind: int) -> str:
    schema = schema_for_kind(kind)
    if schema is None:
        known = ", ".join(f"{k} ({s.entity_class})" for k, s in sorted(KIND_REGISTRY.items()))
        raise typer.BadParameter(f"Unknown kind {kind}. Known kinds: {known}")
    return schema.entity_class


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


async def _open_store(settings: Settings) -> GeoStore:
    return await GeoStore.connect(
        build_dsn(settings),
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
        statement_timeout_ms=settings.db_statement_timeout_ms,
    )


def _coordinator(store: GeoStore, settings: Settings) -> IngestionCoordinator:
    return IngestionCoordinator(
        store,
        settings.ingestion_config(),
        validator=RecordValidator(settings.validator_config()),
    )


@app.command()
def info() -> None:
    """
    Show effective configuration values and registered kinds.
    """
    settings = get_settings()
    typer.echo(
        f"DB={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} | "
        f"partitioning={settings.partitioning} freshness={settings.default_freshness_seconds}s "
        f"source_timeout={settings.source_timeout_seconds}s "
        f"retries={settings.retry_max_attempts}"
    )
    for kind, schema in sorted(KIND_REGISTRY.items()):
        typer.echo(f"  kind {kind:>5} -> {schema.entity_class} ({schema.table})")


@app.command("init-db")
def init_db() -> None:
    """
    Create extensions, entity tables, time partitions and indexes.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    with get_sync_connection(build_dsn(settings)) as conn:
        tables = apply_schema(
            conn,
            partitioning=settings.partitioning,
            interval_days=settings.partition_interval_days,
            months_back=settings.native_partition_months_back,
            months_ahead=settings.native_partition_months_ahead,
        )
    typer.echo(f"Schema ready: {', '.join(tables)}")


@app.command()
def ingest(
    kind: int = typer.Option(..., "--kind", "-k", help="Record kind to ingest."),
    sources: List[Path] = typer.Option(
        ..., "--source", "-s", help="Relay export (JSON Lines). Repeat for several sources."
    ),
    since: Optional[int] = typer.Option(
        None, "--since", help="Only records created at or after this unix time."
    ),
) -> None:
    """
    Run a profiled ingestion pass (with retries for unreachable sources).
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    _entity_class(kind)

    async def _run() -> IngestionReport:
        store = await _open_store(settings)
        async with store:
            coordinator = _coordinator(store, settings)
            return await coordinator.ingest_with_retry(
                kind, [JsonlSource(path) for path in sources], since=since
            )

    with profile_block(f"ingest-{kind}") as stats:
        report = asyncio.run(_run())
    print_report(report.as_dict(), stats.as_dict())


@app.command()
def fetch(
    kind: int = typer.Option(..., "--kind", "-k", help="Record kind to read."),
    fresh_seconds: Optional[int] = typer.Option(
        None,
        "--fresh-seconds",
        help="Freshness budget; refresh from sources when cached data is older.",
    ),
    sources: List[Path] = typer.Option(
        [], "--source", "-s", help="Relay exports used for refreshes."
    ),
    author: Optional[str] = typer.Option(None, "--author", help="Filter by author key."),
    merchant: Optional[str] = typer.Option(None, "--merchant", help="Filter by merchant id."),
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum entities to return."),
    as_json: bool = typer.Option(False, "--json", help="Emit JSON Lines instead of a table."),
) -> None:
    """
    Read the current state of a kind, refreshing first when stale.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    entity_class = _entity_class(kind)
    filters = EntityFilter(author=author, merchant_id=merchant, limit=limit)

    async def _run():
        store = await _open_store(settings)
        async with store:
            service = CacheQueryService(
                store,
                _coordinator(store, settings),
                [JsonlSource(path) for path in sources],
                settings.cache_config(),
            )
            if fresh_seconds is None and not sources:
                return await service.fetch_all(kind, filters)
            budget = timedelta(seconds=fresh_seconds) if fresh_seconds is not None else None
            return await service.fetch_cached(kind, budget, filters)

    entities = asyncio.run(_run())
    if as_json:
        for entity in entities:
            typer.echo(entity.model_dump_json())
    else:
        print_entities(entities, entity_class, limit=limit)


@app.command()
def export(
    kind: int = typer.Option(..., "--kind", "-k", help="Record kind to export."),
    out: Path = typer.Option(..., "--out", "-o", help="Destination JSON Lines file."),
    since: Optional[datetime] = typer.Option(None, "--since", help="Window start (UTC)."),
    until: Optional[datetime] = typer.Option(None, "--until", help="Window end (UTC)."),
    batch_size: int = typer.Option(1_000, "--batch-size", help="Cursor fetch size."),
) -> None:
    """
    Stream every stored row of a kind in a time window to a file.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    entity_class = _entity_class(kind)

    async def _run() -> int:
        written = 0
        with out.open("w", encoding="utf-8") as f:
            async for entity in stream_window(
                build_dsn(settings), entity_class, _utc(since), _utc(until), batch_size
            ):
                f.write(entity.model_dump_json() + "\n")
                written += 1
        return written

    written = asyncio.run(_run())
    typer.echo(json.dumps({"kind": kind, "rows": written, "out": str(out)}))


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
