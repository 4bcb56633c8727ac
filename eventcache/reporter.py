from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

from rich import box
from rich.console import Console
from rich.table import Table

from eventcache.domain.entities import BaseEntity
from eventcache.domain.registry import ENTITY_SCHEMAS


def print_report(report: Dict[str, Any], profile: Optional[Dict[str, Any]] = None) -> None:
    """
    Render an ingestion report (as produced by `IngestionReport.as_dict`) as a rich table.
    """
    console = Console()

    title = f"Ingestion Report (kind {report.get('kind')})"
    if profile:
        parts = [f"{profile.get('duration_seconds', 0.0):.2f}s"]
        if profile.get("peak_rss_bytes"):
            parts.append(f"peak RSS {profile['peak_rss_bytes'] / (1024 * 1024):.1f} MB")
        if profile.get("cpu_percent") is not None:
            parts.append(f"CPU {profile['cpu_percent']:.1f}%")
        title = f"{title}\n[dim]{' │ '.join(parts)}[/dim]"

    table = Table(title=title, box=box.ROUNDED)
    table.add_column("Outcome", style="cyan", no_wrap=True)
    table.add_column("Count", justify="right", style="magenta")

    table.add_row("Accepted", f"{report.get('accepted', 0):,}")
    table.add_row("Duplicate", f"{report.get('duplicate', 0):,}")
    table.add_row("Rejected", f"{report.get('rejected', 0):,}", style="red")
    for reason, count in report.get("rejected_by_reason", {}).items():
        table.add_row(f"  {reason}", f"{count:,}", style="dim")

    console.print(table)

    unreachable = report.get("unreachable_sources") or []
    if unreachable:
        console.print(f"[yellow]Unreachable sources:[/yellow] {', '.join(unreachable)}")


def print_entities(entities: Sequence[BaseEntity], entity_class: str, limit: int = 50) -> None:
    """
    Render entities as a rich table, one column per typed field of the class.
    """
    console = Console()

    if not entities:
        console.print("[yellow]No cached entities.[/yellow]")
        return

    schema = ENTITY_SCHEMAS[entity_class]
    typed = [name for name, _ in schema.columns]
    table = Table(
        title=f"{entity_class} ({len(entities):,} current)",
        box=box.ROUNDED,
        caption="Newest first" + (f", first {limit} shown" if len(entities) > limit else ""),
    )
    table.add_column("Entity", style="cyan", overflow="fold")
    table.add_column("Time", style="green", no_wrap=True)
    for name in typed:
        table.add_column(name, overflow="fold")
    if schema.geo_column:
        table.add_column(schema.geo_column, justify="right", style="yellow")

    for entity in entities[:limit]:
        row = [entity.entity_id, entity.time.strftime("%Y-%m-%d %H:%M:%S")]
        for name in typed:
            value = getattr(entity, name)
            row.append("" if value is None else str(value))
        if schema.geo_column:
            point = getattr(entity, schema.geo_column)
            row.append(f"{point.latitude:.4f}, {point.longitude:.4f}" if point else "-")
        table.add_row(*row)

    console.print(table)


__all__ = ["print_entities", "print_report"]
