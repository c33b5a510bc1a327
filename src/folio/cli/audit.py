"""
Folio CLI - Audit commands.

Read the change log and check stored records for duplicate ids.
"""

import asyncio
import json

import typer
from rich.console import Console
from rich.table import Table

from folio.cli.context import build_backend
from folio.cli.errors import ExitCode, report_folio_error
from folio.core.audit.notifications import format_value
from folio.core.errors import PersistenceError
from folio.core.records.dedupe import dedupe, find_duplicate_ids
from folio.core.records.models import Record

console = Console()
app = typer.Typer(help="Inspect the change log and storage health")


@app.command("log")
def log(
    record_id: str | None = typer.Argument(None, help="Only show changes to this record"),
    limit: int = typer.Option(
        20,
        "--limit",
        "-n",
        help="Show at most this many entries (newest last)",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON",
    ),
) -> None:
    """
    Show the audit log of field changes.

    Examples:
        folio audit log
        folio audit log Q425-001 --limit 50
    """
    entries = build_backend().read_audit_log(record_id)
    if limit > 0:
        entries = entries[-limit:]

    if json_output:
        console.print(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
        return

    if not entries:
        console.print("[dim]No changes recorded[/dim]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("When", no_wrap=True)
    table.add_column("Record", style="cyan")
    table.add_column("Field")
    table.add_column("Change")
    table.add_column("By")
    for entry in entries:
        field = entry.field.label
        if entry.sub_record_id:
            field = f"{field} [dim]({entry.sub_record_id[:8]})[/dim]"
        table.add_row(
            entry.timestamp.strftime("%Y-%m-%d %H:%M"),
            entry.record_id,
            field,
            f"{format_value(entry.old_value)} → {format_value(entry.new_value)}",
            entry.actor,
        )
    console.print(table)


@app.command()
def duplicates(
    fix: bool = typer.Option(
        False,
        "--fix",
        help="Rewrite storage keeping the first record for each id",
    ),
) -> None:
    """
    Check stored records for duplicate ids.

    Duplicates are always dropped when records are loaded; --fix removes
    them from storage too.

    Examples:
        folio audit duplicates
        folio audit duplicates --fix
    """
    backend = build_backend()
    try:
        records: list[Record] = asyncio.run(backend.load())
    except PersistenceError as e:
        raise typer.Exit(report_folio_error(e)) from e

    duplicate_ids = find_duplicate_ids(records)
    if not duplicate_ids:
        console.print(f"[green]✓[/green] {len(records)} records, no duplicate ids")
        return

    console.print(f"[yellow]Duplicate ids ({len(duplicate_ids)}):[/yellow]")
    for record_id in duplicate_ids:
        count = sum(1 for r in records if r.id == record_id)
        console.print(f"  {record_id} x{count}")

    if not fix:
        console.print("\n[dim]Run with --fix to remove them from storage[/dim]")
        raise typer.Exit(ExitCode.GENERAL_ERROR)

    healed = dedupe(records)
    try:
        backend.write_all(healed)
    except PersistenceError as e:
        raise typer.Exit(report_folio_error(e)) from e
    console.print(f"[green]Removed {len(records) - len(healed)} duplicate record(s)[/green]")
