"""
Folio CLI - Record commands.

Create, inspect and edit records in the project's record store.
"""

import json

import typer
from rich.console import Console
from rich.table import Table

from folio.cli.context import with_session
from folio.cli.errors import ExitCode, print_error, print_invalid_option_error
from folio.core.audit.notifications import format_value
from folio.core.records.models import Record, RecordField, Status
from folio.core.session import Session

console = Console()
app = typer.Typer(help="Manage records")

_STATUS_STYLES: dict[Status, str] = {
    Status.NOT_STARTED: "dim",
    Status.IN_PROGRESS: "cyan",
    Status.AT_RISK: "red",
    Status.DONE: "green",
    Status.OBSOLETE: "dim",
    Status.DELETED: "dim strike",
}


def _parse_field(name: str) -> RecordField:
    try:
        return RecordField(name.lower().replace("-", "_"))
    except ValueError:
        print_invalid_option_error(name, [f.value for f in RecordField])
        raise typer.Exit(ExitCode.USER_ERROR)


def _print_record(record: Record) -> None:
    style = _STATUS_STYLES.get(record.status, "")
    console.print(f"[bold cyan]{record.id}[/bold cyan] - {record.title}")
    console.print(f"[dim]Status:[/dim] [{style}]{record.status.value}[/{style}]")
    console.print(f"[dim]Priority:[/dim] {record.priority.value}")
    if record.owner_id:
        console.print(f"[dim]Owner:[/dim] {record.owner_id}")
    if record.classification:
        console.print(f"[dim]Asset class:[/dim] {record.classification.value}")
    if record.quarter:
        console.print(f"[dim]Quarter:[/dim] {record.quarter}")
    console.print(f"[dim]ETA:[/dim] {format_value(record.eta)}")
    console.print(
        f"[dim]Effort:[/dim] {format_value(record.actual_effort)}w of "
        f"{format_value(record.estimated_effort)}w"
    )
    if record.overlooked_count:
        console.print(f"[dim]Delayed:[/dim] {record.overlooked_count} time(s)")
    if record.risk_action_log:
        console.print(f"\n[bold]Risk action log:[/bold]\n{record.risk_action_log}")
    if record.comments:
        console.print(f"\n[bold]Comments ({len(record.comments)}):[/bold]")
        for comment in record.comments:
            console.print(f"  [dim]{comment.author_id}:[/dim] {comment.text}")


@app.command("list")
def list_records(
    status: str | None = typer.Option(
        None,
        "--status",
        "-s",
        help="Filter by status (e.g. 'At Risk')",
    ),
    owner: str | None = typer.Option(
        None,
        "--owner",
        "-o",
        help="Filter by owner id",
    ),
    show_all: bool = typer.Option(
        False,
        "--all",
        help="Include soft-deleted records",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON",
    ),
) -> None:
    """
    List records with optional filters.

    Examples:
        folio records list
        folio records list --status "At Risk"
        folio records list --owner u_dana --json
    """
    status_filter: Status | None = None
    if status:
        try:
            status_filter = Status(status)
        except ValueError:
            print_invalid_option_error(status, [s.value for s in Status])
            raise typer.Exit(ExitCode.USER_ERROR)

    async def _list(session: Session) -> list[Record]:
        return session.records(include_deleted=show_all)

    records = with_session(_list)
    if status_filter is not None:
        records = [r for r in records if r.status == status_filter]
    if owner:
        records = [r for r in records if r.owner_id == owner]

    if json_output:
        console.print(json.dumps([r.model_dump(mode="json") for r in records], indent=2))
        return

    if not records:
        console.print("[dim]No records found[/dim]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Pri")
    table.add_column("Owner")
    table.add_column("ETA")
    for record in records:
        style = _STATUS_STYLES.get(record.status, "")
        table.add_row(
            record.id,
            record.title,
            f"[{style}]{record.status.value}[/{style}]",
            record.priority.value,
            record.owner_id or "",
            format_value(record.eta),
        )
    console.print(table)
    console.print(f"\n[dim]Total: {len(records)} records[/dim]")


@app.command()
def show(
    record_id: str = typer.Argument(..., help="Record ID to display"),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON",
    ),
) -> None:
    """
    Show detailed information about a record.

    Examples:
        folio records show Q425-001
        folio records show Q425-001 --json
    """

    async def _show(session: Session) -> Record:
        return session.get(record_id)

    record = with_session(_show)
    if json_output:
        console.print(json.dumps(record.model_dump(mode="json"), indent=2))
        return
    _print_record(record)


@app.command()
def create(
    title: str = typer.Argument(..., help="Record title"),
    quarter: str = typer.Option(
        "",
        "--quarter",
        "-q",
        help="Planning quarter, e.g. 'Q4 2025' (used for the id)",
    ),
    owner: str | None = typer.Option(
        None,
        "--owner",
        "-o",
        help="Owner user id (defaults to the current user)",
    ),
    priority: str = typer.Option(
        "P2",
        "--priority",
        "-p",
        help="Priority: P0, P1 or P2",
    ),
    eta: str | None = typer.Option(
        None,
        "--eta",
        help="Target date (YYYY-MM-DD)",
    ),
    effort: float = typer.Option(
        0.0,
        "--effort",
        "-e",
        help="Estimated effort in weeks",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON",
    ),
) -> None:
    """
    Create a new record.

    On-create workflows (such as team-based asset class assignment) run
    before the record is saved.

    Examples:
        folio records create "Billing revamp" --quarter "Q4 2025" --owner u_dana
        folio records create "Fix exports" --priority P0 --eta 2025-11-30
    """
    fields: dict[str, object] = {
        "quarter": quarter,
        "priority": priority,
        "estimated_effort": effort,
    }
    if owner:
        fields["owner_id"] = owner
    if eta:
        fields["eta"] = eta

    async def _create(session: Session) -> Record:
        return await session.create_record(title, **fields)

    record = with_session(_create)
    if json_output:
        console.print(json.dumps(record.model_dump(mode="json"), indent=2))
        return
    console.print(f"[green]Created:[/green] {record.id}")
    if record.classification:
        console.print(f"  Asset class: {record.classification.value}")


@app.command()
def edit(
    record_id: str = typer.Argument(..., help="Record ID to edit"),
    field: str = typer.Argument(..., help="Field name, e.g. status, eta, estimated_effort"),
    value: str | None = typer.Argument(None, help="New value (omit with --clear)"),
    clear: bool = typer.Option(
        False,
        "--clear",
        help="Clear the field instead of setting a value",
    ),
) -> None:
    """
    Edit a single field.

    Field-change workflows run on the new value; if saving fails the
    change is rolled back.

    Examples:
        folio records edit Q425-001 status "In Progress"
        folio records edit Q425-001 eta 2025-12-15
        folio records edit Q425-001 actual_effort 2.5
        folio records edit Q425-001 eta --clear
    """
    record_field = _parse_field(field)
    if value is None and not clear:
        print_error("Missing value", solution=f"folio records edit {record_id} {field} <value>")
        raise typer.Exit(ExitCode.USER_ERROR)

    async def _edit(session: Session) -> Record:
        return await session.edit_field(record_id, record_field, None if clear else value)

    record = with_session(_edit)
    console.print(
        f"[green]Updated:[/green] {record.id} {record_field.label} = "
        f"{format_value(record.get_field(record_field))}"
    )
    if record_field != RecordField.STATUS:
        console.print(f"  Status: {record.status.value}")


@app.command()
def delete(
    record_id: str = typer.Argument(..., help="Record ID to delete"),
) -> None:
    """
    Soft-delete a record (it can be restored later).

    Examples:
        folio records delete Q425-001
    """

    async def _delete(session: Session) -> Record:
        return await session.soft_delete(record_id)

    record = with_session(_delete)
    console.print(f"[yellow]Deleted:[/yellow] {record.id}")


@app.command()
def restore(
    record_id: str = typer.Argument(..., help="Record ID to restore"),
) -> None:
    """
    Restore a soft-deleted record.

    Examples:
        folio records restore Q425-001
    """

    async def _restore(session: Session) -> Record:
        return await session.restore(record_id)

    record = with_session(_restore)
    console.print(f"[green]Restored:[/green] {record.id} ({record.status.value})")


@app.command()
def comment(
    record_id: str = typer.Argument(..., help="Record ID to comment on"),
    text: str = typer.Argument(..., help="Comment text"),
    mention: list[str] | None = typer.Option(
        None,
        "--mention",
        "-m",
        help="User id to mention (can be repeated)",
    ),
) -> None:
    """
    Post a comment on a record.

    Examples:
        folio records comment Q425-001 "Blocked on vendor" --mention u_lead
    """

    async def _comment(session: Session) -> None:
        await session.add_comment(record_id, text, mentioned_user_ids=mention or [])

    with_session(_comment)
    console.print(f"[green]Commented on:[/green] {record_id}")
