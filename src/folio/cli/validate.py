"""
Folio CLI - Validation commands.
"""

import json

import typer
from rich.console import Console
from rich.table import Table

from folio.cli.context import with_session
from folio.cli.errors import ExitCode
from folio.core.session import Session
from folio.core.validation import EffortValidation, validate_all_owners

console = Console()
app = typer.Typer(help="Check reported effort")


@app.command()
def effort(
    owner_ids: list[str] | None = typer.Argument(
        None, help="Owner ids to check (default: every owner with records)"
    ),
    threshold: float | None = typer.Option(
        None,
        "--threshold",
        "-t",
        help="Deviation percent that flags an owner (default from config)",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON",
    ),
) -> None:
    """
    Compare this week's effort with each owner's quarterly average.

    Exits with status 1 when any owner is flagged.

    Examples:
        folio validate effort
        folio validate effort u_dana --threshold 20
    """

    async def _validate(session: Session) -> list[EffortValidation]:
        owners = owner_ids or sorted(
            {r.owner_id for r in session.records() if r.owner_id is not None}
        )
        percent = (
            threshold
            if threshold is not None
            else session.config.validation.effort_threshold_percent
        )
        return validate_all_owners(
            session.records(), owners, now=session.clock(), threshold_percent=percent
        )

    results = with_session(_validate)

    if json_output:
        console.print(json.dumps([r.model_dump(mode="json") for r in results], indent=2))
    elif not results:
        console.print("[dim]No owners to validate[/dim]")
    else:
        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Owner", style="cyan")
        table.add_column("Quarter")
        table.add_column("This week", justify="right")
        table.add_column("Weekly avg", justify="right")
        table.add_column("Deviation", justify="right")
        table.add_column("")
        for result in results:
            table.add_row(
                result.owner_id,
                result.quarter,
                f"{result.current_week_effort:.1f}w",
                f"{result.average_weekly_effort:.1f}w",
                f"{result.deviation_percent:.0f}%",
                "[red]flagged[/red]" if result.flagged else "[green]ok[/green]",
            )
        console.print(table)

    if any(r.flagged for r in results):
        raise typer.Exit(ExitCode.GENERAL_ERROR)
