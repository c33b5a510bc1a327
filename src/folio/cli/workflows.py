"""
Folio CLI - Workflow commands.

List the configured workflows, run one on demand, or drive the
on-schedule workflows from a tick loop.
"""

import asyncio
import json
from datetime import datetime

import typer
from rich.console import Console
from rich.table import Table

from folio.cli.context import with_session
from folio.cli.errors import ExitCode, print_error
from folio.core.scheduler import ScheduleRunner, local_now
from folio.core.session import Session
from folio.core.workflows import Workflow, WorkflowResult
from folio.core.workflows.models import TriggerConfig, TriggerKind

console = Console()
app = typer.Typer(help="Manage workflows")


def _describe_trigger(trigger: TriggerConfig) -> str:
    if trigger.kind == TriggerKind.ON_SCHEDULE and trigger.schedule is not None:
        parts = [trigger.schedule.value]
        if trigger.time:
            parts.append(f"at {trigger.time}")
        if trigger.day_of_week is not None:
            parts.append(f"day {trigger.day_of_week}")
        return " ".join(parts)
    if trigger.kind == TriggerKind.ON_FIELD_CHANGE and trigger.fields:
        return "on change: " + ", ".join(f.value for f in trigger.fields)
    return trigger.kind.value


def _print_result(result: WorkflowResult) -> None:
    log = result.log
    console.print(
        f"[bold]{result.workflow.name}[/bold]: "
        f"{len(log.records_affected)} record(s) affected"
    )
    for action in log.actions_taken:
        console.print(f"  [green]✓[/green] {action}")
    for error in log.errors:
        console.print(f"  [red]✗[/red] {error}")


def _parse_at(value: str) -> datetime:
    try:
        hour, minute = (int(part) for part in value.split(":"))
        return local_now().replace(hour=hour, minute=minute, second=0, microsecond=0)
    except ValueError:
        print_error(f"Invalid time: {value}", reason="Expected HH:MM (24h)")
        raise typer.Exit(ExitCode.USER_ERROR)


@app.command("list")
def list_workflows(
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON",
    ),
) -> None:
    """
    List system and user workflows.

    Examples:
        folio workflows list
        folio workflows list --json
    """

    async def _list(session: Session) -> list[Workflow]:
        return list(session.workflows)

    workflows = with_session(_list)

    if json_output:
        console.print(
            json.dumps(
                [wf.model_dump(mode="json", exclude={"execution_log"}) for wf in workflows],
                indent=2,
            )
        )
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Trigger")
    table.add_column("Enabled")
    table.add_column("System")
    for wf in workflows:
        table.add_row(
            wf.id,
            wf.name,
            _describe_trigger(wf.trigger),
            "[green]yes[/green]" if wf.enabled else "[dim]no[/dim]",
            "yes" if wf.system else "",
        )
    console.print(table)


@app.command()
def run(
    workflow_id: str = typer.Argument(..., help="Workflow id or name"),
) -> None:
    """
    Run one workflow over every record now, ignoring its trigger.

    Examples:
        folio workflows run system-auto-at-risk
        folio workflows run "Weekly Update Reminder"
    """

    async def _run(session: Session) -> WorkflowResult:
        return await session.run_workflow(workflow_id)

    result = with_session(_run)
    _print_result(result)
    if not result.log.succeeded:
        raise typer.Exit(ExitCode.GENERAL_ERROR)


@app.command()
def tick(
    at: str | None = typer.Option(
        None,
        "--at",
        help="Evaluate schedules as if it were HH:MM today",
    ),
    watch: bool = typer.Option(
        False,
        "--watch",
        "-w",
        help="Keep ticking until interrupted",
    ),
    interval: float | None = typer.Option(
        None,
        "--interval",
        help="Seconds between ticks with --watch (max 60, default from config)",
    ),
) -> None:
    """
    Run the on-schedule workflows that are due.

    Examples:
        folio workflows tick
        folio workflows tick --at 09:00
        folio workflows tick --watch
    """
    if watch and at:
        print_error("--at cannot be combined with --watch")
        raise typer.Exit(ExitCode.USER_ERROR)
    now = _parse_at(at) if at else None

    if not watch:

        async def _tick(session: Session) -> list[WorkflowResult]:
            return await session.run_scheduled(now)

        results = with_session(_tick)
        if not results:
            console.print("[dim]No workflows due[/dim]")
        for result in results:
            _print_result(result)
        return

    async def _watch(session: Session) -> None:
        tick_seconds = interval or session.config.scheduler.tick_seconds
        try:
            runner = ScheduleRunner(session, tick_seconds=tick_seconds)
        except ValueError as e:
            print_error(str(e))
            raise typer.Exit(ExitCode.USER_ERROR) from e
        console.print(f"[cyan]Ticking every {tick_seconds:g}s (Ctrl+C to stop)[/cyan]")
        runner.start()
        try:
            await asyncio.Event().wait()
        finally:
            await runner.stop()

    try:
        with_session(_watch)
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped[/dim]")
        raise typer.Exit(ExitCode.SIGINT)
