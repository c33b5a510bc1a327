"""
Folio CLI - Main application entry point.

This module sets up the Typer CLI application with all subcommands.
"""

import logging
import sys

import typer
from rich.console import Console

from folio import __version__
from folio.cli import audit, records, validate, workflows
from folio.core.config.env import load_layered_env

# Help panel names for command grouping
PANEL_RECORDS = "Work with Records"
PANEL_AUTOMATION = "Automation"
PANEL_HEALTH = "Check Your Data"

app = typer.Typer(
    name="folio",
    help="Automation and audit core for an initiative tracker",
    no_args_is_help=True,
    add_completion=True,
    context_settings={"help_option_names": ["--help", "-h"]},
)

console = Console()


@app.callback()
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug output with detailed logging",
    ),
) -> None:
    """
    Folio - initiative tracker automation.

    Records are stored in .folio/records.json; every field change is
    appended to .folio/audit.jsonl. Workflows from the config run on
    create, on field changes and on schedule.

    Quick Start:
        folio records create "Billing revamp" --quarter "Q4 2025"
        folio records edit Q425-001 status "In Progress"
        folio workflows tick --watch

    Acting user:
        Set FOLIO_USER to a user id from the config's "users" list.
    """
    # Precedence: OS env > project .env > user .env
    load_layered_env()

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    ctx.obj = {"debug": debug}


app.add_typer(records.app, name="records", rich_help_panel=PANEL_RECORDS)
app.add_typer(workflows.app, name="workflows", rich_help_panel=PANEL_AUTOMATION)
app.add_typer(validate.app, name="validate", rich_help_panel=PANEL_HEALTH)
app.add_typer(audit.app, name="audit", rich_help_panel=PANEL_HEALTH)


@app.command()
def version() -> None:
    """Show folio version and exit."""
    console.print(f"folio version {__version__}")
    raise typer.Exit(0)


__all__ = ["app"]
