"""
Standardized error handling and exit codes for the folio CLI.

This module provides consistent error messaging with actionable guidance
and standardized exit codes across all CLI commands.
"""

from enum import IntEnum

from rich.console import Console

from folio.core.errors import (
    FolioError,
    PermissionDeniedError,
    PersistenceError,
    RecordNotFoundError,
    ValidationError,
)

console = Console(stderr=True)


class ExitCode(IntEnum):
    """Standard exit codes for folio CLI operations."""

    SUCCESS = 0
    """Operation completed successfully."""

    GENERAL_ERROR = 1
    """Generic error, including failed (rolled back) writes."""

    USER_ERROR = 2
    """Invalid input, unknown record or missing permission."""

    SIGINT = 130
    """Terminated by SIGINT (Ctrl+C) - Unix standard."""


def print_error(
    problem: str,
    *,
    reason: str | None = None,
    solution: str | None = None,
) -> None:
    """
    Print a standardized error message with actionable guidance.

    Args:
        problem: Brief description of what went wrong
        reason: Optional explanation of why it happened
        solution: Optional command or action to fix it

    Example:
        >>> print_error(
        ...     "Record not found: Q425-001",
        ...     solution="folio records list --all",
        ... )
    """
    console.print(f"[red]Error:[/red] {problem}")
    if reason:
        console.print(f"[dim]{reason}[/dim]")
    if solution:
        console.print(f"[cyan]→ Try:[/cyan] {solution}")


def print_invalid_option_error(value: str, valid: list[str]) -> None:
    """Print error for an option value outside the allowed set."""
    print_error(
        f"Invalid value: {value}",
        reason=f"Valid options are: {', '.join(valid)}",
    )


def report_folio_error(error: FolioError) -> ExitCode:
    """
    Print a folio core error and pick the matching exit code.

    Returns:
        Exit code for the error
    """
    if isinstance(error, RecordNotFoundError):
        print_error(str(error), solution="folio records list --all")
        return ExitCode.USER_ERROR
    if isinstance(error, ValidationError):
        print_error(str(error))
        return ExitCode.USER_ERROR
    if isinstance(error, PermissionDeniedError):
        print_error(str(error), reason="The permission policy rejected this operation")
        return ExitCode.USER_ERROR
    if isinstance(error, PersistenceError):
        print_error(
            str(error),
            reason="The local change was rolled back",
            solution="re-run the command",
        )
        return ExitCode.GENERAL_ERROR
    print_error(str(error))
    return ExitCode.GENERAL_ERROR
