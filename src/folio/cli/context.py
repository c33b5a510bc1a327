"""
Session plumbing shared by CLI commands.

Each command builds a Session on the project's configured backend, loads it,
runs its coroutine and closes the session again.
"""

import asyncio
import os
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

import typer

from folio.cli.errors import report_folio_error
from folio.core.collaborators import InMemoryNotificationInbox
from folio.core.config import FolioConfig, load_config
from folio.core.errors import FolioError
from folio.core.records.json_backend import JsonFileBackend
from folio.core.records.models import User
from folio.core.session import Session

T = TypeVar("T")

DEFAULT_CLI_USER = "cli"


def resolve_actor(config: FolioConfig) -> User:
    """
    The user CLI commands act as.

    Taken from FOLIO_USER (a user id from the config's user list, or a
    bare name), defaulting to a local "cli" user.
    """
    user_id = os.environ.get("FOLIO_USER", DEFAULT_CLI_USER)
    for user in config.users:
        if user.id == user_id:
            return user
    return User(id=user_id, name=user_id)


def build_session(project_dir: Path | None = None) -> Session:
    project_dir = project_dir or Path.cwd()
    config = load_config(project_dir)
    return Session.from_config(
        config,
        actor=resolve_actor(config),
        project_dir=project_dir,
        notifications=InMemoryNotificationInbox(),
    )


def build_backend(project_dir: Path | None = None) -> JsonFileBackend:
    """The project's JSON backend, for commands that work on raw storage."""
    project_dir = project_dir or Path.cwd()
    config = load_config(project_dir)
    return JsonFileBackend(
        project_dir=project_dir,
        records_file=project_dir / config.storage.records_file,
        audit_file=project_dir / config.storage.audit_file,
    )


def with_session(action: Callable[[Session], Awaitable[T]]) -> T:
    """
    Run ``action`` against a loaded session and flush queued writes.

    Folio errors are printed and turned into a typer exit.
    """

    async def _run() -> T:
        session = build_session()
        await session.load()
        try:
            result = await action(session)
            # Queued upserts and audit entries must reach disk before exit
            await session.persistence.force_sync_now()
            return result
        finally:
            await session.close()

    try:
        return asyncio.run(_run())
    except FolioError as e:
        raise typer.Exit(report_folio_error(e)) from e
