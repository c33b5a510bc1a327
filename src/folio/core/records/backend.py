"""
Persistence backend protocol and registry.

This module defines the PersistenceBackend protocol that all record
stores must implement, enabling pluggable persistence (JSON file,
in-memory, remote spreadsheet, etc.). The core never depends on a
backend's wire format, only on this contract.
"""

import os
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, Field

from .models import ChangeEntry, Record


class SoftDeleteResult(BaseModel):
    """Outcome of a soft delete request."""

    success: bool
    deleted_at: datetime | None = Field(default=None)


@runtime_checkable
class PersistenceBackend(Protocol):
    """
    Protocol for record persistence implementations.

    Backends are responsible for:
    - Loading the full record collection
    - Upserting records (queued, fire-and-forget, or awaited via ``persist``)
    - Appending change entries to the audit log
    - Soft deleting and restoring records

    Backends may be unavailable at any time. Callers treat every failure as
    non-fatal and fall back to the local cache.
    """

    async def load(self) -> list[Record]:
        """
        Load every record, including soft-deleted ones.

        Returns:
            Records in storage order (may contain duplicate ids)

        Raises:
            PersistenceError: If the store cannot be read
        """
        ...

    async def persist(self, record: Record) -> None:
        """
        Durably upsert one record and wait for the outcome.

        Raises:
            PersistenceError: If the write was rejected or failed
        """
        ...

    def queue_sync(self, record: Record) -> None:
        """Queue a record upsert without waiting for it."""
        ...

    def queue_audit(self, entry: ChangeEntry) -> None:
        """Queue a change entry for the audit log."""
        ...

    async def force_sync_now(self) -> None:
        """Flush every queued upsert and audit entry immediately."""
        ...

    async def soft_delete(self, record_id: str) -> SoftDeleteResult:
        """Mark a record deleted in storage."""
        ...

    async def restore(self, record_id: str) -> bool:
        """Clear the deleted state of a record in storage."""
        ...

    @property
    def backend_name(self) -> str:
        """
        Get the name of this backend.

        Returns:
            Backend name (e.g., 'json', 'memory')
        """
        ...


# Backend registry
_backends: dict[str, type[PersistenceBackend]] = {}


def register_backend(
    name: str,
) -> Callable[[type[PersistenceBackend]], type[PersistenceBackend]]:
    """
    Decorator to register a persistence backend implementation.

    Usage:
        @register_backend('json')
        class JsonFileBackend:
            async def load(self):
                ...

    Args:
        name: Backend name (e.g., 'json', 'memory')

    Returns:
        Decorator function
    """

    def decorator(backend_class: type[PersistenceBackend]) -> type[PersistenceBackend]:
        _backends[name] = backend_class
        return backend_class

    return decorator


def get_backend(
    name: str | None = None,
    project_dir: Path | None = None,
) -> PersistenceBackend:
    """
    Get a persistence backend by name or auto-detect.

    If name is not provided, uses the FOLIO_BACKEND environment variable
    and defaults to the json backend.

    Args:
        name: Backend name ('json', 'memory', or None for auto-detect)
        project_dir: Project directory for file-based backends

    Returns:
        PersistenceBackend instance

    Raises:
        ValueError: If backend name is invalid or backend not registered
    """
    if name is None:
        name = os.environ.get("FOLIO_BACKEND", "").lower() or "json"

    backend_class = _backends.get(name)
    if backend_class is None:
        raise ValueError(
            f"Backend '{name}' not registered. Available backends: {', '.join(_backends.keys())}"
        )

    if name == "json":
        return backend_class(project_dir=project_dir)  # type: ignore[call-arg]
    return backend_class()


def list_backends() -> list[str]:
    """
    List all registered backend names.

    Returns:
        List of backend names
    """
    return list(_backends.keys())


def is_backend_available(name: str) -> bool:
    """Check if a backend is registered."""
    return name in _backends
