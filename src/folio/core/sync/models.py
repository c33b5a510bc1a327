"""
Models for optimistic write tracking.

A record with no entry in the coordinator's arena is CLEAN. A local edit
moves it to PENDING_LOCAL; the persistence outcome then moves it through
one of:

    PENDING_LOCAL -> CONFIRMED -> CLEAN            (persisted, after grace delay)
    PENDING_LOCAL -> TIMED_OUT -> CLEAN            (no answer in time, value kept)
    PENDING_LOCAL -> FAILED -> ROLLED_BACK -> CLEAN (value reverted)
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from folio.core.records.models import Record, RecordField


class WriteState(str, Enum):
    """State of the optimistic write tracked for one record."""

    CLEAN = "clean"
    PENDING_LOCAL = "pending_local"
    CONFIRMED = "confirmed"
    TIMED_OUT = "timed_out"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"

    @property
    def is_settled(self) -> bool:
        """Check if the persistence outcome is known (or presumed)."""
        return self is not WriteState.PENDING_LOCAL


@dataclass
class PendingWrite:
    """
    An optimistic local write awaiting its persistence outcome.

    ``record_field`` is None for whole-record saves; ``previous`` is then the
    full pre-edit record rather than a single field value.

    ``baseline`` is an optional pre-edit snapshot of the whole record. When
    set, a rollback restores every field from it, workflow output included;
    history is kept.
    """

    record_id: str
    sequence: int
    created_at: float
    record_field: RecordField | None = None
    value: Any = None
    previous: Any = None
    baseline: Record | None = field(default=None, repr=False)
    state: WriteState = WriteState.PENDING_LOCAL
    timeout_task: "asyncio.Task[None] | None" = field(default=None, repr=False)
    clear_handle: asyncio.TimerHandle | None = field(default=None, repr=False)

    @property
    def is_whole_record(self) -> bool:
        return self.record_field is None


__all__ = ["PendingWrite", "WriteState"]
