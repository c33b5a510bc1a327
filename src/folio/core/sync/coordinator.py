"""
Optimistic update coordinator.

Local edits are applied to the record store immediately and tracked in an
arena keyed by record id while their persistence call is in flight. The
arena holds at most one pending write per record: a newer local write to
the same record supersedes the older one, and the older write's outcome
can then neither revert nor clear it.

Outcomes:

- success: the entry is kept for a short grace delay, then cleared
- failure: the field (or whole record) is reverted, the entry cleared and
  the PersistenceError re-raised to the caller
- timeout: the entry is cleared and the optimistic value kept; a late
  failure after this point is logged and not reverted

Remote broadcasts overwrite the whole record unconditionally and discard
any pending local write for it.

Example:
    >>> coordinator = OptimisticUpdateCoordinator(store, backend)
    >>> pending = coordinator.apply_field("Q425-001", RecordField.STATUS, Status.DONE)
    >>> coordinator.state("Q425-001")
    <WriteState.PENDING_LOCAL: 'pending_local'>
    >>> await coordinator.confirm(pending)
    <WriteState.CONFIRMED: 'confirmed'>
"""

import asyncio
import logging
from typing import Any

from folio.core.errors import PersistenceError, RecordNotFoundError
from folio.core.records.backend import PersistenceBackend
from folio.core.records.models import Record, RecordField
from folio.core.records.store import RecordStore

from .models import PendingWrite, WriteState

logger = logging.getLogger(__name__)

DEFAULT_GRACE_DELAY = 0.5
DEFAULT_PENDING_TIMEOUT = 10.0


class OptimisticUpdateCoordinator:
    """Tracks optimistic writes per record and settles them."""

    def __init__(
        self,
        store: RecordStore,
        persistence: PersistenceBackend,
        grace_delay: float = DEFAULT_GRACE_DELAY,
        timeout: float = DEFAULT_PENDING_TIMEOUT,
    ) -> None:
        """
        Initialize the coordinator.

        Args:
            store: Record store the optimistic values are written to
            persistence: Backend whose ``persist`` confirms a write
            grace_delay: Seconds a confirmed write stays visible as pending
            timeout: Seconds after which an unanswered write is presumed persisted
        """
        self.store = store
        self.persistence = persistence
        self.grace_delay = grace_delay
        self.timeout = timeout

        self._arena: dict[str, PendingWrite] = {}
        self._sequence = 0
        self.rollback_count = 0

    # ------------------------------------------------------------------
    # Arena queries
    # ------------------------------------------------------------------

    def pending(self, record_id: str) -> PendingWrite | None:
        return self._arena.get(record_id)

    def state(self, record_id: str) -> WriteState:
        pending = self._arena.get(record_id)
        return pending.state if pending is not None else WriteState.CLEAN

    def is_pending(self, record_id: str) -> bool:
        return record_id in self._arena

    @property
    def pending_count(self) -> int:
        return len(self._arena)

    def _is_current(self, pending: PendingWrite) -> bool:
        current = self._arena.get(pending.record_id)
        return current is not None and current.sequence == pending.sequence

    # ------------------------------------------------------------------
    # Optimistic application
    # ------------------------------------------------------------------

    def apply_field(self, record_id: str, field: RecordField, value: Any) -> PendingWrite:
        """
        Apply a field edit locally and register it as pending.

        Raises:
            RecordNotFoundError: If the record is unknown
            ValidationError: If the value is invalid (nothing is changed)
        """
        previous = self.store.set_field(record_id, field, value)
        return self._register(record_id, field=field, value=value, previous=previous)

    def apply_record(self, record: Record) -> PendingWrite:
        """
        Replace a whole record locally and register it as pending.

        Raises:
            RecordNotFoundError: If the record is unknown
        """
        previous = self.store.replace(record)
        if previous is None:
            raise RecordNotFoundError(record.id)
        return self._register(record.id, field=None, value=record, previous=previous)

    def _register(
        self,
        record_id: str,
        field: RecordField | None,
        value: Any,
        previous: Any,
    ) -> PendingWrite:
        self._sequence += 1
        superseded = self._arena.get(record_id)
        if superseded is not None:
            logger.debug(
                "Write %d on %s supersedes write %d",
                self._sequence,
                record_id,
                superseded.sequence,
            )
            self._cancel_timeout(superseded)

        try:
            loop: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        pending = PendingWrite(
            record_id=record_id,
            sequence=self._sequence,
            created_at=loop.time() if loop is not None else 0.0,
            record_field=field,
            value=value,
            previous=previous,
        )
        if loop is not None:
            pending.timeout_task = loop.create_task(self._expire(pending))
        self._arena[record_id] = pending
        return pending

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    async def confirm(self, pending: PendingWrite) -> WriteState:
        """
        Persist the record behind a pending write and settle it.

        Args:
            pending: Handle returned by ``apply_field``/``apply_record``

        Returns:
            The write's state once settled from this caller's point of view

        Raises:
            PersistenceError: If persistence failed (the write was rolled back
                when it was still the current write for its record)
        """
        record = self.store.get(pending.record_id)
        if record is None:
            raise RecordNotFoundError(pending.record_id)

        try:
            await self.persistence.persist(record.snapshot())
        except PersistenceError as e:
            self._fail(pending, e)
            raise
        except Exception as e:
            error = PersistenceError(pending.record_id, str(e))
            self._fail(pending, error)
            raise error from e

        self._confirm(pending)
        return pending.state

    async def edit_field(self, record_id: str, field: RecordField, value: Any) -> WriteState:
        """Apply a field edit optimistically and wait for it to settle."""
        pending = self.apply_field(record_id, field, value)
        return await self.confirm(pending)

    def _confirm(self, pending: PendingWrite) -> None:
        if not self._is_current(pending) or pending.state.is_settled:
            return
        pending.state = WriteState.CONFIRMED
        self._cancel_timeout(pending)
        # Cleared after the grace delay unless a newer write replaced it
        pending.clear_handle = asyncio.get_running_loop().call_later(
            self.grace_delay, self._clear, pending
        )

    def _fail(self, pending: PendingWrite, error: PersistenceError) -> None:
        if not self._is_current(pending) or pending.state.is_settled:
            # Superseded or presumed persisted: the newer state stays
            logger.warning(
                "Write %d on %s failed after it was settled or superseded: %s",
                pending.sequence,
                pending.record_id,
                error,
            )
            return

        pending.state = WriteState.FAILED
        logger.warning("Rolling back write on %s: %s", pending.record_id, error)
        self._revert(pending)
        pending.state = WriteState.ROLLED_BACK
        self.rollback_count += 1
        self._clear(pending)

    def _revert(self, pending: PendingWrite) -> None:
        if pending.record_field is None or pending.baseline is not None:
            self._restore_record(pending)
            return
        try:
            self.store.set_field(pending.record_id, pending.record_field, pending.previous)
        except RecordNotFoundError:
            logger.warning("Cannot roll back %s: record no longer present", pending.record_id)

    def _restore_record(self, pending: PendingWrite) -> None:
        baseline = pending.baseline if pending.baseline is not None else pending.previous
        current = self.store.get(pending.record_id)
        if current is None:
            logger.warning("Cannot roll back %s: record no longer present", pending.record_id)
            return
        # History is append-only: entries written since the edit stay
        restored = baseline.model_copy(
            update={
                "history": list(current.history),
                "last_updated": max(baseline.last_updated, current.last_updated),
            }
        )
        self.store.replace(restored)
        # Supersedes any snapshot of the rolled-back state still queued
        self.persistence.queue_sync(restored)

    async def _expire(self, pending: PendingWrite) -> None:
        await asyncio.sleep(self.timeout)
        if self._is_current(pending) and pending.state is WriteState.PENDING_LOCAL:
            pending.state = WriteState.TIMED_OUT
            logger.warning(
                "Write on %s unconfirmed after %.1fs, keeping optimistic value",
                pending.record_id,
                self.timeout,
            )
            self._clear(pending)

    def _clear(self, pending: PendingWrite) -> None:
        if self._is_current(pending):
            del self._arena[pending.record_id]
        self._cancel_timeout(pending)

    @staticmethod
    def _cancel_timeout(pending: PendingWrite) -> None:
        task = pending.timeout_task
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()

    # ------------------------------------------------------------------
    # Remote state
    # ------------------------------------------------------------------

    def apply_remote(self, record: Record) -> bool:
        """
        Overwrite a record with the version received from another client.

        Any pending local write for the record is discarded so its late
        outcome cannot touch the remote state.

        Returns:
            True if the record was known and replaced
        """
        pending = self._arena.pop(record.id, None)
        if pending is not None:
            logger.info("Remote update for %s overrides a pending local write", record.id)
            self._cancel_timeout(pending)
        return self.store.replace(record) is not None

    async def close(self) -> None:
        """Cancel every timeout and forget all pending writes."""
        for pending in self._arena.values():
            if pending.clear_handle is not None:
                pending.clear_handle.cancel()
        tasks = [p.timeout_task for p in self._arena.values() if p.timeout_task is not None]
        for task in tasks:
            task.cancel()
        self._arena.clear()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


__all__ = [
    "DEFAULT_GRACE_DELAY",
    "DEFAULT_PENDING_TIMEOUT",
    "OptimisticUpdateCoordinator",
]
