"""In-memory persistence backend, used for offline sessions and tests."""

from datetime import datetime, timezone

from folio.core.errors import PersistenceError

from .backend import SoftDeleteResult, register_backend
from .models import ChangeEntry, Record, Status


@register_backend("memory")
class MemoryBackend:
    """
    Persistence backend that keeps everything in process memory.

    Setting ``available = False`` makes every awaited call raise
    PersistenceError, which simulates an unreachable remote store.
    """

    def __init__(self, records: list[Record] | None = None) -> None:
        self.records: dict[str, Record] = {}
        self.raw_load: list[Record] = [r.model_copy(deep=True) for r in records or []]
        for record in self.raw_load:
            self.records.setdefault(record.id, record)
        self.audit_log: list[ChangeEntry] = []
        self.queued: list[Record] = []
        self.sync_calls = 0
        self.available = True

    @property
    def backend_name(self) -> str:
        return "memory"

    def _check_available(self, record_id: str = "*") -> None:
        if not self.available:
            raise PersistenceError(record_id, "backend unavailable")

    async def load(self) -> list[Record]:
        self._check_available()
        # Raw load preserves duplicates exactly as storage returned them
        return [r.model_copy(deep=True) for r in self.raw_load]

    async def persist(self, record: Record) -> None:
        self._check_available(record.id)
        self.records[record.id] = record.model_copy(deep=True)

    def queue_sync(self, record: Record) -> None:
        self.queued.append(record.model_copy(deep=True))

    def queue_audit(self, entry: ChangeEntry) -> None:
        self.audit_log.append(entry)

    async def force_sync_now(self) -> None:
        self._check_available()
        self.sync_calls += 1
        for record in self.queued:
            self.records[record.id] = record
        self.queued.clear()

    async def soft_delete(self, record_id: str) -> SoftDeleteResult:
        self._check_available(record_id)
        record = self.records.get(record_id)
        if record is None:
            return SoftDeleteResult(success=False)
        deleted_at = datetime.now(timezone.utc)
        record.status = Status.DELETED
        record.deleted_at = deleted_at
        return SoftDeleteResult(success=True, deleted_at=deleted_at)

    async def restore(self, record_id: str) -> bool:
        self._check_available(record_id)
        record = self.records.get(record_id)
        if record is None:
            return False
        record.status = Status.NOT_STARTED
        record.deleted_at = None
        return True
