"""
JSON file backend implementation (.folio/records.json).

Stores every record in a single JSON file and appends change entries to a
JSONL audit log. Upserts and audit entries are queued in memory and flushed
by ``force_sync_now`` (or immediately by ``persist``), mirroring a debounced
remote sync.

File format:
    {
        "records": [
            {"id": "Q425-001", "title": "...", "status": "In Progress", ...}
        ]
    }
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from folio.core.errors import PersistenceError

from .backend import SoftDeleteResult, register_backend
from .cache import atomic_write_json
from .models import ChangeEntry, Record, Status

logger = logging.getLogger(__name__)


class RecordsFileCorruptedError(PersistenceError):
    """Raised when records.json is malformed."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(record_id="*", reason=f"{path}: {reason}")
        self.path = path


@register_backend("json")
class JsonFileBackend:
    """
    Persistence backend that uses a JSON file for storage.

    Example:
        >>> backend = JsonFileBackend(project_dir=Path("."))
        >>> records = await backend.load()
        >>> backend.queue_sync(records[0])
        >>> await backend.force_sync_now()
    """

    def __init__(
        self,
        project_dir: Path | None = None,
        records_file: Path | None = None,
        audit_file: Path | None = None,
    ) -> None:
        """
        Initialize the JSON backend.

        Args:
            project_dir: Project directory (defaults to current directory)
            records_file: Explicit path to records.json (overrides project_dir)
            audit_file: Explicit path to audit.jsonl (overrides project_dir)
        """
        self.project_dir = project_dir or Path.cwd()
        data_dir = self.project_dir / ".folio"
        self.records_file = Path(records_file) if records_file else data_dir / "records.json"
        self.audit_file = Path(audit_file) if audit_file else data_dir / "audit.jsonl"

        self._pending_records: dict[str, Record] = {}
        self._pending_audit: list[ChangeEntry] = []

    @property
    def backend_name(self) -> str:
        return "json"

    @property
    def pending_count(self) -> int:
        return len(self._pending_records) + len(self._pending_audit)

    def _read_raw(self) -> list[dict[str, Any]]:
        if not self.records_file.exists():
            return []
        try:
            with self.records_file.open(encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise RecordsFileCorruptedError(self.records_file, str(e)) from e
        except OSError as e:
            raise PersistenceError("*", f"Failed to read {self.records_file}: {e}") from e

        if not isinstance(data, dict):
            raise RecordsFileCorruptedError(self.records_file, "expected a JSON object")
        records = data.get("records", [])
        if not isinstance(records, list):
            raise RecordsFileCorruptedError(self.records_file, "'records' must be a list")
        return records

    def _write_raw(self, records: list[dict[str, Any]]) -> None:
        try:
            atomic_write_json(self.records_file, {"records": records})
        except OSError as e:
            raise PersistenceError("*", f"Failed to write {self.records_file}: {e}") from e

    async def load(self) -> list[Record]:
        records: list[Record] = []
        for raw in self._read_raw():
            try:
                records.append(Record.model_validate(raw))
            except PydanticValidationError as e:
                logger.warning("Skipping invalid record in %s: %s", self.records_file, e)
        return records

    def queue_sync(self, record: Record) -> None:
        # Latest queued version wins
        self._pending_records[record.id] = record.model_copy(deep=True)

    def queue_audit(self, entry: ChangeEntry) -> None:
        self._pending_audit.append(entry)

    async def force_sync_now(self) -> None:
        if self._pending_records:
            raw = self._read_raw()
            index = {r.get("id"): i for i, r in enumerate(raw)}
            for record_id, record in self._pending_records.items():
                dumped = record.model_dump(mode="json")
                if record_id in index:
                    raw[index[record_id]] = dumped
                else:
                    index[record_id] = len(raw)
                    raw.append(dumped)
            self._write_raw(raw)
            self._pending_records.clear()

        if self._pending_audit:
            try:
                self.audit_file.parent.mkdir(parents=True, exist_ok=True)
                with self.audit_file.open("a", encoding="utf-8") as f:
                    for entry in self._pending_audit:
                        f.write(entry.model_dump_json() + "\n")
            except OSError as e:
                raise PersistenceError("*", f"Failed to append audit log: {e}") from e
            self._pending_audit.clear()

    async def persist(self, record: Record) -> None:
        self.queue_sync(record)
        await self.force_sync_now()

    def write_all(self, records: list[Record]) -> None:
        """Replace the stored collection (used to heal duplicate ids)."""
        self._write_raw([r.model_dump(mode="json") for r in records])

    async def soft_delete(self, record_id: str) -> SoftDeleteResult:
        raw = self._read_raw()
        deleted_at = datetime.now(timezone.utc)
        for item in raw:
            if item.get("id") == record_id:
                item["status"] = Status.DELETED.value
                item["deleted_at"] = deleted_at.isoformat()
                self._write_raw(raw)
                return SoftDeleteResult(success=True, deleted_at=deleted_at)
        return SoftDeleteResult(success=False)

    async def restore(self, record_id: str) -> bool:
        raw = self._read_raw()
        for item in raw:
            if item.get("id") == record_id:
                item["status"] = Status.NOT_STARTED.value
                item["deleted_at"] = None
                self._write_raw(raw)
                return True
        return False

    def read_audit_log(self, record_id: str | None = None) -> list[ChangeEntry]:
        """
        Read change entries from the audit log.

        Args:
            record_id: Only return entries for this record

        Returns:
            Change entries in append order
        """
        if not self.audit_file.exists():
            return []
        entries: list[ChangeEntry] = []
        with self.audit_file.open(encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = ChangeEntry.model_validate_json(line)
                except PydanticValidationError:
                    logger.warning("Skipping malformed audit line in %s", self.audit_file)
                    continue
                if record_id is None or entry.record_id == record_id:
                    entries.append(entry)
        return entries
