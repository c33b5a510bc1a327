"""
Local record cache.

Keeps a JSON snapshot of the collection on disk so a session can keep
working when the persistence backend is unavailable. Writes are atomic
(temp file + rename) so a crash never leaves a truncated cache behind.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from .models import Record

logger = logging.getLogger(__name__)


def atomic_write_json(path: Path, data: Any) -> None:
    """
    Write JSON to ``path`` atomically.

    Uses a temporary file in the same directory and an atomic rename to
    prevent corruption on write failures.

    Args:
        path: Destination file
        data: JSON-serializable data
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}_", suffix=".tmp")

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.write("\n")
        os.replace(temp_path, path)
    except Exception:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise


class RecordCache:
    """
    JSON snapshot of the record collection.

    Example:
        >>> cache = RecordCache(Path(".folio/cache.json"))
        >>> cache.save(records)
        >>> cache.load()
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> list[Record]:
        """
        Read the cached records.

        Returns:
            Cached records, or an empty list if the cache is missing or
            unreadable
        """
        if not self.path.exists():
            return []
        try:
            with self.path.open(encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Failed to read record cache at %s: %s", self.path, e)
            return []

        raw_records = data.get("records", []) if isinstance(data, dict) else []
        records: list[Record] = []
        for raw in raw_records:
            try:
                records.append(Record.model_validate(raw))
            except PydanticValidationError as e:
                logger.warning("Skipping invalid cached record: %s", e)
        return records

    def save(self, records: list[Record]) -> None:
        """Replace the cached snapshot."""
        atomic_write_json(
            self.path,
            {"records": [r.model_dump(mode="json") for r in records]},
        )

