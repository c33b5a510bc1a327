"""
Record store: the single owner of the in-memory record collection.

Every component that changes the collection goes through this narrow API:

- ``replace_all``: initial load / refresh (deduplicated)
- ``insert``: local or remote create (duplicate ids become updates)
- ``replace``: whole-record overwrite (remote broadcasts, workflow results)
- ``set_field``: field-level optimistic edits
- ``heal``: self-healing deduplication pass

Readers get the live record objects; mutating them outside this API is
not supported.
"""

import logging
from collections.abc import Iterator
from enum import Enum
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from folio.core.errors import RecordNotFoundError, ValidationError

from .dedupe import dedupe, find_duplicate_ids
from .models import Record, RecordField

logger = logging.getLogger(__name__)


class InsertOutcome(str, Enum):
    """What ``RecordStore.insert`` did with the incoming record."""

    CREATED = "created"
    UPDATED = "updated"


class RecordStore:
    """
    Ordered, id-unique collection of records.

    Example:
        >>> store = RecordStore()
        >>> store.insert(Record(id="Q425-001", title="Billing revamp"))
        <InsertOutcome.CREATED: 'created'>
        >>> store.insert(Record(id="Q425-001", title="Billing revamp v2"))
        <InsertOutcome.UPDATED: 'updated'>
        >>> len(store)
        1
    """

    def __init__(self, records: list[Record] | None = None) -> None:
        self._records: list[Record] = dedupe(records or [])

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[Record]:
        return iter(list(self._records))

    def __contains__(self, record_id: object) -> bool:
        return any(r.id == record_id for r in self._records)

    def _index_of(self, record_id: str) -> int:
        for index, record in enumerate(self._records):
            if record.id == record_id:
                return index
        return -1

    def ids(self) -> list[str]:
        return [r.id for r in self._records]

    def get(self, record_id: str) -> Record | None:
        index = self._index_of(record_id)
        return self._records[index] if index >= 0 else None

    def require(self, record_id: str) -> Record:
        """
        Get a record by id.

        Raises:
            RecordNotFoundError: If no record has this id
        """
        record = self.get(record_id)
        if record is None:
            raise RecordNotFoundError(record_id)
        return record

    def all(self, include_deleted: bool = False) -> list[Record]:
        """List records in collection order, skipping soft-deleted ones by default."""
        if include_deleted:
            return list(self._records)
        return [r for r in self._records if not r.is_deleted]

    def replace_all(self, records: list[Record]) -> int:
        """
        Replace the whole collection (initial load or refresh).

        Args:
            records: Records as loaded from persistence

        Returns:
            Number of duplicates dropped
        """
        deduped = dedupe(records)
        self._records = deduped
        return len(records) - len(deduped)

    def insert(self, record: Record) -> InsertOutcome:
        """
        Add a new record, treating an id collision as an update.

        The collection is healed first so a pre-existing duplicate can
        never survive an insert.

        Args:
            record: Record to add

        Returns:
            CREATED if the id was new, UPDATED if it replaced an existing record
        """
        self.heal()
        index = self._index_of(record.id)
        if index >= 0:
            logger.warning("Record %s already exists, updating instead of adding", record.id)
            self._records[index] = record
            return InsertOutcome.UPDATED
        self._records.append(record)
        return InsertOutcome.CREATED

    def replace(self, record: Record) -> Record | None:
        """
        Overwrite an existing record wholesale.

        Args:
            record: New version of the record

        Returns:
            The previous version, or None if the id is unknown (nothing stored)
        """
        index = self._index_of(record.id)
        if index < 0:
            return None
        previous = self._records[index]
        self._records[index] = record
        return previous

    def set_field(self, record_id: str, field: RecordField, value: Any) -> Any:
        """
        Set one field on a stored record.

        Args:
            record_id: Target record id
            field: Field to write
            value: New value (validated against the Record model)

        Returns:
            The field's previous value

        Raises:
            RecordNotFoundError: If the record is unknown
            ValidationError: If the value is invalid for the field
        """
        record = self.require(record_id)
        previous = record.get_field(field)
        try:
            record.set_field(field, value)
        except PydanticValidationError as e:
            raise ValidationError(field.value, str(e.errors()[0].get("msg", e))) from e
        return previous

    def heal(self) -> list[str]:
        """
        Drop duplicate ids if any slipped into the collection.

        Returns:
            Ids that had duplicates (empty when the collection was clean)
        """
        duplicate_ids = find_duplicate_ids(self._records)
        if duplicate_ids:
            logger.error("Duplicates detected in record store: %s", ", ".join(duplicate_ids))
            self._records = dedupe(self._records)
        return duplicate_ids
