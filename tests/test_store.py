"""
Tests for the record store and the deduplication guard.
"""

import pytest

from folio.core.errors import RecordNotFoundError, ValidationError
from folio.core.records.dedupe import dedupe, find_duplicate_ids, has_duplicates
from folio.core.records.models import Record, RecordField, Status
from folio.core.records.store import InsertOutcome, RecordStore


def make(record_id: str, title: str = "") -> Record:
    return Record(id=record_id, title=title or record_id)


class TestDedupe:
    """Test the dedupe helpers."""

    def test_keeps_first_occurrence_in_order(self) -> None:
        """Test that the first record per id survives, order preserved."""
        records = [make("a", "first a"), make("b"), make("a", "second a"), make("c")]
        result = dedupe(records)
        assert [r.id for r in result] == ["a", "b", "c"]
        assert result[0].title == "first a"

    def test_idempotent(self) -> None:
        """Test that deduping twice equals deduping once."""
        records = [make("a"), make("a"), make("b"), make("b"), make("b")]
        once = dedupe(records)
        assert dedupe(once) == once

    def test_find_duplicate_ids(self) -> None:
        """Test listing repeated ids once each."""
        records = [make("a"), make("b"), make("a"), make("a"), make("b")]
        assert find_duplicate_ids(records) == ["a", "b"]
        assert has_duplicates(records) is True
        assert has_duplicates(dedupe(records)) is False

    def test_empty(self) -> None:
        """Test the empty collection."""
        assert dedupe([]) == []
        assert find_duplicate_ids([]) == []


class TestRecordStore:
    """Test the id-unique record collection."""

    def test_load_drops_duplicates(self) -> None:
        """Test that replace_all reports dropped duplicates."""
        store = RecordStore()
        dropped = store.replace_all([make("a"), make("b"), make("a")])
        assert dropped == 1
        assert store.ids() == ["a", "b"]

    def test_insert_new(self) -> None:
        """Test inserting a new id."""
        store = RecordStore([make("a")])
        assert store.insert(make("b")) is InsertOutcome.CREATED
        assert store.ids() == ["a", "b"]

    def test_insert_collision_updates(self) -> None:
        """Test that a double submit updates the existing record in place."""
        store = RecordStore([make("a"), make("b")])
        assert store.insert(make("a", "again")) is InsertOutcome.UPDATED
        assert store.ids() == ["a", "b"]
        assert store.require("a").title == "again"

    def test_insert_heals_existing_duplicates(self) -> None:
        """Test that a duplicate slipped into the collection is removed on insert."""
        store = RecordStore()
        store._records = [make("a"), make("a", "dup")]
        store.insert(make("b"))
        assert store.ids() == ["a", "b"]

    def test_require_unknown(self) -> None:
        """Test that unknown ids raise."""
        with pytest.raises(RecordNotFoundError):
            RecordStore().require("nope")

    def test_replace(self) -> None:
        """Test wholesale replacement."""
        store = RecordStore([make("a")])
        previous = store.replace(make("a", "new"))
        assert previous is not None and previous.title == "a"
        assert store.replace(make("zzz")) is None
        assert "zzz" not in store

    def test_set_field_returns_previous(self) -> None:
        """Test setting one field."""
        store = RecordStore([make("a")])
        previous = store.set_field("a", RecordField.STATUS, "Done")
        assert previous == Status.NOT_STARTED
        assert store.require("a").status == Status.DONE

    def test_set_field_invalid_value(self) -> None:
        """Test that invalid values raise and change nothing."""
        store = RecordStore([make("a")])
        with pytest.raises(ValidationError):
            store.set_field("a", RecordField.ESTIMATED_EFFORT, -2)
        assert store.require("a").estimated_effort == 0.0

    def test_all_hides_deleted(self) -> None:
        """Test that soft-deleted records are hidden unless asked for."""
        store = RecordStore([make("a"), Record(id="b", status=Status.DELETED)])
        assert [r.id for r in store.all()] == ["a"]
        assert [r.id for r in store.all(include_deleted=True)] == ["a", "b"]

    def test_record_id_is_immutable(self) -> None:
        """Test that a record id cannot be reassigned."""
        record = make("a")
        with pytest.raises(Exception):
            record.id = "b"
