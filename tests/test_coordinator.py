"""
Tests for the optimistic update coordinator.

Covers the write lifecycle (pending, confirmed, rolled back, timed out),
superseding writes on the same record and remote overwrites.
"""

import asyncio

import pytest

from folio.core.errors import PersistenceError, RecordNotFoundError, ValidationError
from folio.core.records.models import Record, RecordField, Status
from folio.core.records.store import RecordStore
from folio.core.sync import OptimisticUpdateCoordinator, PendingWrite, WriteState


@pytest.fixture
def store(sample_records):
    return RecordStore([r.model_copy(deep=True) for r in sample_records])


@pytest.fixture
def coordinator(store, backend):
    return OptimisticUpdateCoordinator(store, backend, grace_delay=0.01, timeout=0.2)


class TestOptimisticApply:
    """Test local application before persistence answers."""

    def test_pending_write_defaults(self) -> None:
        """Test a bare pending write describes a whole-record save."""
        pending = PendingWrite(record_id="Q425-001", sequence=1, created_at=0.0)
        assert pending.is_whole_record
        assert pending.state is WriteState.PENDING_LOCAL
        assert pending.baseline is None
        assert pending.timeout_task is None
        assert pending.clear_handle is None

    @pytest.mark.asyncio
    async def test_field_write_is_tracked_by_field(self, coordinator) -> None:
        """Test that a field edit records the field, value and previous value."""
        pending = coordinator.apply_field("Q425-001", RecordField.STATUS, Status.DONE)
        assert pending.record_field is RecordField.STATUS
        assert not pending.is_whole_record
        assert pending.value == Status.DONE
        assert pending.previous == Status.IN_PROGRESS
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_value_visible_immediately(self, coordinator, store) -> None:
        """Test that the edit is in the store while still pending."""
        coordinator.apply_field("Q425-001", RecordField.STATUS, Status.DONE)
        assert store.require("Q425-001").status == Status.DONE
        assert coordinator.state("Q425-001") is WriteState.PENDING_LOCAL
        assert coordinator.is_pending("Q425-001")
        await coordinator.close()
        assert coordinator.pending_count == 0

    @pytest.mark.asyncio
    async def test_invalid_value_changes_nothing(self, coordinator, store) -> None:
        """Test that a rejected value is neither applied nor tracked."""
        with pytest.raises(ValidationError):
            coordinator.apply_field("Q425-001", RecordField.ESTIMATED_EFFORT, -3)
        assert store.require("Q425-001").estimated_effort == 4.0
        assert coordinator.state("Q425-001") is WriteState.CLEAN

    @pytest.mark.asyncio
    async def test_unknown_record(self, coordinator) -> None:
        """Test that unknown records raise."""
        with pytest.raises(RecordNotFoundError):
            coordinator.apply_field("nope", RecordField.STATUS, Status.DONE)
        with pytest.raises(RecordNotFoundError):
            coordinator.apply_record(Record(id="nope"))


class TestSettlement:
    """Test how persistence outcomes settle pending writes."""

    @pytest.mark.asyncio
    async def test_success_clears_after_grace_delay(self, coordinator, backend) -> None:
        """Test confirmed writes linger briefly and are then cleared."""
        state = await coordinator.edit_field("Q425-001", RecordField.STATUS, Status.DONE)
        assert state is WriteState.CONFIRMED
        assert coordinator.state("Q425-001") is WriteState.CONFIRMED
        assert backend.records["Q425-001"].status == Status.DONE

        await asyncio.sleep(0.05)
        assert coordinator.state("Q425-001") is WriteState.CLEAN
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_failure_rolls_back_and_reraises(self, coordinator, store, backend) -> None:
        """Test that a failed write restores the previous value."""
        backend.fail_next = PersistenceError("Q425-001", "write rejected")
        with pytest.raises(PersistenceError, match="write rejected"):
            await coordinator.edit_field("Q425-001", RecordField.STATUS, Status.DONE)
        assert store.require("Q425-001").status == Status.IN_PROGRESS
        assert coordinator.state("Q425-001") is WriteState.CLEAN
        assert coordinator.rollback_count == 1

    @pytest.mark.asyncio
    async def test_whole_record_rollback(self, coordinator, store, backend) -> None:
        """Test that a failed whole-record save restores the previous record."""
        edited = store.require("Q425-002").snapshot()
        edited.title = "Export fixes v2"
        edited.priority = "P0"
        pending = coordinator.apply_record(edited)
        backend.fail_next = PersistenceError("Q425-002", "offline")

        with pytest.raises(PersistenceError):
            await coordinator.confirm(pending)
        restored = store.require("Q425-002")
        assert restored.title == "Export fixes"
        assert restored.priority.value == "P2"

    @pytest.mark.asyncio
    async def test_timeout_keeps_value(self, store, backend) -> None:
        """Test that an unanswered write is presumed persisted."""
        coordinator = OptimisticUpdateCoordinator(store, backend, grace_delay=0.01, timeout=0.05)
        backend.hold = True
        pending = coordinator.apply_field("Q425-001", RecordField.STATUS, Status.DONE)
        task = asyncio.create_task(coordinator.confirm(pending))
        await backend.wait_for_calls(1)

        await asyncio.sleep(0.1)
        assert pending.state is WriteState.TIMED_OUT
        assert coordinator.state("Q425-001") is WriteState.CLEAN

        # A late failure is logged, not reverted
        backend.fail(0)
        with pytest.raises(PersistenceError):
            await task
        assert store.require("Q425-001").status == Status.DONE
        assert coordinator.rollback_count == 0
        await coordinator.close()


class TestConcurrentWrites:
    """Test overlapping writes on one record and remote overwrites."""

    @pytest.mark.asyncio
    async def test_newer_write_survives_older_failure(self, coordinator, store, backend) -> None:
        """Test that a superseded write's failure cannot revert the newer value."""
        backend.hold = True
        first = coordinator.apply_field("Q425-001", RecordField.STATUS, Status.AT_RISK)
        first_task = asyncio.create_task(coordinator.confirm(first))
        await backend.wait_for_calls(1)
        second = coordinator.apply_field("Q425-001", RecordField.STATUS, Status.DONE)
        second_task = asyncio.create_task(coordinator.confirm(second))
        await backend.wait_for_calls(2)

        backend.fail(0)
        with pytest.raises(PersistenceError):
            await first_task
        assert store.require("Q425-001").status == Status.DONE
        assert coordinator.pending("Q425-001") is second

        backend.succeed(1)
        assert await second_task is WriteState.CONFIRMED
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_writes_on_different_records_are_independent(self, coordinator, store, backend) -> None:
        """Test that one record's failure leaves another's write alone."""
        backend.hold = True
        first = coordinator.apply_field("Q425-001", RecordField.STATUS, Status.DONE)
        second = coordinator.apply_field("Q425-002", RecordField.PRIORITY, "P0")
        first_task = asyncio.create_task(coordinator.confirm(first))
        second_task = asyncio.create_task(coordinator.confirm(second))
        await backend.wait_for_calls(2)

        backend.fail(0)
        backend.succeed(1)
        with pytest.raises(PersistenceError):
            await first_task
        await second_task
        assert store.require("Q425-001").status == Status.IN_PROGRESS
        assert store.require("Q425-002").priority.value == "P0"
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_remote_overwrite_discards_pending(self, coordinator, store, backend) -> None:
        """Test that remote state wins over a pending local write."""
        backend.hold = True
        pending = coordinator.apply_field("Q425-001", RecordField.PRIORITY, "P0")
        task = asyncio.create_task(coordinator.confirm(pending))
        await backend.wait_for_calls(1)

        remote = store.require("Q425-001").snapshot()
        remote.title = "Billing revamp (remote)"
        remote.priority = "P2"
        assert coordinator.apply_remote(remote) is True
        assert not coordinator.is_pending("Q425-001")

        backend.fail(0)
        with pytest.raises(PersistenceError):
            await task
        current = store.require("Q425-001")
        assert current.title == "Billing revamp (remote)"
        assert current.priority.value == "P2"

    @pytest.mark.asyncio
    async def test_remote_for_unknown_record(self, coordinator) -> None:
        """Test that remote updates for unknown records are ignored."""
        assert coordinator.apply_remote(Record(id="elsewhere")) is False
