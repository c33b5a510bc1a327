"""Tests for the event bus, the local broadcast channel and the inbox."""

import pytest

from folio.core.audit.models import Notification, NotificationKind
from folio.core.collaborators import InMemoryNotificationInbox, LocalBroadcastChannel
from folio.core.errors import BroadcastError
from folio.core.events import EventBus, NotificationReceived, RecordCreated, RecordUpdated
from folio.core.records.models import Comment


def make_notification(record_id: str = "Q425-001") -> Notification:
    return Notification(
        kind=NotificationKind.FIELD_CHANGE,
        title="Priority changed",
        message="changed",
        record_id=record_id,
    )


class TestEventBus:
    """Test the observer registry."""

    def test_publish_to_matching_type_only(self, record) -> None:
        """Test that handlers only receive their event type."""
        bus = EventBus()
        updates, creates = [], []
        bus.subscribe(RecordUpdated, updates.append)
        bus.subscribe(RecordCreated, creates.append)
        delivered = bus.publish(RecordUpdated(record=record, changed_by="u_dana"))
        assert delivered == 1
        assert len(updates) == 1 and creates == []

    def test_unsubscribe(self, record) -> None:
        """Test that unsubscribed handlers stop receiving events."""
        bus = EventBus()
        received = []
        unsubscribe = bus.subscribe(RecordUpdated, received.append)
        unsubscribe()
        unsubscribe()
        bus.publish(RecordUpdated(record=record, changed_by="u_dana"))
        assert received == []
        assert bus.handler_count(RecordUpdated) == 0

    def test_failing_handler_does_not_stop_others(self, record) -> None:
        """Test that one raising handler is isolated."""
        bus = EventBus()
        received = []

        def explode(event) -> None:
            raise RuntimeError("boom")

        bus.subscribe(RecordUpdated, explode)
        bus.subscribe(RecordUpdated, received.append)
        assert bus.publish(RecordUpdated(record=record, changed_by="u_dana")) == 1
        assert len(received) == 1

    def test_unsubscribe_during_delivery(self, record) -> None:
        """Test that removing a later handler mid-delivery skips it."""
        bus = EventBus()
        received = []
        holder = {}

        def first(event) -> None:
            holder["second"]()

        bus.subscribe(RecordUpdated, first)
        holder["second"] = bus.subscribe(RecordUpdated, received.append)
        bus.publish(RecordUpdated(record=record, changed_by="u_dana"))
        assert received == []


class TestLocalBroadcastChannel:
    """Test broadcasting between clients sharing a bus."""

    @pytest.mark.asyncio
    async def test_requires_connection(self, record) -> None:
        """Test that broadcasting before connect raises."""
        channel = LocalBroadcastChannel()
        with pytest.raises(BroadcastError, match="not connected"):
            await channel.broadcast_update(record)

    @pytest.mark.asyncio
    async def test_receivers_get_copies(self, record, dana) -> None:
        """Test that broadcast records are copies tagged with the sender."""
        bus = EventBus()
        sender = LocalBroadcastChannel(bus)
        receiver = LocalBroadcastChannel(bus)
        await sender.connect(dana)
        received = []
        receiver.on_update(received.append)

        await sender.broadcast_update(record)
        [event] = received
        assert event.changed_by == "u_dana"
        assert event.record == record
        assert event.record is not record

    @pytest.mark.asyncio
    async def test_comment_and_create(self, record, dana) -> None:
        """Test create and comment broadcasts."""
        channel = LocalBroadcastChannel()
        await channel.connect(dana)
        created, comments = [], []
        channel.on_create(created.append)
        channel.on_comment_added(comments.append)

        await channel.broadcast_create(record)
        await channel.broadcast_comment(record.id, Comment(text="hi", author_id="u_dana"))
        assert created[0].created_by == "u_dana"
        assert comments[0].record_id == record.id
        assert comments[0].comment.text == "hi"


class TestInMemoryNotificationInbox:
    """Test the per-user inbox."""

    def test_create_addresses_and_publishes(self) -> None:
        """Test that created notifications are addressed and announced."""
        bus = EventBus()
        inbox = InMemoryNotificationInbox(bus)
        announced = []
        bus.subscribe(NotificationReceived, announced.append)

        stored = inbox.create("u_dana", make_notification())
        assert stored.user_id == "u_dana"
        assert inbox.for_user("u_dana") == [stored]
        assert announced[0].user_id == "u_dana"

    def test_newest_first(self) -> None:
        """Test inbox ordering."""
        inbox = InMemoryNotificationInbox()
        inbox.create("u_dana", make_notification("a"))
        inbox.create("u_dana", make_notification("b"))
        assert [n.record_id for n in inbox.for_user("u_dana")] == ["b", "a"]

    def test_read_state(self) -> None:
        """Test marking notifications read and clearing the inbox."""
        inbox = InMemoryNotificationInbox()
        first = inbox.create("u_dana", make_notification())
        inbox.create("u_dana", make_notification())
        assert inbox.unread_count("u_dana") == 2
        assert inbox.mark_read(first.id) is True
        assert inbox.mark_read("missing") is False
        assert inbox.unread_count("u_dana") == 1
        assert inbox.mark_all_read("u_dana") == 1
        assert inbox.for_user("u_dana", unread_only=True) == []
        assert inbox.clear_all("u_dana") == 2
        assert inbox.for_user("u_dana") == []
