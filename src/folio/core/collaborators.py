"""
External collaborators consumed by the folio core.

The core depends only on the protocols in this module. Each protocol comes
with a local implementation used by the CLI, offline sessions and tests:

- PersistenceBackend: see ``folio.core.records.backend`` (JsonFileBackend,
  MemoryBackend)
- BroadcastChannel: LocalBroadcastChannel, backed by the in-process EventBus
- NotificationDelivery: InMemoryNotificationInbox
- ClassificationLookup: StaticClassificationLookup (fixed team map)
- PermissionPolicy: AllowAll
- DeliveryChannel: LoggingDeliveryChannel (Slack-like ETA feed)
"""

import logging
from collections.abc import Callable
from typing import Protocol, runtime_checkable

from folio.core.audit.models import Notification
from folio.core.errors import BroadcastError
from folio.core.events import (
    CommentAdded,
    EventBus,
    NotificationReceived,
    RecordCreated,
    RecordUpdated,
    Unsubscribe,
)
from folio.core.records.backend import PersistenceBackend
from folio.core.records.models import ChangeEntry, Classification, Comment, Record, User

logger = logging.getLogger(__name__)


# ==============================================================================
# Users
# ==============================================================================


class UserDirectory:
    """Read-only lookup of known users by id."""

    def __init__(self, users: list[User] | None = None) -> None:
        self._users: dict[str, User] = {u.id: u for u in users or []}

    def get(self, user_id: str | None) -> User | None:
        if user_id is None:
            return None
        return self._users.get(user_id)

    def display_name(self, user_id: str | None) -> str:
        """Name to show for a user id, falling back to the id itself."""
        user = self.get(user_id)
        if user is not None:
            return user.name
        return user_id or "Unknown"

    def all(self) -> list[User]:
        return list(self._users.values())


# ==============================================================================
# Broadcast
# ==============================================================================


@runtime_checkable
class BroadcastChannel(Protocol):
    """Real-time channel shared by every client looking at the same collection."""

    async def connect(self, identity: User) -> None:
        """Join the channel as ``identity``."""
        ...

    async def broadcast_update(self, record: Record) -> None:
        ...

    async def broadcast_create(self, record: Record) -> None:
        ...

    async def broadcast_comment(self, record_id: str, comment: Comment) -> None:
        ...

    def on_update(self, handler: Callable[[RecordUpdated], None]) -> Unsubscribe:
        ...

    def on_create(self, handler: Callable[[RecordCreated], None]) -> Unsubscribe:
        ...

    def on_comment_added(self, handler: Callable[[CommentAdded], None]) -> Unsubscribe:
        ...

    def on_notification(self, handler: Callable[[NotificationReceived], None]) -> Unsubscribe:
        ...


class LocalBroadcastChannel:
    """
    Broadcast channel for clients sharing one process.

    Every published record is a deep copy, so receivers never share mutable
    state with the sender.

    Example:
        >>> bus = EventBus()
        >>> channel = LocalBroadcastChannel(bus)
        >>> await channel.connect(User(id="u1", name="Dana"))
        >>> unsubscribe = channel.on_update(lambda e: print(e.record.id))
        >>> await channel.broadcast_update(record)
        Q425-001
    """

    def __init__(self, bus: EventBus | None = None) -> None:
        self.bus = bus or EventBus()
        self.identity: User | None = None

    @property
    def connected(self) -> bool:
        return self.identity is not None

    async def connect(self, identity: User) -> None:
        self.identity = identity
        logger.debug("Broadcast channel connected as %s", identity.id)

    def _sender(self, event: str) -> str:
        if self.identity is None:
            raise BroadcastError(event, "channel is not connected")
        return self.identity.id

    async def broadcast_update(self, record: Record) -> None:
        sender = self._sender("update")
        self.bus.publish(RecordUpdated(record=record.snapshot(), changed_by=sender))

    async def broadcast_create(self, record: Record) -> None:
        sender = self._sender("create")
        self.bus.publish(RecordCreated(record=record.snapshot(), created_by=sender))

    async def broadcast_comment(self, record_id: str, comment: Comment) -> None:
        sender = self._sender("comment")
        self.bus.publish(CommentAdded(record_id=record_id, comment=comment, added_by=sender))

    def on_update(self, handler: Callable[[RecordUpdated], None]) -> Unsubscribe:
        return self.bus.subscribe(RecordUpdated, handler)

    def on_create(self, handler: Callable[[RecordCreated], None]) -> Unsubscribe:
        return self.bus.subscribe(RecordCreated, handler)

    def on_comment_added(self, handler: Callable[[CommentAdded], None]) -> Unsubscribe:
        return self.bus.subscribe(CommentAdded, handler)

    def on_notification(self, handler: Callable[[NotificationReceived], None]) -> Unsubscribe:
        return self.bus.subscribe(NotificationReceived, handler)


# ==============================================================================
# Notifications
# ==============================================================================


@runtime_checkable
class NotificationDelivery(Protocol):
    """Per-user notification inbox."""

    def create(self, target_user_id: str, notification: Notification) -> Notification:
        ...

    def mark_read(self, notification_id: str) -> bool:
        ...

    def mark_all_read(self, user_id: str) -> int:
        ...

    def clear_all(self, user_id: str) -> int:
        ...


class InMemoryNotificationInbox:
    """
    Notification inbox held in process memory.

    When a bus is supplied, every created notification is also published
    as a ``NotificationReceived`` event.
    """

    def __init__(self, bus: EventBus | None = None) -> None:
        self.bus = bus
        self._inboxes: dict[str, list[Notification]] = {}

    def create(self, target_user_id: str, notification: Notification) -> Notification:
        addressed = notification.model_copy(update={"user_id": target_user_id})
        self._inboxes.setdefault(target_user_id, []).insert(0, addressed)
        if self.bus is not None:
            self.bus.publish(NotificationReceived(user_id=target_user_id, notification=addressed))
        return addressed

    def for_user(self, user_id: str, unread_only: bool = False) -> list[Notification]:
        """Notifications for a user, newest first."""
        notifications = self._inboxes.get(user_id, [])
        if unread_only:
            return [n for n in notifications if not n.read]
        return list(notifications)

    def unread_count(self, user_id: str) -> int:
        return len(self.for_user(user_id, unread_only=True))

    def mark_read(self, notification_id: str) -> bool:
        for notifications in self._inboxes.values():
            for n in notifications:
                if n.id == notification_id:
                    n.read = True
                    return True
        return False

    def mark_all_read(self, user_id: str) -> int:
        unread = self.for_user(user_id, unread_only=True)
        for n in unread:
            n.read = True
        return len(unread)

    def clear_all(self, user_id: str) -> int:
        return len(self._inboxes.pop(user_id, []))


# ==============================================================================
# Classification lookup
# ==============================================================================

TEAM_CLASSIFICATIONS: dict[str, Classification] = {
    "PL": Classification.PL,
    "Auto": Classification.AUTO,
    "POS": Classification.POS,
    "Advisory": Classification.ADVISORY,
}


@runtime_checkable
class ClassificationLookup(Protocol):
    def team_to_classification(self, team: str | None) -> Classification | None:
        ...


class StaticClassificationLookup:
    """Team -> classification lookup backed by a fixed map."""

    def __init__(self, mapping: dict[str, Classification] | None = None) -> None:
        self.mapping = dict(TEAM_CLASSIFICATIONS if mapping is None else mapping)

    def team_to_classification(self, team: str | None) -> Classification | None:
        if not team:
            return None
        return self.mapping.get(team)


# ==============================================================================
# Permissions
# ==============================================================================


@runtime_checkable
class PermissionPolicy(Protocol):
    """Read-only check consulted before every mutation entry point."""

    def can_create(self, actor: User) -> bool:
        ...

    def can_edit(self, actor: User, record: Record) -> bool:
        ...

    def can_delete(self, actor: User, record: Record) -> bool:
        ...


class AllowAll:
    """Permission policy that allows every operation."""

    def can_create(self, actor: User) -> bool:
        return True

    def can_edit(self, actor: User, record: Record) -> bool:
        return True

    def can_delete(self, actor: User, record: Record) -> bool:
        return True


# ==============================================================================
# Delivery channel
# ==============================================================================


@runtime_checkable
class DeliveryChannel(Protocol):
    """External feed (Slack-like) that receives every ETA change."""

    def notify_eta_change(self, entry: ChangeEntry, record: Record) -> None:
        ...


class LoggingDeliveryChannel:
    """Delivery channel that writes ETA changes to the log."""

    def notify_eta_change(self, entry: ChangeEntry, record: Record) -> None:
        logger.info(
            "ETA change on %s (%s): %s -> %s by %s",
            record.id,
            record.title,
            entry.old_value,
            entry.new_value,
            entry.actor,
        )


__all__ = [
    "AllowAll",
    "BroadcastChannel",
    "ClassificationLookup",
    "DeliveryChannel",
    "InMemoryNotificationInbox",
    "LocalBroadcastChannel",
    "LoggingDeliveryChannel",
    "NotificationDelivery",
    "PermissionPolicy",
    "PersistenceBackend",
    "StaticClassificationLookup",
    "TEAM_CLASSIFICATIONS",
    "UserDirectory",
]
