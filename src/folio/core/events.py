"""
Typed event bus for record and notification events.

Subscribers register per event type and receive an ``Unsubscribe`` handle.
Calling the handle removes exactly that subscription and is safe to call
more than once, so handlers never leak across reconnects.

Handler failures are logged and never propagate to the publisher: a broken
subscriber must not block local state changes.

Example:
    >>> bus = EventBus()
    >>> seen = []
    >>> unsubscribe = bus.subscribe(RecordUpdated, lambda e: seen.append(e.record.id))
    >>> bus.publish(RecordUpdated(record=record, changed_by="u1"))
    >>> unsubscribe()
    >>> bus.handler_count(RecordUpdated)
    0
"""

import logging
from collections.abc import Callable
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict

from folio.core.audit.models import Notification
from folio.core.records.models import Comment, Record

logger = logging.getLogger(__name__)


class Event(BaseModel):
    """Base class for bus events."""

    model_config = ConfigDict(frozen=True)


class RecordUpdated(Event):
    """A record was updated (locally or by another client)."""

    record: Record
    changed_by: str


class RecordCreated(Event):
    """A record was created."""

    record: Record
    created_by: str


class CommentAdded(Event):
    """A comment was posted on a record."""

    record_id: str
    comment: Comment
    added_by: str


class NotificationReceived(Event):
    """A notification was delivered to a user."""

    user_id: str
    notification: Notification


E = TypeVar("E", bound=Event)
Handler = Callable[[Any], None]
Unsubscribe = Callable[[], None]


class _Subscription:
    __slots__ = ("event_type", "handler", "active")

    def __init__(self, event_type: type[Event], handler: Handler) -> None:
        self.event_type = event_type
        self.handler = handler
        self.active = True


class EventBus:
    """
    Observer registry keyed by event type.

    Delivery is synchronous and in subscription order. Handlers are
    snapshotted before delivery, so subscribing or unsubscribing from inside
    a handler only affects later publishes.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[type[Event], list[_Subscription]] = {}

    def subscribe(self, event_type: type[E], handler: Callable[[E], None]) -> Unsubscribe:
        """
        Register a handler for one event type.

        Args:
            event_type: Event class to listen for (exact type match)
            handler: Callable invoked with each published event

        Returns:
            Function that removes this subscription
        """
        subscription = _Subscription(event_type, handler)
        self._subscriptions.setdefault(event_type, []).append(subscription)

        def unsubscribe() -> None:
            if not subscription.active:
                return
            subscription.active = False
            handlers = self._subscriptions.get(event_type, [])
            if subscription in handlers:
                handlers.remove(subscription)

        return unsubscribe

    def publish(self, event: Event) -> int:
        """
        Deliver an event to every active subscriber of its type.

        Args:
            event: Event to deliver

        Returns:
            Number of handlers that ran without raising
        """
        delivered = 0
        for subscription in list(self._subscriptions.get(type(event), [])):
            if not subscription.active:
                continue
            try:
                subscription.handler(event)
                delivered += 1
            except Exception:
                logger.exception(
                    "Event handler failed for %s", type(event).__name__
                )
        return delivered

    def handler_count(self, event_type: type[Event]) -> int:
        return len(self._subscriptions.get(event_type, []))

    def clear(self) -> None:
        """Drop every subscription."""
        for handlers in self._subscriptions.values():
            for subscription in handlers:
                subscription.active = False
        self._subscriptions.clear()


__all__ = [
    "CommentAdded",
    "Event",
    "EventBus",
    "NotificationReceived",
    "RecordCreated",
    "RecordUpdated",
    "Unsubscribe",
]
