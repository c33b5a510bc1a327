"""
Change/audit recorder.

Diffs two versions of a record, appends one ChangeEntry per changed
tracked field to the new version's history and fans the entries out to
the side channels:

- owner notification per field (never to the actor themselves)
- ETA changes to the external delivery channel, whoever made them
- overlooked-item tracking when an ETA is pushed later
- At Risk notification when a record moves into At Risk
- audit queue on the persistence backend

History and the overlooked counter are part of the record and always
updated. Every channel side effect is best-effort: a failure is logged
and never blocks the others or the caller.
"""

import logging
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

from folio.core.collaborators import (
    DeliveryChannel,
    NotificationDelivery,
    UserDirectory,
)
from folio.core.records.backend import PersistenceBackend
from folio.core.records.models import (
    TRACKED_FIELDS,
    ChangeEntry,
    Record,
    RecordField,
    Status,
    User,
    utcnow,
)

from .models import Notification
from .notifications import (
    OVERLOOKED_THRESHOLD,
    at_risk_notification,
    field_change_notification,
    overlooked_notification,
)

logger = logging.getLogger(__name__)

SUB_RECORD_FIELDS: tuple[RecordField, ...] = (
    RecordField.STATUS,
    RecordField.ESTIMATED_EFFORT,
    RecordField.ACTUAL_EFFORT,
)


class ChangeRecorder:
    """
    Records field transitions on records and dispatches their side effects.

    Example:
        >>> recorder = ChangeRecorder(notifications=inbox)
        >>> after = before.snapshot()
        >>> after.status = Status.IN_PROGRESS
        >>> entries = recorder.diff_and_record(before, after, actor=dana)
        >>> [e.field for e in entries]
        [<RecordField.STATUS: 'status'>]
    """

    def __init__(
        self,
        persistence: PersistenceBackend | None = None,
        notifications: NotificationDelivery | None = None,
        delivery: DeliveryChannel | None = None,
        users: UserDirectory | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.persistence = persistence
        self.notifications = notifications
        self.delivery = delivery
        self.users = users or UserDirectory()
        self.clock = clock

    def diff(
        self,
        previous: Record,
        next: Record,
        fields: Iterable[RecordField] | None = None,
    ) -> list[tuple[RecordField, Any, Any, str | None]]:
        """
        List field transitions between two versions of a record.

        Args:
            previous: Version before the mutation
            next: Version after the mutation
            fields: Extra fields to diff on top of the tracked ones

        Returns:
            (field, old, new, sub_record_id) tuples in emission order
        """
        watched = list(TRACKED_FIELDS)
        for extra in sorted(set(fields or ()), key=list(RecordField).index):
            if extra not in watched:
                watched.append(extra)

        changes: list[tuple[RecordField, Any, Any, str | None]] = []
        for record_field in watched:
            old, new = previous.get_field(record_field), next.get_field(record_field)
            if old != new:
                changes.append((record_field, old, new, None))

        previous_subs = {s.id: s for s in previous.sub_records}
        for sub in next.sub_records:
            before = previous_subs.get(sub.id)
            if before is None:
                continue
            for record_field in SUB_RECORD_FIELDS:
                old = getattr(before, record_field.value)
                new = getattr(sub, record_field.value)
                if old != new:
                    changes.append((record_field, old, new, sub.id))
        return changes

    def diff_and_record(
        self,
        previous: Record,
        next: Record,
        actor: User,
        fields: Iterable[RecordField] | None = None,
        provenance: str | None = None,
    ) -> list[ChangeEntry]:
        """
        Diff two versions of a record and record every change.

        Entries are appended to ``next.history``; ``previous`` is not touched.

        Args:
            previous: Version before the mutation
            next: Version after the mutation (receives the history entries)
            actor: User (or automation identity) that made the change
            fields: Extra fields to diff on top of the tracked ones
            provenance: Id of the record whose edit caused this change

        Returns:
            The emitted entries, in emission order
        """
        now = self.clock()
        entries = [
            ChangeEntry(
                record_id=next.id,
                record_title=next.title,
                sub_record_id=sub_id,
                field=record_field,
                old_value=old,
                new_value=new,
                actor=actor.name,
                timestamp=now,
                provenance=provenance,
            )
            for record_field, old, new, sub_id in self.diff(previous, next, fields)
        ]
        if not entries:
            return []

        next.append_history(entries)

        for entry in entries:
            if entry.is_sub_record_change:
                self._queue_audit(entry)
                continue
            self._notify_owner(entry, next, actor)
            if entry.field == RecordField.ETA:
                self._forward_eta_change(entry, next)
                self._track_overlooked(entry, next, now)
            if entry.field == RecordField.STATUS and entry.new_value == Status.AT_RISK:
                self._send(next, at_risk_notification(next, actor.name), actor)
            self._queue_audit(entry)

        return entries

    def _send(self, record: Record, notification: Notification, actor: User | None) -> None:
        if self.notifications is None or record.owner_id is None:
            return
        if actor is not None and record.owner_id == actor.id:
            return
        try:
            self.notifications.create(record.owner_id, notification)
        except Exception:
            logger.exception("Failed to deliver %s notification for %s", notification.kind, record.id)

    def _notify_owner(self, entry: ChangeEntry, record: Record, actor: User) -> None:
        try:
            notification = field_change_notification(entry, record, actor.name)
        except Exception:
            logger.exception("Failed to build change notification for %s", record.id)
            return
        self._send(record, notification, actor)

    def _forward_eta_change(self, entry: ChangeEntry, record: Record) -> None:
        if self.delivery is None:
            return
        try:
            self.delivery.notify_eta_change(entry, record)
        except Exception:
            logger.exception("Failed to forward ETA change for %s", record.id)

    def _track_overlooked(self, entry: ChangeEntry, record: Record, now: datetime) -> None:
        old, new = entry.old_value, entry.new_value
        if old is None or new is None or not new > old:
            return
        record.overlooked_count += 1
        record.last_delay_date = now.date()
        if record.overlooked_count > OVERLOOKED_THRESHOLD:
            logger.info(
                "Record %s delayed %d times, escalating", record.id, record.overlooked_count
            )
            # Escalations go to the owner even when they pushed the date themselves
            self._send(record, overlooked_notification(record), actor=None)

    def _queue_audit(self, entry: ChangeEntry) -> None:
        if self.persistence is None:
            return
        try:
            self.persistence.queue_audit(entry)
        except Exception:
            logger.exception("Failed to queue audit entry %s", entry.id)


__all__ = ["ChangeRecorder", "SUB_RECORD_FIELDS"]
