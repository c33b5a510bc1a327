"""Builders for owner-facing notifications."""

from datetime import date
from enum import Enum
from typing import Any

from folio.core.records.models import ChangeEntry, Comment, Record, RecordField

from .models import Notification, NotificationKind

# Overlooked counter value above which an escalation is sent
OVERLOOKED_THRESHOLD = 2


def format_value(value: Any) -> str:
    """Render a field value the way it appears in notification text."""
    if value is None or value == "":
        return "none"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def field_change_notification(
    entry: ChangeEntry, record: Record, actor_name: str
) -> Notification:
    """
    Notification telling a record's owner that someone changed a field.

    Status, ETA and effort changes get their own wording; every other field
    gets a generic "<field> changed" message.
    """
    old, new = format_value(entry.old_value), format_value(entry.new_value)

    if entry.field == RecordField.STATUS:
        kind = NotificationKind.STATUS_CHANGE
        title = f"Status changed: {old} → {new}"
        message = f'{record.title} status was changed from "{old}" to "{new}" by {actor_name}'
    elif entry.field == RecordField.ETA:
        kind = NotificationKind.ETA_CHANGE
        title = "ETA updated"
        message = f"{record.title} ETA was changed from {old} to {new} by {actor_name}"
    elif entry.field == RecordField.ESTIMATED_EFFORT:
        kind = NotificationKind.EFFORT_CHANGE
        title = "Effort updated"
        message = (
            f"{record.title} estimated effort was changed from {old}w to {new}w by {actor_name}"
        )
    else:
        kind = NotificationKind.FIELD_CHANGE
        title = f"{entry.field.label} changed"
        message = f"{record.title} {entry.field.label.lower()} was changed by {actor_name}"

    return Notification(
        kind=kind,
        title=title,
        message=message,
        record_id=record.id,
        record_title=record.title,
        user_id=record.owner_id,
        metadata={
            "field": entry.field.value,
            "old_value": old,
            "new_value": new,
            "owner_id": record.owner_id,
            "change_id": entry.id,
        },
    )


def overlooked_notification(record: Record) -> Notification:
    """Escalation sent when a record's ETA keeps slipping."""
    return Notification(
        kind=NotificationKind.OVERLOOKED_ITEM,
        title="Repeatedly overlooked item",
        message=f"{record.title} has been delayed {record.overlooked_count} times",
        record_id=record.id,
        record_title=record.title,
        user_id=record.owner_id,
        metadata={"overlooked_count": record.overlooked_count},
    )


def at_risk_notification(record: Record, actor_name: str) -> Notification:
    return Notification(
        kind=NotificationKind.AT_RISK,
        title="Initiative marked as At Risk",
        message=f"{record.title} was marked At Risk by {actor_name}",
        record_id=record.id,
        record_title=record.title,
        user_id=record.owner_id,
    )


def workflow_notification(record: Record, workflow_name: str, message: str) -> Notification:
    """Message produced by a notify-owner workflow action."""
    return Notification(
        kind=NotificationKind.WORKFLOW,
        title=workflow_name or "Workflow notification",
        message=message,
        record_id=record.id,
        record_title=record.title,
        user_id=record.owner_id,
        metadata={"workflow": workflow_name},
    )


def comment_notification(
    record: Record, comment: Comment, author_name: str, mentioned: bool = False
) -> Notification:
    """Notification for a new comment, or for a mention inside one."""
    if mentioned:
        return Notification(
            kind=NotificationKind.MENTION,
            title=f"{author_name} mentioned you",
            message=f"{author_name} mentioned you on {record.title}: {comment.text}",
            record_id=record.id,
            record_title=record.title,
            metadata={"comment_id": comment.id},
        )
    return Notification(
        kind=NotificationKind.NEW_COMMENT,
        title="New comment",
        message=f"{author_name} commented on {record.title}: {comment.text}",
        record_id=record.id,
        record_title=record.title,
        user_id=record.owner_id,
        metadata={"comment_id": comment.id},
    )


__all__ = [
    "OVERLOOKED_THRESHOLD",
    "at_risk_notification",
    "comment_notification",
    "field_change_notification",
    "format_value",
    "overlooked_notification",
    "workflow_notification",
]
