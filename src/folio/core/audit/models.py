"""
Notification models for folio.

Notifications are produced by the change recorder, by workflow actions and
by the session, then handed to the notification delivery collaborator.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from folio.core.records.models import utcnow


class NotificationKind(str, Enum):
    """Kinds of owner-facing notifications."""

    DELAY = "delay"
    FIELD_CHANGE = "field_change"
    STATUS_CHANGE = "status_change"
    MENTION = "mention"
    AT_RISK = "at_risk"
    ETA_CHANGE = "eta_change"
    EFFORT_CHANGE = "effort_change"
    NEW_COMMENT = "new_comment"
    WEEKLY_UPDATE_REMINDER = "weekly_update_reminder"
    OVERLOOKED_ITEM = "overlooked_item"
    WORKFLOW = "workflow"


class Notification(BaseModel):
    """
    A message addressed to one user about one record.

    Example:
        >>> n = Notification(
        ...     kind=NotificationKind.STATUS_CHANGE,
        ...     title="Status changed: Not Started → In Progress",
        ...     message="Billing revamp status was changed by Dana",
        ...     record_id="Q425-001",
        ...     user_id="u_lead",
        ... )
        >>> n.read
        False
    """

    id: str = Field(default_factory=lambda: uuid4().hex)
    kind: NotificationKind
    title: str
    message: str
    record_id: str
    record_title: str = ""
    user_id: str | None = Field(default=None, description="Target user")
    timestamp: datetime = Field(default_factory=utcnow)
    read: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)
