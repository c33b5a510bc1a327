"""
Audit trail and notifications.

The change recorder lives in ``folio.core.audit.recorder``; it is not
re-exported here because it depends on the collaborator protocols, which
themselves depend on the notification models below.
"""

from .models import Notification, NotificationKind
from .notifications import (
    OVERLOOKED_THRESHOLD,
    at_risk_notification,
    comment_notification,
    field_change_notification,
    format_value,
    overlooked_notification,
    workflow_notification,
)

__all__ = [
    "Notification",
    "NotificationKind",
    "OVERLOOKED_THRESHOLD",
    "at_risk_notification",
    "comment_notification",
    "field_change_notification",
    "format_value",
    "overlooked_notification",
    "workflow_notification",
]
