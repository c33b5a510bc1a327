"""
Action executor: applies a workflow action to a working copy of a record.

``apply_action`` never touches the record it is given. It returns an
``ActionOutcome`` carrying the mutated copy, any notifications the action
produced and the fields it actually changed. Field writes are idempotent:
applying an action to a record that already matches changes nothing.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from folio.core.audit.models import Notification
from folio.core.audit.notifications import workflow_notification
from folio.core.collaborators import (
    ClassificationLookup,
    StaticClassificationLookup,
    UserDirectory,
)
from folio.core.errors import ActionExecutionError
from folio.core.records.models import (
    DEFAULT_CLASSIFICATION,
    Comment,
    Record,
    RecordField,
    Status,
    utcnow,
)

from .models import (
    CreateComment,
    DeriveClassification,
    ExecuteMultiple,
    NotifyOwner,
    RequireRiskActionLog,
    SetField,
    TransitionStatus,
    UnknownAction,
)

logger = logging.getLogger(__name__)

AUTOMATED_COMMENT_PREFIX = "[Automated]"
SYSTEM_AUTHOR = "system"

# One step forward per transition; statuses not listed stay where they are
STATUS_TRANSITIONS: dict[Status, Status] = {
    Status.NOT_STARTED: Status.IN_PROGRESS,
    Status.IN_PROGRESS: Status.AT_RISK,
    Status.AT_RISK: Status.DONE,
}


@dataclass
class ActionContext:
    """Collaborators and metadata available to actions."""

    users: UserDirectory = field(default_factory=UserDirectory)
    classification_lookup: ClassificationLookup = field(
        default_factory=StaticClassificationLookup
    )
    workflow_name: str = ""
    now: datetime = field(default_factory=utcnow)


@dataclass
class ActionOutcome:
    """Result of applying an action to a record."""

    record: Record
    notifications: list[Notification] = field(default_factory=list)
    changed_fields: list[RecordField] = field(default_factory=list)
    comments_added: list[Comment] = field(default_factory=list)

    @property
    def notification(self) -> Notification | None:
        return self.notifications[0] if self.notifications else None

    @property
    def changed(self) -> bool:
        return bool(self.changed_fields or self.comments_added)

    def _mark(self, record_field: RecordField) -> None:
        if record_field not in self.changed_fields:
            self.changed_fields.append(record_field)


def apply_action(action: BaseModel, record: Record, context: ActionContext) -> ActionOutcome:
    """
    Apply an action to an isolated copy of a record.

    Args:
        action: Action node from a workflow
        record: Record to act on (left untouched)
        context: Collaborators and run metadata

    Returns:
        Outcome with the mutated copy

    Raises:
        ActionExecutionError: If the action is unknown or cannot be applied
    """
    outcome = ActionOutcome(record=record.snapshot())
    _apply(action, outcome, context)
    return outcome


def _set(outcome: ActionOutcome, record_field: RecordField, value: object, action: str) -> None:
    working = outcome.record
    before = working.get_field(record_field)
    try:
        working.set_field(record_field, value)
    except PydanticValidationError as e:
        raise ActionExecutionError(
            action, working.id, f"invalid value {value!r} for {record_field.value}"
        ) from e
    if working.get_field(record_field) != before:
        outcome._mark(record_field)


def _apply(action: BaseModel, outcome: ActionOutcome, context: ActionContext) -> None:
    working = outcome.record

    if isinstance(action, SetField):
        _set(outcome, action.field, action.value, action.kind)

    elif isinstance(action, NotifyOwner):
        if working.owner_id is None:
            logger.debug("Record %s has no owner, skipping notification", working.id)
            return
        message = action.message or f"{working.title} matched workflow '{context.workflow_name}'"
        outcome.notifications.append(
            workflow_notification(working, context.workflow_name, message)
        )

    elif isinstance(action, DeriveClassification):
        # Never overwrite an explicitly chosen classification
        if working.classification not in (None, DEFAULT_CLASSIFICATION):
            return
        owner = context.users.get(working.owner_id)
        derived = context.classification_lookup.team_to_classification(
            owner.team if owner else None
        )
        if derived is not None:
            _set(outcome, RecordField.CLASSIFICATION, derived, action.kind)

    elif isinstance(action, TransitionStatus):
        target = STATUS_TRANSITIONS.get(working.status)
        if target is not None:
            _set(outcome, RecordField.STATUS, target, action.kind)

    elif isinstance(action, RequireRiskActionLog):
        if not working.risk_action_log.strip() and working.status != Status.AT_RISK:
            _set(outcome, RecordField.STATUS, Status.AT_RISK, action.kind)

    elif isinstance(action, CreateComment):
        comment = Comment(
            text=f"{AUTOMATED_COMMENT_PREFIX} {action.message}",
            author_id=SYSTEM_AUTHOR,
            timestamp=context.now,
        )
        working.comments = [*working.comments, comment]
        outcome.comments_added.append(comment)

    elif isinstance(action, ExecuteMultiple):
        for child in action.actions:
            _apply(child, outcome, context)

    elif isinstance(action, UnknownAction):
        raise ActionExecutionError(
            action.original_kind or "unknown", working.id, action.reason or "unknown action"
        )

    else:
        raise ActionExecutionError(type(action).__name__, working.id, "not an action node")


__all__ = [
    "ActionContext",
    "ActionOutcome",
    "STATUS_TRANSITIONS",
    "apply_action",
]
