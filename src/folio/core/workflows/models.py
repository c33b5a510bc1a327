"""
Workflow data models for folio.

A workflow is a named automation rule: a trigger that decides *when* it is
eligible, an optional condition tree that decides *which* records it
applies to, and a single action that decides *what* it does.

Condition and action trees are closed tagged unions discriminated by
``kind``. Configs that name an unknown kind, or a known kind with
malformed parameters, are parsed into ``UnknownCondition`` /
``UnknownAction`` nodes rather than rejected, so one broken workflow
never prevents the rest of the configuration from loading. Unknown
conditions evaluate to False; unknown actions fail their run.

Configs written in the legacy flat format (``type`` instead of ``kind``,
``set_status``/``actual_effort_greater_than`` and friends) are translated
on load.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union
from uuid import uuid4

from pydantic import (
    BaseModel,
    Field,
    ValidationError as PydanticValidationError,
    field_validator,
    model_validator,
)

from folio.core.records.models import (
    Classification,
    Priority,
    Record,
    RecordField,
    Status,
    WorkType,
    utcnow,
)

NUMERIC_FIELDS: frozenset[RecordField] = frozenset(
    {RecordField.ESTIMATED_EFFORT, RecordField.ACTUAL_EFFORT}
)

# ==============================================================================
# Conditions
# ==============================================================================


class AndCondition(BaseModel):
    """True iff every child is true (vacuously true when empty)."""

    kind: Literal["and"] = "and"
    children: list["ConditionNode"] = Field(default_factory=list)

    @field_validator("children", mode="before")
    @classmethod
    def coerce_children(cls, v: Any) -> Any:
        return [coerce_condition(c) for c in v] if isinstance(v, list) else v


class OrCondition(BaseModel):
    """True iff any child is true (false when empty)."""

    kind: Literal["or"] = "or"
    children: list["ConditionNode"] = Field(default_factory=list)

    @field_validator("children", mode="before")
    @classmethod
    def coerce_children(cls, v: Any) -> Any:
        return [coerce_condition(c) for c in v] if isinstance(v, list) else v


class DueDatePassed(BaseModel):
    """Due date strictly in the past and status neither Done nor At Risk."""

    kind: Literal["due_date_passed"] = "due_date_passed"


class DueDateWithinDays(BaseModel):
    """Due date between today and today + ``days`` (inclusive)."""

    kind: Literal["due_date_within_days"] = "due_date_within_days"
    days: int = Field(..., ge=1)


class StatusEquals(BaseModel):
    kind: Literal["status_equals"] = "status_equals"
    value: Status


class StatusNotEquals(BaseModel):
    kind: Literal["status_not_equals"] = "status_not_equals"
    value: Status


class NumericFieldGreaterThan(BaseModel):
    """Strict ``>`` against a threshold; a missing field counts as 0."""

    kind: Literal["numeric_field_greater_than"] = "numeric_field_greater_than"
    field: RecordField
    threshold: float = 0.0

    @field_validator("field")
    @classmethod
    def validate_numeric(cls, v: RecordField) -> RecordField:
        if v not in NUMERIC_FIELDS:
            raise ValueError(f"Field '{v.value}' is not numeric")
        return v


class LastUpdatedOlderThan(BaseModel):
    """Calendar days since ``last_updated`` are at least ``days``."""

    kind: Literal["last_updated_older_than"] = "last_updated_older_than"
    days: int = Field(..., ge=1)


class PriorityEquals(BaseModel):
    kind: Literal["priority_equals"] = "priority_equals"
    value: Priority


class RiskActionLogEmpty(BaseModel):
    kind: Literal["risk_action_log_empty"] = "risk_action_log_empty"


class OwnerEquals(BaseModel):
    kind: Literal["owner_equals"] = "owner_equals"
    value: str


class ClassificationEquals(BaseModel):
    kind: Literal["classification_equals"] = "classification_equals"
    value: Classification


class EffortPercentageAtLeast(BaseModel):
    """Actual effort is at least ``percentage`` percent of estimated effort."""

    kind: Literal["effort_percentage_at_least"] = "effort_percentage_at_least"
    percentage: float = Field(..., gt=0)


class EffortVarianceExceeds(BaseModel):
    """``|estimated - actual|`` is strictly greater than ``value``."""

    kind: Literal["effort_variance_exceeds"] = "effort_variance_exceeds"
    value: float = Field(..., gt=0)


class UnknownCondition(BaseModel):
    """Placeholder for an unknown or malformed condition; always False."""

    kind: Literal["unknown"] = "unknown"
    original_kind: str = ""
    reason: str = ""
    params: dict[str, Any] = Field(default_factory=dict)


ConditionNode = Annotated[
    Union[
        AndCondition,
        OrCondition,
        DueDatePassed,
        DueDateWithinDays,
        StatusEquals,
        StatusNotEquals,
        NumericFieldGreaterThan,
        LastUpdatedOlderThan,
        PriorityEquals,
        RiskActionLogEmpty,
        OwnerEquals,
        ClassificationEquals,
        EffortPercentageAtLeast,
        EffortVarianceExceeds,
        UnknownCondition,
    ],
    Field(discriminator="kind"),
]

AndCondition.model_rebuild()
OrCondition.model_rebuild()

_LEAF_CONDITIONS: dict[str, type[BaseModel]] = {
    "due_date_passed": DueDatePassed,
    "due_date_within_days": DueDateWithinDays,
    "status_equals": StatusEquals,
    "status_not_equals": StatusNotEquals,
    "numeric_field_greater_than": NumericFieldGreaterThan,
    "last_updated_older_than": LastUpdatedOlderThan,
    "priority_equals": PriorityEquals,
    "risk_action_log_empty": RiskActionLogEmpty,
    "owner_equals": OwnerEquals,
    "classification_equals": ClassificationEquals,
    "effort_percentage_at_least": EffortPercentageAtLeast,
    "effort_variance_exceeds": EffortVarianceExceeds,
}


def _legacy_condition(kind: str, data: dict[str, Any]) -> tuple[str, dict[str, Any]]:
    """Translate legacy flat condition configs to the current shape."""
    if kind == "actual_effort_greater_than":
        return "numeric_field_greater_than", {
            "field": RecordField.ACTUAL_EFFORT.value,
            "threshold": data.get("value") or 0,
        }
    if kind == "actual_effort_percentage":
        return "effort_percentage_at_least", {"percentage": data.get("percentage")}
    if kind == "asset_class_equals":
        return "classification_equals", {"value": data.get("value")}
    if kind == "is_at_risk":
        return "status_equals", {"value": Status.AT_RISK.value}
    return kind, data


def coerce_condition(data: Any) -> Any:
    """
    Normalize a raw condition config into a condition node.

    Known kinds with valid parameters become their node model, unknown or
    malformed ones become ``UnknownCondition``. Non-dict input (already
    parsed nodes) is returned unchanged.
    """
    if not isinstance(data, dict):
        return data

    kind = str(data.get("kind") or data.get("type") or "")
    params = {k: v for k, v in data.items() if k not in ("kind", "type")}
    kind, params = _legacy_condition(kind, params)

    if kind in ("and", "or"):
        model = AndCondition if kind == "and" else OrCondition
        return model(children=params.get("children") or [])
    if kind == "unknown":
        return UnknownCondition.model_validate(data)

    leaf = _LEAF_CONDITIONS.get(kind)
    if leaf is None:
        return UnknownCondition(original_kind=kind, reason="unknown kind", params=params)
    try:
        return leaf.model_validate({**params, "kind": kind})
    except PydanticValidationError as e:
        return UnknownCondition(original_kind=kind, reason=str(e), params=params)


# ==============================================================================
# Actions
# ==============================================================================


class SetField(BaseModel):
    """Force a field to a constant value (idempotent)."""

    kind: Literal["set_field"] = "set_field"
    field: RecordField
    value: Any = None


class NotifyOwner(BaseModel):
    """Send a message to the record's owner without mutating fields."""

    kind: Literal["notify_owner"] = "notify_owner"
    message: str = ""


class DeriveClassification(BaseModel):
    """Set classification from the owner's team unless explicitly chosen."""

    kind: Literal["derive_classification"] = "derive_classification"


class TransitionStatus(BaseModel):
    """Advance status one step: Not Started -> In Progress -> At Risk -> Done."""

    kind: Literal["transition_status"] = "transition_status"


class RequireRiskActionLog(BaseModel):
    """Mark the record At Risk when its risk action log is empty."""

    kind: Literal["require_risk_action_log"] = "require_risk_action_log"


class CreateComment(BaseModel):
    """Post an automated comment on the record."""

    kind: Literal["create_comment"] = "create_comment"
    message: str = Field(..., min_length=1)


class ExecuteMultiple(BaseModel):
    """Apply several actions in order to the same working copy."""

    kind: Literal["execute_multiple"] = "execute_multiple"
    actions: list["ActionNode"] = Field(default_factory=list)

    @field_validator("actions", mode="before")
    @classmethod
    def coerce_actions(cls, v: Any) -> Any:
        return [coerce_action(a) for a in v] if isinstance(v, list) else v


class UnknownAction(BaseModel):
    """Placeholder for an unknown or malformed action; its runs always fail."""

    kind: Literal["unknown"] = "unknown"
    original_kind: str = ""
    reason: str = ""
    params: dict[str, Any] = Field(default_factory=dict)


ActionNode = Annotated[
    Union[
        SetField,
        NotifyOwner,
        DeriveClassification,
        TransitionStatus,
        RequireRiskActionLog,
        CreateComment,
        ExecuteMultiple,
        UnknownAction,
    ],
    Field(discriminator="kind"),
]

ExecuteMultiple.model_rebuild()

_ACTIONS: dict[str, type[BaseModel]] = {
    "set_field": SetField,
    "notify_owner": NotifyOwner,
    "derive_classification": DeriveClassification,
    "transition_status": TransitionStatus,
    "require_risk_action_log": RequireRiskActionLog,
    "create_comment": CreateComment,
}

_LEGACY_SET_ACTIONS: dict[str, RecordField] = {
    "set_status": RecordField.STATUS,
    "set_priority": RecordField.PRIORITY,
    "update_eta": RecordField.ETA,
    "update_effort": RecordField.ESTIMATED_EFFORT,
}


def coerce_action(data: Any) -> Any:
    """Normalize a raw action config into an action node (see ``coerce_condition``)."""
    if not isinstance(data, dict):
        return data

    kind = str(data.get("kind") or data.get("type") or "")
    params = {k: v for k, v in data.items() if k not in ("kind", "type")}

    if kind in _LEGACY_SET_ACTIONS:
        kind, params = "set_field", {
            "field": _LEGACY_SET_ACTIONS[kind].value,
            "value": params.get("value"),
        }
    elif kind == "set_at_risk":
        kind, params = "set_field", {"field": "status", "value": Status.AT_RISK.value}
    elif kind == "set_asset_class":
        kind = "derive_classification"
    elif kind == "notify_slack":
        # Channel delivery is external; the owner gets the message instead
        kind, params = "notify_owner", {"message": str(params.get("message") or "")}

    if kind == "execute_multiple":
        return ExecuteMultiple(actions=params.get("actions") or [])
    if kind == "unknown":
        return UnknownAction.model_validate(data)

    model = _ACTIONS.get(kind)
    if model is None:
        return UnknownAction(original_kind=kind, reason="unknown kind", params=params)
    try:
        return model.model_validate({**params, "kind": kind})
    except PydanticValidationError as e:
        return UnknownAction(original_kind=kind, reason=str(e), params=params)


def action_fields(action: BaseModel) -> set[RecordField]:
    """Record fields an action may write (used to scope audit diffs)."""
    if isinstance(action, SetField):
        return {action.field}
    if isinstance(action, DeriveClassification):
        return {RecordField.CLASSIFICATION}
    if isinstance(action, (TransitionStatus, RequireRiskActionLog)):
        return {RecordField.STATUS}
    if isinstance(action, ExecuteMultiple):
        fields: set[RecordField] = set()
        for child in action.actions:
            fields |= action_fields(child)
        return fields
    return set()


# ==============================================================================
# Triggers
# ==============================================================================

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


class TriggerKind(str, Enum):
    """Events that can make a workflow eligible to run."""

    ON_SCHEDULE = "on_schedule"
    ON_CREATE = "on_create"
    ON_FIELD_CHANGE = "on_field_change"
    ON_EFFORT_CHANGE = "on_effort_change"


class Cadence(str, Enum):
    """Schedule cadence for on-schedule triggers."""

    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"


class TriggerConfig(BaseModel):
    """
    Trigger descriptor.

    Example:
        >>> TriggerConfig(kind=TriggerKind.ON_SCHEDULE, schedule=Cadence.DAILY, time="09:00")
        >>> TriggerConfig(kind=TriggerKind.ON_FIELD_CHANGE, fields=[RecordField.STATUS])
    """

    kind: TriggerKind
    schedule: Cadence | None = Field(default=None, description="Cadence for on_schedule")
    time: str | None = Field(default=None, description="Wall-clock time HH:MM")
    day_of_week: int | None = Field(
        default=None, ge=0, le=6, description="Weekly day filter (0 = Monday)"
    )
    fields: list[RecordField] = Field(
        default_factory=list, description="Fields watched by on_field_change"
    )

    @field_validator("time")
    @classmethod
    def validate_time(cls, v: str | None) -> str | None:
        if v is not None and not _TIME_RE.match(v):
            raise ValueError("time must be in HH:MM (24h) format")
        return v

    @model_validator(mode="after")
    def validate_schedule(self) -> "TriggerConfig":
        if self.kind == TriggerKind.ON_SCHEDULE:
            if self.schedule is None:
                raise ValueError("on_schedule triggers require a schedule")
            if self.schedule in (Cadence.DAILY, Cadence.WEEKLY) and self.time is None:
                raise ValueError(f"{self.schedule.value} schedules require a time")
        return self


# ==============================================================================
# Workflows
# ==============================================================================


class WorkflowScope(BaseModel):
    """Optional filters restricting which records a workflow considers."""

    classifications: list[Classification] | None = None
    work_types: list[WorkType] | None = None
    owners: list[str] | None = None

    def matches(self, record: Record) -> bool:
        if self.classifications is not None and record.classification not in self.classifications:
            return False
        if self.work_types is not None and record.work_type not in self.work_types:
            return False
        if self.owners is not None and record.owner_id not in self.owners:
            return False
        return True


class WorkflowRunLog(BaseModel):
    """Outcome of one workflow run."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    workflow_id: str
    timestamp: datetime = Field(default_factory=utcnow)
    records_affected: list[str] = Field(default_factory=list)
    actions_taken: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.errors


class Workflow(BaseModel):
    """
    A trigger + condition + action automation rule.

    Example:
        >>> wf = Workflow.model_validate({
        ...     "name": "Auto At-Risk Detection",
        ...     "trigger": {"kind": "on_schedule", "schedule": "daily", "time": "09:00"},
        ...     "condition": {"kind": "and", "children": [{"kind": "due_date_passed"}]},
        ...     "action": {"kind": "set_field", "field": "status", "value": "At Risk"},
        ... })
        >>> wf.run_count
        0
    """

    id: str = Field(default_factory=lambda: uuid4().hex)
    name: str = Field(..., min_length=1)
    description: str = ""
    enabled: bool = True
    trigger: TriggerConfig
    condition: ConditionNode | None = Field(
        default=None, description="Condition tree; None means always eligible"
    )
    action: ActionNode
    scope: WorkflowScope | None = None

    created_by: str = "system"
    created_at: datetime = Field(default_factory=utcnow)
    last_run: datetime | None = None
    run_count: int = Field(default=0, ge=0)
    execution_log: list[WorkflowRunLog] = Field(default_factory=list)

    system: bool = Field(default=False, description="Defined by the system, not a user")
    read_only: bool = Field(default=False, description="Cannot be edited or deleted")

    @field_validator("condition", mode="before")
    @classmethod
    def coerce_condition_tree(cls, v: Any) -> Any:
        return coerce_condition(v)

    @field_validator("action", mode="before")
    @classmethod
    def coerce_action_tree(cls, v: Any) -> Any:
        return coerce_action(v)

    @field_validator("trigger", mode="before")
    @classmethod
    def coerce_legacy_trigger(cls, v: Any) -> Any:
        # Legacy configs carry the kind under "type" next to a "config" dict
        if isinstance(v, dict) and "kind" not in v and "type" in v:
            return {"kind": v["type"], **(v.get("config") or {})}
        if isinstance(v, str):
            return {"kind": v}
        return v

    def record_run(self, log: WorkflowRunLog, max_log_entries: int = 10) -> None:
        """Count a run and keep only the last ``max_log_entries`` logs."""
        self.run_count += 1
        self.last_run = log.timestamp
        self.execution_log = [*self.execution_log, log][-max_log_entries:]
