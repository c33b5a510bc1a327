"""
Rule-based workflow automation.

A workflow pairs a trigger (when), a condition tree (which records) and an
action (what). The dispatcher selects eligible workflows for an event, the
evaluator filters records, and the executor applies actions to isolated
record copies whose changes are then recorded by the audit recorder.
"""

from .actions import ActionContext, ActionOutcome, apply_action
from .conditions import evaluate
from .defaults import system_workflows
from .engine import WORKFLOW_ACTOR, WorkflowEngine, WorkflowResult, final_versions
from .models import (
    ActionNode,
    Cadence,
    ConditionNode,
    TriggerConfig,
    TriggerKind,
    Workflow,
    WorkflowRunLog,
    WorkflowScope,
    coerce_action,
    coerce_condition,
)
from .triggers import (
    FieldsChanged,
    RecordAdded,
    ScheduleTick,
    TriggerEvent,
    eligible_workflows,
    schedule_matches,
)

__all__ = [
    "ActionContext",
    "ActionNode",
    "ActionOutcome",
    "Cadence",
    "ConditionNode",
    "FieldsChanged",
    "RecordAdded",
    "ScheduleTick",
    "TriggerConfig",
    "TriggerEvent",
    "TriggerKind",
    "WORKFLOW_ACTOR",
    "Workflow",
    "WorkflowEngine",
    "WorkflowResult",
    "WorkflowRunLog",
    "WorkflowScope",
    "apply_action",
    "coerce_action",
    "coerce_condition",
    "eligible_workflows",
    "evaluate",
    "final_versions",
    "schedule_matches",
    "system_workflows",
]
