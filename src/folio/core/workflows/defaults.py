"""Built-in system workflows, installed read-only in every session."""

from folio.core.records.models import RecordField, Status

from .models import (
    AndCondition,
    Cadence,
    DeriveClassification,
    DueDatePassed,
    LastUpdatedOlderThan,
    NotifyOwner,
    NumericFieldGreaterThan,
    SetField,
    StatusEquals,
    StatusNotEquals,
    TriggerConfig,
    TriggerKind,
    Workflow,
)

WEEKLY_REMINDER_MESSAGE = (
    "Please update your initiative status, effort, and ETA by Thursday EoD "
    "as part of the weekly update routine."
)


def system_workflows() -> list[Workflow]:
    """Fresh copies of the system workflows (ids are stable across sessions)."""
    return [
        Workflow(
            id="system-auto-at-risk",
            name="Auto At-Risk Detection",
            description="Mark records At Risk once their ETA has passed",
            trigger=TriggerConfig(
                kind=TriggerKind.ON_SCHEDULE, schedule=Cadence.DAILY, time="09:00"
            ),
            condition=AndCondition(
                children=[
                    DueDatePassed(),
                    StatusNotEquals(value=Status.DONE),
                    StatusNotEquals(value=Status.AT_RISK),
                ]
            ),
            action=SetField(field=RecordField.STATUS, value=Status.AT_RISK),
            system=True,
            read_only=True,
        ),
        Workflow(
            id="system-effort-status",
            name="Effort-Based Status Transition",
            description="Move records to In Progress once effort is logged",
            trigger=TriggerConfig(kind=TriggerKind.ON_EFFORT_CHANGE),
            condition=AndCondition(
                children=[
                    NumericFieldGreaterThan(field=RecordField.ACTUAL_EFFORT, threshold=0),
                    StatusEquals(value=Status.NOT_STARTED),
                ]
            ),
            action=SetField(field=RecordField.STATUS, value=Status.IN_PROGRESS),
            system=True,
            read_only=True,
        ),
        Workflow(
            id="system-weekly-reminder",
            name="Weekly Update Reminder",
            description="Remind owners of stale records to post their weekly update",
            trigger=TriggerConfig(
                kind=TriggerKind.ON_SCHEDULE, schedule=Cadence.WEEKLY, time="17:00"
            ),
            condition=AndCondition(
                children=[
                    LastUpdatedOlderThan(days=7),
                    StatusNotEquals(value=Status.DONE),
                ]
            ),
            action=NotifyOwner(message=WEEKLY_REMINDER_MESSAGE),
            system=True,
            read_only=True,
        ),
        Workflow(
            id="system-team-classification",
            name="Team-Based Asset Class Assignment",
            description="Derive a new record's asset class from its owner's team",
            trigger=TriggerConfig(kind=TriggerKind.ON_CREATE),
            action=DeriveClassification(),
            system=True,
            read_only=True,
        ),
    ]


__all__ = ["WEEKLY_REMINDER_MESSAGE", "system_workflows"]
