"""
Trigger dispatcher: maps events to the workflows they make eligible.

Three event shapes drive workflows:

- ``ScheduleTick``: periodic tick from the schedule runner
- ``RecordAdded``: a new record was durably added to the collection
- ``FieldsChanged``: a mutation touched one or more record fields

``eligible_workflows`` returns the enabled workflows whose trigger matches,
in configuration order. Running them is the engine's job.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from folio.core.records.models import EFFORT_FIELDS, RecordField

from .models import Cadence, TriggerConfig, TriggerKind, Workflow


class TriggerEvent(BaseModel):
    """Base class for events consumed by the dispatcher."""

    model_config = ConfigDict(frozen=True)


class ScheduleTick(TriggerEvent):
    now: datetime


class RecordAdded(TriggerEvent):
    record_id: str


class FieldsChanged(TriggerEvent):
    record_id: str
    fields: frozenset[RecordField] = Field(default_factory=frozenset)


def schedule_matches(trigger: TriggerConfig, now: datetime) -> bool:
    """
    Check whether an on-schedule trigger fires at ``now``.

    Daily and weekly triggers fire when the wall-clock minute equals the
    configured ``HH:MM``. Weekly triggers also check ``day_of_week`` when
    one is configured; without it, time of day alone decides. Hourly
    triggers fire on every tick.

    Args:
        trigger: Trigger configuration (must be on_schedule)
        now: Current wall-clock time

    Returns:
        True if the trigger fires on this tick
    """
    if trigger.kind != TriggerKind.ON_SCHEDULE or trigger.schedule is None:
        return False
    if trigger.schedule == Cadence.HOURLY:
        return True
    if now.strftime("%H:%M") != trigger.time:
        return False
    if trigger.schedule == Cadence.WEEKLY and trigger.day_of_week is not None:
        return now.weekday() == trigger.day_of_week
    return True


def _already_ran_this_minute(workflow: Workflow, now: datetime) -> bool:
    # Ticks shorter than a minute must not fire a daily/weekly workflow twice
    if workflow.last_run is None or workflow.trigger.schedule == Cadence.HOURLY:
        return False
    last_run = workflow.last_run
    if last_run.tzinfo is not None and now.tzinfo is not None:
        last_run = last_run.astimezone(now.tzinfo)
    return last_run.strftime("%Y-%m-%d %H:%M") == now.strftime("%Y-%m-%d %H:%M")


def _matches(workflow: Workflow, event: TriggerEvent) -> bool:
    trigger = workflow.trigger
    if isinstance(event, ScheduleTick):
        return schedule_matches(trigger, event.now) and not _already_ran_this_minute(
            workflow, event.now
        )
    if isinstance(event, RecordAdded):
        return trigger.kind == TriggerKind.ON_CREATE
    if isinstance(event, FieldsChanged):
        if trigger.kind == TriggerKind.ON_FIELD_CHANGE:
            return bool(event.fields & set(trigger.fields))
        if trigger.kind == TriggerKind.ON_EFFORT_CHANGE:
            return bool(event.fields & EFFORT_FIELDS)
    return False


def eligible_workflows(event: TriggerEvent, workflows: list[Workflow]) -> list[Workflow]:
    """
    Select the enabled workflows an event makes eligible.

    Args:
        event: Dispatcher event
        workflows: All configured workflows

    Returns:
        Matching enabled workflows, in configuration order
    """
    return [wf for wf in workflows if wf.enabled and _matches(wf, event)]


__all__ = [
    "FieldsChanged",
    "RecordAdded",
    "ScheduleTick",
    "TriggerEvent",
    "eligible_workflows",
    "schedule_matches",
]
