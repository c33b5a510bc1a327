"""Tests for the workflow engine and the built-in system workflows."""

from datetime import date, datetime, timezone

import pytest

from folio.core.audit.recorder import ChangeRecorder
from folio.core.collaborators import InMemoryNotificationInbox, UserDirectory
from folio.core.records.models import Classification, Record, RecordField, Status
from folio.core.workflows import (
    WORKFLOW_ACTOR,
    FieldsChanged,
    RecordAdded,
    ScheduleTick,
    Workflow,
    WorkflowEngine,
    final_versions,
    system_workflows,
)
from folio.core.workflows.defaults import WEEKLY_REMINDER_MESSAGE
from folio.core.workflows.models import WorkflowScope

NOW = datetime(2025, 11, 12, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def inbox():
    return InMemoryNotificationInbox()


@pytest.fixture
def engine(users, inbox):
    directory = UserDirectory(users)
    return WorkflowEngine(
        ChangeRecorder(users=directory, clock=lambda: NOW),
        users=directory,
        notifications=inbox,
        max_log_entries=3,
    )


def by_id(workflow_id: str) -> Workflow:
    return next(wf for wf in system_workflows() if wf.id == workflow_id)


def workflow_from(config: dict) -> Workflow:
    return Workflow.model_validate({"name": "Test", **config})


class TestRun:
    """Test running one workflow."""

    def test_does_not_mutate_inputs(self, engine, sample_records) -> None:
        """Test that the engine returns copies and leaves inputs alone."""
        before = [r.model_dump() for r in sample_records]
        result = engine.run(by_id("system-auto-at-risk"), sample_records, now=NOW)
        assert [r.model_dump() for r in sample_records] == before
        assert [r.id for r in result.updated] == ["Q425-001"]
        assert result.updated[0].status == Status.AT_RISK

    def test_changes_are_recorded_as_workflow_actor(self, engine, sample_records) -> None:
        """Test that workflow changes carry the automation identity."""
        result = engine.run(by_id("system-auto-at-risk"), sample_records, now=NOW)
        [entry] = result.updated[0].history
        assert entry.field == RecordField.STATUS
        assert entry.actor == WORKFLOW_ACTOR.name

    def test_run_log_and_counters(self, engine, sample_records) -> None:
        """Test that runs are logged and the log is capped."""
        workflow = by_id("system-auto-at-risk")
        for _ in range(5):
            result = engine.run(workflow, sample_records, now=NOW)
        assert workflow.run_count == 5
        assert workflow.last_run == NOW
        assert len(workflow.execution_log) == 3
        assert result.log.records_affected == ["Q425-001"]
        assert result.log.succeeded

    def test_skips_deleted_records(self, engine, sample_records) -> None:
        """Test that soft-deleted records are never acted on."""
        sample_records[0].status = Status.DELETED
        workflow = workflow_from(
            {
                "trigger": {"kind": "on_create"},
                "action": {"kind": "set_field", "field": "priority", "value": "P0"},
            }
        )
        result = engine.run(workflow, sample_records, now=NOW)
        assert "Q425-001" not in [r.id for r in result.updated]

    def test_scope_filters_records(self, engine, sample_records) -> None:
        """Test that a scope restricts which records are considered."""
        workflow = workflow_from(
            {
                "trigger": {"kind": "on_create"},
                "action": {"kind": "set_field", "field": "priority", "value": "P0"},
            }
        )
        workflow.scope = WorkflowScope(owners=["u_lee"])
        result = engine.run(workflow, sample_records, now=NOW)
        assert [r.id for r in result.updated] == ["Q425-003"]

    def test_failing_action_skips_record_only(self, engine, sample_records) -> None:
        """Test that an action error is logged and other records still run."""
        workflow = workflow_from(
            {
                "trigger": {"kind": "on_create"},
                "action": {"kind": "set_field", "field": "estimated_effort", "value": -1},
            }
        )
        result = engine.run(workflow, sample_records, now=NOW)
        assert result.updated == []
        assert len(result.log.errors) == 3
        assert not result.log.succeeded
        assert workflow.run_count == 1

    def test_notifications_are_delivered(self, engine, sample_records, inbox) -> None:
        """Test that notify actions reach the inbox."""
        result = engine.run(by_id("system-weekly-reminder"), sample_records, now=NOW)
        assert result.updated == []
        [notification] = inbox.for_user("u_dana")
        assert notification.message == WEEKLY_REMINDER_MESSAGE
        assert result.log.records_affected == ["Q425-002"]


class TestDispatch:
    """Test running every eligible workflow for an event."""

    def test_later_workflows_see_earlier_changes(self, engine, record) -> None:
        """Test sequential application across workflows."""
        first = workflow_from(
            {
                "id": "first",
                "trigger": {"kind": "on_field_change", "fields": ["status"]},
                "action": {"kind": "set_field", "field": "priority", "value": "P0"},
            }
        )
        second = workflow_from(
            {
                "id": "second",
                "trigger": {"kind": "on_field_change", "fields": ["status"]},
                "condition": {"kind": "priority_equals", "value": "P0"},
                "action": {"kind": "create_comment", "message": "Escalated"},
            }
        )
        event = FieldsChanged(record_id=record.id, fields=frozenset({RecordField.STATUS}))
        results = engine.dispatch(event, [first, second], [record], now=NOW)
        assert [r.workflow.id for r in results] == ["first", "second"]
        [final] = final_versions(results)
        assert final.priority.value == "P0"
        assert len(final.comments) == 1
        assert len(final.history) == 1

    def test_dispatch_order_is_deterministic(self, engine, record) -> None:
        """Test that the same event and records give the same outcome twice."""
        workflows = [
            workflow_from(
                {
                    "id": name,
                    "trigger": {"kind": "on_create"},
                    "action": {"kind": "set_field", "field": "priority", "value": value},
                }
            )
            for name, value in (("a", "P0"), ("b", "P2"))
        ]
        event = RecordAdded(record_id=record.id)
        first = final_versions(engine.dispatch(event, workflows, [record], now=NOW))
        second = final_versions(engine.dispatch(event, workflows, [record], now=NOW))
        assert first[0].priority == second[0].priority
        assert first[0].priority.value == "P2"

    def test_no_eligible_workflows(self, engine, record) -> None:
        """Test that unrelated events run nothing."""
        event = FieldsChanged(record_id=record.id, fields=frozenset({RecordField.TITLE}))
        assert engine.dispatch(event, system_workflows(), [record], now=NOW) == []


class TestSystemWorkflows:
    """Test the built-in workflows end to end through the engine."""

    def test_all_are_read_only_system_workflows(self) -> None:
        """Test the system flags and stable ids."""
        workflows = system_workflows()
        assert [wf.id for wf in workflows] == [
            "system-auto-at-risk",
            "system-effort-status",
            "system-weekly-reminder",
            "system-team-classification",
        ]
        assert all(wf.system and wf.read_only for wf in workflows)

    def test_auto_at_risk_runs_at_nine(self, engine, sample_records) -> None:
        """Test that the daily tick at 09:00 marks overdue records."""
        tick = datetime(2025, 11, 12, 9, 0, tzinfo=timezone.utc)
        results = engine.dispatch(ScheduleTick(now=tick), system_workflows(), sample_records, now=tick)
        assert [r.workflow.id for r in results] == ["system-auto-at-risk"]
        assert [r.id for r in final_versions(results)] == ["Q425-001"]

    def test_effort_status_transition(self, engine) -> None:
        """Test that logging effort on a Not Started record starts it."""
        record = Record(id="r1", status=Status.NOT_STARTED, actual_effort=0.5)
        event = FieldsChanged(record_id="r1", fields=frozenset({RecordField.ACTUAL_EFFORT}))
        [updated] = final_versions(engine.dispatch(event, system_workflows(), [record], now=NOW))
        assert updated.status == Status.IN_PROGRESS

    def test_team_classification_on_create(self, engine) -> None:
        """Test that new records get their owner's team classification."""
        record = Record(id="r1", owner_id="u_lee", eta=date(2026, 1, 1))
        event = RecordAdded(record_id="r1")
        [updated] = final_versions(engine.dispatch(event, system_workflows(), [record], now=NOW))
        assert updated.classification == Classification.POS
