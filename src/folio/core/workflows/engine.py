"""
Workflow engine: runs workflows over records.

The engine never mutates the records it is given. Each record is acted on
through an isolated copy; copies that actually changed come back in the
``WorkflowResult`` with their history already appended, ready for the
caller to commit to the store and persistence.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from folio.core.audit.models import Notification
from folio.core.audit.recorder import ChangeRecorder
from folio.core.collaborators import (
    ClassificationLookup,
    NotificationDelivery,
    StaticClassificationLookup,
    UserDirectory,
)
from folio.core.errors import ActionExecutionError
from folio.core.records.models import Record, User, utcnow

from .actions import ActionContext, apply_action
from .conditions import evaluate
from .models import Workflow, WorkflowRunLog
from .triggers import TriggerEvent, eligible_workflows

logger = logging.getLogger(__name__)

# Identity recorded as the actor of workflow-made changes
WORKFLOW_ACTOR = User(id="system", name="Workflow Automation", role="System")


@dataclass
class WorkflowResult:
    """Outcome of one workflow run."""

    workflow: Workflow
    log: WorkflowRunLog
    updated: list[Record] = field(default_factory=list)
    notifications: list[Notification] = field(default_factory=list)


class WorkflowEngine:
    """
    Evaluates and applies workflows.

    Example:
        >>> engine = WorkflowEngine(ChangeRecorder(), users=directory)
        >>> result = engine.run(workflow, store.all())
        >>> for record in result.updated:
        ...     store.replace(record)
    """

    def __init__(
        self,
        recorder: ChangeRecorder,
        users: UserDirectory | None = None,
        classification_lookup: ClassificationLookup | None = None,
        notifications: NotificationDelivery | None = None,
        max_log_entries: int = 10,
    ) -> None:
        self.recorder = recorder
        self.users = users or UserDirectory()
        self.classification_lookup = classification_lookup or StaticClassificationLookup()
        self.notifications = notifications
        self.max_log_entries = max_log_entries

    def run(
        self,
        workflow: Workflow,
        records: list[Record],
        now: datetime | None = None,
        provenance: str | None = None,
    ) -> WorkflowResult:
        """
        Run one workflow over a set of records.

        Deleted records and records outside the workflow's scope are
        skipped. A record whose action fails is logged in the run log and
        left unchanged; the other records still run.

        Args:
            workflow: Workflow to run (its run counters are updated)
            records: Candidate records (not mutated)
            now: Evaluation time
            provenance: Record id that caused this run, stamped on entries

        Returns:
            The run result with changed record copies
        """
        now = now or utcnow()
        log = WorkflowRunLog(workflow_id=workflow.id, timestamp=now)
        result = WorkflowResult(workflow=workflow, log=log)
        context = ActionContext(
            users=self.users,
            classification_lookup=self.classification_lookup,
            workflow_name=workflow.name,
            now=now,
        )

        for record in records:
            if record.is_deleted:
                continue
            if workflow.scope is not None and not workflow.scope.matches(record):
                continue
            if not evaluate(workflow.condition, record, now):
                continue

            try:
                outcome = apply_action(workflow.action, record, context)
            except ActionExecutionError as e:
                logger.warning("Workflow '%s' skipped record %s: %s", workflow.name, record.id, e)
                log.errors.append(f"{record.id}: {e}")
                continue

            for notification in outcome.notifications:
                self._deliver(notification)
            result.notifications.extend(outcome.notifications)

            if outcome.changed:
                updated = outcome.record
                self.recorder.diff_and_record(
                    record,
                    updated,
                    actor=WORKFLOW_ACTOR,
                    fields=outcome.changed_fields,
                    provenance=provenance,
                )
                updated.touch(now)
                result.updated.append(updated)

            if outcome.changed or outcome.notifications:
                log.records_affected.append(record.id)
                log.actions_taken.append(f"{workflow.action.kind} on {record.id}")

        workflow.record_run(log, self.max_log_entries)
        logger.debug(
            "Workflow '%s' ran: %d affected, %d errors",
            workflow.name,
            len(log.records_affected),
            len(log.errors),
        )
        return result

    def dispatch(
        self,
        event: TriggerEvent,
        workflows: list[Workflow],
        records: list[Record],
        now: datetime | None = None,
        provenance: str | None = None,
    ) -> list[WorkflowResult]:
        """
        Run every workflow an event makes eligible, one after another.

        Each workflow sees the latest version produced by the workflows
        before it, always through its own copy.

        Args:
            event: Trigger event
            workflows: All configured workflows
            records: Records the event applies to
            now: Evaluation time
            provenance: Record id that caused this dispatch

        Returns:
            One result per workflow that ran, in configuration order
        """
        current: dict[str, Record] = {r.id: r for r in records}
        results: list[WorkflowResult] = []
        for workflow in eligible_workflows(event, workflows):
            result = self.run(workflow, list(current.values()), now=now, provenance=provenance)
            for updated in result.updated:
                current[updated.id] = updated
            results.append(result)
        return results

    def _deliver(self, notification: Notification) -> None:
        if self.notifications is None or notification.user_id is None:
            return
        try:
            self.notifications.create(notification.user_id, notification)
        except Exception:
            logger.exception("Failed to deliver workflow notification for %s", notification.record_id)


def final_versions(results: list[WorkflowResult]) -> list[Record]:
    """Latest version of every record changed across a dispatch, in first-change order."""
    latest: dict[str, Record] = {}
    for result in results:
        for record in result.updated:
            latest[record.id] = record
    return list(latest.values())


__all__ = ["WORKFLOW_ACTOR", "WorkflowEngine", "WorkflowResult", "final_versions"]
