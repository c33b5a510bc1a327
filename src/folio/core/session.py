"""
Client session: the entry points that mutate the record collection.

A Session owns one record store and wires the automation and consistency
components around it:

    local edit -> coordinator (optimistic) -> recorder -> workflows
               -> broadcast -> persistence confirmation

Every mutation entry point consults the permission policy first. Remote
broadcasts from other clients are applied through the same store, so the
collection stays deduplicated whichever way a record arrives.

Example:
    >>> session = Session(MemoryBackend(), actor=dana)
    >>> await session.load()
    >>> record = await session.create_record("Billing revamp", quarter="Q4 2025")
    >>> await session.edit_field(record.id, RecordField.STATUS, Status.IN_PROGRESS)
"""

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from folio.core.audit.models import Notification
from folio.core.audit.notifications import comment_notification
from folio.core.audit.recorder import ChangeRecorder
from folio.core.collaborators import (
    AllowAll,
    BroadcastChannel,
    ClassificationLookup,
    DeliveryChannel,
    LoggingDeliveryChannel,
    NotificationDelivery,
    PermissionPolicy,
    StaticClassificationLookup,
    UserDirectory,
)
from folio.core.config.models import FolioConfig
from folio.core.errors import (
    BroadcastError,
    PermissionDeniedError,
    PersistenceError,
    ValidationError,
)
from folio.core.events import CommentAdded, RecordCreated, RecordUpdated, Unsubscribe
from folio.core.records.backend import PersistenceBackend, get_backend
from folio.core.records.cache import RecordCache
from folio.core.records.ids import generate_record_id
from folio.core.records.json_backend import JsonFileBackend
from folio.core.records.models import (
    Comment,
    Record,
    RecordField,
    Status,
    User,
    utcnow,
)
from folio.core.records.store import InsertOutcome, RecordStore
from folio.core.sync.coordinator import OptimisticUpdateCoordinator
from folio.core.validation.effort import EffortValidation, validate_weekly_effort
from folio.core.workflows.defaults import system_workflows
from folio.core.workflows.engine import WorkflowEngine, WorkflowResult, final_versions
from folio.core.workflows.models import Workflow
from folio.core.workflows.triggers import FieldsChanged, RecordAdded, ScheduleTick

logger = logging.getLogger(__name__)


class Session:
    """One client's view of the shared record collection."""

    def __init__(
        self,
        persistence: PersistenceBackend,
        actor: User,
        config: FolioConfig | None = None,
        broadcast: BroadcastChannel | None = None,
        notifications: NotificationDelivery | None = None,
        classification_lookup: ClassificationLookup | None = None,
        permissions: PermissionPolicy | None = None,
        delivery: DeliveryChannel | None = None,
        users: UserDirectory | None = None,
        workflows: list[Workflow] | None = None,
        cache: RecordCache | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """
        Wire a session.

        Args:
            persistence: Backend records are loaded from and persisted to
            actor: User performing local mutations
            config: Settings (defaults when omitted)
            broadcast: Real-time channel shared with other clients
            notifications: Notification inbox
            classification_lookup: Team -> classification lookup
            permissions: Policy consulted before every mutation
            delivery: External feed for ETA changes
            users: Known users (owner teams, display names)
            workflows: User-defined workflows (default: from config); the
                system workflows always run first
            cache: Local cache used when the backend cannot be loaded
            clock: Time source for timestamps and workflow evaluation
        """
        self.config = config or FolioConfig()
        self.persistence = persistence
        self.actor = actor
        self.broadcast = broadcast
        self.notifications = notifications
        self.permissions = permissions or AllowAll()
        self.users = users or UserDirectory([actor, *self.config.users])
        self.cache = cache
        self.clock = clock

        self.store = RecordStore()
        self.recorder = ChangeRecorder(
            persistence=persistence,
            notifications=notifications,
            delivery=delivery or LoggingDeliveryChannel(),
            users=self.users,
            clock=clock,
        )
        self.engine = WorkflowEngine(
            self.recorder,
            users=self.users,
            classification_lookup=classification_lookup
            or StaticClassificationLookup(self.config.team_classifications),
            notifications=notifications,
            max_log_entries=self.config.audit.max_execution_log,
        )
        self.coordinator = OptimisticUpdateCoordinator(
            self.store,
            persistence,
            grace_delay=self.config.sync.grace_delay,
            timeout=self.config.sync.pending_timeout,
        )
        user_workflows = self.config.workflows if workflows is None else workflows
        self.workflows: list[Workflow] = [*system_workflows(), *user_workflows]

        self._unsubscribes: list[Unsubscribe] = []

    @classmethod
    def from_config(
        cls,
        config: FolioConfig,
        actor: User,
        project_dir: Path | None = None,
        **kwargs: Any,
    ) -> "Session":
        """
        Build a session on the backend named by ``config.storage``.

        Args:
            config: Loaded configuration
            actor: User performing local mutations
            project_dir: Directory the storage paths are relative to
            **kwargs: Extra collaborators passed to ``Session``

        Raises:
            ValueError: If the configured backend is not registered
        """
        project_dir = project_dir or Path.cwd()
        backend: PersistenceBackend
        if config.storage.backend == "json":
            backend = JsonFileBackend(
                project_dir=project_dir,
                records_file=project_dir / config.storage.records_file,
                audit_file=project_dir / config.storage.audit_file,
            )
        else:
            backend = get_backend(config.storage.backend, project_dir)
        cache = RecordCache(project_dir / config.storage.cache_file)
        return cls(backend, actor=actor, config=config, cache=cache, **kwargs)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def load(self) -> int:
        """
        Load the collection from persistence (or the local cache).

        Returns:
            Number of duplicate records dropped while loading
        """
        try:
            records = await self.persistence.load()
        except PersistenceError as e:
            if self.cache is None:
                raise
            logger.warning("Persistence unavailable (%s), loading from local cache", e)
            records = self.cache.load()
        else:
            if self.cache is not None:
                try:
                    self.cache.save(records)
                except OSError as e:
                    logger.warning("Failed to refresh record cache: %s", e)

        dropped = self.store.replace_all(records)
        if dropped:
            logger.warning("Dropped %d duplicate record(s) while loading", dropped)
        logger.debug("Loaded %d records", len(self.store))
        return dropped

    async def connect(self) -> None:
        """Join the broadcast channel and subscribe to remote changes."""
        if self.broadcast is None:
            return
        await self.broadcast.connect(self.actor)
        self._unsubscribes = [
            self.broadcast.on_update(self._on_remote_update),
            self.broadcast.on_create(self._on_remote_create),
            self.broadcast.on_comment_added(self._on_remote_comment),
        ]

    async def close(self) -> None:
        """Unsubscribe from the channel and cancel pending-write timers."""
        for unsubscribe in self._unsubscribes:
            unsubscribe()
        self._unsubscribes = []
        await self.coordinator.close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_permission(self, allowed: bool, operation: str, record_id: str | None = None) -> None:
        if not allowed:
            raise PermissionDeniedError(self.actor.id, operation, record_id)

    async def _best_effort(self, what: str, call: Awaitable[None]) -> None:
        try:
            await call
        except BroadcastError as e:
            logger.warning("Broadcast failed (%s): %s", what, e)
        except PersistenceError as e:
            logger.warning("Persistence call failed (%s): %s", what, e)

    def _commit(self, results: list[WorkflowResult]) -> list[Record]:
        """Store workflow output and queue it for persistence."""
        committed: list[Record] = []
        for record in final_versions(results):
            if self.store.replace(record) is None:
                logger.warning("Workflow produced unknown record %s, ignoring", record.id)
                continue
            self.persistence.queue_sync(record)
            committed.append(record)
        return committed

    def get(self, record_id: str) -> Record:
        return self.store.require(record_id)

    def records(self, include_deleted: bool = False) -> list[Record]:
        return self.store.all(include_deleted=include_deleted)

    # ------------------------------------------------------------------
    # Local mutations
    # ------------------------------------------------------------------

    async def create_record(self, title: str, record_id: str | None = None, **fields: Any) -> Record:
        """
        Create a record and run on-create workflows against it.

        A create whose id already exists (double submit) updates the
        existing record instead and does not re-run on-create workflows.

        Args:
            title: Record title
            record_id: Explicit id (generated from the quarter when omitted)
            **fields: Other Record fields

        Returns:
            The stored record after on-create workflows

        Raises:
            PermissionDeniedError: If the actor may not create records
            ValidationError: If a field value is invalid
        """
        self._require_permission(self.permissions.can_create(self.actor), "create")

        now = self.clock()
        record_id = record_id or generate_record_id(
            fields.get("quarter"), self.store.ids(), now.date()
        )
        fields.setdefault("owner_id", self.actor.id)
        try:
            record = Record(
                id=record_id,
                title=title,
                created_at=now,
                last_updated=now,
                **fields,
            )
        except PydanticValidationError as e:
            raise ValidationError("record", str(e.errors()[0].get("msg", e))) from e
        if record.original_eta is None:
            record.original_eta = record.eta
        if record.original_estimated_effort is None:
            record.original_estimated_effort = record.estimated_effort

        outcome = self.store.insert(record)
        if outcome is InsertOutcome.CREATED:
            results = self.engine.dispatch(
                RecordAdded(record_id=record.id),
                self.workflows,
                [record],
                now=now,
                provenance=record.id,
            )
            self._commit(results)

        stored = self.store.require(record.id)
        self.persistence.queue_sync(stored)
        if self.broadcast is not None:
            await self._best_effort("create", self.broadcast.broadcast_create(stored))
        if self.config.sync.force_sync_on_create:
            await self._best_effort("force sync", self.persistence.force_sync_now())
        logger.info("Created record %s (%s)", stored.id, outcome.value)
        return stored

    async def edit_field(self, record_id: str, field: RecordField, value: Any) -> Record:
        """
        Edit one field optimistically.

        The new value is visible immediately; field-change workflows run
        on top of it. If persistence fails the record is restored to its
        pre-edit state, workflow output included, and the error re-raised.

        Raises:
            RecordNotFoundError: If the record is unknown
            PermissionDeniedError: If the actor may not edit the record
            ValidationError: If the value is invalid (nothing changes)
            PersistenceError: If the write failed and was rolled back
        """
        current = self.store.require(record_id)
        self._require_permission(
            self.permissions.can_edit(self.actor, current), "edit", record_id
        )

        before = current.snapshot()
        pending = self.coordinator.apply_field(record_id, field, value)
        pending.baseline = before
        current = self.store.require(record_id)

        now = self.clock()
        entries = self.recorder.diff_and_record(before, current, self.actor, fields=[field])
        current.touch(now)

        changed = {e.field for e in entries if not e.is_sub_record_change}
        if current.get_field(field) != before.get_field(field):
            changed.add(field)
        if changed:
            results = self.engine.dispatch(
                FieldsChanged(record_id=record_id, fields=frozenset(changed)),
                self.workflows,
                [current],
                now=now,
                provenance=record_id,
            )
            self._commit(results)

        await self.coordinator.confirm(pending)

        stored = self.store.require(record_id)
        if self.broadcast is not None:
            await self._best_effort("update", self.broadcast.broadcast_update(stored))
        return stored

    async def save_record(self, record: Record) -> Record:
        """
        Save a whole edited record (form-style edit).

        History is diffed against the stored version; the incoming
        record's own history is ignored.

        Raises:
            RecordNotFoundError: If the record is unknown
            PermissionDeniedError: If the actor may not edit the record
            PersistenceError: If the write failed and was rolled back
        """
        stored = self.store.require(record.id)
        self._require_permission(self.permissions.can_edit(self.actor, stored), "edit", record.id)

        before = stored.snapshot()
        updated = record.snapshot()
        updated.history = list(before.history)

        # Every changed field, tracked in history or not
        changed = frozenset(f for f in RecordField if before.get_field(f) != updated.get_field(f))

        now = self.clock()
        self.recorder.diff_and_record(before, updated, self.actor)
        updated.touch(now)
        pending = self.coordinator.apply_record(updated)

        if changed:
            results = self.engine.dispatch(
                FieldsChanged(record_id=record.id, fields=changed),
                self.workflows,
                [updated],
                now=now,
                provenance=record.id,
            )
            self._commit(results)

        await self.coordinator.confirm(pending)

        saved = self.store.require(record.id)
        if self.broadcast is not None:
            await self._best_effort("update", self.broadcast.broadcast_update(saved))
        return saved

    async def soft_delete(self, record_id: str) -> Record:
        """
        Mark a record deleted (it stays in the collection).

        Raises:
            RecordNotFoundError: If the record is unknown
            PermissionDeniedError: If the actor may not delete the record
            PersistenceError: If the backend rejected the delete
        """
        current = self.store.require(record_id)
        self._require_permission(
            self.permissions.can_delete(self.actor, current), "delete", record_id
        )

        result = await self.persistence.soft_delete(record_id)
        if not result.success:
            raise PersistenceError(record_id, "delete was not applied")

        before = current.snapshot()
        current.status = Status.DELETED
        current.deleted_at = result.deleted_at or self.clock()
        self.recorder.diff_and_record(before, current, self.actor)
        current.touch(self.clock())
        self.persistence.queue_sync(current)

        if self.broadcast is not None:
            await self._best_effort("update", self.broadcast.broadcast_update(current))
        return current

    async def restore(self, record_id: str) -> Record:
        """
        Restore a soft-deleted record (status back to Not Started).

        Raises:
            RecordNotFoundError: If the record is unknown
            PermissionDeniedError: If the actor may not edit the record
            PersistenceError: If the backend rejected the restore
        """
        current = self.store.require(record_id)
        self._require_permission(
            self.permissions.can_edit(self.actor, current), "restore", record_id
        )

        if not await self.persistence.restore(record_id):
            raise PersistenceError(record_id, "restore was not applied")

        before = current.snapshot()
        current.status = Status.NOT_STARTED
        current.deleted_at = None
        self.recorder.diff_and_record(before, current, self.actor)
        current.touch(self.clock())
        self.persistence.queue_sync(current)

        if self.broadcast is not None:
            await self._best_effort("update", self.broadcast.broadcast_update(current))
        return current

    async def add_comment(
        self, record_id: str, text: str, mentioned_user_ids: list[str] | None = None
    ) -> Comment:
        """
        Post a comment and notify the owner and mentioned users.

        Raises:
            RecordNotFoundError: If the record is unknown
            PermissionDeniedError: If the actor may not edit the record
            ValidationError: If the comment is empty
        """
        current = self.store.require(record_id)
        self._require_permission(
            self.permissions.can_edit(self.actor, current), "comment", record_id
        )
        if not text.strip():
            raise ValidationError("comment", "comment text must not be empty")

        comment = Comment(
            text=text.strip(),
            author_id=self.actor.id,
            timestamp=self.clock(),
            mentioned_user_ids=mentioned_user_ids or [],
        )
        current.comments = [*current.comments, comment]
        current.touch(comment.timestamp)
        self.persistence.queue_sync(current)
        self._notify_comment(current, comment)

        if self.broadcast is not None:
            await self._best_effort("comment", self.broadcast.broadcast_comment(record_id, comment))
        return comment

    def _notify_comment(self, record: Record, comment: Comment) -> None:
        if self.notifications is None:
            return
        author = self.users.display_name(comment.author_id)
        targets: list[tuple[str, Notification]] = []
        if record.owner_id and record.owner_id != comment.author_id:
            targets.append((record.owner_id, comment_notification(record, comment, author)))
        for user_id in comment.mentioned_user_ids:
            if user_id != comment.author_id:
                targets.append(
                    (user_id, comment_notification(record, comment, author, mentioned=True))
                )
        for user_id, notification in targets:
            try:
                self.notifications.create(user_id, notification)
            except Exception:
                logger.exception("Failed to notify %s about comment on %s", user_id, record.id)

    # ------------------------------------------------------------------
    # Workflows
    # ------------------------------------------------------------------

    async def run_scheduled(self, now: datetime | None = None) -> list[WorkflowResult]:
        """
        Run the on-schedule workflows due at ``now`` over every record.

        Args:
            now: Wall-clock time of the tick (defaults to local time)

        Returns:
            Results of the workflows that ran
        """
        now = now or datetime.now().astimezone()
        results = self.engine.dispatch(ScheduleTick(now=now), self.workflows, self.store.all(), now=now)
        await self._publish(self._commit(results))
        return results

    async def run_workflow(self, workflow_id: str, now: datetime | None = None) -> WorkflowResult:
        """
        Run one workflow over every record, regardless of its trigger.

        Raises:
            ValidationError: If no workflow has this id
        """
        workflow = self.find_workflow(workflow_id)
        if workflow is None:
            raise ValidationError("workflow", f"unknown workflow '{workflow_id}'")
        result = self.engine.run(workflow, self.store.all(), now=now or self.clock())
        await self._publish(self._commit([result]))
        return result

    async def _publish(self, committed: list[Record]) -> None:
        if not committed:
            return
        if self.broadcast is not None:
            for record in committed:
                await self._best_effort("update", self.broadcast.broadcast_update(record))
        await self._best_effort("force sync", self.persistence.force_sync_now())

    def find_workflow(self, workflow_id: str) -> Workflow | None:
        for workflow in self.workflows:
            if workflow.id == workflow_id or workflow.name == workflow_id:
                return workflow
        return None

    def add_workflow(self, workflow: Workflow) -> None:
        """
        Add a user workflow.

        Raises:
            ValidationError: If the id is taken or the workflow claims to be a system one
        """
        if workflow.system:
            raise ValidationError("workflow", "system workflows cannot be added")
        if self.find_workflow(workflow.id) is not None:
            raise ValidationError("workflow", f"workflow '{workflow.id}' already exists")
        self.workflows.append(workflow)

    def remove_workflow(self, workflow_id: str) -> Workflow:
        """
        Remove a user workflow.

        Raises:
            ValidationError: If the workflow is unknown or read-only
        """
        workflow = self.find_workflow(workflow_id)
        if workflow is None:
            raise ValidationError("workflow", f"unknown workflow '{workflow_id}'")
        if workflow.read_only:
            raise ValidationError("workflow", f"workflow '{workflow.name}' is read-only")
        self.workflows.remove(workflow)
        return workflow

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_effort(self, owner_id: str, now: datetime | None = None) -> EffortValidation:
        return validate_weekly_effort(
            self.store.all(include_deleted=True),
            owner_id,
            now=now or self.clock(),
            threshold_percent=self.config.validation.effort_threshold_percent,
        )

    # ------------------------------------------------------------------
    # Remote changes
    # ------------------------------------------------------------------

    def _on_remote_update(self, event: RecordUpdated) -> None:
        if event.changed_by == self.actor.id:
            return
        if not self.coordinator.apply_remote(event.record.snapshot()):
            logger.debug("Ignoring remote update for unknown record %s", event.record.id)

    def _on_remote_create(self, event: RecordCreated) -> None:
        if event.created_by == self.actor.id:
            return
        record = event.record.snapshot()
        if record.id in self.store:
            # Collision: the remote version wins as an update
            self.coordinator.apply_remote(record)
            return
        self.store.insert(record)

    def _on_remote_comment(self, event: CommentAdded) -> None:
        if event.added_by == self.actor.id:
            return
        record = self.store.get(event.record_id)
        if record is None:
            logger.debug("Ignoring comment for unknown record %s", event.record_id)
            return
        if any(c.id == event.comment.id for c in record.comments):
            return
        record.comments = [*record.comments, event.comment]


__all__ = ["Session"]
